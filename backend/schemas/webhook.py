"""Pydantic schemas for inbound Plaid webhooks.

Webhooks are validated once at the HTTP boundary into a tagged union keyed
by ``webhook_type``/``webhook_code``, so handlers receive a concrete model
instead of a loose dict.  Unknown LINK codes and every non-LINK webhook
still validate (as :class:`UnhandledLinkWebhook` / :class:`ItemWebhook`)
because Plaid must get a 200 for events we simply ignore.
"""

from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Discriminator, Tag, TypeAdapter


class PlaidInstitution(BaseModel):
    """Institution metadata attached to ITEM_ADD_RESULT."""

    model_config = ConfigDict(extra="allow")

    institution_id: str | None = None
    name: str | None = None


class _LinkWebhookBase(BaseModel):
    model_config = ConfigDict(extra="allow")

    webhook_type: Literal["LINK"]
    webhook_code: str
    link_token: str
    link_session_id: str | None = None
    environment: str | None = None


class HandoffWebhook(_LinkWebhookBase):
    """User was handed off into Link; establishes ``link_session_id``."""

    webhook_code: Literal["HANDOFF"]


class ItemAddResultWebhook(_LinkWebhookBase):
    """One item was added within a multi-item Link flow."""

    webhook_code: Literal["ITEM_ADD_RESULT"]
    public_token: str | None = None
    institution: PlaidInstitution | None = None


class SessionFinishedWebhook(_LinkWebhookBase):
    """The whole Link flow ended; ``status`` is SUCCESS, EXIT or ERROR."""

    webhook_code: Literal["SESSION_FINISHED"]
    status: str | None = None
    public_tokens: list[str] | None = None

    @property
    def succeeded(self) -> bool:
        return self.status == "SUCCESS"


class UnhandledLinkWebhook(_LinkWebhookBase):
    """Any other LINK code (EVENTS, USER_ACCOUNT_REVOKED, ...)."""

    pass


class PlaidWebhookError(BaseModel):
    model_config = ConfigDict(extra="allow")

    error_code: str | None = None
    error_message: str | None = None
    error_type: str | None = None
    display_message: str | None = None


class ItemWebhook(BaseModel):
    """Non-LINK webhook (ITEM, TRANSACTIONS, AUTH, ...)."""

    model_config = ConfigDict(extra="allow")

    webhook_type: str
    webhook_code: str
    item_id: str | None = None
    error: PlaidWebhookError | None = None


_LINK_CODE_TAGS = {"HANDOFF", "ITEM_ADD_RESULT", "SESSION_FINISHED"}


def _webhook_tag(value: Any) -> str | None:
    """Pick the union member for a raw payload (or an already-built model)."""
    if isinstance(value, dict):
        webhook_type = value.get("webhook_type")
        webhook_code = value.get("webhook_code")
    else:
        webhook_type = getattr(value, "webhook_type", None)
        webhook_code = getattr(value, "webhook_code", None)
    if not isinstance(webhook_type, str):
        return None
    if webhook_type != "LINK":
        return "OTHER"
    if webhook_code in _LINK_CODE_TAGS:
        return webhook_code
    return "LINK_OTHER"


LinkWebhook = Union[
    HandoffWebhook,
    ItemAddResultWebhook,
    SessionFinishedWebhook,
    UnhandledLinkWebhook,
]

PlaidWebhookPayload = Annotated[
    Union[
        Annotated[HandoffWebhook, Tag("HANDOFF")],
        Annotated[ItemAddResultWebhook, Tag("ITEM_ADD_RESULT")],
        Annotated[SessionFinishedWebhook, Tag("SESSION_FINISHED")],
        Annotated[UnhandledLinkWebhook, Tag("LINK_OTHER")],
        Annotated[ItemWebhook, Tag("OTHER")],
    ],
    Discriminator(_webhook_tag),
]

_webhook_adapter: TypeAdapter[PlaidWebhookPayload] = TypeAdapter(PlaidWebhookPayload)


def parse_webhook(raw_body: bytes | str) -> LinkWebhook | ItemWebhook:
    """Parse and validate a raw webhook body.

    Raises:
        pydantic.ValidationError: body is not JSON or does not match any
            webhook shape (e.g. a LINK webhook without ``link_token``).
    """
    return _webhook_adapter.validate_json(raw_body)


def parse_webhook_dict(payload: dict) -> LinkWebhook | ItemWebhook:
    """Validate an already-decoded webhook payload."""
    return _webhook_adapter.validate_python(payload)
