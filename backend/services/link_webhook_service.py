"""Link webhook service - reconciles Plaid LINK webhooks with stored sessions.

Plaid delivers LINK webhooks at least once, in no guaranteed order, and
``ITEM_ADD_RESULT`` can race ``SESSION_FINISHED`` for the same item.  Item
writes converge through the unique ``item_id``; session counters and
metadata are read and rewritten under :meth:`LinkSessionService.lock`.

State transitions by ``webhook_code``:

- ``HANDOFF``: record ``link_session_id``, status -> active
- ``ITEM_ADD_RESULT``: exchange the public token, upsert the item, bump
  ``items_added``, status -> active
- ``SESSION_FINISHED``: on SUCCESS, exchange every public token and save
  items not already live (one bad token does not stop the rest); then
  status -> completed/failed and ``completed_at`` is set

Once ``completed_at`` is set the session's status is frozen; late or
redelivered events still converge the item table and annotate metadata.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Literal, Protocol

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from integrations.exceptions import PlaidError, TokenExchangeError
from integrations.plaid_client import TokenExchangeResult
from models.plaid_link_session import LinkSessionStatus, PlaidLinkSession
from models.utils import utcnow
from schemas.webhook import (
    HandoffWebhook,
    ItemAddResultWebhook,
    LinkWebhook,
    SessionFinishedWebhook,
)
from services.exceptions import PersistenceError
from services.link_session_service import LinkSessionService
from services.plaid_item_service import REACTIVATABLE_STATUSES, PlaidItemService

logger = logging.getLogger(__name__)

ItemsAddedMode = Literal["distinct_items", "per_delivery"]


class TokenExchanger(Protocol):
    def exchange_public_token(self, public_token: str) -> TokenExchangeResult: ...


class LinkWebhookOutcome(str, Enum):
    """What a LINK webhook delivery did."""

    HANDLED = "handled"
    SESSION_NOT_FOUND = "session_not_found"
    UNHANDLED_CODE = "unhandled_code"
    SKIPPED = "skipped"


@dataclass
class TokenResult:
    """Result of processing one public token from SESSION_FINISHED."""

    index: int
    status: Literal["saved", "existing", "failed"]
    item_id: str | None = None
    error: str | None = None
    message: str | None = None


@dataclass
class SessionFinishedSummary:
    """Per-token results of a SESSION_FINISHED delivery.

    Stored in session metadata so a partially successful session can be
    queried instead of reconstructed from logs.
    """

    results: list[TokenResult] = field(default_factory=list)

    @property
    def saved(self) -> list[str]:
        return [r.item_id for r in self.results if r.status == "saved"]

    @property
    def existing(self) -> list[str]:
        return [r.item_id for r in self.results if r.status == "existing"]

    @property
    def failed(self) -> list[TokenResult]:
        return [r for r in self.results if r.status == "failed"]

    def to_metadata(self) -> dict:
        return {
            "saved": self.saved,
            "existing": self.existing,
            "failed": [
                {"index": r.index, "error": r.error, "message": r.message}
                for r in self.failed
            ],
        }


class LinkWebhookService:
    """Applies LINK webhooks to Link sessions and Plaid items."""

    def __init__(
        self,
        token_exchanger: TokenExchanger,
        item_service: PlaidItemService,
        items_added_mode: ItemsAddedMode = "distinct_items",
        clock: Callable = utcnow,
    ):
        if items_added_mode not in ("distinct_items", "per_delivery"):
            raise ValueError(f"Unknown items_added_mode: {items_added_mode!r}")
        self._exchanger = token_exchanger
        self._items = item_service
        self._items_added_mode = items_added_mode
        self._clock = clock

    def handle(self, db: Session, webhook: LinkWebhook) -> LinkWebhookOutcome:
        """Process one LINK webhook.

        An unknown ``link_token`` is acknowledged, not failed: Plaid retries
        any non-2xx forever, and a session we never created will not appear.

        Raises:
            Exception: anything except per-token exchange failures inside
                SESSION_FINISHED.  The session is marked failed first, then
                the error is re-raised so the route answers 500 and Plaid
                retries.
        """
        logger.info(
            "LINK webhook %s: link_token=%s link_session_id=%s",
            webhook.webhook_code, webhook.link_token, webhook.link_session_id,
        )

        session = LinkSessionService.find_by_link_token(db, webhook.link_token)
        if session is None:
            logger.warning(
                "No link session for link_token %s, acknowledging %s",
                webhook.link_token, webhook.webhook_code,
            )
            return LinkWebhookOutcome.SESSION_NOT_FOUND

        session_id = session.id
        try:
            if isinstance(webhook, ItemAddResultWebhook):
                return self._handle_item_add_result(db, session, webhook)
            if isinstance(webhook, SessionFinishedWebhook):
                return self._handle_session_finished(db, session, webhook)
            if isinstance(webhook, HandoffWebhook):
                return self._handle_handoff(db, session, webhook)
            logger.info("Unhandled LINK webhook code: %s", webhook.webhook_code)
            return LinkWebhookOutcome.UNHANDLED_CODE
        except Exception as e:
            logger.error(
                "Failed to handle %s for link session %s: %s",
                webhook.webhook_code, session_id, e,
            )
            self._mark_failed(db, session_id, e)
            raise

    # ------------------------------------------------------------------
    # Handlers
    # ------------------------------------------------------------------

    def _handle_handoff(
        self, db: Session, session: PlaidLinkSession, webhook: HandoffWebhook
    ) -> LinkWebhookOutcome:
        patch: dict = {}
        if webhook.link_session_id:
            patch["link_session_id"] = webhook.link_session_id
        if session.is_terminal:
            logger.info("HANDOFF for finished link session %s, status unchanged", session.id)
        else:
            patch["status"] = LinkSessionStatus.ACTIVE
        if patch:
            LinkSessionService.update(db, session.id, **patch)
        return LinkWebhookOutcome.HANDLED

    def _handle_item_add_result(
        self, db: Session, session: PlaidLinkSession, webhook: ItemAddResultWebhook
    ) -> LinkWebhookOutcome:
        if not webhook.public_token:
            logger.error("ITEM_ADD_RESULT without public_token for link session %s", session.id)
            return LinkWebhookOutcome.SKIPPED

        # Exchange failures propagate: this delivery has exactly one item
        result = self._exchanger.exchange_public_token(webhook.public_token)

        institution_id = webhook.institution.institution_id if webhook.institution else None
        institution_name = webhook.institution.name if webhook.institution else None

        upsert = self._items.upsert_item(
            db,
            session.user_id,
            result.item_id,
            result.access_token,
            institution_id,
            institution_name,
        )
        # upsert committed; lock and reload so concurrent deliveries queue here
        session = LinkSessionService.lock(db, session.id)

        metadata = dict(session.session_metadata or {})
        added_item_ids = list(metadata.get("added_item_ids", []))
        if upsert.owned_by_other_user:
            metadata["rejected_item_ids"] = sorted(
                set(metadata.get("rejected_item_ids", [])) | {result.item_id}
            )
        elif result.item_id not in added_item_ids:
            added_item_ids.append(result.item_id)
        metadata["added_item_ids"] = added_item_ids
        metadata["last_item_added"] = {
            "item_id": result.item_id,
            "institution_id": institution_id,
            "institution_name": institution_name,
            "added_at": self._clock().isoformat(),
        }

        if self._items_added_mode == "per_delivery":
            items_added = (session.items_added or 0) + 1
        else:
            items_added = len(added_item_ids)

        if session.is_terminal:
            # Late delivery after SESSION_FINISHED: item saved, session only annotated
            patch: dict = {"session_metadata": metadata}
            items_added = session.items_added or 0
        else:
            patch = {
                "items_added": items_added,
                "session_metadata": metadata,
                "status": LinkSessionStatus.ACTIVE,
            }
            if webhook.link_session_id:
                patch["link_session_id"] = webhook.link_session_id
        LinkSessionService.update(db, session.id, **patch)

        logger.info(
            "Link session %s: item %s %s (items_added=%d)",
            session.id, result.item_id, "created" if upsert.created else "already stored", items_added,
        )
        return LinkWebhookOutcome.HANDLED

    def _handle_session_finished(
        self, db: Session, session: PlaidLinkSession, webhook: SessionFinishedWebhook
    ) -> LinkWebhookOutcome:
        public_tokens = list(webhook.public_tokens or [])
        summary = SessionFinishedSummary()

        if webhook.succeeded and public_tokens:
            logger.info(
                "Link session %s finished with %d public tokens", session.id, len(public_tokens)
            )
            for index, public_token in enumerate(public_tokens):
                summary.results.append(
                    self._save_finished_token(db, session, index, public_token)
                )

        session = LinkSessionService.lock(db, session.id)
        now = self._clock()
        metadata = dict(session.session_metadata or {})
        if session.is_terminal:
            # Redelivery: Item table converged above, session stays as finished.
            # Public tokens are single-use, so keep the first finish's results.
            metadata["redelivery_token_results"] = summary.to_metadata()
            metadata["redelivered_at"] = now.isoformat()
            LinkSessionService.update(db, session.id, session_metadata=metadata)
            logger.info("SESSION_FINISHED redelivered for link session %s", session.id)
            return LinkWebhookOutcome.HANDLED

        metadata["session_status"] = webhook.status
        metadata["token_results"] = summary.to_metadata()
        metadata["finished_at"] = now.isoformat()
        metadata.pop("error", None)
        metadata.pop("error_kind", None)
        status = LinkSessionStatus.COMPLETED if webhook.succeeded else LinkSessionStatus.FAILED
        LinkSessionService.update(
            db,
            session.id,
            link_session_id=webhook.link_session_id or session.link_session_id,
            status=status,
            public_tokens=public_tokens,
            completed_at=now,
            session_metadata=metadata,
        )
        logger.info(
            "Link session %s finished: plaid_status=%s saved=%d existing=%d failed=%d",
            session.id, webhook.status, len(summary.saved), len(summary.existing), len(summary.failed),
        )
        return LinkWebhookOutcome.HANDLED

    def _save_finished_token(
        self, db: Session, session: PlaidLinkSession, index: int, public_token: str
    ) -> TokenResult:
        """Exchange one SESSION_FINISHED token and save its item unless already live.

        Exchange failures are recorded and swallowed; persistence failures
        propagate.
        """
        try:
            result = self._exchanger.exchange_public_token(public_token)
        except TokenExchangeError as e:
            logger.warning(
                "Link session %s: public token #%d failed to exchange (%s): %s",
                session.id, index, e.kind, e,
            )
            return TokenResult(index=index, status="failed", error=e.kind, message=str(e))

        existing = self._items.find_by_item_id(db, result.item_id)
        if existing is not None:
            if existing.user_id != session.user_id:
                logger.error(
                    "Link session %s: item %s belongs to another user", session.id, result.item_id
                )
                return TokenResult(
                    index=index,
                    status="failed",
                    item_id=result.item_id,
                    error="owned_by_other_user",
                    message="Item is linked to a different user",
                )
            if existing.status not in REACTIVATABLE_STATUSES:
                return TokenResult(index=index, status="existing", item_id=result.item_id)

        # New, or re-linked after deletion or an error: same write as ITEM_ADD_RESULT
        reactivated = existing is not None
        upsert = self._items.upsert_item(db, session.user_id, result.item_id, result.access_token)
        logger.info(
            "Link session %s: %s item %s from SESSION_FINISHED",
            session.id, "reactivated" if reactivated else "saved", result.item_id,
        )
        return TokenResult(
            index=index,
            status="saved" if upsert.created or reactivated else "existing",
            item_id=result.item_id,
        )

    # ------------------------------------------------------------------
    # Failure annotation
    # ------------------------------------------------------------------

    def _mark_failed(self, db: Session, session_id: str, error: Exception) -> None:
        """Best-effort: mark the session failed and record the error.

        A finished session keeps its terminal status; only metadata changes.
        """
        try:
            db.rollback()
            session = db.get(PlaidLinkSession, session_id)
            if session is None:
                return
            metadata = dict(session.session_metadata or {})
            metadata["error"] = str(error) or type(error).__name__
            metadata["error_kind"] = error.kind if isinstance(error, PlaidError) else type(error).__name__
            metadata["failed_at"] = self._clock().isoformat()

            patch: dict = {"session_metadata": metadata}
            if not session.is_terminal:
                patch["status"] = LinkSessionStatus.FAILED
            LinkSessionService.update(db, session_id, **patch)
        except (PersistenceError, SQLAlchemyError):
            logger.exception("Could not record failure on link session %s", session_id)
