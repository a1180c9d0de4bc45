"""Pydantic schemas for the Plaid item and Link session endpoints."""

from datetime import datetime

from pydantic import BaseModel


class LinkTokenResponse(BaseModel):
    link_token: str
    expiration: str | None = None


class PlaidItemResponse(BaseModel):
    """A linked item as shown in the connected-items UI.

    ``status``, ``error_code`` and ``error_message`` are passed through
    verbatim so users can see why an item is stuck.
    """

    id: str
    item_id: str
    institution_id: str | None = None
    institution_name: str | None = None
    status: str
    error_code: str | None = None
    error_message: str | None = None
    created_at: datetime | None = None

    model_config = {"from_attributes": True}


class DeletionInfoResponse(BaseModel):
    can_delete: bool
    last_deletion_date: datetime | None = None
    days_until_next: int | None = None


class DeleteItemResponse(BaseModel):
    status: str
    item_id: str


class LinkSessionStatusResponse(BaseModel):
    """Progress of a Link flow, polled by the connect-item widget."""

    link_token: str
    status: str
    items_added: int
    items_linked: int
    completed_at: datetime | None = None
