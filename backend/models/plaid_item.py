"""PlaidItem model - one linked institution connection owned by a user."""

from datetime import datetime, timezone
from enum import Enum

from sqlalchemy import Column, DateTime, Index, String, Text

from database import Base
from models.utils import generate_uuid


class ItemStatus(str, Enum):
    """Lifecycle status of a PlaidItem."""

    PENDING = "pending"
    ACTIVE = "active"
    ERROR = "error"
    REVOKED = "revoked"
    DELETED = "deleted"


class PlaidItem(Base):
    """A Plaid Item representing a linked financial institution.

    ``item_id`` is assigned by Plaid and is globally unique, so it doubles
    as the idempotency key for every webhook that creates an item.
    ``access_token`` holds Fernet ciphertext, never the raw token.
    """

    __tablename__ = "plaid_items"
    __table_args__ = (Index("ix_plaid_items_status", "status"),)

    id = Column(String(36), primary_key=True, default=generate_uuid)
    user_id = Column(String, index=True, nullable=False)
    item_id = Column(String, unique=True, index=True, nullable=False)
    access_token = Column(Text, nullable=False)
    institution_id = Column(String, nullable=True)
    institution_name = Column(String, nullable=True)
    status = Column(String, nullable=False, default=ItemStatus.ACTIVE.value)
    error_code = Column(String, nullable=True)
    error_message = Column(Text, nullable=True)
    last_webhook_at = Column(DateTime, nullable=True)
    deleted_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=lambda: datetime.now(timezone.utc))
    updated_at = Column(
        DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    def __repr__(self) -> str:
        # access_token deliberately omitted
        return f"<PlaidItem item_id={self.item_id!r} user_id={self.user_id!r} status={self.status!r}>"
