"""PlaidItemDeletion model - audit log of item deletions."""

from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, Index, String

from database import Base
from models.utils import generate_uuid


class PlaidItemDeletion(Base):
    """One deletion of a PlaidItem; the latest row per user drives the cooldown."""

    __tablename__ = "plaid_item_deletions"
    __table_args__ = (
        Index("ix_plaid_item_deletions_user_id_deleted_at", "user_id", "deleted_at"),
    )

    id = Column(String(36), primary_key=True, default=generate_uuid)
    user_id = Column(String, nullable=False)
    item_id = Column(String, nullable=False)
    institution_id = Column(String, nullable=True)
    institution_name = Column(String, nullable=True)
    deleted_at = Column(DateTime, nullable=False, default=lambda: datetime.now(timezone.utc))
    reason = Column(String, nullable=True)  # "user_initiated" | offboarding reason
