"""PlaidWebhook model - audit log of received non-LINK webhooks."""

from datetime import datetime, timezone

from sqlalchemy import JSON, Boolean, Column, DateTime, Index, String, Text

from database import Base
from models.utils import generate_uuid


class PlaidWebhook(Base):
    """A received Plaid webhook and its processing state."""

    __tablename__ = "plaid_webhooks"
    __table_args__ = (
        Index("ix_plaid_webhooks_type_code_item", "webhook_type", "webhook_code", "item_id"),
    )

    id = Column(String(36), primary_key=True, default=generate_uuid)
    item_id = Column(String, index=True, nullable=True)
    user_id = Column(String, nullable=True)
    webhook_type = Column(String, nullable=False)
    webhook_code = Column(String, nullable=False)
    error_code = Column(String, nullable=True)
    payload = Column(JSON, nullable=True)
    processed = Column(Boolean, nullable=False, default=False)
    processing_error = Column(Text, nullable=True)
    received_at = Column(DateTime, nullable=False, default=lambda: datetime.now(timezone.utc))
    processed_at = Column(DateTime, nullable=True)
