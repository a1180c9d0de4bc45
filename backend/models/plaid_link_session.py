"""PlaidLinkSession model - one user-facing Plaid Link flow."""

from datetime import datetime, timezone
from enum import Enum

from sqlalchemy import JSON, Column, DateTime, Integer, String

from database import Base
from models.utils import generate_uuid


class LinkSessionStatus(str, Enum):
    """Status of a Link session.

    ``completed`` and ``failed`` are terminal once ``completed_at`` is set
    by SESSION_FINISHED.  A ``failed`` status without ``completed_at`` marks
    a processing error that a retried delivery may still recover from.
    """

    CREATED = "created"
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"


class PlaidLinkSession(Base):
    """A Link session created when the client requests a link token.

    Plaid's first webhook in a flow may carry only ``link_token``, so that
    column (unique) is the join key used to find the session from a webhook.
    """

    __tablename__ = "plaid_link_sessions"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    user_id = Column(String, index=True, nullable=False)
    link_token = Column(String, unique=True, index=True, nullable=False)
    link_session_id = Column(String, index=True, nullable=True)
    plaid_user_token = Column(String, nullable=True)  # reused across Multi-Item Link flows
    status = Column(String, index=True, nullable=False, default=LinkSessionStatus.CREATED.value)
    items_added = Column(Integer, nullable=False, default=0)
    public_tokens = Column(JSON, nullable=True)  # list[str], set on SESSION_FINISHED
    # "metadata" is reserved on declarative classes
    session_metadata = Column("metadata", JSON, nullable=True)
    created_at = Column(DateTime, default=lambda: datetime.now(timezone.utc))
    updated_at = Column(
        DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )
    completed_at = Column(DateTime, nullable=True)

    @property
    def is_terminal(self) -> bool:
        """True once SESSION_FINISHED has been applied."""
        return self.completed_at is not None
