"""PlaidDeletionCooldown model - per-user deletion slot."""

from sqlalchemy import Column, DateTime, String

from database import Base


class PlaidDeletionCooldown(Base):
    """The user's most recent claimed deletion.

    A deletion is granted by one conditional UPDATE on this row, so two
    concurrent requests cannot both pass the cooldown check.  The audit rows
    in ``plaid_item_deletions`` stay the record of what was deleted.
    """

    __tablename__ = "plaid_deletion_cooldowns"

    user_id = Column(String, primary_key=True)
    last_deletion_at = Column(DateTime, nullable=True)
