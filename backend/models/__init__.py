"""SQLAlchemy ORM models."""

from .plaid_deletion_cooldown import PlaidDeletionCooldown
from .plaid_item import ItemStatus, PlaidItem
from .plaid_item_deletion import PlaidItemDeletion
from .plaid_link_session import LinkSessionStatus, PlaidLinkSession
from .plaid_webhook import PlaidWebhook
from .utils import generate_uuid, utcnow

__all__ = ["ItemStatus", "LinkSessionStatus", "PlaidDeletionCooldown", "PlaidItem", "PlaidItemDeletion", "PlaidLinkSession", "PlaidWebhook", "generate_uuid", "utcnow"]
