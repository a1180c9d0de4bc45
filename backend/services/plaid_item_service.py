"""Plaid item service - durable store of linked items.

Writes commit per row: the webhook reconciler relies on each saved item
surviving even if a later step of the same webhook fails.
"""

import logging
from dataclasses import dataclass

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from models.plaid_item import ItemStatus, PlaidItem
from models.utils import utcnow
from services.exceptions import PersistenceError
from services.token_cipher import TokenCipher

logger = logging.getLogger(__name__)

# Statuses a fresh token exchange brings back to active
REACTIVATABLE_STATUSES = frozenset({ItemStatus.ERROR.value, ItemStatus.REVOKED.value, ItemStatus.DELETED.value, ItemStatus.PENDING.value})


@dataclass
class UpsertResult:
    """Outcome of :meth:`PlaidItemService.upsert_item`."""

    item: PlaidItem
    created: bool
    owned_by_other_user: bool = False


def commit_or_raise(db: Session, action: str) -> None:
    """Commit, converting database failures into PersistenceError after rollback."""
    try:
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error("Database write failed while %s: %s", action, e)
        raise PersistenceError(f"Failed while {action}") from e


class PlaidItemService:
    """Repository for PlaidItem rows; owns access-token encryption."""

    def __init__(self, cipher: TokenCipher):
        self._cipher = cipher

    @staticmethod
    def find_items_by_user(
        db: Session, user_id: str, include_deleted: bool = False
    ) -> list[PlaidItem]:
        """All items owned by a user, newest first."""
        query = db.query(PlaidItem).filter(PlaidItem.user_id == user_id)
        if not include_deleted:
            query = query.filter(PlaidItem.status != ItemStatus.DELETED.value)
        return query.order_by(PlaidItem.created_at.desc()).all()

    @staticmethod
    def list_active_items(db: Session) -> list[PlaidItem]:
        return (
            db.query(PlaidItem)
            .filter(PlaidItem.status == ItemStatus.ACTIVE.value)
            .order_by(PlaidItem.created_at)
            .all()
        )

    @staticmethod
    def find_by_item_id(db: Session, item_id: str) -> PlaidItem | None:
        return db.query(PlaidItem).filter(PlaidItem.item_id == item_id).first()

    @staticmethod
    def get_user_item(db: Session, user_id: str, item_db_id: str) -> PlaidItem | None:
        """Item by primary key, only if owned by ``user_id``."""
        return (
            db.query(PlaidItem)
            .filter(PlaidItem.id == item_db_id, PlaidItem.user_id == user_id)
            .first()
        )

    def upsert_item(
        self,
        db: Session,
        user_id: str,
        item_id: str,
        access_token: str,
        institution_id: str | None = None,
        institution_name: str | None = None,
    ) -> UpsertResult:
        """Create the item, or refresh it if ``item_id`` is already stored.

        Institution fields are only overwritten when provided.  An item that
        already belongs to another user is left untouched.  A concurrent
        insert of the same ``item_id`` (unique index) is resolved by
        re-reading the winner, so racing webhooks converge on one row.
        """
        existing = self.find_by_item_id(db, item_id)
        if existing is None:
            item = PlaidItem(
                user_id=user_id,
                item_id=item_id,
                access_token=self._cipher.encrypt(access_token),
                institution_id=institution_id,
                institution_name=institution_name,
                status=ItemStatus.ACTIVE.value,
            )
            db.add(item)
            try:
                db.commit()
            except IntegrityError:
                db.rollback()
                existing = self.find_by_item_id(db, item_id)
                if existing is None:
                    raise PersistenceError(f"Failed to save item {item_id}")
                logger.info("PlaidItem %s inserted concurrently, using existing row", item_id)
            except SQLAlchemyError as e:
                db.rollback()
                raise PersistenceError(f"Failed to save item {item_id}") from e
            else:
                db.refresh(item)
                logger.info(
                    "Created PlaidItem %s for user %s (%s)",
                    item_id, user_id, institution_name or "unknown institution",
                )
                return UpsertResult(item=item, created=True)

        if existing.user_id != user_id:
            logger.error(
                "PlaidItem %s belongs to user %s, refusing to reassign to %s",
                item_id, existing.user_id, user_id,
            )
            return UpsertResult(item=existing, created=False, owned_by_other_user=True)

        existing.access_token = self._cipher.encrypt(access_token)
        if institution_id:
            existing.institution_id = institution_id
        if institution_name:
            existing.institution_name = institution_name
        if existing.status in REACTIVATABLE_STATUSES:
            existing.status = ItemStatus.ACTIVE.value
            existing.error_code = None
            existing.error_message = None
            existing.deleted_at = None
        commit_or_raise(db, f"updating item {item_id}")
        logger.info("Updated PlaidItem %s", item_id)
        return UpsertResult(item=existing, created=False)

    @staticmethod
    def update_item_status(
        db: Session,
        item_id: str,
        status: ItemStatus,
        error_code: str | None = None,
        error_message: str | None = None,
    ) -> bool:
        """Set an item's status and error fields. Returns False if unknown."""
        item = db.query(PlaidItem).filter(PlaidItem.item_id == item_id).first()
        if item is None:
            logger.warning("Status update for unknown PlaidItem %s", item_id)
            return False
        item.status = ItemStatus(status).value
        item.error_code = error_code
        item.error_message = error_message
        item.last_webhook_at = utcnow()
        commit_or_raise(db, f"updating status of item {item_id}")
        logger.info("PlaidItem %s status -> %s", item_id, item.status)
        return True

    def get_access_token(self, item: PlaidItem) -> str:
        """Decrypt an item's access token for an outbound Plaid call."""
        return self._cipher.decrypt(item.access_token)
