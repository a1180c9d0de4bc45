"""Item deletion service - rate-limited soft deletion of Plaid items.

A user may complete one deletion per cooldown window (30 days by default).
Every deletion is written to ``plaid_item_deletions``.  The window itself is
claimed through the user's ``plaid_deletion_cooldowns`` row with a single
conditional UPDATE before Plaid is called, so concurrent delete requests
cannot both get through.
"""

import logging
import math
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable

from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from integrations.exceptions import PlaidError
from models.plaid_deletion_cooldown import PlaidDeletionCooldown
from models.plaid_item import ItemStatus, PlaidItem
from models.plaid_item_deletion import PlaidItemDeletion
from models.utils import as_utc, utcnow
from services.exceptions import (
    ItemAlreadyDeletedError,
    ItemNotFoundError,
    PersistenceError,
    RateLimitedError,
)
from services.plaid_item_service import PlaidItemService, commit_or_raise
from services.token_cipher import TokenDecryptionError

logger = logging.getLogger(__name__)

DEFAULT_COOLDOWN_DAYS = 30
USER_INITIATED = "user_initiated"


@dataclass
class DeletionInfo:
    can_delete: bool
    last_deletion_date: datetime | None = None
    days_until_next: int | None = None


@dataclass
class BulkDeletionResult:
    processed: int
    failures: list[str] = field(default_factory=list)


class ItemDeletionService:
    """Deletes items, enforcing the per-user cooldown."""

    def __init__(
        self,
        plaid_client,
        item_service: PlaidItemService,
        cooldown_days: int = DEFAULT_COOLDOWN_DAYS,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._plaid = plaid_client
        self._items = item_service
        self._cooldown = timedelta(days=cooldown_days)
        self._clock = clock

    def _last_deletion(self, db: Session, user_id: str) -> PlaidItemDeletion | None:
        return (
            db.query(PlaidItemDeletion)
            .filter(PlaidItemDeletion.user_id == user_id)
            .order_by(PlaidItemDeletion.deleted_at.desc())
            .first()
        )

    def _last_deletion_at(self, db: Session, user_id: str) -> datetime | None:
        """Newest of the recorded deletion and any claim still in flight."""
        last = self._last_deletion(db, user_id)
        claimed_at = (
            db.query(PlaidDeletionCooldown.last_deletion_at)
            .filter(PlaidDeletionCooldown.user_id == user_id)
            .scalar()
        )
        candidates = [as_utc(v) for v in (last.deleted_at if last else None, claimed_at) if v is not None]
        return max(candidates, default=None)

    def get_deletion_info(self, db: Session, user_id: str) -> DeletionInfo:
        """Whether the user may delete now, and if not, for how long."""
        last_at = self._last_deletion_at(db, user_id)
        if last_at is None:
            return DeletionInfo(can_delete=True)

        next_allowed = last_at + self._cooldown
        remaining = next_allowed - self._clock()
        if remaining <= timedelta(0):
            return DeletionInfo(can_delete=True, last_deletion_date=last_at)

        return DeletionInfo(
            can_delete=False,
            last_deletion_date=last_at,
            days_until_next=math.ceil(remaining / timedelta(days=1)),
        )

    def can_user_delete_item(self, db: Session, user_id: str) -> bool:
        return self.get_deletion_info(db, user_id).can_delete

    def delete_item_with_rate_limit(self, db: Session, user_id: str, item_db_id: str) -> PlaidItem:
        """Soft delete one of the user's items if the cooldown has elapsed.

        The cooldown slot is claimed and committed before Plaid's
        /item/remove is called.  If the remote call fails the local soft
        delete still happens (the item may already be gone at Plaid); if the
        local write fails the slot is handed back.

        Raises:
            RateLimitedError: a deletion already happened inside the window.
            ItemNotFoundError: no such item for this user.
            ItemAlreadyDeletedError: the item is already soft deleted.
        """
        info = self.get_deletion_info(db, user_id)
        if not info.can_delete:
            logger.info(
                "Deletion rate limit hit for user %s (%d days left)", user_id, info.days_until_next
            )
            raise RateLimitedError(info.days_until_next, info.last_deletion_date)

        item = self._items.get_user_item(db, user_id, item_db_id)
        if item is None:
            raise ItemNotFoundError("Item not found or does not belong to user")
        if item.status == ItemStatus.DELETED.value:
            raise ItemAlreadyDeletedError("Item is already deleted")

        now = self._claim(db, user_id)

        self._remove_remote(user_id, item)

        item.status = ItemStatus.DELETED.value
        item.deleted_at = now
        db.add(self._deletion_record(user_id, item, now, USER_INITIATED))
        try:
            commit_or_raise(db, f"deleting item {item.item_id}")
        except PersistenceError:
            self._release_claim(db, user_id, now)
            raise

        logger.info(
            "Item %s (%s) soft deleted for user %s",
            item.item_id, item.institution_name, user_id,
        )
        return item

    def delete_all_user_items(self, db: Session, user_id: str, reason: str) -> BulkDeletionResult:
        """System-initiated removal of every live item (account offboarding).

        Skips the rate limit; a failed remote removal is recorded and the
        remaining items are still processed.
        """
        items = (
            db.query(PlaidItem)
            .filter(PlaidItem.user_id == user_id, PlaidItem.status != ItemStatus.DELETED.value)
            .all()
        )
        if not items:
            return BulkDeletionResult(processed=0)

        failures: list[str] = []
        for item in items:
            error = self._remove_remote(user_id, item)
            if error is not None:
                failures.append(f"{item.institution_name or item.item_id}: {error}")

        now = self._clock()
        self._ensure_cooldown_row(db, user_id)
        db.query(PlaidDeletionCooldown).filter(PlaidDeletionCooldown.user_id == user_id).update(
            {PlaidDeletionCooldown.last_deletion_at: now}, synchronize_session=False
        )
        for item in items:
            item.status = ItemStatus.DELETED.value
            item.deleted_at = now
            db.add(self._deletion_record(user_id, item, now, reason))
        commit_or_raise(db, f"bulk deleting items for user {user_id}")

        logger.info(
            "Bulk deletion for user %s: %d items, %d remote failures (%s)",
            user_id, len(items), len(failures), reason,
        )
        return BulkDeletionResult(processed=len(items), failures=failures)

    def get_user_deleted_items(self, db: Session, user_id: str) -> list[PlaidItemDeletion]:
        """Deletion audit trail for a user, newest first."""
        return (
            db.query(PlaidItemDeletion)
            .filter(PlaidItemDeletion.user_id == user_id)
            .order_by(PlaidItemDeletion.deleted_at.desc())
            .all()
        )

    def get_deletion_count(self, db: Session, user_id: str, days: int = DEFAULT_COOLDOWN_DAYS) -> int:
        since = self._clock() - timedelta(days=days)
        return (
            db.query(PlaidItemDeletion)
            .filter(PlaidItemDeletion.user_id == user_id, PlaidItemDeletion.deleted_at >= since)
            .count()
        )

    # ------------------------------------------------------------------
    # Cooldown claim
    # ------------------------------------------------------------------

    def _ensure_cooldown_row(self, db: Session, user_id: str) -> None:
        """Create the user's cooldown row, seeded from the audit log."""
        exists = (
            db.query(PlaidDeletionCooldown.user_id)
            .filter(PlaidDeletionCooldown.user_id == user_id)
            .scalar()
        )
        if exists is not None:
            return

        last = self._last_deletion(db, user_id)
        db.add(
            PlaidDeletionCooldown(
                user_id=user_id, last_deletion_at=last.deleted_at if last else None
            )
        )
        try:
            db.commit()
        except IntegrityError:
            # Inserted by a concurrent request
            db.rollback()
        except SQLAlchemyError as e:
            db.rollback()
            raise PersistenceError(f"Failed to create deletion cooldown for user {user_id}") from e

    def _claim(self, db: Session, user_id: str) -> datetime:
        """Take the user's deletion slot for now, or raise RateLimitedError.

        Only one of any number of concurrent callers sees its UPDATE match.
        """
        self._ensure_cooldown_row(db, user_id)
        now = self._clock()
        claimed = (
            db.query(PlaidDeletionCooldown)
            .filter(
                PlaidDeletionCooldown.user_id == user_id,
                or_(
                    PlaidDeletionCooldown.last_deletion_at.is_(None),
                    PlaidDeletionCooldown.last_deletion_at <= now - self._cooldown,
                ),
            )
            .update({PlaidDeletionCooldown.last_deletion_at: now}, synchronize_session=False)
        )
        if claimed != 1:
            db.rollback()
            info = self.get_deletion_info(db, user_id)
            logger.info("Deletion slot for user %s already taken", user_id)
            raise RateLimitedError(info.days_until_next or 1, info.last_deletion_date)

        commit_or_raise(db, f"claiming deletion slot for user {user_id}")
        return now

    def _release_claim(self, db: Session, user_id: str, claimed_at: datetime) -> None:
        """Hand back a claim whose deletion was never recorded."""
        try:
            last = self._last_deletion(db, user_id)
            db.query(PlaidDeletionCooldown).filter(
                PlaidDeletionCooldown.user_id == user_id,
                PlaidDeletionCooldown.last_deletion_at == claimed_at,
            ).update(
                {PlaidDeletionCooldown.last_deletion_at: last.deleted_at if last else None},
                synchronize_session=False,
            )
            db.commit()
        except SQLAlchemyError:
            db.rollback()
            logger.exception("Could not release deletion slot for user %s", user_id)

    def _remove_remote(self, user_id: str, item: PlaidItem) -> str | None:
        """Call Plaid /item/remove; returns the error message on failure."""
        try:
            access_token = self._items.get_access_token(item)
            self._plaid.remove_item(access_token)
        except (PlaidError, TokenDecryptionError) as e:
            logger.warning(
                "Plaid item removal failed for %s (user %s), continuing with soft delete: %s",
                item.item_id, user_id, e,
            )
            return str(e)
        logger.info("Plaid item %s removed via API", item.item_id)
        return None

    @staticmethod
    def _deletion_record(
        user_id: str, item: PlaidItem, deleted_at: datetime, reason: str
    ) -> PlaidItemDeletion:
        return PlaidItemDeletion(
            user_id=user_id,
            item_id=item.item_id,
            institution_id=item.institution_id,
            institution_name=item.institution_name,
            deleted_at=deleted_at,
            reason=reason,
        )
