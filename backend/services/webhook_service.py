"""Webhook service - audit log and handling for non-LINK Plaid webhooks."""

import logging

from sqlalchemy.orm import Session

from models.plaid_item import ItemStatus, PlaidItem
from models.plaid_webhook import PlaidWebhook
from models.utils import utcnow
from schemas.webhook import ItemWebhook
from services.plaid_item_service import PlaidItemService, commit_or_raise

logger = logging.getLogger(__name__)

_REVOKED_CODES = frozenset({"USER_PERMISSION_REVOKED", "USER_ACCOUNT_REVOKED"})
_LOG_ONLY_TYPES = frozenset({"TRANSACTIONS", "AUTH", "ASSETS", "INCOME", "LIABILITIES", "INVESTMENTS_TRANSACTIONS", "HOLDINGS"})


class WebhookService:
    """Stores every non-LINK webhook and applies ITEM status changes."""

    def process(self, db: Session, webhook: ItemWebhook) -> PlaidWebhook:
        """Record and handle one webhook.

        Raises:
            Exception: handler failures, after ``processing_error`` is saved
                on the audit row.
        """
        user_id = self._find_user_by_item_id(db, webhook.item_id)
        record = PlaidWebhook(
            item_id=webhook.item_id,
            user_id=user_id,
            webhook_type=webhook.webhook_type,
            webhook_code=webhook.webhook_code,
            error_code=webhook.error.error_code if webhook.error else None,
            payload=webhook.model_dump(mode="json"),
        )
        db.add(record)
        commit_or_raise(db, "storing webhook")
        logger.info(
            "Webhook %s.%s stored for item %s",
            webhook.webhook_type, webhook.webhook_code, webhook.item_id,
        )

        try:
            if webhook.webhook_type == "ITEM":
                self._handle_item_webhook(db, webhook, user_id)
            elif webhook.webhook_type in _LOG_ONLY_TYPES:
                logger.info(
                    "%s.%s received for item %s, no action needed",
                    webhook.webhook_type, webhook.webhook_code, webhook.item_id,
                )
            else:
                logger.warning(
                    "Unknown webhook type %s.%s", webhook.webhook_type, webhook.webhook_code
                )
        except Exception as e:
            db.rollback()
            record.processing_error = str(e)
            commit_or_raise(db, "recording webhook failure")
            raise

        record.processed = True
        record.processed_at = utcnow()
        commit_or_raise(db, "marking webhook processed")
        return record

    @staticmethod
    def _find_user_by_item_id(db: Session, item_id: str | None) -> str | None:
        if not item_id:
            return None
        row = db.query(PlaidItem.user_id).filter(PlaidItem.item_id == item_id).first()
        return row[0] if row else None

    @staticmethod
    def _handle_item_webhook(db: Session, webhook: ItemWebhook, user_id: str | None) -> None:
        code = webhook.webhook_code
        if not webhook.item_id or user_id is None:
            logger.info("ITEM.%s for unknown item %s, ignoring", code, webhook.item_id)
            return
        item = PlaidItemService.find_by_item_id(db, webhook.item_id)
        if item is not None and item.status == ItemStatus.DELETED.value:
            logger.info("ITEM.%s for deleted item %s, ignoring", code, webhook.item_id)
            return

        if code == "ERROR" and webhook.error:
            PlaidItemService.update_item_status(
                db,
                webhook.item_id,
                ItemStatus.ERROR,
                error_code=webhook.error.error_code,
                error_message=webhook.error.error_message,
            )
            logger.warning(
                "Item %s error for user %s: %s",
                webhook.item_id, user_id, webhook.error.error_code,
            )
        elif code == "LOGIN_REPAIRED":
            PlaidItemService.update_item_status(db, webhook.item_id, ItemStatus.ACTIVE)
        elif code in _REVOKED_CODES:
            PlaidItemService.update_item_status(db, webhook.item_id, ItemStatus.REVOKED)
            logger.info("User %s revoked item %s", user_id, webhook.item_id)
        elif code == "PENDING_EXPIRATION":
            logger.warning(
                "Item %s consent expires at %s",
                webhook.item_id, getattr(webhook, "consent_expiration_time", None),
            )
        else:
            logger.info("ITEM.%s received for item %s", code, webhook.item_id)
