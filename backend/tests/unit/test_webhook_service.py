"""Tests for WebhookService (non-LINK webhooks)."""

from unittest.mock import patch

import pytest

from models import ItemStatus, PlaidWebhook
from schemas.webhook import parse_webhook_dict
from services.plaid_item_service import PlaidItemService
from services.webhook_service import WebhookService
from tests.fixtures import USER_ID, create_item


def item_webhook(code: str, item_id: str = "item-existing", webhook_type: str = "ITEM", **fields):
    return parse_webhook_dict(
        {"webhook_type": webhook_type, "webhook_code": code, "item_id": item_id, **fields}
    )


@pytest.fixture
def service():
    return WebhookService()


class TestItemWebhooks:
    def test_error_sets_item_error(self, db, service, plaid_item):
        webhook = item_webhook(
            "ERROR",
            error={
                "error_type": "ITEM_ERROR",
                "error_code": "ITEM_LOGIN_REQUIRED",
                "error_message": "the login details of this item have changed",
            },
        )

        record = service.process(db, webhook)

        db.refresh(plaid_item)
        assert plaid_item.status == "error"
        assert plaid_item.error_code == "ITEM_LOGIN_REQUIRED"
        assert plaid_item.error_message == "the login details of this item have changed"
        assert record.processed is True
        assert record.user_id == USER_ID
        assert record.error_code == "ITEM_LOGIN_REQUIRED"

    def test_login_repaired_clears_error(self, db, service, plaid_item):
        PlaidItemService.update_item_status(
            db, plaid_item.item_id, ItemStatus.ERROR, "ITEM_LOGIN_REQUIRED", "login required"
        )

        service.process(db, item_webhook("LOGIN_REPAIRED"))

        db.refresh(plaid_item)
        assert plaid_item.status == "active"
        assert plaid_item.error_code is None

    @pytest.mark.parametrize("code", ["USER_PERMISSION_REVOKED", "USER_ACCOUNT_REVOKED"])
    def test_revocation(self, db, service, plaid_item, code):
        service.process(db, item_webhook(code))

        db.refresh(plaid_item)
        assert plaid_item.status == "revoked"

    def test_pending_expiration_only_logged(self, db, service, plaid_item):
        service.process(
            db, item_webhook("PENDING_EXPIRATION", consent_expiration_time="2026-12-01T00:00:00Z")
        )

        db.refresh(plaid_item)
        assert plaid_item.status == "active"

    def test_unknown_item_is_recorded_but_ignored(self, db, service):
        record = service.process(db, item_webhook("ERROR", item_id="item-unknown"))

        assert record.processed is True
        assert record.user_id is None

    def test_deleted_item_is_not_revived(self, db, service, item_service):
        item = create_item(db, item_service, "item-gone")
        item.status = ItemStatus.DELETED.value
        db.commit()

        service.process(db, item_webhook("LOGIN_REPAIRED", item_id="item-gone"))

        db.refresh(item)
        assert item.status == "deleted"


class TestAuditLog:
    def test_log_only_types_are_stored(self, db, service, plaid_item):
        service.process(db, item_webhook("SYNC_UPDATES_AVAILABLE", webhook_type="TRANSACTIONS"))

        record = db.query(PlaidWebhook).one()
        assert record.webhook_type == "TRANSACTIONS"
        assert record.webhook_code == "SYNC_UPDATES_AVAILABLE"
        assert record.payload["item_id"] == "item-existing"
        assert record.processed is True
        assert record.processed_at is not None

    def test_handler_failure_recorded_and_raised(self, db, service, plaid_item):
        with patch.object(
            PlaidItemService, "update_item_status", side_effect=RuntimeError("db went away")
        ):
            with pytest.raises(RuntimeError):
                service.process(db, item_webhook("USER_PERMISSION_REVOKED"))

        record = db.query(PlaidWebhook).one()
        assert record.processed is False
        assert record.processing_error == "db went away"
