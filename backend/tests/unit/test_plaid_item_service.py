"""Tests for PlaidItemService."""

from unittest.mock import patch

import pytest
from sqlalchemy.exc import OperationalError

from models import ItemStatus, PlaidItem
from services.exceptions import PersistenceError
from services.plaid_item_service import PlaidItemService
from services.token_cipher import TokenCipher, TokenDecryptionError
from tests.fixtures import OTHER_USER_ID, USER_ID, create_item


class TestUpsertItem:
    def test_creates_new_item(self, db, item_service):
        result = item_service.upsert_item(
            db, USER_ID, "item-1", "access-1", "ins_1", "Chase"
        )

        assert result.created is True
        assert result.owned_by_other_user is False
        assert result.item.status == "active"
        assert result.item.institution_name == "Chase"
        assert db.query(PlaidItem).count() == 1

    def test_existing_item_is_updated_not_duplicated(self, db, item_service):
        item_service.upsert_item(db, USER_ID, "item-1", "access-old", "ins_1", "Chase")

        result = item_service.upsert_item(db, USER_ID, "item-1", "access-new")

        assert result.created is False
        assert db.query(PlaidItem).count() == 1
        assert item_service.get_access_token(result.item) == "access-new"
        # Institution is kept when not provided
        assert result.item.institution_name == "Chase"

    def test_relinking_reactivates_errored_item(self, db, item_service):
        create_item(db, item_service, "item-1")
        PlaidItemService.update_item_status(
            db, "item-1", ItemStatus.ERROR, "ITEM_LOGIN_REQUIRED", "Login required"
        )

        result = item_service.upsert_item(db, USER_ID, "item-1", "access-2")

        assert result.item.status == "active"
        assert result.item.error_code is None
        assert result.item.error_message is None

    def test_relinking_restores_deleted_item(self, db, item_service):
        item = create_item(db, item_service, "item-1")
        item.status = ItemStatus.DELETED.value
        db.commit()

        result = item_service.upsert_item(db, USER_ID, "item-1", "access-2")

        assert result.item.status == "active"
        assert result.item.deleted_at is None

    def test_refuses_item_owned_by_other_user(self, db, item_service):
        create_item(db, item_service, "item-1", user_id=OTHER_USER_ID)

        result = item_service.upsert_item(db, USER_ID, "item-1", "access-mine")

        assert result.owned_by_other_user is True
        assert result.item.user_id == OTHER_USER_ID
        assert item_service.get_access_token(result.item) == "access-item-1"

    def test_commit_failure_raises_persistence_error(self, db, item_service):
        with patch.object(db, "commit", side_effect=OperationalError("INSERT", {}, Exception("disk full"))):
            with pytest.raises(PersistenceError):
                item_service.upsert_item(db, USER_ID, "item-1", "access-1")


class TestQueries:
    def test_find_items_by_user_excludes_deleted(self, db, item_service):
        create_item(db, item_service, "item-1")
        deleted = create_item(db, item_service, "item-2")
        create_item(db, item_service, "item-3", user_id=OTHER_USER_ID)
        deleted.status = ItemStatus.DELETED.value
        db.commit()

        items = PlaidItemService.find_items_by_user(db, USER_ID)
        assert [i.item_id for i in items] == ["item-1"]

        with_deleted = PlaidItemService.find_items_by_user(db, USER_ID, include_deleted=True)
        assert {i.item_id for i in with_deleted} == {"item-1", "item-2"}

    def test_get_user_item_checks_ownership(self, db, item_service):
        item = create_item(db, item_service, "item-1", user_id=OTHER_USER_ID)

        assert PlaidItemService.get_user_item(db, USER_ID, item.id) is None
        assert PlaidItemService.get_user_item(db, OTHER_USER_ID, item.id).id == item.id

    def test_list_active_items(self, db, item_service):
        create_item(db, item_service, "item-1")
        create_item(db, item_service, "item-2")
        PlaidItemService.update_item_status(db, "item-2", ItemStatus.REVOKED)

        assert [i.item_id for i in PlaidItemService.list_active_items(db)] == ["item-1"]


class TestUpdateItemStatus:
    def test_sets_status_and_error(self, db, item_service):
        create_item(db, item_service, "item-1")

        updated = PlaidItemService.update_item_status(
            db, "item-1", ItemStatus.ERROR, "ITEM_LOGIN_REQUIRED", "the login details changed"
        )

        assert updated is True
        item = PlaidItemService.find_by_item_id(db, "item-1")
        assert item.status == "error"
        assert item.error_code == "ITEM_LOGIN_REQUIRED"
        assert item.error_message == "the login details changed"
        assert item.last_webhook_at is not None

    def test_unknown_item_returns_false(self, db):
        assert PlaidItemService.update_item_status(db, "missing", ItemStatus.ACTIVE) is False


class TestAccessToken:
    def test_other_key_cannot_decrypt(self, db, item_service):
        item = create_item(db, item_service, "item-1")
        other = PlaidItemService(TokenCipher(TokenCipher.generate_key()))

        with pytest.raises(TokenDecryptionError):
            other.get_access_token(item)

    def test_repr_hides_token(self, db, item_service):
        item = create_item(db, item_service, "item-1")
        assert "access" not in repr(item)
