"""Tests for LinkSessionService."""

import pytest
from sqlalchemy.exc import IntegrityError

from models import ItemStatus
from services.exceptions import PersistenceError
from services.link_session_service import LinkSessionService
from tests.fixtures import LINK_TOKEN, OTHER_USER_ID, USER_ID, create_item


class TestCreate:
    def test_new_session_defaults(self, link_session):
        assert link_session.user_id == USER_ID
        assert link_session.link_token == LINK_TOKEN
        assert link_session.status == "created"
        assert link_session.items_added == 0
        assert link_session.completed_at is None
        assert link_session.is_terminal is False

    def test_duplicate_link_token_rejected(self, db, link_session):
        with pytest.raises(PersistenceError) as exc_info:
            LinkSessionService.create(db, USER_ID, LINK_TOKEN)
        assert isinstance(exc_info.value.__cause__, IntegrityError)


class TestFind:
    def test_find_by_link_token(self, db, link_session):
        assert LinkSessionService.find_by_link_token(db, LINK_TOKEN).id == link_session.id
        assert LinkSessionService.find_by_link_token(db, "link-other") is None

    def test_find_latest_user_token(self, db):
        LinkSessionService.create(db, USER_ID, "link-1", plaid_user_token="user-token-1")
        LinkSessionService.create(db, USER_ID, "link-2")
        LinkSessionService.create(db, OTHER_USER_ID, "link-3", plaid_user_token="user-token-x")

        assert LinkSessionService.find_latest_user_token(db, USER_ID) == "user-token-1"
        assert LinkSessionService.find_latest_user_token(db, "nobody") is None


class TestUpdate:
    def test_applies_patch(self, db, link_session):
        LinkSessionService.update(
            db,
            link_session.id,
            status="active",
            link_session_id="ls-1",
            session_metadata={"k": "v"},
        )

        db.refresh(link_session)
        assert link_session.status == "active"
        assert link_session.link_session_id == "ls-1"
        assert link_session.session_metadata == {"k": "v"}

    def test_rejects_unknown_fields(self, db, link_session):
        with pytest.raises(ValueError, match="user_id"):
            LinkSessionService.update(db, link_session.id, user_id="someone-else")

    def test_rejects_invalid_status(self, db, link_session):
        with pytest.raises(ValueError):
            LinkSessionService.update(db, link_session.id, status="exploded")

    def test_unknown_session_is_noop(self, db):
        LinkSessionService.update(db, "missing-id", status="active")


class TestCountLinkedItems:
    def test_counts_live_items_since_session_start(self, db, item_service, link_session):
        create_item(db, item_service, "item-1")
        deleted = create_item(db, item_service, "item-2")
        create_item(db, item_service, "item-3", user_id=OTHER_USER_ID)
        deleted.status = ItemStatus.DELETED.value
        db.commit()

        assert LinkSessionService.count_linked_items(db, link_session) == 1
