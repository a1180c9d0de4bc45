"""Tests for ORM models and model utilities."""

from datetime import datetime, timezone

from models import LinkSessionStatus, PlaidLinkSession
from models.utils import as_utc, generate_uuid


class TestPlaidLinkSession:
    def test_terminal_only_once_completed(self, db, link_session):
        link_session.status = LinkSessionStatus.FAILED.value
        db.commit()
        assert link_session.is_terminal is False

        link_session.completed_at = datetime.now(timezone.utc)
        db.commit()
        assert link_session.is_terminal is True

    def test_metadata_column_name(self):
        assert "metadata" in PlaidLinkSession.__table__.columns
        assert PlaidLinkSession.session_metadata.key == "session_metadata"


class TestUtils:
    def test_as_utc_attaches_timezone(self):
        naive = datetime(2026, 1, 1, 12, 0)
        assert as_utc(naive) == datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)

    def test_as_utc_keeps_aware_and_none(self):
        aware = datetime(2026, 1, 1, tzinfo=timezone.utc)
        assert as_utc(aware) is aware
        assert as_utc(None) is None

    def test_generate_uuid_unique(self):
        assert generate_uuid() != generate_uuid()
        assert len(generate_uuid()) == 36
