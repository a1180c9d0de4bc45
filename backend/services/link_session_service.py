"""Link session service - durable store of Plaid Link flows."""

import logging

from sqlalchemy import func
from sqlalchemy.orm import Session

from models.plaid_item import ItemStatus, PlaidItem
from models.plaid_link_session import LinkSessionStatus, PlaidLinkSession
from models.utils import utcnow
from services.plaid_item_service import commit_or_raise

logger = logging.getLogger(__name__)

_UPDATABLE_FIELDS = frozenset(
    {
        "link_session_id",
        "status",
        "items_added",
        "public_tokens",
        "session_metadata",
        "completed_at",
    }
)


class LinkSessionService:
    """Repository for PlaidLinkSession rows."""

    @staticmethod
    def create(
        db: Session,
        user_id: str,
        link_token: str,
        plaid_user_token: str | None = None,
    ) -> PlaidLinkSession:
        """Record a new Link flow when its link token is issued."""
        session = PlaidLinkSession(
            user_id=user_id,
            link_token=link_token,
            plaid_user_token=plaid_user_token,
            status=LinkSessionStatus.CREATED.value,
            items_added=0,
            session_metadata={},
        )
        db.add(session)
        commit_or_raise(db, "creating link session")
        db.refresh(session)
        logger.info("Created link session %s for user %s", session.id, user_id)
        return session

    @staticmethod
    def find_by_link_token(db: Session, link_token: str) -> PlaidLinkSession | None:
        return (
            db.query(PlaidLinkSession)
            .filter(PlaidLinkSession.link_token == link_token)
            .first()
        )

    @staticmethod
    def find_latest_user_token(db: Session, user_id: str) -> str | None:
        """Most recent Plaid user token issued to this user, for reuse."""
        row = (
            db.query(PlaidLinkSession.plaid_user_token)
            .filter(
                PlaidLinkSession.user_id == user_id,
                PlaidLinkSession.plaid_user_token.isnot(None),
            )
            .order_by(PlaidLinkSession.created_at.desc())
            .first()
        )
        return row[0] if row else None

    @staticmethod
    def lock(db: Session, session_id: str) -> PlaidLinkSession | None:
        """Open a write transaction on the session row and return it fresh.

        The row is touched first so concurrent writers queue behind this
        transaction (SQLite's database lock, PostgreSQL's row lock) until
        the caller's :meth:`update` commits.  Read-modify-write of
        ``items_added`` and ``metadata`` goes through here.
        """
        db.query(PlaidLinkSession).filter(PlaidLinkSession.id == session_id).update(
            {PlaidLinkSession.updated_at: utcnow()}, synchronize_session=False
        )
        return (
            db.query(PlaidLinkSession)
            .filter(PlaidLinkSession.id == session_id)
            .populate_existing()
            .with_for_update()
            .one_or_none()
        )

    @staticmethod
    def update(db: Session, session_id: str, **patch) -> None:
        """Apply a partial update to one session and commit.

        Raises:
            ValueError: ``patch`` names a field that is not updatable.
        """
        unknown = set(patch) - _UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Cannot update link session fields: {sorted(unknown)}")

        session = db.get(PlaidLinkSession, session_id)
        if session is None:
            logger.warning("Update for unknown link session %s", session_id)
            return
        for field, value in patch.items():
            if field == "status":
                value = LinkSessionStatus(value).value
            setattr(session, field, value)
        commit_or_raise(db, f"updating link session {session_id}")

    @staticmethod
    def count_linked_items(db: Session, session: PlaidLinkSession) -> int:
        """Count the user's live items created since the session started.

        Derived from the item table rather than the ``items_added`` counter,
        so it stays correct under webhook redelivery.
        """
        return (
            db.query(func.count(PlaidItem.id))
            .filter(
                PlaidItem.user_id == session.user_id,
                PlaidItem.status != ItemStatus.DELETED.value,
                PlaidItem.created_at >= session.created_at,
            )
            .scalar()
        ) or 0
