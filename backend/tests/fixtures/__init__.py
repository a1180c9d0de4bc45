"""Test fixtures and sample data."""
import pytest
from sqlalchemy.orm import Session

from models import PlaidItem, PlaidLinkSession
from services.link_session_service import LinkSessionService
from services.plaid_item_service import PlaidItemService
from services.token_cipher import TokenCipher

USER_ID = "user-1"
OTHER_USER_ID = "user-2"
LINK_TOKEN = "link-sandbox-abc123"


def create_item(
    db: Session,
    item_service: PlaidItemService,
    item_id: str,
    user_id: str = USER_ID,
    institution_name: str | None = "First Platypus Bank",
) -> PlaidItem:
    """Create a PlaidItem through the repository (encrypting its token).

    This is a helper function (not a fixture) for tests that need several
    items with different ids.
    """
    result = item_service.upsert_item(
        db,
        user_id,
        item_id,
        f"access-{item_id}",
        institution_id="ins_109508",
        institution_name=institution_name,
    )
    return result.item


@pytest.fixture
def cipher() -> TokenCipher:
    """A cipher with a fresh random key."""
    return TokenCipher(TokenCipher.generate_key())


@pytest.fixture
def item_service(cipher: TokenCipher) -> PlaidItemService:
    return PlaidItemService(cipher)


@pytest.fixture
def link_session(db: Session) -> PlaidLinkSession:
    """Create a freshly issued Link session."""
    return LinkSessionService.create(db, USER_ID, LINK_TOKEN, plaid_user_token="user-sandbox-test")


@pytest.fixture
def plaid_item(db: Session, item_service: PlaidItemService) -> PlaidItem:
    """Create an active item owned by USER_ID."""
    return create_item(db, item_service, "item-existing")
