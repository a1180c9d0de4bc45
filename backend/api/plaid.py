"""Plaid Link API endpoints.

Server side of the multi-item Plaid Link flow: issuing link tokens (each
one opens a Link session that webhooks later reconcile), listing the
caller's linked items, and rate-limited item deletion.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.orm import Session

from api.helpers import error_response, get_current_user_id
from config import settings
from database import get_db
from integrations.exceptions import PlaidError
from integrations.plaid_client import PlaidClient
from schemas.plaid import (
    DeleteItemResponse,
    DeletionInfoResponse,
    LinkSessionStatusResponse,
    LinkTokenResponse,
    PlaidItemResponse,
)
from services.exceptions import (
    ItemAlreadyDeletedError,
    ItemNotFoundError,
    PersistenceError,
    RateLimitedError,
)
from services.item_deletion_service import ItemDeletionService
from services.link_session_service import LinkSessionService
from services.plaid_item_service import PlaidItemService
from services.token_cipher import TokenCipher

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/plaid", tags=["plaid"])


# ------------------------------------------------------------------
# Dependencies (overridable in tests)
# ------------------------------------------------------------------


def _get_plaid_client(request: Request) -> PlaidClient:
    """The process-wide Plaid client built in ``main.lifespan``."""
    return request.app.state.plaid_client


def get_token_cipher(request: Request) -> TokenCipher:
    return request.app.state.token_cipher


def get_item_service(cipher: TokenCipher = Depends(get_token_cipher)) -> PlaidItemService:
    return PlaidItemService(cipher)


def get_deletion_service(
    client: PlaidClient = Depends(_get_plaid_client),
    item_service: PlaidItemService = Depends(get_item_service),
) -> ItemDeletionService:
    return ItemDeletionService(
        client, item_service, cooldown_days=settings.ITEM_DELETION_COOLDOWN_DAYS
    )


# ------------------------------------------------------------------
# Link tokens and sessions
# ------------------------------------------------------------------


@router.post("/link-token", response_model=LinkTokenResponse)
def create_link_token(
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
    client: PlaidClient = Depends(_get_plaid_client),
):
    """Create a multi-item Link token and open a Link session for it."""
    if not client.is_configured():
        raise HTTPException(status_code=400, detail="Plaid is not configured")

    user_token = LinkSessionService.find_latest_user_token(db, user_id)
    try:
        result = client.create_link_token(user_id, user_token=user_token)
    except PlaidError as e:
        if e.error_code == "INVALID_API_KEYS":
            hint = (
                "Plaid rejected the credentials. Check that PLAID_ENVIRONMENT "
                "matches your keys (sandbox or production). "
                "Each environment has different secrets."
            )
            logger.error("Plaid INVALID_API_KEYS: %s", hint)
            raise HTTPException(status_code=400, detail=hint)
        logger.error("Failed to create Plaid link token: %s", e)
        raise HTTPException(status_code=500, detail="Failed to create link token")

    try:
        LinkSessionService.create(db, user_id, result.link_token, result.user_token)
    except PersistenceError:
        raise HTTPException(status_code=500, detail="Failed to create link session")

    return LinkTokenResponse(link_token=result.link_token, expiration=result.expiration)


@router.get("/link-sessions/{link_token}", response_model=LinkSessionStatusResponse)
def get_link_session_status(
    link_token: str,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    """Progress of a Link flow, polled while the user connects items."""
    session = LinkSessionService.find_by_link_token(db, link_token)
    if session is None or session.user_id != user_id:
        raise HTTPException(status_code=404, detail="Link session not found")

    return LinkSessionStatusResponse(
        link_token=session.link_token,
        status=session.status,
        items_added=session.items_added or 0,
        items_linked=LinkSessionService.count_linked_items(db, session),
        completed_at=session.completed_at,
    )


# ------------------------------------------------------------------
# Items
# ------------------------------------------------------------------


@router.get("/items", response_model=list[PlaidItemResponse])
def list_items(
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    """List the caller's linked items, including errored and revoked ones."""
    items = PlaidItemService.find_items_by_user(db, user_id)
    return [PlaidItemResponse.model_validate(item) for item in items]


@router.get("/items/deletion-info", response_model=DeletionInfoResponse)
def get_deletion_info(
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
    service: ItemDeletionService = Depends(get_deletion_service),
):
    """Whether the caller may delete an item now."""
    info = service.get_deletion_info(db, user_id)
    return DeletionInfoResponse(
        can_delete=info.can_delete,
        last_deletion_date=info.last_deletion_date,
        days_until_next=info.days_until_next,
    )


@router.delete("/items/{item_id}", response_model=DeleteItemResponse)
def delete_item(
    item_id: str,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
    service: ItemDeletionService = Depends(get_deletion_service),
):
    """Soft delete one item, at most once per cooldown window."""
    try:
        item = service.delete_item_with_rate_limit(db, user_id, item_id)
    except RateLimitedError as e:
        last = e.last_deletion_date.isoformat() if e.last_deletion_date else None
        return error_response(
            429,
            str(e),
            days_until_next=e.days_until_next,
            deletion_info={
                "can_delete": False,
                "last_deletion_date": last,
                "days_until_next": e.days_until_next,
            },
        )
    except ItemNotFoundError:
        raise HTTPException(status_code=404, detail=f"Item not found: {item_id}")
    except ItemAlreadyDeletedError:
        raise HTTPException(status_code=409, detail=f"Item already deleted: {item_id}")
    except PersistenceError:
        raise HTTPException(status_code=500, detail="Failed to delete item")

    return DeleteItemResponse(status="deleted", item_id=item.id)
