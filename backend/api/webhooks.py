"""Plaid webhook endpoint.

Plaid retries any non-2xx response with backoff, so the status code is the
whole contract: 200 once the event is handled or deliberately ignored, 401
for a bad signature, 400 for a body that is not a webhook, and 500 when
processing failed and a retry should happen.
"""

import logging

from fastapi import APIRouter, Depends, Header, Request
from pydantic import ValidationError
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from api.helpers import error_response
from api.plaid import _get_plaid_client, get_item_service
from config import settings
from database import get_db
from integrations.plaid_client import PlaidClient
from schemas.webhook import ItemWebhook, parse_webhook
from services.exceptions import SignatureInvalidError
from services.link_webhook_service import LinkWebhookService
from services.plaid_item_service import PlaidItemService
from services.webhook_service import WebhookService
from services.webhook_verifier import WebhookVerificationPolicy

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/plaid", tags=["webhooks"])


def get_verification_policy(request: Request) -> WebhookVerificationPolicy:
    return request.app.state.verification_policy


def get_link_webhook_service(
    client: PlaidClient = Depends(_get_plaid_client),
    item_service: PlaidItemService = Depends(get_item_service),
) -> LinkWebhookService:
    return LinkWebhookService(
        client, item_service, items_added_mode=settings.LINK_ITEMS_ADDED_MODE
    )


def get_webhook_service() -> WebhookService:
    return WebhookService()


@router.post("/webhook")
async def receive_webhook(
    request: Request,
    plaid_verification: str | None = Header(default=None, alias="Plaid-Verification"),
    db: Session = Depends(get_db),
    policy: WebhookVerificationPolicy = Depends(get_verification_policy),
    link_service: LinkWebhookService = Depends(get_link_webhook_service),
    webhook_service: WebhookService = Depends(get_webhook_service),
):
    """Receive one Plaid webhook delivery."""
    # Signature covers the exact bytes Plaid sent
    body = await request.body()

    try:
        # May fetch a verification key from Plaid
        await run_in_threadpool(policy.check, body, plaid_verification)
    except SignatureInvalidError as e:
        logger.warning("Rejected webhook: %s", e)
        return error_response(401, "Invalid signature")

    try:
        webhook = parse_webhook(body)
    except ValidationError as e:
        logger.warning("Malformed webhook payload: %s", e.errors(include_input=False))
        return error_response(400, "Invalid webhook payload")

    try:
        if isinstance(webhook, ItemWebhook):
            await run_in_threadpool(webhook_service.process, db, webhook)
        else:
            outcome = await run_in_threadpool(link_service.handle, db, webhook)
            logger.info("LINK.%s -> %s", webhook.webhook_code, outcome.value)
    except Exception:
        logger.exception(
            "Webhook processing failed for %s.%s", webhook.webhook_type, webhook.webhook_code
        )
        return error_response(500, "Webhook processing failed")

    return {"received": True}
