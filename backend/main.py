"""FastAPI application entry point."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from api import plaid, webhooks
from config import settings
from database import dispose_engine
from integrations.plaid_client import PlaidClient
from logging_config import setup_logging
from services.token_cipher import TokenCipher
from services.webhook_verifier import PlaidJwtVerifier, WebhookVerificationPolicy

setup_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build process-wide service handles and release them on shutdown."""
    plaid_client = PlaidClient()
    if not plaid_client.is_configured():
        logger.warning("Plaid credentials not configured; link tokens and exchanges will fail")

    app.state.plaid_client = plaid_client
    app.state.token_cipher = TokenCipher.from_settings()
    app.state.verification_policy = WebhookVerificationPolicy(
        PlaidJwtVerifier(plaid_client, max_age_seconds=settings.PLAID_WEBHOOK_MAX_AGE_SECONDS),
        required=settings.PLAID_WEBHOOK_VERIFICATION_REQUIRED,
    )
    logger.info(
        "Started (plaid_env=%s, webhook_verification_required=%s, items_added_mode=%s)",
        settings.PLAID_ENVIRONMENT,
        settings.PLAID_WEBHOOK_VERIFICATION_REQUIRED,
        settings.LINK_ITEMS_ADDED_MODE,
    )
    try:
        yield
    finally:
        plaid_client.close()
        dispose_engine()


app = FastAPI(
    title="Plaid Link Ledger",
    description="Plaid Link session reconciliation and item lifecycle",
    version="0.1.0",
    lifespan=lifespan,
)

# CORS configuration for frontend
app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:5173"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include API routers
app.include_router(plaid.router)
app.include_router(webhooks.router)


@app.get("/health")
def health_check():
    """Health check endpoint."""
    return {"status": "ok"}
