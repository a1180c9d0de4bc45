"""Integration tests for the Plaid webhook endpoint."""

import hashlib
import json
import time

import jwt
import pytest
from cryptography.hazmat.primitives.asymmetric import ec
from jwt.algorithms import ECAlgorithm

from api.plaid import _get_plaid_client
from api.webhooks import get_link_webhook_service, get_verification_policy
from integrations.exceptions import PlaidUnavailableError
from main import app
from models import PlaidItem, PlaidLinkSession, PlaidWebhook
from services.link_webhook_service import LinkWebhookService
from services.webhook_verifier import PlaidJwtVerifier, WebhookVerificationPolicy
from tests.fixtures import LINK_TOKEN, USER_ID
from tests.fixtures.mocks import ExplodingExchanger, MockPlaidClient

WEBHOOK_URL = "/api/plaid/webhook"


def post_webhook(client, payload: dict, headers: dict | None = None):
    return client.post(
        WEBHOOK_URL,
        content=json.dumps(payload).encode(),
        headers={"Content-Type": "application/json", **(headers or {})},
    )


def item_add_result(public_token: str = "public-a", link_token: str = LINK_TOKEN) -> dict:
    return {
        "webhook_type": "LINK",
        "webhook_code": "ITEM_ADD_RESULT",
        "link_token": link_token,
        "link_session_id": "ls-1",
        "public_token": public_token,
        "institution": {"institution_id": "ins_9", "name": "Chase"},
    }


class TestLinkWebhooks:
    def test_item_add_result_creates_item(self, client, db, link_session):
        response = post_webhook(client, item_add_result())

        assert response.status_code == 200
        assert response.json() == {"received": True}
        item = db.query(PlaidItem).filter_by(item_id="item-a").one()
        assert item.user_id == USER_ID
        db.refresh(link_session)
        assert link_session.items_added == 1
        assert link_session.status == "active"

    def test_full_flow(self, client, db, link_session):
        post_webhook(
            client,
            {"webhook_type": "LINK", "webhook_code": "HANDOFF", "link_token": LINK_TOKEN, "link_session_id": "ls-1"},
        )
        post_webhook(client, item_add_result("public-a"))
        response = post_webhook(
            client,
            {
                "webhook_type": "LINK",
                "webhook_code": "SESSION_FINISHED",
                "link_token": LINK_TOKEN,
                "link_session_id": "ls-1",
                "status": "SUCCESS",
                "public_tokens": ["public-a", "public-b"],
            },
        )

        assert response.status_code == 200
        assert db.query(PlaidItem).count() == 2
        db.refresh(link_session)
        assert link_session.status == "completed"
        assert link_session.link_session_id == "ls-1"

    def test_unknown_session_acknowledged_without_writes(self, client, db, mock_plaid_client):
        response = post_webhook(client, item_add_result(link_token="link-never-issued"))

        assert response.status_code == 200
        assert response.json() == {"received": True}
        assert mock_plaid_client.exchanged == []
        assert db.query(PlaidItem).count() == 0
        assert db.query(PlaidLinkSession).count() == 0

    def test_unhandled_code_acknowledged(self, client, link_session):
        response = post_webhook(
            client, {"webhook_type": "LINK", "webhook_code": "EVENTS", "link_token": LINK_TOKEN}
        )
        assert response.status_code == 200

    def test_processing_failure_returns_500(self, client, db, item_service, link_session):
        app.dependency_overrides[get_link_webhook_service] = lambda: LinkWebhookService(
            ExplodingExchanger(), item_service
        )

        response = post_webhook(client, item_add_result())

        assert response.status_code == 500
        assert response.json() == {"error": "Webhook processing failed"}
        db.refresh(link_session)
        assert link_session.status == "failed"

    def test_exchange_error_returns_500_so_plaid_retries(self, client, db, link_session):
        flaky = MockPlaidClient(exchange_errors={"public-a": PlaidUnavailableError("timeout")})
        app.dependency_overrides[_get_plaid_client] = lambda: flaky

        response = post_webhook(client, item_add_result())

        assert response.status_code == 500


class TestPayloadValidation:
    @pytest.mark.parametrize(
        "body",
        [
            b"this is not json",
            b'{"webhook_code": "HANDOFF"}',
            b'{"webhook_type": "LINK", "webhook_code": "HANDOFF"}',
        ],
    )
    def test_malformed_payload_returns_400(self, client, body):
        response = client.post(
            WEBHOOK_URL, content=body, headers={"Content-Type": "application/json"}
        )

        assert response.status_code == 400
        assert response.json() == {"error": "Invalid webhook payload"}


class TestItemWebhooks:
    def test_item_error_updates_status(self, client, db, plaid_item):
        response = post_webhook(
            client,
            {
                "webhook_type": "ITEM",
                "webhook_code": "ERROR",
                "item_id": plaid_item.item_id,
                "error": {"error_code": "ITEM_LOGIN_REQUIRED", "error_message": "login required"},
            },
        )

        assert response.status_code == 200
        db.refresh(plaid_item)
        assert plaid_item.status == "error"
        assert db.query(PlaidWebhook).count() == 1


# ---------------------------------------------------------------------------
# Signatures
# ---------------------------------------------------------------------------

KEY_ID = "kid-webhook-test"


@pytest.fixture(scope="module")
def signing_key():
    return ec.generate_private_key(ec.SECP256R1())


@pytest.fixture
def signed_client(client, signing_key):
    """Client whose policy verifies against a key served by the mock Plaid client."""
    jwk = ECAlgorithm.to_jwk(signing_key.public_key(), as_dict=True)
    jwk.update({"alg": "ES256", "kid": KEY_ID, "use": "sig", "expired_at": None})
    key_source = MockPlaidClient(verification_keys={KEY_ID: jwk})

    def use_policy(required: bool):
        policy = WebhookVerificationPolicy(PlaidJwtVerifier(key_source), required=required)
        app.dependency_overrides[get_verification_policy] = lambda: policy

    use_policy(False)
    client.use_policy = use_policy
    return client


def sign(private_key, body: bytes) -> str:
    return jwt.encode(
        {"iat": int(time.time()), "request_body_sha256": hashlib.sha256(body).hexdigest()},
        private_key,
        algorithm="ES256",
        headers={"kid": KEY_ID},
    )


class TestSignatureEnforcement:
    def test_valid_signature_processed(self, signed_client, signing_key, db, link_session):
        body = json.dumps(item_add_result()).encode()

        response = signed_client.post(
            WEBHOOK_URL,
            content=body,
            headers={"Content-Type": "application/json", "Plaid-Verification": sign(signing_key, body)},
        )

        assert response.status_code == 200
        assert db.query(PlaidItem).count() == 1

    def test_invalid_signature_rejected_without_writes(
        self, signed_client, signing_key, db, link_session, mock_plaid_client
    ):
        body = json.dumps(item_add_result()).encode()
        signature = sign(signing_key, b"some other body")

        response = signed_client.post(
            WEBHOOK_URL,
            content=body,
            headers={"Content-Type": "application/json", "Plaid-Verification": signature},
        )

        assert response.status_code == 401
        assert response.json() == {"error": "Invalid signature"}
        assert mock_plaid_client.exchanged == []
        assert db.query(PlaidItem).count() == 0
        assert db.query(PlaidWebhook).count() == 0
        db.refresh(link_session)
        assert link_session.status == "created"
        assert link_session.session_metadata == {}

    def test_unsigned_webhook_processed_when_not_required(self, signed_client, db, link_session):
        response = post_webhook(signed_client, item_add_result())

        assert response.status_code == 200
        assert db.query(PlaidItem).count() == 1

    def test_unsigned_webhook_rejected_when_required(self, signed_client, db, link_session):
        signed_client.use_policy(True)

        response = post_webhook(signed_client, item_add_result())

        assert response.status_code == 401
        assert db.query(PlaidItem).count() == 0
