"""Plaid webhook signature verification.

Plaid signs each webhook with an ES256 JWT in the ``Plaid-Verification``
header.  The JWT header names the signing key (``kid``), fetched from
``/webhook_verification_key/get``; the payload carries ``iat`` and the
SHA-256 of the raw request body.

Whether an *unsigned* webhook is accepted is an explicit deployment choice
(:attr:`WebhookVerificationPolicy.required`), not an implicit fallback.
"""

import hashlib
import hmac
import json
import logging
import time
from enum import Enum
from typing import Callable, Protocol

import jwt
from jwt.algorithms import ECAlgorithm

from integrations.exceptions import PlaidError
from services.exceptions import SignatureInvalidError

logger = logging.getLogger(__name__)


class VerificationKeySource(Protocol):
    def get_webhook_verification_key(self, key_id: str) -> dict: ...


class VerificationResult(str, Enum):
    VERIFIED = "verified"
    UNSIGNED = "unsigned"


class PlaidJwtVerifier:
    """Validates a Plaid-Verification JWT against the raw request body.

    Keys are cached per ``kid``; a key whose ``expired_at`` is set is
    dropped and refetched so rotated keys stop verifying.
    """

    def __init__(
        self,
        key_source: VerificationKeySource,
        max_age_seconds: int = 300,
        clock: Callable[[], float] = time.time,
    ):
        self._key_source = key_source
        self._max_age_seconds = max_age_seconds
        self._clock = clock
        self._keys: dict[str, dict] = {}

    def _get_key(self, key_id: str) -> dict:
        key = self._keys.get(key_id)
        if key is None or key.get("expired_at"):
            key = self._key_source.get_webhook_verification_key(key_id)
            self._keys[key_id] = key
        return key

    def verify(self, body: bytes, signed_jwt: str) -> bool:
        """Return True if ``signed_jwt`` is a valid signature over ``body``."""
        try:
            header = jwt.get_unverified_header(signed_jwt)
        except jwt.InvalidTokenError as e:
            logger.warning("Malformed webhook JWT: %s", e)
            return False

        if header.get("alg") != "ES256":
            logger.warning("Webhook JWT uses unexpected alg %r", header.get("alg"))
            return False
        key_id = header.get("kid")
        if not key_id:
            logger.warning("Webhook JWT has no kid")
            return False

        try:
            jwk = self._get_key(key_id)
        except PlaidError as e:
            logger.error("Could not fetch webhook verification key %s: %s", key_id, e)
            return False
        if jwk.get("expired_at"):
            logger.warning("Webhook signed with expired key %s", key_id)
            return False

        try:
            public_key = ECAlgorithm.from_jwk(json.dumps(jwk))
            claims = jwt.decode(
                signed_jwt,
                key=public_key,
                algorithms=["ES256"],
                options={"verify_exp": False, "verify_iat": False},
            )
        except (jwt.InvalidTokenError, ValueError) as e:
            logger.warning("Invalid webhook JWT: %s", e)
            return False

        iat = claims.get("iat")
        if not isinstance(iat, (int, float)) or self._clock() - iat > self._max_age_seconds:
            logger.warning("Webhook JWT too old or missing iat")
            return False

        expected = hashlib.sha256(body).hexdigest()
        claimed = claims.get("request_body_sha256", "")
        if not hmac.compare_digest(expected, str(claimed)):
            logger.warning("Webhook body hash mismatch")
            return False
        return True


class WebhookVerificationPolicy:
    """Applies a verifier with an explicit stance on unsigned webhooks.

    ``required=False`` reproduces the legacy fail-open behavior: webhooks
    without a signature header are processed, but the result says so.
    """

    def __init__(self, verifier: PlaidJwtVerifier, required: bool):
        self.verifier = verifier
        self.required = required

    def check(self, body: bytes, signature: str | None) -> VerificationResult:
        """Verify a request.

        Raises:
            SignatureInvalidError: signature present but invalid, or absent
                while verification is required.
        """
        if not signature:
            if self.required:
                raise SignatureInvalidError("Missing Plaid-Verification header")
            logger.warning("Processing unsigned webhook (verification not required)")
            return VerificationResult.UNSIGNED
        if not self.verifier.verify(body, signature):
            raise SignatureInvalidError("Invalid Plaid-Verification signature")
        return VerificationResult.VERIFIED
