"""Plaid API client.

Wraps the plaid-python SDK for the calls this service makes: creating
multi-item Link tokens, exchanging public tokens (the token exchange
gateway used by the webhook reconciler), removing Items, and fetching
webhook verification keys.

Every call carries a bounded ``_request_timeout`` so a slow Plaid response
cannot exhaust a webhook request's time budget, and every failure is
translated into the typed hierarchy in :mod:`integrations.exceptions`.
"""

import json
import logging
from dataclasses import dataclass

import urllib3
from plaid import ApiException, Environment
from plaid.api.plaid_api import PlaidApi
from plaid.api_client import ApiClient
from plaid.configuration import Configuration
from plaid.model.country_code import CountryCode
from plaid.model.item_public_token_exchange_request import ItemPublicTokenExchangeRequest
from plaid.model.item_remove_request import ItemRemoveRequest
from plaid.model.link_token_create_request import LinkTokenCreateRequest
from plaid.model.link_token_create_request_user import LinkTokenCreateRequestUser
from plaid.model.products import Products
from plaid.model.user_create_request import UserCreateRequest
from plaid.model.webhook_verification_key_get_request import WebhookVerificationKeyGetRequest

from config import settings
from integrations.exceptions import (
    InvalidPublicTokenError,
    PlaidAPIError,
    PlaidUnavailableError,
)

logger = logging.getLogger(__name__)

# Map PLAID_ENVIRONMENT setting to SDK host URLs.
_ENVIRONMENT_MAP: dict[str, str] = {
    "sandbox": Environment.Sandbox,
    "production": Environment.Production,
}

# Status codes that mean "try again later" rather than "this token is bad"
_UNAVAILABLE_STATUSES = frozenset({408, 429})


@dataclass
class TokenExchangeResult:
    """Result of exchanging a public token."""

    access_token: str
    item_id: str

    def __repr__(self) -> str:
        return f"TokenExchangeResult(item_id={self.item_id!r}, access_token=<redacted>)"


@dataclass
class LinkTokenResult:
    """A freshly created Link token and the Plaid user token it was bound to."""

    link_token: str
    user_token: str | None = None
    expiration: str | None = None


def _parse_error_body(exc: ApiException) -> tuple[str | None, str]:
    """Extract ``(error_code, message)`` from a Plaid ApiException body."""
    message = str(exc.reason or exc)
    try:
        body = json.loads(exc.body) if exc.body else {}
    except (TypeError, ValueError):
        return None, message
    error_code = body.get("error_code") or None
    error_message = body.get("error_message")
    if error_message:
        message = f"Plaid error ({error_code}): {error_message}"
    return error_code, message


class PlaidClient:
    """Wrapper around the Plaid API.

    Constructed once per process (see ``main.lifespan``) and injected into
    request handlers; :meth:`close` releases the SDK's connection pool.
    """

    def __init__(
        self,
        client_id: str | None = None,
        secret: str | None = None,
        environment: str | None = None,
        timeout: float | None = None,
        webhook_url: str | None = None,
    ):
        self._client_id = client_id or settings.PLAID_CLIENT_ID
        self._secret = secret or settings.PLAID_SECRET
        self._environment = environment or settings.PLAID_ENVIRONMENT
        self._timeout = timeout if timeout is not None else settings.PLAID_TIMEOUT_SECONDS
        self._webhook_url = webhook_url if webhook_url is not None else settings.PLAID_WEBHOOK_URL

        # Lazily created on first use
        self._api: PlaidApi | None = None

    def _get_api(self) -> PlaidApi:
        """Return (and cache) a PlaidApi instance."""
        if self._api is None:
            env_key = self._environment.lower()
            host = _ENVIRONMENT_MAP.get(env_key)
            if host is None:
                logger.warning(
                    "Unknown PLAID_ENVIRONMENT=%r, falling back to sandbox. "
                    "Valid values: sandbox, production",
                    self._environment,
                )
                host = Environment.Sandbox
            logger.info(
                "Plaid API client: environment=%s, host=%s, client_id=<configured>",
                env_key,
                host,
            )
            configuration = Configuration(
                host=host,
                api_key={
                    "clientId": self._client_id,
                    "secret": self._secret,
                },
            )
            api_client = ApiClient(configuration)
            self._api = PlaidApi(api_client)
        return self._api

    def is_configured(self) -> bool:
        """Check if Plaid credentials are configured."""
        return bool(self._client_id) and bool(self._secret)

    def close(self) -> None:
        """Release the SDK's HTTP connection pool."""
        if self._api is not None:
            self._api.api_client.close()
            self._api = None
            logger.info("Plaid API client closed")

    # ------------------------------------------------------------------
    # Link tokens
    # ------------------------------------------------------------------

    def create_user_token(self, user_id: str) -> str:
        """Create a Plaid user token, required for Multi-Item Link."""
        api = self._get_api()
        try:
            response = api.user_create(
                UserCreateRequest(client_user_id=user_id),
                _request_timeout=self._timeout,
            )
        except ApiException as e:
            raise self._map_api_error(e) from e
        except urllib3.exceptions.HTTPError as e:
            raise PlaidAPIError(f"Plaid unreachable: {e}") from e
        user_token = response["user_token"]
        if not user_token:
            raise PlaidAPIError("Plaid did not return a user token")
        return user_token

    def create_link_token(self, user_id: str, user_token: str | None = None) -> LinkTokenResult:
        """Create a Multi-Item Link token for the browser-based flow.

        Args:
            user_id: Our user id, sent as ``client_user_id``.
            user_token: Existing Plaid user token to reuse; one is created
                when omitted.

        Returns:
            The link token plus the user token it is bound to.
        """
        api = self._get_api()
        if user_token is None:
            user_token = self.create_user_token(user_id)

        request_kwargs = {
            "user": LinkTokenCreateRequestUser(client_user_id=user_id),
            "user_token": user_token,
            "client_name": settings.PLAID_CLIENT_NAME,
            "products": [Products("transactions")],
            "country_codes": [CountryCode("US")],
            "language": "en",
            "enable_multi_item_link": True,
        }
        if self._webhook_url:
            request_kwargs["webhook"] = self._webhook_url

        try:
            response = api.link_token_create(
                LinkTokenCreateRequest(**request_kwargs),
                _request_timeout=self._timeout,
            )
        except ApiException as e:
            raise self._map_api_error(e) from e
        except urllib3.exceptions.HTTPError as e:
            raise PlaidAPIError(f"Plaid unreachable: {e}") from e

        expiration = response.get("expiration")
        return LinkTokenResult(
            link_token=response["link_token"],
            user_token=user_token,
            expiration=str(expiration) if expiration else None,
        )

    # ------------------------------------------------------------------
    # Token exchange gateway
    # ------------------------------------------------------------------

    def exchange_public_token(self, public_token: str) -> TokenExchangeResult:
        """Exchange a Plaid Link public_token for a permanent access_token.

        Raises:
            InvalidPublicTokenError: Plaid rejected the token (invalid,
                expired, or already exchanged).
            PlaidUnavailableError: Network failure, timeout, 429, or 5xx.
        """
        api = self._get_api()
        request = ItemPublicTokenExchangeRequest(public_token=public_token)
        try:
            response = api.item_public_token_exchange(
                request, _request_timeout=self._timeout
            )
        except ApiException as e:
            error_code, message = _parse_error_body(e)
            status = e.status or 0
            if status in _UNAVAILABLE_STATUSES or status >= 500:
                raise PlaidUnavailableError(message, error_code) from e
            raise InvalidPublicTokenError(message, error_code) from e
        except urllib3.exceptions.HTTPError as e:
            raise PlaidUnavailableError(f"Plaid unreachable: {e}") from e

        return TokenExchangeResult(
            access_token=response["access_token"],
            item_id=response["item_id"],
        )

    # ------------------------------------------------------------------
    # Items
    # ------------------------------------------------------------------

    def remove_item(self, access_token: str) -> None:
        """Revoke an access token by calling Plaid's /item/remove endpoint."""
        api = self._get_api()
        try:
            api.item_remove(
                ItemRemoveRequest(access_token=access_token),
                _request_timeout=self._timeout,
            )
        except ApiException as e:
            raise self._map_api_error(e) from e
        except urllib3.exceptions.HTTPError as e:
            raise PlaidAPIError(f"Plaid unreachable: {e}") from e

    # ------------------------------------------------------------------
    # Webhook verification keys
    # ------------------------------------------------------------------

    def get_webhook_verification_key(self, key_id: str) -> dict:
        """Fetch the JWK Plaid uses to sign webhooks with the given ``kid``."""
        api = self._get_api()
        try:
            response = api.webhook_verification_key_get(
                WebhookVerificationKeyGetRequest(key_id=key_id),
                _request_timeout=self._timeout,
            )
        except ApiException as e:
            raise self._map_api_error(e) from e
        except urllib3.exceptions.HTTPError as e:
            raise PlaidAPIError(f"Plaid unreachable: {e}") from e
        return response.to_dict()["key"]

    # ------------------------------------------------------------------
    # Error mapping
    # ------------------------------------------------------------------

    @staticmethod
    def _map_api_error(exc: ApiException) -> PlaidAPIError:
        """Map a Plaid ApiException to a PlaidAPIError."""
        error_code, message = _parse_error_body(exc)
        return PlaidAPIError(message, error_code=error_code, status_code=exc.status)
