"""Typed exception hierarchy for Plaid API errors.

Lets callers tell a bad or expired token apart from Plaid being
unreachable, even where both currently lead to the same control flow.
"""


class PlaidError(Exception):
    """Base exception for all Plaid API errors.

    Carries Plaid's ``error_code`` (e.g. ``INVALID_PUBLIC_TOKEN``) when the
    response body provided one.
    """

    retriable = False

    def __init__(self, message: str, error_code: str | None = None):
        self.error_code = error_code
        super().__init__(message)

    @property
    def kind(self) -> str:
        """Short diagnostic label used in logs and session metadata."""
        return "plaid_error"


class PlaidAPIError(PlaidError):
    """HTTP 4xx/5xx responses from Plaid on non-exchange calls."""

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        status_code: int | None = None,
    ):
        self.status_code = status_code
        super().__init__(message, error_code)

    @property
    def retriable(self) -> bool:
        """429 (rate limit) and 5xx errors are generally retriable."""
        if self.status_code is None:
            return False
        return self.status_code == 429 or self.status_code >= 500


class TokenExchangeError(PlaidError):
    """Plaid rejected or failed to process a public token exchange."""

    @property
    def kind(self) -> str:
        return "token_exchange_error"


class InvalidPublicTokenError(TokenExchangeError):
    """The public token was invalid, expired, or already exchanged."""

    @property
    def kind(self) -> str:
        return "invalid_public_token"


class PlaidUnavailableError(TokenExchangeError):
    """Network failure, timeout, rate limit, or 5xx from Plaid."""

    retriable = True

    @property
    def kind(self) -> str:
        return "plaid_unavailable"
