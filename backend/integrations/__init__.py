"""External API integrations.

This package contains:
- Plaid client: link tokens, public token exchange, item removal and
  webhook verification keys
- Typed Plaid exception hierarchy
"""

from integrations.exceptions import PlaidError, TokenExchangeError
from integrations.plaid_client import PlaidClient, TokenExchangeResult

__all__ = [
    "PlaidClient",
    "PlaidError",
    "TokenExchangeError",
    "TokenExchangeResult",
]
