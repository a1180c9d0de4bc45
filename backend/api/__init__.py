"""API route handlers."""
from . import plaid, webhooks

__all__ = ["plaid", "webhooks"]
