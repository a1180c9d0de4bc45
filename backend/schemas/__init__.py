"""Pydantic request/response and webhook schemas."""

from .plaid import (
    DeleteItemResponse,
    DeletionInfoResponse,
    LinkSessionStatusResponse,
    LinkTokenResponse,
    PlaidItemResponse,
)

__all__ = [
    "DeleteItemResponse",
    "DeletionInfoResponse",
    "LinkSessionStatusResponse",
    "LinkTokenResponse",
    "PlaidItemResponse",
]
