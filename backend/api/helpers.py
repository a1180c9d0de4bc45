"""Shared API helpers for route handlers."""

from fastapi import Header, HTTPException
from fastapi.responses import JSONResponse


def get_current_user_id(x_user_id: str | None = Header(default=None)) -> str:
    """Caller identity, set by the upstream authentication layer.

    Raises:
        HTTPException: 401 if the ``X-User-Id`` header is missing or blank.
    """
    if not x_user_id or not x_user_id.strip():
        raise HTTPException(status_code=401, detail="Missing user identity")
    return x_user_id.strip()


def error_response(status_code: int, message: str, **extra) -> JSONResponse:
    """JSON body of the form ``{"error": message, **extra}``.

    Plaid only reads the status code of webhook responses; the body shape
    matches what the rest of the API returns for failures.
    """
    return JSONResponse(status_code=status_code, content={"error": message, **extra})
