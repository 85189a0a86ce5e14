"""
Shared HTTP helpers for the JSON API.

Why:
    Every endpoint exposes user- and role-scoped data, so every response (error
    or not) is `private, no-store`. Service exceptions map onto status codes in
    one place so routes stay thin.

Mapping:
    PermissionError -> 403, LookupError -> 404, ValueError -> 400,
    StoreUnavailableError -> 503.
"""
from __future__ import annotations

import logging
from typing import Any, Dict, Optional, Tuple

from fastapi import Request
from fastapi.responses import JSONResponse

from tracking.ports import StoreUnavailableError

logger = logging.getLogger("unitrack.web")

PRIVATE_HEADERS = {"Cache-Control": "private, no-store"}


def json_private(payload: Any, *, status_code: int = 200) -> JSONResponse:
    return JSONResponse(content=payload, status_code=status_code, headers=dict(PRIVATE_HEADERS))


def private_error(error: str, *, status_code: int, detail: Optional[str] = None) -> JSONResponse:
    body = {"error": error}
    if detail:
        body["detail"] = detail
    return json_private(body, status_code=status_code)


def current_user_id(request: Request) -> Optional[str]:
    user = getattr(request.state, "user", None)
    if not isinstance(user, dict):
        return None
    sub = user.get("sub")
    return sub if isinstance(sub, str) and sub else None


def error_body(exc: Exception) -> Tuple[int, Dict[str, str]]:
    """Status code and `{error, detail}` body for a service exception."""
    detail = str(exc.args[0]) if exc.args else None
    if isinstance(exc, PermissionError):
        status, error = 403, "forbidden"
    elif isinstance(exc, StoreUnavailableError):
        logger.warning("store unavailable: %s", detail)
        return 503, {"error": "unavailable"}
    elif isinstance(exc, LookupError):
        status, error = 404, "not_found"
    elif isinstance(exc, ValueError):
        status, error = 400, "bad_request"
    else:
        raise exc
    body = {"error": error}
    if detail:
        body["detail"] = detail
    return status, body


def error_response(exc: Exception) -> JSONResponse:
    """Translate a service exception into a private JSON error response."""
    status, body = error_body(exc)
    return json_private(body, status_code=status)


SERVICE_ERRORS = (PermissionError, LookupError, ValueError, StoreUnavailableError)
