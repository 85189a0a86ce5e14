"""
Authentication-related FastAPI routes (router-only module).

Why:
    Credential handling is delegated to the deployment's identity provider.
    Locally and in tests a dev session maps an opaque cookie to a user id that
    already exists in the tracking store.

Notes:
    - `main` is resolved inside handlers to reuse the shared session
      store and cookie name (tests swap `main.SESSION_STORE`).
    - `/auth/dev-login` is disabled unless `DEV_SESSIONS_ENABLED` is true;
      the default is true in dev and false in production/staging.
"""

from __future__ import annotations

import logging
import os

from fastapi import APIRouter, Request
from fastapi.responses import Response
from pydantic import BaseModel

from auth_utils import cookie_opts, main_module
from http_utils import PRIVATE_HEADERS, json_private, private_error
from wiring import get_repo

auth_router = APIRouter(tags=["Auth"])  # explicit paths, no prefix
logger = logging.getLogger("unitrack.web.auth")

SESSION_TTL_SECONDS = 8 * 3600


class DevLogin(BaseModel):
    user_id: str


def dev_sessions_enabled() -> bool:
    env = (os.getenv("UNITRACK_ENV") or "dev").lower()
    default = "false" if env in {"prod", "production", "stage", "staging"} else "true"
    flag = (os.getenv("DEV_SESSIONS_ENABLED", default) or "").strip().lower()
    return flag in {"1", "true", "yes"}


@auth_router.post("/auth/dev-login")
async def dev_login(payload: DevLogin):
    """
    Open a session for an existing principal.

    Security:
        Only ids present in the tracking store are accepted. The cookie carries
        the opaque session id; role and section are re-read on every request.
    """
    if not dev_sessions_enabled():
        return private_error("not_found", status_code=404)
    principal = get_repo().get_principal(payload.user_id)
    if principal is None:
        return private_error("forbidden", status_code=403, detail="unknown_principal")
    mod = main_module()
    rec = mod.SESSION_STORE.create(sub=principal.id, name=principal.name, ttl_seconds=SESSION_TTL_SECONDS)
    response = json_private({"id": principal.id, "name": principal.name, "role": principal.role.value})
    opts = cookie_opts(mod.environment())
    response.set_cookie(
        key=mod.SESSION_COOKIE_NAME,
        value=rec.session_id,
        httponly=True,
        secure=opts["secure"],
        samesite=opts["samesite"],
        path="/",
        max_age=SESSION_TTL_SECONDS,
    )
    logger.info("dev session opened sub=%s", principal.id)
    return response


@auth_router.post("/auth/logout")
async def logout(request: Request):
    mod = main_module()
    sid = request.cookies.get(mod.SESSION_COOKIE_NAME)
    if sid:
        mod.SESSION_STORE.delete(sid)
    response = Response(status_code=204, headers=dict(PRIVATE_HEADERS))
    opts = cookie_opts(mod.environment())
    response.delete_cookie(mod.SESSION_COOKIE_NAME, path="/", secure=opts["secure"], samesite=opts["samesite"])
    return response
