"""
FastAPI application for the academic task tracker.

The app wires session authentication (opaque cookie -> principal id), the
security header middleware and the tracking routers. Role and section are
never trusted from the session; handlers re-load the principal per request.
"""
from __future__ import annotations

import logging
import os
import sys as _sys
from pathlib import Path

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

# Flat imports (`tracking`, `identity_access`, `routes`, ...) need backend/ and
# backend/web on the path when the app is loaded as `backend.web.main`.
_WEB_DIR = Path(__file__).resolve().parent
for _p in (_WEB_DIR.parent, _WEB_DIR):
    if str(_p) not in _sys.path:
        _sys.path.insert(0, str(_p))

from identity_access.stores import SessionStore

# Ensure legacy imports consistently reference the same module instance.
if __name__ == "main":
    _sys.modules.setdefault("backend.web.main", _sys.modules[__name__])
elif __name__ == "backend.web.main":
    _sys.modules["main"] = _sys.modules[__name__]


def _should_load_dotenv() -> bool:
    """Decide if we should load a local .env file.

    - Never load under pytest to avoid contaminating test env.
    - Allow explicit opt-out via UNITRACK_ENABLE_DOTENV (default true outside
      pytest).
    """
    if "pytest" in _sys.modules or os.getenv("PYTEST_CURRENT_TEST"):
        return False
    flag = (os.getenv("UNITRACK_ENABLE_DOTENV", "true") or "").strip().lower()
    return flag in ("1", "true", "yes")


from dotenv import load_dotenv

if _should_load_dotenv():
    load_dotenv()

import config as _cfg  # noqa: E402

_cfg.ensure_secure_config_on_startup()

logger = logging.getLogger("unitrack.web")
SESSION_COOKIE_NAME = "unitrack_session"
SESSION_STORE = SessionStore()


def environment() -> str:
    return (os.getenv("UNITRACK_ENV") or "dev").lower()


app = FastAPI(title="unitrack", description="Academic task tracker API", version="0.1.0")

from routes.auth import auth_router  # noqa: E402
from routes.dashboards import dashboards_router  # noqa: E402
from routes.org import org_router  # noqa: E402
from routes.routines import routines_router  # noqa: E402
from routes.submissions import submissions_router  # noqa: E402
from routes.tasks import tasks_router  # noqa: E402
from routes.users import users_router  # noqa: E402

# --- Auth Middleware -------------------------------------------------------------


def _is_public_path(path: str) -> bool:
    return path.startswith("/auth/") or path in ("/health", "/favicon.ico")


@app.middleware("http")
async def auth_enforcement(request: Request, call_next):
    path = request.url.path
    if _is_public_path(path):
        return await call_next(request)

    sid = request.cookies.get(SESSION_COOKIE_NAME)
    rec = SESSION_STORE.get(sid) if sid else None
    if not rec:
        headers = {"Cache-Control": "private, no-store", "Vary": "Origin"}
        return JSONResponse({"error": "unauthenticated"}, status_code=401, headers=headers)

    # Only the user id travels with the request; role and section are re-read
    # from the tracking store by every handler.
    request.state.user = {"sub": rec.sub, "name": rec.name}
    return await call_next(request)


# --- Security Headers Middleware ---------------------------------------------------


@app.middleware("http")
async def security_headers(request: Request, call_next):
    response = await call_next(request)
    response.headers.setdefault("X-Frame-Options", "DENY")
    response.headers.setdefault("X-Content-Type-Options", "nosniff")
    response.headers.setdefault("Referrer-Policy", "strict-origin-when-cross-origin")
    response.headers.setdefault("Permissions-Policy", "geolocation=(), microphone=(), camera=()")
    if environment() in {"prod", "production", "stage", "staging"}:
        response.headers.setdefault("Strict-Transport-Security", "max-age=31536000; includeSubDomains")
    return response


app.include_router(auth_router)
app.include_router(tasks_router)
app.include_router(submissions_router)
app.include_router(users_router)
app.include_router(routines_router)
app.include_router(org_router)
app.include_router(dashboards_router)


@app.get("/health")
async def health_check():
    return JSONResponse({"status": "healthy", "service": "unitrack"}, headers={"Cache-Control": "no-store"})
