"""Authentication and CSRF checks for every non-public request.

The session cookie must carry a valid token; state-changing requests must
also echo the CSRF cookie (set by the login flow) in a header.
"""

from __future__ import annotations

import secrets

import jwt as pyjwt
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

try:
    from .auth import SESSION_COOKIE, session_user
except ImportError:  # pragma: no cover
    from auth import SESSION_COOKIE, session_user

_PUBLIC_PATHS = frozenset({"/health", "/docs", "/openapi.json", "/family/networks"})

CSRF_COOKIE = "familyline_csrf"
CSRF_HEADER = "x-csrf-token"
_SAFE_METHODS = frozenset({"GET", "HEAD", "OPTIONS"})


def _is_public(path: str) -> bool:
    return path in _PUBLIC_PATHS


def _csrf_ok(request: Request) -> bool:
    if request.method in _SAFE_METHODS:
        return True
    expected = request.cookies.get(CSRF_COOKIE, "")
    sent = request.headers.get(CSRF_HEADER, "")
    return bool(expected) and secrets.compare_digest(expected, sent)


class AuthMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next) -> Response:
        if _is_public(request.url.path):
            return await call_next(request)

        token = request.cookies.get(SESSION_COOKIE)
        if not token:
            return JSONResponse({"detail": "Not authenticated"}, status_code=401)
        try:
            user = session_user(token)
        except pyjwt.ExpiredSignatureError:
            return JSONResponse({"detail": "Session expired"}, status_code=401)
        except pyjwt.PyJWTError:
            return JSONResponse({"detail": "Invalid session"}, status_code=401)

        if not _csrf_ok(request):
            return JSONResponse({"detail": "CSRF token mismatch"}, status_code=403)

        request.state.user = user
        return await call_next(request)
