"""Session verification.

Sessions are issued by the site's login flow; this service only reads the
session cookie, checks the token and turns its claims into the request user.
``create_jwt`` exists for tests and the admin ``issue-token`` command.
"""

from __future__ import annotations

import logging
import os
from datetime import datetime, timedelta, timezone
from typing import Any

import jwt
from fastapi import HTTPException, Request

log = logging.getLogger(__name__)

SESSION_COOKIE = "familyline_session"

_JWT_SECRET_ENV = "JWT_SECRET"
_JWT_ALGORITHM = "HS256"
_JWT_LIFETIME_HOURS = 24
_DEV_SECRET = "dev-secret-change-me"


def _get_jwt_secret() -> str:
    secret = os.environ.get(_JWT_SECRET_ENV, "")
    if not secret:
        log.warning("%s is not set; using the development secret", _JWT_SECRET_ENV)
        secret = _DEV_SECRET
    return secret


def create_jwt(user_id: int, email: str, name: str = "") -> str:
    now = datetime.now(timezone.utc)
    payload = {
        "sub": str(user_id),
        "email": email,
        "name": name,
        "iat": int(now.timestamp()),
        "exp": int((now + timedelta(hours=_JWT_LIFETIME_HOURS)).timestamp()),
    }
    return jwt.encode(payload, _get_jwt_secret(), algorithm=_JWT_ALGORITHM)


def decode_jwt(token: str) -> dict[str, Any]:
    """Decode and verify a JWT.  Raises ``jwt.PyJWTError`` on failure."""
    return jwt.decode(
        token,
        _get_jwt_secret(),
        algorithms=[_JWT_ALGORITHM],
        options={"require": ["sub", "email", "exp"]},
    )


def session_user(token: str) -> dict[str, Any]:
    """Verify ``token`` and return the request user (id, email, name).

    Every rejection, including a signed token whose subject is not a
    numeric user id, surfaces as a ``jwt.PyJWTError``.
    """
    claims = decode_jwt(token)
    try:
        user_id = int(claims["sub"])
    except (TypeError, ValueError) as e:
        raise jwt.InvalidTokenError(f"subject is not a user id: {claims['sub']!r}") from e
    return {"id": user_id, "email": claims["email"], "name": claims.get("name") or ""}


def get_current_user(request: Request) -> dict[str, Any]:
    """The authenticated user from ``request.state`` (set by the middleware); 401 otherwise."""
    user = getattr(request.state, "user", None)
    if not user or not user.get("email"):
        raise HTTPException(status_code=401, detail="Not authenticated")
    return user
