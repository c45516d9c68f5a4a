from __future__ import annotations

import logging
import os
from typing import Any

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

try:
    from .errors import (
        Conflict,
        FamilyLineError,
        InvalidRequest,
        NotFound,
        PartiallyApplied,
        StoreUnavailable,
    )
    from .middleware import AuthMiddleware
    from .routes import family, people
except ImportError:  # pragma: no cover
    # Support running with CWD=familyline (e.g., `python -m uvicorn main:app`).
    from errors import (
        Conflict,
        FamilyLineError,
        InvalidRequest,
        NotFound,
        PartiallyApplied,
        StoreUnavailable,
    )
    from middleware import AuthMiddleware
    from routes import family, people

logging.basicConfig(
    level=os.environ.get("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
log = logging.getLogger(__name__)

app = FastAPI(title="FamilyLine API", version="0.1.0")
app.add_middleware(AuthMiddleware)
app.include_router(family.router)
app.include_router(people.router)


# ---------------------------------------------------------------------------
# Error mapping
# ---------------------------------------------------------------------------

_STATUS_BY_ERROR: list[tuple[type[FamilyLineError], int]] = [
    (NotFound, 404),
    (Conflict, 409),
    (InvalidRequest, 422),
    (StoreUnavailable, 503),
]

_PARTIAL_MESSAGE = (
    "The change was only partially applied. Retry the request or contact support."
)


def error_payload(exc: FamilyLineError) -> tuple[int, dict[str, Any]]:
    """Map an engine error to (status, body).

    ``changed`` tells the client whether anything was modified: False for
    errors that leave both documents as they were, "partial" otherwise.
    """
    if isinstance(exc, PartiallyApplied):
        return 500, {"detail": _PARTIAL_MESSAGE, "changed": "partial", **exc.to_dict()}

    for cls, status in _STATUS_BY_ERROR:
        if isinstance(exc, cls):
            body: dict[str, Any] = {"detail": exc.message, "changed": False}
            if isinstance(exc, StoreUnavailable):
                body["changed"] = "unknown" if exc.maybe_applied else False
            return status, body
    return 500, {"detail": exc.message, "changed": False}


@app.exception_handler(FamilyLineError)
async def _family_error_handler(request: Request, exc: FamilyLineError) -> JSONResponse:
    status, body = error_payload(exc)
    if status >= 500:
        log.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(body, status_code=status)


@app.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok"}
