from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Query, Request

try:
    from ..auth import get_current_user
    from ..deps import get_lookup
except ImportError:  # pragma: no cover
    from auth import get_current_user
    from deps import get_lookup

router = APIRouter(prefix="/people", tags=["people"])


@router.get("/search")
def search_people(
    request: Request,
    q: str = Query(min_length=1, max_length=200),
    limit: int = Query(default=10, ge=1, le=50),
) -> dict[str, Any]:
    """Find people to add, by name or email substring."""
    user = get_current_user(request)
    own_email = user["email"].strip().lower()
    results = [
        p.to_dict()
        for p in get_lookup().search_people(q, limit=limit)
        if p.email.strip().lower() != own_email
    ]
    return {"query": q, "results": results}
