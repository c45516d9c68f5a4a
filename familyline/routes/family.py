"""Family membership routes.

The owner of every operation is the logged-in user; the email never comes
from the request body.  Engine errors are mapped to HTTP responses by the
handlers registered in ``main.py``.
"""

from __future__ import annotations

from typing import Any, Optional

from fastapi import APIRouter, Request
from pydantic import BaseModel, Field

try:
    from ..auth import get_current_user
    from ..catalog import get_catalog
    from ..codec import FamilyMember
    from ..deps import get_family_graph
except ImportError:  # pragma: no cover
    from auth import get_current_user
    from catalog import get_catalog
    from codec import FamilyMember
    from deps import get_family_graph

router = APIRouter(prefix="/family", tags=["family"])


class AddMemberRequest(BaseModel):
    person_id: str = Field(min_length=1, max_length=64)
    relation: str = Field(min_length=1, max_length=80)
    network: str = Field(min_length=1, max_length=32)
    # What the added person calls the owner; defaults to ``relation``.
    reciprocal_relation: Optional[str] = Field(default=None, min_length=1, max_length=80)


class UpdateMemberRequest(BaseModel):
    relation: str = Field(min_length=1, max_length=80)
    network: str = Field(min_length=1, max_length=32)


def _member_payload(member: FamilyMember) -> dict[str, Any]:
    # Entries store only the level; the edit form preselects a network type.
    out = member.public()
    out["network"] = get_catalog().type_for_level(member.network_level)
    return out


@router.get("")
def get_family(request: Request) -> dict[str, Any]:
    """The logged-in user's family line."""
    user = get_current_user(request)
    view = get_family_graph().get_family(user["email"])
    out = view.to_dict()
    out["members"] = [_member_payload(m) for m in view.members]
    return out


@router.get("/networks")
def list_networks() -> dict[str, Any]:
    catalog = get_catalog()
    return {
        "version": catalog.version,
        "network": [{"type": e.type, "label": e.label, "level": e.level} for e in catalog.entries()],
    }


@router.get("/members/{person_id}")
def get_member(person_id: str, request: Request) -> dict[str, Any]:
    """One family member, as the user recorded them.  404 outside the family."""
    user = get_current_user(request)
    member = get_family_graph().get_member(user["email"], person_id)
    out = _member_payload(member)
    out["gender"] = member.extra.get("gender")
    return {"member": out}


@router.post("/members", status_code=201)
def add_member(body: AddMemberRequest, request: Request) -> dict[str, Any]:
    """Add a person to the user's family; they get the user added back."""
    user = get_current_user(request)
    member = get_family_graph().add_edge(
        user["email"],
        body.person_id,
        body.relation,
        body.network,
        reciprocal_relation=body.reciprocal_relation,
    )
    return {"ok": True, "member": _member_payload(member)}


@router.put("/members/{person_id}")
def update_member(person_id: str, body: UpdateMemberRequest, request: Request) -> dict[str, Any]:
    """Relabel a family member.  Only the user's own view of the edge changes."""
    user = get_current_user(request)
    member = get_family_graph().update_edge(user["email"], person_id, body.relation, body.network)
    return {"ok": True, "member": _member_payload(member)}


@router.delete("/members/{person_id}")
def remove_member(person_id: str, request: Request) -> dict[str, Any]:
    user = get_current_user(request)
    removed = get_family_graph().remove_edge(user["email"], person_id)
    return {"ok": True, **removed.to_dict()}
