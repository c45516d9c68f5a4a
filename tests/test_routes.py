from __future__ import annotations

import pytest
from fastapi import HTTPException

import familyline.routes.family as family_routes
import familyline.routes.people as people_routes
from familyline.errors import (
    Conflict,
    InvalidNetworkType,
    NotFound,
    PartiallyApplied,
    SideResult,
    StoreUnavailable,
    WriteOutcome,
)
from familyline.main import app, error_payload


class _FakeState:
    pass


class _FakeRequest:
    """Minimal stand-in for a FastAPI/Starlette Request."""

    def __init__(self, email: str | None) -> None:
        self.state = _FakeState()
        if email is not None:
            self.state.user = {"id": 1, "email": email, "name": ""}


@pytest.fixture()
def wired(graph, lookup, monkeypatch):
    monkeypatch.setattr(family_routes, "get_family_graph", lambda: graph)
    monkeypatch.setattr(people_routes, "get_lookup", lambda: lookup)
    return graph


def test_add_update_remove_via_routes(wired, store) -> None:
    alice = _FakeRequest("alice@example.com")

    out = family_routes.add_member(
        family_routes.AddMemberRequest(person_id="p2", relation="Brother", network="immediate"),
        alice,
    )
    assert out["ok"] is True
    assert out["member"]["person_id"] == "p2"
    assert out["member"]["network_level"] == 1
    assert "extra" not in out["member"]
    assert out["member"]["network"] == "immediate"
    assert "shared_data" not in out["member"]

    out = family_routes.update_member(
        "p2", family_routes.UpdateMemberRequest(relation="Half-brother", network="extended"), alice
    )
    assert out["member"]["relation"] == "Half-brother"
    assert out["member"]["network_level"] == 2
    assert out["member"]["network"] == "extended"

    family = family_routes.get_family(alice)
    assert [m["relation"] for m in family["members"]] == ["Half-brother"]
    assert [m["network"] for m in family["members"]] == ["extended"]

    out = family_routes.get_member("p2", alice)
    assert out["member"]["person_id"] == "p2"
    assert out["member"]["network"] == "extended"

    out = family_routes.remove_member("p2", alice)
    assert out["removed_person_id"] == "p2"
    assert out["remaining_members"] == 0
    assert store.members("p2") == []


def test_routes_require_user(wired) -> None:
    with pytest.raises(HTTPException) as exc_info:
        family_routes.get_family(_FakeRequest(None))
    assert exc_info.value.status_code == 401


def test_engine_errors_propagate_to_handlers(wired) -> None:
    with pytest.raises(NotFound):
        family_routes.remove_member("p2", _FakeRequest("alice@example.com"))


def test_member_view_is_family_scoped(wired, store) -> None:
    store.rows["p1"]["json"] = (
        '{"people": [{"person_id": "p2", "name": "Bob", "relation": "Brother",'
        ' "network_degree": 7, "gender": "male"}]}'
    )
    out = family_routes.get_member("p2", _FakeRequest("alice@example.com"))
    assert out["member"]["gender"] == "male"
    # Levels outside the catalog have no type to preselect.
    assert out["member"]["network"] is None

    with pytest.raises(NotFound):
        family_routes.get_member("p3", _FakeRequest("alice@example.com"))


def test_list_networks() -> None:
    out = family_routes.list_networks()
    assert [(n["type"], n["level"]) for n in out["network"]] == [
        ("immediate", 1),
        ("extended", 2),
        ("friend", 3),
        ("acquaintance", 4),
    ]


def test_search_excludes_self(wired) -> None:
    out = people_routes.search_people(_FakeRequest("alice@example.com"), q="example.com", limit=10)
    emails = [r["email"] for r in out["results"]]
    assert "alice@example.com" not in emails
    assert "bob@example.com" in emails


def test_routes_registered() -> None:
    paths = {(r.path, tuple(sorted(r.methods))) for r in app.routes if hasattr(r, "methods")}
    assert ("/family/members", ("POST",)) in paths
    assert ("/family/members/{person_id}", ("PUT",)) in paths
    assert ("/family/members/{person_id}", ("DELETE",)) in paths
    assert ("/family/members/{person_id}", ("GET",)) in paths
    assert ("/health", ("GET",)) in paths


# ---------------------------------------------------------------------------
# Error mapping
# ---------------------------------------------------------------------------


class TestErrorPayload:
    def test_not_found(self) -> None:
        status, body = error_payload(NotFound("Person not found in family"))
        assert status == 404
        assert body == {"detail": "Person not found in family", "changed": False}

    def test_conflict(self) -> None:
        status, body = error_payload(Conflict("User is already in the family"))
        assert status == 409
        assert body["changed"] is False

    def test_invalid_network(self) -> None:
        status, _body = error_payload(InvalidNetworkType("bestie", ["immediate"]))
        assert status == 422

    def test_store_unavailable(self) -> None:
        assert error_payload(StoreUnavailable("down"))[0] == 503
        assert error_payload(StoreUnavailable("timeout", maybe_applied=True))[1]["changed"] == "unknown"

    def test_partially_applied(self) -> None:
        err = PartiallyApplied(
            "remove_edge",
            [
                SideResult("owner", "p1", 11, WriteOutcome.APPLIED),
                SideResult("target", "p2", 12, WriteOutcome.FAILED, StoreUnavailable("down")),
            ],
        )
        status, body = error_payload(err)
        assert status == 500
        assert body["changed"] == "partial"
        assert body["partially_applied"] is True
        assert body["sides"][1] == {
            "side": "target",
            "person_id": "p2",
            "family_line_id": 12,
            "outcome": "failed",
            "error": "down",
        }
        assert "applied on owner" in err.message
