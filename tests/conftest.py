from __future__ import annotations

import json
import threading
from dataclasses import replace
from typing import Any, Optional

import pytest

from familyline.catalog import RelationshipCatalog
from familyline.codec import FamilyDocument, decode_family_document, encode_family_document
from familyline.engine import FamilyGraph
from familyline.errors import Conflict, FamilyLineError, NotFound, StoreUnavailable
from familyline.lookup import OwnerRef, PersonRef
from familyline.store import FamilyLineRecord


class MemoryStore:
    """In-memory FamilyLine store with the same contract as ``FamilyLineStore``.

    ``fail_writes[person_id]`` makes the next write for that person raise.  A
    ``StoreUnavailable`` with ``maybe_applied=True`` lands the write first, the
    way a timeout after commit would.
    """

    def __init__(self) -> None:
        self.rows: dict[str, dict[str, Any]] = {}
        self.fail_writes: dict[str, FamilyLineError] = {}
        self.writes: list[str] = []
        self._lock = threading.Lock()
        self._next_id = 100

    def put(self, person_id: str, payload: Any = None) -> int:
        self._next_id += 1
        self.rows[person_id] = {"id": self._next_id, "json": payload, "version": 0}
        return self._next_id

    def line_id(self, person_id: str) -> int:
        return self.rows[person_id]["id"]

    def members(self, person_id: str) -> list[dict[str, Any]]:
        return [m.to_dict() for m in decode_family_document(self.rows[person_id]["json"]).members]

    def raw(self, person_id: str) -> Any:
        return self.rows[person_id]["json"]

    def _record(self, person_id: str) -> FamilyLineRecord:
        row = self.rows[person_id]
        return FamilyLineRecord(
            id=row["id"],
            person_id=person_id,
            version=row["version"],
            document=decode_family_document(row["json"]),
            raw=row["json"],
        )

    def read(self, person_id: str) -> Optional[FamilyLineRecord]:
        with self._lock:
            if person_id not in self.rows:
                return None
            return self._record(person_id)

    def iter_all(self):
        with self._lock:
            records = [self._record(pid) for pid in self.rows]
        return iter(records)

    def write(self, record: FamilyLineRecord, document: FamilyDocument) -> FamilyLineRecord:
        with self._lock:
            err = self.fail_writes.pop(record.person_id, None)
            if err is not None and not (isinstance(err, StoreUnavailable) and err.maybe_applied):
                raise err
            row = self.rows.get(record.person_id)
            if row is None or row["version"] != record.version:
                raise Conflict(f"family line for person {record.person_id} changed since it was read; retry")
            payload = encode_family_document(document)
            row["json"] = payload
            row["version"] += 1
            self.writes.append(record.person_id)
            if err is not None:
                raise err
            return replace(record, version=row["version"], document=document, raw=payload)


class FakeLookup:
    def __init__(self, store: MemoryStore, people: list[PersonRef]) -> None:
        self._store = store
        self._people = {p.person_id: p for p in people}

    def resolve_owner(self, email: str) -> OwnerRef:
        for p in self._people.values():
            if p.email.lower() == (email or "").strip().lower():
                row = self._store.rows.get(p.person_id)
                return OwnerRef(person_id=p.person_id, family_line_id=row["id"] if row else None)
        raise NotFound(f"No user with email {email}")

    def resolve_person(self, person_id: str) -> PersonRef:
        person = self._people.get(str(person_id))
        if person is None:
            raise NotFound(f"Person not found: {person_id}")
        return person

    def search_people(self, query: str, *, limit: int = 10) -> list[PersonRef]:
        q = query.strip().lower()
        hits = [p for p in self._people.values() if q in p.name.lower() or q in p.email.lower()]
        return hits[:limit]


ALICE = PersonRef(person_id="p1", name="Alice", email="alice@example.com")
BOB = PersonRef(person_id="p2", name="Bob", email="bob@example.com")
CAROL = PersonRef(person_id="p3", name="Carol", email="carol@example.com")
# Has a user row but was never provisioned a family line.
DAVE = PersonRef(person_id="p4", name="Dave", email="dave@example.com")


@pytest.fixture()
def catalog() -> RelationshipCatalog:
    return RelationshipCatalog.from_dict(
        {
            "version": 1,
            "network": [
                {"type": "immediate", "level": 1},
                {"type": "extended", "level": 2},
                {"type": "friend", "level": 3},
                {"type": "acquaintance", "level": 4},
            ],
        }
    )


@pytest.fixture()
def store() -> MemoryStore:
    s = MemoryStore()
    s.put("p1", json.dumps({"members": []}))
    s.put("p2", None)
    # Legacy writer: JSON string of a JSON document.
    s.put("p3", json.dumps(json.dumps({"people": []})))
    return s


@pytest.fixture()
def lookup(store: MemoryStore) -> FakeLookup:
    return FakeLookup(store, [ALICE, BOB, CAROL, DAVE])


@pytest.fixture()
def graph(store: MemoryStore, lookup: FakeLookup, catalog: RelationshipCatalog) -> FamilyGraph:
    return FamilyGraph(store, lookup, catalog)  # type: ignore[arg-type]
