"""FamilyLine document codec.

Stored payloads come in three shapes:

- a JSON document: ``{"members": [...]}``
- the same document JSON-encoded a second time (legacy writers stored
  ``JSON.stringify`` output inside a JSON column)
- nothing at all (``NULL`` / empty)

Older documents also use ``people`` instead of ``members`` and the member
keys ``network_degree`` / ``familylineid``.  Decoding never raises; anything
unusable becomes an empty membership list and the returned document is
flagged ``malformed`` so maintenance code can tell it apart from a genuinely
empty one.  Encoding always writes one canonical, single-level document.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Optional

log = logging.getLogger(__name__)

_CANONICAL_KEYS = ("person_id", "name", "email", "relation", "network_level", "family_line_id")
_LEGACY_ALIASES = {
    "network_degree": "network_level",
    "familylineid": "family_line_id",
}


@dataclass
class FamilyMember:
    """One edge from a FamilyLine's owner to another person, in the owner's words."""

    person_id: str
    name: str = ""
    email: str = ""
    relation: str = ""
    network_level: Optional[int] = None
    family_line_id: Any = None
    # Keys we don't model (gender, shared_data, ...) ride along untouched.
    extra: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        out = dict(self.extra)
        out.update(
            {
                "person_id": self.person_id,
                "name": self.name,
                "email": self.email,
                "relation": self.relation,
                "network_level": self.network_level,
                "family_line_id": self.family_line_id,
            }
        )
        return out

    def public(self) -> dict[str, Any]:
        """Response shape: canonical fields only."""
        return {k: getattr(self, k) for k in _CANONICAL_KEYS}


@dataclass
class FamilyDocument:
    members: list[FamilyMember] = field(default_factory=list)
    # Set when the stored payload (or some of its entries) could not be read.
    malformed: bool = field(default=False, compare=False)

    def find(self, person_id: str) -> Optional[FamilyMember]:
        for m in self.members:
            if m.person_id == person_id:
                return m
        return None

    def has_email(self, email: str) -> bool:
        needle = (email or "").strip().lower()
        return bool(needle) and any((m.email or "").strip().lower() == needle for m in self.members)

    def without(self, person_id: str) -> tuple["FamilyDocument", int]:
        """Return a copy minus every entry for ``person_id`` and how many were dropped."""
        kept = [m for m in self.members if m.person_id != person_id]
        return FamilyDocument(members=kept), len(self.members) - len(kept)

    def person_ids(self) -> set[str]:
        return {m.person_id for m in self.members}


def _coerce_level(value: Any) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _member_from_dict(raw: dict[str, Any]) -> Optional[FamilyMember]:
    data = dict(raw)
    for legacy, canonical in _LEGACY_ALIASES.items():
        if legacy in data:
            legacy_value = data.pop(legacy)
            data.setdefault(canonical, legacy_value)

    person_id = data.pop("person_id", None)
    if person_id is None or str(person_id).strip() == "":
        return None

    name = data.pop("name", None)
    email = data.pop("email", None)
    relation = data.pop("relation", None)
    level = data.pop("network_level", None)
    family_line_id = data.pop("family_line_id", None)

    return FamilyMember(
        person_id=str(person_id),
        name=str(name or ""),
        email=str(email or ""),
        relation=str(relation or ""),
        network_level=_coerce_level(level),
        family_line_id=family_line_id,
        extra=data,
    )


def _load_layers(payload: Any) -> Any:
    """Parse ``payload`` and unwrap at most one extra string layer."""
    if isinstance(payload, (bytes, bytearray)):
        payload = bytes(payload).decode("utf-8")

    if isinstance(payload, str):
        if not payload.strip():
            return None
        parsed = json.loads(payload)
    else:
        # Drivers for JSON columns hand us the parsed value already.
        parsed = payload

    if isinstance(parsed, str):
        parsed = json.loads(parsed)
    return parsed


def decode_family_document(payload: Any) -> FamilyDocument:
    try:
        data = _load_layers(payload)
    except (ValueError, RecursionError) as e:
        # UnicodeDecodeError is a ValueError; deep nesting exhausts the parser.
        log.warning("Unparseable family document, treating as empty: %s", e)
        return FamilyDocument(malformed=True)

    if data is None:
        return FamilyDocument()
    if not isinstance(data, dict):
        log.warning("Family document is %s, not an object; treating as empty", type(data).__name__)
        return FamilyDocument(malformed=True)

    raw_members = data.get("members")
    if raw_members is None:
        raw_members = data.get("people")
    if not isinstance(raw_members, list):
        if data:
            log.warning("Family document has no member list; treating as empty")
        return FamilyDocument(malformed=bool(data))

    members: list[FamilyMember] = []
    dropped = 0
    for entry in raw_members:
        if not isinstance(entry, dict):
            log.warning("Skipping non-object family member entry: %r", entry)
            dropped += 1
            continue
        member = _member_from_dict(entry)
        if member is None:
            log.warning("Skipping family member entry without person_id")
            dropped += 1
            continue
        members.append(member)
    return FamilyDocument(members=members, malformed=dropped > 0)


def encode_family_document(doc: FamilyDocument) -> str:
    return json.dumps(
        {"members": [m.to_dict() for m in doc.members]},
        separators=(",", ":"),
        ensure_ascii=False,
        default=str,
    )
