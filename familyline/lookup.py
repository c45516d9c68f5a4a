"""Read-only identity lookups against the user directory."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import psycopg

try:
    from .db import db_conn
    from .errors import NotFound, StoreUnavailable
    from .store import ConnectFn
except ImportError:  # pragma: no cover
    from db import db_conn
    from errors import NotFound, StoreUnavailable
    from store import ConnectFn

_SEARCH_MAX_LIMIT = 50


@dataclass(frozen=True)
class OwnerRef:
    person_id: str
    # None when the person has not been provisioned a FamilyLine yet.
    family_line_id: Any


@dataclass(frozen=True)
class PersonRef:
    person_id: str
    name: str
    email: str

    def to_dict(self) -> dict[str, Any]:
        return {"person_id": self.person_id, "name": self.name, "email": self.email}


def _normalize_email(email: str) -> str:
    return (email or "").strip().lower()


class LookupService:
    def __init__(self, connect: ConnectFn = db_conn) -> None:
        self._connect = connect

    def _fetchone(self, query: str, params: tuple[Any, ...]) -> tuple[Any, ...] | None:
        try:
            with self._connect() as conn:
                row = conn.execute(query, params).fetchone()
        except psycopg.Error as e:
            raise StoreUnavailable(f"user directory unavailable: {e}") from e
        return tuple(row) if row else None

    def resolve_owner(self, email: str) -> OwnerRef:
        """email -> (person_id, family_line_id)."""
        normalized = _normalize_email(email)
        if not normalized:
            raise NotFound("No user for an empty email")

        row = self._fetchone(
            """
            SELECT u.person_id, f.id
            FROM users u
            LEFT JOIN familyline f ON f.person_id = u.person_id
            WHERE lower(u.email) = %s
            LIMIT 1
            """.strip(),
            (normalized,),
        )
        if not row:
            raise NotFound(f"No user with email {email}")
        return OwnerRef(person_id=str(row[0]), family_line_id=row[1])

    def resolve_person(self, person_id: str) -> PersonRef:
        """person_id -> (name, email)."""
        row = self._fetchone(
            """
            SELECT person_id, name, email
            FROM users
            WHERE person_id = %s
            LIMIT 1
            """.strip(),
            (str(person_id),),
        )
        if not row:
            raise NotFound(f"Person not found: {person_id}")
        return PersonRef(person_id=str(row[0]), name=row[1] or "", email=row[2] or "")

    def search_people(self, query: str, *, limit: int = 10) -> list[PersonRef]:
        q = (query or "").strip()
        if not q:
            return []
        limit = max(1, min(int(limit), _SEARCH_MAX_LIMIT))
        pattern = f"%{q}%"
        try:
            with self._connect() as conn:
                rows = conn.execute(
                    """
                    SELECT person_id, name, email
                    FROM users
                    WHERE name ILIKE %s OR email ILIKE %s
                    ORDER BY name, email
                    LIMIT %s
                    """.strip(),
                    (pattern, pattern, limit),
                ).fetchall()
        except psycopg.Error as e:
            raise StoreUnavailable(f"user directory unavailable: {e}") from e

        return [PersonRef(person_id=str(r[0]), name=r[1] or "", email=r[2] or "") for r in rows]
