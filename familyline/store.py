"""Keyed read/write of FamilyLine documents.

One row per owning person.  There is no transaction spanning two rows;
each write is checked against the version the caller read (optimistic
concurrency) and fails with ``Conflict`` if the row moved in between.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import Any, Callable, ContextManager, Iterator

import psycopg

try:
    from .codec import FamilyDocument, decode_family_document, encode_family_document
    from .db import db_conn
    from .errors import Conflict, StoreUnavailable
except ImportError:  # pragma: no cover
    from codec import FamilyDocument, decode_family_document, encode_family_document
    from db import db_conn
    from errors import Conflict, StoreUnavailable

log = logging.getLogger(__name__)

ConnectFn = Callable[[], ContextManager[psycopg.Connection]]


@dataclass(frozen=True)
class FamilyLineRecord:
    id: Any
    person_id: str
    version: int
    document: FamilyDocument
    # Raw stored payload, kept so maintenance jobs can spot legacy encodings.
    raw: Any = None


def _row_to_record(row: tuple[Any, ...]) -> FamilyLineRecord:
    fid, person_id, raw, version = row
    return FamilyLineRecord(
        id=fid,
        person_id=str(person_id),
        version=int(version or 0),
        document=decode_family_document(raw),
        raw=raw,
    )


class FamilyLineStore:
    def __init__(self, connect: ConnectFn = db_conn) -> None:
        self._connect = connect

    def read(self, person_id: str) -> FamilyLineRecord | None:
        try:
            with self._connect() as conn:
                row = conn.execute(
                    """
                    SELECT id, person_id, json, version
                    FROM familyline
                    WHERE person_id = %s
                    LIMIT 1
                    """.strip(),
                    (person_id,),
                ).fetchone()
        except psycopg.Error as e:
            raise StoreUnavailable(f"could not read family line: {e}") from e

        if not row:
            return None
        return _row_to_record(tuple(row))

    def iter_all(self) -> Iterator[FamilyLineRecord]:
        try:
            with self._connect() as conn:
                rows = conn.execute(
                    """
                    SELECT id, person_id, json, version
                    FROM familyline
                    ORDER BY id
                    """.strip(),
                    (),
                ).fetchall()
        except psycopg.Error as e:
            raise StoreUnavailable(f"could not scan family lines: {e}") from e

        for row in rows:
            yield _row_to_record(tuple(row))

    def write(self, record: FamilyLineRecord, document: FamilyDocument) -> FamilyLineRecord:
        """Persist ``document`` over ``record`` if the stored version still matches.

        Returns the record as stored (version bumped).
        """
        payload = encode_family_document(document)
        sent = False
        try:
            with self._connect() as conn:
                sent = True
                row = conn.execute(
                    """
                    UPDATE familyline
                    SET json = %s, version = version + 1, updated_at = now()
                    WHERE id = %s AND version = %s
                    RETURNING version
                    """.strip(),
                    (payload, record.id, record.version),
                ).fetchone()
                if not row:
                    raise Conflict(
                        f"family line for person {record.person_id} changed since it was read; retry"
                    )
                conn.commit()
        except psycopg.Error as e:
            raise StoreUnavailable(
                f"could not write family line for person {record.person_id}: {e}",
                maybe_applied=sent,
            ) from e

        log.debug("Wrote family line %s (person %s) v%s", record.id, record.person_id, row[0])
        return replace(record, version=int(row[0]), document=document, raw=payload)
