"""Family graph: bidirectional edges stored as two independent documents.

Each person owns one FamilyLine listing the people they consider family.
An edge A<->B exists when A's list has an entry for B and B's list has an
entry for A.  The two entries may carry different relation labels and
network levels (each owner annotates the edge in their own words), but they
must exist together.

There is no transaction spanning two FamilyLines.  Add and remove therefore
track the outcome of each document write separately and report a single
combined result:

- both writes landed (or one was not needed)  -> success
- neither landed                              -> the underlying error
- one landed, the other failed / is unknown   -> ``PartiallyApplied``

Nothing here retries.  A half-finished two-document write that gets retried
blindly can leave duplicate or contradictory entries; the caller (or the
reconciliation sweep in ``find_one_sided_edges`` / ``reconcile``) decides.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, replace
from typing import Any, Literal, Optional

try:
    from .catalog import RelationshipCatalog
    from .codec import FamilyDocument, FamilyMember
    from .errors import (
        Conflict,
        FamilyLineError,
        InvalidRequest,
        NotFound,
        PartiallyApplied,
        SideResult,
        StoreUnavailable,
        WriteOutcome,
    )
    from .lookup import LookupService, OwnerRef, PersonRef
    from .store import FamilyLineRecord, FamilyLineStore
except ImportError:  # pragma: no cover
    from catalog import RelationshipCatalog
    from codec import FamilyDocument, FamilyMember
    from errors import (
        Conflict,
        FamilyLineError,
        InvalidRequest,
        NotFound,
        PartiallyApplied,
        SideResult,
        StoreUnavailable,
        WriteOutcome,
    )
    from lookup import LookupService, OwnerRef, PersonRef
    from store import FamilyLineRecord, FamilyLineStore

log = logging.getLogger(__name__)

_RELATION_MAX_LENGTH = 80
# Per-entry sharing switches; new edges start with everything off.
_SHARED_DATA_DEFAULTS = {"roll_and_write": 0, "field_notes": 0, "recipes": 0}

ReconcileMode = Literal["complete", "retract"]


@dataclass(frozen=True)
class RemovedEdge:
    person_id: str
    name: str
    email: str
    remaining_members: int
    # False when the other side had already lost its entry (legacy one-sided edge).
    reciprocal_removed: bool

    def to_dict(self) -> dict[str, Any]:
        return {
            "removed_person_id": self.person_id,
            "removed_person": {"person_id": self.person_id, "name": self.name, "email": self.email},
            "remaining_members": self.remaining_members,
            "reciprocal_removed": self.reciprocal_removed,
        }


@dataclass(frozen=True)
class FamilyView:
    person_id: str
    family_line_id: Any
    version: int
    members: list[FamilyMember]

    def to_dict(self) -> dict[str, Any]:
        return {
            "person_id": self.person_id,
            "family_line_id": self.family_line_id,
            "version": self.version,
            "members": [m.public() for m in self.members],
        }


@dataclass(frozen=True)
class OneSidedEdge:
    """``holder`` lists ``missing``, but ``missing`` does not list ``holder``."""

    holder_person_id: str
    missing_person_id: str
    member: FamilyMember
    # False when the missing side has no FamilyLine at all (cannot be completed).
    missing_has_line: bool

    def to_dict(self) -> dict[str, Any]:
        return {
            "holder_person_id": self.holder_person_id,
            "missing_person_id": self.missing_person_id,
            "relation": self.member.relation,
            "network_level": self.member.network_level,
            "missing_has_line": self.missing_has_line,
        }


def _clean_relation(relation: str | None) -> str:
    value = (relation or "").strip()
    if not value:
        raise InvalidRequest("relation must not be empty")
    if len(value) > _RELATION_MAX_LENGTH:
        raise InvalidRequest(f"relation must be at most {_RELATION_MAX_LENGTH} characters")
    return value


def _new_entry_extra() -> dict[str, Any]:
    return {"shared_data": dict(_SHARED_DATA_DEFAULTS)}


def _require_readable(record: FamilyLineRecord) -> None:
    if record.document.malformed:
        raise Conflict(
            f"Family line {record.id} (person {record.person_id}) is unreadable; repair it first"
        )


def _failure_outcome(error: FamilyLineError) -> WriteOutcome:
    if isinstance(error, StoreUnavailable) and error.maybe_applied:
        return WriteOutcome.UNKNOWN
    return WriteOutcome.FAILED


def _settle(operation: str, sides: list[SideResult]) -> None:
    """Turn per-side outcomes into success, the original error, or PartiallyApplied."""
    landed = [s for s in sides if s.outcome in (WriteOutcome.APPLIED, WriteOutcome.UNKNOWN)]
    broken = [
        s
        for s in sides
        if s.outcome in (WriteOutcome.FAILED, WriteOutcome.UNKNOWN, WriteOutcome.NOT_ATTEMPTED)
    ]
    if not broken:
        return
    if not landed:
        # Nothing changed anywhere; surface the first real cause as-is.
        for s in sides:
            if s.error is not None:
                raise s.error
    err = PartiallyApplied(operation, sides)
    log.error("%s; sides=%s", err.message, [s.to_dict() for s in sides])
    raise err


class FamilyGraph:
    def __init__(
        self,
        store: FamilyLineStore,
        lookup: LookupService,
        catalog: RelationshipCatalog,
    ) -> None:
        self._store = store
        self._lookup = lookup
        self._catalog = catalog

    # ------------------------------------------------------------------
    # helpers
    # ------------------------------------------------------------------

    def _read_line(self, person_id: str, *, who: str) -> FamilyLineRecord:
        record = self._store.read(person_id)
        if record is None:
            raise NotFound(f"No family line found for {who}")
        return record

    def _owner_line(self, owner_email: str) -> tuple[OwnerRef, FamilyLineRecord]:
        owner = self._lookup.resolve_owner(owner_email)
        return owner, self._read_line(owner.person_id, who="logged in user")

    def _write_side(self, side: str, record: FamilyLineRecord, document: FamilyDocument) -> SideResult:
        try:
            self._store.write(record, document)
        except FamilyLineError as e:
            log.warning("Write of %s side (person %s) failed: %s", side, record.person_id, e.message)
            return SideResult(side, record.person_id, record.id, _failure_outcome(e), e)
        return SideResult(side, record.person_id, record.id, WriteOutcome.APPLIED)

    # ------------------------------------------------------------------
    # reads
    # ------------------------------------------------------------------

    def get_family(self, owner_email: str) -> FamilyView:
        owner, line = self._owner_line(owner_email)
        return FamilyView(
            person_id=owner.person_id,
            family_line_id=line.id,
            version=line.version,
            members=list(line.document.members),
        )

    def get_member(self, owner_email: str, person_id: str) -> FamilyMember:
        """The owner's entry for ``person_id``; people outside the family are not visible."""
        _owner, line = self._owner_line(owner_email)
        member = line.document.find(str(person_id))
        if member is None:
            raise NotFound("Person not found in your family")
        return member

    # ------------------------------------------------------------------
    # add
    # ------------------------------------------------------------------

    def add_edge(
        self,
        owner_email: str,
        target_person_id: str,
        relation: str,
        network: str,
        *,
        reciprocal_relation: Optional[str] = None,
    ) -> FamilyMember:
        """Create the edge owner<->target and return the owner's new entry.

        The target's entry for the owner gets ``reciprocal_relation`` when
        given, otherwise the same label.  Both entries get the same level.
        """
        relation = _clean_relation(relation)
        mirror_relation = _clean_relation(reciprocal_relation) if reciprocal_relation is not None else relation
        level = self._catalog.level_for(network)

        owner, owner_line = self._owner_line(owner_email)
        target = self._lookup.resolve_person(target_person_id)
        if target.person_id == owner.person_id:
            raise InvalidRequest("Cannot add yourself to your own family")
        owner_person = self._lookup.resolve_person(owner.person_id)
        # Both sides must be writable before we touch either.
        target_line = self._read_line(target.person_id, who="person to add")

        doc = owner_line.document
        if doc.find(target.person_id) is not None or doc.has_email(target.email):
            raise Conflict("User is already in the family")

        member = FamilyMember(
            person_id=target.person_id,
            name=target.name,
            email=target.email,
            relation=relation,
            network_level=level,
            family_line_id=target_line.id,
            extra=_new_entry_extra(),
        )
        owner_side = self._write_side(
            "owner", owner_line, FamilyDocument(members=[*doc.members, member])
        )
        if owner_side.outcome is not WriteOutcome.APPLIED:
            # Raises: the owner error itself, or PartiallyApplied if it may have landed.
            target_side = SideResult(
                "target", target.person_id, target_line.id, WriteOutcome.NOT_ATTEMPTED
            )
            _settle("add_edge", [owner_side, target_side])

        target_side = self._mirror(owner_person, owner_line, target, mirror_relation, level)
        _settle("add_edge", [owner_side, target_side])

        log.info(
            "Added family edge %s -> %s (%s, level %d)",
            owner.person_id,
            target.person_id,
            relation,
            level,
        )
        return member

    def _mirror(
        self,
        owner: PersonRef,
        owner_line: FamilyLineRecord,
        target: PersonRef,
        relation: str,
        level: int,
    ) -> SideResult:
        # Re-read: the target's document may have moved since the existence check.
        try:
            target_line = self._read_line(target.person_id, who="person to add")
        except FamilyLineError as e:
            return SideResult("target", target.person_id, None, WriteOutcome.FAILED, e)

        target_doc = target_line.document
        if target_doc.find(owner.person_id) is not None or target_doc.has_email(owner.email):
            log.info(
                "Person %s already lists %s; completing a one-sided edge",
                target.person_id,
                owner.person_id,
            )
            return SideResult("target", target.person_id, target_line.id, WriteOutcome.SKIPPED)

        reciprocal = FamilyMember(
            person_id=owner.person_id,
            name=owner.name,
            email=owner.email,
            relation=relation,
            network_level=level,
            family_line_id=owner_line.id,
            extra=_new_entry_extra(),
        )
        return self._write_side(
            "target", target_line, FamilyDocument(members=[*target_doc.members, reciprocal])
        )

    # ------------------------------------------------------------------
    # remove
    # ------------------------------------------------------------------

    def remove_edge(self, owner_email: str, target_person_id: str) -> RemovedEdge:
        owner, owner_line = self._owner_line(owner_email)
        target = self._lookup.resolve_person(target_person_id)
        target_line = self._read_line(target.person_id, who="person to remove")

        owner_doc, removed = owner_line.document.without(target.person_id)
        if removed == 0:
            raise NotFound("Person not found in family")
        target_doc, removed_back = target_line.document.without(owner.person_id)

        if removed_back:
            # Independent rows, no shared transaction: write both at once and
            # wait for both outcomes before reporting anything.
            with ThreadPoolExecutor(max_workers=2, thread_name_prefix="familyline-write") as pool:
                owner_future = pool.submit(self._write_side, "owner", owner_line, owner_doc)
                target_future = pool.submit(self._write_side, "target", target_line, target_doc)
                sides = [owner_future.result(), target_future.result()]
        else:
            log.warning(
                "Person %s did not list %s; removing one-sided edge",
                target.person_id,
                owner.person_id,
            )
            sides = [
                self._write_side("owner", owner_line, owner_doc),
                SideResult("target", target.person_id, target_line.id, WriteOutcome.SKIPPED),
            ]
        _settle("remove_edge", sides)

        log.info("Removed family edge %s -> %s", owner.person_id, target.person_id)
        return RemovedEdge(
            person_id=target.person_id,
            name=target.name,
            email=target.email,
            remaining_members=len(owner_doc.members),
            reciprocal_removed=bool(removed_back),
        )

    # ------------------------------------------------------------------
    # update
    # ------------------------------------------------------------------

    def update_edge(
        self,
        owner_email: str,
        target_person_id: str,
        relation: str,
        network: str,
    ) -> FamilyMember:
        """Relabel the owner's entry for ``target_person_id``.

        Owner side only: the target's entry for the owner is their own
        annotation and stays as it is.
        """
        relation = _clean_relation(relation)
        level = self._catalog.level_for(network)

        owner, line = self._owner_line(owner_email)
        current = line.document.find(str(target_person_id))
        if current is None:
            raise NotFound("Person not found in family")

        updated = replace(current, relation=relation, network_level=level)
        members = [updated if m is current else m for m in line.document.members]
        self._store.write(line, FamilyDocument(members=members))

        log.info(
            "Updated family edge %s -> %s (%s, level %d)",
            owner.person_id,
            updated.person_id,
            relation,
            level,
        )
        return updated

    # ------------------------------------------------------------------
    # reconciliation
    # ------------------------------------------------------------------

    def find_one_sided_edges(self) -> list[OneSidedEdge]:
        lines = {r.person_id: r for r in self._store.iter_all()}
        out: list[OneSidedEdge] = []
        for holder_id, record in lines.items():
            for member in record.document.members:
                other = lines.get(member.person_id)
                if other is not None and other.document.find(holder_id) is not None:
                    continue
                out.append(
                    OneSidedEdge(
                        holder_person_id=holder_id,
                        missing_person_id=member.person_id,
                        member=member,
                        missing_has_line=other is not None,
                    )
                )
        return out

    def reconcile(self, edge: OneSidedEdge, mode: ReconcileMode) -> bool:
        """Repair one one-sided edge.  Returns False if it was already consistent.

        ``complete`` writes the missing mirror entry; ``retract`` drops the
        dangling entry from the holder.  Both re-read before writing, and
        neither acts on an edge whose other side is unreadable.
        """
        if mode == "complete":
            missing_line = self._read_line(edge.missing_person_id, who="missing side")
            _require_readable(missing_line)
            if missing_line.document.find(edge.holder_person_id) is not None:
                return False
            holder = self._lookup.resolve_person(edge.holder_person_id)
            holder_line = self._read_line(edge.holder_person_id, who="holder side")
            mirror = FamilyMember(
                person_id=holder.person_id,
                name=holder.name,
                email=holder.email,
                relation=edge.member.relation,
                network_level=edge.member.network_level,
                family_line_id=holder_line.id,
                extra=_new_entry_extra(),
            )
            self._store.write(
                missing_line, FamilyDocument(members=[*missing_line.document.members, mirror])
            )
        elif mode == "retract":
            holder_line = self._read_line(edge.holder_person_id, who="holder side")
            missing_line = self._store.read(edge.missing_person_id)
            if missing_line is not None:
                _require_readable(missing_line)
                if missing_line.document.find(edge.holder_person_id) is not None:
                    return False
            doc, removed = holder_line.document.without(edge.missing_person_id)
            if not removed:
                return False
            self._store.write(holder_line, doc)
        else:
            raise InvalidRequest(f"unknown reconcile mode: {mode!r}")

        log.info(
            "Reconciled one-sided edge %s -> %s (%s)",
            edge.holder_person_id,
            edge.missing_person_id,
            mode,
        )
        return True
