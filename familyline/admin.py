"""CLI maintenance tool for family lines.

Usage:
    python -m familyline.admin init-schema
    python -m familyline.admin sweep
    python -m familyline.admin reconcile --mode=complete [--dry-run]
    python -m familyline.admin reconcile --mode=retract [--dry-run]
    python -m familyline.admin normalize-encoding [--dry-run]
    python -m familyline.admin issue-token --email=alice@example.com
"""

from __future__ import annotations

import argparse
import json
import logging
from pathlib import Path

from familyline.auth import SESSION_COOKIE, create_jwt
from familyline.codec import encode_family_document
from familyline.db import db_conn
from familyline.deps import get_family_graph, get_lookup
from familyline.errors import FamilyLineError
from familyline.store import FamilyLineStore

_SCHEMA_SQL = Path(__file__).resolve().parent.parent / "sql" / "schema.sql"
_PAST = {"complete": "completed", "retract": "retracted"}


def cmd_init_schema(args: argparse.Namespace) -> int:
    if not _SCHEMA_SQL.exists():
        raise SystemExit(f"Schema file not found: {_SCHEMA_SQL}")
    with db_conn() as conn:
        conn.execute(_SCHEMA_SQL.read_text(encoding="utf-8"))
        conn.commit()
    print(f"Schema applied from {_SCHEMA_SQL}.")
    return 0


def cmd_sweep(args: argparse.Namespace) -> int:
    edges = get_family_graph().find_one_sided_edges()
    if not edges:
        print("No one-sided edges.")
        return 0
    print(f"{'Holder':<20} {'Missing':<20} {'Relation':<20} {'Level':<6} {'Has line':<8}")
    print("-" * 78)
    for e in edges:
        print(
            f"{e.holder_person_id:<20} {e.missing_person_id:<20} "
            f"{(e.member.relation or '-'):<20} {str(e.member.network_level or '-'):<6} "
            f"{('yes' if e.missing_has_line else 'no'):<8}"
        )
    # Non-zero so cron/CI notices.
    return 2


def cmd_reconcile(args: argparse.Namespace) -> int:
    graph = get_family_graph()
    edges = graph.find_one_sided_edges()
    fixed = 0
    failed = 0
    for e in edges:
        if args.mode == "complete" and not e.missing_has_line:
            print(f"skip {e.holder_person_id} -> {e.missing_person_id}: no family line to complete")
            continue
        if args.dry_run:
            print(f"would {args.mode} {e.holder_person_id} -> {e.missing_person_id}")
            continue
        try:
            if graph.reconcile(e, args.mode):
                fixed += 1
                print(f"{_PAST[args.mode]} {e.holder_person_id} -> {e.missing_person_id}")
        except FamilyLineError as err:
            failed += 1
            print(f"failed {e.holder_person_id} -> {e.missing_person_id}: {err.message}")
    print(f"{len(edges)} one-sided edge(s), {fixed} repaired, {failed} failed.")
    return 1 if failed else 0


def cmd_normalize_encoding(args: argparse.Namespace) -> int:
    """Rewrite legacy-encoded documents in canonical single-level form.

    Rows that do not decode cleanly are reported and left as they are.
    Returns 1 when any were found.
    """
    store = FamilyLineStore()
    rewritten = 0
    unreadable = 0
    for record in store.iter_all():
        if record.document.malformed:
            unreadable += 1
            print(f"unreadable family line {record.id} (person {record.person_id}), left untouched")
            continue
        canonical = encode_family_document(record.document)
        if record.raw == canonical:
            continue
        if args.dry_run:
            print(f"would rewrite family line {record.id} (person {record.person_id})")
        else:
            store.write(record, record.document)
            print(f"rewrote family line {record.id} (person {record.person_id})")
        rewritten += 1
    print(
        f"{rewritten} document(s) {'need to be' if args.dry_run else 'were'} rewritten, "
        f"{unreadable} unreadable."
    )
    return 1 if unreadable else 0


def cmd_issue_token(args: argparse.Namespace) -> int:
    """Development helper: mint a session token for an existing user."""
    lookup = get_lookup()
    owner = lookup.resolve_owner(args.email)
    person = lookup.resolve_person(owner.person_id)
    token = create_jwt(user_id=args.user_id, email=person.email, name=person.name)
    print(json.dumps({"cookie": SESSION_COOKIE, "token": token}))
    return 0


def main() -> int:
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")

    parser = argparse.ArgumentParser(description="FamilyLine admin CLI")
    sub = parser.add_subparsers(dest="command")

    sub.add_parser("init-schema", help="Create tables / add the version column")

    sub.add_parser("sweep", help="List edges present on one side only")

    p = sub.add_parser("reconcile", help="Repair one-sided edges")
    p.add_argument("--mode", required=True, choices=["complete", "retract"])
    p.add_argument("--dry-run", action="store_true")

    p = sub.add_parser("normalize-encoding", help="Rewrite legacy double-encoded documents")
    p.add_argument("--dry-run", action="store_true")

    p = sub.add_parser("issue-token", help="Mint a development session token")
    p.add_argument("--email", required=True)
    p.add_argument("--user-id", type=int, default=0)

    args = parser.parse_args()
    if not args.command:
        parser.print_help()
        return 1

    dispatch = {
        "init-schema": cmd_init_schema,
        "sweep": cmd_sweep,
        "reconcile": cmd_reconcile,
        "normalize-encoding": cmd_normalize_encoding,
        "issue-token": cmd_issue_token,
    }
    try:
        return dispatch[args.command](args)
    except FamilyLineError as e:
        raise SystemExit(f"error: {e.message}") from e


if __name__ == "__main__":
    raise SystemExit(main())
