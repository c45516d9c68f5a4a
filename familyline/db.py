from __future__ import annotations

import os
from contextlib import contextmanager
from typing import Iterator

import psycopg

# Seconds; applies to opening the connection only.  Statement timeouts are
# left to the server configuration.
_CONNECT_TIMEOUT = int(os.environ.get("FAMILYLINE_DB_CONNECT_TIMEOUT", "10"))


def get_database_url() -> str:
    url = os.environ.get("DATABASE_URL")
    if not url:
        raise RuntimeError("DATABASE_URL is not set")
    return url


@contextmanager
def db_conn() -> Iterator[psycopg.Connection]:
    """Yield a fresh database connection.

    Every unit of work gets its own connection; nothing is cached between
    requests, so FamilyLine documents are always read fresh.
    """
    with psycopg.connect(
        get_database_url(),
        connect_timeout=_CONNECT_TIMEOUT,
        application_name="familyline",
    ) as conn:
        yield conn
