from __future__ import annotations

import os
import sqlite3
import threading

from .migrations import apply_migrations

_MIGRATED_PATHS: set[str] = set()
_MIGRATION_LOCK = threading.Lock()


def connect_db(path: str) -> sqlite3.Connection:
    resolved = os.path.abspath(path)
    directory = os.path.dirname(resolved)
    if directory:
        os.makedirs(directory, exist_ok=True)
    conn = sqlite3.connect(resolved, timeout=5.0)
    conn.execute("PRAGMA journal_mode=WAL")
    conn.execute("PRAGMA synchronous=NORMAL")
    conn.execute("PRAGMA busy_timeout=5000")
    conn.execute("PRAGMA foreign_keys=ON")
    with _MIGRATION_LOCK:
        if resolved not in _MIGRATED_PATHS or not _has_schema(conn):
            apply_migrations(conn)
            _MIGRATED_PATHS.add(resolved)
    return conn


def _has_schema(conn: sqlite3.Connection) -> bool:
    row = conn.execute(
        "SELECT name FROM sqlite_master WHERE type = 'table' AND name = 'schema_migrations'"
    ).fetchone()
    return row is not None
