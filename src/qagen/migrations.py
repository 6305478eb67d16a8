from __future__ import annotations

import logging
import sqlite3
from typing import Callable

from .utils import utc_now_iso

Migration = Callable[[sqlite3.Connection], None]


def apply_migrations(conn: sqlite3.Connection) -> None:
    logger = logging.getLogger("qagen.migrations")
    conn.execute("BEGIN IMMEDIATE")
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS schema_migrations (
            version TEXT PRIMARY KEY,
            applied_at TEXT NOT NULL
        )
        """
    )
    applied = {
        row[0]
        for row in conn.execute("SELECT version FROM schema_migrations").fetchall()
    }
    try:
        for version, migration in _get_migrations():
            if version in applied:
                logger.debug("migration_skipped version=%s", version)
                continue
            migration(conn)
            conn.execute(
                "INSERT OR IGNORE INTO schema_migrations (version, applied_at) VALUES (?, ?)",
                (version, utc_now_iso()),
            )
            logger.info("migration_applied version=%s", version)
        conn.commit()
    except Exception:
        conn.rollback()
        raise


def _migration_initial_schema(conn: sqlite3.Connection) -> None:
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS tickets_seen (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            ticket_key TEXT UNIQUE NOT NULL,
            pr_number INTEGER NULL,
            processed_at TEXT NOT NULL,
            status TEXT NOT NULL DEFAULT 'processed',
            files_generated INTEGER NOT NULL DEFAULT 0
        )
        """
    )
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS generated_tests (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            ticket_key TEXT NOT NULL,
            file_path TEXT NOT NULL,
            test_file_path TEXT NOT NULL,
            generated_at TEXT NOT NULL,
            status TEXT NOT NULL DEFAULT 'generated'
        )
        """
    )


def _migration_outcome_tag(conn: sqlite3.Connection) -> None:
    columns = {row[1] for row in conn.execute("PRAGMA table_info(tickets_seen)").fetchall()}
    if "outcome" not in columns:
        conn.execute("ALTER TABLE tickets_seen ADD COLUMN outcome TEXT NULL")


def _migration_indexes(conn: sqlite3.Connection) -> None:
    conn.execute(
        "CREATE INDEX IF NOT EXISTS idx_tickets_seen_processed_at ON tickets_seen(processed_at)"
    )
    conn.execute(
        "CREATE INDEX IF NOT EXISTS idx_generated_tests_ticket_key ON generated_tests(ticket_key)"
    )


def _get_migrations() -> list[tuple[str, Migration]]:
    return [
        ("0001_initial_schema", _migration_initial_schema),
        ("0002_outcome_tag", _migration_outcome_tag),
        ("0003_indexes", _migration_indexes),
    ]
