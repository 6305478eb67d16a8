from __future__ import annotations

import sqlite3
from typing import Any

from .db import connect_db
from .models import ArtifactLogEntry, ItemOutcome, SeenRecord
from .utils import utc_now_iso


def init_db(path: str) -> sqlite3.Connection:
    return connect_db(path)


def has_seen(conn: Any, ticket_key: str) -> bool:
    row = conn.execute(
        "SELECT id FROM tickets_seen WHERE ticket_key = ?",
        (ticket_key,),
    ).fetchone()
    return row is not None


def upsert_seen(
    conn: Any,
    ticket_key: str,
    pr_number: int | None = None,
    files_generated: int = 0,
    outcome: ItemOutcome | str | None = None,
) -> None:
    outcome_value = outcome.value if isinstance(outcome, ItemOutcome) else outcome
    conn.execute(
        """
        INSERT INTO tickets_seen (ticket_key, pr_number, processed_at, files_generated, outcome)
        VALUES (?, ?, ?, ?, ?)
        ON CONFLICT(ticket_key) DO UPDATE SET
            pr_number=excluded.pr_number,
            processed_at=excluded.processed_at,
            files_generated=excluded.files_generated,
            outcome=excluded.outcome
        """,
        (ticket_key, pr_number, utc_now_iso(), int(files_generated), outcome_value),
    )
    conn.commit()


def get_seen(conn: Any, ticket_key: str) -> SeenRecord | None:
    row = conn.execute(
        """
        SELECT ticket_key, pr_number, processed_at, files_generated, outcome
        FROM tickets_seen
        WHERE ticket_key = ?
        """,
        (ticket_key,),
    ).fetchone()
    if not row:
        return None
    return _row_to_seen(row)


def append_artifact_log(
    conn: Any, ticket_key: str, file_path: str, test_file_path: str
) -> int:
    cursor = conn.execute(
        """
        INSERT INTO generated_tests (ticket_key, file_path, test_file_path, generated_at)
        VALUES (?, ?, ?, ?)
        """,
        (ticket_key, file_path, test_file_path, utc_now_iso()),
    )
    conn.commit()
    return int(cursor.lastrowid)


def list_artifacts(conn: Any, ticket_key: str | None = None) -> list[ArtifactLogEntry]:
    if ticket_key is None:
        cursor = conn.execute(
            """
            SELECT id, ticket_key, file_path, test_file_path, generated_at
            FROM generated_tests
            ORDER BY id
            """
        )
    else:
        cursor = conn.execute(
            """
            SELECT id, ticket_key, file_path, test_file_path, generated_at
            FROM generated_tests
            WHERE ticket_key = ?
            ORDER BY id
            """,
            (ticket_key,),
        )
    return [
        ArtifactLogEntry(
            id=int(row[0]),
            ticket_key=row[1],
            file_path=row[2],
            test_file_path=row[3],
            generated_at=row[4],
        )
        for row in cursor.fetchall()
    ]


def list_recent(conn: Any, limit: int = 50) -> list[SeenRecord]:
    cursor = conn.execute(
        """
        SELECT ticket_key, pr_number, processed_at, files_generated, outcome
        FROM tickets_seen
        ORDER BY processed_at DESC, id DESC
        LIMIT ?
        """,
        (int(limit),),
    )
    return [_row_to_seen(row) for row in cursor.fetchall()]


def delete_seen(conn: Any, ticket_key: str) -> bool:
    cursor = conn.execute("DELETE FROM tickets_seen WHERE ticket_key = ?", (ticket_key,))
    conn.commit()
    return cursor.rowcount == 1


def count_table(conn: Any, table: str) -> int:
    if table not in ("tickets_seen", "generated_tests"):
        raise ValueError(f"unknown table: {table}")
    return int(conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0])


def _row_to_seen(row: tuple) -> SeenRecord:
    return SeenRecord(
        ticket_key=row[0],
        pr_number=int(row[1]) if row[1] is not None else None,
        processed_at=row[2],
        files_generated=int(row[3] or 0),
        outcome=row[4],
    )
