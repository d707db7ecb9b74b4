from __future__ import annotations

import os
import sqlite3
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Iterable

from .settings import settings


def utc_now() -> str:
    return datetime.utcnow().strftime("%Y-%m-%dT%H:%M:%SZ")


def _resolve_db_path() -> str:
    """Return a file path usable by sqlite.

    If the configured path is an existing directory (a volume mounted where a
    file was expected), the database file is placed inside it.
    """

    p = os.path.abspath(settings.db_path)

    if os.path.isdir(p):
        p = os.path.join(p, "hcr.db")

    parent = os.path.dirname(p)
    if parent and not os.path.exists(parent):
        os.makedirs(parent, exist_ok=True)

    return p


def connect() -> sqlite3.Connection:
    conn = sqlite3.connect(_resolve_db_path(), check_same_thread=False)
    conn.row_factory = sqlite3.Row
    return conn


def init_db() -> None:
    """Create tables if they do not exist."""
    with connect() as conn:
        conn.executescript(
            """
            CREATE TABLE IF NOT EXISTS events (
              id INTEGER PRIMARY KEY AUTOINCREMENT,
              ts TEXT NOT NULL,
              level TEXT NOT NULL,
              namespace TEXT,
              pod TEXT,
              message TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS reconcile_runs (
              id INTEGER PRIMARY KEY AUTOINCREMENT,
              started_at TEXT NOT NULL,
              finished_at TEXT NOT NULL,
              examined INTEGER NOT NULL,
              created INTEGER NOT NULL,
              updated INTEGER NOT NULL,
              unchanged INTEGER NOT NULL,
              skipped INTEGER NOT NULL,
              failed INTEGER NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_events_ts ON events(ts);
            """
        )


def log_event(level: str, message: str, namespace: str | None = None, pod: str | None = None) -> None:
    with connect() as conn:
        conn.execute(
            "INSERT INTO events (ts, level, namespace, pod, message) VALUES (?, ?, ?, ?, ?)",
            (utc_now(), level.upper(), namespace, pod, message),
        )


@dataclass(frozen=True)
class ReconcileRunRow:
    id: int
    started_at: str
    finished_at: str
    examined: int
    created: int
    updated: int
    unchanged: int
    skipped: int
    failed: int


def _rows_to_dataclass(rows: Iterable[sqlite3.Row], cls: Any) -> list[Any]:
    out: list[Any] = []
    for r in rows:
        out.append(cls(**dict(r)))
    return out


def insert_reconcile_run(
    started_at: str,
    finished_at: str,
    examined: int,
    created: int,
    updated: int,
    unchanged: int,
    skipped: int,
    failed: int,
) -> ReconcileRunRow:
    with connect() as conn:
        cur = conn.execute(
            """
            INSERT INTO reconcile_runs (started_at, finished_at, examined, created, updated, unchanged, skipped, failed)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (started_at, finished_at, examined, created, updated, unchanged, skipped, failed),
        )
        row = conn.execute("SELECT * FROM reconcile_runs WHERE id=?", (cur.lastrowid,)).fetchone()
        return ReconcileRunRow(**dict(row))


def list_reconcile_runs(limit: int = 20) -> list[ReconcileRunRow]:
    with connect() as conn:
        rows = conn.execute("SELECT * FROM reconcile_runs ORDER BY id DESC LIMIT ?", (limit,)).fetchall()
        return _rows_to_dataclass(rows, ReconcileRunRow)


def latest_events(limit: int = 100, level: str | None = None) -> list[dict[str, Any]]:
    with connect() as conn:
        if level:
            rows = conn.execute(
                "SELECT * FROM events WHERE level=? ORDER BY id DESC LIMIT ?", (level.upper(), limit)
            ).fetchall()
        else:
            rows = conn.execute("SELECT * FROM events ORDER BY id DESC LIMIT ?", (limit,)).fetchall()
        return [dict(r) for r in rows]
