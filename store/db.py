from __future__ import annotations

import sqlite3
import threading
from dataclasses import dataclass
from pathlib import Path


class PersistenceError(Exception):
    """A read or write against the disaster store failed."""

    error_code = "persistence_error"


@dataclass(frozen=True)
class Database:
    conn: sqlite3.Connection
    lock: threading.Lock


_MIGRATIONS: list[tuple[int, str]] = [
    (
        1,
        """
        CREATE TABLE IF NOT EXISTS schema_migrations (
          version INTEGER NOT NULL PRIMARY KEY
        );

        CREATE TABLE IF NOT EXISTS disasters (
          disaster_id TEXT NOT NULL PRIMARY KEY,
          source TEXT NOT NULL,
          status TEXT NOT NULL,
          alert_level TEXT NOT NULL DEFAULT '',
          severity TEXT NULL,

          country TEXT NULL,
          country_code TEXT NULL,
          country_iso3 TEXT NULL,

          type TEXT NOT NULL,
          type_code TEXT NOT NULL,
          event_date TEXT NOT NULL,

          latitude TEXT NULL,
          longitude TEXT NULL,

          title TEXT NOT NULL DEFAULT '',
          description TEXT NOT NULL DEFAULT '',
          url TEXT NOT NULL DEFAULT '',

          first_seen_at TEXT NOT NULL,
          updated_at TEXT NOT NULL
        );

        CREATE INDEX IF NOT EXISTS disasters_status_idx ON disasters(status);
        CREATE INDEX IF NOT EXISTS disasters_event_date_idx ON disasters(event_date);
        """,
    ),
    (
        2,
        """
        CREATE TABLE IF NOT EXISTS feed_state (
          feed_id TEXT NOT NULL PRIMARY KEY,
          last_run_at TEXT NULL,
          last_success_at TEXT NULL,
          last_error_at TEXT NULL,
          last_error TEXT NULL,
          consecutive_failures INTEGER NOT NULL DEFAULT 0,
          success_count INTEGER NOT NULL DEFAULT 0,
          error_count INTEGER NOT NULL DEFAULT 0,
          last_new_count INTEGER NULL,
          last_updated_count INTEGER NULL,
          last_past_count INTEGER NULL
        );
        """,
    ),
]


def open_database(path: Path) -> Database:
    path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(path, check_same_thread=False)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode=WAL;")
    conn.execute("PRAGMA synchronous=NORMAL;")
    conn.execute("PRAGMA busy_timeout=5000;")
    _apply_migrations(conn)
    return Database(conn=conn, lock=threading.Lock())


def _apply_migrations(conn: sqlite3.Connection) -> None:
    conn.execute(
        "CREATE TABLE IF NOT EXISTS schema_migrations (version INTEGER NOT NULL PRIMARY KEY);"
    )
    row = conn.execute(
        "SELECT COALESCE(MAX(version), 0) AS v FROM schema_migrations;"
    ).fetchone()
    current_version = int(row["v"])

    for version, sql in _MIGRATIONS:
        if version <= current_version:
            continue
        conn.executescript(sql)
        conn.execute("INSERT INTO schema_migrations(version) VALUES (?);", (version,))
        conn.commit()
