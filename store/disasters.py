from __future__ import annotations

import sqlite3
from collections.abc import Iterable, Mapping
from datetime import UTC, datetime

from normalize.models import (
    ACTIVE_STATUSES,
    REAL_TIME,
    DisasterRecord,
    parse_iso,
    to_iso,
)
from store.db import Database, PersistenceError


# Record attribute -> column, in insert order.
_COLUMNS: dict[str, str] = {
    "id": "disaster_id",
    "source": "source",
    "status": "status",
    "alert_level": "alert_level",
    "severity": "severity",
    "country": "country",
    "country_code": "country_code",
    "country_iso3": "country_iso3",
    "type": "type",
    "type_code": "type_code",
    "event_date": "event_date",
    "latitude": "latitude",
    "longitude": "longitude",
    "title": "title",
    "description": "description",
    "url": "url",
}

_SELECT = f"SELECT {', '.join(_COLUMNS.values())} FROM disasters"


def _utc_now_iso() -> str:
    return datetime.now(tz=UTC).isoformat().replace("+00:00", "Z")


def _to_column(field: str, value: object) -> object:
    if field == "event_date" and isinstance(value, datetime):
        return to_iso(value)
    return value


def _row_to_record(row: sqlite3.Row) -> DisasterRecord:
    return DisasterRecord(
        id=str(row["disaster_id"]),
        source=str(row["source"]),
        status=str(row["status"]),
        alert_level=str(row["alert_level"]),
        severity=row["severity"],
        country=row["country"],
        country_code=row["country_code"],
        country_iso3=row["country_iso3"],
        type=str(row["type"]),
        type_code=str(row["type_code"]),
        event_date=parse_iso(str(row["event_date"])),
        latitude=row["latitude"],
        longitude=row["longitude"],
        title=str(row["title"]),
        description=str(row["description"]),
        url=str(row["url"]),
    )


class DisasterRepository:
    """Persistence collaborator for the reconciler, backed by sqlite."""

    def __init__(self, db: Database) -> None:
        self.db = db

    def _query(self, sql: str, params: Iterable[object] = ()) -> list[DisasterRecord]:
        try:
            with self.db.lock:
                rows = self.db.conn.execute(sql, tuple(params)).fetchall()
        except sqlite3.Error as e:
            raise PersistenceError(str(e)) from e
        return [_row_to_record(row) for row in rows]

    def _write(self, sql: str, params: Iterable[object]) -> int:
        try:
            with self.db.lock:
                try:
                    cur = self.db.conn.execute(sql, tuple(params))
                    self.db.conn.commit()
                except sqlite3.Error:
                    self.db.conn.rollback()
                    raise
        except sqlite3.Error as e:
            raise PersistenceError(str(e)) from e
        return int(cur.rowcount)

    def find_all(self) -> list[DisasterRecord]:
        return self._query(f"{_SELECT} ORDER BY event_date DESC;")

    def find_by_status(self, statuses: Iterable[str]) -> list[DisasterRecord]:
        wanted = list(statuses)
        if not wanted:
            return []
        placeholders = ",".join("?" for _ in wanted)
        return self._query(
            f"{_SELECT} WHERE status IN ({placeholders}) ORDER BY event_date DESC;",
            wanted,
        )

    def find_one(self, disaster_id: str) -> DisasterRecord | None:
        found = self._query(f"{_SELECT} WHERE disaster_id = ? LIMIT 1;", (disaster_id,))
        return found[0] if found else None

    def find_urgent(self) -> list[DisasterRecord]:
        """Active Red/Orange alerts, real-time before ongoing, Red before Orange."""
        statuses = list(ACTIVE_STATUSES)
        return self._query(
            f"""
            {_SELECT}
            WHERE status IN (?, ?)
              AND alert_level IN ('Red', 'Orange')
            ORDER BY CASE WHEN status = ? THEN 1 ELSE 2 END,
                     CASE WHEN alert_level = 'Red' THEN 1 ELSE 2 END,
                     event_date DESC;
            """,
            (*statuses, REAL_TIME),
        )

    def save(self, record: DisasterRecord) -> None:
        """Insert the record, or replace every column of the stored row with the same id."""
        now_iso = _utc_now_iso()
        columns = list(_COLUMNS.values())
        values = [_to_column(f, getattr(record, f)) for f in _COLUMNS]
        assignments = ", ".join(
            f"{c} = excluded.{c}" for c in columns if c != "disaster_id"
        )
        self._write(
            f"""
            INSERT INTO disasters({', '.join(columns)}, first_seen_at, updated_at)
            VALUES({', '.join('?' for _ in columns)}, ?, ?)
            ON CONFLICT(disaster_id) DO UPDATE SET {assignments},
              updated_at = excluded.updated_at;
            """,
            (*values, now_iso, now_iso),
        )

    def update(self, disaster_id: str, fields: Mapping[str, object]) -> int:
        unknown = set(fields) - set(_COLUMNS)
        if unknown or "id" in fields:
            raise ValueError(f"cannot update fields: {sorted(unknown | ({'id'} & set(fields)))}")
        if not fields:
            return 0
        assignments = ", ".join(f"{_COLUMNS[f]} = ?" for f in fields)
        values = [_to_column(f, v) for f, v in fields.items()]
        return self._write(
            f"UPDATE disasters SET {assignments}, updated_at = ? WHERE disaster_id = ?;",
            (*values, _utc_now_iso(), disaster_id),
        )
