from __future__ import annotations

from datetime import UTC, datetime

from store.db import Database


def _utc_now_iso() -> str:
    return datetime.now(tz=UTC).isoformat().replace("+00:00", "Z")


def _ensure_feed(db: Database, feed_id: str) -> None:
    db.conn.execute(
        "INSERT OR IGNORE INTO feed_state(feed_id) VALUES (?);", (feed_id,)
    )


def record_pass_success(
    db: Database,
    *,
    feed_id: str,
    new_count: int,
    updated_count: int,
    past_count: int,
) -> None:
    now_iso = _utc_now_iso()
    with db.lock:
        _ensure_feed(db, feed_id)
        db.conn.execute(
            """
            UPDATE feed_state
            SET last_run_at = ?,
                last_success_at = ?,
                consecutive_failures = 0,
                last_error = NULL,
                last_error_at = NULL,
                success_count = success_count + 1,
                last_new_count = ?,
                last_updated_count = ?,
                last_past_count = ?
            WHERE feed_id = ?;
            """,
            (now_iso, now_iso, new_count, updated_count, past_count, feed_id),
        )
        db.conn.commit()


def record_pass_error(db: Database, *, feed_id: str, error: str) -> int:
    now_iso = _utc_now_iso()
    with db.lock:
        _ensure_feed(db, feed_id)
        db.conn.execute(
            """
            UPDATE feed_state
            SET last_run_at = ?,
                last_error_at = ?,
                last_error = ?,
                consecutive_failures = consecutive_failures + 1,
                error_count = error_count + 1
            WHERE feed_id = ?;
            """,
            (now_iso, now_iso, error, feed_id),
        )
        row = db.conn.execute(
            "SELECT consecutive_failures FROM feed_state WHERE feed_id = ?;",
            (feed_id,),
        ).fetchone()
        db.conn.commit()
    return int(row["consecutive_failures"])


def get_feed_state(db: Database, feed_id: str) -> dict | None:
    with db.lock:
        row = db.conn.execute(
            "SELECT * FROM feed_state WHERE feed_id = ?;", (feed_id,)
        ).fetchone()
    return dict(row) if row is not None else None
