from __future__ import annotations

import asyncio
import logging
import sqlite3
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime, timedelta

from health.health import record_pass_error, record_pass_success
from ingest.errors import FeedError
from normalize.models import (
    ACTIVE_STATUSES,
    ONGOING,
    PAST,
    REAL_TIME,
    DisasterRecord,
)
from notify.dispatcher import NotificationDispatcher
from reconcile.changes import merge_changes
from store.db import PersistenceError
from store.disasters import DisasterRepository


logger = logging.getLogger(__name__)

FetchFn = Callable[[], Awaitable[bytes]]
NormalizeFn = Callable[[bytes], list[DisasterRecord]]

DEFAULT_FEED_ID = "gdacs_rss_7d"
REALTIME_WINDOW = timedelta(hours=24)


@dataclass
class PassResult:
    new_count: int = 0
    updated_count: int = 0
    past_count: int = 0
    created: list[DisasterRecord] = field(default_factory=list)
    notified: list[DisasterRecord] = field(default_factory=list)


def classify_status(
    event_date: datetime, now: datetime, window: timedelta = REALTIME_WINDOW
) -> str:
    return REAL_TIME if now - event_date <= window else ONGOING


class Reconciler:
    """Diffs the live feed against stored active records, one pass at a time.

    ``reconcile`` does the work; ``run_pass`` is the single-flight entry point
    used by the scheduler and the HTTP trigger. A trigger that arrives while a
    pass is running is skipped, not queued.
    """

    def __init__(
        self,
        *,
        fetch: FetchFn,
        normalize: NormalizeFn,
        repo: DisasterRepository,
        dispatcher: NotificationDispatcher,
        feed_id: str = DEFAULT_FEED_ID,
        realtime_window: timedelta = REALTIME_WINDOW,
    ) -> None:
        self._fetch = fetch
        self._normalize = normalize
        self._repo = repo
        self._dispatcher = dispatcher
        self._feed_id = feed_id
        self._realtime_window = realtime_window
        self._lock = asyncio.Lock()

    @property
    def feed_id(self) -> str:
        return self._feed_id

    @property
    def running(self) -> bool:
        return self._lock.locked()

    async def reconcile(self, now: datetime) -> PassResult:
        raw = await self._fetch()
        incoming = self._normalize(raw)

        active = {r.id: r for r in self._repo.find_by_status(ACTIVE_STATUSES)}
        stale_ids = set(active)
        result = PassResult()

        for record in incoming:
            record = replace(
                record,
                status=classify_status(record.event_date, now, self._realtime_window),
            )
            existing = active.get(record.id)
            try:
                if existing is not None:
                    merged = merge_changes(existing, record)
                    if merged is not None:
                        self._repo.save(merged)
                        active[record.id] = merged
                        result.updated_count += 1
                else:
                    self._repo.save(record)
                    active[record.id] = record
                    result.created.append(record)
                    result.new_count += 1
            except PersistenceError:
                logger.exception("failed to persist disaster %s", record.id)
            stale_ids.discard(record.id)

        for disaster_id in sorted(stale_ids):
            try:
                self._repo.update(disaster_id, {"status": PAST})
            except PersistenceError:
                logger.exception("failed to mark disaster %s as past", disaster_id)
                continue
            result.past_count += 1

        result.notified = self._dispatcher.dispatch(result.created)
        return result

    async def run_pass(self, now: datetime | None = None) -> dict:
        if self._lock.locked():
            logger.warning("%s update skipped: a pass is already running", self._feed_id)
            return {"success": False, "message": "Update already in progress."}

        async with self._lock:
            try:
                result = await self.reconcile(now or datetime.now(tz=UTC))
            except (FeedError, PersistenceError) as e:
                error = f"{e.error_code}:{e}"
                logger.error("%s update failed: %s", self._feed_id, error)
                self._record_error(error)
                return {"success": False, "message": "Update Failed."}

            logger.info(
                "%s update completed (%d new, %d updated, %d past, %d notified)",
                self._feed_id,
                result.new_count,
                result.updated_count,
                result.past_count,
                len(result.notified),
            )
            self._record_success(result)
            return {
                "success": True,
                "message": (
                    f"Update Successful ({result.new_count} new, "
                    f"{result.updated_count} updated, {result.past_count} past)."
                ),
            }

    def _record_success(self, result: PassResult) -> None:
        try:
            record_pass_success(
                self._repo.db,
                feed_id=self._feed_id,
                new_count=result.new_count,
                updated_count=result.updated_count,
                past_count=result.past_count,
            )
        except sqlite3.Error:
            logger.exception("failed to record pass health for %s", self._feed_id)

    def _record_error(self, error: str) -> None:
        try:
            failures = record_pass_error(self._repo.db, feed_id=self._feed_id, error=error)
        except sqlite3.Error:
            logger.exception("failed to record pass health for %s", self._feed_id)
            return
        if failures > 1:
            logger.warning("%s has failed %d passes in a row", self._feed_id, failures)
