from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence
from typing import Protocol

from normalize.models import ACTIVE_STATUSES, DisasterRecord


logger = logging.getLogger(__name__)


class PushNotifier(Protocol):
    async def notify(self, record: DisasterRecord) -> None: ...


class EmailSender(Protocol):
    async def send(self, record: DisasterRecord) -> bool: ...


class NotificationDispatcher:
    """Schedules delayed push and email alerts for newly stored disasters.

    A batch larger than ``threshold`` is dropped entirely so a bulk backfill
    does not flood subscribers. Each alert runs as its own task after
    ``delay_seconds``, so deliveries may complete after a later pass starts.
    """

    def __init__(
        self,
        *,
        push: PushNotifier,
        email: EmailSender | None = None,
        threshold: int = 5,
        delay_seconds: float = 5.0,
    ) -> None:
        self._push = push
        self._email = email
        self._threshold = threshold
        self._delay_seconds = delay_seconds
        self._tasks: set[asyncio.Task[None]] = set()

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def dispatch(self, records: Sequence[DisasterRecord]) -> list[DisasterRecord]:
        if len(records) > self._threshold:
            logger.warning(
                "suppressing notifications for %d new disasters (threshold %d)",
                len(records),
                self._threshold,
            )
            return []

        scheduled = [r for r in records if r.status in ACTIVE_STATUSES]
        for record in scheduled:
            task = asyncio.create_task(self._deliver(record))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)
        return scheduled

    async def _deliver(self, record: DisasterRecord) -> None:
        await asyncio.sleep(self._delay_seconds)

        try:
            await self._push.notify(record)
        except Exception:
            logger.exception("push notification failed for disaster %s", record.id)

        if self._email is None:
            return
        try:
            sent = await self._email.send(record)
        except Exception:
            logger.exception("email alert failed for disaster %s", record.id)
            return
        if not sent:
            logger.warning("email alert was not accepted for disaster %s", record.id)

    async def drain(self) -> None:
        while self._tasks:
            await asyncio.gather(*list(self._tasks))

    async def aclose(self) -> None:
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
