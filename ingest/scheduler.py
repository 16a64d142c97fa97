from __future__ import annotations

import asyncio
import functools
import logging
from datetime import timedelta

import httpx

from app.settings import Settings
from geo.resolver import GeoResolver
from ingest.fetch import fetch_feed
from normalize.normalize import normalize_feed
from normalize.types import TypeMapper
from notify.dispatcher import NotificationDispatcher
from notify.email import HttpEmailRelay
from notify.push import BusPushNotifier
from realtime.bus import EventBus
from reconcile.reconciler import Reconciler
from store.db import Database
from store.disasters import DisasterRepository


logger = logging.getLogger(__name__)


def build_dispatcher(
    *, settings: Settings, bus: EventBus, client: httpx.AsyncClient
) -> NotificationDispatcher:
    email = None
    if settings.email_relay_url:
        email = HttpEmailRelay(
            client, url=settings.email_relay_url, user_agent=settings.user_agent
        )
    return NotificationDispatcher(
        push=BusPushNotifier(bus),
        email=email,
        threshold=settings.notify_threshold,
        delay_seconds=settings.notify_delay_seconds,
    )


def build_reconciler(
    *,
    settings: Settings,
    db: Database,
    client: httpx.AsyncClient,
    dispatcher: NotificationDispatcher,
    geo: GeoResolver | None = None,
    types: TypeMapper | None = None,
) -> Reconciler:
    geo = geo or GeoResolver.from_data_dir()
    types = types or TypeMapper.from_file()
    return Reconciler(
        fetch=functools.partial(
            fetch_feed,
            client,
            url=settings.feed_url,
            user_agent=settings.user_agent,
            timeout_seconds=settings.fetch_timeout_seconds,
        ),
        normalize=functools.partial(normalize_feed, geo=geo, types=types),
        repo=DisasterRepository(db),
        dispatcher=dispatcher,
        realtime_window=timedelta(hours=settings.realtime_window_hours),
    )


async def run_scheduler(*, reconciler: Reconciler, poll_seconds: float) -> None:
    """Run one pass per interval until cancelled.

    A failed pass is logged and retried on the next tick; there is no
    partial-pass resume.
    """
    loop = asyncio.get_running_loop()
    while True:
        started = loop.time()
        try:
            await reconciler.run_pass()
        except Exception:
            logger.exception("unexpected error in scheduled update")
        elapsed = loop.time() - started
        await asyncio.sleep(max(0.0, poll_seconds - elapsed))
