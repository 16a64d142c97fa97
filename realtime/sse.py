from __future__ import annotations

import asyncio
import json
from collections.abc import AsyncIterator, Awaitable, Callable
from dataclasses import dataclass
from datetime import UTC, datetime

from fastapi import APIRouter, HTTPException, Query, Request
from starlette.responses import StreamingResponse

from realtime.bus import Event, EventBus


router = APIRouter()

HEARTBEAT_SECONDS = 15
RETRY_MS = 10_000

_ALERT_RANK = {"green": 0, "orange": 1, "red": 2}


@dataclass(frozen=True)
class AlertFilter:
    """Which disaster events a subscriber asked for.

    ``type_codes`` of ``None`` accepts every type. Events other than
    disaster alerts always pass.
    """

    type_codes: frozenset[str] | None = None
    min_alert: str | None = None

    @classmethod
    def from_query(cls, types: str | None, min_alert: str | None) -> AlertFilter:
        codes = frozenset(
            part.strip().upper() for part in (types or "").split(",") if part.strip()
        )
        level = (min_alert or "").strip().lower() or None
        if level is not None and level not in _ALERT_RANK:
            raise ValueError(f"unknown alert level: {min_alert}")
        return cls(type_codes=codes or None, min_alert=level)

    def accepts(self, event: Event) -> bool:
        if not event.type.startswith("disaster."):
            return True
        if self.type_codes is not None and event.data.get("type_code") not in self.type_codes:
            return False
        if self.min_alert is not None:
            rank = _ALERT_RANK.get(str(event.data.get("alert_level") or "").lower(), -1)
            return rank >= _ALERT_RANK[self.min_alert]
        return True


def _utc_now_iso() -> str:
    return datetime.now(tz=UTC).isoformat().replace("+00:00", "Z")


def format_event(event: Event) -> str:
    payload = json.dumps(event.data, separators=(",", ":"), ensure_ascii=False)
    lines = []
    if event.data.get("id"):
        # lets a reconnecting browser report the last alert it saw
        lines.append(f"id: {event.data['id']}")
    lines.append(f"event: {event.type}")
    lines.append(f"data: {payload}")
    return "\n".join(lines) + "\n\n"


async def alert_stream(
    queue: asyncio.Queue[Event],
    *,
    alerts: AlertFilter,
    is_disconnected: Callable[[], Awaitable[bool]],
    heartbeat_seconds: float = HEARTBEAT_SECONDS,
) -> AsyncIterator[str]:
    yield f"retry: {RETRY_MS}\n" + format_event(Event("heartbeat", {}))
    while True:
        if await is_disconnected():
            return
        try:
            event = await asyncio.wait_for(queue.get(), timeout=heartbeat_seconds)
        except asyncio.TimeoutError:
            yield format_event(Event("heartbeat", {"ts": _utc_now_iso()}))
            continue
        if alerts.accepts(event):
            yield format_event(event)


@router.get("/sse")
async def sse(
    request: Request,
    types: str | None = Query(default=None, description="Comma separated GDACS codes, e.g. EQ,TC"),
    min_alert: str | None = Query(default=None, description="Green, Orange or Red"),
) -> StreamingResponse:
    """Stream ``disaster.new`` alerts to the browser as server-sent events."""
    try:
        alerts = AlertFilter.from_query(types, min_alert)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    bus: EventBus = request.app.state.bus
    queue = await bus.subscribe()

    async def event_stream():
        try:
            async for chunk in alert_stream(
                queue, alerts=alerts, is_disconnected=request.is_disconnected
            ):
                yield chunk
        finally:
            await bus.unsubscribe(queue)

    return StreamingResponse(
        event_stream(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache"},
    )
