from __future__ import annotations

from normalize.models import DisasterRecord, record_to_dict
from realtime.bus import Event, EventBus


class BusPushNotifier:
    """Publishes new disasters to live subscribers of the event bus."""

    event_type = "disaster.new"

    def __init__(self, bus: EventBus) -> None:
        self._bus = bus

    async def notify(self, record: DisasterRecord) -> None:
        await self._bus.publish(Event(type=self.event_type, data=record_to_dict(record)))
