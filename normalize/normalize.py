from __future__ import annotations

import logging
import math
from datetime import UTC, datetime
from email.utils import parsedate_to_datetime

from geo.resolver import GeoResolver
from ingest.parsers.gdacs import parse_gdacs_rss
from normalize.models import ONGOING, DisasterRecord
from normalize.types import TypeMapper


logger = logging.getLogger(__name__)

SOURCE_GDACS = "GDACS"


def _to_float(value: str | None) -> float | None:
    if value is None:
        return None
    try:
        number = float(value)
    except ValueError:
        return None
    return number if math.isfinite(number) else None


def _parse_feed_date(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        dt = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        try:
            dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    return dt.astimezone(tz=UTC)


def normalize_gdacs_item(
    *, record: dict, geo: GeoResolver, types: TypeMapper
) -> DisasterRecord | None:
    lat_str = record.get("lat")
    long_str = record.get("long")
    resolution = geo.resolve(
        record.get("iso3"), _to_float(lat_str), _to_float(long_str)
    )

    type_code = str(record.get("event_type") or "")
    disaster_type = types.map(type_code)

    event_date = _parse_feed_date(record.get("from_date")) or _parse_feed_date(
        record.get("pub_date")
    )
    if event_date is None:
        logger.warning(
            "skipping GDACS item %s without a usable event date: %r",
            record.get("guid"),
            record.get("from_date") or record.get("pub_date"),
        )
        return None

    return DisasterRecord(
        id=str(record["guid"]),
        source=SOURCE_GDACS,
        # reclassified against the pass clock by the reconciler
        status=ONGOING,
        alert_level=str(record.get("alert_level") or ""),
        severity=record.get("severity"),
        country=resolution.country,
        country_code=resolution.country_code,
        country_iso3=resolution.country_iso3,
        type=disaster_type,
        type_code=type_code,
        event_date=event_date,
        latitude=lat_str,
        longitude=long_str,
        title=str(record.get("title") or ""),
        description=str(record.get("description") or ""),
        url=str(record.get("link") or ""),
    )


def normalize_feed(
    data: bytes, *, geo: GeoResolver, types: TypeMapper
) -> list[DisasterRecord]:
    """Parse a GDACS RSS document into canonical records, in feed order.

    Raises ``ParseError`` for a malformed document and ``UnknownTypeCode`` if
    any item carries an unmapped event type; both fail the whole batch. Items
    without a guid or a usable date are logged and skipped.
    """
    disasters: list[DisasterRecord] = []
    for record in parse_gdacs_rss(data):
        if not record.get("guid"):
            logger.warning("skipping GDACS item without guid: %r", record.get("title"))
            continue
        disaster = normalize_gdacs_item(record=record, geo=geo, types=types)
        if disaster is not None:
            disasters.append(disaster)
    return disasters
