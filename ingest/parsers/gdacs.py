from __future__ import annotations

import xml.etree.ElementTree as ET

from ingest.errors import ParseError


def _text(el: ET.Element, path: str) -> str | None:
    value = el.findtext(path)
    if value is None:
        return None
    value = value.strip()
    return value or None


def parse_gdacs_rss(data: bytes) -> list[dict]:
    try:
        root = ET.fromstring(data)
    except ET.ParseError as e:
        raise ParseError(f"malformed feed document: {e}") from e

    channel = root.find("{*}channel")
    if channel is None:
        raise ParseError("feed document has no channel")

    records: list[dict] = []
    for item in channel.findall("{*}item"):
        lat = None
        long = None
        point = item.find("{*}Point")
        if point is not None:
            lat = _text(point, "{*}lat")
            long = _text(point, "{*}long")

        records.append(
            {
                "guid": _text(item, "{*}guid"),
                "title": _text(item, "{*}title") or "",
                "description": _text(item, "{*}description") or "",
                "link": _text(item, "{*}link") or "",
                "pub_date": _text(item, "{*}pubDate"),
                "event_type": _text(item, "{*}eventtype"),
                "alert_level": _text(item, "{*}alertlevel") or "",
                "severity": _text(item, "{*}severity"),
                "from_date": _text(item, "{*}fromdate"),
                "iso3": _text(item, "{*}iso3") or "",
                "lat": lat,
                "long": long,
            }
        )
    return records
