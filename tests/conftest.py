from __future__ import annotations

from datetime import UTC, datetime
from email.utils import format_datetime
from xml.sax.saxutils import escape

import pytest

from geo.resolver import GeoResolver
from normalize.models import DisasterRecord
from normalize.types import TypeMapper
from store.db import open_database
from store.disasters import DisasterRepository


NOW = datetime(2024, 10, 15, 12, 0, tzinfo=UTC)

_FEED_HEAD = (
    '<?xml version="1.0" encoding="utf-8"?>\n'
    '<rss version="2.0" xmlns:gdacs="http://www.gdacs.org" '
    'xmlns:geo="http://www.w3.org/2003/01/geo/wgs84_pos#">\n<channel>\n'
    "<title>GDACS RSS information</title>\n"
)


def feed_item(
    guid: str,
    *,
    from_date: datetime,
    event_type: str = "EQ",
    iso3: str = "JPN",
    lat: str | None = "35.2",
    long: str | None = "139.1",
    alert_level: str = "Green",
    title: str | None = None,
    severity: str = "Magnitude 5.1M, Depth:10km",
) -> str:
    point = ""
    if lat is not None and long is not None:
        point = f"<geo:Point><geo:lat>{lat}</geo:lat><geo:long>{long}</geo:long></geo:Point>"
    return (
        "<item>"
        f"<title>{escape(title or f'{alert_level} alert {guid}')}</title>"
        f"<description>Event {guid}</description>"
        f"<link>https://www.gdacs.org/report.aspx?eventid={guid}</link>"
        f'<guid isPermaLink="false">{guid}</guid>'
        f"<gdacs:fromdate>{format_datetime(from_date, usegmt=True)}</gdacs:fromdate>"
        f"<gdacs:eventtype>{event_type}</gdacs:eventtype>"
        f"<gdacs:alertlevel>{alert_level}</gdacs:alertlevel>"
        f"<gdacs:severity>{escape(severity)}</gdacs:severity>"
        f"<gdacs:iso3>{iso3}</gdacs:iso3>"
        f"{point}"
        "</item>\n"
    )


def feed_document(*items: str) -> bytes:
    return (_FEED_HEAD + "".join(items) + "</channel>\n</rss>\n").encode("utf-8")


class FeedSource:
    """Serves whatever document a test last assigned, counting fetches."""

    def __init__(self, data: bytes = b"") -> None:
        self.data = data
        self.error: Exception | None = None
        self.calls = 0

    async def __call__(self) -> bytes:
        self.calls += 1
        if self.error is not None:
            raise self.error
        return self.data


class RecordingPush:
    def __init__(self) -> None:
        self.sent: list[DisasterRecord] = []

    async def notify(self, record: DisasterRecord) -> None:
        self.sent.append(record)


class RecordingEmail:
    def __init__(self, accept: bool = True) -> None:
        self.accept = accept
        self.sent: list[DisasterRecord] = []

    async def send(self, record: DisasterRecord) -> bool:
        self.sent.append(record)
        return self.accept


@pytest.fixture(scope="session")
def geo() -> GeoResolver:
    return GeoResolver.from_data_dir()


@pytest.fixture(scope="session")
def types() -> TypeMapper:
    return TypeMapper.from_file()


@pytest.fixture
def repo(tmp_path):
    db = open_database(tmp_path / "test.db")
    try:
        yield DisasterRepository(db)
    finally:
        with db.lock:
            db.conn.close()
