from __future__ import annotations

from dataclasses import asdict, dataclass
from datetime import UTC, datetime


REAL_TIME = "real-time"
ONGOING = "ongoing"
PAST = "past"

STATUSES = (REAL_TIME, ONGOING, PAST)
ACTIVE_STATUSES = (REAL_TIME, ONGOING)


@dataclass(frozen=True)
class DisasterRecord:
    id: str
    source: str
    status: str
    alert_level: str
    severity: str | None
    country: str | None
    country_code: str | None
    country_iso3: str | None
    type: str
    type_code: str
    event_date: datetime
    latitude: str | None
    longitude: str | None
    title: str
    description: str
    url: str


def to_iso(dt: datetime) -> str:
    return dt.astimezone(tz=UTC).isoformat().replace("+00:00", "Z")


def parse_iso(ts: str) -> datetime:
    if ts.endswith("Z"):
        return datetime.fromisoformat(ts.removesuffix("Z") + "+00:00")
    dt = datetime.fromisoformat(ts)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    return dt


def record_to_dict(record: DisasterRecord) -> dict:
    data = asdict(record)
    data["event_date"] = to_iso(record.event_date)
    return data
