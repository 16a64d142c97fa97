from __future__ import annotations

import math
from collections.abc import Callable
from dataclasses import replace

from normalize.models import DisasterRecord


def _differs(old: object, new: object) -> bool:
    return old != new


def _coordinate_differs(old: str | None, new: str | None) -> bool:
    # Upstream coordinates jitter in the decimals; only whole degrees count.
    if old is None or new is None:
        return False
    try:
        return math.trunc(float(old)) != math.trunc(float(new))
    except (ValueError, OverflowError):
        return old != new


# status is owned by the age rule and the disappearance rule, never diffed.
COMPARED_FIELDS: dict[str, Callable[[object, object], bool]] = {
    "source": _differs,
    "alert_level": _differs,
    "severity": _differs,
    "country": _differs,
    "country_code": _differs,
    "country_iso3": _differs,
    "type": _differs,
    "type_code": _differs,
    "event_date": _differs,
    "latitude": _coordinate_differs,
    "longitude": _coordinate_differs,
    "title": _differs,
    "description": _differs,
    "url": _differs,
}


def changed_fields(existing: DisasterRecord, incoming: DisasterRecord) -> list[str]:
    return [
        field
        for field, differs in COMPARED_FIELDS.items()
        if differs(getattr(existing, field), getattr(incoming, field))
    ]


def has_changed(existing: DisasterRecord, incoming: DisasterRecord) -> bool:
    return bool(changed_fields(existing, incoming))


def merge_changes(
    existing: DisasterRecord, incoming: DisasterRecord
) -> DisasterRecord | None:
    """Return ``existing`` with incoming changes applied, or None if nothing moved.

    Fields inside tolerance keep their stored value. The incoming status is
    carried over so an age reclassification is persisted with the merge.
    """
    fields = changed_fields(existing, incoming)
    if not fields and existing.status == incoming.status:
        return None
    return replace(
        existing,
        status=incoming.status,
        **{field: getattr(incoming, field) for field in fields},
    )
