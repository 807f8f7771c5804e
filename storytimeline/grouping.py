from __future__ import annotations

from collections import OrderedDict
from datetime import date, datetime, timedelta
from typing import Dict, Iterable, List, Sequence

from .descriptors import UNIX_EPOCH
from .models import Granularity, Group, ResolvedKey, TimelineEntry, TimelineView

GROUPING_GRANULARITIES = ("year", "month", "week", "day")

MONTH_NAMES = (
    "January",
    "February",
    "March",
    "April",
    "May",
    "June",
    "July",
    "August",
    "September",
    "October",
    "November",
    "December",
)
WEEKDAY_NAMES = ("Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday")


class GroupingError(ValueError):
    """Raised when a resolved key cannot be placed on the calendar."""


def key_to_instant(resolved_key: ResolvedKey) -> datetime:
    """Read ``resolved_key`` as minutes since 1970-01-01T00:00 UTC."""

    try:
        return UNIX_EPOCH + timedelta(minutes=resolved_key)
    except OverflowError as exc:
        raise GroupingError(f"Resolved key {resolved_key!r} is outside the calendar range") from exc


def iso_week(day: date) -> tuple[int, int]:
    # isocalendar() moves the date to its Thursday, so late December can
    # belong to week 1 of the following year and early January to the last
    # week of the previous one.
    iso_year, week, _weekday = day.isocalendar()
    return iso_year, week


def bucket_key(resolved_key: ResolvedKey, granularity: Granularity) -> str:
    if granularity not in GROUPING_GRANULARITIES:
        raise ValueError(f"Cannot derive a bucket key for granularity '{granularity}'")

    day = key_to_instant(resolved_key).date()
    if granularity == "year":
        return f"{day.year:04d}"
    if granularity == "month":
        return f"{day.year:04d}-{day.month:02d}"
    if granularity == "week":
        iso_year, week = iso_week(day)
        return f"{iso_year:04d}-W{week:02d}"
    return day.isoformat()


def group_label(granularity: Granularity, key: str) -> str:
    """Human readable heading for a bucket key."""

    if granularity == "year":
        return f"Year {key}"
    if granularity == "month":
        year, month = key.split("-")
        return f"{MONTH_NAMES[int(month) - 1]} {int(year)}"
    if granularity == "week":
        return f"Week {key}"
    if granularity == "day":
        day = date.fromisoformat(key)
        return f"{WEEKDAY_NAMES[day.weekday()]}, {MONTH_NAMES[day.month - 1]} {day.day}, {day.year}"
    return key


def group_entries(entries: Iterable[TimelineEntry], granularity: Granularity) -> List[Group]:
    """Partition sorted entries into calendar buckets.

    Entries keep their incoming order inside a bucket and buckets are
    returned in ascending key order. The ``all`` view is not a grouping; use
    :func:`arrange` for it.
    """

    if granularity == "all":
        raise ValueError("The 'all' view is flat; use arrange() to render it")
    if granularity not in GROUPING_GRANULARITIES:
        raise ValueError(f"Unknown granularity '{granularity}'")

    buckets: Dict[str, List[TimelineEntry]] = OrderedDict()
    for entry in entries:
        key = bucket_key(entry.resolved_key, granularity)
        buckets.setdefault(key, []).append(entry)

    return [
        Group(key=key, label=group_label(granularity, key), granularity=granularity, entries=buckets[key])
        for key in sorted(buckets)
    ]


def arrange(entries: Sequence[TimelineEntry], granularity: Granularity) -> TimelineView:
    flat = list(entries)
    if granularity == "all":
        return TimelineView(granularity="all", entries=flat, groups=None)
    return TimelineView(granularity=granularity, entries=flat, groups=group_entries(flat, granularity))


__all__ = [
    "GROUPING_GRANULARITIES",
    "GroupingError",
    "arrange",
    "bucket_key",
    "group_entries",
    "group_label",
    "iso_week",
    "key_to_instant",
]
