from __future__ import annotations

import logging
import math
import re
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from typing import Any, Optional, Tuple, Union

from .models import Event, ResolvedKey, TimelineSettings

logger = logging.getLogger("storytimeline.descriptors")

MINUTES_PER_DAY = 24 * 60
UNIX_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

NARRATIVE_PATTERN = re.compile(r"day\s*(\d+),\s*(\d+):(\d+)", re.IGNORECASE)
SLASHED_DATE_PATTERN = re.compile(
    r"^\s*(?P<first>\d{1,2})/(?P<second>\d{1,2})/(?P<year>\d{4})"
    r"(?:[,\s]+(?P<time>.+?))?\s*$"
)
TIME_24H_PATTERN = re.compile(r"^(?P<hour>\d{1,2}):(?P<minute>\d{2})$")
TIME_AMPM_PATTERN = re.compile(
    r"^(?P<hour>\d{1,2}):(?P<minute>\d{2})\s*(?P<meridiem>[ap])\.?\s*m\.?$",
    re.IGNORECASE,
)


@dataclass(frozen=True)
class NarrativeString:
    text: str
    minutes: int


@dataclass(frozen=True)
class CalendarString:
    text: str
    minutes: int
    date_only: bool = False


@dataclass(frozen=True)
class NumericOffset:
    value: ResolvedKey


@dataclass(frozen=True)
class ManualOrder:
    order: int


@dataclass(frozen=True)
class UnparsedString:
    text: str


@dataclass(frozen=True)
class Absent:
    pass


TimeDescriptor = Union[NarrativeString, CalendarString, NumericOffset, ManualOrder, UnparsedString, Absent]


def parse_narrative_time(text: str) -> Optional[int]:
    """Resolve ``Day N, H:M`` to minutes since narrative day zero."""

    match = NARRATIVE_PATTERN.search(text)
    if not match:
        return None
    day, hour, minute = (int(group) for group in match.groups())
    return day * MINUTES_PER_DAY + hour * 60 + minute


def minutes_since_epoch(moment: datetime) -> int:
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return (moment - UNIX_EPOCH) // timedelta(minutes=1)


def _is_iso_date(text: str) -> bool:
    try:
        date.fromisoformat(text)
    except ValueError:
        return False
    return True


def _parse_iso_calendar(text: str) -> Optional[Tuple[int, bool]]:
    candidate = text.strip()
    if not candidate or not candidate[:4].isdigit():
        return None
    if candidate.endswith(("Z", "z")):
        candidate = candidate[:-1] + "+00:00"
    try:
        moment = datetime.fromisoformat(candidate)
    except ValueError:
        return None
    return minutes_since_epoch(moment), _is_iso_date(candidate)


def _parse_clock(text: Optional[str], time_format: str) -> Optional[tuple[int, int]]:
    if text is None:
        return 0, 0

    if time_format == "ampm":
        match = TIME_AMPM_PATTERN.match(text.strip())
        if not match:
            return None
        hour = int(match.group("hour"))
        minute = int(match.group("minute"))
        if not (1 <= hour <= 12) or minute > 59:
            return None
        hour %= 12
        if match.group("meridiem").lower() == "p":
            hour += 12
        return hour, minute

    match = TIME_24H_PATTERN.match(text.strip())
    if not match:
        return None
    hour = int(match.group("hour"))
    minute = int(match.group("minute"))
    if hour > 23 or minute > 59:
        return None
    return hour, minute


def _parse_slashed_calendar(text: str, settings: TimelineSettings) -> Optional[Tuple[int, bool]]:
    if settings.date_format == "day-num":
        return None
    match = SLASHED_DATE_PATTERN.match(text)
    if not match:
        return None

    first = int(match.group("first"))
    second = int(match.group("second"))
    if settings.date_format == "mm/dd/yyyy":
        month, day = first, second
    else:
        day, month = first, second

    clock_text = match.group("time")
    clock = _parse_clock(clock_text, settings.time_format)
    if clock is None:
        return None
    hour, minute = clock

    try:
        moment = datetime(int(match.group("year")), month, day, hour, minute, tzinfo=timezone.utc)
    except ValueError:
        return None
    return minutes_since_epoch(moment), clock_text is None


def parse_calendar_string(text: str, settings: Optional[TimelineSettings] = None) -> Optional[CalendarString]:
    """Parse an ISO-8601 or slashed calendar date.

    ``date_only`` is set when the text carried no clock time, so the entry
    can later be shown without one.
    """

    settings = settings or TimelineSettings()
    parsed = _parse_iso_calendar(text)
    if parsed is None:
        parsed = _parse_slashed_calendar(text, settings)
    if parsed is None:
        return None
    minutes, date_only = parsed
    return CalendarString(text, minutes, date_only)


def parse_time_string(text: str, settings: Optional[TimelineSettings] = None) -> Optional[int]:
    """Resolve a string descriptor to minutes, or ``None`` when no grammar matches.

    The narrative ``Day N, H:M`` grammar always applies. ISO-8601 dates are
    read as UTC instants; slashed dates follow ``settings.date_format`` and
    ``settings.time_format``.
    """

    minutes = parse_narrative_time(text)
    if minutes is not None:
        return minutes
    calendar = parse_calendar_string(text, settings)
    return calendar.minutes if calendar else None


def _manual_order(raw: Any) -> Optional[int]:
    if isinstance(raw, bool):
        return None
    if isinstance(raw, int):
        return raw
    if isinstance(raw, float) and raw.is_integer():
        return int(raw)
    return None


def classify(story_time: Any, story_order: Any = None, settings: Optional[TimelineSettings] = None) -> TimeDescriptor:
    settings = settings or TimelineSettings()

    if isinstance(story_time, (int, float)) and not isinstance(story_time, bool):
        if isinstance(story_time, float) and not math.isfinite(story_time):
            logger.debug("Ignoring non-finite numeric storyTime %r", story_time)
        else:
            return NumericOffset(story_time)

    unparsed: Optional[UnparsedString] = None
    if isinstance(story_time, str) and story_time.strip():
        minutes = parse_narrative_time(story_time)
        if minutes is not None:
            return NarrativeString(story_time, minutes)
        calendar = parse_calendar_string(story_time, settings)
        if calendar is not None:
            return calendar
        unparsed = UnparsedString(story_time)

    order = _manual_order(story_order)
    if order is not None:
        return ManualOrder(order)
    return unparsed or Absent()


def describe(event: Event, settings: Optional[TimelineSettings] = None) -> TimeDescriptor:
    """Classify the time descriptor carried by ``event``."""

    return classify(event.metadata.story_time, event.metadata.story_order, settings)


def resolve_key(descriptor: TimeDescriptor) -> Optional[ResolvedKey]:
    if isinstance(descriptor, (NarrativeString, CalendarString)):
        return descriptor.minutes
    if isinstance(descriptor, NumericOffset):
        return descriptor.value
    if isinstance(descriptor, ManualOrder):
        return descriptor.order
    if isinstance(descriptor, (UnparsedString, Absent)):
        return None
    raise TypeError(f"Unknown time descriptor: {descriptor!r}")


def descriptor_kind(descriptor: TimeDescriptor) -> Optional[str]:
    if isinstance(descriptor, NarrativeString):
        return "narrative"
    if isinstance(descriptor, CalendarString):
        return "calendar"
    if isinstance(descriptor, NumericOffset):
        return "numeric"
    if isinstance(descriptor, ManualOrder):
        return "manual"
    return None


__all__ = [
    "Absent",
    "CalendarString",
    "ManualOrder",
    "NarrativeString",
    "NumericOffset",
    "TimeDescriptor",
    "UnparsedString",
    "classify",
    "describe",
    "descriptor_kind",
    "minutes_since_epoch",
    "parse_calendar_string",
    "parse_narrative_time",
    "parse_time_string",
    "resolve_key",
]
