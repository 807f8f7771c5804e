from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from typing import Any, List, Optional, Union

from pydantic import ValidationError

from .descriptors import CalendarString, describe, descriptor_kind, resolve_key
from .models import Event, TimelineEntry, TimelineSettings

logger = logging.getLogger("storytimeline.builder")

EventLike = Union[Event, Mapping[str, Any]]


def _coerce_event(raw: EventLike) -> Optional[Event]:
    if isinstance(raw, Event):
        return raw
    if not isinstance(raw, Mapping):
        logger.debug("Skipping non-mapping event %r", raw)
        return None
    try:
        return Event.model_validate(raw)
    except ValidationError as exc:
        logger.debug("Skipping malformed event: %s", exc.errors(include_url=False))
        return None


def resolve_event(event: Event, settings: Optional[TimelineSettings] = None) -> Optional[TimelineEntry]:
    """Return the timeline entry for ``event`` or ``None`` when it has no usable time."""

    descriptor = describe(event, settings)
    key = resolve_key(descriptor)
    kind = descriptor_kind(descriptor)
    if key is None or kind is None:
        logger.debug("Excluding event %d: unresolved descriptor %r", event.index, descriptor)
        return None
    return TimelineEntry(
        index=event.index,
        resolved_key=key,
        excerpt=event.message,
        kind=kind,
        date_only=isinstance(descriptor, CalendarString) and descriptor.date_only,
    )


def timeline_sort_key(entry: TimelineEntry) -> tuple:
    return (entry.resolved_key, entry.index)


def build_timeline(
    events: Sequence[EventLike],
    settings: Optional[TimelineSettings] = None,
) -> List[TimelineEntry]:
    """Resolve, filter and chronologically sort ``events``.

    Events whose descriptor cannot be resolved are left out of the result.
    Entries with equal keys are ordered by ascending event index, so the
    output only depends on the input snapshot.
    """

    if isinstance(events, (str, bytes)) or not isinstance(events, Sequence):
        raise TypeError(f"events must be a sequence, got {type(events).__name__}")

    settings = settings or TimelineSettings()
    snapshot = list(events)

    entries: List[TimelineEntry] = []
    for raw in snapshot:
        event = _coerce_event(raw)
        if event is None:
            continue
        entry = resolve_event(event, settings)
        if entry is not None:
            entries.append(entry)

    entries.sort(key=timeline_sort_key)

    excluded = len(snapshot) - len(entries)
    if excluded:
        logger.debug("Built timeline with %d entries (%d excluded)", len(entries), excluded)
    return entries


__all__ = ["build_timeline", "resolve_event", "timeline_sort_key"]
