from __future__ import annotations

from datetime import datetime, timezone
from typing import List, Optional, Sequence

from .descriptors import MINUTES_PER_DAY
from .grouping import key_to_instant
from .models import TimelineEntry, TimelineSettings

DEFAULT_EXCERPT_LIMIT = 250


def truncate_excerpt(text: str, limit: int = DEFAULT_EXCERPT_LIMIT) -> str:
    if limit <= 0:
        return ""
    if len(text) <= limit:
        return text
    return text[:limit] + "..."


def _format_clock(hour: int, minute: int, time_format: str) -> str:
    if time_format == "ampm":
        meridiem = "AM" if hour < 12 else "PM"
        return f"{hour % 12 or 12}:{minute:02d} {meridiem}"
    return f"{hour:02d}:{minute:02d}"


def format_resolved_key(entry: TimelineEntry, settings: Optional[TimelineSettings] = None) -> str:
    """Render the resolved key of ``entry`` in the configured formats.

    Narrative keys are rendered from the key, not the source text, so an
    out-of-range clock comes back normalised (``Day 1, 25:00`` is written as
    ``Day 2, 01:00``). Calendar entries stored without a clock time are
    rendered as a bare date.
    """

    settings = settings or TimelineSettings()

    if entry.kind == "narrative":
        day, minutes = divmod(int(entry.resolved_key), MINUTES_PER_DAY)
        hour, minute = divmod(minutes, 60)
        return f"Day {day}, {_format_clock(hour, minute, settings.time_format)}"

    if entry.kind == "calendar":
        moment = key_to_instant(entry.resolved_key)
        if settings.date_format == "dd/mm/yyyy":
            date_text = f"{moment.day:02d}/{moment.month:02d}/{moment.year:04d}"
        elif settings.date_format == "mm/dd/yyyy":
            date_text = f"{moment.month:02d}/{moment.day:02d}/{moment.year:04d}"
        else:
            date_text = moment.date().isoformat()
        if entry.date_only:
            return date_text
        return f"{date_text} {_format_clock(moment.hour, moment.minute, settings.time_format)}"

    return f"#{entry.resolved_key}"


def render_markdown_timeline(
    title: str,
    entries: Sequence[TimelineEntry],
    *,
    settings: Optional[TimelineSettings] = None,
    generated_at: Optional[datetime] = None,
    excerpt_limit: int = DEFAULT_EXCERPT_LIMIT,
) -> str:
    """Render built timeline entries as a Markdown document.

    Entries are written in the order given, which is expected to be the
    output of :func:`storytimeline.timeline_builder.build_timeline`.
    """

    generated = generated_at or datetime.now(timezone.utc)

    parts: List[str] = []
    parts.append(f"# {title} - Story Timeline")
    parts.append("")
    parts.append(f"Generated: {generated.isoformat(timespec='seconds')}")
    parts.append(f"Total Events: {len(entries)}")
    parts.append("")
    parts.append("---")
    parts.append("")

    for entry in entries:
        parts.append(f"## Event {entry.index}")
        parts.append("")
        parts.append(f"**Time:** {format_resolved_key(entry, settings)}")
        parts.append("")
        excerpt = truncate_excerpt(entry.excerpt, excerpt_limit)
        if excerpt:
            parts.append(excerpt)
            parts.append("")
        parts.append("---")
        parts.append("")

    return "\n".join(parts)
