from datetime import datetime, timezone

from .markdown_export import format_resolved_key, render_markdown_timeline, truncate_excerpt
from .models import TimelineEntry, TimelineSettings
from .timeline_builder import build_timeline


def _entry(kind: str, key: int, index: int = 0, excerpt: str = "text") -> TimelineEntry:
    return TimelineEntry(index=index, resolved_key=key, excerpt=excerpt, kind=kind)


def test_truncate_excerpt():
    assert truncate_excerpt("short", 10) == "short"
    assert truncate_excerpt("a" * 12, 10) == "a" * 10 + "..."
    assert truncate_excerpt("anything", 0) == ""


def test_format_narrative_key():
    assert format_resolved_key(_entry("narrative", 3750)) == "Day 2, 14:30"
    ampm = TimelineSettings(time_format="ampm")
    assert format_resolved_key(_entry("narrative", 3750), ampm) == "Day 2, 2:30 PM"
    assert format_resolved_key(_entry("narrative", 0), ampm) == "Day 0, 12:00 AM"


def test_format_calendar_key_follows_date_format():
    entries = build_timeline([{"index": 0, "metadata": {"storyTime": "2024-03-04T09:05:00Z"}}])
    entry = entries[0]
    assert format_resolved_key(entry, TimelineSettings(date_format="mm/dd/yyyy")) == "03/04/2024 09:05"
    assert format_resolved_key(entry, TimelineSettings(date_format="dd/mm/yyyy")) == "04/03/2024 09:05"
    assert format_resolved_key(entry, TimelineSettings(date_format="day-num")) == "2024-03-04 09:05"


def test_format_manual_key():
    assert format_resolved_key(_entry("manual", 3)) == "#3"


def test_render_markdown_timeline_lists_entries_in_order():
    entries = build_timeline(
        [
            {"index": 1, "metadata": {"storyTime": "Day 2, 14:30"}, "message": "The storm breaks."},
            {"index": 0, "metadata": {"storyTime": "Day 1, 08:00"}, "message": "The ship sets sail."},
            {"index": 2, "message": "Never placed."},
        ]
    )
    generated_at = datetime(2024, 1, 1, tzinfo=timezone.utc)
    markdown = render_markdown_timeline("Voyage", entries, generated_at=generated_at)

    assert markdown.startswith("# Voyage - Story Timeline")
    assert "Generated: 2024-01-01T00:00:00+00:00" in markdown
    assert "Total Events: 2" in markdown
    assert markdown.index("The ship sets sail.") < markdown.index("The storm breaks.")
    assert "**Time:** Day 2, 14:30" in markdown
    assert "Never placed." not in markdown


def test_render_markdown_timeline_truncates_excerpts():
    entries = [_entry("manual", 0, excerpt="x" * 300)]
    markdown = render_markdown_timeline("Long", entries, excerpt_limit=50)
    assert "x" * 50 + "..." in markdown
    assert "x" * 51 not in markdown


def test_format_calendar_key_omits_clock_for_date_only_entries():
    entries = build_timeline(
        [
            {"index": 0, "metadata": {"storyTime": "2024-03-04"}},
            {"index": 1, "metadata": {"storyTime": "03/05/2024"}},
            {"index": 2, "metadata": {"storyTime": "03/06/2024 00:00"}},
        ]
    )
    assert [entry.date_only for entry in entries] == [True, True, False]

    rendered = [format_resolved_key(entry) for entry in entries]
    assert rendered == ["03/04/2024", "03/05/2024", "03/06/2024 00:00"]


def test_render_markdown_timeline_writes_date_only_entries_without_clock():
    entries = build_timeline(
        [
            {"index": 0, "metadata": {"storyTime": "2024-03-04"}, "message": "Market day."},
            {"index": 1, "metadata": {"storyTime": "2024-03-04T18:30:00Z"}, "message": "Feast."},
        ]
    )
    markdown = render_markdown_timeline("Fair", entries, settings=TimelineSettings(date_format="dd/mm/yyyy"))
    assert "**Time:** 04/03/2024\n" in markdown
    assert "**Time:** 04/03/2024 18:30" in markdown


def test_format_narrative_key_normalises_overflowing_clock():
    entries = build_timeline([{"index": 0, "metadata": {"storyTime": "Day 1, 25:00"}}])
    assert entries[0].resolved_key == 2940
    assert format_resolved_key(entries[0]) == "Day 2, 01:00"
