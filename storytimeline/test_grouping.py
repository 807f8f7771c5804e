from __future__ import annotations

from datetime import datetime, timezone

import pytest

from .descriptors import minutes_since_epoch
from .grouping import GroupingError, arrange, bucket_key, group_entries, group_label
from .models import TimelineEntry
from .timeline_builder import build_timeline


def _calendar_entry(index: int, *moment: int) -> TimelineEntry:
    key = minutes_since_epoch(datetime(*moment, tzinfo=timezone.utc))
    return TimelineEntry(index=index, resolved_key=key, excerpt=f"event {index}", kind="calendar")


def _mixed_timeline():
    events = [
        {"index": 0, "metadata": {"storyTime": "2024-12-30T09:00:00Z"}},
        {"index": 1, "metadata": {"storyTime": "2024-12-29"}},
        {"index": 2, "metadata": {"storyTime": "2025-01-02T18:45:00Z"}},
        {"index": 3, "metadata": {"storyTime": "2024-03-15"}},
        {"index": 4, "metadata": {"storyTime": "2024-03-15"}},
        {"index": 5, "metadata": {"storyTime": "Day 2, 14:30"}},
        {"index": 6, "metadata": {"storyOrder": 1}},
        {"index": 7, "metadata": {"storyTime": "2021-01-01"}},
    ]
    return build_timeline(events)


def test_year_month_and_day_keys():
    entry = _calendar_entry(0, 2024, 3, 5, 23, 59)
    assert bucket_key(entry.resolved_key, "year") == "2024"
    assert bucket_key(entry.resolved_key, "month") == "2024-03"
    assert bucket_key(entry.resolved_key, "day") == "2024-03-05"


def test_narrative_keys_start_at_the_epoch():
    assert bucket_key(0, "day") == "1970-01-01"
    assert bucket_key(3750, "day") == "1970-01-03"
    assert bucket_key(31 * 1440, "month") == "1970-02"


def test_iso_week_boundaries():
    assert bucket_key(_calendar_entry(0, 2024, 1, 1).resolved_key, "week") == "2024-W01"
    assert bucket_key(_calendar_entry(0, 2024, 12, 30).resolved_key, "week") == "2025-W01"
    assert bucket_key(_calendar_entry(0, 2024, 12, 29).resolved_key, "week") == "2024-W52"
    assert bucket_key(_calendar_entry(0, 2021, 1, 1).resolved_key, "week") == "2020-W53"


def test_group_labels():
    assert group_label("year", "2024") == "Year 2024"
    assert group_label("month", "2024-03") == "March 2024"
    assert group_label("week", "2025-W01") == "Week 2025-W01"
    assert group_label("day", "2024-12-30") == "Monday, December 30, 2024"


@pytest.mark.parametrize("granularity", ["year", "month", "week", "day"])
def test_grouping_partitions_sorted_entries(granularity):
    entries = _mixed_timeline()
    groups = group_entries(entries, granularity)

    flattened = [entry for group in groups for entry in group.entries]
    assert flattened == entries

    keys = [group.key for group in groups]
    assert keys == sorted(keys)
    assert len(set(keys)) == len(keys)
    for group in groups:
        assert group.granularity == granularity
        assert group.entries
        assert all(bucket_key(entry.resolved_key, granularity) == group.key for entry in group.entries)


def test_week_grouping_crosses_the_year_boundary():
    groups = group_entries(_mixed_timeline(), "week")
    by_key = {group.key: [entry.index for entry in group.entries] for group in groups}
    assert by_key["2025-W01"] == [0, 2]
    assert by_key["2024-W52"] == [1]
    assert by_key["2020-W53"] == [7]


def test_entries_keep_their_order_inside_a_bucket():
    entries = [
        _calendar_entry(4, 2024, 3, 15),
        _calendar_entry(3, 2024, 3, 15),
        _calendar_entry(9, 2024, 3, 16),
    ]
    groups = group_entries(entries, "month")
    assert len(groups) == 1
    assert groups[0].label == "March 2024"
    assert [entry.index for entry in groups[0].entries] == [4, 3, 9]


def test_grouping_empty_input():
    assert group_entries([], "day") == []
    view = arrange([], "week")
    assert view.groups == []


def test_all_view_is_flat():
    entries = _mixed_timeline()
    view = arrange(entries, "all")
    assert not view.is_grouped
    assert view.groups is None
    assert view.entries == entries

    with pytest.raises(ValueError):
        group_entries(entries, "all")


def test_grouped_view_carries_groups_and_entries():
    entries = _mixed_timeline()
    view = arrange(entries, "year")
    assert view.is_grouped
    assert [group.key for group in view.groups] == ["1970", "2021", "2024", "2025"]
    assert view.entries == entries


def test_unknown_granularity_is_rejected():
    with pytest.raises(ValueError):
        group_entries([], "decade")  # type: ignore[arg-type]
    with pytest.raises(ValueError):
        bucket_key(0, "all")


def test_keys_outside_the_calendar_raise():
    entry = TimelineEntry(index=0, resolved_key=10**12, excerpt="", kind="numeric")
    with pytest.raises(GroupingError):
        group_entries([entry], "year")
