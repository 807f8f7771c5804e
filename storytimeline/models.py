from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

DateFormat = Literal["mm/dd/yyyy", "dd/mm/yyyy", "day-num"]
TimeFormat = Literal["24h", "ampm"]
Granularity = Literal["all", "year", "month", "week", "day"]
EntryKind = Literal["narrative", "calendar", "numeric", "manual"]

ResolvedKey = Union[int, float]

MAX_EVENTS_PER_REQUEST = 10_000
# Largest index the SQLite INTEGER column can hold.
MAX_EVENT_INDEX = 2**63 - 1


class TimelineSettings(BaseModel):
    """Immutable snapshot of the formatting options the engine reads."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    date_format: DateFormat = Field(default="mm/dd/yyyy", alias="dateFormat")
    time_format: TimeFormat = Field(default="24h", alias="timeFormat")
    drag_drop_enabled: bool = Field(default=True, alias="dragDropEnabled")


class EventMetadata(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    # Left untyped so a malformed descriptor excludes one event instead of
    # failing validation for the whole batch.
    story_time: Any = Field(
        default=None,
        alias="storyTime",
        description="Narrative string, calendar string or numeric offset",
    )
    story_order: Any = Field(
        default=None,
        alias="storyOrder",
        description="Manual order index used when storyTime is absent or unparseable",
    )


class Event(BaseModel):
    """A single story event as held by the event store."""

    model_config = ConfigDict(populate_by_name=True)

    index: int = Field(..., ge=0, le=MAX_EVENT_INDEX, description="Position of the event in its owning sequence")
    metadata: EventMetadata = Field(default_factory=EventMetadata)
    message: str = Field(default="", description="Event text shown as the timeline excerpt")

    @field_validator("metadata", mode="before")
    @classmethod
    def _default_metadata(cls, value: Any) -> Any:
        return {} if value is None else value


class TimelineEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    index: int
    resolved_key: ResolvedKey
    excerpt: str
    kind: EntryKind
    date_only: bool = Field(default=False, description="Calendar entry written without a clock time")


class Group(BaseModel):
    model_config = ConfigDict(frozen=True)

    key: str = Field(..., description="Canonical bucket key (YYYY, YYYY-MM, YYYY-Www or YYYY-MM-DD)")
    label: str
    granularity: Granularity
    entries: List[TimelineEntry]


class TimelineView(BaseModel):
    """Flat or grouped timeline; ``groups`` is ``None`` in the ``all`` view."""

    granularity: Granularity
    entries: List[TimelineEntry]
    groups: Optional[List[Group]] = None

    @property
    def is_grouped(self) -> bool:
        return self.groups is not None


class BuildRequest(BaseModel):
    events: List[Any] = Field(
        default_factory=list,
        max_length=MAX_EVENTS_PER_REQUEST,
        description="Raw events; malformed entries are excluded, not rejected",
    )
    settings: Optional[TimelineSettings] = None


class BuildResponse(BaseModel):
    entries: List[TimelineEntry]
    total_events: int
    excluded_events: int
    generated_at: datetime


class GroupRequest(BuildRequest):
    granularity: Optional[Granularity] = Field(
        default=None,
        description="Grouping granularity; the configured default view when omitted",
    )


class GroupResponse(BaseModel):
    view: TimelineView
    total_events: int
    excluded_events: int
    generated_at: datetime


class ReorderRequest(BaseModel):
    displayed: List[int] = Field(..., description="Event indices in their displayed order")
    new_order: List[int] = Field(..., description="Permutation of displayed after the drop")


class ReorderResponse(BaseModel):
    assignment: Dict[int, int]


class ExportRequest(BuildRequest):
    title: str = Field(..., max_length=200, description="Heading of the exported document")

    @field_validator("title")
    @classmethod
    def _ensure_non_empty_title(cls, value: str) -> str:
        cleaned = value.strip()
        if not cleaned:
            raise ValueError("title must not be empty")
        return cleaned


class SessionEventsRequest(BaseModel):
    events: List[Event] = Field(default_factory=list, max_length=MAX_EVENTS_PER_REQUEST)

    @model_validator(mode="after")
    def _ensure_unique_indices(self) -> "SessionEventsRequest":
        seen: set[int] = set()
        for event in self.events:
            if event.index in seen:
                raise ValueError(f"duplicate event index {event.index}")
            seen.add(event.index)
        return self


class SessionEventsResponse(BaseModel):
    session_id: str
    total_events: int
    updated_at: datetime


class SessionReorderRequest(BaseModel):
    displayed: Optional[List[int]] = Field(
        default=None,
        description="Displayed indices; defaults to the current built order of the session",
    )
    new_order: List[int]


class SessionTimelineResponse(BaseModel):
    session_id: str
    view: TimelineView
    total_events: int
    excluded_events: int
    generated_at: datetime


class SessionSummary(BaseModel):
    session_id: str
    updated_at: datetime
    total_events: int


class SessionListResponse(BaseModel):
    sessions: List[SessionSummary]
