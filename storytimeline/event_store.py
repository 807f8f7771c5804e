from __future__ import annotations

import json
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable, List, Mapping, Optional, Tuple

from .models import Event, EventMetadata
from .reorder import ReorderError
from .settings import settings

SCHEMA_SESSIONS = """
CREATE TABLE IF NOT EXISTS sessions (
    id TEXT PRIMARY KEY,
    updated_at TEXT NOT NULL
);
"""

SCHEMA_EVENTS = """
CREATE TABLE IF NOT EXISTS session_events (
    session_id TEXT NOT NULL,
    event_index INTEGER NOT NULL,
    metadata TEXT NOT NULL,
    message TEXT NOT NULL,
    PRIMARY KEY (session_id, event_index),
    FOREIGN KEY(session_id) REFERENCES sessions(id) ON DELETE CASCADE
);
"""


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@contextmanager
def _get_connection(db_path: Optional[Path] = None):
    path = Path(db_path or settings.db_path)
    path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(path)
    try:
        conn.execute("PRAGMA foreign_keys = ON;")
        yield conn
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()


def init_db(db_path: Optional[Path] = None) -> None:
    with _get_connection(db_path) as conn:
        conn.execute(SCHEMA_SESSIONS)
        conn.execute(SCHEMA_EVENTS)


def _dump_metadata(metadata: EventMetadata) -> str:
    return json.dumps(metadata.model_dump(by_alias=True, exclude_none=True), ensure_ascii=False)


def replace_events(
    session_id: str,
    events: Iterable[Event],
    *,
    db_path: Optional[Path] = None,
) -> datetime:
    """Store ``events`` as the complete event list of ``session_id``."""

    events_list = list(events)
    updated_at = _now_iso()
    with _get_connection(db_path) as conn:
        conn.execute(
            "INSERT INTO sessions (id, updated_at) VALUES (?, ?) "
            "ON CONFLICT(id) DO UPDATE SET updated_at = excluded.updated_at",
            (session_id, updated_at),
        )
        conn.execute("DELETE FROM session_events WHERE session_id = ?", (session_id,))
        conn.executemany(
            "INSERT INTO session_events (session_id, event_index, metadata, message) VALUES (?, ?, ?, ?)",
            [
                (session_id, event.index, _dump_metadata(event.metadata), event.message)
                for event in events_list
            ],
        )
    return datetime.fromisoformat(updated_at)


def fetch_events(
    session_id: str,
    *,
    db_path: Optional[Path] = None,
) -> Tuple[Optional[datetime], List[Event]]:
    with _get_connection(db_path) as conn:
        conn.row_factory = sqlite3.Row
        header = conn.execute(
            "SELECT updated_at FROM sessions WHERE id = ?",
            (session_id,),
        ).fetchone()
        if header is None:
            return None, []
        rows = conn.execute(
            """
            SELECT event_index, metadata, message
            FROM session_events
            WHERE session_id = ?
            ORDER BY event_index ASC
            """,
            (session_id,),
        ).fetchall()

    events = [
        Event(
            index=int(row["event_index"]),
            metadata=EventMetadata.model_validate(json.loads(row["metadata"] or "{}")),
            message=row["message"] or "",
        )
        for row in rows
    ]
    return datetime.fromisoformat(header["updated_at"]), events


def save_manual_order(
    session_id: str,
    assignment: Mapping[int, int],
    *,
    db_path: Optional[Path] = None,
) -> int:
    """Write ``storyOrder`` for every index in ``assignment`` in one transaction.

    Unknown indices raise :class:`ReorderError` and leave the stored events
    unchanged.
    """

    with _get_connection(db_path) as conn:
        conn.row_factory = sqlite3.Row
        rows = conn.execute(
            "SELECT event_index, metadata FROM session_events WHERE session_id = ?",
            (session_id,),
        ).fetchall()
        stored = {int(row["event_index"]): json.loads(row["metadata"] or "{}") for row in rows}

        foreign = sorted(set(assignment) - set(stored))
        if foreign:
            raise ReorderError(f"Assignment refers to unknown event indices {foreign}")

        updates = []
        for index, position in assignment.items():
            metadata = dict(stored[index])
            metadata["storyOrder"] = position
            updates.append((json.dumps(metadata, ensure_ascii=False), session_id, index))

        conn.executemany(
            "UPDATE session_events SET metadata = ? WHERE session_id = ? AND event_index = ?",
            updates,
        )
        conn.execute("UPDATE sessions SET updated_at = ? WHERE id = ?", (_now_iso(), session_id))
    return len(updates)


def list_sessions(
    limit: int = 50,
    *,
    db_path: Optional[Path] = None,
) -> List[Tuple[str, datetime, int]]:
    with _get_connection(db_path) as conn:
        conn.row_factory = sqlite3.Row
        rows = conn.execute(
            """
            SELECT s.id, s.updated_at, COUNT(e.event_index) AS total_events
            FROM sessions AS s
            LEFT JOIN session_events AS e ON e.session_id = s.id
            GROUP BY s.id
            ORDER BY s.updated_at DESC
            LIMIT ?
            """,
            (limit,),
        ).fetchall()
    return [
        (row["id"], datetime.fromisoformat(row["updated_at"]), int(row["total_events"]))
        for row in rows
    ]
