from __future__ import annotations

import logging
from collections import Counter
from typing import Dict, Iterable, List, Mapping, Sequence

from .models import Event

logger = logging.getLogger("storytimeline.reorder")


class ReorderError(ValueError):
    """Raised when a reorder request is not a permutation of the displayed events."""


def _duplicates(values: Iterable[int]) -> List[int]:
    return sorted(value for value, count in Counter(values).items() if count > 1)


def validate_permutation(displayed: Sequence[int], new_order: Sequence[int]) -> None:
    if len(displayed) != len(new_order):
        raise ReorderError(
            f"New order has {len(new_order)} indices but {len(displayed)} events are displayed"
        )

    duplicated = _duplicates(displayed)
    if duplicated:
        raise ReorderError(f"Displayed sequence repeats indices {duplicated}")

    duplicated = _duplicates(new_order)
    if duplicated:
        raise ReorderError(f"New order repeats indices {duplicated}")

    expected = set(displayed)
    received = set(new_order)
    missing = sorted(expected - received)
    foreign = sorted(received - expected)
    if missing or foreign:
        details = []
        if missing:
            details.append(f"missing {missing}")
        if foreign:
            details.append(f"unknown {foreign}")
        raise ReorderError("New order is not a permutation of the displayed indices: " + ", ".join(details))


def apply_reorder(displayed: Sequence[int], new_order: Sequence[int]) -> Dict[int, int]:
    """Map each event index to its 0-based position in ``new_order``.

    The result is the manual order to write back to the event store. Nothing
    is resorted here; the next timeline build picks the values up.
    """

    displayed = list(displayed)
    new_order = list(new_order)
    validate_permutation(displayed, new_order)
    assignment = {index: position for position, index in enumerate(new_order)}
    logger.debug("Reorder of %d events: %s", len(assignment), assignment)
    return assignment


def write_manual_order(events: Sequence[Event], assignment: Mapping[int, int]) -> List[Event]:
    """Return copies of ``events`` with ``storyOrder`` taken from ``assignment``.

    The input events are left untouched. An assignment that names an event
    index not present in ``events`` is rejected before anything is copied.
    """

    known = {event.index for event in events}
    foreign = sorted(set(assignment) - known)
    if foreign:
        raise ReorderError(f"Assignment refers to unknown event indices {foreign}")

    updated: List[Event] = []
    for event in events:
        if event.index not in assignment:
            updated.append(event.model_copy(deep=True))
            continue
        metadata = event.metadata.model_copy(update={"story_order": assignment[event.index]})
        updated.append(event.model_copy(update={"metadata": metadata}, deep=True))
    return updated


__all__ = ["ReorderError", "apply_reorder", "validate_permutation", "write_manual_order"]
