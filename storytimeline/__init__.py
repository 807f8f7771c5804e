"""Chronological ordering, grouping and manual reordering of story events."""

__version__ = "0.1.0"
