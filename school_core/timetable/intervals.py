# =============================================================================
# school_core/timetable/intervals.py
# Time-of-day interval arithmetic shared by conflict checks and the grid
# =============================================================================
"""
Half-open time ranges ``[start, end)`` on a school day.

Both the conflict engine and the timetable grid go through these helpers so
they can never disagree about when two lessons overlap.
"""

from __future__ import annotations
import math
from datetime import time
from typing import List, Optional, Union

from school_core.errors import DataValidationError

TimeLike = Union[str, time]

SLOT_MINUTES = 30
DAY_START = "07:00"
DAY_END = "17:00"

WEEKDAYS = ["Monday", "Tuesday", "Wednesday", "Thursday", "Friday"]


def parse_time(value: TimeLike) -> time:
    """
    Parse ``HH:MM`` or ``HH:MM:SS`` (or pass a ``datetime.time`` through).

    Raises:
        DataValidationError: if the value is not a time of day
    """
    if isinstance(value, time):
        return value
    if not isinstance(value, str):
        raise DataValidationError(
            f"Invalid time {value!r}",
            expected="HH:MM",
            actual=type(value).__name__,
        )

    parts = value.strip().split(":")
    try:
        if len(parts) not in (2, 3):
            raise ValueError(value)
        hour, minute = int(parts[0]), int(parts[1])
        second = int(parts[2]) if len(parts) == 3 else 0
        return time(hour, minute, second)
    except ValueError:
        raise DataValidationError(f"Invalid time {value!r}", expected="HH:MM", actual=value)


def to_minutes(value: TimeLike) -> int:
    """Minutes since midnight (seconds are dropped)."""
    t = parse_time(value)
    return t.hour * 60 + t.minute


def format_time(value: TimeLike, twelve_hour: bool = False) -> str:
    """``HH:MM``, or ``h:MM AM/PM`` for grid labels."""
    t = parse_time(value)
    if not twelve_hour:
        return f"{t.hour:02d}:{t.minute:02d}"
    suffix = "PM" if t.hour >= 12 else "AM"
    return f"{t.hour % 12 or 12}:{t.minute:02d} {suffix}"


def validate_range(start: TimeLike, end: TimeLike) -> None:
    """Raise DataValidationError unless start < end."""
    if parse_time(start) >= parse_time(end):
        raise DataValidationError(
            f"Start time {format_time(start)} must be before end time {format_time(end)}",
            column="end_time",
        )


def overlaps(start_a: TimeLike, end_a: TimeLike, start_b: TimeLike, end_b: TimeLike) -> bool:
    """
    True iff ``[start_a, end_a)`` and ``[start_b, end_b)`` intersect.

    Touching ranges (one ends exactly when the other starts) do not overlap.
    """
    return parse_time(start_a) < parse_time(end_b) and parse_time(start_b) < parse_time(end_a)


def _build_slots() -> List[str]:
    first, last = to_minutes(DAY_START), to_minutes(DAY_END)
    return [f"{m // 60:02d}:{m % 60:02d}" for m in range(first, last, SLOT_MINUTES)]


# 07:00, 07:30, ... 16:30
TIME_SLOTS: List[str] = _build_slots()


def slot_index(value: TimeLike) -> Optional[int]:
    """Index of the slot starting exactly at value, or None if off the axis."""
    label = format_time(value)
    try:
        return TIME_SLOTS.index(label)
    except ValueError:
        return None


def slot_span(start: TimeLike, end: TimeLike) -> int:
    """Number of half-hour rows an entry occupies (at least one)."""
    minutes = to_minutes(end) - to_minutes(start)
    return max(1, math.ceil(minutes / SLOT_MINUTES))


def covered_slots(start: TimeLike, end: TimeLike) -> List[str]:
    """Slots hidden under a merged cell: every spanned slot after the first."""
    first = slot_index(start)
    if first is None:
        return []
    span = slot_span(start, end)
    return TIME_SLOTS[first + 1:first + span]
