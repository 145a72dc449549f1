# =============================================================================
# school_core/timetable/__init__.py
# Timetable Conflict Engine
# =============================================================================
"""
Timetable scheduling with teacher and stream double-booking checks.

Usage:
    from school_core.timetable import TimetableService, build_grid

    service = TimetableService()
    service.add_entry({...})
    grid = build_grid(service.list_entries(("2024", "Term 1"), stream_id="S1"))
    st.dataframe(grid.to_frame())
"""

from .intervals import (
    TIME_SLOTS,
    WEEKDAYS,
    parse_time,
    format_time,
    overlaps,
    slot_index,
    slot_span,
    covered_slots,
)
from .models import AcademicPeriod, EntryType, ResourceKind, TimetableEntry
from .service import TimetableService
from .grid import GridCell, TimetableGrid, build_grid

__all__ = [
    # Interval math
    "TIME_SLOTS",
    "WEEKDAYS",
    "parse_time",
    "format_time",
    "overlaps",
    "slot_index",
    "slot_span",
    "covered_slots",
    # Models
    "AcademicPeriod",
    "EntryType",
    "ResourceKind",
    "TimetableEntry",
    # Service
    "TimetableService",
    # Grid
    "GridCell",
    "TimetableGrid",
    "build_grid",
]
