# =============================================================================
# school_core/timetable/grid.py
# Weekly timetable grid layout
# =============================================================================
"""
Lays entries out on a Monday-Friday x half-hour grid.

An entry sits in the cell of its start slot and spans as many rows as its
duration covers; the cells under a spanning entry are hidden. Entries that
do not start on the slot axis are kept in ``unplaced``.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Set, Tuple

import pandas as pd

from school_core.timetable.intervals import (
    TIME_SLOTS,
    WEEKDAYS,
    covered_slots,
    format_time,
    slot_index,
    slot_span,
)
from school_core.timetable.models import TimetableEntry

CellKey = Tuple[int, str]   # (day_of_week, slot)


@dataclass
class GridCell:
    day_of_week: int
    slot: str
    entries: List[TimetableEntry] = field(default_factory=list)

    @property
    def entry(self) -> Optional[TimetableEntry]:
        """The entry rendered in this cell (the first one placed)."""
        return self.entries[0] if self.entries else None

    @property
    def row_span(self) -> int:
        entry = self.entry
        return slot_span(entry.start_time, entry.end_time) if entry else 1


@dataclass
class TimetableGrid:
    cells: Dict[CellKey, GridCell]
    hidden: Set[CellKey]
    unplaced: List[TimetableEntry] = field(default_factory=list)

    def cell(self, day_of_week: int, slot: str) -> Optional[GridCell]:
        """The visible cell at (day, slot); None if covered or off the grid."""
        key = (day_of_week, slot)
        if key in self.hidden:
            return None
        return self.cells.get(key)

    def is_hidden(self, day_of_week: int, slot: str) -> bool:
        return (day_of_week, slot) in self.hidden

    def to_frame(self, twelve_hour: bool = True) -> pd.DataFrame:
        """
        Render as a DataFrame: one row per slot, one column per weekday.

        Visible cells hold the entry label ("" when free); covered cells hold
        None so a renderer can merge them into the spanning cell above.
        """
        data = {}
        for day_number, day_name in enumerate(WEEKDAYS, start=1):
            column = []
            for slot in TIME_SLOTS:
                cell = self.cell(day_number, slot)
                if cell is None:
                    column.append(None)
                else:
                    column.append(cell.entry.label if cell.entry else "")
            data[day_name] = column

        index = pd.Index([format_time(slot, twelve_hour=twelve_hour) for slot in TIME_SLOTS], name="Time")
        return pd.DataFrame(data, index=index, dtype=object)


def build_grid(entries: Iterable[TimetableEntry]) -> TimetableGrid:
    """Group entries by day and start slot and mark covered cells."""
    cells = {
        (day, slot): GridCell(day, slot)
        for day in range(1, len(WEEKDAYS) + 1)
        for slot in TIME_SLOTS
    }
    hidden: Set[CellKey] = set()
    unplaced: List[TimetableEntry] = []

    for entry in entries:
        key = (entry.day_of_week, format_time(entry.start_time))
        if key not in cells or slot_index(entry.start_time) is None:
            unplaced.append(entry)
            continue
        cells[key].entries.append(entry)

    # Only the entry actually rendered in a cell hides the cells beneath it
    for (day, _), cell in cells.items():
        if cell.entry is not None:
            hidden.update((day, slot) for slot in covered_slots(cell.entry.start_time, cell.entry.end_time))

    return TimetableGrid(cells=cells, hidden=hidden, unplaced=unplaced)
