# =============================================================================
# tests/unit/test_timetable_grid.py
# Unit Tests for the weekly grid layout and timetable models
# =============================================================================

import pytest


def _make(sample_entry, **changes):
    from school_core.timetable.models import TimetableEntry

    return TimetableEntry.from_dict({**sample_entry, **changes})


class TestTimetableEntryModel:
    """Test entry parsing and helpers"""

    def test_from_dict_keeps_join_columns(self, sample_entry):
        entry = _make(sample_entry, teacher={"first_name": "Daudi", "last_name": "Njoroge"})

        assert entry.extra["teacher"]["first_name"] == "Daudi"
        assert "teacher" not in entry.to_dict()

    def test_labels(self, sample_entry):
        assert _make(sample_entry).label == "Mathematics"
        assert _make(sample_entry, entry_type="lunch").label == "Lunch"
        assert _make(sample_entry, entry_type="cocurricular", subject_name=None).label == "Co-curricular"

    def test_clone_into(self, sample_entry):
        from school_core.timetable.models import AcademicPeriod

        source = _make(sample_entry, id="E1", created_at="2024-01-01T00:00:00")
        clone = source.clone_into(AcademicPeriod("2025", "Term 1"))

        assert clone.id != "E1"
        assert clone.created_at is None
        assert clone.period == AcademicPeriod("2025", "Term 1")
        assert (clone.teacher_id, clone.day_of_week, clone.start_time) == ("T1", 1, "08:00:00")

    def test_period_str(self):
        from school_core.timetable.models import AcademicPeriod

        assert str(AcademicPeriod("2024", "Term 1")) == "2024/Term 1"


class TestBuildGrid:
    """Test grid placement and merged cells"""

    def test_single_slot_entry(self, sample_entry):
        from school_core.timetable.grid import build_grid

        grid = build_grid([_make(sample_entry, end_time="08:30")])
        cell = grid.cell(1, "08:00")

        assert cell.entry.subject_name == "Mathematics"
        assert cell.row_span == 1
        assert not grid.hidden

    def test_spanning_entry_hides_covered_cells(self, sample_entry):
        from school_core.timetable.grid import build_grid

        grid = build_grid([_make(sample_entry, start_time="10:00", end_time="11:20")])

        assert grid.cell(1, "10:00").row_span == 3
        assert grid.is_hidden(1, "10:30")
        assert grid.is_hidden(1, "11:00")
        assert grid.cell(1, "11:00") is None
        assert grid.cell(1, "11:30").entry is None
        assert not grid.is_hidden(2, "10:30")

    def test_off_axis_entries_unplaced(self, sample_entry):
        from school_core.timetable.grid import build_grid

        grid = build_grid([
            _make(sample_entry, start_time="08:15", end_time="09:00"),
            _make(sample_entry, start_time="17:00", end_time="17:30"),
        ])

        assert len(grid.unplaced) == 2
        assert all(cell.entry is None for cell in grid.cells.values())

    def test_to_frame(self, sample_entry):
        from school_core.timetable.grid import build_grid
        from school_core.timetable.intervals import TIME_SLOTS, WEEKDAYS

        grid = build_grid([
            _make(sample_entry),
            _make(sample_entry, day_of_week=3, entry_type="break", teacher_id=None,
                  start_time="10:00", end_time="10:30"),
        ])
        frame = grid.to_frame()

        assert list(frame.columns) == WEEKDAYS
        assert len(frame) == len(TIME_SLOTS)
        assert frame.loc["8:00 AM", "Monday"] == "Mathematics"
        assert frame.loc["8:30 AM", "Monday"] is None
        assert frame.loc["10:00 AM", "Wednesday"] == "Break"
        assert frame.loc["9:00 AM", "Monday"] == ""

    def test_cell_off_grid(self, sample_entry):
        from school_core.timetable.grid import build_grid

        grid = build_grid([_make(sample_entry)])

        assert grid.cell(6, "08:00") is None
        assert grid.cell(1, "07:15") is None
        assert grid.cell(1, "08:00").entry is not None
