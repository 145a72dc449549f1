# =============================================================================
# school_core/timetable/models.py
# Timetable entry and scheduling context types
# =============================================================================

from __future__ import annotations
import uuid
from dataclasses import dataclass, field, fields
from enum import Enum
from typing import Any, Dict, Optional

from school_core.errors import DataValidationError
from school_core.timetable.intervals import format_time, validate_range


class ResourceKind(Enum):
    """The two resources that must each stay free of double-booking."""
    TEACHER = "teacher"
    STREAM = "stream"
    SECTION = "stream"      # alias: a stream is a class-section

    @classmethod
    def _missing_(cls, value):
        if isinstance(value, str):
            name = value.strip().lower()
            if name == "section":
                return cls.STREAM
            for member in cls:
                if member.value == name:
                    return member
        return None


class EntryType(Enum):
    LESSON = "lesson"
    DOUBLE_LESSON = "double_lesson"
    GAMES = "games"
    COCURRICULAR = "cocurricular"
    BREAK = "break"
    LUNCH = "lunch"
    ASSEMBLY = "assembly"

    @property
    def is_academic(self) -> bool:
        return self in (EntryType.LESSON, EntryType.DOUBLE_LESSON)

    @property
    def label(self) -> str:
        return {
            EntryType.DOUBLE_LESSON: "Double lesson",
            EntryType.COCURRICULAR: "Co-curricular",
        }.get(self, self.value.capitalize())


@dataclass(frozen=True)
class AcademicPeriod:
    """An academic year + term pair, e.g. ("2024", "Term 1")."""
    academic_year: str
    term: str

    def __str__(self) -> str:
        return f"{self.academic_year}/{self.term}"


@dataclass
class TimetableEntry:
    """A scheduled block for one stream on one weekday."""
    stream_id: str
    grade_id: str
    academic_year: str
    term: str
    day_of_week: int
    start_time: str
    end_time: str
    teacher_id: Optional[str] = None
    learning_area_id: Optional[str] = None
    entry_type: EntryType = EntryType.LESSON
    room: Optional[str] = None
    subject_name: Optional[str] = None
    id: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    # Fields whose change can create a double-booking
    SCHEDULING_FIELDS = frozenset({
        "teacher_id", "stream_id", "academic_year", "term",
        "day_of_week", "start_time", "end_time",
    })

    def __post_init__(self):
        if isinstance(self.entry_type, str):
            try:
                self.entry_type = EntryType(self.entry_type)
            except ValueError:
                raise DataValidationError(
                    f"Unknown entry type {self.entry_type!r}",
                    column="entry_type",
                    expected=", ".join(t.value for t in EntryType),
                    actual=self.entry_type,
                )

    @property
    def period(self) -> AcademicPeriod:
        return AcademicPeriod(self.academic_year, self.term)

    @property
    def label(self) -> str:
        """Text shown in the grid cell."""
        if self.entry_type in (EntryType.BREAK, EntryType.LUNCH, EntryType.ASSEMBLY, EntryType.GAMES):
            return self.entry_type.label
        return self.subject_name or self.entry_type.label

    def resource_id(self, kind: ResourceKind) -> Optional[str]:
        return self.teacher_id if kind == ResourceKind.TEACHER else self.stream_id

    def validate(self) -> TimetableEntry:
        """Check required fields, the weekday and that the range is non-empty."""
        for name in ("stream_id", "grade_id", "academic_year", "term"):
            if not getattr(self, name):
                raise DataValidationError(f"Timetable entry is missing {name}", column=name)

        if not isinstance(self.day_of_week, int) or isinstance(self.day_of_week, bool) \
                or not 1 <= self.day_of_week <= 5:
            raise DataValidationError(
                f"day_of_week must be 1-5 (Monday-Friday), got {self.day_of_week!r}",
                column="day_of_week",
                expected="1-5",
                actual=str(self.day_of_week),
            )

        validate_range(self.start_time, self.end_time)
        return self

    @classmethod
    def field_names(cls) -> frozenset:
        return frozenset(f.name for f in fields(cls) if f.name != "extra")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> TimetableEntry:
        """Build an entry from a row; nested join columns land in ``extra``."""
        known = cls.field_names()
        values = {k: v for k, v in data.items() if k in known}
        extra = {k: v for k, v in data.items() if k not in known}
        try:
            entry = cls(**values, extra=extra)
        except TypeError as e:
            raise DataValidationError(f"Malformed timetable entry: {e}")
        return entry.validate()

    def to_dict(self) -> Dict[str, Any]:
        """Row for the timetable_entries table (times as HH:MM:SS)."""
        row = {name: getattr(self, name) for name in self.field_names()}
        row["entry_type"] = self.entry_type.value
        row["start_time"] = f"{format_time(self.start_time)}:00"
        row["end_time"] = f"{format_time(self.end_time)}:00"
        return {k: v for k, v in row.items() if v is not None}

    def clone_into(self, period: AcademicPeriod) -> TimetableEntry:
        """Copy of this entry in another period with a fresh identity."""
        data = self.to_dict()
        for name in ("id", "created_at", "updated_at"):
            data.pop(name, None)
        data.update(id=str(uuid.uuid4()), academic_year=period.academic_year, term=period.term)
        return TimetableEntry.from_dict(data)
