# =============================================================================
# school_core/timetable/service.py
# Timetable Conflict Engine
# =============================================================================
"""
TimetableService - Schedule mutations guarded by double-booking checks.

Every add/update runs a teacher check and a stream check before writing.
Checks are evaluated locally (select + interval overlap) unless the remote
store exposes the conflict procedures and ``use_remote_procedures`` is set.

The check and the write are separate calls, so two admins editing at the
same moment can both pass the check. This is accepted for an
administrative tool with very few concurrent editors.
"""

from __future__ import annotations
import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple, Union

from school_core.errors import ConflictError, DataValidationError, RemoteUnavailableError, SchoolCoreError
from school_core.services.base_service import BaseService, ServiceResult
from school_core.timetable.intervals import format_time, overlaps, validate_range
from school_core.timetable.models import AcademicPeriod, ResourceKind, TimetableEntry

EntryLike = Union[TimetableEntry, Dict[str, Any]]
PeriodLike = Union[AcademicPeriod, Tuple[str, str]]


class TimetableService(BaseService):
    """
    Add, update, delete, list and clone timetable entries.

    Usage:
        service = TimetableService(remote)
        service.add_entry({
            "teacher_id": "T1", "stream_id": "S1", "grade_id": "G4",
            "academic_year": "2024", "term": "Term 1",
            "day_of_week": 1, "start_time": "08:00", "end_time": "09:00",
        })
    """

    TABLE = "timetable_entries"

    CONFLICT_PROCEDURES = {
        ResourceKind.TEACHER: "check_timetable_teacher_conflict",
        ResourceKind.STREAM: "check_timetable_stream_conflict",
    }
    CONFLICT_MESSAGES = {
        ResourceKind.TEACHER: "Teacher is already assigned to another class at this time",
        ResourceKind.STREAM: "This stream already has a class scheduled at this time",
    }
    CLONE_PROCEDURE = "clone_timetable"

    def __init__(self, remote=None, use_remote_procedures: Optional[bool] = None):
        super().__init__()
        self._remote = remote
        self._use_remote_procedures = use_remote_procedures

    def _get_remote(self):
        if self._remote is None:
            from school_core.data.supabase_client import get_remote
            self._remote = get_remote()
        return self._remote

    @property
    def use_remote_procedures(self) -> bool:
        if self._use_remote_procedures is None:
            from school_core.settings import get_settings
            self._use_remote_procedures = get_settings().use_remote_procedures
        return self._use_remote_procedures

    @staticmethod
    def _period(period: PeriodLike) -> AcademicPeriod:
        return period if isinstance(period, AcademicPeriod) else AcademicPeriod(*period)

    @staticmethod
    def _kind(resource_kind: Union[ResourceKind, str]) -> ResourceKind:
        try:
            return ResourceKind(resource_kind)
        except ValueError:
            raise DataValidationError(
                f"Unknown resource kind: {resource_kind!r}",
                column="resource_kind",
                expected="teacher or section",
                actual=str(resource_kind),
            ) from None

    def _call_remote(self, method: str, *args, **kwargs):
        """Call the remote store, translating client failures to RemoteUnavailableError."""
        try:
            return getattr(self._get_remote(), method)(*args, **kwargs)
        except SchoolCoreError:
            raise
        except Exception as e:
            raise RemoteUnavailableError(
                f"Timetable {method} failed: {e}",
                details={"operation": method, "table": self.TABLE},
            ) from e

    # =========================================================================
    # CONFLICT CHECKS
    # =========================================================================

    def conflicting_entries(
        self,
        resource_kind: Union[ResourceKind, str],
        resource_id: Any,
        period: PeriodLike,
        day_of_week: int,
        start_time: str,
        end_time: str,
        exclude_entry_id: Optional[str] = None,
    ) -> List[TimetableEntry]:
        """Existing entries of the resource that overlap the window."""
        kind = self._kind(resource_kind)
        period = self._period(period)
        rows = self._call_remote(
            "select",
            self.TABLE,
            filters={
                f"{kind.value}_id": resource_id,
                "academic_year": period.academic_year,
                "term": period.term,
                "day_of_week": day_of_week,
            },
        )
        return [
            TimetableEntry.from_dict(row)
            for row in rows
            if row.get("id") != exclude_entry_id
            and overlaps(start_time, end_time, row["start_time"], row["end_time"])
        ]

    def check_conflict(
        self,
        resource_kind: Union[ResourceKind, str],
        resource_id: Any,
        period: PeriodLike,
        day_of_week: int,
        start_time: str,
        end_time: str,
        exclude_entry_id: Optional[str] = None,
    ) -> bool:
        """
        True iff the resource already has an overlapping entry that day.

        Args:
            resource_kind: "teacher" or "stream" (a class-section)
            resource_id: Teacher or stream id; None never conflicts
            period: AcademicPeriod or (academic_year, term)
            day_of_week: 1-5 (Monday-Friday)
            start_time, end_time: Half-open window [start, end)
            exclude_entry_id: Entry being edited, ignored by the check
        """
        kind = self._kind(resource_kind)
        if resource_id is None:
            return False
        validate_range(start_time, end_time)

        if not self.use_remote_procedures:
            return bool(self.conflicting_entries(
                kind, resource_id, period, day_of_week, start_time, end_time, exclude_entry_id
            ))

        period = self._period(period)
        params = {
            f"p_{kind.value}_id": resource_id,
            "p_academic_year": period.academic_year,
            "p_term": period.term,
            "p_day_of_week": day_of_week,
            "p_start_time": start_time,
            "p_end_time": end_time,
        }
        if exclude_entry_id is not None:
            params["p_exclude_id"] = exclude_entry_id
        return bool(self._call_remote("rpc", self.CONFLICT_PROCEDURES[kind], params))

    def _ensure_free(self, entry: TimetableEntry, exclude_entry_id: Optional[str] = None) -> None:
        """Raise ConflictError for the first resource that is double-booked."""
        for kind in (ResourceKind.TEACHER, ResourceKind.STREAM):
            resource_id = entry.resource_id(kind)
            if self.check_conflict(
                kind, resource_id, entry.period, entry.day_of_week,
                entry.start_time, entry.end_time, exclude_entry_id,
            ):
                self.logger.info(
                    f"Rejected entry: {kind.value} {resource_id} busy on day "
                    f"{entry.day_of_week} {format_time(entry.start_time)}-{format_time(entry.end_time)}"
                )
                raise ConflictError(
                    self.CONFLICT_MESSAGES[kind],
                    resource_kind=kind.value,
                    resource_id=resource_id,
                    day_of_week=entry.day_of_week,
                    start_time=format_time(entry.start_time),
                    end_time=format_time(entry.end_time),
                )

    # =========================================================================
    # MUTATIONS
    # =========================================================================

    def add_entry(self, entry: EntryLike) -> TimetableEntry:
        """
        Insert an entry after checking the teacher, then the stream.

        Raises:
            DataValidationError: malformed entry
            ConflictError: teacher or stream already booked
        """
        entry = entry if isinstance(entry, TimetableEntry) else TimetableEntry.from_dict(entry)
        entry.validate()
        self._ensure_free(entry)

        now = datetime.now().isoformat()
        entry.id = entry.id or str(uuid.uuid4())
        entry.created_at = entry.created_at or now
        entry.updated_at = now

        row = self._call_remote("insert", self.TABLE, entry.to_dict())
        self.logger.debug(f"Added timetable entry {entry.id}")
        return TimetableEntry.from_dict(row)

    def get_entry(self, entry_id: str) -> Optional[TimetableEntry]:
        rows = self._call_remote("select", self.TABLE, filters={"id": entry_id})
        return TimetableEntry.from_dict(rows[0]) if rows else None

    def update_entry(self, entry_id: str, changes: Dict[str, Any]) -> TimetableEntry:
        """
        Apply a partial update.

        The checks run against the stored entry overlaid with ``changes`` and
        ignore the entry itself. They are skipped when no teacher, stream,
        period, day or time field is touched. Only supplied fields are written.
        """
        current = self.get_entry(entry_id)
        if current is None:
            raise DataValidationError(f"Timetable entry {entry_id} does not exist", column="id")

        changes = {k: v for k, v in changes.items() if k != "id"}
        unknown = set(changes) - TimetableEntry.field_names()
        if unknown:
            raise DataValidationError(f"Unknown timetable fields: {sorted(unknown)}")

        merged = TimetableEntry.from_dict({**current.to_dict(), **changes})
        if TimetableEntry.SCHEDULING_FIELDS & changes.keys():
            self._ensure_free(merged, exclude_entry_id=entry_id)

        merged_row = merged.to_dict()
        written = {k: merged_row.get(k) for k in changes}
        written["updated_at"] = datetime.now().isoformat()

        rows = self._call_remote("update", self.TABLE, {"id": entry_id}, written)
        return TimetableEntry.from_dict(rows[0]) if rows else merged

    def delete_entry(self, entry_id: str) -> bool:
        """Remove an entry. Returns False if it did not exist."""
        return self._call_remote("delete", self.TABLE, {"id": entry_id}) > 0

    # =========================================================================
    # QUERIES & CLONING
    # =========================================================================

    def list_entries(
        self,
        period: PeriodLike,
        grade_id: Optional[str] = None,
        stream_id: Optional[str] = None,
        teacher_id: Optional[str] = None,
    ) -> List[TimetableEntry]:
        """Entries of a period, ordered by day then start time."""
        period = self._period(period)
        filters = {"academic_year": period.academic_year, "term": period.term}
        for column, value in (("grade_id", grade_id), ("stream_id", stream_id), ("teacher_id", teacher_id)):
            if value is not None:
                filters[column] = value

        rows = self._call_remote("select", self.TABLE, filters=filters, order_by=["day_of_week", "start_time"])
        entries = [TimetableEntry.from_dict(row) for row in rows]
        return sorted(entries, key=lambda e: (e.day_of_week, format_time(e.start_time)))

    def clone_schedule(
        self,
        source_year: str,
        source_term: str,
        target_year: str,
        target_term: str,
        grade_id: Optional[str] = None,
        stream_id: Optional[str] = None,
    ) -> int:
        """
        Copy a period's entries into another period with new ids.

        Clones are not checked against each other; they come from a period
        that was already conflict-free.

        Returns:
            Number of entries created
        """
        if self.use_remote_procedures and stream_id is None:
            count = self._call_remote("rpc", self.CLONE_PROCEDURE, {
                "p_source_academic_year": source_year,
                "p_source_term": source_term,
                "p_target_academic_year": target_year,
                "p_target_term": target_term,
                "p_grade_id": grade_id,
            })
            return int(count or 0)

        target = AcademicPeriod(target_year, target_term)
        sources = self.list_entries((source_year, source_term), grade_id=grade_id, stream_id=stream_id)

        created = 0
        now = datetime.now().isoformat()
        for source in sources:
            clone = source.clone_into(target)
            clone.created_at = clone.updated_at = now
            try:
                self._call_remote("insert", self.TABLE, clone.to_dict())
                created += 1
            except RemoteUnavailableError as e:
                self.logger.warning(f"Could not clone entry {source.id}: {e}")

        if created != len(sources):
            self.logger.warning(f"Cloned {created} of {len(sources)} entries into {target}")
        else:
            self.logger.info(f"Cloned {created} entries into {target}")
        return created

    # =========================================================================
    # UI ENTRY POINTS
    # =========================================================================

    def submit_entry(self, entry: EntryLike) -> ServiceResult:
        """add_entry for form handlers: failures come back as a ServiceResult."""
        return self.safe_execute("Adding timetable entry", self.add_entry, entry)

    def submit_update(self, entry_id: str, changes: Dict[str, Any]) -> ServiceResult:
        return self.safe_execute("Updating timetable entry", self.update_entry, entry_id, changes)

    def submit_clone(self, *args, **kwargs) -> ServiceResult:
        return self.safe_execute("Cloning timetable", self.clone_schedule, *args, **kwargs)
