# =============================================================================
# school_core/data/records.py
# Typed records for every collection mirrored in the offline cache
# =============================================================================
"""
One dataclass per cached collection.

Remote rows carry many more columns than the cache needs to index. The
dataclass declares the primary key, the indexed attributes and the handful of
attributes the portals read; anything else is kept in ``extra`` so a record
survives a cache round-trip unchanged.

Usage:
    learner = validate_record("learners", {"id": "L123", "admission_number": "ADM-1"})
    learner.to_dict()
"""

import math
from dataclasses import dataclass, field, fields
from datetime import date, datetime
from typing import Any, ClassVar, Dict, List, Optional, Tuple, Type, Union, get_args, get_origin, get_type_hints

import numpy as np
import pandas as pd

from school_core.errors import DataValidationError


@dataclass(frozen=True)
class IndexSpec:
    """Secondary lookup attribute of a collection."""
    name: str
    unique: bool = False


@dataclass
class CachedRecord:
    """Base class for cached records. ``id`` is the primary key."""
    id: Union[str, int]
    extra: Dict[str, Any] = field(default_factory=dict, repr=False)

    COLLECTION: ClassVar[str] = ""
    INDICES: ClassVar[Tuple[IndexSpec, ...]] = ()
    REQUIRED: ClassVar[Tuple[str, ...]] = ()

    @classmethod
    def declared_fields(cls) -> List[str]:
        return [f.name for f in fields(cls) if f.name != "extra"]

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CachedRecord":
        """Build and validate a record from a remote/cached row."""
        if not isinstance(data, dict):
            raise DataValidationError(
                f"Record for '{cls.COLLECTION}' must be a mapping",
                expected="dict",
                actual=type(data).__name__,
            )

        if "id" not in data:
            raise DataValidationError(f"Record for '{cls.COLLECTION}' has no id", column="id")

        clean = {k: to_json_safe(v) for k, v in data.items()}
        declared = set(cls.declared_fields())
        record = cls(
            **{k: v for k, v in clean.items() if k in declared},
            extra={k: v for k, v in clean.items() if k not in declared},
        )
        record._source_keys = frozenset(clean)
        record.validate()
        return record

    def validate(self) -> None:
        """Check the primary key, required attributes and declared types."""
        if isinstance(self.id, bool) or not isinstance(self.id, (str, int)) or self.id == "":
            raise DataValidationError(
                f"Record for '{self.COLLECTION}' has no usable id",
                column="id",
                expected="non-empty str or int",
                actual=repr(self.id),
            )

        for name in self.REQUIRED:
            if getattr(self, name) in (None, ""):
                raise DataValidationError(
                    f"'{self.COLLECTION}' record {self.id} is missing '{name}'",
                    column=name,
                )

        hints = get_type_hints(type(self))
        for name in self.declared_fields():
            value = getattr(self, name)
            if not _matches(value, hints[name]):
                raise DataValidationError(
                    f"'{self.COLLECTION}' record {self.id} has a bad '{name}'",
                    column=name,
                    expected=str(hints[name]),
                    actual=type(value).__name__,
                )

    @property
    def key(self) -> Union[str, int]:
        return self.id

    def index_values(self) -> Dict[str, Any]:
        """Values of the secondary index attributes."""
        return {spec.name: getattr(self, spec.name) for spec in self.INDICES}

    def to_dict(self) -> Dict[str, Any]:
        """Flatten back to the row shape the record was built from."""
        source_keys = getattr(self, "_source_keys", frozenset())
        data = dict(self.extra)
        for name in self.declared_fields():
            value = getattr(self, name)
            # Attributes absent from the source row stay absent
            if value is None and name not in source_keys:
                continue
            data[name] = value
        return data


def _matches(value: Any, hint: Any) -> bool:
    """Loose isinstance check against simple typing hints."""
    if value is None:
        return type(None) in get_args(hint) or hint is Any
    if get_origin(hint) is Union:
        return any(_matches(value, arg) for arg in get_args(hint) if arg is not type(None))
    if hint is Any:
        return True
    if hint is float:
        return isinstance(value, (int, float)) and not isinstance(value, bool)
    if hint is int:
        return isinstance(value, int) and not isinstance(value, bool)
    return isinstance(value, hint)


def to_json_safe(value: Any) -> Any:
    """Normalise numpy/pandas/datetime values to JSON-serialisable ones."""
    if value is pd.NaT:
        return None
    if isinstance(value, (pd.Timestamp, datetime, date)):
        return value.isoformat()
    if isinstance(value, np.bool_):
        return bool(value)
    if isinstance(value, np.integer):
        return int(value)
    if isinstance(value, np.floating):
        value = float(value)
    if isinstance(value, float) and math.isnan(value):
        return None
    if isinstance(value, dict):
        return {k: to_json_safe(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_json_safe(v) for v in value]
    return value


# =============================================================================
# COLLECTION RECORD TYPES
# =============================================================================

@dataclass
class Learner(CachedRecord):
    admission_number: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    current_grade_id: Optional[str] = None
    current_stream_id: Optional[str] = None
    status: Optional[str] = None

    COLLECTION: ClassVar[str] = "learners"
    INDICES: ClassVar[Tuple[IndexSpec, ...]] = (
        IndexSpec("admission_number", unique=True),
        IndexSpec("current_grade_id"),
        IndexSpec("status"),
    )
    REQUIRED: ClassVar[Tuple[str, ...]] = ("admission_number",)


@dataclass
class Grade(CachedRecord):
    name: Optional[str] = None
    grade_level: Optional[str] = None

    COLLECTION: ClassVar[str] = "grades"
    INDICES: ClassVar[Tuple[IndexSpec, ...]] = (IndexSpec("grade_level"),)
    REQUIRED: ClassVar[Tuple[str, ...]] = ("name",)


@dataclass
class Stream(CachedRecord):
    name: Optional[str] = None
    grade_id: Optional[str] = None
    capacity: Optional[int] = None

    COLLECTION: ClassVar[str] = "streams"
    INDICES: ClassVar[Tuple[IndexSpec, ...]] = (IndexSpec("grade_id"),)
    REQUIRED: ClassVar[Tuple[str, ...]] = ("grade_id",)


@dataclass
class FeePayment(CachedRecord):
    learner_id: Optional[str] = None
    amount_paid: Optional[float] = None
    payment_date: Optional[str] = None
    payment_method: Optional[str] = None
    receipt_number: Optional[str] = None
    status: Optional[str] = None

    COLLECTION: ClassVar[str] = "fee_payments"
    INDICES: ClassVar[Tuple[IndexSpec, ...]] = (
        IndexSpec("learner_id"),
        IndexSpec("payment_date"),
    )
    REQUIRED: ClassVar[Tuple[str, ...]] = ("learner_id",)


@dataclass
class FeeBalance(CachedRecord):
    learner_id: Optional[str] = None
    academic_year: Optional[str] = None
    term: Optional[str] = None
    total_fees: Optional[float] = None
    amount_paid: Optional[float] = None
    balance: Optional[float] = None

    COLLECTION: ClassVar[str] = "fee_balances"
    INDICES: ClassVar[Tuple[IndexSpec, ...]] = (
        IndexSpec("learner_id"),
        IndexSpec("academic_year"),
    )
    REQUIRED: ClassVar[Tuple[str, ...]] = ("learner_id",)


@dataclass
class Teacher(CachedRecord):
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    email: Optional[str] = None
    employee_number: Optional[str] = None
    status: Optional[str] = None

    COLLECTION: ClassVar[str] = "teachers"
    INDICES: ClassVar[Tuple[IndexSpec, ...]] = (IndexSpec("email", unique=True),)


@dataclass
class PerformanceRecord(CachedRecord):
    learner_id: Optional[str] = None
    learning_area_id: Optional[str] = None
    academic_year: Optional[str] = None
    term: Optional[str] = None
    marks: Optional[float] = None

    COLLECTION: ClassVar[str] = "performance_records"
    INDICES: ClassVar[Tuple[IndexSpec, ...]] = (
        IndexSpec("learner_id"),
        IndexSpec("academic_year"),
    )
    REQUIRED: ClassVar[Tuple[str, ...]] = ("learner_id",)


@dataclass
class Alumnus(CachedRecord):
    learner_id: Optional[str] = None
    graduation_year: Optional[str] = None
    graduation_date: Optional[str] = None

    COLLECTION: ClassVar[str] = "alumni"
    INDICES: ClassVar[Tuple[IndexSpec, ...]] = (
        IndexSpec("learner_id", unique=True),
        IndexSpec("graduation_year"),
    )
    REQUIRED: ClassVar[Tuple[str, ...]] = ("learner_id",)


RECORD_TYPES: Dict[str, Type[CachedRecord]] = {
    cls.COLLECTION: cls
    for cls in (Learner, Grade, Stream, FeePayment, FeeBalance, Teacher, PerformanceRecord, Alumnus)
}

COLLECTIONS: Tuple[str, ...] = tuple(RECORD_TYPES)


def record_type(collection: str) -> Type[CachedRecord]:
    """Look up the record type of a collection."""
    try:
        return RECORD_TYPES[collection]
    except KeyError:
        raise DataValidationError(
            f"Unknown collection '{collection}'",
            expected=", ".join(COLLECTIONS),
            actual=collection,
        ) from None


def validate_record(collection: str, record: Union[Dict[str, Any], CachedRecord]) -> CachedRecord:
    """
    Validate a record at the cache boundary.

    Args:
        collection: Target collection name
        record: Row dict or an already-typed record

    Returns:
        Typed, validated record
    """
    cls = record_type(collection)
    if isinstance(record, CachedRecord):
        if not isinstance(record, cls):
            raise DataValidationError(
                f"{type(record).__name__} cannot be stored in '{collection}'",
                expected=cls.__name__,
                actual=type(record).__name__,
            )
        record.validate()
        return record
    return cls.from_dict(record)
