# =============================================================================
# school_core/data/__init__.py
# Record types and remote data sources
# =============================================================================

from school_core.data.records import (
    CachedRecord,
    IndexSpec,
    Learner,
    Grade,
    Stream,
    FeePayment,
    FeeBalance,
    Teacher,
    PerformanceRecord,
    Alumnus,
    COLLECTIONS,
    RECORD_TYPES,
    record_type,
    validate_record,
)

from school_core.data.remote import (
    RemoteDataSource,
    InMemoryRemote,
)

__all__ = [
    "CachedRecord",
    "IndexSpec",
    "Learner",
    "Grade",
    "Stream",
    "FeePayment",
    "FeeBalance",
    "Teacher",
    "PerformanceRecord",
    "Alumnus",
    "COLLECTIONS",
    "RECORD_TYPES",
    "record_type",
    "validate_record",
    "RemoteDataSource",
    "InMemoryRemote",
]
