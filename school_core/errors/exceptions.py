# =============================================================================
# school_core/errors/exceptions.py
# Custom Exception Hierarchy for the school core
# =============================================================================

from typing import Optional, Dict, Any, List


class SchoolCoreError(Exception):
    """
    Base exception for all school core errors.

    Attributes:
        message: Human-readable error description
        code: Machine-readable error code (e.g., "STORE_001")
        details: Additional context as a dictionary
        recoverable: Whether the error can be recovered from
    """

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        recoverable: bool = True,
    ):
        super().__init__(message)
        self.message = message
        self.code = code or "SC_000"
        self.details = details or {}
        self.recoverable = recoverable

    def __str__(self) -> str:
        base = f"[{self.code}] {self.message}"
        if self.details:
            base += f" | Details: {self.details}"
        return base

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for logging/serialization"""
        return {
            "error_type": self.__class__.__name__,
            "code": self.code,
            "message": self.message,
            "details": self.details,
            "recoverable": self.recoverable,
        }


# =============================================================================
# LOCAL STORE EXCEPTIONS
# =============================================================================

class StorageError(SchoolCoreError):
    """Raised when the local store is unavailable or a transaction aborts"""

    def __init__(
        self,
        message: str,
        collection: Optional[str] = None,
        operation: Optional[str] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if collection:
            details["collection"] = collection
        if operation:
            details["operation"] = operation

        super().__init__(
            message=message,
            code="STORE_001",
            details=details,
            **kwargs,
        )


class DataValidationError(SchoolCoreError):
    """Raised when a record or timetable entry fails validation checks"""

    def __init__(
        self,
        message: str,
        column: Optional[str] = None,
        expected: Optional[str] = None,
        actual: Optional[str] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if column:
            details["column"] = column
        if expected:
            details["expected"] = expected
        if actual:
            details["actual"] = actual

        super().__init__(
            message=message,
            code="DATA_001",
            details=details,
            **kwargs,
        )


# =============================================================================
# SYNC EXCEPTIONS
# =============================================================================

class SyncError(SchoolCoreError):
    """Raised when one or more collections failed to pull during a full sync"""

    def __init__(
        self,
        message: str,
        succeeded: Optional[List[str]] = None,
        failed: Optional[Dict[str, str]] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        self.succeeded = list(succeeded or [])
        self.failed = dict(failed or {})
        details["succeeded"] = self.succeeded
        details["failed"] = self.failed

        super().__init__(
            message=message,
            code="SYNC_001",
            details=details,
            **kwargs,
        )

    @property
    def partial(self) -> bool:
        """True when at least one collection was refreshed."""
        return bool(self.succeeded)


class QueueReplayError(SchoolCoreError):
    """Raised when an offline-queued operation fails to apply remotely"""

    def __init__(
        self,
        message: str,
        item_id: Optional[int] = None,
        operation: Optional[str] = None,
        collection: Optional[str] = None,
        attempts: Optional[int] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if item_id is not None:
            details["item_id"] = item_id
        if operation:
            details["operation"] = operation
        if collection:
            details["collection"] = collection
        if attempts is not None:
            details["attempts"] = attempts

        super().__init__(
            message=message,
            code="SYNC_002",
            details=details,
            **kwargs,
        )


class RemoteUnavailableError(SchoolCoreError):
    """Raised when no remote data source is configured or reachable"""

    def __init__(self, message: str, **kwargs):
        super().__init__(message=message, code="REMOTE_001", **kwargs)


# =============================================================================
# TIMETABLE EXCEPTIONS
# =============================================================================

class ConflictError(SchoolCoreError):
    """Raised when a timetable entry overlaps an existing one"""

    def __init__(
        self,
        message: str,
        resource_kind: Optional[str] = None,
        resource_id: Optional[str] = None,
        day_of_week: Optional[int] = None,
        start_time: Optional[str] = None,
        end_time: Optional[str] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        self.resource_kind = resource_kind
        self.resource_id = resource_id
        if resource_kind:
            details["resource_kind"] = resource_kind
        if resource_id:
            details["resource_id"] = resource_id
        if day_of_week is not None:
            details["day_of_week"] = day_of_week
        if start_time and end_time:
            details["window"] = f"{start_time}-{end_time}"

        super().__init__(
            message=message,
            code="TT_001",
            details=details,
            **kwargs,
        )


# =============================================================================
# CONFIGURATION EXCEPTIONS
# =============================================================================

class ConfigurationError(SchoolCoreError):
    """Raised when configuration is invalid or missing"""

    def __init__(
        self,
        message: str,
        config_key: Optional[str] = None,
        expected_type: Optional[str] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if config_key:
            details["config_key"] = config_key
        if expected_type:
            details["expected_type"] = expected_type

        super().__init__(
            message=message,
            code="CONFIG_001",
            details=details,
            recoverable=False,
            **kwargs,
        )
