# =============================================================================
# school_core/errors/__init__.py
# Centralized Error Handling for the school core
# =============================================================================

from .exceptions import (
    SchoolCoreError,
    StorageError,
    DataValidationError,
    SyncError,
    QueueReplayError,
    RemoteUnavailableError,
    ConflictError,
    ConfigurationError,
)

from .handlers import (
    handle_error,
    safe_execute,
    ErrorContext,
    error_boundary,
)

__all__ = [
    # Exceptions
    "SchoolCoreError",
    "StorageError",
    "DataValidationError",
    "SyncError",
    "QueueReplayError",
    "RemoteUnavailableError",
    "ConflictError",
    "ConfigurationError",
    # Handlers
    "handle_error",
    "safe_execute",
    "ErrorContext",
    "error_boundary",
]
