# =============================================================================
# school_core/errors/handlers.py
# Error Handling Utilities for the school core
# =============================================================================
"""
Turns exceptions into log records and Streamlit messages.

Expected user-facing failures (a double-booked slot, a malformed record)
are logged as warnings without a traceback. Everything else is logged as an
error with the traceback attached.
"""

from __future__ import annotations
import functools
from typing import Any, Callable, Dict, Optional, Tuple, TypeVar
import streamlit as st

from school_core.logging import get_logger
from .exceptions import (
    ConflictError,
    DataValidationError,
    RemoteUnavailableError,
    SchoolCoreError,
    StorageError,
    SyncError,
)

logger = get_logger(__name__)

T = TypeVar("T")

# Errors caused by what the user entered rather than by the system
USER_ERRORS = (ConflictError, DataValidationError)

MESSAGE_PREFIXES = (
    (StorageError, "Offline cache unavailable"),
    (ConflictError, "Schedule conflict"),
    (RemoteUnavailableError, "School server unreachable"),
    (SyncError, "Sync incomplete"),
)


def user_message_for(error: Exception) -> str:
    """Phrase an exception the way the portals show it."""
    if not isinstance(error, SchoolCoreError):
        return str(error)
    for error_type, prefix in MESSAGE_PREFIXES:
        if isinstance(error, error_type):
            return f"{prefix}: {error.message}"
    return error.message


def _describe(error: Exception) -> Tuple[str, Dict[str, Any], bool]:
    """(code, details, recoverable) for any exception."""
    if isinstance(error, SchoolCoreError):
        return error.code, error.details, error.recoverable
    return "UNKNOWN", {"type": type(error).__name__}, True


def handle_error(
    error: Exception,
    show_user_message: bool = True,
    log_error: bool = True,
    user_message: Optional[str] = None,
) -> None:
    """
    Log an exception and optionally show it with st.error.

    Args:
        error: The exception to handle
        show_user_message: Whether to display the error with st.error
        log_error: Whether to log the error
        user_message: Message shown instead of the default phrasing
    """
    code, details, recoverable = _describe(error)
    message = user_message or user_message_for(error)

    if log_error:
        if isinstance(error, USER_ERRORS):
            logger.warning(f"[{code}] {message}", extra={"details": details})
        else:
            logger.error(f"[{code}] {message}", extra={"details": details}, exc_info=error)

    if not show_user_message:
        return

    if recoverable:
        st.error(f"Error: {message}")
    else:
        st.error(f"Critical Error: {message}. Please contact support.")

    if details and st.session_state.get("debug_mode", False):
        with st.expander("Error Details", expanded=False):
            st.json(details)


def safe_execute(
    func: Callable[..., T],
    *args,
    default: Optional[T] = None,
    error_message: Optional[str] = None,
    reraise: bool = False,
    **kwargs,
) -> Optional[T]:
    """
    Call func, reporting any exception and returning default instead.

    Usage:
        learners = safe_execute(service.fetch, "learners", default=[])
    """
    try:
        return func(*args, **kwargs)
    except Exception as e:
        handle_error(e, user_message=error_message)
        if reraise:
            raise
        return default


class ErrorContext:
    """
    Context manager for a user-triggered operation.

    Recoverable failures are reported and suppressed; the exception stays
    available as ``error`` so the caller can branch on it.

    Usage:
        with ErrorContext("Syncing offline changes") as ctx:
            report = engine.sync_now()
        if ctx.failed:
            ...
    """

    def __init__(
        self,
        operation: str,
        recoverable: bool = True,
        show_success: bool = False,
        success_message: Optional[str] = None,
    ):
        self.operation = operation
        self.recoverable = recoverable
        self.show_success = show_success
        self.success_message = success_message
        self.error: Optional[BaseException] = None

    @property
    def failed(self) -> bool:
        return self.error is not None

    def __enter__(self) -> ErrorContext:
        logger.debug(f"Starting: {self.operation}")
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> bool:
        if exc_type is None:
            logger.debug(f"Completed: {self.operation}")
            if self.show_success:
                st.success(self.success_message or f"{self.operation} completed")
            return False

        if not isinstance(exc_val, Exception):
            return False

        self.error = exc_val
        user_message = None if isinstance(exc_val, SchoolCoreError) else f"Error during: {self.operation}"
        handle_error(exc_val, user_message=user_message)
        return self.recoverable


def error_boundary(
    default_return: Any = None,
    error_message: Optional[str] = None,
    log: bool = True,
):
    """
    Decorator that reports failures and returns a fallback value.

    A callable default_return is called to build a fresh fallback each time.

    Usage:
        @error_boundary(default_return=dict, error_message="Sync status unavailable")
        def get_status(self) -> Dict[str, Any]:
            ...
    """
    def decorator(func: Callable[..., T]) -> Callable[..., Optional[T]]:
        @functools.wraps(func)
        def wrapper(*args, **kwargs) -> Optional[T]:
            try:
                return func(*args, **kwargs)
            except Exception as e:
                handle_error(
                    e,
                    show_user_message=error_message is not None,
                    log_error=log,
                    user_message=error_message,
                )
                return default_return() if callable(default_return) else default_return

        return wrapper

    return decorator
