# =============================================================================
# school_core/offline/connection_manager.py
# Connection Status Detection and Management
# =============================================================================
"""
ConnectionManager - Detects and monitors internet/Supabase connectivity.

Features:
- Socket probes of public DNS hosts and the Supabase host
- Explicit online/offline events (``set_online`` / ``set_offline``)
- Periodic health checks on a background thread
- Callbacks fired on every status change
"""

from __future__ import annotations
import socket
import threading
from dataclasses import dataclass, replace
from datetime import datetime
from enum import Enum
from typing import Callable, List, Optional, Tuple
from urllib.parse import urlparse
import logging

logger = logging.getLogger(__name__)


class ConnectionStatus(Enum):
    """Connection status states."""
    ONLINE = "online"           # Full connectivity (Internet + Supabase)
    OFFLINE = "offline"         # No connectivity
    DEGRADED = "degraded"       # Internet OK but Supabase unavailable
    CHECKING = "checking"       # Currently checking status
    UNKNOWN = "unknown"         # Initial state


@dataclass
class ConnectionState:
    """Current connection state with metadata."""
    status: ConnectionStatus = ConnectionStatus.UNKNOWN
    internet_available: bool = False
    supabase_available: bool = False
    last_check: Optional[datetime] = None
    last_online: Optional[datetime] = None
    last_change: Optional[datetime] = None
    consecutive_failures: int = 0
    error_message: Optional[str] = None


class ConnectionManager:
    """
    Manager for connection status detection.

    Usage:
        manager = get_connection_manager()
        if manager.is_online:
            # Use cloud services
        else:
            # Serve from the offline cache
    """

    _instance: Optional[ConnectionManager] = None
    _lock = threading.Lock()

    PROBE_HOSTS: Tuple[Tuple[str, int], ...] = (
        ("8.8.8.8", 53),        # Google DNS
        ("1.1.1.1", 53),        # Cloudflare DNS
        ("208.67.222.222", 53), # OpenDNS
    )

    def __init__(
        self,
        supabase_url: Optional[str] = None,
        check_interval: int = 30,
        timeout: int = 5,
    ):
        """Initialize connection manager (prefer get_connection_manager())."""
        self.supabase_url = supabase_url
        self.check_interval = check_interval
        self.timeout = timeout
        self._state = ConnectionState()
        self._state_lock = threading.RLock()
        self._callbacks: List[Callable[[ConnectionState], None]] = []
        self._monitor_thread: Optional[threading.Thread] = None
        self._stop_monitoring = threading.Event()
        self._initialized = False

    @classmethod
    def get_instance(cls) -> ConnectionManager:
        """Get or create the singleton instance from settings."""
        if cls._instance is None:
            with cls._lock:
                if cls._instance is None:
                    from school_core.settings import get_settings
                    settings = get_settings()
                    cls._instance = ConnectionManager(
                        supabase_url=settings.supabase_url,
                        check_interval=settings.connection_check_interval,
                        timeout=settings.connection_timeout,
                    )
        return cls._instance

    @property
    def state(self) -> ConnectionState:
        """Snapshot of the current connection state."""
        with self._state_lock:
            return replace(self._state)

    @property
    def status(self) -> ConnectionStatus:
        return self._state.status

    @property
    def is_online(self) -> bool:
        """Check if we have full connectivity."""
        return self._state.status == ConnectionStatus.ONLINE

    @property
    def is_offline(self) -> bool:
        """Anything short of full connectivity counts as offline for writes."""
        return not self.is_online

    def initialize(self, start_monitoring: bool = True) -> None:
        """
        Initialize the connection manager.

        Args:
            start_monitoring: Whether to start background monitoring
        """
        if self._initialized:
            return

        self.check_connection()
        if start_monitoring:
            self.start_monitoring()

        self._initialized = True
        logger.info(f"ConnectionManager initialized. Status: {self._state.status.value}")

    # =========================================================================
    # PROBES
    # =========================================================================

    def _probe(self, host: str, port: int) -> bool:
        try:
            with socket.create_connection((host, port), timeout=self.timeout):
                return True
        except OSError:
            return False

    def _check_internet(self) -> bool:
        """True if any well-known host answers."""
        return any(self._probe(host, port) for host, port in self.PROBE_HOSTS)

    def _check_supabase(self) -> bool:
        """True if the Supabase host is reachable (or none is configured)."""
        if not self.supabase_url:
            # Local-only mode
            return True

        parsed = urlparse(self.supabase_url)
        if not parsed.hostname:
            self._state.error_message = f"Invalid Supabase URL: {self.supabase_url}"
            return False
        return self._probe(parsed.hostname, parsed.port or 443)

    def check_connection(self) -> ConnectionState:
        """
        Perform a connection check and update state.

        Returns:
            Updated ConnectionState
        """
        internet_ok = self._check_internet()
        supabase_ok = internet_ok and self._check_supabase()

        if internet_ok and supabase_ok:
            status = ConnectionStatus.ONLINE
        elif internet_ok:
            status = ConnectionStatus.DEGRADED
        else:
            status = ConnectionStatus.OFFLINE

        with self._state_lock:
            self._state.internet_available = internet_ok
            self._state.supabase_available = supabase_ok
            self._state.last_check = datetime.now()
        self._transition(status)
        return self.state

    # =========================================================================
    # EVENTS
    # =========================================================================

    def _transition(self, status: ConnectionStatus) -> None:
        """Apply a status; callbacks run only when the status changed."""
        with self._state_lock:
            old_status = self._state.status
            now = datetime.now()
            self._state.status = status
            if status == ConnectionStatus.ONLINE:
                self._state.last_online = now
                self._state.consecutive_failures = 0
                self._state.error_message = None
            else:
                self._state.consecutive_failures += 1
            changed = old_status != status
            if changed:
                self._state.last_change = now

        if changed:
            logger.info(f"Connection status changed: {old_status.value} -> {status.value}")
            self._notify_callbacks()

    def set_online(self) -> None:
        """Platform 'online' event."""
        with self._state_lock:
            self._state.internet_available = True
            self._state.supabase_available = True
        self._transition(ConnectionStatus.ONLINE)

    def set_offline(self) -> None:
        """Platform 'offline' event (also used to force offline mode)."""
        with self._state_lock:
            self._state.internet_available = False
            self._state.supabase_available = False
        self._transition(ConnectionStatus.OFFLINE)

    # =========================================================================
    # MONITORING
    # =========================================================================

    def start_monitoring(self) -> None:
        """Start background connection monitoring."""
        if self._monitor_thread is not None and self._monitor_thread.is_alive():
            return

        self._stop_monitoring.clear()
        self._monitor_thread = threading.Thread(
            target=self._monitoring_loop,
            daemon=True,
            name="ConnectionMonitor"
        )
        self._monitor_thread.start()
        logger.debug("Connection monitoring started")

    def stop_monitoring(self) -> None:
        """Stop background connection monitoring."""
        self._stop_monitoring.set()
        if self._monitor_thread:
            self._monitor_thread.join(timeout=self.timeout * 2)
        logger.debug("Connection monitoring stopped")

    def _monitoring_loop(self) -> None:
        """Background monitoring loop."""
        while not self._stop_monitoring.wait(timeout=self.check_interval):
            try:
                self.check_connection()
            except Exception as e:
                logger.error(f"Error in connection check: {e}", exc_info=True)

    # =========================================================================
    # CALLBACKS
    # =========================================================================

    def register_callback(self, callback: Callable[[ConnectionState], None]) -> None:
        """Register a callback for connection status changes."""
        if callback not in self._callbacks:
            self._callbacks.append(callback)

    def unregister_callback(self, callback: Callable[[ConnectionState], None]) -> None:
        """Remove a registered callback."""
        if callback in self._callbacks:
            self._callbacks.remove(callback)

    def _notify_callbacks(self) -> None:
        """Notify all registered callbacks of status change."""
        state = self.state
        for callback in list(self._callbacks):
            try:
                callback(state)
            except Exception as e:
                logger.error(f"Error in connection callback: {e}", exc_info=True)

    def get_status_display(self) -> dict:
        """Get status information for UI display."""
        state = self.state
        return {
            "status": state.status.value,
            "is_online": state.status == ConnectionStatus.ONLINE,
            "internet": state.internet_available,
            "supabase": state.supabase_available,
            "last_check": state.last_check.isoformat() if state.last_check else None,
            "last_online": state.last_online.isoformat() if state.last_online else None,
            "failures": state.consecutive_failures,
            "error": state.error_message,
        }


# Singleton accessor
_connection_manager: Optional[ConnectionManager] = None


def get_connection_manager() -> ConnectionManager:
    """Get the global ConnectionManager instance."""
    global _connection_manager
    if _connection_manager is None:
        _connection_manager = ConnectionManager.get_instance()
        _connection_manager.initialize()
    return _connection_manager
