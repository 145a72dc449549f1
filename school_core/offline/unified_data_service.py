# =============================================================================
# school_core/offline/unified_data_service.py
# Offline Data Service - Single API for Online/Offline Operations
# =============================================================================
"""
OfflineDataService - The cache-first API the UI pages use for records.

This service automatically handles:
- Online mode: remote reads that refresh the local cache
- Offline mode: reads from the cache, writes into the sync queue
- Fallback to the cache when a remote call fails

Usage:
------
from school_core.offline import get_data_service

service = get_data_service()

learners = service.fetch("learners")
service.save("learners", {"id": "L123", "admission_number": "ADM-123"})

print(f"Online: {service.is_online}")
print(f"Pending sync: {service.pending_sync_count}")
"""

from __future__ import annotations
import threading
import uuid
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional
import logging

import pandas as pd

from school_core.data.records import validate_record
from school_core.errors import ErrorContext, error_boundary, safe_execute

logger = logging.getLogger(__name__)


class OfflineDataService:
    """
    Cache-first data service over the remote store and the local cache.

    Reads never fail just because the network is gone; writes always land in
    the cache first and reach the remote store directly or through the queue.
    """

    _instance: Optional[OfflineDataService] = None
    _lock = threading.Lock()

    def __init__(self, local_db=None, remote=None, connection_manager=None, sync_engine=None):
        """Initialize the data service. Missing collaborators are loaded lazily."""
        self._local_db = local_db
        self._remote = remote
        self._connection_manager = connection_manager
        self._sync_engine = sync_engine
        self._callbacks: List[Callable[[bool], None]] = []
        self._initialized = False

    @classmethod
    def get_instance(cls) -> OfflineDataService:
        """Get or create singleton instance."""
        if cls._instance is None:
            with cls._lock:
                if cls._instance is None:
                    cls._instance = OfflineDataService()
        return cls._instance

    # =========================================================================
    # LAZY LOADING OF DEPENDENCIES
    # =========================================================================

    def _get_connection_manager(self):
        if self._connection_manager is None:
            from school_core.offline.connection_manager import get_connection_manager
            self._connection_manager = get_connection_manager()
        return self._connection_manager

    def _get_local_db(self):
        if self._local_db is None:
            from school_core.offline.local_database import get_local_database
            self._local_db = get_local_database()
        return self._local_db

    def _get_remote(self):
        if self._remote is None:
            from school_core.data.supabase_client import get_remote
            self._remote = get_remote()
        return self._remote

    def _get_sync_engine(self):
        if self._sync_engine is None:
            from school_core.offline.sync_engine import get_sync_engine
            self._sync_engine = get_sync_engine()
        return self._sync_engine

    # =========================================================================
    # PROPERTIES
    # =========================================================================

    @property
    def is_online(self) -> bool:
        """Check if currently online."""
        return self._get_connection_manager().is_online

    @property
    def is_offline(self) -> bool:
        """Check if currently offline."""
        return self._get_connection_manager().is_offline

    @property
    def connection_status(self) -> str:
        """Get connection status string."""
        return self._get_connection_manager().status.value

    @property
    def pending_sync_count(self) -> int:
        """Get number of queued writes awaiting replay."""
        return self._get_local_db().pending_count()

    @property
    def last_sync(self) -> Optional[datetime]:
        """Get last successful sync time."""
        return self._get_sync_engine().status.last_sync

    # =========================================================================
    # INITIALIZATION
    # =========================================================================

    def initialize(self, start_sync: bool = True) -> None:
        """
        Initialize the data service.

        Args:
            start_sync: Whether to start background sync
        """
        if self._initialized:
            return

        self._get_local_db().initialize()
        self._get_connection_manager().register_callback(self._on_connection_change)

        if start_sync:
            self._get_sync_engine().start()

        self._initialized = True
        logger.info(f"OfflineDataService initialized. Online: {self.is_online}")

    def _on_connection_change(self, state) -> None:
        """Forward online/offline changes to status callbacks."""
        is_online = state.status.value == "online"
        for callback in list(self._callbacks):
            try:
                callback(is_online)
            except Exception as e:
                logger.error(f"Error in status callback: {e}")

    def register_status_callback(self, callback: Callable[[bool], None]) -> None:
        """Register a callback for online/offline status changes."""
        if callback not in self._callbacks:
            self._callbacks.append(callback)

    def unregister_status_callback(self, callback: Callable[[bool], None]) -> None:
        """Remove a registered callback."""
        if callback in self._callbacks:
            self._callbacks.remove(callback)

    # =========================================================================
    # READS
    # =========================================================================

    def fetch(self, collection: str) -> List[Dict[str, Any]]:
        """
        Fetch every record of a collection.

        Online: reads the remote store and refreshes the cache.
        Offline, or when the remote read fails: returns the cached records.
        """
        if self.is_online:
            try:
                rows = self._get_remote().select(collection)
                self._get_local_db().bulk_put(collection, rows)
                logger.debug(f"Fetched {len(rows)} rows from remote: {collection}")
                return [validate_record(collection, row).to_dict() for row in rows]
            except Exception as e:
                logger.warning(f"Online fetch failed for {collection}, using cache: {e}")

        return self._get_local_db().get_all(collection)

    def fetch_one(self, collection: str, key: Any) -> Optional[Dict[str, Any]]:
        """Fetch one record, refreshing the cached copy when online."""
        cached = self._get_local_db().get(collection, key)
        if not self.is_online:
            return cached

        try:
            rows = self._get_remote().select(collection, filters={"id": key})
        except Exception as e:
            logger.warning(f"Online fetch of {collection}/{key} failed, using cache: {e}")
            return cached

        if not rows:
            return cached
        self._get_local_db().put(collection, rows[0])
        return self._get_local_db().get(collection, key)

    def fetch_by_index(self, collection: str, index_name: str, value: Any) -> List[Dict[str, Any]]:
        """Cached records whose indexed attribute equals value."""
        return self._get_local_db().get_by_index(collection, index_name, value)

    def fetch_frame(self, collection: str) -> pd.DataFrame:
        """
        Fetch a collection as a DataFrame for tables and charts.

        A broken cache is reported with st.error and yields an empty frame.
        """
        return pd.DataFrame(safe_execute(self.fetch, collection, default=[]))

    def learners_by_grade(self, grade_id: Any) -> List[Dict[str, Any]]:
        """Cached learners currently in a grade."""
        return self.fetch_by_index("learners", "current_grade_id", grade_id)

    # =========================================================================
    # WRITES
    # =========================================================================

    def save(self, collection: str, record: Dict[str, Any]) -> Dict[str, Any]:
        """
        Save a record.

        The record is validated and written to the cache first. Online, it is
        upserted remotely and queued if that fails; offline, it is queued
        without touching the network.

        Returns:
            The cached record
        """
        record = dict(record)
        record.setdefault("id", str(uuid.uuid4()))
        payload = validate_record(collection, record).to_dict()

        local_db = self._get_local_db()
        local_db.put(collection, payload)

        if self.is_online:
            try:
                self._get_remote().upsert(collection, payload)
                return local_db.get(collection, payload["id"])
            except Exception as e:
                logger.warning(f"Remote save of {collection}/{payload['id']} failed, queueing: {e}")

        self._get_sync_engine().add_to_queue("create", collection, payload)
        return local_db.get(collection, payload["id"])

    def remove(self, collection: str, key: Any) -> bool:
        """
        Delete a record from the cache and, directly or via the queue, remotely.

        Returns:
            True if a cached copy existed
        """
        existed = self._get_local_db().delete(collection, key)

        if self.is_online:
            try:
                self._get_remote().delete(collection, {"id": key})
                return existed
            except Exception as e:
                logger.warning(f"Remote delete of {collection}/{key} failed, queueing: {e}")

        self._get_sync_engine().add_to_queue("delete", collection, record_id=key)
        return existed

    # =========================================================================
    # SYNC
    # =========================================================================

    def sync_now(self):
        """
        Replay queued writes and refresh the cache ("Sync now" button).

        Returns:
            The SyncReport, or None if the sync failed and was reported
        """
        report = None
        with ErrorContext("Syncing offline changes"):
            report = self._get_sync_engine().sync_now()
        return report

    @error_boundary(default_return=dict, error_message="Sync status unavailable")
    def get_status(self) -> Dict[str, Any]:
        """Combined connection and sync status for the offline indicator."""
        status = self._get_sync_engine().get_status_display()
        status["connection"] = self.connection_status
        status["is_online"] = self.is_online
        return status


# Singleton accessor
_data_service: Optional[OfflineDataService] = None


def get_data_service() -> OfflineDataService:
    """Get the global OfflineDataService instance."""
    global _data_service
    if _data_service is None:
        _data_service = OfflineDataService.get_instance()
        _data_service.initialize()
    return _data_service
