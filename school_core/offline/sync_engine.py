# =============================================================================
# school_core/offline/sync_engine.py
# Synchronization Engine (pull into cache + offline write queue)
# =============================================================================
"""
SyncEngine - Keeps the offline cache fresh and replays offline writes.

Features:
- Full pull of every tracked collection into the local cache
- Partial-success reporting per collection
- Outbound queue of offline writes with idempotent replay
- Auto sync when the connection comes back
- Background periodic sync thread
- Process-wide SyncStatus exposed through accessor functions

State machine:
    OFFLINE ──online event──► SYNCING ──done──► ONLINE_IDLE
    ONLINE_IDLE ──sync_now()/online event──► SYNCING
    any ──offline event──► OFFLINE
"""

from __future__ import annotations
import threading
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Set, Tuple
import logging

import pandas as pd

from school_core.data.records import record_type, validate_record
from school_core.errors import DataValidationError, QueueReplayError, StorageError, SyncError
from school_core.offline.local_database import StorageUsage

logger = logging.getLogger(__name__)


class QueueOperation(Enum):
    """Kind of offline mutation."""
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


class SyncPhase(Enum):
    """Sync coordinator state."""
    OFFLINE = "offline"
    ONLINE_IDLE = "online_idle"
    SYNCING = "syncing"


class SyncOutcome(Enum):
    """Result of a full sync."""
    COMPLETED = "completed"     # every collection refreshed
    PARTIAL = "partial"         # some collections refreshed
    FAILED = "failed"           # nothing refreshed
    SKIPPED = "skipped"         # offline or already syncing


@dataclass
class SyncQueueItem:
    """An offline mutation awaiting remote replay."""
    id: int
    operation: QueueOperation
    collection: str
    record_id: Any
    payload: Dict[str, Any]
    timestamp: datetime
    synced: bool = False
    attempts: int = 0
    last_error: Optional[str] = None

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> SyncQueueItem:
        return cls(
            id=row["id"],
            operation=QueueOperation(row["operation"]),
            collection=row["collection"],
            record_id=row["record_id"],
            payload=row["payload"],
            timestamp=datetime.fromisoformat(row["timestamp"]),
            synced=row["synced"],
            attempts=row["attempts"],
            last_error=row["last_error"],
        )


@dataclass
class CollectionPull:
    """What to fetch from the remote store for one cached collection."""
    collection: str
    filters: Dict[str, Any] = field(default_factory=dict)
    lower_bounds: Optional[Callable[[datetime], Dict[str, Any]]] = None

    def query(self, now: datetime) -> Tuple[Dict[str, Any], Dict[str, Any]]:
        return dict(self.filters), (self.lower_bounds(now) if self.lower_bounds else {})


def default_pulls(payment_history_months: int = 6) -> List[CollectionPull]:
    """Collections refreshed on every full sync."""

    def recent_payments(now: datetime) -> Dict[str, Any]:
        since = pd.Timestamp(now) - pd.DateOffset(months=payment_history_months)
        return {"payment_date": since.date().isoformat()}

    def current_academic_years(now: datetime) -> Dict[str, Any]:
        return {"academic_year": f"{now.year - 1}-{now.year}"}

    return [
        CollectionPull("learners", filters={"status": "active"}),
        CollectionPull("grades"),
        CollectionPull("streams"),
        CollectionPull("fee_payments", lower_bounds=recent_payments),
        CollectionPull("fee_balances"),
        CollectionPull("teachers"),
        CollectionPull("performance_records", lower_bounds=current_academic_years),
        CollectionPull("alumni"),
    ]


@dataclass
class SyncReport:
    """Outcome of a full sync, per collection."""
    outcome: SyncOutcome
    started_at: datetime
    finished_at: Optional[datetime] = None
    succeeded: Dict[str, int] = field(default_factory=dict)   # collection -> records cached
    failed: Dict[str, str] = field(default_factory=dict)      # collection -> error
    reason: Optional[str] = None

    @property
    def success(self) -> bool:
        """True when at least one collection was refreshed."""
        return self.outcome in (SyncOutcome.COMPLETED, SyncOutcome.PARTIAL)

    @property
    def error(self) -> Optional[SyncError]:
        if self.outcome in (SyncOutcome.COMPLETED, SyncOutcome.SKIPPED):
            return None
        if self.outcome == SyncOutcome.PARTIAL:
            message = f"Partial sync: {len(self.failed)} collection(s) failed"
        else:
            message = "Sync failed: no collection could be refreshed"
        return SyncError(message, succeeded=list(self.succeeded), failed=self.failed)

    def raise_for_status(self) -> SyncReport:
        """Raise SyncError for a partial or failed sync."""
        error = self.error
        if error is not None:
            raise error
        return self


@dataclass
class QueueReport:
    """Outcome of a queue replay pass."""
    replayed: List[int] = field(default_factory=list)
    errors: List[QueueReplayError] = field(default_factory=list)
    skipped: int = 0

    @property
    def success(self) -> bool:
        return not self.errors


@dataclass
class SyncStatus:
    """Process-wide sync status (not persisted)."""
    phase: SyncPhase = SyncPhase.OFFLINE
    last_sync: Optional[datetime] = None
    syncing: bool = False
    storage_usage: StorageUsage = field(default_factory=StorageUsage)
    pending_count: int = 0
    last_report: Optional[SyncReport] = None


class SyncEngine:
    """
    Synchronization engine between the remote store and the local cache.

    Usage:
        engine = get_sync_engine()
        engine.start()                      # background sync
        report = engine.sync_now()          # replay queue, then full pull
        engine.add_to_queue("update", "learners", {"status": "inactive"}, record_id="L1")
    """

    _instance: Optional[SyncEngine] = None
    _lock = threading.Lock()

    def __init__(
        self,
        local_db=None,
        remote=None,
        connection_manager=None,
        pulls: Optional[List[CollectionPull]] = None,
        sync_interval: Optional[int] = None,
        max_retry_attempts: Optional[int] = None,
    ):
        """Initialize sync engine. Missing collaborators are loaded lazily."""
        self._local_db = local_db
        self._remote = remote
        self._connection_manager = connection_manager
        self._pulls = pulls
        self._sync_interval = sync_interval
        self._max_retry_attempts = max_retry_attempts

        self._status = SyncStatus()
        self._state_lock = threading.RLock()
        self._sync_lock = threading.Lock()
        self._queue_lock = threading.Lock()
        self._sync_thread: Optional[threading.Thread] = None
        self._stop_sync = threading.Event()
        self._callbacks: List[Callable[[SyncStatus], None]] = []
        self._initialized = False

    @classmethod
    def get_instance(cls) -> SyncEngine:
        """Get or create singleton instance."""
        if cls._instance is None:
            with cls._lock:
                if cls._instance is None:
                    cls._instance = SyncEngine()
        return cls._instance

    # =========================================================================
    # LAZY LOADING OF DEPENDENCIES
    # =========================================================================

    def _settings(self):
        from school_core.settings import get_settings
        return get_settings()

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

    @property
    def pulls(self) -> List[CollectionPull]:
        if self._pulls is None:
            self._pulls = default_pulls(self._settings().payment_history_months)
        return self._pulls

    @property
    def sync_interval(self) -> int:
        return self._sync_interval or self._settings().sync_interval

    @property
    def max_retry_attempts(self) -> int:
        return self._max_retry_attempts or self._settings().max_retry_attempts

    # =========================================================================
    # STATUS
    # =========================================================================

    @property
    def status(self) -> SyncStatus:
        """Snapshot of the current sync status."""
        with self._state_lock:
            return replace(self._status, storage_usage=replace(self._status.storage_usage))

    @property
    def phase(self) -> SyncPhase:
        return self._status.phase

    @property
    def is_syncing(self) -> bool:
        return self._status.syncing

    @property
    def pending_count(self) -> int:
        """Number of queued writes not yet replayed."""
        return self._get_local_db().pending_count()

    def _idle_phase(self) -> SyncPhase:
        return SyncPhase.ONLINE_IDLE if self._get_connection_manager().is_online else SyncPhase.OFFLINE

    def refresh_storage_usage(self) -> StorageUsage:
        """Recompute the storage usage snapshot."""
        usage = self._get_local_db().storage_estimate()
        with self._state_lock:
            self._status.storage_usage = usage
        return usage

    def _refresh_pending(self) -> None:
        count = self._get_local_db().pending_count()
        with self._state_lock:
            self._status.pending_count = count

    def initialize(self) -> None:
        """Wire the engine to connection events and take a first status reading."""
        if self._initialized:
            return

        self._get_local_db().initialize()
        self._get_connection_manager().register_callback(self._on_connection_change)

        with self._state_lock:
            self._status.phase = self._idle_phase()
        self.refresh_storage_usage()
        self._refresh_pending()

        self._initialized = True
        logger.info(f"SyncEngine initialized. Phase: {self._status.phase.value}")

    def teardown(self) -> None:
        """Stop background work and detach from connection events."""
        self.stop()
        if self._connection_manager is not None:
            self._connection_manager.unregister_callback(self._on_connection_change)
        self._initialized = False

    # =========================================================================
    # CONNECTION EVENTS
    # =========================================================================

    def _on_connection_change(self, state) -> None:
        """Offline event -> OFFLINE; online event -> auto sync."""
        if state.status.value == "online":
            logger.info("Connection restored, triggering sync")
            with self._state_lock:
                if not self._status.syncing:
                    self._status.phase = SyncPhase.ONLINE_IDLE
            self.sync_now()
        else:
            with self._state_lock:
                self._status.phase = SyncPhase.OFFLINE
            self._notify_callbacks()

    # =========================================================================
    # BACKGROUND SYNC
    # =========================================================================

    def start(self) -> None:
        """Start background sync thread."""
        if self._sync_thread is not None and self._sync_thread.is_alive():
            return

        self.initialize()
        self._stop_sync.clear()
        self._sync_thread = threading.Thread(
            target=self._sync_loop,
            daemon=True,
            name="SyncEngine"
        )
        self._sync_thread.start()
        logger.info("Sync engine started")

    def stop(self) -> None:
        """Stop background sync thread."""
        self._stop_sync.set()
        if self._sync_thread:
            self._sync_thread.join(timeout=10)
            self._sync_thread = None
            logger.info("Sync engine stopped")

    def _sync_loop(self) -> None:
        while not self._stop_sync.wait(timeout=self.sync_interval):
            if self._get_connection_manager().is_online:
                try:
                    self.sync_now()
                except Exception as e:
                    logger.error(f"Sync error: {e}", exc_info=True)

    # =========================================================================
    # FULL SYNC
    # =========================================================================

    def sync_now(self) -> SyncReport:
        """Replay queued writes, then pull every tracked collection."""
        self.process_queue()
        return self.full_sync()

    def full_sync(self) -> SyncReport:
        """
        Pull authoritative copies of every tracked collection into the cache.

        Collections that fail keep their previously cached records. The report
        is PARTIAL when some collections failed and FAILED when none succeeded.

        Returns:
            SyncReport
        """
        started = datetime.now()
        self.initialize()

        if not self._get_connection_manager().is_online:
            logger.debug("Cannot sync: offline")
            return SyncReport(SyncOutcome.SKIPPED, started, datetime.now(), reason="offline")

        if not self._sync_lock.acquire(blocking=False):
            return SyncReport(SyncOutcome.SKIPPED, started, datetime.now(), reason="sync already running")

        report = SyncReport(SyncOutcome.FAILED, started)
        try:
            with self._state_lock:
                self._status.syncing = True
                self._status.phase = SyncPhase.SYNCING
            self._notify_callbacks()

            remote = self._get_remote()
            local_db = self._get_local_db()

            for pull in self.pulls:
                filters, gte = pull.query(started)
                try:
                    rows = remote.select(pull.collection, filters=filters, gte=gte)
                    report.succeeded[pull.collection] = local_db.bulk_put(pull.collection, rows)
                except Exception as e:
                    logger.warning(f"Pull of {pull.collection} failed: {e}")
                    report.failed[pull.collection] = str(e)

            if report.succeeded:
                report.outcome = SyncOutcome.PARTIAL if report.failed else SyncOutcome.COMPLETED

            report.finished_at = datetime.now()
            if report.success:
                with self._state_lock:
                    self._status.last_sync = report.finished_at
                # Shown on the offline settings page after a reload
                local_db.set_setting("last_successful_sync", report.finished_at)
                self.refresh_storage_usage()

            logger.info(
                f"Sync {report.outcome.value}: {len(report.succeeded)} refreshed, "
                f"{len(report.failed)} failed"
            )
            return report

        finally:
            report.finished_at = report.finished_at or datetime.now()
            with self._state_lock:
                self._status.syncing = False
                self._status.phase = self._idle_phase()
                self._status.last_report = report
            self._sync_lock.release()
            self._notify_callbacks()

    # =========================================================================
    # OFFLINE WRITE QUEUE
    # =========================================================================

    def add_to_queue(
        self,
        operation: Any,
        collection: str,
        payload: Optional[Dict[str, Any]] = None,
        record_id: Any = None,
    ) -> SyncQueueItem:
        """
        Queue an offline mutation for later replay.

        Args:
            operation: QueueOperation or its value ("create", "update", "delete")
            collection: Target collection
            payload: Full record for create, changed fields for update
            record_id: Key of the target record (taken from payload if omitted)

        Returns:
            The stored SyncQueueItem (synced=False)
        """
        op = operation if isinstance(operation, QueueOperation) else QueueOperation(operation)
        record_type(collection)
        payload = dict(payload or {})

        if op == QueueOperation.CREATE:
            # A stable id makes replay an idempotent upsert
            payload.setdefault("id", record_id or str(uuid.uuid4()))
            record_id = payload["id"]
            payload = validate_record(collection, payload).to_dict()
        elif record_id is None:
            record_id = payload.get("id")

        if record_id is None:
            raise DataValidationError(
                f"{op.value} on '{collection}' needs a record id",
                column="id",
            )

        row = self._get_local_db().enqueue(op.value, collection, record_id, payload)
        self._refresh_pending()
        logger.debug(f"Queued {op.value} {collection}/{record_id}")
        return SyncQueueItem.from_row(row)

    def queued_items(self) -> List[SyncQueueItem]:
        """Unsynced queue items, oldest first."""
        return [SyncQueueItem.from_row(row) for row in self._get_local_db().pending_queue()]

    def _replay(self, item: SyncQueueItem) -> None:
        """Apply one queued mutation; every branch is safe to repeat."""
        remote = self._get_remote()
        key = {"id": item.record_id}

        if item.operation == QueueOperation.CREATE:
            remote.upsert(item.collection, item.payload)
        elif item.operation == QueueOperation.UPDATE:
            changes = {k: v for k, v in item.payload.items() if k != "id"}
            if not remote.update(item.collection, key, changes):
                raise LookupError(f"{item.collection}/{item.record_id} does not exist remotely")
        elif item.operation == QueueOperation.DELETE:
            # Deleting an already-deleted row is a no-op
            remote.delete(item.collection, key)

    def process_queue(self) -> QueueReport:
        """
        Replay unsynced queue items against the remote store.

        Failed items stay queued with their attempt count and last error.
        Items that reached max_retry_attempts are kept but skipped. Once an
        item of a record fails or is skipped, later items of the same record
        wait for the next pass so they never overtake it.

        Returns:
            QueueReport
        """
        report = QueueReport()
        self.initialize()

        if not self._get_connection_manager().is_online:
            report.skipped = self.pending_count
            return report

        with self._queue_lock:
            local_db = self._get_local_db()
            blocked: Set[Tuple[str, str]] = set()
            for item in self.queued_items():
                key = (item.collection, str(item.record_id))
                if key in blocked or item.attempts >= self.max_retry_attempts:
                    blocked.add(key)
                    report.skipped += 1
                    continue

                try:
                    self._replay(item)
                except StorageError:
                    raise
                except Exception as e:
                    local_db.mark_replay_failed(item.id, str(e))
                    report.errors.append(QueueReplayError(
                        f"Replay of {item.operation.value} {item.collection}/{item.record_id} failed: {e}",
                        item_id=item.id,
                        operation=item.operation.value,
                        collection=item.collection,
                        attempts=item.attempts + 1,
                    ))
                    logger.warning(f"Queue item {item.id} failed: {e}")
                    blocked.add(key)
                    continue

                local_db.mark_synced(item.id)
                report.replayed.append(item.id)

        self._refresh_pending()
        if report.replayed or report.errors:
            logger.info(f"Queue replay: {len(report.replayed)} applied, {len(report.errors)} failed")
        return report

    # =========================================================================
    # CALLBACKS & DISPLAY
    # =========================================================================

    def register_callback(self, callback: Callable[[SyncStatus], None]) -> None:
        """Register a callback for sync status changes."""
        if callback not in self._callbacks:
            self._callbacks.append(callback)

    def unregister_callback(self, callback: Callable[[SyncStatus], None]) -> None:
        """Remove a registered callback."""
        if callback in self._callbacks:
            self._callbacks.remove(callback)

    def _notify_callbacks(self) -> None:
        status = self.status
        for callback in list(self._callbacks):
            try:
                callback(status)
            except Exception as e:
                logger.error(f"Error in sync callback: {e}", exc_info=True)

    def get_status_display(self) -> Dict[str, Any]:
        """Get sync status for the offline indicator."""
        status = self.status
        return {
            "phase": status.phase.value,
            "is_syncing": status.syncing,
            "last_sync": status.last_sync.isoformat() if status.last_sync else None,
            "pending_count": status.pending_count,
            "storage_used": status.storage_usage.usage,
            "storage_quota": status.storage_usage.quota,
            "storage_percentage": round(status.storage_usage.percentage, 2),
            "last_outcome": status.last_report.outcome.value if status.last_report else None,
        }


# =============================================================================
# PROCESS-WIDE ACCESSORS
# =============================================================================

_sync_engine: Optional[SyncEngine] = None


def get_sync_engine() -> SyncEngine:
    """Get (and initialize on first use) the global SyncEngine."""
    global _sync_engine
    if _sync_engine is None:
        _sync_engine = SyncEngine.get_instance()
        _sync_engine.initialize()
    return _sync_engine


def get_sync_status() -> SyncStatus:
    """Snapshot of the global sync status."""
    return get_sync_engine().status


def reset_sync_engine() -> None:
    """Tear down the global SyncEngine; the next accessor call builds a new one."""
    global _sync_engine
    with SyncEngine._lock:
        if _sync_engine is not None:
            _sync_engine.teardown()
        _sync_engine = None
        SyncEngine._instance = None
