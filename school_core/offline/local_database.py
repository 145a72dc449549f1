# =============================================================================
# school_core/offline/local_database.py
# Local SQLite Database for Offline Operations
# =============================================================================
"""
LocalDatabase - SQLite-backed offline cache of the school's record collections.

Features:
- One table per collection plus the sync queue
- Secondary indices per collection (unique where the remote enforces it)
- Versioned schema upgrades via PRAGMA user_version
- All-or-nothing bulk writes in a single transaction
- Storage usage / quota estimate
- DataFrame integration (pandas)
- Thread-local connections

Every sqlite3 error is converted to StorageError before it leaves this module.
"""

from __future__ import annotations
import json
import shutil
import sqlite3
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, List, Optional, Union
import logging

import pandas as pd

from school_core.data.records import (
    COLLECTIONS,
    CachedRecord,
    record_type,
    to_json_safe,
    validate_record,
)
from school_core.errors import StorageError

logger = logging.getLogger(__name__)

Key = Union[str, int]
RecordLike = Union[Dict[str, Any], CachedRecord]


@dataclass
class StorageUsage:
    """Consumed vs. available local storage."""
    usage: int = 0
    quota: int = 0
    percentage: float = 0.0


class LocalDatabase:
    """
    Local SQLite database holding the offline copy of server records.

    Usage:
        db = LocalDatabase(Path("local_data/school.db"))
        db.initialize()
        db.put("learners", {"id": "L123", "admission_number": "ADM-001"})
        db.get_by_index("learners", "admission_number", "ADM-001")
    """

    DB_NAME = "school.db"
    DB_VERSION = 1

    QUEUE_TABLE = "sync_queue"

    QUEUE_SCHEMA = """
        CREATE TABLE IF NOT EXISTS sync_queue (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            operation TEXT NOT NULL,
            collection TEXT NOT NULL,
            record_id,
            payload_json TEXT,
            timestamp TEXT NOT NULL,
            synced INTEGER NOT NULL DEFAULT 0,
            attempts INTEGER NOT NULL DEFAULT 0,
            last_attempt TEXT,
            last_error TEXT
        )
    """

    SETTINGS_SCHEMA = """
        CREATE TABLE IF NOT EXISTS app_settings (
            key TEXT PRIMARY KEY,
            value TEXT,
            updated_at TEXT DEFAULT CURRENT_TIMESTAMP
        )
    """

    _instance: Optional[LocalDatabase] = None
    _lock = threading.Lock()

    def __init__(self, db_path: Optional[Path] = None, storage_quota_bytes: Optional[int] = None):
        """
        Initialize local database.

        Args:
            db_path: Path to SQLite database file
            storage_quota_bytes: Upper bound for the cache size (None = disk space)
        """
        if db_path is None:
            from school_core.settings import get_settings
            settings = get_settings()
            db_path = settings.db_path
            storage_quota_bytes = storage_quota_bytes or settings.storage_quota_bytes

        self.db_path = Path(db_path)
        self.storage_quota_bytes = storage_quota_bytes
        self._local = threading.local()
        self._init_lock = threading.Lock()
        self._initialized = False

    @classmethod
    def get_instance(cls, db_path: Optional[Path] = None) -> LocalDatabase:
        """Get or create singleton instance."""
        if cls._instance is None:
            with cls._lock:
                if cls._instance is None:
                    cls._instance = LocalDatabase(db_path)
        return cls._instance

    # =========================================================================
    # CONNECTION & TRANSACTIONS
    # =========================================================================

    def _get_connection(self) -> sqlite3.Connection:
        """Get thread-local database connection."""
        if getattr(self._local, "connection", None) is None:
            try:
                self.db_path.parent.mkdir(parents=True, exist_ok=True)
                conn = sqlite3.connect(str(self.db_path), timeout=10, check_same_thread=False)
            except (OSError, sqlite3.Error) as e:
                raise StorageError(
                    f"Local store unavailable: {e}",
                    operation="open",
                    details={"db_path": str(self.db_path)},
                ) from e
            conn.row_factory = sqlite3.Row
            self._local.connection = conn
        return self._local.connection

    @contextmanager
    def transaction(self, collection: Optional[str] = None, operation: Optional[str] = None) -> Iterator[sqlite3.Connection]:
        """Context manager for database transactions; aborts roll back."""
        conn = self._get_connection()
        try:
            yield conn
            conn.commit()
        except sqlite3.Error as e:
            conn.rollback()
            raise StorageError(
                f"Transaction aborted: {e}",
                collection=collection,
                operation=operation,
            ) from e
        except Exception:
            conn.rollback()
            raise

    def _read(self, sql: str, params: Iterable[Any] = (), collection: Optional[str] = None) -> List[sqlite3.Row]:
        self.initialize()
        try:
            return self._get_connection().execute(sql, list(params)).fetchall()
        except sqlite3.Error as e:
            raise StorageError(f"Read failed: {e}", collection=collection, operation="read") from e

    # =========================================================================
    # SCHEMA
    # =========================================================================

    @staticmethod
    def _collection_ddl(collection: str) -> List[str]:
        """DDL for one collection table and its secondary indices."""
        specs = record_type(collection).INDICES
        columns = "".join(f",\n                {spec.name}" for spec in specs)
        statements = [
            f"""
            CREATE TABLE IF NOT EXISTS {collection} (
                id NOT NULL PRIMARY KEY,
                data_json TEXT NOT NULL,
                cached_at TEXT NOT NULL{columns}
            )
            """
        ]
        for spec in specs:
            unique = "UNIQUE " if spec.unique else ""
            statements.append(
                f"CREATE {unique}INDEX IF NOT EXISTS idx_{collection}_{spec.name} "
                f"ON {collection} ({spec.name})"
            )
        return statements

    def initialize(self) -> None:
        """
        Open the store and create missing collections/indices.

        Runs the schema step once per DB_VERSION bump. Safe to call
        repeatedly; concurrent callers wait for the one initialization.
        """
        if self._initialized:
            return

        with self._init_lock:
            if self._initialized:
                return

            conn = self._get_connection()
            try:
                version = conn.execute("PRAGMA user_version").fetchone()[0]
                if version < self.DB_VERSION:
                    for collection in COLLECTIONS:
                        for statement in self._collection_ddl(collection):
                            conn.execute(statement)
                        logger.debug(f"Created/verified collection: {collection}")
                    conn.execute(self.QUEUE_SCHEMA)
                    conn.execute("CREATE INDEX IF NOT EXISTS idx_sync_queue_timestamp ON sync_queue (timestamp)")
                    conn.execute("CREATE INDEX IF NOT EXISTS idx_sync_queue_synced ON sync_queue (synced)")
                    conn.execute(self.SETTINGS_SCHEMA)
                    conn.execute(f"PRAGMA user_version = {self.DB_VERSION}")
                    logger.info(f"Local schema upgraded v{version} -> v{self.DB_VERSION}")
                conn.commit()
            except sqlite3.Error as e:
                conn.rollback()
                raise StorageError(f"Could not initialize local store: {e}", operation="initialize") from e

            self._initialized = True
            logger.info(f"Local database initialized at: {self.db_path}")

    # =========================================================================
    # WRITES
    # =========================================================================

    @staticmethod
    def _row_values(record: CachedRecord) -> List[Any]:
        data_json = json.dumps(record.to_dict())
        return [record.key, data_json, datetime.now().isoformat(), *record.index_values().values()]

    def _insert_sql(self, collection: str, upsert: bool) -> str:
        specs = record_type(collection).INDICES
        columns = ["id", "data_json", "cached_at", *[spec.name for spec in specs]]
        sql = (
            f"INSERT INTO {collection} ({', '.join(columns)}) "
            f"VALUES ({', '.join('?' for _ in columns)})"
        )
        if upsert:
            # ON CONFLICT(id) keeps unique secondary indices enforced;
            # INSERT OR REPLACE would silently evict the other row.
            assignments = ", ".join(f"{c} = excluded.{c}" for c in columns[1:])
            sql += f" ON CONFLICT(id) DO UPDATE SET {assignments}"
        return sql

    def _check_quota(self, rows: List[List[Any]], collection: str) -> None:
        if not self.storage_quota_bytes:
            return
        incoming = sum(len(row[1]) for row in rows)
        usage = self.storage_estimate().usage
        if usage + incoming > self.storage_quota_bytes:
            raise StorageError(
                "Storage quota exceeded",
                collection=collection,
                operation="write",
                details={"usage": usage, "incoming": incoming, "quota": self.storage_quota_bytes},
            )

    def _write(self, collection: str, records: List[CachedRecord], upsert: bool, operation: str) -> None:
        self.initialize()
        rows = [self._row_values(r) for r in records]
        self._check_quota(rows, collection)
        with self.transaction(collection, operation) as conn:
            conn.executemany(self._insert_sql(collection, upsert), rows)

    def add(self, collection: str, record: RecordLike) -> Key:
        """
        Insert a record; fails if the key (or a unique index value) exists.

        Returns:
            Primary key of the stored record
        """
        typed = validate_record(collection, record)
        self._write(collection, [typed], upsert=False, operation="add")
        return typed.key

    def put(self, collection: str, record: RecordLike) -> Key:
        """
        Insert or replace a record by primary key.

        Returns:
            Primary key of the stored record
        """
        typed = validate_record(collection, record)
        self._write(collection, [typed], upsert=True, operation="put")
        return typed.key

    def bulk_put(self, collection: str, records: Iterable[RecordLike]) -> int:
        """
        Insert or replace many records in one transaction.

        All records are validated before anything is written; any failed
        write rolls back the whole batch.

        Returns:
            Number of records written
        """
        record_type(collection)
        typed = [validate_record(collection, r) for r in records]
        if not typed:
            return 0
        self._write(collection, typed, upsert=True, operation="bulk_put")
        logger.debug(f"bulk_put {len(typed)} records into {collection}")
        return len(typed)

    def delete(self, collection: str, key: Key) -> bool:
        """Delete one record. Returns True if a record was removed."""
        record_type(collection)
        self.initialize()
        with self.transaction(collection, "delete") as conn:
            cursor = conn.execute(f"DELETE FROM {collection} WHERE id = ?", [key])
            return cursor.rowcount > 0

    def clear(self, collection: str) -> None:
        """Remove every record from a collection."""
        record_type(collection)
        self.initialize()
        with self.transaction(collection, "clear") as conn:
            conn.execute(f"DELETE FROM {collection}")

    def clear_all(self) -> None:
        """Remove all cached records and the sync queue."""
        self.initialize()
        with self.transaction(operation="clear_all") as conn:
            for collection in COLLECTIONS:
                conn.execute(f"DELETE FROM {collection}")
            conn.execute(f"DELETE FROM {self.QUEUE_TABLE}")
        logger.info("Cleared all offline data")

    # =========================================================================
    # READS
    # =========================================================================

    def get(self, collection: str, key: Key) -> Optional[Dict[str, Any]]:
        """Get a record by key, or None."""
        record_type(collection)
        rows = self._read(f"SELECT data_json FROM {collection} WHERE id = ?", [key], collection)
        return json.loads(rows[0]["data_json"]) if rows else None

    def get_all(self, collection: str) -> List[Dict[str, Any]]:
        """Get every record of a collection."""
        record_type(collection)
        rows = self._read(f"SELECT data_json FROM {collection} ORDER BY rowid", collection=collection)
        return [json.loads(row["data_json"]) for row in rows]

    def get_by_index(self, collection: str, index_name: str, value: Any) -> List[Dict[str, Any]]:
        """Get records whose secondary index attribute equals value."""
        names = [spec.name for spec in record_type(collection).INDICES]
        if index_name not in names:
            raise StorageError(
                f"Collection '{collection}' has no index '{index_name}'",
                collection=collection,
                operation="get_by_index",
                details={"indices": names},
            )
        rows = self._read(
            f"SELECT data_json FROM {collection} WHERE {index_name} = ? ORDER BY rowid",
            [to_json_safe(value)],
            collection,
        )
        return [json.loads(row["data_json"]) for row in rows]

    def count(self, collection: str) -> int:
        """Number of records in a collection."""
        record_type(collection)
        rows = self._read(f"SELECT COUNT(*) AS count FROM {collection}", collection=collection)
        return rows[0]["count"]

    def counts(self) -> Dict[str, int]:
        """Record counts for every collection."""
        return {collection: self.count(collection) for collection in COLLECTIONS}

    # =========================================================================
    # PANDAS INTEGRATION
    # =========================================================================

    def to_dataframe(self, collection: str) -> pd.DataFrame:
        """
        Load a cached collection into a pandas DataFrame.

        Returns:
            DataFrame with one row per record (empty if nothing is cached)
        """
        return pd.DataFrame(self.get_all(collection))

    # =========================================================================
    # STORAGE ESTIMATE
    # =========================================================================

    def storage_estimate(self) -> StorageUsage:
        """
        Report consumed vs. available local storage.

        Returns zeros when the platform cannot report usage.
        """
        try:
            usage = 0
            for suffix in ("", "-wal", "-shm", "-journal"):
                path = Path(f"{self.db_path}{suffix}")
                if path.exists():
                    usage += path.stat().st_size

            if self.storage_quota_bytes:
                quota = self.storage_quota_bytes
            else:
                quota = shutil.disk_usage(self.db_path.parent).free + usage
        except OSError as e:
            logger.debug(f"Storage estimate unavailable: {e}")
            return StorageUsage()

        percentage = (usage / quota * 100) if quota else 0.0
        return StorageUsage(usage=usage, quota=quota, percentage=percentage)

    # =========================================================================
    # SYNC QUEUE (owned by SyncEngine)
    # =========================================================================

    def enqueue(
        self,
        operation: str,
        collection: str,
        record_id: Optional[Key],
        payload: Dict[str, Any],
    ) -> Dict[str, Any]:
        """Append an unsynced operation to the sync queue."""
        self.initialize()
        timestamp = datetime.now().isoformat()
        payload_json = json.dumps(to_json_safe(payload))
        with self.transaction(self.QUEUE_TABLE, "enqueue") as conn:
            cursor = conn.execute(
                """
                INSERT INTO sync_queue (operation, collection, record_id, payload_json, timestamp)
                VALUES (?, ?, ?, ?, ?)
                """,
                [operation, collection, record_id, payload_json, timestamp],
            )
            item_id = cursor.lastrowid
        return self._queue_row(self._read("SELECT * FROM sync_queue WHERE id = ?", [item_id])[0])

    @staticmethod
    def _queue_row(row: sqlite3.Row) -> Dict[str, Any]:
        return {
            "id": row["id"],
            "operation": row["operation"],
            "collection": row["collection"],
            "record_id": row["record_id"],
            "payload": json.loads(row["payload_json"]) if row["payload_json"] else {},
            "timestamp": row["timestamp"],
            "synced": bool(row["synced"]),
            "attempts": row["attempts"],
            "last_error": row["last_error"],
        }

    def pending_queue(self, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        """Unsynced queue items, oldest first."""
        sql = "SELECT * FROM sync_queue WHERE synced = 0 ORDER BY timestamp ASC, id ASC"
        params: List[Any] = []
        if limit:
            sql += " LIMIT ?"
            params.append(limit)
        return [self._queue_row(row) for row in self._read(sql, params, self.QUEUE_TABLE)]

    def mark_synced(self, item_id: int) -> None:
        """Mark a queue item as replayed."""
        self.initialize()
        with self.transaction(self.QUEUE_TABLE, "mark_synced") as conn:
            conn.execute(
                "UPDATE sync_queue SET synced = 1, last_attempt = ?, last_error = NULL WHERE id = ?",
                [datetime.now().isoformat(), item_id],
            )

    def mark_replay_failed(self, item_id: int, error: str) -> None:
        """Record a failed replay; the item stays unsynced."""
        self.initialize()
        with self.transaction(self.QUEUE_TABLE, "mark_replay_failed") as conn:
            conn.execute(
                """
                UPDATE sync_queue
                SET attempts = attempts + 1, last_attempt = ?, last_error = ?
                WHERE id = ?
                """,
                [datetime.now().isoformat(), error, item_id],
            )

    def pending_count(self) -> int:
        """Number of unsynced queue items."""
        rows = self._read("SELECT COUNT(*) AS count FROM sync_queue WHERE synced = 0", collection=self.QUEUE_TABLE)
        return rows[0]["count"]

    def purge_synced(self) -> int:
        """Delete replayed queue items. Returns the number removed."""
        self.initialize()
        with self.transaction(self.QUEUE_TABLE, "purge_synced") as conn:
            return conn.execute("DELETE FROM sync_queue WHERE synced = 1").rowcount

    # =========================================================================
    # SETTINGS
    # =========================================================================

    def get_setting(self, key: str, default: Any = None) -> Any:
        """Get a persisted app setting."""
        rows = self._read("SELECT value FROM app_settings WHERE key = ?", [key])
        if rows:
            try:
                return json.loads(rows[0]["value"])
            except json.JSONDecodeError:
                return rows[0]["value"]
        return default

    def set_setting(self, key: str, value: Any) -> None:
        """Persist an app setting."""
        self.initialize()
        with self.transaction(operation="set_setting") as conn:
            conn.execute(
                """
                INSERT OR REPLACE INTO app_settings (key, value, updated_at)
                VALUES (?, ?, ?)
                """,
                [key, json.dumps(to_json_safe(value)), datetime.now().isoformat()],
            )

    def close(self) -> None:
        """Close this thread's database connection."""
        if getattr(self._local, "connection", None) is not None:
            self._local.connection.close()
            self._local.connection = None


# Singleton accessor
_local_database: Optional[LocalDatabase] = None


def get_local_database() -> LocalDatabase:
    """Get the global LocalDatabase instance."""
    global _local_database
    if _local_database is None:
        _local_database = LocalDatabase.get_instance()
        _local_database.initialize()
    return _local_database
