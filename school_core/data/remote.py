# =============================================================================
# school_core/data/remote.py
# Remote data source interface and the in-memory implementation
# =============================================================================
"""
Abstract interface for the hosted relational store.

The offline layer and the timetable service only ever talk to a
RemoteDataSource. ``SupabaseRemote`` (see supabase_client.py) is the
production implementation; ``InMemoryRemote`` backs local-only mode, demos
and tests.
"""

from __future__ import annotations
import copy
import threading
import uuid
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, List, Optional, Tuple

from school_core.errors import RemoteUnavailableError


class RemoteDataSource(ABC):
    """Abstract remote store exposing per-collection CRUD and procedures"""

    @abstractmethod
    def select(
        self,
        collection: str,
        filters: Optional[Dict[str, Any]] = None,
        gte: Optional[Dict[str, Any]] = None,
        order_by: Optional[List[str]] = None,
    ) -> List[Dict[str, Any]]:
        """
        Fetch rows of a collection.

        Args:
            collection: Remote table name
            filters: column -> value equality filters
            gte: column -> lower bound (inclusive) filters
            order_by: Columns to sort by, ascending

        Returns:
            List of row dicts
        """

    @abstractmethod
    def insert(self, collection: str, record: Dict[str, Any]) -> Dict[str, Any]:
        """Insert one row; fails if the primary key exists. Returns the stored row."""

    @abstractmethod
    def upsert(self, collection: str, record: Dict[str, Any]) -> Dict[str, Any]:
        """Insert or replace one row by primary key. Returns the stored row."""

    @abstractmethod
    def update(
        self,
        collection: str,
        filters: Dict[str, Any],
        changes: Dict[str, Any],
    ) -> List[Dict[str, Any]]:
        """Apply changes to rows matching filters. Returns the updated rows."""

    @abstractmethod
    def delete(self, collection: str, filters: Dict[str, Any]) -> int:
        """Delete rows matching filters. Returns the number removed."""

    @abstractmethod
    def rpc(self, name: str, params: Dict[str, Any]) -> Any:
        """Call a remote procedure."""


def _matches(row: Dict[str, Any], filters: Optional[Dict[str, Any]], gte: Optional[Dict[str, Any]]) -> bool:
    for column, value in (filters or {}).items():
        if row.get(column) != value:
            return False
    for column, bound in (gte or {}).items():
        value = row.get(column)
        if value is None or value < bound:
            return False
    return True


class InMemoryRemote(RemoteDataSource):
    """
    Dict-backed remote store.

    Used in local-only mode (no Supabase configured) and in tests. Every call
    is recorded in ``calls`` so callers can assert that nothing touched the
    network while offline.
    """

    def __init__(self, tables: Optional[Dict[str, List[Dict[str, Any]]]] = None):
        self._tables: Dict[str, Dict[Any, Dict[str, Any]]] = {}
        self._procedures: Dict[str, Callable[..., Any]] = {}
        self._lock = threading.Lock()
        self.calls: List[Tuple[str, str]] = []

        for name, rows in (tables or {}).items():
            for row in rows:
                self._table(name)[row["id"]] = copy.deepcopy(row)

    def _table(self, collection: str) -> Dict[Any, Dict[str, Any]]:
        return self._tables.setdefault(collection, {})

    def _record_call(self, method: str, target: str) -> None:
        self.calls.append((method, target))

    def select(self, collection, filters=None, gte=None, order_by=None):
        self._record_call("select", collection)
        with self._lock:
            rows = [
                copy.deepcopy(row)
                for row in self._table(collection).values()
                if _matches(row, filters, gte)
            ]
        for column in reversed(order_by or []):
            rows.sort(key=lambda r: (r.get(column) is None, r.get(column)))
        return rows

    def insert(self, collection, record):
        self._record_call("insert", collection)
        row = copy.deepcopy(record)
        row.setdefault("id", str(uuid.uuid4()))
        with self._lock:
            table = self._table(collection)
            if row["id"] in table:
                raise ValueError(f"duplicate key value violates unique constraint on {collection}.id")
            table[row["id"]] = row
        return copy.deepcopy(row)

    def upsert(self, collection, record):
        self._record_call("upsert", collection)
        row = copy.deepcopy(record)
        row.setdefault("id", str(uuid.uuid4()))
        with self._lock:
            self._table(collection)[row["id"]] = row
        return copy.deepcopy(row)

    def update(self, collection, filters, changes):
        self._record_call("update", collection)
        updated = []
        with self._lock:
            for row in self._table(collection).values():
                if _matches(row, filters, None):
                    row.update(copy.deepcopy(changes))
                    updated.append(copy.deepcopy(row))
        return updated

    def delete(self, collection, filters):
        self._record_call("delete", collection)
        with self._lock:
            table = self._table(collection)
            doomed = [key for key, row in table.items() if _matches(row, filters, None)]
            for key in doomed:
                del table[key]
        return len(doomed)

    def register_procedure(self, name: str, func: Callable[..., Any]) -> None:
        """Make ``func(**params)`` callable through ``rpc(name, params)``."""
        self._procedures[name] = func

    def rpc(self, name, params):
        self._record_call("rpc", name)
        if name not in self._procedures:
            raise RemoteUnavailableError(f"Procedure '{name}' is not available", details={"procedure": name})
        return self._procedures[name](**params)
