# =============================================================================
# school_core/offline/__init__.py
# Offline-First Architecture for the school management app
# =============================================================================
"""
Offline-First Architecture Module

Teachers and bursars keep working when the school's connection drops: reads
come from the local cache and writes wait in the sync queue.

Architecture:
------------
┌─────────────────────────────────────────────────────────────────┐
│   ┌──────────────────────────────────────────────────────────┐  │
│   │                 OfflineDataService                        │  │
│   │         (cache-first API used by the pages)               │  │
│   └──────────────────────────────────────────────────────────┘  │
│              │                           │                      │
│              ▼                           ▼                      │
│   ┌──────────────────┐        ┌──────────────────┐             │
│   │  ConnectionMgr   │        │   SyncEngine     │             │
│   │  (Online/Offline)│───────►│ (pull + queue)   │             │
│   └──────────────────┘        └──────────────────┘             │
│                                 │            │                  │
│                                 ▼            ▼                  │
│                          ┌──────────┐  ┌──────────────┐         │
│                          │ Supabase │  │ LocalDatabase│         │
│                          │ (Cloud)  │  │   (SQLite)   │         │
│                          └──────────┘  └──────────────┘         │
└─────────────────────────────────────────────────────────────────┘

Usage:
------
from school_core.offline import get_data_service, get_sync_status

service = get_data_service()
learners = service.fetch("learners")

status = get_sync_status()
print(status.phase, status.last_sync, status.storage_usage.percentage)
"""

from school_core.offline.connection_manager import (
    ConnectionManager,
    ConnectionState,
    ConnectionStatus,
    get_connection_manager,
)

from school_core.offline.local_database import (
    LocalDatabase,
    StorageUsage,
    get_local_database,
)

from school_core.offline.sync_engine import (
    SyncEngine,
    SyncPhase,
    SyncOutcome,
    SyncReport,
    QueueReport,
    QueueOperation,
    SyncQueueItem,
    SyncStatus,
    CollectionPull,
    default_pulls,
    get_sync_engine,
    get_sync_status,
    reset_sync_engine,
)

from school_core.offline.unified_data_service import (
    OfflineDataService,
    get_data_service,
)

__all__ = [
    # Connection Management
    "ConnectionManager",
    "ConnectionState",
    "ConnectionStatus",
    "get_connection_manager",
    # Local Database
    "LocalDatabase",
    "StorageUsage",
    "get_local_database",
    # Sync Engine
    "SyncEngine",
    "SyncPhase",
    "SyncOutcome",
    "SyncReport",
    "QueueReport",
    "QueueOperation",
    "SyncQueueItem",
    "SyncStatus",
    "CollectionPull",
    "default_pulls",
    "get_sync_engine",
    "get_sync_status",
    "reset_sync_engine",
    # Data Service (Main API)
    "OfflineDataService",
    "get_data_service",
]
