# =============================================================================
# drms_core/offline/__init__.py
# Offline-First Field Device Layer
# =============================================================================
"""
Offline Module for the Disaster Response Platform

Provides:
- LocalStore: encrypted SQLite cache, sync queue and settings
- SyncQueueManager: queued mutations with exponential backoff
- ConflictResolver: version-based detection, last-write-wins by default
- SyncEngine: batch submission to the sync API
- OfflineBootstrapService: role-aware reference data download
- OfflineResponseService: planned responses that work offline
- OfflineContext: builds all of the above from Settings
"""

from drms_core.offline.api_client import APIConfig, DRMSApiClient, is_network_error
from drms_core.offline.bootstrap import BootstrapProgress, OfflineBootstrapService
from drms_core.offline.conflict_resolver import ConflictResolution, ConflictResolver, ConflictStats
from drms_core.offline.connection_manager import ConnectionManager, ConnectionState, ConnectionStatus
from drms_core.offline.context import OfflineContext
from drms_core.offline.crypto import KeyManager
from drms_core.offline.local_store import CachedRecord, LocalStore, table_for
from drms_core.offline.queue_manager import SyncQueueManager
from drms_core.offline.response_offline import OfflineResponseService
from drms_core.offline.scheduler import DelayedTaskScheduler
from drms_core.offline.sync_engine import SyncBatchResult, SyncEngine, SyncState

__all__ = [
    "APIConfig",
    "DRMSApiClient",
    "is_network_error",
    "BootstrapProgress",
    "OfflineBootstrapService",
    "ConflictResolution",
    "ConflictResolver",
    "ConflictStats",
    "ConnectionManager",
    "ConnectionState",
    "ConnectionStatus",
    "OfflineContext",
    "KeyManager",
    "CachedRecord",
    "LocalStore",
    "table_for",
    "SyncQueueManager",
    "OfflineResponseService",
    "DelayedTaskScheduler",
    "SyncBatchResult",
    "SyncEngine",
    "SyncState",
]
