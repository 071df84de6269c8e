# =============================================================================
# drms_core/offline/context.py
# Explicit Wiring of the Field-Device Offline Graph
# =============================================================================
"""
OfflineContext builds every offline component once, from Settings, and
hands them to whoever needs them. Nothing in the offline layer is a
module-level singleton; tests build a context over a temp directory and
a mocked client.

Usage:
    ctx = OfflineContext(load_settings())
    ctx.initialize()
    ctx.bootstrap.bootstrap("ASSESSOR")
    ctx.sync_engine.sync_now()
    ctx.close()
"""

from __future__ import annotations
import uuid
from typing import Any, Dict, Optional

from drms_core.config import Settings
from drms_core.logging import get_logger
from drms_core.models.enums import SyncStatus
from drms_core.models.records import QueueItem, format_timestamp, new_id, utcnow
from drms_core.offline.api_client import APIConfig, DRMSApiClient
from drms_core.offline.bootstrap import OfflineBootstrapService
from drms_core.offline.conflict_resolver import ConflictResolver
from drms_core.offline.connection_manager import ConnectionManager
from drms_core.offline.local_store import LocalStore, table_for
from drms_core.offline.queue_manager import SyncQueueManager
from drms_core.offline.response_offline import OfflineResponseService
from drms_core.offline.scheduler import DelayedTaskScheduler
from drms_core.offline.sync_engine import SyncEngine

logger = get_logger(__name__)

DEVICE_ID_KEY = "device.id"


class OfflineContext:

    def __init__(
        self,
        settings: Settings,
        store: Optional[LocalStore] = None,
        client: Optional[DRMSApiClient] = None,
    ):
        self.settings = settings
        self.store = store or LocalStore(
            settings.local_store_path,
            key_rotation_days=settings.security_key_rotation_days,
            max_old_keys=settings.security_max_old_keys,
        )
        self.store.initialize()

        self.client = client or DRMSApiClient(APIConfig(
            base_url=settings.api_base_url,
            timeout=settings.request_timeout,
            client_id=self.device_id,
        ))
        self.connection = ConnectionManager(self.client)
        self.queue = SyncQueueManager(
            self.store,
            base_delay=settings.sync_retry_base_delay,
            max_delay=settings.sync_retry_max_delay,
            max_attempts=settings.sync_max_attempts,
        )
        self.resolver = ConflictResolver(self.store)
        self.scheduler = DelayedTaskScheduler("sync-retry")
        self.sync_engine = SyncEngine(
            self.store,
            self.queue,
            self.resolver,
            self.client,
            self.connection,
            scheduler=self.scheduler,
            interval_seconds=settings.sync_interval_seconds,
            batch_size=settings.sync_batch_size,
        )
        self.bootstrap = OfflineBootstrapService(
            self.store,
            self.client,
            self.connection,
            staleness_hours=settings.bootstrap_staleness_hours,
        )
        self.responses = OfflineResponseService(self.store, self.client, self.connection, self.queue)

    @property
    def device_id(self) -> str:
        """Stable per-device id, sent as X-Client-Id for rate limiting."""
        device_id = self.store.get_setting(DEVICE_ID_KEY)
        if not device_id:
            device_id = str(uuid.uuid4())
            self.store.set_setting(DEVICE_ID_KEY, device_id)
        return device_id

    def stage_change(
        self,
        entity_type: str,
        action: str,
        record: Dict[str, Any],
        priority: Optional[int] = None,
    ) -> QueueItem:
        """
        Cache a locally edited record as PENDING and queue it for sync.
        Creates get a client-side id when the record has none.
        """
        record = dict(record)
        record.setdefault("id", new_id())
        record.setdefault("lastModified", format_timestamp(utcnow()))
        with self.store.transaction():
            self.store.put_record(table_for(entity_type), record, SyncStatus.PENDING.value)
            item = self.queue.add_to_queue(entity_type, action, record["id"], record, priority=priority)
        logger.info(f"Staged {entity_type} {action} for {record['id']}")
        return item

    def initialize(self, start_background: bool = False) -> None:
        """Probe the API once; optionally start the monitor and sync loops."""
        self.connection.check_connection()
        if start_background:
            self.connection.start_monitoring()
            self.sync_engine.start()
        logger.info(f"Offline context ready ({self.connection.status.value})")

    def close(self) -> None:
        self.sync_engine.destroy()
        self.connection.stop_monitoring()
        self.client.close()
        self.store.close()
