# =============================================================================
# drms_core/offline/local_store.py
# Encrypted Local SQLite Store for Offline Field Work
# =============================================================================
"""
LocalStore - SQLite-backed cache of server records plus the device sync queue.

Features:
- Cached snapshots of entities, incidents, assessments and responses,
  each tagged with a sync status
- Payloads encrypted at rest (see KeyManager)
- Persistent sync queue and conflict log
- Key/value app settings
- Thread-local connections, nested transactions
- Unreadable records are logged and skipped, never fatal to a read
"""

from __future__ import annotations
import json
import sqlite3
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Union

import pandas as pd

from drms_core.errors import LocalStoreCorruptionError, ValidationError
from drms_core.logging import get_logger
from drms_core.models.enums import SyncEntityType, SyncStatus
from drms_core.models.records import ConflictRecord, QueueItem, format_timestamp, parse_timestamp, utcnow
from drms_core.models.resolution import last_modified_of
from drms_core.offline.crypto import KeyManager

logger = get_logger(__name__)

# Sync entity type -> cache table
SYNC_TABLES = {
    SyncEntityType.ENTITY.value: "entities",
    SyncEntityType.INCIDENT.value: "incidents",
    SyncEntityType.ASSESSMENT.value: "assessments",
    SyncEntityType.RESPONSE.value: "responses",
}
CACHE_TABLES = tuple(SYNC_TABLES.values())

UNREADABLE_QUEUE_ERROR = "Unreadable payload"


def _cache_table_sql(name: str) -> str:
    return f"""
        CREATE TABLE IF NOT EXISTS {name} (
            id TEXT PRIMARY KEY,
            entity_id TEXT,
            payload TEXT NOT NULL,
            key_version INTEGER NOT NULL,
            version INTEGER DEFAULT 1,
            sync_status TEXT DEFAULT 'SYNCED',
            last_modified TEXT,
            created_at TEXT,
            updated_at TEXT
        )
    """


def table_for(entity_type: str) -> str:
    try:
        return SYNC_TABLES[entity_type]
    except KeyError:
        raise ValidationError(f"Unsupported entity type: {entity_type}", field="entity_type") from None


@dataclass
class CachedRecord:
    """A decrypted cache row."""
    id: str
    data: Dict[str, Any]
    sync_status: str
    version: int = 1
    last_modified: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            **self.data,
            "id": self.id,
            "syncStatus": self.sync_status,
            "version": self.version,
        }


class LocalStore:
    """
    Local SQLite store for the offline layer.

    Usage:
        store = LocalStore("local_data/offline.db")
        store.initialize()
        store.put_record("entities", {"id": "e-1", "name": "Maiduguri"})
        store.get_record("entities", "e-1").data
    """

    SCHEMA = {
        **{name: _cache_table_sql(name) for name in CACHE_TABLES},
        "sync_queue": """
            CREATE TABLE IF NOT EXISTS sync_queue (
                id TEXT PRIMARY KEY,
                entity_type TEXT NOT NULL,
                action TEXT NOT NULL,
                entity_id TEXT NOT NULL,
                payload TEXT NOT NULL,
                key_version INTEGER NOT NULL,
                priority INTEGER DEFAULT 5,
                attempts INTEGER DEFAULT 0,
                last_attempt TEXT,
                next_retry TEXT,
                error TEXT,
                version INTEGER DEFAULT 1,
                created_at TEXT NOT NULL
            )
        """,
        "conflict_log": """
            CREATE TABLE IF NOT EXISTS conflict_log (
                conflict_id TEXT PRIMARY KEY,
                entity_type TEXT NOT NULL,
                entity_id TEXT NOT NULL,
                payload TEXT NOT NULL,
                key_version INTEGER NOT NULL,
                is_resolved INTEGER DEFAULT 0,
                created_at TEXT NOT NULL
            )
        """,
        "encryption_keys": """
            CREATE TABLE IF NOT EXISTS encryption_keys (
                version INTEGER PRIMARY KEY,
                key_data TEXT NOT NULL,
                created_at TEXT NOT NULL,
                last_used TEXT,
                is_active INTEGER DEFAULT 1
            )
        """,
        "app_settings": """
            CREATE TABLE IF NOT EXISTS app_settings (
                key TEXT PRIMARY KEY,
                value TEXT,
                updated_at TEXT
            )
        """,
    }

    def __init__(
        self,
        db_path: Union[str, Path],
        key_rotation_days: int = 90,
        max_old_keys: int = 5,
    ):
        self.db_path = Path(db_path)
        self._memory = str(db_path) == ":memory:"
        if not self._memory:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._local = threading.local()
        self._shared: Optional[sqlite3.Connection] = None
        self._initialized = False
        self.keys = KeyManager(self, key_rotation_days, max_old_keys)

    # =========================================================================
    # CONNECTION / TRANSACTIONS
    # =========================================================================

    def _get_connection(self) -> sqlite3.Connection:
        """Thread-local connection; in-memory stores share one connection."""
        if self._memory:
            if self._shared is None:
                self._shared = sqlite3.connect(":memory:", check_same_thread=False)
                self._shared.row_factory = sqlite3.Row
            return self._shared

        if getattr(self._local, "connection", None) is None:
            self._local.connection = sqlite3.connect(str(self.db_path), check_same_thread=False)
            self._local.connection.row_factory = sqlite3.Row
            self._local.depth = 0
        return self._local.connection

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Only the outermost block commits or rolls back."""
        conn = self._get_connection()
        depth = getattr(self._local, "depth", 0)
        self._local.depth = depth + 1
        try:
            yield conn
            if depth == 0:
                conn.commit()
        except Exception:
            if depth == 0:
                conn.rollback()
            raise
        finally:
            self._local.depth = depth

    def initialize(self) -> None:
        if self._initialized:
            return
        with self.transaction() as conn:
            for table_name, schema in self.SCHEMA.items():
                conn.execute(schema)
                logger.debug(f"Created/verified table: {table_name}")
        self._initialized = True
        logger.info(f"Local store initialized at: {self.db_path}")

    def query(self, sql: str, params: Optional[List] = None) -> List[sqlite3.Row]:
        return self._get_connection().execute(sql, params or []).fetchall()

    def execute(self, sql: str, params: Optional[List] = None) -> int:
        with self.transaction() as conn:
            return conn.execute(sql, params or []).rowcount

    def count(self, table: str, where: Optional[str] = None, params: Optional[List] = None) -> int:
        sql = f"SELECT COUNT(*) AS n FROM {table}"
        if where:
            sql += f" WHERE {where}"
        return self.query(sql, params)[0]["n"]

    # =========================================================================
    # ENCRYPTED PAYLOADS
    # =========================================================================

    def _seal(self, data: Dict[str, Any]) -> tuple:
        return self.keys.encrypt(json.dumps(data, default=str))

    def _open(self, table: str, row: sqlite3.Row, id_column: str = "id") -> Dict[str, Any]:
        try:
            return json.loads(self.keys.decrypt(row["payload"], row["key_version"]))
        except LocalStoreCorruptionError as e:
            raise LocalStoreCorruptionError(e.message, table=table, record_id=row[id_column]) from e
        except json.JSONDecodeError as e:
            raise LocalStoreCorruptionError(
                f"Payload is not valid JSON: {e}", table=table, record_id=row[id_column]
            ) from e

    # =========================================================================
    # CACHED RECORDS
    # =========================================================================

    def put_record(self, table: str, record: Dict[str, Any], sync_status: str = SyncStatus.SYNCED.value) -> None:
        """Insert or replace a cached snapshot. The record must carry an id."""
        if table not in CACHE_TABLES:
            raise ValidationError(f"Unknown cache table: {table}", field="table")
        record_id = record.get("id")
        if not record_id:
            raise ValidationError("Cached records require an id", field="id")

        payload, key_version = self._seal(record)
        modified = last_modified_of(record) or utcnow()
        now = format_timestamp(utcnow())
        version = int(record.get("version") or record.get("version_number") or record.get("versionNumber") or 1)
        entity_id = record.get("entity_id") or record.get("entityId")

        self.execute(
            f"""
            INSERT INTO {table} (id, entity_id, payload, key_version, version, sync_status,
                                 last_modified, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                entity_id = excluded.entity_id,
                payload = excluded.payload,
                key_version = excluded.key_version,
                version = excluded.version,
                sync_status = excluded.sync_status,
                last_modified = excluded.last_modified,
                updated_at = excluded.updated_at
            """,
            [record_id, entity_id, payload, key_version, version, sync_status,
             format_timestamp(modified), now, now],
        )

    def put_records(
        self,
        table: str,
        records: List[Dict[str, Any]],
        sync_status: str = SyncStatus.SYNCED.value,
        replace: bool = False,
    ) -> int:
        """
        Cache many records in one transaction. With replace=True, previously
        synced rows are dropped first; local edits awaiting sync are kept.
        """
        with self.transaction():
            if replace:
                self.execute(f"DELETE FROM {table} WHERE sync_status = ?", [SyncStatus.SYNCED.value])
            for record in records:
                self.put_record(table, record, sync_status)
        return len(records)

    def _to_cached(self, table: str, row: sqlite3.Row) -> CachedRecord:
        return CachedRecord(
            id=row["id"],
            data=self._open(table, row),
            sync_status=row["sync_status"],
            version=row["version"] or 1,
            last_modified=parse_timestamp(row["last_modified"]),
        )

    def get_record(self, table: str, record_id: str) -> Optional[CachedRecord]:
        rows = self.query(f"SELECT * FROM {table} WHERE id = ?", [record_id])
        if not rows:
            return None
        try:
            return self._to_cached(table, rows[0])
        except LocalStoreCorruptionError as e:
            logger.error(f"Skipping unreadable record: {e}")
            return None

    def list_records(
        self,
        table: str,
        where: Optional[str] = None,
        params: Optional[List] = None,
        order_by: str = "last_modified DESC",
    ) -> List[CachedRecord]:
        """Decrypt every matching row; unreadable rows are logged and skipped."""
        sql = f"SELECT * FROM {table}"
        if where:
            sql += f" WHERE {where}"
        sql += f" ORDER BY {order_by}"

        records = []
        for row in self.query(sql, params):
            try:
                records.append(self._to_cached(table, row))
            except LocalStoreCorruptionError as e:
                logger.error(f"Skipping unreadable record: {e}")
        return records

    def set_sync_status(self, table: str, record_id: str, status: str) -> bool:
        return self.execute(
            f"UPDATE {table} SET sync_status = ?, updated_at = ? WHERE id = ?",
            [status, format_timestamp(utcnow()), record_id],
        ) > 0

    def delete_record(self, table: str, record_id: str) -> bool:
        return self.execute(f"DELETE FROM {table} WHERE id = ?", [record_id]) > 0

    def to_dataframe(self, table: str, where: Optional[str] = None, params: Optional[List] = None) -> pd.DataFrame:
        """Decrypted records as a DataFrame, with sync status alongside the payload fields."""
        records = [r.to_dict() for r in self.list_records(table, where, params)]
        return pd.DataFrame(records)

    # =========================================================================
    # SYNC QUEUE ROWS
    # =========================================================================

    def save_queue_item(self, item: QueueItem) -> None:
        payload, key_version = self._seal(item.data)
        self.execute(
            """
            INSERT OR REPLACE INTO sync_queue
                (id, entity_type, action, entity_id, payload, key_version, priority, attempts,
                 last_attempt, next_retry, error, version, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            [item.id, item.entity_type, item.action, item.entity_id, payload, key_version,
             item.priority, item.attempts, format_timestamp(item.last_attempt),
             format_timestamp(item.next_retry), item.error, item.version,
             format_timestamp(item.created_at)],
        )

    def _to_queue_item(self, row: sqlite3.Row) -> QueueItem:
        return QueueItem(
            id=row["id"],
            entity_type=row["entity_type"],
            action=row["action"],
            entity_id=row["entity_id"],
            data=self._open("sync_queue", row),
            priority=row["priority"],
            attempts=row["attempts"],
            last_attempt=parse_timestamp(row["last_attempt"]),
            next_retry=parse_timestamp(row["next_retry"]),
            error=row["error"],
            created_at=parse_timestamp(row["created_at"]) or utcnow(),
            version=row["version"] or 1,
        )

    def load_queue_item(self, item_id: str) -> Optional[QueueItem]:
        rows = self.query("SELECT * FROM sync_queue WHERE id = ?", [item_id])
        if not rows:
            return None
        try:
            return self._to_queue_item(rows[0])
        except LocalStoreCorruptionError as e:
            logger.error(f"Skipping unreadable queue item: {e}")
            self._flag_unreadable([item_id])
            return None

    def load_queue_items(self) -> List[QueueItem]:
        """Readable items only; unreadable rows are flagged and left out of count_queue_items."""
        items, unreadable = [], []
        for row in self.query("SELECT * FROM sync_queue ORDER BY priority DESC, created_at ASC"):
            try:
                items.append(self._to_queue_item(row))
            except LocalStoreCorruptionError as e:
                logger.error(f"Skipping unreadable queue item: {e}")
                unreadable.append(row["id"])
        if unreadable:
            self._flag_unreadable(unreadable)
        return items

    def _flag_unreadable(self, item_ids: List[str]) -> None:
        with self.transaction():
            for item_id in item_ids:
                self.execute("UPDATE sync_queue SET error = ? WHERE id = ?", [UNREADABLE_QUEUE_ERROR, item_id])

    def count_queue_items(self, unreadable: bool = False) -> int:
        if unreadable:
            return self.count("sync_queue", "error = ?", [UNREADABLE_QUEUE_ERROR])
        return self.count("sync_queue", "error IS NULL OR error != ?", [UNREADABLE_QUEUE_ERROR])

    def delete_queue_item(self, item_id: str) -> bool:
        return self.execute("DELETE FROM sync_queue WHERE id = ?", [item_id]) > 0

    # =========================================================================
    # CONFLICT LOG
    # =========================================================================

    def save_conflict(self, conflict: ConflictRecord) -> None:
        payload, key_version = self._seal(conflict.to_dict())
        self.execute(
            """
            INSERT OR REPLACE INTO conflict_log
                (conflict_id, entity_type, entity_id, payload, key_version, is_resolved, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            [conflict.conflict_id, conflict.entity_type, conflict.entity_id, payload, key_version,
             int(conflict.is_resolved), format_timestamp(conflict.created_at)],
        )

    def load_conflicts(self, entity_id: Optional[str] = None, limit: Optional[int] = None) -> List[ConflictRecord]:
        sql = "SELECT * FROM conflict_log"
        params: List[Any] = []
        if entity_id:
            sql += " WHERE entity_id = ?"
            params.append(entity_id)
        sql += " ORDER BY created_at DESC"
        if limit:
            sql += " LIMIT ?"
            params.append(int(limit))

        conflicts = []
        for row in self.query(sql, params):
            try:
                conflicts.append(ConflictRecord.from_dict(self._open("conflict_log", row, "conflict_id")))
            except LocalStoreCorruptionError as e:
                logger.error(f"Skipping unreadable conflict entry: {e}")
        return conflicts

    def delete_conflicts_before(self, cutoff: datetime) -> int:
        return self.execute("DELETE FROM conflict_log WHERE created_at < ?", [format_timestamp(cutoff)])

    # =========================================================================
    # SETTINGS
    # =========================================================================

    def get_setting(self, key: str, default: Any = None) -> Any:
        rows = self.query("SELECT value FROM app_settings WHERE key = ?", [key])
        if not rows:
            return default
        try:
            return json.loads(rows[0]["value"])
        except json.JSONDecodeError:
            return rows[0]["value"]

    def set_setting(self, key: str, value: Any) -> None:
        self.execute(
            "INSERT OR REPLACE INTO app_settings (key, value, updated_at) VALUES (?, ?, ?)",
            [key, json.dumps(value, default=str), format_timestamp(utcnow())],
        )

    def delete_setting(self, key: str) -> None:
        self.execute("DELETE FROM app_settings WHERE key = ?", [key])

    # =========================================================================
    # INFO
    # =========================================================================

    def get_storage_info(self) -> Dict[str, Any]:
        tables = {name: self.count(name) for name in (*CACHE_TABLES, "sync_queue", "conflict_log")}
        by_status: Dict[str, int] = {}
        for table in CACHE_TABLES:
            for row in self.query(f"SELECT sync_status, COUNT(*) AS n FROM {table} GROUP BY sync_status"):
                by_status[row["sync_status"]] = by_status.get(row["sync_status"], 0) + row["n"]
        return {
            "path": str(self.db_path),
            "size_bytes": self.db_path.stat().st_size if not self._memory and self.db_path.exists() else 0,
            "tables": tables,
            "records_by_status": by_status,
            "corrupt_queue_items": self.count_queue_items(unreadable=True),
            "key_version": self.keys.current_version,
        }

    def close(self) -> None:
        if getattr(self._local, "connection", None) is not None:
            self._local.connection.close()
            self._local.connection = None
        if self._shared is not None:
            self._shared.close()
            self._shared = None
