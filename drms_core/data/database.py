# =============================================================================
# drms_core/data/database.py
# Relational Store for the Coordination Server
# =============================================================================
"""
Database - SQLite-backed relational store for the coordination server.

Features:
- Automatic schema creation (users, roles, entities, incidents,
  assessments, responses, donors, commitments, conflicts, audit logs)
- Generic CRUD helpers returning plain dicts
- JSON column encoding/decoding
- Nested transactions via SAVEPOINT (a failing inner block rolls back
  only itself; the outermost block owns COMMIT)
- Thread-local connections
"""

from __future__ import annotations
import json
import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Sequence
import logging

import pandas as pd

from drms_core.errors import DuplicateRecordError, NotFoundError
from drms_core.models.records import new_id

logger = logging.getLogger(__name__)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class Database:
    """
    Relational store mirroring the coordination schema.

    Usage:
        db = Database(Path("data/drms.db"))
        db.initialize()
        with db.transaction():
            entity = db.insert("entities", {"name": "Camp A", "type": "CAMP"})
    """

    DEFAULT_DB_PATH = Path("data") / "drms.db"

    SCHEMA = {
        "users": """
            CREATE TABLE IF NOT EXISTS users (
                id TEXT PRIMARY KEY,
                email TEXT NOT NULL UNIQUE,
                username TEXT NOT NULL UNIQUE,
                password_hash TEXT NOT NULL,
                name TEXT NOT NULL,
                phone TEXT,
                organization TEXT,
                is_active INTEGER NOT NULL DEFAULT 1,
                is_locked INTEGER NOT NULL DEFAULT 0,
                last_login TEXT,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
        """,
        "roles": """
            CREATE TABLE IF NOT EXISTS roles (
                id TEXT PRIMARY KEY,
                name TEXT NOT NULL UNIQUE,
                description TEXT NOT NULL,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
        """,
        "user_roles": """
            CREATE TABLE IF NOT EXISTS user_roles (
                id TEXT PRIMARY KEY,
                user_id TEXT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
                role_id TEXT NOT NULL REFERENCES roles(id) ON DELETE CASCADE,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL,
                UNIQUE(user_id, role_id)
            )
        """,
        "entities": """
            CREATE TABLE IF NOT EXISTS entities (
                id TEXT PRIMARY KEY,
                name TEXT NOT NULL,
                type TEXT NOT NULL,
                location TEXT,
                coordinates TEXT,
                metadata TEXT,
                is_active INTEGER NOT NULL DEFAULT 1,
                auto_approve_enabled INTEGER NOT NULL DEFAULT 0,
                version_number INTEGER NOT NULL DEFAULT 1,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL,
                UNIQUE(name, type)
            )
        """,
        "entity_assignments": """
            CREATE TABLE IF NOT EXISTS entity_assignments (
                id TEXT PRIMARY KEY,
                user_id TEXT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
                entity_id TEXT NOT NULL REFERENCES entities(id) ON DELETE CASCADE,
                assigned_by TEXT NOT NULL,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL,
                UNIQUE(user_id, entity_id)
            )
        """,
        "incidents": """
            CREATE TABLE IF NOT EXISTS incidents (
                id TEXT PRIMARY KEY,
                type TEXT NOT NULL,
                sub_type TEXT,
                severity TEXT NOT NULL DEFAULT 'MEDIUM',
                status TEXT NOT NULL DEFAULT 'ACTIVE',
                description TEXT NOT NULL,
                location TEXT NOT NULL,
                coordinates TEXT,
                created_by TEXT NOT NULL,
                version_number INTEGER NOT NULL DEFAULT 1,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
        """,
        "rapid_assessments": """
            CREATE TABLE IF NOT EXISTS rapid_assessments (
                id TEXT PRIMARY KEY,
                rapid_assessment_type TEXT NOT NULL,
                rapid_assessment_date TEXT NOT NULL,
                assessor_id TEXT NOT NULL,
                assessor_name TEXT NOT NULL,
                entity_id TEXT NOT NULL REFERENCES entities(id),
                incident_id TEXT REFERENCES incidents(id),
                location TEXT,
                coordinates TEXT,
                status TEXT NOT NULL DEFAULT 'DRAFT',
                priority TEXT NOT NULL DEFAULT 'MEDIUM',
                version_number INTEGER NOT NULL DEFAULT 1,
                is_offline_created INTEGER NOT NULL DEFAULT 0,
                offline_id TEXT UNIQUE,
                sync_status TEXT NOT NULL DEFAULT 'SYNCED',
                verification_status TEXT NOT NULL DEFAULT 'DRAFT',
                verified_at TEXT,
                verified_by TEXT,
                rejection_reason TEXT,
                assessment_data TEXT,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
        """,
        "rapid_responses": """
            CREATE TABLE IF NOT EXISTS rapid_responses (
                id TEXT PRIMARY KEY,
                responder_id TEXT NOT NULL,
                entity_id TEXT NOT NULL REFERENCES entities(id),
                assessment_id TEXT NOT NULL REFERENCES rapid_assessments(id),
                donor_id TEXT,
                commitment_id TEXT,
                type TEXT NOT NULL,
                priority TEXT NOT NULL DEFAULT 'MEDIUM',
                status TEXT NOT NULL DEFAULT 'PLANNED',
                description TEXT,
                items TEXT NOT NULL,
                delivered_items TEXT,
                delivery_notes TEXT,
                version_number INTEGER NOT NULL DEFAULT 1,
                is_offline_created INTEGER NOT NULL DEFAULT 0,
                offline_id TEXT UNIQUE,
                planned_date TEXT NOT NULL,
                response_date TEXT,
                verification_status TEXT NOT NULL DEFAULT 'DRAFT',
                sync_status TEXT NOT NULL DEFAULT 'SYNCED',
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
        """,
        "donors": """
            CREATE TABLE IF NOT EXISTS donors (
                id TEXT PRIMARY KEY,
                name TEXT NOT NULL,
                type TEXT NOT NULL DEFAULT 'ORGANIZATION',
                contact_email TEXT,
                contact_phone TEXT,
                organization TEXT,
                user_id TEXT,
                is_active INTEGER NOT NULL DEFAULT 1,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
        """,
        "donor_commitments": """
            CREATE TABLE IF NOT EXISTS donor_commitments (
                id TEXT PRIMARY KEY,
                donor_id TEXT NOT NULL REFERENCES donors(id),
                entity_id TEXT NOT NULL REFERENCES entities(id),
                incident_id TEXT NOT NULL REFERENCES incidents(id),
                items TEXT NOT NULL,
                total_committed_quantity INTEGER NOT NULL,
                delivered_quantity INTEGER NOT NULL DEFAULT 0,
                status TEXT NOT NULL DEFAULT 'PLANNED',
                notes TEXT,
                commitment_date TEXT NOT NULL,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
        """,
        "sync_conflicts": """
            CREATE TABLE IF NOT EXISTS sync_conflicts (
                id TEXT PRIMARY KEY,
                entity_type TEXT NOT NULL,
                entity_id TEXT NOT NULL,
                local_version INTEGER NOT NULL,
                server_version INTEGER NOT NULL,
                local_data TEXT NOT NULL,
                server_data TEXT NOT NULL,
                resolution_strategy TEXT NOT NULL DEFAULT 'last_write_wins',
                is_resolved INTEGER NOT NULL DEFAULT 0,
                resolved_data TEXT,
                resolved_by TEXT,
                resolved_at TEXT,
                metadata TEXT,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
        """,
        "audit_logs": """
            CREATE TABLE IF NOT EXISTS audit_logs (
                id TEXT PRIMARY KEY,
                user_id TEXT,
                action TEXT NOT NULL,
                resource TEXT NOT NULL,
                resource_id TEXT,
                old_values TEXT,
                new_values TEXT,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
        """,
        "report_templates": """
            CREATE TABLE IF NOT EXISTS report_templates (
                id TEXT PRIMARY KEY,
                name TEXT NOT NULL,
                description TEXT,
                type TEXT NOT NULL,
                layout TEXT NOT NULL,
                created_by TEXT NOT NULL,
                is_public INTEGER NOT NULL DEFAULT 0,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
        """,
    }

    # Columns holding JSON documents, decoded on read
    JSON_COLUMNS = {
        "entities": ("coordinates", "metadata"),
        "incidents": ("coordinates",),
        "rapid_assessments": ("coordinates", "assessment_data"),
        "rapid_responses": ("items", "delivered_items"),
        "donor_commitments": ("items",),
        "sync_conflicts": ("local_data", "server_data", "resolved_data", "metadata"),
        "audit_logs": ("old_values", "new_values"),
        "report_templates": ("layout",),
    }

    # Columns stored as 0/1, returned as bool
    BOOL_COLUMNS = {
        "users": ("is_active", "is_locked"),
        "entities": ("is_active", "auto_approve_enabled"),
        "rapid_assessments": ("is_offline_created",),
        "rapid_responses": ("is_offline_created",),
        "donors": ("is_active",),
        "sync_conflicts": ("is_resolved",),
        "report_templates": ("is_public",),
    }

    def __init__(self, db_path: Optional[Path] = None):
        """
        Initialize the store.

        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = Path(db_path) if db_path else self.DEFAULT_DB_PATH
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._local = threading.local()
        self._initialized = False

    def _get_connection(self) -> sqlite3.Connection:
        """Get thread-local database connection."""
        if getattr(self._local, "connection", None) is None:
            conn = sqlite3.connect(str(self.db_path), check_same_thread=False, timeout=30)
            # Transactions are managed explicitly with BEGIN/SAVEPOINT
            conn.isolation_level = None
            conn.row_factory = sqlite3.Row
            conn.execute("PRAGMA foreign_keys = ON")
            self._local.connection = conn
            self._local.depth = 0
        return self._local.connection

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """
        Context manager for database transactions.

        The outermost block issues BEGIN/COMMIT; nested blocks use
        savepoints so a caught inner failure leaves the outer work intact.
        """
        conn = self._get_connection()
        depth = self._local.depth
        savepoint = f"sp_{depth}"

        if depth == 0:
            conn.execute("BEGIN")
        else:
            conn.execute(f"SAVEPOINT {savepoint}")
        self._local.depth = depth + 1

        try:
            yield conn
        except Exception:
            self._local.depth = depth
            if depth == 0:
                conn.execute("ROLLBACK")
            else:
                conn.execute(f"ROLLBACK TO {savepoint}")
                conn.execute(f"RELEASE {savepoint}")
            raise
        else:
            self._local.depth = depth
            if depth == 0:
                conn.execute("COMMIT")
            else:
                conn.execute(f"RELEASE {savepoint}")

    def initialize(self) -> None:
        """Initialize database schema."""
        if self._initialized:
            return

        conn = self._get_connection()
        for table_name, schema in self.SCHEMA.items():
            conn.execute(schema)
            logger.debug(f"Created/verified table: {table_name}")

        self._initialized = True
        logger.info(f"Database initialized at: {self.db_path}")

    # =========================================================================
    # ROW CONVERSION
    # =========================================================================

    def _encode(self, table: str, data: Dict[str, Any]) -> Dict[str, Any]:
        encoded = {}
        json_cols = self.JSON_COLUMNS.get(table, ())
        for key, value in data.items():
            if key in json_cols and value is not None:
                encoded[key] = json.dumps(value, default=str)
            elif isinstance(value, Enum):
                encoded[key] = value.value
            elif isinstance(value, bool):
                encoded[key] = int(value)
            elif isinstance(value, datetime):
                encoded[key] = value.isoformat()
            else:
                encoded[key] = value
        return encoded

    def _decode(self, table: str, row: Optional[sqlite3.Row]) -> Optional[Dict[str, Any]]:
        if row is None:
            return None
        record = dict(row)
        for column in self.JSON_COLUMNS.get(table, ()):
            if record.get(column) is not None:
                record[column] = json.loads(record[column])
        for column in self.BOOL_COLUMNS.get(table, ()):
            if column in record and record[column] is not None:
                record[column] = bool(record[column])
        return record

    # =========================================================================
    # GENERIC CRUD OPERATIONS
    # =========================================================================

    def insert(self, table: str, data: Dict[str, Any]) -> Dict[str, Any]:
        """
        Insert a record and return it as stored.

        Raises:
            DuplicateRecordError: when a UNIQUE constraint rejects the row
        """
        data = dict(data)
        data.setdefault("id", new_id())
        now = _now()
        data.setdefault("created_at", now)
        data.setdefault("updated_at", now)

        encoded = self._encode(table, data)
        columns = ", ".join(encoded.keys())
        placeholders = ", ".join(["?" for _ in encoded])

        try:
            with self.transaction() as conn:
                conn.execute(
                    f"INSERT INTO {table} ({columns}) VALUES ({placeholders})",
                    list(encoded.values()),
                )
        except sqlite3.IntegrityError as e:
            if "UNIQUE" in str(e):
                raise DuplicateRecordError(
                    f"Duplicate {table} record: {e}",
                    resource=table,
                ) from e
            raise

        return self.get_by_id(table, data["id"])

    def update(self, table: str, record_id: str, data: Dict[str, Any]) -> Dict[str, Any]:
        """Update a record and return the new version."""
        data = dict(data)
        data["updated_at"] = _now()
        encoded = self._encode(table, data)

        set_clause = ", ".join([f"{k} = ?" for k in encoded.keys()])
        with self.transaction() as conn:
            cursor = conn.execute(
                f"UPDATE {table} SET {set_clause} WHERE id = ?",
                list(encoded.values()) + [record_id],
            )
            if cursor.rowcount == 0:
                raise NotFoundError(f"{table} record not found", resource=table, resource_id=record_id)

        return self.get_by_id(table, record_id)

    def update_if(
        self,
        table: str,
        record_id: str,
        data: Dict[str, Any],
        condition: str,
        params: Optional[Sequence[Any]] = None,
    ) -> bool:
        """Conditional update; False when the row no longer matches the condition."""
        data = dict(data)
        data["updated_at"] = _now()
        encoded = self._encode(table, data)

        set_clause = ", ".join([f"{k} = ?" for k in encoded.keys()])
        with self.transaction() as conn:
            cursor = conn.execute(
                f"UPDATE {table} SET {set_clause} WHERE id = ? AND {condition}",
                list(encoded.values()) + [record_id] + list(params or []),
            )
            return cursor.rowcount > 0

    def delete(self, table: str, record_id: str) -> bool:
        """Delete a record."""
        with self.transaction() as conn:
            cursor = conn.execute(f"DELETE FROM {table} WHERE id = ?", [record_id])
            return cursor.rowcount > 0

    def get_by_id(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        """Get a record by ID."""
        conn = self._get_connection()
        cursor = conn.execute(f"SELECT * FROM {table} WHERE id = ?", [record_id])
        return self._decode(table, cursor.fetchone())

    def require(self, table: str, record_id: str, label: Optional[str] = None) -> Dict[str, Any]:
        """Get a record by ID or raise NotFoundError."""
        record = self.get_by_id(table, record_id)
        if record is None:
            label = label or table.rstrip("s").replace("_", " ").capitalize()
            raise NotFoundError(f"{label} not found", resource=table, resource_id=record_id)
        return record

    def find_one(self, table: str, where: str, params: Sequence[Any]) -> Optional[Dict[str, Any]]:
        rows = self.get_all(table, where=where, params=params, limit=1)
        return rows[0] if rows else None

    def get_all(
        self,
        table: str,
        where: Optional[str] = None,
        params: Optional[Sequence[Any]] = None,
        order_by: Optional[str] = None,
        limit: Optional[int] = None,
        offset: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        """Get all records from a table with optional filtering."""
        query = f"SELECT * FROM {table}"

        if where:
            query += f" WHERE {where}"

        if order_by:
            query += f" ORDER BY {order_by}"

        if limit is not None:
            query += f" LIMIT {int(limit)}"
            if offset:
                query += f" OFFSET {int(offset)}"

        conn = self._get_connection()
        cursor = conn.execute(query, list(params or []))
        return [self._decode(table, row) for row in cursor.fetchall()]

    def columns(self, table: str) -> List[str]:
        return [row["name"] for row in self.query(f"PRAGMA table_info({table})")]

    def count(self, table: str, where: Optional[str] = None, params: Optional[Sequence[Any]] = None) -> int:
        query = f"SELECT COUNT(*) AS count FROM {table}"
        if where:
            query += f" WHERE {where}"
        rows = self.query(query, params)
        return int(rows[0]["count"]) if rows else 0

    def query(self, sql: str, params: Optional[Sequence[Any]] = None) -> List[sqlite3.Row]:
        """Execute a raw SQL query."""
        conn = self._get_connection()
        cursor = conn.execute(sql, list(params or []))
        return cursor.fetchall()

    def execute(self, sql: str, params: Optional[Sequence[Any]] = None) -> int:
        """Execute a raw SQL statement."""
        with self.transaction() as conn:
            cursor = conn.execute(sql, list(params or []))
            return cursor.rowcount

    # =========================================================================
    # PANDAS INTEGRATION
    # =========================================================================

    def to_dataframe(
        self,
        table: str,
        where: Optional[str] = None,
        params: Optional[Sequence[Any]] = None,
    ) -> pd.DataFrame:
        """Load a table (JSON columns decoded) into a pandas DataFrame."""
        records = self.get_all(table, where=where, params=params)
        if not records:
            return pd.DataFrame(columns=self.columns(table))
        return pd.DataFrame.from_records(records)

    # =========================================================================
    # AUDIT
    # =========================================================================

    def audit(
        self,
        user_id: Optional[str],
        action: str,
        resource: str,
        resource_id: Optional[str],
        old_values: Optional[Dict[str, Any]] = None,
        new_values: Optional[Dict[str, Any]] = None,
    ) -> None:
        """Append an audit trail entry."""
        self.insert("audit_logs", {
            "user_id": user_id,
            "action": action,
            "resource": resource,
            "resource_id": resource_id,
            "old_values": old_values,
            "new_values": new_values,
        })

    def close(self) -> None:
        """Close database connection."""
        conn = getattr(self._local, "connection", None)
        if conn is not None:
            conn.close()
            self._local.connection = None
