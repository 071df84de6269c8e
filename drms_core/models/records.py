# =============================================================================
# drms_core/models/records.py
# Sync-Layer Record Types
# =============================================================================
"""
Dataclasses for the offline sync fragment:

- QueueItem: a locally queued mutation awaiting submission
- ConflictRecord: a detected divergence between local and server copies
- SyncResult: per-change outcome returned by the batch endpoint
"""

from __future__ import annotations
import uuid
from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from drms_core.models.enums import ResolutionStrategy


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid.uuid4())


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse ISO strings (with or without 'Z') into aware UTC datetimes."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        dt = value
    else:
        text = str(value).strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        dt = datetime.fromisoformat(text)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def format_timestamp(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    return value.isoformat()


@dataclass
class QueueItem:
    """A mutation waiting in the device sync queue."""
    entity_type: str
    action: str
    entity_id: str
    data: Dict[str, Any]
    priority: int = 5
    id: str = field(default_factory=new_id)
    attempts: int = 0
    last_attempt: Optional[datetime] = None
    next_retry: Optional[datetime] = None
    error: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)
    version: int = 1

    @property
    def offline_id(self) -> str:
        """Client-generated id the server uses for duplicate detection."""
        return self.data.get("offlineId") or self.id

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "entity_type": self.entity_type,
            "action": self.action,
            "entity_id": self.entity_id,
            "data": self.data,
            "priority": self.priority,
            "attempts": self.attempts,
            "last_attempt": format_timestamp(self.last_attempt),
            "next_retry": format_timestamp(self.next_retry),
            "error": self.error,
            "created_at": format_timestamp(self.created_at),
            "version": self.version,
        }

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> QueueItem:
        return cls(
            id=raw["id"],
            entity_type=raw["entity_type"],
            action=raw["action"],
            entity_id=raw["entity_id"],
            data=raw.get("data") or {},
            priority=int(raw.get("priority", 5)),
            attempts=int(raw.get("attempts", 0)),
            last_attempt=parse_timestamp(raw.get("last_attempt")),
            next_retry=parse_timestamp(raw.get("next_retry")),
            error=raw.get("error"),
            created_at=parse_timestamp(raw.get("created_at")) or utcnow(),
            version=int(raw.get("version", 1)),
        )


@dataclass
class ConflictRecord:
    """
    A detected divergence between local and server copies.

    Unresolved while resolved_at is None. Once resolved, the resolution
    snapshot (resolved_data, resolved_by, resolved_at) never changes.
    """
    entity_type: str
    entity_id: str
    local_version: int
    server_version: int
    local_data: Dict[str, Any]
    server_data: Dict[str, Any]
    resolution_strategy: str = ResolutionStrategy.LAST_WRITE_WINS.value
    conflict_id: str = field(default_factory=new_id)
    is_resolved: bool = False
    resolved_data: Optional[Dict[str, Any]] = None
    resolved_by: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)
    resolved_at: Optional[datetime] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        raw = asdict(self)
        raw["created_at"] = format_timestamp(self.created_at)
        raw["resolved_at"] = format_timestamp(self.resolved_at)
        return raw

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> ConflictRecord:
        return cls(
            conflict_id=raw["conflict_id"],
            entity_type=raw["entity_type"],
            entity_id=raw["entity_id"],
            local_version=int(raw.get("local_version", 0)),
            server_version=int(raw.get("server_version", 0)),
            local_data=raw.get("local_data") or {},
            server_data=raw.get("server_data") or {},
            resolution_strategy=raw.get("resolution_strategy", ResolutionStrategy.LAST_WRITE_WINS.value),
            is_resolved=bool(raw.get("is_resolved", False)),
            resolved_data=raw.get("resolved_data"),
            resolved_by=raw.get("resolved_by"),
            created_at=parse_timestamp(raw.get("created_at")) or utcnow(),
            resolved_at=parse_timestamp(raw.get("resolved_at")),
            metadata=raw.get("metadata") or {},
        )


@dataclass
class SyncResult:
    """Outcome of one change in a batch submission."""
    offline_id: str
    status: str  # success | conflict | duplicate | failed
    server_id: str = ""
    message: Optional[str] = None
    conflict_data: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "offlineId": self.offline_id,
            "serverId": self.server_id,
            "status": self.status,
            "message": self.message,
            "conflictData": self.conflict_data,
        }

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> SyncResult:
        return cls(
            offline_id=raw.get("offlineId", ""),
            status=raw.get("status", "failed"),
            server_id=raw.get("serverId") or "",
            message=raw.get("message"),
            conflict_data=raw.get("conflictData"),
        )
