# =============================================================================
# drms_core/offline/conflict_resolver.py
# Device-Side Conflict Detection and Resolution
# =============================================================================
"""
ConflictResolver - Reconciles local and server copies that diverged while
the device was offline.

Features:
- Version-based detection
- last_write_wins (automatic default), manual and merge strategies
- Resolved data written back to the local cache: SYNCED when the server
  copy won, PENDING when the local or merged copy still has to be pushed
- Persistent conflict log with history, stats and age-based cleanup
"""

from __future__ import annotations
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Dict, List, Optional

from drms_core.errors import ConflictAlreadyResolvedError
from drms_core.logging import get_logger
from drms_core.models.enums import ResolutionStrategy, SyncEntityType, SyncStatus
from drms_core.models.records import ConflictRecord, format_timestamp, parse_timestamp, utcnow
from drms_core.models.resolution import last_modified_of, resolve_data
from drms_core.offline.local_store import LocalStore, table_for

logger = get_logger(__name__)

SYSTEM_RESOLVER = "system"


@dataclass
class ConflictResolution:
    success: bool
    strategy: str
    message: str
    resolved_data: Optional[Dict[str, Any]] = None
    winner: Optional[str] = None
    conflict: Optional[ConflictRecord] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "strategy": self.strategy,
            "message": self.message,
            "resolved_data": self.resolved_data,
            "winner": self.winner,
            "conflict_id": self.conflict.conflict_id if self.conflict else None,
        }


@dataclass
class ConflictStats:
    total: int = 0
    unresolved: int = 0
    auto_resolved: int = 0
    manually_resolved: int = 0
    by_type: Dict[str, int] = field(default_factory=dict)
    recent: List[ConflictRecord] = field(default_factory=list)


class ConflictResolver:
    """
    Usage:
        resolver = ConflictResolver(store)
        outcome = resolver.handle_sync_conflict("assessment", "a-1", local, server, 2, 3)
        outcome.resolved_data
    """

    RECENT_LIMIT = 10

    def __init__(self, store: LocalStore, strategies: Optional[Dict[str, str]] = None):
        self.store = store
        # Automatic strategy per entity type
        self.strategies = {t.value: ResolutionStrategy.LAST_WRITE_WINS.value for t in SyncEntityType}
        self.strategies.update(strategies or {})

    def detect_conflict(
        self,
        entity_type: str,
        entity_id: str,
        local_data: Dict[str, Any],
        server_data: Dict[str, Any],
        local_version: int,
        server_version: int,
        local_modified: Optional[str] = None,
    ) -> Optional[ConflictRecord]:
        """
        A conflict exists when the version numbers differ.

        `local_modified` overrides the timestamp read from `local_data`; the
        sync engine passes the lastModified it sent so both sides compare
        the same instants.
        """
        if int(local_version) == int(server_version):
            return None

        local_modified = parse_timestamp(local_modified) if local_modified else last_modified_of(local_data)
        server_modified = last_modified_of(server_data)
        conflict = ConflictRecord(
            entity_type=entity_type,
            entity_id=entity_id,
            local_version=int(local_version),
            server_version=int(server_version),
            local_data=dict(local_data),
            server_data=dict(server_data),
            resolution_strategy=self.strategies.get(entity_type, ResolutionStrategy.LAST_WRITE_WINS.value),
            metadata={
                "local_last_modified": format_timestamp(local_modified),
                "server_last_modified": format_timestamp(server_modified),
                "conflict_reason": f"Version mismatch: local v{local_version}, server v{server_version}",
                "auto_resolved": False,
            },
        )
        self.store.save_conflict(conflict)
        logger.info(
            f"Conflict detected for {entity_type} {entity_id}: "
            f"local v{local_version} vs server v{server_version}"
        )
        return conflict

    def resolve_conflict(
        self,
        conflict: ConflictRecord,
        strategy: Optional[str] = None,
        manual_data: Optional[Dict[str, Any]] = None,
        resolved_by: str = SYSTEM_RESOLVER,
    ) -> ConflictResolution:
        """
        Apply a strategy, write the result to the cache and log it.

        Raises:
            ConflictAlreadyResolvedError: the conflict already has a resolution
            ValidationError: manual strategy without data, or unknown strategy
        """
        if conflict.is_resolved:
            raise ConflictAlreadyResolvedError(conflict.conflict_id)

        strategy = strategy or conflict.resolution_strategy
        resolved, winner = resolve_data(conflict, strategy, manual_data)
        resolved.setdefault("id", conflict.entity_id)

        # Only the server copy is already on the server; anything else still has to be pushed
        status = SyncStatus.SYNCED.value if winner == "server" else SyncStatus.PENDING.value
        self.store.put_record(table_for(conflict.entity_type), resolved, status)

        conflict.resolution_strategy = strategy
        conflict.is_resolved = True
        conflict.resolved_data = resolved
        conflict.resolved_by = resolved_by
        conflict.resolved_at = utcnow()
        conflict.metadata["auto_resolved"] = strategy != ResolutionStrategy.MANUAL.value
        self.store.save_conflict(conflict)

        message = f"Resolved {conflict.entity_type} {conflict.entity_id} using {strategy} ({winner})"
        logger.info(message)
        return ConflictResolution(
            success=True,
            strategy=strategy,
            message=message,
            resolved_data=resolved,
            winner=winner,
            conflict=conflict,
        )

    def handle_sync_conflict(
        self,
        entity_type: str,
        entity_id: str,
        local_data: Dict[str, Any],
        server_data: Dict[str, Any],
        local_version: int,
        server_version: int,
        local_modified: Optional[str] = None,
    ) -> ConflictResolution:
        """Detect and, if needed, auto-resolve with the entity type's strategy."""
        conflict = self.detect_conflict(
            entity_type, entity_id, local_data, server_data, local_version, server_version, local_modified
        )
        if conflict is None:
            return ConflictResolution(
                success=True,
                strategy=ResolutionStrategy.LAST_WRITE_WINS.value,
                message="No conflict detected",
                resolved_data=dict(server_data),
                winner="server",
            )
        return self.resolve_conflict(conflict)

    # =========================================================================
    # HISTORY
    # =========================================================================

    def get_conflict_history(self, entity_id: Optional[str] = None, limit: Optional[int] = None) -> List[ConflictRecord]:
        """Newest first."""
        return self.store.load_conflicts(entity_id=entity_id, limit=limit)

    def get_conflict_stats(self) -> ConflictStats:
        conflicts = self.store.load_conflicts()
        stats = ConflictStats(total=len(conflicts), by_type={t.value: 0 for t in SyncEntityType})
        for conflict in conflicts:
            if not conflict.is_resolved:
                stats.unresolved += 1
            elif conflict.metadata.get("auto_resolved"):
                stats.auto_resolved += 1
            else:
                stats.manually_resolved += 1
            stats.by_type[conflict.entity_type] = stats.by_type.get(conflict.entity_type, 0) + 1
        stats.recent = conflicts[: self.RECENT_LIMIT]
        return stats

    def clear_old_conflicts(self, days: int = 30) -> int:
        cleared = self.store.delete_conflicts_before(utcnow() - timedelta(days=days))
        logger.info(f"Cleared {cleared} conflict log entries older than {days} days")
        return cleared
