# =============================================================================
# drms_core/services/conflict_service.py
# Server-Side Conflict Log
# =============================================================================
"""
ConflictService - persistent log of sync conflicts on the server.

Features:
- Record conflicts detected while applying sync batches
- Resolve exactly once (a second attempt raises ConflictAlreadyResolvedError)
- Filtered, paginated listing for the conflict dashboard
- Summary statistics and CSV export
"""

from __future__ import annotations
import io
import math
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

import pandas as pd

from drms_core.data.database import Database
from drms_core.errors import ConflictAlreadyResolvedError, ValidationError
from drms_core.models.enums import ResolutionStrategy
from drms_core.models.records import ConflictRecord, format_timestamp, parse_timestamp, utcnow
from drms_core.models.resolution import resolve_data
from drms_core.services.base_service import BaseService

TABLE = "sync_conflicts"
DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100
RECENT_CONFLICTS = 5

CSV_COLUMNS = [
    "Conflict ID",
    "Entity Type",
    "Entity ID",
    "Conflict Date",
    "Resolution Method",
    "Local Version",
    "Server Version",
    "Resolved",
    "Resolved At",
    "Resolved By",
    "Auto Resolved",
    "Conflict Reason",
    "Local Last Modified",
    "Server Last Modified",
]


def _to_record(row: Dict[str, Any]) -> ConflictRecord:
    return ConflictRecord(
        conflict_id=row["id"],
        entity_type=row["entity_type"],
        entity_id=row["entity_id"],
        local_version=row["local_version"],
        server_version=row["server_version"],
        local_data=row["local_data"] or {},
        server_data=row["server_data"] or {},
        resolution_strategy=row["resolution_strategy"],
        is_resolved=row["is_resolved"],
        resolved_data=row["resolved_data"],
        resolved_by=row["resolved_by"],
        created_at=parse_timestamp(row["created_at"]),
        resolved_at=parse_timestamp(row["resolved_at"]),
        metadata=row["metadata"] or {},
    )


def conflict_to_api(conflict: ConflictRecord) -> Dict[str, Any]:
    """Wire shape used by the conflict dashboard endpoints."""
    meta = conflict.metadata
    return {
        "id": conflict.conflict_id,
        "entityType": conflict.entity_type,
        "entityId": conflict.entity_id,
        "conflictDate": format_timestamp(conflict.created_at),
        "resolutionMethod": conflict.resolution_strategy.upper(),
        "localVersion": conflict.local_version,
        "serverVersion": conflict.server_version,
        "isResolved": conflict.is_resolved,
        "resolvedAt": format_timestamp(conflict.resolved_at),
        "resolvedBy": conflict.resolved_by,
        "localData": conflict.local_data,
        "serverData": conflict.server_data,
        "resolvedData": conflict.resolved_data,
        "metadata": {
            "localLastModified": meta.get("local_last_modified"),
            "serverLastModified": meta.get("server_last_modified"),
            "conflictReason": meta.get("conflict_reason"),
            "autoResolved": bool(meta.get("auto_resolved")),
        },
    }


class ConflictService(BaseService):

    def __init__(self, db: Database):
        super().__init__(db)

    def record_conflict(
        self,
        entity_type: str,
        entity_id: str,
        local_version: int,
        server_version: int,
        local_data: Dict[str, Any],
        server_data: Dict[str, Any],
        reason: str = "Version mismatch",
        local_last_modified: Optional[str] = None,
        server_last_modified: Optional[str] = None,
        entity_uuid: Optional[str] = None,
    ) -> ConflictRecord:
        conflict = ConflictRecord(
            entity_type=entity_type,
            entity_id=entity_id,
            local_version=local_version,
            server_version=server_version,
            local_data=local_data,
            server_data=server_data,
            metadata={
                "local_last_modified": local_last_modified,
                "server_last_modified": server_last_modified,
                "conflict_reason": reason,
                "auto_resolved": False,
                "entity_uuid": entity_uuid,
            },
        )
        self.db.insert(TABLE, {
            "id": conflict.conflict_id,
            "entity_type": entity_type,
            "entity_id": entity_id,
            "local_version": local_version,
            "server_version": server_version,
            "local_data": local_data,
            "server_data": server_data,
            "resolution_strategy": conflict.resolution_strategy,
            "is_resolved": False,
            "metadata": conflict.metadata,
            "created_at": conflict.created_at.isoformat(),
        })
        self.logger.warning(
            f"Conflict {conflict.conflict_id} on {entity_type} {entity_id}: "
            f"local v{local_version} vs server v{server_version}"
        )
        return conflict

    def get_conflict(self, conflict_id: str) -> ConflictRecord:
        return _to_record(self.db.require(TABLE, conflict_id, "Conflict"))

    def resolve_conflict(
        self,
        conflict_id: str,
        strategy: str,
        resolved_by: str,
        resolved_data: Optional[Dict[str, Any]] = None,
    ) -> Tuple[ConflictRecord, str]:
        """
        Resolve a conflict once.

        Returns:
            (resolved record, winner)

        Raises:
            ConflictAlreadyResolvedError: the conflict already carries a resolution
        """
        conflict = self.get_conflict(conflict_id)
        if conflict.is_resolved:
            raise ConflictAlreadyResolvedError(conflict_id)

        data, winner = resolve_data(conflict, strategy, resolved_data)
        now = utcnow()
        metadata = dict(conflict.metadata)
        metadata["auto_resolved"] = strategy != ResolutionStrategy.MANUAL.value
        metadata["winner"] = winner

        # Guarded on is_resolved so concurrent resolvers cannot both win
        changed = self.db.update_if(
            TABLE,
            conflict_id,
            {
                "is_resolved": True,
                "resolution_strategy": strategy,
                "resolved_data": data,
                "resolved_by": resolved_by,
                "resolved_at": now.isoformat(),
                "metadata": metadata,
            },
            "is_resolved = 0",
        )
        if not changed:
            raise ConflictAlreadyResolvedError(conflict_id)

        self.logger.info(f"Conflict {conflict_id} resolved via {strategy} ({winner} wins)")
        return self.get_conflict(conflict_id), winner

    # =========================================================================
    # QUERIES
    # =========================================================================

    def _filters(
        self,
        entity_type: Optional[str] = None,
        resolved: Optional[bool] = None,
        date_from: Optional[str] = None,
        date_to: Optional[str] = None,
    ) -> Tuple[Optional[str], List[Any]]:
        clauses, params = [], []
        if entity_type:
            clauses.append("entity_type = ?")
            params.append(entity_type.lower())
        if resolved is not None:
            clauses.append("is_resolved = ?")
            params.append(int(resolved))
        if date_from:
            clauses.append("created_at >= ?")
            params.append(self._bound(date_from, "dateFrom").isoformat())
        if date_to:
            clauses.append("created_at <= ?")
            params.append(self._bound(date_to, "dateTo").isoformat())
        return (" AND ".join(clauses) if clauses else None), params

    @staticmethod
    def _bound(value: str, field: str) -> datetime:
        try:
            return parse_timestamp(value)
        except ValueError as e:
            raise ValidationError(f"Invalid date: {value}", field=field) from e

    def list_conflicts(
        self,
        page: int = 1,
        limit: int = DEFAULT_PAGE_SIZE,
        entity_type: Optional[str] = None,
        resolved: Optional[bool] = None,
        date_from: Optional[str] = None,
        date_to: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Newest-first page of conflicts.

        Returns:
            {"data": [...], "pagination": {page, limit, total, totalPages, hasNext, hasPrev}}
        """
        page = max(1, int(page))
        limit = max(1, min(int(limit), MAX_PAGE_SIZE))
        where, params = self._filters(entity_type, resolved, date_from, date_to)

        total = self.db.count(TABLE, where, params)
        rows = self.db.get_all(
            TABLE,
            where=where,
            params=params,
            order_by="created_at DESC, id",
            limit=limit,
            offset=(page - 1) * limit,
        )
        total_pages = math.ceil(total / limit) if total else 0
        return {
            "data": [conflict_to_api(_to_record(r)) for r in rows],
            "pagination": {
                "page": page,
                "limit": limit,
                "total": total,
                "totalPages": total_pages,
                "hasNext": page < total_pages,
                "hasPrev": page > 1,
            },
        }

    def get_conflict_history(self, **filters: Any) -> List[ConflictRecord]:
        where, params = self._filters(**filters)
        return [_to_record(r) for r in self.db.get_all(TABLE, where=where, params=params, order_by="created_at DESC")]

    def get_summary(self) -> Dict[str, Any]:
        conflicts = self.get_conflict_history()
        total = len(conflicts)
        auto = sum(1 for c in conflicts if c.is_resolved and c.metadata.get("auto_resolved"))
        manual = sum(1 for c in conflicts if c.is_resolved and not c.metadata.get("auto_resolved"))
        by_type: Dict[str, int] = {}
        for c in conflicts:
            by_type[c.entity_type] = by_type.get(c.entity_type, 0) + 1

        return {
            "totalConflicts": total,
            "unresolvedConflicts": total - auto - manual,
            "autoResolvedConflicts": auto,
            "manuallyResolvedConflicts": manual,
            "resolutionRate": ((auto + manual) / total * 100) if total else 0,
            "conflictsByType": by_type,
            "recentConflicts": [
                {
                    "id": c.conflict_id,
                    "entityType": c.entity_type,
                    "entityId": c.entity_id,
                    "conflictDate": format_timestamp(c.created_at),
                    "isResolved": c.is_resolved,
                    "resolutionMethod": c.resolution_strategy.upper(),
                    "autoResolved": bool(c.metadata.get("auto_resolved")),
                }
                for c in conflicts[:RECENT_CONFLICTS]
            ],
            "lastUpdated": utcnow().isoformat(),
        }

    def export_csv(self, **filters: Any) -> str:
        """Render filtered conflicts as CSV text (entity types upper-cased)."""
        rows = []
        for c in self.get_conflict_history(**filters):
            meta = c.metadata
            rows.append([
                c.conflict_id,
                c.entity_type.upper(),
                c.entity_id,
                format_timestamp(c.created_at),
                c.resolution_strategy.upper(),
                c.local_version,
                c.server_version,
                "Yes" if c.is_resolved else "No",
                format_timestamp(c.resolved_at) or "",
                c.resolved_by or "",
                "Yes" if meta.get("auto_resolved") else "No",
                meta.get("conflict_reason") or "",
                meta.get("local_last_modified") or "",
                meta.get("server_last_modified") or "",
            ])

        buffer = io.StringIO()
        pd.DataFrame(rows, columns=CSV_COLUMNS).to_csv(buffer, index=False)
        return buffer.getvalue()

    @staticmethod
    def export_filename() -> str:
        return f"conflict-report-{utcnow().strftime('%Y-%m-%d')}.csv"
