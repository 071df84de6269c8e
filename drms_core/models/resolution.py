# =============================================================================
# drms_core/models/resolution.py
# Conflict Resolution Strategies
# =============================================================================
"""
Whole-record resolution strategies shared by the device resolver and the
server conflict service.

- last_write_wins: newer modification timestamp wins; ties go to the server
- manual: operator supplies the resolved record
- merge: local fields overlay server fields, version bumped past both
"""

from __future__ import annotations
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Tuple

from drms_core.errors import ValidationError
from drms_core.models.enums import ResolutionStrategy
from drms_core.models.records import ConflictRecord, parse_timestamp, utcnow

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def last_modified_of(data: Dict[str, Any]) -> Optional[datetime]:
    """Pick the modification timestamp out of a record payload."""
    for key in ("lastModified", "last_modified", "updated_at", "updatedAt"):
        if data.get(key):
            return parse_timestamp(data[key])
    return None


def pick_last_write_wins(conflict: ConflictRecord) -> Tuple[str, Dict[str, Any]]:
    """
    Return ("local" | "server", winning data).

    Missing timestamps count as the epoch. Equal timestamps favour the
    server so that every device reaches the same answer.
    """
    local_ts = parse_timestamp(conflict.metadata.get("local_last_modified")) or _EPOCH
    server_ts = parse_timestamp(conflict.metadata.get("server_last_modified")) or _EPOCH

    if local_ts > server_ts:
        return "local", dict(conflict.local_data)
    return "server", dict(conflict.server_data)


def merge_records(conflict: ConflictRecord) -> Dict[str, Any]:
    local_ts = parse_timestamp(conflict.metadata.get("local_last_modified")) or _EPOCH
    server_ts = parse_timestamp(conflict.metadata.get("server_last_modified")) or _EPOCH

    merged = {**conflict.server_data, **conflict.local_data}
    merged["lastModified"] = max(local_ts, server_ts).isoformat()
    merged["version"] = max(conflict.local_version, conflict.server_version) + 1
    merged["_mergedAt"] = utcnow().isoformat()
    merged["_mergeSource"] = "auto_merge"
    return merged


def resolve_data(
    conflict: ConflictRecord,
    strategy: str,
    manual_data: Optional[Dict[str, Any]] = None,
) -> Tuple[Dict[str, Any], str]:
    """
    Compute the resolved payload for a conflict.

    Returns:
        (resolved data, winner) where winner is "local", "server",
        "manual" or "merged"
    """
    if strategy == ResolutionStrategy.LAST_WRITE_WINS.value:
        winner, data = pick_last_write_wins(conflict)
        return data, winner
    if strategy == ResolutionStrategy.MANUAL.value:
        if not manual_data:
            raise ValidationError("Manual resolution requires resolved data", field="resolvedData")
        return dict(manual_data), "manual"
    if strategy == ResolutionStrategy.MERGE.value:
        return merge_records(conflict), "merged"
    raise ValidationError(f"Unsupported resolution strategy: {strategy}", field="strategy")
