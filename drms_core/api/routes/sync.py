"""
Offline sync endpoints: batch push, pull, conflict resolution and the
conflict report (list, CSV export, summary).
"""

from __future__ import annotations
from typing import Annotated, Any, Dict, Optional

from fastapi import APIRouter, Body, Depends, Header, Query
from fastapi.responses import Response

from drms_core.api.deps import get_current_user, get_registry, ok, require_role
from drms_core.api.schemas import SyncBatchRequest
from drms_core.auth.principal import Principal
from drms_core.logging import get_logger
from drms_core.services.conflict_service import DEFAULT_PAGE_SIZE
from drms_core.services.sync_service import DEFAULT_PULL_LIMIT
from drms_core.services.registry import ServiceRegistry

logger = get_logger(__name__)

router = APIRouter(prefix="/sync", tags=["sync"])

Registry = Annotated[ServiceRegistry, Depends(get_registry)]
CurrentUser = Annotated[Principal, Depends(get_current_user)]
Coordinator = Annotated[Principal, Depends(require_role("COORDINATOR", "ADMIN"))]


def _split(raw: Optional[str]):
    return [part.strip() for part in raw.split(",") if part.strip()] if raw else None


# =============================================================================
# PUSH / PULL
# =============================================================================

@router.post("/batch")
def sync_batch(
    body: SyncBatchRequest,
    registry: Registry,
    user: CurrentUser,
    x_client_id: Optional[str] = Header(None),
):
    """Apply a batch of offline mutations. The batch commits or rolls back as a whole."""
    results = registry.sync.process_batch(body.changes, user, client_id=x_client_id or user.id)
    counts: Dict[str, int] = {}
    for result in results:
        counts[result.status] = counts.get(result.status, 0) + 1
    logger.info(f"Processed {len(results)} changes for {user.username}: {counts}")
    return ok([r.to_dict() for r in results])


@router.get("/pull")
def sync_pull(
    registry: Registry,
    user: CurrentUser,
    last_sync_timestamp: Optional[str] = Query(None, alias="lastSyncTimestamp"),
    types: Optional[str] = None,
    limit: int = DEFAULT_PULL_LIMIT,
    entity_ids: Optional[str] = Query(None, alias="entityIds"),
):
    return ok(registry.sync.pull_changes(
        user,
        last_sync_timestamp=last_sync_timestamp,
        types=_split(types),
        limit=limit,
        entity_ids=_split(entity_ids),
    ))


@router.post("/resolve")
def sync_resolve(registry: Registry, user: CurrentUser, body: Dict[str, Any] = Body(...)):
    """Accepts one resolution, or {"resolutions": [...]} for bulk."""
    if isinstance(body.get("resolutions"), list):
        return ok(registry.sync.resolve_many(body["resolutions"], user))
    return ok(registry.sync.resolve(body, user))


# =============================================================================
# CONFLICT REPORT
# =============================================================================

def _conflict_filters(
    entity_type: Optional[str] = Query(None, alias="entityType"),
    resolved: Optional[bool] = None,
    date_from: Optional[str] = Query(None, alias="dateFrom"),
    date_to: Optional[str] = Query(None, alias="dateTo"),
) -> Dict[str, Any]:
    return {"entity_type": entity_type, "resolved": resolved, "date_from": date_from, "date_to": date_to}


ConflictFilters = Annotated[Dict[str, Any], Depends(_conflict_filters)]


@router.get("/conflicts")
def list_conflicts(
    registry: Registry,
    user: Coordinator,
    filters: ConflictFilters,
    page: int = 1,
    limit: int = DEFAULT_PAGE_SIZE,
):
    result = registry.conflicts.list_conflicts(page=page, limit=limit, **filters)
    return ok(result["data"], pagination=result["pagination"])


@router.get("/conflicts/export")
def export_conflicts(registry: Registry, user: Coordinator, filters: ConflictFilters):
    csv_text = registry.conflicts.export_csv(**filters)
    filename = registry.conflicts.export_filename()
    return Response(
        content=csv_text,
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.get("/conflicts/summary")
def conflict_summary(registry: Registry, user: Coordinator):
    return ok(registry.conflicts.get_summary())
