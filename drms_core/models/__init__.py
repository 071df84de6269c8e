# =============================================================================
# drms_core/models/__init__.py
# Domain Vocabulary and Sync Records
# =============================================================================

from .enums import (
    RoleName,
    EntityType,
    AssessmentType,
    ResponseType,
    ResponseStatus,
    Priority,
    AssessmentStatus,
    VerificationStatus,
    SyncStatus,
    DonorType,
    IncidentStatus,
    CommitmentStatus,
    ReportType,
    SyncEntityType,
    SyncAction,
    ResolutionStrategy,
    VERIFIED_STATUSES,
)
from .records import (
    QueueItem,
    ConflictRecord,
    SyncResult,
    utcnow,
    new_id,
    parse_timestamp,
    format_timestamp,
)

__all__ = [
    "RoleName",
    "EntityType",
    "AssessmentType",
    "ResponseType",
    "ResponseStatus",
    "Priority",
    "AssessmentStatus",
    "VerificationStatus",
    "SyncStatus",
    "DonorType",
    "IncidentStatus",
    "CommitmentStatus",
    "ReportType",
    "SyncEntityType",
    "SyncAction",
    "ResolutionStrategy",
    "VERIFIED_STATUSES",
    "QueueItem",
    "ConflictRecord",
    "SyncResult",
    "utcnow",
    "new_id",
    "parse_timestamp",
    "format_timestamp",
]
