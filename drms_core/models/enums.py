# =============================================================================
# drms_core/models/enums.py
# Domain Enumerations
# =============================================================================

from enum import Enum


class RoleName(str, Enum):
    ASSESSOR = "ASSESSOR"
    COORDINATOR = "COORDINATOR"
    RESPONDER = "RESPONDER"
    DONOR = "DONOR"
    ADMIN = "ADMIN"


class EntityType(str, Enum):
    COMMUNITY = "COMMUNITY"
    WARD = "WARD"
    LGA = "LGA"
    STATE = "STATE"
    FACILITY = "FACILITY"
    CAMP = "CAMP"


class AssessmentType(str, Enum):
    HEALTH = "HEALTH"
    WASH = "WASH"
    SHELTER = "SHELTER"
    FOOD = "FOOD"
    SECURITY = "SECURITY"
    POPULATION = "POPULATION"


class ResponseType(str, Enum):
    HEALTH = "HEALTH"
    WASH = "WASH"
    SHELTER = "SHELTER"
    FOOD = "FOOD"
    SECURITY = "SECURITY"
    POPULATION = "POPULATION"
    LOGISTICS = "LOGISTICS"


class ResponseStatus(str, Enum):
    PLANNED = "PLANNED"
    DELIVERED = "DELIVERED"


class Priority(str, Enum):
    CRITICAL = "CRITICAL"
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"


class AssessmentStatus(str, Enum):
    DRAFT = "DRAFT"
    SUBMITTED = "SUBMITTED"
    VERIFIED = "VERIFIED"
    PUBLISHED = "PUBLISHED"


class VerificationStatus(str, Enum):
    DRAFT = "DRAFT"
    SUBMITTED = "SUBMITTED"
    VERIFIED = "VERIFIED"
    AUTO_VERIFIED = "AUTO_VERIFIED"
    REJECTED = "REJECTED"


class SyncStatus(str, Enum):
    """Sync state of a record, both server-side and in the device cache."""
    PENDING = "PENDING"
    SYNCING = "SYNCING"
    SYNCED = "SYNCED"
    FAILED = "FAILED"
    CONFLICT = "CONFLICT"
    LOCAL = "LOCAL"


class DonorType(str, Enum):
    INDIVIDUAL = "INDIVIDUAL"
    ORGANIZATION = "ORGANIZATION"
    GOVERNMENT = "GOVERNMENT"
    NGO = "NGO"
    CORPORATE = "CORPORATE"


class IncidentStatus(str, Enum):
    ACTIVE = "ACTIVE"
    CONTAINED = "CONTAINED"
    RESOLVED = "RESOLVED"


class CommitmentStatus(str, Enum):
    PLANNED = "PLANNED"
    PARTIAL = "PARTIAL"
    COMPLETE = "COMPLETE"
    CANCELLED = "CANCELLED"


class ReportType(str, Enum):
    ASSESSMENT = "ASSESSMENT"
    RESPONSE = "RESPONSE"
    ENTITY = "ENTITY"
    DONOR = "DONOR"
    CUSTOM = "CUSTOM"


# Sync-layer vocabularies use lower-case wire values
class SyncEntityType(str, Enum):
    ASSESSMENT = "assessment"
    RESPONSE = "response"
    ENTITY = "entity"
    INCIDENT = "incident"


class SyncAction(str, Enum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


class ResolutionStrategy(str, Enum):
    LAST_WRITE_WINS = "last_write_wins"
    MANUAL = "manual"
    MERGE = "merge"


# Statuses that make an assessment usable for response planning
VERIFIED_STATUSES = (VerificationStatus.VERIFIED.value, VerificationStatus.AUTO_VERIFIED.value)
