# =============================================================================
# drms_core/errors/exceptions.py
# Exception Hierarchy for the Disaster Response Platform
# =============================================================================
"""
Every platform error carries a stable code, an HTTP status for the REST
layer and a details dict that is merged into the JSON error envelope.

Codes:
    DATA_001  validation        DATA_404  not found      DATA_409  duplicate
    AUTH_001  authentication    AUTH_003  authorization  RATE_001  rate limit
    SYNC_001  sync transport    SYNC_409  conflict already resolved
    STORE_001 local store       CONFIG_001 configuration
"""

from typing import Any, Dict, List, Optional


class DRMSError(Exception):
    """
    Base exception for all platform errors.

    Keyword context passed to the constructor lands in `details`; None and
    empty-list values are dropped so the envelope only carries what is known.
    """

    code = "DRMS_000"
    http_status = 500
    default_message = "Unexpected platform error"
    recoverable = True

    def __init__(
        self,
        message: Optional[str] = None,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        recoverable: Optional[bool] = None,
        **context: Any,
    ):
        self.message = message or self.default_message
        super().__init__(self.message)
        if code:
            self.code = code
        if recoverable is not None:
            self.recoverable = recoverable
        self.details = dict(details or {})
        self.details.update({k: v for k, v in context.items() if v is not None and v != []})

    def __str__(self) -> str:
        if not self.details:
            return f"[{self.code}] {self.message}"
        return f"[{self.code}] {self.message} | Details: {self.details}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error_type": type(self).__name__,
            "code": self.code,
            "message": self.message,
            "details": self.details,
            "recoverable": self.recoverable,
        }


# =============================================================================
# REQUEST / DATA
# =============================================================================

class ValidationError(DRMSError):
    """Input failed a field or business-rule check. `errors` lists every problem found."""

    code = "DATA_001"
    http_status = 400

    def __init__(self, message: str, field: Optional[str] = None, errors: Optional[List[str]] = None, **kwargs):
        super().__init__(message, field=field, errors=errors, **kwargs)


class NotFoundError(DRMSError):
    code = "DATA_404"
    http_status = 404

    def __init__(self, message: str, resource: Optional[str] = None, resource_id: Optional[str] = None, **kwargs):
        super().__init__(message, resource=resource, resource_id=resource_id, **kwargs)


class DuplicateRecordError(DRMSError):
    """A uniqueness rule rejected the write; `existing_id` names the row that won."""

    code = "DATA_409"
    http_status = 409

    def __init__(self, message: str, resource: Optional[str] = None, existing_id: Optional[str] = None, **kwargs):
        super().__init__(message, resource=resource, existing_id=existing_id, **kwargs)
        self.existing_id = existing_id


# =============================================================================
# AUTH
# =============================================================================

class AuthenticationError(DRMSError):
    code = "AUTH_001"
    http_status = 401
    default_message = "Authentication required"


class AuthorizationError(DRMSError):
    """
    Role or assignment check failed. Field users touching entities outside
    their assignments get the offending ids under `unauthorizedEntities`.
    """

    code = "AUTH_003"
    http_status = 403
    default_message = "Insufficient permissions"

    def __init__(
        self,
        message: Optional[str] = None,
        required_roles: Optional[List[str]] = None,
        unauthorized_entities: Optional[List[str]] = None,
        **kwargs,
    ):
        super().__init__(
            message,
            required_roles=required_roles,
            unauthorizedEntities=unauthorized_entities,
            **kwargs,
        )


class RateLimitError(DRMSError):
    code = "RATE_001"
    http_status = 429
    default_message = "Rate limit exceeded"

    def __init__(self, message: Optional[str] = None, retry_after: Optional[int] = None, **kwargs):
        super().__init__(message, retry_after=retry_after, **kwargs)


# =============================================================================
# SYNC / LOCAL STORE
# =============================================================================

class SyncError(DRMSError):
    """
    The remote side of a sync failed. `status_code` is None when the server
    was never reached, which the device treats as going offline.
    """

    code = "SYNC_001"
    http_status = 503

    def __init__(self, message: str, operation: Optional[str] = None, status_code: Optional[int] = None, **kwargs):
        super().__init__(message, operation=operation, status_code=status_code, **kwargs)
        self.status_code = status_code


class ConflictAlreadyResolvedError(DRMSError):
    code = "SYNC_409"
    http_status = 409
    default_message = "Conflict already resolved"

    def __init__(self, conflict_id: str, **kwargs):
        super().__init__(conflict_id=conflict_id, **kwargs)


class LocalStoreCorruptionError(DRMSError):
    """A cached row could not be decrypted or parsed."""

    code = "STORE_001"

    def __init__(self, message: str, table: Optional[str] = None, record_id: Optional[str] = None, **kwargs):
        super().__init__(message, table=table, record_id=record_id, **kwargs)


# =============================================================================
# CONFIGURATION
# =============================================================================

class ConfigurationError(DRMSError):
    code = "CONFIG_001"
    recoverable = False

    def __init__(self, message: str, config_key: Optional[str] = None, expected_type: Optional[str] = None, **kwargs):
        super().__init__(message, config_key=config_key, expected_type=expected_type, **kwargs)
