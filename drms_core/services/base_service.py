# =============================================================================
# drms_core/services/base_service.py
# Shared Plumbing for Server-Side Services
# =============================================================================

from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from drms_core.auth.principal import PRIVILEGED_ROLES, Principal
from drms_core.data.database import Database
from drms_core.errors import AuthorizationError, ValidationError
from drms_core.logging import LogContext, get_logger


@dataclass
class ServiceResult:
    """
    Outcome of a write that may land on the server or in the offline queue.
    metadata["offline"] tells the caller which one happened.
    """
    success: bool
    data: Optional[Any] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def __bool__(self) -> bool:
        return self.success

    @classmethod
    def ok(cls, data: Any = None, metadata: Optional[Dict[str, Any]] = None) -> ServiceResult:
        return cls(success=True, data=data, metadata=metadata or {})


class BaseService:
    """
    Base for services backed by the server database.

    Usage:
        class DonorService(BaseService):
            def create_donor(self, data, actor):
                self.require_privileged(actor, "register donors")
                with self.log_operation("Registering donor"):
                    return self.db.insert("donors", data)
    """

    def __init__(self, db: Database):
        self.db = db
        self.logger = get_logger(self.__class__.__name__)

    def log_operation(self, operation: str) -> LogContext:
        """Times the block and logs start, completion or failure."""
        return LogContext(self.logger, operation)

    def require_privileged(self, actor: Principal, action: str) -> None:
        """Coordinators and admins only."""
        if not actor.is_privileged:
            self.logger.warning(f"User {actor.username} may not {action}")
            raise AuthorizationError(
                f"Only coordinators and admins may {action}",
                required_roles=list(PRIVILEGED_ROLES),
            )


def check_enum(enum_cls, value: Any, field: str) -> str:
    """Return the enum's wire value or raise ValidationError listing the allowed values."""
    try:
        return enum_cls(value).value
    except ValueError as e:
        allowed = ", ".join(m.value for m in enum_cls)
        raise ValidationError(f"Invalid {field}: {value}. Expected one of {allowed}", field=field) from e
