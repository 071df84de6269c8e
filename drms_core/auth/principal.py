# =============================================================================
# drms_core/auth/principal.py
# Authenticated Caller
# =============================================================================

from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, Dict, List

from drms_core.models.enums import RoleName

PRIVILEGED_ROLES = (RoleName.COORDINATOR.value, RoleName.ADMIN.value)


@dataclass
class Principal:
    """The user on whose behalf a service call runs."""
    id: str
    username: str
    name: str = ""
    email: str = ""
    roles: List[str] = field(default_factory=list)

    def has_role(self, *roles: str) -> bool:
        wanted = {r.value if isinstance(r, RoleName) else r for r in roles}
        return any(role in wanted for role in self.roles)

    @property
    def is_privileged(self) -> bool:
        """Coordinators and admins see and edit every entity."""
        return self.has_role(*PRIVILEGED_ROLES)

    @property
    def primary_role(self) -> str:
        # Highest-privilege role first
        order = ["ADMIN", "COORDINATOR", "RESPONDER", "ASSESSOR", "DONOR"]
        for role in order:
            if role in self.roles:
                return role
        return self.roles[0] if self.roles else ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "username": self.username,
            "name": self.name,
            "email": self.email,
            "roles": list(self.roles),
        }

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> Principal:
        return cls(
            id=raw["id"],
            username=raw.get("username", ""),
            name=raw.get("name", ""),
            email=raw.get("email", ""),
            roles=list(raw.get("roles", [])),
        )
