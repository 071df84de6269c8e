# =============================================================================
# drms_core/services/user_service.py
# Users, Roles and Login
# =============================================================================

from __future__ import annotations
from typing import Any, Dict, Iterable, List, Optional

from drms_core.auth.passwords import hash_password, verify_password
from drms_core.auth.principal import Principal
from drms_core.data.database import Database
from drms_core.errors import AuthenticationError, NotFoundError, ValidationError
from drms_core.models.enums import RoleName
from drms_core.models.records import utcnow
from drms_core.services.base_service import BaseService

ROLE_DESCRIPTIONS = {
    RoleName.ASSESSOR.value: "Conducts rapid assessments at assigned entities",
    RoleName.COORDINATOR.value: "Coordinates incidents, assignments and verification",
    RoleName.RESPONDER.value: "Plans and delivers responses at assigned entities",
    RoleName.DONOR.value: "Pledges and tracks commitments",
    RoleName.ADMIN.value: "Administers users and system settings",
}


class UserService(BaseService):
    """User accounts, role membership and credential checks."""

    def __init__(self, db: Database):
        super().__init__(db)

    def ensure_roles(self) -> None:
        """Create the fixed role rows if missing."""
        for name, description in ROLE_DESCRIPTIONS.items():
            if self.db.find_one("roles", "name = ?", [name]) is None:
                self.db.insert("roles", {"name": name, "description": description})

    def create_user(
        self,
        email: str,
        username: str,
        password: str,
        name: str,
        roles: Iterable[str] = (),
        organization: Optional[str] = None,
        phone: Optional[str] = None,
    ) -> Dict[str, Any]:
        if not password or len(password) < 6:
            raise ValidationError("Password must be at least 6 characters", field="password")
        roles = list(roles)

        with self.db.transaction():
            user = self.db.insert("users", {
                "email": email,
                "username": username,
                "password_hash": hash_password(password),
                "name": name,
                "organization": organization,
                "phone": phone,
            })
            for role in roles:
                self.assign_role(user["id"], role)

        self.logger.info(f"Created user {username} with roles {roles}")
        return self._public(user)

    def assign_role(self, user_id: str, role_name: str) -> None:
        role_name = role_name.value if isinstance(role_name, RoleName) else str(role_name)
        role = self.db.find_one("roles", "name = ?", [role_name])
        if role is None:
            raise ValidationError(f"Unknown role: {role_name}", field="role")
        self.db.insert("user_roles", {"user_id": user_id, "role_id": role["id"]})

    def get_user_roles(self, user_id: str) -> List[str]:
        rows = self.db.query(
            """
            SELECT r.name FROM user_roles ur
            JOIN roles r ON r.id = ur.role_id
            WHERE ur.user_id = ?
            ORDER BY r.name
            """,
            [user_id],
        )
        return [row["name"] for row in rows]

    def get_user(self, user_id: str) -> Dict[str, Any]:
        user = self.db.require("users", user_id, "User")
        return self._public(user)

    def list_users(self, role: Optional[str] = None) -> List[Dict[str, Any]]:
        if role:
            rows = self.db.query(
                """
                SELECT u.id FROM users u
                JOIN user_roles ur ON ur.user_id = u.id
                JOIN roles r ON r.id = ur.role_id
                WHERE r.name = ?
                ORDER BY u.name
                """,
                [role],
            )
            return [self.get_user(row["id"]) for row in rows]
        return [self._public(u) for u in self.db.get_all("users", order_by="name")]

    def authenticate(self, username: str, password: str) -> Principal:
        """
        Check credentials and return the Principal.

        Raises:
            AuthenticationError: unknown user, wrong password, or locked account
        """
        user = self.db.find_one("users", "username = ? OR email = ?", [username, username])
        if user is None or not verify_password(password, user["password_hash"]):
            self.logger.warning(f"Failed login for {username}")
            raise AuthenticationError("Invalid username or password")
        if not user["is_active"] or user["is_locked"]:
            raise AuthenticationError("Account is inactive or locked")

        self.db.update("users", user["id"], {"last_login": utcnow().isoformat()})
        return self.principal_for(user["id"])

    def principal_for_username(self, username: str) -> Principal:
        user = self.db.find_one("users", "username = ?", [username])
        if user is None:
            raise NotFoundError("User not found", resource="users", resource_id=username)
        return self.principal_for(user["id"])

    def login_credentials(self) -> Dict[str, Any]:
        """Active, unlocked accounts in the streamlit-authenticator credentials shape."""
        usernames: Dict[str, Any] = {}
        for user in self.db.get_all("users", order_by="username"):
            if not user["is_active"] or user["is_locked"]:
                continue
            usernames[user["username"]] = {
                "name": user["name"],
                "email": user["email"],
                "password": user["password_hash"],
                "roles": self.get_user_roles(user["id"]),
            }
        return {"usernames": usernames}

    def principal_for(self, user_id: str) -> Principal:
        user = self.db.get_by_id("users", user_id)
        if user is None:
            raise NotFoundError("User not found", resource="users", resource_id=user_id)
        return Principal(
            id=user["id"],
            username=user["username"],
            name=user["name"],
            email=user["email"],
            roles=self.get_user_roles(user_id),
        )

    def _public(self, user: Dict[str, Any]) -> Dict[str, Any]:
        record = {k: v for k, v in user.items() if k != "password_hash"}
        record["roles"] = self.get_user_roles(user["id"])
        return record
