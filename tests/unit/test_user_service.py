"""
Tests for users, login and bearer tokens.
"""

import pytest

from drms_core.errors import AuthenticationError, NotFoundError, ValidationError


class TestUserService:
    """Tests for UserService"""

    def test_authenticate_by_username_or_email(self, registry, assessor):
        """Either login name works and roles come back on the principal"""
        by_name = registry.users.authenticate("assessor", "password123")
        by_email = registry.users.authenticate("assessor@drms.test", "password123")

        assert by_name.id == by_email.id == assessor.id
        assert by_name.roles == ["ASSESSOR"]

    def test_wrong_password(self, registry, assessor):
        """Bad credentials raise AuthenticationError"""
        with pytest.raises(AuthenticationError) as exc_info:
            registry.users.authenticate("assessor", "wrong-password")

        assert exc_info.value.http_status == 401

    def test_locked_account(self, registry, assessor):
        """Locked accounts cannot log in and are left out of the login form"""
        registry.db.update("users", assessor.id, {"is_locked": True})

        with pytest.raises(AuthenticationError):
            registry.users.authenticate("assessor", "password123")
        assert "assessor" not in registry.users.login_credentials()["usernames"]

    def test_short_password_rejected(self, registry):
        """Passwords need six characters"""
        with pytest.raises(ValidationError):
            registry.users.create_user("x@drms.test", "shorty", "abc", "Shorty")

    def test_unknown_role_rejected(self, registry):
        """Roles must exist"""
        with pytest.raises(ValidationError):
            registry.users.create_user("x@drms.test", "pilot", "password123", "Pilot", roles=["PILOT"])

    def test_login_credentials_shape(self, registry, admin):
        """Credentials match what streamlit-authenticator expects"""
        entry = registry.users.login_credentials()["usernames"]["admin"]

        assert entry["email"] == "admin@drms.test"
        assert entry["password"].startswith("$2")
        assert set(entry["roles"]) == {"ADMIN", "COORDINATOR"}

    def test_public_record_hides_hash(self, registry, admin):
        """password_hash never leaves the service"""
        assert "password_hash" not in registry.users.get_user(admin.id)

    def test_principal_for_username(self, registry, coordinator):
        """Lookup by username returns the principal"""
        principal = registry.users.principal_for_username("coord")

        assert principal.id == coordinator.id
        assert principal.is_privileged
        with pytest.raises(NotFoundError):
            registry.users.principal_for_username("ghost")

    def test_list_users_by_role(self, registry, assessor, responder):
        """Role filter narrows the list"""
        assert [u["username"] for u in registry.users.list_users(role="RESPONDER")] == ["responder"]


class TestPrincipal:
    """Tests for Principal role helpers"""

    def test_primary_role_prefers_privilege(self, admin, assessor):
        """The highest-privilege role wins"""
        assert admin.primary_role == "ADMIN"
        assert assessor.primary_role == "ASSESSOR"
        assert not assessor.is_privileged

    def test_visible_pages(self, admin, assessor):
        """Navigation only lists pages the role may open"""
        from drms_core.auth.navigation import visible_pages

        assessor_pages = [label for _, label, _ in visible_pages(assessor)]

        assert "Assessments" in assessor_pages
        assert "Sync Queue" in assessor_pages
        assert "Administration" not in assessor_pages
        assert len(visible_pages(admin)) == 8


class TestTokenStore:
    """Tests for bearer tokens"""

    def test_issue_and_resolve(self, assessor):
        """Issued tokens resolve to the principal until revoked"""
        from drms_core.auth.tokens import TokenStore

        store = TokenStore()
        token = store.issue(assessor)

        assert store.resolve(token) is assessor
        assert store.revoke(token) is True
        with pytest.raises(AuthenticationError):
            store.resolve(token)

    def test_missing_and_expired(self, assessor):
        """Missing and expired tokens are rejected"""
        from drms_core.auth.tokens import TokenStore

        store = TokenStore(ttl_seconds=-1)
        token = store.issue(assessor)

        with pytest.raises(AuthenticationError):
            store.resolve(None)
        with pytest.raises(AuthenticationError):
            store.resolve(token)
        assert store.purge_expired() == 0


class TestErrors:
    """Tests for the exception hierarchy"""

    def test_to_dict(self):
        """Errors serialize with code and details"""
        error = ValidationError("Bad priority", field="priority")

        assert error.to_dict() == {
            "error_type": "ValidationError",
            "code": "DATA_001",
            "message": "Bad priority",
            "details": {"field": "priority"},
            "recoverable": True,
        }
        assert str(error) == "[DATA_001] Bad priority | Details: {'field': 'priority'}"

    @pytest.mark.parametrize("name,status", [
        ("ValidationError", 400),
        ("AuthenticationError", 401),
        ("AuthorizationError", 403),
        ("NotFoundError", 404),
        ("ConflictAlreadyResolvedError", 409),
        ("RateLimitError", 429),
        ("SyncError", 503),
    ])
    def test_http_status(self, name, status):
        """Each error maps onto one HTTP status"""
        import drms_core.errors as errors

        assert getattr(errors, name).http_status == status
