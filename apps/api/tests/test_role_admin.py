"""
Tests for role administration and the admin bootstrap endpoint.
"""
from unittest.mock import MagicMock, patch

import pytest
from firebase_admin import auth as firebase_auth
from firebase_admin.exceptions import FirebaseError

from core.exceptions import ForbiddenError, NotFoundError, ServiceUnavailableError, UnauthorizedError
from core.identity import Role
from services.identity_provider import FirebaseIdentityProvider, InMemoryIdentityProvider
from services.role_admin import RoleAdminService


@pytest.fixture
def provider(verifier):
    return InMemoryIdentityProvider(verifier, users={"u1": {"team": "blue"}})


@pytest.fixture
def roles(provider):
    return RoleAdminService(provider, setup_secret="bootstrap-secret")


class TestRoleAdminService:
    """RoleAdminService"""

    def test_assign_role_keeps_other_claims(self, roles, provider):
        claims = roles.assign_role("u1", Role.COACH, assigned_by="admin-1")
        assert claims == {"team": "blue", "role": "coach", "admin": False}
        assert provider.get_user_claims("u1")["role"] == "coach"

    def test_assign_admin_sets_flag(self, roles, provider):
        roles.assign_role("u1", Role.ADMIN)
        assert provider.get_user_claims("u1")["admin"] is True

    def test_unknown_user(self, roles):
        with pytest.raises(NotFoundError):
            roles.assign_role("ghost", Role.STUDENT)

    def test_bootstrap_admin(self, roles, provider):
        user = roles.bootstrap_admin("u1", "u1@example.com", "bootstrap-secret")
        assert user == {"uid": "u1", "email": "u1@example.com", "role": "admin"}
        claims = provider.get_user_claims("u1")
        assert claims["admin"] is True
        assert "adminSetupDate" in claims

    def test_bootstrap_wrong_secret(self, roles):
        with pytest.raises(UnauthorizedError):
            roles.bootstrap_admin("u1", "u1@example.com", "guess")

    def test_bootstrap_disabled_without_secret(self, provider):
        with pytest.raises(ForbiddenError):
            RoleAdminService(provider, setup_secret=None).bootstrap_admin("u1", "u1@example.com", "anything")

    def test_role_status(self, roles):
        assert roles.get_role_status("u1") == {
            "uid": "u1",
            "role": "student",
            "is_admin": False,
            "admin_setup_date": None,
        }
        roles.bootstrap_admin("u1", "u1@example.com", "bootstrap-secret")
        status = roles.get_role_status("u1")
        assert status["role"] == "admin"
        assert status["is_admin"] is True


class TestFirebaseIdentityProvider:
    """Firebase claims adapter with the SDK mocked"""

    @pytest.fixture(autouse=True)
    def no_app_init(self):
        with patch("services.identity_provider.ensure_firebase_app"):
            yield

    def test_get_claims(self, verifier):
        user = MagicMock(custom_claims={"role": "coach"})
        with patch.object(firebase_auth, "get_user", return_value=user):
            assert FirebaseIdentityProvider(verifier).get_user_claims("u1") == {"role": "coach"}

    def test_get_claims_none(self, verifier):
        with patch.object(firebase_auth, "get_user", return_value=MagicMock(custom_claims=None)):
            assert FirebaseIdentityProvider(verifier).get_user_claims("u1") == {}

    def test_unknown_user(self, verifier):
        error = firebase_auth.UserNotFoundError("no user")
        with patch.object(firebase_auth, "set_custom_user_claims", side_effect=error):
            with pytest.raises(NotFoundError):
                FirebaseIdentityProvider(verifier).set_role_claims("ghost", {"role": "admin"})

    def test_provider_outage(self, verifier):
        error = FirebaseError("UNAVAILABLE", "down")
        with patch.object(firebase_auth, "get_user", side_effect=error):
            with pytest.raises(ServiceUnavailableError):
                FirebaseIdentityProvider(verifier).get_user_claims("u1")

    def test_set_claims(self, verifier):
        with patch.object(firebase_auth, "set_custom_user_claims") as set_claims:
            FirebaseIdentityProvider(verifier).set_role_claims("u1", {"role": "parent"})
        set_claims.assert_called_once_with("u1", {"role": "parent"})


class TestSetupAdminApi:
    """/api/admin/setup-admin"""

    @pytest.fixture(autouse=True)
    def registered_user(self, container):
        container.identity_provider.register_user("u1")

    def test_bootstrap(self, client):
        response = client.post(
            "/api/admin/setup-admin",
            json={"uid": "u1", "email": "u1@example.com", "secretKey": "bootstrap-secret"},
        )
        assert response.status_code == 200
        assert response.json()["user"]["role"] == "admin"

    def test_wrong_secret(self, client):
        response = client.post(
            "/api/admin/setup-admin",
            json={"uid": "u1", "email": "u1@example.com", "secretKey": "nope"},
        )
        assert response.status_code == 401
        assert response.json()["error"]["code"] == "InvalidCredential"

    def test_status_requires_secret_header(self, client):
        assert client.get("/api/admin/setup-admin", params={"uid": "u1"}).status_code == 401
        response = client.get(
            "/api/admin/setup-admin",
            params={"uid": "u1"},
            headers={"X-Admin-Setup-Secret": "bootstrap-secret"},
        )
        assert response.status_code == 200
        assert response.json()["user"]["role"] == "student"

    def test_unknown_user(self, client):
        response = client.post(
            "/api/admin/setup-admin",
            json={"uid": "ghost", "email": "g@example.com", "secretKey": "bootstrap-secret"},
        )
        assert response.status_code == 404


class TestAssignRoleApi:
    """/api/admin/users/{uid}/role"""

    def test_admin_assigns_role(self, client, auth_header, container):
        container.identity_provider.register_user("u2")
        response = client.post(
            "/api/admin/users/u2/role", json={"role": "coach"}, headers=auth_header("boss", role="admin")
        )
        assert response.status_code == 200
        assert response.json()["role"] == "coach"
        assert container.identity_provider.get_user_claims("u2")["role"] == "coach"

    def test_unknown_role_value(self, client, auth_header):
        response = client.post(
            "/api/admin/users/u2/role", json={"role": "superuser"}, headers=auth_header("boss", role="admin")
        )
        assert response.status_code == 422

    def test_non_admin_rejected(self, client, auth_header):
        response = client.post("/api/admin/users/u2/role", json={"role": "admin"}, headers=auth_header("s1"))
        assert response.status_code == 401
        assert response.json()["error"]["code"] == "InsufficientRole"
