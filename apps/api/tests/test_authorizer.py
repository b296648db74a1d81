"""
Tests for request authorization: path classification and decisions.
"""
import pytest

from core.authorizer import (
    Allow,
    AuthorizationRules,
    Deny,
    RouteClass,
    authorize,
    can_access_resource,
)
from core.exceptions import ErrorCode
from core.identity import Identity, Role, decode_header_value

RULES = AuthorizationRules()

PUBLIC_PATHS = [
    "/",
    "/auth/login",
    "/health",
    "/api/public/health",
    "/api/auth/session",
    "/_next/static/chunk.js",
    "/favicon.ico",
    "/images/logo.png",
    "/styles/site.css",
]

ADMIN_PATHS = [
    "/api/admin/form-templates",
    "/api/admin/users/u1/role",
    "/api/admin/analytics/students/s1/templates/t1",
]

PROTECTED_PATHS = [
    "/api/protected/profile",
    "/api/protected/forms/entries",
    "/api/protected/analytics/t1",
]


def identity_with(role: Role, uid: str = "u1") -> Identity:
    return Identity(id=uid, email=f"{uid}@example.com", role=role, email_verified=True)


ALL_IDENTITIES = [None] + [identity_with(role) for role in Role]


class TestClassification:
    """Every path falls into exactly one class"""

    @pytest.mark.parametrize("path", PUBLIC_PATHS)
    def test_public_paths(self, path):
        assert RULES.classify(path) is RouteClass.PUBLIC

    @pytest.mark.parametrize("path", ADMIN_PATHS)
    def test_admin_paths(self, path):
        assert RULES.classify(path) is RouteClass.ADMIN_PROTECTED
        assert RULES.requires_admin(path)

    @pytest.mark.parametrize("path", PROTECTED_PATHS + ["/dashboard", "/admin"])
    def test_everything_else_is_user_protected(self, path):
        assert RULES.classify(path) is RouteClass.USER_PROTECTED

    def test_dotted_api_path_is_not_static(self):
        """The static-asset heuristic never applies under /api/"""
        assert RULES.classify("/api/admin/export.csv") is RouteClass.ADMIN_PROTECTED
        assert RULES.classify("/api/protected/report.pdf") is RouteClass.USER_PROTECTED

    def test_exact_public_route_is_not_a_prefix(self):
        """/health is public, /healthz is not"""
        assert RULES.classify("/healthz") is RouteClass.USER_PROTECTED


class TestAuthorize:
    """authorize() decisions"""

    @pytest.mark.parametrize("path", PUBLIC_PATHS)
    @pytest.mark.parametrize("identity", ALL_IDENTITIES)
    @pytest.mark.parametrize("require_admin", [True, False])
    def test_public_paths_always_allowed(self, path, identity, require_admin):
        assert isinstance(authorize(path, identity, require_admin, RULES), Allow)

    @pytest.mark.parametrize("path", ADMIN_PATHS)
    @pytest.mark.parametrize("role", [r for r in Role if r is not Role.ADMIN])
    def test_admin_paths_deny_non_admins(self, path, role):
        decision = authorize(path, identity_with(role), True, RULES)
        assert isinstance(decision, Deny)
        assert decision.reason is ErrorCode.INSUFFICIENT_ROLE

    @pytest.mark.parametrize("path", ADMIN_PATHS)
    def test_admin_paths_allow_admins(self, path):
        assert isinstance(authorize(path, identity_with(Role.ADMIN), True, RULES), Allow)

    @pytest.mark.parametrize("path", PROTECTED_PATHS + ADMIN_PATHS)
    @pytest.mark.parametrize("require_admin", [True, False])
    def test_missing_identity_is_unauthenticated(self, path, require_admin):
        decision = authorize(path, None, require_admin, RULES)
        assert isinstance(decision, Deny)
        assert decision.reason is ErrorCode.UNAUTHENTICATED

    @pytest.mark.parametrize("role", list(Role))
    def test_protected_paths_allow_any_role(self, role):
        assert isinstance(authorize("/api/protected/profile", identity_with(role), False, RULES), Allow)

    def test_decisions_are_flagged(self):
        assert Allow().allowed is True
        assert Deny(ErrorCode.UNAUTHENTICATED).allowed is False


class TestResourceAccess:
    """can_access_resource()"""

    def test_owner_can_access(self):
        assert can_access_resource(identity_with(Role.STUDENT, "s1"), "s1")

    def test_other_user_cannot_access(self):
        assert not can_access_resource(identity_with(Role.COACH, "c1"), "s1")

    def test_admin_can_access_anything(self):
        assert can_access_resource(identity_with(Role.ADMIN, "a1"), "s1", require_admin=True)

    def test_owner_denied_when_admin_required(self):
        assert not can_access_resource(identity_with(Role.STUDENT, "s1"), "s1", require_admin=True)


class TestRoleParsing:
    """Role claims map onto the closed Role set"""

    def test_missing_claim_defaults_to_student(self):
        assert Role.parse(None) is Role.STUDENT
        assert Role.parse("") is Role.STUDENT

    def test_known_roles_case_insensitive(self):
        assert Role.parse("ADMIN") is Role.ADMIN
        assert Role.parse("coach") is Role.COACH

    def test_unknown_role_is_rejected(self):
        assert Role.parse("superuser") is None


class TestIdentityHeaders:
    """Forwarded header values"""

    def test_ascii_values_unchanged(self):
        headers = Identity(id="s1", email="s1+tag@example.com", role=Role.COACH).to_headers()
        assert headers == {"x-user-id": "s1", "x-user-role": "coach", "x-user-email": "s1+tag@example.com"}

    def test_non_ascii_values_are_latin1_safe(self):
        headers = Identity(id="用户-1", email="josé@exämple.com", role=Role.STUDENT).to_headers()
        for value in headers.values():
            value.encode("latin-1")
        assert decode_header_value(headers["x-user-id"]) == "用户-1"
        assert decode_header_value(headers["x-user-email"]) == "josé@exämple.com"
