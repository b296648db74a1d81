"""
Request authorization.

Classifies request paths into exactly one of three classes and decides
whether a (possibly absent) identity may access them:

    public           no identity required
    admin_protected  identity with role admin
    user_protected   any authenticated identity

Classification order: exact public routes, then public prefixes, then the
static-asset heuristic (a dot in the path outside /api/). The heuristic only
exists so static files skip authorization; it is not a security boundary.

Everything here is a pure function of its inputs and safe to share across
concurrent requests.
"""
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import FrozenSet, Optional, Tuple, Union

from core.exceptions import ErrorCode
from core.identity import Identity, Role

logger = logging.getLogger(__name__)


class RouteClass(str, Enum):
    PUBLIC = "public"
    ADMIN_PROTECTED = "admin_protected"
    USER_PROTECTED = "user_protected"


DEFAULT_PUBLIC_ROUTES = frozenset({
    "/",
    "/auth/login",
    "/auth/register",
    "/auth/reset-password",
    "/sports",
    "/quizzes",
    "/help",
    "/contact",
    "/privacy",
    "/terms",
    "/health",
    "/ping",
})

DEFAULT_PUBLIC_PREFIXES = (
    "/api/public/",
    "/api/auth/",
    "/_next/",
    "/favicon.ico",
    "/robots.txt",
    "/sitemap.xml",
    "/images/",
    "/icons/",
)


@dataclass(frozen=True)
class Allow:
    allowed = True


@dataclass(frozen=True)
class Deny:
    reason: ErrorCode
    message: str = ""
    allowed = False


Decision = Union[Allow, Deny]


@dataclass(frozen=True)
class AuthorizationRules:
    """Ordered path classification rules."""
    public_routes: FrozenSet[str] = DEFAULT_PUBLIC_ROUTES
    public_prefixes: Tuple[str, ...] = DEFAULT_PUBLIC_PREFIXES
    admin_prefix: str = "/api/admin/"
    protected_prefix: str = "/api/protected/"
    api_prefix: str = "/api/"
    self_authenticated_paths: FrozenSet[str] = field(default_factory=frozenset)

    def is_public(self, path: str) -> bool:
        if path in self.public_routes:
            return True
        if any(path.startswith(prefix) for prefix in self.public_prefixes):
            return True
        # Static files
        if "." in path and not path.startswith(self.api_prefix):
            return True
        return False

    def classify(self, path: str) -> RouteClass:
        if self.is_public(path):
            return RouteClass.PUBLIC
        if path.startswith(self.admin_prefix):
            return RouteClass.ADMIN_PROTECTED
        return RouteClass.USER_PROTECTED

    def requires_admin(self, path: str) -> bool:
        return self.classify(path) is RouteClass.ADMIN_PROTECTED


def authorize(
    path: str,
    identity: Optional[Identity],
    require_admin: bool,
    rules: AuthorizationRules,
) -> Decision:
    """
    Decide whether identity may access path.

    1. public path -> Allow regardless of identity
    2. no identity -> Deny(Unauthenticated)
    3. require_admin and role != admin -> Deny(InsufficientRole)
    4. otherwise -> Allow
    """
    if rules.is_public(path):
        return Allow()

    if identity is None:
        return Deny(ErrorCode.UNAUTHENTICATED, "Authentication is required for this resource")

    if require_admin and identity.role is not Role.ADMIN:
        logger.warning(
            "Admin access denied",
            extra={"extra_fields": {"uid": identity.id, "role": identity.role.value, "path": path}},
        )
        return Deny(ErrorCode.INSUFFICIENT_ROLE, "Admin access is required for this resource")

    logger.debug(f"Access granted to {identity.id} for {path}")
    return Allow()


def can_access_resource(identity: Identity, owner_id: str, require_admin: bool = False) -> bool:
    """
    Resource-level check used by handlers.

    Admins can access any resource; everyone else only their own, and
    never when admin access is required.
    """
    if identity.role is Role.ADMIN:
        return True
    if require_admin:
        logger.warning(f"Admin access required but user {identity.id} is {identity.role.value}")
        return False
    has_access = identity.id == owner_id
    if not has_access:
        logger.warning(f"Resource access denied for {identity.id} (owner {owner_id})")
    return has_access
