"""
Authentication and authorization dependencies.

Provides FastAPI dependencies for handlers behind the edge middleware:
- The trusted identity forwarded by the middleware
- Role-based access control (defence in depth; the middleware is the boundary)
- Access to the explicitly constructed service container
"""
from fastapi import Depends, Request

from core.exceptions import ForbiddenError, UnauthorizedError
from core.identity import Identity, Role


def get_container(request: Request):
    """Service container built once at startup and attached to the app."""
    return request.app.state.container


def get_trusted_identity(request: Request) -> Identity:
    """
    Identity validated by EdgeAuthorizationMiddleware.

    Read from request.state rather than from headers so a handler mounted
    outside the checked namespaces can never be fooled by client input.
    """
    identity = getattr(request.state, "identity", None)
    if identity is None:
        raise UnauthorizedError("Not authenticated")
    return identity


def require_role(allowed_roles: list[Role]):
    """
    Dependency factory for role-based access control.

    Usage:
        @router.get("/coach-only")
        def coach_endpoint(identity: Identity = Depends(require_role([Role.COACH, Role.ADMIN]))):
            ...
    """
    def role_checker(identity: Identity = Depends(get_trusted_identity)) -> Identity:
        if identity.role not in allowed_roles:
            raise ForbiddenError(
                f"Access denied. Required roles: {[r.value for r in allowed_roles]}"
            )
        return identity

    return role_checker


def require_admin(
    identity: Identity = Depends(require_role([Role.ADMIN]))
) -> Identity:
    """Require admin role."""
    return identity
