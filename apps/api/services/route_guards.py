"""
Client Route Guards

Server-side model of the UI route guards. They mirror the middleware's
rules so views can redirect before rendering, but they are advisory only:
the edge middleware and the handlers remain the trust boundary.

State machine: loading -> {authenticated, unauthenticated}. A redirect is
emitted exactly once per transition into a terminal state that disagrees
with what the guard requires; observing the same state again emits none.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from core.identity import Identity, Role, landing_path_for

LOGIN_PATH = "/auth/login"


class AuthState(str, Enum):
    LOADING = "loading"
    AUTHENTICATED = "authenticated"
    UNAUTHENTICATED = "unauthenticated"


class GuardAction(str, Enum):
    RENDER_LOADING = "render_loading"
    RENDER_CHILDREN = "render_children"
    RENDER_NOTHING = "render_nothing"


@dataclass(frozen=True)
class GuardDecision:
    action: GuardAction
    redirect_to: Optional[str] = None


class _RouteGuard(ABC):
    def __init__(self):
        self._terminal: Optional[AuthState] = None
        self._terminal_role: Optional[Role] = None

    @abstractmethod
    def _target(self, state: AuthState, identity: Optional[Identity]) -> Optional[str]:
        """Redirect target for a terminal state, or None if children may render."""

    def observe(self, state: AuthState, identity: Optional[Identity] = None) -> GuardDecision:
        if state is AuthState.LOADING:
            self._terminal = None
            self._terminal_role = None
            return GuardDecision(GuardAction.RENDER_LOADING)

        if state is AuthState.AUTHENTICATED and identity is None:
            raise ValueError("authenticated state requires an identity")

        role = identity.role if identity is not None else None
        is_transition = (state, role) != (self._terminal, self._terminal_role)
        self._terminal = state
        self._terminal_role = role

        target = self._target(state, identity)
        if target is None:
            return GuardDecision(GuardAction.RENDER_CHILDREN)
        return GuardDecision(GuardAction.RENDER_NOTHING, redirect_to=target if is_transition else None)


class ProtectedRouteGuard(_RouteGuard):
    """Renders children for authenticated users, optionally of one role."""

    def __init__(self, required_role: Optional[Role] = None, redirect_to: str = LOGIN_PATH):
        super().__init__()
        self.required_role = required_role
        self.redirect_to = redirect_to

    def _target(self, state, identity):
        if state is AuthState.UNAUTHENTICATED:
            return self.redirect_to
        if self.required_role is not None and identity.role is not self.required_role:
            return landing_path_for(identity.role)
        return None


class AdminRouteGuard(ProtectedRouteGuard):
    def __init__(self):
        super().__init__(required_role=Role.ADMIN)


class StudentRouteGuard(ProtectedRouteGuard):
    def __init__(self):
        super().__init__(required_role=Role.STUDENT)


class GuestRouteGuard(_RouteGuard):
    """Renders children only for visitors who are not signed in."""

    def _target(self, state, identity):
        if state is AuthState.AUTHENTICATED:
            return landing_path_for(identity.role)
        return None
