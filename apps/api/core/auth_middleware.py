"""
Edge Authorization Middleware

Intercepts every request before it reaches a handler:
- admin namespace     -> authorize with require_admin=True
- protected namespace -> authorize with require_admin=False
- anything else       -> passes through (page/client guards handle it)

On allow, the validated identity is forwarded downstream as x-user-id,
x-user-role and x-user-email headers and as request.state.identity.
Inbound x-user-* headers are always stripped first: handlers may trust
them only because this middleware wrote them.

Denials are 401 with a machine-readable code. Identity provider outages
are 500 with ProviderUnavailable so callers can tell "re-authenticate"
apart from "retry later". Nothing is retried here.
"""
import asyncio
import logging
from typing import Iterable, Optional

from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from core.authorizer import AuthorizationRules, Deny, authorize
from core.exceptions import ErrorCode, error_body
from core.identity import TRUSTED_IDENTITY_HEADERS, Identity
from core.logging import update_request_context
from core.token_validator import TokenVerifier, extract_bearer_token

logger = logging.getLogger(__name__)

_TRUSTED_HEADER_KEYS = {h.encode("latin-1") for h in TRUSTED_IDENTITY_HEADERS}


def auth_error_response(code: ErrorCode, message: str, status_code: int = 401) -> JSONResponse:
    headers = {"WWW-Authenticate": "Bearer"} if status_code == 401 else None
    return JSONResponse(status_code=status_code, content=error_body(code, message), headers=headers)


def _replace_identity_headers(request: Request, identity: Optional[Identity]) -> None:
    """Drop client-supplied identity headers and, if given, add the trusted ones."""
    headers = [
        (key, value) for key, value in request.scope.get("headers", [])
        if key.lower() not in _TRUSTED_HEADER_KEYS
    ]
    if identity is not None:
        for key, value in identity.to_headers().items():
            headers.append((key.encode("latin-1"), value.encode("latin-1")))
    request.scope["headers"] = headers
    # Request caches parsed headers; make sure later reads see the rewrite
    if hasattr(request, "_headers"):
        del request._headers


class EdgeAuthorizationMiddleware(BaseHTTPMiddleware):
    """Authorization gate for the admin and protected API namespaces."""

    def __init__(
        self,
        app,
        verifier: TokenVerifier,
        rules: AuthorizationRules,
        self_authenticated_paths: Iterable[str] = (),
    ):
        super().__init__(app)
        self.verifier = verifier
        self.rules = rules
        self.self_authenticated_paths = frozenset(self_authenticated_paths)

    def _namespace_requirement(self, path: str) -> Optional[bool]:
        """True/False for require_admin, or None when the path is not checked here."""
        if path in self.self_authenticated_paths:
            return None
        if path.startswith(self.rules.admin_prefix):
            return True
        if path.startswith(self.rules.protected_prefix):
            return False
        return None

    async def dispatch(self, request: Request, call_next):
        path = request.url.path
        _replace_identity_headers(request, None)
        request.state.identity = None

        require_admin = self._namespace_requirement(path)
        if require_admin is None or self.rules.is_public(path):
            return await call_next(request)

        try:
            identity = None
            token = extract_bearer_token(request.headers.get("authorization"))
            if token:
                # Verification may do network I/O (certificate fetch, revocation check)
                result = await asyncio.to_thread(self.verifier.validate, token)
                if not result.ok:
                    if result.kind.is_infrastructure:
                        logger.error(f"Identity provider unavailable for {request.method} {path}: {result.detail}")
                        return auth_error_response(result.kind, result.detail, status_code=500)
                    logger.warning(
                        f"Credential rejected for {request.method} {path}",
                        extra={"extra_fields": {"path": path, "code": result.kind.value}},
                    )
                    return auth_error_response(result.kind, result.detail)
                identity = result.value

            decision = authorize(path, identity, require_admin, self.rules)
            if isinstance(decision, Deny):
                return auth_error_response(decision.reason, decision.message)

            if identity is not None:
                _replace_identity_headers(request, identity)
                request.state.identity = identity
                update_request_context(uid=identity.id, role=identity.role.value)
        except Exception as e:
            logger.error(f"Authentication middleware failed for {path}: {e}", exc_info=True)
            return auth_error_response(
                ErrorCode.PROVIDER_UNAVAILABLE, "Authentication middleware failed", status_code=500
            )

        return await call_next(request)
