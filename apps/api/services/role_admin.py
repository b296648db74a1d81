"""
Role administration.

Roles are stored as identity-provider custom claims. Changes apply when
the user's token is next refreshed.
"""
import hmac
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from core.exceptions import ErrorCode, ForbiddenError, UnauthorizedError
from core.identity import Role
from services.identity_provider import IdentityProvider

logger = logging.getLogger(__name__)


class RoleAdminService:
    def __init__(self, identity_provider: IdentityProvider, setup_secret: Optional[str] = None):
        self.identity_provider = identity_provider
        self.setup_secret = setup_secret

    def assign_role(self, uid: str, role: Role, assigned_by: Optional[str] = None) -> Dict[str, Any]:
        """Set the user's role claim, keeping any other custom claims."""
        claims = self.identity_provider.get_user_claims(uid)
        claims["role"] = role.value
        claims["admin"] = role is Role.ADMIN
        self.identity_provider.set_role_claims(uid, claims)
        logger.info(
            f"Role {role.value} assigned to {uid}",
            extra={"extra_fields": {"uid": uid, "role": role.value, "assigned_by": assigned_by}},
        )
        return claims

    def check_setup_secret(self, secret: Optional[str]) -> None:
        if not self.setup_secret:
            raise ForbiddenError("Admin setup is disabled")
        if not secret or not hmac.compare_digest(secret.encode(), self.setup_secret.encode()):
            logger.warning("Admin setup attempted with an invalid secret")
            raise UnauthorizedError("Invalid secret key", code=ErrorCode.INVALID_CREDENTIAL)

    def bootstrap_admin(self, uid: str, email: str, secret: Optional[str]) -> Dict[str, Any]:
        """Grant admin to a user, authorized by the deployment's setup secret."""
        self.check_setup_secret(secret)
        claims = self.identity_provider.get_user_claims(uid)
        claims.update({
            "role": Role.ADMIN.value,
            "admin": True,
            "adminSetupDate": datetime.now(timezone.utc).isoformat(),
        })
        self.identity_provider.set_role_claims(uid, claims)
        logger.info(f"Admin role assigned to user: {email} ({uid})")
        return {"uid": uid, "email": email, "role": Role.ADMIN.value}

    def get_role_status(self, uid: str) -> Dict[str, Any]:
        claims = self.identity_provider.get_user_claims(uid)
        role = Role.parse(claims.get("role")) or Role.STUDENT
        return {
            "uid": uid,
            "role": role.value,
            "is_admin": claims.get("admin") is True or role is Role.ADMIN,
            "admin_setup_date": claims.get("adminSetupDate"),
        }
