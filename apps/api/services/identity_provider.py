"""
Identity provider adapters.

The provider owns user accounts and their custom claims. Role changes are
written as claims and take effect the next time the user's token refreshes.
"""
import logging
import threading
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

from core.exceptions import NotFoundError, ServiceUnavailableError
from core.result import Result
from core.token_validator import TokenVerifier, ensure_firebase_app

logger = logging.getLogger(__name__)


class IdentityProvider(ABC):
    def __init__(self, verifier: TokenVerifier):
        self.verifier = verifier

    def verify_token(self, token: str) -> Result:
        return self.verifier.validate(token)

    @abstractmethod
    def set_role_claims(self, uid: str, claims: Dict[str, Any]) -> None:
        """Replace the user's custom claims."""

    @abstractmethod
    def get_user_claims(self, uid: str) -> Dict[str, Any]:
        """Current custom claims. Raises NotFoundError for an unknown uid."""


class FirebaseIdentityProvider(IdentityProvider):
    def __init__(
        self,
        verifier: TokenVerifier,
        credentials_path: Optional[str] = None,
        project_id: Optional[str] = None,
    ):
        super().__init__(verifier)
        self.credentials_path = credentials_path
        self.project_id = project_id

    def set_role_claims(self, uid, claims):
        from firebase_admin import auth
        from firebase_admin.exceptions import FirebaseError

        ensure_firebase_app(self.credentials_path, self.project_id)
        try:
            auth.set_custom_user_claims(uid, claims)
        except auth.UserNotFoundError:
            raise NotFoundError("User", uid)
        except FirebaseError as e:
            logger.error(f"Failed to set custom claims for {uid}: {e}")
            raise ServiceUnavailableError("Identity provider is unavailable")
        logger.info(f"Custom claims updated for {uid}", extra={"extra_fields": {"uid": uid, "role": claims.get("role")}})

    def get_user_claims(self, uid):
        from firebase_admin import auth
        from firebase_admin.exceptions import FirebaseError

        ensure_firebase_app(self.credentials_path, self.project_id)
        try:
            user = auth.get_user(uid)
        except auth.UserNotFoundError:
            raise NotFoundError("User", uid)
        except FirebaseError as e:
            logger.error(f"Failed to fetch user {uid}: {e}")
            raise ServiceUnavailableError("Identity provider is unavailable")
        return dict(user.custom_claims or {})


class InMemoryIdentityProvider(IdentityProvider):
    """Claims held in memory; used with the local jwt provider and in tests."""

    def __init__(self, verifier: TokenVerifier, users: Optional[Dict[str, Dict[str, Any]]] = None):
        super().__init__(verifier)
        self._claims: Dict[str, Dict[str, Any]] = {uid: dict(c) for uid, c in (users or {}).items()}
        self._lock = threading.Lock()

    def register_user(self, uid: str, claims: Optional[Dict[str, Any]] = None) -> None:
        with self._lock:
            self._claims[uid] = dict(claims or {})

    def set_role_claims(self, uid, claims):
        with self._lock:
            if uid not in self._claims:
                raise NotFoundError("User", uid)
            self._claims[uid] = dict(claims)

    def get_user_claims(self, uid):
        with self._lock:
            if uid not in self._claims:
                raise NotFoundError("User", uid)
            return dict(self._claims[uid])
