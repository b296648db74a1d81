"""
Credential / token validation.

Verifies a bearer credential against the identity provider and extracts
identity + role claims. Verification is read-only and never raises for a
bad token: callers receive Ok(Identity) or Err(code, message), where
ProviderUnavailable is an infrastructure fault and every other code is a
denial.

Two verifiers share the same claim mapping:
- FirebaseTokenVerifier: production, Firebase Admin SDK
- JwtTokenVerifier: local development and tests, HS256 tokens signed with
  SECRET_KEY and carrying the same claim names as Firebase ID tokens
"""
import logging
import time
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Mapping, Optional

from jose import ExpiredSignatureError, JWTError, jwt

from core.exceptions import ErrorCode
from core.identity import Identity, Role
from core.result import Err, Ok, Result

logger = logging.getLogger(__name__)

ALGORITHM = "HS256"
DEFAULT_TOKEN_TTL_MINUTES = 60


def extract_bearer_token(auth_header: Optional[str]) -> Optional[str]:
    """
    Extract the token from an Authorization header value.

    "Bearer <token>" is the expected form; a bare token is tolerated.
    """
    if not auth_header:
        return None
    parts = auth_header.strip().split()
    if not parts:
        return None
    if parts[0].lower() == "bearer":
        return parts[1] if len(parts) == 2 else None
    return parts[0] if len(parts) == 1 else None


def identity_from_claims(claims: Mapping[str, Any], require_verified_email: bool = True) -> Result:
    """Map decoded token claims to an Identity."""
    uid = claims.get("uid") or claims.get("sub")
    email = claims.get("email")
    if not uid or not email:
        return Err(ErrorCode.INVALID_CREDENTIAL, "Invalid token: missing required fields")

    role = Role.parse(claims.get("role"))
    if role is None:
        logger.warning(f"Rejected token with unrecognised role claim for uid={uid}")
        return Err(ErrorCode.INVALID_CREDENTIAL, "Invalid token: unrecognised role claim")

    email_verified = bool(claims.get("email_verified", False))
    if require_verified_email and not email_verified:
        return Err(ErrorCode.EMAIL_NOT_VERIFIED, "Email address must be verified to access this resource")

    return Ok(Identity(id=str(uid), email=str(email), role=role, email_verified=email_verified))


class TokenVerifier(ABC):
    """Validates bearer credentials."""

    def __init__(self, require_verified_email: bool = True):
        self.require_verified_email = require_verified_email

    @abstractmethod
    def validate(self, token: str) -> Result:
        """Return Ok(Identity) or Err(ErrorCode, message)."""


class JwtTokenVerifier(TokenVerifier):
    """HS256 verifier for local development, the emulator workflow and tests."""

    def __init__(self, secret_key: Optional[str], require_verified_email: bool = True):
        super().__init__(require_verified_email)
        if not secret_key or len(secret_key) < 32:
            raise ValueError(
                "SECRET_KEY must be at least 32 characters for the jwt auth provider. "
                "Generate with: python -c \"import secrets; print(secrets.token_urlsafe(32))\""
            )
        self.secret_key = secret_key

    def issue_token(
        self,
        uid: str,
        email: str,
        role: Optional[str] = None,
        email_verified: bool = True,
        expires_delta: Optional[timedelta] = None,
        extra_claims: Optional[Dict[str, Any]] = None,
    ) -> str:
        """Create a token with Firebase-shaped claims."""
        now = datetime.now(timezone.utc)
        expire = now + (expires_delta if expires_delta is not None else timedelta(minutes=DEFAULT_TOKEN_TTL_MINUTES))
        to_encode: Dict[str, Any] = {
            "sub": uid,
            "uid": uid,
            "email": email,
            "email_verified": email_verified,
            "iat": int(now.timestamp()),
            "exp": int(expire.timestamp()),
        }
        if role is not None:
            to_encode["role"] = role
        if extra_claims:
            to_encode.update(extra_claims)
        return jwt.encode(to_encode, self.secret_key, algorithm=ALGORITHM)

    def validate(self, token: str) -> Result:
        if not token:
            return Err(ErrorCode.INVALID_CREDENTIAL, "Authentication token is required")
        try:
            claims = jwt.decode(token, self.secret_key, algorithms=[ALGORITHM])
        except ExpiredSignatureError:
            return Err(ErrorCode.EXPIRED_CREDENTIAL, "Authentication token has expired")
        except JWTError as e:
            logger.warning(f"Invalid token: {e}")
            return Err(ErrorCode.INVALID_CREDENTIAL, "Invalid or expired authentication token")
        return identity_from_claims(claims, self.require_verified_email)


def ensure_firebase_app(credentials_path: Optional[str] = None, project_id: Optional[str] = None):
    """Initialize the default Firebase app once and return it."""
    import firebase_admin
    from firebase_admin import credentials

    try:
        return firebase_admin.get_app()
    except ValueError:
        pass

    cred = credentials.Certificate(credentials_path) if credentials_path else credentials.ApplicationDefault()
    options = {"projectId": project_id} if project_id else None
    app = firebase_admin.initialize_app(cred, options)
    logger.info("Firebase app initialized")
    return app


class FirebaseTokenVerifier(TokenVerifier):
    """Verifies Firebase ID tokens with the Admin SDK."""

    def __init__(
        self,
        credentials_path: Optional[str] = None,
        project_id: Optional[str] = None,
        require_verified_email: bool = True,
        clock_skew_retries: int = 2,
        retry_delay: float = 1.0,
        check_revoked: bool = True,
        sleep: Callable[[float], None] = time.sleep,
    ):
        super().__init__(require_verified_email)
        self.credentials_path = credentials_path
        self.project_id = project_id
        self.clock_skew_retries = clock_skew_retries
        self.retry_delay = retry_delay
        self.check_revoked = check_revoked
        self._sleep = sleep

    def validate(self, token: str) -> Result:
        from firebase_admin import auth
        from firebase_admin.exceptions import FirebaseError

        if not token:
            return Err(ErrorCode.INVALID_CREDENTIAL, "Authentication token is required")

        try:
            ensure_firebase_app(self.credentials_path, self.project_id)
        except Exception as e:
            logger.error(f"Failed to initialize Firebase: {e}")
            return Err(ErrorCode.PROVIDER_UNAVAILABLE, "Identity provider is unavailable")

        try:
            claims = self._verify_with_retry(token)
        except auth.ExpiredIdTokenError:
            return Err(ErrorCode.EXPIRED_CREDENTIAL, "Authentication token has expired")
        except auth.RevokedIdTokenError:
            return Err(ErrorCode.INVALID_CREDENTIAL, "Authentication token has been revoked")
        except auth.UserDisabledError:
            return Err(ErrorCode.INVALID_CREDENTIAL, "User account is disabled")
        except (auth.InvalidIdTokenError, auth.UserNotFoundError, ValueError) as e:
            logger.warning(f"Invalid Firebase token: {e}")
            return Err(ErrorCode.INVALID_CREDENTIAL, "Invalid authentication token")
        except FirebaseError as e:
            # Certificate fetch failures and transport errors land here
            logger.error(f"Firebase token verification unavailable: {e}")
            return Err(ErrorCode.PROVIDER_UNAVAILABLE, "Identity provider is unavailable")

        return identity_from_claims(claims, self.require_verified_email)

    def _verify_with_retry(self, token: str) -> Dict[str, Any]:
        """
        Verify the token, retrying only on clock-skew failures.

        A token minted on a machine whose clock runs ahead is reported as
        "used too early"; a short wait is enough for it to become valid.
        """
        from firebase_admin import auth

        for attempt in range(self.clock_skew_retries + 1):
            try:
                return auth.verify_id_token(token, check_revoked=self.check_revoked)
            except auth.ExpiredIdTokenError:
                raise
            except auth.InvalidIdTokenError as e:
                error_str = str(e).lower()
                if ("too early" in error_str or "clock" in error_str) and attempt < self.clock_skew_retries:
                    logger.warning(
                        f"Clock skew detected, retrying token verification "
                        f"(retry {attempt + 1} of {self.clock_skew_retries})"
                    )
                    self._sleep(self.retry_delay)
                    continue
                raise
        raise RuntimeError("unreachable")
