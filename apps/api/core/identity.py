"""
Identity and role types.

An Identity only exists after a credential has been validated. Role is
read from the provider's custom claims and can only change out-of-band
(an admin assigning new claims), never within a session.
"""
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional
from urllib.parse import quote, unquote

USER_ID_HEADER = "x-user-id"
USER_ROLE_HEADER = "x-user-role"
USER_EMAIL_HEADER = "x-user-email"
TRUSTED_IDENTITY_HEADERS = (USER_ID_HEADER, USER_ROLE_HEADER, USER_EMAIL_HEADER)


class Role(str, Enum):
    """Closed set of access levels."""
    STUDENT = "student"
    ADMIN = "admin"
    COACH = "coach"
    PARENT = "parent"

    @classmethod
    def parse(cls, value: Optional[str]) -> Optional["Role"]:
        """
        Map a role claim to a Role.

        A missing claim means the user never had a role assigned, which
        defaults to student. An unrecognised value returns None so the
        caller can reject the credential instead of guessing.
        """
        if value is None or value == "":
            return cls.STUDENT
        try:
            return cls(str(value).lower())
        except ValueError:
            return None


# Landing views used by the client route guards
ROLE_LANDING_PATHS: Dict[Role, str] = {
    Role.ADMIN: "/admin",
    Role.COACH: "/dashboard",
    Role.PARENT: "/dashboard",
    Role.STUDENT: "/dashboard",
}


def encode_header_value(value: Optional[str]) -> str:
    """Percent-encode so uids and emails outside ASCII survive as header values."""
    return quote(value or "", safe="@+")


def decode_header_value(value: Optional[str]) -> Optional[str]:
    return unquote(value) if value is not None else None


def landing_path_for(role: Optional[Role]) -> str:
    return ROLE_LANDING_PATHS.get(role, "/dashboard")


@dataclass(frozen=True)
class Identity:
    """Validated representation of the calling user."""
    id: str
    email: str
    role: Role
    email_verified: bool = False

    @property
    def is_admin(self) -> bool:
        return self.role is Role.ADMIN

    def to_headers(self) -> Dict[str, str]:
        """Trusted metadata forwarded to downstream handlers, percent-encoded."""
        return {
            USER_ID_HEADER: encode_header_value(self.id),
            USER_ROLE_HEADER: self.role.value,
            USER_EMAIL_HEADER: encode_header_value(self.email),
        }
