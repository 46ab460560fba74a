"""
auth/models.py -- Domain dataclasses for the identity core.

Pattern: Data class (pure data container, near-zero logic). Stores and the
service layer do the work; these types only own the domain shape.

AccountProfile is the one pydantic model here: it is the validated input of
registration and admin account creation, so malformed profiles are rejected
before they reach the store.

Layer rule: no imports from outside auth/ except core/.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum, IntEnum

from pydantic import BaseModel, ConfigDict, Field, field_validator

# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class Role(IntEnum):
    """Strictly ordered permission levels, 1 (lowest) to 5 (highest)."""

    USER = 1
    MODERATOR = 2
    ADMIN = 3
    SUPER_ADMIN = 4
    OWNER = 5

    @property
    def display_name(self) -> str:
        return _ROLE_NAMES[self]


_ROLE_NAMES = {
    Role.USER: "User",
    Role.MODERATOR: "Moderator",
    Role.ADMIN: "Admin",
    Role.SUPER_ADMIN: "SuperAdmin",
    Role.OWNER: "Owner",
}


class AccountStatus(str, Enum):
    PENDING = "pending"
    ACTIVE = "active"
    SUSPENDED = "suspended"
    LOCKED = "locked"
    DELETED = "deleted"


class TokenPurpose(str, Enum):
    PASSWORD_RESET = "password_reset"
    EMAIL_VERIFICATION = "email_verification"
    PHONE_VERIFICATION = "phone_verification"


# ---------------------------------------------------------------------------
# Input
# ---------------------------------------------------------------------------


class AccountProfile(BaseModel):
    """Identity fields supplied at registration or admin account creation."""

    model_config = ConfigDict(str_strip_whitespace=True)

    firstname: str = Field(min_length=1, max_length=255)
    lastname: str = Field(min_length=1, max_length=255)
    username: str = Field(min_length=1, max_length=255)
    email: str = Field(min_length=3, max_length=255, pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
    phone: str = Field(min_length=7, max_length=15, pattern=r"^\+?[0-9]+$")

    @field_validator("email", mode="before")
    @classmethod
    def lowercase_email(cls, value):
        return normalize_email(value) if isinstance(value, str) else value


def normalize_email(email: str) -> str:
    """Emails are stored and looked up trimmed and lowercased."""
    return email.strip().lower()


# ---------------------------------------------------------------------------
# Persisted records
# ---------------------------------------------------------------------------


@dataclass
class Account:
    """Identity row. Never hard-deleted -- deletion is a status transition."""

    firstname: str
    lastname: str
    username: str
    email: str
    phone: str
    role: Role = Role.USER
    status: AccountStatus = AccountStatus.PENDING
    email_verified: bool = False
    phone_verified: bool = False
    id: int | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    def to_view(self) -> dict:
        """Public representation returned by login/registration."""
        return {
            "id": self.id,
            "email": self.email,
            "firstname": self.firstname,
            "lastname": self.lastname,
            "username": self.username,
            "phone": self.phone,
            "role": self.role.display_name,
            "emailVerified": self.email_verified,
            "phoneVerified": self.phone_verified,
            "accountStatus": self.status.value,
        }


@dataclass
class Credential:
    """Exactly one per Account. salted_hash is hex, salt is lowercase hex."""

    account_id: int
    salt: str
    salted_hash: str
    id: int | None = None


@dataclass
class EmailVerificationRecord:
    account_id: int
    email: str
    token: str
    expires_at: datetime
    verified: bool = False
    id: int | None = None
    created_at: datetime | None = None


@dataclass
class PhoneVerificationRecord:
    """attempts never decreases; a record at the attempt limit is inert."""

    account_id: int
    phone: str
    code: str
    expires_at: datetime
    attempts: int = 0
    verified: bool = False
    id: int | None = None
    created_at: datetime | None = None


# ---------------------------------------------------------------------------
# Token claims (ephemeral, never persisted)
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SessionClaims:
    """The one canonical claims shape carried by every session token."""

    account_id: int
    role: Role
    issued_at: datetime
    expires_at: datetime


@dataclass(frozen=True)
class PurposeClaims:
    """Claims of a single-purpose token. jti identifies it for consumption."""

    account_id: int
    purpose: TokenPurpose
    jti: str
    issued_at: datetime
    expires_at: datetime
