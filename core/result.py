"""
core/result.py -- Explicit result type for token verification.

Token verification never raises. It returns a TokenResult that is either
successful (claims set) or failed (reason set), so every call site has to
look at the reason instead of relying on an exception it may forget to catch.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Generic, Optional, TypeVar

T = TypeVar("T")


class TokenFailure(str, Enum):
    INVALID_SIGNATURE = "invalid_signature"
    EXPIRED = "expired"
    MALFORMED = "malformed"
    WRONG_PURPOSE = "wrong_purpose"


@dataclass(frozen=True)
class TokenResult(Generic[T]):
    claims: Optional[T] = None
    failure: Optional[TokenFailure] = None

    @property
    def ok(self) -> bool:
        return self.failure is None

    @classmethod
    def success(cls, claims: T) -> "TokenResult[T]":
        return cls(claims=claims)

    @classmethod
    def fail(cls, reason: TokenFailure) -> "TokenResult[T]":
        return cls(failure=reason)
