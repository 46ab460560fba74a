"""
auth/tokens.py -- Signed session and purpose tokens.

Security design decisions:
  JWT: python-jose with HS256, signed with Settings.secret_key. The three-part
       header.claims.signature structure is tamper-evident: any edit to the
       claims invalidates the signature.

  Two token families share the format but never each other's role:
    session  -- {sub, role, iat, exp, typ="session"}; authorizes calls.
    purpose  -- {sub, purpose, jti, iat, exp, typ="purpose"}; tied to one side
                effect (password reset, verification). jti lets the caller
                record consumption, because signature and expiry checks alone
                cannot detect a replay inside the validity window.

  Verification returns a TokenResult instead of raising. Expiry is checked
  against the service clock after the signature, so an expired token with a
  good signature reports EXPIRED and a tampered one INVALID_SIGNATURE.

Layer rule: no imports from outside auth/ except core/.
"""

from __future__ import annotations

import logging
import secrets
from datetime import datetime, timedelta, timezone
from typing import Callable, Union

from jose import JWTError, jwt

from auth.models import PurposeClaims, Role, SessionClaims, TokenPurpose
from core.config import get_settings
from core.result import TokenFailure, TokenResult

logger = logging.getLogger("authsquared.tokens")

_ALGORITHM = "HS256"

_SESSION = "session"
_PURPOSE = "purpose"

Claims = Union[SessionClaims, PurposeClaims]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _to_datetime(ts: int) -> datetime:
    return datetime.fromtimestamp(ts, tz=timezone.utc)


class TokenService:
    """Issues and verifies signed, expiring tokens.

    Holds no mutable state beyond the signing secret, which is read once.

    Usage:
        tokens = TokenService()
        token = tokens.issue_session(account_id=7, role=Role.USER)
        result = tokens.verify_session(token)
        if result.ok:
            claims = result.claims
    """

    def __init__(self, secret_key: str | None = None, clock: Callable[[], datetime] = utcnow) -> None:
        settings = get_settings()
        self._secret = secret_key or settings.secret_key
        self._clock = clock
        self._ttls = {
            _SESSION: settings.session_ttl_seconds,
            TokenPurpose.PASSWORD_RESET: settings.password_reset_ttl_seconds,
            TokenPurpose.EMAIL_VERIFICATION: settings.verification_token_ttl_seconds,
            TokenPurpose.PHONE_VERIFICATION: settings.verification_token_ttl_seconds,
        }

    # ------------------------------------------------------------------
    # Issue
    # ------------------------------------------------------------------

    def issue(self, claims: dict, ttl: timedelta) -> str:
        """Sign claims with an issued-at of now and an expiry of now + ttl."""
        now = self._clock().replace(microsecond=0)
        payload = dict(claims)
        payload["iat"] = now
        payload["exp"] = now + ttl
        return jwt.encode(payload, self._secret, algorithm=_ALGORITHM)

    def issue_session(self, account_id: int, role: Role, ttl_seconds: int = 0) -> str:
        """Encode a session token. ttl_seconds=0 uses Settings.session_ttl_seconds."""
        duration = ttl_seconds if ttl_seconds > 0 else self._ttls[_SESSION]
        return self.issue(
            {"sub": str(account_id), "role": int(role), "typ": _SESSION},
            timedelta(seconds=duration),
        )

    def issue_purpose(self, account_id: int, purpose: TokenPurpose, ttl_seconds: int = 0) -> str:
        """Encode a single-purpose token with a fresh jti.

        ttl_seconds=0 uses the lifetime configured for the purpose
        (password reset is short-lived, verification tokens last a day).
        """
        duration = ttl_seconds if ttl_seconds > 0 else self._ttls[purpose]
        return self.issue(
            {
                "sub": str(account_id),
                "purpose": purpose.value,
                "jti": secrets.token_hex(16),
                "typ": _PURPOSE,
            },
            timedelta(seconds=duration),
        )

    # ------------------------------------------------------------------
    # Verify
    # ------------------------------------------------------------------

    def verify(self, token: str) -> TokenResult[Claims]:
        """Verify signature and expiry of either token family."""
        try:
            jwt.get_unverified_claims(token)
        except (JWTError, AttributeError, TypeError):
            return TokenResult.fail(TokenFailure.MALFORMED)

        try:
            payload = jwt.decode(
                token,
                self._secret,
                algorithms=[_ALGORITHM],
                options={"verify_exp": False},
            )
        except JWTError:
            logger.info("Rejected token with an invalid signature")
            return TokenResult.fail(TokenFailure.INVALID_SIGNATURE)

        try:
            claims = _parse_claims(payload)
        except (KeyError, ValueError, TypeError):
            return TokenResult.fail(TokenFailure.MALFORMED)

        if self._clock() >= claims.expires_at:
            return TokenResult.fail(TokenFailure.EXPIRED)
        return TokenResult.success(claims)

    def verify_session(self, token: str) -> TokenResult[SessionClaims]:
        result = self.verify(token)
        if result.ok and not isinstance(result.claims, SessionClaims):
            return TokenResult.fail(TokenFailure.WRONG_PURPOSE)
        return result

    def verify_purpose(self, token: str, purpose: TokenPurpose) -> TokenResult[PurposeClaims]:
        result = self.verify(token)
        if result.ok and (not isinstance(result.claims, PurposeClaims) or result.claims.purpose != purpose):
            return TokenResult.fail(TokenFailure.WRONG_PURPOSE)
        return result


def _parse_claims(payload: dict) -> Claims:
    """Map a decoded payload onto the canonical claims dataclasses."""
    account_id = int(payload["sub"])
    issued_at = _to_datetime(int(payload["iat"]))
    expires_at = _to_datetime(int(payload["exp"]))
    if payload.get("typ") == _SESSION:
        return SessionClaims(
            account_id=account_id,
            role=Role(int(payload["role"])),
            issued_at=issued_at,
            expires_at=expires_at,
        )
    if payload.get("typ") == _PURPOSE:
        return PurposeClaims(
            account_id=account_id,
            purpose=TokenPurpose(payload["purpose"]),
            jti=str(payload["jti"]),
            issued_at=issued_at,
            expires_at=expires_at,
        )
    raise ValueError(f"unknown token type: {payload.get('typ')!r}")
