"""
auth/vault.py -- Salts, password digests and random secrets.

Security design decisions:
  Digest: bcrypt-pbkdf (bcrypt.kdf) over the password with the per-credential
       salt. The function is deterministic for a given (password, salt, rounds)
       so the digest can be stored next to its salt and recomputed on login,
       and the bcrypt core keeps brute force against a leaked table expensive.

  Comparison: hmac.compare_digest. Comparing digests with == leaks how many
       leading characters matched through response timing.

  Randomness: every salt, token and code comes from the secrets module.
       Exhaustion of the OS random source raises and is fatal to the call.
"""

from __future__ import annotations

import hmac
import logging
import secrets

import bcrypt

from core.config import get_settings

logger = logging.getLogger("authsquared.vault")

SALT_BYTES = 32
DIGEST_BYTES = 32
DEFAULT_TOKEN_BYTES = 32

_CODE_LOW = 100000
_CODE_HIGH = 999999


def new_salt() -> str:
    """Return a fresh 32-byte salt as 64 lowercase hex characters."""
    return secrets.token_hex(SALT_BYTES)


def digest(password: str, salt: str, rounds: int | None = None) -> str:
    """Return the salted digest of password as lowercase hex.

    Same inputs always give the same output; changing either the password or
    the salt changes it. rounds defaults to Settings.hash_rounds.

    Raises ValueError for an empty password; callers validate input first.
    """
    if rounds is None:
        rounds = get_settings().hash_rounds
    key = bcrypt.kdf(
        password=password.encode("utf-8"),
        salt=salt.encode("utf-8"),
        desired_key_bytes=DIGEST_BYTES,
        rounds=rounds,
        ignore_few_rounds=True,
    )
    return key.hex()


def verify(password: str, salt: str, stored_digest: str, rounds: int | None = None) -> bool:
    """Recompute the digest and compare it in constant time."""
    # bcrypt.kdf refuses empty input; an empty password never matches.
    if not password or not salt or not stored_digest:
        return False
    candidate = digest(password, salt, rounds)
    return hmac.compare_digest(candidate.encode("ascii"), stored_digest.encode("ascii"))


def new_verification_code() -> str:
    """Return a uniformly drawn six-digit code in [100000, 999999]."""
    return str(_CODE_LOW + secrets.randbelow(_CODE_HIGH - _CODE_LOW + 1))


def new_opaque_token(byte_length: int = DEFAULT_TOKEN_BYTES) -> str:
    """Return byte_length random bytes as lowercase hex (for links and ids)."""
    return secrets.token_hex(byte_length)


# Timing equalization dummy credential.
# Login runs verify() against this when the email is unknown so response time
# does not reveal whether an account exists.
DUMMY_SALT: str = new_salt()


def burn_verify(password: str) -> None:
    """Spend the same digest work as a real verify() and discard the result."""
    verify(password, DUMMY_SALT, "0" * (DIGEST_BYTES * 2))
