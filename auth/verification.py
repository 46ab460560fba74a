"""
auth/verification.py -- Email-token and phone-code ownership proof.

Two independent state machines, one per channel:

  email:  Unverified -> PendingToken -> Verified (terminal)
  phone:  Unverified -> PendingCode  -> Verified | Locked

Rules both channels share:
  - A new request replaces the previous record (delete + insert in the same
    transaction, backed by a UNIQUE account_id), so at most one token or code
    per channel is ever live.
  - Expiry is checked against the clock on every use, not only at creation.
  - Confirmation flips the account's verified flag and deletes the record in
    one transaction. Deletion is what makes a token or code single-use.

Phone codes additionally count wrong guesses. Expiry is checked before the
attempt limit; once attempts reaches the limit the record is inert, and even
the correct code fails TooManyAttempts until a new code is requested.

Dispatch is the caller's job: request_* returns the record so the service
layer can compose and send the link or code.
"""

from __future__ import annotations

import hmac
import logging
from datetime import datetime, timedelta
from typing import Callable

from sqlalchemy.engine import Connection

from auth import vault
from auth.models import Account, EmailVerificationRecord, PhoneVerificationRecord
from auth.store import AccountStore
from auth.tokens import utcnow
from auth.transaction import TransactionCoordinator
from core.config import get_settings
from core.errors import (
    AccountNotFound,
    AlreadyVerified,
    CodeExpired,
    InvalidCode,
    InvalidVerificationToken,
    NoCodeFound,
    RateLimited,
    TooManyAttempts,
    VerificationTokenExpired,
)

logger = logging.getLogger("authsquared.verification")


class VerificationWorkflow:
    def __init__(
        self,
        store: AccountStore,
        coordinator: TransactionCoordinator,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        settings = get_settings()
        self._store = store
        self._coordinator = coordinator
        self._clock = clock
        self.email_ttl = timedelta(seconds=settings.email_token_ttl_seconds)
        self.email_rate_limit = timedelta(seconds=settings.email_rate_limit_seconds)
        self.phone_ttl = timedelta(seconds=settings.phone_code_ttl_seconds)
        self.phone_rate_limit = timedelta(seconds=settings.phone_rate_limit_seconds)
        self.max_attempts = settings.phone_max_attempts

    def _account(self, conn: Connection, account_id: int) -> Account:
        account = self._store.get_account(conn, account_id)
        if account is None:
            raise AccountNotFound()
        return account

    # ------------------------------------------------------------------
    # Email channel
    # ------------------------------------------------------------------

    def request_email_verification(self, account_id: int) -> EmailVerificationRecord:
        """Replace any pending email token with a fresh 48-hour one and return it.

        Fails AlreadyVerified if the email is verified, RateLimited if a still
        live token was created inside the rate-limit window.
        """
        now = self._clock()

        def _issue(conn: Connection) -> EmailVerificationRecord:
            account = self._account(conn, account_id)
            if account.email_verified:
                raise AlreadyVerified("Email is already verified")

            existing = self._store.get_email_verification(conn, account_id)
            if existing is not None and existing.expires_at > now and existing.created_at > now - self.email_rate_limit:
                logger.info("Email verification rate limit hit for account %s", account_id)
                raise RateLimited("Please wait before requesting another verification email")

            self._store.delete_email_verifications(conn, account_id)
            record = EmailVerificationRecord(
                account_id=account_id,
                email=account.email,
                token=vault.new_opaque_token(),
                expires_at=now + self.email_ttl,
                created_at=now,
            )
            record.id = self._store.insert_email_verification(conn, record)
            return record

        return self._coordinator.run(_issue, name="request_email_verification")

    def confirm_email_verification(self, token: str) -> int:
        """Consume an email token and mark the owning account verified.

        Returns the account id. Fails InvalidVerificationToken if no record
        carries the token, AlreadyVerified if the account is verified already,
        VerificationTokenExpired once past expiry.
        """
        now = self._clock()

        def _confirm(conn: Connection) -> int:
            record = self._store.get_email_verification_by_token(conn, token) if token else None
            if record is None:
                raise InvalidVerificationToken()
            account = self._account(conn, record.account_id)
            if account.email_verified:
                raise AlreadyVerified("Email is already verified")
            if now >= record.expires_at:
                raise VerificationTokenExpired()

            self._store.update_account(conn, account.id, now, email_verified=True)
            self._store.delete_email_verifications(conn, account.id)
            return account.id

        account_id = self._coordinator.run(_confirm, name="confirm_email_verification")
        logger.info("Email verified for account %s", account_id)
        return account_id

    # ------------------------------------------------------------------
    # Phone channel
    # ------------------------------------------------------------------

    def request_phone_verification(self, account_id: int) -> PhoneVerificationRecord:
        """Replace any pending phone code with a fresh 15-minute one and return it."""
        now = self._clock()

        def _issue(conn: Connection) -> PhoneVerificationRecord:
            account = self._account(conn, account_id)
            if account.phone_verified:
                raise AlreadyVerified("Phone is already verified")

            existing = self._store.get_phone_verification(conn, account_id)
            if existing is not None and existing.expires_at > now and existing.created_at > now - self.phone_rate_limit:
                logger.info("Phone verification rate limit hit for account %s", account_id)
                raise RateLimited("Please wait before requesting another SMS code")

            self._store.delete_phone_verifications(conn, account_id)
            record = PhoneVerificationRecord(
                account_id=account_id,
                phone=account.phone,
                code=vault.new_verification_code(),
                expires_at=now + self.phone_ttl,
                attempts=0,
                created_at=now,
            )
            record.id = self._store.insert_phone_verification(conn, record)
            return record

        return self._coordinator.run(_issue, name="request_phone_verification")

    def confirm_phone_code(self, account_id: int, submitted_code: str) -> None:
        """Check a submitted code against the account's live record.

        Check order: NoCodeFound, AlreadyVerified, CodeExpired, TooManyAttempts.
        A mismatch increments attempts (committed) and fails InvalidCode with the
        remaining count. A match sets phone_verified and deletes the record.
        """
        now = self._clock()

        def _confirm(conn: Connection) -> int | None:
            record = self._store.get_phone_verification(conn, account_id)
            if record is None:
                raise NoCodeFound()
            account = self._account(conn, account_id)
            if account.phone_verified:
                raise AlreadyVerified("Phone is already verified")
            if now >= record.expires_at:
                raise CodeExpired()
            if record.attempts >= self.max_attempts:
                raise TooManyAttempts()

            if not hmac.compare_digest(record.code.encode(), str(submitted_code or "").encode()):
                self._store.increment_phone_attempts(conn, record.id)
                return self.max_attempts - (record.attempts + 1)

            self._store.update_account(conn, account_id, now, phone_verified=True)
            self._store.delete_phone_verifications(conn, account_id)
            return None

        remaining = self._coordinator.run(_confirm, name="confirm_phone_code")
        if remaining is not None:
            # The increment is committed before the refusal is reported.
            if remaining == 0:
                logger.warning("Phone code for account %s locked after %d failures", account_id, self.max_attempts)
            raise InvalidCode(remaining)
        logger.info("Phone verified for account %s", account_id)
