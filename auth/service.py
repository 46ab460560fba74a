"""
auth/service.py -- The operations the transport layer calls.

AuthService composes the vault, token service, guard, verification workflow
and transaction coordinator into the exposed operations: registration, login,
password change and reset, verification requests and confirmations, and the
administrative account operations.

Discipline enforced here:
  - Every credential mutation and every account+credential creation runs
    inside one TransactionCoordinator.run() call.
  - Administrative operations pass require_minimum_role(ADMIN) and the
    strict hierarchy check before any mutation starts.
  - Login and password-reset requests answer the same way whether or not the
    account exists. Login spends digest work on unknown emails too.
  - Password-reset tokens are consumed (jti recorded) in the same transaction
    that replaces the credential, so a replay is refused.

No state is kept between calls apart from the injected collaborators.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable

from sqlalchemy.engine import Connection
from sqlalchemy.exc import IntegrityError

from auth import guard, vault
from auth.messages import Dispatcher, LoggingDispatcher, password_reset_email, sms_code, verification_email
from auth.models import (
    Account,
    AccountProfile,
    AccountStatus,
    Credential,
    Role,
    SessionClaims,
    TokenPurpose,
    normalize_email,
)
from auth.store import AccountStore
from auth.tokens import TokenService, utcnow
from auth.transaction import TransactionCoordinator
from auth.verification import VerificationWorkflow
from core.config import get_settings
from core.errors import (
    AccountLocked,
    AccountNotFound,
    AccountSuspended,
    AlreadyDeleted,
    DeliveryFailed,
    DuplicateIdentity,
    InsufficientRole,
    InvalidCredentials,
    InvalidPassword,
    InvalidStatus,
    InvalidToken,
    NothingToUpdate,
    PasswordUnchanged,
    TokenExpired,
    TransactionFailed,
    Unauthenticated,
)
from core.result import TokenFailure

logger = logging.getLogger("authsquared.service")

_RESET_NOTICE = "If the email exists and is verified, a reset link will be sent."

# Statuses an administrator may set directly. "deleted" goes through delete_account().
_ASSIGNABLE_STATUSES = {AccountStatus.PENDING, AccountStatus.ACTIVE, AccountStatus.SUSPENDED, AccountStatus.LOCKED}

_PROFILE_FIELDS = ("firstname", "lastname", "username", "email", "phone")


@dataclass
class AuthResult:
    """Outcome of register() and login(): a session token and the account."""

    session_token: str
    account: Account

    def to_dict(self) -> dict:
        return {"accessToken": self.session_token, "user": self.account.to_view()}


class AuthService:
    """Identity core facade.

    Usage:
        store = AccountStore("sqlite:///auth.db")
        service = AuthService(store)
        result = service.register(AccountProfile(...), "s3cret-pass")
    """

    def __init__(
        self,
        store: AccountStore,
        tokens: TokenService | None = None,
        dispatcher: Dispatcher | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._settings = get_settings()
        self._store = store
        self._clock = clock
        self.tokens = tokens or TokenService(clock=clock)
        self._dispatcher = dispatcher or LoggingDispatcher()
        self.coordinator = TransactionCoordinator(store)
        self.verification = VerificationWorkflow(store, self.coordinator, clock=clock)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _load_account(self, conn: Connection, account_id: int) -> Account:
        account = self._store.get_account(conn, account_id)
        if account is None:
            raise AccountNotFound()
        return account

    @staticmethod
    def _require_password(password: str | None) -> None:
        """Refuse an empty password before any transaction opens."""
        if not password:
            raise InvalidPassword()

    def _new_credential(self, account_id: int, password: str) -> Credential:
        salt = vault.new_salt()
        return Credential(account_id=account_id, salt=salt, salted_hash=vault.digest(password, salt))

    def _dispatch(self, recipient: str, content) -> bool:
        """Send through the dispatcher. Failures are fatal outside debug mode."""
        delivered = self._dispatcher.send(recipient, content)
        if not delivered:
            logger.error("Message dispatch failed")
            if not self._settings.debug:
                raise DeliveryFailed()
        return delivered

    def _create_account(self, profile: AccountProfile, password: str, role: Role, status: AccountStatus) -> Account:
        """Insert the account and its credential as one unit.

        The identity pre-check gives a precise DuplicateIdentity. A concurrent
        insert that wins the race trips the UNIQUE constraints instead, which
        is mapped back to the same error.
        """
        self._require_password(password)
        now = self._clock()

        def _insert(conn: Connection) -> int:
            clash = self._store.find_identity_conflict(
                conn, email=profile.email, username=profile.username, phone=profile.phone
            )
            if clash is not None:
                raise DuplicateIdentity(clash)
            account = Account(role=role, status=status, **profile.model_dump())
            account_id = self._store.insert_account(conn, account, now)
            self._store.insert_credential(conn, self._new_credential(account_id, password))
            return account_id

        try:
            account_id = self.coordinator.run(_insert, name="create_account")
        except TransactionFailed as exc:
            if isinstance(exc.__cause__, IntegrityError):
                with self._store.connect() as conn:
                    clash = self._store.find_identity_conflict(
                        conn, email=profile.email, username=profile.username, phone=profile.phone
                    )
                if clash is not None:
                    raise DuplicateIdentity(clash) from exc
            raise
        with self._store.connect() as conn:
            return self._load_account(conn, account_id)

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def authenticate(self, session_token: str | None) -> SessionClaims:
        """Resolve a session token into claims, or fail Unauthenticated.

        Every failure reason collapses to the same error so the caller cannot
        learn whether the token was expired, tampered or malformed.
        """
        if not session_token:
            raise Unauthenticated()
        result = self.tokens.verify_session(session_token)
        if not result.ok:
            logger.info("Session token rejected: %s", result.failure.value)
            raise Unauthenticated()
        return result.claims

    def register(self, profile: AccountProfile, password: str) -> AuthResult:
        """Create a role-1, pending account and open a session for it."""
        account = self._create_account(profile, password, Role.USER, AccountStatus.PENDING)
        logger.info("Registered account %s", account.id)
        return AuthResult(self.tokens.issue_session(account.id, account.role), account)

    def login(self, email: str, password: str) -> AuthResult:
        """Check email and password, then the account status.

        Unknown email, missing credential, wrong password and deleted accounts
        all fail InvalidCredentials. Suspended and locked accounts fail with
        their own error only after the password has been proven.
        """
        with self._store.connect() as conn:
            account = self._store.get_account_by_email(conn, normalize_email(email))
            credential =self._store.get_credential(conn, account.id) if account is not None else None

        if account is None or credential is None:
            # Equalize timing -- do NOT return before spending digest work
            vault.burn_verify(password)
            raise InvalidCredentials()
        if not vault.verify(password, credential.salt, credential.salted_hash):
            logger.info("Failed login for account %s", account.id)
            raise InvalidCredentials()

        if account.status is AccountStatus.DELETED:
            raise InvalidCredentials()
        if account.status is AccountStatus.SUSPENDED:
            raise AccountSuspended()
        if account.status is AccountStatus.LOCKED:
            raise AccountLocked()

        return AuthResult(self.tokens.issue_session(account.id, account.role), account)

    # ------------------------------------------------------------------
    # Passwords
    # ------------------------------------------------------------------

    def change_password(self, account_id: int, old_password: str, new_password: str) -> None:
        """Replace the credential after proving the old password."""
        self._require_password(new_password)
        now = self._clock()

        def _change(conn: Connection) -> None:
            self._load_account(conn, account_id)
            credential = self._store.get_credential(conn, account_id)
            if credential is None:
                raise AccountNotFound("User credentials not found")
            if not vault.verify(old_password, credential.salt, credential.salted_hash):
                raise InvalidCredentials("Current password is incorrect")
            if vault.verify(new_password, credential.salt, credential.salted_hash):
                raise PasswordUnchanged()
            self._store.replace_credential(conn, self._new_credential(account_id, new_password))
            self._store.update_account(conn, account_id, now)

        self.coordinator.run(_change, name="change_password")
        logger.info("Password changed for account %s", account_id)

    def request_password_reset(self, email: str) -> dict:
        """Send a reset link to a verified email. The answer never varies.

        Accounts that do not exist, are deleted or have an unverified email
        get the same notice and nothing is sent. A dispatch failure is logged,
        never reported.
        In debug mode the link is echoed back.
        """
        response: dict = {"message": _RESET_NOTICE}
        with self._store.connect() as conn:
            account = self._store.get_account_by_email(conn, normalize_email(email))
        if account is None or not account.email_verified or account.status is AccountStatus.DELETED:
            return response

        token = self.tokens.issue_purpose(account.id, TokenPurpose.PASSWORD_RESET)
        url = f"{self._settings.app_base_url}/auth/password/reset?token={token}"
        ttl_minutes = self._settings.password_reset_ttl_seconds // 60
        if not self._dispatcher.send(account.email, password_reset_email(account.firstname, url, ttl_minutes)):
            logger.error("Password reset email dispatch failed for account %s", account.id)
        if self._settings.debug:
            response["resetUrl"] = url
        return response

    def reset_password(self, token: str, new_password: str) -> None:
        """Set a new password with a password-reset purpose token, once.

        Fails TokenExpired for an expired token, InvalidToken for any other
        verification failure, for a token that was already used and for an
        account that is gone or deleted.
        """
        self._require_password(new_password)
        result =self.tokens.verify_purpose(token, TokenPurpose.PASSWORD_RESET)
        if not result.ok:
            if result.failure is TokenFailure.EXPIRED:
                raise TokenExpired()
            raise InvalidToken()
        claims = result.claims
        now = self._clock()

        def _reset(conn: Connection) -> None:
            account = self._store.get_account(conn, claims.account_id)
            if account is None or account.status is AccountStatus.DELETED:
                raise InvalidToken()
            if self._store.is_token_consumed(conn, claims.jti):
                logger.warning("Replay of a consumed reset token for account %s", claims.account_id)
                raise InvalidToken()
            self._store.purge_consumed_tokens(conn, now)
            self._store.mark_token_consumed(
                conn, claims.jti, claims.account_id, claims.purpose.value, claims.expires_at, now
            )
            self._store.replace_credential(conn, self._new_credential(claims.account_id, new_password))
            self._store.update_account(conn, claims.account_id, now)

        self.coordinator.run(_reset, name="reset_password")
        logger.info("Password reset for account %s", claims.account_id)

    # ------------------------------------------------------------------
    # Verification
    # ------------------------------------------------------------------

    def request_email_verification(self, account_id: int) -> dict:
        record = self.verification.request_email_verification(account_id)
        with self._store.connect() as conn:
            account = self._load_account(conn, account_id)
        url = f"{self._settings.app_base_url}/auth/verify/email/confirm?token={record.token}"
        ttl_hours = self._settings.email_token_ttl_seconds // 3600
        self._dispatch(record.email, verification_email(account.firstname, url, ttl_hours))

        response: dict = {"expiresIn": f"{ttl_hours} hours"}
        if self._settings.debug:
            response["verificationUrl"] = url
        return response

    def confirm_email_verification(self, token: str) -> None:
        self.verification.confirm_email_verification(token)

    def request_phone_verification(self, account_id: int) -> dict:
        record = self.verification.request_phone_verification(account_id)
        ttl_minutes = self._settings.phone_code_ttl_seconds // 60
        self._dispatch(record.phone, sms_code(record.code, ttl_minutes))

        response: dict = {"expiresIn": f"{ttl_minutes} minutes"}
        if self._settings.debug:
            response["verificationCode"] = record.code
        return response

    def confirm_phone_code(self, account_id: int, code: str) -> None:
        self.verification.confirm_phone_code(account_id, code)

    # ------------------------------------------------------------------
    # Administration
    # ------------------------------------------------------------------

    def get_account(self, account_id: int) -> Account:
        with self._store.connect() as conn:
            return self._load_account(conn, account_id)

    def change_role(self, actor: SessionClaims | None, target_id: int, new_role: int) -> dict:
        """Assign new_role to the target. Both roles must sit below the actor's."""
        actor = guard.require_minimum_role(actor, Role.ADMIN)
        role = guard.coerce_role(new_role)
        now = self._clock()

        def _change(conn: Connection) -> dict:
            target = self._load_account(conn, target_id)
            guard.check_role_change(actor, target_id, target.role, role)
            self._store.update_account(conn, target_id, now, role=role)
            return {"userId": target_id, "oldRole": target.role.display_name, "newRole": role.display_name}

        outcome = self.coordinator.run(_change, name="change_role")
        logger.info(
            "Account %s changed role of %s: %s -> %s",
            actor.account_id,
            target_id,
            outcome["oldRole"],
            outcome["newRole"],
        )
        return outcome

    def admin_create_account(
        self,
        actor: SessionClaims | None,
        profile: AccountProfile,
        password: str,
        role: int = Role.USER,
    ) -> Account:
        """Create an active account with a role strictly below the actor's."""
        actor = guard.require_minimum_role(actor, Role.ADMIN)
        target_role = guard.coerce_role(role)
        if not guard.can_act_on(actor.role, target_role):
            raise InsufficientRole("Cannot create user with equal or higher role")
        account = self._create_account(profile, password, target_role, AccountStatus.ACTIVE)
        logger.info("Account %s created account %s as %s", actor.account_id, account.id, target_role.display_name)
        return account

    def admin_reset_password(self, actor: SessionClaims | None, target_id: int, new_password: str) -> dict:
        """Overwrite a lower-role account's credential without its old password."""
        actor = guard.require_minimum_role(actor, Role.ADMIN)
        self._require_password(new_password)
        now = self._clock()

        def _reset(conn: Connection) -> dict:
            target = self._load_account(conn, target_id)
            guard.require_can_act_on(actor, target_id, target.role)
            self._store.replace_credential(conn, self._new_credential(target_id, new_password))
            self._store.update_account(conn, target_id, now)
            return {"userId": target_id, "email": target.email}

        outcome = self.coordinator.run(_reset, name="admin_reset_password")
        logger.info("Account %s reset the password of %s", actor.account_id, target_id)
        return outcome

    def admin_update_account(self, actor: SessionClaims | None, target_id: int, **changes) -> Account:
        """Edit profile fields and status of a lower-role account.

        Changing email or phone clears the matching verified flag. Identity
        fields are re-checked for uniqueness against every other account.
        """
        actor = guard.require_minimum_role(actor, Role.ADMIN)
        fields = {k: v for k, v in changes.items() if k in _PROFILE_FIELDS and v is not None}
        if "email" in fields:
            fields["email"] = normalize_email(fields["email"])
        status = changes.get("status")
        if status is not None:
            try:
                status = AccountStatus(status)
            except ValueError:
                raise InvalidStatus() from None
            if status not in _ASSIGNABLE_STATUSES:
                raise InvalidStatus()
            fields["status"] = status
        if not fields:
            raise NothingToUpdate()
        now = self._clock()

        def _update(conn: Connection) -> Account:
            target = self._load_account(conn, target_id)
            guard.require_can_act_on(actor, target_id, target.role)
            identity = {k: fields[k] for k in ("email", "username", "phone") if k in fields}
            clash = self._store.find_identity_conflict(conn, exclude_id=target_id, **identity)
            if clash is not None:
                raise DuplicateIdentity(clash)
            if "email" in fields and fields["email"] != target.email:
                fields["email_verified"] = False
            if "phone" in fields and fields["phone"] != target.phone:
                fields["phone_verified"] = False
            self._store.update_account(conn, target_id, now, **fields)
            return self._load_account(conn, target_id)

        return self.coordinator.run(_update, name="admin_update_account")

    def delete_account(self, actor: SessionClaims | None, target_id: int) -> dict:
        """Soft delete: the account moves to status "deleted" and stays in the store."""
        actor = guard.require_minimum_role(actor, Role.ADMIN)
        now = self._clock()

        def _delete(conn: Connection) -> dict:
            target = self._load_account(conn, target_id)
            guard.require_can_act_on(actor, target_id, target.role)
            if target.status is AccountStatus.DELETED:
                raise AlreadyDeleted()
            self._store.update_account(conn, target_id, now, status=AccountStatus.DELETED)
            return {"userId": target_id, "status": AccountStatus.DELETED.value}

        outcome = self.coordinator.run(_delete, name="delete_account")
        logger.info("Account %s deleted account %s", actor.account_id, target_id)
        return outcome
