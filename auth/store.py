"""
auth/store.py -- SQLAlchemy Core persistence layer for the identity core.

Pattern: Repository + Data Mapper. AccountStore is the repository; the
_row_to_* functions are the mappers. Service and workflow code never touches
SQL directly.

Every repository method takes the Connection it runs on as its first argument.
Reads may use a short-lived connection from connect(); every mutation runs on
the connection handed out by TransactionCoordinator.run() so a multi-step
change commits or rolls back as one unit. Methods never open a connection of
their own while a caller's transaction is in flight.

Security:
  All queries use bound parameters. No f-strings in SQL.

Schema notes:
  Timestamps are stored as ISO 8601 UTC strings and mapped back to aware
  datetimes, so the same schema works on SQLite and Postgres.

  email_verifications.account_id and phone_verifications.account_id are
  UNIQUE: at most one live record per account and channel, even if two
  requests race on delete-then-insert.

  consumed_tokens.jti is the primary key: a purpose token can be consumed
  once, and a concurrent second consumption fails its whole transaction.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Boolean, Column, ForeignKey, Integer, MetaData, String, Table, create_engine, event, select
from sqlalchemy.engine import Connection, Engine

from auth.models import (
    Account,
    AccountStatus,
    Credential,
    EmailVerificationRecord,
    PhoneVerificationRecord,
    Role,
)
from core.config import get_settings

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_accounts = Table(
    "accounts",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("firstname", String(255), nullable=False),
    Column("lastname", String(255), nullable=False),
    Column("username", String(255), nullable=False, unique=True),
    Column("email", String(255), nullable=False, unique=True),
    Column("email_verified", Boolean, nullable=False, default=False),
    Column("phone", String(15), nullable=False, unique=True),
    Column("phone_verified", Boolean, nullable=False, default=False),
    Column("role", Integer, nullable=False),
    Column("status", String(20), nullable=False, default=AccountStatus.PENDING.value),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)

_credentials = Table(
    "account_credentials",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("account_id", Integer, ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False, unique=True),
    Column("salted_hash", String(255), nullable=False),
    Column("salt", String(255), nullable=False),
)

_email_verifications = Table(
    "email_verifications",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("account_id", Integer, ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False, unique=True),
    Column("email", String(255), nullable=False),
    Column("token", String(64), nullable=False, unique=True),
    Column("expires_at", String(32), nullable=False),
    Column("verified", Boolean, nullable=False, default=False),
    Column("created_at", String(32), nullable=False),
)

_phone_verifications = Table(
    "phone_verifications",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("account_id", Integer, ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False, unique=True),
    Column("phone", String(15), nullable=False),
    Column("code", String(6), nullable=False),
    Column("expires_at", String(32), nullable=False),
    Column("attempts", Integer, nullable=False, default=0),
    Column("verified", Boolean, nullable=False, default=False),
    Column("created_at", String(32), nullable=False),
)

_consumed_tokens = Table(
    "consumed_tokens",
    _metadata,
    Column("jti", String(64), primary_key=True),
    Column("account_id", Integer, nullable=False),
    Column("purpose", String(30), nullable=False),
    Column("expires_at", String(32), nullable=False),
    Column("consumed_at", String(32), nullable=False),
)

# Order matters: the first clash found is the one reported.
_IDENTITY_FIELDS = ("email", "username", "phone")


# ---------------------------------------------------------------------------
# WAL mode
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode so readers are not blocked during writes.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _iso(value: datetime) -> str:
    return value.isoformat()


def _parse(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class AccountStore:
    """Repository for accounts, credentials and verification records.

    Usage:
        store = AccountStore("sqlite:///:memory:")
        with store.connect() as conn:
            account = store.get_account(conn, 1)
        store.close()
    """

    def __init__(self, db_url: str | None = None) -> None:
        db_url = db_url or get_settings().database_url
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        _metadata.create_all(self.engine)

    def connect(self) -> Connection:
        """Open a connection for reads outside any transaction."""
        return self.engine.connect()

    # ------------------------------------------------------------------
    # Accounts
    # ------------------------------------------------------------------

    def get_account(self, conn: Connection, account_id: int) -> Account | None:
        row = conn.execute(_accounts.select().where(_accounts.c.id == account_id)).fetchone()
        return _row_to_account(row) if row is not None else None

    def get_account_by_email(self, conn: Connection, email: str) -> Account | None:
        """Lookup by email. Callers pass it through normalize_email() first."""
        row = conn.execute(_accounts.select().where(_accounts.c.email == email)).fetchone()
        return _row_to_account(row) if row is not None else None

    def find_identity_conflict(
        self,
        conn: Connection,
        exclude_id: int | None = None,
        **identity: str,
    ) -> str | None:
        """Return the first of email/username/phone already taken, else None.

        Only the fields passed in are checked. exclude_id skips the account
        being edited so it does not clash with itself.
        """
        for field in _IDENTITY_FIELDS:
            value = identity.get(field)
            if value is None:
                continue
            query = select(_accounts.c.id).where(_accounts.c[field] == value)
            if exclude_id is not None:
                query = query.where(_accounts.c.id != exclude_id)
            if conn.execute(query).first() is not None:
                return field
        return None

    def insert_account(self, conn: Connection, account: Account, now: datetime) -> int:
        """Insert an account and return its id.

        Raises sqlalchemy.exc.IntegrityError if email, username or phone is taken.
        """
        result = conn.execute(
            _accounts.insert().values(
                firstname=account.firstname,
                lastname=account.lastname,
                username=account.username,
                email=account.email,
                phone=account.phone,
                email_verified=account.email_verified,
                phone_verified=account.phone_verified,
                role=int(account.role),
                status=account.status.value,
                created_at=_iso(now),
                updated_at=_iso(now),
            )
        )
        return result.inserted_primary_key[0]

    def update_account(self, conn: Connection, account_id: int, now: datetime, **fields) -> bool:
        """Update mutable account fields and stamp updated_at.

        Accepted fields: firstname, lastname, username, email, phone, role,
        status, email_verified, phone_verified. Calling with no fields only
        touches updated_at. Returns False if account_id was not found.
        """
        if "role" in fields:
            fields["role"] = int(fields["role"])
        if isinstance(fields.get("status"), AccountStatus):
            fields["status"] = fields["status"].value
        fields["updated_at"] = _iso(now)
        result = conn.execute(_accounts.update().where(_accounts.c.id == account_id).values(**fields))
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Credentials
    # ------------------------------------------------------------------

    def get_credential(self, conn: Connection, account_id: int) -> Credential | None:
        row = conn.execute(_credentials.select().where(_credentials.c.account_id == account_id)).fetchone()
        return _row_to_credential(row) if row is not None else None

    def insert_credential(self, conn: Connection, credential: Credential) -> int:
        result = conn.execute(
            _credentials.insert().values(
                account_id=credential.account_id,
                salted_hash=credential.salted_hash,
                salt=credential.salt,
            )
        )
        return result.inserted_primary_key[0]

    def replace_credential(self, conn: Connection, credential: Credential) -> None:
        """Swap in a new salt and hash, recreating the row if it is missing."""
        result = conn.execute(
            _credentials.update()
            .where(_credentials.c.account_id == credential.account_id)
            .values(salted_hash=credential.salted_hash, salt=credential.salt)
        )
        if result.rowcount == 0:
            self.insert_credential(conn, credential)

    # ------------------------------------------------------------------
    # Email verification
    # ------------------------------------------------------------------

    def get_email_verification(self, conn: Connection, account_id: int) -> EmailVerificationRecord | None:
        row = conn.execute(
            _email_verifications.select().where(_email_verifications.c.account_id == account_id)
        ).fetchone()
        return _row_to_email_verification(row) if row is not None else None

    def get_email_verification_by_token(self, conn: Connection, token: str) -> EmailVerificationRecord | None:
        row = conn.execute(_email_verifications.select().where(_email_verifications.c.token == token)).fetchone()
        return _row_to_email_verification(row) if row is not None else None

    def delete_email_verifications(self, conn: Connection, account_id: int) -> int:
        result = conn.execute(_email_verifications.delete().where(_email_verifications.c.account_id == account_id))
        return result.rowcount

    def insert_email_verification(self, conn: Connection, record: EmailVerificationRecord) -> int:
        result = conn.execute(
            _email_verifications.insert().values(
                account_id=record.account_id,
                email=record.email,
                token=record.token,
                expires_at=_iso(record.expires_at),
                verified=record.verified,
                created_at=_iso(record.created_at),
            )
        )
        return result.inserted_primary_key[0]

    # ------------------------------------------------------------------
    # Phone verification
    # ------------------------------------------------------------------

    def get_phone_verification(self, conn: Connection, account_id: int) -> PhoneVerificationRecord | None:
        row = conn.execute(
            _phone_verifications.select().where(_phone_verifications.c.account_id == account_id)
        ).fetchone()
        return _row_to_phone_verification(row) if row is not None else None

    def delete_phone_verifications(self, conn: Connection, account_id: int) -> int:
        result = conn.execute(_phone_verifications.delete().where(_phone_verifications.c.account_id == account_id))
        return result.rowcount

    def insert_phone_verification(self, conn: Connection, record: PhoneVerificationRecord) -> int:
        result = conn.execute(
            _phone_verifications.insert().values(
                account_id=record.account_id,
                phone=record.phone,
                code=record.code,
                expires_at=_iso(record.expires_at),
                attempts=record.attempts,
                verified=record.verified,
                created_at=_iso(record.created_at),
            )
        )
        return result.inserted_primary_key[0]

    def increment_phone_attempts(self, conn: Connection, record_id: int) -> None:
        """Add one failed attempt. Done in SQL so concurrent guesses all count."""
        conn.execute(
            _phone_verifications.update()
            .where(_phone_verifications.c.id == record_id)
            .values(attempts=_phone_verifications.c.attempts + 1)
        )

    # ------------------------------------------------------------------
    # Consumed purpose tokens
    # ------------------------------------------------------------------

    def is_token_consumed(self, conn: Connection, jti: str) -> bool:
        row = conn.execute(select(_consumed_tokens.c.jti).where(_consumed_tokens.c.jti == jti)).first()
        return row is not None

    def mark_token_consumed(
        self,
        conn: Connection,
        jti: str,
        account_id: int,
        purpose: str,
        expires_at: datetime,
        now: datetime,
    ) -> None:
        """Record a purpose token as used.

        Raises sqlalchemy.exc.IntegrityError if the jti was already recorded.
        """
        conn.execute(
            _consumed_tokens.insert().values(
                jti=jti,
                account_id=account_id,
                purpose=purpose,
                expires_at=_iso(expires_at),
                consumed_at=_iso(now),
            )
        )

    def purge_consumed_tokens(self, conn: Connection, now: datetime) -> int:
        """Drop consumption markers whose tokens have expired anyway.

        Safe at any time: an expired token is rejected on expiry alone.
        """
        result = conn.execute(_consumed_tokens.delete().where(_consumed_tokens.c.expires_at < _iso(now)))
        return result.rowcount

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_account(row) -> Account:
    return Account(
        id=row.id,
        firstname=row.firstname,
        lastname=row.lastname,
        username=row.username,
        email=row.email,
        phone=row.phone,
        role=Role(row.role),
        status=AccountStatus(row.status),
        email_verified=bool(row.email_verified),
        phone_verified=bool(row.phone_verified),
        created_at=_parse(row.created_at),
        updated_at=_parse(row.updated_at),
    )


def _row_to_credential(row) -> Credential:
    return Credential(
        id=row.id,
        account_id=row.account_id,
        salt=row.salt,
        salted_hash=row.salted_hash,
    )


def _row_to_email_verification(row) -> EmailVerificationRecord:
    return EmailVerificationRecord(
        id=row.id,
        account_id=row.account_id,
        email=row.email,
        token=row.token,
        expires_at=_parse(row.expires_at),
        verified=bool(row.verified),
        created_at=_parse(row.created_at),
    )


def _row_to_phone_verification(row) -> PhoneVerificationRecord:
    return PhoneVerificationRecord(
        id=row.id,
        account_id=row.account_id,
        phone=row.phone,
        code=row.code,
        expires_at=_parse(row.expires_at),
        attempts=row.attempts,
        verified=bool(row.verified),
        created_at=_parse(row.created_at),
    )
