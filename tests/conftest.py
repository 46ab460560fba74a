"""
tests/conftest.py -- Shared fixtures for the identity core tests.

This module provides:
  - FakeClock: a controllable UTC clock, injected wherever the core reads time
  - RecordingDispatcher: captures composed messages instead of sending them
  - store / service fixtures backed by a fresh in-memory SQLite database
  - make_profile() / make_account() / claims_for() helpers

Plain sqlite:///:memory: is enough here: every test runs in one thread, and
SQLAlchemy keeps one connection per thread for :memory: URLs, so all
connections in a test see the same database.

DEBUG and HASH_ROUNDS must be set before any auth/core import so
get_settings() auto-generates SECRET_KEY and the digest stays cheap.
"""

from __future__ import annotations

import os
from collections.abc import Generator
from datetime import datetime, timedelta, timezone

# CRITICAL: Set before any auth/core import (get_settings() is cached).
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("HASH_ROUNDS", "1")

import pytest

from auth.messages import Message
from auth.models import Account, AccountProfile, Role, SessionClaims
from auth.service import AuthService
from auth.store import AccountStore

# ---------------------------------------------------------------------------
# Test doubles
# ---------------------------------------------------------------------------


class FakeClock:
    """Callable clock that only moves when a test advances it."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta) -> None:
        self.now += timedelta(**delta)


class RecordingDispatcher:
    """Dispatcher that records (recipient, message) pairs. Set fail=True to refuse."""

    def __init__(self) -> None:
        self.sent: list[tuple[str, Message]] = []
        self.fail = False

    def send(self, recipient: str, content: Message) -> bool:
        if self.fail:
            return False
        self.sent.append((recipient, content))
        return True


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def make_profile(n: int = 1, **overrides) -> AccountProfile:
    fields = {
        "firstname": f"First{n}",
        "lastname": f"Last{n}",
        "username": f"user{n}",
        "email": f"user{n}@example.com",
        "phone": f"+1555000{n:04d}",
    }
    fields.update(overrides)
    return AccountProfile(**fields)


def set_account_fields(store: AccountStore, clock: FakeClock, account_id: int, **fields) -> None:
    """Write account fields directly, bypassing the service rules."""
    with store.engine.begin() as conn:
        store.update_account(conn, account_id, clock(), **fields)


def claims_for(account: Account, clock: FakeClock, role: Role | None = None) -> SessionClaims:
    return SessionClaims(
        account_id=account.id,
        role=role if role is not None else account.role,
        issued_at=clock(),
        expires_at=clock() + timedelta(days=14),
    )


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def dispatcher() -> RecordingDispatcher:
    return RecordingDispatcher()


@pytest.fixture
def store() -> Generator[AccountStore, None, None]:
    s = AccountStore("sqlite:///:memory:")
    yield s
    s.close()


@pytest.fixture
def service(store: AccountStore, dispatcher: RecordingDispatcher, clock: FakeClock) -> AuthService:
    return AuthService(store, dispatcher=dispatcher, clock=clock)


@pytest.fixture
def make_account(service: AuthService, store: AccountStore, clock: FakeClock):
    """Factory: register account n with password "pass-n", then apply field overrides."""

    def _make(n: int = 1, password: str | None = None, **fields) -> Account:
        result = service.register(make_profile(n), password or f"pass-{n}")
        if fields:
            set_account_fields(store, clock, result.account.id, **fields)
        return service.get_account(result.account.id)

    return _make
