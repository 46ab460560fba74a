"""Unit tests for auth/transaction.py -- all-or-nothing persistence.

Covers:
- A failure on the second step leaves no trace of the first step
- Unexpected errors surface as an opaque TransactionFailed
- Domain refusals roll back and propagate unchanged
- A successful operation commits and returns its result
- The store refuses a second live verification record for one account
"""

from __future__ import annotations

from datetime import timedelta

import pytest

from auth.models import Account, Credential, EmailVerificationRecord, PhoneVerificationRecord
from auth.store import AccountStore
from auth.transaction import TransactionCoordinator
from core.errors import AlreadyVerified, TransactionFailed

from tests.conftest import FakeClock


def _account() -> Account:
    return Account(firstname="A", lastname="B", username="ab", email="a@x.com", phone="+15550001111")


@pytest.fixture
def coordinator(store: AccountStore) -> TransactionCoordinator:
    return TransactionCoordinator(store)


def _count_accounts(store: AccountStore) -> int:
    with store.connect() as conn:
        return 0 if store.get_account_by_email(conn, "a@x.com") is None else 1


def test_commit_returns_result(store: AccountStore, coordinator: TransactionCoordinator, clock: FakeClock) -> None:
    def _op(conn):
        account_id = store.insert_account(conn, _account(), clock())
        store.insert_credential(conn, Credential(account_id=account_id, salt="ab", salted_hash="cd"))
        return account_id

    account_id = coordinator.run(_op)
    with store.connect() as conn:
        assert store.get_account(conn, account_id) is not None
        assert store.get_credential(conn, account_id).salted_hash == "cd"


def test_second_step_failure_rolls_back_first(
    store: AccountStore, coordinator: TransactionCoordinator, clock: FakeClock
) -> None:
    def _op(conn):
        store.insert_account(conn, _account(), clock())
        raise RuntimeError("disk full")

    with pytest.raises(TransactionFailed) as exc_info:
        coordinator.run(_op)
    assert isinstance(exc_info.value.__cause__, RuntimeError)
    assert "disk full" not in exc_info.value.message
    assert _count_accounts(store) == 0


def test_constraint_violation_rolls_back(
    store: AccountStore, coordinator: TransactionCoordinator, clock: FakeClock
) -> None:
    def _op(conn):
        account_id = store.insert_account(conn, _account(), clock())
        store.insert_credential(conn, Credential(account_id=account_id, salt="ab", salted_hash="cd"))
        # account_credentials.account_id is UNIQUE
        store.insert_credential(conn, Credential(account_id=account_id, salt="ef", salted_hash="gh"))

    with pytest.raises(TransactionFailed):
        coordinator.run(_op)
    assert _count_accounts(store) == 0


def test_domain_error_propagates_and_rolls_back(
    store: AccountStore, coordinator: TransactionCoordinator, clock: FakeClock
) -> None:
    def _op(conn):
        store.insert_account(conn, _account(), clock())
        raise AlreadyVerified()

    with pytest.raises(AlreadyVerified):
        coordinator.run(_op)
    assert _count_accounts(store) == 0


def test_second_live_verification_record_is_refused(
    store: AccountStore, coordinator: TransactionCoordinator, clock: FakeClock
) -> None:
    """One live email token and one live phone code per account, enforced by the store."""
    expires = clock() + timedelta(minutes=15)

    def _seed(conn):
        account_id = store.insert_account(conn, _account(), clock())
        store.insert_email_verification(
            conn, EmailVerificationRecord(account_id, "a@x.com", "t" * 64, expires, created_at=clock())
        )
        store.insert_phone_verification(
            conn, PhoneVerificationRecord(account_id, "+15550001111", "111111", expires, created_at=clock())
        )
        return account_id

    account_id = coordinator.run(_seed)

    def _second_email(conn):
        store.insert_email_verification(
            conn, EmailVerificationRecord(account_id, "a@x.com", "u" * 64, expires, created_at=clock())
        )

    def _second_phone(conn):
        store.insert_phone_verification(
            conn, PhoneVerificationRecord(account_id, "+15550001111", "222222", expires, created_at=clock())
        )

    for op in (_second_email, _second_phone):
        with pytest.raises(TransactionFailed):
            coordinator.run(op)

    with store.connect() as conn:
        assert store.get_email_verification(conn, account_id).token == "t" * 64
        assert store.get_email_verification_by_token(conn, "u" * 64) is None
        assert store.get_phone_verification(conn, account_id).code == "111111"
