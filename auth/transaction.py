"""
auth/transaction.py -- Atomic multi-step persistence.

TransactionCoordinator.run() hands one Connection to a caller-supplied
operation inside BEGIN ... COMMIT. If any step raises, every mutation made
through that connection is rolled back, so partial application is never
visible outside.

Two kinds of exception leave run():
  AuthError subclasses -- refusals decided inside the operation (e.g. a purpose
      token already consumed). The transaction is rolled back and the error
      propagates unchanged; it is an outcome the caller must report.
  Anything else -- an unexpected persistence failure. It is logged with full
      detail here and replaced by an opaque TransactionFailed.

Nothing is retried. The caller decides whether to try again.
"""

from __future__ import annotations

import logging
from typing import Callable, TypeVar

from sqlalchemy.engine import Connection

from auth.store import AccountStore
from core.errors import AuthError, TransactionFailed

logger = logging.getLogger("authsquared.transaction")

T = TypeVar("T")


class TransactionCoordinator:
    """Runs a sequence of store mutations as one unit of work.

    Usage:
        coordinator = TransactionCoordinator(store)
        account_id = coordinator.run(lambda conn: store.insert_account(conn, account, now))
    """

    def __init__(self, store: AccountStore) -> None:
        self._store = store

    def run(self, operation: Callable[[Connection], T], name: str = "transaction") -> T:
        try:
            with self._store.engine.begin() as conn:
                return operation(conn)
        except AuthError:
            raise
        except Exception as exc:
            logger.exception("%s rolled back after an unexpected error", name)
            raise TransactionFailed() from exc
