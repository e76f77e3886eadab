# Overview: Unit-of-work scope, row locking and retry for every multi-write engine operation.

from __future__ import annotations

import time
from contextlib import contextmanager

from flask import current_app
from sqlalchemy import text
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..errors import TransactionTimeout

"""
Transaction model (authoritative)

- Every mutating engine operation runs inside exactly one atomic() scope.
- All reads that decide a write (stock, payment sum, sale status) happen
  inside that scope, after the write slot has been taken.
- SQLite: BEGIN IMMEDIATE takes the database write lock up front, so two
  writers are serialized; the busy timeout bounds the wait for the slot.
- PostgreSQL: SELECT ... FOR UPDATE on the product / sale rows, with
  lock_timeout and statement_timeout set for the transaction.
- Every dialect: elapsed time is checked before commit; over the deadline
  the transaction is rolled back and TransactionTimeout is raised.
- Any exception rolls back the whole transaction. There is no partial commit.
"""


_clock = time.monotonic


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE; atomic() relies on BEGIN IMMEDIATE there.
    """
    return query.with_for_update()


def _begin(session, *, acquire_timeout: float, execution_timeout: float) -> None:
    dialect = session.get_bind().dialect.name
    if dialect == "sqlite":
        dbapi_conn = session.connection().connection.dbapi_connection
        # Legacy pysqlite only opens a transaction on DML; if one is already
        # open the write lock is already held.
        if not getattr(dbapi_conn, "in_transaction", False):
            session.execute(text("BEGIN IMMEDIATE"))
    elif dialect == "postgresql":
        session.execute(text(f"SET LOCAL lock_timeout = '{int(acquire_timeout * 1000)}ms'"))
        session.execute(text(f"SET LOCAL statement_timeout = '{int(execution_timeout * 1000)}ms'"))


@contextmanager
def atomic(session, *, acquire_timeout: float = 10.0, execution_timeout: float = 30.0):
    """Commit every write made inside the block, or none of them."""
    started = _clock()
    try:
        _begin(session, acquire_timeout=acquire_timeout, execution_timeout=execution_timeout)
        yield session
        elapsed = _clock() - started
        if elapsed > execution_timeout:
            current_app.logger.warning("Transaction exceeded %.1fs (took %.2fs); rolling back", execution_timeout, elapsed)
            raise TransactionTimeout()
        session.commit()
    except BaseException:
        session.rollback()
        raise


def run_with_retry(session, func, *, attempts: int = 3, backoff_base: float = 0.1):
    """
    Execute a DB operation with retry on concurrency-related failures.

    Retries on OperationalError (deadlocks, locks) and StaleDataError
    (optimistic locking conflicts).
    """
    last_exc = None
    for attempt in range(attempts):
        try:
            return func()
        except (OperationalError, StaleDataError) as exc:
            session.rollback()
            last_exc = exc
            if attempt >= attempts - 1:
                raise
            current_app.logger.info("Retrying after concurrency conflict (attempt %d/%d): %s", attempt + 1, attempts, exc)
            time.sleep(backoff_base * (2 ** attempt))
    if last_exc:
        raise last_exc


def run_in_transaction(
    session,
    func,
    *,
    attempts: int = 3,
    backoff_base: float = 0.1,
    acquire_timeout: float = 10.0,
    execution_timeout: float = 30.0,
):
    """Run func inside atomic(), retrying the whole unit of work on conflicts."""
    def _op():
        with atomic(session, acquire_timeout=acquire_timeout, execution_timeout=execution_timeout):
            return func()

    return run_with_retry(session, _op, attempts=attempts, backoff_base=backoff_base)
