# Overview: Service-layer operations for concurrency; encapsulates business logic and database work.

from __future__ import annotations

import time

from flask import current_app
from sqlalchemy import text
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db
from ..errors import ConflictError


RETRYABLE_ERRORS = (OperationalError, StaleDataError, ConflictError)


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    SQLite writers are serialized by begin_write() instead.
    """
    return query.with_for_update()


def begin_write() -> None:
    """
    Open the current unit of work as a write transaction.

    On SQLite this takes the database RESERVED lock up front (BEGIN IMMEDIATE)
    so two writers queue on the busy timeout instead of deadlocking when both
    try to upgrade a shared lock. Other dialects rely on row locks and the
    conditional UPDATE statements in stock_service / credit_service.
    """
    if db.engine.dialect.name == "sqlite":
        db.session.execute(text("BEGIN IMMEDIATE"))


def run_with_retry(func, *, attempts: int | None = None, backoff_base: float = 0.05):
    """
    Execute a DB operation with retry on concurrency-related failures.

    Retries on OperationalError (deadlocks, locks), StaleDataError
    (optimistic locking conflicts) and ConflictError (lost compare-and-swap).
    Any other exception rolls the session back and propagates unchanged.
    """
    if attempts is None:
        attempts = current_app.config.get("WRITE_RETRY_ATTEMPTS", 3)

    last_exc = None
    for attempt in range(attempts):
        try:
            return func()
        except RETRYABLE_ERRORS as exc:
            db.session.rollback()
            last_exc = exc
            if attempt >= attempts - 1:
                break
            current_app.logger.warning(
                "Write contention (%s), retrying attempt %d/%d",
                type(exc).__name__, attempt + 2, attempts,
            )
            time.sleep(backoff_base * (2 ** attempt))
        except Exception:
            db.session.rollback()
            raise

    if isinstance(last_exc, ConflictError):
        raise last_exc
    if isinstance(last_exc, StaleDataError) or _is_lock_error(last_exc):
        raise ConflictError(
            "Concurrent update in progress, please retry",
            details={"cause": type(last_exc).__name__},
        ) from last_exc
    raise last_exc


def _is_lock_error(exc: Exception) -> bool:
    message = str(getattr(exc, "orig", exc)).lower()
    return "locked" in message or "deadlock" in message or "could not serialize" in message
