# Overview: Transaction and row-locking helpers shared by the workflow services.

from __future__ import annotations

import time

from flask import current_app
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db
from .errors import ConcurrencyConflict


# Failures caused by a competing writer; the operation is retried on fresh state.
# IntegrityError only counts when it is a unique-constraint violation.
RETRYABLE_ERRORS = (OperationalError, StaleDataError, IntegrityError)

# SQLite, PostgreSQL, MySQL
UNIQUE_VIOLATION_MARKERS = ("unique constraint", "duplicate key", "duplicate entry")


def is_unique_violation(exc: IntegrityError) -> bool:
    """True when the driver reports a unique/primary-key collision."""
    if getattr(exc.orig, "pgcode", None) == "23505":
        return True
    message = str(exc.orig).lower()
    return any(marker in message for marker in UNIQUE_VIOLATION_MARKERS)


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    populate_existing() refreshes objects already in the identity map, so
    the caller always decides on the locked, committed state.

    NOTE: SQLite ignores SELECT ... FOR UPDATE; the version_id columns and
    unique constraints catch the losing writer there instead.
    """
    return query.with_for_update().populate_existing()


def run_atomic(func, *, attempts: int | None = None, backoff_base: float = 0.05, label: str = "operation"):
    """
    Run func() and commit as a single transaction.

    Any exception rolls the session back, so nothing func() wrote survives
    a failure. Concurrency failures (deadlocks/locks, optimistic version
    mismatches, unique-constraint races) are retried with backoff; when the
    budget is spent they surface as ConcurrencyConflict. Other integrity
    errors (NOT NULL, foreign keys) are not races and propagate at once.
    """
    if attempts is None:
        attempts = current_app.config.get("TRANSACTION_RETRY_ATTEMPTS", 3)

    for attempt in range(attempts):
        try:
            result = func()
            db.session.commit()
            return result
        except RETRYABLE_ERRORS as exc:
            db.session.rollback()
            if isinstance(exc, IntegrityError) and not is_unique_violation(exc):
                raise
            if attempt >= attempts - 1:
                raise ConcurrencyConflict(
                    f"{label} lost a concurrent update after {attempts} attempts",
                    details={"reason": type(exc).__name__},
                ) from exc
            current_app.logger.warning(
                "%s hit %s (attempt %d/%d); retrying", label, type(exc).__name__, attempt + 1, attempts
            )
            time.sleep(backoff_base * (2 ** attempt))
        except Exception:
            db.session.rollback()
            raise
