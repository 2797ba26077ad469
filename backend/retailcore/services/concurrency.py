# Overview: Locking, bounded retry and timeout mapping for storage work.

from __future__ import annotations

import time

from flask import current_app
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..errors import StorageTimeout
from ..extensions import db


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE; version_id_col columns catch
    the conflicting write there instead (StaleDataError).
    """
    return query.with_for_update()


def _is_lock_timeout(exc: OperationalError) -> bool:
    text = str(getattr(exc, "orig", exc)).lower()
    return any(
        marker in text
        for marker in ("database is locked", "lock timeout", "lock wait timeout", "canceling statement")
    )


def _to_timeout(exc: Exception) -> StorageTimeout:
    return StorageTimeout(f"Storage call did not complete in time: {getattr(exc, 'orig', exc)}")


def run_with_retry(func, *, attempts: int | None = None, backoff_base: float | None = None):
    """
    Execute a single-owner DB operation with retry on concurrency failures.

    Retries on OperationalError (locks) and StaleDataError (optimistic locking
    conflicts); retrying a pure serialization conflict is safe. When the last
    attempt still conflicts, the failure surfaces as StorageTimeout.
    """
    if attempts is None:
        attempts = current_app.config.get("LOCK_RETRY_ATTEMPTS", 3)
    if backoff_base is None:
        backoff_base = current_app.config.get("LOCK_RETRY_BACKOFF_SECONDS", 0.1)

    for attempt in range(attempts):
        try:
            return func()
        except (OperationalError, StaleDataError) as exc:
            db.session.rollback()
            if isinstance(exc, OperationalError) and not _is_lock_timeout(exc):
                raise
            if attempt >= attempts - 1:
                raise _to_timeout(exc) from exc
            time.sleep(backoff_base * (2 ** attempt))


def run_once(func):
    """
    Execute a cross-owner DB operation exactly once.

    Never retried: the caller decides, since a partially observed financial
    operation must not be replayed blindly. Lock/version conflicts are rolled
    back and reported as StorageTimeout.
    """
    try:
        return func()
    except StaleDataError as exc:
        db.session.rollback()
        raise _to_timeout(exc) from exc
    except OperationalError as exc:
        db.session.rollback()
        if _is_lock_timeout(exc):
            raise _to_timeout(exc) from exc
        raise


def commit_once():
    """Commit the current session; a lock timeout is rolled back and reported."""
    return run_once(db.session.commit)
