# Overview: Service-layer operations for consistency; encapsulates the read-phase/write-phase contract shared by every workflow.

"""
Consistency Coordinator

WHY: A workflow touches the asset registry, the ledger and an order/demo
record. Either all of those writes land or none do.

CONTRACT:
1. Read phase: validate and look things up. Nothing is written; a
   ValidationError raised here leaves the store untouched.
2. Write phase: everything inside `unit_of_work()` is committed once.
   Any exception rolls the whole unit back.
3. Conditional writes (`compare_and_set_status`) re-check the availability
   that the read phase observed. If another caller got there first the unit
   fails with ConcurrencyConflict instead of silently double-booking.
4. Secondary writes run after the primary commit in their own transaction.
   Their failure is logged and reported as a warning (partial success).
"""

from __future__ import annotations

import logging
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Callable, Iterable

from flask import current_app, has_app_context
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError
from sqlalchemy.orm.exc import StaleDataError

from ..errors import ConcurrencyConflict, LedgerError
from ..extensions import db
from ..models import Asset


logger = logging.getLogger(__name__)


@dataclass
class OperationResult:
    """
    Outcome of a workflow call.

    `data` carries the operation payload; `warnings` is non-empty only for
    partial success (primary write committed, a follow-up write did not).
    """
    data: dict = field(default_factory=dict)
    warnings: list[str] = field(default_factory=list)

    @property
    def partial(self) -> bool:
        return bool(self.warnings)

    def to_dict(self) -> dict:
        body = {"success": True}
        body.update(self.data)
        body["warnings"] = list(self.warnings)
        body["partial_success"] = self.partial
        return body


def lock_for_update(query):
    """
    Apply row-level locking for critical reads.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    """
    return query.with_for_update()


def _configured_attempts(default: int = 3) -> int:
    if has_app_context():
        return int(current_app.config.get("RETRY_ATTEMPTS", default))
    return default


def run_with_retry(func, *, attempts: int | None = None, backoff_base: float = 0.1):
    """
    Execute a DB operation with retry on lock/deadlock failures.

    Retries OperationalError ("database is locked", deadlocks). A
    ConcurrencyConflict is a business outcome and is never retried here.
    """
    if attempts is None:
        attempts = _configured_attempts()
    last_exc = None
    for attempt in range(attempts):
        try:
            return func()
        except OperationalError as exc:
            db.session.rollback()
            last_exc = exc
            if attempt >= attempts - 1:
                raise
            logger.info("Retrying after lock failure (attempt %s/%s): %s", attempt + 1, attempts, exc)
            time.sleep(backoff_base * (2 ** attempt))
    if last_exc:
        raise last_exc


@contextmanager
def unit_of_work():
    """
    One atomic multi-record write.

    Commits once on clean exit. On any exception the session is rolled
    back; store-level uniqueness or version failures become
    ConcurrencyConflict.
    """
    try:
        yield db.session
        db.session.commit()
    except IntegrityError as exc:
        db.session.rollback()
        raise ConcurrencyConflict(
            "Write rejected by a uniqueness constraint; another caller changed the same records.",
            details={"reason": "integrity", "db_error": str(exc.orig)},
        ) from exc
    except StaleDataError as exc:
        db.session.rollback()
        raise ConcurrencyConflict(
            "Record was modified by another caller.",
            details={"reason": "stale_version"},
        ) from exc
    except Exception:
        db.session.rollback()
        raise


def compare_and_set_status(
    serial_keys: Iterable[str],
    *,
    expected: Iterable[str],
    new_status: str,
    location: str | None = None,
) -> int:
    """
    Conditionally move assets to `new_status`.

    Issues one UPDATE ... WHERE serial_key IN (...) AND status IN (expected).
    If fewer rows match than were requested, some asset is no longer in an
    expected status and the caller's unit of work must not commit.

    Returns the number of updated rows.
    """
    keys = sorted(set(serial_keys))
    if not keys:
        return 0
    expected = tuple(expected)

    values = {"status": new_status, "version_id": Asset.version_id + 1}
    if location is not None:
        values["location"] = location

    stmt = (
        update(Asset)
        .where(Asset.serial_key.in_(keys), Asset.status.in_(expected))
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    result = db.session.execute(stmt)

    if result.rowcount != len(keys):
        raise ConcurrencyConflict(
            "Item availability changed before the write could complete.",
            details={
                "serial_numbers": keys,
                "expected_status": list(expected),
                "updated": result.rowcount,
            },
        )
    return result.rowcount


def secondary_write(result: OperationResult, label: str, fn: Callable[[], None]) -> bool:
    """
    Run a non-critical follow-up write in its own transaction.

    On failure the follow-up is rolled back, logged, and recorded as a
    warning on `result`. The primary write is already committed.
    """
    try:
        fn()
        db.session.commit()
    except (SQLAlchemyError, LedgerError) as exc:
        db.session.rollback()
        logger.warning("Secondary write '%s' failed: %s", label, exc)
        result.warnings.append(f"{label} failed: {exc}")
        return False
    return True
