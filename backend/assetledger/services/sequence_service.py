# Overview: Service-layer operations for sequence allocation; encapsulates business logic and database work.

"""
Sequence Allocator

WHY: transaction_id must be globally unique and strictly increasing in
allocation order; entry_no groups the Stock_Out entries of one order.
Reading max()+1 and writing later lets two callers hand out the same ID,
so allocation goes through a counter row advanced with a single atomic
UPDATE inside the caller's transaction.

DESIGN:
- current_value is the last value handed out
- A rollback of the caller's unit of work also rolls back the counter,
  so IDs stay dense
- Missing counter rows are seeded from the ledger maximum, so data that
  was written before the counter existed (imports, backfills) continues
  densely
- Counters never move backwards
"""

from __future__ import annotations

import logging

from sqlalchemy import func, update
from sqlalchemy.exc import IntegrityError

from ..errors import ConcurrencyConflict, ValidationError
from ..extensions import db
from ..models import LedgerEntry, SequenceCounter
from ..models.inventory import ENTRY_STOCK_OUT


logger = logging.getLogger(__name__)

TRANSACTION_ID = "transaction_id"
ENTRY_NO = "entry_no"
SEQUENCE_NAMES = (TRANSACTION_ID, ENTRY_NO)


def _check_name(sequence_name: str) -> None:
    if sequence_name not in SEQUENCE_NAMES:
        raise ValidationError(
            f"Unknown sequence: {sequence_name}",
            details={"allowed": list(SEQUENCE_NAMES)},
        )


def ledger_max(sequence_name: str) -> int:
    """Highest value of the sequence present in the ledger (0 when empty)."""
    _check_name(sequence_name)
    if sequence_name == TRANSACTION_ID:
        value = db.session.query(func.max(LedgerEntry.transaction_id)).scalar()
    else:
        value = (
            db.session.query(func.max(LedgerEntry.entry_no))
            .filter(LedgerEntry.type == ENTRY_STOCK_OUT)
            .scalar()
        )
    return int(value or 0)


def _seed_counter(sequence_name: str) -> None:
    counter = SequenceCounter(name=sequence_name, current_value=ledger_max(sequence_name))
    db.session.add(counter)
    try:
        db.session.flush()
    except IntegrityError as exc:
        # Another caller seeded the same counter first; our transaction is
        # unusable now, so the whole unit must be retried by the caller.
        db.session.rollback()
        raise ConcurrencyConflict(
            f"Sequence {sequence_name} was initialised concurrently; retry the operation.",
            details={"sequence": sequence_name},
        ) from exc
    logger.info("Seeded sequence %s at %s", sequence_name, counter.current_value)


def next_batch(sequence_name: str, n: int) -> list[int]:
    """
    Atomically allocate `n` consecutive values.

    Must be called inside the caller's unit of work; the values become
    permanent only when that unit commits.
    """
    _check_name(sequence_name)
    if n < 1:
        raise ValidationError("Batch size must be at least 1", details={"n": n})

    stmt = (
        update(SequenceCounter)
        .where(SequenceCounter.name == sequence_name)
        .values(current_value=SequenceCounter.current_value + n)
        .execution_options(synchronize_session=False)
    )

    result = db.session.execute(stmt)
    if not result.rowcount:
        _seed_counter(sequence_name)
        result = db.session.execute(stmt)
        if not result.rowcount:
            raise ConcurrencyConflict(
                f"Sequence {sequence_name} could not be advanced",
                details={"sequence": sequence_name},
            )

    current = (
        db.session.query(SequenceCounter.current_value)
        .filter(SequenceCounter.name == sequence_name)
        .scalar()
    )
    return list(range(current - n + 1, current + 1))


def next_id(sequence_name: str) -> int:
    """Atomically allocate one value."""
    return next_batch(sequence_name, 1)[0]


def scan_next_id(sequence_name: str) -> int:
    """
    Legacy allocation rule: max existing value + 1.

    NOTE: Racy. Two callers can observe the same maximum. Kept for audits
    (comparing the counter with what the ledger implies), never used to
    hand out IDs.
    """
    return ledger_max(sequence_name) + 1


def resync_counter(sequence_name: str) -> dict:
    """
    Raise a counter to the ledger maximum (after bulk import or manual repair).

    Commits. Never lowers a counter.
    """
    _check_name(sequence_name)
    observed = ledger_max(sequence_name)
    counter = db.session.query(SequenceCounter).filter_by(name=sequence_name).first()

    if counter is None:
        counter = SequenceCounter(name=sequence_name, current_value=observed)
        db.session.add(counter)
        previous = None
    else:
        previous = counter.current_value
        if observed > counter.current_value:
            counter.current_value = observed

    db.session.commit()
    if previous != counter.current_value:
        logger.info("Resynced sequence %s: %s -> %s", sequence_name, previous, counter.current_value)

    return {
        "name": sequence_name,
        "previous": previous,
        "current": counter.current_value,
        "ledger_max": observed,
    }


def sequence_report() -> list[dict]:
    """Counter value next to the ledger maximum for each sequence."""
    rows = []
    for name in SEQUENCE_NAMES:
        counter = db.session.query(SequenceCounter).filter_by(name=name).first()
        rows.append({
            "name": name,
            "current": counter.current_value if counter else None,
            "ledger_max": ledger_max(name),
            "scan_next": scan_next_id(name),
        })
    return rows
