# Overview: Service-layer operations for demo loans; encapsulates business logic and database work.

"""
Demo Loan State Machine

WHY: Items go out to a dealer for demonstration and come back, possibly a
few at a time. The demo record tracks which of its items are still out.

LIFECYCLE:
1. create_demo: Active. One Demo/Demo ledger entry per item, assets
   Active -> Demo
2. return_items: for each returned item a Stock_In/Active entry
   (source demo_return) is appended, the original Demo entry is marked
   Returned and the asset goes Demo -> Active. partially_returned is set
   while 0 < returned < total.
3. When every item is back the demo becomes Returned and
   actual_return_date is set.

Counts always satisfy:
    items_returned_count + items_remaining_count == total_items
"""

from __future__ import annotations

import logging
from datetime import datetime

from ..errors import NotFoundError, ValidationError, require_actor
from ..extensions import db
from ..models import Demo, LedgerEntry
from ..models.documents import DEMO_ACTIVE, DEMO_RETURNED
from ..models.inventory import (
    ASSET_ACTIVE,
    ASSET_DEMO,
    ASSET_RETURNED,
    ENTRY_DEMO,
    ENTRY_STOCK_IN,
    normalize_serial,
)
from ..time_utils import utcnow
from ..validation import clean_serial_list, coerce_datetime, require_text
from . import ledger_service, registry_service, sequence_service
from .consistency import compare_and_set_status, lock_for_update, run_with_retry, unit_of_work


logger = logging.getLogger(__name__)

DEFAULT_CLIENT = "N/A"
DEMO_RETURN_DEALER = "Demo Return"
SOURCE_DEMO = "demo_manual"
SOURCE_DEMO_RETURN = "demo_return"


# =============================================================================
# LOOKUPS
# =============================================================================

def find_demo(demo_number: str, *, for_update: bool = False) -> Demo | None:
    number = (demo_number or "").strip()
    if not number:
        return None
    query = db.session.query(Demo).filter_by(demo_number=number)
    if for_update:
        query = lock_for_update(query)
    return query.first()


def get_demo(demo_number: str, *, for_update: bool = False) -> Demo:
    demo = find_demo(demo_number, for_update=for_update)
    if demo is None:
        raise NotFoundError(f"Demo {demo_number} not found", details={"demo_number": demo_number})
    return demo


def list_demos(status: str | None = None) -> list[Demo]:
    query = db.session.query(Demo)
    if status:
        query = query.filter(Demo.status == status)
    return query.order_by(Demo.created_date.desc(), Demo.id.desc()).all()


def demo_items(demo_number: str) -> list[dict]:
    """Demo entries of a demo, each flagged with whether it has come back."""
    demo = get_demo(demo_number)
    returned = set(demo.returned_transaction_ids or [])
    items = []
    for entry in ledger_service.entries_by_transaction_ids(demo.transaction_ids):
        row = entry.to_dict()
        row["returned"] = entry.transaction_id in returned
        items.append(row)
    return items


def demo_statistics() -> dict:
    total = db.session.query(Demo).count()
    active = db.session.query(Demo).filter(Demo.status == DEMO_ACTIVE).count()
    partially = (
        db.session.query(Demo)
        .filter(Demo.status == DEMO_ACTIVE, Demo.partially_returned.is_(True))
        .count()
    )
    items_out = (
        db.session.query(db.func.coalesce(db.func.sum(Demo.items_remaining_count), 0))
        .filter(Demo.status == DEMO_ACTIVE)
        .scalar()
    )
    overdue = (
        db.session.query(Demo)
        .filter(
            Demo.status == DEMO_ACTIVE,
            Demo.expected_return_date.isnot(None),
            Demo.expected_return_date < utcnow(),
        )
        .count()
    )
    return {
        "total_demos": total,
        "active_demos": active,
        "returned_demos": total - active,
        "partially_returned_demos": partially,
        "active_demo_items": int(items_out or 0),
        "overdue_demos": overdue,
    }


# =============================================================================
# DEMO CREATION
# =============================================================================

def create_demo(
    *,
    user_id: int | None,
    demo_number: str,
    serial_numbers: list[str],
    customer_dealer: str,
    customer_client: str | None = None,
    location: str | None = None,
    demo_purpose: str | None = None,
    expected_return_date: datetime | str | None = None,
    remarks: str | None = None,
    occurred_at: datetime | str | None = None,
) -> Demo:
    """
    Loan N items out as one demo.

    Raises:
        Unauthenticated: no caller
        ValidationError: demo number exists, empty selection, unknown or
            unavailable serials, unparseable expected return date,
            occurred_at earlier than an item's latest activity
        ConcurrencyConflict: an item was taken between read and write
    """
    require_actor(user_id)

    # -- read phase --
    demo_number = require_text(demo_number, "demo_number")
    customer_dealer = require_text(customer_dealer, "customer_dealer")
    customer_client = (customer_client or "").strip() or DEFAULT_CLIENT
    expected_return_date = coerce_datetime(expected_return_date, "expected_return_date")
    occurred_at = coerce_datetime(occurred_at, "occurred_at") or utcnow()

    serials = clean_serial_list(serial_numbers)
    if not serials:
        raise ValidationError("No items selected for the demo")

    if find_demo(demo_number) is not None:
        raise ValidationError(
            f"Demo number {demo_number} already exists",
            details={"demo_number": demo_number},
        )

    keys = [normalize_serial(s) for s in serials]
    assets = registry_service.assets_by_keys(keys)

    missing = [s for s in serials if normalize_serial(s) not in assets]
    if missing:
        raise ValidationError(
            f"Serial numbers not found in inventory: {', '.join(missing)}",
            details={"serial_numbers": missing},
        )

    unavailable = {
        s: assets[normalize_serial(s)].status
        for s in serials
        if assets[normalize_serial(s)].status != ASSET_ACTIVE
    }
    if unavailable:
        raise ValidationError(
            f"Items not available: {', '.join(unavailable)}",
            details={"serial_numbers": list(unavailable), "statuses": unavailable},
        )

    ledger_service.ensure_not_backdated(keys, occurred_at)

    # -- write phase --
    def _write() -> Demo:
        with unit_of_work():
            tx_ids = sequence_service.next_batch(sequence_service.TRANSACTION_ID, len(serials))
            compare_and_set_status(keys, expected=(ASSET_ACTIVE,), new_status=ASSET_DEMO)

            for tx_id, serial in zip(tx_ids, serials):
                asset = assets[normalize_serial(serial)]
                ledger_service.append_entry(
                    entry_type=ENTRY_DEMO,
                    status=ASSET_DEMO,
                    serial_number=asset.serial_number,
                    user_id=user_id,
                    transaction_id=tx_id,
                    asset=asset,
                    occurred_at=occurred_at,
                    location=location or asset.location,
                    customer_dealer=customer_dealer,
                    customer_client=customer_client,
                    demo_purpose=demo_purpose,
                    expected_return_date=expected_return_date,
                    remarks=remarks,
                    source=SOURCE_DEMO,
                )

            demo = Demo(
                demo_number=demo_number,
                demo_purpose=demo_purpose,
                status=DEMO_ACTIVE,
                customer_dealer=customer_dealer,
                customer_client=customer_client,
                location=location,
                transaction_ids=list(tx_ids),
                returned_transaction_ids=[],
                total_items=len(serials),
                items_returned_count=0,
                items_remaining_count=len(serials),
                partially_returned=False,
                expected_return_date=expected_return_date,
                remarks=remarks,
                created_by_user_id=user_id,
                created_date=occurred_at,
            )
            db.session.add(demo)
        return demo

    demo = run_with_retry(_write)
    logger.info("Created demo %s with %s items", demo.demo_number, demo.total_items)
    return demo


# =============================================================================
# RETURNS
# =============================================================================

def _outstanding_entries(demo: Demo) -> list[LedgerEntry]:
    returned = set(demo.returned_transaction_ids or [])
    return [
        e for e in ledger_service.entries_by_transaction_ids(demo.transaction_ids)
        if e.type == ENTRY_DEMO and e.transaction_id not in returned
    ]


def return_items(
    *,
    user_id: int | None,
    demo_number: str,
    serial_numbers: list[str],
    returned_at: datetime | str | None = None,
) -> Demo:
    """
    Bring some (or all) of a demo's items back into stock.

    Raises:
        ValidationError: demo already fully returned, empty selection,
            serials that are not part of the demo or already returned,
            returned_at earlier than an item's latest activity
    """
    require_actor(user_id)
    returned_at = coerce_datetime(returned_at, "returned_at") or utcnow()

    demo = get_demo(demo_number, for_update=True)
    if demo.status == DEMO_RETURNED:
        raise ValidationError(
            f"Demo {demo.demo_number} has already been returned",
            details={"demo_number": demo.demo_number},
        )

    serials = clean_serial_list(serial_numbers)
    if not serials:
        raise ValidationError("No items selected for return")

    outstanding = {e.serial_key: e for e in _outstanding_entries(demo)}
    not_out = [s for s in serials if normalize_serial(s) not in outstanding]
    if not_out:
        raise ValidationError(
            f"Items not on loan in demo {demo.demo_number}: {', '.join(not_out)}",
            details={"serial_numbers": not_out},
        )

    chosen = [outstanding[normalize_serial(s)] for s in serials]
    ledger_service.ensure_not_backdated([e.serial_key for e in chosen], returned_at, "returned_at")

    def _write() -> None:
        with unit_of_work():
            tx_ids = sequence_service.next_batch(sequence_service.TRANSACTION_ID, len(chosen))
            compare_and_set_status(
                [e.serial_key for e in chosen],
                expected=(ASSET_DEMO,),
                new_status=ASSET_ACTIVE,
            )

            for tx_id, demo_entry in zip(tx_ids, chosen):
                ledger_service.append_entry(
                    entry_type=ENTRY_STOCK_IN,
                    status=ASSET_ACTIVE,
                    serial_number=demo_entry.serial_number,
                    user_id=user_id,
                    transaction_id=tx_id,
                    occurred_at=returned_at,
                    location=demo_entry.location,
                    customer_dealer=DEMO_RETURN_DEALER,
                    customer_client=DEFAULT_CLIENT,
                    equipment_category=demo_entry.equipment_category,
                    model=demo_entry.model,
                    size=demo_entry.size,
                    batch=demo_entry.batch,
                    source=SOURCE_DEMO_RETURN,
                    returned_from_demo=demo.demo_number,
                    original_demo_transaction_id=demo_entry.transaction_id,
                )
                demo_entry.status = ASSET_RETURNED
                demo_entry.returned_at = returned_at

            returned_ids = list(demo.returned_transaction_ids or []) + [e.transaction_id for e in chosen]
            demo.returned_transaction_ids = returned_ids
            demo.items_returned_count = len(returned_ids)
            demo.items_remaining_count = demo.total_items - len(returned_ids)
            demo.partially_returned = 0 < demo.items_remaining_count < demo.total_items

            if demo.items_remaining_count == 0:
                demo.status = DEMO_RETURNED
                demo.actual_return_date = returned_at
                demo.returned_by_user_id = user_id

    run_with_retry(_write)
    logger.info(
        "Demo %s: %s returned, %s remaining",
        demo.demo_number, len(chosen), demo.items_remaining_count,
    )
    return demo


def return_all(*, user_id: int | None, demo_number: str, returned_at: datetime | str | None = None) -> Demo:
    """Return every item of the demo that is still out."""
    require_actor(user_id)
    demo = get_demo(demo_number)
    if demo.status == DEMO_RETURNED:
        raise ValidationError(
            f"Demo {demo.demo_number} has already been returned",
            details={"demo_number": demo.demo_number},
        )
    serials = [e.serial_number for e in _outstanding_entries(demo)]
    return return_items(user_id=user_id, demo_number=demo_number, serial_numbers=serials, returned_at=returned_at)


# =============================================================================
# DELETION
# =============================================================================

def delete_demo(*, user_id: int | None, demo_number: str) -> dict:
    """
    Delete a demo that was created by mistake.

    Only allowed while nothing has been returned; restores the loaned
    assets to Active and removes the Demo entries.
    """
    require_actor(user_id)
    demo = get_demo(demo_number, for_update=True)

    if demo.returned_transaction_ids:
        raise ValidationError(
            f"Demo {demo.demo_number} has returned items and cannot be deleted",
            details={"demo_number": demo.demo_number, "items_returned": demo.items_returned_count},
        )

    entries = [
        e for e in ledger_service.entries_by_transaction_ids(demo.transaction_ids)
        if e.type == ENTRY_DEMO
    ]
    assets = registry_service.assets_by_keys({e.serial_key for e in entries})
    on_loan = sorted(k for k, a in assets.items() if a.status == ASSET_DEMO)
    number = demo.demo_number
    deleted_serials = [e.serial_number for e in entries]

    with unit_of_work():
        compare_and_set_status(on_loan, expected=(ASSET_DEMO,), new_status=ASSET_ACTIVE)
        for entry in entries:
            db.session.delete(entry)
        db.session.delete(demo)

    logger.info("Deleted demo %s (%s entries)", number, len(entries))
    return {"demo_number": number, "deleted_items": deleted_serials}
