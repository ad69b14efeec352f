# Overview: Service-layer operations for sales orders; encapsulates business logic and database work.

"""
Order Fulfillment State Machine

WHY: A sales order reserves N serialized items, then moves through
invoicing and delivery as documents arrive from the file collaborator.

DUAL STATUS:
    invoice_status   Reserved -> Invoiced
    delivery_status  Pending  -> Issued -> Delivered

    (Reserved, Pending) -> (Invoiced, Pending) -> (Invoiced, Issued) -> (Invoiced, Delivered)

TRANSITIONS (document upload events, never direct status setting):
- invoice                Reserved -> Invoiced
- delivery_order         Pending  -> Issued     (only once Invoiced)
- signed_delivery_order  Issued   -> Delivered  (+ Stock_Out/Delivered entries)

A document that arrives out of order is still recorded on the order, but
the status does not move.

LEDGER:
- Creation writes one Stock_Out/Reserved entry per item, all sharing one
  entry_no
- Delivery appends new Stock_Out/Delivered entries; the Reserved entries
  are never rewritten
- Replacement retires the returned item's entries on the order
  (replaced_transaction_ids) and adds the replacement's Delivered entry
- Cancellation appends one Cancellation/Active entry per reserved item,
  linked by original_transaction_id; nothing is deleted

Every caller-supplied date is checked against the newest entry of each
affected serial before anything is written.
"""

from __future__ import annotations

import logging
from datetime import datetime

from flask import current_app

from ..errors import NotFoundError, ValidationError, require_actor
from ..extensions import db
from ..models import Asset, LedgerEntry, Order
from ..models.documents import (
    DELIVERY_DELIVERED,
    DELIVERY_ISSUED,
    DELIVERY_PENDING,
    INVOICE_INVOICED,
    INVOICE_RESERVED,
    ORDER_CANCELLED,
    ORDER_OPEN,
)
from ..models.inventory import (
    ASSET_ACTIVE,
    ASSET_DELIVERED,
    ASSET_RESERVED,
    ASSET_RETURNED,
    ENTRY_CANCELLATION,
    ENTRY_RETURNED,
    ENTRY_STOCK_OUT,
    normalize_serial,
)
from ..time_utils import to_utc_z, utcnow
from ..validation import clean_serial_list, coerce_datetime, require_text
from . import ledger_service, registry_service, sequence_service
from .consistency import (
    OperationResult,
    compare_and_set_status,
    lock_for_update,
    run_with_retry,
    secondary_write,
    unit_of_work,
)


logger = logging.getLogger(__name__)

DEFAULT_CLIENT = "N/A"
DEFAULT_WARRANTY_TYPE = "No Warranty"
DEFAULT_WARRANTY_PERIOD = 0

# LedgerEntry.source values written by this module
SOURCE_ORDER = "order"
SOURCE_SIGNED_DELIVERY = "signed_delivery"
SOURCE_REPLACEMENT = "replacement"
SOURCE_CANCELLATION = "order_cancellation"

FILE_INVOICE = "invoice"
FILE_DELIVERY_ORDER = "delivery_order"
FILE_SIGNED_DELIVERY_ORDER = "signed_delivery_order"
FILE_TYPES = (FILE_INVOICE, FILE_DELIVERY_ORDER, FILE_SIGNED_DELIVERY_ORDER)

# file_type -> (file id column, uploaded-at column)
_FILE_COLUMNS = {
    FILE_INVOICE: ("invoice_file_id", "invoice_uploaded_at"),
    FILE_DELIVERY_ORDER: ("delivery_file_id", "delivery_uploaded_at"),
    FILE_SIGNED_DELIVERY_ORDER: ("signed_delivery_file_id", "signed_delivery_uploaded_at"),
}


# =============================================================================
# LOOKUPS
# =============================================================================

def find_order(order_number: str, *, for_update: bool = False) -> Order | None:
    number = (order_number or "").strip()
    if not number:
        return None
    query = db.session.query(Order).filter_by(order_number=number)
    if for_update:
        query = lock_for_update(query)
    return query.first()


def get_order(order_number: str, *, for_update: bool = False) -> Order:
    """
    Load an order or raise NotFoundError.

    Workflows that change the order pass for_update=True so the read phase
    holds the row until their unit of work commits.
    """
    order = find_order(order_number, for_update=for_update)
    if order is None:
        raise NotFoundError(f"Order {order_number} not found", details={"order_number": order_number})
    return order


def list_orders(
    invoice_status: str | None = None,
    delivery_status: str | None = None,
    order_status: str | None = None,
) -> list[Order]:
    query = db.session.query(Order)
    if invoice_status:
        query = query.filter(Order.invoice_status == invoice_status)
    if delivery_status:
        query = query.filter(Order.delivery_status == delivery_status)
    if order_status:
        query = query.filter(Order.order_status == order_status)
    return query.order_by(Order.created_date.desc(), Order.id.desc()).all()


def orders_for_invoicing() -> list[Order]:
    """Open orders still waiting for an invoice."""
    return list_orders(invoice_status=INVOICE_RESERVED, order_status=ORDER_OPEN)


def orders_for_delivery() -> list[Order]:
    """Invoiced open orders that have not been delivered yet."""
    return (
        db.session.query(Order)
        .filter(
            Order.order_status == ORDER_OPEN,
            Order.invoice_status == INVOICE_INVOICED,
            Order.delivery_status.in_((DELIVERY_PENDING, DELIVERY_ISSUED)),
        )
        .order_by(Order.created_date.desc(), Order.id.desc())
        .all()
    )


def cancellable_orders() -> list[Order]:
    """Open orders that are not delivered."""
    return (
        db.session.query(Order)
        .filter(Order.order_status == ORDER_OPEN, Order.delivery_status != DELIVERY_DELIVERED)
        .order_by(Order.created_date.desc(), Order.id.desc())
        .all()
    )


def order_items(order: Order) -> list[LedgerEntry]:
    return ledger_service.entries_by_transaction_ids(order.transaction_ids)


def order_file_status(order_number: str) -> dict:
    order = get_order(order_number)
    files = {}
    for file_type, (id_col, at_col) in _FILE_COLUMNS.items():
        file_id = getattr(order, id_col)
        files[file_type] = {
            "file_id": file_id,
            "uploaded_at": to_utc_z(getattr(order, at_col)),
            "present": file_id is not None,
        }
    return {
        "order_number": order.order_number,
        "invoice_status": order.invoice_status,
        "delivery_status": order.delivery_status,
        "files": files,
    }


def _live_items(order: Order) -> list[LedgerEntry]:
    """Order entries not retired by an item replacement."""
    replaced = set(order.replaced_transaction_ids or [])
    return [e for e in order_items(order) if e.transaction_id not in replaced]


def _reserved_entries(order: Order) -> list[LedgerEntry]:
    return [e for e in _live_items(order) if e.type == ENTRY_STOCK_OUT and e.status == ASSET_RESERVED]


def _delivered_entries(order: Order) -> list[LedgerEntry]:
    """Live Delivered entries: signed-delivery ones and replacements."""
    return [e for e in _live_items(order) if e.type == ENTRY_STOCK_OUT and e.status == ASSET_DELIVERED]


def _require_open(order: Order) -> None:
    if order.order_status == ORDER_CANCELLED:
        raise ValidationError(
            f"Order {order.order_number} is cancelled",
            details={"order_number": order.order_number, "order_status": order.order_status},
        )


def _refuse_if_delivered(order: Order, action: str) -> None:
    """Delivered orders, or orders already holding a delivered replacement, keep their history."""
    delivered = [e.serial_number for e in _delivered_entries(order)]
    if order.delivery_status == DELIVERY_DELIVERED or delivered:
        raise ValidationError(
            f"Order {order.order_number} has delivered items and cannot be {action}",
            details={
                "order_number": order.order_number,
                "delivery_status": order.delivery_status,
                "delivered_serials": delivered,
            },
        )


def _unavailable_serials(serials: list[str], assets: dict[str, Asset]) -> dict[str, str]:
    """serial -> current registry status, for every serial that is not Active."""
    return {
        s: assets[normalize_serial(s)].status
        for s in serials
        if assets[normalize_serial(s)].status != ASSET_ACTIVE
    }


# =============================================================================
# ORDER CREATION
# =============================================================================

def create_order(
    *,
    user_id: int | None,
    order_number: str,
    serial_numbers: list[str],
    customer_dealer: str,
    customer_client: str | None = None,
    location: str | None = None,
    warranty_type: str | None = None,
    warranty_period: int | None = None,
    remarks: str | None = None,
    occurred_at: datetime | str | None = None,
) -> Order:
    """
    Create a multi-item order reserving every selected serial.

    Read phase validates; the write phase allocates one entry_no and N
    transaction_ids, writes N Stock_Out/Reserved entries plus the order,
    and moves each asset Active -> Reserved, all in one commit.

    Raises:
        Unauthenticated: no caller
        ValidationError: order number exists, empty selection, unknown or
            unavailable serials (details list the serials),
            occurred_at earlier than an item's latest activity
        ConcurrencyConflict: an item was taken between read and write
    """
    require_actor(user_id)

    # -- read phase --
    order_number = require_text(order_number, "order_number")
    customer_dealer = require_text(customer_dealer, "customer_dealer")
    customer_client = (customer_client or "").strip() or DEFAULT_CLIENT
    occurred_at = coerce_datetime(occurred_at, "occurred_at") or utcnow()

    serials = clean_serial_list(serial_numbers)
    if not serials:
        raise ValidationError("No items selected")

    if find_order(order_number) is not None:
        raise ValidationError(
            f"Order number {order_number} already exists",
            details={"order_number": order_number},
        )

    keys = [normalize_serial(s) for s in serials]
    assets = registry_service.assets_by_keys(keys)

    missing = [s for s in serials if normalize_serial(s) not in assets]
    if missing:
        raise ValidationError(
            f"Serial numbers not found in inventory: {', '.join(missing)}",
            details={"serial_numbers": missing},
        )

    unavailable = _unavailable_serials(serials, assets)
    if unavailable:
        raise ValidationError(
            f"Items not available: {', '.join(unavailable)}",
            details={"serial_numbers": list(unavailable), "statuses": unavailable},
        )

    if warranty_period is None:
        warranty_period = DEFAULT_WARRANTY_PERIOD
    elif isinstance(warranty_period, bool) or not isinstance(warranty_period, int) or warranty_period < 0:
        raise ValidationError("warranty_period must be a non-negative integer")

    ledger_service.ensure_not_backdated(keys, occurred_at)

    # -- write phase --
    def _write() -> Order:
        with unit_of_work():
            tx_ids = sequence_service.next_batch(sequence_service.TRANSACTION_ID, len(serials))
            entry_no = sequence_service.next_id(sequence_service.ENTRY_NO)

            compare_and_set_status(keys, expected=(ASSET_ACTIVE,), new_status=ASSET_RESERVED)

            for tx_id, serial in zip(tx_ids, serials):
                asset = assets[normalize_serial(serial)]
                ledger_service.append_entry(
                    entry_type=ENTRY_STOCK_OUT,
                    status=ASSET_RESERVED,
                    serial_number=asset.serial_number,
                    user_id=user_id,
                    transaction_id=tx_id,
                    asset=asset,
                    occurred_at=occurred_at,
                    entry_no=entry_no,
                    location=location or asset.location,
                    customer_dealer=customer_dealer,
                    customer_client=customer_client,
                    warranty_type=warranty_type or DEFAULT_WARRANTY_TYPE,
                    warranty_period=warranty_period,
                    remarks=remarks,
                    source=SOURCE_ORDER,
                )

            order = Order(
                order_number=order_number,
                order_status=ORDER_OPEN,
                invoice_status=INVOICE_RESERVED,
                delivery_status=DELIVERY_PENDING,
                customer_dealer=customer_dealer,
                customer_client=customer_client,
                location=location,
                transaction_ids=list(tx_ids),
                replaced_transaction_ids=[],
                cancellation_transaction_ids=[],
                entry_no=entry_no,
                total_items=len(serials),
                created_by_user_id=user_id,
                created_date=occurred_at,
            )
            db.session.add(order)
        return order

    order = run_with_retry(_write)
    logger.info("Created order %s with %s items (entry_no=%s)", order.order_number, order.total_items, order.entry_no)
    return order


# =============================================================================
# DOCUMENT EVENTS
# =============================================================================

def _check_file_type(file_type: str) -> str:
    if file_type not in FILE_TYPES:
        raise ValidationError(
            f"Unknown file type: {file_type}",
            details={"allowed": list(FILE_TYPES)},
        )
    return file_type


def _signed_delivery_items(order: Order) -> list[LedgerEntry]:
    """
    Reserved entries a signed delivery order will deliver.

    An order whose every item was already swapped for a delivered
    replacement has nothing left to deliver and is still allowed through.
    """
    reserved = _reserved_entries(order)
    if not reserved and not _delivered_entries(order):
        raise ValidationError(
            f"Order {order.order_number} has no reserved items to deliver",
            details={"order_number": order.order_number},
        )
    return reserved


def _deliver(order: Order, reserved: list[LedgerEntry], *, user_id: int, delivered_at: datetime) -> list[int]:
    """
    Append one Stock_Out/Delivered entry per reserved item and move the
    assets Reserved -> Delivered. Runs inside the caller's unit of work.
    """
    if not reserved:
        return []

    tx_ids = sequence_service.next_batch(sequence_service.TRANSACTION_ID, len(reserved))
    compare_and_set_status(
        [e.serial_key for e in reserved],
        expected=(ASSET_RESERVED,),
        new_status=ASSET_DELIVERED,
    )

    for tx_id, reserved_entry in zip(tx_ids, reserved):
        ledger_service.append_entry(
            entry_type=ENTRY_STOCK_OUT,
            status=ASSET_DELIVERED,
            serial_number=reserved_entry.serial_number,
            user_id=user_id,
            transaction_id=tx_id,
            occurred_at=delivered_at,
            entry_no=reserved_entry.entry_no,
            location=reserved_entry.location,
            customer_dealer=reserved_entry.customer_dealer,
            customer_client=reserved_entry.customer_client,
            warranty_type=reserved_entry.warranty_type,
            warranty_period=reserved_entry.warranty_period,
            invoice_number=reserved_entry.invoice_number or order.invoice_number,
            invoice_date=reserved_entry.invoice_date or order.invoice_date,
            delivery_date=delivered_at,
            equipment_category=reserved_entry.equipment_category,
            model=reserved_entry.model,
            size=reserved_entry.size,
            batch=reserved_entry.batch,
            remarks=reserved_entry.remarks,
            source=SOURCE_SIGNED_DELIVERY,
        )

    # JSON column: assign a new list so the change is detected
    order.transaction_ids = list(order.transaction_ids or []) + list(tx_ids)
    return tx_ids


def handle_document_uploaded(
    *,
    user_id: int | None,
    order_number: str,
    file_type: str,
    file_id: str,
    uploaded_at: datetime | str | None = None,
) -> OperationResult:
    """
    React to a document upload on an order.

    The file reference is always recorded. The status moves only when the
    document arrives in sequence; otherwise `transition` is None.

    Raises:
        ValidationError: unknown file type, cancelled order, a signed
            delivery with nothing to deliver, or an uploaded_at earlier
            than the latest activity of an item it would deliver
    """
    require_actor(user_id)
    _check_file_type(file_type)
    file_id = require_text(file_id, "file_id")
    uploaded_at = coerce_datetime(uploaded_at, "uploaded_at") or utcnow()

    order = get_order(order_number, for_update=True)
    _require_open(order)
    before = (order.invoice_status, order.delivery_status)
    delivered_tx_ids: list[int] = []

    delivers = file_type == FILE_SIGNED_DELIVERY_ORDER and before == (INVOICE_INVOICED, DELIVERY_ISSUED)
    reserved: list[LedgerEntry] = []
    if delivers:
        reserved = _signed_delivery_items(order)
        ledger_service.ensure_not_backdated([e.serial_key for e in reserved], uploaded_at, "uploaded_at")

    def _write() -> None:
        nonlocal delivered_tx_ids
        with unit_of_work():
            id_col, at_col = _FILE_COLUMNS[file_type]
            setattr(order, id_col, file_id)
            setattr(order, at_col, uploaded_at)

            if file_type == FILE_INVOICE:
                if order.invoice_status == INVOICE_RESERVED:
                    order.invoice_status = INVOICE_INVOICED

            elif file_type == FILE_DELIVERY_ORDER:
                if order.invoice_status == INVOICE_INVOICED and order.delivery_status == DELIVERY_PENDING:
                    order.delivery_status = DELIVERY_ISSUED

            elif delivers:
                delivered_tx_ids = _deliver(order, reserved, user_id=user_id, delivered_at=uploaded_at)
                order.delivery_status = DELIVERY_DELIVERED

    run_with_retry(_write)

    after = (order.invoice_status, order.delivery_status)
    transition = None
    if after != before:
        transition = {"from": list(before), "to": list(after)}
        logger.info("Order %s moved %s -> %s on %s upload", order.order_number, before, after, file_type)
    else:
        logger.info("Order %s: %s recorded without status change %s", order.order_number, file_type, before)

    return OperationResult(data={
        "order": order.to_dict(),
        "file_type": file_type,
        "transition": transition,
        "delivered_transaction_ids": delivered_tx_ids,
    })


def handle_document_removed(*, user_id: int | None, order_number: str, file_type: str) -> Order:
    """Clear a document reference. The order status is left as it is."""
    require_actor(user_id)
    _check_file_type(file_type)
    order = get_order(order_number, for_update=True)
    _require_open(order)

    with unit_of_work():
        id_col, at_col = _FILE_COLUMNS[file_type]
        setattr(order, id_col, None)
        setattr(order, at_col, None)

    return order


def record_invoice_details(
    *,
    user_id: int | None,
    order_number: str,
    invoice_number: str,
    invoice_date: datetime | str | None = None,
    remarks: str | None = None,
    file_id: str | None = None,
) -> OperationResult:
    """
    Store invoice details on the order, then copy the invoice number/date
    onto its ledger entries.

    The order update is the primary write. Copying onto the entries is a
    secondary write: if it fails the order keeps its new details and the
    result carries a warning.
    """
    require_actor(user_id)
    invoice_number = require_text(invoice_number, "invoice_number")
    invoice_date = coerce_datetime(invoice_date, "invoice_date")
    order = get_order(order_number, for_update=True)
    _require_open(order)

    with unit_of_work():
        order.invoice_number = invoice_number
        order.invoice_date = invoice_date
        order.invoice_remarks = remarks
        if file_id:
            order.invoice_file_id = file_id
            order.invoice_uploaded_at = utcnow()
            if order.invoice_status == INVOICE_RESERVED:
                order.invoice_status = INVOICE_INVOICED

    result = OperationResult()
    transaction_ids = list(order.transaction_ids or [])

    def _attach() -> None:
        fields = {"invoice_number": invoice_number}
        if invoice_date is not None:
            fields["invoice_date"] = invoice_date
        ledger_service.attach_metadata(transaction_ids, **fields)

    secondary_write(result, "Attaching invoice details to ledger entries", _attach)
    result.data["order"] = order.to_dict()
    return result


def revert_delivery(*, user_id: int | None, order_number: str) -> Order:
    """
    Undo delivery paperwork: clear the delivery document references, put
    delivery_status back to Pending, drop the Stock_Out/Delivered entries
    and return the assets to Reserved.

    Replacement entries are not delivery paperwork and stay as they are.
    """
    require_actor(user_id)
    order = get_order(order_number, for_update=True)
    _require_open(order)

    has_refs = order.delivery_file_id or order.signed_delivery_file_id
    if order.delivery_status == DELIVERY_PENDING and not has_refs:
        raise ValidationError(
            f"Order {order.order_number} has no delivery data to revert",
            details={"order_number": order.order_number},
        )

    delivered = [e for e in _delivered_entries(order) if e.source == SOURCE_SIGNED_DELIVERY]

    with unit_of_work():
        if delivered:
            compare_and_set_status(
                [e.serial_key for e in delivered],
                expected=(ASSET_DELIVERED,),
                new_status=ASSET_RESERVED,
            )
            removed = {e.transaction_id for e in delivered}
            for entry in delivered:
                db.session.delete(entry)
            order.transaction_ids = [t for t in (order.transaction_ids or []) if t not in removed]

        order.delivery_file_id = None
        order.delivery_uploaded_at = None
        order.signed_delivery_file_id = None
        order.signed_delivery_uploaded_at = None
        order.delivery_status = DELIVERY_PENDING

    logger.info("Reverted delivery of order %s (%s delivered entries removed)", order.order_number, len(delivered))
    return order


def rename_order(*, user_id: int | None, old_number: str, new_number: str) -> Order:
    require_actor(user_id)
    new_number = require_text(new_number, "new_order_number")
    order = get_order(old_number)

    if new_number == order.order_number:
        return order
    if find_order(new_number) is not None:
        raise ValidationError(
            f"Order number {new_number} already exists",
            details={"order_number": new_number},
        )

    with unit_of_work():
        order.order_number = new_number
    return order


# =============================================================================
# RETURN WITH REPLACEMENT
# =============================================================================

def _order_containing(transaction_id: int) -> Order | None:
    for order in db.session.query(Order).all():
        if transaction_id in (order.transaction_ids or []):
            return order
    return None


def replace_item(
    *,
    user_id: int | None,
    returned_serial: str,
    replacement_serial: str,
    customer_dealer: str | None = None,
    remarks: str | None = None,
    occurred_at: datetime | str | None = None,
) -> OperationResult:
    """
    Take a sold item back and hand out a replacement.

    Writes, in one commit:
    - Returned/Returned entry for the returned serial (asset -> Returned)
    - Stock_Out/Delivered entry for the replacement, reusing the entry_no
      of the returned item's stock-out (asset -> Delivered)
    The replacement entry is added to the owning order, when there is one,
    and the returned serial's entries on that order are retired so a later
    signed delivery skips them.
    """
    require_actor(user_id)
    occurred_at = coerce_datetime(occurred_at, "occurred_at") or utcnow()

    returned = registry_service.get_asset(returned_serial)
    replacement = registry_service.get_asset(replacement_serial)
    if returned.serial_key == replacement.serial_key:
        raise ValidationError("Replacement must be a different serial number")

    stock_outs = ledger_service.entries_for_serial(returned.serial_number, ENTRY_STOCK_OUT)
    if not stock_outs:
        raise ValidationError(
            f"Serial number {returned.serial_number} has no stock-out record",
            details={"serial_number": returned.serial_number},
        )
    if returned.status not in (ASSET_RESERVED, ASSET_DELIVERED):
        raise ValidationError(
            f"Serial number {returned.serial_number} is not with a customer",
            details={"serial_number": returned.serial_number, "status": returned.status},
        )
    if replacement.status != ASSET_ACTIVE:
        raise ValidationError(
            f"Items not available: {replacement.serial_number}",
            details={"serial_numbers": [replacement.serial_number], "statuses": {replacement.serial_number: replacement.status}},
        )

    ledger_service.ensure_not_backdated([returned.serial_key, replacement.serial_key], occurred_at)

    original = stock_outs[-1]
    dealer = (customer_dealer or "").strip() or original.customer_dealer
    order = _order_containing(original.transaction_id)
    retired: list[int] = []
    if order is not None:
        retired = [e.transaction_id for e in _live_items(order) if e.serial_key == returned.serial_key]

    def _write() -> dict:
        with unit_of_work():
            return_tx, replacement_tx = sequence_service.next_batch(sequence_service.TRANSACTION_ID, 2)

            compare_and_set_status(
                [returned.serial_key],
                expected=(ASSET_RESERVED, ASSET_DELIVERED),
                new_status=ASSET_RETURNED,
            )
            compare_and_set_status([replacement.serial_key], expected=(ASSET_ACTIVE,), new_status=ASSET_DELIVERED)

            ledger_service.append_entry(
                entry_type=ENTRY_RETURNED,
                status=ASSET_RETURNED,
                serial_number=returned.serial_number,
                user_id=user_id,
                transaction_id=return_tx,
                asset=returned,
                occurred_at=occurred_at,
                location=original.location,
                customer_dealer=dealer,
                customer_client=original.customer_client,
                remarks=remarks,
            )
            ledger_service.append_entry(
                entry_type=ENTRY_STOCK_OUT,
                status=ASSET_DELIVERED,
                serial_number=replacement.serial_number,
                user_id=user_id,
                transaction_id=replacement_tx,
                asset=replacement,
                occurred_at=occurred_at,
                entry_no=original.entry_no,
                location=original.location,
                customer_dealer=dealer,
                customer_client=original.customer_client,
                warranty_type=original.warranty_type,
                warranty_period=original.warranty_period,
                invoice_number=original.invoice_number,
                invoice_date=original.invoice_date,
                delivery_date=occurred_at,
                remarks=remarks,
                source=SOURCE_REPLACEMENT,
            )
            if order is not None:
                order.transaction_ids = list(order.transaction_ids or []) + [replacement_tx]
                order.replaced_transaction_ids = list(order.replaced_transaction_ids or []) + retired
        return {"return_transaction_id": return_tx, "replacement_transaction_id": replacement_tx}

    ids = run_with_retry(_write)
    logger.info("Replaced %s with %s (entry_no=%s)", returned.serial_number, replacement.serial_number, original.entry_no)

    return OperationResult(data={
        "returned_serial": returned.serial_number,
        "replacement_serial": replacement.serial_number,
        "entry_no": original.entry_no,
        "order_number": order.order_number if order is not None else None,
        "retired_transaction_ids": retired,
        **ids,
    })


# =============================================================================
# CANCELLATION
# =============================================================================

def cancel_order(*, user_id: int | None, order_number: str, reason: str) -> OperationResult:
    """
    Cancel an order that has not been delivered.

    Nothing is deleted. Each reserved item gets a Cancellation/Active entry
    pointing back at its Stock_Out entry (original_transaction_id) and its
    asset returns to Active. The order is marked Cancelled with the reason;
    its dual status is left as it was and copied to original_*_status.

    Raises:
        ValidationError: no reason, already cancelled, delivered items on
            the order, or nothing reserved to cancel
        ConcurrencyConflict: an item left Reserved between read and write
    """
    require_actor(user_id)
    reason = require_text(reason, "reason")

    # -- read phase --
    order = get_order(order_number, for_update=True)
    if order.order_status == ORDER_CANCELLED:
        raise ValidationError(
            f"Order {order.order_number} is already cancelled",
            details={"order_number": order.order_number, "cancelled_at": to_utc_z(order.cancelled_at)},
        )
    _refuse_if_delivered(order, "cancelled")

    reserved = _reserved_entries(order)
    if not reserved:
        raise ValidationError(
            f"Order {order.order_number} has no reserved items to cancel",
            details={"order_number": order.order_number},
        )

    cancelled_at = utcnow()
    keys = [e.serial_key for e in reserved]
    ledger_service.ensure_not_backdated(keys, cancelled_at, "cancelled_at")

    # -- write phase --
    def _write() -> list[int]:
        with unit_of_work():
            tx_ids = sequence_service.next_batch(sequence_service.TRANSACTION_ID, len(reserved))
            compare_and_set_status(keys, expected=(ASSET_RESERVED,), new_status=ASSET_ACTIVE)

            for tx_id, original in zip(tx_ids, reserved):
                ledger_service.append_entry(
                    entry_type=ENTRY_CANCELLATION,
                    status=ASSET_ACTIVE,
                    serial_number=original.serial_number,
                    user_id=user_id,
                    transaction_id=tx_id,
                    occurred_at=cancelled_at,
                    entry_no=original.entry_no,
                    location=original.location,
                    customer_dealer=original.customer_dealer,
                    customer_client=original.customer_client,
                    warranty_type=original.warranty_type,
                    warranty_period=original.warranty_period,
                    equipment_category=original.equipment_category,
                    model=original.model,
                    size=original.size,
                    batch=original.batch,
                    remarks=reason,
                    original_transaction_id=original.transaction_id,
                    cancelled_from_order=order.order_number,
                    cancellation_reason=reason,
                    source=SOURCE_CANCELLATION,
                )

            order.original_invoice_status = order.invoice_status
            order.original_delivery_status = order.delivery_status
            order.order_status = ORDER_CANCELLED
            order.cancellation_reason = reason
            order.cancelled_by_user_id = user_id
            order.cancelled_at = cancelled_at
            order.cancellation_transaction_ids = list(tx_ids)
        return list(tx_ids)

    tx_ids = run_with_retry(_write)
    logger.info("Cancelled order %s (%s items back to Active): %s", order.order_number, len(tx_ids), reason)

    return OperationResult(data={
        "order": order.to_dict(),
        "cancelled_items": [e.serial_number for e in reserved],
        "cancellation_transaction_ids": tx_ids,
    })


# =============================================================================
# DELETION
# =============================================================================

def _log_document_cleanup(order_number: str, file_ids: list[str]) -> None:
    logger.info("Order %s deleted; documents to remove: %s", order_number, file_ids)


def _document_cleanup_hook():
    return current_app.config.get("DOCUMENT_CLEANUP_HOOK") or _log_document_cleanup


def delete_order(*, user_id: int | None, order_number: str) -> OperationResult:
    """
    Delete an order that has not been delivered.

    Reverts its assets to Active and removes its ledger entries in one
    write, then asks the file collaborator to drop the uploaded documents.
    A failing cleanup is reported as a warning; the order stays deleted.

    Orders holding any delivered item (including a replacement handed out
    before delivery) and cancelled orders are refused: their entries are
    history other serials depend on.
    """
    require_actor(user_id)
    order = get_order(order_number, for_update=True)
    if order.order_status == ORDER_CANCELLED:
        raise ValidationError(
            f"Order {order.order_number} is cancelled and cannot be deleted",
            details={"order_number": order.order_number, "order_status": order.order_status},
        )
    _refuse_if_delivered(order, "deleted")

    entries = order_items(order)
    reserved_keys = sorted({e.serial_key for e in _reserved_entries(order)})
    assets = registry_service.assets_by_keys(reserved_keys)
    restored_serials = [assets[k].serial_number for k in reserved_keys if k in assets]
    file_ids = [
        getattr(order, id_col)
        for id_col, _ in _FILE_COLUMNS.values()
        if getattr(order, id_col)
    ]
    number = order.order_number

    with unit_of_work():
        compare_and_set_status(reserved_keys, expected=(ASSET_RESERVED,), new_status=ASSET_ACTIVE)
        for entry in entries:
            db.session.delete(entry)
        db.session.delete(order)

    logger.info("Deleted order %s (%s entries, %s items restored)", number, len(entries), len(reserved_keys))

    result = OperationResult(data={
        "order_number": number,
        "deleted_entries": len(entries),
        "restored_serials": restored_serials,
    })
    if file_ids:
        try:
            _document_cleanup_hook()(number, file_ids)
        except Exception as exc:
            logger.exception("Document cleanup failed for order %s", number)
            result.warnings.append(f"Document cleanup failed: {exc}")
    return result
