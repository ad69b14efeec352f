from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


# Order dual status
INVOICE_RESERVED = "Reserved"
INVOICE_INVOICED = "Invoiced"
DELIVERY_PENDING = "Pending"
DELIVERY_ISSUED = "Issued"
DELIVERY_DELIVERED = "Delivered"

# Order lifecycle, independent of the dual status
ORDER_OPEN = "Open"
ORDER_CANCELLED = "Cancelled"

# Demo status
DEMO_ACTIVE = "Active"
DEMO_RETURNED = "Returned"


class Order(db.Model):
    """
    Multi-item sales order.

    WHY: One order owns N Stock_Out ledger entries (by transaction_id
    membership, not by embedded copies of the items).

    DUAL STATUS:
    - invoice_status:  Reserved -> Invoiced
    - delivery_status: Pending -> Issued -> Delivered
    Reachable pairs: (Reserved, Pending), (Invoiced, Pending),
    (Invoiced, Issued), (Invoiced, Delivered). Transitions are driven by
    document upload events, never by setting a status directly.

    CANCELLATION: order_status Open -> Cancelled freezes the order. The
    dual status is left as it was and also copied to original_*_status.

    replaced_transaction_ids lists entries retired by an item replacement;
    they stay in transaction_ids for history but no longer take part in
    delivery, revert or cancellation.
    """
    __tablename__ = "orders"
    __table_args__ = (
        db.UniqueConstraint("order_number", name="uq_orders_order_number"),
        db.Index("ix_orders_dual_status", "invoice_status", "delivery_status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_number = db.Column(db.String(64), nullable=False)

    invoice_status = db.Column(db.String(16), nullable=False, default=INVOICE_RESERVED)
    delivery_status = db.Column(db.String(16), nullable=False, default=DELIVERY_PENDING)

    customer_dealer = db.Column(db.String(255), nullable=False)
    customer_client = db.Column(db.String(255), nullable=False, default="N/A")
    location = db.Column(db.String(128), nullable=True)

    transaction_ids = db.Column(db.JSON, nullable=False, default=list)
    replaced_transaction_ids = db.Column(db.JSON, nullable=False, default=list)
    entry_no = db.Column(db.Integer, nullable=True)
    total_items = db.Column(db.Integer, nullable=False, default=0)

    order_status = db.Column(db.String(16), nullable=False, default=ORDER_OPEN)
    cancellation_reason = db.Column(db.Text, nullable=True)
    cancelled_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    original_invoice_status = db.Column(db.String(16), nullable=True)
    original_delivery_status = db.Column(db.String(16), nullable=True)
    cancellation_transaction_ids = db.Column(db.JSON, nullable=False, default=list)

    # Document references (files live with the File collaborator)
    invoice_file_id = db.Column(db.String(128), nullable=True)
    invoice_uploaded_at = db.Column(db.DateTime(timezone=True), nullable=True)
    delivery_file_id = db.Column(db.String(128), nullable=True)
    delivery_uploaded_at = db.Column(db.DateTime(timezone=True), nullable=True)
    signed_delivery_file_id = db.Column(db.String(128), nullable=True)
    signed_delivery_uploaded_at = db.Column(db.DateTime(timezone=True), nullable=True)

    invoice_number = db.Column(db.String(64), nullable=True)
    invoice_date = db.Column(db.DateTime(timezone=True), nullable=True)
    invoice_remarks = db.Column(db.Text, nullable=True)

    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_date = db.Column(db.DateTime(timezone=True), nullable=False)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return (
            f"<Order {self.order_number!r} invoice={self.invoice_status} "
            f"delivery={self.delivery_status}>"
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_number": self.order_number,
            "invoice_status": self.invoice_status,
            "delivery_status": self.delivery_status,
            "customer_dealer": self.customer_dealer,
            "customer_client": self.customer_client,
            "location": self.location,
            "transaction_ids": list(self.transaction_ids or []),
            "replaced_transaction_ids": list(self.replaced_transaction_ids or []),
            "entry_no": self.entry_no,
            "total_items": self.total_items,
            "order_status": self.order_status,
            "cancellation_reason": self.cancellation_reason,
            "cancelled_by_user_id": self.cancelled_by_user_id,
            "cancelled_at": to_utc_z(self.cancelled_at),
            "original_invoice_status": self.original_invoice_status,
            "original_delivery_status": self.original_delivery_status,
            "cancellation_transaction_ids": list(self.cancellation_transaction_ids or []),
            "invoice_file_id": self.invoice_file_id,
            "invoice_uploaded_at": to_utc_z(self.invoice_uploaded_at),
            "delivery_file_id": self.delivery_file_id,
            "delivery_uploaded_at": to_utc_z(self.delivery_uploaded_at),
            "signed_delivery_file_id": self.signed_delivery_file_id,
            "signed_delivery_uploaded_at": to_utc_z(self.signed_delivery_uploaded_at),
            "invoice_number": self.invoice_number,
            "invoice_date": to_utc_z(self.invoice_date),
            "invoice_remarks": self.invoice_remarks,
            "created_by_user_id": self.created_by_user_id,
            "created_date": to_utc_z(self.created_date),
            "version_id": self.version_id,
            "updated_at": to_utc_z(self.updated_at),
        }


class Demo(db.Model):
    """
    Multi-item demo loan.

    LIFECYCLE:
    1. Active: created with N Demo ledger entries, items out on loan
    2. Returned: every transaction_id appears in returned_transaction_ids

    partially_returned is a flag, not a state: 0 < returned < total.
    """
    __tablename__ = "demos"
    __table_args__ = (
        db.UniqueConstraint("demo_number", name="uq_demos_demo_number"),
        db.Index("ix_demos_status_created", "status", "created_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    demo_number = db.Column(db.String(64), nullable=False)
    demo_purpose = db.Column(db.String(255), nullable=True)

    status = db.Column(db.String(16), nullable=False, default=DEMO_ACTIVE)

    customer_dealer = db.Column(db.String(255), nullable=False)
    customer_client = db.Column(db.String(255), nullable=False, default="N/A")
    location = db.Column(db.String(128), nullable=True)

    transaction_ids = db.Column(db.JSON, nullable=False, default=list)
    returned_transaction_ids = db.Column(db.JSON, nullable=False, default=list)
    total_items = db.Column(db.Integer, nullable=False, default=0)
    items_returned_count = db.Column(db.Integer, nullable=False, default=0)
    items_remaining_count = db.Column(db.Integer, nullable=False, default=0)
    partially_returned = db.Column(db.Boolean, nullable=False, default=False)

    expected_return_date = db.Column(db.DateTime(timezone=True), nullable=True)
    actual_return_date = db.Column(db.DateTime(timezone=True), nullable=True)
    remarks = db.Column(db.Text, nullable=True)

    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    returned_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_date = db.Column(db.DateTime(timezone=True), nullable=False)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Demo {self.demo_number!r} status={self.status} remaining={self.items_remaining_count}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "demo_number": self.demo_number,
            "demo_purpose": self.demo_purpose,
            "status": self.status,
            "customer_dealer": self.customer_dealer,
            "customer_client": self.customer_client,
            "location": self.location,
            "transaction_ids": list(self.transaction_ids or []),
            "returned_transaction_ids": list(self.returned_transaction_ids or []),
            "total_items": self.total_items,
            "items_returned_count": self.items_returned_count,
            "items_remaining_count": self.items_remaining_count,
            "partially_returned": self.partially_returned,
            "expected_return_date": to_utc_z(self.expected_return_date),
            "actual_return_date": to_utc_z(self.actual_return_date),
            "remarks": self.remarks,
            "created_by_user_id": self.created_by_user_id,
            "returned_by_user_id": self.returned_by_user_id,
            "created_date": to_utc_z(self.created_date),
            "version_id": self.version_id,
        }


class SequenceCounter(db.Model):
    """
    Atomic named sequences (transaction_id, entry_no).

    WHY: Prevent two concurrent callers from reading the same maximum and
    handing out the same ID. current_value is the last value handed out.
    """
    __tablename__ = "sequence_counters"
    __table_args__ = (
        db.UniqueConstraint("name", name="uq_sequence_counters_name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(32), nullable=False)
    current_value = db.Column(db.Integer, nullable=False, default=0)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "current_value": self.current_value,
            "updated_at": to_utc_z(self.updated_at),
        }
