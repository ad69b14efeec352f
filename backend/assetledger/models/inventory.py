from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


# Asset registry statuses (denormalized cache of the ledger-derived status)
ASSET_ACTIVE = "Active"
ASSET_RESERVED = "Reserved"
ASSET_DEMO = "Demo"
ASSET_DELIVERED = "Delivered"
ASSET_RETURNED = "Returned"
ASSET_STATUSES = (ASSET_ACTIVE, ASSET_RESERVED, ASSET_DEMO, ASSET_DELIVERED, ASSET_RETURNED)

# Ledger entry types
ENTRY_STOCK_IN = "Stock_In"
ENTRY_STOCK_OUT = "Stock_Out"
ENTRY_DEMO = "Demo"
ENTRY_RETURNED = "Returned"
ENTRY_CANCELLATION = "Cancellation"
ENTRY_TYPES = (ENTRY_STOCK_IN, ENTRY_STOCK_OUT, ENTRY_DEMO, ENTRY_RETURNED, ENTRY_CANCELLATION)

UNKNOWN_LOCATION = "Unknown"


def normalize_serial(value: str | None) -> str:
    """Serial numbers compare case-insensitively; the key is upper-case, trimmed."""
    return (value or "").strip().upper()


class Asset(db.Model):
    """
    One serialized physical item.

    REGISTRY DESIGN:
    - serial_number keeps the spelling it was registered with
    - serial_key is the case-insensitive identity (unique)
    - status/location are a cache of what the ledger implies; every workflow
      refreshes them in the same commit that appends the causing entry
    - version_id turns lost updates into StaleDataError
    """
    __tablename__ = "assets"
    __table_args__ = (
        db.UniqueConstraint("serial_key", name="uq_assets_serial_key"),
        db.Index("ix_assets_status", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    serial_number = db.Column(db.String(128), nullable=False)
    serial_key = db.Column(db.String(128), nullable=False)

    equipment_category = db.Column(db.String(128), nullable=True)
    model = db.Column(db.String(128), nullable=True)
    size = db.Column(db.String(64), nullable=True)
    batch = db.Column(db.String(64), nullable=True)
    remark = db.Column(db.Text, nullable=True)

    status = db.Column(db.String(16), nullable=False, default=ASSET_ACTIVE)
    location = db.Column(db.String(128), nullable=True)

    # stock_in_manual | inventory_upload
    source = db.Column(db.String(32), nullable=True)
    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

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
        return f"<Asset id={self.id} serial={self.serial_number!r} status={self.status}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "serial_number": self.serial_number,
            "equipment_category": self.equipment_category,
            "model": self.model,
            "size": self.size,
            "batch": self.batch,
            "remark": self.remark,
            "status": self.status,
            "location": self.location,
            "source": self.source,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class LedgerEntry(db.Model):
    """
    One recorded movement event for a serial number.

    Identity: `id` is the store-generated key; `transaction_id` is the
    process-wide business sequence (unique, strictly increasing in allocation
    order). Entries are never rewritten after creation except to attach
    later-known metadata (invoice/delivery details) or to mark a Demo entry
    as returned.

    TIME:
    - occurred_at: structured business timestamp
    - occurred_at_text: raw string timestamp carried over from backfilled rows
      (only set when no structured value could be derived on import)
    """
    __tablename__ = "ledger_entries"
    __table_args__ = (
        db.UniqueConstraint("transaction_id", name="uq_ledger_entries_transaction_id"),
        db.Index("ix_ledger_entries_serial_type", "serial_key", "type"),
        db.Index("ix_ledger_entries_type_entry_no", "type", "entry_no"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    transaction_id = db.Column(db.Integer, nullable=False)

    type = db.Column(db.String(16), nullable=False, index=True)
    # Entry-local status (Active, Reserved, Delivered, Demo, Returned)
    status = db.Column(db.String(16), nullable=False, index=True)

    serial_number = db.Column(db.String(128), nullable=False)
    serial_key = db.Column(db.String(128), nullable=False, index=True)

    location = db.Column(db.String(128), nullable=True)
    customer_dealer = db.Column(db.String(255), nullable=True)
    customer_client = db.Column(db.String(255), nullable=True)

    occurred_at = db.Column(db.DateTime(timezone=True), nullable=True, index=True)
    occurred_at_text = db.Column(db.String(64), nullable=True)

    # Stock_Out only: one number shared by every entry of an order
    entry_no = db.Column(db.Integer, nullable=True)

    invoice_number = db.Column(db.String(64), nullable=True)
    invoice_date = db.Column(db.DateTime(timezone=True), nullable=True)
    delivery_date = db.Column(db.DateTime(timezone=True), nullable=True)
    warranty_type = db.Column(db.String(64), nullable=True)
    warranty_period = db.Column(db.Integer, nullable=True)

    # Demo linkage
    demo_purpose = db.Column(db.String(255), nullable=True)
    expected_return_date = db.Column(db.DateTime(timezone=True), nullable=True)
    returned_at = db.Column(db.DateTime(timezone=True), nullable=True)
    original_demo_transaction_id = db.Column(db.Integer, nullable=True, index=True)
    returned_from_demo = db.Column(db.String(64), nullable=True)

    # Order cancellation linkage
    original_transaction_id = db.Column(db.Integer, nullable=True, index=True)
    cancelled_from_order = db.Column(db.String(64), nullable=True)
    cancellation_reason = db.Column(db.Text, nullable=True)

    # Asset attribute snapshot
    equipment_category = db.Column(db.String(128), nullable=True)
    model = db.Column(db.String(128), nullable=True)
    size = db.Column(db.String(64), nullable=True)
    batch = db.Column(db.String(64), nullable=True)

    quantity = db.Column(db.Integer, nullable=False, default=1)
    remarks = db.Column(db.Text, nullable=True)
    source = db.Column(db.String(32), nullable=True)
    uploaded_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    def __repr__(self) -> str:
        return (
            f"<LedgerEntry tx={self.transaction_id} type={self.type} "
            f"status={self.status} serial={self.serial_number!r}>"
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "transaction_id": self.transaction_id,
            "type": self.type,
            "status": self.status,
            "serial_number": self.serial_number,
            "location": self.location,
            "customer_dealer": self.customer_dealer,
            "customer_client": self.customer_client,
            "occurred_at": to_utc_z(self.occurred_at) if self.occurred_at else self.occurred_at_text,
            "entry_no": self.entry_no,
            "invoice_number": self.invoice_number,
            "invoice_date": to_utc_z(self.invoice_date) if self.invoice_date else None,
            "delivery_date": to_utc_z(self.delivery_date) if self.delivery_date else None,
            "warranty_type": self.warranty_type,
            "warranty_period": self.warranty_period,
            "demo_purpose": self.demo_purpose,
            "expected_return_date": to_utc_z(self.expected_return_date) if self.expected_return_date else None,
            "returned_at": to_utc_z(self.returned_at) if self.returned_at else None,
            "original_demo_transaction_id": self.original_demo_transaction_id,
            "returned_from_demo": self.returned_from_demo,
            "original_transaction_id": self.original_transaction_id,
            "cancelled_from_order": self.cancelled_from_order,
            "cancellation_reason": self.cancellation_reason,
            "equipment_category": self.equipment_category,
            "model": self.model,
            "size": self.size,
            "batch": self.batch,
            "quantity": self.quantity,
            "remarks": self.remarks,
            "source": self.source,
            "uploaded_by_user_id": self.uploaded_by_user_id,
            "created_at": to_utc_z(self.created_at),
        }
