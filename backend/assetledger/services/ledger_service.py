# Overview: Service-layer operations for the transaction ledger; encapsulates data access for ledger entries.

"""
Transaction Ledger access.

WHY: Workflows never build LedgerEntry rows by hand; they go through
`append_entry` so that serial keys, asset snapshots, attribution and
transaction_id allocation are applied the same way everywhere.

Entries are append-only. The only in-place changes are:
- attaching later-known metadata (`attach_metadata`)
- marking a Demo entry as returned (demo workflow)
"""

from __future__ import annotations

from collections import defaultdict
from datetime import datetime
from typing import Iterable

from sqlalchemy import update

from ..errors import ValidationError
from ..extensions import db
from ..models import Asset, LedgerEntry
from ..models.inventory import ENTRY_TYPES, normalize_serial
from ..time_utils import to_utc_z, utcnow
from . import sequence_service
from .status_service import effective_timestamp, order_entries


# Fields that may be attached to an existing entry after creation
ATTACHABLE_FIELDS = {"invoice_number", "invoice_date", "delivery_date"}

SNAPSHOT_FIELDS = ("equipment_category", "model", "size", "batch")


def asset_snapshot(asset: Asset | None) -> dict:
    if asset is None:
        return {}
    return {name: getattr(asset, name) for name in SNAPSHOT_FIELDS}


def append_entry(
    *,
    entry_type: str,
    status: str,
    serial_number: str,
    user_id: int | None,
    transaction_id: int | None = None,
    asset: Asset | None = None,
    occurred_at: datetime | None = None,
    **fields,
) -> LedgerEntry:
    """
    Add one ledger entry to the current unit of work (no commit).

    transaction_id is allocated when not supplied; workflows that create
    several entries allocate a batch up front and pass them in.
    """
    if entry_type not in ENTRY_TYPES:
        raise ValidationError(f"Unknown ledger entry type: {entry_type}")

    serial_number = (serial_number or "").strip()
    if not serial_number:
        raise ValidationError("serial_number is required")

    if transaction_id is None:
        transaction_id = sequence_service.next_id(sequence_service.TRANSACTION_ID)

    values = asset_snapshot(asset)
    values.update(fields)

    entry = LedgerEntry(
        transaction_id=transaction_id,
        type=entry_type,
        status=status,
        serial_number=serial_number,
        serial_key=normalize_serial(serial_number),
        occurred_at=occurred_at or utcnow(),
        uploaded_by_user_id=user_id,
        **values,
    )
    db.session.add(entry)
    return entry


def entries_for_serial(serial_number: str, entry_type: str | None = None) -> list[LedgerEntry]:
    """All entries of one serial (case-insensitive), in transaction_id order."""
    query = db.session.query(LedgerEntry).filter(
        LedgerEntry.serial_key == normalize_serial(serial_number)
    )
    if entry_type:
        query = query.filter(LedgerEntry.type == entry_type)
    return query.order_by(LedgerEntry.transaction_id.asc()).all()


def entries_by_transaction_ids(transaction_ids: Iterable[int]) -> list[LedgerEntry]:
    ids = list(transaction_ids or [])
    if not ids:
        return []
    return (
        db.session.query(LedgerEntry)
        .filter(LedgerEntry.transaction_id.in_(ids))
        .order_by(LedgerEntry.transaction_id.asc())
        .all()
    )


def history(serial_number: str) -> list[LedgerEntry]:
    """Entries of one serial, most recent first (recency rule)."""
    return order_entries(entries_for_serial(serial_number))


def entries_grouped_by_serial(serial_keys: Iterable[str] | None = None) -> dict[str, list[LedgerEntry]]:
    """Map serial_key -> entries. Whole ledger when no keys are given."""
    query = db.session.query(LedgerEntry)
    if serial_keys is not None:
        keys = list(serial_keys)
        if not keys:
            return {}
        query = query.filter(LedgerEntry.serial_key.in_(keys))

    grouped: dict[str, list[LedgerEntry]] = defaultdict(list)
    for entry in query.order_by(LedgerEntry.transaction_id.asc()).all():
        grouped[entry.serial_key].append(entry)
    return dict(grouped)


def ensure_not_backdated(serial_keys: Iterable[str], occurred_at: datetime, field_name: str = "occurred_at") -> None:
    """
    Read-phase guard for workflow timestamps.

    A new entry dated before a serial's newest entry would not be ranked
    latest by the recency rule, so the cached status would disagree with
    the ledger from the moment it is written. Equal timestamps are fine:
    the newer transaction_id wins the tie.

    Raises:
        ValidationError: details list the serials and their latest activity
    """
    too_early = {}
    for entries in entries_grouped_by_serial(serial_keys).values():
        stamps = [ts for ts in (effective_timestamp(e) for e in entries) if ts is not None]
        if stamps and occurred_at < max(stamps):
            too_early[entries[0].serial_number] = to_utc_z(max(stamps))

    if too_early:
        serials = sorted(too_early)
        raise ValidationError(
            f"{field_name} is earlier than the latest recorded activity of: {', '.join(serials)}",
            details={"field": field_name, "serial_numbers": serials, "latest_activity": too_early},
        )


def attach_metadata(transaction_ids: Iterable[int], **fields) -> int:
    """
    Attach later-known metadata to existing entries (no commit).

    Only invoice_number, invoice_date and delivery_date may be attached.
    Returns the number of entries updated.
    """
    ids = list(transaction_ids or [])
    if not ids or not fields:
        return 0

    unknown = set(fields) - ATTACHABLE_FIELDS
    if unknown:
        raise ValidationError(
            "Only invoice/delivery metadata can be attached to ledger entries",
            details={"fields": sorted(unknown)},
        )

    stmt = (
        update(LedgerEntry)
        .where(LedgerEntry.transaction_id.in_(ids))
        .values(**fields)
        .execution_options(synchronize_session=False)
    )
    result = db.session.execute(stmt)
    return result.rowcount
