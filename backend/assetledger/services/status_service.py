# Overview: Status derivation over ledger entries; pure functions, no database work.

"""
Status Derivation Engine

WHY: The ledger is the source of truth. Asset.status is a cache written by
the workflows; everything that needs to *verify* a status (reports,
discrepancy audits, reconcile) derives it from the entries instead.

RECENCY RULE (canonical):
- Effective timestamp: occurred_at if set, else occurred_at_text parsed
  leniently; an unparseable value means "unknown"
- Timed entries sort newest first, ties broken by larger transaction_id
- Entries with unknown time sort after every timed entry (still by
  transaction_id desc); they never outrank a timed entry
- The status is decided by the most recent entry alone
"""

from __future__ import annotations

import warnings
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Iterable, Mapping

from ..models.inventory import (
    ASSET_ACTIVE,
    ASSET_DELIVERED,
    ASSET_DEMO,
    ASSET_RESERVED,
    ASSET_RETURNED,
    ENTRY_DEMO,
    ENTRY_RETURNED,
    ENTRY_STOCK_IN,
    ENTRY_STOCK_OUT,
    ENTRY_TYPES,
    UNKNOWN_LOCATION,
)
from ..time_utils import parse_loose_datetime, to_utc_z


@dataclass(frozen=True)
class DerivedStatus:
    status: str
    location: str
    last_activity: datetime | None

    def to_dict(self) -> dict:
        return {
            "status": self.status,
            "location": self.location,
            "last_activity": to_utc_z(self.last_activity),
        }


def _field(entry: Any, name: str):
    if isinstance(entry, Mapping):
        return entry.get(name)
    return getattr(entry, name, None)


def effective_timestamp(entry: Any) -> datetime | None:
    """Structured timestamp, else the string one parsed leniently, else None."""
    ts = parse_loose_datetime(_field(entry, "occurred_at"))
    if ts is not None:
        return ts
    return parse_loose_datetime(_field(entry, "occurred_at_text"))


def _sort_key(entry: Any):
    ts = effective_timestamp(entry)
    tx = _field(entry, "transaction_id") or 0
    if ts is None:
        return (0, datetime.min, tx)
    return (1, ts, tx)


def order_entries(entries: Iterable[Any]) -> list:
    """Most recent first, by the recency rule."""
    return sorted(entries, key=_sort_key, reverse=True)


def status_from_entry(entry: Any) -> str:
    entry_type = _field(entry, "type")
    local_status = _field(entry, "status")

    if entry_type == ENTRY_STOCK_OUT:
        if local_status in (ASSET_RESERVED, ASSET_DELIVERED):
            return local_status
        return ASSET_RESERVED
    if entry_type == ENTRY_STOCK_IN:
        return ASSET_ACTIVE
    if entry_type == ENTRY_DEMO:
        # A Demo entry marked Returned means the loan is over
        if local_status == ASSET_RETURNED:
            return ASSET_ACTIVE
        return ASSET_DEMO
    if entry_type == ENTRY_RETURNED:
        return ASSET_RETURNED
    # Stock_In and Cancellation both put the item back on the shelf
    return ASSET_ACTIVE


def _location_of(ordered: list) -> str:
    for entry in ordered:
        location = (_field(entry, "location") or "").strip()
        if location and location.lower() != UNKNOWN_LOCATION.lower():
            return location
    return UNKNOWN_LOCATION


def derive_status(serial_number: str, entries: Iterable[Any]) -> DerivedStatus:
    """
    Derive current status and location of one serial from its ledger entries.

    `entries` may be LedgerEntry rows or plain mappings with the same keys.
    Entries of unrecognised type are ignored.
    """
    ordered = [e for e in order_entries(entries) if _field(e, "type") in ENTRY_TYPES]
    if not ordered:
        return DerivedStatus(status=ASSET_ACTIVE, location=UNKNOWN_LOCATION, last_activity=None)

    latest = ordered[0]
    return DerivedStatus(
        status=status_from_entry(latest),
        location=_location_of(ordered),
        last_activity=effective_timestamp(latest),
    )


def legacy_count_status(entries: Iterable[Any]) -> str:
    """
    Count-based status heuristic from the spreadsheet era.

    Deprecated: contradicts the recency rule for re-stocked or returned
    items. Only the discrepancy analyzer calls it, to flag serials whose
    history does not look like one intake followed by one sale.
    """
    warnings.warn(
        "legacy_count_status is deprecated; use derive_status",
        DeprecationWarning,
        stacklevel=2,
    )
    stock_in = 0
    stock_out = 0
    has_delivered = False
    for entry in entries:
        entry_type = _field(entry, "type")
        if entry_type == ENTRY_STOCK_IN:
            stock_in += 1
        elif entry_type == ENTRY_STOCK_OUT:
            stock_out += 1
            if _field(entry, "status") == ASSET_DELIVERED:
                has_delivered = True

    if stock_in == 1 and stock_out >= 1:
        return ASSET_DELIVERED if has_delivered else ASSET_RESERVED
    if stock_out > stock_in:
        return ASSET_RESERVED
    return ASSET_ACTIVE
