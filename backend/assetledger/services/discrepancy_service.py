# Overview: Read-only audit of ledger vs registry, plus the explicit reconcile repair path.

"""
Discrepancy Analyzer

WHY: Registry status, order/demo status and the ledger are kept in step by
the workflows, not by database constraints. This is the safety net: it
re-derives every serial's status from the ledger and reports where the
stored data disagrees.

`analyze()` never writes. `reconcile()` is the only repair path and runs
only when called explicitly.
"""

from __future__ import annotations

import logging
import warnings

from ..errors import require_actor
from ..extensions import db
from ..models import Asset
from ..models.inventory import (
    ASSET_DELIVERED,
    ENTRY_STOCK_IN,
    ENTRY_STOCK_OUT,
    UNKNOWN_LOCATION,
    normalize_serial,
)
from . import ledger_service
from .consistency import unit_of_work
from .status_service import derive_status, legacy_count_status, order_entries


logger = logging.getLogger(__name__)


def _is_delivered(entry) -> bool:
    return (entry.status or "").lower() == ASSET_DELIVERED.lower()


def _heuristic_status(entries) -> str:
    with warnings.catch_warnings():
        warnings.simplefilter("ignore", DeprecationWarning)
        return legacy_count_status(entries)


def analyze() -> dict:
    """
    Build the discrepancy report.

    Serial numbers compare case-insensitively throughout.
    """
    assets = {a.serial_key: a for a in db.session.query(Asset).all()}
    grouped = ledger_service.entries_grouped_by_serial()

    total_delivered = 0
    currently_delivered = []
    orphaned_delivered = []
    orphaned_stock_outs = []
    multiple_deliveries = []
    heuristic_mismatches = []
    stock_out_without_stock_in = []

    for key, entries in grouped.items():
        delivered = [e for e in entries if _is_delivered(e)]
        total_delivered += len(delivered)
        has_asset = key in assets
        serial = assets[key].serial_number if has_asset else entries[0].serial_number

        if not has_asset:
            orphaned_delivered.extend(
                {"transaction_id": e.transaction_id, "serial_number": e.serial_number}
                for e in delivered
            )
            orphaned_stock_outs.extend(
                {"transaction_id": e.transaction_id, "serial_number": e.serial_number}
                for e in entries if e.type == ENTRY_STOCK_OUT
            )

        if len(delivered) > 1:
            ordered = order_entries(delivered)
            multiple_deliveries.append({
                "serial_number": serial,
                "delivered_transaction_ids": sorted(e.transaction_id for e in delivered),
                "most_recent_transaction_id": ordered[0].transaction_id,
                "extra_transaction_ids": [e.transaction_id for e in ordered[1:]],
            })

        types = {e.type for e in entries}
        if ENTRY_STOCK_OUT in types and ENTRY_STOCK_IN not in types:
            stock_out_without_stock_in.append(serial)

        derived = derive_status(serial, entries)
        if derived.status == ASSET_DELIVERED:
            currently_delivered.append(serial)

        heuristic = _heuristic_status(entries)
        if heuristic != derived.status:
            heuristic_mismatches.append({
                "serial_number": serial,
                "derived_status": derived.status,
                "heuristic_status": heuristic,
            })

    registry_drift = []
    missing_stock_ins = []
    for key, asset in assets.items():
        entries = grouped.get(key, [])
        derived = derive_status(asset.serial_number, entries)
        if asset.status != derived.status:
            registry_drift.append({
                "serial_number": asset.serial_number,
                "registry_status": asset.status,
                "derived_status": derived.status,
            })
        if not any(e.type == ENTRY_STOCK_IN for e in entries):
            missing_stock_ins.append(asset.serial_number)

    report = {
        "total_delivered_entries": total_delivered,
        "registry_size": len(assets),
        "currently_delivered": sorted(currently_delivered),
        "orphaned_delivered_entries": orphaned_delivered,
        "orphaned_stock_outs": orphaned_stock_outs,
        "multiple_deliveries": multiple_deliveries,
        "registry_drift": registry_drift,
        "heuristic_mismatches": heuristic_mismatches,
        "stock_out_without_stock_in": sorted(stock_out_without_stock_in),
        "missing_stock_ins": sorted(missing_stock_ins),
    }
    report["summary"] = {
        "total_delivered_entries": total_delivered,
        "registry_size": len(assets),
        "currently_delivered_count": len(currently_delivered),
        "orphaned_delivered_count": len(orphaned_delivered),
        "multiple_delivery_serials": len(multiple_deliveries),
        "extra_delivered_entries": sum(len(m["extra_transaction_ids"]) for m in multiple_deliveries),
        "registry_drift_count": len(registry_drift),
        "missing_stock_ins_count": len(missing_stock_ins),
        "stock_out_without_stock_in_count": len(stock_out_without_stock_in),
    }
    report["clean"] = not (orphaned_delivered or multiple_deliveries or registry_drift or missing_stock_ins)
    return report


def reconcile(*, user_id: int | None, serial_numbers: list[str] | None = None) -> list[dict]:
    """
    Overwrite the registry's cached status/location with the derived ones.

    Administrative repair; returns one change record per asset touched.
    """
    require_actor(user_id)

    query = db.session.query(Asset)
    if serial_numbers:
        query = query.filter(Asset.serial_key.in_([normalize_serial(s) for s in serial_numbers]))
    assets = query.all()
    grouped = ledger_service.entries_grouped_by_serial([a.serial_key for a in assets])

    changes = []
    with unit_of_work():
        for asset in assets:
            derived = derive_status(asset.serial_number, grouped.get(asset.serial_key, []))
            new_location = asset.location
            if derived.location != UNKNOWN_LOCATION:
                new_location = derived.location

            if asset.status == derived.status and asset.location == new_location:
                continue

            changes.append({
                "serial_number": asset.serial_number,
                "status": {"from": asset.status, "to": derived.status},
                "location": {"from": asset.location, "to": new_location},
            })
            asset.status = derived.status
            asset.location = new_location

    if changes:
        logger.warning("Reconciled %s assets from the ledger (user %s)", len(changes), user_id)
    return changes
