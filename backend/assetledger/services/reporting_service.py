# Overview: Read-only inventory reporting built on ledger-derived status.

from __future__ import annotations

from collections import Counter, defaultdict

from ..errors import NotFoundError
from ..extensions import db
from ..models import Asset
from ..models.inventory import ASSET_STATUSES
from . import ledger_service, registry_service
from .status_service import derive_status


def _derived_rows() -> list[tuple[Asset, object]]:
    assets = db.session.query(Asset).order_by(Asset.serial_key.asc()).all()
    grouped = ledger_service.entries_grouped_by_serial()
    return [(a, derive_status(a.serial_number, grouped.get(a.serial_key, []))) for a in assets]


def inventory_summary() -> dict:
    """Counts by derived status, overall and per equipment category."""
    totals = Counter({status: 0 for status in ASSET_STATUSES})
    by_category: dict[str, Counter] = defaultdict(Counter)

    rows = _derived_rows()
    for asset, derived in rows:
        totals[derived.status] += 1
        by_category[asset.equipment_category or "Uncategorized"][derived.status] += 1

    return {
        "total_items": len(rows),
        "by_status": dict(totals),
        "by_category": {name: dict(counts) for name, counts in sorted(by_category.items())},
    }


def inventory_items(status: str | None = None) -> list[dict]:
    """Assets with their derived status, location and last activity."""
    items = []
    for asset, derived in _derived_rows():
        if status and derived.status != status:
            continue
        row = asset.to_dict()
        row["derived"] = derived.to_dict()
        items.append(row)
    return items


def item_activity(serial_number: str) -> dict:
    """Ordered history of one serial, newest first."""
    asset = registry_service.find_asset(serial_number)
    history = ledger_service.history(serial_number)
    if asset is None and not history:
        raise NotFoundError(
            f"Serial number {serial_number} not found",
            details={"serial_number": serial_number},
        )
    derived = derive_status(serial_number, history)
    return {
        "serial_number": asset.serial_number if asset else history[0].serial_number,
        "asset": asset.to_dict() if asset else None,
        "derived": derived.to_dict(),
        "history": [e.to_dict() for e in history],
    }
