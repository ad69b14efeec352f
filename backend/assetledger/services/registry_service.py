# Overview: Service-layer operations for the asset registry; encapsulates business logic and database work.

"""
Asset Registry

WHY: One record per physical serialized item. The registry holds the
item's attributes and a cached status/location that every workflow keeps
in step with the ledger inside the same unit of work.

LIFECYCLE:
- Created by stock-in (here) or bulk import (import_service)
- Status moves only through workflows (orders, demos) or reconcile
- Removed only by an administrative purge, which also removes the
  serial's ledger entries
"""

from __future__ import annotations

import logging
from datetime import datetime

from flask import current_app
from sqlalchemy import or_

from ..errors import ConcurrencyConflict, NotFoundError, ValidationError, require_actor
from ..extensions import db
from ..models import Asset, Demo, LedgerEntry, Order
from ..models.inventory import ASSET_ACTIVE, ASSET_STATUSES, ENTRY_STOCK_IN, normalize_serial
from ..time_utils import utcnow
from . import ledger_service, sequence_service
from .consistency import run_with_retry, unit_of_work


logger = logging.getLogger(__name__)

SOURCE_MANUAL = "stock_in_manual"

# Attributes a caller may change after registration
UPDATABLE_FIELDS = {"equipment_category", "model", "size", "batch", "remark", "location"}


def find_asset(serial_number: str) -> Asset | None:
    key = normalize_serial(serial_number)
    if not key:
        return None
    return db.session.query(Asset).filter_by(serial_key=key).first()


def get_asset(serial_number: str) -> Asset:
    asset = find_asset(serial_number)
    if asset is None:
        raise NotFoundError(
            f"Serial number {serial_number} not found in inventory",
            details={"serial_number": serial_number},
        )
    return asset


def assets_by_keys(serial_keys) -> dict[str, Asset]:
    keys = list(serial_keys)
    if not keys:
        return {}
    rows = db.session.query(Asset).filter(Asset.serial_key.in_(keys)).all()
    return {a.serial_key: a for a in rows}


def list_assets(status: str | None = None, search: str | None = None, limit: int | None = None) -> list[Asset]:
    query = db.session.query(Asset)
    if status:
        if status not in ASSET_STATUSES:
            raise ValidationError(f"Unknown status: {status}", details={"allowed": list(ASSET_STATUSES)})
        query = query.filter(Asset.status == status)
    if search:
        like = f"%{search.strip()}%"
        query = query.filter(
            or_(
                Asset.serial_number.ilike(like),
                Asset.model.ilike(like),
                Asset.equipment_category.ilike(like),
                Asset.batch.ilike(like),
            )
        )
    query = query.order_by(Asset.serial_key.asc())
    if limit:
        query = query.limit(limit)
    return query.all()


def stock_in(
    *,
    user_id: int | None,
    serial_number: str,
    equipment_category: str | None = None,
    model: str | None = None,
    size: str | None = None,
    batch: str | None = None,
    remark: str | None = None,
    location: str | None = None,
    occurred_at: datetime | None = None,
) -> Asset:
    """
    Register a new item: one Asset plus its Stock_In entry, in one write.

    Raises:
        Unauthenticated: no caller
        ValidationError: blank or already registered serial number
    """
    require_actor(user_id)

    serial_number = (serial_number or "").strip()
    if not serial_number:
        raise ValidationError("serial_number is required")
    if find_asset(serial_number) is not None:
        raise ValidationError(
            f"Serial number {serial_number} already exists in inventory",
            details={"serial_number": serial_number},
        )

    location = (location or "").strip() or current_app.config.get("DEFAULT_LOCATION", "HQ")
    occurred_at = occurred_at or utcnow()

    def _write() -> Asset:
        with unit_of_work():
            tx_id = sequence_service.next_id(sequence_service.TRANSACTION_ID)
            asset = Asset(
                serial_number=serial_number,
                serial_key=normalize_serial(serial_number),
                equipment_category=equipment_category,
                model=model,
                size=size,
                batch=batch,
                remark=remark,
                status=ASSET_ACTIVE,
                location=location,
                source=SOURCE_MANUAL,
                created_by_user_id=user_id,
            )
            db.session.add(asset)
            ledger_service.append_entry(
                entry_type=ENTRY_STOCK_IN,
                status=ASSET_ACTIVE,
                serial_number=serial_number,
                user_id=user_id,
                transaction_id=tx_id,
                asset=asset,
                occurred_at=occurred_at,
                location=location,
                remarks=remark,
                source=SOURCE_MANUAL,
            )
        return asset

    asset = run_with_retry(_write)
    logger.info("Stocked in %s at %s", asset.serial_number, asset.location)
    return asset


def update_asset(
    *,
    user_id: int | None,
    serial_number: str,
    patch: dict,
    expected_version: int | None = None,
) -> Asset:
    """
    Change item attributes and mirror them onto the item's Stock_In entries.

    expected_version guards against lost updates from stale clients.
    """
    require_actor(user_id)

    unknown = set(patch) - UPDATABLE_FIELDS
    if unknown:
        raise ValidationError("Field not allowed", details={"fields": sorted(unknown)})

    asset = get_asset(serial_number)
    if expected_version is not None and asset.version_id != expected_version:
        raise ConcurrencyConflict(
            "Item was modified by another caller",
            details={"expected_version": expected_version, "current_version": asset.version_id},
        )

    with unit_of_work():
        for key, value in patch.items():
            setattr(asset, key, value)

        mirrored = {k: v for k, v in patch.items() if k in ledger_service.SNAPSHOT_FIELDS}
        if mirrored:
            stock_ins = ledger_service.entries_for_serial(asset.serial_number, ENTRY_STOCK_IN)
            for entry in stock_ins:
                for key, value in mirrored.items():
                    setattr(entry, key, value)

    return asset


def _referencing_documents(transaction_ids: set[int]) -> list[str]:
    if not transaction_ids:
        return []
    refs = []
    for order in db.session.query(Order).all():
        if transaction_ids.intersection(order.transaction_ids or []):
            refs.append(f"order:{order.order_number}")
    for demo in db.session.query(Demo).all():
        if transaction_ids.intersection(demo.transaction_ids or []):
            refs.append(f"demo:{demo.demo_number}")
    return refs


def purge_asset(*, user_id: int | None, serial_number: str) -> dict:
    """
    Administrative purge: remove the asset and every ledger entry of it.

    Refused while an order or demo still lists one of its entries.
    """
    require_actor(user_id)
    asset = get_asset(serial_number)
    entries = ledger_service.entries_for_serial(asset.serial_number)

    refs = _referencing_documents({e.transaction_id for e in entries})
    if refs:
        raise ValidationError(
            f"Serial number {asset.serial_number} is still referenced and cannot be purged",
            details={"referenced_by": refs},
        )

    serial = asset.serial_number
    with unit_of_work():
        deleted_entries = (
            db.session.query(LedgerEntry)
            .filter(LedgerEntry.serial_key == asset.serial_key)
            .delete(synchronize_session=False)
        )
        db.session.delete(asset)

    logger.warning("Purged %s (%s ledger entries) by user %s", serial, deleted_entries, user_id)
    return {"serial_number": serial, "deleted_entries": deleted_entries}
