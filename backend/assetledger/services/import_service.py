# Overview: Service-layer operations for bulk inventory import; encapsulates parsing and database work.

"""
Bulk inventory import.

WHY: Existing stock arrives as spreadsheets. Each valid row becomes one
Asset plus one synthesized Stock_In entry. Rows go straight into the
registry and ledger without the order/demo workflow checks.

ROW RULES:
- Headers are normalised: lower case, spaces -> underscores, no brackets
- serial_number is required
- A serial repeated inside the file is imported once (first row wins)
- A serial already in the registry is skipped
- Skipped rows are reported with their row number and reason
- A date that cannot be parsed is kept verbatim in occurred_at_text
"""

from __future__ import annotations

import csv
import io
import logging
from typing import Any, Iterable

from flask import current_app

from ..errors import ValidationError, require_actor
from ..extensions import db
from ..models import Asset
from ..models.inventory import ASSET_ACTIVE, ENTRY_STOCK_IN, normalize_serial
from ..time_utils import parse_loose_datetime, utcnow
from . import ledger_service, sequence_service
from .consistency import run_with_retry, unit_of_work


logger = logging.getLogger(__name__)

SOURCE_IMPORT = "inventory_upload"

INVENTORY_COLUMNS = (
    "serial_number",
    "equipment_category",
    "model",
    "size",
    "batch",
    "date",
    "remark",
    "location",
)

# Spreadsheet header aliases seen in the wild
HEADER_ALIASES = {
    "serial": "serial_number",
    "serial_no": "serial_number",
    "category": "equipment_category",
    "remarks": "remark",
}


def normalize_header(name: Any) -> str:
    key = (
        str(name or "")
        .strip()
        .lower()
        .replace(" ", "_")
        .replace("(", "")
        .replace(")", "")
    )
    return HEADER_ALIASES.get(key, key)


def _normalize_row(row: dict) -> dict:
    cleaned = {}
    for key, value in (row or {}).items():
        column = normalize_header(key)
        if column in INVENTORY_COLUMNS:
            cleaned[column] = "" if value is None else str(value).strip()
    return cleaned


def import_inventory_rows(*, user_id: int | None, rows: Iterable[dict], first_row_number: int = 1) -> dict:
    """
    Import rows of inventory in one write.

    Returns counts, the imported serials and per-row skip reasons.
    """
    require_actor(user_id)
    if rows is None or isinstance(rows, (str, bytes, dict)):
        raise ValidationError("rows must be a list of objects")

    default_location = current_app.config.get("DEFAULT_LOCATION", "HQ")
    accepted: list[tuple[int, dict]] = []
    skipped: list[dict] = []
    seen: set[str] = set()

    candidates = []
    for offset, raw in enumerate(rows):
        row_number = first_row_number + offset
        if not isinstance(raw, dict):
            skipped.append({"row": row_number, "serial_number": None, "reason": "Row is not an object"})
            continue
        row = _normalize_row(raw)
        serial = row.get("serial_number", "")
        key = normalize_serial(serial)
        if not key:
            skipped.append({"row": row_number, "serial_number": None, "reason": "Missing serial number"})
            continue
        if key in seen:
            skipped.append({"row": row_number, "serial_number": serial, "reason": "Duplicate serial number in file"})
            continue
        seen.add(key)
        candidates.append((row_number, key, row))

    existing = set()
    if seen:
        existing = {
            k for (k,) in db.session.query(Asset.serial_key).filter(Asset.serial_key.in_(list(seen))).all()
        }

    for row_number, key, row in candidates:
        if key in existing:
            skipped.append({
                "row": row_number,
                "serial_number": row["serial_number"],
                "reason": "Serial number already exists in inventory",
            })
            continue
        accepted.append((row_number, row))

    skipped.sort(key=lambda s: s["row"])
    if not accepted:
        return {"imported": 0, "skipped": skipped, "serial_numbers": [], "transaction_ids": []}

    def _write() -> list[int]:
        with unit_of_work():
            tx_ids = sequence_service.next_batch(sequence_service.TRANSACTION_ID, len(accepted))
            for tx_id, (_, row) in zip(tx_ids, accepted):
                serial = row["serial_number"]
                location = row.get("location") or default_location

                raw_date = row.get("date") or ""
                occurred_at = parse_loose_datetime(raw_date) if raw_date else utcnow()
                occurred_at_text = raw_date if raw_date and occurred_at is None else None

                asset = Asset(
                    serial_number=serial,
                    serial_key=normalize_serial(serial),
                    equipment_category=row.get("equipment_category") or None,
                    model=row.get("model") or None,
                    size=row.get("size") or None,
                    batch=row.get("batch") or None,
                    remark=row.get("remark") or None,
                    status=ASSET_ACTIVE,
                    location=location,
                    source=SOURCE_IMPORT,
                    created_by_user_id=user_id,
                )
                db.session.add(asset)
                entry = ledger_service.append_entry(
                    entry_type=ENTRY_STOCK_IN,
                    status=ASSET_ACTIVE,
                    serial_number=serial,
                    user_id=user_id,
                    transaction_id=tx_id,
                    asset=asset,
                    occurred_at=occurred_at,
                    location=location,
                    remarks=row.get("remark") or None,
                    source=SOURCE_IMPORT,
                )
                if occurred_at is None:
                    # append_entry stamps "now"; keep the unknown time unknown
                    entry.occurred_at = None
                    entry.occurred_at_text = occurred_at_text
        return tx_ids

    tx_ids = run_with_retry(_write)
    logger.info("Imported %s inventory rows, skipped %s", len(accepted), len(skipped))

    return {
        "imported": len(accepted),
        "skipped": skipped,
        "serial_numbers": [row["serial_number"] for _, row in accepted],
        "transaction_ids": tx_ids,
    }


def parse_csv(text: str) -> list[dict]:
    if not isinstance(text, str) or not text.strip():
        raise ValidationError("CSV content is empty")
    reader = csv.DictReader(io.StringIO(text.lstrip("\ufeff")))
    if not reader.fieldnames:
        raise ValidationError("CSV header row is missing")
    headers = {normalize_header(h) for h in reader.fieldnames}
    if "serial_number" not in headers:
        raise ValidationError("CSV must have a serial_number column", details={"columns": reader.fieldnames})
    return [row for row in reader]


def parse_xlsx(stream) -> list[dict]:
    from openpyxl import load_workbook

    wb = load_workbook(stream, read_only=True, data_only=True)
    sheet = wb.active
    data = list(sheet.values)
    if not data:
        return []
    headers = [str(h) if h is not None else "" for h in data[0]]
    return [
        {headers[i]: row[i] for i in range(min(len(headers), len(row)))}
        for row in data[1:]
        if any(cell is not None for cell in row)
    ]


def import_inventory_csv(*, user_id: int | None, text: str) -> dict:
    """Import a CSV document (header row + one item per line)."""
    require_actor(user_id)
    rows = parse_csv(text)
    # Row 1 is the header
    return import_inventory_rows(user_id=user_id, rows=rows, first_row_number=2)


def import_inventory_xlsx(*, user_id: int | None, stream) -> dict:
    """Import the active sheet of an .xlsx workbook."""
    require_actor(user_id)
    rows = parse_xlsx(stream)
    return import_inventory_rows(user_id=user_id, rows=rows, first_row_number=2)
