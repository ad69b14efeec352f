# backend/assetledger/routes/assets.py
"""
Asset registry routes.

SECURITY: All routes require authentication.

Serial numbers in URLs are matched case-insensitively.
"""
from flask import Blueprint, g, jsonify, request

from ..models import Asset
from ..services import ledger_service, registry_service, reporting_service
from ..services.status_service import derive_status
from ..validation import ModelValidationPolicy, coerce_datetime, validate_payload
from ..decorators import require_auth


assets_bp = Blueprint("assets", __name__, url_prefix="/api/assets")

STOCK_IN_POLICY = ModelValidationPolicy(
    writable_fields={"serial_number", "equipment_category", "model", "size", "batch", "remark", "location"},
    required_on_create={"serial_number"},
)

ASSET_UPDATE_POLICY = ModelValidationPolicy(
    writable_fields=set(registry_service.UPDATABLE_FIELDS),
)


@assets_bp.post("")
@require_auth
def stock_in_route():
    """Register a new serialized item (Stock_In)."""
    payload = dict(request.get_json(silent=True) or {})
    raw_date = payload.pop("date", None)
    raw_occurred_at = payload.pop("occurred_at", None)
    occurred_at = coerce_datetime(raw_date or raw_occurred_at, "date")

    patch = validate_payload(model=Asset, payload=payload, policy=STOCK_IN_POLICY, partial=False)
    asset = registry_service.stock_in(user_id=g.current_user.id, occurred_at=occurred_at, **patch)
    return jsonify({"success": True, "asset": asset.to_dict()}), 201


@assets_bp.get("")
@require_auth
def list_assets_route():
    limit = request.args.get("limit", type=int)
    assets = registry_service.list_assets(
        status=request.args.get("status"),
        search=request.args.get("search"),
        limit=limit,
    )
    return jsonify({"success": True, "assets": [a.to_dict() for a in assets], "count": len(assets)})


@assets_bp.get("/<serial_number>")
@require_auth
def get_asset_route(serial_number: str):
    asset = registry_service.get_asset(serial_number)
    return jsonify({"success": True, "asset": asset.to_dict()})


@assets_bp.get("/<serial_number>/history")
@require_auth
def asset_history_route(serial_number: str):
    return jsonify({"success": True, **reporting_service.item_activity(serial_number)})


@assets_bp.get("/<serial_number>/status")
@require_auth
def derived_status_route(serial_number: str):
    """Status derived from the ledger next to the registry's cached one."""
    asset = registry_service.get_asset(serial_number)
    derived = derive_status(asset.serial_number, ledger_service.entries_for_serial(asset.serial_number))
    return jsonify({
        "success": True,
        "serial_number": asset.serial_number,
        "registry_status": asset.status,
        "derived": derived.to_dict(),
        "in_sync": asset.status == derived.status,
    })


@assets_bp.patch("/<serial_number>")
@require_auth
def update_asset_route(serial_number: str):
    payload = dict(request.get_json(silent=True) or {})
    expected_version = payload.pop("version_id", None)

    patch = validate_payload(model=Asset, payload=payload, policy=ASSET_UPDATE_POLICY, partial=True)
    asset = registry_service.update_asset(
        user_id=g.current_user.id,
        serial_number=serial_number,
        patch=patch,
        expected_version=expected_version,
    )
    return jsonify({"success": True, "asset": asset.to_dict()})


@assets_bp.delete("/<serial_number>")
@require_auth
def purge_asset_route(serial_number: str):
    result = registry_service.purge_asset(user_id=g.current_user.id, serial_number=serial_number)
    return jsonify({"success": True, **result})
