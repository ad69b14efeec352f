# backend/assetledger/routes/audit.py
"""
Audit and reporting routes.

Read-only except for the two explicit repair endpoints
(POST /reconcile, POST /sequences/resync).
"""
from flask import Blueprint, g, jsonify, request

from ..services import discrepancy_service, reporting_service, sequence_service
from ..decorators import require_auth


audit_bp = Blueprint("audit", __name__, url_prefix="/api/audit")


@audit_bp.get("/discrepancies")
@require_auth
def discrepancies_route():
    return jsonify({"success": True, "report": discrepancy_service.analyze()})


@audit_bp.post("/reconcile")
@require_auth
def reconcile_route():
    data = request.get_json(silent=True) or {}
    changes = discrepancy_service.reconcile(
        user_id=g.current_user.id,
        serial_numbers=data.get("serial_numbers"),
    )
    return jsonify({"success": True, "changes": changes, "count": len(changes)})


@audit_bp.get("/inventory-summary")
@require_auth
def inventory_summary_route():
    return jsonify({"success": True, **reporting_service.inventory_summary()})


@audit_bp.get("/inventory-items")
@require_auth
def inventory_items_route():
    items = reporting_service.inventory_items(status=request.args.get("status"))
    return jsonify({"success": True, "items": items, "count": len(items)})


@audit_bp.get("/sequences")
@require_auth
def sequences_route():
    return jsonify({"success": True, "sequences": sequence_service.sequence_report()})


@audit_bp.post("/sequences/resync")
@require_auth
def resync_sequences_route():
    results = [sequence_service.resync_counter(name) for name in sequence_service.SEQUENCE_NAMES]
    return jsonify({"success": True, "sequences": results})
