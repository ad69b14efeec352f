# backend/assetledger/routes/demos.py
"""
Demo loan routes.

SECURITY: All routes require authentication.
"""
from flask import Blueprint, g, jsonify, request

from ..errors import ValidationError
from ..services import demo_service
from ..decorators import require_auth


demos_bp = Blueprint("demos", __name__, url_prefix="/api/demos")


def _json() -> dict:
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError("Invalid JSON payload")
    return data


@demos_bp.post("")
@require_auth
def create_demo_route():
    """
    Body: demo_number, serial_numbers[], customer_dealer, customer_client,
    location, demo_purpose, expected_return_date, remarks, date
    """
    data = _json()
    demo = demo_service.create_demo(
        user_id=g.current_user.id,
        demo_number=data.get("demo_number"),
        serial_numbers=data.get("serial_numbers") or data.get("items") or [],
        customer_dealer=data.get("customer_dealer"),
        customer_client=data.get("customer_client"),
        location=data.get("location"),
        demo_purpose=data.get("demo_purpose"),
        expected_return_date=data.get("expected_return_date"),
        remarks=data.get("remarks"),
        occurred_at=data.get("date"),
    )
    return jsonify({"success": True, "demo": demo.to_dict()}), 201


@demos_bp.get("")
@require_auth
def list_demos_route():
    demos = demo_service.list_demos(status=request.args.get("status"))
    return jsonify({"success": True, "demos": [d.to_dict() for d in demos], "count": len(demos)})


@demos_bp.get("/statistics")
@require_auth
def demo_statistics_route():
    return jsonify({"success": True, **demo_service.demo_statistics()})


@demos_bp.get("/<demo_number>")
@require_auth
def get_demo_route(demo_number: str):
    demo = demo_service.get_demo(demo_number)
    return jsonify({"success": True, "demo": demo.to_dict()})


@demos_bp.get("/<demo_number>/items")
@require_auth
def demo_items_route(demo_number: str):
    items = demo_service.demo_items(demo_number)
    return jsonify({"success": True, "items": items, "count": len(items)})


@demos_bp.post("/<demo_number>/return")
@require_auth
def return_items_route(demo_number: str):
    """Body: serial_numbers[], returned_at."""
    data = _json()
    demo = demo_service.return_items(
        user_id=g.current_user.id,
        demo_number=demo_number,
        serial_numbers=data.get("serial_numbers") or [],
        returned_at=data.get("returned_at"),
    )
    return jsonify({"success": True, "demo": demo.to_dict()})


@demos_bp.post("/<demo_number>/return-all")
@require_auth
def return_all_route(demo_number: str):
    data = _json()
    demo = demo_service.return_all(
        user_id=g.current_user.id,
        demo_number=demo_number,
        returned_at=data.get("returned_at"),
    )
    return jsonify({"success": True, "demo": demo.to_dict()})


@demos_bp.delete("/<demo_number>")
@require_auth
def delete_demo_route(demo_number: str):
    result = demo_service.delete_demo(user_id=g.current_user.id, demo_number=demo_number)
    return jsonify({"success": True, **result})
