# backend/assetledger/routes/orders.py
"""
Sales order routes.

SECURITY: All routes require authentication.

Status never changes through a direct field write. Invoice and delivery
progress is driven by the documents endpoint, which the file collaborator
calls after storing an upload.
"""
from flask import Blueprint, g, jsonify, request

from ..errors import ValidationError
from ..services import order_service
from ..decorators import require_auth


orders_bp = Blueprint("orders", __name__, url_prefix="/api/orders")


def _order_body(order, include_items: bool = False) -> dict:
    body = order.to_dict()
    if include_items:
        body["items"] = [e.to_dict() for e in order_service.order_items(order)]
    return body


def _json() -> dict:
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError("Invalid JSON payload")
    return data


@orders_bp.post("")
@require_auth
def create_order_route():
    """
    Create an order reserving the selected serial numbers.

    Body: order_number, serial_numbers[], customer_dealer, customer_client,
    location, warranty_type, warranty_period, remarks, date
    """
    data = _json()
    order = order_service.create_order(
        user_id=g.current_user.id,
        order_number=data.get("order_number"),
        serial_numbers=data.get("serial_numbers") or data.get("items") or [],
        customer_dealer=data.get("customer_dealer"),
        customer_client=data.get("customer_client"),
        location=data.get("location"),
        warranty_type=data.get("warranty_type"),
        warranty_period=data.get("warranty_period"),
        remarks=data.get("remarks"),
        occurred_at=data.get("date"),
    )
    return jsonify({"success": True, "order": _order_body(order, include_items=True)}), 201


@orders_bp.get("")
@require_auth
def list_orders_route():
    """
    Query params:
    - queue=invoicing | delivery | cancellable (work queues)
    - invoice_status, delivery_status, order_status (filters)
    """
    queue = request.args.get("queue")
    if queue == "invoicing":
        orders = order_service.orders_for_invoicing()
    elif queue == "delivery":
        orders = order_service.orders_for_delivery()
    elif queue == "cancellable":
        orders = order_service.cancellable_orders()
    elif queue:
        raise ValidationError(f"Unknown queue: {queue}", details={"allowed": ["invoicing", "delivery", "cancellable"]})
    else:
        orders = order_service.list_orders(
            invoice_status=request.args.get("invoice_status"),
            delivery_status=request.args.get("delivery_status"),
            order_status=request.args.get("order_status"),
        )
    return jsonify({"success": True, "orders": [o.to_dict() for o in orders], "count": len(orders)})


@orders_bp.post("/replace-item")
@require_auth
def replace_item_route():
    data = _json()
    result = order_service.replace_item(
        user_id=g.current_user.id,
        returned_serial=data.get("returned_serial"),
        replacement_serial=data.get("replacement_serial"),
        customer_dealer=data.get("customer_dealer"),
        remarks=data.get("remarks"),
        occurred_at=data.get("date"),
    )
    return jsonify(result.to_dict()), 201


@orders_bp.get("/<order_number>")
@require_auth
def get_order_route(order_number: str):
    order = order_service.get_order(order_number)
    return jsonify({"success": True, "order": _order_body(order, include_items=True)})


@orders_bp.get("/<order_number>/files")
@require_auth
def order_files_route(order_number: str):
    return jsonify({"success": True, **order_service.order_file_status(order_number)})


@orders_bp.post("/<order_number>/documents")
@require_auth
def document_uploaded_route(order_number: str):
    """Body: file_type (invoice | delivery_order | signed_delivery_order), file_id, uploaded_at."""
    data = _json()
    result = order_service.handle_document_uploaded(
        user_id=g.current_user.id,
        order_number=order_number,
        file_type=data.get("file_type"),
        file_id=data.get("file_id"),
        uploaded_at=data.get("uploaded_at"),
    )
    return jsonify(result.to_dict())


@orders_bp.delete("/<order_number>/documents/<file_type>")
@require_auth
def document_removed_route(order_number: str, file_type: str):
    order = order_service.handle_document_removed(
        user_id=g.current_user.id,
        order_number=order_number,
        file_type=file_type,
    )
    return jsonify({"success": True, "order": order.to_dict()})


@orders_bp.post("/<order_number>/invoice")
@require_auth
def invoice_details_route(order_number: str):
    data = _json()
    result = order_service.record_invoice_details(
        user_id=g.current_user.id,
        order_number=order_number,
        invoice_number=data.get("invoice_number"),
        invoice_date=data.get("invoice_date"),
        remarks=data.get("remarks"),
        file_id=data.get("file_id"),
    )
    return jsonify(result.to_dict())


@orders_bp.post("/<order_number>/delivery/revert")
@require_auth
def revert_delivery_route(order_number: str):
    order = order_service.revert_delivery(user_id=g.current_user.id, order_number=order_number)
    return jsonify({"success": True, "order": order.to_dict()})


@orders_bp.post("/<order_number>/cancel")
@require_auth
def cancel_order_route(order_number: str):
    """Body: reason. Items go back to Active; the order is kept as Cancelled."""
    data = _json()
    result = order_service.cancel_order(
        user_id=g.current_user.id,
        order_number=order_number,
        reason=data.get("reason"),
    )
    return jsonify(result.to_dict())


@orders_bp.post("/<order_number>/rename")
@require_auth
def rename_order_route(order_number: str):
    data = _json()
    order = order_service.rename_order(
        user_id=g.current_user.id,
        old_number=order_number,
        new_number=data.get("new_order_number"),
    )
    return jsonify({"success": True, "order": order.to_dict()})


@orders_bp.delete("/<order_number>")
@require_auth
def delete_order_route(order_number: str):
    result = order_service.delete_order(user_id=g.current_user.id, order_number=order_number)
    return jsonify(result.to_dict())
