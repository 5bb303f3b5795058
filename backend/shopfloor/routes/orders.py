# Overview: Flask API routes for orders and order items; parses input and returns JSON responses.

"""
Order Routes

SECURITY:
- Order entry and item edits require Office Employee or Admin.
- Approval requires Admin.
"""

from flask import Blueprint, request, jsonify, g

from ..decorators import require_auth, require_role, ADMIN, OFFICE_EMPLOYEE
from ..errors import ServiceError, error_response
from ..services import order_service


orders_bp = Blueprint("orders", __name__, url_prefix="/api/orders")


@orders_bp.post("")
@require_auth
@require_role(OFFICE_EMPLOYEE, ADMIN)
def create_order_route():
    data = request.get_json(silent=True) or {}
    try:
        order = order_service.create_order(payload=data, actor_id=g.current_user.id)
        return jsonify({"order": order.to_dict(include_items=True)}), 201
    except ServiceError as e:
        return error_response(e)


@orders_bp.get("/<int:order_id>")
@require_auth
def get_order_route(order_id: int):
    try:
        order = order_service.get_order(order_id)
        return jsonify({"order": order.to_dict(include_items=True)})
    except ServiceError as e:
        return error_response(e)


@orders_bp.post("/<int:order_id>/items")
@require_auth
@require_role(OFFICE_EMPLOYEE, ADMIN)
def add_order_item_route(order_id: int):
    data = request.get_json(silent=True) or {}
    try:
        order_item = order_service.add_order_item(order_id=order_id, payload=data, actor_id=g.current_user.id)
        return jsonify({"orderItem": order_item.to_dict()}), 201
    except ServiceError as e:
        return error_response(e)


@orders_bp.patch("/<int:order_id>/items/<int:order_item_id>")
@require_auth
@require_role(OFFICE_EMPLOYEE, ADMIN)
def update_order_item_route(order_id: int, order_item_id: int):
    data = request.get_json(silent=True) or {}
    try:
        order_item = order_service.update_order_item(
            order_id=order_id,
            order_item_id=order_item_id,
            payload=data,
            actor_id=g.current_user.id,
        )
        return jsonify({"orderItem": order_item.to_dict()})
    except ServiceError as e:
        return error_response(e)


@orders_bp.delete("/<int:order_id>/items/<int:order_item_id>")
@require_auth
@require_role(OFFICE_EMPLOYEE, ADMIN)
def remove_order_item_route(order_id: int, order_item_id: int):
    try:
        order_service.remove_order_item(order_id=order_id, order_item_id=order_item_id, actor_id=g.current_user.id)
        return jsonify({"deleted": True, "orderItemId": order_item_id})
    except ServiceError as e:
        return error_response(e)


@orders_bp.post("/<int:order_id>/items/<int:order_item_id>/verify")
@require_auth
@require_role(OFFICE_EMPLOYEE, ADMIN)
def verify_order_item_route(order_id: int, order_item_id: int):
    data = request.get_json(silent=True) or {}
    try:
        order_item = order_service.verify_order_item(
            order_id=order_id,
            order_item_id=order_item_id,
            verified=bool(data.get("verified", True)),
            actor_id=g.current_user.id,
        )
        return jsonify({"orderItem": order_item.to_dict()})
    except ServiceError as e:
        return error_response(e)


@orders_bp.post("/<int:order_id>/approve")
@require_auth
@require_role(ADMIN)
def approve_order_route(order_id: int):
    try:
        result = order_service.approve_order(order_id=order_id, actor_id=g.current_user.id)
        return jsonify({
            "order": result["order"].to_dict(include_items=True),
            "printQueue": result["printQueue"],
        })
    except ServiceError as e:
        return error_response(e)


@orders_bp.patch("/<int:order_id>/status")
@require_auth
@require_role(ADMIN)
def set_order_status_route(order_id: int):
    data = request.get_json(silent=True) or {}
    status = data.get("status")
    if not status:
        return jsonify({"error": "status is required", "kind": "VALIDATION_ERROR"}), 400
    try:
        order = order_service.set_order_status(order_id=order_id, status=status, actor_id=g.current_user.id)
        return jsonify({"order": order.to_dict()})
    except ServiceError as e:
        return error_response(e)
