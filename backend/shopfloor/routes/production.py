# Overview: Flask API routes for production tracking; parses input and returns JSON responses.

"""
Production Routes

SECURITY:
- Station scans (start/complete work) require Warehouse Staff, Admin or Super Admin.
- Manual status changes require Admin; override=true is logged as an override.
"""

from flask import Blueprint, request, jsonify, g

from ..decorators import require_auth, require_role, ADMIN, WAREHOUSE_STAFF
from ..errors import ServiceError, error_response
from ..services import production_service
from ..validation import require_int_field


production_bp = Blueprint("production", __name__, url_prefix="/api/production")


@production_bp.post("/start-work")
@require_auth
@require_role(WAREHOUSE_STAFF, ADMIN)
def start_work_route():
    data = request.get_json(silent=True) or {}
    try:
        order_item_id = require_int_field(data, "orderItemId")
        station_id = require_int_field(data, "stationId")
        user_id = require_int_field(data, "userId", required=False) or g.current_user.id

        log = production_service.start_work(
            order_item_id=order_item_id,
            station_id=station_id,
            user_id=user_id,
        )
        return jsonify({
            "orderItem": log.order_item.to_dict(),
            "processingLog": log.to_dict(),
        }), 201
    except ServiceError as e:
        return error_response(e)


@production_bp.post("/complete-work")
@require_auth
@require_role(WAREHOUSE_STAFF, ADMIN)
def complete_work_route():
    data = request.get_json(silent=True) or {}
    try:
        order_item_id = require_int_field(data, "orderItemId")
        completion = production_service.complete_work(
            order_item_id=order_item_id,
            user_id=g.current_user.id,
            notes=data.get("notes"),
        )
        return jsonify(completion.to_dict())
    except ServiceError as e:
        return error_response(e)


@production_bp.patch("/order-items/<int:order_item_id>/status")
@require_auth
@require_role(ADMIN)
def set_status_route(order_item_id: int):
    data = request.get_json(silent=True) or {}
    try:
        order_id = require_int_field(data, "orderId")
        status = data.get("status")
        if not status:
            return jsonify({"error": "status is required", "kind": "VALIDATION_ERROR"}), 400
        override = data.get("override", False)
        if not isinstance(override, bool):
            return jsonify({"error": "override must be true or false", "kind": "VALIDATION_ERROR"}), 400

        order_item = production_service.set_status(
            order_item_id=order_item_id,
            new_status=status,
            order_id=order_id,
            actor_id=g.current_user.id,
            override=override,
        )
        return jsonify({"orderItem": order_item.to_dict()})
    except ServiceError as e:
        return error_response(e)


@production_bp.get("/active-work")
@require_auth
def active_work_route():
    user_id = request.args.get("userId", type=int) or g.current_user.id
    log = production_service.get_active_work(user_id)
    return jsonify({"processingLog": log.to_dict() if log else None})
