# Overview: Flask API routes for the label print queue; parses input and returns JSON responses.

from flask import Blueprint, request, jsonify, g

from ..decorators import require_auth, require_role, ADMIN, OFFICE_EMPLOYEE
from ..errors import ServiceError, error_response
from ..services import print_queue_service
from ..validation import require_int_field, require_int_list


print_queue_bp = Blueprint("print_queue", __name__, url_prefix="/api/print-queue")


@print_queue_bp.post("/add-item")
@require_auth
@require_role(OFFICE_EMPLOYEE, ADMIN)
def add_item_route():
    data = request.get_json(silent=True) or {}
    try:
        order_item_id = require_int_field(data, "orderItemId")
        entry, outcome = print_queue_service.enqueue(order_item_id=order_item_id, actor_id=g.current_user.id)
        messages = {
            print_queue_service.OUTCOME_CREATED: "Item added to print queue",
            print_queue_service.OUTCOME_REQUEUED: "Item re-added to print queue",
            print_queue_service.OUTCOME_UNCHANGED: "Item already in print queue",
        }
        status = 201 if outcome == print_queue_service.OUTCOME_CREATED else 200
        return jsonify({"queueItem": entry.to_dict(), "outcome": outcome, "message": messages[outcome]}), status
    except ServiceError as e:
        return error_response(e)


@print_queue_bp.patch("/<int:queue_item_id>")
@require_auth
@require_role(OFFICE_EMPLOYEE, ADMIN)
def set_printed_route(queue_item_id: int):
    data = request.get_json(silent=True) or {}
    if not isinstance(data.get("isPrinted"), bool):
        return jsonify({"error": "isPrinted must be true or false", "kind": "VALIDATION_ERROR"}), 400
    try:
        entry = print_queue_service.set_printed(
            queue_item_id=queue_item_id,
            is_printed=data["isPrinted"],
            actor_id=g.current_user.id,
        )
        return jsonify({"queueItem": entry.to_dict()})
    except ServiceError as e:
        return error_response(e)


@print_queue_bp.post("/mark-printed")
@require_auth
@require_role(OFFICE_EMPLOYEE, ADMIN)
def mark_printed_route():
    data = request.get_json(silent=True) or {}
    try:
        result = print_queue_service.mark_printed(
            queue_item_ids=data.get("queueItemIds"),
            actor_id=g.current_user.id,
        )
        return jsonify(result.to_dict())
    except ServiceError as e:
        return error_response(e)


@print_queue_bp.get("/next-batch")
@require_auth
def next_batch_route():
    limit = request.args.get("limit", type=int)
    return jsonify(print_queue_service.get_next_batch(limit=limit))


@print_queue_bp.get("/status")
@require_auth
def queue_status_route():
    return jsonify(print_queue_service.get_queue_status())


@print_queue_bp.get("/validate-batch")
@require_auth
def validate_batch_route():
    count = request.args.get("count", type=int)
    if count is None:
        return jsonify({"error": "count is required", "kind": "VALIDATION_ERROR"}), 400
    return jsonify(print_queue_service.validate_batch_size(count).to_dict())


@print_queue_bp.delete("")
@require_auth
@require_role(OFFICE_EMPLOYEE, ADMIN)
def remove_route():
    data = request.get_json(silent=True) or {}
    try:
        ids = require_int_list(data, "queueItemIds")
        return jsonify(print_queue_service.remove_from_queue(queue_item_ids=ids, actor_id=g.current_user.id))
    except ServiceError as e:
        return error_response(e)
