# Overview: Flask API routes for order-item isolation diagnostics.

from flask import Blueprint, jsonify

from ..decorators import require_auth, require_role, ADMIN, OFFICE_EMPLOYEE
from ..errors import ServiceError, error_response
from ..services import isolation_service


isolation_bp = Blueprint("isolation", __name__, url_prefix="/api/isolation")


@isolation_bp.get("/orders/<int:order_id>")
@require_auth
@require_role(OFFICE_EMPLOYEE, ADMIN)
def order_isolation_route(order_id: int):
    try:
        report = isolation_service.validate_order_isolation(order_id)
        return jsonify(report.to_dict())
    except ServiceError as e:
        return error_response(e)


@isolation_bp.get("/contamination")
@require_auth
@require_role(ADMIN)
def contamination_route():
    report = isolation_service.detect_cross_order_contamination()
    return jsonify(report)
