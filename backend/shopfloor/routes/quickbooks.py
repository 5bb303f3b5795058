# Overview: Flask API routes for QuickBooks connection, sync and webhooks.

"""
QuickBooks Routes

SECURITY:
- /webhook is called by Intuit and is authenticated by the intuit-signature
  HMAC only. The signature is checked before the body is parsed.
- Connect / disconnect require Super Admin.
- Sync triggers and diagnostics require Admin.
- Token status never includes raw token values.
"""

import json
import logging
import secrets

from flask import Blueprint, current_app, request, jsonify, g, session

from ..decorators import require_auth, require_role, ADMIN, SUPER_ADMIN
from ..errors import ServiceError, ValidationError, error_response
from ..services import qbo_sync_service, webhook_service
from ..services.qbo_token_service import get_token_manager
from ..services.sync_log import get_sync_log

logger = logging.getLogger(__name__)


quickbooks_bp = Blueprint("quickbooks", __name__, url_prefix="/api/qbo")

SYNCABLE_ENTITIES = ("Customer", "Item", "Invoice", "Estimate")


@quickbooks_bp.post("/webhook")
def webhook_route():
    raw_body = request.get_data(cache=True)
    signature = request.headers.get(webhook_service.SIGNATURE_HEADER)
    verifier = current_app.config.get("QBO_WEBHOOK_VERIFIER_TOKEN")

    if not webhook_service.verify_signature(raw_body, signature, verifier):
        logger.warning("Rejected QuickBooks webhook with %s signature", "missing" if not signature else "invalid")
        get_sync_log().warning("webhook", "Rejected webhook: signature verification failed")
        return jsonify({"error": "Invalid webhook signature", "kind": "AUTHENTICATION_ERROR"}), 401

    try:
        payload = json.loads(raw_body or b"{}")
        summary = webhook_service.process_notifications(payload)
    except ServiceError as e:
        return error_response(e)
    except ValueError:
        return jsonify({"error": "Webhook body is not valid JSON", "kind": "VALIDATION_ERROR"}), 400

    return jsonify({"accepted": True, **summary})


@quickbooks_bp.get("/status")
@require_auth
def status_route():
    return jsonify(get_token_manager().get_connection_status())


@quickbooks_bp.get("/connect")
@require_auth
@require_role(SUPER_ADMIN)
def connect_route():
    state = secrets.token_urlsafe(24)
    session["qbo_oauth_state"] = state
    try:
        return jsonify({"authorizationUrl": get_token_manager().authorization_url(state)})
    except ServiceError as e:
        return error_response(e)


@quickbooks_bp.get("/callback")
@require_auth
@require_role(SUPER_ADMIN)
def callback_route():
    expected_state = session.pop("qbo_oauth_state", None)
    if not expected_state or request.args.get("state") != expected_state:
        return jsonify({"error": "OAuth state mismatch", "kind": "VALIDATION_ERROR"}), 400

    try:
        token = get_token_manager().exchange_code(
            code=request.args.get("code", ""),
            realm_id=request.args.get("realmId", ""),
            user_id=g.current_user.id,
        )
        return jsonify({"connected": True, **token.to_status_dict()})
    except ServiceError as e:
        return error_response(e)


@quickbooks_bp.post("/disconnect")
@require_auth
@require_role(SUPER_ADMIN)
def disconnect_route():
    disconnected = get_token_manager().disconnect()
    return jsonify({"disconnected": disconnected})


@quickbooks_bp.post("/sync/single")
@require_auth
@require_role(ADMIN)
def sync_single_route():
    data = request.get_json(silent=True) or {}
    entity = data.get("entity")
    entity_id = data.get("id")
    try:
        if entity not in SYNCABLE_ENTITIES:
            raise ValidationError(f"entity must be one of: {', '.join(SYNCABLE_ENTITIES)}")
        if not entity_id:
            raise ValidationError("id is required")
        return jsonify(qbo_sync_service.sync_entity(entity, str(entity_id)))
    except ServiceError as e:
        return error_response(e)


@quickbooks_bp.post("/sync/customers")
@require_auth
@require_role(ADMIN)
def sync_customers_route():
    try:
        return jsonify(qbo_sync_service.sync_all_customers())
    except ServiceError as e:
        return error_response(e)


@quickbooks_bp.post("/sync/items")
@require_auth
@require_role(ADMIN)
def sync_items_route():
    try:
        return jsonify(qbo_sync_service.sync_all_items())
    except ServiceError as e:
        return error_response(e)


@quickbooks_bp.get("/logs")
@require_auth
@require_role(ADMIN)
def logs_route():
    limit = request.args.get("limit", default=100, type=int)
    events = get_sync_log().recent(
        limit,
        level=request.args.get("level"),
        source=request.args.get("source"),
    )
    return jsonify({"events": [event.to_dict() for event in events], "count": len(events)})
