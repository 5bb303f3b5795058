# Overview: Service-layer operations for orders and order items; encapsulates business logic and database work.

"""
Order Workflow Service

WHY: Order items are edited by office staff while an order is PENDING, then
frozen once the order is approved. Approval is also what feeds the label print
queue, so it lives here next to the editing rules it closes off.

RULES:
1. Items are added/removed only while the order is PENDING.
2. An item never moves between orders (see isolation_service).
3. A QuickBooks line id is unique within one order.
4. approve_order is idempotent: re-approving an APPROVED order only re-runs the
   (idempotent) print-queue population.
"""

from __future__ import annotations

import logging
from typing import Optional

from ..errors import NotFoundError, PreconditionError, ValidationError
from ..extensions import db
from ..models import Customer, Item, Order, OrderItem
from ..models.orders import ORDER_STATUSES
from ..time_utils import utcnow
from ..validation import ModelValidationPolicy, enforce_rules_order_item, validate_payload
from .audit_service import append_audit_log
from .isolation_service import ensure_line_reference_available, require_belongs_to_order, validate_update_payload
from .print_queue_service import enqueue_many

logger = logging.getLogger(__name__)


EDITABLE_ORDER_STATUSES = {"PENDING"}
APPROVABLE_ORDER_STATUSES = {"PENDING", "APPROVED"}

ORDER_ITEM_ALIASES = {
    "itemId": "item_id",
    "quantity": "quantity",
    "pricePerItem": "unit_price_cents",
    "lineDescription": "line_description",
    "taxCode": "tax_code",
    "quickbooksOrderLineId": "quickbooks_order_line_id",
    "isProduct": "is_production",
    "isVerified": "is_verified",
    "notes": "notes",
}

ORDER_ITEM_CREATE_POLICY = ModelValidationPolicy(
    writable_fields={
        "item_id", "quantity", "unit_price_cents", "line_description", "tax_code",
        "quickbooks_order_line_id", "is_production", "is_verified", "notes",
    },
    required_on_create={"item_id"},
    aliases=ORDER_ITEM_ALIASES,
)

# item_id and quickbooks_order_line_id are fixed once the line exists.
ORDER_ITEM_UPDATE_POLICY = ModelValidationPolicy(
    writable_fields={
        "quantity", "unit_price_cents", "line_description", "tax_code",
        "is_production", "is_verified", "notes",
    },
    aliases=ORDER_ITEM_ALIASES,
)

ORDER_CREATE_POLICY = ModelValidationPolicy(
    writable_fields={
        "customer_id", "sales_order_number", "purchase_order_number",
        "transaction_date", "due_date", "contact_email", "notes",
    },
    required_on_create={"customer_id"},
    aliases={
        "customerId": "customer_id",
        "salesOrderNumber": "sales_order_number",
        "purchaseOrderNumber": "purchase_order_number",
        "transactionDate": "transaction_date",
        "dueDate": "due_date",
        "contactEmail": "contact_email",
        "notes": "notes",
    },
)


def get_order(order_id: int) -> Order:
    order = db.session.get(Order, order_id)
    if order is None:
        raise NotFoundError(f"Order {order_id} not found")
    return order


def _require_editable(order: Order, action: str) -> None:
    if order.status not in EDITABLE_ORDER_STATUSES:
        raise PreconditionError(
            f"Cannot {action} items on order {order.display_number}: order is {order.status}",
            suggestions=["Only PENDING orders can be edited"],
        )


def create_order(*, payload: dict, actor_id: Optional[int] = None) -> Order:
    patch = validate_payload(model=Order, payload=payload, policy=ORDER_CREATE_POLICY, partial=False)
    if db.session.get(Customer, patch["customer_id"]) is None:
        raise NotFoundError(f"Customer {patch['customer_id']} not found")

    order = Order(status="PENDING", **patch)
    db.session.add(order)
    db.session.flush()

    append_audit_log(
        action="order.create",
        entity_name="Order",
        entity_id=order.id,
        user_id=actor_id,
        new_value={"status": order.status, "customerId": order.customer_id},
    )
    db.session.commit()
    return order


def add_order_item(*, order_id: int, payload: dict, actor_id: Optional[int] = None) -> OrderItem:
    order = get_order(order_id)
    _require_editable(order, "add")

    patch = validate_payload(model=OrderItem, payload=payload, policy=ORDER_ITEM_CREATE_POLICY, partial=False)
    enforce_rules_order_item(patch)

    if db.session.get(Item, patch["item_id"]) is None:
        raise NotFoundError(f"Item {patch['item_id']} not found")

    ensure_line_reference_available(order.id, patch.get("quickbooks_order_line_id"))

    order_item = OrderItem(order_id=order.id, status="NOT_STARTED_PRODUCTION", **patch)
    db.session.add(order_item)
    db.session.flush()

    append_audit_log(
        action="order_item.create",
        entity_name="OrderItem",
        entity_id=order_item.id,
        user_id=actor_id,
        new_value={"orderId": order.id, "itemId": order_item.item_id, "quantity": order_item.quantity},
    )
    db.session.commit()
    return order_item


def update_order_item(
    *,
    order_id: int,
    order_item_id: int,
    payload: dict,
    actor_id: Optional[int] = None,
) -> OrderItem:
    """
    Patch an order item inside its order.

    The isolation check runs before field validation so an attempt to move the
    item surfaces as an isolation violation, not as a generic field error.
    """
    check = validate_update_payload(order_item_id, payload or {}, expected_order_id=order_id)
    order_item = check.raise_if_invalid()

    clean = {k: v for k, v in (payload or {}).items() if k not in ("orderId", "order_id")}
    patch = validate_payload(model=OrderItem, payload=clean, policy=ORDER_ITEM_UPDATE_POLICY, partial=True)
    enforce_rules_order_item(patch)

    order = order_item.order
    commercial_fields = {"quantity", "unit_price_cents"}
    if commercial_fields & patch.keys():
        _require_editable(order, "reprice")

    old = {k: getattr(order_item, k) for k in patch}
    for k, v in patch.items():
        setattr(order_item, k, v)

    append_audit_log(
        action="order_item.update",
        entity_name="OrderItem",
        entity_id=order_item.id,
        user_id=actor_id,
        old_value=old,
        new_value=patch,
    )
    db.session.commit()
    return order_item


def verify_order_item(*, order_id: int, order_item_id: int, verified: bool = True, actor_id: Optional[int] = None) -> OrderItem:
    order_item = require_belongs_to_order(order_item_id, order_id)
    previous = order_item.is_verified
    order_item.is_verified = bool(verified)
    append_audit_log(
        action="order_item.verify",
        entity_name="OrderItem",
        entity_id=order_item.id,
        user_id=actor_id,
        old_value={"isVerified": previous},
        new_value={"isVerified": order_item.is_verified},
    )
    db.session.commit()
    return order_item


def remove_order_item(*, order_id: int, order_item_id: int, actor_id: Optional[int] = None) -> None:
    order_item = require_belongs_to_order(order_item_id, order_id)
    _require_editable(order_item.order, "remove")

    if order_item.processing_logs:
        raise PreconditionError(f"OrderItem {order_item_id} has production history and cannot be removed")

    snapshot = order_item.to_dict()
    if order_item.print_queue_entry is not None:
        db.session.delete(order_item.print_queue_entry)
    db.session.delete(order_item)

    append_audit_log(
        action="order_item.delete",
        entity_name="OrderItem",
        entity_id=order_item_id,
        user_id=actor_id,
        old_value=snapshot,
    )
    db.session.commit()
    logger.info("Order item %s removed from order %s", order_item_id, order_id)


def approve_order(*, order_id: int, actor_id: Optional[int] = None) -> dict:
    """
    Approve an order and push its verified production items to the print queue.

    Returns {"order": Order, "printQueue": [per-item outcome]}.
    """
    order = get_order(order_id)
    if order.status not in APPROVABLE_ORDER_STATUSES:
        raise PreconditionError(
            f"Order {order.display_number} cannot be approved from {order.status}"
        )

    try:
        previous = order.status
        if previous != "APPROVED":
            order.status = "APPROVED"
            order.approved_at = utcnow()
            append_audit_log(
                action="order.approve",
                entity_name="Order",
                entity_id=order.id,
                user_id=actor_id,
                old_value={"status": previous},
                new_value={"status": order.status},
            )

        candidates = [item.id for item in order.items if item.is_production and item.is_verified]
        outcomes = enqueue_many(order_item_ids=candidates, actor_id=actor_id)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    logger.info(
        "Order %s approved; %d item(s) considered for print queue",
        order.display_number, len(outcomes),
    )
    return {"order": order, "printQueue": outcomes}


def set_order_status(*, order_id: int, status: str, actor_id: Optional[int] = None) -> Order:
    """Administrative order status change (shipping, completion, cancellation)."""
    if status not in ORDER_STATUSES:
        raise ValidationError(f"Invalid order status '{status}'. Must be one of: {', '.join(ORDER_STATUSES)}")
    order = get_order(order_id)
    previous = order.status
    order.status = status
    if status == "SHIPPED" and order.shipped_at is None:
        order.shipped_at = utcnow()
    append_audit_log(
        action="order.set_status",
        entity_name="Order",
        entity_id=order.id,
        user_id=actor_id,
        old_value={"status": previous},
        new_value={"status": status},
    )
    db.session.commit()
    return order
