# Overview: Service-layer operations for order-item isolation; validation and diagnostics.

"""
OrderItem Isolation Guard

================================================================================
PURPOSE: Keep every OrderItem bound to exactly one Order
================================================================================

WHY THIS EXISTS:
- The same catalog Item appears in many orders, and QuickBooks issues line ids
  per document, so the same upstream line id can legitimately show up in more
  than one local order.
- The uniqueness constraint on order_items is scoped to (order_id,
  quickbooks_order_line_id). A global lookup by line id would silently pick
  another order's row: the cross-order contamination bug class.

TWO SIDES:
    PREVENTIVE  validate_belongs_to_order / require_belongs_to_order /
                validate_update_payload / ensure_line_reference_available
                (called before any write that receives an order context)
    DETECTIVE   detect_cross_order_contamination / validate_order_isolation
                (read-only scans, safe to run at any time)

RULES:
1. An OrderItem never changes order_id through an update path.
2. Within one order, a QuickBooks line id appears at most once.
3. Sharing a line id across orders is reported (advisory) but only the
   within-order duplicate makes an order invalid.
================================================================================
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Optional

from sqlalchemy import func

from ..errors import ConflictError, IsolationViolationError, NotFoundError
from ..extensions import db
from ..models import Order, OrderItem

logger = logging.getLogger(__name__)


# Payload keys that would rebind an item to a different order.
ORDER_REFERENCE_KEYS = ("order_id", "orderId")


@dataclass
class IsolationCheck:
    is_valid: bool
    reason: Optional[str] = None
    order_item: Optional[OrderItem] = None
    not_found: bool = False

    def raise_if_invalid(self) -> OrderItem:
        if self.is_valid:
            return self.order_item
        if self.not_found:
            raise NotFoundError(self.reason)
        raise IsolationViolationError(self.reason)


@dataclass
class OrderIsolationReport:
    order_id: int
    order_number: Optional[str]
    item_count: int
    issues: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.issues

    def to_dict(self) -> dict:
        return {
            "orderId": self.order_id,
            "orderNumber": self.order_number,
            "isValid": self.is_valid,
            "issues": list(self.issues),
            "warnings": list(self.warnings),
            "itemCount": self.item_count,
        }


def validate_belongs_to_order(order_item_id: int, expected_order_id: int) -> IsolationCheck:
    order_item = db.session.get(OrderItem, order_item_id)
    if order_item is None:
        return IsolationCheck(
            is_valid=False,
            reason=f"OrderItem {order_item_id} not found",
            not_found=True,
        )

    if order_item.order_id != expected_order_id:
        logger.warning(
            "Isolation violation: order item %s belongs to order %s, caller supplied order %s",
            order_item_id, order_item.order_id, expected_order_id,
        )
        return IsolationCheck(
            is_valid=False,
            reason=(
                f"OrderItem {order_item_id} belongs to order {order_item.order_id}, "
                f"not {expected_order_id}"
            ),
            order_item=order_item,
        )

    return IsolationCheck(is_valid=True, order_item=order_item)


def require_belongs_to_order(order_item_id: int, expected_order_id: int) -> OrderItem:
    """
    Raising variant of validate_belongs_to_order.

    Raises:
        NotFoundError: order item does not exist
        IsolationViolationError: order item belongs to another order
    """
    return validate_belongs_to_order(order_item_id, expected_order_id).raise_if_invalid()


def validate_update_payload(
    order_item_id: int,
    payload: dict,
    expected_order_id: Optional[int] = None,
) -> IsolationCheck:
    """
    Validate that an update payload keeps the item inside its order.

    WHY: Moving an item between orders must be delete + recreate, so any payload
    that carries an order reference different from the current one is rejected.
    """
    if expected_order_id is not None:
        check = validate_belongs_to_order(order_item_id, expected_order_id)
        if not check.is_valid:
            return check
        order_item = check.order_item
    else:
        order_item = db.session.get(OrderItem, order_item_id)
        if order_item is None:
            return IsolationCheck(
                is_valid=False,
                reason=f"OrderItem {order_item_id} not found",
                not_found=True,
            )

    for key in ORDER_REFERENCE_KEYS:
        if key not in (payload or {}):
            continue
        requested = payload[key]
        try:
            requested_id = int(requested)
        except (TypeError, ValueError):
            requested_id = None
        if requested_id != order_item.order_id:
            return IsolationCheck(
                is_valid=False,
                reason=f"Cannot change OrderItem orderId from {order_item.order_id} to {requested}",
                order_item=order_item,
            )

    return IsolationCheck(is_valid=True, order_item=order_item)


def ensure_line_reference_available(
    order_id: int,
    line_reference: Optional[str],
    *,
    exclude_order_item_id: Optional[int] = None,
) -> None:
    """
    Scoped uniqueness check for an upstream line id, within one order only.

    Raises:
        ConflictError: another item of the same order already carries the reference
    """
    if not line_reference:
        return

    query = db.session.query(OrderItem.id).filter(
        OrderItem.order_id == order_id,
        OrderItem.quickbooks_order_line_id == line_reference,
    )
    if exclude_order_item_id is not None:
        query = query.filter(OrderItem.id != exclude_order_item_id)

    existing = query.first()
    if existing is not None:
        raise ConflictError(
            f"Order {order_id} already has an item with QuickBooks line id {line_reference} "
            f"(OrderItem {existing.id})"
        )


def find_order_item_by_line_reference(order_id: int, line_reference: str) -> Optional[OrderItem]:
    """Resolve an upstream line id inside one order. Never looks across orders."""
    return (
        db.session.query(OrderItem)
        .filter(
            OrderItem.order_id == order_id,
            OrderItem.quickbooks_order_line_id == line_reference,
        )
        .first()
    )


def _shared_line_references(line_references: Optional[list[str]] = None) -> dict[str, list[tuple[int, Optional[str]]]]:
    """
    Group upstream line ids that appear in more than one order.

    Returns {line_id: [(order_id, order_number), ...]} ordered by order id.
    """
    shared = (
        db.session.query(OrderItem.quickbooks_order_line_id)
        .filter(OrderItem.quickbooks_order_line_id.isnot(None))
        .group_by(OrderItem.quickbooks_order_line_id)
        .having(func.count(func.distinct(OrderItem.order_id)) > 1)
    )
    if line_references is not None:
        shared = shared.filter(OrderItem.quickbooks_order_line_id.in_(line_references))
    shared_refs = [row[0] for row in shared.all()]
    if not shared_refs:
        return {}

    rows = (
        db.session.query(
            OrderItem.quickbooks_order_line_id,
            Order.id,
            Order.sales_order_number,
        )
        .join(Order, Order.id == OrderItem.order_id)
        .filter(OrderItem.quickbooks_order_line_id.in_(shared_refs))
        .distinct()
        .order_by(OrderItem.quickbooks_order_line_id, Order.id)
        .all()
    )

    grouped: dict[str, list[tuple[int, Optional[str]]]] = {}
    for line_ref, order_id, order_number in rows:
        grouped.setdefault(line_ref, []).append((order_id, order_number))
    return grouped


def detect_cross_order_contamination() -> list[dict]:
    """
    Diagnostic scan: upstream line ids present in more than one order.

    Read-only and idempotent. This is advisory: sharing alone is not a
    violation, but it is the first place to look when an item "jumps" orders.
    """
    report = []
    for line_ref, orders in sorted(_shared_line_references().items()):
        report.append({
            "quickbooksOrderLineId": line_ref,
            "orderCount": len(orders),
            "orderIds": [order_id for order_id, _ in orders],
            "orderNumbers": [number or f"#{order_id}" for order_id, number in orders],
        })

    if report:
        logger.warning("Cross-order line reference sharing detected for %d line id(s)", len(report))
    return report


def validate_order_isolation(order_id: int) -> OrderIsolationReport:
    """
    Per-order integrity check.

    - issues (blocking): the same upstream line id appears twice in this order
    - warnings (advisory): a line id of this order also appears in other orders
    """
    order = db.session.get(Order, order_id)
    if order is None:
        raise NotFoundError(f"Order {order_id} not found")

    items = db.session.query(OrderItem).filter(OrderItem.order_id == order_id).all()
    report = OrderIsolationReport(
        order_id=order.id,
        order_number=order.sales_order_number,
        item_count=len(items),
    )

    by_reference: dict[str, list[int]] = {}
    for item in items:
        if item.quickbooks_order_line_id:
            by_reference.setdefault(item.quickbooks_order_line_id, []).append(item.id)

    for line_ref, item_ids in sorted(by_reference.items()):
        if len(item_ids) > 1:
            report.issues.append(
                f"Duplicate QuickBooks line id {line_ref} within order: "
                f"OrderItems {', '.join(str(i) for i in item_ids)}"
            )

    if by_reference:
        shared = _shared_line_references(list(by_reference.keys()))
        for line_ref, orders in sorted(shared.items()):
            others = [number or f"#{oid}" for oid, number in orders if oid != order.id]
            report.warnings.append(
                f"QuickBooks line id {line_ref} also appears in order(s): {', '.join(others)}"
            )

    return report
