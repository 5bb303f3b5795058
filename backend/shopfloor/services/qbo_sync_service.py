# Overview: Service-layer operations for QuickBooks entity sync; maps upstream entities onto local records.

"""
QuickBooks Sync Engine

================================================================================
PURPOSE: Upsert QuickBooks Customers, Items, Invoices and Estimates locally
================================================================================

KEYS:
    Customer  -> customers.quickbooks_customer_id
    Item      -> items.quickbooks_item_id
    Invoice   -> orders.quickbooks_order_id (+ order_items per line)
    Estimate  -> estimates.quickbooks_estimate_id (+ estimate_lines per line)

RULES:
1. Upsert only: an existing external id is updated, never duplicated.
2. Invoice lines are resolved inside the order being synced
   (order_id, quickbooks_order_line_id), never by line id alone.
3. Missing optional fields map to NULL; they never fail an entity.
4. One bad line never aborts its siblings. Each line runs in its own
   savepoint and gets a LineResult.
5. Lines that disappear upstream are left in place locally; removing them is
   an explicit office action while the order is still PENDING.

TWO PHASES PER DOCUMENT:
    fetch  - every upstream read the document needs (customer, unknown items),
             with per-item failures captured instead of raised
    write  - DB writes only, no network, so a token refresh commit can never
             land in the middle of a line savepoint
================================================================================
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, Optional

from sqlalchemy.exc import SQLAlchemyError

from ..errors import NotFoundError, PreconditionError, ServiceError, ValidationError
from ..extensions import db
from ..models import Customer, Estimate, EstimateLine, Item, Order, OrderItem
from .audit_service import append_audit_log
from .isolation_service import ensure_line_reference_available, find_order_item_by_line_reference
from .qbo_client import QuickBooksClient, get_client
from .qbo_payloads import QboCustomer, QboEstimate, QboInvoice, QboItem, QboLine, parse_entity
from .sync_log import get_sync_log

logger = logging.getLogger(__name__)


LINE_CREATED = "created"
LINE_UPDATED = "updated"
LINE_SKIPPED = "skipped"
LINE_FAILED = "failed"


@dataclass
class LineResult:
    line_id: Optional[str]
    status: str
    order_item_id: Optional[int] = None
    error: Optional[str] = None
    kind: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "lineId": self.line_id,
            "status": self.status,
            "orderItemId": self.order_item_id,
            "error": self.error,
            "kind": self.kind,
        }


@dataclass
class DocumentSyncResult:
    entity: str
    external_id: str
    local_id: Optional[int] = None
    created: bool = False
    lines: list[LineResult] = field(default_factory=list)

    @property
    def failed_lines(self) -> list[LineResult]:
        return [line for line in self.lines if line.status == LINE_FAILED]

    @property
    def success(self) -> bool:
        return not self.failed_lines

    def to_dict(self) -> dict:
        counts = {status: 0 for status in (LINE_CREATED, LINE_UPDATED, LINE_SKIPPED, LINE_FAILED)}
        for line in self.lines:
            counts[line.status] += 1
        return {
            "entity": self.entity,
            "externalId": self.external_id,
            "localId": self.local_id,
            "created": self.created,
            "success": self.success,
            "lineCounts": counts,
            "lines": [line.to_dict() for line in self.lines],
        }


# ----------------------------------------------------------------------
# Customers / Items
# ----------------------------------------------------------------------

def upsert_customer(customer: QboCustomer) -> tuple[Customer, bool]:
    """Create or update the local customer for a QuickBooks customer. Flush only."""
    local = db.session.query(Customer).filter_by(quickbooks_customer_id=customer.id).first()
    created = local is None
    if created:
        local = Customer(quickbooks_customer_id=customer.id)
        db.session.add(local)

    local.name = customer.display_name
    local.email = customer.email
    local.contact_number = customer.phone
    local.customer_type = customer.customer_type
    if local.status != "ARCHIVED":
        local.status = "ACTIVE" if customer.active else "INACTIVE"

    ship = customer.ship_address
    local.shipping_address_line1 = ship.line1
    local.shipping_address_line2 = ship.line2
    local.shipping_city = ship.city
    local.shipping_state = ship.state
    local.shipping_zip_code = ship.postal_code
    local.shipping_country = ship.country

    bill = customer.bill_address
    local.billing_address_line1 = bill.line1
    local.billing_address_line2 = bill.line2
    local.billing_city = bill.city
    local.billing_state = bill.state
    local.billing_zip_code = bill.postal_code
    local.billing_country = bill.country

    db.session.flush()
    return local, created


def upsert_item(item: QboItem) -> tuple[Item, bool]:
    local = db.session.query(Item).filter_by(quickbooks_item_id=item.id).first()
    created = local is None
    if created:
        local = Item(quickbooks_item_id=item.id)
        db.session.add(local)

    local.name = item.name
    local.description = item.description
    local.category = item.type
    local.retail_price_cents = item.unit_price_cents
    local.cost_cents = item.purchase_cost_cents
    local.status = "ACTIVE" if item.active else "INACTIVE"

    db.session.flush()
    return local, created


# ----------------------------------------------------------------------
# Fetch phase helpers
# ----------------------------------------------------------------------

@dataclass
class _Prefetched:
    customer: Optional[QboCustomer] = None
    items: dict[str, QboItem] = field(default_factory=dict)
    item_errors: dict[str, ServiceError] = field(default_factory=dict)


def _prefetch(customer_ref: Optional[str], lines: tuple[QboLine, ...], client: Optional[QuickBooksClient]) -> _Prefetched:
    """
    Collect every upstream record the write phase will need.

    Customer failures propagate (the document cannot be stored without one).
    Item failures are captured per item ref and reported on the affected lines.
    """
    fetched = _Prefetched()

    if not customer_ref:
        raise ValidationError("Document has no CustomerRef")
    if db.session.query(Customer.id).filter_by(quickbooks_customer_id=customer_ref).first() is None:
        if client is None:
            raise NotFoundError(f"QuickBooks customer {customer_ref} is not synced locally")
        fetched.customer = QboCustomer.from_payload(client.get_entity("Customer", customer_ref))

    missing_refs = []
    for line in lines:
        if not line.is_sales_item or not line.item_ref or line.item_ref in missing_refs:
            continue
        if db.session.query(Item.id).filter_by(quickbooks_item_id=line.item_ref).first() is None:
            missing_refs.append(line.item_ref)

    for item_ref in missing_refs:
        if client is None:
            fetched.item_errors[item_ref] = NotFoundError(f"QuickBooks item {item_ref} is not synced locally")
            continue
        try:
            fetched.items[item_ref] = QboItem.from_payload(client.get_entity("Item", item_ref))
        except ServiceError as exc:
            logger.warning("Could not fetch QuickBooks item %s: %s", item_ref, exc.message)
            fetched.item_errors[item_ref] = exc

    return fetched


def _resolve_customer(customer_ref: str, fetched: _Prefetched) -> Customer:
    if fetched.customer is not None:
        customer, _ = upsert_customer(fetched.customer)
        return customer
    return db.session.query(Customer).filter_by(quickbooks_customer_id=customer_ref).one()


def _resolve_item(line: QboLine, fetched: _Prefetched) -> Item:
    if not line.item_ref:
        raise ValidationError(f"Line {line.id} has no ItemRef")
    if line.item_ref in fetched.item_errors:
        raise fetched.item_errors[line.item_ref]
    if line.item_ref in fetched.items:
        item, _ = upsert_item(fetched.items[line.item_ref])
        return item
    item = db.session.query(Item).filter_by(quickbooks_item_id=line.item_ref).first()
    if item is None:
        raise NotFoundError(f"QuickBooks item {line.item_ref} is not synced locally")
    return item


def _unit_price_cents(line: QboLine) -> int:
    if line.unit_price_cents is not None:
        return line.unit_price_cents
    if line.amount_cents is not None and line.quantity:
        return line.amount_cents // line.quantity
    return 0


def _run_lines(lines: tuple[QboLine, ...], write_line: Callable[[QboLine], LineResult]) -> list[LineResult]:
    """Apply write_line to each sales line in its own savepoint."""
    results = []
    for line in lines:
        if not line.is_sales_item:
            results.append(LineResult(line_id=line.id, status=LINE_SKIPPED, error=f"{line.detail_type} line"))
            continue
        if not line.id:
            results.append(LineResult(line_id=None, status=LINE_SKIPPED, error="Line has no Id"))
            continue
        try:
            with db.session.begin_nested():
                results.append(write_line(line))
        except ServiceError as exc:
            results.append(LineResult(line_id=line.id, status=LINE_FAILED, error=exc.message, kind=exc.kind))
        except SQLAlchemyError as exc:
            logger.warning("Database error syncing line %s: %s", line.id, exc)
            results.append(LineResult(line_id=line.id, status=LINE_FAILED, error="Database error", kind="DATABASE_ERROR"))
    return results


# ----------------------------------------------------------------------
# Invoices -> Orders
# ----------------------------------------------------------------------

def sync_invoice(invoice: QboInvoice, *, client: Optional[QuickBooksClient] = None) -> DocumentSyncResult:
    """
    Upsert an Order and its OrderItems from a QuickBooks invoice.

    Commits once at the end. Per-line failures are reported, not raised;
    document-level problems (no customer) raise.
    """
    fetched = _prefetch(invoice.customer_ref, invoice.lines, client)

    try:
        customer = _resolve_customer(invoice.customer_ref, fetched)

        order = db.session.query(Order).filter_by(quickbooks_order_id=invoice.id).first()
        created = order is None
        if created:
            order = Order(quickbooks_order_id=invoice.id, customer_id=customer.id, status="PENDING")
            db.session.add(order)
        elif order.customer_id != customer.id:
            logger.info("Invoice %s moved to customer %s", invoice.id, customer.id)
            order.customer_id = customer.id

        order.sales_order_number = invoice.doc_number
        order.transaction_date = invoice.txn_date
        order.due_date = invoice.due_date
        order.total_amount_cents = invoice.total_amount_cents
        order.balance_cents = invoice.balance_cents
        order.total_tax_cents = invoice.total_tax_cents
        order.contact_email = invoice.bill_email or customer.email

        if invoice.linked_estimate_id:
            estimate = db.session.query(Estimate).filter_by(quickbooks_estimate_id=invoice.linked_estimate_id).first()
            if estimate is not None:
                order.estimate_id = estimate.id

        db.session.flush()

        def write_line(line: QboLine) -> LineResult:
            item = _resolve_item(line, fetched)
            existing = find_order_item_by_line_reference(order.id, line.id)
            unit_price = _unit_price_cents(line)

            if existing is not None:
                existing.line_description = line.description
                existing.unit_price_cents = unit_price
                if order.status == "PENDING":
                    existing.item_id = item.id
                    existing.quantity = line.quantity
                    existing.tax_code = line.tax_code
                db.session.flush()
                return LineResult(line_id=line.id, status=LINE_UPDATED, order_item_id=existing.id)

            if order.status != "PENDING":
                raise PreconditionError(
                    f"Order {order.display_number} is {order.status}; new line {line.id} was not added"
                )
            ensure_line_reference_available(order.id, line.id)
            order_item = OrderItem(
                order_id=order.id,
                item_id=item.id,
                quickbooks_order_line_id=line.id,
                line_description=line.description,
                quantity=line.quantity,
                unit_price_cents=unit_price,
                tax_code=line.tax_code,
                status="NOT_STARTED_PRODUCTION",
            )
            db.session.add(order_item)
            db.session.flush()
            return LineResult(line_id=line.id, status=LINE_CREATED, order_item_id=order_item.id)

        result = DocumentSyncResult(entity="Invoice", external_id=invoice.id, local_id=order.id, created=created)
        result.lines = _run_lines(invoice.lines, write_line)

        append_audit_log(
            action="qbo.sync_invoice",
            entity_name="Order",
            entity_id=order.id,
            new_value={
                "quickbooksOrderId": invoice.id,
                "created": created,
                "failedLines": [line.line_id for line in result.failed_lines],
            },
        )
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    _record_result(result)
    return result


# ----------------------------------------------------------------------
# Estimates
# ----------------------------------------------------------------------

def sync_estimate(estimate: QboEstimate, *, client: Optional[QuickBooksClient] = None) -> DocumentSyncResult:
    fetched = _prefetch(estimate.customer_ref, estimate.lines, client)

    try:
        customer = _resolve_customer(estimate.customer_ref, fetched)

        local = db.session.query(Estimate).filter_by(quickbooks_estimate_id=estimate.id).first()
        created = local is None
        if created:
            local = Estimate(quickbooks_estimate_id=estimate.id, customer_id=customer.id)
            db.session.add(local)

        local.customer_id = customer.id
        local.estimate_number = estimate.doc_number
        local.transaction_date = estimate.txn_date
        local.expiration_date = estimate.expiration_date
        local.total_amount_cents = estimate.total_amount_cents
        local.status = estimate.status
        db.session.flush()

        def write_line(line: QboLine) -> LineResult:
            item = _resolve_item(line, fetched)
            existing = (
                db.session.query(EstimateLine)
                .filter_by(estimate_id=local.id, quickbooks_line_id=line.id)
                .first()
            )
            status = LINE_UPDATED
            if existing is None:
                existing = EstimateLine(estimate_id=local.id, quickbooks_line_id=line.id)
                db.session.add(existing)
                status = LINE_CREATED
            existing.item_id = item.id
            existing.description = line.description
            existing.quantity = line.quantity
            existing.unit_price_cents = _unit_price_cents(line)
            existing.line_amount_cents = line.amount_cents
            db.session.flush()
            return LineResult(line_id=line.id, status=status)

        result = DocumentSyncResult(entity="Estimate", external_id=estimate.id, local_id=local.id, created=created)
        result.lines = _run_lines(estimate.lines, write_line)

        append_audit_log(
            action="qbo.sync_estimate",
            entity_name="Estimate",
            entity_id=local.id,
            new_value={"quickbooksEstimateId": estimate.id, "created": created},
        )
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    _record_result(result)
    return result


# ----------------------------------------------------------------------
# Dispatch
# ----------------------------------------------------------------------

def sync_entity(name: str, entity_id: str, *, client: Optional[QuickBooksClient] = None) -> dict:
    """Fetch one entity from QuickBooks and upsert it."""
    client = client or get_client()
    entity = parse_entity(name, client.get_entity(name, entity_id))
    return apply_entity(entity, client=client)


def apply_entity(entity, *, client: Optional[QuickBooksClient] = None) -> dict:
    """Upsert an already-fetched entity. Returns a JSON-ready summary."""
    if isinstance(entity, QboInvoice):
        return sync_invoice(entity, client=client).to_dict()
    if isinstance(entity, QboEstimate):
        return sync_estimate(entity, client=client).to_dict()

    try:
        if isinstance(entity, QboCustomer):
            local, created = upsert_customer(entity)
            name = "Customer"
        elif isinstance(entity, QboItem):
            local, created = upsert_item(entity)
            name = "Item"
        else:
            raise ValidationError(f"Unsupported QuickBooks entity {type(entity).__name__}")
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    get_sync_log().info("sync", f"{name} {entity.id} {'created' if created else 'updated'}", localId=local.id)
    return {"entity": name, "externalId": entity.id, "localId": local.id, "created": created, "success": True}


def deactivate_entity(name: str, entity_id: str) -> dict:
    """Upstream delete: keep the local row for history, mark it INACTIVE."""
    model_by_name = {
        "Customer": (Customer, Customer.quickbooks_customer_id),
        "Item": (Item, Item.quickbooks_item_id),
    }
    if name not in model_by_name:
        return {"entity": name, "externalId": entity_id, "success": True, "skipped": True,
                "reason": f"Deletes of {name} are not mirrored"}

    model, column = model_by_name[name]
    local = db.session.query(model).filter(column == entity_id).first()
    if local is None:
        return {"entity": name, "externalId": entity_id, "success": True, "skipped": True,
                "reason": "Not synced locally"}
    local.status = "INACTIVE"
    db.session.commit()
    get_sync_log().info("sync", f"{name} {entity_id} deactivated", localId=local.id)
    return {"entity": name, "externalId": entity_id, "localId": local.id, "success": True, "deactivated": True}


def _sync_all(entity_name: str, parse, upsert, client: Optional[QuickBooksClient]) -> dict:
    client = client or get_client()
    summary = {"entity": entity_name, "created": 0, "updated": 0, "failed": 0, "errors": []}
    for raw in client.query_all(entity_name):
        try:
            with db.session.begin_nested():
                _, created = upsert(parse(raw))
            summary["created" if created else "updated"] += 1
        except (ServiceError, SQLAlchemyError) as exc:
            summary["failed"] += 1
            summary["errors"].append({
                "externalId": raw.get("Id") if isinstance(raw, dict) else None,
                "error": getattr(exc, "message", str(exc)),
            })
    db.session.commit()
    get_sync_log().info(
        "sync",
        f"Bulk {entity_name} sync finished",
        created=summary["created"], updated=summary["updated"], failed=summary["failed"],
    )
    return summary


def sync_all_customers(*, client: Optional[QuickBooksClient] = None) -> dict:
    return _sync_all("Customer", QboCustomer.from_payload, upsert_customer, client)


def sync_all_items(*, client: Optional[QuickBooksClient] = None) -> dict:
    return _sync_all("Item", QboItem.from_payload, upsert_item, client)


def _record_result(result: DocumentSyncResult) -> None:
    log = get_sync_log()
    failed = result.failed_lines
    if failed:
        logger.warning(
            "%s %s synced with %d failed line(s)", result.entity, result.external_id, len(failed)
        )
        log.warning(
            "sync",
            f"{result.entity} {result.external_id} synced with failed lines",
            localId=result.local_id,
            failedLines=[line.line_id for line in failed],
        )
    else:
        logger.info("%s %s synced (%d line(s))", result.entity, result.external_id, len(result.lines))
        log.info("sync", f"{result.entity} {result.external_id} synced", localId=result.local_id)
