# Overview: Typed views over QuickBooks Online entity and webhook payloads.

"""
QuickBooks Payload Types

WHY: QuickBooks omits any field that has no value (no email, no ship address,
no phone). Reading raw dicts all over the sync code made every missing key a
potential KeyError. Each entity gets a frozen dataclass whose optional fields
default to None, built once by from_payload() at the edge.

TAGGED UNION:
    parse_entity("Customer", data) -> QboCustomer
    parse_entity("Item", data)     -> QboItem
    parse_entity("Invoice", data)  -> QboInvoice
    parse_entity("Estimate", data) -> QboEstimate
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Optional, Union

from ..errors import ValidationError
from ..time_utils import parse_qbo_date


SALES_ITEM_LINE = "SalesItemLineDetail"


def _get(data: Optional[dict], *path: str) -> Any:
    """Walk nested dict keys; any missing level yields None."""
    current: Any = data
    for key in path:
        if not isinstance(current, dict):
            return None
        current = current.get(key)
    return current


def _text(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def to_cents(value: Any) -> Optional[int]:
    if value is None or value == "" or isinstance(value, bool):
        return None
    try:
        return int((Decimal(str(value)) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))
    except (InvalidOperation, ValueError):
        return None


def to_quantity(value: Any, default: int = 1) -> int:
    """QuickBooks quantities are decimals; order items count whole units."""
    if value is None or isinstance(value, bool):
        return default
    try:
        qty = Decimal(str(value)).to_integral_value(rounding=ROUND_HALF_UP)
    except (InvalidOperation, ValueError):
        return default
    return max(int(qty), 1)


@dataclass(frozen=True)
class QboAddress:
    line1: Optional[str] = None
    line2: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    postal_code: Optional[str] = None
    country: Optional[str] = None

    @classmethod
    def from_payload(cls, data: Optional[dict]) -> "QboAddress":
        if not isinstance(data, dict):
            return cls()
        return cls(
            line1=_text(data.get("Line1")),
            line2=_text(data.get("Line2")),
            city=_text(data.get("City")),
            state=_text(data.get("CountrySubDivisionCode")),
            postal_code=_text(data.get("PostalCode")),
            country=_text(data.get("Country")),
        )


@dataclass(frozen=True)
class QboCustomer:
    id: str
    display_name: str
    email: Optional[str] = None
    phone: Optional[str] = None
    ship_address: QboAddress = field(default_factory=QboAddress)
    bill_address: QboAddress = field(default_factory=QboAddress)
    active: bool = True
    customer_type_name: Optional[str] = None

    @property
    def customer_type(self) -> str:
        if self.customer_type_name and "wholesale" in self.customer_type_name.lower():
            return "WHOLESALER"
        return "RETAILER"

    @classmethod
    def from_payload(cls, data: dict) -> "QboCustomer":
        entity_id = _require_id(data, "Customer")
        name = (
            _text(data.get("DisplayName"))
            or _text(data.get("CompanyName"))
            or _text(" ".join(filter(None, [data.get("GivenName"), data.get("FamilyName")])))
            or f"QuickBooks Customer {entity_id}"
        )
        ship = data.get("ShipAddr") or data.get("BillAddr")
        return cls(
            id=entity_id,
            display_name=name,
            email=_text(_get(data, "PrimaryEmailAddr", "Address")),
            phone=_text(_get(data, "PrimaryPhone", "FreeFormNumber")),
            ship_address=QboAddress.from_payload(ship),
            bill_address=QboAddress.from_payload(data.get("BillAddr")),
            active=data.get("Active", True) is not False,
            customer_type_name=_text(_get(data, "CustomerTypeRef", "name")),
        )


@dataclass(frozen=True)
class QboItem:
    id: str
    name: str
    description: Optional[str] = None
    unit_price_cents: Optional[int] = None
    purchase_cost_cents: Optional[int] = None
    type: Optional[str] = None
    active: bool = True

    @classmethod
    def from_payload(cls, data: dict) -> "QboItem":
        entity_id = _require_id(data, "Item")
        return cls(
            id=entity_id,
            name=_text(data.get("Name")) or _text(data.get("FullyQualifiedName")) or f"QuickBooks Item {entity_id}",
            description=_text(data.get("Description")),
            unit_price_cents=to_cents(data.get("UnitPrice")),
            purchase_cost_cents=to_cents(data.get("PurchaseCost")),
            type=_text(data.get("Type")),
            active=data.get("Active", True) is not False,
        )


@dataclass(frozen=True)
class QboLine:
    id: Optional[str]
    detail_type: Optional[str]
    amount_cents: Optional[int] = None
    description: Optional[str] = None
    item_ref: Optional[str] = None
    item_name: Optional[str] = None
    quantity: int = 1
    unit_price_cents: Optional[int] = None
    tax_code: Optional[str] = None

    @property
    def is_sales_item(self) -> bool:
        return self.detail_type == SALES_ITEM_LINE

    @classmethod
    def from_payload(cls, data: dict) -> "QboLine":
        detail = data.get(SALES_ITEM_LINE) or {}
        return cls(
            id=_text(data.get("Id")),
            detail_type=_text(data.get("DetailType")),
            amount_cents=to_cents(data.get("Amount")),
            description=_text(data.get("Description")),
            item_ref=_text(_get(detail, "ItemRef", "value")),
            item_name=_text(_get(detail, "ItemRef", "name")),
            quantity=to_quantity(detail.get("Qty")),
            unit_price_cents=to_cents(detail.get("UnitPrice")),
            tax_code=_text(_get(detail, "TaxCodeRef", "value")),
        )


def _lines(data: dict) -> tuple[QboLine, ...]:
    raw = data.get("Line") or []
    return tuple(QboLine.from_payload(line) for line in raw if isinstance(line, dict))


@dataclass(frozen=True)
class QboInvoice:
    id: str
    customer_ref: Optional[str]
    doc_number: Optional[str] = None
    txn_date: Optional[datetime] = None
    due_date: Optional[datetime] = None
    total_amount_cents: Optional[int] = None
    balance_cents: Optional[int] = None
    total_tax_cents: Optional[int] = None
    bill_email: Optional[str] = None
    linked_estimate_id: Optional[str] = None
    lines: tuple[QboLine, ...] = ()

    @classmethod
    def from_payload(cls, data: dict) -> "QboInvoice":
        linked_estimate = None
        for linked in data.get("LinkedTxn") or []:
            if isinstance(linked, dict) and linked.get("TxnType") == "Estimate":
                linked_estimate = _text(linked.get("TxnId"))
                break
        return cls(
            id=_require_id(data, "Invoice"),
            customer_ref=_text(_get(data, "CustomerRef", "value")),
            doc_number=_text(data.get("DocNumber")),
            txn_date=parse_qbo_date(data.get("TxnDate")),
            due_date=parse_qbo_date(data.get("DueDate")),
            total_amount_cents=to_cents(data.get("TotalAmt")),
            balance_cents=to_cents(data.get("Balance")),
            total_tax_cents=to_cents(_get(data, "TxnTaxDetail", "TotalTax")),
            bill_email=_text(_get(data, "BillEmail", "Address")),
            linked_estimate_id=linked_estimate,
            lines=_lines(data),
        )


@dataclass(frozen=True)
class QboEstimate:
    id: str
    customer_ref: Optional[str]
    doc_number: Optional[str] = None
    txn_date: Optional[datetime] = None
    expiration_date: Optional[datetime] = None
    total_amount_cents: Optional[int] = None
    status: Optional[str] = None
    lines: tuple[QboLine, ...] = ()

    @classmethod
    def from_payload(cls, data: dict) -> "QboEstimate":
        return cls(
            id=_require_id(data, "Estimate"),
            customer_ref=_text(_get(data, "CustomerRef", "value")),
            doc_number=_text(data.get("DocNumber")),
            txn_date=parse_qbo_date(data.get("TxnDate")),
            expiration_date=parse_qbo_date(data.get("ExpirationDate")),
            total_amount_cents=to_cents(data.get("TotalAmt")),
            status=_text(data.get("TxnStatus")),
            lines=_lines(data),
        )


QboEntity = Union[QboCustomer, QboItem, QboInvoice, QboEstimate]

ENTITY_TYPES = {
    "Customer": QboCustomer,
    "Item": QboItem,
    "Invoice": QboInvoice,
    "Estimate": QboEstimate,
}


def _require_id(data: Any, name: str) -> str:
    if not isinstance(data, dict):
        raise ValidationError(f"{name} payload must be an object")
    entity_id = _text(data.get("Id"))
    if entity_id is None:
        raise ValidationError(f"{name} payload is missing Id")
    return entity_id


def parse_entity(name: str, data: dict) -> QboEntity:
    entity_type = ENTITY_TYPES.get(name)
    if entity_type is None:
        raise ValidationError(f"Unsupported QuickBooks entity '{name}'")
    return entity_type.from_payload(data)


@dataclass(frozen=True)
class WebhookEntityEvent:
    realm_id: Optional[str]
    name: str
    id: str
    operation: str
    last_updated: Optional[datetime] = None

    @property
    def is_supported(self) -> bool:
        return self.name in ENTITY_TYPES


def parse_webhook_notifications(payload: Any) -> list[WebhookEntityEvent]:
    """
    Flatten {eventNotifications: [{realmId, dataChangeEvent: {entities: [...]}}]}.

    Entities missing name/id/operation are dropped; a payload without the
    eventNotifications list is rejected.
    """
    if not isinstance(payload, dict) or not isinstance(payload.get("eventNotifications"), list):
        raise ValidationError("Webhook payload must contain an eventNotifications list")

    events = []
    for notification in payload["eventNotifications"]:
        if not isinstance(notification, dict):
            continue
        realm_id = _text(notification.get("realmId"))
        for entity in _get(notification, "dataChangeEvent", "entities") or []:
            if not isinstance(entity, dict):
                continue
            name = _text(entity.get("name"))
            entity_id = _text(entity.get("id"))
            operation = _text(entity.get("operation"))
            if not (name and entity_id and operation):
                continue
            events.append(WebhookEntityEvent(
                realm_id=realm_id,
                name=name,
                id=entity_id,
                operation=operation,
                last_updated=parse_qbo_date(entity.get("lastUpdated")),
            ))
    return events
