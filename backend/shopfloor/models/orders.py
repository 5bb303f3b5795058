from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


# Order lifecycle. OrderItems may be added/removed only while PENDING.
ORDER_STATUSES = (
    "PENDING",
    "APPROVED",
    "ORDER_PROCESSING",
    "READY_TO_SHIP",
    "SHIPPED",
    "COMPLETED",
    "CANCELLED",
    "ARCHIVED",
)

# Production stages, ordered. Normal flow only moves forward.
PRODUCTION_STATUSES = (
    "NOT_STARTED_PRODUCTION",
    "CUTTING",
    "SEWING",
    "FOAM_CUTTING",
    "STUFFING",
    "PACKAGING",
    "PRODUCT_FINISHED",
    "READY",
)

CUSTOMER_TYPES = ("RETAILER", "WHOLESALER")
RECORD_STATUSES = ("ACTIVE", "INACTIVE", "ARCHIVED")


def cents_to_amount(cents: int | None) -> float | None:
    if cents is None:
        return None
    return cents / 100


class Customer(db.Model):
    """
    Customer account, mirrored from QuickBooks when quickbooks_customer_id is set.

    PARTIAL DATA: every contact and address field is nullable. Upstream records
    routinely lack email, phone or parts of an address; a missing sub-field must
    never block a sync.
    """
    __tablename__ = "customers"
    __table_args__ = (
        db.Index("ix_customers_status", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    quickbooks_customer_id = db.Column(db.String(64), nullable=True, unique=True)

    name = db.Column(db.String(255), nullable=False)
    email = db.Column(db.String(255), nullable=True)
    contact_number = db.Column(db.String(64), nullable=True)

    # RETAILER | WHOLESALER
    customer_type = db.Column(db.String(16), nullable=False, default="RETAILER")
    # ACTIVE | INACTIVE | ARCHIVED
    status = db.Column(db.String(16), nullable=False, default="ACTIVE")

    shipping_address_line1 = db.Column(db.String(255), nullable=True)
    shipping_address_line2 = db.Column(db.String(255), nullable=True)
    shipping_city = db.Column(db.String(128), nullable=True)
    shipping_state = db.Column(db.String(64), nullable=True)
    shipping_zip_code = db.Column(db.String(32), nullable=True)
    shipping_country = db.Column(db.String(64), nullable=True)

    billing_address_line1 = db.Column(db.String(255), nullable=True)
    billing_address_line2 = db.Column(db.String(255), nullable=True)
    billing_city = db.Column(db.String(128), nullable=True)
    billing_state = db.Column(db.String(64), nullable=True)
    billing_zip_code = db.Column(db.String(32), nullable=True)
    billing_country = db.Column(db.String(64), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=True, onupdate=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "quickbooksCustomerId": self.quickbooks_customer_id,
            "name": self.name,
            "email": self.email,
            "contactNumber": self.contact_number,
            "customerType": self.customer_type,
            "status": self.status,
            "shippingAddress": {
                "line1": self.shipping_address_line1,
                "line2": self.shipping_address_line2,
                "city": self.shipping_city,
                "state": self.shipping_state,
                "zipCode": self.shipping_zip_code,
                "country": self.shipping_country,
            },
            "billingAddress": {
                "line1": self.billing_address_line1,
                "line2": self.billing_address_line2,
                "city": self.billing_city,
                "state": self.billing_state,
                "zipCode": self.billing_zip_code,
                "country": self.billing_country,
            },
            "createdAt": to_utc_z(self.created_at),
        }


class Item(db.Model):
    """Catalog item. Many OrderItems across many orders may reference one Item."""
    __tablename__ = "items"
    __table_args__ = (
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    quickbooks_item_id = db.Column(db.String(64), nullable=True, unique=True)

    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)
    category = db.Column(db.String(64), nullable=True)

    retail_price_cents = db.Column(db.Integer, nullable=True)
    wholesale_price_cents = db.Column(db.Integer, nullable=True)
    cost_cents = db.Column(db.Integer, nullable=True)

    status = db.Column(db.String(16), nullable=False, default="ACTIVE")

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=True, onupdate=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "quickbooksItemId": self.quickbooks_item_id,
            "name": self.name,
            "description": self.description,
            "category": self.category,
            "retailPrice": cents_to_amount(self.retail_price_cents),
            "wholesalePrice": cents_to_amount(self.wholesale_price_cents),
            "cost": cents_to_amount(self.cost_cents),
            "status": self.status,
        }


class Order(db.Model):
    """
    Customer purchase order.

    LIFECYCLE:
        PENDING -> APPROVED -> ORDER_PROCESSING -> READY_TO_SHIP -> SHIPPED -> COMPLETED
        (CANCELLED and ARCHIVED are terminal side exits)

    - PENDING: editable; OrderItems may be added and removed
    - APPROVED: verified production items are pushed to the print queue
    - ORDER_PROCESSING: first station scan happened
    - READY_TO_SHIP: every production item reached READY
    """
    __tablename__ = "orders"
    __table_args__ = (
        db.Index("ix_orders_customer_status", "customer_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=False, index=True)
    estimate_id = db.Column(db.Integer, db.ForeignKey("estimates.id"), nullable=True)

    quickbooks_order_id = db.Column(db.String(64), nullable=True, unique=True)
    sales_order_number = db.Column(db.String(64), nullable=True, index=True)
    purchase_order_number = db.Column(db.String(64), nullable=True)

    transaction_date = db.Column(db.DateTime(timezone=True), nullable=True)
    due_date = db.Column(db.DateTime(timezone=True), nullable=True)

    total_amount_cents = db.Column(db.Integer, nullable=True)
    balance_cents = db.Column(db.Integer, nullable=True)
    total_tax_cents = db.Column(db.Integer, nullable=True)

    contact_email = db.Column(db.String(255), nullable=True)
    notes = db.Column(db.Text, nullable=True)

    status = db.Column(db.String(32), nullable=False, default="PENDING", index=True)
    approved_at = db.Column(db.DateTime(timezone=True), nullable=True)
    ready_to_ship_at = db.Column(db.DateTime(timezone=True), nullable=True)
    shipped_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=True, onupdate=db.func.now())

    customer = db.relationship("Customer", backref=db.backref("orders", lazy=True))
    estimate = db.relationship("Estimate", backref=db.backref("orders", lazy=True))
    items = db.relationship(
        "OrderItem",
        back_populates="order",
        lazy=True,
        order_by="OrderItem.id",
    )

    @property
    def display_number(self) -> str:
        return self.sales_order_number or f"#{self.id}"

    def to_dict(self, include_items: bool = False) -> dict:
        data = {
            "id": self.id,
            "customerId": self.customer_id,
            "estimateId": self.estimate_id,
            "quickbooksOrderId": self.quickbooks_order_id,
            "salesOrderNumber": self.sales_order_number,
            "purchaseOrderNumber": self.purchase_order_number,
            "transactionDate": to_utc_z(self.transaction_date),
            "dueDate": to_utc_z(self.due_date),
            "totalAmount": cents_to_amount(self.total_amount_cents),
            "balance": cents_to_amount(self.balance_cents),
            "totalTax": cents_to_amount(self.total_tax_cents),
            "contactEmail": self.contact_email,
            "notes": self.notes,
            "status": self.status,
            "approvedAt": to_utc_z(self.approved_at),
            "readyToShipAt": to_utc_z(self.ready_to_ship_at),
            "shippedAt": to_utc_z(self.shipped_at),
            "createdAt": to_utc_z(self.created_at),
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
        return data


class OrderItem(db.Model):
    """
    One line of an order bound to a catalog Item.

    ISOLATION:
    - order_id is immutable after creation; moving a line to another order is
      delete + recreate, never an update.
    - quickbooks_order_line_id is unique within the owning order only. The same
      upstream line id may legitimately appear in several orders.

    PRODUCTION:
    - status is owned by the production service; write it only through
      start_work / complete_work / set_status.
    - Non-production items (is_production = False) keep NOT_STARTED_PRODUCTION.
    """
    __tablename__ = "order_items"
    __table_args__ = (
        db.UniqueConstraint("order_id", "quickbooks_order_line_id", name="uq_order_items_order_line"),
        db.Index("ix_order_items_line_ref", "quickbooks_order_line_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    item_id = db.Column(db.Integer, db.ForeignKey("items.id"), nullable=False, index=True)

    quickbooks_order_line_id = db.Column(db.String(64), nullable=True)
    line_description = db.Column(db.Text, nullable=True)
    tax_code = db.Column(db.String(32), nullable=True)

    quantity = db.Column(db.Integer, nullable=False, default=1)
    unit_price_cents = db.Column(db.Integer, nullable=False, default=0)

    status = db.Column(db.String(32), nullable=False, default="NOT_STARTED_PRODUCTION", index=True)
    is_production = db.Column(db.Boolean, nullable=False, default=False)
    is_verified = db.Column(db.Boolean, nullable=False, default=False)

    notes = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=True, onupdate=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    order = db.relationship("Order", back_populates="items")
    item = db.relationship("Item", backref=db.backref("order_items", lazy=True))

    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "orderId": self.order_id,
            "itemId": self.item_id,
            "itemName": self.item.name if self.item else None,
            "quickbooksOrderLineId": self.quickbooks_order_line_id,
            "lineDescription": self.line_description,
            "taxCode": self.tax_code,
            "quantity": self.quantity,
            "pricePerItem": cents_to_amount(self.unit_price_cents),
            "itemStatus": self.status,
            "isProduct": self.is_production,
            "isVerified": self.is_verified,
            "notes": self.notes,
            "createdAt": to_utc_z(self.created_at),
            "versionId": self.version_id,
        }


class Estimate(db.Model):
    """Local mirror of a QuickBooks estimate; invoices may link back to one."""
    __tablename__ = "estimates"
    __table_args__ = (
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    quickbooks_estimate_id = db.Column(db.String(64), nullable=False, unique=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=False, index=True)

    estimate_number = db.Column(db.String(64), nullable=True)
    transaction_date = db.Column(db.DateTime(timezone=True), nullable=True)
    expiration_date = db.Column(db.DateTime(timezone=True), nullable=True)
    total_amount_cents = db.Column(db.Integer, nullable=True)
    status = db.Column(db.String(32), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=True, onupdate=db.func.now())

    customer = db.relationship("Customer", backref=db.backref("estimates", lazy=True))
    lines = db.relationship("EstimateLine", back_populates="estimate", lazy=True, order_by="EstimateLine.id")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "quickbooksEstimateId": self.quickbooks_estimate_id,
            "customerId": self.customer_id,
            "estimateNumber": self.estimate_number,
            "transactionDate": to_utc_z(self.transaction_date),
            "expirationDate": to_utc_z(self.expiration_date),
            "totalAmount": cents_to_amount(self.total_amount_cents),
            "status": self.status,
            "lines": [line.to_dict() for line in self.lines],
        }


class EstimateLine(db.Model):
    __tablename__ = "estimate_lines"
    __table_args__ = (
        db.UniqueConstraint("estimate_id", "quickbooks_line_id", name="uq_estimate_lines_estimate_line"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    estimate_id = db.Column(db.Integer, db.ForeignKey("estimates.id"), nullable=False, index=True)
    item_id = db.Column(db.Integer, db.ForeignKey("items.id"), nullable=False)

    quickbooks_line_id = db.Column(db.String(64), nullable=True)
    description = db.Column(db.Text, nullable=True)
    quantity = db.Column(db.Integer, nullable=False, default=1)
    unit_price_cents = db.Column(db.Integer, nullable=False, default=0)
    line_amount_cents = db.Column(db.Integer, nullable=True)

    estimate = db.relationship("Estimate", back_populates="lines")
    item = db.relationship("Item")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "estimateId": self.estimate_id,
            "itemId": self.item_id,
            "quickbooksLineId": self.quickbooks_line_id,
            "description": self.description,
            "quantity": self.quantity,
            "pricePerItem": cents_to_amount(self.unit_price_cents),
            "lineAmount": cents_to_amount(self.line_amount_cents),
        }
