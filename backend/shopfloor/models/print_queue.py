from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class PrintQueueEntry(db.Model):
    """
    Pending label print for one OrderItem.

    One entry per order item (unique). Re-approving an order never duplicates:
    an unprinted entry is left alone and a printed entry is reset to unprinted.
    """
    __tablename__ = "print_queue"
    __table_args__ = (
        db.Index("ix_print_queue_printed_added", "is_printed", "added_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_item_id = db.Column(db.Integer, db.ForeignKey("order_items.id"), nullable=False, unique=True)

    is_printed = db.Column(db.Boolean, nullable=False, default=False)

    added_at = db.Column(db.DateTime(timezone=True), nullable=False)
    added_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    printed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    printed_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    order_item = db.relationship("OrderItem", backref=db.backref("print_queue_entry", uselist=False, lazy=True))
    added_by = db.relationship("User", foreign_keys=[added_by_user_id])
    printed_by = db.relationship("User", foreign_keys=[printed_by_user_id])

    def to_dict(self, include_item: bool = False) -> dict:
        data = {
            "id": self.id,
            "orderItemId": self.order_item_id,
            "isPrinted": self.is_printed,
            "addedAt": to_utc_z(self.added_at),
            "addedBy": self.added_by_user_id,
            "printedAt": to_utc_z(self.printed_at),
            "printedBy": self.printed_by_user_id,
        }
        if include_item and self.order_item is not None:
            order = self.order_item.order
            data["orderItem"] = self.order_item.to_dict()
            data["orderId"] = order.id if order else None
            data["orderNumber"] = order.display_number if order else None
            data["customerName"] = order.customer.name if order and order.customer else None
        return data
