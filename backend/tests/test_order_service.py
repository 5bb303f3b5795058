# Overview: Pytest coverage for order editing and approval rules.

import pytest

from shopfloor.errors import (
    ConflictError, IsolationViolationError, NotFoundError, PreconditionError, ValidationError,
)
from shopfloor.models import AuditLog, Order, OrderItem, PrintQueueEntry
from shopfloor.services import order_service
from shopfloor.services.production_service import start_work


class TestCreateOrder:
    def test_new_order_starts_pending(self, db_session, customer, admin_user):
        order = order_service.create_order(
            payload={"customerId": customer.id, "salesOrderNumber": "SO-77"},
            actor_id=admin_user.id,
        )
        assert order.status == "PENDING"
        assert order.display_number == "SO-77"
        assert db_session.query(AuditLog).filter_by(action="order.create").count() == 1

    def test_unknown_customer(self, db_session):
        with pytest.raises(NotFoundError):
            order_service.create_order(payload={"customerId": 404})

    def test_status_is_not_client_writable(self, db_session, customer):
        with pytest.raises(ValidationError, match="Field not allowed"):
            order_service.create_order(payload={"customerId": customer.id, "status": "APPROVED"})


class TestOrderItems:
    def test_add_item_converts_price_to_cents(self, db_session, make_order, item):
        order = make_order()
        order_item = order_service.add_order_item(
            order_id=order.id,
            payload={"itemId": item.id, "quantity": 2, "pricePerItem": "19.99", "isProduct": True},
        )
        assert order_item.unit_price_cents == 1999
        assert order_item.status == "NOT_STARTED_PRODUCTION"
        assert order_item.to_dict()["pricePerItem"] == 19.99

    def test_cannot_add_to_approved_order(self, db_session, approved_order, item):
        with pytest.raises(PreconditionError):
            order_service.add_order_item(order_id=approved_order.id, payload={"itemId": item.id})

    @pytest.mark.parametrize("quantity", [0, -3, 100_001])
    def test_quantity_bounds(self, db_session, make_order, item, quantity):
        order = make_order()
        with pytest.raises(ValidationError):
            order_service.add_order_item(order_id=order.id, payload={"itemId": item.id, "quantity": quantity})

    def test_duplicate_line_reference_within_order(self, db_session, make_order, item):
        order = make_order(lines=[{"quickbooks_order_line_id": "L-9"}])
        with pytest.raises(ConflictError):
            order_service.add_order_item(
                order_id=order.id,
                payload={"itemId": item.id, "quickbooksOrderLineId": "L-9"},
            )

    def test_same_line_reference_in_other_order(self, db_session, make_order, item):
        make_order(lines=[{"quickbooks_order_line_id": "L-9"}])
        other = make_order()
        order_item = order_service.add_order_item(
            order_id=other.id,
            payload={"itemId": item.id, "quickbooksOrderLineId": "L-9"},
        )
        assert order_item.order_id == other.id

    def test_update_cannot_move_item(self, db_session, make_order):
        source = make_order(lines=[{}])
        target = make_order()
        order_item_id = source.items[0].id

        with pytest.raises(IsolationViolationError):
            order_service.update_order_item(
                order_id=source.id,
                order_item_id=order_item_id,
                payload={"orderId": target.id},
            )

        assert db_session.get(OrderItem, order_item_id).order_id == source.id

    def test_update_through_foreign_order_rejected(self, db_session, make_order):
        source = make_order(lines=[{}])
        other = make_order()
        with pytest.raises(IsolationViolationError):
            order_service.update_order_item(
                order_id=other.id,
                order_item_id=source.items[0].id,
                payload={"notes": "hijack"},
            )

    def test_reprice_only_while_pending(self, db_session, approved_order, production_item):
        with pytest.raises(PreconditionError):
            order_service.update_order_item(
                order_id=approved_order.id,
                order_item_id=production_item.id,
                payload={"quantity": 4},
            )

        updated = order_service.update_order_item(
            order_id=approved_order.id,
            order_item_id=production_item.id,
            payload={"notes": "Blue piping"},
        )
        assert updated.notes == "Blue piping"

    def test_remove_item_with_history_rejected(
        self, db_session, approved_order, production_item, stations, warehouse_user
    ):
        start_work(order_item_id=production_item.id, station_id=stations["CUTTING"].id, user_id=warehouse_user.id)
        db_session.get(Order, approved_order.id).status = "PENDING"
        db_session.commit()

        with pytest.raises(PreconditionError):
            order_service.remove_order_item(order_id=approved_order.id, order_item_id=production_item.id)

    def test_remove_item_from_pending_order(self, db_session, make_order):
        order = make_order(lines=[{}, {}])
        removed_id = order.items[0].id

        order_service.remove_order_item(order_id=order.id, order_item_id=removed_id)

        assert db_session.get(OrderItem, removed_id) is None
        assert db_session.query(OrderItem).filter_by(order_id=order.id).count() == 1

    def test_verify_marks_item(self, db_session, make_order):
        order = make_order(lines=[{"is_verified": False}])
        verified = order_service.verify_order_item(order_id=order.id, order_item_id=order.items[0].id)
        assert verified.is_verified is True


class TestApproval:
    def test_only_pending_or_approved_orders_approve(self, db_session, make_order):
        order = make_order(status="SHIPPED", lines=[{}])
        with pytest.raises(PreconditionError):
            order_service.approve_order(order_id=order.id)
        assert db_session.query(PrintQueueEntry).count() == 0

    def test_approval_is_recorded_once(self, db_session, make_order, admin_user):
        order = make_order(lines=[{}])
        order_service.approve_order(order_id=order.id, actor_id=admin_user.id)
        order_service.approve_order(order_id=order.id, actor_id=admin_user.id)

        refreshed = db_session.get(Order, order.id)
        assert refreshed.status == "APPROVED"
        assert refreshed.approved_at is not None
        assert db_session.query(AuditLog).filter_by(action="order.approve").count() == 1


class TestSetOrderStatus:
    def test_shipping_stamps_timestamp(self, db_session, make_order):
        order = make_order(status="READY_TO_SHIP")
        shipped = order_service.set_order_status(order_id=order.id, status="SHIPPED")
        assert shipped.shipped_at is not None

    def test_unknown_status(self, db_session, make_order):
        order = make_order()
        with pytest.raises(ValidationError):
            order_service.set_order_status(order_id=order.id, status="LOST")
