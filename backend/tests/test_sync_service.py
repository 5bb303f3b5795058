# Overview: Pytest coverage for QuickBooks entity sync.

"""
QuickBooks Sync Tests

Verifies:
1. Upserts key on the QuickBooks id and never duplicate
2. Customers with missing optional fields sync with NULLs
3. One bad invoice line never aborts its siblings
4. Invoice lines resolve inside their own order only
"""

import httpx
import pytest

from shopfloor.errors import (
    AuthenticationError, NotFoundError, QuickBooksApiError, QuickBooksConnectionError, ValidationError,
)
from shopfloor.models import Customer, Estimate, Item, Order, OrderItem
from shopfloor.services.qbo_client import QuickBooksClient
from shopfloor.services.qbo_payloads import QboCustomer, QboEstimate, QboInvoice, QboItem, parse_entity
from shopfloor.services.qbo_sync_service import (
    apply_entity, deactivate_entity, sync_all_customers, sync_all_items, sync_entity,
    sync_estimate, sync_invoice, upsert_customer,
)
from shopfloor.services.sync_log import get_sync_log


def sales_line(line_id, item_ref, *, qty=1, price="45.00", description=None):
    line = {
        "Id": line_id,
        "DetailType": "SalesItemLineDetail",
        "Amount": price,
        "SalesItemLineDetail": {
            "ItemRef": {"value": item_ref},
            "Qty": qty,
            "UnitPrice": price,
        },
    }
    if description:
        line["Description"] = description
    return line


def invoice_payload(invoice_id="130", customer_ref="58", lines=(), **extra):
    payload = {
        "Id": invoice_id,
        "DocNumber": "1037",
        "TxnDate": "2026-03-01",
        "CustomerRef": {"value": customer_ref, "name": "Acme Furniture"},
        "TotalAmt": 135.0,
        "Line": list(lines) + [{"DetailType": "SubTotalLineDetail", "Amount": 135.0}],
    }
    payload.update(extra)
    return payload


@pytest.fixture
def synced_customer(db_session):
    customer, _ = upsert_customer(QboCustomer(id="58", display_name="Acme Furniture"))
    db_session.commit()
    return customer


class TestCustomers:
    def test_partial_customer_syncs_with_nulls(self, db_session):
        result = apply_entity(QboCustomer.from_payload({"Id": "7", "DisplayName": "Walk-in"}))

        customer = db_session.query(Customer).filter_by(quickbooks_customer_id="7").one()
        assert result["created"] is True
        assert customer.name == "Walk-in"
        assert customer.email is None
        assert customer.contact_number is None
        assert customer.shipping_city is None
        assert customer.billing_address_line1 is None

    def test_ship_address_falls_back_to_bill_address(self, db_session):
        apply_entity(QboCustomer.from_payload({
            "Id": "8",
            "CompanyName": "Cozy Homes",
            "BillAddr": {"Line1": "1 Main St", "City": "Austin"},
        }))
        customer = db_session.query(Customer).filter_by(quickbooks_customer_id="8").one()
        assert customer.name == "Cozy Homes"
        assert customer.shipping_address_line1 == "1 Main St"
        assert customer.billing_city == "Austin"
        assert customer.shipping_zip_code is None

    def test_upsert_updates_instead_of_duplicating(self, db_session):
        apply_entity(QboCustomer.from_payload({"Id": "9", "DisplayName": "Old Name"}))
        result = apply_entity(QboCustomer.from_payload({
            "Id": "9",
            "DisplayName": "New Name",
            "PrimaryEmailAddr": {"Address": "buyer@new.test"},
            "CustomerTypeRef": {"name": "Wholesale"},
        }))

        assert result["created"] is False
        customers = db_session.query(Customer).filter_by(quickbooks_customer_id="9").all()
        assert len(customers) == 1
        assert customers[0].name == "New Name"
        assert customers[0].email == "buyer@new.test"
        assert customers[0].customer_type == "WHOLESALER"

    def test_inactive_upstream_customer(self, db_session):
        apply_entity(QboCustomer.from_payload({"Id": "10", "DisplayName": "Gone", "Active": False}))
        assert db_session.query(Customer).filter_by(quickbooks_customer_id="10").one().status == "INACTIVE"


class TestItems:
    def test_item_prices_stored_in_cents(self, db_session):
        apply_entity(QboItem.from_payload({"Id": "21", "Name": "Bolster", "UnitPrice": 19.99, "Type": "Inventory"}))
        item = db_session.query(Item).filter_by(quickbooks_item_id="21").one()
        assert item.retail_price_cents == 1999
        assert item.category == "Inventory"

    def test_deactivate_keeps_row(self, db_session, item):
        result = deactivate_entity("Item", "ITEM-1")
        assert result["deactivated"] is True
        assert db_session.get(Item, item.id).status == "INACTIVE"

    def test_deactivate_unknown_is_skipped(self, db_session):
        assert deactivate_entity("Item", "nope")["skipped"] is True
        assert deactivate_entity("Invoice", "130")["skipped"] is True


class TestInvoiceSync:
    def test_one_bad_line_does_not_abort_siblings(self, db_session, qbo, synced_customer, item):
        invoice = QboInvoice.from_payload(invoice_payload(lines=[
            sales_line("1", "ITEM-1"),
            sales_line("2", "MISSING-ITEM"),
            sales_line("3", "ITEM-1", qty=2),
        ]))

        result = sync_invoice(invoice, client=qbo.client)

        statuses = [(line.line_id, line.status) for line in result.lines]
        assert statuses == [("1", "created"), ("2", "failed"), ("3", "created"), (None, "skipped")]
        failed = result.failed_lines[0]
        assert failed.kind == "QUICKBOOKS_API_ERROR"
        assert "Object Not Found" in failed.error
        assert result.success is False

        order = db_session.query(Order).filter_by(quickbooks_order_id="130").one()
        lines = db_session.query(OrderItem).filter_by(order_id=order.id).order_by(OrderItem.id).all()
        assert [line.quickbooks_order_line_id for line in lines] == ["1", "3"]
        assert lines[1].quantity == 2
        assert lines[0].unit_price_cents == 4500
        assert order.sales_order_number == "1037"
        assert order.total_amount_cents == 13500

        assert get_sync_log().recent(source="sync")[0].level == "WARNING"

    def test_missing_customer_is_fetched(self, db_session, qbo, item):
        qbo.add("Customer", {"Id": "58", "DisplayName": "Fetched Customer"})
        invoice = QboInvoice.from_payload(invoice_payload(lines=[sales_line("1", "ITEM-1")]))

        result = sync_invoice(invoice, client=qbo.client)

        assert result.success
        assert db_session.query(Customer).filter_by(quickbooks_customer_id="58").one().name == "Fetched Customer"

    def test_missing_item_is_fetched_and_upserted(self, db_session, qbo, synced_customer):
        qbo.add("Item", {"Id": "77", "Name": "Ottoman Cover", "UnitPrice": 30})
        invoice = QboInvoice.from_payload(invoice_payload(lines=[sales_line("1", "77"), sales_line("2", "77")]))

        result = sync_invoice(invoice, client=qbo.client)

        assert result.success
        assert db_session.query(Item).filter_by(quickbooks_item_id="77").count() == 1
        item_reads = [r for r in qbo.requests if r.url.path.endswith("/item/77")]
        assert len(item_reads) == 1

    def test_without_client_unknown_customer_raises(self, db_session):
        invoice = QboInvoice.from_payload(invoice_payload(customer_ref="999", lines=[sales_line("1", "ITEM-1")]))
        with pytest.raises(NotFoundError):
            sync_invoice(invoice)
        assert db_session.query(Order).count() == 0

    def test_without_customer_ref_rejected(self, db_session):
        payload = invoice_payload(lines=[])
        del payload["CustomerRef"]
        with pytest.raises(ValidationError):
            sync_invoice(QboInvoice.from_payload(payload))

    def test_resync_updates_lines_without_duplicates(self, db_session, synced_customer, item):
        sync_invoice(QboInvoice.from_payload(invoice_payload(lines=[sales_line("1", "ITEM-1")])))

        result = sync_invoice(QboInvoice.from_payload(invoice_payload(
            lines=[sales_line("1", "ITEM-1", qty=3, price="50.00", description="Updated")],
        )))

        assert [line.status for line in result.lines if line.line_id] == ["updated"]
        assert result.created is False
        assert db_session.query(Order).count() == 1
        order_item = db_session.query(OrderItem).one()
        assert order_item.quantity == 3
        assert order_item.unit_price_cents == 5000
        assert order_item.line_description == "Updated"

    def test_line_ids_resolve_within_their_own_order(self, db_session, synced_customer, item, make_order):
        # Another order already carries line id "1".
        other = make_order(lines=[{"quickbooks_order_line_id": "1", "quantity": 9}])

        result = sync_invoice(QboInvoice.from_payload(invoice_payload(lines=[sales_line("1", "ITEM-1")])))

        assert result.lines[0].status == "created"
        assert db_session.get(OrderItem, other.items[0].id).quantity == 9
        assert db_session.query(OrderItem).filter_by(quickbooks_order_line_id="1").count() == 2

    def test_new_lines_on_approved_order_fail_per_line(self, db_session, synced_customer, item):
        sync_invoice(QboInvoice.from_payload(invoice_payload(lines=[sales_line("1", "ITEM-1")])))
        order = db_session.query(Order).one()
        order.status = "APPROVED"
        db_session.commit()

        result = sync_invoice(QboInvoice.from_payload(invoice_payload(
            lines=[sales_line("1", "ITEM-1", qty=5), sales_line("2", "ITEM-1")],
        )))

        assert [(line.line_id, line.status) for line in result.lines if line.line_id] == [
            ("1", "updated"), ("2", "failed"),
        ]
        assert result.lines[1].kind == "PRECONDITION_FAILED"
        # Quantity is frozen once the order leaves PENDING.
        assert db_session.query(OrderItem).one().quantity == 1

    def test_lines_removed_upstream_are_kept(self, db_session, synced_customer, item):
        sync_invoice(QboInvoice.from_payload(invoice_payload(lines=[sales_line("1", "ITEM-1"), sales_line("2", "ITEM-1")])))
        sync_invoice(QboInvoice.from_payload(invoice_payload(lines=[sales_line("1", "ITEM-1")])))
        assert db_session.query(OrderItem).count() == 2


class TestEstimateSync:
    def test_estimate_and_lines_upserted(self, db_session, synced_customer, item):
        payload = {
            "Id": "55",
            "DocNumber": "E-9",
            "CustomerRef": {"value": "58"},
            "TxnStatus": "Pending",
            "Line": [sales_line("1", "ITEM-1", qty=4)],
        }
        first = sync_estimate(QboEstimate.from_payload(payload))
        second = sync_estimate(QboEstimate.from_payload(payload))

        assert first.created is True and second.created is False
        estimate = db_session.query(Estimate).one()
        assert estimate.status == "Pending"
        assert len(estimate.lines) == 1
        assert estimate.lines[0].quantity == 4

    def test_invoice_links_known_estimate(self, db_session, synced_customer, item):
        sync_estimate(QboEstimate.from_payload({"Id": "55", "CustomerRef": {"value": "58"}, "Line": []}))

        sync_invoice(QboInvoice.from_payload(invoice_payload(
            lines=[sales_line("1", "ITEM-1")],
            LinkedTxn=[{"TxnId": "55", "TxnType": "Estimate"}],
        )))

        order = db_session.query(Order).one()
        assert order.estimate_id == db_session.query(Estimate).one().id


class TestDispatch:
    def test_sync_entity_fetches_then_upserts(self, db_session, qbo):
        qbo.add("Customer", {"Id": "58", "DisplayName": "Acme Furniture"})

        summary = sync_entity("Customer", "58", client=qbo.client)

        assert summary == {
            "entity": "Customer",
            "externalId": "58",
            "localId": summary["localId"],
            "created": True,
            "success": True,
        }
        request = qbo.requests[0]
        assert request.url.path == "/v3/company/9130350000000001/customer/58"
        assert request.url.params["minorversion"] == "65"
        assert request.headers["authorization"] == "Bearer access-old"

    def test_unknown_upstream_id_raises_api_error(self, db_session, qbo):
        with pytest.raises(QuickBooksApiError):
            sync_entity("Customer", "404", client=qbo.client)
        assert db_session.query(Customer).count() == 0

    def test_unsupported_entity(self):
        with pytest.raises(ValidationError):
            parse_entity("Vendor", {"Id": "1"})

    def test_bulk_sync_counts_created_and_updated(self, db_session, qbo):
        qbo.add("Customer", {"Id": "1", "DisplayName": "One"})
        qbo.add("Customer", {"Id": "2", "DisplayName": "Two"})
        apply_entity(QboCustomer(id="1", display_name="Stale"))

        summary = sync_all_customers(client=qbo.client)

        assert summary["created"] == 1
        assert summary["updated"] == 1
        assert summary["failed"] == 0
        assert db_session.query(Customer).count() == 2

    def test_bulk_item_sync_reports_bad_rows(self, db_session, qbo):
        qbo.add("Item", {"Id": "1", "Name": "Cushion"})
        qbo.entities[("Item", "bad")] = {"Name": "No id"}

        summary = sync_all_items(client=qbo.client)

        assert summary["created"] == 1
        assert summary["failed"] == 1
        assert "missing Id" in summary["errors"][0]["error"]


class TestClientErrors:
    def test_timeout_is_retried_then_surfaces_as_connection_error(self, db_session, make_token_manager, stored_token):
        def timeout(request):
            raise httpx.ReadTimeout("read timed out", request=request)

        manager, intuit = make_token_manager(timeout, attempts=3)
        stored_token()
        client = QuickBooksClient(manager)

        with pytest.raises(QuickBooksConnectionError) as excinfo:
            client.get_entity("Customer", "58")

        assert excinfo.value.retryable is True
        assert not isinstance(excinfo.value, AuthenticationError)
        assert "timed out" in excinfo.value.message
        assert len(intuit.requests) == 3

    def test_rejected_access_token_is_an_auth_error_and_not_retried(self, db_session, make_token_manager, stored_token):
        manager, intuit = make_token_manager(lambda request: httpx.Response(401), attempts=3)
        stored_token()
        client = QuickBooksClient(manager)

        with pytest.raises(AuthenticationError) as excinfo:
            client.get_entity("Customer", "58")

        assert excinfo.value.retryable is False
        assert len(intuit.requests) == 1
