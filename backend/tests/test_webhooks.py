# Overview: Pytest coverage for QuickBooks webhook verification and dispatch.

import json

import pytest
from sqlalchemy.exc import IntegrityError

from conftest import WEBHOOK_VERIFIER
from shopfloor.models import Customer, Item
from shopfloor.services.qbo_client import EXTENSION_KEY
from shopfloor.services import webhook_service
from shopfloor.services.qbo_sync_service import sync_entity, upsert_item
from shopfloor.services.qbo_payloads import QboItem
from shopfloor.services.sync_log import get_sync_log
from shopfloor.services.webhook_service import (
    SIGNATURE_HEADER, compute_signature, process_notifications, verify_signature,
)


def notification(*entities, realm_id="9130350000000001"):
    return {
        "eventNotifications": [{
            "realmId": realm_id,
            "dataChangeEvent": {
                "entities": [
                    {"name": name, "id": entity_id, "operation": operation, "lastUpdated": "2026-03-02T10:00:00.000Z"}
                    for name, entity_id, operation in entities
                ],
            },
        }],
    }


def post_webhook(client, payload, *, signature=None, body=None):
    raw = body if body is not None else json.dumps(payload).encode()
    headers = {"Content-Type": "application/json"}
    headers[SIGNATURE_HEADER] = signature if signature is not None else compute_signature(raw, WEBHOOK_VERIFIER)
    return client.post("/api/qbo/webhook", data=raw, headers=headers)


class TestSignature:
    def test_signature_round_trip(self):
        body = b'{"eventNotifications": []}'
        assert verify_signature(body, compute_signature(body, "secret"), "secret")

    def test_wrong_verifier_rejected(self):
        body = b'{"eventNotifications": []}'
        assert not verify_signature(body, compute_signature(body, "other"), "secret")

    @pytest.mark.parametrize("signature, verifier", [(None, "secret"), ("", "secret"), ("abc", None), ("abc", "")])
    def test_missing_parts_never_verify(self, signature, verifier):
        assert not verify_signature(b"{}", signature, verifier)


class TestWebhookRoute:
    def test_tampered_body_is_rejected_and_store_unchanged(self, client, db_session, qbo, monkeypatch, app):
        monkeypatch.setitem(app.extensions, EXTENSION_KEY, qbo.client)
        qbo.add("Customer", {"Id": "58", "DisplayName": "Acme Furniture"})
        original = json.dumps(notification(("Customer", "58", "Create"))).encode()
        signature = compute_signature(original, WEBHOOK_VERIFIER)
        tampered = original.replace(b'"58"', b'"59"')

        response = post_webhook(client, None, signature=signature, body=tampered)

        assert response.status_code == 401
        assert response.get_json()["kind"] == "AUTHENTICATION_ERROR"
        assert db_session.query(Customer).count() == 0
        assert qbo.requests == []
        assert get_sync_log().recent(source="webhook")[0].level == "WARNING"

    def test_missing_signature_is_rejected(self, client, db_session):
        response = client.post("/api/qbo/webhook", json=notification(("Customer", "58", "Create")))
        assert response.status_code == 401

    def test_valid_create_refetches_and_upserts(self, client, db_session, qbo, monkeypatch, app):
        monkeypatch.setitem(app.extensions, EXTENSION_KEY, qbo.client)
        qbo.add("Customer", {"Id": "58", "DisplayName": "Acme Furniture"})

        response = post_webhook(client, notification(("Customer", "58", "Create")))

        assert response.status_code == 200
        data = response.get_json()
        assert data["accepted"] is True
        assert data["counts"] == {"processed": 1}
        assert db_session.query(Customer).filter_by(quickbooks_customer_id="58").one().name == "Acme Furniture"

    def test_invalid_json_with_valid_signature(self, client, db_session):
        response = post_webhook(client, None, body=b"not json")
        assert response.status_code == 400

    def test_payload_without_notifications(self, client, db_session):
        response = post_webhook(client, {"hello": "world"})
        assert response.status_code == 400
        assert response.get_json()["kind"] == "VALIDATION_ERROR"


class TestProcessNotifications:
    def test_each_entity_is_handled_independently(self, db_session, qbo):
        qbo.add("Customer", {"Id": "58", "DisplayName": "Acme Furniture"})

        summary = process_notifications(
            notification(
                ("Customer", "404", "Update"),
                ("Customer", "58", "Update"),
                ("Vendor", "3", "Create"),
            ),
            client=qbo.client,
        )

        statuses = [r["status"] for r in summary["results"]]
        assert statuses == ["failed", "processed", "skipped"]
        assert summary["received"] == 3
        assert summary["counts"] == {"failed": 1, "processed": 1, "skipped": 1}
        assert db_session.query(Customer).count() == 1

    def test_delete_marks_inactive_without_fetching(self, db_session, qbo):
        upsert_item(QboItem(id="21", name="Bolster"))
        db_session.commit()

        summary = process_notifications(notification(("Item", "21", "Delete")), client=qbo.client)

        assert summary["results"][0]["status"] == "processed"
        assert db_session.query(Item).filter_by(quickbooks_item_id="21").one().status == "INACTIVE"
        assert qbo.requests == []

    def test_invoice_delete_is_not_mirrored(self, db_session, qbo):
        summary = process_notifications(notification(("Invoice", "130", "Delete")), client=qbo.client)
        assert summary["results"][0]["result"]["skipped"] is True

    def test_unknown_operation_skipped(self, db_session, qbo):
        summary = process_notifications(notification(("Customer", "58", "Archive")), client=qbo.client)
        assert summary["results"][0]["status"] == "skipped"
        assert qbo.requests == []

    def test_database_error_fails_one_entity_and_the_rest_continue(self, db_session, qbo, monkeypatch):
        qbo.add("Customer", {"Id": "2", "DisplayName": "Second Customer"})

        def racing_sync(name, entity_id, *, client):
            if entity_id == "1":
                raise IntegrityError(
                    "INSERT INTO customers", {}, Exception("UNIQUE constraint failed: customers.quickbooks_customer_id"),
                )
            return sync_entity(name, entity_id, client=client)

        monkeypatch.setattr(webhook_service, "sync_entity", racing_sync)

        summary = process_notifications(
            notification(("Customer", "1", "Create"), ("Customer", "2", "Create")),
            client=qbo.client,
        )

        first, second = summary["results"]
        assert first["status"] == "failed"
        assert first["kind"] == "DATABASE_ERROR"
        assert second["status"] == "processed"
        assert db_session.query(Customer).filter_by(quickbooks_customer_id="2").count() == 1
