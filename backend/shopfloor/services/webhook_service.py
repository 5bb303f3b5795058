# Overview: Service-layer operations for QuickBooks webhooks; signature check and dispatch.

from __future__ import annotations

import base64
import hashlib
import hmac
import logging
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError

from ..errors import ServiceError
from ..extensions import db
from .qbo_client import QuickBooksClient, get_client
from .qbo_payloads import parse_webhook_notifications
from .qbo_sync_service import deactivate_entity, sync_entity
from .sync_log import get_sync_log

logger = logging.getLogger(__name__)


SIGNATURE_HEADER = "intuit-signature"
SYNC_OPERATIONS = {"Create", "Update", "Merge", "Void", "Emailed"}
DELETE_OPERATIONS = {"Delete"}


def compute_signature(raw_body: bytes, verifier_token: str) -> str:
    """base64(HMAC-SHA256(verifier_token, raw_body)), as Intuit signs payloads."""
    digest = hmac.new(verifier_token.encode("utf-8"), raw_body, hashlib.sha256).digest()
    return base64.b64encode(digest).decode("ascii")


def verify_signature(raw_body: bytes, signature: Optional[str], verifier_token: Optional[str]) -> bool:
    """
    Constant-time check of the intuit-signature header against the raw body.

    A missing signature or an unconfigured verifier token never verifies.
    """
    if not signature or not verifier_token:
        return False
    expected = compute_signature(raw_body, verifier_token)
    return hmac.compare_digest(expected.encode("ascii"), signature.strip().encode("ascii", "replace"))


def process_notifications(payload: dict, *, client: Optional[QuickBooksClient] = None) -> dict:
    """
    Dispatch each entity change in a verified webhook payload.

    Entities are handled independently: a failure is recorded for that entity
    and processing moves on. Unsupported names/operations are skipped.
    """
    events = parse_webhook_notifications(payload)
    sync_log = get_sync_log()
    results = []

    for event in events:
        outcome = {"entity": event.name, "id": event.id, "operation": event.operation}

        if not event.is_supported:
            outcome.update(status="skipped", reason=f"Unsupported entity {event.name}")
            results.append(outcome)
            continue

        try:
            if event.operation in DELETE_OPERATIONS:
                summary = deactivate_entity(event.name, event.id)
            elif event.operation in SYNC_OPERATIONS:
                summary = sync_entity(event.name, event.id, client=client or get_client())
            else:
                outcome.update(status="skipped", reason=f"Unsupported operation {event.operation}")
                results.append(outcome)
                continue
        except ServiceError as exc:
            db.session.rollback()
            logger.warning("Webhook %s %s %s failed: %s", event.operation, event.name, event.id, exc.message)
            sync_log.error("webhook", f"{event.operation} {event.name} {event.id} failed", error=exc.message, kind=exc.kind)
            outcome.update(status="failed", error=exc.message, kind=exc.kind)
            results.append(outcome)
            continue
        except SQLAlchemyError as exc:
            db.session.rollback()
            logger.warning("Database error handling webhook %s %s %s: %s", event.operation, event.name, event.id, exc)
            sync_log.error("webhook", f"{event.operation} {event.name} {event.id} failed", error="Database error", kind="DATABASE_ERROR")
            outcome.update(status="failed", error="Database error", kind="DATABASE_ERROR")
            results.append(outcome)
            continue

        outcome.update(status="processed" if summary.get("success", True) else "partial", result=summary)
        results.append(outcome)

    counts: dict[str, int] = {}
    for outcome in results:
        counts[outcome["status"]] = counts.get(outcome["status"], 0) + 1

    sync_log.info("webhook", "Webhook processed", entities=len(results), **counts)
    return {"received": len(events), "counts": counts, "results": results}
