# Overview: Service-layer operations for the label print queue; encapsulates business logic and database work.

"""
Print Queue Coordinator

WHY: Approved, verified production items need a label before they go to the
floor. Labels are printed in sheets of a standard size (4 by default); a smaller
batch is allowed but the caller is warned so the operator can wait or confirm.

RULES:
- One queue entry per order item. enqueue is idempotent for unprinted entries
  and re-queues (resets) printed ones instead of inserting a duplicate.
- mark_printed reports per-id failures; one stale id never blocks the rest.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Iterable, Optional

from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..errors import ConflictError, NotFoundError, PreconditionError, ServiceError, ValidationError
from ..extensions import db
from ..models import OrderItem, PrintQueueEntry
from ..time_utils import utcnow
from .audit_service import append_audit_log
from .concurrency import lock_for_update

logger = logging.getLogger(__name__)


DEFAULT_BATCH_SIZE = 4

OUTCOME_CREATED = "created"
OUTCOME_REQUEUED = "requeued"
OUTCOME_UNCHANGED = "unchanged"


@dataclass
class BatchSizeCheck:
    is_valid: bool
    count: int
    standard_size: int
    warning: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "isValid": self.is_valid,
            "count": self.count,
            "standardSize": self.standard_size,
            "warning": self.warning,
        }


@dataclass
class MarkPrintedResult:
    printed: list[PrintQueueEntry] = field(default_factory=list)
    failures: list[dict] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "printed": [entry.to_dict() for entry in self.printed],
            "printedCount": len(self.printed),
            "failures": list(self.failures),
        }


def batch_size() -> int:
    return int(current_app.config.get("PRINT_BATCH_SIZE", DEFAULT_BATCH_SIZE))


def validate_batch_size(count: int, *, standard_size: Optional[int] = None) -> BatchSizeCheck:
    """
    Batch-size business rule. Never an error: small batches only warn.

    0 items            -> not printable
    1 .. standard - 1  -> printable, with a warning
    >= standard        -> printable
    """
    size = standard_size or batch_size()
    if count <= 0:
        return BatchSizeCheck(
            is_valid=False,
            count=0,
            standard_size=size,
            warning="No items available for printing. Please approve orders to add items to the queue.",
        )
    if count < size:
        return BatchSizeCheck(
            is_valid=True,
            count=count,
            standard_size=size,
            warning=(
                f"Only {count} item(s) available. Standard batch size is {size} items. "
                f"Do you want to proceed with a smaller batch?"
            ),
        )
    return BatchSizeCheck(is_valid=True, count=count, standard_size=size)


def _existing_entry(order_item_id: int) -> Optional[PrintQueueEntry]:
    return lock_for_update(
        db.session.query(PrintQueueEntry).filter(PrintQueueEntry.order_item_id == order_item_id)
    ).first()


def _enqueue_one(order_item_id: int, actor_id: Optional[int]) -> tuple[PrintQueueEntry, str]:
    order_item = db.session.get(OrderItem, order_item_id)
    if order_item is None:
        raise NotFoundError(f"OrderItem {order_item_id} not found")
    if not order_item.is_production:
        raise PreconditionError(f"OrderItem {order_item_id} is not a production item and cannot be queued for labels")

    entry = _existing_entry(order_item_id)
    now = utcnow()

    if entry is not None and not entry.is_printed:
        return entry, OUTCOME_UNCHANGED

    if entry is not None:
        entry.is_printed = False
        entry.printed_at = None
        entry.printed_by_user_id = None
        entry.added_at = now
        entry.added_by_user_id = actor_id
        outcome = OUTCOME_REQUEUED
    else:
        entry = PrintQueueEntry(
            order_item_id=order_item_id,
            is_printed=False,
            added_at=now,
            added_by_user_id=actor_id,
        )
        db.session.add(entry)
        outcome = OUTCOME_CREATED

    db.session.flush()
    append_audit_log(
        action=f"print_queue.{outcome}",
        entity_name="PrintQueueEntry",
        entity_id=entry.id,
        user_id=actor_id,
        new_value={"orderItemId": order_item_id},
        occurred_at=now,
    )
    return entry, outcome


def enqueue(*, order_item_id: int, actor_id: Optional[int] = None) -> tuple[PrintQueueEntry, str]:
    """
    Add an order item to the print queue.

    Returns (entry, outcome) where outcome is created | requeued | unchanged.
    """
    try:
        entry, outcome = _enqueue_one(order_item_id, actor_id)
        db.session.commit()
    except IntegrityError:
        # Unique order_item_id: a concurrent enqueue inserted first.
        db.session.rollback()
        entry = db.session.query(PrintQueueEntry).filter_by(order_item_id=order_item_id).first()
        if entry is None:
            raise
        return entry, OUTCOME_UNCHANGED
    except Exception:
        db.session.rollback()
        raise
    return entry, outcome


def enqueue_many(*, order_item_ids: Iterable[int], actor_id: Optional[int] = None) -> list[dict]:
    """
    Enqueue several items inside the caller's transaction (flush only).

    Used by order approval, which commits once for the whole approval.
    """
    outcomes = []
    for order_item_id in order_item_ids:
        entry, outcome = _enqueue_one(order_item_id, actor_id)
        outcomes.append({"orderItemId": order_item_id, "queueItemId": entry.id, "outcome": outcome})
    return outcomes


def _mark_one(queue_item_id: int, actor_id: Optional[int], now) -> PrintQueueEntry:
    entry = lock_for_update(
        db.session.query(PrintQueueEntry).filter(PrintQueueEntry.id == queue_item_id)
    ).first()
    if entry is None:
        raise NotFoundError(f"Print queue item {queue_item_id} not found")
    if entry.is_printed:
        raise ConflictError(f"Print queue item {queue_item_id} is already printed")

    entry.is_printed = True
    entry.printed_at = now
    entry.printed_by_user_id = actor_id
    db.session.flush()
    return entry


def mark_printed(*, queue_item_ids: list[int], actor_id: Optional[int] = None) -> MarkPrintedResult:
    """
    Batch-mark queue entries printed with per-item failure reporting.

    Each id runs in its own savepoint so a failure leaves siblings intact.
    """
    if not isinstance(queue_item_ids, (list, tuple)) or not queue_item_ids:
        raise ValidationError("queueItemIds must be a non-empty list")

    result = MarkPrintedResult()
    now = utcnow()

    for raw_id in queue_item_ids:
        try:
            queue_item_id = int(raw_id)
        except (TypeError, ValueError):
            result.failures.append({"queueItemId": raw_id, "kind": "VALIDATION_ERROR", "error": "Invalid queue item id"})
            continue

        try:
            with db.session.begin_nested():
                entry = _mark_one(queue_item_id, actor_id, now)
            result.printed.append(entry)
        except ServiceError as exc:
            result.failures.append({"queueItemId": queue_item_id, "kind": exc.kind, "error": exc.message})

    if result.printed:
        append_audit_log(
            action="print_queue.mark_printed",
            entity_name="PrintQueueEntry",
            user_id=actor_id,
            new_value={"queueItemIds": [entry.id for entry in result.printed]},
            occurred_at=now,
        )
    db.session.commit()

    if result.failures:
        logger.warning("mark_printed: %d of %d item(s) failed", len(result.failures), len(queue_item_ids))
    return result


def set_printed(*, queue_item_id: int, is_printed: bool, actor_id: Optional[int] = None) -> PrintQueueEntry:
    """PATCH path: flip one entry printed / unprinted."""
    entry = db.session.get(PrintQueueEntry, queue_item_id)
    if entry is None:
        raise NotFoundError(f"Print queue item {queue_item_id} not found")

    previous = entry.is_printed
    entry.is_printed = bool(is_printed)
    if entry.is_printed:
        entry.printed_at = entry.printed_at if previous else utcnow()
        entry.printed_by_user_id = entry.printed_by_user_id if previous else actor_id
    else:
        entry.printed_at = None
        entry.printed_by_user_id = None

    append_audit_log(
        action="print_queue.set_printed",
        entity_name="PrintQueueEntry",
        entity_id=entry.id,
        user_id=actor_id,
        old_value={"isPrinted": previous},
        new_value={"isPrinted": entry.is_printed},
    )
    db.session.commit()
    return entry


def _unprinted_query():
    return (
        db.session.query(PrintQueueEntry)
        .filter(PrintQueueEntry.is_printed.is_(False))
        .order_by(PrintQueueEntry.added_at, PrintQueueEntry.id)
    )


def get_next_batch(*, limit: Optional[int] = None) -> dict:
    """Oldest unprinted entries, up to one standard batch."""
    size = limit or batch_size()
    entries = _unprinted_query().limit(size).all()
    check = validate_batch_size(len(entries), standard_size=batch_size())
    return {
        "items": [entry.to_dict(include_item=True) for entry in entries],
        "validation": check.to_dict(),
    }


def get_queue_status() -> dict:
    pending = _unprinted_query().count()
    printed = db.session.query(PrintQueueEntry).filter(PrintQueueEntry.is_printed.is_(True)).count()
    size = batch_size()
    return {
        "pendingCount": pending,
        "printedCount": printed,
        "standardBatchSize": size,
        "fullBatchesAvailable": pending // size,
        "validation": validate_batch_size(pending, standard_size=size).to_dict(),
    }


def remove_from_queue(*, queue_item_ids: list[int], actor_id: Optional[int] = None) -> dict:
    if not isinstance(queue_item_ids, (list, tuple)) or not queue_item_ids:
        raise ValidationError("queueItemIds must be a non-empty list")

    entries = db.session.query(PrintQueueEntry).filter(PrintQueueEntry.id.in_(queue_item_ids)).all()
    found = {entry.id for entry in entries}
    for entry in entries:
        db.session.delete(entry)

    if entries:
        append_audit_log(
            action="print_queue.remove",
            entity_name="PrintQueueEntry",
            user_id=actor_id,
            old_value={"queueItemIds": sorted(found)},
        )
    db.session.commit()
    return {
        "removedCount": len(found),
        "notFound": [qid for qid in queue_item_ids if qid not in found],
    }


def cleanup_printed(*, older_than_days: int = 30) -> int:
    """Delete printed entries older than the retention window."""
    if older_than_days < 0:
        raise ValidationError("older_than_days must be >= 0")
    cutoff = utcnow() - timedelta(days=older_than_days)
    deleted = (
        db.session.query(PrintQueueEntry)
        .filter(
            PrintQueueEntry.is_printed.is_(True),
            PrintQueueEntry.printed_at.isnot(None),
            PrintQueueEntry.printed_at < cutoff,
        )
        .delete(synchronize_session=False)
    )
    db.session.commit()
    if deleted:
        logger.info("Removed %d printed queue entries older than %d days", deleted, older_than_days)
    return deleted
