# Overview: Service-layer operations for production tracking; encapsulates business logic and database work.

"""
Production Status Machine + Processing Log Ledger

================================================================================
PURPOSE: Track each order item through the shop floor, one station at a time
================================================================================

STATE MACHINE (order item status, forward-only in normal flow):
    NOT_STARTED_PRODUCTION -> CUTTING -> SEWING -> FOAM_CUTTING -> STUFFING
        -> PACKAGING -> PRODUCT_FINISHED -> READY

    start_work    opens an ItemProcessingLog and moves the item forward to
                  the station's stage (never backward)
    complete_work closes the open log and advances the item one stage
    set_status    manual path; forward one stage, or any stage with override

RULES (NON-NEGOTIABLE):
1. At most one open log (end_time IS NULL) per order item.
2. A worker has at most one open log at a time.
3. Stored durations are whole seconds and never below 1.
4. Only items of APPROVED / ORDER_PROCESSING orders can be worked on.
5. Non-production items never enter the machine.

ORDER ROLL-UP:
- First start_work on an APPROVED order moves it to ORDER_PROCESSING.
- When every production item of the order is READY, the order moves to
  READY_TO_SHIP.
================================================================================
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.exc import IntegrityError

from ..errors import ConflictError, NotFoundError, PreconditionError, ValidationError
from ..extensions import db
from ..models import ItemProcessingLog, Order, OrderItem, Station, User
from ..models.orders import PRODUCTION_STATUSES
from ..time_utils import floor_seconds, utcnow
from .audit_service import append_audit_log
from .concurrency import lock_for_update
from .isolation_service import require_belongs_to_order

logger = logging.getLogger(__name__)


WORKABLE_ORDER_STATUSES = {"APPROVED", "ORDER_PROCESSING"}
FINAL_STATUS = PRODUCTION_STATUSES[-1]
MIN_DURATION_SECONDS = 1

# Default station names and the stage each one moves items into.
STATION_STAGES = {
    "Cutting": "CUTTING",
    "Sewing": "SEWING",
    "Foam Cutting": "FOAM_CUTTING",
    "Stuffing": "STUFFING",
    "Packaging": "PACKAGING",
    "Product Finished": "PRODUCT_FINISHED",
}


@dataclass
class WorkCompletion:
    order_item: OrderItem
    processing_log: ItemProcessingLog
    duration_in_seconds: int
    next_status: str
    is_final_step: bool
    duration_clamped: bool = False

    def to_dict(self) -> dict:
        return {
            "orderItem": self.order_item.to_dict(),
            "processingLog": self.processing_log.to_dict(),
            "durationInSeconds": self.duration_in_seconds,
            "nextStatus": self.next_status,
            "isFinalStep": self.is_final_step,
        }


def validate_status(status: str) -> None:
    if status not in PRODUCTION_STATUSES:
        raise ValidationError(
            f"Invalid status '{status}'. Must be one of: {', '.join(PRODUCTION_STATUSES)}"
        )


def stage_index(status: str) -> int:
    validate_status(status)
    return PRODUCTION_STATUSES.index(status)


def next_status(status: str) -> str:
    """Stage after `status`; READY stays READY."""
    idx = stage_index(status)
    return PRODUCTION_STATUSES[min(idx + 1, len(PRODUCTION_STATUSES) - 1)]


def can_transition(from_status: str, to_status: str, *, override: bool = False) -> bool:
    """
    Manual transition rule.

    Without override only the immediately-next stage is allowed. With override
    any defined stage is allowed, including moving backward to redo work.
    """
    from_idx = stage_index(from_status)
    to_idx = stage_index(to_status)
    if override:
        return True
    if from_status == to_status:
        return True
    return to_idx == from_idx + 1


def stage_for_station(station: Station) -> str:
    if station.stage:
        validate_status(station.stage)
        return station.stage
    stage = STATION_STAGES.get(station.name)
    if stage is None:
        raise PreconditionError(f"Station '{station.name}' is not mapped to a production stage")
    return stage


def compute_duration_seconds(start: datetime, end: datetime) -> tuple[int, bool]:
    """
    Whole seconds between start and end, clamped to at least 1.

    Returns (duration, clamped). Clock skew can make end <= start; those
    intervals are stored as 1 second instead of zero or negative values.
    """
    raw = floor_seconds(start, end)
    if raw < MIN_DURATION_SECONDS:
        return MIN_DURATION_SECONDS, True
    return raw, False


def get_open_log(order_item_id: int) -> Optional[ItemProcessingLog]:
    return (
        db.session.query(ItemProcessingLog)
        .filter(
            ItemProcessingLog.order_item_id == order_item_id,
            ItemProcessingLog.end_time.is_(None),
        )
        .first()
    )


def get_active_work(user_id: int) -> Optional[ItemProcessingLog]:
    """The user's open log, if any."""
    return (
        db.session.query(ItemProcessingLog)
        .filter(
            ItemProcessingLog.user_id == user_id,
            ItemProcessingLog.end_time.is_(None),
        )
        .first()
    )


def _load_order_item_for_update(order_item_id: int) -> OrderItem:
    order_item = lock_for_update(
        db.session.query(OrderItem).filter(OrderItem.id == order_item_id)
    ).first()
    if order_item is None:
        raise NotFoundError(f"OrderItem {order_item_id} not found")
    return order_item


def _require_workable_order(order: Order) -> None:
    if order.status not in WORKABLE_ORDER_STATUSES:
        raise PreconditionError(
            f"Order {order.display_number} is {order.status}; production work requires "
            f"an approved order",
            suggestions=["Approve the order before scanning items"],
        )


def _roll_up_order_ready(order: Order, *, actor_id: Optional[int]) -> bool:
    """Move the order to READY_TO_SHIP when every production item is READY."""
    production_items = [item for item in order.items if item.is_production]
    if not production_items:
        return False
    if any(item.status != FINAL_STATUS for item in production_items):
        return False
    if order.status == "READY_TO_SHIP":
        return False

    previous = order.status
    order.status = "READY_TO_SHIP"
    order.ready_to_ship_at = utcnow()
    append_audit_log(
        action="order.ready_to_ship",
        entity_name="Order",
        entity_id=order.id,
        user_id=actor_id,
        old_value={"status": previous},
        new_value={"status": order.status},
    )
    logger.info("Order %s is ready to ship", order.display_number)
    return True


def start_work(*, order_item_id: int, station_id: int, user_id: int) -> ItemProcessingLog:
    """
    Open a processing log for an order item at a station.

    Raises:
        NotFoundError: order item, station or user missing (no writes)
        PreconditionError: order not workable, non-production item, item READY
        ConflictError: item already has an open log, or user is busy elsewhere
    """
    try:
        order_item = _load_order_item_for_update(order_item_id)

        station = db.session.get(Station, station_id)
        if station is None:
            raise NotFoundError(f"Station {station_id} not found")
        user = db.session.get(User, user_id)
        if user is None:
            raise NotFoundError(f"User {user_id} not found")

        if not order_item.is_production:
            raise PreconditionError(f"OrderItem {order_item_id} is not a production item")
        order = order_item.order
        _require_workable_order(order)
        if order_item.status == FINAL_STATUS:
            raise PreconditionError(f"OrderItem {order_item_id} has already completed production")

        if get_open_log(order_item_id) is not None:
            raise ConflictError(
                f"Work already in progress for OrderItem {order_item_id}",
                suggestions=["Complete the current station before starting another"],
            )

        active = get_active_work(user_id)
        if active is not None:
            raise ConflictError(
                f"User {user_id} already has an active task on OrderItem {active.order_item_id}",
                suggestions=["Complete the active task first"],
            )

        stage = stage_for_station(station)
        now = utcnow()

        log = ItemProcessingLog(
            order_item_id=order_item.id,
            station_id=station.id,
            user_id=user.id,
            start_time=now,
        )
        db.session.add(log)

        previous_status = order_item.status
        if stage_index(stage) > stage_index(previous_status):
            order_item.status = stage

        if order.status == "APPROVED":
            order.status = "ORDER_PROCESSING"

        db.session.flush()

        append_audit_log(
            action="production.start_work",
            entity_name="OrderItem",
            entity_id=order_item.id,
            user_id=user.id,
            old_value={"status": previous_status},
            new_value={"status": order_item.status, "station": station.name, "logId": log.id},
            occurred_at=now,
        )

        db.session.commit()
    except IntegrityError:
        # Open-log index fired: a concurrent scan won the race.
        db.session.rollback()
        raise ConflictError(f"Work already in progress for OrderItem {order_item_id}")
    except Exception:
        db.session.rollback()
        raise

    logger.info("Work started on order item %s at station %s by user %s", order_item_id, station_id, user_id)
    return log


def complete_work(*, order_item_id: int, user_id: Optional[int] = None, notes: Optional[str] = None) -> WorkCompletion:
    """
    Close the open log for an order item and advance it one stage.

    Raises:
        NotFoundError: order item missing
        PreconditionError: order not workable, or no open log
    """
    try:
        order_item = _load_order_item_for_update(order_item_id)
        order = order_item.order
        _require_workable_order(order)

        log = get_open_log(order_item_id)
        if log is None:
            raise PreconditionError(f"No work in progress for OrderItem {order_item_id}")

        end = utcnow()
        duration, clamped = compute_duration_seconds(log.start_time, end)
        if clamped:
            logger.warning(
                "Clamped non-positive duration for processing log %s (start=%s end=%s)",
                log.id, log.start_time, end,
            )

        log.end_time = end
        log.duration_in_seconds = duration
        if notes:
            log.notes = notes

        previous_status = order_item.status
        order_item.status = next_status(previous_status)
        is_final = order_item.status == FINAL_STATUS

        db.session.flush()

        append_audit_log(
            action="production.complete_work",
            entity_name="OrderItem",
            entity_id=order_item.id,
            user_id=user_id or log.user_id,
            old_value={"status": previous_status},
            new_value={"status": order_item.status, "logId": log.id, "durationInSeconds": duration},
            occurred_at=end,
        )

        if is_final:
            _roll_up_order_ready(order, actor_id=user_id or log.user_id)

        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    return WorkCompletion(
        order_item=order_item,
        processing_log=log,
        duration_in_seconds=duration,
        next_status=order_item.status,
        is_final_step=is_final,
        duration_clamped=clamped,
    )


def set_status(
    *,
    order_item_id: int,
    new_status: str,
    order_id: int,
    actor_id: Optional[int] = None,
    override: bool = False,
) -> OrderItem:
    """
    Manual status change.

    The order context is checked first: an item id from one order can never be
    used to change another order's item. Without override only the next stage
    is accepted; with override any defined stage is.
    """
    validate_status(new_status)

    try:
        order_item = require_belongs_to_order(order_item_id, order_id)
        order_item = _load_order_item_for_update(order_item.id)

        if not order_item.is_production:
            raise PreconditionError(f"OrderItem {order_item_id} is not a production item")

        previous_status = order_item.status
        if not can_transition(previous_status, new_status, override=override):
            raise PreconditionError(
                f"Cannot move OrderItem {order_item_id} from {previous_status} to {new_status}",
                suggestions=[f"Next allowed status is {next_status(previous_status)}"],
            )

        order_item.status = new_status
        db.session.flush()

        append_audit_log(
            action="production.override_status" if override else "production.set_status",
            entity_name="OrderItem",
            entity_id=order_item.id,
            user_id=actor_id,
            old_value={"status": previous_status},
            new_value={"status": new_status},
        )

        if new_status == FINAL_STATUS:
            _roll_up_order_ready(order_item.order, actor_id=actor_id)

        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    if override:
        logger.info("Status override on order item %s: %s -> %s", order_item_id, previous_status, new_status)
    return order_item


def repair_durations() -> list[int]:
    """
    Rewrite closed logs whose stored duration breaks the >= 1 second rule.

    A bad row gets duration 1 and end_time = start_time + 1s when the end is
    not after the start. Returns the repaired log ids.
    """
    bad_logs = (
        db.session.query(ItemProcessingLog)
        .filter(
            ItemProcessingLog.end_time.isnot(None),
            db.or_(
                ItemProcessingLog.duration_in_seconds.is_(None),
                ItemProcessingLog.duration_in_seconds < MIN_DURATION_SECONDS,
                ItemProcessingLog.end_time <= ItemProcessingLog.start_time,
            ),
        )
        .order_by(ItemProcessingLog.id)
        .all()
    )

    repaired = []
    for log in bad_logs:
        duration, clamped = compute_duration_seconds(log.start_time, log.end_time)
        if clamped:
            log.end_time = log.start_time + timedelta(seconds=MIN_DURATION_SECONDS)
        old = log.duration_in_seconds
        log.duration_in_seconds = duration
        append_audit_log(
            action="production.repair_duration",
            entity_name="ItemProcessingLog",
            entity_id=log.id,
            old_value={"durationInSeconds": old},
            new_value={"durationInSeconds": duration},
        )
        repaired.append(log.id)

    if repaired:
        logger.warning("Repaired %d processing log duration(s)", len(repaired))
    db.session.commit()
    return repaired
