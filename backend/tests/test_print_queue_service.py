# Overview: Pytest coverage for the label print queue.

from datetime import timedelta

import pytest

from shopfloor.errors import NotFoundError, PreconditionError, ValidationError
from shopfloor.models import PrintQueueEntry
from shopfloor.services import order_service, print_queue_service
from shopfloor.services.print_queue_service import (
    OUTCOME_CREATED, OUTCOME_REQUEUED, OUTCOME_UNCHANGED,
    cleanup_printed, enqueue, get_next_batch, get_queue_status, mark_printed,
    remove_from_queue, set_printed, validate_batch_size,
)
from shopfloor.time_utils import utcnow


def queue_count(db_session, order_item_id=None):
    query = db_session.query(PrintQueueEntry)
    if order_item_id is not None:
        query = query.filter_by(order_item_id=order_item_id)
    return query.count()


class TestEnqueue:
    def test_enqueue_twice_keeps_one_entry(self, db_session, production_item, office_user):
        entry, outcome = enqueue(order_item_id=production_item.id, actor_id=office_user.id)
        again, second_outcome = enqueue(order_item_id=production_item.id, actor_id=office_user.id)

        assert outcome == OUTCOME_CREATED
        assert second_outcome == OUTCOME_UNCHANGED
        assert again.id == entry.id
        assert queue_count(db_session, production_item.id) == 1

    def test_printed_entry_is_requeued_not_duplicated(self, db_session, production_item, office_user):
        entry, _ = enqueue(order_item_id=production_item.id, actor_id=office_user.id)
        mark_printed(queue_item_ids=[entry.id], actor_id=office_user.id)

        requeued, outcome = enqueue(order_item_id=production_item.id, actor_id=office_user.id)

        assert outcome == OUTCOME_REQUEUED
        assert requeued.id == entry.id
        assert requeued.is_printed is False
        assert requeued.printed_at is None
        assert queue_count(db_session, production_item.id) == 1

    def test_non_production_item_rejected(self, db_session, make_order):
        order = make_order(status="APPROVED", lines=[{"is_production": False}])
        with pytest.raises(PreconditionError):
            enqueue(order_item_id=order.items[0].id)
        assert queue_count(db_session) == 0

    def test_missing_item_not_found(self, db_session):
        with pytest.raises(NotFoundError):
            enqueue(order_item_id=5150)


class TestApprovalPopulatesQueue:
    def test_approving_three_verified_items_queues_three(self, db_session, make_order, admin_user):
        order = make_order(lines=[{}, {}, {}, {"is_verified": False}, {"is_production": False}])

        result = order_service.approve_order(order_id=order.id, actor_id=admin_user.id)

        assert result["order"].status == "APPROVED"
        assert [o["outcome"] for o in result["printQueue"]] == [OUTCOME_CREATED] * 3
        assert queue_count(db_session) == 3

    def test_reapproval_does_not_duplicate(self, db_session, make_order, admin_user):
        order = make_order(lines=[{}, {}, {}])
        order_service.approve_order(order_id=order.id, actor_id=admin_user.id)

        result = order_service.approve_order(order_id=order.id, actor_id=admin_user.id)

        assert [o["outcome"] for o in result["printQueue"]] == [OUTCOME_UNCHANGED] * 3
        assert queue_count(db_session) == 3


class TestMarkPrinted:
    def test_partial_failure_does_not_block_batch(self, db_session, make_order, office_user):
        order = make_order(status="APPROVED", lines=[{}, {}, {}])
        entries = [enqueue(order_item_id=i.id)[0] for i in order.items]
        already = entries[2]
        mark_printed(queue_item_ids=[already.id])

        result = mark_printed(
            queue_item_ids=[entries[0].id, 999_001, entries[1].id, already.id, "abc"],
            actor_id=office_user.id,
        )

        assert sorted(e.id for e in result.printed) == sorted([entries[0].id, entries[1].id])
        kinds = {f["queueItemId"]: f["kind"] for f in result.failures}
        assert kinds == {999_001: "NOT_FOUND", already.id: "CONFLICT", "abc": "VALIDATION_ERROR"}

        for entry in entries[:2]:
            refreshed = db_session.get(PrintQueueEntry, entry.id)
            assert refreshed.is_printed is True
            assert refreshed.printed_by_user_id == office_user.id

        payload = result.to_dict()
        assert payload["printedCount"] == 2
        assert len(payload["failures"]) == 3

    def test_empty_list_rejected(self, db_session):
        with pytest.raises(ValidationError):
            mark_printed(queue_item_ids=[])

    def test_set_printed_toggles_back(self, db_session, production_item, office_user):
        entry, _ = enqueue(order_item_id=production_item.id)
        set_printed(queue_item_id=entry.id, is_printed=True, actor_id=office_user.id)
        entry = set_printed(queue_item_id=entry.id, is_printed=False, actor_id=office_user.id)
        assert entry.is_printed is False
        assert entry.printed_at is None


class TestBatchSize:
    def test_empty_batch_not_printable(self):
        check = validate_batch_size(0, standard_size=4)
        assert check.is_valid is False
        assert check.warning.startswith("No items available for printing")

    @pytest.mark.parametrize("count", [1, 2, 3])
    def test_small_batch_warns_but_is_valid(self, count):
        check = validate_batch_size(count, standard_size=4)
        assert check.is_valid is True
        assert check.warning == (
            f"Only {count} item(s) available. Standard batch size is 4 items. "
            f"Do you want to proceed with a smaller batch?"
        )

    @pytest.mark.parametrize("count", [4, 9])
    def test_full_batch_has_no_warning(self, count):
        check = validate_batch_size(count, standard_size=4)
        assert check.is_valid is True
        assert check.warning is None

    def test_configured_batch_size_is_used(self, app):
        with app.app_context():
            assert print_queue_service.batch_size() == 4


class TestQueueReads:
    def test_next_batch_is_oldest_first_and_bounded(self, db_session, make_order):
        order = make_order(status="APPROVED", lines=[{} for _ in range(5)])
        for order_item in order.items:
            enqueue(order_item_id=order_item.id)

        batch = get_next_batch()

        assert len(batch["items"]) == 4
        assert [i["orderItemId"] for i in batch["items"]] == [oi.id for oi in order.items[:4]]
        assert batch["validation"]["warning"] is None
        assert batch["items"][0]["orderId"] == order.id

    def test_status_counts(self, db_session, make_order):
        order = make_order(status="APPROVED", lines=[{}, {}])
        first, _ = enqueue(order_item_id=order.items[0].id)
        enqueue(order_item_id=order.items[1].id)
        mark_printed(queue_item_ids=[first.id])

        status = get_queue_status()

        assert status["pendingCount"] == 1
        assert status["printedCount"] == 1
        assert status["fullBatchesAvailable"] == 0
        assert status["validation"]["isValid"] is True

    def test_remove_reports_unknown_ids(self, db_session, production_item):
        entry, _ = enqueue(order_item_id=production_item.id)
        result = remove_from_queue(queue_item_ids=[entry.id, 777])
        assert result == {"removedCount": 1, "notFound": [777]}
        assert queue_count(db_session) == 0


class TestCleanup:
    def test_only_old_printed_entries_removed(self, db_session, make_order):
        order = make_order(status="APPROVED", lines=[{}, {}, {}])
        old, _ = enqueue(order_item_id=order.items[0].id)
        recent, _ = enqueue(order_item_id=order.items[1].id)
        pending, _ = enqueue(order_item_id=order.items[2].id)
        mark_printed(queue_item_ids=[old.id, recent.id])
        db_session.get(PrintQueueEntry, old.id).printed_at = utcnow() - timedelta(days=45)
        db_session.commit()

        assert cleanup_printed(older_than_days=30) == 1
        remaining = {e.id for e in db_session.query(PrintQueueEntry).all()}
        assert remaining == {recent.id, pending.id}

    def test_negative_retention_rejected(self, db_session):
        with pytest.raises(ValidationError):
            cleanup_printed(older_than_days=-1)
