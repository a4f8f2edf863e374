from datetime import date
from decimal import Decimal

import pytest

from finboard.errors import ConcurrentAdvanceConflict, RuleNotFound, RuleValidationError
from finboard.recurrence import MaterializedTransaction
from finboard.services import recurring_service
from finboard.services.cron_service import CronService
from finboard.services.recurring_store import RecurringRuleStore, TransactionSink

OWNER = "user-1"


def rent(**overrides):
    data = {
        "description": "Rent",
        "amount": "1200.00",
        "kind": "expense",
        "category": "Housing",
        "frequency": "monthly",
        "day_of_month": 15,
        "start_date": "2025-01-15",
    }
    data.update(overrides)
    return data


def test_store_round_trips_rules(db_conn):
    created = recurring_service.create_rule(db_conn, OWNER, rent(payment_method="Checking", end_date="2025-12-31"))
    loaded = RecurringRuleStore(db_conn).get(OWNER, created.id)
    assert loaded == created
    assert loaded.amount == Decimal("1200.00")
    assert loaded.payment_method == "Checking"
    assert loaded.end_date == date(2025, 12, 31)


def test_rules_are_scoped_to_their_owner(db_conn):
    created = recurring_service.create_rule(db_conn, OWNER, rent())
    store = RecurringRuleStore(db_conn)
    with pytest.raises(RuleNotFound):
        store.get("someone-else", created.id)
    assert store.load_active_rules_due_by("someone-else", date(2025, 6, 1)) == []


def test_advance_is_conditional_on_the_expected_cursor(db_conn):
    created = recurring_service.create_rule(db_conn, OWNER, rent())
    store = RecurringRuleStore(db_conn)
    store.advance(created.id, date(2025, 1, 15), date(2025, 2, 15), date(2025, 1, 15), True)

    with pytest.raises(ConcurrentAdvanceConflict):
        store.advance(created.id, date(2025, 1, 15), date(2025, 2, 15), date(2025, 1, 15), True)


def test_sink_refuses_a_second_copy_of_the_same_occurrence(db_conn):
    created = recurring_service.create_rule(db_conn, OWNER, rent())
    sink = TransactionSink(db_conn)
    tx = MaterializedTransaction(
        owner_id=OWNER,
        date=date(2025, 1, 15),
        description="Rent",
        amount=Decimal("1200.00"),
        kind="expense",
        category="Housing",
        payment_method=None,
        recurring_id=created.id,
    )
    sink.create(tx)
    with pytest.raises(ConcurrentAdvanceConflict):
        sink.create(tx)


def test_process_due_materializes_and_advances(db_conn):
    created = recurring_service.create_rule(db_conn, OWNER, rent())

    result = recurring_service.process_due(db_conn, OWNER, date(2025, 1, 20))
    assert result.processed_count == 1
    assert result.conflicts == 0

    rule = RecurringRuleStore(db_conn).get(OWNER, created.id)
    assert rule.next_due_date == date(2025, 2, 15)
    assert rule.last_created_date == date(2025, 1, 15)

    rows = TransactionSink(db_conn).list_for_owner(OWNER)
    assert [(r["id"], r["date"], r["recurring_id"]) for r in rows] == [
        (result.created_transaction_ids[0], "2025-01-15", created.id)
    ]

    again = recurring_service.process_due(db_conn, OWNER, date(2025, 1, 20))
    assert again.processed_count == 0


def test_process_due_skips_manual_rules(db_conn):
    recurring_service.create_rule(db_conn, OWNER, rent(auto_create=False))
    result = recurring_service.process_due(db_conn, OWNER, date(2025, 3, 1))
    assert result.processed_count == 0
    assert TransactionSink(db_conn).list_for_owner(OWNER) == []


def test_stale_snapshot_is_discarded_not_duplicated(db_conn, monkeypatch):
    recurring_service.create_rule(db_conn, OWNER, rent())
    stale = RecurringRuleStore(db_conn).load_active_rules_due_by(OWNER, date(2025, 1, 20))

    first = recurring_service.process_due(db_conn, OWNER, date(2025, 1, 20))
    assert first.processed_count == 1

    # a second actor still holding the pre-advance snapshot
    monkeypatch.setattr(RecurringRuleStore, "load_active_rules_due_by", lambda self, owner_id, as_of: stale)
    second = recurring_service.process_due(db_conn, OWNER, date(2025, 1, 20))
    assert second.processed_count == 0
    assert second.conflicts == 1
    assert len(TransactionSink(db_conn).list_for_owner(OWNER)) == 1


def test_end_date_deactivates_after_final_occurrence(db_conn):
    created = recurring_service.create_rule(db_conn, OWNER, rent(end_date="2025-02-20"))
    recurring_service.process_due(db_conn, OWNER, date(2025, 1, 20))
    final = recurring_service.process_due(db_conn, OWNER, date(2025, 2, 16))

    assert final.processed_count == 1
    assert final.deactivated_rule_ids == [created.id]
    rule = RecurringRuleStore(db_conn).get(OWNER, created.id)
    assert rule.is_active is False
    assert rule.has_ended

    after = recurring_service.process_due(db_conn, OWNER, date(2025, 6, 1))
    assert after.processed_count == 0

    with pytest.raises(RuleValidationError) as excinfo:
        recurring_service.toggle_active(db_conn, OWNER, created.id, True)
    assert "is_active" in excinfo.value.errors


def test_create_now_ignores_auto_create_and_due_date(db_conn):
    created = recurring_service.create_rule(db_conn, OWNER, rent(auto_create=False, start_date="2030-01-01"))
    tx_id, rule = recurring_service.create_now(db_conn, OWNER, created.id)

    assert tx_id is not None
    assert rule.last_created_date == date(2030, 1, 15)
    assert rule.next_due_date == date(2030, 2, 15)


def test_update_keeps_cursor_unless_schedule_changes(db_conn):
    created = recurring_service.create_rule(db_conn, OWNER, rent())
    recurring_service.process_due(db_conn, OWNER, date(2025, 1, 20))

    renamed = recurring_service.update_rule(db_conn, OWNER, created.id, {"description": "Flat rent"})
    assert renamed.description == "Flat rent"
    assert renamed.next_due_date == date(2025, 2, 15)

    moved = recurring_service.update_rule(db_conn, OWNER, created.id, {"day_of_month": 10})
    # recomputed from start_date, skipping the occurrence already created on 2025-01-15
    assert moved.next_due_date == date(2025, 2, 10)
    assert moved.last_created_date == date(2025, 1, 15)


def test_update_reports_validation_errors(db_conn):
    created = recurring_service.create_rule(db_conn, OWNER, rent())
    with pytest.raises(RuleValidationError) as excinfo:
        recurring_service.update_rule(db_conn, OWNER, created.id, {"frequency": "weekly", "amount": "0"})
    assert set(excinfo.value.errors) == {"day_of_week", "amount"}


def test_due_summary_is_cached_until_a_change(db_conn):
    recurring_service.create_rule(db_conn, OWNER, rent())
    as_of = date(2025, 1, 20)

    summary = recurring_service.due_summary(db_conn, OWNER, as_of)
    assert summary["due_count"] == 1
    assert summary["overdue_count"] == 1

    recurring_service.create_rule(db_conn, OWNER, rent(description="Parking"))
    assert recurring_service.due_summary(db_conn, OWNER, as_of)["due_count"] == 2

    recurring_service.process_due(db_conn, OWNER, as_of)
    assert recurring_service.due_summary(db_conn, OWNER, as_of)["due_count"] == 0


def test_process_all_owners_and_cron_run(db_conn):
    recurring_service.create_rule(db_conn, "user-1", rent())
    recurring_service.create_rule(db_conn, "user-2", rent(description="Insurance"))
    recurring_service.create_rule(db_conn, "user-3", rent(auto_create=False))

    total = recurring_service.process_all_owners(date(2025, 1, 20))
    assert total.processed_count == 2

    assert CronService.run_once(date(2025, 2, 20)) == 2
    assert CronService.run_once(date(2025, 2, 20)) == 0


def test_cron_service_start_and_stop(temp_db_path, monkeypatch):
    monkeypatch.setattr(CronService, "run_once", staticmethod(lambda as_of=None: 0))
    cron = CronService(hour=4, minute=30)
    cron.start()
    try:
        assert cron.running
        cron.start()
    finally:
        cron.stop()
    assert not cron.running


def test_create_now_discards_result_when_cursor_moved(db_conn, monkeypatch):
    created = recurring_service.create_rule(db_conn, OWNER, rent())
    stale = RecurringRuleStore(db_conn).get(OWNER, created.id)
    recurring_service.process_due(db_conn, OWNER, date(2025, 1, 20))

    real_get = RecurringRuleStore.get
    calls = []

    def stale_first(self, owner_id, rule_id):
        calls.append(rule_id)
        return stale if len(calls) == 1 else real_get(self, owner_id, rule_id)

    monkeypatch.setattr(RecurringRuleStore, "get", stale_first)
    tx_id, rule = recurring_service.create_now(db_conn, OWNER, created.id)

    assert tx_id is None
    assert rule.next_due_date == date(2025, 2, 15)
    assert [r["date"] for r in TransactionSink(db_conn).list_for_owner(OWNER)] == ["2025-01-15"]


def test_update_with_null_flags_keeps_them(db_conn):
    created = recurring_service.create_rule(db_conn, OWNER, rent(auto_create=False))
    recurring_service.toggle_active(db_conn, OWNER, created.id, False)

    updated = recurring_service.update_rule(
        db_conn, OWNER, created.id, {"auto_create": None, "is_active": None, "description": "Rent 2"}
    )
    assert updated.description == "Rent 2"
    assert updated.auto_create is False
    assert updated.is_active is False
