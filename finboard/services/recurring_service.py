"""
Recurring-transaction workflows on top of the pure scheduling engine.

Every cursor move is a compare-and-swap on `next_due_date` committed in the
same SQLite transaction as the insert of the materialized transaction. When
another actor got there first the local result is rolled back and dropped;
it is never retried.
"""
from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass, field, replace
from datetime import date
from typing import Any, Dict, List, Mapping, Optional, Tuple

from .. import db
from ..errors import ConcurrentAdvanceConflict, RuleValidationError
from ..recurrence import (
    MaterializedTransaction,
    RecurrenceRule,
    advance_rule,
    due_status,
    format_date,
    materialize_due,
    recompute_next_due_date,
    validate_rule,
)
from .cache_service import cache_service, due_summary_key
from .recurring_store import RecurringRuleStore, TransactionSink

logger = logging.getLogger(__name__)

SCHEDULE_FIELDS = ("frequency", "interval_count", "day_of_week", "day_of_month", "start_date", "end_date")
# null for a flag in an edit means "leave as is"
FLAG_FIELDS = ("is_active", "auto_create")


@dataclass
class ProcessResult:
    processed_count: int = 0
    created_transaction_ids: List[int] = field(default_factory=list)
    conflicts: int = 0
    deactivated_rule_ids: List[int] = field(default_factory=list)


def _invalidate(owner_id: str) -> None:
    cache_service.invalidate_prefix(due_summary_key(owner_id))


def rule_fields(rule: RecurrenceRule) -> Dict[str, Any]:
    """Flat, editable view of a rule (the shape `validate_rule` accepts)."""
    return {
        "description": rule.description,
        "amount": rule.amount,
        "kind": rule.kind,
        "category": rule.category,
        "payment_method": rule.payment_method,
        "frequency": rule.frequency,
        "interval_count": rule.interval_count,
        "day_of_week": rule.day_of_week,
        "day_of_month": rule.day_of_month,
        "start_date": rule.start_date,
        "end_date": rule.end_date,
        "is_active": rule.is_active,
        "auto_create": rule.auto_create,
    }


def _commit_advance(
    conn: sqlite3.Connection,
    before: RecurrenceRule,
    after: RecurrenceRule,
    transaction: Optional[MaterializedTransaction],
) -> Optional[int]:
    """Persist one cursor move (and its transaction) atomically.

    Raises ConcurrentAdvanceConflict after rolling back if the stored cursor moved.
    """
    store = RecurringRuleStore(conn)
    sink = TransactionSink(conn)
    try:
        store.advance(
            before.id,
            before.next_due_date,
            after.next_due_date,
            after.last_created_date,
            after.is_active,
        )
        tx_id = sink.create(transaction) if transaction is not None else None
    except Exception:
        conn.rollback()
        raise
    conn.commit()
    return tx_id


def process_due(conn: sqlite3.Connection, owner_id: str, as_of: date) -> ProcessResult:
    """Materialize one occurrence of every auto-create rule due on or before `as_of`."""
    store = RecurringRuleStore(conn)
    due = [r for r in store.load_active_rules_due_by(owner_id, as_of) if r.auto_create]
    originals = {r.id: r for r in due}
    outcome = materialize_due(due, as_of)
    by_rule = {t.recurring_id: t for t in outcome.new_transactions}

    result = ProcessResult()
    for advanced in outcome.advanced_rules:
        transaction = by_rule.get(advanced.id)
        try:
            tx_id = _commit_advance(conn, originals[advanced.id], advanced, transaction)
        except ConcurrentAdvanceConflict as exc:
            result.conflicts += 1
            logger.info("Skipping rule %s: already processed by another actor (%s)", advanced.id, exc)
            continue
        if tx_id is not None:
            result.processed_count += 1
            result.created_transaction_ids.append(tx_id)
        if not advanced.is_active:
            result.deactivated_rule_ids.append(advanced.id)
            logger.info("Recurring rule %s reached its end date and was deactivated", advanced.id)

    if due:
        _invalidate(owner_id)
    logger.info(
        "process_due owner=%s as_of=%s processed=%s conflicts=%s",
        owner_id,
        format_date(as_of),
        result.processed_count,
        result.conflicts,
    )
    return result


def process_all_owners(as_of: date) -> ProcessResult:
    """Run `process_due` for every owner with due auto-create rules."""
    total = ProcessResult()
    conn = db.get_connection()
    try:
        for owner_id in RecurringRuleStore(conn).owners_with_due_rules(as_of):
            partial = process_due(conn, owner_id, as_of)
            total.processed_count += partial.processed_count
            total.created_transaction_ids.extend(partial.created_transaction_ids)
            total.conflicts += partial.conflicts
            total.deactivated_rule_ids.extend(partial.deactivated_rule_ids)
    finally:
        conn.close()
    return total


def create_now(conn: sqlite3.Connection, owner_id: str, rule_id: int) -> Tuple[Optional[int], RecurrenceRule]:
    """Materialize the rule's pending occurrence on demand.

    Works for manual (auto_create off) rules and ignores how far away the
    occurrence is. Returns (transaction id or None on conflict, rule as stored).
    """
    store = RecurringRuleStore(conn)
    rule = store.get(owner_id, rule_id)
    if rule.has_ended:
        raise RuleValidationError({"next_due_date": "This recurring transaction has ended"})
    transaction, advanced = advance_rule(rule)
    try:
        tx_id = _commit_advance(conn, rule, advanced, transaction)
    except ConcurrentAdvanceConflict as exc:
        logger.info("create_now for rule %s discarded: %s", rule_id, exc)
        tx_id = None
    _invalidate(owner_id)
    return tx_id, store.get(owner_id, rule_id)


def create_rule(conn: sqlite3.Connection, owner_id: str, data: Mapping[str, Any]) -> RecurrenceRule:
    rule = validate_rule(data, owner_id)
    created = RecurringRuleStore(conn).create(rule)
    conn.commit()
    _invalidate(owner_id)
    logger.info("Created recurring rule %s for %s, first due %s", created.id, owner_id, created.next_due_date)
    return created


def update_rule(conn: sqlite3.Connection, owner_id: str, rule_id: int, changes: Mapping[str, Any]) -> RecurrenceRule:
    """Apply a partial edit.

    Schedule edits recompute the cursor from `start_date`, skipping
    occurrences that were already materialized. Other edits keep it.
    """
    store = RecurringRuleStore(conn)
    existing = store.get(owner_id, rule_id)
    merged = rule_fields(existing)
    merged.update({k: v for k, v in changes.items() if not (k in FLAG_FIELDS and v is None)})
    candidate = validate_rule(merged, owner_id, rule_id)

    schedule_changed = any(
        getattr(candidate, name) != getattr(existing, name) for name in SCHEDULE_FIELDS
    )
    updated = replace(candidate, last_created_date=existing.last_created_date)
    if schedule_changed:
        next_due = recompute_next_due_date(updated)
        updated = replace(updated, next_due_date=next_due)
        if updated.has_ended:
            updated = replace(updated, is_active=False)
    else:
        updated = replace(updated, next_due_date=existing.next_due_date)
    if updated.is_active and updated.has_ended:
        raise RuleValidationError({"is_active": "This recurring transaction has ended"})

    saved = store.update(updated)
    conn.commit()
    _invalidate(owner_id)
    if schedule_changed:
        logger.info("Rescheduled recurring rule %s: next due %s", rule_id, saved.next_due_date)
    return saved


def toggle_active(conn: sqlite3.Connection, owner_id: str, rule_id: int, is_active: bool) -> RecurrenceRule:
    store = RecurringRuleStore(conn)
    rule = store.get(owner_id, rule_id)
    if is_active and rule.has_ended:
        raise RuleValidationError({"is_active": "This recurring transaction has ended"})
    saved = store.set_active(owner_id, rule_id, is_active)
    conn.commit()
    _invalidate(owner_id)
    return saved


def delete_rule(conn: sqlite3.Connection, owner_id: str, rule_id: int) -> None:
    RecurringRuleStore(conn).delete(owner_id, rule_id)
    conn.commit()
    _invalidate(owner_id)


def due_summary(conn: sqlite3.Connection, owner_id: str, as_of: date, ttl_seconds: int = 300) -> Dict[str, Any]:
    key = due_summary_key(owner_id, format_date(as_of))
    cached = cache_service.get(key)
    if cached is not None:
        return cached

    rules = RecurringRuleStore(conn).list_for_owner(owner_id, only_active=True)
    statuses = [due_status(r, as_of) for r in rules]
    summary = {
        "as_of": format_date(as_of),
        "active_count": len(rules),
        "due_count": statuses.count("due") + statuses.count("overdue"),
        "overdue_count": statuses.count("overdue"),
        "next_due_date": format_date(rules[0].next_due_date) if rules else None,
    }
    cache_service.set(key, summary, ttl_seconds=ttl_seconds)
    return summary
