"""
SQLite-backed storage for recurring rules and the transactions they produce.

Both classes work on a connection handed in by the caller and never commit on
their own, so advancing a rule and inserting its transaction can be committed
(or rolled back) together.
"""
from __future__ import annotations

import logging
import sqlite3
from datetime import date
from decimal import Decimal
from typing import Any, Dict, List, Optional

from ..errors import ConcurrentAdvanceConflict, RuleNotFound
from ..recurrence import (
    MaterializedTransaction,
    RecurrenceRule,
    format_date,
    parse_date,
    schedule_for,
)

logger = logging.getLogger(__name__)


def _optional_date(value: Optional[str]) -> Optional[date]:
    return parse_date(value) if value else None


def _optional_str(value: Optional[date]) -> Optional[str]:
    return format_date(value) if value else None


def row_to_rule(row: sqlite3.Row) -> RecurrenceRule:
    rec = dict(row)
    return RecurrenceRule(
        id=rec["id"],
        owner_id=rec["user_id"],
        description=rec["description"],
        amount=Decimal(rec["amount"]),
        kind=rec["type"],
        category=rec["category"],
        schedule=schedule_for(
            rec["frequency"],
            rec["interval_count"],
            rec.get("day_of_week"),
            rec.get("day_of_month"),
        ),
        start_date=parse_date(rec["start_date"]),
        next_due_date=parse_date(rec["next_due_date"]),
        payment_method=rec.get("payment_method"),
        end_date=_optional_date(rec.get("end_date")),
        last_created_date=_optional_date(rec.get("last_created_date")),
        is_active=bool(rec["is_active"]),
        auto_create=bool(rec["auto_create"]),
    )


def _rule_columns(rule: RecurrenceRule) -> Dict[str, Any]:
    return {
        "description": rule.description,
        "amount": str(rule.amount),
        "type": rule.kind,
        "category": rule.category,
        "payment_method": rule.payment_method,
        "frequency": rule.frequency,
        "interval_count": rule.interval_count,
        "day_of_week": rule.day_of_week,
        "day_of_month": rule.day_of_month,
        "start_date": format_date(rule.start_date),
        "end_date": _optional_str(rule.end_date),
        "next_due_date": format_date(rule.next_due_date),
        "last_created_date": _optional_str(rule.last_created_date),
        "is_active": 1 if rule.is_active else 0,
        "auto_create": 1 if rule.auto_create else 0,
    }


class RecurringRuleStore:
    """Recurring rules, always scoped to their owner."""

    def __init__(self, conn: sqlite3.Connection) -> None:
        self._conn = conn

    def get(self, owner_id: str, rule_id: int) -> RecurrenceRule:
        row = self._conn.execute(
            "SELECT * FROM recurring_transactions WHERE id = ? AND user_id = ?",
            (rule_id, owner_id),
        ).fetchone()
        if not row:
            raise RuleNotFound(rule_id)
        return row_to_rule(row)

    def list_for_owner(self, owner_id: str, only_active: bool = False) -> List[RecurrenceRule]:
        query = "SELECT * FROM recurring_transactions WHERE user_id = ?"
        if only_active:
            query += " AND is_active = 1"
        query += " ORDER BY next_due_date, id"
        rows = self._conn.execute(query, (owner_id,)).fetchall()
        return [row_to_rule(r) for r in rows]

    def load_active_rules_due_by(self, owner_id: str, as_of: date) -> List[RecurrenceRule]:
        rows = self._conn.execute(
            "SELECT * FROM recurring_transactions "
            "WHERE user_id = ? AND is_active = 1 AND next_due_date <= ? "
            "ORDER BY next_due_date, id",
            (owner_id, format_date(as_of)),
        ).fetchall()
        return [row_to_rule(r) for r in rows]

    def owners_with_due_rules(self, as_of: date) -> List[str]:
        rows = self._conn.execute(
            "SELECT DISTINCT user_id FROM recurring_transactions "
            "WHERE is_active = 1 AND auto_create = 1 AND next_due_date <= ? ORDER BY user_id",
            (format_date(as_of),),
        ).fetchall()
        return [r[0] for r in rows]

    def create(self, rule: RecurrenceRule) -> RecurrenceRule:
        columns = _rule_columns(rule)
        columns["user_id"] = rule.owner_id
        names = ", ".join(columns.keys())
        placeholders = ", ".join("?" for _ in columns)
        cur = self._conn.execute(
            f"INSERT INTO recurring_transactions ({names}) VALUES ({placeholders})",
            list(columns.values()),
        )
        return self.get(rule.owner_id, cur.lastrowid)

    def update(self, rule: RecurrenceRule) -> RecurrenceRule:
        columns = _rule_columns(rule)
        set_clause = ", ".join(f"{k} = ?" for k in columns.keys())
        cur = self._conn.execute(
            f"UPDATE recurring_transactions SET {set_clause}, updated_at = CURRENT_TIMESTAMP "
            "WHERE id = ? AND user_id = ?",
            list(columns.values()) + [rule.id, rule.owner_id],
        )
        if cur.rowcount == 0:
            raise RuleNotFound(rule.id)
        return self.get(rule.owner_id, rule.id)

    def set_active(self, owner_id: str, rule_id: int, is_active: bool) -> RecurrenceRule:
        cur = self._conn.execute(
            "UPDATE recurring_transactions SET is_active = ?, updated_at = CURRENT_TIMESTAMP "
            "WHERE id = ? AND user_id = ?",
            (1 if is_active else 0, rule_id, owner_id),
        )
        if cur.rowcount == 0:
            raise RuleNotFound(rule_id)
        return self.get(owner_id, rule_id)

    def delete(self, owner_id: str, rule_id: int) -> None:
        cur = self._conn.execute(
            "DELETE FROM recurring_transactions WHERE id = ? AND user_id = ?",
            (rule_id, owner_id),
        )
        if cur.rowcount == 0:
            raise RuleNotFound(rule_id)

    def advance(
        self,
        rule_id: int,
        expected_next_due_date: date,
        new_next_due_date: date,
        new_last_created_date: Optional[date],
        new_is_active: bool,
    ) -> None:
        """Move a rule's cursor only if it still sits on `expected_next_due_date`."""
        expected = format_date(expected_next_due_date)
        cur = self._conn.execute(
            "UPDATE recurring_transactions "
            "SET next_due_date = ?, last_created_date = ?, is_active = ?, updated_at = CURRENT_TIMESTAMP "
            "WHERE id = ? AND next_due_date = ?",
            (
                format_date(new_next_due_date),
                _optional_str(new_last_created_date),
                1 if new_is_active else 0,
                rule_id,
                expected,
            ),
        )
        if cur.rowcount == 0:
            raise ConcurrentAdvanceConflict(rule_id, expected)


class TransactionSink:
    """Transactions table; materialized occurrences land here."""

    def __init__(self, conn: sqlite3.Connection) -> None:
        self._conn = conn

    def create(self, transaction: MaterializedTransaction) -> int:
        try:
            cur = self._conn.execute(
                "INSERT INTO transactions (user_id, date, description, amount, type, category, payment_method, recurring_id) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    transaction.owner_id,
                    format_date(transaction.date),
                    transaction.description,
                    str(transaction.amount),
                    transaction.kind,
                    transaction.category,
                    transaction.payment_method,
                    transaction.recurring_id,
                ),
            )
        except sqlite3.IntegrityError as exc:
            if transaction.recurring_id is None:
                raise
            # (recurring_id, date) already materialized by someone else
            raise ConcurrentAdvanceConflict(transaction.recurring_id, format_date(transaction.date)) from exc
        return cur.lastrowid

    def list_for_owner(
        self,
        owner_id: str,
        from_date: Optional[str] = None,
        to_date: Optional[str] = None,
        recurring_id: Optional[int] = None,
    ) -> List[sqlite3.Row]:
        query = "SELECT * FROM transactions WHERE user_id = ?"
        params: List[Any] = [owner_id]
        if from_date:
            query += " AND date >= ?"
            params.append(from_date)
        if to_date:
            query += " AND date <= ?"
            params.append(to_date)
        if recurring_id is not None:
            query += " AND recurring_id = ?"
            params.append(recurring_id)
        query += " ORDER BY date DESC, id DESC"
        return self._conn.execute(query, params).fetchall()

    def delete(self, owner_id: str, transaction_id: int) -> bool:
        cur = self._conn.execute(
            "DELETE FROM transactions WHERE id = ? AND user_id = ?",
            (transaction_id, owner_id),
        )
        return cur.rowcount > 0
