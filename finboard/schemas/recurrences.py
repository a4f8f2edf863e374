from datetime import date
from decimal import Decimal
from typing import Any, List, Optional

from pydantic import BaseModel

from ..recurrence import RecurrenceRule, describe_schedule, due_status


class RecurringBase(BaseModel):
    # Loosely typed on purpose: field rules live in recurrence.validate_rule,
    # which reports every failing field together.
    description: Optional[Any] = None
    amount: Optional[Any] = None
    kind: Optional[Any] = None           # "income" | "expense"
    category: Optional[Any] = None
    payment_method: Optional[Any] = None
    frequency: Optional[Any] = None      # daily | weekly | biweekly | monthly | quarterly | yearly
    interval_count: Optional[Any] = None
    day_of_week: Optional[Any] = None    # 0=Sunday .. 6=Saturday
    day_of_month: Optional[Any] = None   # 1-31, clamped to short months
    start_date: Optional[Any] = None     # ISO date
    end_date: Optional[Any] = None
    auto_create: Optional[Any] = None


class RecurringCreate(RecurringBase):
    pass


class RecurringUpdate(RecurringBase):
    pass


class Recurring(BaseModel):
    id: int
    description: str
    amount: Decimal
    kind: str
    category: str
    payment_method: Optional[str] = None
    frequency: str
    interval_count: int
    day_of_week: Optional[int] = None
    day_of_month: Optional[int] = None
    start_date: date
    end_date: Optional[date] = None
    next_due_date: date
    last_created_date: Optional[date] = None
    is_active: bool
    auto_create: bool
    schedule_text: str
    due_status: str

    @classmethod
    def from_rule(cls, rule: RecurrenceRule, as_of: date) -> "Recurring":
        return cls(
            id=rule.id,
            description=rule.description,
            amount=rule.amount,
            kind=rule.kind,
            category=rule.category,
            payment_method=rule.payment_method,
            frequency=rule.frequency,
            interval_count=rule.interval_count,
            day_of_week=rule.day_of_week,
            day_of_month=rule.day_of_month,
            start_date=rule.start_date,
            end_date=rule.end_date,
            next_due_date=rule.next_due_date,
            last_created_date=rule.last_created_date,
            is_active=rule.is_active,
            auto_create=rule.auto_create,
            schedule_text=describe_schedule(rule),
            due_status=due_status(rule, as_of),
        )


class RecurringToggle(BaseModel):
    is_active: bool


class CreateNowResult(BaseModel):
    created: bool
    transaction_id: Optional[int] = None
    recurring: Recurring


class ProcessRecurringResult(BaseModel):
    processed_count: int
    created_transaction_ids: List[int]
    conflicts: int
    deactivated_rule_ids: List[int]


class DueSummary(BaseModel):
    as_of: date
    active_count: int
    due_count: int
    overdue_count: int
    next_due_date: Optional[date] = None
