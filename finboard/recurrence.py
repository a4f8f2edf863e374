# finboard/recurrence.py
"""
Scheduling logic for recurring transactions.

A recurring rule describes a transaction that repeats on a calendar
schedule. Each rule carries a cursor (`next_due_date` / `last_created_date`)
that advances by exactly one occurrence every time a transaction is
materialized from it. Rules that fell behind are caught up one occurrence
per processing call, never in bulk.

Nothing here touches the database or reads the wall clock: callers pass the
reference date in and persist whatever comes back.
"""
from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import date, datetime, timedelta
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple, Union

from dateutil.relativedelta import relativedelta

from .errors import InvalidRuleError, RuleValidationError

FREQUENCIES = ("daily", "weekly", "biweekly", "monthly", "quarterly", "yearly")
WEEKLY_FREQUENCIES = ("weekly", "biweekly")
MONTHLY_STEPS = {"monthly": 1, "quarterly": 3, "yearly": 12}
KINDS = ("income", "expense")
DAY_NAMES = ["Sunday", "Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday"]
DESCRIPTION_MAX_LENGTH = 255
MAX_AMOUNT = Decimal("999999999")

# --------- Helpers: dates ---------

def parse_date(ds: str) -> date:
    return datetime.strptime(ds, "%Y-%m-%d").date()


def format_date(d: date) -> str:
    return d.isoformat()


def sunday_weekday(d: date) -> int:
    """Weekday of `d` counted from Sunday = 0 to Saturday = 6."""
    return (d.weekday() + 1) % 7


def _as_date(value: Union[date, datetime]) -> date:
    if isinstance(value, datetime):
        return value.date()
    return value


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _check_interval(interval_count: Any) -> None:
    if not _is_int(interval_count) or interval_count < 1:
        raise InvalidRuleError(f"interval_count must be a positive integer, got {interval_count!r}")

# --------- Schedules ---------

@dataclass(frozen=True)
class DailySchedule:
    interval_count: int = 1

    def __post_init__(self) -> None:
        _check_interval(self.interval_count)

    @property
    def frequency(self) -> str:
        return "daily"


@dataclass(frozen=True)
class WeeklySchedule:
    day_of_week: int
    interval_count: int = 1
    biweekly: bool = False

    def __post_init__(self) -> None:
        _check_interval(self.interval_count)
        if not _is_int(self.day_of_week) or not 0 <= self.day_of_week <= 6:
            raise InvalidRuleError(f"day_of_week must be 0-6, got {self.day_of_week!r}")

    @property
    def frequency(self) -> str:
        return "biweekly" if self.biweekly else "weekly"

    @property
    def period_days(self) -> int:
        # biweekly is a two-week base that interval_count multiplies further
        return 7 * self.interval_count * (2 if self.biweekly else 1)


@dataclass(frozen=True)
class MonthlySchedule:
    day_of_month: int
    interval_count: int = 1
    frequency: str = "monthly"

    def __post_init__(self) -> None:
        _check_interval(self.interval_count)
        if self.frequency not in MONTHLY_STEPS:
            raise InvalidRuleError(f"Unrecognized month-based frequency {self.frequency!r}")
        if not _is_int(self.day_of_month) or not 1 <= self.day_of_month <= 31:
            raise InvalidRuleError(f"day_of_month must be 1-31, got {self.day_of_month!r}")

    @property
    def period_months(self) -> int:
        return MONTHLY_STEPS[self.frequency] * self.interval_count


Schedule = Union[DailySchedule, WeeklySchedule, MonthlySchedule]


def schedule_for(
    frequency: Optional[str],
    interval_count: Any = 1,
    day_of_week: Any = None,
    day_of_month: Any = None,
) -> Schedule:
    """Build the schedule variant for flat rule fields (e.g. a database row).

    Day selectors that do not apply to the frequency are ignored.
    """
    if frequency == "daily":
        return DailySchedule(interval_count)
    if frequency in WEEKLY_FREQUENCIES:
        if day_of_week is None:
            raise InvalidRuleError(f"{frequency} rule requires day_of_week")
        return WeeklySchedule(day_of_week, interval_count, biweekly=frequency == "biweekly")
    if frequency in MONTHLY_STEPS:
        if day_of_month is None:
            raise InvalidRuleError(f"{frequency} rule requires day_of_month")
        return MonthlySchedule(day_of_month, interval_count, frequency)
    raise InvalidRuleError(f"Unrecognized frequency {frequency!r}")

# --------- Records ---------

@dataclass(frozen=True)
class RecurrenceRule:
    id: Optional[int]
    owner_id: str
    description: str
    amount: Decimal
    kind: str
    category: str
    schedule: Schedule
    start_date: date
    next_due_date: date
    payment_method: Optional[str] = None
    end_date: Optional[date] = None
    last_created_date: Optional[date] = None
    is_active: bool = True
    auto_create: bool = True

    @property
    def frequency(self) -> str:
        return self.schedule.frequency

    @property
    def interval_count(self) -> int:
        return self.schedule.interval_count

    @property
    def day_of_week(self) -> Optional[int]:
        return getattr(self.schedule, "day_of_week", None)

    @property
    def day_of_month(self) -> Optional[int]:
        return getattr(self.schedule, "day_of_month", None)

    @property
    def has_ended(self) -> bool:
        return self.end_date is not None and self.next_due_date > self.end_date


@dataclass(frozen=True)
class MaterializedTransaction:
    owner_id: str
    date: date
    description: str
    amount: Decimal
    kind: str
    category: str
    payment_method: Optional[str]
    recurring_id: Optional[int]


@dataclass
class MaterializeResult:
    advanced_rules: List[RecurrenceRule] = field(default_factory=list)
    new_transactions: List[MaterializedTransaction] = field(default_factory=list)

# --------- Core ---------

def compute_next_occurrence(rule: RecurrenceRule, from_date: date, inclusive: bool = False) -> date:
    """Return the next occurrence of `rule` after `from_date`.

    With `inclusive=True` the reference date itself is returned when it
    already falls on the rule's day selector; this is how the first
    occurrence is found from the start date. Month-based schedules clamp
    the day to the target month's length (31 -> 30 in April, Feb 29 ->
    Feb 28 in common years) while remembering the requested day.
    """
    schedule = rule.schedule
    if isinstance(schedule, DailySchedule):
        if inclusive:
            return from_date
        return from_date + timedelta(days=schedule.interval_count)

    if isinstance(schedule, WeeklySchedule):
        offset = (schedule.day_of_week - sunday_weekday(from_date)) % 7
        if offset:
            # reference is off the selector: the sequence starts at the next matching weekday
            return from_date + timedelta(days=offset)
        if inclusive:
            return from_date
        return from_date + timedelta(days=schedule.period_days)

    if isinstance(schedule, MonthlySchedule):
        same_month = from_date + relativedelta(day=schedule.day_of_month)
        if inclusive and same_month >= from_date:
            return same_month
        return from_date + relativedelta(months=schedule.period_months, day=schedule.day_of_month)

    raise InvalidRuleError(f"Unsupported schedule {schedule!r}")


def first_occurrence(rule: RecurrenceRule) -> date:
    return compute_next_occurrence(rule, rule.start_date, inclusive=True)


def recompute_next_due_date(rule: RecurrenceRule) -> date:
    """Walk the schedule from `start_date` to the first occurrence not yet materialized."""
    due = first_occurrence(rule)
    if rule.last_created_date is not None:
        while due <= rule.last_created_date:
            due = compute_next_occurrence(rule, due)
    return due


def advance_rule(rule: RecurrenceRule) -> Tuple[MaterializedTransaction, RecurrenceRule]:
    """Materialize the rule's current `next_due_date` and move the cursor one occurrence."""
    if rule.next_due_date < rule.start_date:
        raise InvalidRuleError(
            f"Rule {rule.id} is due on {rule.next_due_date} before its start date {rule.start_date}"
        )
    transaction = MaterializedTransaction(
        owner_id=rule.owner_id,
        date=rule.next_due_date,
        description=rule.description,
        amount=rule.amount,
        kind=rule.kind,
        category=rule.category,
        payment_method=rule.payment_method,
        recurring_id=rule.id,
    )
    following = compute_next_occurrence(rule, rule.next_due_date)
    still_active = rule.is_active and not (rule.end_date is not None and following > rule.end_date)
    advanced = replace(
        rule,
        last_created_date=rule.next_due_date,
        next_due_date=following,
        is_active=still_active,
    )
    return transaction, advanced


def materialize_due(rules: Iterable[RecurrenceRule], as_of: Union[date, datetime]) -> MaterializeResult:
    """Produce one transaction for every active rule due on or before `as_of`.

    Each due rule advances by exactly one occurrence per call, however far
    behind it is. A rule whose following occurrence lands past its end date
    comes back inactive. Rules whose cursor already sits past the end date
    are returned inactive without a transaction.
    """
    cutoff = _as_date(as_of)
    result = MaterializeResult()
    for rule in rules:
        if not rule.is_active or rule.next_due_date > cutoff:
            continue
        if rule.has_ended:
            result.advanced_rules.append(replace(rule, is_active=False))
            continue
        transaction, advanced = advance_rule(rule)
        result.new_transactions.append(transaction)
        result.advanced_rules.append(advanced)
    return result

# --------- Validation ---------

def _coerce_date(value: Any) -> date:
    if isinstance(value, date):
        return _as_date(value)
    if isinstance(value, str):
        return parse_date(value.strip())
    raise ValueError(f"not a date: {value!r}")


def _coerce_int(value: Any) -> int:
    if _is_int(value):
        return value
    if isinstance(value, str) and value.strip().lstrip("-").isdigit():
        return int(value.strip())
    raise ValueError(f"not an integer: {value!r}")


def _coerce_text(value: Any) -> str:
    if value is None:
        return ""
    if not isinstance(value, str):
        raise ValueError(f"not text: {value!r}")
    return value.strip()


def _coerce_flag(value: Any) -> bool:
    # missing means the default (on)
    if value is None:
        return True
    if not isinstance(value, bool):
        raise ValueError(f"not a boolean: {value!r}")
    return value


def validate_rule(data: Mapping[str, Any], owner_id: str, rule_id: Optional[int] = None) -> RecurrenceRule:
    """Check submitted rule fields and build a rule positioned on its first occurrence.

    All failing fields are reported together through `RuleValidationError`.
    """
    errors: Dict[str, str] = {}

    description = ""
    try:
        description = _coerce_text(data.get("description"))
    except ValueError:
        errors["description"] = "Description must be text"
    else:
        if not description:
            errors["description"] = "Description is required"
        elif len(description) > DESCRIPTION_MAX_LENGTH:
            errors["description"] = f"Description must be at most {DESCRIPTION_MAX_LENGTH} characters"

    amount: Optional[Decimal] = None
    raw_amount = data.get("amount")
    try:
        amount = Decimal(str(raw_amount)) if raw_amount not in (None, "") else None
    except InvalidOperation:
        amount = None
    if amount is None or not amount.is_finite() or amount <= 0:
        errors["amount"] = "Amount must be greater than 0"
    elif amount > MAX_AMOUNT:
        errors["amount"] = "Amount is too large"

    kind = data.get("kind")
    if kind not in KINDS:
        errors["kind"] = "Type must be income or expense"

    category = ""
    try:
        category = _coerce_text(data.get("category"))
    except ValueError:
        errors["category"] = "Category must be text"
    else:
        if not category:
            errors["category"] = "Category is required"

    payment_method: Optional[str] = None
    try:
        payment_method = _coerce_text(data.get("payment_method")) or None
    except ValueError:
        errors["payment_method"] = "Payment method must be text"

    frequency = data.get("frequency")
    if frequency not in FREQUENCIES:
        errors["frequency"] = "Frequency is required" if frequency in (None, "") else "Invalid frequency"
        frequency = None

    interval_count = data.get("interval_count")
    if interval_count is None:
        interval_count = 1
    try:
        interval_count = _coerce_int(interval_count)
    except ValueError:
        interval_count = 0
    if interval_count < 1:
        errors["interval_count"] = "Interval must be at least 1"

    start_date: Optional[date] = None
    if data.get("start_date") in (None, ""):
        errors["start_date"] = "Start date is required"
    else:
        try:
            start_date = _coerce_date(data["start_date"])
        except ValueError:
            errors["start_date"] = "Invalid start date format"

    end_date: Optional[date] = None
    if data.get("end_date") not in (None, ""):
        try:
            end_date = _coerce_date(data["end_date"])
        except ValueError:
            errors["end_date"] = "Invalid end date format"
        else:
            if start_date is not None and end_date < start_date:
                errors["end_date"] = "End date must be after start date"

    day_of_week = data.get("day_of_week")
    if frequency in WEEKLY_FREQUENCIES:
        try:
            day_of_week = _coerce_int(day_of_week)
        except ValueError:
            day_of_week = None
        if day_of_week is None or not 0 <= day_of_week <= 6:
            errors["day_of_week"] = "Please select a day of the week"

    day_of_month = data.get("day_of_month")
    if frequency in MONTHLY_STEPS:
        try:
            day_of_month = _coerce_int(day_of_month)
        except ValueError:
            day_of_month = None
        if day_of_month is None or not 1 <= day_of_month <= 31:
            errors["day_of_month"] = "Day of month must be between 1 and 31"

    flags: Dict[str, bool] = {}
    for name in ("is_active", "auto_create"):
        try:
            flags[name] = _coerce_flag(data.get(name))
        except ValueError:
            errors[name] = "Must be true or false"

    if errors:
        raise RuleValidationError(errors)

    schedule = schedule_for(frequency, interval_count, day_of_week, day_of_month)
    rule = RecurrenceRule(
        id=rule_id,
        owner_id=owner_id,
        description=description,
        amount=amount,
        kind=kind,
        category=category,
        schedule=schedule,
        start_date=start_date,
        next_due_date=start_date,
        payment_method=payment_method,
        end_date=end_date,
        is_active=flags["is_active"],
        auto_create=flags["auto_create"],
    )
    rule = replace(rule, next_due_date=first_occurrence(rule))
    if rule.has_ended:
        raise RuleValidationError({"end_date": "No occurrence falls between the start and end dates"})
    return rule

# --------- Display helpers ---------

def ordinal(n: int) -> str:
    if n % 100 in (11, 12, 13):
        return f"{n}th"
    suffix = {1: "st", 2: "nd", 3: "rd"}.get(n % 10, "th")
    return f"{n}{suffix}"


def describe_schedule(rule: RecurrenceRule) -> str:
    """Human text for a rule's schedule, e.g. "Every 2 weeks on Monday"."""
    schedule = rule.schedule
    count = schedule.interval_count
    if isinstance(schedule, DailySchedule):
        return "Daily" if count == 1 else f"Every {count} days"
    if isinstance(schedule, WeeklySchedule):
        weeks = schedule.period_days // 7
        unit = "week" if weeks == 1 else f"{weeks} weeks"
        return f"Every {unit} on {DAY_NAMES[schedule.day_of_week]}"
    unit = {"monthly": "month", "quarterly": "quarter", "yearly": "year"}[schedule.frequency]
    every = f"Every {unit}" if count == 1 else f"Every {count} {unit}s"
    return f"{every} on the {ordinal(schedule.day_of_month)}"


def due_status(rule: RecurrenceRule, as_of: Union[date, datetime]) -> str:
    """One of "inactive", "overdue", "due" or "upcoming" relative to `as_of`."""
    if not rule.is_active:
        return "inactive"
    today = _as_date(as_of)
    if rule.next_due_date < today:
        return "overdue"
    if rule.next_due_date == today:
        return "due"
    return "upcoming"
