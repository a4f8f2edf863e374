from .transactions import Transaction

from .recurrences import (
    RecurringBase,
    RecurringCreate,
    RecurringUpdate,
    Recurring,
    RecurringToggle,
    CreateNowResult,
    ProcessRecurringResult,
    DueSummary,
)
