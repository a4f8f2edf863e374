"""Exceptions raised by the recurrence engine and its storage boundary."""
from __future__ import annotations

from typing import Dict


class RuleValidationError(ValueError):
    """One or more submitted rule fields failed validation.

    ``errors`` maps every failing field to a human-readable message so a
    caller can render all form errors at once.
    """

    def __init__(self, errors: Dict[str, str]) -> None:
        self.errors = dict(errors)
        super().__init__("; ".join(f"{k}: {v}" for k, v in self.errors.items()))


class InvalidRuleError(ValueError):
    """A malformed rule reached the engine. This is a data bug, not user input."""


class ConcurrentAdvanceConflict(RuntimeError):
    """The stored cursor moved between read and write; another actor processed the rule."""

    def __init__(self, rule_id: int, expected_next_due_date: str) -> None:
        self.rule_id = rule_id
        self.expected_next_due_date = expected_next_due_date
        super().__init__(
            f"Recurring rule {rule_id} no longer due on {expected_next_due_date}"
        )


class RuleNotFound(LookupError):
    def __init__(self, rule_id: int) -> None:
        self.rule_id = rule_id
        super().__init__(f"Recurring rule {rule_id} not found")
