from datetime import date
from typing import List, Optional
import sqlite3

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from .. import schemas
from ..auth import current_user_id
from ..core import config
from ..db import get_db_conn
from ..errors import RuleValidationError
from ..services import recurring_service
from ..services.recurring_store import RecurringRuleStore

router = APIRouter(prefix="/api/recurring", tags=["recurring"])
system_router = APIRouter(prefix="/api/system", tags=["system"])


@router.get("", response_model=List[schemas.Recurring])
async def api_list_recurring(
    only_active: bool = False,
    db_conn: sqlite3.Connection = Depends(get_db_conn),
    user_id: str = Depends(current_user_id),
) -> List[schemas.Recurring]:
    """List the caller's recurring transactions, soonest due first."""
    today = date.today()
    rules = RecurringRuleStore(db_conn).list_for_owner(user_id, only_active=only_active)
    return [schemas.Recurring.from_rule(r, today) for r in rules]


@router.post("", response_model=schemas.Recurring, status_code=201)
async def api_create_recurring(
    payload: schemas.RecurringCreate,
    db_conn: sqlite3.Connection = Depends(get_db_conn),
    user_id: str = Depends(current_user_id),
) -> schemas.Recurring:
    """Create a recurring transaction; its first due date is computed from start_date."""
    rule = recurring_service.create_rule(db_conn, user_id, payload.model_dump(exclude_none=True))
    return schemas.Recurring.from_rule(rule, date.today())


@router.get("/due-summary", response_model=schemas.DueSummary)
async def api_due_summary(
    db_conn: sqlite3.Connection = Depends(get_db_conn),
    user_id: str = Depends(current_user_id),
) -> schemas.DueSummary:
    summary = recurring_service.due_summary(
        db_conn, user_id, date.today(), ttl_seconds=config.DUE_SUMMARY_TTL_SECONDS
    )
    return schemas.DueSummary(**summary)


@router.get("/{rec_id}", response_model=schemas.Recurring)
async def api_get_recurring(
    rec_id: int,
    db_conn: sqlite3.Connection = Depends(get_db_conn),
    user_id: str = Depends(current_user_id),
) -> schemas.Recurring:
    rule = RecurringRuleStore(db_conn).get(user_id, rec_id)
    return schemas.Recurring.from_rule(rule, date.today())


@router.patch("/{rec_id}", response_model=schemas.Recurring)
async def api_update_recurring(
    rec_id: int,
    update: schemas.RecurringUpdate,
    db_conn: sqlite3.Connection = Depends(get_db_conn),
    user_id: str = Depends(current_user_id),
) -> schemas.Recurring:
    """Edit a recurring transaction. Schedule edits recompute next_due_date."""
    rule = recurring_service.update_rule(db_conn, user_id, rec_id, update.model_dump(exclude_unset=True))
    return schemas.Recurring.from_rule(rule, date.today())


@router.delete("/{rec_id}")
async def api_delete_recurring(
    rec_id: int,
    db_conn: sqlite3.Connection = Depends(get_db_conn),
    user_id: str = Depends(current_user_id),
) -> JSONResponse:
    recurring_service.delete_rule(db_conn, user_id, rec_id)
    return JSONResponse(content={"deleted": True})


@router.post("/{rec_id}/toggle-active", response_model=schemas.Recurring)
async def api_toggle_recurring(
    rec_id: int,
    payload: schemas.RecurringToggle,
    db_conn: sqlite3.Connection = Depends(get_db_conn),
    user_id: str = Depends(current_user_id),
) -> schemas.Recurring:
    rule = recurring_service.toggle_active(db_conn, user_id, rec_id, payload.is_active)
    return schemas.Recurring.from_rule(rule, date.today())


@router.post("/{rec_id}/create-now", response_model=schemas.CreateNowResult)
async def api_create_now(
    rec_id: int,
    db_conn: sqlite3.Connection = Depends(get_db_conn),
    user_id: str = Depends(current_user_id),
) -> schemas.CreateNowResult:
    """Materialize the pending occurrence immediately and advance the schedule.

    A concurrent run that already took the occurrence is not an error:
    `created` is false and the returned rule shows the current cursor.
    """
    tx_id, rule = recurring_service.create_now(db_conn, user_id, rec_id)
    return schemas.CreateNowResult(
        created=tx_id is not None,
        transaction_id=tx_id,
        recurring=schemas.Recurring.from_rule(rule, date.today()),
    )


@system_router.post("/process-recurring", response_model=schemas.ProcessRecurringResult)
async def api_process_recurring(
    as_of: Optional[date] = None,
    db_conn: sqlite3.Connection = Depends(get_db_conn),
    user_id: str = Depends(current_user_id),
) -> schemas.ProcessRecurringResult:
    """Run recurrence materialization once, on demand, for the caller's rules.

    `as_of` may replay a past day but never run ahead of today.
    """
    today = date.today()
    if as_of is not None and as_of > today:
        raise RuleValidationError({"as_of": "Cannot process occurrences ahead of today"})
    result = recurring_service.process_due(db_conn, user_id, as_of or today)
    return schemas.ProcessRecurringResult(
        processed_count=result.processed_count,
        created_transaction_ids=result.created_transaction_ids,
        conflicts=result.conflicts,
        deactivated_rule_ids=result.deactivated_rule_ids,
    )
