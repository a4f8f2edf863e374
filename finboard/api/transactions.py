from typing import List, Optional
import sqlite3

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import JSONResponse

from .. import schemas
from ..auth import current_user_id
from ..db import get_db_conn
from ..services.recurring_store import TransactionSink

router = APIRouter(prefix="/api/transactions", tags=["transactions"])


@router.get("", response_model=List[schemas.Transaction])
async def api_get_transactions(
    from_date: Optional[str] = None,
    to_date: Optional[str] = None,
    recurring_id: Optional[int] = None,
    db_conn: sqlite3.Connection = Depends(get_db_conn),
    user_id: str = Depends(current_user_id),
) -> List[schemas.Transaction]:
    """Get the caller's transactions with optional filtering."""
    rows = TransactionSink(db_conn).list_for_owner(
        user_id, from_date=from_date, to_date=to_date, recurring_id=recurring_id
    )
    return [schemas.Transaction.from_row(row) for row in rows]


@router.delete("/{tx_id}")
async def api_delete_transaction(
    tx_id: int,
    db_conn: sqlite3.Connection = Depends(get_db_conn),
    user_id: str = Depends(current_user_id),
) -> JSONResponse:
    deleted = TransactionSink(db_conn).delete(user_id, tx_id)
    db_conn.commit()
    if not deleted:
        raise HTTPException(status_code=404, detail="Transaction not found")
    return JSONResponse(content={"deleted": True})
