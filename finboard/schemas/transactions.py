import datetime as dt
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel


class Transaction(BaseModel):
    id: int
    date: dt.date
    description: str
    amount: Decimal
    kind: str
    category: str
    payment_method: Optional[str] = None
    recurring_id: Optional[int] = None

    @classmethod
    def from_row(cls, row) -> "Transaction":
        rec = dict(row)
        return cls(
            id=rec["id"],
            date=rec["date"],
            description=rec["description"],
            amount=rec["amount"],
            kind=rec["type"],
            category=rec["category"],
            payment_method=rec["payment_method"],
            recurring_id=rec["recurring_id"],
        )
