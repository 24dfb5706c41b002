from __future__ import annotations

import uuid
from datetime import date, datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict


class ExpenseOut(BaseModel):
    id: uuid.UUID
    receipt_id: uuid.UUID
    vendor_name: str
    amount: Decimal
    currency: str
    expense_date: date
    description: str | None
    category_id: uuid.UUID | None
    department_id: uuid.UUID | None
    is_edited: bool
    extracted_data: dict
    created_at: datetime
    updated_at: datetime


class ExpenseUpdateIn(BaseModel):
    """Partial update; only fields the client sends are considered."""

    model_config = ConfigDict(extra="forbid")

    vendor_name: str | None = None
    amount: Decimal | None = None
    currency: str | None = None
    expense_date: date | None = None
    description: str | None = None
    category_id: uuid.UUID | None = None
    department_id: uuid.UUID | None = None

    def changes(self) -> dict:
        return self.model_dump(exclude_unset=True)


class ExpenseEditOut(BaseModel):
    expense: ExpenseOut
    changes_made: bool
    audit_entry_id: uuid.UUID | None = None
