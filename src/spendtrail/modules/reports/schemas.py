from __future__ import annotations

import uuid
from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, Field

from spendtrail.modules.reports.models import ReportStatus


class ExpenseReportCreate(BaseModel):
    title: str = Field(min_length=1, max_length=200)


class ExpenseReportUpdate(BaseModel):
    title: str = Field(min_length=1, max_length=200)


class ExpenseReportOut(BaseModel):
    id: uuid.UUID
    user_id: uuid.UUID
    title: str
    status: ReportStatus
    total_amount: Decimal
    submitted_at: datetime | None
    created_at: datetime
    updated_at: datetime


class ExpenseReportDetailOut(ExpenseReportOut):
    receipt_ids: list[uuid.UUID] = Field(default_factory=list)
