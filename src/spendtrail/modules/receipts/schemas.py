from __future__ import annotations

import uuid
from datetime import datetime

from pydantic import BaseModel, Field

from spendtrail.modules.expenses.schemas import ExpenseOut
from spendtrail.modules.extraction.schemas import ExtractedReceipt
from spendtrail.modules.receipts.models import ProcessingState, ReceiptStatus, UploadSource


class ReceiptOut(BaseModel):
    id: uuid.UUID
    user_id: uuid.UUID
    expense_report_id: uuid.UUID | None
    artifact_path: str = Field(validation_alias="storage_key")
    content_type: str
    byte_size: int
    sha256: str
    status: ReceiptStatus
    upload_source: UploadSource
    processing_state: ProcessingState
    processing_error: str | None
    uploaded_at: datetime


class UploadOut(BaseModel):
    receipt: ReceiptOut
    artifact_path: str
    artifact_url: str


class ExtractIn(BaseModel):
    receipt_id: uuid.UUID
    artifact_path: str | None = None


class ExtractOut(BaseModel):
    extracted: ExtractedReceipt
    expense: ExpenseOut


class ReceiptDetailOut(BaseModel):
    receipt: ReceiptOut
    expense: ExpenseOut | None
    artifact_url: str


class ReceiptEditOut(BaseModel):
    receipt: ReceiptOut
    expense: ExpenseOut
    changes_made: bool
    audit_entry_id: uuid.UUID | None = None
