from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, File, Form, UploadFile, status
from fastapi.responses import Response
from sqlalchemy.orm import Session

from spendtrail.api.deps import get_current_user, get_orchestrator, get_storage
from spendtrail.core.db import db_session
from spendtrail.core.errors import ExtractionFailure, NotFoundError
from spendtrail.core.logging import get_logger, log_event
from spendtrail.core.security import decode_blob_token
from spendtrail.core.storage import ObjectStorage, StorageError
from spendtrail.modules.expenses.schemas import ExpenseOut, ExpenseUpdateIn
from spendtrail.modules.expenses.service import apply_expense_edit, get_expense_for_receipt
from spendtrail.modules.identity.models import User
from spendtrail.modules.ingestion.service import IngestionOrchestrator
from spendtrail.modules.receipts.models import ProcessingState, Receipt
from spendtrail.modules.receipts.schemas import (
    ExtractIn,
    ExtractOut,
    ReceiptDetailOut,
    ReceiptEditOut,
    ReceiptOut,
    UploadOut,
)
from spendtrail.modules.receipts.service import (
    delete_receipt,
    get_receipt_by_storage_key,
    get_receipt_for_user,
    list_receipts_for_user,
)
from spendtrail.worker.tasks import extract_receipt_task

router = APIRouter(tags=["receipts"])
logger = get_logger(__name__)


def _receipt_out(receipt: Receipt) -> ReceiptOut:
    return ReceiptOut.model_validate(receipt, from_attributes=True)


def _expense_out(expense) -> ExpenseOut | None:
    if expense is None:
        return None
    return ExpenseOut.model_validate(expense, from_attributes=True)


@router.post("/receipts/upload", response_model=UploadOut)
def upload_receipt(
    file: UploadFile = File(...),
    source: str = Form("file"),
    expense_report_id: uuid.UUID | None = Form(None),
    auto_extract: bool = Form(False),
    session: Session = Depends(db_session),
    user: User = Depends(get_current_user),
    orchestrator: IngestionOrchestrator = Depends(get_orchestrator),
) -> UploadOut:
    body = file.file.read()
    log_event(
        logger,
        "upload.received",
        filename=file.filename or "upload.bin",
        content_type=file.content_type,
        byte_size=len(body),
        upload_source=source,
    )
    result = orchestrator.ingest_upload(
        session,
        user=user,
        body=body,
        content_type=file.content_type,
        filename=file.filename,
        upload_source=source,
        expense_report_id=expense_report_id,
    )
    if auto_extract:
        try:
            async_result = extract_receipt_task.delay(str(result.receipt.id), str(user.id))
        except ExtractionFailure:
            # Eager mode runs the task inline; the failure is already on the receipt row.
            log_event(logger, "celery.task.failed_inline", receipt_id=str(result.receipt.id))
        else:
            log_event(
                logger,
                "celery.task.enqueued",
                task_name="extract_receipt",
                celery_task_id=async_result.id,
                receipt_id=str(result.receipt.id),
            )
        session.refresh(result.receipt)
    return UploadOut(
        receipt=_receipt_out(result.receipt),
        artifact_path=result.receipt.storage_key,
        artifact_url=result.artifact_url,
    )


@router.post("/receipts/extract", response_model=ExtractOut)
def extract_receipt(
    payload: ExtractIn,
    session: Session = Depends(db_session),
    user: User = Depends(get_current_user),
    orchestrator: IngestionOrchestrator = Depends(get_orchestrator),
) -> ExtractOut:
    outcome = orchestrator.extract_receipt(
        session, receipt_id=payload.receipt_id, user=user, artifact_path=payload.artifact_path
    )
    return ExtractOut(extracted=outcome.extracted, expense=_expense_out(outcome.expense))


@router.get("/receipts", response_model=list[ReceiptDetailOut])
def list_receipts(
    session: Session = Depends(db_session),
    user: User = Depends(get_current_user),
    orchestrator: IngestionOrchestrator = Depends(get_orchestrator),
) -> list[ReceiptDetailOut]:
    return [
        ReceiptDetailOut(
            receipt=_receipt_out(r),
            expense=_expense_out(r.expense),
            artifact_url=orchestrator.signed_url(r),
        )
        for r in list_receipts_for_user(session, user=user)
    ]


@router.get("/receipts/{receipt_id}", response_model=ReceiptDetailOut)
def get_receipt(
    receipt_id: uuid.UUID,
    session: Session = Depends(db_session),
    user: User = Depends(get_current_user),
    orchestrator: IngestionOrchestrator = Depends(get_orchestrator),
) -> ReceiptDetailOut:
    receipt = get_receipt_for_user(session, receipt_id=receipt_id, user=user)
    if receipt.processing_state == ProcessingState.EXTRACTION_FAILED:
        expense = None
    else:
        expense = orchestrator.await_expense(session, receipt_id=receipt.id)
        session.refresh(receipt)
    return ReceiptDetailOut(
        receipt=_receipt_out(receipt),
        expense=_expense_out(expense),
        artifact_url=orchestrator.signed_url(receipt),
    )


@router.patch("/receipts/{receipt_id}", response_model=ReceiptEditOut)
def update_receipt(
    receipt_id: uuid.UUID,
    payload: ExpenseUpdateIn,
    session: Session = Depends(db_session),
    user: User = Depends(get_current_user),
) -> ReceiptEditOut:
    receipt = get_receipt_for_user(session, receipt_id=receipt_id, user=user)
    expense = get_expense_for_receipt(session, receipt_id=receipt.id)
    if expense is None:
        raise NotFoundError("Receipt has not been extracted yet")
    result = apply_expense_edit(
        session, expense_id=expense.id, user=user, changes=payload.changes()
    )
    return ReceiptEditOut(
        receipt=_receipt_out(receipt),
        expense=_expense_out(result.expense),
        changes_made=result.changes_made,
        audit_entry_id=result.audit_entry_id,
    )


@router.delete("/receipts/{receipt_id}", status_code=status.HTTP_204_NO_CONTENT)
def remove_receipt(
    receipt_id: uuid.UUID,
    session: Session = Depends(db_session),
    user: User = Depends(get_current_user),
    storage: ObjectStorage = Depends(get_storage),
) -> Response:
    delete_receipt(session, receipt_id=receipt_id, user=user, storage=storage)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/blobs/{token}")
def read_blob(
    token: str,
    session: Session = Depends(db_session),
    storage: ObjectStorage = Depends(get_storage),
) -> Response:
    key = decode_blob_token(token)
    if not key:
        raise NotFoundError("Link expired or invalid")
    try:
        body = storage.get(key=key)
    except StorageError as e:
        raise NotFoundError("Artifact not found") from e
    receipt = get_receipt_by_storage_key(session, key=key)
    media_type = receipt.content_type if receipt else "application/octet-stream"
    return Response(content=body, media_type=media_type)
