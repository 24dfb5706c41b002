from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, status
from fastapi.responses import Response
from sqlalchemy.orm import Session

from spendtrail.api.deps import get_current_user, get_storage
from spendtrail.core.db import db_session
from spendtrail.core.storage import ObjectStorage
from spendtrail.modules.identity.models import User
from spendtrail.modules.reports.models import ExpenseReport, ReportStatus
from spendtrail.modules.reports.schemas import (
    ExpenseReportCreate,
    ExpenseReportDetailOut,
    ExpenseReportOut,
    ExpenseReportUpdate,
)
from spendtrail.modules.reports.service import (
    add_receipt,
    create_report,
    delete_report,
    get_report_for_user,
    list_reports_for_user,
    remove_receipt,
    submit_report,
    update_title,
)

router = APIRouter(tags=["expense-reports"])


def _detail(report: ExpenseReport) -> ExpenseReportDetailOut:
    out = ExpenseReportOut.model_validate(report, from_attributes=True)
    return ExpenseReportDetailOut(
        **out.model_dump(), receipt_ids=[r.id for r in report.receipts]
    )


@router.post("/expense-reports", response_model=ExpenseReportOut)
def create_report_endpoint(
    payload: ExpenseReportCreate,
    session: Session = Depends(db_session),
    user: User = Depends(get_current_user),
) -> ExpenseReportOut:
    report = create_report(session, user=user, title=payload.title)
    return ExpenseReportOut.model_validate(report, from_attributes=True)


@router.get("/expense-reports", response_model=list[ExpenseReportOut])
def list_reports_endpoint(
    status: ReportStatus | None = None,
    session: Session = Depends(db_session),
    user: User = Depends(get_current_user),
) -> list[ExpenseReportOut]:
    reports = list_reports_for_user(session, user=user, status=status)
    return [ExpenseReportOut.model_validate(r, from_attributes=True) for r in reports]


@router.get("/expense-reports/{report_id}", response_model=ExpenseReportDetailOut)
def get_report_endpoint(
    report_id: uuid.UUID,
    session: Session = Depends(db_session),
    user: User = Depends(get_current_user),
) -> ExpenseReportDetailOut:
    return _detail(get_report_for_user(session, report_id=report_id, user=user))


@router.patch("/expense-reports/{report_id}", response_model=ExpenseReportOut)
def update_report_endpoint(
    report_id: uuid.UUID,
    payload: ExpenseReportUpdate,
    session: Session = Depends(db_session),
    user: User = Depends(get_current_user),
) -> ExpenseReportOut:
    report = update_title(session, report_id=report_id, user=user, title=payload.title)
    return ExpenseReportOut.model_validate(report, from_attributes=True)


@router.delete("/expense-reports/{report_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_report_endpoint(
    report_id: uuid.UUID,
    session: Session = Depends(db_session),
    user: User = Depends(get_current_user),
    storage: ObjectStorage = Depends(get_storage),
) -> Response:
    delete_report(session, report_id=report_id, user=user, storage=storage)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post(
    "/expense-reports/{report_id}/receipts/{receipt_id}", response_model=ExpenseReportDetailOut
)
def add_receipt_endpoint(
    report_id: uuid.UUID,
    receipt_id: uuid.UUID,
    session: Session = Depends(db_session),
    user: User = Depends(get_current_user),
) -> ExpenseReportDetailOut:
    return _detail(add_receipt(session, report_id=report_id, receipt_id=receipt_id, user=user))


@router.delete(
    "/expense-reports/{report_id}/receipts/{receipt_id}", response_model=ExpenseReportDetailOut
)
def remove_receipt_endpoint(
    report_id: uuid.UUID,
    receipt_id: uuid.UUID,
    session: Session = Depends(db_session),
    user: User = Depends(get_current_user),
) -> ExpenseReportDetailOut:
    return _detail(
        remove_receipt(session, report_id=report_id, receipt_id=receipt_id, user=user)
    )


@router.post("/expense-reports/{report_id}/submit", response_model=ExpenseReportOut)
def submit_report_endpoint(
    report_id: uuid.UUID,
    session: Session = Depends(db_session),
    user: User = Depends(get_current_user),
) -> ExpenseReportOut:
    report = submit_report(session, report_id=report_id, user=user)
    return ExpenseReportOut.model_validate(report, from_attributes=True)
