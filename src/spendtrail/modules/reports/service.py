from __future__ import annotations

import uuid
from decimal import Decimal

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from spendtrail.core.errors import AuthorizationError, ConflictError, NotFoundError, ValidationError
from spendtrail.core.logging import get_logger, log_event
from spendtrail.core.models import utcnow
from spendtrail.core.storage import ObjectStorage
from spendtrail.modules.audit.models import AuditAction, AuditEntityType
from spendtrail.modules.audit.service import append_entry
from spendtrail.modules.expenses.models import Expense
from spendtrail.modules.identity.models import User
from spendtrail.modules.receipts.models import Receipt, ReceiptStatus
from spendtrail.modules.reports.models import ExpenseReport, ReportStatus

logger = get_logger(__name__)


def _audit(
    session: Session,
    *,
    report: ExpenseReport,
    action: AuditAction,
    user: User,
    before: dict | None = None,
    after: dict | None = None,
) -> None:
    append_entry(
        session,
        entity_type=AuditEntityType.EXPENSE_REPORT,
        entity_id=report.id,
        action=action,
        actor_user_id=user.id,
        before=before,
        after=after,
    )


def create_report(session: Session, *, user: User, title: str) -> ExpenseReport:
    title = (title or "").strip()
    if not title:
        raise ValidationError("Title is required")

    report = ExpenseReport(
        user_id=user.id, title=title, status=ReportStatus.DRAFT, total_amount=Decimal("0.00")
    )
    session.add(report)
    session.flush()
    _audit(session, report=report, action=AuditAction.CREATED, user=user, after={"title": title})
    session.commit()
    session.refresh(report)
    log_event(logger, "report.created", report_id=str(report.id))
    return report


def list_reports_for_user(
    session: Session, *, user: User, status: ReportStatus | None = None
) -> list[ExpenseReport]:
    stmt = select(ExpenseReport).where(ExpenseReport.user_id == user.id)
    if status is not None:
        stmt = stmt.where(ExpenseReport.status == status)
    return list(session.scalars(stmt.order_by(ExpenseReport.created_at.desc())))


def get_report_for_user(session: Session, *, report_id: uuid.UUID, user: User) -> ExpenseReport:
    report = session.scalar(select(ExpenseReport).where(ExpenseReport.id == report_id))
    if not report:
        raise NotFoundError("Expense report not found")
    if report.user_id != user.id and not user.is_elevated:
        raise AuthorizationError("Forbidden")
    return report


def get_draft_report_owned_by(
    session: Session, *, report_id: uuid.UUID, user: User
) -> ExpenseReport:
    """Report the user may change: must exist, be theirs and still be a draft."""
    report = session.scalar(select(ExpenseReport).where(ExpenseReport.id == report_id))
    if not report:
        raise NotFoundError("Expense report not found")
    if report.user_id != user.id:
        raise AuthorizationError("Forbidden")
    if report.status != ReportStatus.DRAFT:
        raise ConflictError("Only draft expense reports can be changed")
    return report


def recompute_total(session: Session, *, report_id: uuid.UUID) -> Decimal:
    """Set ``total_amount`` to the sum of linked expense amounts; caller commits."""
    session.flush()
    total = session.scalar(
        select(func.coalesce(func.sum(Expense.amount), 0))
        .join(Receipt, Receipt.id == Expense.receipt_id)
        .where(Receipt.expense_report_id == report_id)
    )
    total = Decimal(str(total or 0)).quantize(Decimal("0.01"))
    report = session.get(ExpenseReport, report_id)
    if report is not None:
        report.total_amount = total
    return total


def update_title(
    session: Session, *, report_id: uuid.UUID, user: User, title: str
) -> ExpenseReport:
    report = get_draft_report_owned_by(session, report_id=report_id, user=user)
    title = (title or "").strip()
    if not title:
        raise ValidationError("Title is required")
    if title == report.title:
        return report

    before = {"title": report.title}
    report.title = title
    _audit(
        session, report=report, action=AuditAction.UPDATED, user=user, before=before,
        after={"title": title},
    )
    session.commit()
    session.refresh(report)
    return report


def delete_report(
    session: Session, *, report_id: uuid.UUID, user: User, storage: ObjectStorage
) -> None:
    """Delete a draft report together with its receipts, their expenses and blobs."""
    report = get_draft_report_owned_by(session, report_id=report_id, user=user)
    receipts = list(session.scalars(select(Receipt).where(Receipt.expense_report_id == report.id)))
    storage_keys = [r.storage_key for r in receipts]

    for receipt in receipts:
        if receipt.expense is not None:
            session.delete(receipt.expense)
        session.delete(receipt)
    _audit(
        session,
        report=report,
        action=AuditAction.DELETED,
        user=user,
        before={
            "title": report.title,
            "total_amount": report.total_amount,
            "receipt_count": len(receipts),
        },
    )
    session.delete(report)
    session.commit()

    for key in storage_keys:
        storage.delete(key=key)
    log_event(logger, "report.deleted", report_id=str(report_id), receipt_count=len(receipts))


def _get_draft_receipt_owned_by(
    session: Session, *, receipt_id: uuid.UUID, user: User
) -> Receipt:
    receipt = session.scalar(select(Receipt).where(Receipt.id == receipt_id))
    if not receipt:
        raise NotFoundError("Receipt not found")
    if receipt.user_id != user.id:
        raise AuthorizationError("Forbidden")
    if receipt.status != ReceiptStatus.DRAFT:
        raise ConflictError("Only draft receipts can be moved between reports")
    return receipt


def add_receipt(
    session: Session, *, report_id: uuid.UUID, receipt_id: uuid.UUID, user: User
) -> ExpenseReport:
    report = get_draft_report_owned_by(session, report_id=report_id, user=user)
    receipt = _get_draft_receipt_owned_by(session, receipt_id=receipt_id, user=user)
    if receipt.expense_report_id == report.id:
        return report
    if receipt.expense_report_id is not None:
        raise ConflictError("Receipt already belongs to another expense report")

    before_total = report.total_amount
    receipt.expense_report_id = report.id
    total = recompute_total(session, report_id=report.id)
    _audit(
        session,
        report=report,
        action=AuditAction.RECEIPT_ADDED,
        user=user,
        before={"total_amount": before_total},
        after={"receipt_id": receipt.id, "total_amount": total},
    )
    session.commit()
    session.refresh(report)
    return report


def remove_receipt(
    session: Session, *, report_id: uuid.UUID, receipt_id: uuid.UUID, user: User
) -> ExpenseReport:
    report = get_draft_report_owned_by(session, report_id=report_id, user=user)
    receipt = _get_draft_receipt_owned_by(session, receipt_id=receipt_id, user=user)
    if receipt.expense_report_id != report.id:
        raise NotFoundError("Receipt is not part of this expense report")

    before_total = report.total_amount
    receipt.expense_report_id = None
    total = recompute_total(session, report_id=report.id)
    _audit(
        session,
        report=report,
        action=AuditAction.RECEIPT_REMOVED,
        user=user,
        before={"receipt_id": receipt.id, "total_amount": before_total},
        after={"total_amount": total},
    )
    session.commit()
    session.refresh(report)
    return report


def submit_report(session: Session, *, report_id: uuid.UUID, user: User) -> ExpenseReport:
    report = get_draft_report_owned_by(session, report_id=report_id, user=user)
    receipts = list(session.scalars(select(Receipt).where(Receipt.expense_report_id == report.id)))
    if not receipts:
        raise ValidationError("Cannot submit an expense report without receipts")

    recompute_total(session, report_id=report.id)
    report.status = ReportStatus.SUBMITTED
    report.submitted_at = utcnow()
    for receipt in receipts:
        receipt.status = ReceiptStatus.SUBMITTED
    _audit(
        session,
        report=report,
        action=AuditAction.SUBMITTED,
        user=user,
        before={"status": ReportStatus.DRAFT},
        after={"status": ReportStatus.SUBMITTED, "total_amount": report.total_amount},
    )
    session.commit()
    session.refresh(report)
    log_event(
        logger,
        "report.submitted",
        report_id=str(report.id),
        receipt_count=len(receipts),
    )
    return report
