from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from spendtrail.core.currencies import normalize_currency
from spendtrail.core.errors import AuthorizationError, ConflictError, NotFoundError, ValidationError
from spendtrail.core.logging import get_logger, log_event
from spendtrail.core.models import utcnow
from spendtrail.modules.audit.models import AuditAction, AuditEntityType
from spendtrail.modules.audit.service import append_entry
from spendtrail.modules.catalog.service import assert_category_exists, assert_department_exists
from spendtrail.modules.expenses.models import EDITABLE_FIELDS, Expense
from spendtrail.modules.extraction.schemas import MAX_AMOUNT
from spendtrail.modules.identity.models import User
from spendtrail.modules.receipts.models import Receipt, ReceiptStatus
from spendtrail.modules.reports.models import ReportStatus
from spendtrail.modules.reports.service import recompute_total

logger = get_logger(__name__)


@dataclass(frozen=True)
class EditResult:
    expense: Expense
    changes_made: bool
    audit_entry_id: uuid.UUID | None = None


def get_expense_for_user(session: Session, *, expense_id: uuid.UUID, user: User) -> Expense:
    expense = session.scalar(select(Expense).where(Expense.id == expense_id))
    if not expense:
        raise NotFoundError("Expense not found")
    if expense.receipt.user_id != user.id and not user.is_elevated:
        raise AuthorizationError("Forbidden")
    return expense


def get_expense_for_receipt(session: Session, *, receipt_id: uuid.UUID) -> Expense | None:
    return session.scalar(select(Expense).where(Expense.receipt_id == receipt_id))


def _normalize_change(session: Session, field: str, value: Any) -> Any:
    if field == "vendor_name":
        vendor = str(value or "").strip()
        if not vendor:
            raise ValidationError("Vendor is required")
        if len(vendor) > 200:
            raise ValidationError("Vendor must be at most 200 characters")
        return vendor

    if field == "amount":
        if value is None:
            raise ValidationError("Amount is required")
        try:
            amount = Decimal(str(value))
        except InvalidOperation as e:
            raise ValidationError("Amount must be a number") from e
        if not amount.is_finite():
            raise ValidationError("Amount must be a number")
        if amount < 0:
            raise ValidationError("Amount must not be negative")
        if amount > MAX_AMOUNT:
            raise ValidationError("Amount is out of range")
        return amount.quantize(Decimal("0.01"))

    if field == "currency":
        code = normalize_currency(value) if isinstance(value, str) else None
        if not code:
            raise ValidationError(f"Unsupported currency: {value!r}")
        return code

    if field == "expense_date":
        if value is None:
            raise ValidationError("Date is required")
        if isinstance(value, date):
            return value
        try:
            return date.fromisoformat(str(value))
        except ValueError as e:
            raise ValidationError("Date must be YYYY-MM-DD") from e

    if field == "description":
        if value is None or not str(value).strip():
            return None
        return str(value).strip()

    # category_id / department_id: nullable references into the catalog.
    if value is None:
        return None
    try:
        ref_id = value if isinstance(value, uuid.UUID) else uuid.UUID(str(value))
    except ValueError as e:
        raise ValidationError(f"Invalid {field}") from e
    if field == "category_id":
        assert_category_exists(session, category_id=ref_id)
    else:
        assert_department_exists(session, department_id=ref_id)
    return ref_id


def _assert_editable(expense: Expense) -> None:
    receipt: Receipt = expense.receipt
    if receipt.status != ReceiptStatus.DRAFT:
        raise ConflictError("Only draft receipts can be edited")
    report = receipt.expense_report
    if report is not None and report.status != ReportStatus.DRAFT:
        raise ConflictError("Receipts on a submitted expense report cannot be edited")


def apply_expense_edit(
    session: Session, *, expense_id: uuid.UUID, user: User, changes: dict[str, Any]
) -> EditResult:
    """
    Apply a partial edit to an expense and record it in the audit log.

    Only keys present in ``changes`` take part. Fields whose normalized value
    equals the stored one are dropped from the diff; when nothing is left the
    call writes nothing and returns ``changes_made=False``.
    """
    expense = get_expense_for_user(session, expense_id=expense_id, user=user)
    _assert_editable(expense)

    unknown = sorted(set(changes) - set(EDITABLE_FIELDS))
    if unknown:
        raise ValidationError(f"Fields not editable: {', '.join(unknown)}")

    before: dict[str, Any] = {}
    after: dict[str, Any] = {}
    for field in EDITABLE_FIELDS:
        if field not in changes:
            continue
        new_value = _normalize_change(session, field, changes[field])
        old_value = getattr(expense, field)
        if old_value == new_value:
            continue
        before[field] = old_value
        after[field] = new_value

    if not after:
        return EditResult(expense=expense, changes_made=False)

    for field, value in after.items():
        setattr(expense, field, value)
    expense.is_edited = True
    expense.updated_at = utcnow()

    entry = append_entry(
        session,
        entity_type=AuditEntityType.EXPENSE,
        entity_id=expense.id,
        action=AuditAction.EDITED,
        actor_user_id=user.id,
        before=before,
        after=after,
    )
    report_id = expense.receipt.expense_report_id
    if "amount" in after and report_id is not None:
        recompute_total(session, report_id=report_id)

    try:
        session.commit()
    except Exception:
        session.rollback()
        raise
    session.refresh(expense)

    log_event(
        logger,
        "expense.edited",
        expense_id=str(expense.id),
        fields=sorted(after),
        audit_entry_id=str(entry.id),
    )
    return EditResult(expense=expense, changes_made=True, audit_entry_id=entry.id)
