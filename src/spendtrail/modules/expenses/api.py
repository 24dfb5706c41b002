from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from spendtrail.api.deps import get_current_user
from spendtrail.core.db import db_session
from spendtrail.modules.audit.models import AuditEntityType
from spendtrail.modules.audit.schemas import AuditLogEntryOut
from spendtrail.modules.audit.service import list_entries
from spendtrail.modules.expenses.schemas import ExpenseEditOut, ExpenseOut, ExpenseUpdateIn
from spendtrail.modules.expenses.service import apply_expense_edit, get_expense_for_user
from spendtrail.modules.identity.models import User

router = APIRouter(tags=["expenses"])


@router.patch("/expenses/{expense_id}", response_model=ExpenseEditOut)
def update_expense(
    expense_id: uuid.UUID,
    payload: ExpenseUpdateIn,
    session: Session = Depends(db_session),
    user: User = Depends(get_current_user),
) -> ExpenseEditOut:
    result = apply_expense_edit(
        session, expense_id=expense_id, user=user, changes=payload.changes()
    )
    return ExpenseEditOut(
        expense=ExpenseOut.model_validate(result.expense, from_attributes=True),
        changes_made=result.changes_made,
        audit_entry_id=result.audit_entry_id,
    )


@router.get("/expenses/{expense_id}/audit", response_model=list[AuditLogEntryOut])
def expense_audit_log(
    expense_id: uuid.UUID,
    session: Session = Depends(db_session),
    user: User = Depends(get_current_user),
) -> list[AuditLogEntryOut]:
    expense = get_expense_for_user(session, expense_id=expense_id, user=user)
    entries = list_entries(session, entity_type=AuditEntityType.EXPENSE, entity_id=expense.id)
    return [AuditLogEntryOut.model_validate(e, from_attributes=True) for e in entries]
