from __future__ import annotations

import uuid

from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from spendtrail.core.errors import AuthorizationError, ConflictError, NotFoundError
from spendtrail.core.logging import get_logger, log_event
from spendtrail.core.storage import ObjectStorage
from spendtrail.modules.audit.models import AuditAction, AuditEntityType
from spendtrail.modules.audit.service import append_entry
from spendtrail.modules.identity.models import User
from spendtrail.modules.receipts.models import Receipt, ReceiptStatus

logger = get_logger(__name__)


def get_receipt_for_user(session: Session, *, receipt_id: uuid.UUID, user: User) -> Receipt:
    receipt = session.scalar(select(Receipt).where(Receipt.id == receipt_id))
    if not receipt:
        raise NotFoundError("Receipt not found")
    if receipt.user_id != user.id and not user.is_elevated:
        raise AuthorizationError("Forbidden")
    return receipt


def list_receipts_for_user(session: Session, *, user: User) -> list[Receipt]:
    return list(
        session.scalars(
            select(Receipt)
            .where(Receipt.user_id == user.id)
            .options(selectinload(Receipt.expense))
            .order_by(Receipt.uploaded_at.desc())
        )
    )


def get_receipt_by_storage_key(session: Session, *, key: str) -> Receipt | None:
    return session.scalar(select(Receipt).where(Receipt.storage_key == key))


def delete_receipt(
    session: Session, *, receipt_id: uuid.UUID, user: User, storage: ObjectStorage
) -> None:
    receipt = get_receipt_for_user(session, receipt_id=receipt_id, user=user)
    if receipt.expense_report_id is not None:
        raise ConflictError("Remove the receipt from its expense report before deleting it")
    if receipt.status != ReceiptStatus.DRAFT:
        raise ConflictError("Only draft receipts can be deleted")

    key = receipt.storage_key
    before = {
        "storage_key": key,
        "content_type": receipt.content_type,
        "byte_size": receipt.byte_size,
    }
    expense = receipt.expense
    if expense is not None:
        before.update(
            vendor_name=expense.vendor_name,
            amount=expense.amount,
            currency=expense.currency,
            expense_date=expense.expense_date,
        )
        session.delete(expense)
    session.delete(receipt)
    append_entry(
        session,
        entity_type=AuditEntityType.RECEIPT,
        entity_id=receipt_id,
        action=AuditAction.DELETED,
        actor_user_id=user.id,
        before=before,
    )
    try:
        session.commit()
    except Exception:
        session.rollback()
        raise

    storage.delete(key=key)
    log_event(logger, "receipt.deleted", receipt_id=str(receipt_id), storage_key=key)
