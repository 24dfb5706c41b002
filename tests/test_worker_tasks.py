from __future__ import annotations

from decimal import Decimal

from sqlalchemy import select

from spendtrail.modules.expenses.models import Expense
from spendtrail.worker.tasks import configure_worker, extract_receipt_task

from conftest import AMAZON_REPLY


def test_extract_receipt_task_persists_expense(
    session, make_user, orchestrator, fake_client, jpeg_bytes
):
    user = make_user()
    upload = orchestrator.ingest_upload(
        session, user=user, body=jpeg_bytes, content_type="image/jpeg"
    )
    fake_client.queue(AMAZON_REPLY)
    configure_worker(orchestrator)

    result = extract_receipt_task.apply(args=[str(upload.receipt.id), str(user.id)])

    assert result.successful()
    session.expire_all()
    expense = session.scalar(select(Expense).where(Expense.receipt_id == upload.receipt.id))
    assert expense is not None
    assert str(expense.id) == result.get()
    assert expense.amount == Decimal("97.41")
