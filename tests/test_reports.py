from __future__ import annotations

from decimal import Decimal

import pytest
from sqlalchemy import select

from spendtrail.core.errors import ConflictError, NotFoundError, ValidationError
from spendtrail.core.storage import StorageError
from spendtrail.modules.audit.models import AuditAction, AuditEntityType, AuditLogEntry
from spendtrail.modules.audit.service import list_entries
from spendtrail.modules.expenses.models import Expense
from spendtrail.modules.expenses.service import apply_expense_edit
from spendtrail.modules.receipts.models import Receipt, ReceiptStatus
from spendtrail.modules.receipts.service import delete_receipt
from spendtrail.modules.reports.models import ExpenseReport, ReportStatus
from spendtrail.modules.reports.service import (
    add_receipt,
    create_report,
    delete_report,
    list_reports_for_user,
    remove_receipt,
    submit_report,
    update_title,
)

from conftest import AMAZON_REPLY

TAXI_REPLY = """{"vendor": "Yellow Cab", "date": "2024-03-15", "total": 23.10,
"currency": "USD", "line_items": [], "confidence": 0.88}"""


def _extract(session, orchestrator, fake_client, user, body, reply):
    upload = orchestrator.ingest_upload(session, user=user, body=body, content_type="image/jpeg")
    fake_client.queue(reply)
    return orchestrator.extract_receipt(session, receipt_id=upload.receipt.id, user=user).expense


def _sum_of_linked_amounts(session, report_id) -> Decimal:
    amounts = session.scalars(
        select(Expense.amount)
        .join(Receipt, Receipt.id == Expense.receipt_id)
        .where(Receipt.expense_report_id == report_id)
    ).all()
    return sum(amounts, Decimal("0.00"))


def test_report_total_tracks_membership_and_edits(
    session, make_user, orchestrator, fake_client, jpeg_bytes
):
    user = make_user()
    amazon = _extract(session, orchestrator, fake_client, user, jpeg_bytes, AMAZON_REPLY)
    taxi = _extract(session, orchestrator, fake_client, user, jpeg_bytes, TAXI_REPLY)
    report = create_report(session, user=user, title="March trip")

    def _assert_total(expected: str) -> None:
        session.expire_all()
        fresh = session.get(ExpenseReport, report.id)
        assert fresh.total_amount == Decimal(expected)
        assert fresh.total_amount == _sum_of_linked_amounts(session, report.id)

    _assert_total("0.00")
    add_receipt(session, report_id=report.id, receipt_id=amazon.receipt_id, user=user)
    _assert_total("97.41")
    add_receipt(session, report_id=report.id, receipt_id=taxi.receipt_id, user=user)
    _assert_total("120.51")
    apply_expense_edit(session, expense_id=taxi.id, user=user, changes={"amount": "20.00"})
    _assert_total("117.41")
    remove_receipt(session, report_id=report.id, receipt_id=amazon.receipt_id, user=user)
    _assert_total("20.00")


def test_extraction_of_linked_receipt_updates_report_total(
    session, make_user, orchestrator, fake_client, jpeg_bytes
):
    user = make_user()
    report = create_report(session, user=user, title="Linked at upload")
    upload = orchestrator.ingest_upload(
        session, user=user, body=jpeg_bytes, content_type="image/jpeg", expense_report_id=report.id
    )
    fake_client.queue(AMAZON_REPLY)
    orchestrator.extract_receipt(session, receipt_id=upload.receipt.id, user=user)

    session.expire_all()
    assert session.get(ExpenseReport, report.id).total_amount == Decimal("97.41")


def test_deleting_a_linked_receipt_is_a_conflict(
    session, make_user, orchestrator, fake_client, storage, jpeg_bytes
):
    user = make_user()
    expense = _extract(session, orchestrator, fake_client, user, jpeg_bytes, AMAZON_REPLY)
    report = create_report(session, user=user, title="Keep me")
    add_receipt(session, report_id=report.id, receipt_id=expense.receipt_id, user=user)
    receipt = session.get(Receipt, expense.receipt_id)
    key = receipt.storage_key

    with pytest.raises(ConflictError):
        delete_receipt(session, receipt_id=receipt.id, user=user, storage=storage)

    session.expire_all()
    assert session.get(Receipt, receipt.id) is not None
    assert session.get(Expense, expense.id) is not None
    assert storage.get(key=key)
    assert session.get(ExpenseReport, report.id).total_amount == Decimal("97.41")
    receipt_entries = list_entries(
        session, entity_type=AuditEntityType.RECEIPT, entity_id=receipt.id
    )
    assert receipt_entries == []


def test_deleting_an_unlinked_receipt_removes_rows_and_blob(
    session, make_user, orchestrator, fake_client, storage, jpeg_bytes
):
    user = make_user()
    expense = _extract(session, orchestrator, fake_client, user, jpeg_bytes, AMAZON_REPLY)
    receipt = session.get(Receipt, expense.receipt_id)
    key = receipt.storage_key

    delete_receipt(session, receipt_id=receipt.id, user=user, storage=storage)

    session.expire_all()
    assert session.get(Receipt, receipt.id) is None
    assert session.get(Expense, expense.id) is None
    with pytest.raises(StorageError):
        storage.get(key=key)
    (entry,) = list_entries(session, entity_type=AuditEntityType.RECEIPT, entity_id=receipt.id)
    assert entry.action == AuditAction.DELETED
    assert entry.before["amount"] == "97.41"


def test_submit_requires_receipts_and_locks_the_report(
    session, make_user, orchestrator, fake_client, jpeg_bytes
):
    user = make_user()
    report = create_report(session, user=user, title="Empty")
    with pytest.raises(ValidationError):
        submit_report(session, report_id=report.id, user=user)

    expense = _extract(session, orchestrator, fake_client, user, jpeg_bytes, AMAZON_REPLY)
    add_receipt(session, report_id=report.id, receipt_id=expense.receipt_id, user=user)
    submitted = submit_report(session, report_id=report.id, user=user)

    assert submitted.status == ReportStatus.SUBMITTED
    assert submitted.submitted_at is not None
    assert submitted.total_amount == Decimal("97.41")
    assert session.get(Receipt, expense.receipt_id).status == ReceiptStatus.SUBMITTED

    with pytest.raises(ConflictError):
        update_title(session, report_id=report.id, user=user, title="Renamed")
    with pytest.raises(ConflictError):
        remove_receipt(session, report_id=report.id, receipt_id=expense.receipt_id, user=user)

    actions = [
        e.action
        for e in list_entries(
            session, entity_type=AuditEntityType.EXPENSE_REPORT, entity_id=report.id
        )
    ]
    assert actions == [AuditAction.CREATED, AuditAction.RECEIPT_ADDED, AuditAction.SUBMITTED]


def test_receipt_cannot_join_two_reports(
    session, make_user, orchestrator, fake_client, jpeg_bytes
):
    user = make_user()
    expense = _extract(session, orchestrator, fake_client, user, jpeg_bytes, AMAZON_REPLY)
    first = create_report(session, user=user, title="First")
    second = create_report(session, user=user, title="Second")
    add_receipt(session, report_id=first.id, receipt_id=expense.receipt_id, user=user)

    with pytest.raises(ConflictError):
        add_receipt(session, report_id=second.id, receipt_id=expense.receipt_id, user=user)
    with pytest.raises(NotFoundError):
        remove_receipt(session, report_id=second.id, receipt_id=expense.receipt_id, user=user)


def test_title_update_and_status_filter(session, make_user):
    user = make_user()
    report = create_report(session, user=user, title="Draft title")

    updated = update_title(session, report_id=report.id, user=user, title="  Final title ")
    assert updated.title == "Final title"
    (entry,) = [
        e
        for e in list_entries(
            session, entity_type=AuditEntityType.EXPENSE_REPORT, entity_id=report.id
        )
        if e.action == AuditAction.UPDATED
    ]
    assert entry.before == {"title": "Draft title"}
    assert entry.after == {"title": "Final title"}

    assert [r.id for r in list_reports_for_user(session, user=user, status=ReportStatus.DRAFT)] == [
        report.id
    ]
    assert list_reports_for_user(session, user=user, status=ReportStatus.SUBMITTED) == []


def test_deleting_a_draft_report_removes_its_receipts(
    session, make_user, orchestrator, fake_client, storage, jpeg_bytes
):
    user = make_user()
    expense = _extract(session, orchestrator, fake_client, user, jpeg_bytes, AMAZON_REPLY)
    report = create_report(session, user=user, title="Throwaway")
    add_receipt(session, report_id=report.id, receipt_id=expense.receipt_id, user=user)
    key = session.get(Receipt, expense.receipt_id).storage_key

    delete_report(session, report_id=report.id, user=user, storage=storage)

    session.expire_all()
    assert session.get(ExpenseReport, report.id) is None
    assert session.get(Receipt, expense.receipt_id) is None
    assert session.scalars(select(Expense)).all() == []
    with pytest.raises(StorageError):
        storage.get(key=key)
    deleted = session.scalars(
        select(AuditLogEntry).where(AuditLogEntry.action == AuditAction.DELETED)
    ).all()
    assert len(deleted) == 1
