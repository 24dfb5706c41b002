from __future__ import annotations

import hashlib
import uuid
from decimal import Decimal

import pytest
from sqlalchemy import func, select

from spendtrail.core.errors import (
    AuthorizationError,
    ConflictError,
    ExtractionFailure,
    NotFoundError,
    PayloadTooLarge,
    TransientStoreError,
    ValidationError,
)
from spendtrail.core.storage import StorageError
from spendtrail.modules.audit.models import AuditAction, AuditEntityType
from spendtrail.modules.audit.service import list_entries
from spendtrail.modules.expenses.models import Expense
from spendtrail.modules.extraction.engine import ExtractionEngine
from spendtrail.modules.extraction.normalizer import FormatNormalizer
from spendtrail.modules.ingestion.service import IngestionOrchestrator
from spendtrail.modules.receipts.models import (
    ProcessingState,
    Receipt,
    ReceiptStatus,
    UploadSource,
)
from spendtrail.modules.reports.service import create_report, submit_report

from conftest import AMAZON_REPLY


class CountingStorage:
    def __init__(self, inner) -> None:
        self.inner = inner
        self.backend = inner.backend
        self.puts = 0

    def put(self, **kwargs):
        self.puts += 1
        return self.inner.put(**kwargs)

    def get(self, **kwargs):
        return self.inner.get(**kwargs)

    def delete(self, **kwargs):
        return self.inner.delete(**kwargs)

    def create_signed_url(self, **kwargs):
        return self.inner.create_signed_url(**kwargs)


def _stored_files(root) -> list:
    return [p for p in root.rglob("*") if p.is_file()] if root.exists() else []


def test_upload_round_trips_artifact(session, make_user, orchestrator, storage, jpeg_bytes):
    user = make_user()
    result = orchestrator.ingest_upload(
        session, user=user, body=jpeg_bytes, content_type="image/jpeg", upload_source="gallery"
    )
    receipt = result.receipt

    assert receipt.storage_key == f"{user.id}/{receipt.id}_original.jpg"
    assert receipt.status == ReceiptStatus.DRAFT
    assert receipt.processing_state == ProcessingState.UPLOADED
    assert receipt.upload_source == UploadSource.GALLERY
    assert receipt.byte_size == len(jpeg_bytes)
    assert receipt.sha256 == hashlib.sha256(jpeg_bytes).hexdigest()
    assert storage.get(key=receipt.storage_key) == jpeg_bytes
    assert result.artifact_url.startswith("http://testserver/api/blobs/")


def test_oversize_upload_is_rejected_before_any_storage_write(
    session, make_user, storage, storage_root, fake_client
):
    counting = CountingStorage(storage)
    orchestrator = IngestionOrchestrator(
        storage=counting,
        normalizer=FormatNormalizer(max_bytes=10 * 1024 * 1024),
        engine=ExtractionEngine(fake_client),
    )
    user = make_user()
    body = b"\xff\xd8\xff" + b"\0" * (15 * 1024 * 1024)

    with pytest.raises(PayloadTooLarge):
        orchestrator.ingest_upload(session, user=user, body=body, content_type="image/jpeg")

    assert counting.puts == 0
    assert _stored_files(storage_root) == []
    assert session.scalar(select(func.count()).select_from(Receipt)) == 0


def test_invalid_upload_source_is_rejected(session, make_user, orchestrator, jpeg_bytes):
    with pytest.raises(ValidationError):
        orchestrator.ingest_upload(
            session,
            user=make_user(),
            body=jpeg_bytes,
            content_type="image/jpeg",
            upload_source="scanner",
        )


def test_failed_row_commit_removes_stored_blob(
    session, make_user, orchestrator, storage_root, jpeg_bytes, monkeypatch
):
    user = make_user()

    def _boom() -> None:
        raise RuntimeError("database went away")

    monkeypatch.setattr(session, "commit", _boom)
    with pytest.raises(RuntimeError):
        orchestrator.ingest_upload(session, user=user, body=jpeg_bytes, content_type="image/jpeg")

    assert _stored_files(storage_root) == []


def test_failed_blob_cleanup_keeps_the_commit_error(
    session, make_user, orchestrator, storage, jpeg_bytes, monkeypatch
):
    user = make_user()

    def _boom() -> None:
        raise RuntimeError("database went away")

    def _delete_fails(*, key: str) -> None:
        raise StorageError(f"cannot delete {key}")

    monkeypatch.setattr(session, "commit", _boom)
    monkeypatch.setattr(storage, "delete", _delete_fails)
    with pytest.raises(RuntimeError, match="database went away"):
        orchestrator.ingest_upload(session, user=user, body=jpeg_bytes, content_type="image/jpeg")


def test_report_linkage_is_checked(session, make_user, orchestrator, jpeg_bytes):
    owner = make_user("owner@example.com")
    other = make_user("other@example.com")
    report = create_report(session, user=owner, title="March travel")

    with pytest.raises(AuthorizationError):
        orchestrator.ingest_upload(
            session,
            user=other,
            body=jpeg_bytes,
            content_type="image/jpeg",
            expense_report_id=report.id,
        )

    linked = orchestrator.ingest_upload(
        session,
        user=owner,
        body=jpeg_bytes,
        content_type="image/jpeg",
        expense_report_id=report.id,
    )
    assert linked.receipt.expense_report_id == report.id
    entries = list_entries(
        session, entity_type=AuditEntityType.EXPENSE_REPORT, entity_id=report.id
    )
    (entry,) = [e for e in entries if e.action == AuditAction.RECEIPT_ADDED]
    assert entry.actor_user_id == owner.id
    assert entry.after == {"receipt_id": str(linked.receipt.id), "total_amount": "0.00"}

    submit_report(session, report_id=report.id, user=owner)
    with pytest.raises(ConflictError):
        orchestrator.ingest_upload(
            session,
            user=owner,
            body=jpeg_bytes,
            content_type="image/jpeg",
            expense_report_id=report.id,
        )

    with pytest.raises(NotFoundError):
        orchestrator.ingest_upload(
            session,
            user=owner,
            body=jpeg_bytes,
            content_type="image/jpeg",
            expense_report_id=uuid.uuid4(),
        )


def test_extraction_persists_expense_once(
    session, make_user, orchestrator, fake_client, jpeg_bytes
):
    user = make_user()
    upload = orchestrator.ingest_upload(
        session, user=user, body=jpeg_bytes, content_type="image/jpeg"
    )
    fake_client.queue(AMAZON_REPLY)

    first = orchestrator.extract_receipt(session, receipt_id=upload.receipt.id, user=user)
    assert first.created
    assert first.expense.vendor_name == "Amazon"
    assert first.expense.amount == Decimal("97.41")
    assert first.expense.currency == "USD"
    assert first.expense.is_edited is False
    assert first.expense.extracted_data["total"] == "97.41"
    assert first.expense.extracted_data["line_items"][0]["description"] == "USB-C hub"

    second = orchestrator.extract_receipt(session, receipt_id=upload.receipt.id, user=user)
    assert not second.created
    assert second.expense.id == first.expense.id
    assert second.extracted.vendor == "Amazon"
    assert len(fake_client.calls) == 1

    session.expire_all()
    receipt = session.get(Receipt, upload.receipt.id)
    assert receipt.processing_state == ProcessingState.EXTRACTED


def test_extraction_rejects_foreign_artifact_path(
    session, make_user, orchestrator, jpeg_bytes
):
    user = make_user()
    upload = orchestrator.ingest_upload(
        session, user=user, body=jpeg_bytes, content_type="image/jpeg"
    )
    with pytest.raises(ValidationError):
        orchestrator.extract_receipt(
            session, receipt_id=upload.receipt.id, user=user, artifact_path="someone/else.jpg"
        )


def test_extraction_by_another_employee_is_forbidden(
    session, make_user, orchestrator, jpeg_bytes
):
    owner = make_user("owner@example.com")
    other = make_user("other@example.com")
    upload = orchestrator.ingest_upload(
        session, user=owner, body=jpeg_bytes, content_type="image/jpeg"
    )
    with pytest.raises(AuthorizationError):
        orchestrator.extract_receipt(session, receipt_id=upload.receipt.id, user=other)


def test_extraction_failure_marks_receipt_and_writes_no_expense(
    session, make_user, orchestrator, storage, jpeg_bytes
):
    user = make_user()
    upload = orchestrator.ingest_upload(
        session, user=user, body=jpeg_bytes, content_type="image/jpeg"
    )
    storage.delete(key=upload.receipt.storage_key)

    with pytest.raises(ExtractionFailure):
        orchestrator.extract_receipt(session, receipt_id=upload.receipt.id, user=user)

    session.expire_all()
    receipt = session.get(Receipt, upload.receipt.id)
    assert receipt.processing_state == ProcessingState.EXTRACTION_FAILED
    assert receipt.processing_error
    assert session.scalar(select(func.count()).select_from(Expense)) == 0


def test_sentinel_extraction_still_persists_expense(
    session, make_user, orchestrator, fake_client, jpeg_bytes
):
    user = make_user()
    upload = orchestrator.ingest_upload(
        session, user=user, body=jpeg_bytes, content_type="image/jpeg"
    )
    fake_client.queue("not json at all")

    outcome = orchestrator.extract_receipt(session, receipt_id=upload.receipt.id, user=user)

    assert outcome.extracted.is_sentinel
    assert outcome.expense.vendor_name == "Unknown Vendor"
    assert outcome.expense.amount == Decimal("0.00")


def test_url_transport_sends_signed_blob_url(
    session, make_user, storage, fake_client, jpeg_bytes
):
    orchestrator = IngestionOrchestrator(
        storage=storage,
        normalizer=FormatNormalizer(max_bytes=10 * 1024 * 1024),
        engine=ExtractionEngine(fake_client),
        image_transport="url",
    )
    user = make_user()
    upload = orchestrator.ingest_upload(
        session, user=user, body=jpeg_bytes, content_type="image/jpeg"
    )
    fake_client.queue(AMAZON_REPLY)
    orchestrator.extract_receipt(session, receipt_id=upload.receipt.id, user=user)

    (messages,) = fake_client.calls
    url = messages[0]["content"][1]["image_url"]["url"]
    assert url.startswith("http://testserver/api/blobs/")


def test_await_expense_gives_up_after_bounded_retries(
    session, make_user, orchestrator, sleeps, jpeg_bytes
):
    user = make_user()
    upload = orchestrator.ingest_upload(
        session, user=user, body=jpeg_bytes, content_type="image/jpeg"
    )

    with pytest.raises(TransientStoreError) as exc:
        orchestrator.await_expense(session, receipt_id=upload.receipt.id)

    assert exc.value.status_code == 202
    assert sleeps == [1.0, 1.0]


def test_await_expense_returns_without_sleeping_when_present(
    session, orchestrator, sleeps, extracted_receipt
):
    _, receipt, expense = extracted_receipt
    found = orchestrator.await_expense(session, receipt_id=receipt.id)
    assert found.id == expense.id
    assert sleeps == []
