"""
Receipt ingestion.

``IngestionOrchestrator`` owns the upload -> normalize -> store -> extract ->
persist sequence. Its collaborators are passed in once at process start; each
call receives the request's ``Session``.
"""

from __future__ import annotations

import hashlib
import time
import uuid
from collections.abc import Callable
from dataclasses import dataclass

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from spendtrail.core.config import Settings
from spendtrail.core.errors import (
    ExtractionFailure,
    TransientStoreError,
    ValidationError,
)
from spendtrail.core.logging import get_logger, log_event, log_exception, monotonic_ms
from spendtrail.core.storage import ObjectStorage
from spendtrail.modules.audit.models import AuditAction, AuditEntityType
from spendtrail.modules.audit.service import append_entry
from spendtrail.modules.expenses.models import Expense
from spendtrail.modules.extraction.ai import ChatCompletionsClient
from spendtrail.modules.extraction.engine import ArtifactRef, ExtractionEngine
from spendtrail.modules.extraction.normalizer import (
    PDF_MEDIA_TYPE,
    FormatNormalizer,
    resolve_media_type,
)
from spendtrail.modules.extraction.schemas import ExtractedReceipt
from spendtrail.modules.identity.models import User
from spendtrail.modules.receipts.models import (
    ProcessingState,
    Receipt,
    ReceiptStatus,
    UploadSource,
)
from spendtrail.modules.receipts.service import get_receipt_for_user
from spendtrail.modules.reports.service import get_draft_report_owned_by, recompute_total

logger = get_logger(__name__)


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 3
    delay_seconds: float = 1.0


@dataclass(frozen=True)
class UploadResult:
    receipt: Receipt
    artifact_url: str


@dataclass(frozen=True)
class ExtractionOutcome:
    expense: Expense
    extracted: ExtractedReceipt
    created: bool


def storage_key_for(*, owner_id: uuid.UUID, receipt_id: uuid.UUID, extension: str) -> str:
    return f"{owner_id}/{receipt_id}_original.{extension}"


def parse_upload_source(value: str | None) -> UploadSource:
    raw = (value or UploadSource.FILE.value).strip().lower()
    try:
        return UploadSource(raw)
    except ValueError as e:
        allowed = ", ".join(s.value for s in UploadSource)
        raise ValidationError(f"Invalid source {value!r}. Expected one of: {allowed}.") from e


class IngestionOrchestrator:
    def __init__(
        self,
        *,
        storage: ObjectStorage,
        normalizer: FormatNormalizer,
        engine: ExtractionEngine,
        retry_policy: RetryPolicy | None = None,
        signed_url_ttl_seconds: int = 3600,
        image_transport: str = "inline",
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.storage = storage
        self.normalizer = normalizer
        self.engine = engine
        self.retry_policy = retry_policy or RetryPolicy()
        self.signed_url_ttl_seconds = signed_url_ttl_seconds
        self.image_transport = image_transport
        self._sleep = sleep

    @classmethod
    def from_settings(
        cls, settings: Settings, *, storage: ObjectStorage, engine: ExtractionEngine
    ) -> IngestionOrchestrator:
        return cls(
            storage=storage,
            normalizer=FormatNormalizer(
                max_bytes=settings.max_upload_bytes,
                pdf_policy=settings.pdf_policy,
                render_scale=settings.pdf_render_scale,
            ),
            engine=engine,
            retry_policy=RetryPolicy(
                max_attempts=settings.read_retry_attempts,
                delay_seconds=settings.read_retry_delay_seconds,
            ),
            signed_url_ttl_seconds=settings.signed_url_ttl_seconds,
            image_transport=settings.receipt_ai_image_transport,
        )

    def signed_url(self, receipt: Receipt) -> str:
        return self.storage.create_signed_url(
            key=receipt.storage_key, ttl_seconds=self.signed_url_ttl_seconds
        )

    def ingest_upload(
        self,
        session: Session,
        *,
        user: User,
        body: bytes,
        content_type: str | None,
        filename: str | None = None,
        upload_source: str | None = None,
        expense_report_id: uuid.UUID | None = None,
    ) -> UploadResult:
        media_type = resolve_media_type(content_type, filename)
        # Size and type are checked before anything touches storage.
        self.normalizer.validate(body=body, media_type=media_type)
        source = parse_upload_source(upload_source)
        report = None
        if expense_report_id is not None:
            report = get_draft_report_owned_by(session, report_id=expense_report_id, user=user)

        artifact = self.normalizer.normalize(body=body, media_type=media_type)

        receipt_id = uuid.uuid4()
        key = storage_key_for(
            owner_id=user.id, receipt_id=receipt_id, extension=artifact.extension
        )
        stored = self.storage.put(key=key, body=artifact.body, content_type=artifact.media_type)

        receipt = Receipt(
            id=receipt_id,
            user_id=user.id,
            expense_report_id=expense_report_id,
            storage_key=stored.key,
            content_type=stored.content_type,
            byte_size=stored.byte_size,
            sha256=hashlib.sha256(artifact.body).hexdigest(),
            status=ReceiptStatus.DRAFT,
            upload_source=source,
            processing_state=ProcessingState.UPLOADED,
        )
        try:
            session.add(receipt)
            if report is not None:
                # A new receipt has no expense yet, so the report total is unchanged.
                append_entry(
                    session,
                    entity_type=AuditEntityType.EXPENSE_REPORT,
                    entity_id=report.id,
                    action=AuditAction.RECEIPT_ADDED,
                    actor_user_id=user.id,
                    before={"total_amount": report.total_amount},
                    after={"receipt_id": receipt.id, "total_amount": report.total_amount},
                )
            session.commit()
        except Exception:
            session.rollback()
            log_exception(logger, "ingestion.blob.rollback", storage_key=key)
            try:
                self.storage.delete(key=key)
            except Exception:
                log_exception(logger, "ingestion.blob.orphaned", storage_key=key)
            raise
        session.refresh(receipt)

        log_event(
            logger,
            "ingestion.upload.stored",
            receipt_id=str(receipt.id),
            storage_key=key,
            content_type=stored.content_type,
            byte_size=stored.byte_size,
            upload_source=source.value,
            converted=artifact.media_type != media_type,
        )
        return UploadResult(receipt=receipt, artifact_url=self.signed_url(receipt))

    def artifact_ref(self, receipt: Receipt) -> ArtifactRef:
        if receipt.content_type == PDF_MEDIA_TYPE:
            return ArtifactRef.pdf_bytes(self.storage.get(key=receipt.storage_key))
        if self.image_transport == "url":
            return ArtifactRef.image_url(self.signed_url(receipt), receipt.content_type)
        return ArtifactRef.image_bytes(
            self.storage.get(key=receipt.storage_key), receipt.content_type
        )

    def extract_receipt(
        self,
        session: Session,
        *,
        receipt_id: uuid.UUID,
        user: User,
        artifact_path: str | None = None,
    ) -> ExtractionOutcome:
        receipt = get_receipt_for_user(session, receipt_id=receipt_id, user=user)
        if artifact_path is not None and artifact_path != receipt.storage_key:
            raise ValidationError("artifact_path does not belong to this receipt")

        existing = session.scalar(select(Expense).where(Expense.receipt_id == receipt.id))
        if existing is not None:
            log_event(logger, "ingestion.extract.reused", receipt_id=str(receipt.id))
            return ExtractionOutcome(
                expense=existing,
                extracted=ExtractedReceipt.model_validate(existing.extracted_data),
                created=False,
            )

        receipt.processing_state = ProcessingState.EXTRACTING
        receipt.processing_error = None
        session.commit()

        start = time.monotonic()
        try:
            extracted = self.engine.extract(self.artifact_ref(receipt))
            expense = Expense(
                receipt_id=receipt.id,
                vendor_name=extracted.vendor,
                amount=extracted.total,
                currency=extracted.currency,
                expense_date=extracted.date,
                extracted_data=extracted.to_payload(),
                is_edited=False,
            )
            session.add(expense)
            receipt.processing_state = ProcessingState.EXTRACTED
            if receipt.expense_report_id is not None:
                recompute_total(session, report_id=receipt.expense_report_id)
            session.commit()
        except IntegrityError:
            # A concurrent run persisted the expense first.
            session.rollback()
            existing = session.scalar(select(Expense).where(Expense.receipt_id == receipt_id))
            if existing is None:
                raise
            return ExtractionOutcome(
                expense=existing,
                extracted=ExtractedReceipt.model_validate(existing.extracted_data),
                created=False,
            )
        except Exception as e:
            session.rollback()
            log_exception(
                logger,
                "ingestion.extract.failure",
                receipt_id=str(receipt_id),
                duration_ms=monotonic_ms(start),
            )
            self._mark_failed(session, receipt_id=receipt_id, error=str(e))
            raise ExtractionFailure("Failed to extract receipt data") from e

        session.refresh(expense)
        log_event(
            logger,
            "ingestion.extract.success",
            receipt_id=str(receipt.id),
            expense_id=str(expense.id),
            sentinel=extracted.is_sentinel,
            duration_ms=monotonic_ms(start),
        )
        return ExtractionOutcome(expense=expense, extracted=extracted, created=True)

    def _mark_failed(self, session: Session, *, receipt_id: uuid.UUID, error: str) -> None:
        receipt = session.get(Receipt, receipt_id)
        if receipt is None:
            return
        receipt.processing_state = ProcessingState.EXTRACTION_FAILED
        receipt.processing_error = error[:2000] or "Extraction failed"
        session.commit()

    def await_expense(self, session: Session, *, receipt_id: uuid.UUID) -> Expense:
        """Read the expense for a receipt, tolerating a short read-after-write lag."""
        attempts = max(1, self.retry_policy.max_attempts)
        for attempt in range(1, attempts + 1):
            session.expire_all()
            expense = session.scalar(select(Expense).where(Expense.receipt_id == receipt_id))
            if expense is not None:
                return expense
            if attempt < attempts:
                log_event(
                    logger,
                    "ingestion.expense.retry",
                    receipt_id=str(receipt_id),
                    attempt=attempt,
                    delay_s=self.retry_policy.delay_seconds,
                )
                self._sleep(self.retry_policy.delay_seconds)
        raise TransientStoreError("Extraction still in progress")


def build_orchestrator(settings: Settings, *, storage: ObjectStorage) -> IngestionOrchestrator:
    engine = ExtractionEngine(
        ChatCompletionsClient.from_settings(settings),
        max_chars=settings.receipt_ai_max_chars,
        min_text_chars=settings.pdf_min_text_chars,
    )
    return IngestionOrchestrator.from_settings(settings, storage=storage, engine=engine)
