from __future__ import annotations

import enum
import uuid
from datetime import datetime

from sqlalchemy import DateTime, Enum, ForeignKey, Integer, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from spendtrail.core.models import Base, Timestamped, UUIDPrimaryKey, utcnow


class ReceiptStatus(str, enum.Enum):
    DRAFT = "draft"
    SUBMITTED = "submitted"
    APPROVED = "approved"
    REJECTED = "rejected"


class UploadSource(str, enum.Enum):
    CAMERA = "camera"
    GALLERY = "gallery"
    FILE = "file"


class ProcessingState(str, enum.Enum):
    UPLOADING = "uploading"
    UPLOADED = "uploaded"
    EXTRACTING = "extracting"
    EXTRACTED = "extracted"
    EXTRACTION_FAILED = "extraction_failed"


class Receipt(UUIDPrimaryKey, Timestamped, Base):
    __tablename__ = "receipts_receipt"

    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("identity_user.id"), index=True
    )
    expense_report_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("reports_expense_report.id"), nullable=True, index=True
    )

    storage_key: Mapped[str] = mapped_column(String(1024), unique=True)
    content_type: Mapped[str] = mapped_column(String(100))
    byte_size: Mapped[int] = mapped_column(Integer)
    sha256: Mapped[str] = mapped_column(String(64), index=True)

    status: Mapped[ReceiptStatus] = mapped_column(
        Enum(ReceiptStatus, native_enum=False), default=ReceiptStatus.DRAFT, index=True
    )
    upload_source: Mapped[UploadSource] = mapped_column(
        Enum(UploadSource, native_enum=False), default=UploadSource.FILE
    )
    processing_state: Mapped[ProcessingState] = mapped_column(
        Enum(ProcessingState, native_enum=False), default=ProcessingState.UPLOADING
    )
    processing_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    uploaded_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    owner = relationship("User")
    expense_report = relationship("ExpenseReport", back_populates="receipts")
    expense = relationship("Expense", back_populates="receipt", uselist=False)
