from __future__ import annotations

import enum
import uuid
from datetime import datetime

from sqlalchemy import JSON, DateTime, Enum, ForeignKey, String, Uuid, event
from sqlalchemy.orm import Mapped, Session, mapped_column, relationship

from spendtrail.core.models import Base, UUIDPrimaryKey, utcnow


class AuditEntityType(str, enum.Enum):
    EXPENSE = "expense"
    EXPENSE_REPORT = "expense_report"
    RECEIPT = "receipt"


class AuditAction(str, enum.Enum):
    CREATED = "created"
    EDITED = "edited"
    UPDATED = "updated"
    SUBMITTED = "submitted"
    DELETED = "deleted"
    RECEIPT_ADDED = "receipt_added"
    RECEIPT_REMOVED = "receipt_removed"


class AuditLogEntry(UUIDPrimaryKey, Base):
    __tablename__ = "audit_log"

    entity_type: Mapped[AuditEntityType] = mapped_column(
        Enum(AuditEntityType, native_enum=False), index=True
    )
    entity_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), index=True)
    action: Mapped[AuditAction] = mapped_column(Enum(AuditAction, native_enum=False))
    actor_user_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("identity_user.id"), nullable=True, index=True
    )

    before: Mapped[dict] = mapped_column(JSON, default=dict)
    after: Mapped[dict] = mapped_column(JSON, default=dict)
    occurred_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    actor = relationship("User")


class AuditLogImmutableError(RuntimeError):
    pass


@event.listens_for(Session, "before_flush")
def _reject_audit_mutation(session: Session, _flush_context, _instances) -> None:
    for obj in session.dirty:
        if isinstance(obj, AuditLogEntry) and session.is_modified(obj):
            raise AuditLogImmutableError("audit_log entries cannot be modified")
    for obj in session.deleted:
        if isinstance(obj, AuditLogEntry):
            raise AuditLogImmutableError("audit_log entries cannot be deleted")
