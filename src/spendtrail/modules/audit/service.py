from __future__ import annotations

import uuid
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from spendtrail.modules.audit.models import AuditAction, AuditEntityType, AuditLogEntry


def to_audit_value(value: Any) -> Any:
    """Render a column value the way it is stored in the audit JSON payload."""
    if isinstance(value, Decimal):
        return str(value.quantize(Decimal("0.01")))
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    if isinstance(value, uuid.UUID):
        return str(value)
    if isinstance(value, Enum):
        return value.value
    return value


def append_entry(
    session: Session,
    *,
    entity_type: AuditEntityType,
    entity_id: uuid.UUID,
    action: AuditAction,
    actor_user_id: uuid.UUID | None,
    before: dict[str, Any] | None = None,
    after: dict[str, Any] | None = None,
) -> AuditLogEntry:
    """Stage an audit entry on ``session``; the caller owns the commit."""
    entry = AuditLogEntry(
        entity_type=entity_type,
        entity_id=entity_id,
        action=action,
        actor_user_id=actor_user_id,
        before={k: to_audit_value(v) for k, v in (before or {}).items()},
        after={k: to_audit_value(v) for k, v in (after or {}).items()},
    )
    session.add(entry)
    return entry


def list_entries(
    session: Session, *, entity_type: AuditEntityType, entity_id: uuid.UUID
) -> list[AuditLogEntry]:
    return list(
        session.scalars(
            select(AuditLogEntry)
            .where(
                AuditLogEntry.entity_type == entity_type,
                AuditLogEntry.entity_id == entity_id,
            )
            .order_by(AuditLogEntry.occurred_at.asc())
        )
    )
