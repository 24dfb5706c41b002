from __future__ import annotations

import uuid
from datetime import datetime

from pydantic import BaseModel

from spendtrail.modules.audit.models import AuditAction, AuditEntityType


class AuditLogEntryOut(BaseModel):
    id: uuid.UUID
    entity_type: AuditEntityType
    entity_id: uuid.UUID
    action: AuditAction
    actor_user_id: uuid.UUID | None
    before: dict
    after: dict
    occurred_at: datetime
