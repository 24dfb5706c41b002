from __future__ import annotations

from sqlalchemy import select

import spendtrail.models  # noqa: F401
from spendtrail.core.config import settings
from spendtrail.core.db import SessionLocal, engine
from spendtrail.core.logging import get_logger, log_event
from spendtrail.core.models import Base
from spendtrail.core.security import hash_password
from spendtrail.modules.identity.models import User, UserRole

logger = get_logger(__name__)


def bootstrap() -> None:
    if settings.environment == "dev" and str(settings.database_url).startswith("sqlite"):
        Base.metadata.create_all(engine)

    if not settings.init_admin_email or not settings.init_admin_password:
        return

    # Support comma-separated list of admin emails
    admin_emails = [
        e.strip().lower() for e in settings.init_admin_email.split(",") if e.strip()
    ]

    with SessionLocal() as session:
        for email in admin_emails:
            existing = session.scalar(select(User).where(User.email == email))
            if existing:
                if existing.role != UserRole.ADMIN:
                    existing.role = UserRole.ADMIN
                continue
            session.add(
                User(
                    email=email,
                    full_name="Admin",
                    password_hash=hash_password(settings.init_admin_password),
                    role=UserRole.ADMIN,
                    is_active=True,
                )
            )
            log_event(logger, "bootstrap.admin.created", email=email)
        session.commit()
