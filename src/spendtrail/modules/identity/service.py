from __future__ import annotations

import uuid

from sqlalchemy import select
from sqlalchemy.orm import Session

from spendtrail.core.errors import ConflictError, NotFoundError, SpendTrailError
from spendtrail.core.security import hash_password, verify_password
from spendtrail.modules.identity.models import User, UserRole


class InvalidCredentials(SpendTrailError):
    status_code = 401


def get_user_by_email(session: Session, *, email: str) -> User | None:
    return session.scalar(select(User).where(User.email == email.strip().lower()))


def get_user(session: Session, *, user_id: uuid.UUID) -> User:
    user = session.scalar(select(User).where(User.id == user_id))
    if not user:
        raise NotFoundError("User not found")
    return user


def create_user(
    session: Session,
    *,
    email: str,
    password: str,
    role: UserRole,
    full_name: str | None = None,
) -> User:
    if get_user_by_email(session, email=email):
        raise ConflictError("Email already exists")

    user = User(
        email=email.strip().lower(),
        full_name=full_name,
        password_hash=hash_password(password),
        role=role,
        is_active=True,
    )
    session.add(user)
    session.commit()
    session.refresh(user)
    return user


def authenticate_user(session: Session, *, email: str, password: str) -> User:
    user = get_user_by_email(session, email=email)
    if not user or not user.is_active or not verify_password(password, user.password_hash):
        raise InvalidCredentials("Invalid credentials")
    return user
