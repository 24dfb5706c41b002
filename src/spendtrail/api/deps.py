from __future__ import annotations

import uuid

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy import select
from sqlalchemy.orm import Session

from spendtrail.core.db import db_session
from spendtrail.core.errors import AuthorizationError
from spendtrail.core.logging import set_user_context
from spendtrail.core.security import decode_access_token
from spendtrail.core.storage import ObjectStorage
from spendtrail.modules.identity.models import User, UserRole
from spendtrail.modules.ingestion.service import IngestionOrchestrator

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/token", auto_error=False)


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def get_current_user(
    token: str | None = Depends(oauth2_scheme),
    session: Session = Depends(db_session),
) -> User:
    if not token:
        raise _unauthorized("Not authenticated")

    subject = decode_access_token(token)
    if not subject:
        raise _unauthorized("Invalid token")

    try:
        user_id = uuid.UUID(subject)
    except ValueError as e:
        raise _unauthorized("Invalid token") from e

    user = session.scalar(select(User).where(User.id == user_id))
    if not user or not user.is_active:
        raise _unauthorized("Invalid user")
    set_user_context(str(user.id))
    return user


def require_role(*roles: UserRole):
    def _checker(user: User = Depends(get_current_user)) -> User:
        if user.role not in roles:
            raise AuthorizationError("Insufficient permissions")
        return user

    return _checker


def get_storage(request: Request) -> ObjectStorage:
    return request.app.state.storage


def get_orchestrator(request: Request) -> IngestionOrchestrator:
    return request.app.state.orchestrator
