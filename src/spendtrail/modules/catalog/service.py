from __future__ import annotations

import uuid

from sqlalchemy import select
from sqlalchemy.orm import Session

from spendtrail.core.errors import ValidationError
from spendtrail.modules.catalog.models import Category, Department


def assert_category_exists(session: Session, *, category_id: uuid.UUID) -> None:
    category = session.scalar(select(Category).where(Category.id == category_id))
    if not category or not category.is_active:
        raise ValidationError("Unknown category")


def assert_department_exists(session: Session, *, department_id: uuid.UUID) -> None:
    department = session.scalar(select(Department).where(Department.id == department_id))
    if not department or not department.is_active:
        raise ValidationError("Unknown department")
