from __future__ import annotations

from sqlalchemy import Boolean, String
from sqlalchemy.orm import Mapped, mapped_column

from spendtrail.core.models import Base, Timestamped, UUIDPrimaryKey


class Department(UUIDPrimaryKey, Timestamped, Base):
    __tablename__ = "catalog_department"

    code: Mapped[str] = mapped_column(String(32), unique=True, index=True)
    name: Mapped[str] = mapped_column(String(200))
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)


class Category(UUIDPrimaryKey, Timestamped, Base):
    __tablename__ = "catalog_category"

    name: Mapped[str] = mapped_column(String(100), unique=True, index=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
