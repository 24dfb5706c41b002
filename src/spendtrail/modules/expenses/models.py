from __future__ import annotations

import uuid
from datetime import date
from decimal import Decimal

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Date,
    ForeignKey,
    Numeric,
    String,
    Text,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from spendtrail.core.models import Base, Timestamped, UUIDPrimaryKey

# Fields a user may change after extraction; order is the audit key order.
EDITABLE_FIELDS: tuple[str, ...] = (
    "vendor_name",
    "amount",
    "currency",
    "expense_date",
    "description",
    "category_id",
    "department_id",
)


class Expense(UUIDPrimaryKey, Timestamped, Base):
    __tablename__ = "expenses_expense"
    __table_args__ = (CheckConstraint("amount >= 0", name="amount_non_negative"),)

    receipt_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("receipts_receipt.id"), unique=True, index=True
    )

    vendor_name: Mapped[str] = mapped_column(String(200))
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2))
    currency: Mapped[str] = mapped_column(String(3))
    expense_date: Mapped[date] = mapped_column(Date)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    category_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("catalog_category.id"), nullable=True
    )
    department_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("catalog_department.id"), nullable=True
    )

    is_edited: Mapped[bool] = mapped_column(Boolean, default=False)
    extracted_data: Mapped[dict] = mapped_column(JSON, default=dict)

    receipt = relationship("Receipt", back_populates="expense")
    category = relationship("Category")
    department = relationship("Department")
