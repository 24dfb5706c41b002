"""initial receipt schema

Revision ID: 3b1e7c0a9d42
Revises:
Create Date: 2026-10-19

"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "3b1e7c0a9d42"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

_STATUS = ("DRAFT", "SUBMITTED", "APPROVED", "REJECTED")


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        "identity_user",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("email", sa.String(length=320), nullable=False),
        sa.Column("full_name", sa.String(length=200), nullable=True),
        sa.Column("password_hash", sa.String(length=200), nullable=False),
        sa.Column(
            "role",
            sa.Enum("EMPLOYEE", "ACCOUNTING", "ADMIN", name="userrole", native_enum=False),
            nullable=False,
        ),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id", name="pk_identity_user"),
    )
    op.create_index("ix_identity_user_email", "identity_user", ["email"], unique=True)
    op.create_index("ix_identity_user_role", "identity_user", ["role"])

    op.create_table(
        "catalog_department",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("code", sa.String(length=32), nullable=False),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id", name="pk_catalog_department"),
    )
    op.create_index("ix_catalog_department_code", "catalog_department", ["code"], unique=True)

    op.create_table(
        "catalog_category",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id", name="pk_catalog_category"),
    )
    op.create_index("ix_catalog_category_name", "catalog_category", ["name"], unique=True)

    op.create_table(
        "reports_expense_report",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("user_id", sa.Uuid(), nullable=False),
        sa.Column("title", sa.String(length=200), nullable=False),
        sa.Column(
            "status", sa.Enum(*_STATUS, name="reportstatus", native_enum=False), nullable=False
        ),
        sa.Column("total_amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("submitted_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(
            ["user_id"],
            ["identity_user.id"],
            name="fk_reports_expense_report_user_id_identity_user",
        ),
        sa.PrimaryKeyConstraint("id", name="pk_reports_expense_report"),
    )
    op.create_index(
        "ix_reports_expense_report_user_id", "reports_expense_report", ["user_id"]
    )
    op.create_index("ix_reports_expense_report_status", "reports_expense_report", ["status"])

    op.create_table(
        "receipts_receipt",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("user_id", sa.Uuid(), nullable=False),
        sa.Column("expense_report_id", sa.Uuid(), nullable=True),
        sa.Column("storage_key", sa.String(length=1024), nullable=False),
        sa.Column("content_type", sa.String(length=100), nullable=False),
        sa.Column("byte_size", sa.Integer(), nullable=False),
        sa.Column("sha256", sa.String(length=64), nullable=False),
        sa.Column(
            "status", sa.Enum(*_STATUS, name="receiptstatus", native_enum=False), nullable=False
        ),
        sa.Column(
            "upload_source",
            sa.Enum("CAMERA", "GALLERY", "FILE", name="uploadsource", native_enum=False),
            nullable=False,
        ),
        sa.Column(
            "processing_state",
            sa.Enum(
                "UPLOADING",
                "UPLOADED",
                "EXTRACTING",
                "EXTRACTED",
                "EXTRACTION_FAILED",
                name="processingstate",
                native_enum=False,
            ),
            nullable=False,
        ),
        sa.Column("processing_error", sa.Text(), nullable=True),
        sa.Column("uploaded_at", sa.DateTime(timezone=True), nullable=False),
        *_timestamps(),
        sa.ForeignKeyConstraint(
            ["user_id"], ["identity_user.id"], name="fk_receipts_receipt_user_id_identity_user"
        ),
        sa.ForeignKeyConstraint(
            ["expense_report_id"],
            ["reports_expense_report.id"],
            name="fk_receipts_receipt_expense_report_id_reports_expense_report",
        ),
        sa.PrimaryKeyConstraint("id", name="pk_receipts_receipt"),
        sa.UniqueConstraint("storage_key", name="uq_receipts_receipt_storage_key"),
    )
    op.create_index("ix_receipts_receipt_user_id", "receipts_receipt", ["user_id"])
    op.create_index(
        "ix_receipts_receipt_expense_report_id", "receipts_receipt", ["expense_report_id"]
    )
    op.create_index("ix_receipts_receipt_sha256", "receipts_receipt", ["sha256"])
    op.create_index("ix_receipts_receipt_status", "receipts_receipt", ["status"])

    op.create_table(
        "expenses_expense",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("receipt_id", sa.Uuid(), nullable=False),
        sa.Column("vendor_name", sa.String(length=200), nullable=False),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("currency", sa.String(length=3), nullable=False),
        sa.Column("expense_date", sa.Date(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("category_id", sa.Uuid(), nullable=True),
        sa.Column("department_id", sa.Uuid(), nullable=True),
        sa.Column("is_edited", sa.Boolean(), nullable=False),
        sa.Column("extracted_data", sa.JSON(), nullable=False),
        *_timestamps(),
        sa.CheckConstraint("amount >= 0", name="ck_expenses_expense_amount_non_negative"),
        sa.ForeignKeyConstraint(
            ["receipt_id"],
            ["receipts_receipt.id"],
            name="fk_expenses_expense_receipt_id_receipts_receipt",
        ),
        sa.ForeignKeyConstraint(
            ["category_id"],
            ["catalog_category.id"],
            name="fk_expenses_expense_category_id_catalog_category",
        ),
        sa.ForeignKeyConstraint(
            ["department_id"],
            ["catalog_department.id"],
            name="fk_expenses_expense_department_id_catalog_department",
        ),
        sa.PrimaryKeyConstraint("id", name="pk_expenses_expense"),
    )
    op.create_index(
        "ix_expenses_expense_receipt_id", "expenses_expense", ["receipt_id"], unique=True
    )

    op.create_table(
        "audit_log",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column(
            "entity_type",
            sa.Enum(
                "EXPENSE", "EXPENSE_REPORT", "RECEIPT", name="auditentitytype", native_enum=False
            ),
            nullable=False,
        ),
        sa.Column("entity_id", sa.Uuid(), nullable=False),
        sa.Column(
            "action",
            sa.Enum(
                "CREATED",
                "EDITED",
                "UPDATED",
                "SUBMITTED",
                "DELETED",
                "RECEIPT_ADDED",
                "RECEIPT_REMOVED",
                name="auditaction",
                native_enum=False,
            ),
            nullable=False,
        ),
        sa.Column("actor_user_id", sa.Uuid(), nullable=True),
        sa.Column("before", sa.JSON(), nullable=False),
        sa.Column("after", sa.JSON(), nullable=False),
        sa.Column("occurred_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(
            ["actor_user_id"], ["identity_user.id"], name="fk_audit_log_actor_user_id_identity_user"
        ),
        sa.PrimaryKeyConstraint("id", name="pk_audit_log"),
    )
    op.create_index("ix_audit_log_entity_type", "audit_log", ["entity_type"])
    op.create_index("ix_audit_log_entity_id", "audit_log", ["entity_id"])
    op.create_index("ix_audit_log_actor_user_id", "audit_log", ["actor_user_id"])


def downgrade() -> None:
    op.drop_table("audit_log")
    op.drop_table("expenses_expense")
    op.drop_table("receipts_receipt")
    op.drop_table("reports_expense_report")
    op.drop_table("catalog_category")
    op.drop_table("catalog_department")
    op.drop_table("identity_user")
