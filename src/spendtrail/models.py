"""
Alembic model import hook.

Importing this module ensures all SQLAlchemy models are registered on Base.metadata.
"""

from __future__ import annotations

# Import User first - other models have relationships to User
from spendtrail.modules.identity.models import User  # noqa: F401

from spendtrail.modules.audit.models import AuditLogEntry  # noqa: F401
from spendtrail.modules.catalog.models import Category, Department  # noqa: F401
from spendtrail.modules.expenses.models import Expense  # noqa: F401
from spendtrail.modules.receipts.models import Receipt  # noqa: F401
from spendtrail.modules.reports.models import ExpenseReport  # noqa: F401
