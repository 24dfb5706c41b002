from __future__ import annotations

# Ensure all models are registered before any task runs
# isort: off
import spendtrail.models  # noqa: F401
# isort: on

import time
import uuid

from celery.signals import worker_init, worker_process_init

from spendtrail.core.config import settings
from spendtrail.core.db import SessionLocal
from spendtrail.core.logging import (
    bind_context,
    get_logger,
    log_event,
    log_exception,
    monotonic_ms,
    reset_context,
)
from spendtrail.core.storage import build_storage
from spendtrail.modules.identity.service import get_user
from spendtrail.modules.ingestion.service import IngestionOrchestrator, build_orchestrator
from spendtrail.worker.celery_app import celery_app

logger = get_logger(__name__)

_orchestrator: IngestionOrchestrator | None = None


def configure_worker(orchestrator: IngestionOrchestrator) -> None:
    """Hand the process-wide orchestrator to the task layer."""
    global _orchestrator  # noqa: PLW0603
    _orchestrator = orchestrator


def _build_from_settings() -> IngestionOrchestrator:
    return build_orchestrator(settings, storage=build_storage(settings))


@worker_init.connect
def _on_worker_init(**_: object) -> None:
    if _orchestrator is None:
        configure_worker(_build_from_settings())


@worker_process_init.connect
def _on_worker_process_init(**_: object) -> None:
    # Forked children must not share the parent's HTTP connections.
    configure_worker(_build_from_settings())


@celery_app.task(name="extract_receipt", bind=True)
def extract_receipt_task(self, receipt_id: str, user_id: str) -> str:
    if _orchestrator is None:
        raise RuntimeError("Worker orchestrator is not configured")

    task_id = getattr(self.request, "id", None)
    token = bind_context(celery_task_id=task_id)
    start = time.monotonic()
    log_event(
        logger,
        "celery.task.start",
        task_name="extract_receipt",
        receipt_id=receipt_id,
    )
    try:
        with SessionLocal() as session:
            user = get_user(session, user_id=uuid.UUID(user_id))
            outcome = _orchestrator.extract_receipt(
                session, receipt_id=uuid.UUID(receipt_id), user=user
            )
            expense_id = str(outcome.expense.id)
        log_event(
            logger,
            "celery.task.finish",
            task_name="extract_receipt",
            receipt_id=receipt_id,
            expense_id=expense_id,
            duration_ms=monotonic_ms(start),
        )
        return expense_id
    except Exception:
        log_exception(
            logger,
            "celery.task.error",
            task_name="extract_receipt",
            receipt_id=receipt_id,
            duration_ms=monotonic_ms(start),
        )
        raise
    finally:
        reset_context(token)
