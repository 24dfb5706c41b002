from __future__ import annotations

from celery import Celery

from spendtrail.core.config import settings


def make_celery() -> Celery:
    app = Celery("spendtrail", broker=settings.redis_url, backend=settings.redis_url)
    app.conf.update(
        task_always_eager=settings.environment == "dev",
        task_eager_propagates=True,
        task_track_started=True,
    )
    app.autodiscover_tasks(["spendtrail.worker.tasks"])
    return app


celery_app = make_celery()
