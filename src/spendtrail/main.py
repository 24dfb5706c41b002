from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from spendtrail.api.router import router as api_router
from spendtrail.bootstrap import bootstrap
from spendtrail.core.config import Settings, settings
from spendtrail.core.errors import install_error_handlers
from spendtrail.core.logging import RequestContextMiddleware, configure_logging
from spendtrail.core.storage import build_storage
from spendtrail.modules.ingestion.service import IngestionOrchestrator, build_orchestrator
from spendtrail.worker.tasks import configure_worker


def create_app(
    *,
    app_settings: Settings | None = None,
    orchestrator: IngestionOrchestrator | None = None,
) -> FastAPI:
    """
    Build the application.

    Collaborators are created once here and kept on ``app.state``; tests pass a
    prebuilt ``orchestrator`` to swap in a fake model client.
    """
    cfg = app_settings or settings
    configure_logging()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        bootstrap()
        orch = orchestrator or build_orchestrator(cfg, storage=build_storage(cfg))
        app.state.storage = orch.storage
        app.state.orchestrator = orch
        configure_worker(orch)
        try:
            yield
        finally:
            if orchestrator is None:
                orch.engine.client.close()

    app = FastAPI(title="SpendTrail", version="0.1.0", lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(RequestContextMiddleware)
    install_error_handlers(app)
    app.include_router(api_router)
    return app


app = create_app()
