import logging

from fastapi import FastAPI

from app.core.settings import settings
from app.db.session import engine as db_engine

logger = logging.getLogger(__name__)


def register_event_handlers(app: FastAPI) -> None:
    @app.on_event("startup")
    async def on_startup() -> None:
        workflow = app.state.workflow_engine
        logger.info(
            "Application startup matrix_version=%s store_backend=%s",
            workflow.matrix.version,
            settings.application_store_backend,
        )

    @app.on_event("shutdown")
    async def on_shutdown() -> None:
        logger.info("Application shutdown")
        if settings.application_store_backend == "database":
            await db_engine.dispose()
