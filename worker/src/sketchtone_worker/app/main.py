from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from loguru import logger

from ..services.beatoven import ComposeServiceClient
from ..services.gemini import VisionLanguageClient
from ..services.orchestrator import CompositionOrchestrator
from ..services.planner import SegmentPlanner
from ..services.results import ResultAssembler
from .jobs import JobManager
from .routes import request_validation_failure, router
from .settings import Settings, get_settings


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """Create and configure FastAPI instance."""
    settings = settings or get_settings()
    planner = SegmentPlanner(settings)
    vision = VisionLanguageClient(settings)
    compose_service = ComposeServiceClient(settings)
    orchestrator = CompositionOrchestrator(settings, planner, vision, compose_service)
    manager = JobManager(orchestrator)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        try:
            statuses = await app.state.composer.warmup()
            logger.info(
                "Worker warmup complete: {}",
                {name: status.ready for name, status in statuses.items()},
            )
        except Exception:  # noqa: BLE001
            logger.exception("Worker warmup failed")
        yield
        await app.state.job_manager.shutdown()
        await app.state.composer.close()

    app = FastAPI(title="Sketchtone Worker", version="0.1.0", lifespan=lifespan)
    app.state.settings = settings
    app.state.composer = orchestrator
    app.state.assembler = ResultAssembler()
    app.state.job_manager = manager
    app.add_exception_handler(RequestValidationError, request_validation_failure)  # type: ignore[arg-type]
    app.include_router(router)
    return app


app = create_app()
