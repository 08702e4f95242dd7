from __future__ import annotations

import asyncio
from typing import cast

from fastapi import APIRouter, HTTPException, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from loguru import logger

from ..services.cancellation import CancellationToken
from ..services.exceptions import ValidationFailure
from ..services.orchestrator import CompositionOrchestrator
from ..services.results import ResultAssembler
from .jobs import JobManager
from .models import ComposeRequest, JobStatus
from .settings import Settings

router = APIRouter()


def get_job_manager(request: Request) -> JobManager:
    return cast(JobManager, request.app.state.job_manager)


def get_orchestrator(request: Request) -> CompositionOrchestrator:
    return cast(CompositionOrchestrator, request.app.state.composer)


def get_assembler(request: Request) -> ResultAssembler:
    return cast(ResultAssembler, request.app.state.assembler)


def _describe_errors(errors: list) -> str:
    parts = []
    for error in errors[:3]:
        loc = ".".join(str(item) for item in error.get("loc", ()) if item != "body")
        msg = str(error.get("msg", "invalid value"))
        parts.append(f"{loc}: {msg}" if loc else msg)
    return "Invalid request: " + "; ".join(parts)


async def request_validation_failure(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Report schema violations with the same body as every other validation failure."""
    errors = list(exc.errors())
    failure = ValidationFailure(
        _describe_errors(errors),
        details={"errors": jsonable_encoder(errors)},
    )
    logger.warning("rejected request to {}: {}", request.url.path, failure.message)
    assembled = get_assembler(request).failure(failure)
    return JSONResponse(status_code=assembled.status_code, content=assembled.body)


@router.get("/health")
async def health(request: Request) -> dict[str, object]:
    settings = cast(Settings, request.app.state.settings)
    composer = get_orchestrator(request)
    backend_status: dict[str, object] = {}
    for name, status in composer.backend_status().items():
        backend_status[name] = status.as_dict()

    available_backends = sorted(backend_status.keys())
    warmup_complete = bool(backend_status) and all(
        isinstance(value, dict) and value.get("ready") for value in backend_status.values()
    )
    manager = get_job_manager(request)
    return {
        "status": "ok",
        "gemini_model": settings.gemini_model,
        "compose_format": settings.compose_format,
        "poll_interval_seconds": settings.poll_interval_seconds,
        "poll_max_attempts": settings.poll_max_attempts,
        "available_backends": available_backends,
        "backend_status": backend_status,
        "warmup_complete": warmup_complete,
        "active_jobs": await manager.active_count(),
    }


async def _watch_disconnect(request: Request, token: CancellationToken, interval: float) -> None:
    while not token.cancelled:
        if await request.is_disconnected():
            logger.info("client disconnected; cancelling orchestration")
            token.cancel("client disconnected")
            return
        await asyncio.sleep(interval)


@router.post("/generate-music")
async def generate_music(payload: ComposeRequest, request: Request) -> JSONResponse:
    settings = cast(Settings, request.app.state.settings)
    orchestrator = get_orchestrator(request)
    assembler = get_assembler(request)
    token = CancellationToken()
    watcher = asyncio.create_task(
        _watch_disconnect(request, token, settings.disconnect_check_interval_seconds)
    )
    try:
        result = await orchestrator.run(payload, token=token)
        if token.cancelled:
            logger.info("orchestration aborted: {}", token.reason)
        assembled = assembler.assemble(result)
    except Exception as exc:  # noqa: BLE001
        logger.exception("unexpected error during orchestration")
        assembled = assembler.unexpected(exc)
    finally:
        watcher.cancel()
    return JSONResponse(status_code=assembled.status_code, content=assembled.body)


@router.post("/jobs", response_model=JobStatus)
async def create_job(payload: ComposeRequest, request: Request) -> JobStatus:
    manager = get_job_manager(request)
    return await manager.enqueue(payload)


@router.get("/jobs/{job_id}", response_model=JobStatus)
async def job_status(job_id: str, request: Request) -> JobStatus:
    manager = get_job_manager(request)
    status = await manager.get_status(job_id)
    if status is None:
        raise HTTPException(status_code=404, detail="job not found")
    return status


@router.get("/jobs/{job_id}/result")
async def job_result(job_id: str, request: Request) -> JSONResponse:
    manager = get_job_manager(request)
    status = await manager.get_status(job_id)
    if status is None:
        raise HTTPException(status_code=404, detail="job not found")
    result = await manager.get_result(job_id)
    if result is None:
        raise HTTPException(status_code=409, detail=f"job is {status.state.value}")
    return JSONResponse(status_code=result.status_code, content=result.body)


@router.delete("/jobs/{job_id}", response_model=JobStatus)
async def cancel_job(job_id: str, request: Request) -> JobStatus:
    manager = get_job_manager(request)
    status = await manager.cancel(job_id)
    if status is None:
        raise HTTPException(status_code=404, detail="job not found")
    return status
