from __future__ import annotations

import asyncio
from datetime import UTC, datetime
from typing import Dict, Optional
from uuid import uuid4

from loguru import logger

from ..services.cancellation import CancellationToken
from ..services.orchestrator import CompositionOrchestrator
from ..services.results import ResultAssembler
from .models import TERMINAL_JOB_STATES, ComposeRequest, JobResult, JobState, JobStatus


class JobManager:
    """Runs orchestrations in the background and exposes their status and result."""

    def __init__(
        self,
        orchestrator: CompositionOrchestrator,
        assembler: Optional[ResultAssembler] = None,
    ):
        self._orchestrator = orchestrator
        self._assembler = assembler or ResultAssembler()
        self._statuses: Dict[str, JobStatus] = {}
        self._results: Dict[str, JobResult] = {}
        self._tokens: Dict[str, CancellationToken] = {}
        self._lock = asyncio.Lock()
        self._tasks: Dict[str, asyncio.Task[None]] = {}

    async def enqueue(self, request: ComposeRequest) -> JobStatus:
        job_id = str(uuid4())
        status = JobStatus(job_id=job_id, state=JobState.QUEUED, message="queued")
        token = CancellationToken()

        async with self._lock:
            self._statuses[job_id] = status
            self._tokens[job_id] = token
        task = asyncio.create_task(self._execute_job(job_id, request, token))
        async with self._lock:
            self._tasks[job_id] = task
        return status.model_copy(deep=True)

    async def get_status(self, job_id: str) -> Optional[JobStatus]:
        async with self._lock:
            status = self._statuses.get(job_id)
            if status is None:
                return None
            return status.model_copy(deep=True)

    async def get_result(self, job_id: str) -> Optional[JobResult]:
        async with self._lock:
            return self._results.get(job_id)

    async def cancel(self, job_id: str) -> Optional[JobStatus]:
        async with self._lock:
            status = self._statuses.get(job_id)
            token = self._tokens.get(job_id)
            if status is None:
                return None
            if status.state in TERMINAL_JOB_STATES or token is None:
                return status.model_copy(deep=True)
        token.cancel("cancelled via jobs api")
        logger.info("cancellation requested for job {}", job_id)
        task = self._tasks.get(job_id)
        if task is not None:
            await asyncio.gather(task, return_exceptions=True)
        return await self.get_status(job_id)

    async def active_count(self) -> int:
        async with self._lock:
            return sum(
                1 for status in self._statuses.values() if status.state not in TERMINAL_JOB_STATES
            )

    async def shutdown(self) -> None:
        async with self._lock:
            tokens = list(self._tokens.values())
            tasks = list(self._tasks.values())
        for token in tokens:
            token.cancel("worker shutting down")
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    async def _execute_job(
        self, job_id: str, request: ComposeRequest, token: CancellationToken
    ) -> None:
        await self._set_status(
            job_id,
            state=JobState.RUNNING,
            progress=0.05,
            stage="validation",
            message="validating request",
        )
        try:
            async def progress_cb(stage: str, progress: float, message: str) -> None:
                await self._set_status(
                    job_id,
                    state=JobState.RUNNING,
                    progress=progress,
                    stage=stage,
                    message=message,
                )

            result = await self._orchestrator.run(request, token=token, progress_cb=progress_cb)
            assembled = self._assembler.assemble(result)
        except Exception as exc:  # noqa: BLE001
            assembled = self._assembler.unexpected(exc)
            await self._store(job_id, assembled.status_code, assembled.body)
            await self._set_status(
                job_id,
                state=JobState.FAILED,
                progress=1.0,
                stage="internal",
                message="unexpected error during orchestration",
            )
            logger.exception("unexpected error during job {}", job_id)
            return
        finally:
            async with self._lock:
                self._tokens.pop(job_id, None)
                self._tasks.pop(job_id, None)

        await self._store(job_id, assembled.status_code, assembled.body)
        error = result.error
        if error is None:
            await self._set_status(
                job_id,
                state=JobState.SUCCEEDED,
                progress=1.0,
                stage="done",
                message="composition complete",
            )
        else:
            state = JobState.CANCELLED if error.kind == "cancelled" else JobState.FAILED
            await self._set_status(
                job_id,
                state=state,
                progress=1.0,
                stage=error.stage,
                message=error.message,
            )
            logger.warning("job {} ended {}: {}", job_id, state.value, error.message)

    async def _store(self, job_id: str, status_code: int, body: dict) -> None:
        async with self._lock:
            self._results[job_id] = JobResult(job_id=job_id, status_code=status_code, body=body)

    async def _set_status(
        self,
        job_id: str,
        *,
        state: JobState,
        progress: Optional[float] = None,
        stage: Optional[str] = None,
        message: Optional[str] = None,
    ) -> None:
        async with self._lock:
            status = self._statuses[job_id]
            status.state = state
            if progress is not None:
                status.progress = max(0.0, min(progress, 1.0))
            status.stage = stage
            status.message = message
            status.updated_at = datetime.now(tz=UTC)
