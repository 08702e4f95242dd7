"""High-level composition orchestrator coordinating both upstream services."""

from __future__ import annotations

from typing import Awaitable, Callable, Dict, Optional

from loguru import logger

from ..app.models import ComposeRequest
from ..app.settings import Settings
from .beatoven import ComposeServiceClient
from .briefs import BriefGenerator
from .cancellation import CancellationToken
from .composer import Composer
from .exceptions import OrchestrationError, UpstreamCallError
from .gemini import VisionLanguageClient, text_part
from .modes import AdjustRun, FreshRun, require_credentials, resolve_run
from .planner import SegmentPlanner, describe_ids
from .poller import TaskPoller
from .prompts import ADJUST_TEMPLATE, REVISED_MARKER, after_marker
from .refiner import PromptRefiner, build_fallback_prompt
from .types import BackendStatus, OrchestrationResult, PollState

ProgressCallback = Callable[[str, float, str], Awaitable[None]]

POLL_PROGRESS_START = 0.5
POLL_PROGRESS_END = 0.95


class CompositionOrchestrator:
    """Routes a request to its execution path and drives it to a result."""

    def __init__(
        self,
        settings: Settings,
        planner: SegmentPlanner,
        vision: VisionLanguageClient,
        compose_service: ComposeServiceClient,
    ) -> None:
        self._settings = settings
        self._planner = planner
        self._vision = vision
        self._compose_service = compose_service
        self._briefs = BriefGenerator(vision)
        self._refiner = PromptRefiner(vision)
        self._composer = Composer(compose_service)
        self._poller = TaskPoller(
            compose_service,
            max_attempts=settings.poll_max_attempts,
            interval_seconds=settings.poll_interval_seconds,
        )
        self._backend_status: Dict[str, BackendStatus] = {}

    async def warmup(self) -> Dict[str, BackendStatus]:
        for backend in (self._vision, self._compose_service):
            status = await backend.warmup()
            self._backend_status[status.name] = status
        return dict(self._backend_status)

    def backend_status(self) -> Dict[str, BackendStatus]:
        return dict(self._backend_status)

    async def close(self) -> None:
        await self._vision.close()
        await self._compose_service.close()

    async def run(
        self,
        request: ComposeRequest,
        *,
        token: Optional[CancellationToken] = None,
        progress_cb: Optional[ProgressCallback] = None,
    ) -> OrchestrationResult:
        token = token or CancellationToken()
        result = OrchestrationResult(mode=None)

        async def report(stage: str, progress: float, message: str) -> None:
            if progress_cb is not None:
                await progress_cb(stage, progress, message)

        try:
            plan = resolve_run(request, self._settings)
            result.mode = plan.mode
            require_credentials(plan, self._settings)
            token.raise_if_cancelled(stage="validation")
            logger.info("starting {} orchestration", plan.mode.value)

            if isinstance(plan, FreshRun):
                prompt = await self._fresh_prompt(plan, result, token, report)
            elif isinstance(plan, AdjustRun):
                await report("adjust", 0.2, "revising prompt")
                prompt = await self._adjusted_prompt(plan, token)
            else:
                prompt = plan.prompt
            result.final_prompt = prompt

            await report("compose", 0.45, "submitting composition")
            task = await self._composer.submit(prompt, token=token)
            result.task = task

            async def on_poll(state: PollState, status: Optional[str]) -> None:
                ratio = state.attempt / max(state.max_attempts, 1)
                progress = POLL_PROGRESS_START + (POLL_PROGRESS_END - POLL_PROGRESS_START) * ratio
                await report(
                    "poll",
                    progress,
                    f"composing (check {state.attempt}/{state.max_attempts}: {status or 'unknown'})",
                )

            await report("poll", POLL_PROGRESS_START, f"composing task {task.task_id}")
            await self._poller.wait(task, token=token, on_poll=on_poll)
        except OrchestrationError as exc:
            result.error = exc
            log = logger.warning if exc.status_code < 500 else logger.error
            log("orchestration stopped at {} ({}): {}", exc.stage, exc.kind, exc.message)
        return result

    async def _fresh_prompt(
        self,
        plan: FreshRun,
        result: OrchestrationResult,
        token: CancellationToken,
        report: ProgressCallback,
    ) -> str:
        segments = self._planner.build_plan(plan.canvases, plan.total_duration)
        logger.info(
            "analysing {} boards ({}) at {}s each",
            segments.count,
            describe_ids(segments.canvases),
            segments.segment_seconds,
        )
        await report("briefs", 0.1, f"analysing {segments.count} boards")
        briefs = await self._briefs.generate(
            segments.canvases, segments.segment_seconds, token=token
        )
        result.briefs = briefs
        result.combined_prompt = build_fallback_prompt(briefs, plan.total_duration)

        await report("refine", 0.35, "refining prompt")
        return await self._refiner.refine(briefs, plan.total_duration, token=token)

    async def _adjusted_prompt(self, plan: AdjustRun, token: CancellationToken) -> str:
        instruction = ADJUST_TEMPLATE.format(prompt=plan.prompt, instructions=plan.instructions)
        text = await token.guard(
            self._vision.generate_text([[text_part(instruction)]], stage="adjust"),
            stage="adjust",
        )
        revised = after_marker(text, REVISED_MARKER)
        if not revised:
            raise UpstreamCallError("Prompt adjustment returned no text", stage="adjust")
        return revised
