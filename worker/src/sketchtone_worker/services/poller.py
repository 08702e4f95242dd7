"""Bounded status polling for an in-flight composition task."""

from __future__ import annotations

from typing import Any, Awaitable, Callable, Dict, Optional, Protocol, Tuple

import httpx
from loguru import logger

from .beatoven import extract_track_url, task_meta
from .cancellation import CancellationToken
from .exceptions import CompositionFailure, CompositionTimeout, UpstreamCallError
from .types import CompositionTask, PollState, TaskStatus

STAGE = "poll"
COMPOSED_STATUSES = frozenset({"composed"})
FAILED_STATUSES = frozenset({"failed", "error"})

PollCallback = Callable[[PollState, Optional[str]], Awaitable[None]]


class StatusSource(Protocol):
    async def fetch_status(self, task_id: str) -> Dict[str, Any]: ...


class TaskPoller:
    """Drives a task from pending to a terminal state.

    Polls every ``interval_seconds`` for at most ``max_attempts`` checks. A
    transport or decoding error on one check is logged and counted as a used
    attempt. ``composed`` returns the task with its track reference,
    ``failed``/``error`` raise :class:`CompositionFailure`, running out of
    attempts raises :class:`CompositionTimeout`.
    """

    def __init__(
        self,
        service: StatusSource,
        *,
        max_attempts: int = 90,
        interval_seconds: float = 2.0,
    ) -> None:
        self._service = service
        self._max_attempts = max_attempts
        self._interval_seconds = interval_seconds

    def initial_state(self) -> PollState:
        return PollState(
            attempt=0,
            max_attempts=self._max_attempts,
            interval_seconds=self._interval_seconds,
        )

    async def wait(
        self,
        task: CompositionTask,
        *,
        token: Optional[CancellationToken] = None,
        on_poll: Optional[PollCallback] = None,
    ) -> CompositionTask:
        if task.terminal:
            return task
        token = token or CancellationToken()
        state = self.initial_state()

        while not state.exhausted:
            state = state.advance()
            status, payload = await self._check(task.task_id, state, token)
            if on_poll is not None:
                await on_poll(state, status)

            if status is not None:
                if status in COMPOSED_STATUSES:
                    meta = task_meta(payload)
                    track_url = extract_track_url(meta)
                    if track_url is None:
                        logger.warning("task {} composed without a track url", task.task_id)
                    task.transition(TaskStatus.COMPOSED, track_ref=track_url, payload=meta)
                    logger.info(
                        "task {} composed after {} checks", task.task_id, state.attempt
                    )
                    return task
                if status in FAILED_STATUSES:
                    task.transition(TaskStatus.FAILED, payload=payload)
                    logger.error("task {} reported {}", task.task_id, status)
                    raise CompositionFailure(
                        "Beatoven composition failed",
                        task_id=task.task_id,
                        payload=payload,
                    )

            if not state.exhausted:
                await token.sleep(state.interval_seconds, stage=STAGE)

        task.transition(TaskStatus.TIMED_OUT)
        logger.error("task {} timed out after {} checks", task.task_id, state.attempt)
        raise CompositionTimeout(
            "Beatoven compose timed out",
            task_id=task.task_id,
            attempts=state.attempt,
        )

    async def _check(
        self,
        task_id: str,
        state: PollState,
        token: CancellationToken,
    ) -> Tuple[Optional[str], Dict[str, Any]]:
        try:
            payload = await token.guard(self._service.fetch_status(task_id), stage=STAGE)
        except (UpstreamCallError, httpx.HTTPError) as exc:
            logger.warning(
                "status check {}/{} for task {} failed: {}",
                state.attempt,
                state.max_attempts,
                task_id,
                exc,
            )
            return None, {}
        status = payload.get("status")
        logger.debug(
            "task {} status {} (check {}/{})", task_id, status, state.attempt, state.max_attempts
        )
        return (str(status).lower() if status is not None else None), payload
