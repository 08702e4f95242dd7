"""Submission of a final prompt to the compose service."""

from __future__ import annotations

from typing import Any, Optional, Protocol

import httpx
from loguru import logger

from .cancellation import CancellationToken
from .exceptions import SubmissionError
from .types import CompositionTask

STAGE = "compose"


class ComposeSubmitter(Protocol):
    async def submit(self, prompt: str) -> Any: ...


class Composer:
    def __init__(self, service: ComposeSubmitter) -> None:
        self._service = service

    async def submit(
        self,
        prompt: str,
        *,
        token: Optional[CancellationToken] = None,
    ) -> CompositionTask:
        token = token or CancellationToken()
        try:
            payload = await token.guard(self._service.submit(prompt), stage=STAGE)
        except httpx.HTTPError as exc:
            raise SubmissionError(
                f"Beatoven submission failed: {exc.__class__.__name__}",
                payload=None,
            ) from exc

        task_id = payload.get("task_id") if isinstance(payload, dict) else None
        if not task_id:
            logger.error("compose submission returned no task id: {}", payload)
            raise SubmissionError("No task_id returned", payload=payload)

        logger.info("composition task {} submitted", task_id)
        return CompositionTask(task_id=str(task_id))
