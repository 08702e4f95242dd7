"""Packaging of an orchestration outcome into the HTTP response body."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from ..app.models import BoardDuration, BoardResult, ComposeResponse
from .exceptions import OrchestrationError
from .types import Brief, ComposeMode, OrchestrationResult


@dataclass(frozen=True)
class AssembledResponse:
    status_code: int
    body: Dict[str, Any]


def board_results(briefs: List[Brief]) -> List[BoardResult]:
    return [
        BoardResult(
            id=brief.canvas_id,
            name=brief.name,
            brief=brief.text,
            error=brief.error,
            stroke_count=brief.stroke_count,
            segment_duration=brief.segment_duration_seconds,
        )
        for brief in briefs
    ]


def board_durations(briefs: List[Brief]) -> List[BoardDuration]:
    return [
        BoardDuration(id=brief.canvas_id, duration=brief.segment_duration_seconds)
        for brief in briefs
    ]


class ResultAssembler:
    def assemble(self, result: OrchestrationResult) -> AssembledResponse:
        if result.error is not None:
            return self.failure(result.error, result)
        if not result.succeeded:
            raise RuntimeError("orchestration finished without a composed task")
        if result.task is None or result.final_prompt is None or result.mode is None:
            raise RuntimeError("orchestration finished without a task or prompt")

        fresh = result.mode == ComposeMode.FRESH
        response = ComposeResponse(
            per_board_results=board_results(result.briefs) if fresh else None,
            per_board_durations=board_durations(result.briefs) if fresh else None,
            combined_prompt=result.combined_prompt if fresh else None,
            beatoven_prompt=result.final_prompt,
            task_id=result.task.task_id,
            track_url=result.task.result_track_ref,
            beatoven_meta=result.task.payload,
            mode=result.mode,
        )
        body = response.model_dump(mode="json", by_alias=True, exclude_none=True)
        # trackUrl stays present (possibly null) for clients keyed on it.
        body.setdefault("trackUrl", None)
        return AssembledResponse(status_code=200, body=body)

    def failure(
        self,
        error: OrchestrationError,
        result: Optional[OrchestrationResult] = None,
    ) -> AssembledResponse:
        body: Dict[str, Any] = {
            "error": error.message,
            "stage": error.stage,
            "kind": error.kind,
            "retryable": error.retryable,
        }
        if result is not None:
            if result.mode is not None:
                body["mode"] = result.mode.value
            if result.briefs:
                body["perBoardResults"] = [
                    item.model_dump(mode="json", by_alias=True, exclude_none=True)
                    for item in board_results(result.briefs)
                ]
            if result.final_prompt is not None:
                body["beatovenPrompt"] = result.final_prompt
            if result.task is not None:
                body["task_id"] = result.task.task_id
        body.update(error.details)
        return AssembledResponse(status_code=error.status_code, body=body)

    @staticmethod
    def unexpected(exc: BaseException) -> AssembledResponse:
        return AssembledResponse(
            status_code=500,
            body={"error": str(exc) or exc.__class__.__name__, "stage": "internal", "retryable": False},
        )
