"""Selection of the fresh / retry / adjust execution path."""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Union

from ..app.models import ComposeRequest
from ..app.settings import Settings
from .exceptions import ConfigurationError, ValidationFailure
from .types import CanvasInput, ComposeMode


@dataclass(frozen=True)
class FreshRun:
    canvases: List[CanvasInput]
    total_duration: float
    mode: ComposeMode = ComposeMode.FRESH


@dataclass(frozen=True)
class RetryRun:
    prompt: str
    mode: ComposeMode = ComposeMode.RETRY


@dataclass(frozen=True)
class AdjustRun:
    prompt: str
    instructions: str
    mode: ComposeMode = ComposeMode.ADJUST


RunPlan = Union[FreshRun, RetryRun, AdjustRun]


def as_seconds(value: float) -> float:
    """Whole-number lengths as int, fractional lengths unchanged."""
    number = float(value)
    return int(number) if number.is_integer() else number


def requested_mode(request: ComposeRequest) -> ComposeMode:
    if request.retry_mode and request.adjust_mode:
        raise ValidationFailure("retryMode and adjustMode cannot both be set")
    if request.retry_mode:
        return ComposeMode.RETRY
    if request.adjust_mode:
        return ComposeMode.ADJUST
    return ComposeMode.FRESH


def resolve_run(request: ComposeRequest, settings: Settings) -> RunPlan:
    """Validate the request once and map it onto exactly one execution path."""
    mode = requested_mode(request)

    if mode == ComposeMode.FRESH:
        if not request.boards:
            raise ValidationFailure("No boards provided")
        total = request.total_duration or settings.default_total_duration_seconds
        return FreshRun(
            canvases=[board.to_canvas() for board in request.boards],
            total_duration=as_seconds(total),
        )

    prompt = (request.beatoven_prompt or "").strip()
    if not prompt:
        raise ValidationFailure(f"beatovenPrompt is required for {mode.value} mode")
    if mode == ComposeMode.RETRY:
        # Submitted unchanged: the stored prompt is the exact text sent before.
        return RetryRun(prompt=request.beatoven_prompt or prompt)

    instructions = (request.adjust_instructions or "").strip()
    if not instructions:
        raise ValidationFailure("Please provide adjustment instructions")
    limit = settings.adjust_instructions_max_length
    if len(instructions) > limit:
        raise ValidationFailure(
            f"adjustInstructions must be at most {limit} characters",
            details={"length": len(instructions)},
        )
    return AdjustRun(prompt=request.beatoven_prompt or prompt, instructions=instructions)


def require_credentials(plan: RunPlan, settings: Settings) -> None:
    missing: List[str] = []
    if not isinstance(plan, RetryRun) and settings.gemini_api_key is None:
        missing.append("gemini")
    if settings.beatoven_api_key is None:
        missing.append("beatoven")
    if missing:
        raise ConfigurationError("API keys not set", missing=missing)
