"""Canvas eligibility and segment timing for a fresh composition."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, List, Optional, Sequence

from loguru import logger

from ..app.settings import Settings
from .exceptions import NoEligibleBoards, ValidationFailure
from .types import CanvasInput

MIN_SEGMENT_SECONDS = 15

SEGMENT_DURATIONS = {
    1: 60,
    2: 30,
    3: 20,
    4: 15,
}


def segment_duration(count: int, total_duration: float) -> int:
    """Seconds assigned to each segment for ``count`` eligible canvases."""
    if count < 1:
        raise ValueError("segment_duration requires at least one canvas")
    mapped = SEGMENT_DURATIONS.get(count)
    if mapped is not None:
        return mapped
    return max(MIN_SEGMENT_SECONDS, int(total_duration // count))


@dataclass(frozen=True)
class SegmentPlan:
    canvases: List[CanvasInput]
    segment_seconds: int
    total_duration_seconds: float

    @property
    def count(self) -> int:
        return len(self.canvases)


class SegmentPlanner:
    """Selects analysable canvases and assigns their segment durations."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        *,
        max_boards: Optional[int] = None,
        min_stroke_count: Optional[int] = None,
        min_image_bytes: Optional[int] = None,
    ) -> None:
        self._max_boards = _pick(max_boards, settings, "max_boards", 4)
        self._min_stroke_count = _pick(min_stroke_count, settings, "min_stroke_count", 5)
        self._min_image_bytes = _pick(min_image_bytes, settings, "min_image_bytes", 75)

    def is_eligible(self, canvas: CanvasInput) -> bool:
        has_image = canvas.image_data is not None and len(canvas.image_data) > self._min_image_bytes
        return has_image or canvas.stroke_count >= self._min_stroke_count

    def select_canvases(self, canvases: Sequence[CanvasInput]) -> List[CanvasInput]:
        if not canvases:
            raise ValidationFailure("No boards provided")
        eligible = [canvas for canvas in canvases if self.is_eligible(canvas)]
        if not eligible:
            raise NoEligibleBoards(
                "No valid boards to analyze. Each board must have either an uploaded "
                f"background image or at least {self._min_stroke_count} stroke points.",
                details={"boardCount": len(canvases)},
            )
        if len(eligible) > self._max_boards:
            logger.info(
                "{} eligible boards submitted; analysing the first {}",
                len(eligible),
                self._max_boards,
            )
        return eligible[: self._max_boards]

    def build_plan(self, canvases: Sequence[CanvasInput], total_duration: float) -> SegmentPlan:
        selected = self.select_canvases(canvases)
        seconds = segment_duration(len(selected), total_duration)
        return SegmentPlan(
            canvases=selected,
            segment_seconds=seconds,
            total_duration_seconds=total_duration,
        )


def _pick(explicit: Optional[int], settings: Optional[Settings], name: str, default: int) -> int:
    if explicit is not None:
        return explicit
    if settings is not None:
        return int(getattr(settings, name))
    return default


def describe_ids(canvases: Iterable[CanvasInput]) -> str:
    return ", ".join(canvas.id for canvas in canvases)
