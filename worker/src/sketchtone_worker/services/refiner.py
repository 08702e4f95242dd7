"""Fan-in of ordered briefs into a single composition prompt."""

from __future__ import annotations

from typing import List, Optional, Sequence

import httpx
from loguru import logger

from .briefs import TextGenerator
from .cancellation import CancellationToken
from .exceptions import UpstreamCallError
from .gemini import Part, text_part
from .prompts import (
    COHERENCE_SUFFIX,
    FALLBACK_HEADER,
    MISSING_BRIEF_TEXT,
    REFINE_TEMPLATE,
    REFINED_MARKER,
    SEGMENT_LINE,
    after_marker,
)
from .types import Brief

STAGE = "refine"


def segment_line(position: int, brief: Brief) -> str:
    return SEGMENT_LINE.format(
        position=position,
        name=brief.name or brief.canvas_id,
        text=brief.text if brief.ok else MISSING_BRIEF_TEXT,
        duration=brief.segment_duration_seconds,
    )


def build_fallback_prompt(briefs: Sequence[Brief], total_duration: float) -> str:
    """Deterministic concatenation used whenever refinement is unavailable."""
    header = FALLBACK_HEADER.format(total=total_duration, count=len(briefs))
    suffix = COHERENCE_SUFFIX.format(total=total_duration)
    segments = "\n\n".join(
        segment_line(position, brief) for position, brief in enumerate(briefs, start=1)
    )
    return f"{header}{suffix}\n\n{segments}"


class PromptRefiner:
    def __init__(self, vision: TextGenerator) -> None:
        self._vision = vision

    async def refine(
        self,
        briefs: Sequence[Brief],
        total_duration: float,
        *,
        token: Optional[CancellationToken] = None,
    ) -> str:
        if not briefs:
            raise ValueError("refine requires at least one brief")
        fallback = build_fallback_prompt(briefs, total_duration)

        if len(briefs) == 1:
            lone = briefs[0]
            if lone.ok and lone.text:
                return lone.text
            logger.info("single brief unavailable; using fallback prompt")
            return fallback

        token = token or CancellationToken()
        contents: List[List[Part]] = [[text_part(REFINE_TEMPLATE.format(total=total_duration))]]
        for position, brief in enumerate(briefs, start=1):
            contents.append([text_part(segment_line(position, brief))])

        try:
            text = await token.guard(
                self._vision.generate_text(contents, stage=STAGE), stage=STAGE
            )
        except (UpstreamCallError, httpx.HTTPError) as exc:
            logger.warning("prompt refinement failed ({}); using fallback prompt", exc)
            return fallback

        refined = after_marker(text or "", REFINED_MARKER)
        if not refined:
            logger.warning("prompt refinement returned no usable text; using fallback prompt")
            return fallback
        return refined
