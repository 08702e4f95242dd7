"""Per-canvas musical briefs produced concurrently by the vision service."""

from __future__ import annotations

import asyncio
from typing import List, Optional, Protocol, Sequence

import httpx
from loguru import logger

from .cancellation import CancellationToken
from .exceptions import UpstreamCallError
from .gemini import Part, image_part, text_part
from .prompts import brief_instruction
from .types import Brief, CanvasInput

STAGE = "briefs"


class TextGenerator(Protocol):
    async def generate_text(self, contents: List[List[Part]], *, stage: str) -> str: ...


class BriefGenerator:
    """Fans one analysis call out per canvas and joins them in input order."""

    def __init__(self, vision: TextGenerator) -> None:
        self._vision = vision

    async def generate(
        self,
        canvases: Sequence[CanvasInput],
        segment_seconds: int,
        *,
        token: Optional[CancellationToken] = None,
    ) -> List[Brief]:
        token = token or CancellationToken()
        calls = [
            self._brief_for(position, canvas, segment_seconds, token)
            for position, canvas in enumerate(canvases)
        ]
        # gather returns results by argument position, not completion order.
        return list(await asyncio.gather(*calls))

    async def _brief_for(
        self,
        position: int,
        canvas: CanvasInput,
        segment_seconds: int,
        token: CancellationToken,
    ) -> Brief:
        name = canvas.label(position)
        has_image = bool(canvas.image_data)
        parts: List[Part] = [
            text_part(
                brief_instruction(
                    segment_seconds,
                    stroke_count=canvas.stroke_count,
                    has_image=has_image,
                )
            )
        ]
        if canvas.image_data:
            parts.append(image_part(canvas.image_data))

        text: Optional[str] = None
        error: Optional[str] = None
        try:
            text = await token.guard(
                self._vision.generate_text([parts], stage=STAGE), stage=STAGE
            )
            if not text or not text.strip():
                raise UpstreamCallError("Gemini returned no text", stage=STAGE)
            text = text.strip()
        except UpstreamCallError as exc:
            text, error = None, exc.message
        except httpx.HTTPError as exc:
            text, error = None, f"Gemini request failed: {exc.__class__.__name__}"

        if error is not None:
            logger.warning("brief for board {} failed: {}", canvas.id, error)
        else:
            logger.info("brief for board {} ready ({} chars)", canvas.id, len(text or ""))
        return Brief(
            canvas_id=canvas.id,
            name=name,
            text=text,
            error=error,
            segment_duration_seconds=segment_seconds,
            stroke_count=canvas.stroke_count,
        )
