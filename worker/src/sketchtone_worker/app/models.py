from __future__ import annotations

import base64
import binascii
from datetime import UTC, datetime
from enum import Enum
from typing import Any, Optional

from loguru import logger
from pydantic import BaseModel, ConfigDict, Field

from ..services.types import CanvasInput, ComposeMode

_DATA_URL_PREFIX = "base64,"


class BoardPayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(..., min_length=1, max_length=128)
    name: Optional[str] = Field(default=None, max_length=128)
    image_base64: Optional[str] = Field(default=None, alias="imageBase64")
    stroke_count: int = Field(default=0, ge=0, alias="strokeCount")

    def to_canvas(self) -> CanvasInput:
        return CanvasInput(
            id=self.id,
            display_name=self.name or None,
            image_data=_decode_image(self.id, self.image_base64),
            stroke_count=self.stroke_count,
        )


def _decode_image(board_id: str, encoded: Optional[str]) -> Optional[bytes]:
    if not encoded:
        return None
    if encoded.startswith("data:") and _DATA_URL_PREFIX in encoded:
        encoded = encoded.split(_DATA_URL_PREFIX, 1)[1]
    try:
        return base64.b64decode(encoded, validate=True)
    except (binascii.Error, ValueError):
        logger.warning("board {} carries an undecodable image payload; ignoring it", board_id)
        return None


class ComposeRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    boards: list[BoardPayload] = Field(default_factory=list)
    total_duration: Optional[float] = Field(default=None, gt=0, le=600, alias="totalDuration")
    retry_mode: bool = Field(default=False, alias="retryMode")
    adjust_mode: bool = Field(default=False, alias="adjustMode")
    beatoven_prompt: Optional[str] = Field(default=None, alias="beatovenPrompt")
    adjust_instructions: Optional[str] = Field(
        default=None, max_length=4_000, alias="adjustInstructions"
    )


class BoardResult(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str
    name: str
    brief: Optional[str] = None
    error: Optional[str] = None
    stroke_count: int = Field(default=0, alias="strokeCount")
    segment_duration: int


class BoardDuration(BaseModel):
    id: str
    duration: int


class ComposeResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    per_board_results: Optional[list[BoardResult]] = Field(default=None, alias="perBoardResults")
    per_board_durations: Optional[list[BoardDuration]] = Field(
        default=None, alias="perBoardDurations"
    )
    combined_prompt: Optional[str] = Field(default=None, alias="combinedPrompt")
    beatoven_prompt: str = Field(..., alias="beatovenPrompt")
    task_id: str
    track_url: Optional[str] = Field(default=None, alias="trackUrl")
    beatoven_meta: dict[str, Any] = Field(default_factory=dict, alias="beatovenMeta")
    mode: ComposeMode


class JobState(str, Enum):
    QUEUED = "queued"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"


TERMINAL_JOB_STATES = frozenset({JobState.SUCCEEDED, JobState.FAILED, JobState.CANCELLED})


def _utc_now() -> datetime:
    return datetime.now(tz=UTC)


class JobStatus(BaseModel):
    job_id: str
    state: JobState
    progress: float = Field(default=0.0, ge=0.0, le=1.0)
    stage: Optional[str] = None
    message: Optional[str] = None
    updated_at: datetime = Field(default_factory=_utc_now)


class JobResult(BaseModel):
    job_id: str
    status_code: int
    body: dict[str, Any]
