"""Shared service data structures."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from .exceptions import OrchestrationError


@dataclass(frozen=True)
class CanvasInput:
    id: str
    display_name: Optional[str]
    image_data: Optional[bytes]
    stroke_count: int = 0

    def label(self, position: int) -> str:
        return self.display_name or f"board-{position + 1}"


@dataclass
class Brief:
    canvas_id: str
    name: str
    text: Optional[str]
    error: Optional[str]
    segment_duration_seconds: int
    stroke_count: int = 0

    @property
    def ok(self) -> bool:
        return self.text is not None and self.error is None


class TaskStatus(str, Enum):
    PENDING = "pending"
    COMPOSED = "composed"
    FAILED = "failed"
    TIMED_OUT = "timed_out"


@dataclass
class CompositionTask:
    task_id: str
    status: TaskStatus = TaskStatus.PENDING
    result_track_ref: Optional[str] = None
    payload: Dict[str, Any] = field(default_factory=dict)

    @property
    def terminal(self) -> bool:
        return self.status != TaskStatus.PENDING

    def transition(
        self,
        status: TaskStatus,
        *,
        track_ref: Optional[str] = None,
        payload: Optional[Dict[str, Any]] = None,
    ) -> None:
        if self.terminal:
            raise RuntimeError(
                f"task {self.task_id} already {self.status.value}, cannot move to {status.value}"
            )
        if status == TaskStatus.PENDING:
            raise RuntimeError("pending is not a terminal state")
        self.status = status
        self.result_track_ref = track_ref
        if payload is not None:
            self.payload = payload


@dataclass(frozen=True)
class PollState:
    attempt: int = 0
    max_attempts: int = 90
    interval_seconds: float = 2.0

    @property
    def exhausted(self) -> bool:
        return self.attempt >= self.max_attempts

    def advance(self) -> "PollState":
        return replace(self, attempt=self.attempt + 1)


class ComposeMode(str, Enum):
    FRESH = "fresh"
    RETRY = "retry"
    ADJUST = "adjust"


@dataclass
class OrchestrationResult:
    mode: Optional[ComposeMode]
    briefs: List[Brief] = field(default_factory=list)
    combined_prompt: Optional[str] = None
    final_prompt: Optional[str] = None
    task: Optional[CompositionTask] = None
    error: Optional[OrchestrationError] = None

    @property
    def succeeded(self) -> bool:
        return self.error is None and self.task is not None and (
            self.task.status == TaskStatus.COMPOSED
        )


@dataclass
class BackendStatus:
    name: str
    ready: bool
    error: Optional[str]
    details: Dict[str, Any] = field(default_factory=dict)
    updated_at: datetime = field(default_factory=lambda: datetime.now(tz=UTC))

    def as_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "name": self.name,
            "ready": self.ready,
            "updated_at": self.updated_at.isoformat(),
        }
        if self.error is not None:
            payload["error"] = self.error
        if self.details:
            payload["details"] = self.details
        return payload
