"""Shared service-layer exceptions."""

from __future__ import annotations

from typing import Any, Dict, Optional


class OrchestrationError(Exception):
    """Expected failure of one orchestration stage."""

    kind = "orchestration_error"
    status_code = 500
    retryable = False

    def __init__(
        self,
        message: str,
        *,
        stage: str,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.stage = stage
        self.details: Dict[str, Any] = dict(details or {})


class ValidationFailure(OrchestrationError):
    """The request cannot be processed as submitted."""

    kind = "validation_error"
    status_code = 400

    def __init__(self, message: str, *, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message, stage="validation", details=details)


class NoEligibleBoards(ValidationFailure):
    """None of the submitted canvases can be analysed."""


class ConfigurationError(OrchestrationError):
    """Credentials for a required upstream service are missing."""

    kind = "configuration_error"

    def __init__(self, message: str, *, missing: list[str]) -> None:
        super().__init__(message, stage="configuration", details={"missing": missing})
        self.missing = missing


class UpstreamCallError(OrchestrationError):
    """An upstream call returned an unusable response."""

    kind = "upstream_error"

    def __init__(
        self,
        message: str,
        *,
        stage: str,
        status: Optional[int] = None,
        payload: Any = None,
    ) -> None:
        details: Dict[str, Any] = {}
        if status is not None:
            details["upstreamStatus"] = status
        if payload is not None:
            details["upstream"] = payload
        super().__init__(message, stage=stage, details=details)
        self.status = status
        self.payload = payload


class SubmissionError(OrchestrationError):
    """The compose service did not hand back a task identifier."""

    kind = "submission_error"

    def __init__(self, message: str, *, payload: Any) -> None:
        super().__init__(message, stage="compose", details={"composeJson": payload})
        self.payload = payload


class CompositionFailure(OrchestrationError):
    """The compose service reported the task as failed."""

    kind = "composition_failed"

    def __init__(self, message: str, *, task_id: str, payload: Any) -> None:
        super().__init__(
            message,
            stage="poll",
            details={"task_id": task_id, "beatoven": payload},
        )
        self.task_id = task_id
        self.payload = payload


class CompositionTimeout(OrchestrationError):
    """The task did not reach a terminal state within the poll ceiling."""

    kind = "timed_out"
    retryable = True

    def __init__(self, message: str, *, task_id: str, attempts: int) -> None:
        super().__init__(
            message,
            stage="poll",
            details={"task_id": task_id, "status": "timed_out", "attempts": attempts},
        )
        self.task_id = task_id
        self.attempts = attempts


class OrchestrationCancelled(OrchestrationError):
    """The caller aborted the run."""

    kind = "cancelled"
    status_code = 499
    retryable = True

    def __init__(self, message: str = "Orchestration cancelled", *, stage: str = "unknown") -> None:
        super().__init__(message, stage=stage, details={"status": "cancelled"})
