from __future__ import annotations

import asyncio
from typing import Any, Callable, Dict, List, Optional

import pytest

from sketchtone_worker.app.settings import Settings
from sketchtone_worker.services.exceptions import UpstreamCallError
from sketchtone_worker.services.types import BackendStatus

PNG_BYTES = b"\x89PNG\r\n\x1a\n" + bytes(range(256))


@pytest.fixture
def settings() -> Settings:
    return Settings(
        gemini_api_key="test-gemini",
        beatoven_api_key="test-beatoven",
        poll_interval_seconds=0.0,
        poll_max_attempts=90,
    )


class DummyVision:
    """Records generate_text calls and answers per stage."""

    name = "gemini"

    def __init__(
        self,
        *,
        brief: Optional[Callable[[List[List[Dict[str, Any]]]], Any]] = None,
        refine: Any = "REFINED_PROMPT:\nUnified prompt from refiner.",
        adjust: Any = "REVISED_PROMPT:\nRevised prompt.",
        delays: Optional[Dict[int, float]] = None,
    ) -> None:
        self.calls: List[Dict[str, Any]] = []
        self._brief = brief
        self._refine = refine
        self._adjust = adjust
        self._delays = delays or {}
        self._brief_index = 0

    async def warmup(self) -> BackendStatus:  # pragma: no cover - lightweight status
        return BackendStatus(name=self.name, ready=True, error=None)

    async def close(self) -> None:
        return None

    async def generate_text(self, contents: List[List[Dict[str, Any]]], *, stage: str) -> str:
        self.calls.append({"stage": stage, "contents": contents})
        if stage == "briefs":
            index = self._brief_index
            self._brief_index += 1
            delay = self._delays.get(index)
            if delay:
                await asyncio.sleep(delay)
            if self._brief is not None:
                return _resolve(self._brief(contents), stage)
            return f"Background music: brief {index + 1}"
        if stage == "refine":
            return _resolve(self._refine, stage)
        return _resolve(self._adjust, stage)

    def stage_calls(self, stage: str) -> List[Dict[str, Any]]:
        return [call for call in self.calls if call["stage"] == stage]


def _resolve(value: Any, stage: str) -> str:
    if isinstance(value, Exception):
        raise value
    return value


class DummyComposeService:
    """Compose service returning a scripted sequence of task statuses."""

    name = "beatoven"

    def __init__(
        self,
        statuses: Optional[List[Any]] = None,
        *,
        submit_payload: Any = None,
    ) -> None:
        self.submitted: List[str] = []
        self.status_checks = 0
        self._statuses = list(statuses or [{"status": "composed", "meta": {"track_url": "https://cdn/track.mp3"}}])
        self._submit_payload = submit_payload if submit_payload is not None else {"task_id": "t1"}

    async def warmup(self) -> BackendStatus:  # pragma: no cover - lightweight status
        return BackendStatus(name=self.name, ready=True, error=None)

    async def close(self) -> None:
        return None

    async def submit(self, prompt: str) -> Any:
        self.submitted.append(prompt)
        return self._submit_payload

    async def fetch_status(self, task_id: str) -> Dict[str, Any]:
        index = min(self.status_checks, len(self._statuses) - 1)
        self.status_checks += 1
        value = self._statuses[index]
        if isinstance(value, Exception):
            raise value
        return value


def upstream_error(stage: str = "briefs") -> UpstreamCallError:
    return UpstreamCallError("Gemini request failed: status 500", stage=stage, status=500)
