"""Beatoven compose-service client (submit + task status)."""

from __future__ import annotations

from typing import Any, Callable, Dict, Optional, Sequence
from urllib.parse import quote

import httpx
from loguru import logger

from ..app.settings import Settings
from .exceptions import UpstreamCallError
from .types import BackendStatus


def _nested(payload: Dict[str, Any], *keys: str) -> Optional[str]:
    node: Any = payload
    for key in keys:
        if not isinstance(node, dict):
            return None
        node = node.get(key)
    return node if isinstance(node, str) and node else None


TRACK_EXTRACTORS: Sequence[Callable[[Dict[str, Any]], Optional[str]]] = (
    lambda meta: _nested(meta, "track_url"),
    lambda meta: _nested(meta, "trackUrl"),
    lambda meta: _nested(meta, "track", "downloadUrl"),
    lambda meta: _nested(meta, "track", "url"),
)


def extract_track_url(meta: Any) -> Optional[str]:
    """First non-null track reference across the known status shapes."""
    if not isinstance(meta, dict):
        return None
    for extractor in TRACK_EXTRACTORS:
        url = extractor(meta)
        if url is not None:
            return url
    return None


def task_meta(payload: Dict[str, Any]) -> Dict[str, Any]:
    meta = payload.get("meta")
    return meta if isinstance(meta, dict) and meta else payload


class ComposeServiceClient:
    """Async client for the Beatoven public API."""

    name = "beatoven"

    def __init__(
        self,
        settings: Settings,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._settings = settings
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    @property
    def configured(self) -> bool:
        return self._settings.beatoven_api_key is not None

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self._settings.beatoven_base_url,
                timeout=httpx.Timeout(self._settings.http_timeout_seconds, connect=10.0),
                transport=self._transport,
            )
        return self._client

    def _headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self._settings.beatoven_api_key or ''}"}

    async def warmup(self) -> BackendStatus:
        error = None if self.configured else "missing api key"
        return BackendStatus(
            name=self.name,
            ready=self.configured,
            error=error,
            details={"format": self._settings.compose_format},
        )

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def submit(self, prompt: str) -> Any:
        """POST the prompt; returns the decoded body (or raw text when not JSON)."""
        body = {
            "prompt": {"text": prompt},
            "format": self._settings.compose_format,
            "looping": self._settings.compose_looping,
        }
        response = await self.client.post(
            "/api/v1/tracks/compose",
            headers=self._headers(),
            json=body,
        )
        try:
            payload = response.json()
        except ValueError:
            payload = response.text[:2_000]
        if response.is_error:
            logger.warning("beatoven compose returned status {}", response.status_code)
        return payload

    async def fetch_status(self, task_id: str) -> Dict[str, Any]:
        response = await self.client.get(
            f"/api/v1/tasks/{quote(task_id, safe='')}",
            headers=self._headers(),
        )
        if response.is_error:
            raise UpstreamCallError(
                f"task status request failed with status {response.status_code}",
                stage="poll",
                status=response.status_code,
                payload=response.text[:2_000],
            )
        try:
            payload = response.json()
        except ValueError as exc:
            raise UpstreamCallError(
                "task status body is not JSON",
                stage="poll",
                status=response.status_code,
                payload=response.text[:2_000],
            ) from exc
        if not isinstance(payload, dict):
            raise UpstreamCallError(
                "task status body is not an object",
                stage="poll",
                status=response.status_code,
                payload=payload,
            )
        return payload
