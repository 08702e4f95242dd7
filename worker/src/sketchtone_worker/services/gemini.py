"""Gemini generateContent client used for briefs, refinement and adjustment."""

from __future__ import annotations

import base64
from typing import Any, Callable, Dict, List, Optional, Sequence

import httpx
from loguru import logger

from ..app.settings import Settings
from .exceptions import UpstreamCallError
from .types import BackendStatus

Part = Dict[str, Any]


def _candidate_parts(payload: Dict[str, Any]) -> Optional[str]:
    candidates = payload.get("candidates")
    if not isinstance(candidates, list) or not candidates:
        return None
    content = candidates[0].get("content") if isinstance(candidates[0], dict) else None
    parts = content.get("parts") if isinstance(content, dict) else None
    if not isinstance(parts, list):
        return None
    texts = [part.get("text") for part in parts if isinstance(part, dict)]
    joined = "".join(text for text in texts if isinstance(text, str))
    return joined or None


def _output_content(payload: Dict[str, Any]) -> Optional[str]:
    output = payload.get("output")
    if not isinstance(output, list) or not output or not isinstance(output[0], dict):
        return None
    content = output[0].get("content")
    if isinstance(content, dict) and isinstance(content.get("text"), str):
        return content["text"]
    return None


def _top_level_text(payload: Dict[str, Any]) -> Optional[str]:
    text = payload.get("text")
    return text if isinstance(text, str) else None


TEXT_EXTRACTORS: Sequence[Callable[[Dict[str, Any]], Optional[str]]] = (
    _candidate_parts,
    _output_content,
    _top_level_text,
)


def extract_text(payload: Any) -> Optional[str]:
    """First non-blank text found across the known response shapes."""
    if not isinstance(payload, dict):
        return None
    for extractor in TEXT_EXTRACTORS:
        text = extractor(payload)
        if text is not None and text.strip():
            return text.strip()
    return None


def text_part(text: str) -> Part:
    return {"text": text}


def image_part(data: bytes, mime_type: str = "image/png") -> Part:
    return {"inlineData": {"mimeType": mime_type, "data": base64.b64encode(data).decode("ascii")}}


class VisionLanguageClient:
    """Thin async wrapper over the Gemini REST API."""

    name = "gemini"

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
        return self._settings.gemini_api_key is not None

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self._settings.gemini_base_url,
                timeout=httpx.Timeout(self._settings.http_timeout_seconds, connect=10.0),
                transport=self._transport,
            )
        return self._client

    async def warmup(self) -> BackendStatus:
        error = None if self.configured else "missing api key"
        return BackendStatus(
            name=self.name,
            ready=self.configured,
            error=error,
            details={"model": self._settings.gemini_model},
        )

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def generate_text(self, contents: List[List[Part]], *, stage: str) -> str:
        """Send one ``generateContent`` request and return its text.

        ``contents`` holds one list of parts per content entry. Raises
        :class:`UpstreamCallError` for non-success responses, undecodable
        bodies, error payloads and empty text.
        """
        body = {"contents": [{"parts": parts} for parts in contents]}
        path = f"/v1beta/models/{self._settings.gemini_model}:generateContent"
        try:
            response = await self.client.post(
                path,
                params={"key": self._settings.gemini_api_key or ""},
                json=body,
            )
        except httpx.HTTPError as exc:
            raise UpstreamCallError(
                f"Gemini request failed: {exc.__class__.__name__}", stage=stage
            ) from exc

        try:
            payload = response.json()
        except ValueError as exc:
            raise UpstreamCallError(
                "Gemini returned a non-JSON body",
                stage=stage,
                status=response.status_code,
                payload=response.text[:2_000],
            ) from exc

        if response.is_error or (isinstance(payload, dict) and payload.get("error")):
            message = _error_message(payload) or f"status {response.status_code}"
            raise UpstreamCallError(
                f"Gemini request failed: {message}",
                stage=stage,
                status=response.status_code,
                payload=payload,
            )

        text = extract_text(payload)
        if text is None:
            raise UpstreamCallError(
                "Gemini returned no text",
                stage=stage,
                status=response.status_code,
                payload=payload,
            )
        logger.debug("gemini {} call returned {} characters", stage, len(text))
        return text


def _error_message(payload: Any) -> Optional[str]:
    if not isinstance(payload, dict):
        return None
    error = payload.get("error")
    if isinstance(error, dict):
        message = error.get("message")
        return str(message) if message else None
    if isinstance(error, str):
        return error
    return None
