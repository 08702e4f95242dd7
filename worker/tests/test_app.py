from __future__ import annotations

import asyncio
import base64
import time

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from conftest import PNG_BYTES, DummyComposeService, DummyVision
from sketchtone_worker.app.jobs import JobManager
from sketchtone_worker.app.main import create_app
from sketchtone_worker.app.routes import _watch_disconnect
from sketchtone_worker.app.settings import Settings
from sketchtone_worker.services.cancellation import CancellationToken
from sketchtone_worker.services.orchestrator import CompositionOrchestrator
from sketchtone_worker.services.planner import SegmentPlanner

IMAGE_B64 = base64.b64encode(PNG_BYTES).decode("ascii")


def stubbed_app(settings: Settings, service: DummyComposeService | None = None) -> FastAPI:
    app = create_app(settings)
    orchestrator = CompositionOrchestrator(
        settings, SegmentPlanner(settings), DummyVision(), service or DummyComposeService()
    )
    app.state.composer = orchestrator
    app.state.job_manager = JobManager(orchestrator)
    return app


def test_create_app(settings: Settings) -> None:
    app = create_app(settings)
    assert app.title == "Sketchtone Worker"


def test_health_endpoint(settings: Settings) -> None:
    app = create_app(settings)
    with TestClient(app) as client:
        response = client.get("/health")
        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "ok"
        assert body["available_backends"] == ["beatoven", "gemini"]
        assert body["warmup_complete"] is True
        assert body["active_jobs"] == 0


def test_health_reports_missing_keys() -> None:
    app = create_app(Settings(gemini_api_key=None, beatoven_api_key=None))
    with TestClient(app) as client:
        body = client.get("/health").json()
        assert body["warmup_complete"] is False
        assert body["backend_status"]["gemini"]["error"] == "missing api key"


def test_generate_music_end_to_end(settings: Settings) -> None:
    service = DummyComposeService(
        [
            {"status": "composing"},
            {"status": "composing"},
            {"status": "composed", "meta": {"track_url": "https://cdn/track.mp3"}},
        ]
    )
    app = stubbed_app(settings, service)
    payload = {
        "boards": [
            {"id": "a", "name": "Sunrise", "imageBase64": f"data:image/png;base64,{IMAGE_B64}"},
            {"id": "b", "strokeCount": 6},
        ],
        "totalDuration": 60,
    }
    with TestClient(app) as client:
        response = client.post("/generate-music", json=payload)
    assert response.status_code == 200
    body = response.json()
    assert body["task_id"] == "t1"
    assert body["trackUrl"] == "https://cdn/track.mp3"
    assert body["mode"] == "fresh"
    assert [item["duration"] for item in body["perBoardDurations"]] == [30, 30]
    assert body["perBoardResults"][1]["strokeCount"] == 6


def test_generate_music_rejects_empty_boards(settings: Settings) -> None:
    app = stubbed_app(settings)
    with TestClient(app) as client:
        response = client.post("/generate-music", json={"boards": []})
    assert response.status_code == 400
    body = response.json()
    assert body["error"] == "No boards provided"
    assert body["stage"] == "validation"


@pytest.mark.parametrize(
    "payload,field",
    [
        ({"boards": [{"id": "a", "strokeCount": 6}], "totalDuration": 0}, "totalDuration"),
        ({"boards": [], "totalDuration": -5}, "totalDuration"),
        (
            {"adjustMode": True, "beatovenPrompt": "p", "adjustInstructions": "x" * 4001},
            "adjustInstructions",
        ),
        ({"boards": [{"strokeCount": 6}]}, "boards.0.id"),
    ],
)
def test_generate_music_rejects_malformed_payload(
    settings: Settings, payload: dict, field: str
) -> None:
    service = DummyComposeService()
    app = stubbed_app(settings, service)
    with TestClient(app) as client:
        response = client.post("/generate-music", json=payload)
    assert response.status_code == 400
    body = response.json()
    assert body["stage"] == "validation"
    assert body["kind"] == "validation_error"
    assert body["retryable"] is False
    assert body["error"].startswith("Invalid request:")
    assert field in body["error"]
    assert "detail" not in body
    assert body["errors"]
    assert service.submitted == []


def test_jobs_reject_malformed_payload(settings: Settings) -> None:
    app = stubbed_app(settings)
    with TestClient(app) as client:
        response = client.post("/jobs", json={"boards": "not-a-list"})
    assert response.status_code == 400
    assert response.json()["stage"] == "validation"


def test_generate_music_retry_accepts_long_returned_prompt(settings: Settings) -> None:
    service = DummyComposeService()
    app = stubbed_app(settings, service)
    stored = "Background music: " + "layered strings, " * 530
    assert len(stored) > 9_000
    with TestClient(app) as client:
        response = client.post(
            "/generate-music", json={"retryMode": True, "beatovenPrompt": stored}
        )
    assert response.status_code == 200
    assert service.submitted == [stored]


@pytest.mark.asyncio
async def test_client_disconnect_cancels_token() -> None:
    class DisconnectedRequest:
        async def is_disconnected(self) -> bool:
            return True

    token = CancellationToken()
    await asyncio.wait_for(_watch_disconnect(DisconnectedRequest(), token, 0.01), 1)
    assert token.cancelled
    assert token.reason == "client disconnected"


@pytest.mark.asyncio
async def test_disconnect_watch_stops_once_token_fires() -> None:
    checks = 0

    class ConnectedRequest:
        async def is_disconnected(self) -> bool:
            nonlocal checks
            checks += 1
            return False

    token = CancellationToken()
    watcher = asyncio.create_task(_watch_disconnect(ConnectedRequest(), token, 0.01))
    await asyncio.sleep(0.05)
    token.cancel("run finished")
    await asyncio.wait_for(watcher, 1)
    assert checks >= 1
    assert token.reason == "run finished"


def test_generate_music_retry_mode(settings: Settings) -> None:
    service = DummyComposeService()
    app = stubbed_app(settings, service)
    with TestClient(app) as client:
        response = client.post(
            "/generate-music",
            json={"retryMode": True, "beatovenPrompt": "Background music: stored."},
        )
    assert response.status_code == 200
    assert service.submitted == ["Background music: stored."]
    assert "perBoardResults" not in response.json()


def test_job_endpoints_round_trip(settings: Settings) -> None:
    app = stubbed_app(settings)
    with TestClient(app) as client:
        created = client.post("/jobs", json={"boards": [{"id": "a", "imageBase64": IMAGE_B64}]})
        assert created.status_code == 200
        job_id = created.json()["job_id"]

        state = created.json()["state"]
        for _ in range(100):
            state = client.get(f"/jobs/{job_id}").json()["state"]
            if state in {"succeeded", "failed", "cancelled"}:
                break
            time.sleep(0.02)
        assert state == "succeeded"

        result = client.get(f"/jobs/{job_id}/result")
        assert result.status_code == 200
        assert result.json()["task_id"] == "t1"

        assert client.get("/jobs/unknown").status_code == 404
        assert client.get("/jobs/unknown/result").status_code == 404
        assert client.delete("/jobs/unknown").status_code == 404
