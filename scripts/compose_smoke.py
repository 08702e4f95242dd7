#!/usr/bin/env python3
"""
Quick smoke test against the real Gemini and Beatoven services.

Submits one PNG as a single-board fresh composition, waits for the
compose task to finish, and prints the assembled response along with
stage timings so contributors can verify credentials and connectivity.
"""

from __future__ import annotations

import argparse
import asyncio
import base64
import json
import sys
import time
from pathlib import Path
from typing import TYPE_CHECKING

REPO_ROOT = Path(__file__).resolve().parents[1]
SRC_DIR = REPO_ROOT / "worker" / "src"
if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

if TYPE_CHECKING:
    from sketchtone_worker.app.settings import Settings


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run a live composition smoke test.")
    parser.add_argument("image", type=Path, help="PNG file to analyse.")
    parser.add_argument(
        "--total-duration",
        type=int,
        default=60,
        help="Target track length in seconds.",
    )
    parser.add_argument(
        "--max-attempts",
        type=int,
        default=None,
        help="Override the number of task status checks.",
    )
    return parser.parse_args()


def ensure_credentials(settings: "Settings") -> None:
    missing: list[str] = []
    if settings.gemini_api_key is None:
        missing.append("SKETCHTONE_GEMINI_API_KEY")
    if settings.beatoven_api_key is None:
        missing.append("SKETCHTONE_BEATOVEN_API_KEY")
    if missing:
        message = "\n".join(
            [
                "Missing credentials:",
                *[f"  - {item}" for item in missing],
                "Export them before running the smoke test.",
            ]
        )
        print(message, file=sys.stderr)
        sys.exit(2)


async def run_smoke(args: argparse.Namespace) -> None:
    from sketchtone_worker.app.models import BoardPayload, ComposeRequest
    from sketchtone_worker.app.settings import Settings
    from sketchtone_worker.services.beatoven import ComposeServiceClient
    from sketchtone_worker.services.gemini import VisionLanguageClient
    from sketchtone_worker.services.orchestrator import CompositionOrchestrator
    from sketchtone_worker.services.planner import SegmentPlanner
    from sketchtone_worker.services.results import ResultAssembler

    overrides: dict[str, object] = {}
    if args.max_attempts is not None:
        overrides["poll_max_attempts"] = args.max_attempts
    settings = Settings(**overrides)
    ensure_credentials(settings)

    orchestrator = CompositionOrchestrator(
        settings,
        SegmentPlanner(settings),
        VisionLanguageClient(settings),
        ComposeServiceClient(settings),
    )
    request = ComposeRequest(
        boards=[
            BoardPayload(
                id=args.image.stem,
                name=args.image.stem,
                image_base64=base64.b64encode(args.image.read_bytes()).decode("ascii"),
            )
        ],
        total_duration=args.total_duration,
    )

    timings: dict[str, float] = {}
    last = time.perf_counter()
    stage_started = {"stage": "validation"}

    async def progress_cb(stage: str, progress: float, message: str) -> None:
        nonlocal last
        now = time.perf_counter()
        previous = stage_started["stage"]
        timings[previous] = round(timings.get(previous, 0.0) + now - last, 3)
        stage_started["stage"] = stage
        last = now
        print(f"[{progress:4.0%}] {stage}: {message}", file=sys.stderr)

    try:
        result = await orchestrator.run(request, progress_cb=progress_cb)
    finally:
        await orchestrator.close()
    timings[stage_started["stage"]] = round(
        timings.get(stage_started["stage"], 0.0) + time.perf_counter() - last, 3
    )

    assembled = ResultAssembler().assemble(result)
    print(json.dumps({"status_code": assembled.status_code, "timings": timings, **assembled.body}, indent=2))
    if assembled.status_code != 200:
        sys.exit(3)
    if not assembled.body.get("trackUrl"):
        print("Task composed but no track url was reported.", file=sys.stderr)
        sys.exit(4)


def main() -> None:
    args = parse_args()
    try:
        asyncio.run(run_smoke(args))
    except KeyboardInterrupt:  # pragma: no cover - operator friendly exit
        print("Cancelled smoke test.", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
