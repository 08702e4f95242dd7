"""
CLI entry point to run a one-off composition through the orchestrator.

Examples:
    python -m sketchtone_worker.generate --image sketch-a.png --image sketch-b.png
    python -m sketchtone_worker.generate --retry-prompt "Background music: ..."
    python -m sketchtone_worker.generate --adjust-prompt "..." --instructions "slower, add piano"
"""

from __future__ import annotations

import argparse
import asyncio
import base64
import json
import sys
from pathlib import Path
from typing import Optional, Sequence

from .app.models import BoardPayload, ComposeRequest
from .app.settings import Settings
from .services.beatoven import ComposeServiceClient
from .services.gemini import VisionLanguageClient
from .services.orchestrator import CompositionOrchestrator
from .services.planner import SegmentPlanner
from .services.results import ResultAssembler


def _parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Compose music from sketches via the Sketchtone worker.")
    parser.add_argument(
        "--image",
        dest="images",
        type=Path,
        action="append",
        default=[],
        help="PNG rendering of one board; repeat to submit boards in order.",
    )
    parser.add_argument(
        "--total-duration",
        type=int,
        default=None,
        help="Target track length in seconds (defaults to worker settings).",
    )
    parser.add_argument(
        "--retry-prompt",
        default=None,
        help="Resubmit a previously composed prompt unchanged.",
    )
    parser.add_argument(
        "--adjust-prompt",
        default=None,
        help="Previously composed prompt to revise with --instructions.",
    )
    parser.add_argument(
        "--instructions",
        default=None,
        help="Free-text adjustments applied to --adjust-prompt.",
    )
    return parser.parse_args(argv)


def build_request(
    images: Sequence[Path],
    *,
    total_duration: Optional[int] = None,
    retry_prompt: Optional[str] = None,
    adjust_prompt: Optional[str] = None,
    instructions: Optional[str] = None,
) -> ComposeRequest:
    if retry_prompt is not None:
        return ComposeRequest(retry_mode=True, beatoven_prompt=retry_prompt)
    if adjust_prompt is not None:
        return ComposeRequest(
            adjust_mode=True,
            beatoven_prompt=adjust_prompt,
            adjust_instructions=instructions,
        )
    boards = [
        BoardPayload(
            id=path.stem,
            name=path.stem,
            image_base64=base64.b64encode(path.read_bytes()).decode("ascii"),
        )
        for path in images
    ]
    return ComposeRequest(boards=boards, total_duration=total_duration)


async def _run(
    request: ComposeRequest,
    *,
    settings: Optional[Settings] = None,
) -> int:
    settings = settings or Settings()
    vision = VisionLanguageClient(settings)
    compose_service = ComposeServiceClient(settings)
    orchestrator = CompositionOrchestrator(
        settings, SegmentPlanner(settings), vision, compose_service
    )
    try:
        result = await orchestrator.run(request)
    finally:
        await orchestrator.close()

    assembled = ResultAssembler().assemble(result)
    print(json.dumps(assembled.body, indent=2))
    if assembled.status_code != 200:
        print(f"composition failed: {assembled.body.get('error')}", file=sys.stderr)
        return 1
    return 0


def main(argv: Optional[Sequence[str]] = None) -> None:
    args = _parse_args(argv)
    request = build_request(
        args.images,
        total_duration=args.total_duration,
        retry_prompt=args.retry_prompt,
        adjust_prompt=args.adjust_prompt,
        instructions=args.instructions,
    )
    sys.exit(asyncio.run(_run(request)))


if __name__ == "__main__":
    main()
