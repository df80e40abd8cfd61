#!/usr/bin/env python3
"""Landsraad Screenshot Analyzer — run the analysis pipeline from the command line.

Sends local screenshots through the same pipeline as the API endpoint:
batch fan-out per model -> normalize -> dedupe per house.

Usage:
    # Analyze screenshots with the key from .env (LLM_API_KEY / OPENAI_API_KEY)
    python -m scripts.analyze_screenshots shots/atreides.png shots/corrino.png

    # Explicit key + model order
    python -m scripts.analyze_screenshots shots/*.png --api-key sk-... --model gpt-4.1-mini --model gpt-4o-mini

    # Write the records to a JSON file
    python -m scripts.analyze_screenshots shots/*.png --output week.json
"""

from __future__ import annotations

import argparse
import asyncio
import base64
import json
import mimetypes
import sys
from pathlib import Path

# Add backend to path for imports
_backend = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(_backend))

# Load .env before importing landsraad modules
from dotenv import load_dotenv
load_dotenv(_backend / ".env")

import structlog

structlog.configure(
    processors=[
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.dev.ConsoleRenderer(),
    ]
)

from landsraad.modules.analysis.service import AnalysisInputError, AnalysisService

logger = structlog.get_logger()


def to_data_url(path: Path) -> str:
    """Encode an image file as a data URL."""
    mime, _ = mimetypes.guess_type(path.name)
    data = base64.b64encode(path.read_bytes()).decode("ascii")
    return f"data:{mime or 'image/png'};base64,{data}"


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Extract Landsraad tasks from screenshots")
    parser.add_argument("screenshots", nargs="+", type=Path, help="Screenshot files (PNG/JPEG/WebP)")
    parser.add_argument("--api-key", default=None, help="Overrides LLM_API_KEY / OPENAI_API_KEY")
    parser.add_argument(
        "--model",
        action="append",
        default=None,
        help="Candidate model, repeat for fallback order (default: ANALYSIS_MODELS)",
    )
    parser.add_argument("--output", type=Path, default=None, help="Write the records as JSON")
    return parser.parse_args()


async def run(args: argparse.Namespace) -> int:
    missing = [p for p in args.screenshots if not p.is_file()]
    if missing:
        for path in missing:
            print(f"Not a file: {path}")
        return 2

    images = [to_data_url(p) for p in args.screenshots]
    service = AnalysisService()

    try:
        outcome = await service.analyze(images, api_key=args.api_key, models=args.model)
    except AnalysisInputError as exc:
        print(f"Rejected: {exc}")
        if exc.suggestion:
            print(f"  -> {exc.suggestion}")
        return 2

    print(f"\n{'='*60}")
    print(f"  LANDSRAAD ANALYSIS")
    print(f"{'='*60}")
    print(f"  Screenshots:   {len(images)}")
    print(f"  Models tried:  {', '.join(a.model for a in outcome.attempts)}")
    print(f"  Duration:      {outcome.duration_ms} ms")

    if not outcome.success:
        print(f"  Status:        FAILED ({outcome.status})")
        print(f"  Error:         {outcome.error}")
        print(f"  Detail:        {outcome.detail}")
        print(f"  Suggestion:    {outcome.suggestion}")
        print(f"{'='*60}\n")
        return 1

    print(f"  Model:         {outcome.model}")
    print(f"  Records:       {len(outcome.records)}")
    print(f"{'='*60}\n")

    for record in outcome.records:
        task = record.task
        label = record.house or "(unknown house)"
        if task.type == "unrevealed":
            print(f"  {label}: unrevealed")
            continue
        print(f"  {label}: {task.kind or '?'} {task.request or '?'} ({task.contribution:g} pts)")
        for tier, reward in task.rewards.items():
            print(f"      {tier}: {reward}")

    for warning in outcome.failed_batches:
        print(f"  WARNING {warning}")

    if args.output:
        payload = [r.model_dump(exclude_none=True) for r in outcome.records]
        args.output.write_text(json.dumps(payload, indent=2, ensure_ascii=False), encoding="utf-8")
        logger.info("Records written", path=str(args.output), records=len(payload))

    return 0


def main() -> None:
    sys.exit(asyncio.run(run(parse_args())))


if __name__ == "__main__":
    main()
