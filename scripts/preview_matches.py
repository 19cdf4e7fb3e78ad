#!/usr/bin/env python3
"""
Preview script for the matching engine.

Evaluates every candidate of the given seekers without writing anything,
or runs a full sweep with --sweep.

Usage:
    uv run python scripts/preview_matches.py 42
    uv run python scripts/preview_matches.py 42 43 --debug
    uv run python scripts/preview_matches.py --sweep
"""

import argparse
import asyncio
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from dotenv import load_dotenv

load_dotenv()

from config.settings import get_settings  # noqa: E402
from src.connections.postgres import close_postgres  # noqa: E402
from src.connections.redis import close_redis  # noqa: E402
from src.jobs.scheduler import get_components  # noqa: E402
from src.matching import MatchTracer  # noqa: E402


async def preview(intent_ids: list[int], debug: bool) -> None:
    """Print candidate evaluations for each seeker."""
    components = await get_components()
    settings = components.settings.model_copy(update={"debug": debug})

    for intent_id in intent_ids:
        print(f"\n{'=' * 60}")
        print(f"Seeker intent {intent_id}")
        print(f"{'=' * 60}")

        evaluations = await components.engine.find_candidate_matches(
            intent_id, MatchTracer(settings)
        )
        if not evaluations:
            print("No candidates")
            continue

        for ev in evaluations:
            if ev.compatible:
                print(f"  #{ev.target_intent_id:<8} COMPATIBLE")
            else:
                print(f"  #{ev.target_intent_id:<8} {ev.rejection_step}: {ev.rejection_reason}")

        compatible = sum(1 for ev in evaluations if ev.compatible)
        print(f"\nSummary: {compatible}/{len(evaluations)} compatible")


async def sweep() -> None:
    """Run one full matching sweep and print the summary."""
    components = await get_components()
    summary = await components.engine.run_matching_sweep()

    print(f"\n{'=' * 60}")
    print(f"Run {summary.run_id}")
    print(f"{'=' * 60}")
    print(f"Seekers processed:      {summary.seekers_processed}")
    print(f"Candidates considered:  {summary.candidates_considered}")
    print(f"STANDARD pairs:         {summary.standard_pairs} ({summary.standard_rows_created} rows)")
    print(f"Triangles:              {summary.triangles} ({summary.triangle_rows_created} rows)")
    print(f"Removed from flow:      {summary.users_removed_from_flow}")
    print(f"Seekers failed:         {summary.seekers_failed}")
    print(f"Duration:               {summary.duration_ms}ms")
    for intent_id, reason in sorted(summary.unmatched_reasons.items()):
        print(f"  unmatched #{intent_id}: {reason}")


async def main(args: argparse.Namespace) -> None:
    try:
        if args.sweep:
            await sweep()
        else:
            await preview(args.intent_ids, args.debug or get_settings().matching.debug)
    finally:
        await close_redis()
        await close_postgres()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Preview matching candidates")
    parser.add_argument("intent_ids", type=int, nargs="*", help="Seeker intent ID(s)")
    parser.add_argument("--debug", action="store_true", help="Log every check step")
    parser.add_argument("--sweep", action="store_true", help="Run a full matching sweep")

    args = parser.parse_args()
    if not args.sweep and not args.intent_ids:
        parser.error("give at least one intent id, or --sweep")
    asyncio.run(main(args))
