"""
Periodic background scan job.

Runs the scan orchestrator once (repository refresh, mentions, contributors,
merged PRs, website discovery, mention backfill) within the configured time
budget and prints the run stats as JSON. Meant to be triggered by cron.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from typing import Any, Optional, Sequence

from roadmap.config.database import init_db
from roadmap.config.settings import settings
from roadmap.orchestrator_scan import ALL_TASKS, ScanOrchestrator
from roadmap.utils.logger import setup_logger


def normalize_task_selector(
    raw: str | Sequence[str] | None,
    *,
    default: Sequence[str] = ALL_TASKS,
) -> list[str]:
    """Comma-separated or list task selection; unknown names are dropped."""
    if raw is None:
        return list(default)
    values = raw.split(",") if isinstance(raw, str) else list(raw)
    selected = [value.strip() for value in values if value and value.strip() in ALL_TASKS]
    return selected or list(default)


async def run_scan_sync(
    *,
    orchestrator: Optional[ScanOrchestrator] = None,
    reset: bool = False,
    tasks: str | Sequence[str] | None = None,
) -> dict[str, Any]:
    orchestrator = orchestrator or ScanOrchestrator()
    return await orchestrator.run(reset=reset, tasks=normalize_task_selector(tasks))


def is_authorized(supplied_key: Optional[str], expected_key: Optional[str] = None) -> bool:
    """A configured refresh key must be supplied; without one the job is open."""
    expected = expected_key if expected_key is not None else settings.REFRESH_KEY
    return not expected or supplied_key == expected


def main(argv: Optional[Sequence[str]] = None) -> None:
    """CLI entry point."""
    parser = argparse.ArgumentParser(description="Run background registry scans")
    parser.add_argument("--reset", action="store_true", help="Recount all mentions from the message archive")
    parser.add_argument("--tasks", default=None, help=f"Comma-separated subset of: {','.join(ALL_TASKS)}")
    parser.add_argument("--key", default=None, help="Refresh key (required when REFRESH_KEY is set)")
    args = parser.parse_args(argv)

    setup_logger("roadmap", level=logging.DEBUG if settings.DEBUG else logging.INFO)

    if not is_authorized(args.key):
        print(json.dumps({"error": "Unauthorized"}), file=sys.stderr)
        sys.exit(2)

    init_db()
    result = asyncio.run(run_scan_sync(reset=args.reset, tasks=args.tasks))
    print(json.dumps(result, indent=2, default=str))

    # Exit with appropriate code
    sys.exit(0 if result.get("success") else 1)


if __name__ == "__main__":
    main()
