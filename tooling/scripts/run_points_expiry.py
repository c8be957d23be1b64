#!/usr/bin/env python3
"""Run the loyalty points expiry sweep once.

Intended usage: schedule via cron when the in-process job scheduler is
disabled, or run by hand after restoring a backup.

Example:
    python tooling/scripts/run_points_expiry.py
    python tooling/scripts/run_points_expiry.py --as-of 2026-01-01T00:00:00+00:00

Re-running is safe: entries that already expired and warnings that were
already raised are skipped.
"""

from __future__ import annotations

import argparse
import asyncio
import datetime as dt
import sys
from pathlib import Path
from typing import Any, Dict

from loguru import logger


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Expire due loyalty points and send expiry warnings")
    parser.add_argument(
        "--as-of",
        type=dt.datetime.fromisoformat,
        default=None,
        help="Evaluate expiry windows at this ISO-8601 instant instead of now (naive values are UTC).",
    )
    return parser.parse_args()


async def _run(as_of: dt.datetime | None) -> Dict[str, Any]:
    repo_root = Path(__file__).resolve().parents[2]
    api_src = repo_root / "apps" / "api" / "src"
    if str(api_src) not in sys.path:
        sys.path.insert(0, str(api_src))

    from cafe_api.core.clock import ensure_aware, utcnow  # type: ignore import-position
    from cafe_api.db.session import async_session, engine  # type: ignore import-position
    from cafe_api.jobs.loyalty.expiry import run_points_expiry_sweep  # type: ignore import-position

    clock = (lambda: ensure_aware(as_of)) if as_of else utcnow
    try:
        return await run_points_expiry_sweep(session_factory=async_session, clock=clock)
    finally:
        await engine.dispose()


def main() -> int:
    args = parse_args()
    summary = asyncio.run(_run(args.as_of))
    if summary["errors"]:
        logger.error("Points expiry sweep finished with errors", **summary)
        return 1
    logger.success("Points expiry sweep completed", **summary)
    return 0


if __name__ == "__main__":
    sys.exit(main())
