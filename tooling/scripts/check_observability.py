#!/usr/bin/env python3
"""Quick health check for the cafe API observability endpoints.

Usage:
    python tooling/scripts/check_observability.py \
        --base-url https://staging-api.example.com

The script validates:
  * Readiness: the ledger store answers and no scheduled job is failing.
  * Ledger telemetry: failed transitions and failed pushes stay within thresholds.
  * Scheduler telemetry: the points expiry sweep has not failed its last run.
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from typing import Any, Dict

import httpx


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Cafe API observability checker")
    parser.add_argument(
        "--base-url",
        default="http://localhost:8000",
        help="Base URL of the cafe API service.",
    )
    parser.add_argument(
        "--max-transition-failures",
        type=int,
        default=0,
        help="Maximum allowed failed order transitions before failing (default: 0).",
    )
    parser.add_argument(
        "--max-push-failures",
        type=int,
        default=5,
        help="Maximum allowed failed realtime pushes before failing (default: 5).",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=10.0,
        help="HTTP request timeout in seconds.",
    )
    return parser.parse_args()


async def _get_json(client: httpx.AsyncClient, path: str) -> Dict[str, Any]:
    response = await client.get(path)
    response.raise_for_status()
    return response.json()


def _fail(message: str) -> None:
    print(f"[check-observability] FAIL {message}")
    sys.exit(1)


def _log_ok(message: str) -> None:
    print(f"[check-observability] OK {message}")


async def validate_readiness(client: httpx.AsyncClient) -> None:
    payload = await _get_json(client, "/api/v1/readyz")
    if payload.get("status") == "error":
        failing = {
            name: component.get("detail")
            for name, component in payload.get("components", {}).items()
            if component.get("status") == "error"
        }
        _fail(f"Readiness reports errors: {failing}")
    _log_ok(f"Readiness {payload.get('status')}")


async def validate_ledger(client: httpx.AsyncClient, max_transition_failures: int, max_push_failures: int) -> None:
    payload = await _get_json(client, "/api/v1/observability/ledger")
    transitions = payload.get("transitions", {}) or {}
    transition_failures = sum(
        int(count) for key, count in transitions.items() if str(key).startswith("failed:")
    )
    push_failures = int((payload.get("pushes", {}) or {}).get("failed", 0))

    if transition_failures > max_transition_failures:
        _fail(f"Order transition failures {transition_failures} exceed threshold {max_transition_failures}")
    if push_failures > max_push_failures:
        _fail(f"Realtime push failures {push_failures} exceed threshold {max_push_failures}")

    _log_ok(
        f"Ledger observability OK (transition failures={transition_failures}, "
        f"push failures={push_failures}, live connections={payload.get('realtime_connections', 0)})"
    )


async def validate_scheduler(client: httpx.AsyncClient) -> None:
    payload = await _get_json(client, "/api/v1/observability/scheduler")
    if not payload.get("running"):
        _log_ok("Job scheduler not running in-process; expiry sweep is triggered externally")
        return

    for job in payload.get("jobs", []):
        metrics = job.get("metrics") or {}
        if int((metrics.get("totals") or {}).get("consecutive_failures", 0)) > 0:
            _fail(f"Scheduled job {job.get('id')} is failing: {metrics.get('last_error')}")
    _log_ok(f"Scheduler OK ({payload.get('configured_jobs', 0)} jobs)")


async def main() -> None:
    args = parse_args()
    async with httpx.AsyncClient(base_url=args.base_url, timeout=args.timeout) as client:
        await validate_readiness(client)
        await validate_ledger(client, args.max_transition_failures, args.max_push_failures)
        await validate_scheduler(client)


if __name__ == "__main__":
    asyncio.run(main())
