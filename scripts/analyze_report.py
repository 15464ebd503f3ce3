#!/usr/bin/env python3
"""Upload a lab report to a running Health Insights server and print the analysis."""

from __future__ import annotations

import argparse
import asyncio
import os
import signal
import sys
from pathlib import Path

REPO_ROOT = Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from health_insights.client import AnalysisClient, AnalysisOutcome  # noqa: E402
from health_insights.utils.logging import configure_logging  # noqa: E402

EXIT_CODES = {"success": 0, "partial": 2, "failure": 1, "canceled": 130}


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("path", type=Path, help="Report file to analyze.")
    parser.add_argument("--message", help="Question to ask about the report.")
    parser.add_argument(
        "--base-url",
        default=os.getenv("HEALTH_INSIGHTS_URL", "http://127.0.0.1:7600"),
        help="Base URL of the Health Insights server.",
    )
    parser.add_argument("--user-id", default=os.getenv("HEALTH_INSIGHTS_USER"))
    parser.add_argument("--timeout", type=float, default=120.0)
    parser.add_argument("--poll-interval", type=float, default=2.0)
    return parser.parse_args(argv)


def render(outcome: AnalysisOutcome) -> str:
    """Return a human-readable rendering that keeps the three outcomes distinct."""

    if outcome.state == "success":
        header = "ANALYSIS COMPLETE"
    elif outcome.state == "partial":
        header = "PARTIAL ANALYSIS (results may be incomplete)"
    elif outcome.state == "canceled":
        return f"CANCELED: {outcome.error}"
    else:
        return f"FAILED: {outcome.error or 'unknown error'}"

    lines = [header]
    if outcome.model:
        suffix = " (fallback)" if outcome.fallback else ""
        lines.append(f"Model: {outcome.model}{suffix}")
    lines.extend(f"Warning: {warning}" for warning in outcome.warnings)
    lines.append("")
    lines.append(outcome.analysis or "")
    return "\n".join(lines)


async def _run(args: argparse.Namespace) -> AnalysisOutcome:
    cancel_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, cancel_event.set)
    except NotImplementedError:  # pragma: no cover - Windows event loops
        pass
    client = AnalysisClient(
        args.base_url,
        user_id=args.user_id,
        poll_interval=args.poll_interval,
        timeout=args.timeout,
    )
    return await client.analyze(args.path, args.message, cancel_event=cancel_event)


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    configure_logging("WARNING")
    if not args.path.exists():
        print(f"File not found: {args.path}", file=sys.stderr)
        return 1
    outcome = asyncio.run(_run(args))
    print(render(outcome))
    return EXIT_CODES[outcome.state]


if __name__ == "__main__":
    sys.exit(main())
