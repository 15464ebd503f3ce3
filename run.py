#!/usr/bin/env python3
"""Development launcher for the Health Insights service."""

from __future__ import annotations

import argparse
import os
import sys
from pathlib import Path

import uvicorn

APP = "health_insights.main:app"
DEFAULT_HOST = "0.0.0.0"
DEFAULT_PORT = 7600
PROJECT_ROOT = Path(__file__).resolve().parent


def parse_args() -> argparse.Namespace:
    """Parse command line arguments for the launcher script."""

    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument(
        "--host",
        default=os.getenv("HOST", DEFAULT_HOST),
        help="Host interface for the server.",
    )
    parser.add_argument(
        "--port",
        type=int,
        default=int(os.getenv("PORT", DEFAULT_PORT)),
        help="Port for the server.",
    )
    parser.add_argument(
        "--log-level",
        default=os.getenv("LOG_LEVEL", "info"),
        help="Log level passed to Uvicorn.",
    )
    parser.add_argument(
        "--reload",
        dest="reload",
        action="store_true",
        default=os.getenv("RELOAD", "false").lower() in {"1", "true", "yes"},
        help="Enable autoreload.",
    )
    parser.add_argument(
        "--workers",
        type=int,
        default=int(os.getenv("WEB_CONCURRENCY", "1")),
        help="Number of worker processes; use JOB_STORE_BACKEND=redis when above 1.",
    )
    return parser.parse_args()


def main() -> None:
    """Launch Uvicorn serving the API."""

    args = parse_args()
    sys.path.insert(0, str(PROJECT_ROOT))

    from health_insights.utils.logging import configure_logging

    configure_logging(args.log_level)
    uvicorn.run(
        APP,
        host=args.host,
        port=args.port,
        log_level=args.log_level,
        reload=args.reload,
        reload_dirs=[str(PROJECT_ROOT / "health_insights")] if args.reload else None,
        workers=None if args.reload else args.workers,
    )


if __name__ == "__main__":
    main()
