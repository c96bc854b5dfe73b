"""
Run a single fetch + tally cycle against the awards API and emit the
results document.

Usage:
    python -m scripts.tally_once
    python -m scripts.tally_once --api-url https://awards.example/api --output shared/state/results.json

Exit codes:
    0  cycle completed and results were emitted
    1  the cycle failed (results would be stale)
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from pathlib import Path

from dotenv import load_dotenv

from core.app import build_client, build_service
from core.scheduler import RefreshScheduler
from shared.config.system import load_system_config
from shared.storage.state_publisher import ResultsStatePublisher


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run one awards tally cycle")
    parser.add_argument(
        "--api-url",
        default=None,
        help="Awards API base URL (default: config / AWARDS_API_URL)",
    )
    parser.add_argument(
        "--token",
        default=None,
        help="Bearer token for the awards API (default: AWARDS_API_TOKEN)",
    )
    parser.add_argument(
        "--top-n",
        type=int,
        default=None,
        help="Number of named locations before the Other bucket",
    )
    parser.add_argument(
        "--output",
        type=Path,
        default=None,
        help="Write the results document to this file instead of stdout",
    )
    return parser.parse_args(argv)


async def _run_cycle(cfg):
    service = build_service(cfg)
    scheduler = RefreshScheduler(
        build_client(cfg),
        service,
        interval_seconds=cfg.refresh.interval_seconds,
    )
    ok = await scheduler.run_once()
    return ok, service


def main(argv=None) -> int:
    args = parse_args(argv)
    load_dotenv()

    cfg = load_system_config()
    if args.api_url:
        cfg.api.base_url = args.api_url
    if args.token:
        cfg.api.token = args.token
    if args.top_n is not None:
        if args.top_n < 1:
            print("--top-n must be at least 1", file=sys.stderr)
            return 2
        cfg.tally.location_top_n = args.top_n

    ok, service = asyncio.run(_run_cycle(cfg))
    if not ok:
        print(f"Tally cycle failed: {service.last_error}", file=sys.stderr)
        return 1

    if args.output:
        publisher = ResultsStatePublisher(
            service,
            base_dir=args.output.parent,
            relative_path=args.output.name,
        )
        return 0 if publisher.publish() else 1

    print(json.dumps(service.status_document(), indent=2))
    return 0


if __name__ == "__main__":
    sys.exit(main())
