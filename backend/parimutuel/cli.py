from __future__ import annotations

import argparse
import asyncio
import json
import sys

from parimutuel.core.config import get_settings
from parimutuel.core.database import AsyncSessionLocal
from parimutuel.core.logging import setup_logging
from parimutuel.runtime import build_runtime


def _build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Parimutuel pools operational CLI")
    subparsers = parser.add_subparsers(dest="command")

    create_parser = subparsers.add_parser("create-pool", help="Create one pool immediately")
    create_parser.add_argument("--asset", default="BTC", help="Asset symbol, e.g. BTC")
    create_parser.add_argument("--interval-seconds", type=int, default=300, help="Pool duration")
    create_parser.add_argument("--join-window-seconds", type=int, default=120, help="Seconds until lock")
    create_parser.add_argument("--interval-key", default=None, help="Label such as 5m (defaults to <n>s)")
    create_parser.add_argument("--lock-buffer-seconds", type=int, default=60, help="Gap between lock and start")

    subparsers.add_parser("sweep", help="Run the transition, resolution and claimable sweeps once")
    subparsers.add_parser("cleanup", help="Delete settled pools that never took a bet")

    return parser


async def _run_create_pool(args: argparse.Namespace) -> int:
    if args.interval_seconds < 60 or args.join_window_seconds < 30:
        print("interval-seconds must be >= 60 and join-window-seconds >= 30")
        return 2
    runtime = build_runtime(get_settings(), session_factory=AsyncSessionLocal, redis=None)
    pool_id = await runtime.engine.create_pool_manual(
        args.asset.strip().upper(),
        args.interval_seconds,
        args.join_window_seconds,
        interval_key=args.interval_key or f"{args.interval_seconds}s",
        lock_buffer_seconds=args.lock_buffer_seconds,
    )
    print(json.dumps({"pool_id": str(pool_id)}, indent=2))
    return 0


async def _run_sweep() -> int:
    runtime = build_runtime(get_settings(), session_factory=AsyncSessionLocal, redis=None)
    summary = await runtime.engine.run_all_sweeps()
    print(json.dumps(summary, indent=2, sort_keys=True))
    return 0


async def _run_cleanup() -> int:
    runtime = build_runtime(get_settings(), session_factory=AsyncSessionLocal, redis=None)
    summary = await runtime.engine.cleanup_empty_pools()
    print(json.dumps(summary, indent=2, sort_keys=True))
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = _build_arg_parser()
    args = parser.parse_args(argv)
    if args.command is None:
        parser.print_help()
        return 1

    setup_logging("cli", stream=sys.stderr)
    if args.command == "create-pool":
        return asyncio.run(_run_create_pool(args))
    if args.command == "sweep":
        return asyncio.run(_run_sweep())
    if args.command == "cleanup":
        return asyncio.run(_run_cleanup())

    parser.print_help()
    return 1


if __name__ == "__main__":
    raise SystemExit(main())
