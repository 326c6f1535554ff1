"""Operator CLI for running and inspecting the relay without the HTTP surface."""
from __future__ import annotations

import argparse
import asyncio
import json
import logging
import signal
import sys
from typing import Any

from chain_relay.core.settings import Settings, settings
from chain_relay.services.errors import RelayStartupError
from chain_relay.services.relay import RelayService

logger = logging.getLogger("chain_relay")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Relay contract events into the consensus log.")
    parser.add_argument("--batch-size", type=int, help="Events submitted per tick")
    parser.add_argument("--interval", type=float, help="Seconds between submission ticks")
    parser.add_argument("--max-retries", type=int, help="Failed attempts before an event is dead-lettered")
    parser.add_argument("--retention-days", type=int, help="Days to keep submitted events")
    parser.add_argument("--log-level", help="Logging level (default: LOG_LEVEL)")

    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("run", help="Run the relay until interrupted")
    sub.add_parser("reconcile", help="Replay missed blocks once and exit")
    sub.add_parser("stats", help="Print queue counts as JSON")
    sub.add_parser("cleanup", help="Delete submitted events past the retention window")
    return parser


def apply_overrides(base: Settings, args: argparse.Namespace) -> Settings:
    """Return a copy of `base` with the CLI overrides applied."""
    overrides: dict[str, Any] = {}
    if args.batch_size is not None:
        overrides["batch_size"] = args.batch_size
    if args.interval is not None:
        overrides["process_interval_seconds"] = args.interval
    if args.max_retries is not None:
        overrides["max_retries"] = args.max_retries
    if args.retention_days is not None:
        overrides["retention_days"] = args.retention_days
    if args.log_level:
        overrides["log_level"] = args.log_level
    if not overrides:
        return base
    return Settings.model_validate({**base.model_dump(), **overrides})


async def run_forever(relay: RelayService) -> None:
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except NotImplementedError:  # pragma: no cover - non-POSIX platforms
            pass

    await relay.start()
    try:
        await stop.wait()
        logger.info("Received shutdown signal...")
    finally:
        await relay.shutdown()


async def reconcile_once(relay: RelayService) -> int:
    try:
        report = await relay.reconcile()
    finally:
        await relay.source.close()
        relay.store.close()
    if report is None:
        return 1
    print(json.dumps({"from_block": report.from_block, "to_block": report.to_block,
                      "found": report.found, "inserted": report.inserted}))
    return 0


async def cleanup_once(relay: RelayService) -> int:
    try:
        deleted = await relay.sweeper.sweep()
    finally:
        relay.store.close()
    print(json.dumps({"deleted": deleted}))
    return 0


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    config = apply_overrides(settings, args)
    logging.basicConfig(
        level=config.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    relay = RelayService.from_settings(config)
    try:
        relay.initialize()
    except RelayStartupError as e:
        logger.error("Failed to initialize relay. Exiting: %s", e)
        return 1

    if args.command == "run":
        asyncio.run(run_forever(relay))
        return 0
    if args.command == "reconcile":
        return asyncio.run(reconcile_once(relay))
    if args.command == "cleanup":
        return asyncio.run(cleanup_once(relay))

    print(json.dumps({
        "counts": relay.store.count_by_status(),
        "watermark": relay.store.highest_observed_block(),
    }, indent=2))
    relay.store.close()
    return 0


if __name__ == "__main__":
    sys.exit(main())
