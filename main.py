"""CLI entrypoint: selection cycles, maintenance commands and the HTTP API server."""

from __future__ import annotations

import argparse
import asyncio
from dataclasses import replace
import json
import logging
import signal
import sys

import uvicorn

from config import get_selection_settings
from utils.exceptions import CycleInProgressError, SelectionEngineError
from utils.logger import get_cycle_logger, setup_root_logging
from webapp.runtime import close_runtime, get_orchestrator


def _install_stop_handlers(stop_event: asyncio.Event) -> None:
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except (NotImplementedError, RuntimeError):
            # Windows event loops do not support signal handlers.
            pass


async def _select(args: argparse.Namespace) -> dict:
    orchestrator = get_orchestrator()
    stop_event = asyncio.Event()
    _install_stop_handlers(stop_event)

    config = orchestrator.config
    if args.flexible_count:
        config = replace(config, flexible_count=True)
    if args.fast_lane:
        config = replace(config, breaking_fast_lane=True)
    if args.no_semantic:
        config = replace(config, semantic_dedup=False)

    count = args.count or get_selection_settings().target_count
    result = await orchestrator.run_cycle(count, config=config, stop_event=stop_event, trigger="cli")
    return result.model_dump(mode="json")


async def _dispatch(args: argparse.Namespace) -> dict:
    if args.command == "select":
        return await _select(args)
    if args.command == "cleanup-stale":
        return await get_orchestrator().cleanup_stale_selections(args.hours, limit=args.limit)
    if args.command == "stats":
        return await get_orchestrator().statistics(args.hours)
    raise ValueError(f"unknown command: {args.command}")


async def _run(args: argparse.Namespace) -> dict:
    try:
        return await _dispatch(args)
    finally:
        await close_runtime()


def main() -> None:
    parser = argparse.ArgumentParser(description="HK news candidate selection CLI")
    parser.add_argument("--verbose", "-v", action="store_true", help="debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    select = sub.add_parser("select", help="run one selection cycle")
    select.add_argument("--count", type=int, default=None)
    select.add_argument("--flexible-count", action="store_true")
    select.add_argument("--fast-lane", action="store_true")
    select.add_argument("--no-semantic", action="store_true")

    cleanup = sub.add_parser("cleanup-stale", help="release stuck selections")
    cleanup.add_argument("--hours", type=float, default=None)
    cleanup.add_argument("--limit", type=int, default=50)

    stats = sub.add_parser("stats", help="candidate pool statistics")
    stats.add_argument("--hours", type=float, default=24)

    serve = sub.add_parser("serve", help="run the HTTP API for the cron trigger")
    serve.add_argument("--host", type=str, default="127.0.0.1", help="Bind host")
    serve.add_argument("--port", type=int, default=8765, help="Bind port")
    serve.add_argument("--reload", action="store_true", help="Enable auto-reload")

    args = parser.parse_args()
    setup_root_logging(logging.DEBUG if args.verbose else logging.INFO)
    log = get_cycle_logger()

    if args.command == "serve":
        uvicorn.run("webapp.app:app", host=args.host, port=args.port, reload=args.reload)
        return

    try:
        payload = asyncio.run(_run(args))
    except CycleInProgressError as exc:
        log.warning("cycle already running: %s", exc)
        print(json.dumps({"error": exc.message, "cycle_id": exc.cycle_id}, ensure_ascii=False))
        sys.exit(2)
    except SelectionEngineError as exc:
        log.error("command failed: %s", exc)
        print(json.dumps({"error": exc.message, "details": exc.details}, ensure_ascii=False, default=str))
        sys.exit(1)

    print(json.dumps(payload, ensure_ascii=False, indent=2, default=str))


if __name__ == "__main__":
    main()
