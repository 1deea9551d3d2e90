#!/usr/bin/env python3
"""
cli.py

Command-line interface for the event ingestion pipeline.

Commands:
  - event-ingestion run      : Run one source by id
  - event-ingestion run-all  : Run every enabled source
  - event-ingestion check    : Check fetch service and database connectivity

Typical usage:
  event-ingestion run --source 42
  event-ingestion run-all --concurrency 3 --json-logs
  event-ingestion check
"""

from __future__ import annotations

import argparse
import asyncio
import json
from typing import Any, Dict, Optional

from src.configs.settings import get_settings
from src.ingestion.monitoring.logging import setup_logging


def _parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    p = argparse.ArgumentParser(prog="event-ingestion", description="Event ingestion CLI")
    p.add_argument("--json-logs", action="store_true", help="Emit JSON logs")
    p.add_argument("--log-level", default=None, help="Override LOG_LEVEL")
    sub = p.add_subparsers(dest="cmd", required=True)

    # run
    pr = sub.add_parser("run", help="Run a single source")
    pr.add_argument("--source", "-s", required=True, help="Source id")

    # run-all
    pa = sub.add_parser("run-all", help="Run all enabled sources")
    pa.add_argument(
        "--concurrency", "-p", type=int, default=None, help="Sources run in parallel"
    )

    # check
    sub.add_parser("check", help="Check external service connectivity")

    return p.parse_args(argv)


def _summary(result) -> Dict[str, Any]:
    return {
        "source_id": result.source_id,
        "source": result.source_name,
        "status": result.status,
        "attempts": result.attempts,
        "processed": result.processed,
        "created": result.created,
        "updated": result.updated,
        "skipped": result.skipped,
        "pages_crawled": result.pages_crawled,
        "errors": result.errors,
    }


async def _run(args: argparse.Namespace) -> int:
    from src.ingestion.factory import build_orchestrator, build_services

    settings = get_settings()
    services = build_services(settings)
    orchestrator = build_orchestrator(services)
    try:
        if args.cmd == "check":
            fetch_ok = await orchestrator.test_connection()
            try:
                db_ok = await asyncio.to_thread(services.database.ping)
            except Exception as e:
                db_ok = False
                print(f"Database check failed: {e}")
            print(json.dumps({"fetch": fetch_ok, "database": db_ok}, indent=2))
            return 0 if fetch_ok and db_ok else 1

        if args.cmd == "run":
            result = await orchestrator.run_source(args.source)
            print(json.dumps(_summary(result), indent=2, ensure_ascii=False))
            return 0 if result.success else 1

        if args.cmd == "run-all":
            concurrency = args.concurrency or settings.SOURCE_CONCURRENCY
            results = await orchestrator.run_all_sources(concurrency=concurrency)
            print(json.dumps([_summary(r) for r in results], indent=2, ensure_ascii=False))
            return 0 if all(r.success for r in results) else 1
    finally:
        await services.aclose()

    return 1


def main(argv: Optional[list[str]] = None) -> int:
    args = _parse_args(argv)
    settings = get_settings()
    setup_logging(
        args.log_level or settings.LOG_LEVEL,
        json_logs=bool(args.json_logs or settings.LOG_JSON),
    )
    return asyncio.run(_run(args))


if __name__ == "__main__":
    raise SystemExit(main())
