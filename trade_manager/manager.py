#!/usr/bin/env python3
"""
manager.py – process entry point + operator REST API
----------------------------------------------------
Sub-commands
------------
run       scheduler loop (+ REST API on API_PORT unless 0)
tick      one tick, print the TickReport as JSON, exit
archive   append new ledger entries to <HISTORY_DIR>/trades/trade_log.csv

Endpoints
---------
GET  /status           paused flag, heartbeat age, portfolio, last tick
GET  /ledger?limit=N   newest N ledger entries
POST /pause            set the global pause flag
POST /resume           clear it
"""

from __future__ import annotations

import argparse
import json
import sys
import threading
from typing import Optional, Sequence

import redis
import uvicorn
from fastapi import FastAPI, HTTPException, Query

from notification_service.notifier import create_notifier
from quote_loader.feeds import create_feed
from shared.config import Settings
from shared.constants import SERVICE_NAME
from shared.errors import ConfigError, PersistenceFailure
from shared.logging import get_logger
from shared.redis_client import connect, heartbeat_age, set_paused, trading_paused
from trade_ledger.archive import archive_ledger

from .scheduler import Scheduler

log = get_logger("trade_manager")


def build_scheduler(settings: Settings, client: redis.Redis | None = None) -> Scheduler:
    client = client if client is not None else connect(settings.redis_url)
    return Scheduler(
        settings,
        feed=create_feed(settings.feeds),
        notifier=create_notifier(settings.notifier),
        client=client,
    )


# ───── REST API ───────────────────────────────────────────────────────
def create_app(scheduler: Scheduler) -> FastAPI:
    app = FastAPI(title="Portfolio Sentinel", docs_url=None, redoc_url=None)
    client = scheduler.client

    @app.get("/status")
    def status():
        try:
            hb = heartbeat_age(SERVICE_NAME, client)
        except redis.RedisError:
            hb = None
        report = scheduler.last_report
        return {
            "paused": trading_paused(client),
            "phase": scheduler.phase.value,
            "heartbeat_age": hb,
            "skipped_ticks": scheduler.skipped,
            "portfolio": scheduler.state.to_dict(),
            "last_tick": report.to_dict() if report else None,
        }

    @app.get("/ledger")
    def ledger(limit: int = Query(50, ge=1, le=1000)):
        try:
            entries = scheduler.ledger.tail(limit)
        except PersistenceFailure as exc:
            raise HTTPException(status_code=503, detail=str(exc)) from exc
        return [e.to_dict() for e in entries]

    @app.post("/pause")
    def pause():
        try:
            set_paused(True, "manual REST call", client)
        except redis.RedisError as exc:
            raise HTTPException(status_code=503, detail=str(exc)) from exc
        return {"paused": True}

    @app.post("/resume")
    def resume():
        try:
            set_paused(False, client=client)
        except redis.RedisError as exc:
            raise HTTPException(status_code=503, detail=str(exc)) from exc
        return {"paused": False}

    return app


# ───── CLI ────────────────────────────────────────────────────────────
def _parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="portfolio-sentinel",
                                description="Portfolio decision & notification engine")
    sub = p.add_subparsers(dest="command")
    run = sub.add_parser("run", help="scheduler loop + operator API")
    run.add_argument("--port", type=int, default=None, help="override API_PORT (0 = no API)")
    sub.add_parser("tick", help="run a single tick and print its report")
    sub.add_parser("archive", help="export new ledger entries to CSV")
    return p


def run(settings: Settings, port: Optional[int] = None) -> None:
    scheduler = build_scheduler(settings)
    port = settings.api_port if port is None else port
    if port:
        # REST API + scheduler in one process, scheduler on a daemon thread
        th = threading.Thread(target=scheduler.run_forever, name="scheduler", daemon=True)
        th.start()
        uvicorn.run(create_app(scheduler), host="0.0.0.0", port=port, log_level="warning")
        scheduler.stop()
    else:
        try:
            scheduler.run_forever()
        except KeyboardInterrupt:
            scheduler.stop()


def main(argv: Sequence[str] | None = None) -> int:
    args = _parser().parse_args(argv)
    try:
        settings = Settings.load()
    except ConfigError as exc:
        log.error("invalid configuration – %s", exc)
        return 2

    command = args.command or "run"
    if command == "run":
        run(settings, getattr(args, "port", None))
    elif command == "tick":
        report = build_scheduler(settings).run_tick()
        print(json.dumps(report.to_dict() if report else None, indent=2))
    elif command == "archive":
        ledger = build_scheduler(settings).ledger
        written = archive_ledger(ledger, settings.history_dir)
        print(f"{written} entr{'y' if written == 1 else 'ies'} archived")
    return 0


if __name__ == "__main__":
    sys.exit(main())
