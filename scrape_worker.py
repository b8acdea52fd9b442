#!/usr/bin/env python3
"""Tender scrape worker.

Runs one scrape cycle over every enabled source (or keeps running on a
schedule) and stores classified tenders in the configured database:
- AusTender awarded contracts (OCDS API)
- AusTender open notices (OCDS API with fallback)
- AusTender RSS feeds
- NSW eTendering (headless browser, off unless ENABLE_NSW=true)
"""

from __future__ import annotations

import argparse
import logging
import time
from typing import List, Optional

import schedule

from tenderwatch.config import Settings, configure_logging, load_settings
from tenderwatch.errors import ScrapeInProgress
from tenderwatch.pipeline.orchestrator import ScrapeOrchestrator, ScrapeSummary
from tenderwatch.pipeline.registry import build_sources
from tenderwatch.storage.tender_repo import connect_repo

logger = logging.getLogger(__name__)


def build_orchestrator(settings: Settings, repo) -> ScrapeOrchestrator:
    return ScrapeOrchestrator(
        repo,
        build_sources(settings),
        inter_source_delay=settings.source_delay_seconds,
    )


def run_once(parallel: Optional[bool] = None) -> ScrapeSummary:
    settings = load_settings()
    repo = connect_repo(settings.db_dsn)
    try:
        orchestrator = build_orchestrator(settings, repo)
        summary = orchestrator.run(parallel=settings.scrape_parallel if parallel is None else parallel)
        logger.info(f"[scrape] stored={summary.total_tenders} failed_sources={summary.failed} stored_in_db={repo.count()}")
        return summary
    finally:
        repo.close()


def scheduled_run(orchestrator: ScrapeOrchestrator, parallel: bool) -> None:
    try:
        orchestrator.run(parallel=parallel)
    except ScrapeInProgress:
        logger.warning("[scrape] previous run still in progress, skipping this tick")


def build_scheduler(orchestrator: ScrapeOrchestrator, interval_minutes: int, parallel: bool) -> schedule.Scheduler:
    """Periodic scrape ticks against ``orchestrator``; a tick that finds a run in progress is skipped."""
    scheduler = schedule.Scheduler()
    scheduler.every(interval_minutes).minutes.do(scheduled_run, orchestrator, parallel)
    logger.info(f"[scrape] scheduled every {interval_minutes} minutes")
    return scheduler


def run_pending_forever(scheduler: schedule.Scheduler, poll_seconds: float = 5.0) -> None:
    while True:
        scheduler.run_pending()
        time.sleep(poll_seconds)


def run_scheduled(parallel: Optional[bool] = None) -> None:
    settings = load_settings()
    repo = connect_repo(settings.db_dsn)
    orchestrator = build_orchestrator(settings, repo)
    use_parallel = settings.scrape_parallel if parallel is None else parallel
    try:
        scheduled_run(orchestrator, use_parallel)
        run_pending_forever(build_scheduler(orchestrator, settings.scrape_interval_minutes, use_parallel))
    finally:
        repo.close()


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Scrape Australian government tenders")
    parser.add_argument("--parallel", action="store_true", help="run all sources concurrently")
    parser.add_argument("--scheduled", action="store_true", help="keep running on the configured interval")
    args = parser.parse_args(argv)

    configure_logging(load_settings().log_level)
    parallel = True if args.parallel else None
    if args.scheduled:
        run_scheduled(parallel)
        return 0
    summary = run_once(parallel)
    return 1 if summary.failed else 0


if __name__ == "__main__":
    raise SystemExit(main())
