"""Scrape cycle orchestration across all configured sources.

Sources run sequentially by default (ordered by priority, with a pause in
between) so unrelated government endpoints never see concurrent load from us
and at most one headless browser is alive at a time. Parallel mode fans out
to a thread pool and joins on every source. Either way a failing source is
recorded in the summary and never stops the others.
"""

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence

from tenderwatch.errors import ScrapeInProgress
from tenderwatch.ingestion.tender_types import SourceStats

logger = logging.getLogger(__name__)


@dataclass
class SourceOutcome:
    source: str
    success: bool
    stats: Optional[SourceStats] = None
    error: Optional[str] = None
    duration_seconds: float = 0.0

    @property
    def total(self) -> int:
        return self.stats.total if self.stats else 0

    @property
    def open(self) -> int:
        return self.stats.open if self.stats else 0

    @property
    def awarded(self) -> int:
        return self.stats.awarded if self.stats else 0

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "source": self.source,
            "success": self.success,
            "duration_seconds": round(self.duration_seconds, 2),
        }
        if self.stats is not None:
            out.update(self.stats.to_dict())
        if self.error is not None:
            out["error"] = self.error
        return out


@dataclass
class ScrapeSummary:
    results: List[SourceOutcome] = field(default_factory=list)
    duration_seconds: float = 0.0
    parallel: bool = False

    @property
    def sources(self) -> int:
        return len(self.results)

    @property
    def successful(self) -> int:
        return sum(1 for r in self.results if r.success)

    @property
    def failed(self) -> int:
        return sum(1 for r in self.results if not r.success)

    @property
    def total_tenders(self) -> int:
        return sum(r.total for r in self.results)

    @property
    def open_tenders(self) -> int:
        return sum(r.open for r in self.results)

    @property
    def awarded_contracts(self) -> int:
        return sum(r.awarded for r in self.results)

    def stats(self) -> Dict[str, Any]:
        return {
            "sources": self.sources,
            "successful": self.successful,
            "failed": self.failed,
            "total_tenders": self.total_tenders,
            "open_tenders": self.open_tenders,
            "awarded_contracts": self.awarded_contracts,
            "duration_seconds": round(self.duration_seconds, 1),
            "mode": "parallel" if self.parallel else "sequential",
        }

    def to_dict(self) -> Dict[str, Any]:
        return {"results": [r.to_dict() for r in self.results], "stats": self.stats()}


class ScrapeOrchestrator:
    """Runs a scrape cycle over a set of sources against one repository."""

    def __init__(
        self,
        repo,
        sources: Sequence[Any] = (),
        *,
        inter_source_delay: float = 1.0,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.repo = repo
        self.sources = list(sources)
        self.inter_source_delay = inter_source_delay
        self._sleep = sleep
        self._run_lock = threading.Lock()

    @property
    def running(self) -> bool:
        return self._run_lock.locked()

    def _run_source(self, source, cancel_event: Optional[threading.Event]) -> SourceOutcome:
        name = getattr(source, "name", source.__class__.__name__)
        started = time.monotonic()
        try:
            stats = source.ingest(self.repo, cancel_event=cancel_event)
        except Exception as e:
            logger.error(f"[{name}] failed: {e}", exc_info=True)
            return SourceOutcome(source=name, success=False, error=str(e) or e.__class__.__name__,
                                 duration_seconds=time.monotonic() - started)
        return SourceOutcome(source=name, success=True, stats=stats, duration_seconds=time.monotonic() - started)

    def _run_sequential(self, sources, cancel_event) -> List[SourceOutcome]:
        results: List[SourceOutcome] = []
        ordered = sorted(sources, key=lambda s: getattr(s, "priority", 100))
        for i, source in enumerate(ordered):
            name = getattr(source, "name", source.__class__.__name__)
            if cancel_event is not None and cancel_event.is_set():
                results.append(SourceOutcome(source=name, success=False, error="cancelled"))
                continue
            if i and self.inter_source_delay > 0:
                self._sleep(self.inter_source_delay)
            logger.info(f"--- {name} ---")
            results.append(self._run_source(source, cancel_event))
        return results

    def _run_parallel(self, sources, cancel_event) -> List[SourceOutcome]:
        if not sources:
            return []
        with ThreadPoolExecutor(max_workers=len(sources), thread_name_prefix="scrape") as executor:
            futures = [executor.submit(self._run_source, source, cancel_event) for source in sources]
            return [f.result() for f in futures]

    def run(
        self,
        sources: Optional[Sequence[Any]] = None,
        *,
        parallel: bool = False,
        cancel_event: Optional[threading.Event] = None,
    ) -> ScrapeSummary:
        """Run one scrape cycle.

        ``sources`` defaults to the enabled configured sources. Raises
        ``ScrapeInProgress`` when another cycle holds the run lock.
        """
        if not self._run_lock.acquire(blocking=False):
            raise ScrapeInProgress("a scrape run is already in progress")
        try:
            selected = list(sources) if sources is not None else [s for s in self.sources if getattr(s, "enabled", True)]
            logger.info(f"Scrape run: {len(selected)} sources, mode={'parallel' if parallel else 'sequential'}")
            started = time.monotonic()
            if parallel:
                results = self._run_parallel(selected, cancel_event)
            else:
                results = self._run_sequential(selected, cancel_event)
            summary = ScrapeSummary(results=results, duration_seconds=time.monotonic() - started, parallel=parallel)
        finally:
            self._run_lock.release()
        log_summary(summary)
        return summary


def log_summary(summary: ScrapeSummary) -> None:
    for r in summary.results:
        if r.success:
            logger.info(f"OK   {r.source}: {r.total} total ({r.open} open, {r.awarded} awarded)")
        else:
            logger.warning(f"FAIL {r.source}: {r.error}")
    logger.info(
        f"Total: {summary.total_tenders} tenders from {summary.successful}/{summary.sources} sources | "
        f"open={summary.open_tenders} awarded={summary.awarded_contracts} | {summary.duration_seconds:.1f}s"
    )
