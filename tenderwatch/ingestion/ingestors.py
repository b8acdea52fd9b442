"""Source adapters for Australian procurement upstreams.

Each adapter fetches raw records lazily from one upstream, maps them to the
canonical ``TenderRecord`` and hands them to the repository:
- AusTender OCDS API (awarded contracts, chunked by date range)
- AusTender OCDS API (open notices, primary/secondary fallback chain)
- RSS feeds (open notices)

The browser-driven NSW adapter lives in ``tenderwatch.ingestion.browser``.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Iterator, List, Optional, Sequence, Tuple

import feedparser
import requests

from tenderwatch.classification.keywords import classify
from tenderwatch.errors import RecordError, SourceError, StructuralError
from tenderwatch.ingestion.mappings import map_ocds_contract, map_ocds_notice, map_rss_entry
from tenderwatch.ingestion.tender_types import OPEN, RawRecord, SourceStats, TenderRecord

logger = logging.getLogger(__name__)

USER_AGENT = "TenderWatch/1.0"
OCDS_BASE_URL = "https://api.tenders.gov.au/ocds"
DEFAULT_TIMEOUT = 30.0


def _fmt(dt: datetime) -> str:
    return dt.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def _shift_months(dt: datetime, months: int) -> datetime:
    month_index = dt.month - 1 + months
    year = dt.year + month_index // 12
    month = month_index % 12 + 1
    # clamp day for short months (e.g. 31 Mar - 1 month)
    for day in (dt.day, 30, 29, 28):
        try:
            return dt.replace(year=year, month=month, day=day)
        except ValueError:
            continue
    raise ValueError(f"cannot shift {dt} by {months} months")


def chunk_windows(end: datetime, *, lookback_months: int = 12, chunk_months: int = 2) -> List[Tuple[datetime, datetime]]:
    """Split a lookback window into consecutive chunks, newest first.

    Both edges are offsets from ``end``, so adjacent chunks share a boundary
    even across short months.
    """
    if chunk_months <= 0:
        raise ValueError("chunk_months must be positive")
    windows = []
    for i in range(0, max(lookback_months, 0), chunk_months):
        chunk_end = _shift_months(end, -i)
        chunk_start = _shift_months(end, -min(i + chunk_months, lookback_months))
        windows.append((chunk_start, chunk_end))
    return windows


def _releases_from(resp: requests.Response) -> List[Dict[str, Any]]:
    try:
        data = resp.json()
    except ValueError as e:
        raise StructuralError(f"response from {resp.url} is not JSON") from e
    if not isinstance(data, dict) or not isinstance(data.get("releases"), list):
        raise StructuralError(f"response from {resp.url} has no releases list")
    return [r for r in data["releases"] if isinstance(r, dict)]


class BaseSource:
    """Common ingest loop; subclasses provide ``fetch`` and ``to_record``."""

    name: str = "base"
    transport: str = "api"
    enabled: bool = True
    priority: int = 100
    construction_only: bool = True

    def fetch(self, stats: Optional[SourceStats] = None) -> Iterator[RawRecord]:
        raise NotImplementedError

    def to_record(self, raw: RawRecord) -> TenderRecord:
        raise NotImplementedError

    def ingest(self, repo, *, cancel_event: Optional[threading.Event] = None) -> SourceStats:
        """Fetch, classify and upsert every record from this source.

        Malformed records are skipped and counted. Non-construction records are
        discarded by construction-focused sources and tagged by general ones.
        Upstream failures propagate to the caller.
        """
        stats = SourceStats()
        records = self.fetch(stats)
        try:
            for raw in records:
                if cancel_event is not None and cancel_event.is_set():
                    logger.info(f"[{self.name}] cancelled after {stats.fetched} records")
                    stats.notes["cancelled"] = True
                    break
                stats.fetched += 1
                try:
                    record = self.to_record(raw)
                except (RecordError, KeyError, TypeError, ValueError, AttributeError) as e:
                    stats.skipped += 1
                    logger.warning(f"[{self.name}] skipping malformed record: {e}")
                    continue

                verdict = classify(record.title, record.description)
                if verdict.is_construction:
                    stats.construction += 1
                elif self.construction_only:
                    stats.discarded += 1
                    continue

                record = replace(record, is_construction=verdict.is_construction, category=verdict.category)
                repo.upsert(record, record.tender_status)
                stats.total += 1
                if record.tender_status == OPEN:
                    stats.open += 1
                else:
                    stats.awarded += 1
        finally:
            close = getattr(records, "close", None)
            if close is not None:
                close()

        logger.info(
            f"[{self.name}] fetched={stats.fetched} stored={stats.total} construction={stats.construction} "
            f"skipped={stats.skipped} discarded={stats.discarded} failed_chunks={stats.failed_chunks}"
        )
        return stats


@dataclass(frozen=True)
class AusTenderContractsSource(BaseSource):
    """Awarded contracts from the AusTender OCDS API.

    The API caps response size, so the lookback is queried in date chunks,
    sequentially, with a pause between requests.
    """

    name: str = "AusTender"
    transport: str = "api"
    enabled: bool = True
    priority: int = 1
    construction_only: bool = True
    base_url: str = OCDS_BASE_URL
    lookback_months: int = 12
    chunk_months: int = 2
    chunk_delay: float = 0.5
    timeout: float = DEFAULT_TIMEOUT
    now: Callable[[], datetime] = field(default=lambda: datetime.now(timezone.utc), compare=False, repr=False)

    def _fetch_window(self, start: datetime, end: datetime) -> List[Dict[str, Any]]:
        url = f"{self.base_url}/findByDates/contractPublished/{_fmt(start)}/{_fmt(end)}"
        resp = requests.get(url, headers={"User-Agent": USER_AGENT}, timeout=self.timeout)
        resp.raise_for_status()
        return _releases_from(resp)

    def fetch(self, stats: Optional[SourceStats] = None) -> Iterator[RawRecord]:
        windows = chunk_windows(self.now(), lookback_months=self.lookback_months, chunk_months=self.chunk_months)
        failures = 0
        for i, (start, end) in enumerate(windows):
            if i and self.chunk_delay > 0:
                time.sleep(self.chunk_delay)
            try:
                releases = self._fetch_window(start, end)
            except (requests.RequestException, StructuralError) as e:
                failures += 1
                if stats is not None:
                    stats.failed_chunks += 1
                logger.warning(f"[{self.name}] chunk {_fmt(start)}..{_fmt(end)} failed: {e}")
                continue
            logger.info(f"[{self.name}] chunk {_fmt(start)}..{_fmt(end)}: {len(releases)} contracts")
            for release in releases:
                yield RawRecord(source=self.name, payload=release, endpoint="contractPublished")
        if windows and failures == len(windows):
            raise SourceError(f"all {failures} date chunks failed")

    def to_record(self, raw: RawRecord) -> TenderRecord:
        return map_ocds_contract(raw.payload, source=self.name)


@dataclass(frozen=True)
class AusTenderNoticesSource(BaseSource):
    """Open tender notices from the AusTender OCDS API.

    Tries the search endpoint first; when its answer does not parse as an OCDS
    release package, falls back to notices published in the last
    ``lookback_days``. Network and server errors are not retried here.
    """

    name: str = "AusTender Notices"
    transport: str = "api"
    enabled: bool = True
    priority: int = 2
    construction_only: bool = True
    base_url: str = OCDS_BASE_URL
    lookback_days: int = 30
    search_keyword: str = "construction OR building OR infrastructure"
    timeout: float = DEFAULT_TIMEOUT
    now: Callable[[], datetime] = field(default=lambda: datetime.now(timezone.utc), compare=False, repr=False)

    def _check(self, resp: requests.Response) -> None:
        # 404/405 means the endpoint does not serve this shape; anything else is transient
        if resp.status_code in (404, 405):
            raise StructuralError(f"{resp.url} answered HTTP {resp.status_code}")
        resp.raise_for_status()

    def _search_active(self) -> List[Dict[str, Any]]:
        end = self.now()
        start = end - timedelta(days=self.lookback_days)
        resp = requests.post(
            f"{self.base_url}/search",
            json={
                "status": "active",
                "publicationDateFrom": start.date().isoformat(),
                "publicationDateTo": end.date().isoformat(),
                "keyword": self.search_keyword,
            },
            headers={"User-Agent": USER_AGENT},
            timeout=self.timeout,
        )
        self._check(resp)
        return _releases_from(resp)

    def _notices_by_date(self) -> List[Dict[str, Any]]:
        end = self.now()
        start = end - timedelta(days=self.lookback_days)
        resp = requests.get(
            f"{self.base_url}/findByDates/contractNoticePublished/{_fmt(start)}/{_fmt(end)}",
            headers={"User-Agent": USER_AGENT},
            timeout=self.timeout,
        )
        self._check(resp)
        return _releases_from(resp)

    def strategies(self) -> Sequence[Tuple[str, Callable[[], List[Dict[str, Any]]]]]:
        return (("search", self._search_active), ("contractNoticePublished", self._notices_by_date))

    def fetch(self, stats: Optional[SourceStats] = None) -> Iterator[RawRecord]:
        errors = []
        for label, strategy in self.strategies():
            try:
                releases = strategy()
            except StructuralError as e:
                logger.warning(f"[{self.name}] {label} unusable, trying next strategy: {e}")
                errors.append(f"{label}: {e}")
                continue
            logger.info(f"[{self.name}] {label}: {len(releases)} notices")
            if stats is not None:
                stats.notes["strategy"] = label
            for release in releases:
                yield RawRecord(source=self.name, payload=release, endpoint=label)
            return
        raise SourceError("no strategy produced a release package (" + "; ".join(errors) + ")")

    def to_record(self, raw: RawRecord) -> TenderRecord:
        return map_ocds_notice(raw.payload, source="AusTender")


@dataclass(frozen=True)
class RSSFeedSource(BaseSource):
    """Open notices from one or more RSS feeds.

    ``construction_only=False`` turns this into a general feed: every item is
    stored, tagged with the classifier's verdict.
    """

    feeds: Sequence[Tuple[str, str]] = ()  # (feed_name, feed_url)
    name: str = "AusTender RSS"
    transport: str = "rss"
    enabled: bool = True
    priority: int = 3
    construction_only: bool = True
    record_source: str = "AusTender-RSS"
    timeout: float = DEFAULT_TIMEOUT

    def _parse_feed(self, feed_url: str):
        resp = requests.get(feed_url, headers={"User-Agent": USER_AGENT}, timeout=self.timeout)
        resp.raise_for_status()
        parsed = feedparser.parse(resp.content)
        if parsed.bozo and not parsed.entries:
            raise StructuralError(f"{feed_url} is not a readable feed: {parsed.get('bozo_exception')}")
        return parsed

    def fetch(self, stats: Optional[SourceStats] = None) -> Iterator[RawRecord]:
        failures = 0
        for feed_name, feed_url in self.feeds:
            try:
                parsed = self._parse_feed(feed_url)
            except (requests.RequestException, StructuralError) as e:
                failures += 1
                if stats is not None:
                    stats.failed_chunks += 1
                logger.warning(f"[{self.name}] feed {feed_name} failed: {e}")
                continue
            logger.info(f"[{self.name}] feed {feed_name}: {len(parsed.entries)} items")
            for entry in parsed.entries:
                yield RawRecord(source=self.name, payload=dict(entry), endpoint=feed_name)
        if self.feeds and failures == len(self.feeds):
            raise SourceError(f"all {failures} feeds failed")

    def to_record(self, raw: RawRecord) -> TenderRecord:
        return map_rss_entry(raw.payload, source=self.record_source)
