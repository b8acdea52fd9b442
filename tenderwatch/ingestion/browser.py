"""Browser-rendered sources.

The NSW portal only renders its listings client-side, so it is crawled with a
headless Chromium driven by Playwright. The browser is a separate OS process:
``render_engine`` scopes it so the browser and the Playwright driver are shut
down on every exit path, including exceptions and generator close mid-crawl.
Field extraction runs on the rendered HTML with BeautifulSoup, which keeps it
testable without a browser.
"""

from __future__ import annotations

import logging
import re
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterator, List, Optional, Sequence
from urllib.parse import urljoin

from bs4 import BeautifulSoup
from playwright.sync_api import Error as PlaywrightError
from playwright.sync_api import sync_playwright

from tenderwatch.errors import StructuralError
from tenderwatch.ingestion.ingestors import BaseSource
from tenderwatch.ingestion.mappings import map_nsw_detail
from tenderwatch.ingestion.tender_types import RawRecord, SourceStats, TenderRecord

logger = logging.getLogger(__name__)

BROWSER_USER_AGENT = "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36"
DEFAULT_RENDER_TIMEOUT_MS = 30_000

NSW_SEARCH_URL = "https://buy.nsw.gov.au/search?query={query}&page={page}"

# CSS selectors per canonical field, tried in order
NSW_SELECTORS: Dict[str, str] = {
    "listing_link": "a[href*='/notices/'], a[href*='/tenders/'], a[href*='/rft/']",
    "title": "h1, .notice-title",
    "reference": "[data-field='reference'], .notice-reference, .rft-id",
    "agency": "[data-field='agency'], .notice-agency, .agency-name",
    "description": "[data-field='description'], .notice-description, .description",
    "closing_date": "[data-field='closing-date'], .notice-closing-date",
    "awarded_date": "[data-field='awarded-date'], .notice-awarded-date",
    "supplier": "[data-field='supplier'], .notice-supplier",
    "value": "[data-field='value'], .notice-value",
    "location": "[data-field='location'], .notice-location",
}

# label text fallbacks for <dt>/<th> definition layouts
NSW_LABELS: Dict[str, Sequence[str]] = {
    "reference": ("rft id", "reference", "tender id", "notice id"),
    "agency": ("agency", "buyer", "organisation"),
    "description": ("description", "summary"),
    "closing_date": ("closing date", "closes", "close date"),
    "awarded_date": ("awarded date", "date awarded", "contract date"),
    "supplier": ("supplier", "awarded to", "contractor"),
    "value": ("value", "estimated value", "contract value"),
    "location": ("location", "region", "delivery location"),
}


class RenderSession:
    """Renders URLs to HTML inside one browser context."""

    def __init__(self, context, *, timeout_ms: int = DEFAULT_RENDER_TIMEOUT_MS):
        self._context = context
        self.timeout_ms = timeout_ms

    def render(self, url: str) -> str:
        page = self._context.new_page()
        try:
            page.goto(url, wait_until="networkidle", timeout=self.timeout_ms)
            return page.content()
        finally:
            page.close()


@contextmanager
def render_engine(
    *,
    headless: bool = True,
    user_agent: str = BROWSER_USER_AGENT,
    timeout_ms: int = DEFAULT_RENDER_TIMEOUT_MS,
) -> Iterator[RenderSession]:
    """Start Chromium, yield a session, always shut the browser down."""
    driver = sync_playwright().start()
    browser = None
    try:
        browser = driver.chromium.launch(headless=headless, args=["--no-sandbox", "--disable-setuid-sandbox"])
        context = browser.new_context(user_agent=user_agent)
        context.set_default_timeout(timeout_ms)
        logger.info("render engine started")
        yield RenderSession(context, timeout_ms=timeout_ms)
    finally:
        if browser is not None:
            try:
                browser.close()
            except PlaywrightError as e:
                logger.warning(f"browser close failed: {e}")
        driver.stop()
        logger.info("render engine released")


def parse_listing(html: str, base_url: str, *, selector: str = NSW_SELECTORS["listing_link"]) -> List[str]:
    """Absolute detail-page links from a search results page, de-duplicated in page order."""
    soup = BeautifulSoup(html or "", "html.parser")
    links: List[str] = []
    for a in soup.select(selector):
        href = (a.get("href") or "").strip()
        if not href or href.startswith("#"):
            continue
        url = urljoin(base_url, href)
        if url not in links:
            links.append(url)
    return links


def _labelled_value(soup: BeautifulSoup, labels: Sequence[str]) -> Optional[str]:
    for label_tag in soup.find_all(["dt", "th", "label", "strong"]):
        text = label_tag.get_text(" ", strip=True).lower().rstrip(":")
        if text not in labels:
            continue
        value_tag = label_tag.find_next_sibling(["dd", "td", "span", "div", "p"])
        if value_tag is not None:
            value = value_tag.get_text(" ", strip=True)
            if value:
                return value
    return None


def parse_detail(html: str, *, selectors: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
    """Pull raw field strings out of a rendered notice page."""
    selectors = selectors or NSW_SELECTORS
    soup = BeautifulSoup(html or "", "html.parser")
    detail: Dict[str, Any] = {}
    for name, selector in selectors.items():
        if name == "listing_link":
            continue
        node = soup.select_one(selector)
        value = node.get_text(" ", strip=True) if node is not None else None
        if not value and name in NSW_LABELS:
            value = _labelled_value(soup, NSW_LABELS[name])
        if value:
            detail[name] = re.sub(r"\s+", " ", value)
    return detail


@dataclass(frozen=True)
class BuyNSWSource(BaseSource):
    """NSW eTendering (buy.nsw) crawled through a headless browser.

    One render engine per ``fetch`` call: listing pages first, then each
    detail page. A detail page that fails to render is counted and skipped;
    a listing that yields no links at all is a structural failure.
    """

    name: str = "NSW eTendering"
    transport: str = "browser"
    enabled: bool = False
    priority: int = 4
    construction_only: bool = True
    search_url: str = NSW_SEARCH_URL
    query: str = "construction"
    max_pages: int = 3
    max_details: int = 50
    detail_delay: float = 1.0
    timeout_ms: int = DEFAULT_RENDER_TIMEOUT_MS
    engine_factory: Callable[..., Any] = field(default=render_engine, compare=False, repr=False)

    def _collect_links(self, session: RenderSession) -> List[str]:
        links: List[str] = []
        for page in range(1, self.max_pages + 1):
            url = self.search_url.format(query=self.query, page=page)
            page_links = [u for u in parse_listing(session.render(url), url) if u not in links]
            if not page_links:
                break
            links.extend(page_links)
        return links

    def fetch(self, stats: Optional[SourceStats] = None) -> Iterator[RawRecord]:
        with self.engine_factory(timeout_ms=self.timeout_ms) as session:
            links = self._collect_links(session)
            if not links:
                raise StructuralError("no notice links found on the search page; selectors may be stale")
            logger.info(f"[{self.name}] {len(links)} notices listed, crawling up to {self.max_details}")
            for i, url in enumerate(links[: self.max_details]):
                if i and self.detail_delay > 0:
                    time.sleep(self.detail_delay)
                try:
                    html = session.render(url)
                except PlaywrightError as e:
                    if stats is not None:
                        stats.failed_chunks += 1
                    logger.warning(f"[{self.name}] detail page {url} failed: {e}")
                    continue
                detail = parse_detail(html)
                detail["url"] = url
                yield RawRecord(source=self.name, payload=detail, endpoint="detail")

    def to_record(self, raw: RawRecord) -> TenderRecord:
        return map_nsw_detail(raw.payload, source=self.name)
