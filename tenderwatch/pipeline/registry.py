"""Builds the configured source adapters from settings."""

from __future__ import annotations

from typing import List

from tenderwatch.config import Settings
from tenderwatch.ingestion.browser import BuyNSWSource
from tenderwatch.ingestion.ingestors import (
    AusTenderContractsSource,
    AusTenderNoticesSource,
    BaseSource,
    RSSFeedSource,
)


def build_sources(settings: Settings) -> List[BaseSource]:
    """All known sources, with ``enabled`` taken from settings.

    Disabled sources are still returned so the orchestrator and the API can
    report them; the orchestrator skips them by default.
    """
    timeout = settings.http_timeout_seconds
    return [
        AusTenderContractsSource(enabled=settings.enable_austender, timeout=timeout),
        AusTenderNoticesSource(enabled=settings.enable_austender_notices, timeout=timeout),
        RSSFeedSource(
            feeds=tuple(settings.rss_feeds),
            enabled=settings.enable_austender_rss and bool(settings.rss_feeds),
            timeout=timeout,
        ),
        BuyNSWSource(enabled=settings.enable_nsw, timeout_ms=int(timeout * 1000)),
    ]
