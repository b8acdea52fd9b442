"""Environment-driven settings for workers and the web app."""

from __future__ import annotations

import logging
import os
import sys
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

from dotenv import load_dotenv


DEFAULT_RSS_FEEDS: List[Tuple[str, str]] = [
    ("AusTender Construction", "https://www.tenders.gov.au/Rss/FeedForCategory?categoryId=100"),
]

DEFAULT_CORS_ORIGINS = [
    "http://localhost:3000",
    "http://localhost:8080",
    "http://127.0.0.1:8080",
]


def _env_bool(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None or not value.strip():
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _env_float(name: str, default: float) -> float:
    try:
        return float(os.environ.get(name, default))
    except (TypeError, ValueError):
        return default


def _env_int(name: str, default: int) -> int:
    try:
        return int(os.environ.get(name, default))
    except (TypeError, ValueError):
        return default


def parse_feed_list(raw: Optional[str]) -> List[Tuple[str, str]]:
    """Parse ``name|url,name|url`` into feed tuples; bare URLs are named by position."""
    feeds: List[Tuple[str, str]] = []
    for i, item in enumerate((raw or "").split(",")):
        item = item.strip()
        if not item:
            continue
        if "|" in item:
            name, url = item.split("|", 1)
            feeds.append((name.strip() or f"feed-{i + 1}", url.strip()))
        else:
            feeds.append((f"feed-{i + 1}", item))
    return feeds


@dataclass(frozen=True)
class Settings:
    db_dsn: str = "sqlite:///tenders.db"
    scrape_interval_minutes: int = 30
    scrape_parallel: bool = False
    source_delay_seconds: float = 1.0
    http_timeout_seconds: float = 30.0
    enable_austender: bool = True
    enable_austender_notices: bool = True
    enable_austender_rss: bool = True
    enable_nsw: bool = False
    rss_feeds: List[Tuple[str, str]] = field(default_factory=lambda: list(DEFAULT_RSS_FEEDS))
    cors_origins: List[str] = field(default_factory=lambda: list(DEFAULT_CORS_ORIGINS))
    port: int = 8080
    log_level: str = "INFO"


def load_settings() -> Settings:
    load_dotenv()
    feeds = parse_feed_list(os.environ.get("AUSTENDER_RSS_FEEDS")) or list(DEFAULT_RSS_FEEDS)
    origins = [o.strip() for o in (os.environ.get("CORS_ORIGINS") or "").split(",") if o.strip()]
    return Settings(
        db_dsn=os.environ.get("TENDER_DB_DSN", "sqlite:///tenders.db"),
        scrape_interval_minutes=max(1, _env_int("SCRAPE_INTERVAL_MINUTES", 30)),
        scrape_parallel=_env_bool("SCRAPE_PARALLEL", False),
        source_delay_seconds=max(0.0, _env_float("SOURCE_DELAY_SECONDS", 1.0)),
        http_timeout_seconds=max(1.0, _env_float("HTTP_TIMEOUT_SECONDS", 30.0)),
        enable_austender=_env_bool("ENABLE_AUSTENDER", True),
        enable_austender_notices=_env_bool("ENABLE_AUSTENDER_NOTICES", True),
        enable_austender_rss=_env_bool("ENABLE_AUSTENDER_RSS", True),
        enable_nsw=_env_bool("ENABLE_NSW", False),
        rss_feeds=feeds,
        cors_origins=origins or list(DEFAULT_CORS_ORIGINS),
        port=_env_int("PORT", 8080),
        log_level=(os.environ.get("LOG_LEVEL") or "INFO").upper(),
    )


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[logging.StreamHandler(sys.stdout)],
    )
