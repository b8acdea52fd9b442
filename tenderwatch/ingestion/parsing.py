"""Parsing helpers shared by the source adapters.

Everything here is best-effort: unparseable input yields None rather than an
exception, so a bad date or amount nulls one field instead of dropping the
whole record.
"""

from __future__ import annotations

import hashlib
import html
import re
from datetime import date, datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any, Dict, Iterable, List, Optional
from urllib.parse import parse_qsl, urlencode, urlparse, urlunparse


STATE_CODES = ("NSW", "VIC", "QLD", "SA", "WA", "TAS", "ACT", "NT")

STATE_NAMES = {
    "new south wales": "NSW",
    "victoria": "VIC",
    "queensland": "QLD",
    "south australia": "SA",
    "western australia": "WA",
    "tasmania": "TAS",
    "australian capital territory": "ACT",
    "northern territory": "NT",
}

_STATE_RE = re.compile(r"\b(NSW|VIC|QLD|SA|WA|TAS|ACT|NT)\b")
_DMY_RE = re.compile(r"^(\d{1,2})[/\-.](\d{1,2})[/\-.](\d{2,4})$")
_AMOUNT_RE = re.compile(r"-?\d[\d,]*(?:\.\d+)?")
_TAG_RE = re.compile(r"<[^>]+>")
_WS_RE = re.compile(r"\s+")

TRACKING_PARAMS = {
    "utm_source",
    "utm_medium",
    "utm_campaign",
    "utm_term",
    "utm_content",
    "gclid",
    "fbclid",
}


def _iso(dt: datetime) -> str:
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def parse_date(value: Any) -> Optional[str]:
    """Normalise a date-ish value to a UTC ISO-8601 string.

    Accepts datetimes, ISO strings (``Z`` suffix allowed), ``dd/mm/yyyy`` style
    dates as used on Australian portals, and RFC 822 dates from RSS.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return _iso(value)
    if isinstance(value, date):
        return _iso(datetime(value.year, value.month, value.day))
    s = str(value).strip()
    if not s:
        return None

    m = _DMY_RE.match(s)
    if m:
        day, month, year = (int(g) for g in m.groups())
        if year < 100:
            year += 2000
        try:
            return _iso(datetime(year, month, day))
        except ValueError:
            return None

    iso = s.replace("Z", "+00:00") if s.endswith("Z") else s
    try:
        return _iso(datetime.fromisoformat(iso))
    except ValueError:
        pass

    try:
        return _iso(parsedate_to_datetime(s))
    except (TypeError, ValueError, IndexError):
        return None


def parse_amount(value: Any) -> Optional[float]:
    """Parse a monetary amount; ``"$2,400,000"`` -> ``2400000.0``."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    m = _AMOUNT_RE.search(str(value))
    if not m:
        return None
    try:
        return float(m.group(0).replace(",", ""))
    except ValueError:
        return None


def normalize_state(value: Optional[str]) -> Optional[str]:
    """Map a region field to a state code; anything unrecognised is None."""
    if not value:
        return None
    s = str(value).strip()
    if s.upper() in STATE_CODES:
        return s.upper()
    return STATE_NAMES.get(s.lower()) or extract_state(s)


def extract_state(text: Optional[str]) -> Optional[str]:
    """Find the first Australian state/territory mentioned in free text."""
    if not text:
        return None
    m = _STATE_RE.search(text)
    if m:
        return m.group(1)
    lower = text.lower()
    for name, code in STATE_NAMES.items():
        if name in lower:
            return code
    return None


def clean_text(value: Any) -> str:
    """Strip markup and collapse whitespace."""
    if value is None:
        return ""
    s = html.unescape(_TAG_RE.sub(" ", str(value)))
    return _WS_RE.sub(" ", s).strip()


def find_party(parties: Optional[Iterable[Dict[str, Any]]], *roles: str) -> Optional[Dict[str, Any]]:
    """Return the first OCDS party holding any of ``roles``."""
    for party in parties or []:
        if not isinstance(party, dict):
            continue
        party_roles: List[str] = party.get("roles") or []
        if any(role in party_roles for role in roles):
            return party
    return None


def canonicalize_url(url: str) -> str:
    """Lowercase scheme/host, drop fragment and tracking params, sort the query."""
    if not url:
        return ""
    p = urlparse(url.strip())
    query = sorted(
        (k, v) for k, v in parse_qsl(p.query, keep_blank_values=True) if k.lower() not in TRACKING_PARAMS
    )
    return urlunparse(((p.scheme or "https").lower(), (p.netloc or "").lower(), p.path or "/", "", urlencode(query), ""))


def url_hash(url: str, length: int = 16) -> str:
    """Short stable identifier derived from a canonical URL."""
    return hashlib.sha256(canonicalize_url(url).encode("utf-8")).hexdigest()[:length]
