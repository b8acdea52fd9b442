"""Shared ingestion data types."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any, Dict, Optional


OPEN = "open"
AWARDED = "awarded"
TENDER_STATUSES = (OPEN, AWARDED)


@dataclass(frozen=True)
class TenderRecord:
    """Canonical tender row, one per upstream identity.

    Dates are ISO-8601 strings. ``is_construction`` and ``category`` are filled
    in by the classifier at ingestion time, never by adapters.
    """

    id: str
    title: str = ""
    description: str = ""
    buyer_name: Optional[str] = None
    supplier_name: Optional[str] = None
    value_amount: Optional[float] = None
    value_currency: str = "AUD"
    date_signed: Optional[str] = None
    period_start: Optional[str] = None
    period_end: Optional[str] = None
    closing_date: Optional[str] = None
    state: Optional[str] = None
    locality: Optional[str] = None
    source: str = "unknown"
    category: Optional[str] = None
    is_construction: bool = False
    tender_status: str = AWARDED
    external_reference_id: Optional[str] = None
    external_url: Optional[str] = None

    def to_row(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class RawRecord:
    """One upstream payload before field mapping."""

    source: str
    payload: Dict[str, Any]
    endpoint: Optional[str] = None


@dataclass
class SourceStats:
    fetched: int = 0
    total: int = 0
    construction: int = 0
    open: int = 0
    awarded: int = 0
    skipped: int = 0
    discarded: int = 0
    failed_chunks: int = 0
    notes: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
