"""Upstream field -> canonical field mappings.

Kept apart from the transport code: these are the functions that break when
an upstream changes its schema, and each one is testable on a bare payload.
Every mapper raises ``RecordError`` when the payload lacks an identity or any
text to classify.
"""

from __future__ import annotations

import re
from typing import Any, Dict, Optional

from tenderwatch.errors import RecordError
from tenderwatch.ingestion.parsing import (
    clean_text,
    extract_state,
    find_party,
    normalize_state,
    parse_amount,
    parse_date,
    url_hash,
)
from tenderwatch.ingestion.tender_types import AWARDED, OPEN, TenderRecord


AUSTENDER_NOTICE_URL = "https://www.tenders.gov.au/Cn/Show/{cn_id}"

_CN_ID_RE = re.compile(r"CN\d+")
_CLOSING_RE = re.compile(r"closing[:\s]+(\d{1,2}[/\-]\d{1,2}[/\-]\d{2,4})", re.IGNORECASE)
_DOLLAR_RE = re.compile(r"\$\s?([0-9][0-9,]*(?:\.\d+)?)")


def _address(party: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    if not party:
        return {}
    addr = party.get("address")
    return addr if isinstance(addr, dict) else {}


def _require_text(title: str, description: str, ident: str) -> None:
    if not title and not description:
        raise RecordError(f"record {ident} has neither title nor description")


def map_ocds_contract(release: Dict[str, Any], *, source: str = "AusTender") -> TenderRecord:
    """Map an OCDS release carrying an awarded contract (``contracts[0]``)."""
    if not isinstance(release, dict):
        raise RecordError("release is not an object")
    contracts = release.get("contracts") or []
    contract = contracts[0] if contracts and isinstance(contracts[0], dict) else None
    if contract is None:
        raise RecordError(f"release {release.get('ocid')} has no contract")

    record_id = contract.get("id") or release.get("ocid")
    if not record_id:
        raise RecordError("contract has no id")
    title = clean_text(contract.get("title"))
    description = clean_text(contract.get("description"))
    _require_text(title, description, str(record_id))

    parties = release.get("parties")
    buyer = find_party(parties, "procuringEntity")
    supplier = find_party(parties, "supplier")
    buyer_addr, supplier_addr = _address(buyer), _address(supplier)
    value = contract.get("value") or {}
    period = contract.get("period") or {}

    return TenderRecord(
        id=str(record_id),
        title=title,
        description=description,
        buyer_name=(buyer or {}).get("name") or None,
        supplier_name=(supplier or {}).get("name") or None,
        value_amount=parse_amount(value.get("amount")),
        value_currency=value.get("currency") or "AUD",
        date_signed=parse_date(contract.get("dateSigned")),
        period_start=parse_date(period.get("startDate")),
        period_end=parse_date(period.get("endDate")),
        state=normalize_state(buyer_addr.get("region") or supplier_addr.get("region")),
        locality=buyer_addr.get("locality") or supplier_addr.get("locality") or None,
        source=source,
        tender_status=AWARDED,
        external_reference_id=str(contract.get("id") or record_id),
    )


def map_ocds_notice(release: Dict[str, Any], *, source: str = "AusTender") -> TenderRecord:
    """Map an OCDS release carrying an open tender notice (``tender`` block)."""
    if not isinstance(release, dict):
        raise RecordError("release is not an object")
    tender = release.get("tender")
    if not isinstance(tender, dict):
        raise RecordError(f"release {release.get('ocid')} has no tender block")

    record_id = release.get("ocid") or tender.get("id")
    if not record_id:
        raise RecordError("notice has neither ocid nor tender id")
    title = clean_text(tender.get("title"))
    description = clean_text(tender.get("description"))
    _require_text(title, description, str(record_id))

    buyer = find_party(release.get("parties"), "procuringEntity", "buyer")
    value = tender.get("value") or {}
    tender_period = tender.get("tenderPeriod") or {}
    contract_period = tender.get("contractPeriod") or {}
    cn_id = str(tender.get("id") or record_id)

    return TenderRecord(
        id=str(record_id),
        title=title,
        description=description,
        buyer_name=(buyer or {}).get("name") or "Unknown Agency",
        supplier_name=None,
        value_amount=parse_amount(value.get("amount")),
        value_currency=value.get("currency") or "AUD",
        period_start=parse_date(contract_period.get("startDate")),
        period_end=parse_date(contract_period.get("endDate")),
        closing_date=parse_date(tender_period.get("endDate")),
        state=normalize_state(_address(buyer).get("region")),
        locality=_address(buyer).get("locality") or None,
        source=source,
        tender_status=OPEN,
        external_reference_id=cn_id,
        external_url=AUSTENDER_NOTICE_URL.format(cn_id=cn_id),
    )


def map_rss_entry(entry: Dict[str, Any], *, source: str = "AusTender-RSS") -> TenderRecord:
    """Map a parsed RSS item of an open-tender feed."""
    link = (entry.get("link") or "").strip()
    title = clean_text(entry.get("title"))
    if not link or not title:
        raise RecordError("rss entry is missing title or link")
    description = clean_text(entry.get("summary") or entry.get("description"))

    m = _CN_ID_RE.search(link) or _CN_ID_RE.search(title)
    record_id = m.group(0) if m else f"{source}:{url_hash(link)}"

    closing = _CLOSING_RE.search(description)
    dollars = _DOLLAR_RE.search(description)

    return TenderRecord(
        id=record_id,
        title=title,
        description=description,
        buyer_name="Australian Government",
        value_amount=parse_amount(dollars.group(1)) if dollars else None,
        closing_date=parse_date(closing.group(1)) if closing else None,
        state=extract_state(description) or extract_state(title),
        source=source,
        tender_status=OPEN,
        external_reference_id=m.group(0) if m else None,
        external_url=link,
    )


def map_nsw_detail(detail: Dict[str, Any], *, source: str = "NSW eTendering") -> TenderRecord:
    """Map fields scraped from a buy.nsw detail page.

    ``detail`` holds the raw strings pulled out by the selector map. A closing
    date makes the record open; otherwise an award date makes it awarded.
    """
    ref = (detail.get("reference") or "").strip()
    url = (detail.get("url") or "").strip()
    if not ref and not url:
        raise RecordError("nsw detail has neither reference nor url")
    title = clean_text(detail.get("title"))
    description = clean_text(detail.get("description"))
    record_id = f"NSW-{ref}" if ref else f"NSW-{url_hash(url)}"
    _require_text(title, description, record_id)

    closing_date = parse_date(detail.get("closing_date"))
    date_signed = parse_date(detail.get("awarded_date"))
    status = OPEN if closing_date or not date_signed else AWARDED

    return TenderRecord(
        id=record_id,
        title=title,
        description=description,
        buyer_name=clean_text(detail.get("agency")) or None,
        supplier_name=(clean_text(detail.get("supplier")) or None) if status == AWARDED else None,
        value_amount=parse_amount(detail.get("value")),
        date_signed=date_signed if status == AWARDED else None,
        closing_date=closing_date if status == OPEN else None,
        state="NSW",
        locality=clean_text(detail.get("location")) or None,
        source=source,
        tender_status=status,
        external_reference_id=ref or None,
        external_url=url or None,
    )
