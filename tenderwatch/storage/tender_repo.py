"""Tender repository: upsert reconciliation and dashboard reads.

One repository owns one DB-API connection (psycopg for Postgres, sqlite3 for
local runs and tests). The entry point creates it once with ``connect_repo``,
passes it to the orchestrator and the web app, and closes it on shutdown.

Upsert policy (full insert, partial update):
- new id: every column is written
- existing id, awarded: title, description, value_amount are refreshed
- existing id, open: additionally closing_date and tender_status
Everything else (buyer, supplier, category, is_construction, signed/period
dates, region) keeps the first-seen value. Each upsert is a single
INSERT ... ON CONFLICT statement, so the insert-or-update is atomic.
"""

from __future__ import annotations

import logging
import re
import sqlite3
import threading
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

import psycopg

from tenderwatch.ingestion.tender_types import AWARDED, OPEN, TENDER_STATUSES, TenderRecord
from tenderwatch.storage.tender_schema import TENDER_COLUMNS, ensure_tender_schema

logger = logging.getLogger(__name__)

MAX_LIMIT = 1000

UPDATE_FIELDS = {
    AWARDED: ("title", "description", "value_amount"),
    OPEN: ("title", "description", "value_amount", "closing_date", "tender_status"),
}

RECENT_ORDER = (
    "ORDER BY CASE WHEN tender_status = 'open' THEN 0 ELSE 1 END, "
    "COALESCE(closing_date, date_signed) DESC NULLS LAST, id"
)

_NAMED_PARAM_RE = re.compile(r"%\((\w+)\)s")


def _build_upsert_sql(status: str) -> str:
    cols = ", ".join(TENDER_COLUMNS)
    values = ", ".join(f"%({c})s" for c in TENDER_COLUMNS)
    updates = ",\n          ".join(f"{c} = excluded.{c}" for c in UPDATE_FIELDS[status])
    return f"""
        INSERT INTO tenders ({cols}, updated_at)
        VALUES ({values}, CURRENT_TIMESTAMP)
        ON CONFLICT (id) DO UPDATE SET
          {updates},
          updated_at = CURRENT_TIMESTAMP
    """


UPSERT_SQL = {status: _build_upsert_sql(status) for status in TENDER_STATUSES}


def _clamp(limit: Any) -> int:
    try:
        n = int(limit)
    except (TypeError, ValueError):
        n = 100
    return max(1, min(n, MAX_LIMIT))


class TenderRepo:
    def __init__(self, conn, *, dialect: str = "postgres"):
        if dialect not in ("postgres", "sqlite"):
            raise ValueError(f"unsupported dialect {dialect!r}")
        self.conn = conn
        self.dialect = dialect
        self._lock = threading.Lock()

    # -----------------------------
    # plumbing
    # -----------------------------
    def _sql(self, sql: str) -> str:
        if self.dialect == "sqlite":
            return _NAMED_PARAM_RE.sub(r":\1", sql)
        return sql

    def _execute(self, sql: str, params: Optional[Dict[str, Any]] = None):
        with self._lock:
            return self.conn.execute(self._sql(sql), params or {})

    def _fetch_dicts(self, sql: str, params: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        with self._lock:
            cur = self.conn.execute(self._sql(sql), params or {})
            names = [d[0] for d in cur.description]
            rows = cur.fetchall()
        return [self._row_to_tender(dict(zip(names, row))) for row in rows]

    def _scalar(self, sql: str, params: Optional[Dict[str, Any]] = None) -> int:
        with self._lock:
            row = self.conn.execute(self._sql(sql), params or {}).fetchone()
        return int(row[0] or 0) if row else 0

    def ensure_schema(self) -> None:
        with self._lock:
            ensure_tender_schema(self.conn, dialect=self.dialect)

    def close(self) -> None:
        with self._lock:
            self.conn.close()

    # -----------------------------
    # writes
    # -----------------------------
    def upsert(self, record: TenderRecord, status: str) -> None:
        """Insert ``record`` or reconcile it with the stored row of the same id.

        A duplicate id is the steady state, not an error.
        """
        if status not in TENDER_STATUSES:
            raise ValueError(f"unknown tender status {status!r}")
        params = record.to_row()
        params["tender_status"] = status
        params["is_construction"] = bool(params["is_construction"])
        params["category"] = params["category"] or "General Construction"
        self._execute(UPSERT_SQL[status], params)

    def upsert_open(self, record: TenderRecord) -> None:
        self.upsert(record, OPEN)

    def upsert_awarded(self, record: TenderRecord) -> None:
        self.upsert(record, AWARDED)

    # -----------------------------
    # reads
    # -----------------------------
    def _where(self, construction_only: bool, *clauses: str) -> str:
        parts = list(clauses)
        if construction_only:
            parts.append("is_construction = %(is_construction)s")
        return ("WHERE " + " AND ".join(parts)) if parts else ""

    def _select(self, *clauses: str, order: str, limit: Any, construction_only: bool, **params: Any) -> List[Dict[str, Any]]:
        params.update({"limit": _clamp(limit), "is_construction": True})
        sql = f"SELECT * FROM tenders {self._where(construction_only, *clauses)} {order} LIMIT %(limit)s"
        return self._fetch_dicts(sql, params)

    def get(self, tender_id: str) -> Optional[Dict[str, Any]]:
        rows = self._fetch_dicts("SELECT * FROM tenders WHERE id = %(id)s", {"id": tender_id})
        return rows[0] if rows else None

    def select_recent(self, limit: int = 100, *, construction_only: bool = True) -> List[Dict[str, Any]]:
        return self._select(order=RECENT_ORDER, limit=limit, construction_only=construction_only)

    def select_by_region(self, region: str, limit: int = 100, *, construction_only: bool = True) -> List[Dict[str, Any]]:
        return self._select(
            "state = %(state)s",
            order=RECENT_ORDER,
            limit=limit,
            construction_only=construction_only,
            state=(region or "").strip().upper(),
        )

    def select_open(self, limit: int = 100, *, construction_only: bool = True) -> List[Dict[str, Any]]:
        # soonest deadline first
        return self._select(
            "tender_status = 'open'",
            order="ORDER BY closing_date ASC NULLS LAST, id",
            limit=limit,
            construction_only=construction_only,
        )

    def select_awarded(self, limit: int = 100, *, construction_only: bool = True) -> List[Dict[str, Any]]:
        return self._select(
            "tender_status = 'awarded'",
            order="ORDER BY date_signed DESC NULLS LAST, id",
            limit=limit,
            construction_only=construction_only,
        )

    def count(self, *, construction_only: bool = True) -> int:
        return self._scalar(f"SELECT COUNT(*) FROM tenders {self._where(construction_only)}", {"is_construction": True})

    def count_open(self, *, construction_only: bool = True) -> int:
        where = self._where(construction_only, "tender_status = 'open'")
        return self._scalar(f"SELECT COUNT(*) FROM tenders {where}", {"is_construction": True})

    def category_counts(self, *, construction_only: bool = True) -> List[Dict[str, Any]]:
        where = self._where(construction_only, "category IS NOT NULL")
        sql = f"""
        SELECT category, COUNT(*) AS count
        FROM tenders
        {where}
        GROUP BY category
        ORDER BY count DESC, category
        """
        with self._lock:
            rows = self.conn.execute(self._sql(sql), {"is_construction": True}).fetchall()
        return [{"category": category, "count": int(count or 0)} for category, count in rows]

    def _row_to_tender(self, row: Dict[str, Any]) -> Dict[str, Any]:
        out: Dict[str, Any] = {}
        for key, value in row.items():
            if isinstance(value, Decimal):
                value = float(value)
            elif isinstance(value, (datetime, date)):
                value = value.isoformat()
            out[key] = value
        out["is_construction"] = bool(out.get("is_construction"))
        return out


def _sqlite_path(dsn: str) -> str:
    if dsn == ":memory:":
        return dsn
    rest = dsn[len("sqlite:"):]
    if rest.startswith("///"):
        path = rest[3:]
    elif rest.startswith("//"):
        path = rest[2:]
    else:
        raise ValueError(f"unrecognised sqlite DSN {dsn!r}; use sqlite:///path")
    return path or ":memory:"


def connect_repo(dsn: str) -> TenderRepo:
    """Open a repository for ``dsn`` and make sure the schema exists.

    ``sqlite:///path`` or ``sqlite://path`` selects a SQLite file, and
    ``sqlite://`` or ``:memory:`` an in-memory database; anything else is
    handed to psycopg as a Postgres DSN.
    """
    if dsn == ":memory:" or dsn.startswith("sqlite:"):
        conn = sqlite3.connect(_sqlite_path(dsn), check_same_thread=False, isolation_level=None)
        repo = TenderRepo(conn, dialect="sqlite")
    else:
        conn = psycopg.connect(dsn, autocommit=True)
        repo = TenderRepo(conn, dialect="postgres")
    repo.ensure_schema()
    logger.info(f"tender repository ready ({repo.dialect})")
    return repo
