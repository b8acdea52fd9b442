"""Tender table schema.

Schema creation is idempotent (CREATE IF NOT EXISTS) and runs on every
repository start. The same statements serve Postgres and SQLite apart from
the bookkeeping timestamp column type.
"""

from __future__ import annotations

from typing import Iterable, List, Optional


TENDER_COLUMNS: List[str] = [
    "id",
    "title",
    "description",
    "buyer_name",
    "supplier_name",
    "value_amount",
    "value_currency",
    "date_signed",
    "period_start",
    "period_end",
    "closing_date",
    "state",
    "locality",
    "source",
    "category",
    "is_construction",
    "tender_status",
    "external_reference_id",
    "external_url",
]

_TIMESTAMP_TYPES = {
    "postgres": "TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP",
    "sqlite": "TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP",
}


def schema_statements(dialect: str = "postgres") -> List[str]:
    ts = _TIMESTAMP_TYPES[dialect]
    return [
        f"""
        CREATE TABLE IF NOT EXISTS tenders (
          id TEXT PRIMARY KEY,
          title TEXT NOT NULL DEFAULT '',
          description TEXT NOT NULL DEFAULT '',
          buyer_name TEXT,
          supplier_name TEXT,
          value_amount DOUBLE PRECISION,
          value_currency TEXT NOT NULL DEFAULT 'AUD',
          date_signed TEXT,
          period_start TEXT,
          period_end TEXT,
          closing_date TEXT,
          state TEXT,
          locality TEXT,
          source TEXT NOT NULL,
          category TEXT NOT NULL DEFAULT 'General Construction',
          is_construction BOOLEAN NOT NULL DEFAULT FALSE,
          tender_status TEXT NOT NULL DEFAULT 'awarded' CHECK (tender_status IN ('open', 'awarded')),
          external_reference_id TEXT,
          external_url TEXT,
          created_at {ts},
          updated_at {ts}
        );
        """,
        "CREATE INDEX IF NOT EXISTS idx_tenders_status_closing ON tenders (tender_status, closing_date);",
        "CREATE INDEX IF NOT EXISTS idx_tenders_date_signed ON tenders (date_signed);",
        "CREATE INDEX IF NOT EXISTS idx_tenders_state ON tenders (state);",
        "CREATE INDEX IF NOT EXISTS idx_tenders_category ON tenders (category);",
        "CREATE INDEX IF NOT EXISTS idx_tenders_construction ON tenders (is_construction);",
    ]


def ensure_tender_schema(conn, *, dialect: str = "postgres", statements: Optional[Iterable[str]] = None) -> None:
    """Ensure the tenders table and its indexes exist on an open connection."""
    stmts = list(statements) if statements is not None else schema_statements(dialect)
    for s in stmts:
        conn.execute(s)
