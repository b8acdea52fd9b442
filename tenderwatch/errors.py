"""Exception types shared by the ingestion pipeline."""

from __future__ import annotations


class TenderWatchError(Exception):
    """Base class for pipeline errors"""


class SourceError(TenderWatchError):
    """A source could not produce any data for this run."""


class StructuralError(SourceError):
    """Upstream answered, but not in the expected shape.

    Raised to move an adapter on to its next fallback strategy.
    """


class RecordError(TenderWatchError):
    """A single upstream record is malformed and must be skipped."""


class ScrapeInProgress(TenderWatchError):
    """Another scrape run currently holds the run lock."""
