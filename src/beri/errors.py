"""Exceptions raised by the BERI pipeline."""

from __future__ import annotations


class BeriError(Exception):
    """Base class for BERI errors."""


class CorpusError(BeriError):
    """The corpus document or chunk bundle is missing, unreadable or empty."""


class EmbeddingDimensionError(CorpusError):
    """An embedding does not have the dimensionality the store expects."""

    def __init__(self, expected: int, actual: int, chunk_id: str | None = None) -> None:
        self.expected = expected
        self.actual = actual
        self.chunk_id = chunk_id
        where = f" for {chunk_id}" if chunk_id else ""
        super().__init__(f"Expected {expected}-dimensional embedding{where}, got {actual}")


class QueryInProgressError(BeriError):
    """A query was submitted while another one is still streaming."""
