"""Error taxonomy for the knowledge core.

Non-critical failures (one unit's extraction, one source lookup) are
contained where they happen; the errors below are the ones that cross
component boundaries.
"""

from __future__ import annotations


class BrainError(Exception):
    """Base class for all knowledge-core errors."""


class NotFoundError(BrainError, LookupError):
    """The id an operation targets does not exist."""

    def __init__(self, kind: str, record_id: str) -> None:
        super().__init__(f"{kind} not found: {record_id}")
        self.kind = kind
        self.record_id = record_id


class ExtractionError(BrainError):
    """An embedding or entity-extraction collaborator call failed."""


class MalformedRecordError(BrainError):
    """A stored row could not be converted to its typed model."""


class StoreUnavailableError(BrainError):
    """The relational store or the similarity index is unreachable."""


class InvalidRequestError(BrainError, ValueError):
    """The caller passed a value the store cannot accept."""
