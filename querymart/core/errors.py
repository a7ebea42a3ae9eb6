"""
Exception hierarchy for the mining pipeline.

Plan errors are per-query and non-fatal, storage errors abort the current
window, source errors abort the window but never the job.
"""


class QueryMartError(Exception):
    """Base class for all querymart errors."""


class PlanError(QueryMartError):
    """SQL text could not be turned into a logical plan."""


class ParseError(PlanError):
    """SQL text is malformed."""


class ValidationError(PlanError):
    """SQL references tables or columns unknown to the schema catalog."""


class ConversionError(PlanError):
    """SQL statement kind cannot be expressed as a logical plan."""


class StorageError(QueryMartError):
    """Any failure reported by the sink database."""


class ReferentialIntegrityError(StorageError):
    """Insert referenced a parent row that does not exist."""


class NotFoundError(StorageError):
    """Update matched no row."""


class SourceFetchError(QueryMartError):
    """The source database could not deliver a window of records."""


__all__ = [
    "QueryMartError",
    "PlanError",
    "ParseError",
    "ValidationError",
    "ConversionError",
    "StorageError",
    "ReferentialIntegrityError",
    "NotFoundError",
    "SourceFetchError",
]
