"""API route collection."""

__all__ = [
    "queries",
    "connections",
    "analyze",
    "scheduler",
]
