"""querymart: incremental slow-log mining and anti-pattern detection."""

__version__ = "0.1.0"
