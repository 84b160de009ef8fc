"""Log aggregation and live monitoring for per-user alias directories."""

__version__ = "0.1.0"
