"""Logging configuration and correlation helpers."""

from monorail.observability.logging import (
    correlation_context,
    get_correlation_context,
    new_run_id,
    setup_logging,
)

__all__ = ["correlation_context", "get_correlation_context", "new_run_id", "setup_logging"]
