"""Observability module for storybranch.

Provides structured logging (structlog routed through rich and JSONL handlers).
"""

from storybranch.observability.logging import (
    bound_story_context,
    close_file_logging,
    configure_logging,
    get_log_file,
    get_logger,
)

__all__ = [
    "bound_story_context",
    "close_file_logging",
    "configure_logging",
    "get_log_file",
    "get_logger",
]
