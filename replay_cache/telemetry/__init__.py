"""Telemetry package for observability.

This package contains:
- Structured logging configuration (structlog)
- Log context helpers
"""

from __future__ import annotations

from replay_cache.telemetry.logging import (
    clear_context,
    configure_logging,
)

__all__ = [
    "clear_context",
    "configure_logging",
]
