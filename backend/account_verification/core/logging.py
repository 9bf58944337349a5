"""Simple logging setup for the application."""

from __future__ import annotations

import logging
import os


def setup_logging(level: str | None = None) -> None:
    if logging.getLogger().handlers:
        return

    level_name = (level or os.getenv("LOG_LEVEL", "INFO")).upper()
    logging.basicConfig(
        level=level_name,
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
    )


def mask_token(token: str | None) -> str:
    """Shorten a token value for log lines so full secrets never reach the logs."""
    if not token:
        return "<none>"
    if len(token) <= 8:
        return "***"
    return f"{token[:6]}..."
