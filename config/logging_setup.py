"""Logging helpers."""

from __future__ import annotations

import logging

from config.settings import settings


def setup_logging(level: str | None = None) -> logging.Logger:
    """Configure the root handler once and return the project logger."""
    logging.basicConfig(
        level=(level or settings.LOG_LEVEL).upper(),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        handlers=[logging.StreamHandler()],
    )
    return logging.getLogger("ai_studio")
