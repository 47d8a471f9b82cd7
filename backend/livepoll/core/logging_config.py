"""Logging configuration helpers."""
from __future__ import annotations

import logging
from logging import Logger
from typing import Optional

from livepoll.core.config import get_settings


def configure_logging(level: Optional[str] = None) -> Logger:
    """Configure basic logging for the application and return the package logger."""
    logging.basicConfig(
        level=(level or get_settings().log_level).upper(),
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
    )
    return logging.getLogger("livepoll")
