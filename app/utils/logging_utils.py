# path: streetview-route-api/app/utils/logging_utils.py

"""Logging helpers shared by the service modules."""

from __future__ import annotations

import logging

from app.config import Settings


def configure_logging(settings: Settings) -> None:
    """Configure the root logger from service settings.

    Args:
        settings: Service settings (log_level, log_format)
    """
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format=settings.log_format,
    )
    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)
