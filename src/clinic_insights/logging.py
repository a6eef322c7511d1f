from __future__ import annotations

import logging
import os


LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"
LOG_LEVEL_ENV = "CLINIC_INSIGHTS_LOG_LEVEL"
# Database driver chatter is only shown when the whole run is at DEBUG.
DRIVER_LOGGERS = ("psycopg", "psycopg.pool")


def resolve_level(level: str | None = None) -> int:
    """Numeric level from ``level``, else ``CLINIC_INSIGHTS_LOG_LEVEL``, else INFO."""
    name = (level or os.getenv(LOG_LEVEL_ENV) or "INFO").strip().upper()
    resolved = logging.getLevelName(name)
    if not isinstance(resolved, int):
        raise ValueError(f"Unknown log level: {name!r}")
    return resolved


def configure_logging(level: str | None = None) -> int:
    resolved = resolve_level(level)
    logging.basicConfig(level=resolved, format=LOG_FORMAT)
    driver_level = resolved if resolved <= logging.DEBUG else max(resolved, logging.WARNING)
    for name in DRIVER_LOGGERS:
        logging.getLogger(name).setLevel(driver_level)
    return resolved
