from __future__ import annotations

import logging
import os

_DEFAULT_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"
_NOISY_LOGGERS = ("urllib3", "sqlalchemy.engine")
_CONFIGURED = False


def resolve_log_level(level: str | int | None = None) -> str | int:
    """Explicit level, then ACTIVITY_IMPORTER_LOG_LEVEL, then LOG_LEVEL, then INFO."""
    if level is not None:
        return level.upper() if isinstance(level, str) else level
    for name in ("ACTIVITY_IMPORTER_LOG_LEVEL", "LOG_LEVEL"):
        raw = str(os.getenv(name, "") or "").strip()
        if raw:
            return raw.upper()
    return "INFO"


def configure_logging(level: str | int | None = None) -> None:
    global _CONFIGURED
    if _CONFIGURED:
        return

    logging.basicConfig(level=resolve_log_level(level), format=_DEFAULT_FORMAT)
    # Transport and SQL chatter stays at WARNING unless asked for explicitly.
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    _CONFIGURED = True


def get_logger(name: str) -> logging.Logger:
    configure_logging()
    return logging.getLogger(name)
