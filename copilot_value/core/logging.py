"""Logging setup: console output plus a daily rotated log file."""

import logging
from logging.handlers import TimedRotatingFileHandler
from pathlib import Path

from .config import get_settings

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def configure_logging() -> None:
    """Configure the root logger once per process."""
    settings = get_settings()
    root = logging.getLogger()
    if getattr(root, "_copilot_value_configured", False):
        return

    level = logging.DEBUG if settings.debug else settings.log_level.upper()
    root.setLevel(level)
    formatter = logging.Formatter(LOG_FORMAT)

    console = logging.StreamHandler()
    console.setFormatter(formatter)
    root.addHandler(console)

    if settings.log_dir:
        log_dir = Path(settings.log_dir)
        log_dir.mkdir(parents=True, exist_ok=True)
        file_handler = TimedRotatingFileHandler(
            log_dir / "app.log",
            when="midnight",
            backupCount=14,
            utc=True,
            encoding="utf-8",
        )
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)

    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)
    root._copilot_value_configured = True
