"""Logging setup for agquota."""

import logging
import os
from logging.handlers import RotatingFileHandler
from pathlib import Path

from textual.logging import TextualHandler

from agquota.config import default_config_dir

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def configure_logging(level: str | None = None, log_file: Path | None = None) -> Path:
    """
    Send agquota logs to a rotating file and the Textual devtools console.

    Nothing is written to stderr, which the TUI owns.

    Args:
        level: Level name. Defaults to $AGQUOTA_LOG_LEVEL, then INFO.
        log_file: Destination. Defaults to agquota.log in the config dir.

    Returns:
        Path of the log file.
    """
    level_name = (level or os.getenv("AGQUOTA_LOG_LEVEL") or "INFO").upper()
    log_file = log_file or default_config_dir() / "agquota.log"
    log_file.parent.mkdir(parents=True, exist_ok=True)

    formatter = logging.Formatter(LOG_FORMAT)
    file_handler = RotatingFileHandler(
        log_file, maxBytes=1_000_000, backupCount=3, encoding="utf-8"
    )
    file_handler.setFormatter(formatter)

    package_logger = logging.getLogger("agquota")
    package_logger.setLevel(getattr(logging, level_name, logging.INFO))
    for handler in list(package_logger.handlers):
        package_logger.removeHandler(handler)
        handler.close()
    package_logger.addHandler(file_handler)
    package_logger.addHandler(TextualHandler())
    package_logger.propagate = False
    return log_file
