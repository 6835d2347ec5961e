"""
Logging configuration
"""
import logging
import sys
from typing import Optional

from app.core.config import settings

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# Libraries that log every scheduler tick or HTTP request at INFO
NOISY_LOGGERS = ("apscheduler", "stripe", "urllib3", "google.auth")


def setup_logging(level: Optional[int] = None) -> None:
    """
    Send all logs to stdout in one format.

    Args:
        level: Root level; DEBUG when settings.DEBUG is on, otherwise INFO
    """
    if level is None:
        level = logging.DEBUG if settings.DEBUG else logging.INFO

    logging.basicConfig(
        level=level,
        format=LOG_FORMAT,
        datefmt="%Y-%m-%d %H:%M:%S",
        handlers=[logging.StreamHandler(sys.stdout)],
        force=True,
    )

    for name in ("uvicorn", "uvicorn.access"):
        logging.getLogger(name).setLevel(level)
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
