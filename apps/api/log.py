"""Logging configuration for the application."""

import logging
import sys

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# Third-party loggers that are too chatty at DEBUG
QUIET_LOGGERS = ("botocore", "aiobotocore", "azure", "pymongo", "multipart")


def configure_logging(level: str = "INFO") -> None:
    """Configure application-wide logging.

    Output goes to stdout. An unknown level name falls back to INFO.
    """
    log_level = logging.getLevelName(level.upper())
    if not isinstance(log_level, int):
        log_level = logging.INFO

    logging.basicConfig(
        level=log_level,
        format=LOG_FORMAT,
        handlers=[logging.StreamHandler(sys.stdout)],
        force=True,
    )

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(log_level, logging.INFO))
