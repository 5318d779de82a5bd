"""Centralized logging configuration."""

import logging

from config import settings

LOG_FORMAT = "%(asctime)s %(levelname)-8s [%(threadName)s] %(name)s  %(message)s"

# HTTP and ORM chatter that drowns out per-page sync logs at DEBUG
QUIET_LOGGERS = (
    "sqlalchemy.engine",
    "sqlalchemy.pool",
    "urllib3",
    "plaid",
    "httpx",
    "httpcore",
)


def setup_logging(level: str | None = None) -> None:
    """Configure the root logger.

    Args:
        level: Overrides ``settings.LOG_LEVEL`` (the CLI scripts pass
               ``DEBUG`` for ``--verbose``).
    """
    logging.basicConfig(
        format=LOG_FORMAT,
        datefmt="%H:%M:%S",
        level=getattr(logging, (level or settings.LOG_LEVEL).upper()),
        force=True,
    )
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
