"""settlement.logger
=================
Mini-README: Configures structured logging utilities across the settlement core.
Exposes a factory for obtaining module-specific loggers with consistent formatting and
log levels. Reconciliation problems are logged at CRITICAL so they stand out from the
routine WARNING noise produced by rejected payout requests.

Usage:
    LOGGER = get_logger(__name__)
    configure_logging("debug")  # e.g. from the server CLI's --log-level
"""

import logging
from logging.config import dictConfig

# Third-party loggers that are chatty at INFO (HTTP client requests, SQL echo).
_QUIET_LOGGERS = ("httpx", "httpcore", "aiosqlite", "sqlalchemy.engine")


def _build_config(level: str) -> dict:
    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "default": {
                "format": "%(asctime)s | %(levelname)s | %(name)s | %(message)s",
            }
        },
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "formatter": "default",
                "level": "DEBUG",
            }
        },
        "loggers": {
            "settlement": {"level": level, "propagate": True},
            **{name: {"level": "WARNING", "propagate": True} for name in _QUIET_LOGGERS},
        },
        "root": {
            "handlers": ["console"],
            "level": "INFO",
        },
    }


def configure_logging(level: str = "INFO") -> None:
    """(Re)apply the logging configuration with ``level`` for the settlement loggers."""

    dictConfig(_build_config(level.upper()))


configure_logging()


def get_logger(name: str) -> logging.Logger:
    """Return a module-specific logger instance."""

    return logging.getLogger(name)
