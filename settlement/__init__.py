"""settlement.__init__
=================
Mini-README: This package initialises the creator settlement and risk core. It exposes
the configuration and logging helpers used across the ledger, payout, fraud and
chargeback components.
"""

from .config import get_settings
from .logger import configure_logging, get_logger

__all__ = ["get_settings", "get_logger", "configure_logging"]
