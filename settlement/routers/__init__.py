"""settlement.routers
====================
Mini-README: Router package initialiser exposing the FastAPI routers of the settlement
core: creator payouts, back-office risk administration, and gateway webhooks.
"""

from . import admin, payouts, webhooks

__all__ = ["admin", "payouts", "webhooks"]
