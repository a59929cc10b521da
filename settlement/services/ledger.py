"""settlement.services.ledger
============================
Mini-README: The creator balance ledger. Credits and debits are expressed as single
server-side arithmetic UPDATE statements; the debit carries its sufficiency check in
the WHERE clause, so two concurrent payouts can never both observe enough funds and
overdraw the balance.
"""

from __future__ import annotations

from dataclasses import dataclass

from ..exceptions import InsufficientFundsError, ValidationFailedError
from ..logger import get_logger
from ..repositories import BalanceRepository

LOGGER = get_logger(__name__)


@dataclass(frozen=True)
class BalanceSnapshot:
    available: int
    pending: int


class Ledger:
    """Sole writer of creator balances."""

    def __init__(self, balances: BalanceRepository):
        self._balances = balances

    async def get_balance(self, creator_id: str) -> BalanceSnapshot:
        """Return the creator's balance; a missing row reads as zero."""

        balance = await self._balances.get(creator_id)
        if balance is None:
            return BalanceSnapshot(available=0, pending=0)
        return BalanceSnapshot(available=balance.available, pending=balance.pending)

    async def credit(self, creator_id: str, amount: int) -> None:
        _ensure_positive(amount)
        updated = await self._balances.increment_available(creator_id, amount)
        if updated == 0:
            await self._balances.create(creator_id, available=amount)
            LOGGER.info("Opened balance for creator=%s with credit=%s", creator_id, amount)
            return
        LOGGER.info("Credited creator=%s amount=%s", creator_id, amount)

    async def debit(self, creator_id: str, amount: int) -> None:
        _ensure_positive(amount)
        updated = await self._balances.decrement_available_if_sufficient(creator_id, amount)
        if updated == 0:
            LOGGER.warning("Rejected debit creator=%s amount=%s: insufficient funds", creator_id, amount)
            raise InsufficientFundsError(creator_id=creator_id, amount=amount)
        LOGGER.info("Debited creator=%s amount=%s", creator_id, amount)


def _ensure_positive(amount: int) -> None:
    if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
        raise ValidationFailedError("Ledger amounts must be positive integers in minor units.")
