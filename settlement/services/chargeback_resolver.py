"""settlement.services.chargeback_resolver
=========================================
Mini-README: Records disputed payments reported by the payment gateway, escalates
repeat offenders to a payout block, and charges lost disputes back to the creator.
The resolver is the only writer of ``chargeback_count`` and
``chargeback_penalty_balance``. A lost chargeback is penalised exactly once: the
penalty is claimed with a conditional UPDATE on ``penalty_applied`` before any money
moves.
"""

from __future__ import annotations

from typing import Optional

from sqlalchemy.exc import IntegrityError

from ..config import Settings
from ..exceptions import InsufficientFundsError, InvalidTransitionError, NotFoundError, ValidationFailedError
from ..logger import get_logger
from ..models import Chargeback, ChargebackStatus, FraudFlagType
from ..repositories import ChargebackRepository, CreatorRepository
from .fraud_registry import FraudFlagRegistry
from .ledger import Ledger

LOGGER = get_logger(__name__)
MULTIPLE_CHARGEBACKS_REASON = "multiple chargebacks"

# Repeating the current status is accepted as a no-op so webhook retries are harmless.
ALLOWED_TRANSITIONS: dict[ChargebackStatus, frozenset[ChargebackStatus]] = {
    ChargebackStatus.PENDING: frozenset(
        {ChargebackStatus.PENDING, ChargebackStatus.DISPUTED, ChargebackStatus.WON, ChargebackStatus.LOST}
    ),
    ChargebackStatus.DISPUTED: frozenset({ChargebackStatus.DISPUTED, ChargebackStatus.WON, ChargebackStatus.LOST}),
    ChargebackStatus.WON: frozenset({ChargebackStatus.WON}),
    ChargebackStatus.LOST: frozenset({ChargebackStatus.LOST}),
}


def is_valid_transition(current: ChargebackStatus, new: ChargebackStatus) -> bool:
    return ChargebackStatus(new) in ALLOWED_TRANSITIONS[ChargebackStatus(current)]


class ChargebackResolver:
    def __init__(
        self,
        *,
        chargebacks: ChargebackRepository,
        creators: CreatorRepository,
        ledger: Ledger,
        fraud_flags: FraudFlagRegistry,
        settings: Settings,
    ):
        self._chargebacks = chargebacks
        self._creators = creators
        self._ledger = ledger
        self._fraud_flags = fraud_flags
        self._settings = settings

    async def record_chargeback(
        self,
        payment_id: str,
        creator_id: str,
        amount: int,
        external_chargeback_id: Optional[str] = None,
    ) -> Chargeback:
        """Store a new chargeback, flag it, and block payouts once the threshold is reached.

        A repeated ``external_chargeback_id`` returns the stored row and counts nothing.
        """

        if amount <= 0:
            raise ValidationFailedError("Chargeback amount must be positive.")
        if await self._creators.get(creator_id) is None:
            raise NotFoundError("Creator not found.")
        if external_chargeback_id:
            existing = await self._chargebacks.get_by_external_id(external_chargeback_id)
            if existing is not None:
                LOGGER.info("Duplicate chargeback delivery %s ignored", external_chargeback_id)
                return existing

        try:
            chargeback = await self._chargebacks.add(
                Chargeback(
                    payment_id=payment_id,
                    creator_id=creator_id,
                    amount=amount,
                    external_chargeback_id=external_chargeback_id,
                    status=ChargebackStatus.PENDING,
                )
            )
        except IntegrityError:
            await self._chargebacks.rollback()
            existing = None
            if external_chargeback_id:
                existing = await self._chargebacks.get_by_external_id(external_chargeback_id)
            if existing is None:
                raise
            LOGGER.info("Concurrent chargeback delivery %s already stored", external_chargeback_id)
            return existing
        chargeback_id = chargeback.id
        LOGGER.warning("Chargeback %s recorded creator=%s payment=%s amount=%s", chargeback_id, creator_id, payment_id, amount)

        await self._fraud_flags.flag_safely(
            type=FraudFlagType.CHARGEBACK,
            severity=self._settings.chargeback_flag_severity,
            creator_id=creator_id,
            description=f"Chargeback received for {amount} minor units",
            metadata={"paymentId": payment_id, "chargebackId": chargeback_id},
        )

        await self._creators.increment_chargeback_count(creator_id)
        creator = await self._creators.get(creator_id)
        if creator.chargeback_count >= self._settings.chargeback_block_threshold and not creator.payouts_blocked:
            blocked = await self._creators.set_payouts_blocked(
                creator_id, blocked=True, reason=MULTIPLE_CHARGEBACKS_REASON
            )
            if blocked:
                LOGGER.warning(
                    "Payouts blocked for creator %s after %s chargebacks", creator_id, creator.chargeback_count
                )

        return await self._chargebacks.get(chargeback_id)

    async def update_status(self, chargeback_id: str, new_status: ChargebackStatus) -> Chargeback:
        chargeback = await self._chargebacks.get(chargeback_id)
        if chargeback is None:
            raise NotFoundError("Chargeback not found.")

        new_status = ChargebackStatus(new_status)
        previous = chargeback.status
        if not is_valid_transition(previous, new_status):
            raise InvalidTransitionError(
                f"Cannot move chargeback from {previous.value} to {new_status.value}.",
                chargeback_id=chargeback_id,
            )

        creator_id = chargeback.creator_id
        amount = chargeback.amount
        if previous != new_status:
            if not await self._chargebacks.set_status(chargeback_id, new_status, expected=previous):
                # Another delivery moved the chargeback first; judge against its status.
                return await self.update_status(chargeback_id, new_status)
            LOGGER.info("Chargeback %s %s -> %s", chargeback_id, previous.value, new_status.value)
            if new_status is ChargebackStatus.WON:
                await self._creators.decrement_chargeback_count(creator_id)

        if new_status is ChargebackStatus.LOST:
            await self._apply_penalty_once(chargeback_id, creator_id, amount)

        return await self._chargebacks.get(chargeback_id)

    async def _apply_penalty_once(self, chargeback_id: str, creator_id: str, amount: int) -> None:
        if not await self._chargebacks.claim_penalty(chargeback_id, amount):
            LOGGER.info("Penalty for chargeback %s already applied", chargeback_id)
            return

        await self._creators.adjust_penalty_balance(creator_id, amount)
        try:
            await self._ledger.debit(creator_id, amount)
        except InsufficientFundsError:
            LOGGER.warning(
                "Penalty %s for chargeback %s left outstanding for creator %s", amount, chargeback_id, creator_id
            )
            return

        await self._creators.adjust_penalty_balance(creator_id, -amount)
        LOGGER.info("Penalty %s for chargeback %s settled from creator %s balance", amount, chargeback_id, creator_id)

    async def settle_outstanding_penalty(self, creator_id: str) -> int:
        """Collect as much of the outstanding penalty as the available balance allows."""

        creator = await self._creators.get(creator_id)
        if creator is None:
            raise NotFoundError("Creator not found.")

        outstanding = creator.chargeback_penalty_balance
        balance = await self._ledger.get_balance(creator_id)
        amount = min(outstanding, balance.available)
        if amount <= 0:
            return 0

        try:
            await self._ledger.debit(creator_id, amount)
        except InsufficientFundsError:
            LOGGER.info("Balance for creator %s changed while settling penalties; retry later", creator_id)
            return 0

        await self._creators.adjust_penalty_balance(creator_id, -amount)
        LOGGER.info("Settled %s of %s outstanding penalty for creator %s", amount, outstanding, creator_id)
        return amount

    async def find_by_external_id(self, external_chargeback_id: str) -> Chargeback:
        chargeback = await self._chargebacks.get_by_external_id(external_chargeback_id)
        if chargeback is None:
            raise NotFoundError("Chargeback not found.")
        return chargeback
