"""settlement.services.velocity_guard
====================================
Mini-README: Counts recent events of one kind for an actor inside a trailing window
and compares the count against a limit. The check is advisory and read-only: two
requests racing inside the same window can both observe a count under the limit.
Payout requests are additionally serialised per creator by the orchestrator, which
closes that race for the payout path within one process.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from datetime import timedelta

from ..logger import get_logger
from ..models import utcnow
from ..repositories import CreatorRepository, PaymentRepository, PayoutRepository

LOGGER = get_logger(__name__)


class VelocityKind(str, enum.Enum):
    PAYMENT = "payment"
    PAYOUT = "payout"


@dataclass(frozen=True)
class VelocityResult:
    allowed: bool
    count: int
    limit: int
    window_minutes: int


class VelocityGuard:
    def __init__(self, payments: PaymentRepository, payouts: PayoutRepository, creators: CreatorRepository):
        self._payments = payments
        self._payouts = payouts
        self._creators = creators

    async def check_velocity(
        self,
        kind: VelocityKind,
        actor_id: str,
        window_minutes: int = 60,
        limit: int = 5,
    ) -> VelocityResult:
        """Count ``kind`` events by ``actor_id`` in the last ``window_minutes``.

        Payments are scoped by payer. Payouts are scoped by the creator record owned by
        the actor (a user id); an actor without a creator record has no payouts.
        """

        kind = VelocityKind(kind)
        window_start = utcnow() - timedelta(minutes=window_minutes)

        if kind is VelocityKind.PAYMENT:
            count = await self._payments.count_for_payer_since(actor_id, window_start)
        else:
            creator = await self._creators.get_by_user_id(actor_id)
            count = 0
            if creator is not None:
                count = await self._payouts.count_for_creator_since(creator.id, window_start)

        result = VelocityResult(allowed=count < limit, count=count, limit=limit, window_minutes=window_minutes)
        if not result.allowed:
            LOGGER.warning(
                "Velocity limit hit kind=%s actor=%s count=%s limit=%s window=%smin",
                kind.value,
                actor_id,
                count,
                limit,
                window_minutes,
            )
        return result
