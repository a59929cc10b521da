"""settlement.repositories
=======================
Mini-README: Thin data-access objects wrapping an ``AsyncSession``. Each component of
the settlement core receives the repositories it needs through its constructor, so
nothing reaches a process-wide connection handle. Mutating helpers commit before
returning: every step of the payout saga must be durable on its own. The one
exception is ``PayoutRepository.fail_if_processing``, whose claim commits together
with the compensating ledger credit.

Balance and counter mutations are single server-side arithmetic UPDATE statements
whose affected-row count is inspected by the caller.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Iterable

from sqlalchemy import case, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from .models import (
    AuditLog,
    Balance,
    Chargeback,
    ChargebackStatus,
    Creator,
    DeviceFingerprint,
    FraudFlag,
    FraudFlagType,
    Payment,
    Payout,
    PayoutStatus,
    User,
    utcnow,
)

_NO_SYNC = {"synchronize_session": False}


class BalanceRepository:
    """Atomic arithmetic on the ``balances`` table."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get(self, creator_id: str) -> Balance | None:
        stmt = (
            select(Balance)
            .where(Balance.creator_id == creator_id)
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def increment_available(self, creator_id: str, amount: int) -> int:
        """Add ``amount`` server-side and return the affected row count."""

        stmt = (
            update(Balance)
            .where(Balance.creator_id == creator_id)
            .values(available=Balance.available + amount, updated_at=utcnow())
            .execution_options(**_NO_SYNC)
        )
        result = await self.session.execute(stmt)
        await self.session.commit()
        return result.rowcount

    async def decrement_available_if_sufficient(self, creator_id: str, amount: int) -> int:
        """Subtract ``amount`` only where ``available >= amount``; return affected rows."""

        stmt = (
            update(Balance)
            .where(Balance.creator_id == creator_id, Balance.available >= amount)
            .values(available=Balance.available - amount, updated_at=utcnow())
            .execution_options(**_NO_SYNC)
        )
        result = await self.session.execute(stmt)
        await self.session.commit()
        return result.rowcount

    async def create(self, creator_id: str, available: int = 0, pending: int = 0) -> Balance:
        balance = Balance(creator_id=creator_id, available=available, pending=pending)
        self.session.add(balance)
        await self.session.commit()
        await self.session.refresh(balance)
        return balance


class CreatorRepository:
    """Reads and risk-state writes on the creator record."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get(self, creator_id: str) -> Creator | None:
        stmt = select(Creator).where(Creator.id == creator_id).execution_options(populate_existing=True)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_by_user_id(self, user_id: str) -> Creator | None:
        result = await self.session.execute(select(Creator).where(Creator.user_id == user_id))
        return result.scalar_one_or_none()

    async def find_by_document(
        self, candidates: Iterable[str], *, exclude_user_id: str | None = None
    ) -> Creator | None:
        stmt = select(Creator).where(Creator.cpf_cnpj.in_(list(candidates)))
        if exclude_user_id:
            stmt = stmt.where(Creator.user_id != exclude_user_id)
        result = await self.session.execute(stmt.limit(1))
        return result.scalar_one_or_none()

    async def increment_chargeback_count(self, creator_id: str) -> int:
        stmt = (
            update(Creator)
            .where(Creator.id == creator_id)
            .values(chargeback_count=Creator.chargeback_count + 1, updated_at=utcnow())
            .execution_options(**_NO_SYNC)
        )
        result = await self.session.execute(stmt)
        await self.session.commit()
        return result.rowcount

    async def decrement_chargeback_count(self, creator_id: str) -> int:
        """Decrement the chargeback counter, never going below zero."""

        floored = case((Creator.chargeback_count > 0, Creator.chargeback_count - 1), else_=0)
        stmt = (
            update(Creator)
            .where(Creator.id == creator_id)
            .values(chargeback_count=floored, updated_at=utcnow())
            .execution_options(**_NO_SYNC)
        )
        result = await self.session.execute(stmt)
        await self.session.commit()
        return result.rowcount

    async def adjust_penalty_balance(self, creator_id: str, delta: int) -> int:
        stmt = (
            update(Creator)
            .where(Creator.id == creator_id)
            .values(
                chargeback_penalty_balance=Creator.chargeback_penalty_balance + delta,
                updated_at=utcnow(),
            )
            .execution_options(**_NO_SYNC)
        )
        result = await self.session.execute(stmt)
        await self.session.commit()
        return result.rowcount

    async def set_payouts_blocked(self, creator_id: str, *, blocked: bool, reason: str | None) -> int:
        """Flip the block flag only if it currently holds the opposite value."""

        stmt = (
            update(Creator)
            .where(Creator.id == creator_id, Creator.payouts_blocked.is_(not blocked))
            .values(payouts_blocked=blocked, payout_block_reason=reason, updated_at=utcnow())
            .execution_options(**_NO_SYNC)
        )
        result = await self.session.execute(stmt)
        await self.session.commit()
        return result.rowcount

    async def list_auto_payout_candidates(self, min_available: int) -> list[tuple[str, int]]:
        """Return ``(creator_id, available)`` for creators with a PIX key and enough balance."""

        stmt = (
            select(Creator.id, Balance.available)
            .join(Balance, Balance.creator_id == Creator.id)
            .where(Balance.available >= min_available, Creator.pix_key.is_not(None))
            .order_by(Balance.available.desc())
        )
        result = await self.session.execute(stmt)
        return [(row[0], row[1]) for row in result.all()]


class UserRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def find_by_document(
        self, candidates: Iterable[str], *, exclude_user_id: str | None = None
    ) -> User | None:
        stmt = select(User).where(User.cpf_cnpj.in_(list(candidates)))
        if exclude_user_id:
            stmt = stmt.where(User.id != exclude_user_id)
        result = await self.session.execute(stmt.limit(1))
        return result.scalar_one_or_none()


class PaymentRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def count_for_payer_since(self, payer_id: str, since: datetime) -> int:
        stmt = select(func.count(Payment.id)).where(Payment.payer_id == payer_id, Payment.created_at >= since)
        result = await self.session.execute(stmt)
        return result.scalar_one()


class PayoutRepository:
    """Payout rows plus the window counts used by the orchestrator's rate limits."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def add(self, payout: Payout) -> Payout:
        self.session.add(payout)
        await self.session.commit()
        await self.session.refresh(payout)
        return payout

    async def save(self, payout: Payout) -> Payout:
        await self.session.commit()
        await self.session.refresh(payout)
        return payout

    async def commit(self) -> None:
        await self.session.commit()

    async def rollback(self) -> None:
        await self.session.rollback()

    async def fail_if_processing(self, payout_id: str, reason: str) -> bool:
        """Claim a ``processing`` payout as failed without committing.

        The caller commits together with the matching ledger credit, so only the
        session that flipped the row ever returns the money.
        """

        stmt = (
            update(Payout)
            .where(Payout.id == payout_id, Payout.status == PayoutStatus.PROCESSING)
            .values(status=PayoutStatus.FAILED, failed_reason=reason)
            .execution_options(**_NO_SYNC)
        )
        result = await self.session.execute(stmt)
        return result.rowcount == 1

    async def complete_if_processing(self, payout_id: str) -> bool:
        stmt = (
            update(Payout)
            .where(Payout.id == payout_id, Payout.status == PayoutStatus.PROCESSING)
            .values(status=PayoutStatus.COMPLETED, processed_at=utcnow())
            .execution_options(**_NO_SYNC)
        )
        result = await self.session.execute(stmt)
        await self.session.commit()
        return result.rowcount == 1

    async def get(self, payout_id: str) -> Payout | None:
        stmt = select(Payout).where(Payout.id == payout_id).execution_options(populate_existing=True)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_by_external_id(self, external_transfer_id: str) -> Payout | None:
        stmt = select(Payout).where(Payout.external_transfer_id == external_transfer_id)
        result = await self.session.execute(stmt.execution_options(populate_existing=True))
        return result.scalar_one_or_none()

    async def count_for_creator_since(
        self,
        creator_id: str,
        since: datetime,
        *,
        exclude_statuses: Iterable[PayoutStatus] = (),
    ) -> int:
        stmt = select(func.count(Payout.id)).where(Payout.creator_id == creator_id, Payout.created_at >= since)
        excluded = list(exclude_statuses)
        if excluded:
            stmt = stmt.where(Payout.status.notin_(excluded))
        result = await self.session.execute(stmt)
        return result.scalar_one()

    async def list_for_creator(
        self,
        creator_id: str,
        *,
        status: PayoutStatus | None,
        offset: int,
        limit: int,
    ) -> tuple[list[Payout], int]:
        conditions = [Payout.creator_id == creator_id]
        if status is not None:
            conditions.append(Payout.status == status)

        stmt = select(Payout).where(*conditions).order_by(Payout.created_at.desc()).offset(offset).limit(limit)
        items = (await self.session.execute(stmt.execution_options(populate_existing=True))).scalars().all()
        total = (await self.session.execute(select(func.count(Payout.id)).where(*conditions))).scalar_one()
        return list(items), total


@dataclass
class FraudFlagFilters:
    """Closed filter set accepted by the flag listing."""

    resolved: bool | None = False
    type: FraudFlagType | None = None
    creator_id: str | None = None
    user_id: str | None = None


class FraudFlagRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def add(self, flag: FraudFlag) -> FraudFlag:
        self.session.add(flag)
        await self.session.commit()
        await self.session.refresh(flag)
        return flag

    async def save(self, flag: FraudFlag) -> FraudFlag:
        await self.session.commit()
        await self.session.refresh(flag)
        return flag

    async def rollback(self) -> None:
        await self.session.rollback()

    async def get(self, flag_id: str) -> FraudFlag | None:
        stmt = select(FraudFlag).where(FraudFlag.id == flag_id).execution_options(populate_existing=True)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def search(self, filters: FraudFlagFilters, *, offset: int, limit: int) -> tuple[list[FraudFlag], int]:
        conditions = []
        if filters.resolved is not None:
            conditions.append(FraudFlag.is_resolved.is_(filters.resolved))
        if filters.type is not None:
            conditions.append(FraudFlag.type == filters.type)
        if filters.creator_id is not None:
            conditions.append(FraudFlag.creator_id == filters.creator_id)
        if filters.user_id is not None:
            conditions.append(FraudFlag.user_id == filters.user_id)

        stmt = (
            select(FraudFlag)
            .where(*conditions)
            .order_by(FraudFlag.severity.desc(), FraudFlag.created_at.desc())
            .offset(offset)
            .limit(limit)
        )
        items = (await self.session.execute(stmt)).scalars().all()
        total = (await self.session.execute(select(func.count(FraudFlag.id)).where(*conditions))).scalar_one()
        return list(items), total

    async def count_unresolved(self) -> int:
        stmt = select(func.count(FraudFlag.id)).where(FraudFlag.is_resolved.is_(False))
        return (await self.session.execute(stmt)).scalar_one()


class DeviceFingerprintRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_for_user(self, user_id: str, fingerprint: str) -> DeviceFingerprint | None:
        stmt = select(DeviceFingerprint).where(
            DeviceFingerprint.user_id == user_id,
            DeviceFingerprint.fingerprint == fingerprint,
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def find_other_user(self, fingerprint: str, user_id: str) -> DeviceFingerprint | None:
        stmt = (
            select(DeviceFingerprint)
            .where(DeviceFingerprint.fingerprint == fingerprint, DeviceFingerprint.user_id != user_id)
            .order_by(DeviceFingerprint.first_seen_at)
            .limit(1)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def add(self, record: DeviceFingerprint) -> DeviceFingerprint:
        self.session.add(record)
        await self.session.commit()
        await self.session.refresh(record)
        return record

    async def touch(self, record: DeviceFingerprint) -> DeviceFingerprint:
        record.last_seen_at = utcnow()
        await self.session.commit()
        await self.session.refresh(record)
        return record


class ChargebackRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def add(self, chargeback: Chargeback) -> Chargeback:
        self.session.add(chargeback)
        await self.session.commit()
        await self.session.refresh(chargeback)
        return chargeback

    async def get(self, chargeback_id: str) -> Chargeback | None:
        stmt = select(Chargeback).where(Chargeback.id == chargeback_id).execution_options(populate_existing=True)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_by_external_id(self, external_chargeback_id: str) -> Chargeback | None:
        stmt = select(Chargeback).where(Chargeback.external_chargeback_id == external_chargeback_id)
        result = await self.session.execute(stmt.execution_options(populate_existing=True))
        return result.scalar_one_or_none()

    async def rollback(self) -> None:
        await self.session.rollback()

    async def set_status(self, chargeback_id: str, status: ChargebackStatus, *, expected: ChargebackStatus) -> int:
        """Move the chargeback to ``status`` only while it still holds ``expected``."""

        stmt = (
            update(Chargeback)
            .where(Chargeback.id == chargeback_id, Chargeback.status == expected)
            .values(status=status, updated_at=utcnow())
            .execution_options(**_NO_SYNC)
        )
        result = await self.session.execute(stmt)
        await self.session.commit()
        return result.rowcount

    async def claim_penalty(self, chargeback_id: str, amount: int) -> bool:
        """Mark the penalty as applied; ``False`` when another caller already did."""

        stmt = (
            update(Chargeback)
            .where(Chargeback.id == chargeback_id, Chargeback.penalty_applied.is_(False))
            .values(penalty_applied=True, penalty_amount=amount, updated_at=utcnow())
            .execution_options(**_NO_SYNC)
        )
        result = await self.session.execute(stmt)
        await self.session.commit()
        return result.rowcount == 1


class AuditLogRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def add(self, entry: AuditLog) -> AuditLog:
        self.session.add(entry)
        await self.session.commit()
        await self.session.refresh(entry)
        return entry


@dataclass
class Repositories:
    """Bundle of repositories sharing one session, built per request or job run."""

    balances: BalanceRepository
    creators: CreatorRepository
    users: UserRepository
    payments: PaymentRepository
    payouts: PayoutRepository
    fraud_flags: FraudFlagRepository
    fingerprints: DeviceFingerprintRepository
    chargebacks: ChargebackRepository
    audit_logs: AuditLogRepository

    @classmethod
    def from_session(cls, session: AsyncSession) -> "Repositories":
        return cls(
            balances=BalanceRepository(session),
            creators=CreatorRepository(session),
            users=UserRepository(session),
            payments=PaymentRepository(session),
            payouts=PayoutRepository(session),
            fraud_flags=FraudFlagRepository(session),
            fingerprints=DeviceFingerprintRepository(session),
            chargebacks=ChargebackRepository(session),
            audit_logs=AuditLogRepository(session),
        )


__all__ = [
    "AuditLogRepository",
    "BalanceRepository",
    "ChargebackRepository",
    "CreatorRepository",
    "DeviceFingerprintRepository",
    "FraudFlagFilters",
    "FraudFlagRepository",
    "PaymentRepository",
    "PayoutRepository",
    "Repositories",
    "UserRepository",
]
