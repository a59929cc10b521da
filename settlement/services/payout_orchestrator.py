"""settlement.services.payout_orchestrator
=========================================
Mini-README: Validates payout requests, debits the ledger, asks the settlement gateway
to transfer the net amount and reconciles the outcome. The debit/transfer/compensate
sequence is an explicit saga: there is no transaction spanning the ledger and the
external gateway, so every failure after the debit credits the gross amount back.
The credit commits in the same transaction as the conditional ``processing ->
failed`` claim, which keeps compensation exactly-once under duplicate notifications.

Payout requests for the same creator are serialised through ``PayoutLockRegistry``
from the first validation step until the debit has been written, so the velocity and
monthly-limit counts always include a concurrent request's payout row.
"""

from __future__ import annotations

import asyncio
import weakref
from dataclasses import dataclass
from datetime import timedelta
from typing import Optional

from ..config import Settings
from ..exceptions import (
    BelowMinimumError,
    ExternalGatewayError,
    InsufficientFundsError,
    KycRequiredError,
    MonthlyLimitReachedError,
    NetTooLowError,
    NotFoundError,
    PayoutsBlockedError,
    RateLimitedError,
    ReconciliationError,
    SettlementDestinationMissingError,
    SettlementError,
    ValidationFailedError,
)
from ..logger import get_logger
from ..models import (
    AuditAction,
    AuditLog,
    Creator,
    FraudFlagType,
    KycStatus,
    Payout,
    PayoutStatus,
    PixKeyType,
    utcnow,
)
from ..repositories import AuditLogRepository, CreatorRepository, PayoutRepository
from .fraud_registry import FraudFlagRegistry
from .identity_signals import detect_pix_key_type
from .ledger import BalanceSnapshot, Ledger
from .transfer_gateway import TransferGateway, TransferRequest, TransferStatus, to_decimal_amount
from .velocity_guard import VelocityGuard, VelocityKind

LOGGER = get_logger(__name__)
TERMINAL_STATUSES = frozenset({PayoutStatus.COMPLETED, PayoutStatus.FAILED})
PAYOUT_DESCRIPTION = "Creator payout"


class PayoutLockRegistry:
    """Per-creator ``asyncio.Lock`` objects shared by every orchestrator in the process."""

    def __init__(self) -> None:
        self._locks: weakref.WeakValueDictionary[str, asyncio.Lock] = weakref.WeakValueDictionary()

    def lock_for(self, creator_id: str) -> asyncio.Lock:
        lock = self._locks.get(creator_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[creator_id] = lock
        return lock


@dataclass(frozen=True)
class PayoutPlan:
    """Validated request: who gets paid, where, and how much."""

    creator_id: str
    pix_key: str
    pix_key_type: PixKeyType
    gross: int
    fee: int
    net: int


@dataclass(frozen=True)
class PayoutLimitInfo:
    used: int
    limit: int
    remaining: int
    is_pro: bool


@dataclass(frozen=True)
class PayoutQuote:
    available: int
    pending: int
    min_payout: int
    payout_fee: int
    net_available: int
    payout_limit: PayoutLimitInfo


@dataclass
class PayoutPage:
    items: list[Payout]
    total: int
    page: int
    page_size: int


class PayoutOrchestrator:
    """Owns the payout lifecycle ``processing -> completed | failed``."""

    def __init__(
        self,
        *,
        creators: CreatorRepository,
        payouts: PayoutRepository,
        audit_logs: AuditLogRepository,
        ledger: Ledger,
        velocity_guard: VelocityGuard,
        fraud_flags: FraudFlagRegistry,
        gateway: TransferGateway,
        locks: PayoutLockRegistry,
        settings: Settings,
    ):
        self._creators = creators
        self._payouts = payouts
        self._audit_logs = audit_logs
        self._ledger = ledger
        self._velocity_guard = velocity_guard
        self._fraud_flags = fraud_flags
        self._gateway = gateway
        self._locks = locks
        self._settings = settings

    # ------------------------------------------------------------------ requests

    async def request_payout(self, creator_id: str, amount: Optional[int] = None) -> Payout:
        """Validate, debit and transfer; ``amount=None`` pays out the whole available balance."""

        async with self._locks.lock_for(creator_id):
            plan = await self._validate(creator_id, amount)
            payout = await self._payouts.add(
                Payout(
                    creator_id=plan.creator_id,
                    amount=plan.gross,
                    fee=plan.fee,
                    net_amount=plan.net,
                    status=PayoutStatus.PROCESSING,
                )
            )
            payout_id = payout.id
            try:
                await self._ledger.debit(plan.creator_id, plan.gross)
            except Exception as exc:
                await self._payouts.rollback()
                if isinstance(exc, InsufficientFundsError):
                    reason = "Insufficient funds at debit"
                else:
                    LOGGER.error("Debit for payout %s failed: %s", payout_id, exc)
                    reason = f"Debit failed: {_describe(exc)}"
                await self._payouts.fail_if_processing(payout_id, reason)
                await self._payouts.commit()
                raise

        LOGGER.info(
            "Payout %s debited creator=%s gross=%s fee=%s net=%s",
            payout.id,
            plan.creator_id,
            plan.gross,
            plan.fee,
            plan.net,
        )
        return await self._transfer(plan, payout)

    async def _validate(self, creator_id: str, amount: Optional[int]) -> PayoutPlan:
        creator = await self._creators.get(creator_id)
        if creator is None:
            raise NotFoundError("Creator not found.")
        if creator.kyc_status != KycStatus.APPROVED:
            raise KycRequiredError(creator_id=creator_id, kyc_status=creator.kyc_status.value)
        if creator.payouts_blocked:
            reason = creator.payout_block_reason or "no reason recorded"
            raise PayoutsBlockedError(f"Payouts are blocked: {reason}", creator_id=creator_id)
        if not creator.pix_key:
            raise SettlementDestinationMissingError(creator_id=creator_id)

        pix_key = creator.pix_key
        pix_key_type = creator.pix_key_type or detect_pix_key_type(pix_key)
        user_id = creator.user_id
        is_pro = creator.is_pro

        await self._enforce_velocity(creator_id, user_id)
        await self._enforce_monthly_limit(creator_id, is_pro)

        balance = await self._ledger.get_balance(creator_id)
        gross = self._resolve_gross(balance, amount)
        fee = self._settings.payout_fee
        net = gross - fee
        if net < self._settings.min_net_payout:
            raise NetTooLowError(gross=gross, fee=fee, net=net)

        return PayoutPlan(
            creator_id=creator_id,
            pix_key=pix_key,
            pix_key_type=PixKeyType(pix_key_type),
            gross=gross,
            fee=fee,
            net=net,
        )

    async def _enforce_velocity(self, creator_id: str, user_id: str) -> None:
        window = self._settings.payout_velocity_window_minutes
        result = await self._velocity_guard.check_velocity(
            VelocityKind.PAYOUT,
            user_id,
            window_minutes=window,
            limit=self._settings.payout_velocity_limit,
        )
        if result.allowed:
            return

        await self._fraud_flags.flag_safely(
            type=FraudFlagType.VELOCITY_PAYOUT,
            severity=self._settings.velocity_flag_severity,
            creator_id=creator_id,
            user_id=user_id,
            description=f"{result.count} payout requests within {window} minutes",
            metadata={"count": result.count, "limit": result.limit, "windowMinutes": window},
        )
        raise RateLimitedError(creator_id=creator_id, count=result.count)

    async def _enforce_monthly_limit(self, creator_id: str, is_pro: bool) -> None:
        info = await self._limit_info(creator_id, is_pro)
        if info.remaining <= 0:
            raise MonthlyLimitReachedError(
                f"Monthly payout limit reached ({info.used}/{info.limit}).",
                creator_id=creator_id,
            )

    def _resolve_gross(self, balance: BalanceSnapshot, amount: Optional[int]) -> int:
        if amount is not None and amount <= 0:
            raise ValidationFailedError("Payout amount must be positive.")

        gross = balance.available if amount is None else amount
        if gross > balance.available:
            raise InsufficientFundsError(requested=gross, available=balance.available)
        if gross < self._settings.min_payout_amount:
            raise BelowMinimumError(
                f"Minimum payout is {self._settings.min_payout_amount} minor units.",
                requested=gross,
            )
        return gross

    # ------------------------------------------------------------------ saga

    async def _transfer(self, plan: PayoutPlan, payout: Payout) -> Payout:
        request = TransferRequest(
            amount_decimal=to_decimal_amount(plan.net),
            destination_key=plan.pix_key,
            destination_key_type=plan.pix_key_type,
            description=PAYOUT_DESCRIPTION,
            external_reference=payout.id,
        )
        payout_id = payout.id

        try:
            result = await self._gateway.transfer(request)
        except Exception as exc:  # noqa: BLE001 - every failure after the debit is compensated
            LOGGER.error("Transfer for payout %s failed: %s", payout_id, exc)
            await self._compensate(payout_id, plan.creator_id, plan.gross, reason=_describe(exc))
            raise ExternalGatewayError(payout_id=payout_id) from exc

        if result.is_rejected:
            reason = result.fail_reason or f"Transfer {result.status.value.lower()}"
            LOGGER.error("Gateway rejected payout %s: %s", payout_id, reason)
            await self._compensate(payout_id, plan.creator_id, plan.gross, reason=reason)
            raise ExternalGatewayError(payout_id=payout_id)

        payout.external_transfer_id = result.id
        payout = await self._payouts.save(payout)
        if result.is_settled:
            await self._payouts.complete_if_processing(payout_id)
            payout = await self._payouts.get(payout_id)
        LOGGER.info("Payout %s transfer=%s status=%s", payout_id, result.id, payout.status.value)
        return payout

    async def _compensate(self, payout_id: str, creator_id: str, gross: int, *, reason: str) -> bool:
        """Credit ``gross`` back and mark the payout failed in one transaction.

        The conditional claim on ``status = processing`` makes this run at most once per
        payout, however many failure notifications arrive together.
        """

        if not await self._payouts.fail_if_processing(payout_id, reason):
            await self._payouts.rollback()
            LOGGER.info("Skipping compensation for payout %s: already terminal", payout_id)
            return False

        try:
            await self._ledger.credit(creator_id, gross)
        except Exception as exc:  # noqa: BLE001 - surfaced as a reconciliation problem
            await self._payouts.rollback()
            LOGGER.critical(
                "RECONCILIATION REQUIRED payout=%s creator=%s gross=%s: compensating credit failed: %s",
                payout_id,
                creator_id,
                gross,
                exc,
            )
            raise ReconciliationError(payout_id=payout_id, creator_id=creator_id, amount=gross) from exc

        LOGGER.warning("Payout %s failed and %s returned to creator %s: %s", payout_id, gross, creator_id, reason)
        return True

    async def reconcile_transfer(
        self,
        payout_id: str,
        status: TransferStatus,
        fail_reason: Optional[str] = None,
    ) -> Payout:
        """Apply a later gateway status (webhook or polling) to an in-flight payout."""

        payout = await self._payouts.get(payout_id)
        if payout is None:
            raise NotFoundError("Payout not found.")
        if payout.status in TERMINAL_STATUSES:
            return payout

        status = TransferStatus(status)
        if status is TransferStatus.DONE:
            if await self._payouts.complete_if_processing(payout_id):
                LOGGER.info("Payout %s settled by gateway", payout_id)
        elif status in (TransferStatus.FAILED, TransferStatus.CANCELLED):
            await self._compensate(
                payout_id,
                payout.creator_id,
                payout.amount,
                reason=fail_reason or f"Transfer {status.value.lower()}",
            )
        else:
            return payout
        return await self._payouts.get(payout_id)

    async def find_payout_by_transfer_id(self, transfer_id: str) -> Payout | None:
        return await self._payouts.get_by_external_id(transfer_id)

    async def process_automatic_payouts(self) -> int:
        """Pay out the full balance of every eligible creator; failures are logged and skipped."""

        processed = 0
        candidates = await self._creators.list_auto_payout_candidates(self._settings.min_payout_amount)
        for creator_id, available in candidates:
            try:
                await self.request_payout(creator_id, available)
            except ReconciliationError:
                LOGGER.error("Automatic payout for creator %s needs reconciliation", creator_id)
                continue
            except SettlementError as exc:
                LOGGER.warning("Automatic payout skipped for creator %s: %s", creator_id, exc.message)
                continue
            processed += 1

        LOGGER.info("Automatic payouts processed=%s of candidates=%s", processed, len(candidates))
        return processed

    # ------------------------------------------------------------------ queries

    async def get_payout_limit_info(self, creator_id: str) -> PayoutLimitInfo:
        creator = await self._require_creator(creator_id)
        return await self._limit_info(creator_id, creator.is_pro)

    async def _limit_info(self, creator_id: str, is_pro: bool) -> PayoutLimitInfo:
        since = utcnow() - timedelta(days=self._settings.monthly_payout_window_days)
        used = await self._payouts.count_for_creator_since(
            creator_id, since, exclude_statuses=[PayoutStatus.FAILED]
        )
        limit = self._settings.monthly_payout_limit_pro if is_pro else self._settings.monthly_payout_limit_standard
        return PayoutLimitInfo(used=used, limit=limit, remaining=max(0, limit - used), is_pro=is_pro)

    async def get_payout_quote(self, creator_id: str) -> PayoutQuote:
        """Balance and limits as shown to a creator before requesting a payout."""

        creator = await self._require_creator(creator_id)
        balance = await self._ledger.get_balance(creator_id)
        fee = self._settings.payout_fee
        return PayoutQuote(
            available=balance.available,
            pending=balance.pending,
            min_payout=self._settings.min_payout_amount,
            payout_fee=fee,
            net_available=max(0, balance.available - fee),
            payout_limit=await self._limit_info(creator_id, creator.is_pro),
        )

    async def list_creator_payouts(
        self,
        creator_id: str,
        *,
        status: PayoutStatus | None = None,
        page: int = 1,
        page_size: int = 20,
    ) -> PayoutPage:
        page = max(1, page)
        page_size = max(1, min(page_size, 50))
        items, total = await self._payouts.list_for_creator(
            creator_id, status=status, offset=(page - 1) * page_size, limit=page_size
        )
        return PayoutPage(items=items, total=total, page=page, page_size=page_size)

    async def get_payout(self, payout_id: str, creator_id: str | None = None) -> Payout:
        payout = await self._payouts.get(payout_id)
        if payout is None or (creator_id is not None and payout.creator_id != creator_id):
            raise NotFoundError("Payout not found.")
        return payout

    # ------------------------------------------------------------------ admin

    async def block_payouts(self, creator_id: str, admin_id: str, reason: str) -> Creator:
        await self._require_creator(creator_id)
        if not await self._creators.set_payouts_blocked(creator_id, blocked=True, reason=reason):
            raise ValidationFailedError("Payouts are already blocked.")
        await self._audit_logs.add(
            AuditLog(
                admin_id=admin_id,
                action=AuditAction.PAYOUT_BLOCKED,
                target_type="creator",
                target_id=creator_id,
                details={"reason": reason},
            )
        )
        LOGGER.warning("Payouts blocked for creator %s by %s: %s", creator_id, admin_id, reason)
        return await self._require_creator(creator_id)

    async def unblock_payouts(self, creator_id: str, admin_id: str) -> Creator:
        await self._require_creator(creator_id)
        if not await self._creators.set_payouts_blocked(creator_id, blocked=False, reason=None):
            raise ValidationFailedError("Payouts are not blocked.")
        await self._audit_logs.add(
            AuditLog(
                admin_id=admin_id,
                action=AuditAction.PAYOUT_UNBLOCKED,
                target_type="creator",
                target_id=creator_id,
            )
        )
        LOGGER.info("Payouts unblocked for creator %s by %s", creator_id, admin_id)
        return await self._require_creator(creator_id)

    async def _require_creator(self, creator_id: str) -> Creator:
        creator = await self._creators.get(creator_id)
        if creator is None:
            raise NotFoundError("Creator not found.")
        return creator


def _describe(exc: BaseException) -> str:
    text = str(exc).strip()
    return text or exc.__class__.__name__
