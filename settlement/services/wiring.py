"""settlement.services.wiring
============================
Mini-README: Assembles the settlement components around one ``AsyncSession``. Routers,
webhook handlers and batch jobs call ``build_services`` instead of constructing the
ledger, registry and orchestrators themselves, so each component receives exactly the
repositories it needs.
"""

from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncSession

from ..config import Settings
from ..repositories import Repositories
from .chargeback_resolver import ChargebackResolver
from .fraud_registry import FraudFlagRegistry
from .identity_signals import IdentitySignals
from .ledger import Ledger
from .payout_orchestrator import PayoutLockRegistry, PayoutOrchestrator
from .transfer_gateway import TransferGateway
from .velocity_guard import VelocityGuard


@dataclass
class SettlementServices:
    ledger: Ledger
    fraud_flags: FraudFlagRegistry
    identity: IdentitySignals
    velocity_guard: VelocityGuard
    payouts: PayoutOrchestrator
    chargebacks: ChargebackResolver


def build_services(
    session: AsyncSession,
    *,
    settings: Settings,
    gateway: TransferGateway,
    locks: PayoutLockRegistry,
) -> SettlementServices:
    repos = Repositories.from_session(session)
    ledger = Ledger(repos.balances)
    fraud_flags = FraudFlagRegistry(repos.fraud_flags, repos.audit_logs)
    velocity_guard = VelocityGuard(repos.payments, repos.payouts, repos.creators)
    identity = IdentitySignals(repos.users, repos.creators, repos.fingerprints, fraud_flags, settings)
    payouts = PayoutOrchestrator(
        creators=repos.creators,
        payouts=repos.payouts,
        audit_logs=repos.audit_logs,
        ledger=ledger,
        velocity_guard=velocity_guard,
        fraud_flags=fraud_flags,
        gateway=gateway,
        locks=locks,
        settings=settings,
    )
    chargebacks = ChargebackResolver(
        chargebacks=repos.chargebacks,
        creators=repos.creators,
        ledger=ledger,
        fraud_flags=fraud_flags,
        settings=settings,
    )
    return SettlementServices(
        ledger=ledger,
        fraud_flags=fraud_flags,
        identity=identity,
        velocity_guard=velocity_guard,
        payouts=payouts,
        chargebacks=chargebacks,
    )
