"""settlement.services
=================
Mini-README: Declares the service layer of the settlement core: the balance ledger,
identity and risk signals, velocity guard, fraud flag registry, payout orchestrator,
chargeback resolver and the settlement gateway client.
"""

from .chargeback_resolver import ChargebackResolver, is_valid_transition
from .fraud_registry import FraudFlagPage, FraudFlagRegistry, clamp_severity
from .identity_signals import (
    DeviceSignals,
    DuplicateIdentity,
    IdentitySignals,
    detect_pix_key_type,
    generate_fingerprint,
    normalize_document,
    validate_cnpj,
    validate_cpf,
    validate_cpf_cnpj,
)
from .ledger import BalanceSnapshot, Ledger
from .payout_orchestrator import (
    PayoutLimitInfo,
    PayoutLockRegistry,
    PayoutOrchestrator,
    PayoutPage,
    PayoutQuote,
)
from .transfer_gateway import (
    AsaasTransferGateway,
    TransferGateway,
    TransferGatewayError,
    TransferRequest,
    TransferResult,
    TransferStatus,
    to_decimal_amount,
)
from .velocity_guard import VelocityGuard, VelocityKind, VelocityResult
from .wiring import SettlementServices, build_services

__all__ = [
    "ChargebackResolver",
    "is_valid_transition",
    "FraudFlagPage",
    "FraudFlagRegistry",
    "clamp_severity",
    "DeviceSignals",
    "DuplicateIdentity",
    "IdentitySignals",
    "detect_pix_key_type",
    "generate_fingerprint",
    "normalize_document",
    "validate_cnpj",
    "validate_cpf",
    "validate_cpf_cnpj",
    "BalanceSnapshot",
    "Ledger",
    "PayoutLimitInfo",
    "PayoutLockRegistry",
    "PayoutOrchestrator",
    "PayoutPage",
    "PayoutQuote",
    "AsaasTransferGateway",
    "TransferGateway",
    "TransferGatewayError",
    "TransferRequest",
    "TransferResult",
    "TransferStatus",
    "to_decimal_amount",
    "VelocityGuard",
    "VelocityKind",
    "VelocityResult",
    "SettlementServices",
    "build_services",
]
