"""settlement.exceptions
=================
Mini-README: Error taxonomy for the settlement core. Every error carries a closed
``ErrorKind``, an HTTP status code and a user-facing message so callers (the FastAPI
handler registered in the server module, batch jobs, webhook handlers) can map
failures without inspecting concrete classes.

Usage:
    try:
        await orchestrator.request_payout(creator_id)
    except SettlementError as exc:
        return JSONResponse(status_code=exc.status_code, content=exc.to_payload())
"""

import enum
from typing import Any


class ErrorKind(str, enum.Enum):
    NOT_FOUND = "not_found"
    VALIDATION_FAILED = "validation_failed"
    KYC_REQUIRED = "kyc_required"
    PAYOUTS_BLOCKED = "payouts_blocked"
    RATE_LIMITED = "rate_limited"
    INSUFFICIENT_FUNDS = "insufficient_funds"
    BELOW_MINIMUM = "below_minimum"
    EXTERNAL_GATEWAY_ERROR = "external_gateway_error"
    RECONCILIATION_ERROR = "reconciliation_error"


class SettlementError(Exception):
    """Base class of every error raised by the settlement core."""

    kind: ErrorKind = ErrorKind.VALIDATION_FAILED
    status_code: int = 400
    message: str = "Settlement request could not be processed."

    def __init__(self, message: str | None = None, **context: Any):
        self.message = message or self.__class__.message
        self.context = context
        super().__init__(self.message)

    def to_payload(self) -> dict[str, Any]:
        return {"error": self.kind.value, "detail": self.message}


class NotFoundError(SettlementError):
    kind = ErrorKind.NOT_FOUND
    status_code = 404
    message = "Resource not found."


class ValidationFailedError(SettlementError):
    kind = ErrorKind.VALIDATION_FAILED
    status_code = 422
    message = "Request failed validation."


class SettlementDestinationMissingError(ValidationFailedError):
    message = "Configure a PIX key before requesting a payout."


class InvalidTransitionError(ValidationFailedError):
    status_code = 409
    message = "Requested status transition is not allowed."


class KycRequiredError(SettlementError):
    kind = ErrorKind.KYC_REQUIRED
    status_code = 403
    message = "Identity verification must be approved before requesting payouts."


class PayoutsBlockedError(SettlementError):
    kind = ErrorKind.PAYOUTS_BLOCKED
    status_code = 403
    message = "Payouts are blocked for this creator."


class RateLimitedError(SettlementError):
    kind = ErrorKind.RATE_LIMITED
    status_code = 429
    message = "Too many payout requests. Try again later."


class MonthlyLimitReachedError(RateLimitedError):
    message = "Monthly payout limit reached."


class InsufficientFundsError(SettlementError):
    kind = ErrorKind.INSUFFICIENT_FUNDS
    status_code = 400
    message = "Insufficient available balance."


class BelowMinimumError(SettlementError):
    kind = ErrorKind.BELOW_MINIMUM
    status_code = 400
    message = "Amount is below the minimum payout."


class NetTooLowError(BelowMinimumError):
    message = "Amount after the settlement fee is below the minimum net payout."


class ExternalGatewayError(SettlementError):
    """Raised after a failed transfer has been compensated; hides gateway internals."""

    kind = ErrorKind.EXTERNAL_GATEWAY_ERROR
    status_code = 502
    message = "Payout failed, funds returned."


class ReconciliationError(SettlementError):
    """A compensating ledger write failed; the payout needs manual reconciliation."""

    kind = ErrorKind.RECONCILIATION_ERROR
    status_code = 500
    message = "Payout failed and funds could not be returned automatically. Support has been notified."
