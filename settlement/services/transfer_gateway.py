"""settlement.services.transfer_gateway
======================================
Mini-README: HTTPX client for the external settlement gateway that executes PIX
transfers to creators. The orchestrator depends on the ``TransferGateway`` protocol
only, so tests and alternative providers can be injected. Amounts cross this boundary
as decimals in major units; everything inside the core stays in integer minor units.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Optional, Protocol

import httpx

from ..config import Settings
from ..logger import get_logger
from ..models import PixKeyType

LOGGER = get_logger(__name__)


class TransferStatus(str, enum.Enum):
    PENDING = "PENDING"
    BANK_PROCESSING = "BANK_PROCESSING"
    DONE = "DONE"
    CANCELLED = "CANCELLED"
    FAILED = "FAILED"


SETTLED_STATUSES = frozenset({TransferStatus.DONE})
REJECTED_STATUSES = frozenset({TransferStatus.CANCELLED, TransferStatus.FAILED})


class TransferGatewayError(Exception):
    """Raised for transport failures, timeouts and non-2xx gateway answers."""

    def __init__(self, message: str, *, status_code: int | None = None, errors: list[dict[str, Any]] | None = None):
        super().__init__(message)
        self.status_code = status_code
        self.errors = errors or []


def to_decimal_amount(amount_minor: int) -> Decimal:
    """Convert integer centavos to a two-place decimal in reais."""

    return (Decimal(amount_minor) / Decimal(100)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class TransferRequest:
    amount_decimal: Decimal
    destination_key: str
    destination_key_type: PixKeyType
    description: str
    external_reference: str


@dataclass(frozen=True)
class TransferResult:
    id: str
    status: TransferStatus
    fail_reason: Optional[str] = None

    @property
    def is_settled(self) -> bool:
        return self.status in SETTLED_STATUSES

    @property
    def is_rejected(self) -> bool:
        return self.status in REJECTED_STATUSES


class TransferGateway(Protocol):
    async def transfer(self, request: TransferRequest) -> TransferResult: ...


def parse_transfer_status(raw: str | None) -> TransferStatus:
    try:
        return TransferStatus((raw or "").upper())
    except ValueError:
        LOGGER.warning("Unknown transfer status %r treated as PENDING", raw)
        return TransferStatus.PENDING


class AsaasTransferGateway:
    """PIX transfers through the Asaas REST API."""

    def __init__(
        self,
        *,
        base_url: str,
        api_key: str,
        timeout_seconds: float = 15.0,
        client: httpx.AsyncClient | None = None,
    ):
        self._base_url = base_url.rstrip("/")
        self._api_key = api_key
        self._timeout = httpx.Timeout(timeout_seconds)
        self._client = client

    @classmethod
    def from_settings(cls, settings: Settings) -> "AsaasTransferGateway":
        return cls(
            base_url=settings.resolved_gateway_base_url,
            api_key=settings.gateway_api_key,
            timeout_seconds=settings.gateway_timeout_seconds,
        )

    async def transfer(self, request: TransferRequest) -> TransferResult:
        payload = {
            "value": float(request.amount_decimal),
            "operationType": "PIX",
            "pixAddressKey": request.destination_key,
            "pixAddressKeyType": PixKeyType(request.destination_key_type).value,
            "description": request.description,
            "externalReference": request.external_reference,
        }
        data = await self._request("POST", "/transfers", json=payload)
        return self._to_result(data)

    async def get_transfer(self, transfer_id: str) -> TransferResult:
        data = await self._request("GET", f"/transfers/{transfer_id}")
        return self._to_result(data)

    async def _request(self, method: str, endpoint: str, **kwargs: Any) -> dict[str, Any]:
        headers = {"Content-Type": "application/json", "access_token": self._api_key}
        url = f"{self._base_url}{endpoint}"
        try:
            if self._client is not None:
                response = await self._client.request(method, url, headers=headers, timeout=self._timeout, **kwargs)
            else:
                async with httpx.AsyncClient(timeout=self._timeout) as client:
                    response = await client.request(method, url, headers=headers, **kwargs)
        except httpx.HTTPError as exc:
            LOGGER.error("Settlement gateway %s %s failed: %s", method, endpoint, exc)
            raise TransferGatewayError(f"Gateway request failed: {exc.__class__.__name__}") from exc

        if response.is_error:
            errors = _error_details(response)
            message = ", ".join(error.get("description", "") for error in errors) or "Unknown error"
            LOGGER.error("Settlement gateway rejected %s %s status=%s: %s", method, endpoint, response.status_code, message)
            raise TransferGatewayError(message, status_code=response.status_code, errors=errors)

        if not response.content:
            return {}
        return response.json()

    @staticmethod
    def _to_result(data: dict[str, Any]) -> TransferResult:
        transfer_id = data.get("id")
        if not transfer_id:
            raise TransferGatewayError("Gateway response did not include a transfer id")
        return TransferResult(
            id=str(transfer_id),
            status=parse_transfer_status(data.get("status")),
            fail_reason=data.get("failReason"),
        )


def _error_details(response: httpx.Response) -> list[dict[str, Any]]:
    try:
        body = response.json()
    except ValueError:
        return [{"code": "UNKNOWN", "description": response.text or "Unknown error"}]
    errors = body.get("errors") if isinstance(body, dict) else None
    return errors or [{"code": "UNKNOWN", "description": "Unknown error"}]
