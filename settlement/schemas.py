"""settlement.schemas
=================
Mini-README: Defines Pydantic models used for request validation and response
serialization by the settlement routers. Closed sets (payout status, flag type,
chargeback status, transfer status) are enums so malformed values are rejected at the
boundary. Amounts are integers in minor currency units.
"""

from datetime import datetime
from typing import Any, Literal, Optional

from pydantic import BaseModel, Field

from .models import ChargebackStatus, FraudFlagType, KycStatus, PayoutStatus
from .services.transfer_gateway import TransferStatus


class PayoutRequest(BaseModel):
    """Payload for requesting a payout; omit ``amount`` to withdraw everything."""

    amount: Optional[int] = Field(default=None, gt=0)


class PayoutRead(BaseModel):
    """Representation of a payout returned to creators."""

    id: str
    creator_id: str
    amount: int
    fee: int
    net_amount: int
    status: PayoutStatus
    external_transfer_id: Optional[str]
    failed_reason: Optional[str]
    processed_at: Optional[datetime]
    created_at: datetime

    class Config:
        from_attributes = True


class PayoutListResponse(BaseModel):
    items: list[PayoutRead]
    total: int
    page: int
    page_size: int


class PayoutLimitRead(BaseModel):
    used: int
    limit: int
    remaining: int
    is_pro: bool

    class Config:
        from_attributes = True


class PayoutQuoteRead(BaseModel):
    """Balance screen: what is available and what would arrive after the fee."""

    available: int
    pending: int
    min_payout: int
    payout_fee: int
    net_available: int
    payout_limit: PayoutLimitRead

    class Config:
        from_attributes = True


class FraudFlagRead(BaseModel):
    id: str
    user_id: Optional[str]
    creator_id: Optional[str]
    type: FraudFlagType
    severity: int
    description: str
    details: dict[str, Any]
    is_resolved: bool
    resolved_by: Optional[str]
    resolved_at: Optional[datetime]
    resolution: Optional[str]
    created_at: datetime

    class Config:
        from_attributes = True


class FraudFlagListResponse(BaseModel):
    items: list[FraudFlagRead]
    total: int
    page: int
    page_size: int
    unresolved: int


class FraudFlagQuery(BaseModel):
    """Query-string filters for the admin flag listing."""

    resolved: Literal["true", "false", "all"] = "false"
    type: Optional[FraudFlagType] = None
    creator_id: Optional[str] = None
    page: int = Field(default=1, ge=1)
    page_size: int = Field(default=20, ge=1, le=50)


class ResolveFraudFlagRequest(BaseModel):
    resolution: str = Field(min_length=5, max_length=500)


class BlockPayoutsRequest(BaseModel):
    reason: str = Field(min_length=5, max_length=500)


class CreatorRiskRead(BaseModel):
    """Risk state of a creator as seen by the back-office."""

    id: str
    kyc_status: KycStatus
    payouts_blocked: bool
    payout_block_reason: Optional[str]
    is_pro: bool
    chargeback_count: int
    chargeback_penalty_balance: int

    class Config:
        from_attributes = True


class ChargebackCreate(BaseModel):
    """Chargeback notification forwarded by the payment gateway webhook."""

    payment_id: str
    creator_id: str
    amount: int = Field(gt=0)
    external_chargeback_id: Optional[str] = None


class ChargebackStatusUpdate(BaseModel):
    status: ChargebackStatus


class ChargebackRead(BaseModel):
    id: str
    payment_id: str
    creator_id: str
    amount: int
    external_chargeback_id: Optional[str]
    status: ChargebackStatus
    penalty_amount: int
    penalty_applied: bool
    created_at: datetime

    class Config:
        from_attributes = True


class TransferStatusWebhook(BaseModel):
    """Gateway notification about a transfer that was still in flight."""

    transfer_id: Optional[str] = None
    external_reference: Optional[str] = None
    status: TransferStatus
    fail_reason: Optional[str] = None
