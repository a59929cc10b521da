"""settlement.models
=================
Mini-README: Contains SQLAlchemy ORM model definitions for the settlement core,
including creators (with their risk state), balances, payouts, payment events, fraud
flags, device fingerprints, chargebacks and the administrative audit trail. All money
columns hold integer minor units (centavos) and every timestamp is timezone-aware UTC.
"""

import enum
import uuid
from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy import JSON, Boolean, DateTime, Enum, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .database import Base


def utcnow() -> datetime:
    """Return the current instant as an aware UTC datetime."""

    return datetime.now(timezone.utc)


def new_id() -> str:
    return uuid.uuid4().hex


class KycStatus(str, enum.Enum):
    """Identity verification states mirrored from the KYC collaborator."""

    NONE = "none"
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    EXPIRED = "expired"


class PixKeyType(str, enum.Enum):
    """Settlement destination key kinds accepted by the PIX rail."""

    CPF = "CPF"
    CNPJ = "CNPJ"
    EMAIL = "EMAIL"
    PHONE = "PHONE"
    EVP = "EVP"


class PayoutStatus(str, enum.Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class PaymentStatus(str, enum.Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    FAILED = "failed"
    REFUNDED = "refunded"
    EXPIRED = "expired"


class FraudFlagType(str, enum.Enum):
    """Closed set of anomaly kinds that components may raise."""

    DUPLICATE_IDENTITY = "duplicate_identity"
    VELOCITY_PAYMENT = "velocity_payment"
    VELOCITY_PAYOUT = "velocity_payout"
    SUSPICIOUS_PATTERN = "suspicious_pattern"
    CHARGEBACK = "chargeback"
    DEVICE_FINGERPRINT = "device_fingerprint"


class ChargebackStatus(str, enum.Enum):
    PENDING = "pending"
    DISPUTED = "disputed"
    WON = "won"
    LOST = "lost"


class AuditAction(str, enum.Enum):
    """Administrative actions recorded in the audit trail."""

    PAYOUT_BLOCKED = "payout_blocked"
    PAYOUT_UNBLOCKED = "payout_unblocked"
    FRAUD_FLAG_RESOLVED = "fraud_flag_resolved"


class User(Base):
    """Subscriber identity owned by the accounts collaborator."""

    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=new_id)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    cpf_cnpj: Mapped[Optional[str]] = mapped_column(String(18), nullable=True, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    creator: Mapped[Optional["Creator"]] = relationship(back_populates="user")


class Creator(Base):
    """Creator record carrying the KYC, settlement destination and risk state."""

    __tablename__ = "creators"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=new_id)
    user_id: Mapped[str] = mapped_column(ForeignKey("users.id"), unique=True, nullable=False)
    display_name: Mapped[str] = mapped_column(String(100), nullable=False)
    cpf_cnpj: Mapped[Optional[str]] = mapped_column(String(18), nullable=True, index=True)
    kyc_status: Mapped[KycStatus] = mapped_column(Enum(KycStatus), default=KycStatus.NONE)
    payouts_blocked: Mapped[bool] = mapped_column(Boolean, default=False)
    payout_block_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    is_pro: Mapped[bool] = mapped_column(Boolean, default=False)
    pix_key: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    pix_key_type: Mapped[Optional[PixKeyType]] = mapped_column(Enum(PixKeyType), nullable=True)
    chargeback_count: Mapped[int] = mapped_column(Integer, default=0)
    chargeback_penalty_balance: Mapped[int] = mapped_column(Integer, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    user: Mapped[User] = relationship(back_populates="creator")
    payouts: Mapped[List["Payout"]] = relationship(back_populates="creator")


class Balance(Base):
    """Per-creator balance row; mutated only through the ledger."""

    __tablename__ = "balances"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=new_id)
    creator_id: Mapped[str] = mapped_column(ForeignKey("creators.id"), unique=True, nullable=False)
    available: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    pending: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)


class Payment(Base):
    """Payment event written by the payments collaborator; read by the velocity guard."""

    __tablename__ = "payments"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=new_id)
    payer_id: Mapped[str] = mapped_column(ForeignKey("users.id"), nullable=False, index=True)
    creator_id: Mapped[Optional[str]] = mapped_column(ForeignKey("creators.id"), nullable=True)
    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[PaymentStatus] = mapped_column(Enum(PaymentStatus), default=PaymentStatus.PENDING)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, index=True)


class Payout(Base):
    """A single payout attempt; ``amount`` is the gross value debited from the ledger."""

    __tablename__ = "payouts"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=new_id)
    creator_id: Mapped[str] = mapped_column(ForeignKey("creators.id"), nullable=False, index=True)
    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    fee: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    net_amount: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    status: Mapped[PayoutStatus] = mapped_column(Enum(PayoutStatus), default=PayoutStatus.PENDING, index=True)
    external_transfer_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, index=True)
    failed_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    processed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, index=True)

    creator: Mapped[Creator] = relationship(back_populates="payouts")


class FraudFlag(Base):
    """Append-only suspicious-activity record awaiting human resolution."""

    __tablename__ = "fraud_flags"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=new_id)
    user_id: Mapped[Optional[str]] = mapped_column(String(32), nullable=True, index=True)
    creator_id: Mapped[Optional[str]] = mapped_column(String(32), nullable=True, index=True)
    type: Mapped[FraudFlagType] = mapped_column(Enum(FraudFlagType), nullable=False, index=True)
    severity: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    # ``metadata`` is reserved on declarative classes, hence the attribute name.
    details: Mapped[dict] = mapped_column("metadata", JSON, default=dict)
    is_resolved: Mapped[bool] = mapped_column(Boolean, default=False, index=True)
    resolved_by: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    resolved_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    resolution: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)


class DeviceFingerprint(Base):
    """Stable hash of client signals observed for a user."""

    __tablename__ = "device_fingerprints"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=new_id)
    user_id: Mapped[str] = mapped_column(String(32), nullable=False, index=True)
    fingerprint: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    user_agent: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    screen_resolution: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    timezone: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    language: Mapped[Optional[str]] = mapped_column(String(10), nullable=True)
    ip_address: Mapped[Optional[str]] = mapped_column(String(45), nullable=True)
    first_seen_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    last_seen_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)


class Chargeback(Base):
    """Disputed payment; ``penalty_applied`` guards against charging the creator twice."""

    __tablename__ = "chargebacks"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=new_id)
    payment_id: Mapped[str] = mapped_column(String(32), nullable=False, index=True)
    creator_id: Mapped[str] = mapped_column(ForeignKey("creators.id"), nullable=False, index=True)
    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    external_chargeback_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, unique=True, index=True)
    status: Mapped[ChargebackStatus] = mapped_column(Enum(ChargebackStatus), default=ChargebackStatus.PENDING)
    penalty_amount: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    penalty_applied: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)


class AuditLog(Base):
    """Administrative risk action (payout block/unblock, flag resolution)."""

    __tablename__ = "audit_logs"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=new_id)
    admin_id: Mapped[str] = mapped_column(String(32), nullable=False, index=True)
    action: Mapped[AuditAction] = mapped_column(Enum(AuditAction), nullable=False)
    target_type: Mapped[str] = mapped_column(String(50), nullable=False)
    target_id: Mapped[str] = mapped_column(String(32), nullable=False, index=True)
    details: Mapped[dict] = mapped_column(JSON, default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
