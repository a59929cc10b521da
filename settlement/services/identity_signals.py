"""settlement.services.identity_signals
======================================
Mini-README: Identity and risk signals consumed by the payout and onboarding paths.
The checksum helpers are pure functions implementing the Brazilian CPF/CNPJ modulo-11
check digits; ``IdentitySignals`` adds the lookups that need storage (duplicate
documents across subscribers and creators, shared device fingerprints) and raises
fraud flags when they find something.
"""

from __future__ import annotations

import hashlib
import json
import re
from dataclasses import asdict, dataclass
from typing import Optional

from ..config import Settings
from ..exceptions import ValidationFailedError
from ..logger import get_logger
from ..models import DeviceFingerprint, FraudFlagType, PixKeyType
from ..repositories import CreatorRepository, DeviceFingerprintRepository, UserRepository
from .fraud_registry import FraudFlagRegistry

LOGGER = get_logger(__name__)

CNPJ_FIRST_WEIGHTS = (5, 4, 3, 2, 9, 8, 7, 6, 5, 4, 3, 2)
CNPJ_SECOND_WEIGHTS = (6, 5, 4, 3, 2, 9, 8, 7, 6, 5, 4, 3, 2)

_NON_DIGITS = re.compile(r"\D")
_EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
_PHONE_PATTERN = re.compile(r"^(?:\+?55)?\d{10,11}$")
_UUID_PATTERN = re.compile(r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$", re.IGNORECASE)


def normalize_document(value: str) -> str:
    """Strip everything but digits from a CPF/CNPJ."""

    return _NON_DIGITS.sub("", value or "")


def _check_digit(digits: str, weights) -> int:
    remainder = sum(int(digit) * weight for digit, weight in zip(digits, weights)) % 11
    return 0 if remainder < 2 else 11 - remainder


def _is_repeated(digits: str) -> bool:
    return len(set(digits)) == 1


def validate_cpf(value: str) -> bool:
    """Validate the two CPF check digits (weights 10..2 then 11..2)."""

    digits = normalize_document(value)
    if len(digits) != 11 or _is_repeated(digits):
        return False

    first = _check_digit(digits[:9], range(10, 1, -1))
    second = _check_digit(digits[:10], range(11, 1, -1))
    return first == int(digits[9]) and second == int(digits[10])


def validate_cnpj(value: str) -> bool:
    """Validate the two CNPJ check digits using the fixed weight vectors."""

    digits = normalize_document(value)
    if len(digits) != 14 or _is_repeated(digits):
        return False

    first = _check_digit(digits[:12], CNPJ_FIRST_WEIGHTS)
    second = _check_digit(digits[:13], CNPJ_SECOND_WEIGHTS)
    return first == int(digits[12]) and second == int(digits[13])


def validate_cpf_cnpj(value: str) -> tuple[bool, Optional[str]]:
    """Return ``(is_valid, document_type)`` where the type is ``cpf``, ``cnpj`` or ``None``."""

    digits = normalize_document(value)
    if len(digits) == 11:
        return validate_cpf(digits), "cpf"
    if len(digits) == 14:
        return validate_cnpj(digits), "cnpj"
    return False, None


def detect_pix_key_type(pix_key: str) -> PixKeyType:
    """Infer the PIX key type, defaulting to a random (EVP) key."""

    key = (pix_key or "").strip()
    if _EMAIL_PATTERN.match(key):
        return PixKeyType.EMAIL
    if _UUID_PATTERN.match(key):
        return PixKeyType.EVP

    digits = normalize_document(key)
    only_digits_and_marks = re.fullmatch(r"[\d.\-/()+\s]+", key) is not None
    if only_digits_and_marks:
        if len(digits) == 11 and not key.startswith("+"):
            return PixKeyType.CPF
        if len(digits) == 14:
            return PixKeyType.CNPJ
        if _PHONE_PATTERN.match(digits):
            return PixKeyType.PHONE
    return PixKeyType.EVP


@dataclass(frozen=True)
class DeviceSignals:
    """Client signals hashed into a device fingerprint."""

    user_agent: Optional[str] = None
    screen_resolution: Optional[str] = None
    timezone: Optional[str] = None
    language: Optional[str] = None
    ip_address: Optional[str] = None


def generate_fingerprint(signals: DeviceSignals) -> str:
    """Return a stable sha256 hex digest over the canonical JSON of ``signals``."""

    canonical = json.dumps(asdict(signals), sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


@dataclass(frozen=True)
class DuplicateIdentity:
    user_id: str
    creator_id: Optional[str] = None


class IdentitySignals:
    """Storage-backed identity checks that may raise fraud flags."""

    def __init__(
        self,
        users: UserRepository,
        creators: CreatorRepository,
        fingerprints: DeviceFingerprintRepository,
        fraud_flags: FraudFlagRegistry,
        settings: Settings,
    ):
        self._users = users
        self._creators = creators
        self._fingerprints = fingerprints
        self._fraud_flags = fraud_flags
        self._settings = settings

    async def find_duplicate_identity(
        self, document: str, exclude_user_id: str | None = None
    ) -> DuplicateIdentity | None:
        """Look for another subscriber or creator registered with the same document."""

        normalized = normalize_document(document)
        candidates = list(dict.fromkeys(value for value in (normalized, document) if value))
        if not candidates:
            return None

        user = await self._users.find_by_document(candidates, exclude_user_id=exclude_user_id)
        if user is not None:
            creator = await self._creators.get_by_user_id(user.id)
            return DuplicateIdentity(user_id=user.id, creator_id=creator.id if creator else None)

        creator = await self._creators.find_by_document(candidates, exclude_user_id=exclude_user_id)
        if creator is not None:
            return DuplicateIdentity(user_id=creator.user_id, creator_id=creator.id)
        return None

    async def screen_identity_document(
        self,
        user_id: str,
        document: str,
        *,
        creator_id: str | None = None,
    ) -> DuplicateIdentity | None:
        """Validate a CPF/CNPJ and flag it when another identity already uses it."""

        is_valid, document_type = validate_cpf_cnpj(document)
        if not is_valid:
            raise ValidationFailedError("Invalid CPF/CNPJ document.")

        duplicate = await self.find_duplicate_identity(document, exclude_user_id=user_id)
        if duplicate is None:
            return None

        LOGGER.warning("Duplicate %s detected for user=%s (existing user=%s)", document_type, user_id, duplicate.user_id)
        await self._fraud_flags.flag_safely(
            type=FraudFlagType.DUPLICATE_IDENTITY,
            severity=self._settings.duplicate_identity_flag_severity,
            user_id=user_id,
            creator_id=creator_id,
            description=f"{document_type.upper()} already registered to user {duplicate.user_id}",
            metadata={
                "conflictingUserId": duplicate.user_id,
                "conflictingCreatorId": duplicate.creator_id,
                "documentType": document_type,
            },
        )
        return duplicate

    async def record_device_fingerprint(
        self,
        user_id: str,
        fingerprint: str,
        signals: DeviceSignals | None = None,
    ) -> DeviceFingerprint:
        """Refresh a known (user, fingerprint) pair or store a new one, flagging shared devices."""

        existing = await self._fingerprints.get_for_user(user_id, fingerprint)
        if existing is not None:
            return await self._fingerprints.touch(existing)

        other = await self._fingerprints.find_other_user(fingerprint, user_id)
        if other is not None:
            other_user_id = other.user_id
            await self._fraud_flags.flag_safely(
                type=FraudFlagType.DEVICE_FINGERPRINT,
                severity=self._settings.shared_device_flag_severity,
                user_id=user_id,
                description=f"Device shared between users {user_id} and {other_user_id}",
                metadata={"sharedWithUserId": other_user_id, "fingerprint": fingerprint},
            )

        signals = signals or DeviceSignals()
        record = DeviceFingerprint(
            user_id=user_id,
            fingerprint=fingerprint,
            user_agent=signals.user_agent,
            screen_resolution=signals.screen_resolution,
            timezone=signals.timezone,
            language=signals.language,
            ip_address=signals.ip_address,
        )
        return await self._fingerprints.add(record)
