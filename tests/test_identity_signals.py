"""
Identity signal tests: CPF/CNPJ checksums, PIX key detection, duplicate documents and
shared device fingerprints.
"""

import pytest

from settlement.exceptions import ValidationFailedError
from settlement.models import FraudFlagType, PixKeyType
from settlement.repositories import FraudFlagFilters
from settlement.services import (
    DeviceSignals,
    detect_pix_key_type,
    generate_fingerprint,
    normalize_document,
    validate_cnpj,
    validate_cpf,
    validate_cpf_cnpj,
)

from .conftest import VALID_CNPJ, VALID_CPF


class TestDocumentChecksums:
    def test_valid_cpf_with_and_without_punctuation(self):
        assert validate_cpf("111.444.777-35")
        assert validate_cpf(VALID_CPF)

    def test_cpf_with_repeated_digits_is_rejected(self):
        assert not validate_cpf("111.111.111-11")

    def test_cpf_with_wrong_check_digit_is_rejected(self):
        assert not validate_cpf("111.444.777-36")

    def test_valid_cnpj(self):
        assert validate_cnpj("11.222.333/0001-81")

    def test_altered_cnpj_is_rejected(self):
        assert not validate_cnpj("11222333000182")

    def test_validate_cpf_cnpj_reports_document_type(self):
        assert validate_cpf_cnpj("111.444.777-35") == (True, "cpf")
        assert validate_cpf_cnpj("11.222.333/0001-81") == (True, "cnpj")
        assert validate_cpf_cnpj("12345") == (False, None)

    def test_normalize_document_keeps_digits_only(self):
        assert normalize_document("11.222.333/0001-81") == VALID_CNPJ
        assert normalize_document("") == ""


class TestPixKeyDetection:
    @pytest.mark.parametrize(
        "key, expected",
        [
            ("creator@example.com", PixKeyType.EMAIL),
            ("111.444.777-35", PixKeyType.CPF),
            ("11.222.333/0001-81", PixKeyType.CNPJ),
            ("+5511987654321", PixKeyType.PHONE),
            ("123e4567-e89b-12d3-a456-426614174000", PixKeyType.EVP),
            ("something-random", PixKeyType.EVP),
        ],
    )
    def test_detects_key_type(self, key, expected):
        assert detect_pix_key_type(key) == expected


class TestFingerprint:
    def test_fingerprint_is_stable_for_equal_signals(self):
        signals = DeviceSignals(user_agent="Mozilla/5.0", timezone="America/Sao_Paulo", language="pt-BR")
        assert generate_fingerprint(signals) == generate_fingerprint(
            DeviceSignals(language="pt-BR", timezone="America/Sao_Paulo", user_agent="Mozilla/5.0")
        )

    def test_fingerprint_changes_with_signals(self):
        first = generate_fingerprint(DeviceSignals(user_agent="a"))
        second = generate_fingerprint(DeviceSignals(user_agent="b"))
        assert first != second
        assert len(first) == 64


class TestIdentitySignals:
    @pytest.mark.asyncio
    async def test_invalid_document_is_rejected(self, services, make_user):
        user = await make_user()

        with pytest.raises(ValidationFailedError):
            await services.identity.screen_identity_document(user.id, "111.111.111-11")

    @pytest.mark.asyncio
    async def test_duplicate_document_raises_flag(self, services, make_user):
        owner = await make_user(cpf_cnpj=VALID_CPF)
        newcomer = await make_user()

        duplicate = await services.identity.screen_identity_document(newcomer.id, "111.444.777-35")

        assert duplicate is not None
        assert duplicate.user_id == owner.id
        page = await services.fraud_flags.list(FraudFlagFilters(type=FraudFlagType.DUPLICATE_IDENTITY))
        assert page.total == 1
        flag = page.items[0]
        assert flag.user_id == newcomer.id
        assert flag.severity == 4
        assert flag.details["conflictingUserId"] == owner.id

    @pytest.mark.asyncio
    async def test_duplicate_found_on_creator_document(self, services, make_user, make_creator):
        creator = await make_creator(cpf_cnpj=VALID_CNPJ)
        newcomer = await make_user()

        duplicate = await services.identity.find_duplicate_identity(VALID_CNPJ, exclude_user_id=newcomer.id)

        assert duplicate is not None
        assert duplicate.creator_id == creator.id

    @pytest.mark.asyncio
    async def test_own_document_is_not_a_duplicate(self, services, make_user):
        user = await make_user(cpf_cnpj=VALID_CPF)

        assert await services.identity.screen_identity_document(user.id, VALID_CPF) is None
        assert await services.fraud_flags.count_unresolved() == 0

    @pytest.mark.asyncio
    async def test_shared_device_is_flagged_once_per_new_pair(self, services, make_user):
        first = await make_user()
        second = await make_user()
        fingerprint = generate_fingerprint(DeviceSignals(user_agent="shared-device"))

        await services.identity.record_device_fingerprint(first.id, fingerprint)
        assert await services.fraud_flags.count_unresolved() == 0

        await services.identity.record_device_fingerprint(second.id, fingerprint)
        await services.identity.record_device_fingerprint(second.id, fingerprint)

        page = await services.fraud_flags.list(FraudFlagFilters(type=FraudFlagType.DEVICE_FINGERPRINT))
        assert page.total == 1, "Refreshing a known pair must not raise a second flag"
        assert page.items[0].user_id == second.id
        assert page.items[0].details["sharedWithUserId"] == first.id
