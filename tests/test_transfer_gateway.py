"""
Settlement gateway client tests against an in-process ``httpx.MockTransport``.
"""

import json
from decimal import Decimal

import httpx
import pytest

from settlement.config import Settings
from settlement.models import PixKeyType
from settlement.services import (
    AsaasTransferGateway,
    TransferGatewayError,
    TransferRequest,
    TransferStatus,
    to_decimal_amount,
)

BASE_URL = "https://gateway.test/api/v3"


def make_gateway(handler) -> AsaasTransferGateway:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return AsaasTransferGateway(base_url=BASE_URL, api_key="secret-key", client=client)


def make_request() -> TransferRequest:
    return TransferRequest(
        amount_decimal=to_decimal_amount(4_500),
        destination_key="creator@example.com",
        destination_key_type=PixKeyType.EMAIL,
        description="Creator payout",
        external_reference="payout-1",
    )


class TestAmounts:
    @pytest.mark.parametrize("minor, expected", [(4_500, "45.00"), (1, "0.01"), (123_456, "1234.56")])
    def test_minor_units_become_two_place_decimals(self, minor, expected):
        assert to_decimal_amount(minor) == Decimal(expected)


class TestAsaasTransferGateway:
    @pytest.mark.asyncio
    async def test_transfer_posts_pix_payload(self):
        captured = {}

        def handler(request: httpx.Request) -> httpx.Response:
            captured["method"] = request.method
            captured["url"] = str(request.url)
            captured["token"] = request.headers.get("access_token")
            captured["body"] = json.loads(request.content)
            return httpx.Response(200, json={"id": "tr_abc", "status": "DONE"})

        result = await make_gateway(handler).transfer(make_request())

        assert result.id == "tr_abc"
        assert result.status == TransferStatus.DONE
        assert result.is_settled
        assert captured["method"] == "POST"
        assert captured["url"] == f"{BASE_URL}/transfers"
        assert captured["token"] == "secret-key"
        assert captured["body"] == {
            "value": 45.0,
            "operationType": "PIX",
            "pixAddressKey": "creator@example.com",
            "pixAddressKeyType": "EMAIL",
            "description": "Creator payout",
            "externalReference": "payout-1",
        }

    @pytest.mark.asyncio
    async def test_rejected_transfer_carries_fail_reason(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"id": "tr_1", "status": "FAILED", "failReason": "Invalid key"})

        result = await make_gateway(handler).transfer(make_request())

        assert result.is_rejected
        assert result.fail_reason == "Invalid key"

    @pytest.mark.asyncio
    async def test_unknown_status_is_treated_as_pending(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"id": "tr_1", "status": "SOMETHING_NEW"})

        result = await make_gateway(handler).transfer(make_request())

        assert result.status == TransferStatus.PENDING
        assert not result.is_settled and not result.is_rejected

    @pytest.mark.asyncio
    async def test_error_response_raises_with_descriptions(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(
                400,
                json={"errors": [{"code": "invalid_value", "description": "Saldo insuficiente"}]},
            )

        with pytest.raises(TransferGatewayError) as excinfo:
            await make_gateway(handler).transfer(make_request())

        assert excinfo.value.status_code == 400
        assert str(excinfo.value) == "Saldo insuficiente"
        assert excinfo.value.errors[0]["code"] == "invalid_value"

    @pytest.mark.asyncio
    async def test_non_json_error_body_is_reported(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(503, text="Service Unavailable")

        with pytest.raises(TransferGatewayError) as excinfo:
            await make_gateway(handler).transfer(make_request())

        assert excinfo.value.status_code == 503
        assert "Service Unavailable" in str(excinfo.value)

    @pytest.mark.asyncio
    async def test_transport_failure_is_wrapped(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectTimeout("timed out", request=request)

        with pytest.raises(TransferGatewayError) as excinfo:
            await make_gateway(handler).transfer(make_request())

        assert isinstance(excinfo.value.__cause__, httpx.ConnectTimeout)
        assert excinfo.value.status_code is None

    @pytest.mark.asyncio
    async def test_response_without_id_is_an_error(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"status": "DONE"})

        with pytest.raises(TransferGatewayError):
            await make_gateway(handler).transfer(make_request())

    @pytest.mark.asyncio
    async def test_get_transfer(self):
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path.endswith("/transfers/tr_77")
            return httpx.Response(200, json={"id": "tr_77", "status": "BANK_PROCESSING"})

        result = await make_gateway(handler).get_transfer("tr_77")

        assert result.status == TransferStatus.BANK_PROCESSING


class TestGatewaySettings:
    def test_sandbox_url_is_the_default(self):
        assert Settings().resolved_gateway_base_url == "https://sandbox.asaas.com/api/v3"

    def test_production_url_when_sandbox_disabled(self):
        assert Settings(gateway_sandbox=False).resolved_gateway_base_url == "https://www.asaas.com/api/v3"

    def test_explicit_url_wins(self):
        settings = Settings(gateway_base_url="https://proxy.internal/asaas/")
        assert settings.resolved_gateway_base_url == "https://proxy.internal/asaas"
