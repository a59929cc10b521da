"""
HTTP surface tests driving the FastAPI application through ``httpx.ASGITransport``.
"""

import httpx
import pytest
import pytest_asyncio

from settlement.database import init_db
from settlement.models import ChargebackStatus, FraudFlagType, KycStatus
from settlement.security import ROLE_ADMIN, ROLE_CREATOR, create_access_token
from settlement.services import TransferStatus
from settlement_platform_server import create_app


@pytest_asyncio.fixture
async def app(settings, gateway, engine_and_sessionmaker):
    application = create_app(settings, gateway=gateway)
    await init_db(application.state.engine)
    yield application
    await application.state.engine.dispose()


@pytest_asyncio.fixture
async def client(app):
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as http_client:
        yield http_client


@pytest.fixture
def auth_headers(settings):
    def build(user_id: str, role: str = ROLE_CREATOR) -> dict:
        token = create_access_token({"sub": user_id, "role": role}, settings=settings)
        return {"Authorization": f"Bearer {token}"}

    return build


@pytest.fixture
def webhook_headers(settings) -> dict:
    return {"X-Webhook-Token": settings.webhook_token}


class TestHealth:
    @pytest.mark.asyncio
    async def test_healthz(self, client):
        response = await client.get("/healthz")

        assert response.status_code == 200
        assert response.json() == {"status": "ok"}


class TestCreatorPayoutRoutes:
    @pytest.mark.asyncio
    async def test_missing_token_is_unauthorised(self, client):
        response = await client.get("/payouts/balance")

        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_forged_token_is_unauthorised(self, client):
        response = await client.get("/payouts/balance", headers={"Authorization": "Bearer not-a-jwt"})

        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_user_without_creator_profile(self, client, auth_headers, make_user):
        user = await make_user()

        response = await client.get("/payouts/balance", headers=auth_headers(user.id))

        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_balance_quote(self, client, auth_headers, make_creator):
        creator = await make_creator(available=10_000)

        response = await client.get("/payouts/balance", headers=auth_headers(creator.user_id))

        assert response.status_code == 200
        body = response.json()
        assert body["available"] == 10_000
        assert body["net_available"] == 9_500
        assert body["payout_limit"] == {"used": 0, "limit": 4, "remaining": 4, "is_pro": False}

    @pytest.mark.asyncio
    async def test_request_payout(self, client, auth_headers, make_creator):
        creator = await make_creator(available=10_000)

        response = await client.post("/payouts", json={"amount": 5_000}, headers=auth_headers(creator.user_id))

        assert response.status_code == 201
        body = response.json()
        assert body["status"] == "completed"
        assert (body["amount"], body["fee"], body["net_amount"]) == (5_000, 500, 4_500)

        listing = await client.get("/payouts", headers=auth_headers(creator.user_id))
        assert listing.json()["total"] == 1

        detail = await client.get(f"/payouts/{body['id']}", headers=auth_headers(creator.user_id))
        assert detail.status_code == 200
        assert detail.json()["external_transfer_id"] == "tr_1"

    @pytest.mark.asyncio
    async def test_business_errors_map_to_status_codes(self, client, auth_headers, make_creator):
        creator = await make_creator(available=10_000)
        unverified = await make_creator(kyc_status=KycStatus.PENDING)

        below = await client.post("/payouts", json={"amount": 1_000}, headers=auth_headers(creator.user_id))
        too_much = await client.post("/payouts", json={"amount": 50_000}, headers=auth_headers(creator.user_id))
        kyc = await client.post("/payouts", json={"amount": 5_000}, headers=auth_headers(unverified.user_id))

        assert below.status_code == 400
        assert below.json()["error"] == "below_minimum"
        assert too_much.status_code == 400
        assert too_much.json()["error"] == "insufficient_funds"
        assert kyc.status_code == 403
        assert kyc.json()["error"] == "kyc_required"

    @pytest.mark.asyncio
    async def test_non_positive_amount_fails_request_validation(self, client, auth_headers, make_creator):
        creator = await make_creator()

        response = await client.post("/payouts", json={"amount": 0}, headers=auth_headers(creator.user_id))

        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_gateway_failure_returns_generic_message(
        self, client, gateway, auth_headers, make_creator, transfer_error, services
    ):
        creator = await make_creator(available=10_000)
        gateway.fail_with(transfer_error)

        response = await client.post("/payouts", json={"amount": 5_000}, headers=auth_headers(creator.user_id))

        assert response.status_code == 502
        assert response.json() == {"error": "external_gateway_error", "detail": "Payout failed, funds returned."}
        assert (await services.ledger.get_balance(creator.id)).available == 10_000

    @pytest.mark.asyncio
    async def test_other_creators_payout_is_hidden(self, client, auth_headers, make_creator, make_payout):
        owner = await make_creator()
        stranger = await make_creator()
        payout = await make_payout(owner.id)

        response = await client.get(f"/payouts/{payout.id}", headers=auth_headers(stranger.user_id))

        assert response.status_code == 404
        assert response.json()["error"] == "not_found"


class TestAdminRoutes:
    @pytest.mark.asyncio
    async def test_creators_cannot_reach_admin_routes(self, client, auth_headers, make_creator):
        creator = await make_creator()

        response = await client.get("/admin/fraud-flags", headers=auth_headers(creator.user_id))

        assert response.status_code == 403

    @pytest.mark.asyncio
    async def test_list_and_resolve_flags(self, client, auth_headers, services, make_creator):
        creator = await make_creator()
        flag = await services.fraud_flags.create(
            type=FraudFlagType.VELOCITY_PAYOUT, severity=3, description="burst", creator_id=creator.id
        )
        admin = auth_headers("admin-1", ROLE_ADMIN)

        listing = await client.get("/admin/fraud-flags", params={"creator_id": creator.id}, headers=admin)
        assert listing.status_code == 200
        assert listing.json()["total"] == 1
        assert listing.json()["unresolved"] == 1

        resolved = await client.post(
            f"/admin/fraud-flags/{flag.id}/resolve",
            json={"resolution": "Legitimate burst"},
            headers=admin,
        )
        assert resolved.status_code == 200
        assert resolved.json()["is_resolved"] is True
        assert resolved.json()["resolved_by"] == "admin-1"

        again = await client.post(
            f"/admin/fraud-flags/{flag.id}/resolve",
            json={"resolution": "Legitimate burst"},
            headers=admin,
        )
        assert again.status_code == 422

        everything = await client.get("/admin/fraud-flags", params={"resolved": "all"}, headers=admin)
        assert everything.json()["total"] == 1
        assert everything.json()["unresolved"] == 0

    @pytest.mark.asyncio
    async def test_short_resolution_is_rejected(self, client, auth_headers, services):
        flag = await services.fraud_flags.create(type=FraudFlagType.CHARGEBACK, severity=4, description="cb")

        response = await client.post(
            f"/admin/fraud-flags/{flag.id}/resolve",
            json={"resolution": "ok"},
            headers=auth_headers("admin-1", ROLE_ADMIN),
        )

        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_block_and_unblock_payouts(self, client, auth_headers, make_creator):
        creator = await make_creator()
        admin = auth_headers("admin-1", ROLE_ADMIN)

        blocked = await client.post(
            f"/admin/creators/{creator.id}/block-payouts",
            json={"reason": "Manual fraud review"},
            headers=admin,
        )
        assert blocked.status_code == 200
        assert blocked.json()["payouts_blocked"] is True

        request = await client.post("/payouts", json={"amount": 5_000}, headers=auth_headers(creator.user_id))
        assert request.status_code == 403
        assert request.json()["error"] == "payouts_blocked"

        unblocked = await client.post(f"/admin/creators/{creator.id}/unblock-payouts", headers=admin)
        assert unblocked.status_code == 200
        assert unblocked.json()["payouts_blocked"] is False


class TestWebhookRoutes:
    @pytest.mark.asyncio
    async def test_webhook_token_is_required(self, client):
        response = await client.post(
            "/webhooks/chargebacks",
            json={"payment_id": "pay_1", "creator_id": "c", "amount": 100},
            headers={"X-Webhook-Token": "wrong"},
        )

        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_chargeback_delivery_is_idempotent(self, client, webhook_headers, repos, make_creator):
        creator = await make_creator(available=10_000)
        payload = {
            "payment_id": "pay_1",
            "creator_id": creator.id,
            "amount": 3_000,
            "external_chargeback_id": "cb_ext_1",
        }

        first = await client.post("/webhooks/chargebacks", json=payload, headers=webhook_headers)
        second = await client.post("/webhooks/chargebacks", json=payload, headers=webhook_headers)

        assert first.status_code == 201
        assert second.json()["id"] == first.json()["id"]
        assert (await repos.creators.get(creator.id)).chargeback_count == 1

        lost = await client.post(
            f"/webhooks/chargebacks/{first.json()['id']}/status",
            json={"status": ChargebackStatus.LOST.value},
            headers=webhook_headers,
        )
        assert lost.status_code == 200
        assert lost.json()["penalty_applied"] is True

        reopened = await client.post(
            f"/webhooks/chargebacks/{first.json()['id']}/status",
            json={"status": "pending"},
            headers=webhook_headers,
        )
        assert reopened.status_code == 409

    @pytest.mark.asyncio
    async def test_transfer_webhook_settles_and_compensates(
        self, client, gateway, auth_headers, webhook_headers, services, make_creator
    ):
        creator = await make_creator(available=10_000)
        gateway.respond_with(TransferStatus.PENDING)
        headers = auth_headers(creator.user_id)
        first = (await client.post("/payouts", json={"amount": 3_000}, headers=headers)).json()
        second = (await client.post("/payouts", json={"amount": 3_000}, headers=headers)).json()
        assert first["status"] == second["status"] == "processing"

        settled = await client.post(
            "/webhooks/transfers",
            json={"transfer_id": first["external_transfer_id"], "status": "DONE"},
            headers=webhook_headers,
        )
        failed = await client.post(
            "/webhooks/transfers",
            json={"external_reference": second["id"], "status": "FAILED", "fail_reason": "Closed account"},
            headers=webhook_headers,
        )

        assert settled.json()["status"] == "completed"
        assert failed.json()["status"] == "failed"
        assert failed.json()["failed_reason"] == "Closed account"
        assert (await services.ledger.get_balance(creator.id)).available == 7_000

    @pytest.mark.asyncio
    async def test_transfer_webhook_requires_an_identifier(self, client, webhook_headers):
        response = await client.post("/webhooks/transfers", json={"status": "DONE"}, headers=webhook_headers)

        assert response.status_code == 422
        assert response.json()["error"] == "validation_failed"
