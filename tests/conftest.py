"""
Shared fixtures for the settlement core test-suite.

Key Components:
1. A fresh SQLite database (aiosqlite) per test, created from the ORM metadata
2. Repository bundle and fully wired services around the test session
3. A scriptable in-memory transfer gateway
4. Factories for users, creators, balances and payouts
"""

from datetime import datetime
from typing import Optional

import pytest
import pytest_asyncio

from settlement.config import Settings
from settlement.database import create_engine_and_sessionmaker, init_db
from settlement.models import Balance, Creator, KycStatus, Payout, PayoutStatus, PixKeyType, User, new_id
from settlement.repositories import Repositories
from settlement.services import (
    PayoutLockRegistry,
    TransferGatewayError,
    TransferRequest,
    TransferResult,
    TransferStatus,
    build_services,
)

VALID_CPF = "11144477735"
VALID_CNPJ = "11222333000181"


class FakeTransferGateway:
    """Records transfer requests and answers with a configurable outcome."""

    def __init__(self):
        self.requests: list[TransferRequest] = []
        self.status = TransferStatus.DONE
        self.fail_reason: Optional[str] = None
        self.error: Optional[Exception] = None

    def fail_with(self, error: Exception) -> None:
        self.error = error

    def respond_with(self, status: TransferStatus, fail_reason: Optional[str] = None) -> None:
        self.status = status
        self.fail_reason = fail_reason

    async def transfer(self, request: TransferRequest) -> TransferResult:
        self.requests.append(request)
        if self.error is not None:
            raise self.error
        return TransferResult(id=f"tr_{len(self.requests)}", status=self.status, fail_reason=self.fail_reason)


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'settlement.db'}",
        secret_key="test-secret",
        webhook_token="test-webhook-token",
        gateway_api_key="test-key",
    )


@pytest_asyncio.fixture
async def engine_and_sessionmaker(settings):
    engine, session_maker = create_engine_and_sessionmaker(settings)
    await init_db(engine)
    yield engine, session_maker
    await engine.dispose()


@pytest_asyncio.fixture
async def session(engine_and_sessionmaker):
    _, session_maker = engine_and_sessionmaker
    async with session_maker() as db_session:
        yield db_session


@pytest.fixture
def repos(session) -> Repositories:
    return Repositories.from_session(session)


@pytest.fixture
def gateway() -> FakeTransferGateway:
    return FakeTransferGateway()


@pytest.fixture
def services(session, settings, gateway):
    return build_services(session, settings=settings, gateway=gateway, locks=PayoutLockRegistry())


@pytest.fixture
def make_user(session):
    async def factory(email: Optional[str] = None, cpf_cnpj: Optional[str] = None) -> User:
        user = User(email=email or f"{new_id()}@example.com", cpf_cnpj=cpf_cnpj)
        session.add(user)
        await session.commit()
        await session.refresh(user)
        return user

    return factory


@pytest.fixture
def make_creator(session, make_user):
    async def factory(
        *,
        available: Optional[int] = 10_000,
        kyc_status: KycStatus = KycStatus.APPROVED,
        pix_key: Optional[str] = "creator@example.com",
        pix_key_type: Optional[PixKeyType] = PixKeyType.EMAIL,
        payouts_blocked: bool = False,
        is_pro: bool = False,
        cpf_cnpj: Optional[str] = None,
        user: Optional[User] = None,
    ) -> Creator:
        user = user or await make_user()
        creator = Creator(
            user_id=user.id,
            display_name="Test Creator",
            cpf_cnpj=cpf_cnpj,
            kyc_status=kyc_status,
            pix_key=pix_key,
            pix_key_type=pix_key_type,
            payouts_blocked=payouts_blocked,
            is_pro=is_pro,
        )
        session.add(creator)
        await session.commit()
        await session.refresh(creator)
        if available is not None:
            session.add(Balance(creator_id=creator.id, available=available, pending=0))
            await session.commit()
        return creator

    return factory


@pytest.fixture
def make_payout(session):
    async def factory(
        creator_id: str,
        *,
        amount: int = 2_000,
        status: PayoutStatus = PayoutStatus.COMPLETED,
        created_at: Optional[datetime] = None,
        external_transfer_id: Optional[str] = None,
    ) -> Payout:
        payout = Payout(
            creator_id=creator_id,
            amount=amount,
            fee=500,
            net_amount=amount - 500,
            status=status,
            external_transfer_id=external_transfer_id,
        )
        if created_at is not None:
            payout.created_at = created_at
        session.add(payout)
        await session.commit()
        await session.refresh(payout)
        return payout

    return factory


@pytest.fixture
def transfer_error() -> TransferGatewayError:
    return TransferGatewayError("Gateway request failed: ConnectTimeout")
