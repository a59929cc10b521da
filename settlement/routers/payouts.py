"""settlement.routers.payouts
=============================
Mini-README: Creator-facing payout endpoints: balance quote, payout request, history
and detail. Business errors raised by the orchestrator propagate to the application's
``SettlementError`` handler, which maps each error kind to its status code.
"""

from typing import Annotated, Optional

from fastapi import APIRouter, Depends, Query, status

from ..dependencies import get_current_creator, get_services
from ..logger import get_logger
from ..models import Creator, PayoutStatus
from ..schemas import PayoutListResponse, PayoutQuoteRead, PayoutRead, PayoutRequest
from ..services import SettlementServices

LOGGER = get_logger(__name__)

router = APIRouter(prefix="/payouts", tags=["Payouts"])


@router.get("/balance", response_model=PayoutQuoteRead)
async def payout_balance(
    creator: Annotated[Creator, Depends(get_current_creator)],
    services: Annotated[SettlementServices, Depends(get_services)],
):
    """Return the available balance, payout fee and monthly limit usage."""

    return await services.payouts.get_payout_quote(creator.id)


@router.post("", response_model=PayoutRead, status_code=status.HTTP_201_CREATED)
async def request_payout(
    payload: PayoutRequest,
    creator: Annotated[Creator, Depends(get_current_creator)],
    services: Annotated[SettlementServices, Depends(get_services)],
):
    payout = await services.payouts.request_payout(creator.id, payload.amount)
    LOGGER.info("Creator %s requested payout %s (%s)", creator.id, payout.id, payout.status.value)
    return payout


@router.get("", response_model=PayoutListResponse)
async def list_payouts(
    creator: Annotated[Creator, Depends(get_current_creator)],
    services: Annotated[SettlementServices, Depends(get_services)],
    payout_status: Annotated[Optional[PayoutStatus], Query(alias="status")] = None,
    page: Annotated[int, Query(ge=1)] = 1,
    page_size: Annotated[int, Query(ge=1, le=50)] = 20,
):
    result = await services.payouts.list_creator_payouts(
        creator.id, status=payout_status, page=page, page_size=page_size
    )
    return PayoutListResponse(
        items=[PayoutRead.model_validate(item) for item in result.items],
        total=result.total,
        page=result.page,
        page_size=result.page_size,
    )


@router.get("/{payout_id}", response_model=PayoutRead)
async def get_payout(
    payout_id: str,
    creator: Annotated[Creator, Depends(get_current_creator)],
    services: Annotated[SettlementServices, Depends(get_services)],
):
    return await services.payouts.get_payout(payout_id, creator_id=creator.id)
