"""settlement.routers.admin
=====================
Mini-README: Back-office risk routes: fraud flag review and resolution plus manual
payout blocking. Access is restricted to users with the global admin role.
"""

from typing import Annotated

from fastapi import APIRouter, Depends

from ..dependencies import get_services
from ..models import FraudFlagType
from ..repositories import FraudFlagFilters
from ..schemas import (
    BlockPayoutsRequest,
    CreatorRiskRead,
    FraudFlagListResponse,
    FraudFlagQuery,
    FraudFlagRead,
    ResolveFraudFlagRequest,
)
from ..security import ROLE_ADMIN, Principal, require_role
from ..services import SettlementServices

require_admin = require_role([ROLE_ADMIN])

router = APIRouter(prefix="/admin", tags=["Admin"], dependencies=[Depends(require_admin)])

_RESOLVED_FILTER = {"true": True, "false": False, "all": None}


@router.get("/fraud-flags", response_model=FraudFlagListResponse)
async def list_fraud_flags(
    query: Annotated[FraudFlagQuery, Depends()],
    services: Annotated[SettlementServices, Depends(get_services)],
):
    """List fraud flags, most severe first."""

    filters = FraudFlagFilters(
        resolved=_RESOLVED_FILTER[query.resolved],
        type=FraudFlagType(query.type) if query.type else None,
        creator_id=query.creator_id,
    )
    result = await services.fraud_flags.list(filters, page=query.page, page_size=query.page_size)
    return FraudFlagListResponse(
        items=[FraudFlagRead.model_validate(flag) for flag in result.items],
        total=result.total,
        page=result.page,
        page_size=result.page_size,
        unresolved=await services.fraud_flags.count_unresolved(),
    )


@router.post("/fraud-flags/{flag_id}/resolve", response_model=FraudFlagRead)
async def resolve_fraud_flag(
    flag_id: str,
    payload: ResolveFraudFlagRequest,
    admin: Annotated[Principal, Depends(require_admin)],
    services: Annotated[SettlementServices, Depends(get_services)],
):
    return await services.fraud_flags.resolve(flag_id, admin.user_id, payload.resolution)


@router.post("/creators/{creator_id}/block-payouts", response_model=CreatorRiskRead)
async def block_payouts(
    creator_id: str,
    payload: BlockPayoutsRequest,
    admin: Annotated[Principal, Depends(require_admin)],
    services: Annotated[SettlementServices, Depends(get_services)],
):
    return await services.payouts.block_payouts(creator_id, admin.user_id, payload.reason)


@router.post("/creators/{creator_id}/unblock-payouts", response_model=CreatorRiskRead)
async def unblock_payouts(
    creator_id: str,
    admin: Annotated[Principal, Depends(require_admin)],
    services: Annotated[SettlementServices, Depends(get_services)],
):
    return await services.payouts.unblock_payouts(creator_id, admin.user_id)
