"""settlement.dependencies
=======================
Mini-README: FastAPI dependencies that assemble the settlement services for a request.
The settings, settlement gateway and payout lock registry live on ``app.state`` (set
by the application factory) and are combined with the request-scoped session here.
"""

from typing import Annotated

from fastapi import Depends, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from .database import get_db_session
from .models import Creator
from .repositories import CreatorRepository
from .security import Principal, get_current_principal
from .services import SettlementServices, build_services


async def get_services(
    request: Request,
    session: Annotated[AsyncSession, Depends(get_db_session)],
) -> SettlementServices:
    state = request.app.state
    return build_services(session, settings=state.settings, gateway=state.gateway, locks=state.payout_locks)


async def get_current_creator(
    principal: Annotated[Principal, Depends(get_current_principal)],
    session: Annotated[AsyncSession, Depends(get_db_session)],
) -> Creator:
    """Resolve the creator profile owned by the authenticated user."""

    creator = await CreatorRepository(session).get_by_user_id(principal.user_id)
    if creator is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Creator profile not found")
    return creator
