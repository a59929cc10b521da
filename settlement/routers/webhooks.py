"""settlement.routers.webhooks
===========================
Mini-README: Machine-to-machine endpoints called by the payment gateway. Every route
requires the shared ``X-Webhook-Token`` header. Gateways retry deliveries, so each
handler tolerates receiving the same notification more than once.
"""

from typing import Annotated

from fastapi import APIRouter, Depends, status

from ..dependencies import get_services
from ..exceptions import NotFoundError, ValidationFailedError
from ..logger import get_logger
from ..schemas import ChargebackCreate, ChargebackRead, ChargebackStatusUpdate, PayoutRead, TransferStatusWebhook
from ..security import require_webhook_token
from ..services import SettlementServices

LOGGER = get_logger(__name__)

router = APIRouter(prefix="/webhooks", tags=["Webhooks"], dependencies=[Depends(require_webhook_token)])


@router.post("/chargebacks", response_model=ChargebackRead, status_code=status.HTTP_201_CREATED)
async def record_chargeback(
    payload: ChargebackCreate,
    services: Annotated[SettlementServices, Depends(get_services)],
):
    """Store a chargeback; a redelivery with the same external id returns the stored row."""

    return await services.chargebacks.record_chargeback(
        payload.payment_id,
        payload.creator_id,
        payload.amount,
        external_chargeback_id=payload.external_chargeback_id,
    )


@router.post("/chargebacks/{chargeback_id}/status", response_model=ChargebackRead)
async def update_chargeback_status(
    chargeback_id: str,
    payload: ChargebackStatusUpdate,
    services: Annotated[SettlementServices, Depends(get_services)],
):
    return await services.chargebacks.update_status(chargeback_id, payload.status)


@router.post("/transfers", response_model=PayoutRead)
async def transfer_status(
    payload: TransferStatusWebhook,
    services: Annotated[SettlementServices, Depends(get_services)],
):
    """Settle or compensate an in-flight payout from a gateway status notification."""

    payout = None
    if payload.transfer_id:
        payout = await services.payouts.find_payout_by_transfer_id(payload.transfer_id)
    if payout is None and payload.external_reference:
        payout = await services.payouts.get_payout(payload.external_reference)
    if payout is None:
        if not payload.transfer_id and not payload.external_reference:
            raise ValidationFailedError("transfer_id or external_reference is required.")
        raise NotFoundError("Payout not found.")

    LOGGER.info("Transfer webhook for payout %s status=%s", payout.id, payload.status.value)
    return await services.payouts.reconcile_transfer(payout.id, payload.status, payload.fail_reason)
