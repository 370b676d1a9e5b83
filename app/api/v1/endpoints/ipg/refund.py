"""
IPG Refund Route.

Endpoint:
  POST /api/v1/ipg/refund — Refund all or part of a captured order
"""

import logging

from fastapi import APIRouter, Depends

from app.core.dependencies import get_payment_service, get_unit_of_work
from app.core.exceptions import OrderNotFound
from app.core.unit_of_work import UnitOfWork
from app.schemas.ipg import RefundRequest, RefundResponse
from app.services.payment_service import PaymentService

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post(
    "/refund",
    response_model=RefundResponse,
    summary="Refund a captured IPG payment",
    description="Sends a signed FinancialRequest (action 2) for the order's payment id.",
)
async def refund_payment(
    body: RefundRequest,
    uow: UnitOfWork = Depends(get_unit_of_work),
    payment_service: PaymentService = Depends(get_payment_service),
):
    order = await uow.orders.get_by_track_id(body.track_id)
    if order is None:
        raise OrderNotFound(body.track_id)

    logger.info(f"[ipg] refund requested — trackid={body.track_id}, amount={body.amount}")
    return await payment_service.refund(uow, order, body.amount)
