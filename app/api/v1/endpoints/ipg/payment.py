"""
IPG Payment Route.

Endpoint:
  POST /api/v1/ipg/payment — Start a hosted-page payment for an order

The order is saved (idempotent on track id), the signed PaymentInit is sent
and the payment id is committed before the redirect URL is returned.
"""

import logging

from fastapi import APIRouter, Depends

from app.core.dependencies import get_payment_service, get_unit_of_work
from app.core.unit_of_work import UnitOfWork
from app.schemas.ipg import CheckoutRequest, CheckoutResponse
from app.services.payment_service import PaymentService

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post(
    "/payment",
    response_model=CheckoutResponse,
    summary="Start an IPG payment",
    description=(
        "Create the payment session for a storefront order and return the "
        "Hosted Payment Page URL the shopper must be redirected to."
    ),
)
async def create_payment(
    body: CheckoutRequest,
    uow: UnitOfWork = Depends(get_unit_of_work),
    payment_service: PaymentService = Depends(get_payment_service),
):
    logger.info(f"[ipg] checkout — trackid={body.track_id}, currency={body.currency}")
    return await payment_service.begin_checkout(uow, body)
