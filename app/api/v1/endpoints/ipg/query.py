"""
IPG Payment Query Route.

Endpoint:
  GET /api/v1/ipg/query/{track_id} — Live PaymentQuery for an order
"""

from fastapi import APIRouter, Depends

from app.core.dependencies import get_payment_service, get_unit_of_work
from app.core.exceptions import OrderNotFound
from app.core.unit_of_work import UnitOfWork
from app.schemas.ipg import PaymentQueryResult
from app.services.payment_service import PaymentService

router = APIRouter()


@router.get(
    "/query/{track_id}",
    response_model=PaymentQueryResult,
    summary="Query the gateway for an order's payment status",
)
async def query_payment(
    track_id: str,
    uow: UnitOfWork = Depends(get_unit_of_work),
    payment_service: PaymentService = Depends(get_payment_service),
):
    order = await uow.orders.get_by_track_id(track_id)
    if order is None:
        raise OrderNotFound(track_id)
    return await payment_service.query(order)
