"""
IPG Browser Return Route.

Endpoint:
  GET /api/v1/ipg/return?trackid=<track id> — Shopper lands back on the site

Shows the order outcome. The browser return alone never captures a payment;
an overdue order is settled from a signed PaymentQuery.
"""

from fastapi import APIRouter, Depends, Query

from app.core.dependencies import get_reconciliation_service, get_unit_of_work
from app.core.exceptions import OrderNotFound
from app.core.unit_of_work import UnitOfWork
from app.schemas.ipg import ReturnOutcome
from app.services.reconciliation_service import ReconciliationService

router = APIRouter()


@router.get(
    "/return",
    response_model=ReturnOutcome,
    summary="Resolve the shopper's return from the HPP",
)
async def payment_return(
    trackid: str = Query(..., min_length=1),
    uow: UnitOfWork = Depends(get_unit_of_work),
    reconciliation_service: ReconciliationService = Depends(get_reconciliation_service),
):
    order = await uow.orders.get_by_track_id(trackid)
    if order is None:
        raise OrderNotFound(trackid)
    return await reconciliation_service.resolve_return(uow, order)
