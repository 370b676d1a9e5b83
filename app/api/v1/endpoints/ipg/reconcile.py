"""
IPG Reconcile Route.

Endpoint:
  POST /api/v1/ipg/reconcile — Resolve orders with an overdue gateway result

Meant to be called from a scheduler.
"""

from fastapi import APIRouter, Depends, Query

from app.core.dependencies import get_reconciliation_service, get_unit_of_work
from app.core.unit_of_work import UnitOfWork
from app.schemas.ipg import ReconcileResponse
from app.services.reconciliation_service import ReconciliationService

router = APIRouter()


@router.post(
    "/reconcile",
    response_model=ReconcileResponse,
    summary="Sweep stale IPG orders",
)
async def reconcile(
    limit: int = Query(100, ge=1, le=1000),
    uow: UnitOfWork = Depends(get_unit_of_work),
    reconciliation_service: ReconciliationService = Depends(get_reconciliation_service),
):
    return await reconciliation_service.expire_stale(uow, limit)
