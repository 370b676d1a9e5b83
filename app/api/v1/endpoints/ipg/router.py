"""
IPG Router Aggregator.

Combines all IPG sub-routers into a single router with prefix /ipg. When
registered in the main app under /api/v1, the full paths become:

  POST /api/v1/ipg/payment           — Start a hosted-page payment
  POST /api/v1/ipg/notification      — Gateway payment notification
  GET  /api/v1/ipg/return            — Shopper return from the HPP
  GET  /api/v1/ipg/query/{track_id}  — Live payment status
  POST /api/v1/ipg/refund            — Refund a captured payment
  POST /api/v1/ipg/reconcile         — Sweep stale orders
"""

from fastapi import APIRouter

from app.api.v1.endpoints.ipg.payment import router as payment_router
from app.api.v1.endpoints.ipg.notification import router as notification_router
from app.api.v1.endpoints.ipg.return_page import router as return_router
from app.api.v1.endpoints.ipg.query import router as query_router
from app.api.v1.endpoints.ipg.refund import router as refund_router
from app.api.v1.endpoints.ipg.reconcile import router as reconcile_router

# IPG router; api.py mounts it at /ipg
ipg_router = APIRouter()

ipg_router.include_router(payment_router)
ipg_router.include_router(notification_router)
ipg_router.include_router(return_router)
ipg_router.include_router(query_router)
ipg_router.include_router(refund_router)
ipg_router.include_router(reconcile_router)
