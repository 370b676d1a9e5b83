from fastapi import APIRouter

from app.api.v1.endpoints.ipg.router import ipg_router

api_router = APIRouter()

# IPG payment gateway routes, mounted at /ipg
# Full paths: /api/v1/ipg/payment, /api/v1/ipg/notification, etc.
api_router.include_router(
    ipg_router,
    prefix="/ipg",
    tags=["ipg"],
)
