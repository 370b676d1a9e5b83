"""
IPG Notification Route.

Endpoint:
  POST /api/v1/ipg/notification — PaymentNotificationRequest from the gateway

The gateway retries until it gets a well-formed answer, so every outcome is
JSON: the signed PaymentNotificationResponse on success, an ErrorResponse
otherwise.
"""

import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from app.core.dependencies import get_notification_service, get_unit_of_work
from app.core.exceptions import AppException, InvalidSignature, PaymentIdMismatch
from app.core.logging import mask_sensitive_data
from app.core.unit_of_work import UnitOfWork
from app.schemas.common import ErrorResponse
from app.services.notification_service import NotificationService

logger = logging.getLogger(__name__)

router = APIRouter()


def _error(status_code: int, error_code: str, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(error_code=error_code, message=message).model_dump(),
    )


@router.post(
    "/notification",
    summary="Receive IPG payment notifications",
    description=(
        "Verify a signed PaymentNotificationRequest, apply the payment result "
        "to the order and answer with a signed PaymentNotificationResponse."
    ),
)
async def handle_notification(
    request: Request,
    uow: UnitOfWork = Depends(get_unit_of_work),
    notification_service: NotificationService = Depends(get_notification_service),
):
    try:
        payload = await request.json()
    except ValueError:
        logger.warning("[ipg] notification body is not JSON")
        return _error(400, "INVALID_PAYLOAD", "Notification body must be JSON")

    if not isinstance(payload, dict):
        return _error(400, "INVALID_PAYLOAD", "Notification body must be a JSON object")

    logger.info(f"[ipg] notification received — {mask_sensitive_data(payload)}")

    try:
        return await notification_service.handle(uow, payload)
    except (InvalidSignature, PaymentIdMismatch) as e:
        await notification_service.alert(
            title="IPG notification rejected",
            detail=(
                f"{e.error_code} for trackid `{payload.get('trackid')}`, "
                f"paymentid `{payload.get('paymentid')}`"
            ),
        )
        return _error(e.status_code, e.error_code, e.message)
    except AppException as e:
        logger.warning(f"[ipg] notification rejected — {e.error_code}: {e.message}")
        return _error(e.status_code, e.error_code, e.message)
    except Exception:
        logger.exception("[ipg] notification processing failed")
        return _error(500, "INTERNAL_ERROR", "Notification could not be processed")
