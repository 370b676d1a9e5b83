"""
Gateway → merchant payment notifications.

The gateway POSTs a signed PaymentNotificationRequest once the shopper has
finished on the HPP and treats our JSON answer as authoritative: the signed
PaymentNotificationResponse tells it where to send the browser. Deliveries
can be duplicated or arrive concurrently, so the terminal transition is a
compare-and-swap and the acknowledgement is stored with it; every later
delivery gets the same acknowledgement back.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Mapping, Optional

from app.core.clock import Clock, utc_now
from app.core.config import Settings
from app.core.exceptions import (
    ExternalServiceError,
    InvalidOrderState,
    OrderNotFound,
    PaymentIdMismatch,
)
from app.core.unit_of_work import UnitOfWork
from app.models.payment_order import OrderResult, PaymentOrder
from app.schemas.ipg import PaymentNotificationRequest, PaymentNotificationResponse
from app.services.data_formatter import DataFormatter
from app.services.message_signer import MessageSigner
from app.services.payment_service import is_approved
from app.services.slack_service import SlackService
from app.services.threeds_service import parse_authentication_result

logger = logging.getLogger(__name__)

REQUIRED_FIELDS = ("paymentid", "trackid", "result")

# Terminal results that never captured
CLOSED_WITHOUT_CAPTURE = (OrderResult.CANCELLED, OrderResult.ERRORED)


class NotificationService:
    def __init__(
        self,
        settings: Settings,
        signer: MessageSigner,
        alerts: Optional[SlackService] = None,
        clock: Clock = utc_now,
    ):
        self.settings = settings
        self.signer = signer
        self.alerts = alerts
        self._clock = clock

    def build_acknowledgement(self, order: PaymentOrder) -> Dict[str, Any]:
        """Signed PaymentNotificationResponse wire dict for ``order``."""
        response = PaymentNotificationResponse(
            version=self.settings.IPG_MESSAGE_VERSION,
            payment_id=order.payment_id or "",
            browser_redirection_url=order.return_url,
        )
        return self.signer.sign(response).to_wire()

    async def handle(self, uow: UnitOfWork, raw: Mapping[str, Any]) -> Dict[str, Any]:
        """
        Process one notification delivery and return the acknowledgement to
        send back. Raises InvalidSignature / MissingField / OrderNotFound /
        PaymentIdMismatch without touching the order.
        """
        self.signer.verify(PaymentNotificationRequest, raw)
        DataFormatter.validate_required_fields(dict(raw), REQUIRED_FIELDS)

        notification = PaymentNotificationRequest.model_validate(dict(raw))
        track_id = notification.track_id.strip()
        payment_id = notification.payment_id.strip()

        order = await uow.orders.get_by_track_id(track_id)
        if order is None:
            logger.warning(
                f"[ipg] notification for unknown order — trackid={track_id}, "
                f"paymentid={payment_id}"
            )
            raise OrderNotFound(track_id)

        if order.payment_id != payment_id:
            logger.warning(
                f"[ipg] notification paymentid mismatch — trackid={track_id}, "
                f"stored={order.payment_id}, received={payment_id}"
            )
            raise PaymentIdMismatch(track_id)

        if order.is_terminal:
            await self._record_late_capture(uow, order, notification, raw)
            return await self._replay(uow, order)

        if is_approved(notification.result):
            to_status = OrderResult.CAPTURED
            diagnostics = self._capture_details(notification, raw)
        else:
            to_status = OrderResult.DECLINED
            diagnostics = {
                "result": notification.result,
                "response_code": notification.response_code,
                "transaction_id": notification.transaction_id,
            }

        acknowledgement = self.build_acknowledgement(order)
        won = await uow.orders.transition(
            order,
            (OrderResult.AWAITING_GATEWAY_RESULT,),
            to_status,
            diagnostics=diagnostics,
            acknowledgement=acknowledgement,
            completed_at=self._clock(),
        )
        await uow.commit()

        if not won:
            current = await uow.orders.get_by_id(order.id)
            if current is None or not current.is_terminal:
                raise InvalidOrderState(
                    "Order changed while the notification was being applied",
                    {"track_id": track_id},
                )
            logger.info(
                f"[ipg] notification lost race — trackid={track_id}, "
                f"status={current.status}"
            )
            await self._record_late_capture(uow, current, notification, raw)
            return await self._replay(uow, current)

        logger.info(
            f"[ipg] notification applied — trackid={track_id}, paymentid={payment_id}, "
            f"result={notification.result}, status={to_status.value}"
        )
        return acknowledgement

    async def _replay(self, uow: UnitOfWork, order: PaymentOrder) -> Dict[str, Any]:
        """Return the stored acknowledgement, storing one if missing."""
        if order.acknowledgement is not None:
            logger.info(
                f"[ipg] duplicate notification — trackid={order.track_id}, "
                f"status={order.status}"
            )
            return order.acknowledgement

        acknowledgement = await uow.orders.store_acknowledgement(
            order, self.build_acknowledgement(order)
        )
        await uow.commit()
        return acknowledgement

    async def _record_late_capture(
        self,
        uow: UnitOfWork,
        order: PaymentOrder,
        notification: PaymentNotificationRequest,
        raw: Mapping[str, Any],
    ) -> None:
        """
        Keep a capture that reached an order already cancelled or errored
        under ``diagnostics["late_result"]`` and raise an alert. The order
        keeps its status.
        """
        if not is_approved(notification.result):
            return
        if order.result not in CLOSED_WITHOUT_CAPTURE:
            return
        if "late_result" in (order.diagnostics or {}):
            return

        details = self._capture_details(notification, raw)
        details["received_at"] = self._clock().isoformat()
        await uow.orders.attach_meta(order, "late_result", details)
        await uow.commit()

        logger.error(
            f"[ipg] capture for {order.status} order — trackid={order.track_id}, "
            f"paymentid={order.payment_id}, tranid={notification.transaction_id}"
        )
        await self.alert(
            title="IPG capture on closed order",
            detail=(
                f"trackid `{order.track_id}` is {order.status} but the gateway reported "
                f"`{notification.result}` for paymentid `{order.payment_id}` "
                f"(tranid `{notification.transaction_id}`). Needs manual review."
            ),
        )

    @staticmethod
    def _capture_details(
        notification: PaymentNotificationRequest,
        raw: Mapping[str, Any],
    ) -> Dict[str, Any]:
        details: Dict[str, Any] = {
            "result": notification.result,
            "response_code": notification.response_code,
            "transaction_id": notification.transaction_id,
            "auth_code": notification.auth_code,
            "card_type": notification.card_type,
            "card_last_four": notification.card_last_four,
            "reference": notification.reference,
        }
        threeds = parse_authentication_result(raw)
        if threeds is not None:
            details["threeds"] = threeds.model_dump()
        return details

    async def alert(self, title: str, detail: str) -> None:
        """Best-effort Slack alert for rejected or late notifications."""
        if self.alerts is None:
            return
        try:
            await self.alerts.send_critical_alert(
                title=title,
                alert=detail,
                platform="IPG",
            )
        except ExternalServiceError as e:
            logger.error(f"[ipg] Slack alert failed: {e.message}")
