"""
Order-state reconciliation between the browser return and the gateway.

The shopper's browser coming back to the site proves nothing: only the
signed server-to-server notification (or a signed PaymentQuery answer) may
capture an order. The browser path shows the current state, or "processing"
while the notification is outstanding. Once the result is overdue the
gateway is queried; an order is cancelled only when the gateway has no
purchase result for it or it never got a payment id.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Dict, List, Optional

from app.core.clock import Clock, as_utc, utc_now
from app.core.config import Settings
from app.core.exceptions import (
    GatewayRejected,
    GatewayUnreachable,
    InvalidResponse,
    InvalidSignature,
)
from app.core.unit_of_work import UnitOfWork
from app.models.payment_order import OrderResult, PaymentOrder
from app.schemas.ipg import ReconcileResponse, ReturnOutcome, TransactionRow
from app.services.payment_service import ACTION_PURCHASE, PaymentService, is_approved

logger = logging.getLogger(__name__)

PROCESSING = "processing"
NO_GATEWAY_RESULT = "no_gateway_result"

OUTCOME_MESSAGES: Dict[str, str] = {
    OrderResult.CAPTURED.value: "Payment successful. Thank you for your order.",
    OrderResult.DECLINED.value: "Payment was declined by the card issuer.",
    OrderResult.CANCELLED.value: "Payment was cancelled or timed out.",
    OrderResult.ERRORED.value: "Payment could not be processed.",
    PROCESSING: "Payment is being processed. This page will update shortly.",
}

OPEN_RESULTS = (OrderResult.PENDING, OrderResult.AWAITING_GATEWAY_RESULT)


class ReconciliationService:
    def __init__(
        self,
        settings: Settings,
        payment_service: PaymentService,
        clock: Clock = utc_now,
    ):
        self.settings = settings
        self.payment_service = payment_service
        self._clock = clock

    @property
    def result_timeout(self) -> timedelta:
        return timedelta(seconds=self.settings.IPG_RESULT_TIMEOUT_SECONDS)

    @staticmethod
    def _waiting_since(order: PaymentOrder) -> Optional[datetime]:
        moment = order.awaiting_since or order.created_at
        return as_utc(moment) if moment else None

    def _timed_out(self, order: PaymentOrder, now: datetime) -> bool:
        since = self._waiting_since(order)
        return since is not None and now - since >= self.result_timeout

    @staticmethod
    def _outcome(order: PaymentOrder, status: Optional[str] = None) -> ReturnOutcome:
        status = status or order.status
        return ReturnOutcome(
            track_id=order.track_id,
            status=status,
            final=status != PROCESSING,
            message=OUTCOME_MESSAGES[status],
            payment_id=order.payment_id,
        )

    async def _cancel(
        self,
        uow: UnitOfWork,
        order: PaymentOrder,
        now: datetime,
        reason: str = NO_GATEWAY_RESULT,
    ) -> PaymentOrder:
        won = await uow.orders.transition(
            order,
            OPEN_RESULTS,
            OrderResult.CANCELLED,
            diagnostics={"cancel_reason": reason},
            completed_at=now,
        )
        await uow.commit()
        current = await uow.orders.get_by_id(order.id)
        if won:
            logger.info(f"[ipg] order cancelled — trackid={order.track_id}, reason={reason}")
        return current

    async def resolve_return(self, uow: UnitOfWork, order: PaymentOrder) -> ReturnOutcome:
        """
        Decide what the shopper sees on return. Never captures from the
        browser alone: an overdue order with a payment id is settled from a
        signed PaymentQuery, and only one without a payment id is cancelled
        outright. A failed query keeps the order processing.
        """
        if order.is_terminal:
            return self._outcome(order)

        now = self._clock()
        if not self._timed_out(order, now):
            logger.info(
                f"[ipg] browser return before gateway result — trackid={order.track_id}"
            )
            return self._outcome(order, PROCESSING)

        if order.payment_id:
            current = await self._settle_from_query(uow, order, now)
        else:
            current = await self._cancel(uow, order, now)

        if current is not None and current.is_terminal:
            return self._outcome(current)
        return self._outcome(current or order, PROCESSING)

    # ──────────────────────────────────────────────────────────────
    # Stale sweep
    # ──────────────────────────────────────────────────────────────

    async def expire_stale(self, uow: UnitOfWork, limit: int = 100) -> ReconcileResponse:
        """
        Resolve open orders whose gateway result is overdue.

        Each order with a payment id is first looked up with a signed
        PaymentQuery. An unreachable gateway leaves the order as it is.
        """
        now = self._clock()
        cutoff = now - self.result_timeout
        candidates = await uow.orders.list_stale(OPEN_RESULTS, cutoff, limit)

        resolved: Dict[str, str] = {}
        checked = 0
        for order in candidates:
            if not self._timed_out(order, now):
                continue
            checked += 1

            if order.payment_id:
                current = await self._settle_from_query(uow, order, now)
            else:
                current = await self._cancel(uow, order, now)

            if current is not None and current.is_terminal:
                resolved[order.track_id] = current.status

        logger.info(f"[ipg] sweep finished — checked={checked}, resolved={len(resolved)}")
        return ReconcileResponse(checked=checked, resolved=resolved)

    async def _settle_from_query(
        self,
        uow: UnitOfWork,
        order: PaymentOrder,
        now: datetime,
    ) -> Optional[PaymentOrder]:
        """
        Ask the gateway about ``order`` and apply the answer. Returns None
        when the query failed and the order was left open.
        """
        try:
            query = await self.payment_service.query(order)
        except GatewayUnreachable:
            logger.warning(
                f"[ipg] query: gateway unreachable — trackid={order.track_id}, "
                f"order left {order.status}"
            )
            return None
        except (GatewayRejected, InvalidResponse, InvalidSignature) as e:
            logger.warning(
                f"[ipg] query failed — trackid={order.track_id}, "
                f"error={e.error_code}: {e.message}"
            )
            await uow.orders.attach_meta(order, "last_query_error", e.error_code)
            await uow.commit()
            return None

        return await self._apply_query(uow, order, query.transactions, now)

    async def _apply_query(
        self,
        uow: UnitOfWork,
        order: PaymentOrder,
        transactions: List[TransactionRow],
        now: datetime,
    ) -> PaymentOrder:
        purchases = [
            row for row in transactions
            if row.action in (None, ACTION_PURCHASE) and row.result
        ]
        approved = next((row for row in purchases if is_approved(row.result)), None)

        if approved is not None:
            to_status = OrderResult.CAPTURED
            row = approved
        elif purchases:
            to_status = OrderResult.DECLINED
            row = purchases[-1]
        else:
            return await self._cancel(uow, order, now)

        await uow.orders.transition(
            order,
            OPEN_RESULTS,
            to_status,
            diagnostics={
                "result": row.result,
                "response_code": row.response_code,
                "transaction_id": row.transaction_id,
                "auth_code": row.auth_code,
                "card_type": row.card_type,
                "reference": row.reference,
                "resolved_by": "payment_query",
            },
            completed_at=now,
        )
        await uow.commit()
        logger.info(
            f"[ipg] trackid={order.track_id} resolved from query — "
            f"result={row.result}"
        )
        return await uow.orders.get_by_id(order.id)
