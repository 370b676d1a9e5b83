import logging
from datetime import datetime
from typing import Any

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.payment_order import OrderResult, PaymentOrder

logger = logging.getLogger(__name__)

# A concurrent diagnostics write bumps ``version`` without changing status;
# a transition retries this many times before giving up.
MAX_CAS_ATTEMPTS = 3


class PaymentOrderRepository:
    """
    Order store used by the payment services.

    State changes are compare-and-swap UPDATEs guarded by the expected
    ``status`` and ``version``; the return value tells the caller whether it
    won. Reads always refresh the identity map so a caller never acts on a
    row another request has already moved.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def _get_one(self, *criteria) -> PaymentOrder | None:
        stmt = (
            select(PaymentOrder)
            .where(*criteria)
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_by_id(self, order_id: str) -> PaymentOrder | None:
        return await self._get_one(PaymentOrder.id == order_id)

    async def get_by_track_id(self, track_id: str) -> PaymentOrder | None:
        return await self._get_one(PaymentOrder.track_id == track_id)

    async def create(self, **fields: Any) -> PaymentOrder:
        order = PaymentOrder(**fields)
        self.session.add(order)
        await self.session.flush()
        return order

    async def save_idempotent(self, **fields: Any) -> tuple[PaymentOrder, bool]:
        """
        Create the order unless one with the same track id exists.

        Returns ``(order, created)``. The track id is the idempotency key, so a
        repeated checkout submit gets the original row back.
        """
        existing = await self.get_by_track_id(fields["track_id"])
        if existing is not None:
            return existing, False

        try:
            async with self.session.begin_nested():
                order = await self.create(**fields)
            return order, True
        except IntegrityError:
            logger.info(
                "Concurrent duplicate insert detected for track id: %s",
                fields["track_id"],
            )
            existing = await self.get_by_track_id(fields["track_id"])
            return existing, False

    async def attach_payment(
        self,
        order: PaymentOrder,
        payment_id: str,
        awaiting_since: datetime,
    ) -> bool:
        """Record the gateway payment id and move pending → awaiting."""
        stmt = (
            update(PaymentOrder)
            .where(
                PaymentOrder.id == order.id,
                PaymentOrder.status == OrderResult.PENDING.value,
                PaymentOrder.payment_id.is_(None),
            )
            .values(
                payment_id=payment_id,
                status=OrderResult.AWAITING_GATEWAY_RESULT.value,
                awaiting_since=awaiting_since,
                version=PaymentOrder.version + 1,
            )
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        await self.get_by_id(order.id)
        return result.rowcount == 1

    async def transition(
        self,
        order: PaymentOrder,
        from_statuses: tuple[OrderResult, ...],
        to_status: OrderResult,
        *,
        diagnostics: dict[str, Any] | None = None,
        acknowledgement: dict[str, Any] | None = None,
        completed_at: datetime | None = None,
    ) -> bool:
        """
        Move ``order`` to ``to_status`` if it is still in one of
        ``from_statuses``.

        ``diagnostics`` is merged into the stored diagnostics inside the same
        UPDATE. Returns False when another writer moved the order first.
        """
        allowed = [s.value for s in from_statuses]

        for _ in range(MAX_CAS_ATTEMPTS):
            current = await self.get_by_id(order.id)
            if current is None or current.status not in allowed:
                return False

            values: dict[str, Any] = {
                "status": to_status.value,
                "version": current.version + 1,
            }
            if diagnostics:
                values["diagnostics"] = {**(current.diagnostics or {}), **diagnostics}
            if acknowledgement is not None:
                values["acknowledgement"] = acknowledgement
            if completed_at is not None:
                values["completed_at"] = completed_at

            stmt = (
                update(PaymentOrder)
                .where(
                    PaymentOrder.id == current.id,
                    PaymentOrder.status == current.status,
                    PaymentOrder.version == current.version,
                )
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            result = await self.session.execute(stmt)
            if result.rowcount == 1:
                await self.get_by_id(order.id)
                return True

        return False

    async def attach_meta(self, order: PaymentOrder, key: str, value: Any) -> bool:
        """Set one diagnostics key without touching status."""
        for _ in range(MAX_CAS_ATTEMPTS):
            current = await self.get_by_id(order.id)
            if current is None:
                return False

            stmt = (
                update(PaymentOrder)
                .where(
                    PaymentOrder.id == current.id,
                    PaymentOrder.version == current.version,
                )
                .values(
                    diagnostics={**(current.diagnostics or {}), key: value},
                    version=current.version + 1,
                )
                .execution_options(synchronize_session=False)
            )
            result = await self.session.execute(stmt)
            if result.rowcount == 1:
                await self.get_by_id(order.id)
                return True

        return False

    async def store_acknowledgement(
        self, order: PaymentOrder, acknowledgement: dict[str, Any]
    ) -> dict[str, Any]:
        """
        Store ``acknowledgement`` unless one is already stored; return
        whichever ack the row ends up holding.
        """
        stmt = (
            update(PaymentOrder)
            .where(
                PaymentOrder.id == order.id,
                PaymentOrder.acknowledgement.is_(None),
            )
            .values(acknowledgement=acknowledgement, version=PaymentOrder.version + 1)
            .execution_options(synchronize_session=False)
        )
        await self.session.execute(stmt)
        current = await self.get_by_id(order.id)
        return current.acknowledgement

    async def list_stale(
        self,
        statuses: tuple[OrderResult, ...],
        cutoff: datetime,
        limit: int = 100,
    ) -> list[PaymentOrder]:
        """Open orders waiting since before ``cutoff``, oldest first."""
        waiting_since = func.coalesce(PaymentOrder.awaiting_since, PaymentOrder.created_at)
        stmt = (
            select(PaymentOrder)
            .where(
                PaymentOrder.status.in_([s.value for s in statuses]),
                waiting_since <= cutoff,
            )
            .order_by(waiting_since)
            .limit(limit)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())
