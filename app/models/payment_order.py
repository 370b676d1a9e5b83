from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any

from sqlalchemy import JSON, DateTime, Integer, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from app.models.base import Base, TimestampMixin, generate_prefixed_id


class OrderResult(str, Enum):
    PENDING = "pending"
    AWAITING_GATEWAY_RESULT = "awaiting_gateway_result"
    CAPTURED = "captured"
    DECLINED = "declined"
    CANCELLED = "cancelled"
    ERRORED = "errored"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_RESULTS


TERMINAL_RESULTS = frozenset(
    {
        OrderResult.CAPTURED,
        OrderResult.DECLINED,
        OrderResult.CANCELLED,
        OrderResult.ERRORED,
    }
)


def generate_order_id() -> str:
    return generate_prefixed_id("ipgord")


class PaymentOrder(TimestampMixin, Base):
    """
    One payment session per storefront order.

    ``status`` only moves forward; terminal transitions go through
    ``PaymentOrderRepository.transition`` which compares-and-swaps on the
    current status.
    """

    __tablename__ = "ipg_payment_orders"
    # created_at is a server default; load it back on INSERT
    __mapper_args__ = {"eager_defaults": True}

    id: Mapped[str] = mapped_column(
        String(50), primary_key=True, default=generate_order_id
    )
    track_id: Mapped[str] = mapped_column(
        String(255), unique=True, index=True, nullable=False
    )
    payment_id: Mapped[str | None] = mapped_column(
        String(255), unique=True, index=True, nullable=True
    )
    status: Mapped[str] = mapped_column(
        String(32), index=True, nullable=False, default=OrderResult.PENDING.value
    )
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    currency_code: Mapped[str] = mapped_column(String(3), nullable=False)
    language: Mapped[str] = mapped_column(String(3), nullable=False)
    response_url: Mapped[str] = mapped_column(Text, nullable=False)
    error_url: Mapped[str] = mapped_column(Text, nullable=False)
    return_url: Mapped[str] = mapped_column(Text, nullable=False)

    buyer: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    udf: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    diagnostics: Mapped[dict[str, Any]] = mapped_column(
        JSON, nullable=False, default=dict
    )
    acknowledgement: Mapped[dict[str, Any] | None] = mapped_column(
        JSON(none_as_null=True), nullable=True
    )

    awaiting_since: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    completed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    @property
    def result(self) -> OrderResult:
        return OrderResult(self.status)

    @property
    def is_terminal(self) -> bool:
        return self.result.is_terminal

    def __repr__(self) -> str:
        return f"<PaymentOrder {self.id} {self.track_id}:{self.status}>"
