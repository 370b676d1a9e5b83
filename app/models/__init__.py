from app.models.base import Base, TimestampMixin
from app.models.payment_order import OrderResult, PaymentOrder

__all__ = [
    "Base",
    "TimestampMixin",
    "OrderResult",
    "PaymentOrder",
]
