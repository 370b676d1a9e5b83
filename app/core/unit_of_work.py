from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.repositories.payment_orders import PaymentOrderRepository


class UnitOfWork:
    """One session, one transaction scope, shared by all repositories."""

    orders: PaymentOrderRepository

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory
        self.session: AsyncSession | None = None

    async def __aenter__(self) -> "UnitOfWork":
        self.session = self._session_factory()
        self.orders = PaymentOrderRepository(self.session)
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        if exc_type is not None:
            await self.rollback()
        await self.session.close()

    async def commit(self) -> None:
        await self.session.commit()

    async def rollback(self) -> None:
        await self.session.rollback()
