import json
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Callable

import httpx
import pytest
import pytest_asyncio

from app.core.config import Settings
from app.core.database import create_engine, create_session_factory
from app.core.unit_of_work import UnitOfWork
from app.models import Base, OrderResult
from app.schemas.ipg import (
    FinancialResponse,
    PaymentInitResponse,
    PaymentNotificationRequest,
    PaymentQueryResponse,
)
from app.services.data_formatter import DataFormatter
from app.services.ipg_client import IpgClient
from app.services.message_signer import MessageSigner
from app.services.notification_service import NotificationService
from app.services.payment_service import PaymentService
from app.services.reconciliation_service import ReconciliationService
from app.services.threeds_service import ThreeDSContextBuilder

TERMINAL_ID = "89110001"
TERMINAL_PASSWORD = "test1234"
SECRET_KEY = "SECRETKEY123"
HPP_URL = "https://ipg.test/IPGWeb/hppaction?formAction=getHPP"


class FrozenClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


class FakeGateway:
    """Stands in for the IPG servlet behind an httpx.MockTransport."""

    def __init__(self, signer: MessageSigner):
        self.signer = signer
        self.requests: list[tuple[str, dict[str, Any]]] = []
        self.replies: dict[str, Any] = {}

    def handler(self, request: httpx.Request) -> httpx.Response:
        endpoint = request.url.path.rsplit("/", 1)[-1]
        payload = json.loads(request.content)
        self.requests.append((endpoint, payload))

        reply = self.replies[endpoint]
        if callable(reply):
            reply = reply(request, payload)
        if isinstance(reply, httpx.Response):
            return reply
        return httpx.Response(200, json=reply)

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def sign(self, message_cls, payload: dict[str, Any]) -> dict[str, Any]:
        signed = dict(payload)
        signed["msgVerifier"] = self.signer.sign_payload(message_cls.VERIFIER_FIELDS, payload)
        return signed

    def init_valid(self, payment_id: str = "PAY-1") -> dict[str, Any]:
        return self.sign(
            PaymentInitResponse,
            {
                "msgName": "PaymentInitResponse",
                "version": "1",
                "msgDateTime": "2026-10-17T10:00:00.000+0200",
                "type": "valid",
                "paymentid": payment_id,
                "browserRedirectionURL": HPP_URL,
            },
        )

    def financial_valid(self, payload: dict[str, Any], result: str = "CAPTURED") -> dict[str, Any]:
        return self.sign(
            FinancialResponse,
            {
                "msgName": "FinancialResponse",
                "version": "1",
                "msgDateTime": "2026-10-18T10:00:00.000+0200",
                "type": "valid",
                "paymentid": payload["paymentid"],
                "tranid": "RF-1",
                "amt": payload["amt"],
                "trackid": payload["trackid"],
                "result": result,
                "responsecode": "00",
            },
        )

    def query_valid(
        self,
        payment_id: str,
        status: str = "PROCESSED",
        rows: list[dict[str, Any]] | None = None,
        **extra: Any,
    ) -> dict[str, Any]:
        reply = self.sign(
            PaymentQueryResponse,
            {
                "msgName": "PaymentQueryResponse",
                "version": "1",
                "msgDateTime": "2026-10-17T11:00:00.000+0200",
                "type": "valid",
                "paymentid": payment_id,
                "amt": "49.99",
                "trackid": "ORD-100",
                "status": status,
                **extra,
            },
        )
        reply["transactions"] = rows or []
        return reply


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        _env_file=None,
        ENVIRONMENT="test",
        DATABASE_URL=f"sqlite+aiosqlite:///{tmp_path / 'ipg.db'}",
        IPG_TERMINAL_ID=TERMINAL_ID,
        IPG_TERMINAL_PASSWORD=TERMINAL_PASSWORD,
        IPG_SECRET_KEY=SECRET_KEY,
        IPG_API_URL="https://ipg.test/IPGWeb/servlet/",
        IPG_NOTIFICATION_URL="https://shop.example/api/v1/ipg/notification",
        IPG_ERROR_URL="https://shop.example/checkout/error",
        IPG_RETURN_URL="https://shop.example/return",
        IPG_RESULT_TIMEOUT_SECONDS=1800,
        SLACK_ALERTS_URL="",
    )


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock(datetime(2026, 10, 17, 10, 0, tzinfo=timezone.utc))


@pytest.fixture
def signer() -> MessageSigner:
    return MessageSigner(SECRET_KEY)


@pytest.fixture
def gateway(signer) -> FakeGateway:
    return FakeGateway(signer)


@pytest_asyncio.fixture
async def session_factory(settings):
    engine = create_engine(settings)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield create_session_factory(engine)
    await engine.dispose()


@pytest_asyncio.fixture
async def uow(session_factory):
    async with UnitOfWork(session_factory) as unit:
        yield unit


@pytest.fixture
def payment_service(settings, gateway, signer, clock) -> PaymentService:
    return PaymentService(
        settings,
        IpgClient(settings, transport=gateway.transport()),
        signer,
        DataFormatter(settings.IPG_DEFAULT_LANGUAGE),
        ThreeDSContextBuilder(clock),
        clock,
    )


@pytest.fixture
def notification_service(settings, signer, clock) -> NotificationService:
    return NotificationService(settings, signer, None, clock)


@pytest.fixture
def reconciliation_service(settings, payment_service, clock) -> ReconciliationService:
    return ReconciliationService(settings, payment_service, clock)


@pytest.fixture
def create_order(uow, clock) -> Callable:
    async def _create(**overrides):
        track_id = overrides.pop("track_id", "ORD-100")
        fields = {
            "track_id": track_id,
            "payment_id": "PAY-1",
            "status": OrderResult.AWAITING_GATEWAY_RESULT.value,
            "amount": Decimal("49.99"),
            "currency": "EUR",
            "currency_code": "978",
            "language": "EN",
            "response_url": "https://shop.example/api/v1/ipg/notification",
            "error_url": "https://shop.example/checkout/error",
            "return_url": f"https://shop.example/return?trackid={track_id}",
            "buyer": {},
            "udf": {},
            "diagnostics": {},
            "created_at": clock.now - timedelta(minutes=5),
            "awaiting_since": clock.now - timedelta(minutes=5),
        }
        fields.update(overrides)
        order = await uow.orders.create(**fields)
        await uow.commit()
        return order

    return _create


@pytest.fixture
def make_notification(gateway) -> Callable:
    def _make(**overrides) -> dict[str, Any]:
        payload = {
            "msgName": "PaymentNotificationRequest",
            "version": "1",
            "msgDateTime": "2026-10-17T10:04:00.000+0200",
            "paymentid": "PAY-1",
            "tranid": "TR-9001",
            "amt": "49.99",
            "trackid": "ORD-100",
            "udf1": "",
            "udf5": "",
            "result": "CAPTURED",
            "responsecode": "00",
            "auth": "654321",
            "cardtype": "VISA",
            "cardLastFourDigits": "1111",
            "ref": "629012345678",
            "payinst": "VPAS",
            "liability": "Y",
            "eci": "05",
            "cavv": "AAABBEg0VhI0VniQEjRWAAAAAAA=",
            "xid": "MDAwMDAwMDAwMDAwMDAwMDAwMDE=",
        }
        payload.update(overrides)
        payload = {k: v for k, v in payload.items() if v is not None}
        return gateway.sign(PaymentNotificationRequest, payload)

    return _make
