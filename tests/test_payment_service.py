from decimal import Decimal

import httpx
import pytest

from app.core.exceptions import (
    GatewayRejected,
    GatewayUnreachable,
    InvalidAmount,
    InvalidOrderState,
    InvalidResponse,
    InvalidSignature,
    MissingField,
    UnsupportedCurrency,
)
from app.core.unit_of_work import UnitOfWork
from app.models import OrderResult
from app.models.payment_order import PaymentOrder
from app.schemas.ipg import (
    BuyerInfo,
    CheckoutRequest,
    FinancialRequest,
    PaymentInitRequest,
    PaymentQueryRequest,
)
from app.schemas.threeds import BuyerHistory
from app.services.payment_service import with_query_param

from conftest import HPP_URL, SECRET_KEY


def _checkout(**overrides) -> CheckoutRequest:
    fields = {
        "track_id": "ORD-100",
        "amount": Decimal("49.99"),
        "currency": "EUR",
        "language": "en_US",
        "buyer": BuyerInfo(
            first_name="Ana",
            last_name="Kovač",
            phone="+387 61 000 111",
            email="ana@shop.example",
            user_id="7",
        ),
        "udf1": "shop-42",
    }
    fields.update(overrides)
    return CheckoutRequest(**fields)


async def _reload(session_factory, track_id="ORD-100"):
    async with UnitOfWork(session_factory) as fresh:
        return await fresh.orders.get_by_track_id(track_id)


@pytest.mark.asyncio
class TestBeginCheckout:
    async def test_success_commits_payment_id_before_returning(
        self, uow, session_factory, payment_service, gateway, signer
    ):
        gateway.replies["PaymentInitRequest"] = gateway.init_valid("PAY-1")

        response = await payment_service.begin_checkout(uow, _checkout())

        assert response.payment_id == "PAY-1"
        assert response.redirect_url == f"{HPP_URL}&PaymentID=PAY-1"
        assert response.status == "awaiting_gateway_result"

        order = await _reload(session_factory)
        assert order.status == OrderResult.AWAITING_GATEWAY_RESULT.value
        assert order.payment_id == "PAY-1"
        assert order.awaiting_since is not None
        assert order.return_url == "https://shop.example/return?trackid=ORD-100"
        assert order.diagnostics["redirect_url"] == response.redirect_url

    async def test_request_is_signed_and_complete(self, uow, payment_service, gateway, signer):
        gateway.replies["PaymentInitRequest"] = gateway.init_valid()

        await payment_service.begin_checkout(
            uow, _checkout(history=BuyerHistory(user_id="7", suspicious_activity=True))
        )

        endpoint, payload = gateway.requests[0]
        assert endpoint == "PaymentInitRequest"
        assert payload["msgName"] == "PaymentInitRequest"
        assert payload["version"] == "1"
        assert payload["id"] == "89110001"
        assert payload["password"] == "test1234"
        assert payload["action"] == "1"
        assert payload["currencycode"] == "978"
        assert payload["amt"] == "49.99"
        assert payload["trackid"] == "ORD-100"
        assert payload["langid"] == "EN"
        assert payload["notificationFormat"] == "json"
        assert payload["responseURL"] == "https://shop.example/api/v1/ipg/notification"
        assert payload["errorURL"] == "https://shop.example/checkout/error"
        assert payload["buyerFirstName"] == "Ana"
        assert payload["buyerPhoneNumber"] == "+38761000111"
        assert payload["buyerEmailAddress"] == "ana@shop.example"
        assert payload["udf1"] == "shop-42"
        assert payload["payinst"] == "VPAS"
        assert payload["acctInfo"]["suspiciousAccActivity"] == "02"
        assert "threeDSRequestorAuthenticationInfo" in payload

        assert "secretKey" not in payload
        assert SECRET_KEY not in str(payload)
        assert payload["msgVerifier"] == signer.sign_payload(
            PaymentInitRequest.VERIFIER_FIELDS, payload
        )

    async def test_threeds_disabled(self, uow, settings, payment_service, gateway):
        settings.IPG_THREEDS_ENABLED = False
        gateway.replies["PaymentInitRequest"] = gateway.init_valid()

        await payment_service.begin_checkout(uow, _checkout())

        _, payload = gateway.requests[0]
        assert "payinst" not in payload
        assert "acctInfo" not in payload

    async def test_resubmit_returns_original_redirect(self, uow, payment_service, gateway):
        gateway.replies["PaymentInitRequest"] = gateway.init_valid()

        first = await payment_service.begin_checkout(uow, _checkout())
        second = await payment_service.begin_checkout(uow, _checkout())

        assert second.redirect_url == first.redirect_url
        assert second.payment_id == first.payment_id
        assert len(gateway.requests) == 1

    async def test_resubmit_with_other_amount_is_rejected(self, uow, payment_service, gateway):
        gateway.replies["PaymentInitRequest"] = gateway.init_valid()
        await payment_service.begin_checkout(uow, _checkout())

        with pytest.raises(InvalidOrderState):
            await payment_service.begin_checkout(uow, _checkout(amount=Decimal("10.00")))

    @pytest.mark.parametrize(
        "overrides,error",
        [
            ({"amount": Decimal("19.999")}, InvalidAmount),
            ({"amount": Decimal("0")}, InvalidAmount),
            ({"currency": "JPY"}, UnsupportedCurrency),
        ],
    )
    async def test_validation_happens_before_any_network_call(
        self, uow, session_factory, payment_service, gateway, overrides, error
    ):
        with pytest.raises(error):
            await payment_service.begin_checkout(uow, _checkout(**overrides))

        assert gateway.requests == []
        assert await _reload(session_factory) is None

    async def test_gateway_rejection_marks_order_errored(
        self, uow, session_factory, payment_service, gateway
    ):
        gateway.replies["PaymentInitRequest"] = {
            "msgName": "PaymentInitResponse",
            "version": "1",
            "type": "error",
            "errorCode": "IPG-0123",
            "errorDesc": "Invalid terminal",
        }

        with pytest.raises(GatewayRejected) as exc:
            await payment_service.begin_checkout(uow, _checkout())

        assert exc.value.gateway_error_code == "IPG-0123"
        assert exc.value.gateway_error_desc == "Invalid terminal"

        order = await _reload(session_factory)
        assert order.status == OrderResult.ERRORED.value
        assert order.payment_id is None
        assert order.diagnostics["gateway_error_code"] == "IPG-0123"
        assert order.diagnostics["gateway_error_desc"] == "Invalid terminal"

    async def test_timeout_leaves_order_pending(
        self, uow, session_factory, payment_service, gateway
    ):
        def timeout(request, payload):
            raise httpx.ConnectTimeout("timed out", request=request)

        gateway.replies["PaymentInitRequest"] = timeout

        with pytest.raises(GatewayUnreachable) as exc:
            await payment_service.begin_checkout(uow, _checkout())
        assert exc.value.retryable is True

        order = await _reload(session_factory)
        assert order.status == OrderResult.PENDING.value
        assert order.payment_id is None

    async def test_retry_after_timeout_succeeds(self, uow, session_factory, payment_service, gateway):
        def timeout(request, payload):
            raise httpx.ConnectError("connection refused", request=request)

        gateway.replies["PaymentInitRequest"] = timeout
        with pytest.raises(GatewayUnreachable):
            await payment_service.begin_checkout(uow, _checkout())

        gateway.replies["PaymentInitRequest"] = gateway.init_valid("PAY-2")
        response = await payment_service.begin_checkout(uow, _checkout())

        assert response.payment_id == "PAY-2"
        order = await _reload(session_factory)
        assert order.status == OrderResult.AWAITING_GATEWAY_RESULT.value

    async def test_non_json_response(self, uow, session_factory, payment_service, gateway):
        gateway.replies["PaymentInitRequest"] = httpx.Response(200, text="<html>oops</html>")

        with pytest.raises(InvalidResponse):
            await payment_service.begin_checkout(uow, _checkout())

        order = await _reload(session_factory)
        assert order.status == OrderResult.ERRORED.value
        assert order.diagnostics["error_code"] == "INVALID_RESPONSE"

    async def test_client_error_response(self, uow, session_factory, payment_service, gateway):
        gateway.replies["PaymentInitRequest"] = httpx.Response(400, text="Bad request")

        with pytest.raises(InvalidResponse):
            await payment_service.begin_checkout(uow, _checkout())

        order = await _reload(session_factory)
        assert order.status == OrderResult.ERRORED.value

    @pytest.mark.parametrize("status", [502, 503, 504])
    async def test_gateway_server_error_leaves_order_retryable(
        self, uow, session_factory, payment_service, gateway, status
    ):
        gateway.replies["PaymentInitRequest"] = httpx.Response(status, text="Bad gateway")

        with pytest.raises(GatewayUnreachable):
            await payment_service.begin_checkout(uow, _checkout())

        order = await _reload(session_factory)
        assert order.status == OrderResult.PENDING.value

        gateway.replies["PaymentInitRequest"] = gateway.init_valid("PAY-2")
        response = await payment_service.begin_checkout(uow, _checkout())

        assert response.payment_id == "PAY-2"
        order = await _reload(session_factory)
        assert order.status == OrderResult.AWAITING_GATEWAY_RESULT.value

    async def test_bad_response_signature(self, uow, session_factory, payment_service, gateway):
        reply = gateway.init_valid()
        reply["browserRedirectionURL"] = "https://evil.example/hpp"
        gateway.replies["PaymentInitRequest"] = reply

        with pytest.raises(InvalidSignature):
            await payment_service.begin_checkout(uow, _checkout())

        order = await _reload(session_factory)
        assert order.status == OrderResult.ERRORED.value
        assert order.payment_id is None


def _order(**overrides) -> PaymentOrder:
    fields = {
        "track_id": "ORD-100",
        "amount": Decimal("49.99"),
        "currency": "EUR",
        "currency_code": "978",
        "language": "EN",
        "response_url": "https://shop.example/api/v1/ipg/notification",
        "error_url": "https://shop.example/checkout/error",
        "return_url": "https://shop.example/return?trackid=ORD-100",
    }
    fields.update(overrides)
    return PaymentOrder(**fields)


@pytest.mark.asyncio
class TestInitiate:
    @pytest.mark.parametrize(
        "field, wire_name",
        [
            ("track_id", "trackid"),
            ("amount", "amt"),
            ("currency", "currency"),
            ("response_url", "responseURL"),
            ("error_url", "errorURL"),
            ("language", "langid"),
        ],
    )
    async def test_missing_order_field(self, payment_service, gateway, field, wire_name):
        with pytest.raises(MissingField) as exc:
            await payment_service.initiate(_order(**{field: None}))

        assert exc.value.details == {"field": wire_name}
        assert gateway.requests == []

    async def test_blank_currency_is_missing(self, payment_service, gateway):
        with pytest.raises(MissingField):
            await payment_service.initiate(_order(currency="  "))

        assert gateway.requests == []


def test_with_query_param():
    assert with_query_param("https://h/p", "PaymentID", "1") == "https://h/p?PaymentID=1"
    assert (
        with_query_param("https://h/p?a=1&PaymentID=old", "PaymentID", "2")
        == "https://h/p?a=1&PaymentID=2"
    )


def test_with_query_param_keeps_existing_encoding():
    url = "https://h/hppaction?formAction=getHPP&note=a%20b&x=1+2&flag"

    assert with_query_param(url, "PaymentID", "PAY 1") == (
        "https://h/hppaction?formAction=getHPP&note=a%20b&x=1+2&flag&PaymentID=PAY%201"
    )


@pytest.mark.asyncio
class TestRefund:
    async def test_refund_captured_order(self, uow, create_order, payment_service, gateway, signer):
        order = await create_order(status=OrderResult.CAPTURED.value)
        gateway.replies["FinancialRequest"] = lambda request, payload: gateway.financial_valid(payload)

        response = await payment_service.refund(uow, order, Decimal("20.00"))

        assert response.refunded_amount == "20.00"
        assert response.transaction_id == "RF-1"
        assert response.payment_id == "PAY-1"

        endpoint, payload = gateway.requests[0]
        assert endpoint == "FinancialRequest"
        assert payload["action"] == "2"
        assert payload["amt"] == "20.00"
        assert payload["paymentid"] == "PAY-1"
        assert payload["msgVerifier"] == signer.sign_payload(
            FinancialRequest.VERIFIER_FIELDS, payload
        )

        refreshed = await uow.orders.get_by_track_id("ORD-100")
        assert refreshed.status == OrderResult.CAPTURED.value
        assert refreshed.diagnostics["refunds"][0]["amount"] == "20.00"

    async def test_refund_cannot_exceed_captured_amount(self, uow, create_order, payment_service, gateway):
        order = await create_order(status=OrderResult.CAPTURED.value)
        gateway.replies["FinancialRequest"] = lambda request, payload: gateway.financial_valid(payload)

        await payment_service.refund(uow, order, "40.00")
        order = await uow.orders.get_by_track_id("ORD-100")

        with pytest.raises(InvalidAmount):
            await payment_service.refund(uow, order, "10.00")
        assert len(gateway.requests) == 1

    @pytest.mark.parametrize(
        "status",
        [OrderResult.AWAITING_GATEWAY_RESULT, OrderResult.DECLINED, OrderResult.CANCELLED],
    )
    async def test_only_captured_orders(self, uow, create_order, payment_service, gateway, status):
        order = await create_order(status=status.value)

        with pytest.raises(InvalidOrderState):
            await payment_service.refund(uow, order, "1.00")
        assert gateway.requests == []

    async def test_declined_refund(self, uow, create_order, payment_service, gateway):
        order = await create_order(status=OrderResult.CAPTURED.value)
        gateway.replies["FinancialRequest"] = (
            lambda request, payload: gateway.financial_valid(payload, result="NOT APPROVED")
        )

        with pytest.raises(GatewayRejected):
            await payment_service.refund(uow, order, "5.00")

        refreshed = await uow.orders.get_by_track_id("ORD-100")
        assert "refunds" not in refreshed.diagnostics


@pytest.mark.asyncio
class TestQuery:
    async def test_query(self, uow, create_order, payment_service, gateway, signer):
        order = await create_order()
        gateway.replies["PaymentQueryRequest"] = gateway.query_valid(
            "PAY-1",
            rows=[
                {
                    "action": "1",
                    "tranid": "TR-9001",
                    "msgDateTime": "2026-10-17T10:04:00",
                    "amt": "49.99",
                    "result": "CAPTURED",
                    "auth": "654321",
                    "cardtype": "VISA",
                    "responsecode": "00",
                    "ref": "629012345678",
                    "udf1": "shop-42",
                }
            ],
            liability="Y",
            eci="05",
            riskScore="12",
            riskLevel="LOW",
        )

        result = await payment_service.query(order)

        assert result.status == "PROCESSED"
        assert result.status_description == "Payment has been processed completely"
        assert result.risk_score == "12"
        assert result.threeds["liability_shift"] is True
        assert len(result.transactions) == 1
        row = result.transactions[0]
        assert row.transaction_id == "TR-9001"
        assert row.auth_code == "654321"
        assert row.udf == {"udf1": "shop-42"}

        _, payload = gateway.requests[0]
        assert payload["msgVerifier"] == signer.sign_payload(
            PaymentQueryRequest.VERIFIER_FIELDS, payload
        )

    async def test_unknown_status_passes_through(self, uow, create_order, payment_service, gateway):
        order = await create_order()
        gateway.replies["PaymentQueryRequest"] = gateway.query_valid("PAY-1", status="SOMETHING")

        result = await payment_service.query(order)

        assert result.status_description == "SOMETHING"
        assert result.transactions == []

    async def test_query_signature_checked(self, uow, create_order, payment_service, gateway):
        order = await create_order()
        reply = gateway.query_valid("PAY-1")
        reply["status"] = "TIMEOUT"
        gateway.replies["PaymentQueryRequest"] = reply

        with pytest.raises(InvalidSignature):
            await payment_service.query(order)
