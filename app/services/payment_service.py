"""
IPG payment operations.

Builds, signs and sends PaymentInit, Financial (refund) and PaymentQuery
requests, and verifies what comes back. ``begin_checkout`` is the
checkout-side orchestration: the payment id is committed against the order
before the redirect URL is handed to the browser, so a fast notification
always finds it.
"""

from __future__ import annotations

import logging
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional, Type, TypeVar
from urllib.parse import quote, unquote_plus, urlencode, urlsplit, urlunsplit

from pydantic import ValidationError

from app.core.clock import Clock, utc_now
from app.core.config import Settings
from app.core.exceptions import (
    AppException,
    GatewayRejected,
    GatewayUnreachable,
    InvalidAmount,
    InvalidOrderState,
    InvalidResponse,
    InvalidSignature,
    MissingField,
)
from app.core.unit_of_work import UnitOfWork
from app.models.payment_order import OrderResult, PaymentOrder
from app.schemas.ipg import (
    CheckoutRequest,
    CheckoutResponse,
    FinancialRequest,
    FinancialResponse,
    GatewayMessage,
    PaymentInitRequest,
    PaymentInitResponse,
    PaymentInitResult,
    PaymentQueryRequest,
    PaymentQueryResponse,
    PaymentQueryResult,
    RefundResponse,
    TransactionRow,
)
from app.schemas.threeds import BuyerHistory
from app.services.data_formatter import DataFormatter
from app.services.ipg_client import (
    FINANCIAL_ENDPOINT,
    PAYMENT_INIT_ENDPOINT,
    PAYMENT_QUERY_ENDPOINT,
    IpgClient,
)
from app.services.message_signer import MessageSigner
from app.services.threeds_service import (
    ThreeDSContextBuilder,
    parse_authentication_result,
)

logger = logging.getLogger(__name__)

ACTION_PURCHASE = "1"
ACTION_REFUND = "2"

APPROVED_RESULTS = frozenset({"CAPTURED", "APPROVED"})

QUERY_STATUS_DESCRIPTIONS: Dict[str, str] = {
    "INITIALIZED": "Payment initialized but not yet displayed to customer",
    "PRESENTED": "Payment page presented but process not completed",
    "PROCESSED": "Payment has been processed completely",
    "TIMEOUT": "Payment expired due to timeout",
}

UDF_FIELDS = ("udf1", "udf2", "udf3", "udf4", "udf5")
INIT_REQUIRED_FIELDS = ("trackid", "amt", "currency", "responseURL", "errorURL", "langid")

M = TypeVar("M", bound=GatewayMessage)


def is_approved(result: Optional[str]) -> bool:
    return (result or "").strip().upper() in APPROVED_RESULTS


def with_query_param(url: str, name: str, value: str) -> str:
    """
    Set ``name=value`` on ``url``, replacing any existing value. Other
    parameters are kept byte for byte.
    """
    parts = urlsplit(url)
    kept = [
        pair for pair in parts.query.split("&")
        if pair and unquote_plus(pair.split("=", 1)[0]) != name
    ]
    kept.append(f"{quote(name, safe='')}={quote(value, safe='')}")
    return urlunsplit(parts._replace(query="&".join(kept)))


def status_description(status: Optional[str]) -> Optional[str]:
    if status is None:
        return None
    return QUERY_STATUS_DESCRIPTIONS.get(status.upper(), status)


def parse_transaction_rows(rows: Iterable[Dict[str, Any]]) -> List[TransactionRow]:
    transactions = []
    for row in rows:
        if not isinstance(row, dict):
            continue
        transactions.append(
            TransactionRow(
                action=_as_str(row.get("action")),
                transaction_id=_as_str(row.get("tranid")),
                timestamp=_as_str(row.get("msgDateTime")),
                amount=_as_str(row.get("amt")),
                result=_as_str(row.get("result")),
                auth_code=_as_str(row.get("auth")),
                card_type=_as_str(row.get("cardtype")),
                response_code=_as_str(row.get("responsecode")),
                reference=_as_str(row.get("ref")),
                udf={
                    name: str(row[name]) for name in UDF_FIELDS if row.get(name)
                },
            )
        )
    return transactions


def _as_str(value: Any) -> Optional[str]:
    if value is None or value == "":
        return None
    return str(value)


class PaymentService:
    def __init__(
        self,
        settings: Settings,
        client: IpgClient,
        signer: MessageSigner,
        formatter: Optional[DataFormatter] = None,
        threeds_builder: Optional[ThreeDSContextBuilder] = None,
        clock: Clock = utc_now,
    ):
        self.settings = settings
        self.client = client
        self.signer = signer
        self.formatter = formatter or DataFormatter(settings.IPG_DEFAULT_LANGUAGE)
        self.threeds_builder = threeds_builder or ThreeDSContextBuilder(clock)
        self._clock = clock

    # ──────────────────────────────────────────────────────────────
    # Helpers
    # ──────────────────────────────────────────────────────────────

    def return_url_for(self, track_id: str) -> str:
        return f"{self.settings.IPG_RETURN_URL}?{urlencode({'trackid': track_id})}"

    def _credentials(self) -> Dict[str, str]:
        return {
            "id": self.settings.IPG_TERMINAL_ID,
            "password": self.settings.IPG_TERMINAL_PASSWORD,
            "version": self.settings.IPG_MESSAGE_VERSION,
        }

    @staticmethod
    def _parse(message_cls: Type[M], raw: Dict[str, Any]) -> M:
        try:
            return message_cls.model_validate(raw)
        except ValidationError as e:
            logger.error(f"[ipg] malformed {message_cls.__name__}: {e}")
            raise InvalidResponse(
                f"Malformed {message_cls.__name__}",
                {"msg_name": message_cls.__name__},
            ) from e

    async def _exchange(
        self,
        endpoint: str,
        request: GatewayMessage,
        response_cls: Type[M],
    ) -> tuple[M, Dict[str, Any]]:
        signed = self.signer.sign(request)
        raw = await self.client.send(endpoint, signed.to_wire())
        response = self._parse(response_cls, raw)

        if (response.type or "").lower() != "valid":
            raise GatewayRejected(
                response.error_code,
                response.error_desc,
                {"endpoint": endpoint},
            )

        self.signer.verify(response_cls, raw)
        return response, raw

    # ──────────────────────────────────────────────────────────────
    # PaymentInit
    # ──────────────────────────────────────────────────────────────

    def build_init_request(
        self,
        order: PaymentOrder,
        history: Optional[BuyerHistory] = None,
    ) -> PaymentInitRequest:
        """Validate ``order`` and build the unsigned PaymentInit request."""
        self.formatter.validate_required_fields(
            {
                "trackid": order.track_id,
                "amt": order.amount,
                "currency": order.currency,
                "responseURL": order.response_url,
                "errorURL": order.error_url,
                "langid": order.language,
            },
            INIT_REQUIRED_FIELDS,
        )
        track_id = self.formatter.format_track_id(order.track_id)
        amount = self.formatter.format_amount(order.amount)
        currency_code = self.formatter.currency_code(order.currency)
        language = self.formatter.validate_language_code(order.language)

        fields: Dict[str, Any] = {
            **self._credentials(),
            "action": ACTION_PURCHASE,
            "currencycode": currency_code,
            "amt": amount,
            "trackid": track_id,
            "responseURL": order.response_url,
            "errorURL": order.error_url,
            "langid": language,
            "notificationFormat": "json",
        }
        fields.update(self.formatter.format_buyer_fields(order.buyer or {}))

        for name in UDF_FIELDS:
            value = (order.udf or {}).get(name)
            if value is not None:
                fields[name] = self.formatter.format_udf(value)

        if self.settings.IPG_THREEDS_ENABLED:
            context = self.threeds_builder.build(history)
            fields.update(ThreeDSContextBuilder.to_wire(context))

        return PaymentInitRequest.model_validate(fields)

    async def initiate(
        self,
        order: PaymentOrder,
        history: Optional[BuyerHistory] = None,
    ) -> PaymentInitResult:
        request = self.build_init_request(order, history)

        logger.info(
            f"[ipg] PaymentInit — trackid={request.track_id}, "
            f"amt={request.amount}, currency={request.currency_code}"
        )

        response, _ = await self._exchange(
            PAYMENT_INIT_ENDPOINT, request, PaymentInitResponse
        )

        if not response.payment_id or not response.browser_redirection_url:
            raise InvalidResponse(
                "PaymentInitResponse without payment id or redirect URL",
                {"track_id": order.track_id},
            )

        redirect_url = with_query_param(
            response.browser_redirection_url, "PaymentID", response.payment_id
        )

        logger.info(
            f"[ipg] PaymentInit accepted — trackid={order.track_id}, "
            f"paymentid={response.payment_id}"
        )
        return PaymentInitResult(payment_id=response.payment_id, redirect_url=redirect_url)

    async def begin_checkout(
        self,
        uow: UnitOfWork,
        checkout: CheckoutRequest,
    ) -> CheckoutResponse:
        """
        Create (or reuse) the order for ``checkout.track_id`` and start the
        gateway payment.

        A repeated submit for an order already awaiting the gateway returns
        the original redirect. GatewayUnreachable leaves the order pending so
        the shopper can retry; any other gateway failure marks it errored.
        """
        track_id = self.formatter.format_track_id(checkout.track_id)
        amount = self.formatter.format_amount(checkout.amount)
        currency = (checkout.currency or "").strip().upper()
        currency_code = self.formatter.currency_code(currency)
        language = self.formatter.validate_language_code(
            checkout.language or self.settings.IPG_DEFAULT_LANGUAGE
        )

        order, created = await uow.orders.save_idempotent(
            track_id=track_id,
            amount=Decimal(amount),
            currency=currency,
            currency_code=currency_code,
            language=language,
            response_url=checkout.response_url or self.settings.IPG_NOTIFICATION_URL,
            error_url=checkout.error_url or self.settings.IPG_ERROR_URL,
            return_url=self.return_url_for(track_id),
            buyer=checkout.buyer.model_dump(mode="json", exclude_none=True),
            udf={
                name: getattr(checkout, name)
                for name in UDF_FIELDS
                if getattr(checkout, name) is not None
            },
            diagnostics={},
        )
        await uow.commit()

        if not created:
            if Decimal(amount) != order.amount or currency != order.currency:
                raise InvalidOrderState(
                    "Order already exists with a different amount or currency",
                    {"track_id": track_id},
                )
            if order.result == OrderResult.AWAITING_GATEWAY_RESULT and order.payment_id:
                logger.info(f"[ipg] checkout resubmitted — trackid={track_id}")
                return CheckoutResponse(
                    track_id=track_id,
                    payment_id=order.payment_id,
                    redirect_url=(order.diagnostics or {}).get("redirect_url", ""),
                    status=order.status,
                )
            if order.result != OrderResult.PENDING:
                raise InvalidOrderState(
                    f"Order is already {order.status}",
                    {"track_id": track_id, "status": order.status},
                )

        try:
            result = await self.initiate(order, checkout.history)
        except GatewayUnreachable:
            logger.warning(
                f"[ipg] gateway unreachable during PaymentInit — trackid={track_id}, "
                f"order left pending"
            )
            raise
        except (GatewayRejected, InvalidResponse, InvalidSignature) as e:
            await self._mark_errored(uow, order, e)
            raise

        attached = await uow.orders.attach_payment(order, result.payment_id, self._clock())
        if not attached:
            await uow.rollback()
            raise InvalidOrderState(
                "Order changed while the payment was being initialised",
                {"track_id": track_id},
            )
        await uow.orders.attach_meta(order, "redirect_url", result.redirect_url)
        await uow.commit()

        return CheckoutResponse(
            track_id=track_id,
            payment_id=result.payment_id,
            redirect_url=result.redirect_url,
            status=OrderResult.AWAITING_GATEWAY_RESULT.value,
        )

    async def _mark_errored(
        self, uow: UnitOfWork, order: PaymentOrder, error: AppException
    ) -> None:
        diagnostics: Dict[str, Any] = {
            "error_code": error.error_code,
            "error_message": error.message,
        }
        if isinstance(error, GatewayRejected):
            diagnostics["gateway_error_code"] = error.gateway_error_code
            diagnostics["gateway_error_desc"] = error.gateway_error_desc

        await uow.orders.transition(
            order,
            (OrderResult.PENDING,),
            OrderResult.ERRORED,
            diagnostics=diagnostics,
            completed_at=self._clock(),
        )
        await uow.commit()
        logger.error(
            f"[ipg] PaymentInit failed — trackid={order.track_id}, "
            f"error={error.error_code}: {error.message}"
        )

    # ──────────────────────────────────────────────────────────────
    # Refund
    # ──────────────────────────────────────────────────────────────

    async def refund(
        self,
        uow: UnitOfWork,
        order: PaymentOrder,
        amount: Any,
    ) -> RefundResponse:
        """
        Refund all or part of a captured order via FinancialRequest
        (action 2). The order stays captured; refunds are recorded in its
        diagnostics.
        """
        if order.result != OrderResult.CAPTURED or not order.payment_id:
            raise InvalidOrderState(
                "Only captured orders can be refunded",
                {"track_id": order.track_id, "status": order.status},
            )

        refund_amount = self.formatter.format_amount(amount)
        refunds = list((order.diagnostics or {}).get("refunds", []))
        already_refunded = sum((Decimal(r["amount"]) for r in refunds), Decimal("0"))
        if Decimal(refund_amount) + already_refunded > order.amount:
            raise InvalidAmount(
                "Refund exceeds the captured amount.",
                {
                    "amount": refund_amount,
                    "refunded": f"{already_refunded:.2f}",
                    "captured": f"{order.amount:.2f}",
                },
            )

        request = FinancialRequest.model_validate(
            {
                **self._credentials(),
                "action": ACTION_REFUND,
                "amt": refund_amount,
                "currencycode": order.currency_code,
                "paymentid": order.payment_id,
                "trackid": order.track_id,
                "udf1": (order.udf or {}).get("udf1"),
                "udf5": (order.udf or {}).get("udf5"),
            }
        )

        logger.info(
            f"[ipg] refund — trackid={order.track_id}, paymentid={order.payment_id}, "
            f"amt={refund_amount}"
        )
        response, _ = await self._exchange(FINANCIAL_ENDPOINT, request, FinancialResponse)

        if not is_approved(response.result):
            raise GatewayRejected(
                response.response_code or response.result,
                response.result,
                {"track_id": order.track_id},
            )

        refunds.append(
            {
                "amount": refund_amount,
                "transaction_id": response.transaction_id,
                "result": response.result,
                "at": self._clock().isoformat(),
            }
        )
        await uow.orders.attach_meta(order, "refunds", refunds)
        await uow.commit()

        return RefundResponse(
            track_id=order.track_id,
            payment_id=order.payment_id,
            transaction_id=response.transaction_id,
            refunded_amount=refund_amount,
            result=response.result,
            response_code=response.response_code,
        )

    # ──────────────────────────────────────────────────────────────
    # Query
    # ──────────────────────────────────────────────────────────────

    async def query(self, order: PaymentOrder) -> PaymentQueryResult:
        if not order.payment_id:
            raise MissingField("paymentid", "Order has no gateway payment id yet")

        request = PaymentQueryRequest.model_validate(
            {**self._credentials(), "paymentid": order.payment_id}
        )
        response, raw = await self._exchange(
            PAYMENT_QUERY_ENDPOINT, request, PaymentQueryResponse
        )

        threeds = parse_authentication_result(raw)
        return PaymentQueryResult(
            payment_id=response.payment_id or order.payment_id,
            track_id=response.track_id,
            status=response.status,
            status_description=status_description(response.status),
            amount=response.amount,
            transactions=parse_transaction_rows(response.rows),
            threeds=threeds.model_dump() if threeds else None,
            risk_score=response.risk_score,
            risk_level=response.risk_level,
        )
