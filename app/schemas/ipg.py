"""
Pydantic models for IPG gateway messages and the /api/v1/ipg routes.

Each gateway message type is its own model. ``VERIFIER_FIELDS`` is the
ordered list of wire field names hashed into ``msgVerifier``; ``secretKey``
is supplied by the signer and never sent. Empty optional fields still
contribute an empty string, so the lists must not be reordered or pruned.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any, ClassVar, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from app.schemas.threeds import BuyerHistory


# ──────────────────────────────────────────────────────────────────────
#  Gateway wire messages
# ──────────────────────────────────────────────────────────────────────


class GatewayMessage(BaseModel):
    """Base for all signed gateway messages."""

    model_config = ConfigDict(
        populate_by_name=True,
        extra="allow",
        coerce_numbers_to_str=True,
    )

    VERIFIER_FIELDS: ClassVar[tuple[str, ...]] = ()

    msg_name: str = Field(alias="msgName")
    version: str = "1"
    msg_verifier: Optional[str] = Field(None, alias="msgVerifier")

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class PaymentInitRequest(GatewayMessage):
    VERIFIER_FIELDS: ClassVar[tuple[str, ...]] = (
        "msgName", "version", "id", "password", "amt", "trackid",
        "udf1", "secretKey", "udf5",
    )

    msg_name: Literal["PaymentInitRequest"] = Field(
        "PaymentInitRequest", alias="msgName"
    )
    terminal_id: str = Field(alias="id")
    password: str
    action: str = "1"
    currency_code: str = Field(alias="currencycode")
    amount: str = Field(alias="amt")
    track_id: str = Field(alias="trackid")
    response_url: str = Field(alias="responseURL")
    error_url: str = Field(alias="errorURL")
    language: str = Field(alias="langid")
    notification_format: str = Field("json", alias="notificationFormat")
    payinst: Optional[str] = None

    buyer_first_name: Optional[str] = Field(None, alias="buyerFirstName")
    buyer_last_name: Optional[str] = Field(None, alias="buyerLastName")
    buyer_phone_number: Optional[str] = Field(None, alias="buyerPhoneNumber")
    buyer_email_address: Optional[str] = Field(None, alias="buyerEmailAddress")
    buyer_user_id: Optional[str] = Field(None, alias="buyerUserId")

    udf1: Optional[str] = None
    udf2: Optional[str] = None
    udf3: Optional[str] = None
    udf4: Optional[str] = None
    udf5: Optional[str] = None

    acct_info: Optional[Dict[str, Any]] = Field(None, alias="acctInfo")
    threeds_auth_info: Optional[Dict[str, Any]] = Field(
        None, alias="threeDSRequestorAuthenticationInfo"
    )
    threeds_prior_auth_info: Optional[Dict[str, Any]] = Field(
        None, alias="threeDSRequestorPriorAuthenticationInfo"
    )


class PaymentInitResponse(GatewayMessage):
    VERIFIER_FIELDS: ClassVar[tuple[str, ...]] = (
        "msgName", "version", "msgDateTime", "paymentid",
        "browserRedirectionURL", "secretKey",
    )

    msg_name: str = Field("PaymentInitResponse", alias="msgName")
    msg_date_time: Optional[str] = Field(None, alias="msgDateTime")
    type: Optional[str] = None
    payment_id: Optional[str] = Field(None, alias="paymentid")
    browser_redirection_url: Optional[str] = Field(None, alias="browserRedirectionURL")
    error_code: Optional[str] = Field(None, alias="errorCode")
    error_desc: Optional[str] = Field(None, alias="errorDesc")

    @property
    def is_valid(self) -> bool:
        return (self.type or "").lower() == "valid"


class PaymentNotificationRequest(GatewayMessage):
    VERIFIER_FIELDS: ClassVar[tuple[str, ...]] = (
        "msgName", "version", "msgDateTime", "paymentid", "tranid", "amt",
        "trackid", "udf1", "secretKey", "udf5", "result", "responsecode",
    )

    msg_name: str = Field("PaymentNotificationRequest", alias="msgName")
    msg_date_time: Optional[str] = Field(None, alias="msgDateTime")
    payment_id: Optional[str] = Field(None, alias="paymentid")
    track_id: Optional[str] = Field(None, alias="trackid")
    transaction_id: Optional[str] = Field(None, alias="tranid")
    amount: Optional[str] = Field(None, alias="amt")
    result: Optional[str] = None
    response_code: Optional[str] = Field(None, alias="responsecode")
    auth_code: Optional[str] = Field(None, alias="auth")
    card_type: Optional[str] = Field(None, alias="cardtype")
    card_last_four: Optional[str] = Field(None, alias="cardLastFourDigits")
    reference: Optional[str] = Field(None, alias="ref")
    payinst: Optional[str] = None
    liability: Optional[str] = None
    eci: Optional[str] = None
    cavv: Optional[str] = None
    xid: Optional[str] = None
    udf1: Optional[str] = None
    udf5: Optional[str] = None


class PaymentNotificationResponse(GatewayMessage):
    VERIFIER_FIELDS: ClassVar[tuple[str, ...]] = (
        "msgName", "version", "paymentID", "secretKey", "browserRedirectionURL",
    )

    msg_name: Literal["PaymentNotificationResponse"] = Field(
        "PaymentNotificationResponse", alias="msgName"
    )
    payment_id: str = Field(alias="paymentID")
    browser_redirection_url: str = Field(alias="browserRedirectionURL")


class FinancialRequest(GatewayMessage):
    VERIFIER_FIELDS: ClassVar[tuple[str, ...]] = (
        "msgName", "version", "id", "password", "action", "amt", "paymentid",
        "trackid", "udf1", "secretKey", "udf5",
    )

    msg_name: Literal["FinancialRequest"] = Field("FinancialRequest", alias="msgName")
    terminal_id: str = Field(alias="id")
    password: str
    action: str
    amount: str = Field(alias="amt")
    currency_code: str = Field(alias="currencycode")
    payment_id: str = Field(alias="paymentid")
    track_id: str = Field(alias="trackid")
    udf1: Optional[str] = None
    udf5: Optional[str] = None


class FinancialResponse(GatewayMessage):
    VERIFIER_FIELDS: ClassVar[tuple[str, ...]] = (
        "msgName", "version", "msgDateTime", "paymentid", "tranid", "amt",
        "trackid", "udf1", "secretKey", "udf5", "result",
    )

    msg_name: str = Field("FinancialResponse", alias="msgName")
    msg_date_time: Optional[str] = Field(None, alias="msgDateTime")
    type: Optional[str] = None
    payment_id: Optional[str] = Field(None, alias="paymentid")
    transaction_id: Optional[str] = Field(None, alias="tranid")
    track_id: Optional[str] = Field(None, alias="trackid")
    amount: Optional[str] = Field(None, alias="amt")
    result: Optional[str] = None
    response_code: Optional[str] = Field(None, alias="responsecode")
    reference: Optional[str] = Field(None, alias="ref")
    error_code: Optional[str] = Field(None, alias="errorCode")
    error_desc: Optional[str] = Field(None, alias="errorDesc")
    udf1: Optional[str] = None
    udf5: Optional[str] = None


class PaymentQueryRequest(GatewayMessage):
    VERIFIER_FIELDS: ClassVar[tuple[str, ...]] = (
        "msgName", "version", "id", "password", "paymentid", "secretKey",
    )

    msg_name: Literal["PaymentQueryRequest"] = Field(
        "PaymentQueryRequest", alias="msgName"
    )
    terminal_id: str = Field(alias="id")
    password: str
    payment_id: str = Field(alias="paymentid")


class PaymentQueryResponse(GatewayMessage):
    VERIFIER_FIELDS: ClassVar[tuple[str, ...]] = (
        "msgName", "version", "msgDateTime", "paymentid", "amt", "trackid",
        "udf1", "secretKey", "udf5", "status",
    )

    msg_name: str = Field("PaymentQueryResponse", alias="msgName")
    msg_date_time: Optional[str] = Field(None, alias="msgDateTime")
    type: Optional[str] = None
    payment_id: Optional[str] = Field(None, alias="paymentid")
    track_id: Optional[str] = Field(None, alias="trackid")
    amount: Optional[str] = Field(None, alias="amt")
    status: Optional[str] = None
    rows: List[Dict[str, Any]] = Field(default_factory=list, alias="transactions")
    payinst: Optional[str] = None
    liability: Optional[str] = None
    eci: Optional[str] = None
    cavv: Optional[str] = None
    xid: Optional[str] = None
    risk_score: Optional[str] = Field(None, alias="riskScore")
    risk_level: Optional[str] = Field(None, alias="riskLevel")
    error_code: Optional[str] = Field(None, alias="errorCode")
    error_desc: Optional[str] = Field(None, alias="errorDesc")
    udf1: Optional[str] = None
    udf5: Optional[str] = None


# ──────────────────────────────────────────────────────────────────────
#  Service results
# ──────────────────────────────────────────────────────────────────────


class PaymentInitResult(BaseModel):
    payment_id: str
    redirect_url: str


class TransactionRow(BaseModel):
    action: Optional[str] = None
    transaction_id: Optional[str] = None
    timestamp: Optional[str] = None
    amount: Optional[str] = None
    result: Optional[str] = None
    auth_code: Optional[str] = None
    card_type: Optional[str] = None
    response_code: Optional[str] = None
    reference: Optional[str] = None
    udf: Dict[str, str] = {}


class PaymentQueryResult(BaseModel):
    payment_id: str
    track_id: Optional[str] = None
    status: Optional[str] = None
    status_description: Optional[str] = None
    amount: Optional[str] = None
    transactions: List[TransactionRow] = []
    threeds: Optional[Dict[str, Any]] = None
    risk_score: Optional[str] = None
    risk_level: Optional[str] = None


class ReturnOutcome(BaseModel):
    """What the browser-return page shows the shopper."""

    track_id: str
    status: str  # captured, declined, cancelled, errored, processing
    final: bool
    message: str
    payment_id: Optional[str] = None


# ──────────────────────────────────────────────────────────────────────
#  Payment – POST /api/v1/ipg/payment
# ──────────────────────────────────────────────────────────────────────


class BuyerInfo(BaseModel):
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    user_id: Optional[str] = None


class CheckoutRequest(BaseModel):
    """
    Request body for starting an IPG payment for a storefront order.
    URL and language fields fall back to the configured defaults.
    """

    track_id: str
    amount: Decimal
    currency: str = "EUR"
    language: Optional[str] = None
    response_url: Optional[str] = None
    error_url: Optional[str] = None

    buyer: BuyerInfo = BuyerInfo()
    history: Optional[BuyerHistory] = None

    udf1: Optional[str] = None
    udf2: Optional[str] = None
    udf3: Optional[str] = None
    udf4: Optional[str] = None
    udf5: Optional[str] = None


class CheckoutResponse(BaseModel):
    track_id: str
    payment_id: str
    redirect_url: str
    status: str


# ──────────────────────────────────────────────────────────────────────
#  Refund – POST /api/v1/ipg/refund
# ──────────────────────────────────────────────────────────────────────


class RefundRequest(BaseModel):
    track_id: str = Field(..., description="Merchant order track id")
    amount: Decimal = Field(..., description="Amount to refund")


class RefundResponse(BaseModel):
    status: str = "refunded"
    track_id: str
    payment_id: Optional[str] = None
    transaction_id: Optional[str] = None
    refunded_amount: Optional[str] = None
    result: Optional[str] = None
    response_code: Optional[str] = None


# ──────────────────────────────────────────────────────────────────────
#  Reconcile – POST /api/v1/ipg/reconcile
# ──────────────────────────────────────────────────────────────────────


class ReconcileResponse(BaseModel):
    checked: int
    resolved: Dict[str, str] = {}
