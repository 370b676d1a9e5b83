"""
Custom exception hierarchy for the IPG payment service.

All application-level exceptions inherit from AppException so they can be
caught by a single global handler. Declined payments are not exceptions;
they are a normal order result.
"""


class AppException(Exception):
    """Base for all app exceptions."""

    def __init__(
        self,
        status_code: int,
        error_code: str,
        message: str,
        details: dict | None = None,
    ):
        self.status_code = status_code
        self.error_code = error_code
        self.message = message
        self.details = details or {}
        super().__init__(message)


# ── Validation ──


class InvalidAmount(AppException):
    """Amount is not numeric, not positive, too precise or too large."""

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(
            status_code=400,
            error_code="INVALID_AMOUNT",
            message=message,
            details=details,
        )


class UnsupportedCurrency(AppException):
    def __init__(self, currency: str):
        super().__init__(
            status_code=400,
            error_code="UNSUPPORTED_CURRENCY",
            message=f"Unsupported currency: {currency}",
            details={"currency": currency},
        )


class MissingField(AppException):
    def __init__(self, field: str, message: str | None = None):
        super().__init__(
            status_code=400,
            error_code="MISSING_FIELD",
            message=message or f"Required field missing: {field}",
            details={"field": field},
        )


# ── Security ──


class InvalidSignature(AppException):
    """
    Raised when a message verifier does not match.

    The message is generic and never includes the expected
    verifier.
    """

    def __init__(self, msg_name: str | None = None):
        super().__init__(
            status_code=400,
            error_code="INVALID_SIGNATURE",
            message="Invalid message signature",
            details={"msg_name": msg_name} if msg_name else None,
        )


class PaymentIdMismatch(AppException):
    def __init__(self, track_id: str):
        super().__init__(
            status_code=400,
            error_code="PAYMENT_ID_MISMATCH",
            message="Notification does not match the stored payment",
            details={"track_id": track_id},
        )


# ── Orders ──


class OrderNotFound(AppException):
    def __init__(self, track_id: str):
        super().__init__(
            status_code=404,
            error_code="ORDER_NOT_FOUND",
            message="Order not found",
            details={"track_id": track_id},
        )


class InvalidOrderState(AppException):
    def __init__(self, message: str, details: dict | None = None):
        super().__init__(
            status_code=409,
            error_code="INVALID_ORDER_STATE",
            message=message,
            details=details,
        )


# ── Gateway ──


class GatewayRejected(AppException):
    """The gateway answered, but not with a valid result. Codes are verbatim."""

    def __init__(
        self,
        error_code: str | None,
        error_desc: str | None,
        details: dict | None = None,
    ):
        self.gateway_error_code = error_code or ""
        self.gateway_error_desc = error_desc or ""
        super().__init__(
            status_code=502,
            error_code="GATEWAY_REJECTED",
            message=f"Gateway rejected request: {self.gateway_error_code} {self.gateway_error_desc}".strip(),
            details={
                "gateway_error_code": self.gateway_error_code,
                "gateway_error_desc": self.gateway_error_desc,
                **(details or {}),
            },
        )


class GatewayUnreachable(AppException):
    """
    Network failure or timeout talking to the gateway.

    Retryable by the caller. The request may have succeeded on the gateway
    side, so the order must not be marked failed.
    """

    retryable = True

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(
            status_code=503,
            error_code="GATEWAY_UNREACHABLE",
            message=message,
            details=details,
        )


class InvalidResponse(AppException):
    """The gateway response body was not the JSON we expect."""

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(
            status_code=502,
            error_code="INVALID_RESPONSE",
            message=message,
            details=details,
        )


class ExternalServiceError(AppException):
    """Raised when a non-gateway external call (Slack) fails."""

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(
            status_code=502,
            error_code="EXTERNAL_SERVICE_ERROR",
            message=message,
            details=details,
        )
