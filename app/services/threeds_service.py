"""
3-D Secure risk context for PaymentInit.

Turns buyer/account history into the EMV 3DS categorical indicators the
issuer uses to decide between a frictionless flow and a challenge. Pure:
no I/O, no writes.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any, Dict, Mapping, Optional, Sequence

from app.core.clock import Clock, as_utc, utc_now
from app.schemas.threeds import (
    BuyerHistory,
    ThreeDSContext,
    ThreeDSResult,
    TransactionActivity,
)

PAYMENT_INSTRUMENT_3DS = "VPAS"
NO_HISTORY = "01"

# Codes per bucket: [<1 day, <30 days, <60 days, >=60 days]
ACCOUNT_AGE_CODES = ("02", "03", "04", "05")
ACCOUNT_CHANGE_CODES = ("01", "02", "03", "04")
PASSWORD_CHANGE_CODES = ("02", "03", "04", "05")
SHIPPING_ADDRESS_USAGE_CODES = ("01", "02", "03", "04")
PAYMENT_ACCOUNT_CODES = ("02", "03", "04", "05")

AUTH_METHOD_CODES: Dict[str, str] = {
    "merchant_credentials": "02",
    "federated": "03",
    "issuer_credentials": "04",
    "third_party": "05",
    "fido": "06",
    "fido_signed": "07",
    "src": "08",
}

PRIOR_AUTH_METHOD_CODES: Dict[str, str] = {
    "frictionless": "01",
    "challenge": "02",
    "avs": "03",
    "other": "04",
}


def _days_since(moment: datetime, now: datetime) -> float:
    return (now - as_utc(moment)).total_seconds() / 86400


def _bucket(moment: Optional[datetime], now: datetime, codes: Sequence[str]) -> str:
    if moment is None:
        return NO_HISTORY
    days = _days_since(moment, now)
    if days < 1:
        return codes[0]
    if days < 30:
        return codes[1]
    if days < 60:
        return codes[2]
    return codes[3]


def _ymd(moment: Optional[datetime]) -> Optional[str]:
    return as_utc(moment).strftime("%Y%m%d") if moment else None


def _ymdhm(moment: Optional[datetime]) -> Optional[str]:
    return as_utc(moment).strftime("%Y%m%d%H%M") if moment else None


class ThreeDSContextBuilder:
    def __init__(self, clock: Clock = utc_now):
        self._clock = clock

    def build(
        self,
        history: Optional[BuyerHistory],
        now: Optional[datetime] = None,
    ) -> ThreeDSContext:
        if history is None or history.is_guest:
            return self._guest_context()

        now = as_utc(now) if now is not None else self._clock()

        return ThreeDSContext(
            account_age_indicator=_bucket(history.registered_at, now, ACCOUNT_AGE_CODES),
            account_date=_ymd(history.registered_at),
            account_change_indicator=_bucket(
                history.profile_changed_at, now, ACCOUNT_CHANGE_CODES
            ),
            account_change_date=_ymd(history.profile_changed_at),
            password_change_indicator=_bucket(
                history.password_changed_at, now, PASSWORD_CHANGE_CODES
            ),
            password_change_date=_ymd(history.password_changed_at),
            payment_account_indicator=_bucket(
                history.payment_method_added_at, now, PAYMENT_ACCOUNT_CODES
            ),
            payment_account_date=_ymd(history.payment_method_added_at),
            transaction_activity=self._activity(history.completed_order_dates, now),
            shipping_address_usage_indicator=_bucket(
                history.shipping_address_first_used_at, now, SHIPPING_ADDRESS_USAGE_CODES
            ),
            shipping_address_usage_date=_ymd(history.shipping_address_first_used_at),
            suspicious_activity_flag="02" if history.suspicious_activity else "01",
            authentication_method=AUTH_METHOD_CODES.get(history.auth_method or "", NO_HISTORY),
            authentication_timestamp=_ymdhm(history.auth_timestamp),
            authentication_data=history.auth_data,
            prior_authentication_method=PRIOR_AUTH_METHOD_CODES.get(
                history.prior_auth_method or ""
            ),
            prior_authentication_ref=(
                history.prior_auth_ref if history.prior_auth_method else None
            ),
            prior_authentication_timestamp=(
                _ymdhm(history.prior_auth_timestamp) if history.prior_auth_method else None
            ),
            prior_authentication_data=(
                history.prior_auth_data if history.prior_auth_method else None
            ),
        )

    @staticmethod
    def _guest_context() -> ThreeDSContext:
        return ThreeDSContext(
            account_age_indicator=NO_HISTORY,
            payment_account_indicator=NO_HISTORY,
            suspicious_activity_flag="01",
            authentication_method=NO_HISTORY,
        )

    @staticmethod
    def _activity(order_dates: Sequence[datetime], now: datetime) -> TransactionActivity:
        day_ago = now - timedelta(hours=24)
        year_ago = now - timedelta(days=365)
        six_months_ago = now - timedelta(days=182)

        dates = [as_utc(d) for d in order_dates]
        return TransactionActivity(
            last_day=sum(1 for d in dates if day_ago < d <= now),
            last_year=sum(1 for d in dates if year_ago < d <= now),
            last_six_months=sum(1 for d in dates if six_months_ago < d <= now),
        )

    @staticmethod
    def to_wire(context: ThreeDSContext) -> Dict[str, Any]:
        return {
            "payinst": PAYMENT_INSTRUMENT_3DS,
            "acctInfo": context.acct_info(),
            "threeDSRequestorAuthenticationInfo": context.authentication_info(),
            "threeDSRequestorPriorAuthenticationInfo": context.prior_authentication_info(),
        }


def parse_authentication_result(payload: Mapping[str, Any]) -> Optional[ThreeDSResult]:
    """
    Extract the 3DS outcome (ECI, CAVV, XID, liability shift) from a
    notification or query response. Returns None when the gateway did not
    report one.
    """
    liability = payload.get("liability")
    if liability is None:
        return None

    return ThreeDSResult(
        liability_shift=str(liability).upper() == "Y",
        eci=payload.get("eci") or None,
        cavv=payload.get("cavv") or None,
        xid=payload.get("xid") or None,
        payinst=payload.get("payinst") or None,
    )
