from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field

AuthMethod = Literal[
    "merchant_credentials",
    "federated",
    "issuer_credentials",
    "third_party",
    "fido",
    "fido_signed",
    "src",
]

PriorAuthMethod = Literal["frictionless", "challenge", "avs", "other"]


class BuyerHistory(BaseModel):
    """
    Buyer/account history supplied by the storefront at checkout.

    ``user_id`` is None for guest checkouts. Every other field is optional;
    missing history maps to the conservative "no history" indicator.
    """

    user_id: Optional[str] = None
    registered_at: Optional[datetime] = None
    profile_changed_at: Optional[datetime] = None
    password_changed_at: Optional[datetime] = None
    payment_method_added_at: Optional[datetime] = None
    shipping_address_first_used_at: Optional[datetime] = None
    completed_order_dates: List[datetime] = Field(default_factory=list)
    suspicious_activity: bool = False

    auth_method: Optional[AuthMethod] = None
    auth_timestamp: Optional[datetime] = None
    auth_data: Optional[str] = None

    prior_auth_method: Optional[PriorAuthMethod] = None
    prior_auth_ref: Optional[str] = None
    prior_auth_timestamp: Optional[datetime] = None
    prior_auth_data: Optional[str] = None

    @property
    def is_guest(self) -> bool:
        return not self.user_id


class TransactionActivity(BaseModel):
    last_day: int = 0
    last_year: int = 0
    last_six_months: int = 0


class ThreeDSContext(BaseModel):
    """3-D Secure risk indicators folded into the PaymentInit request."""

    account_age_indicator: str
    account_date: Optional[str] = None
    account_change_indicator: Optional[str] = None
    account_change_date: Optional[str] = None
    password_change_indicator: Optional[str] = None
    password_change_date: Optional[str] = None
    payment_account_indicator: Optional[str] = None
    payment_account_date: Optional[str] = None
    transaction_activity: Optional[TransactionActivity] = None
    shipping_address_usage_indicator: Optional[str] = None
    shipping_address_usage_date: Optional[str] = None
    suspicious_activity_flag: str = "01"

    authentication_method: str = "01"
    authentication_timestamp: Optional[str] = None
    authentication_data: Optional[str] = None

    prior_authentication_method: Optional[str] = None
    prior_authentication_ref: Optional[str] = None
    prior_authentication_timestamp: Optional[str] = None
    prior_authentication_data: Optional[str] = None

    def acct_info(self) -> Dict[str, Any]:
        info: Dict[str, Any] = {
            "chAccAgeInd": self.account_age_indicator,
            "chAccDate": self.account_date,
            "chAccChangeInd": self.account_change_indicator,
            "chAccChange": self.account_change_date,
            "chAccPwChangeInd": self.password_change_indicator,
            "chAccPwChange": self.password_change_date,
            "paymentAccInd": self.payment_account_indicator,
            "paymentAccAge": self.payment_account_date,
            "shipAddressUsageInd": self.shipping_address_usage_indicator,
            "shipAddressUsage": self.shipping_address_usage_date,
            "suspiciousAccActivity": self.suspicious_activity_flag,
        }
        if self.transaction_activity is not None:
            info["txnActivityDay"] = str(self.transaction_activity.last_day)
            info["txnActivityYear"] = str(self.transaction_activity.last_year)
            info["nbPurchaseAccount"] = str(self.transaction_activity.last_six_months)
        return {k: v for k, v in info.items() if v is not None}

    def authentication_info(self) -> Dict[str, Any]:
        info = {
            "threeDSReqAuthMethod": self.authentication_method,
            "threeDSReqAuthTimestamp": self.authentication_timestamp,
            "threeDSReqAuthData": self.authentication_data,
        }
        return {k: v for k, v in info.items() if v is not None}

    def prior_authentication_info(self) -> Dict[str, Any]:
        info = {
            "threeDSReqPriorAuthMethod": self.prior_authentication_method,
            "threeDSReqPriorRef": self.prior_authentication_ref,
            "threeDSReqPriorAuthTimestamp": self.prior_authentication_timestamp,
            "threeDSReqPriorAuthData": self.prior_authentication_data,
        }
        return {k: v for k, v in info.items() if v is not None}


class ThreeDSResult(BaseModel):
    """Authentication outcome reported back by the gateway."""

    liability_shift: bool
    eci: Optional[str] = None
    cavv: Optional[str] = None
    xid: Optional[str] = None
    payinst: Optional[str] = None
