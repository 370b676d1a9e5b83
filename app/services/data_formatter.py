"""
Field normalisation for IPG wire messages.

Every value placed in a signed message goes through here first so the
verifier is computed over exactly what the gateway receives.
"""

import re
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Iterable, Optional

from app.core.exceptions import InvalidAmount, MissingField, UnsupportedCurrency

MAX_AMOUNT = Decimal("9999999999.99")
TWO_PLACES = Decimal("0.01")

# ISO-4217 alpha → numeric, limited to what the acquirer settles.
CURRENCY_CODES: Dict[str, str] = {
    "EUR": "978",
    "USD": "840",
    "GBP": "826",
    "BAM": "977",
}

# HPP languages, both the 2-letter and the legacy 3-letter forms.
SUPPORTED_LANGUAGES = frozenset(
    {
        "EN", "USA",
        "SR", "SRB",
        "BS", "BIH",
        "HR", "HRV",
        "DE", "DEU",
        "IT", "ITA",
        "FR", "FRA",
        "ES", "ESP",
        "RU", "RUS",
        "SL", "SLO",
        "MK", "MKD",
    }
)

FIELD_LENGTHS: Dict[str, int] = {
    "phone": 20,
    "email": 255,
    "name": 50,
    "user_id": 50,
    "udf": 255,
    "track_id": 255,
}

EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


class DataFormatter:
    def __init__(self, default_language: str = "EN"):
        self.default_language = default_language.upper()

    @staticmethod
    def format_amount(value: Any) -> str:
        """
        Format an amount as a plain two-decimal string.

        Amounts with more than two fractional digits are rejected rather than
        rounded: a silently rounded amount would be signed and charged as
        something the shopper never saw.
        """
        if value is None or isinstance(value, bool):
            raise InvalidAmount("Invalid amount format.", {"amount": value})

        raw = value
        if isinstance(value, str):
            raw = value.replace(",", "").replace(" ", "")
        elif isinstance(value, float):
            raw = repr(value)

        try:
            amount = Decimal(raw) if not isinstance(raw, Decimal) else raw
        except (InvalidOperation, ValueError, TypeError):
            raise InvalidAmount("Invalid amount format.", {"amount": value})

        if not amount.is_finite():
            raise InvalidAmount("Invalid amount format.", {"amount": value})
        if amount <= 0:
            raise InvalidAmount("Amount must be greater than zero.", {"amount": value})
        if amount > MAX_AMOUNT:
            raise InvalidAmount(
                "Amount exceeds maximum allowed value.", {"amount": value}
            )
        if amount != amount.quantize(TWO_PLACES):
            raise InvalidAmount(
                "Amount has more than two decimal places.", {"amount": value}
            )

        return f"{amount.quantize(TWO_PLACES):f}"

    @staticmethod
    def currency_code(iso_alpha: str) -> str:
        currency = (iso_alpha or "").strip().upper()
        code = CURRENCY_CODES.get(currency)
        if code is None:
            raise UnsupportedCurrency(currency)
        return code

    @staticmethod
    def format_phone(raw: Optional[str]) -> Optional[str]:
        if not raw:
            return None

        digits = re.sub(r"[^0-9+]", "", raw)
        leading_plus = digits.startswith("+")
        digits = digits.replace("+", "")
        formatted = f"+{digits}" if leading_plus else digits
        formatted = formatted[: FIELD_LENGTHS["phone"]]

        return formatted if formatted.strip("+") else None

    @staticmethod
    def format_email(raw: Optional[str]) -> Optional[str]:
        if not raw:
            return None
        email = raw.strip()
        if not EMAIL_RE.match(email):
            return None
        return email[: FIELD_LENGTHS["email"]]

    def validate_language_code(self, raw: Optional[str]) -> str:
        """Language only affects HPP presentation, so fall back instead of failing."""
        code = (raw or "").strip().upper()
        code = re.split(r"[_\-]", code, maxsplit=1)[0]
        if code in SUPPORTED_LANGUAGES:
            return code
        return self.default_language

    @staticmethod
    def format_track_id(raw: Optional[str]) -> str:
        track_id = (raw or "").strip()
        if not track_id:
            raise MissingField("trackid")
        if len(track_id) > FIELD_LENGTHS["track_id"]:
            raise MissingField(
                "trackid",
                f"Track id exceeds {FIELD_LENGTHS['track_id']} characters",
            )
        return track_id

    @staticmethod
    def format_udf(raw: Any) -> str:
        if raw is None:
            return ""
        return str(raw)[: FIELD_LENGTHS["udf"]]

    def format_buyer_fields(self, buyer: Dict[str, Any]) -> Dict[str, str]:
        """Map buyer details to PaymentInit buyer fields, dropping empties."""
        fields = {
            "buyerFirstName": (buyer.get("first_name") or "").strip()[: FIELD_LENGTHS["name"]],
            "buyerLastName": (buyer.get("last_name") or "").strip()[: FIELD_LENGTHS["name"]],
            "buyerPhoneNumber": self.format_phone(buyer.get("phone")),
            "buyerEmailAddress": self.format_email(buyer.get("email")),
            "buyerUserId": (str(buyer.get("user_id") or "")).strip()[: FIELD_LENGTHS["user_id"]],
        }
        return {k: v for k, v in fields.items() if v}

    @staticmethod
    def validate_required_fields(data: Dict[str, Any], fields: Iterable[str]) -> None:
        for field in fields:
            value = data.get(field)
            if value is None or (isinstance(value, str) and not value.strip()):
                raise MissingField(field)
