"""
Message verifier for IPG messages.

msgVerifier = Base64(SHA-256(strip_whitespace(concat(fields))))

where ``fields`` is the message type's ``VERIFIER_FIELDS`` in order, missing
values contributing an empty string and ``secretKey`` taken from
configuration. The raw 32-byte digest is encoded, not its hex form.
"""

from __future__ import annotations

import base64
import hashlib
import hmac
import logging
import re
from typing import Any, Mapping, Sequence, Type

from app.core.exceptions import InvalidSignature
from app.schemas.ipg import GatewayMessage

logger = logging.getLogger(__name__)

SECRET_KEY_FIELD = "secretKey"
VERIFIER_FIELD = "msgVerifier"
WHITESPACE_RE = re.compile(r"\s+")


def compute_verifier(values: Sequence[str]) -> str:
    base = WHITESPACE_RE.sub("", "".join(values))
    digest = hashlib.sha256(base.encode("utf-8")).digest()
    return base64.b64encode(digest).decode("ascii")


def _wire_value(value: Any) -> str:
    if value is None:
        return ""
    return str(value)


class MessageSigner:
    def __init__(self, secret_key: str):
        self._secret_key = secret_key

    def verifier_values(
        self,
        fields: Sequence[str],
        payload: Mapping[str, Any],
    ) -> list[str]:
        return [
            self._secret_key if name == SECRET_KEY_FIELD else _wire_value(payload.get(name))
            for name in fields
        ]

    def sign_payload(self, fields: Sequence[str], payload: Mapping[str, Any]) -> str:
        return compute_verifier(self.verifier_values(fields, payload))

    def sign(self, message: GatewayMessage) -> GatewayMessage:
        """Return a copy of ``message`` with ``msgVerifier`` set."""
        wire = message.to_wire()
        verifier = self.sign_payload(type(message).VERIFIER_FIELDS, wire)

        logger.debug("[ipg] signed %s", message.msg_name)
        return message.model_copy(update={"msg_verifier": verifier})

    def verify_payload(
        self,
        fields: Sequence[str],
        payload: Mapping[str, Any],
    ) -> bool:
        received = payload.get(VERIFIER_FIELD)
        if not isinstance(received, str) or not received:
            return False
        expected = self.sign_payload(fields, payload)
        return hmac.compare_digest(
            expected.encode("ascii"), received.strip().encode("utf-8")
        )

    def verify(
        self,
        message_cls: Type[GatewayMessage],
        payload: Mapping[str, Any],
    ) -> None:
        """
        Check ``payload`` (raw wire dict) against ``message_cls``'s verifier
        fields. Raises InvalidSignature on any mismatch.
        """
        if not self.verify_payload(message_cls.VERIFIER_FIELDS, payload):
            msg_name = message_cls.model_fields["msg_name"].default
            logger.warning(
                "[ipg] message verifier mismatch — msgName=%s, paymentid=%s, trackid=%s",
                payload.get("msgName") or msg_name,
                payload.get("paymentid") or payload.get("paymentID"),
                payload.get("trackid"),
            )
            raise InvalidSignature(msg_name)
