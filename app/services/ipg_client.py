"""
HTTP transport to the IPG servlet.

Posts JSON to ``{IPG_API_URL}/<endpoint>`` and hands back the decoded body.
Network failures and 5xx answers become GatewayUnreachable; a 4xx or
anything that is not a JSON object becomes InvalidResponse. Signing and
verification happen above this layer.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import httpx

from app.core.config import Settings
from app.core.exceptions import GatewayUnreachable, InvalidResponse
from app.core.logging import mask_sensitive_data

logger = logging.getLogger(__name__)

PAYMENT_INIT_ENDPOINT = "PaymentInitRequest"
FINANCIAL_ENDPOINT = "FinancialRequest"
PAYMENT_QUERY_ENDPOINT = "PaymentQueryRequest"


class IpgClient:
    def __init__(
        self,
        settings: Settings,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = settings.IPG_API_URL
        self.timeout = settings.IPG_TIMEOUT_SECONDS
        self._transport = transport

    async def send(self, endpoint: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        url = f"{self.base_url}/{endpoint}"
        logger.info(f"[ipg] POST /{endpoint} — {mask_sensitive_data(payload)}")

        try:
            async with httpx.AsyncClient(
                timeout=self.timeout, transport=self._transport
            ) as http_client:
                resp = await http_client.post(
                    url,
                    json=payload,
                    headers={
                        "Content-Type": "application/json",
                        "Accept": "application/json",
                    },
                )
        except httpx.TimeoutException as e:
            logger.error(f"[ipg] POST /{endpoint} timed out: {e}")
            raise GatewayUnreachable(
                "Payment gateway timed out", {"endpoint": endpoint}
            ) from e
        except httpx.TransportError as e:
            logger.error(f"[ipg] POST /{endpoint} transport error: {e}")
            raise GatewayUnreachable(
                "Payment gateway unreachable", {"endpoint": endpoint}
            ) from e

        text = resp.text
        if resp.status_code >= 500:
            logger.error(
                f"[ipg] POST /{endpoint} — HTTP {resp.status_code}: {text[:500]}"
            )
            raise GatewayUnreachable(
                f"Payment gateway unavailable (HTTP {resp.status_code})",
                {"endpoint": endpoint, "http_status": resp.status_code},
            )
        if resp.status_code >= 400:
            logger.error(
                f"[ipg] POST /{endpoint} — HTTP {resp.status_code}: {text[:500]}"
            )
            raise InvalidResponse(
                f"Gateway returned HTTP {resp.status_code}",
                {"endpoint": endpoint, "http_status": resp.status_code},
            )

        try:
            parsed = resp.json()
        except ValueError as e:
            logger.error(f"[ipg] POST /{endpoint} non-JSON response: {text[:500]}")
            raise InvalidResponse(
                "Gateway returned a non-JSON response", {"endpoint": endpoint}
            ) from e

        if not isinstance(parsed, dict):
            logger.error(f"[ipg] POST /{endpoint} unexpected body: {text[:500]}")
            raise InvalidResponse(
                "Gateway returned an unexpected response", {"endpoint": endpoint}
            )

        logger.info(
            f"[ipg] POST /{endpoint} — HTTP {resp.status_code}, "
            f"type={parsed.get('type', 'N/A')}, msgName={parsed.get('msgName', 'N/A')}"
        )
        return parsed
