import logging
from typing import Any
from datetime import datetime, timezone

import httpx

from app.core.exceptions import ExternalServiceError

logger = logging.getLogger(__name__)


class SlackService:
    def __init__(
        self,
        webhook_url: str,
        environment: str = "development",
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.slack_url = webhook_url
        self.environment = environment
        self._transport = transport

    async def _execute_query(
        self,
        endpoint: str,
        payload: dict[str, Any]
    ) -> dict[str, Any]:

        try:
            async with httpx.AsyncClient(transport=self._transport) as client:
                response = await client.post(
                    endpoint,
                    json=payload,
                    timeout=30.0
                )
                response.raise_for_status()

                # Slack webhooks answer with plain text "ok"
                response_text = response.text.strip()
                return {"status": "ok", "message": response_text or "Message sent"}
        except httpx.HTTPStatusError as e:
            logger.error(f"Slack HTTP error: {e}")
            raise ExternalServiceError(f"Slack API error: {e}") from e
        except httpx.HTTPError as e:
            logger.error(f"Slack transport error: {e}")
            raise ExternalServiceError(f"Slack API error: {e}") from e

    async def send_critical_alert(
        self,
        title: str,
        alert: str,
        platform: str | None = None,
    ) -> dict[str, Any]:
        if not self.slack_url:
            logger.info(f"Slack alerts disabled, not sending: {title}")
            return {"status": "skipped"}

        timestamp = datetime.now(timezone.utc).strftime("%b %d, %Y at %I:%M %p UTC")
        env = self.environment.title()

        detail_blocks: list[dict[str, Any]] = [
            {
                "type": "section",
                "text": {
                    "type": "mrkdwn",
                    "text": alert,
                },
            },
            {"type": "divider"},
        ]

        fields = [
            {"type": "mrkdwn", "text": "*Severity*\n🔴 Critical"},
            {"type": "mrkdwn", "text": f"*Environment*\n{env}"},
        ]
        if platform:
            fields.append({"type": "mrkdwn", "text": f"*Platform*\n{platform}"})
        fields.append({"type": "mrkdwn", "text": f"*Timestamp*\n{timestamp}"})

        detail_blocks.append({"type": "section", "fields": fields})

        payload: dict[str, Any] = {
            "blocks": [
                {
                    "type": "header",
                    "text": {
                        "type": "plain_text",
                        "text": f"🚨  {title}",
                        "emoji": True,
                    },
                },
            ],
            "attachments": [
                {
                    "color": "#E01E5A",
                    "blocks": detail_blocks,
                }
            ],
        }

        return await self._execute_query(
            endpoint=self.slack_url,
            payload=payload,
        )
