from __future__ import annotations

import logging
from typing import Any

import httpx

from ..auth.errors import NotificationFailure
from ..settings import Settings

logger = logging.getLogger(__name__)


class EmailSender:
    """Hands a templated message to the transactional mail API.

    Without a configured API URL the message is logged and treated as sent.
    """

    def __init__(self, settings: Settings, *, transport: httpx.AsyncBaseTransport | None = None) -> None:
        self.api_url = settings.EMAIL_API_URL
        self.api_key = settings.EMAIL_API_KEY
        self.sender = settings.EMAIL_FROM
        self.timeout = settings.HTTP_CLIENT_TIMEOUT
        self._transport = transport

    @property
    def enabled(self) -> bool:
        return bool(self.api_url)

    async def send(self, to_email: str, subject: str, template_id: str, context: dict[str, Any]) -> None:
        if not self.enabled:
            logger.info(
                "Email dry-run",
                extra={"meta": {"template": template_id, "subject": subject, "fields": sorted(context)}},
            )
            return

        payload = {
            "from": self.sender,
            "to": to_email,
            "subject": subject,
            "template": template_id,
            "context": context,
        }
        headers = {"Authorization": f"Bearer {self.api_key}"} if self.api_key else {}
        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            try:
                r = await client.post(self.api_url, json=payload, headers=headers)
                r.raise_for_status()
            except httpx.HTTPStatusError as exc:
                logger.error(
                    "Email send rejected",
                    extra={"meta": {"template": template_id, "status_code": exc.response.status_code}},
                )
                raise NotificationFailure(reason="send_rejected") from exc
            except httpx.HTTPError as exc:
                logger.error("Email send failed: network", extra={"meta": {"template": template_id, "error": str(exc)}})
                raise NotificationFailure(reason="send_network") from exc
        logger.info("Email sent", extra={"meta": {"template": template_id}})
