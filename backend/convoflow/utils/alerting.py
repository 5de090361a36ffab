# /convoflow/utils/alerting.py

import httpx
import logging
import tenacity
from typing import Optional
from datetime import datetime, timezone

from convoflow.config.settings import settings
from convoflow.services.providers import EscalationSink

# This utility posts human hand-off requests to an external webhook (agent
# inbox, on-call tool...), retrying transient network failures.

logger = logging.getLogger(__name__)

class WebhookEscalationSink(EscalationSink):
    def __init__(self, webhook_url: str, client: Optional[httpx.AsyncClient] = None):
        self.webhook_url = webhook_url
        self.client = client or httpx.AsyncClient(timeout=5.0)

    @tenacity.retry(
        retry=tenacity.retry_if_exception_type((httpx.RequestError, httpx.TimeoutException)),
        stop=tenacity.stop_after_attempt(3),
        wait=tenacity.wait_exponential(multiplier=1, min=0.5, max=5),
        before_sleep=tenacity.before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )
    async def _post(self, payload: dict) -> httpx.Response:
        response = await self.client.post(self.webhook_url, json=payload)
        response.raise_for_status()
        return response

    async def handoff(self, conversation_id: str, department: str, priority: str, reason: str) -> None:
        payload = {
            "type": "conversation_handoff",
            "service": "convoflow",
            "conversation_id": conversation_id,
            "department": department,
            "priority": priority,
            "reason": reason,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "environment": settings.environment,
        }
        await self._post(payload)
        logger.info(f"Hand-off for conversation {conversation_id} posted to escalation webhook.")

    async def cleanup(self):
        await self.client.aclose()
