"""Best-effort notifications about scheduled executions."""

from abc import ABC, abstractmethod
from typing import Dict, Optional

import httpx
import structlog

from flow_scheduler.scheduler.base import ScheduledExecutionResult


logger = structlog.get_logger(__name__)


class NotificationSink(ABC):
    """Base class for notification destinations.

    Implementations must not raise; delivery problems are logged.
    """

    @abstractmethod
    async def notify(self, event: str, result: ScheduledExecutionResult) -> bool:
        """Deliver one notification. Returns whether it was delivered."""
        pass


class WebhookNotifier(NotificationSink):
    """Post execution notifications to a webhook endpoint."""

    def __init__(
        self,
        url: str,
        headers: Optional[Dict[str, str]] = None,
        timeout: float = 10.0
    ):
        self.url = url
        self.headers = headers or {}
        self.timeout = timeout

    async def notify(self, event: str, result: ScheduledExecutionResult) -> bool:
        """Send notification via webhook."""
        payload = {"event": event, "result": result.to_dict()}

        async with httpx.AsyncClient() as client:
            try:
                response = await client.post(
                    self.url,
                    json=payload,
                    headers=self.headers,
                    timeout=self.timeout
                )
                response.raise_for_status()

                logger.debug(
                    "notification_sent",
                    notification_event=event,
                    execution_id=result.execution_id,
                    url=self.url,
                    status=response.status_code
                )
                return True

            except httpx.HTTPError as e:
                logger.warning(
                    "notification_failed",
                    notification_event=event,
                    execution_id=result.execution_id,
                    url=self.url,
                    error=str(e)
                )
                return False
