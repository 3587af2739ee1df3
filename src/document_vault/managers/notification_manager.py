"""
Invitation notifications.

Delivery is fire-and-forget: `NotificationManager.dispatch` schedules a background task and
returns immediately, and a failed delivery is logged without affecting the request that
triggered it. With `INVITATION_WEBHOOK_URL` set, events are POSTed as JSON with `httpx`;
otherwise they are only logged.
"""

import asyncio
from typing import Any, Dict, Optional, Protocol, Set

import httpx

from document_vault.config import settings
from document_vault.managers.logging_manager import get_logger

logger = get_logger(prefix="[Notifications]")


class InvitationNotifier(Protocol):
    async def notify(self, event: str, payload: Dict[str, Any]) -> None:
        ...


class LoggingNotifier:
    async def notify(self, event: str, payload: Dict[str, Any]) -> None:
        logger.info("Notification %s for %s", event, payload.get("email"), extra={"event": event})


class WebhookNotifier:
    def __init__(self, url: str, timeout: float = None):
        self.url = url
        self.timeout = timeout or settings.NOTIFIER_TIMEOUT_SECONDS

    async def notify(self, event: str, payload: Dict[str, Any]) -> None:
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            response = await client.post(self.url, json={"event": event, "data": payload})
            response.raise_for_status()


def build_default_notifier() -> InvitationNotifier:
    if settings.INVITATION_WEBHOOK_URL:
        return WebhookNotifier(settings.INVITATION_WEBHOOK_URL)
    return LoggingNotifier()


class NotificationManager:
    def __init__(self, notifier: Optional[InvitationNotifier] = None):
        self.notifier = notifier or build_default_notifier()
        self._tasks: Set[asyncio.Task] = set()

    def dispatch(self, event: str, payload: Dict[str, Any]) -> None:
        task = asyncio.create_task(self._deliver(event, payload))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _deliver(self, event: str, payload: Dict[str, Any]) -> None:
        try:
            await self.notifier.notify(event, payload)
        except Exception as e:
            logger.warning(
                "Failed to deliver %s notification: %s",
                event,
                e,
                extra={"event": event, "group_id": payload.get("group_id")},
            )

    async def drain(self) -> None:
        """Wait for in-flight deliveries (used on shutdown)."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)


notification_manager = NotificationManager()
