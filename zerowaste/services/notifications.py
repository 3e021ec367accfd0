# zerowaste/services/notifications.py
import hashlib
import hmac
import json
import logging
from typing import Any, Dict, Iterable, Optional, Protocol

import httpx

from zerowaste.core.clock import Clock, utcnow
from zerowaste.core.errors import DependencyError
from zerowaste.models.schemas import Notification, NotificationType

logger = logging.getLogger(__name__)


class NotificationDispatcher(Protocol):
    async def notify(self, user_id: str, message: str, type_: NotificationType,
                     related_id: Optional[str] = None) -> None: ...


class StoredNotifier:
    """In-app notifications kept in the repository."""

    def __init__(self, repo, clock: Clock = utcnow):
        self.repo = repo
        self.clock = clock

    async def notify(self, user_id, message, type_, related_id=None):
        await self.repo.insert_notification(Notification(
            user_id=user_id,
            message=message,
            type=type_,
            related_id=related_id,
            created_at=self.clock(),
        ))


def sign(body: Dict[str, Any], secret: str) -> str:
    msg = json.dumps(body, separators=(",", ":"), sort_keys=True).encode()
    return hmac.new(secret.encode(), msg, hashlib.sha256).hexdigest()


class WebhookNotifier:
    """POSTs each notification to a webhook, signed with HMAC-SHA256."""

    def __init__(self, url: str, secret: str, clock: Clock = utcnow,
                 client: Optional[httpx.AsyncClient] = None):
        self.url = url
        self.secret = secret
        self.clock = clock
        self._client = client

    async def notify(self, user_id, message, type_, related_id=None):
        body = {
            "type": NotificationType(type_).value,
            "user_id": user_id,
            "message": message,
            "related_id": related_id,
            "created_at": self.clock().isoformat(),
        }
        headers = {
            "Content-Type": "application/json",
            "X-ZeroWaste-Signature": sign(body, self.secret),
        }
        try:
            if self._client is not None:
                r = await self._client.post(self.url, json=body, headers=headers)
            else:
                timeout = httpx.Timeout(10.0, connect=5.0)
                async with httpx.AsyncClient(timeout=timeout) as client:
                    r = await client.post(self.url, json=body, headers=headers)
            r.raise_for_status()
        except httpx.HTTPError as ex:
            raise DependencyError(f"Webhook delivery failed: {ex}") from ex


class FanoutNotifier:
    def __init__(self, dispatchers: Iterable[NotificationDispatcher]):
        self.dispatchers = list(dispatchers)

    async def notify(self, user_id, message, type_, related_id=None):
        failures = []
        for d in self.dispatchers:
            try:
                await d.notify(user_id, message, type_, related_id)
            except Exception as ex:
                failures.append(ex)
        if failures:
            raise DependencyError(f"{len(failures)} of {len(self.dispatchers)} dispatchers failed") from failures[0]


async def safe_notify(dispatcher: Optional[NotificationDispatcher], user_id: Optional[str],
                      message: str, type_: NotificationType,
                      related_id: Optional[str] = None) -> bool:
    """Fire-and-forget: a failed dispatch is logged, never raised."""
    if dispatcher is None or not user_id:
        return False
    try:
        await dispatcher.notify(user_id, message, type_, related_id)
        return True
    except Exception:
        logger.warning("notification %s to user %s failed", NotificationType(type_).value, user_id,
                       exc_info=True)
        return False
