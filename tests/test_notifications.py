import json

import httpx
import pytest

from zerowaste.core.errors import DependencyError
from zerowaste.models.schemas import NotificationType
from zerowaste.services.notifications import (
    FanoutNotifier, StoredNotifier, WebhookNotifier, safe_notify, sign,
)

pytestmark = pytest.mark.anyio


async def test_stored_notifier_and_mark_read(repo, clock):
    notifier = StoredNotifier(repo, clock)
    await notifier.notify("u1", "hello", NotificationType.SYSTEM, "d1")

    [n] = await repo.list_notifications("u1")
    assert n.message == "hello" and n.read is False

    assert await repo.mark_notification_read(n.id, "someone-else", clock()) is None
    read = await repo.mark_notification_read(n.id, "u1", clock())
    assert read.read is True
    assert await repo.list_notifications("u1", unread_only=True) == []


async def test_webhook_is_signed(clock):
    seen = {}

    def handler(request: httpx.Request):
        seen["body"] = json.loads(request.content)
        seen["sig"] = request.headers["X-ZeroWaste-Signature"]
        return httpx.Response(204)

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        notifier = WebhookNotifier("http://hooks.test/in", "s3cret", clock, client=client)
        await notifier.notify("u1", "accepted", NotificationType.DONATION_ACCEPTED, "d1")

    assert seen["body"]["type"] == "DONATION_ACCEPTED"
    assert seen["sig"] == sign(seen["body"], "s3cret")


async def test_webhook_error_becomes_dependency_error(clock):
    transport = httpx.MockTransport(lambda request: httpx.Response(500))
    async with httpx.AsyncClient(transport=transport) as client:
        notifier = WebhookNotifier("http://hooks.test/in", "s3cret", clock, client=client)
        with pytest.raises(DependencyError):
            await notifier.notify("u1", "x", NotificationType.SYSTEM)


async def test_fanout_delivers_to_the_rest_then_raises(repo, clock):
    class Broken:
        async def notify(self, *args, **kwargs):
            raise RuntimeError("down")

    stored = StoredNotifier(repo, clock)
    fanout = FanoutNotifier([Broken(), stored])
    with pytest.raises(DependencyError):
        await fanout.notify("u1", "x", NotificationType.SYSTEM)
    assert len(await repo.list_notifications("u1")) == 1

    assert await safe_notify(fanout, "u1", "y", NotificationType.SYSTEM) is False
    assert await safe_notify(None, "u1", "y", NotificationType.SYSTEM) is False
