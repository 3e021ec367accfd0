# tests/conftest.py
import os

os.environ["USE_MONGO"] = "0"
os.environ["SWEEP_ENABLED"] = "0"
os.environ.pop("WEBHOOK_URL", None)

from datetime import datetime, timedelta, timezone

import pytest

from zerowaste.models.schemas import Location, Role, User
from zerowaste.repos.inmemory import InMemoryRepo
from zerowaste.services.engine import build_engine


class FakeClock:
    def __init__(self, start=None):
        self.now = start or datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)
        return self.now


class RecordingNotifier:
    def __init__(self):
        self.sent = []

    async def notify(self, user_id, message, type_, related_id=None):
        self.sent.append((user_id, type_, related_id, message))

    def to(self, user_id, type_=None):
        return [s for s in self.sent if s[0] == user_id and (type_ is None or s[1] == type_)]


@pytest.fixture(scope="session")
def anyio_backend():
    # keep AnyIO on asyncio for the whole test session
    return "asyncio"


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def repo():
    return InMemoryRepo()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def engine(repo, notifier, clock):
    return build_engine(repo, notifier=notifier, clock=clock)


@pytest.fixture
async def users(repo):
    # Manila; everyone within a few km of each other
    seeded = {
        "donor": User(name="Donor A", email="donor@example.org", role=Role.DONOR,
                      location=Location(lat=14.5995, lng=120.9842)),
        "ngo": User(name="Food Bank", email="ngo@example.org", role=Role.NGO,
                    location=Location(lat=14.6100, lng=121.0000)),
        "volunteer": User(name="Rider", email="rider@example.org", role=Role.VOLUNTEER,
                          location=Location(lat=14.6200, lng=121.0300)),
        "admin": User(name="Admin", email="admin@example.org", role=Role.ADMIN),
    }
    for u in seeded.values():
        await repo.add_user(u)
    return seeded


@pytest.fixture(scope="session")
async def test_client():
    from asgi_lifespan import LifespanManager
    from httpx import ASGITransport, AsyncClient

    from zerowaste.main import app

    # Start FastAPI lifespan once for the whole session
    async with LifespanManager(app):
        transport = ASGITransport(app=app, raise_app_exceptions=True)
        async with AsyncClient(transport=transport, base_url="http://test") as ac:
            yield ac
