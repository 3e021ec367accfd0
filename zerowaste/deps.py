# zerowaste/deps.py
import asyncio
from typing import List, Optional

from dotenv import load_dotenv
from fastapi import Depends, Header, HTTPException

load_dotenv()

from zerowaste.core.config import settings  # noqa: E402
from zerowaste.core.errors import DependencyError  # noqa: E402
from zerowaste.models.schemas import Actor, Role  # noqa: E402
from zerowaste.services.engine import Engine, build_engine  # noqa: E402

if settings.use_mongo:
    from zerowaste.core.db import get_db
    from zerowaste.repos.mongo import MongoRepo
    _repo_singleton = MongoRepo(get_db())
else:
    from zerowaste.repos.inmemory import InMemoryRepo
    _repo_singleton = InMemoryRepo()

_engine: Optional[Engine] = None


def get_repo():
    return _repo_singleton


def get_engine() -> Engine:
    global _engine
    if _engine is None:
        _engine = build_engine(_repo_singleton, cfg=settings)
    return _engine


async def get_actor(
    x_user_id: Optional[str] = Header(None),
    x_user_role: Optional[str] = Header(None),
) -> Actor:
    if not x_user_id or not x_user_role:
        raise HTTPException(status_code=401, detail="Missing X-User-Id / X-User-Role headers")
    try:
        role = Role(x_user_role.upper())
    except ValueError:
        raise HTTPException(status_code=401, detail=f"Unknown role {x_user_role}")
    return Actor(user_id=x_user_id, role=role)


def require_roles(roles: List[Role]):
    async def checker(actor: Actor = Depends(get_actor)):
        if actor.role not in roles:
            raise HTTPException(status_code=403, detail="Not enough permissions")
        return actor
    return checker


async def bounded(coro, timeout: Optional[float] = None):
    """Await an engine call under the request timeout."""
    timeout = settings.request_timeout_seconds if timeout is None else timeout
    try:
        return await asyncio.wait_for(coro, timeout)
    except asyncio.TimeoutError as ex:
        raise DependencyError("Request timed out") from ex
