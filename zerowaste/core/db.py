# zerowaste/core/db.py
from functools import lru_cache

from motor.motor_asyncio import AsyncIOMotorClient

from zerowaste.core.config import settings

@lru_cache
def get_client() -> AsyncIOMotorClient:
    # tz_aware so expiry comparisons stay in aware UTC
    return AsyncIOMotorClient(settings.mongo_uri, tz_aware=True, uuidRepresentation="standard")

def get_db():
    return get_client()[settings.mongo_db]
