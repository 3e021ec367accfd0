# zerowaste/main.py
import asyncio
import logging
from contextlib import asynccontextmanager, suppress

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from zerowaste.core.config import settings
from zerowaste.core.errors import RescueError
from zerowaste.deps import get_engine
from zerowaste.routers import achievements as achievements_router
from zerowaste.routers import assignments as assignments_router
from zerowaste.routers import donations as donations_router
from zerowaste.routers import leaderboard as leaderboard_router
from zerowaste.routers import matching as matching_router
from zerowaste.routers import notifications as notifications_router
from zerowaste.routers import points as points_router

logger = logging.getLogger("zerowaste")


@asynccontextmanager
async def lifespan(app: FastAPI):
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    engine = get_engine()

    if settings.use_mongo:
        from zerowaste.core.db import get_client, get_db
        from zerowaste.core.indexes import ensure_indexes
        await ensure_indexes(get_db())

    sweeper_task = None
    if settings.sweep_enabled:
        sweeper_task = asyncio.create_task(engine.sweeper.run_forever())

    yield

    if sweeper_task:
        sweeper_task.cancel()
        with suppress(asyncio.CancelledError):
            await sweeper_task
    if settings.use_mongo:
        get_client().close()


app = FastAPI(lifespan=lifespan, title="ZeroWaste API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(RescueError)
async def rescue_error_handler(request: Request, exc: RescueError):
    if exc.status_code >= 500:
        logger.warning("%s %s failed: %s", request.method, request.url.path, exc.detail)
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})


app.include_router(donations_router.router)         # /api/donations
app.include_router(assignments_router.router)       # /api/assignments
app.include_router(matching_router.router)          # /api/matching
app.include_router(leaderboard_router.router)       # /api/leaderboard
app.include_router(achievements_router.router)      # /api/achievements
app.include_router(points_router.router)            # /api/points
app.include_router(notifications_router.router)     # /api/notifications


@app.get("/health")
def health():
    return {"ok": True}
