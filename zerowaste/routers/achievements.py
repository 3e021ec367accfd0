# zerowaste/routers/achievements.py
from fastapi import APIRouter, Depends

from zerowaste.deps import bounded, get_actor, get_engine
from zerowaste.models.schemas import Actor, Role

router = APIRouter(prefix="/api/achievements", tags=["achievements"])


@router.get("/mine")
async def my_achievements(actor: Actor = Depends(get_actor), engine=Depends(get_engine)):
    return await bounded(engine.achievements.user_achievements(actor.user_id, actor.role))


@router.get("/badges")
async def my_badges(actor: Actor = Depends(get_actor), engine=Depends(get_engine)):
    return await bounded(engine.achievements.user_badges(actor.user_id))


@router.get("/badges/levels")
async def badge_levels(engine=Depends(get_engine)):
    return engine.achievements.badge_levels()


@router.get("/catalog/{role}")
async def catalog(role: Role, engine=Depends(get_engine)):
    return engine.achievements.catalog_for(role)
