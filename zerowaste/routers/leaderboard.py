# zerowaste/routers/leaderboard.py
from fastapi import APIRouter, Depends, HTTPException, Query

from zerowaste.deps import bounded, get_actor, get_engine
from zerowaste.models.schemas import Actor, RANKED_ROLES, Role

router = APIRouter(prefix="/api/leaderboard", tags=["leaderboard"])


@router.get("/me")
async def my_rank(actor: Actor = Depends(get_actor), engine=Depends(get_engine)):
    return await bounded(engine.leaderboard.standing(actor.user_id, actor.role))


@router.get("/{role}")
async def top(role: Role, limit: int = Query(100, ge=1, le=500), engine=Depends(get_engine)):
    if role not in RANKED_ROLES:
        raise HTTPException(400, "Invalid role")
    return await bounded(engine.leaderboard.top(role, limit))
