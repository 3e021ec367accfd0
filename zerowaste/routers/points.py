# zerowaste/routers/points.py
from fastapi import APIRouter, Depends, Query

from zerowaste.core.errors import DuplicateAwardResolved
from zerowaste.deps import bounded, get_actor, get_engine, require_roles
from zerowaste.models.schemas import Actor, AdjustmentIn, Role

router = APIRouter(prefix="/api/points", tags=["points"])


@router.get("/history")
async def history(limit: int = Query(50, ge=1, le=500), actor: Actor = Depends(get_actor),
                  engine=Depends(get_engine)):
    return await bounded(engine.ledger.history(actor.user_id, limit))


@router.post("/adjust", status_code=201)
async def adjust(body: AdjustmentIn, actor: Actor = Depends(require_roles([Role.ADMIN])),
                 engine=Depends(get_engine)):
    result = await bounded(engine.ledger.adjust(body.user_id, body.amount, body.reason, body.adjustment_id))
    if isinstance(result, DuplicateAwardResolved):
        return {"duplicate": True, "entry": result.entry}
    return {"duplicate": False, "entry": result}
