# zerowaste/routers/notifications.py
from fastapi import APIRouter, Depends, Query

from zerowaste.core.errors import NotFoundError
from zerowaste.deps import bounded, get_actor, get_engine
from zerowaste.models.schemas import Actor

router = APIRouter(prefix="/api/notifications", tags=["notifications"])


@router.get("")
async def list_notifications(unread_only: bool = False, limit: int = Query(50, ge=1, le=200),
                             actor: Actor = Depends(get_actor), engine=Depends(get_engine)):
    return await bounded(engine.repo.list_notifications(actor.user_id, unread_only=unread_only, limit=limit))


@router.post("/{notification_id}/read")
async def mark_read(notification_id: str, actor: Actor = Depends(get_actor), engine=Depends(get_engine)):
    updated = await bounded(
        engine.repo.mark_notification_read(notification_id, actor.user_id, engine.ledger.clock())
    )
    if updated is None:
        raise NotFoundError("Notification not found")
    return updated
