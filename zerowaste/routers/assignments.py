# zerowaste/routers/assignments.py
from typing import Optional

from fastapi import APIRouter, Depends

from zerowaste.core.errors import PermissionDeniedError
from zerowaste.deps import bounded, get_actor, get_engine, require_roles
from zerowaste.models.schemas import Actor, AssignmentStatus, RatingIn, Role

router = APIRouter(prefix="/api/assignments", tags=["assignments"])


@router.get("/mine")
async def my_assignments(status: Optional[AssignmentStatus] = None,
                         actor: Actor = Depends(require_roles([Role.VOLUNTEER])),
                         engine=Depends(get_engine)):
    return await bounded(engine.donations.assignments_for(actor.user_id, status))


@router.post("/{assignment_id}/rate")
async def rate_assignment(assignment_id: str, body: RatingIn, actor: Actor = Depends(get_actor),
                          engine=Depends(get_engine)):
    assignment = await bounded(engine.donations.get_assignment(assignment_id))
    donation = await bounded(engine.donations.get(assignment.donation_id))
    if actor.role != Role.ADMIN and actor.user_id not in (donation.donor_id, donation.accepted_by):
        raise PermissionDeniedError("Only the donor or the receiving NGO can rate this pickup")
    return await bounded(engine.donations.rate_assignment(assignment_id, body.rating, body.feedback))
