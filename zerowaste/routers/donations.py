# zerowaste/routers/donations.py
from typing import Optional

from fastapi import APIRouter, Depends

from zerowaste.core.guards import ensure_owner, ensure_role
from zerowaste.core.errors import PermissionDeniedError
from zerowaste.core.states import event_roles
from zerowaste.deps import bounded, get_actor, get_engine, require_roles
from zerowaste.models.schemas import (
    Actor, AssignIn, CancelIn, DonationIn, DonationStatus, DonationUpdate, Role,
)

router = APIRouter(prefix="/api/donations", tags=["donations"])


@router.post("", status_code=201)
async def create_donation(data: DonationIn, actor: Actor = Depends(require_roles([Role.DONOR, Role.ADMIN])),
                          engine=Depends(get_engine)):
    return await bounded(engine.donations.create(actor, data))


@router.get("")
async def list_donations(status: Optional[DonationStatus] = None, mine: bool = False,
                         limit: Optional[int] = None, actor: Actor = Depends(get_actor),
                         engine=Depends(get_engine)):
    donor_id = actor.user_id if mine else None
    return await bounded(engine.donations.list(status=status, donor_id=donor_id, limit=limit))


@router.get("/available-for-pickup")
async def available_for_pickup(actor: Actor = Depends(require_roles([Role.VOLUNTEER, Role.NGO, Role.ADMIN])),
                               engine=Depends(get_engine)):
    return await bounded(engine.donations.available_for_pickup())


@router.post("/cleanup/expired")
async def cleanup_expired(actor: Actor = Depends(require_roles([Role.ADMIN])),
                          engine=Depends(get_engine)):
    report = await bounded(engine.sweeper.sweep_once())
    return {"ok": True, **report._asdict()}


@router.get("/{donation_id}")
async def get_donation(donation_id: str, actor: Actor = Depends(get_actor), engine=Depends(get_engine)):
    return await bounded(engine.donations.get(donation_id))


@router.patch("/{donation_id}")
async def update_donation(donation_id: str, data: DonationUpdate, actor: Actor = Depends(get_actor),
                          engine=Depends(get_engine)):
    ensure_role(actor, Role.DONOR, Role.ADMIN)
    donation = await bounded(engine.donations.get(donation_id))
    ensure_owner(donation.donor_id, actor, "Not authorized to update this donation")
    return await bounded(engine.donations.update(donation_id, data))


@router.delete("/{donation_id}")
async def delete_donation(donation_id: str, actor: Actor = Depends(get_actor), engine=Depends(get_engine)):
    ensure_role(actor, Role.DONOR, Role.ADMIN)
    donation = await bounded(engine.donations.get(donation_id))
    ensure_owner(donation.donor_id, actor, "Not authorized to delete this donation")
    await bounded(engine.donations.delete(donation_id))
    return {"ok": True}


# ---------- lifecycle ----------
@router.post("/{donation_id}/accept")
async def accept_donation(donation_id: str, actor: Actor = Depends(get_actor), engine=Depends(get_engine)):
    ensure_role(actor, *event_roles("accept"))
    return await bounded(engine.donations.accept(actor, donation_id))


@router.post("/{donation_id}/assign")
async def assign_volunteer(donation_id: str, body: AssignIn, actor: Actor = Depends(get_actor),
                           engine=Depends(get_engine)):
    ensure_role(actor, Role.NGO, Role.ADMIN)
    donation = await bounded(engine.donations.get(donation_id))
    ensure_owner(donation.accepted_by, actor, "Only the accepting NGO can assign a volunteer")
    return await bounded(engine.donations.assign_volunteer(donation_id, body.volunteer_id))


@router.post("/{donation_id}/claim")
async def claim_pickup(donation_id: str, actor: Actor = Depends(require_roles([Role.VOLUNTEER])),
                       engine=Depends(get_engine)):
    return await bounded(engine.donations.claim_pickup(actor, donation_id))


@router.post("/{donation_id}/start")
async def start_pickup(donation_id: str, actor: Actor = Depends(get_actor), engine=Depends(get_engine)):
    ensure_role(actor, *event_roles("start_pickup"))
    donation = await bounded(engine.donations.get(donation_id))
    ensure_owner(donation.assigned_volunteer, actor, "Only the assigned volunteer can start this pickup")
    return await bounded(engine.donations.start_pickup(donation_id))


@router.post("/{donation_id}/complete")
async def complete_donation(donation_id: str, actor: Actor = Depends(get_actor), engine=Depends(get_engine)):
    ensure_role(actor, *event_roles("complete"))
    donation = await bounded(engine.donations.get(donation_id))
    if actor.role != Role.ADMIN and actor.user_id not in (donation.donor_id, donation.assigned_volunteer):
        raise PermissionDeniedError("Not authorized to complete this donation")
    return await bounded(engine.donations.complete(donation_id))


@router.post("/{donation_id}/cancel")
async def cancel_donation(donation_id: str, body: Optional[CancelIn] = None,
                          actor: Actor = Depends(get_actor), engine=Depends(get_engine)):
    ensure_role(actor, *event_roles("cancel"))
    donation = await bounded(engine.donations.get(donation_id))
    ensure_owner(donation.donor_id, actor, "Not authorized to cancel this donation")
    return await bounded(engine.donations.cancel(donation_id, body.reason if body else None))
