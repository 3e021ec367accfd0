# zerowaste/services/donations.py
import asyncio
import logging
from typing import List, Optional

from zerowaste.core.clock import Clock, utcnow
from zerowaste.core.errors import InvalidTransitionError, NotFoundError, ValidationError
from zerowaste.core.gamification import (
    COMPLETION_SUFFIX, DONATIONS_ACCEPTED, DONATIONS_COLLECTED, DONATIONS_COMPLETED,
    PICKUPS_COMPLETED,
)
from zerowaste.core.states import TERMINAL_STATES, next_status, sources_for
from zerowaste.models.schemas import (
    ACTIVE_ASSIGNMENT_STATUSES, Actor, AssignmentStatus, Donation, DonationIn, DonationStatus,
    DonationUpdate, NotificationType, PickupAssignment, PointsSource, Role, new_id,
)
from zerowaste.services.notifications import safe_notify

logger = logging.getLogger(__name__)

# statuses a donation has passed through once an NGO accepted it
ACCEPTED_OR_LATER = (DonationStatus.ACCEPTED, DonationStatus.ASSIGNED,
                     DonationStatus.IN_TRANSIT, DonationStatus.DELIVERED)


def completion_key(donation_id: str) -> str:
    """Ledger source_id for the donor's completion award."""
    return f"{donation_id}{COMPLETION_SUFFIX}"


class DonationService:
    """Donation lifecycle: CREATED -> ACCEPTED -> ASSIGNED -> IN_TRANSIT -> DELIVERED,
    with CANCELLED and EXPIRED as alternate terminals.

    Only status legality is enforced here; who may trigger an event is the
    caller's concern. Each transition is a compare-and-set on the stored status,
    so of two concurrent callers exactly one wins.
    """

    def __init__(self, repo, ledger, achievements, notifier=None, clock: Clock = utcnow):
        self.repo = repo
        self.ledger = ledger
        self.achievements = achievements
        self.notifier = notifier
        self.clock = clock

    # ---------- helpers ----------
    async def get(self, donation_id: str) -> Donation:
        donation = await self.repo.get_donation(donation_id)
        if donation is None:
            raise NotFoundError("Donation not found")
        return donation

    async def _transition(self, donation: Donation, event: str, **changes) -> Donation:
        target = next_status(donation.status, event)
        now = self.clock()
        changes.update({"status": target, "updated_at": now})
        updated = await self.repo.update_donation(donation.id, sources_for(event), changes)
        if updated is None:
            # someone else moved it first
            current = await self.get(donation.id)
            raise InvalidTransitionError(
                f"Cannot {event} a donation in status {current.status.value}"
            )
        logger.info("donation %s %s -> %s", donation.id, donation.status.value, target.value)
        return updated

    async def _revert(self, current: Donation, before: Donation, **fields) -> None:
        """Put a donation back in its previous status after its awards failed."""
        changes = {"status": before.status, "updated_at": before.updated_at, **fields}
        try:
            reverted = await self.repo.update_donation(current.id, [current.status], changes)
        except Exception:
            logger.exception("could not revert donation %s to %s", current.id, before.status.value)
            return
        if reverted is None:
            logger.error("donation %s moved on before it could be reverted", current.id)
        else:
            logger.warning("donation %s reverted %s -> %s after a failed award",
                           current.id, current.status.value, before.status.value)

    async def _notify(self, user_id, message, type_, related_id=None):
        await safe_notify(self.notifier, user_id, message, type_, related_id)

    async def _evaluate(self, user_id: str, role: Role, trigger: str, current_value: int,
                        milestones: bool = True) -> None:
        # the transition is already committed; evaluation can be re-run later
        try:
            await self.achievements.evaluate(user_id, role, trigger, current_value, milestones)
        except Exception:
            logger.exception("achievement evaluation failed for %s user %s", role.value, user_id)

    def _validate(self, food_type, quantity, expiry_date, location, check_expiry=True) -> None:
        if not (food_type or "").strip() or not (quantity or "").strip():
            raise ValidationError("Please provide all required fields")
        if location is None:
            raise ValidationError("Please provide all required fields")
        if not check_expiry:
            return
        if expiry_date.tzinfo is None:
            raise ValidationError("Expiry date must include a timezone")
        if expiry_date <= self.clock():
            raise ValidationError("Expiry date must be in the future")

    # ---------- CRUD ----------
    async def create(self, actor: Actor, data: DonationIn) -> Donation:
        self._validate(data.food_type, data.quantity, data.expiry_date, data.location)
        donation = Donation(
            donor_id=actor.user_id,
            food_type=data.food_type.strip(),
            quantity=data.quantity.strip(),
            expiry_date=data.expiry_date,
            location=data.location,
            description=data.description,
            images=data.images,
            created_at=self.clock(),
        )
        await self.repo.insert_donation(donation)
        logger.info("donation %s created by %s", donation.id, actor.user_id)
        return donation

    async def update(self, donation_id: str, data: DonationUpdate) -> Donation:
        donation = await self.get(donation_id)
        if donation.status != DonationStatus.CREATED:
            raise InvalidTransitionError("Cannot update donation in current status")
        changes = data.model_dump(exclude_unset=True, exclude_none=True)
        if "location" in changes:
            changes["location"] = data.location
        merged = donation.model_copy(update=changes)
        self._validate(merged.food_type, merged.quantity, merged.expiry_date, merged.location,
                       check_expiry="expiry_date" in changes)
        changes["updated_at"] = self.clock()
        updated = await self.repo.update_donation(donation_id, [DonationStatus.CREATED], changes)
        if updated is None:
            raise InvalidTransitionError("Cannot update donation in current status")
        return updated

    async def delete(self, donation_id: str) -> None:
        donation = await self.get(donation_id)
        if donation.status != DonationStatus.CREATED:
            raise InvalidTransitionError("Cannot delete donation in current status")
        if not await self.repo.delete_donation(donation_id, [DonationStatus.CREATED]):
            raise InvalidTransitionError("Cannot delete donation in current status")
        logger.info("donation %s deleted", donation_id)

    async def list(self, status: Optional[DonationStatus] = None, donor_id: Optional[str] = None,
                   limit: Optional[int] = None) -> List[Donation]:
        return await self.repo.list_donations(status=status, donor_id=donor_id, limit=limit)

    async def available_for_pickup(self) -> List[Donation]:
        out = []
        for d in await self.repo.list_donations(status=DonationStatus.ACCEPTED):
            if d.accepted_by and not await self.repo.find_active_assignment(donation_id=d.id):
                out.append(d)
        return out

    # ---------- transitions ----------
    async def accept(self, actor: Actor, donation_id: str) -> Donation:
        donation = await self.get(donation_id)
        if await self.repo.get_user(actor.user_id) is None:
            raise NotFoundError("User not found")
        before = donation
        donation = await self._transition(donation, "accept",
                                          accepted_by=actor.user_id, accepted_at=self.clock())
        try:
            await self.ledger.award(
                donation.donor_id, self.ledger.calculate("DONATION", Role.DONOR),
                PointsSource.DONATION, Role.DONOR, donation.id, "Donation created",
            )
            await self.ledger.award(
                actor.user_id, self.ledger.calculate("DONATION", Role.NGO),
                PointsSource.DONATION, Role.NGO, donation.id, "Donation accepted",
            )
        except (Exception, asyncio.CancelledError):
            await asyncio.shield(self._revert(donation, before, accepted_by=None, accepted_at=None))
            raise

        donor_accepted = await self.repo.count_donations(donor_id=donation.donor_id,
                                                         statuses=ACCEPTED_OR_LATER)
        ngo_collected = await self.repo.count_donations(accepted_by=actor.user_id,
                                                        statuses=ACCEPTED_OR_LATER)
        await self._evaluate(donation.donor_id, Role.DONOR, DONATIONS_ACCEPTED, donor_accepted,
                             milestones=False)
        await self._evaluate(actor.user_id, Role.NGO, DONATIONS_COLLECTED, ngo_collected,
                             milestones=False)

        await self._notify(donation.donor_id, "Your donation has been accepted",
                           NotificationType.DONATION_ACCEPTED, donation.id)
        return donation

    async def assign_volunteer(self, donation_id: str, volunteer_id: str) -> PickupAssignment:
        donation = await self.get(donation_id)
        next_status(donation.status, "assign")
        volunteer = await self.repo.get_user(volunteer_id)
        if volunteer is None:
            raise NotFoundError("Volunteer not found")
        if volunteer.role != Role.VOLUNTEER:
            raise ValidationError("Invalid volunteer")

        assignment = await self._assign(donation, volunteer_id)
        await self._notify(volunteer_id,
                           f"You have been assigned to pick up a donation: {donation.food_type}",
                           NotificationType.VOLUNTEER_ASSIGNED, donation.id)
        return assignment

    async def claim_pickup(self, actor: Actor, donation_id: str) -> PickupAssignment:
        """A volunteer takes an accepted donation for themselves."""
        donation = await self.get(donation_id)
        next_status(donation.status, "assign")
        if await self.repo.find_active_assignment(donation_id=donation_id):
            raise ValidationError("This task has already been accepted")
        if await self.repo.find_active_assignment(volunteer_id=actor.user_id):
            raise ValidationError("You already have an active delivery")

        assignment = await self._assign(donation, actor.user_id)
        msg = f"A volunteer has accepted pickup for: {donation.food_type}"
        await self._notify(donation.donor_id, msg, NotificationType.VOLUNTEER_ASSIGNED, donation.id)
        await self._notify(donation.accepted_by, msg, NotificationType.VOLUNTEER_ASSIGNED, donation.id)
        return assignment

    async def _assign(self, donation: Donation, volunteer_id: str) -> PickupAssignment:
        await self._transition(donation, "assign", assigned_volunteer=volunteer_id)
        existing = await self.repo.get_assignment_for_donation(donation.id)
        assignment = PickupAssignment(
            id=existing.id if existing else new_id(),
            donation_id=donation.id,
            volunteer_id=volunteer_id,
            status=AssignmentStatus.PENDING,
            assigned_at=self.clock(),
        )
        return await self.repo.save_assignment(assignment)

    async def start_pickup(self, donation_id: str) -> Donation:
        donation = await self.get(donation_id)
        donation = await self._transition(donation, "start_pickup")
        assignment = await self.repo.get_assignment_for_donation(donation.id)
        if assignment and assignment.status in ACTIVE_ASSIGNMENT_STATUSES:
            await self.repo.update_assignment(assignment.id, {
                "status": AssignmentStatus.IN_PROGRESS,
                "started_at": assignment.started_at or self.clock(),
            })

        await self._notify(donation.donor_id, "Your donation is on the way!",
                           NotificationType.DONATION_IN_TRANSIT, donation.id)
        await self._notify(donation.accepted_by, f"Pickup in progress for: {donation.food_type}",
                           NotificationType.DONATION_IN_TRANSIT, donation.id)
        return donation

    async def complete(self, donation_id: str) -> Donation:
        donation = await self.get(donation_id)
        now = self.clock()
        before = donation
        donation = await self._transition(donation, "complete", completed_at=now)

        volunteer_id = donation.assigned_volunteer
        try:
            await self.ledger.award(
                donation.donor_id, self.ledger.calculate("COMPLETION", Role.DONOR),
                PointsSource.DONATION, Role.DONOR, completion_key(donation.id), "Donation completed",
            )
            assignment = await self.repo.get_assignment_for_donation(donation.id)
            if volunteer_id:
                await self.ledger.award(
                    volunteer_id, self.ledger.calculate("COMPLETION", Role.VOLUNTEER),
                    PointsSource.PICKUP, Role.VOLUNTEER,
                    assignment.id if assignment else completion_key(donation.id),
                    "Pickup completed",
                )
        except (Exception, asyncio.CancelledError):
            # awards are keyed, so a retried completion pays only what is still missing
            await asyncio.shield(self._revert(donation, before, completed_at=None))
            raise

        if assignment and assignment.status in ACTIVE_ASSIGNMENT_STATUSES:
            await self.repo.update_assignment(assignment.id, {
                "status": AssignmentStatus.COMPLETED, "completed_at": now,
            })

        delivered = [DonationStatus.DELIVERED]
        await self._evaluate(
            donation.donor_id, Role.DONOR, DONATIONS_COMPLETED,
            await self.repo.count_donations(donor_id=donation.donor_id, statuses=delivered),
        )
        if volunteer_id:
            await self._evaluate(
                volunteer_id, Role.VOLUNTEER, PICKUPS_COMPLETED,
                await self.repo.count_donations(assigned_volunteer=volunteer_id, statuses=delivered),
            )

        await self._notify(donation.donor_id, "Your donation has been completed successfully!",
                           NotificationType.DONATION_COMPLETED, donation.id)
        await self._notify(donation.accepted_by, f"Donation delivery completed: {donation.food_type}",
                           NotificationType.DONATION_DELIVERED, donation.id)
        return donation

    async def cancel(self, donation_id: str, reason: Optional[str] = None) -> Donation:
        donation = await self.get(donation_id)
        now = self.clock()
        reason = (reason or "").strip() or "No reason provided"
        donation = await self._transition(donation, "cancel",
                                          cancelled_at=now, cancellation_reason=reason)

        assignment = await self.repo.get_assignment_for_donation(donation.id)
        if assignment and assignment.status in ACTIVE_ASSIGNMENT_STATUSES:
            await self.repo.update_assignment(assignment.id, {
                "status": AssignmentStatus.CANCELLED,
                "cancelled_at": now,
                "cancellation_reason": reason,
            })
            await self._notify(assignment.volunteer_id,
                               f"Pickup cancelled for: {donation.food_type}",
                               NotificationType.DONATION_CANCELLED, donation.id)
        return donation

    async def expire(self, donation_id: str) -> Donation:
        donation = await self.get(donation_id)
        now = self.clock()
        if donation.status not in TERMINAL_STATES and donation.expiry_date >= now:
            raise InvalidTransitionError("Donation has not expired yet")
        donation = await self._transition(donation, "sweep", expired_at=now)
        await self._notify(
            donation.donor_id,
            f"Your donation of {donation.food_type} has expired and been removed from availability.",
            NotificationType.SYSTEM, donation.id,
        )
        return donation

    # ---------- assignments ----------
    async def get_assignment(self, assignment_id: str) -> PickupAssignment:
        assignment = await self.repo.get_assignment(assignment_id)
        if assignment is None:
            raise NotFoundError("Assignment not found")
        return assignment

    async def assignments_for(self, volunteer_id: str, status: Optional[AssignmentStatus] = None):
        return await self.repo.list_assignments(volunteer_id, status)

    async def rate_assignment(self, assignment_id: str, rating: int,
                              feedback: Optional[str] = None) -> PickupAssignment:
        assignment = await self.get_assignment(assignment_id)
        if assignment.status != AssignmentStatus.COMPLETED:
            raise InvalidTransitionError("Only completed pickups can be rated")
        if not 1 <= rating <= 5:
            raise ValidationError("Rating must be between 1 and 5")
        return await self.repo.update_assignment(assignment_id, {"rating": rating, "feedback": feedback})
