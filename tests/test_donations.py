import asyncio
from datetime import timedelta

import pytest

from zerowaste.core.errors import DependencyError, InvalidTransitionError, NotFoundError, ValidationError
from zerowaste.models.schemas import (
    Actor, AssignmentStatus, DonationIn, DonationStatus, DonationUpdate, Location,
    NotificationType, PointsSource, Role,
)
from zerowaste.services.donations import completion_key

pytestmark = pytest.mark.anyio


def actor(user):
    return Actor(user_id=user.id, role=user.role)


def donation_in(clock, **overrides):
    data = dict(
        food_type="Rice",
        quantity="10 kg",
        expiry_date=clock() + timedelta(days=3),
        location=Location(lat=14.5995, lng=120.9842, address="Ermita, Manila"),
    )
    data.update(overrides)
    return DonationIn(**data)


async def _entries(repo, user_id, source):
    return [p for p in await repo.list_points(user_id, limit=500) if p.source == source]


async def test_full_lifecycle(engine, repo, users, clock, notifier):
    donor, ngo, vol = users["donor"], users["ngo"], users["volunteer"]
    svc = engine.donations

    # 1. created
    donation = await svc.create(actor(donor), donation_in(clock))
    assert donation.status == DonationStatus.CREATED
    assert donation.created_at == clock()

    # 2. accepted: donor +10, NGO +5
    donation = await svc.accept(actor(ngo), donation.id)
    assert donation.status == DonationStatus.ACCEPTED
    assert donation.accepted_by == ngo.id
    assert [(p.points, p.role) for p in await _entries(repo, donor.id, PointsSource.DONATION)] == [(10, Role.DONOR)]
    assert [(p.points, p.role) for p in await _entries(repo, ngo.id, PointsSource.DONATION)] == [(5, Role.NGO)]
    assert notifier.to(donor.id, NotificationType.DONATION_ACCEPTED)

    # 3. volunteer assigned
    assignment = await svc.assign_volunteer(donation.id, vol.id)
    assert assignment.status == AssignmentStatus.PENDING
    assert (await svc.get(donation.id)).status == DonationStatus.ASSIGNED
    assert notifier.to(vol.id, NotificationType.VOLUNTEER_ASSIGNED)

    # 4. completed: donor +20, volunteer +25
    clock.advance(hours=2)
    donation = await svc.complete(donation.id)
    assert donation.status == DonationStatus.DELIVERED
    assert donation.completed_at == clock()

    donor_points = sorted(p.points for p in await _entries(repo, donor.id, PointsSource.DONATION))
    assert donor_points == [10, 20]
    completion = await repo.find_points_entry(donor.id, PointsSource.DONATION, completion_key(donation.id))
    assert completion.points == 20

    vol_points = await _entries(repo, vol.id, PointsSource.PICKUP)
    assert [(p.points, p.source_id) for p in vol_points] == [(25, assignment.id)]
    assert (await repo.get_assignment(assignment.id)).status == AssignmentStatus.COMPLETED

    # achievement evaluation ran for donor (at accept) and volunteer (at completion)
    donor_titles = {a.title for a in await repo.list_achievements(donor.id)}
    vol_titles = {a.title for a in await repo.list_achievements(vol.id)}
    assert "First Donation" in donor_titles
    assert "First Delivery" in vol_titles

    assert notifier.to(donor.id, NotificationType.DONATION_COMPLETED)
    assert notifier.to(ngo.id, NotificationType.DONATION_DELIVERED)

    # 5. a retried completion is rejected and pays nothing
    ledger_size = len(repo.points)
    with pytest.raises(InvalidTransitionError):
        await svc.complete(donation.id)
    assert len(repo.points) == ledger_size


async def test_create_validation(engine, users, clock):
    donor = actor(users["donor"])
    with pytest.raises(ValidationError):
        await engine.donations.create(donor, donation_in(clock, food_type="  "))
    with pytest.raises(ValidationError):
        await engine.donations.create(donor, donation_in(clock, expiry_date=clock() - timedelta(minutes=1)))


async def test_accept_twice_only_one_wins(engine, repo, users, clock):
    donation = await engine.donations.create(actor(users["donor"]), donation_in(clock))
    results = await asyncio.gather(
        engine.donations.accept(actor(users["ngo"]), donation.id),
        engine.donations.accept(actor(users["ngo"]), donation.id),
        return_exceptions=True,
    )
    assert sum(isinstance(r, InvalidTransitionError) for r in results) == 1
    assert len(await _entries(repo, users["donor"].id, PointsSource.DONATION)) == 1


async def test_complete_without_volunteer(engine, repo, users, clock):
    donation = await engine.donations.create(actor(users["donor"]), donation_in(clock))
    await engine.donations.accept(actor(users["ngo"]), donation.id)
    done = await engine.donations.complete(donation.id)
    assert done.status == DonationStatus.DELIVERED
    assert await _entries(repo, users["volunteer"].id, PointsSource.PICKUP) == []


async def test_skip_ahead_rejected(engine, users, clock):
    donation = await engine.donations.create(actor(users["donor"]), donation_in(clock))
    with pytest.raises(InvalidTransitionError):
        await engine.donations.start_pickup(donation.id)
    with pytest.raises(InvalidTransitionError):
        await engine.donations.complete(donation.id)


async def test_update_and_delete_only_while_created(engine, users, clock):
    svc = engine.donations
    donation = await svc.create(actor(users["donor"]), donation_in(clock))
    updated = await svc.update(donation.id, DonationUpdate(quantity="12 kg"))
    assert updated.quantity == "12 kg"

    with pytest.raises(ValidationError):
        await svc.update(donation.id, DonationUpdate(expiry_date=clock() - timedelta(days=1)))

    await svc.accept(actor(users["ngo"]), donation.id)
    with pytest.raises(InvalidTransitionError):
        await svc.update(donation.id, DonationUpdate(quantity="1 kg"))
    with pytest.raises(InvalidTransitionError):
        await svc.delete(donation.id)

    other = await svc.create(actor(users["donor"]), donation_in(clock))
    await svc.delete(other.id)
    with pytest.raises(NotFoundError):
        await svc.get(other.id)


async def test_claim_pickup_rules(engine, repo, users, clock, notifier):
    svc = engine.donations
    vol = users["volunteer"]
    first = await svc.create(actor(users["donor"]), donation_in(clock))
    second = await svc.create(actor(users["donor"]), donation_in(clock))
    for d in (first, second):
        await svc.accept(actor(users["ngo"]), d.id)

    assert {d.id for d in await svc.available_for_pickup()} == {first.id, second.id}

    assignment = await svc.claim_pickup(actor(vol), first.id)
    assert assignment.volunteer_id == vol.id
    assert notifier.to(users["ngo"].id, NotificationType.VOLUNTEER_ASSIGNED)
    assert [d.id for d in await svc.available_for_pickup()] == [second.id]

    # one active delivery per volunteer
    with pytest.raises(ValidationError):
        await svc.claim_pickup(actor(vol), second.id)


async def test_assign_requires_volunteer(engine, users, clock):
    donation = await engine.donations.create(actor(users["donor"]), donation_in(clock))
    await engine.donations.accept(actor(users["ngo"]), donation.id)
    with pytest.raises(ValidationError):
        await engine.donations.assign_volunteer(donation.id, users["donor"].id)
    with pytest.raises(NotFoundError):
        await engine.donations.assign_volunteer(donation.id, "ghost")
    assert (await engine.donations.get(donation.id)).status == DonationStatus.ACCEPTED


async def test_start_pickup_and_cancel(engine, repo, users, clock):
    svc = engine.donations
    donation = await svc.create(actor(users["donor"]), donation_in(clock))
    await svc.accept(actor(users["ngo"]), donation.id)
    assignment = await svc.assign_volunteer(donation.id, users["volunteer"].id)

    in_transit = await svc.start_pickup(donation.id)
    assert in_transit.status == DonationStatus.IN_TRANSIT
    assert (await repo.get_assignment(assignment.id)).status == AssignmentStatus.IN_PROGRESS

    cancelled = await svc.cancel(donation.id)
    assert cancelled.status == DonationStatus.CANCELLED
    assert cancelled.cancellation_reason == "No reason provided"
    assert (await repo.get_assignment(assignment.id)).status == AssignmentStatus.CANCELLED

    with pytest.raises(InvalidTransitionError):
        await svc.cancel(donation.id, "again")


async def test_rate_assignment(engine, users, clock):
    svc = engine.donations
    donation = await svc.create(actor(users["donor"]), donation_in(clock))
    await svc.accept(actor(users["ngo"]), donation.id)
    assignment = await svc.assign_volunteer(donation.id, users["volunteer"].id)

    with pytest.raises(InvalidTransitionError):
        await svc.rate_assignment(assignment.id, 5)

    await svc.complete(donation.id)
    rated = await svc.rate_assignment(assignment.id, 4, "on time")
    assert rated.rating == 4 and rated.feedback == "on time"


async def test_evaluation_failure_does_not_undo_completion(engine, users, clock, monkeypatch):
    svc = engine.donations
    donation = await svc.create(actor(users["donor"]), donation_in(clock))
    await svc.accept(actor(users["ngo"]), donation.id)

    async def boom(*args, **kwargs):
        raise RuntimeError("catalog unavailable")

    monkeypatch.setattr(engine.achievements, "evaluate", boom)
    done = await svc.complete(donation.id)
    assert done.status == DonationStatus.DELIVERED


def _fail_once_for(repo, monkeypatch, user_id):
    original = repo.increment_total_points
    failed = []

    async def flaky(uid, delta):
        if uid == user_id and not failed:
            failed.append(uid)
            raise ConnectionError("primary stepped down")
        return await original(uid, delta)

    monkeypatch.setattr(repo, "increment_total_points", flaky)
    return failed


async def test_failed_completion_award_reverts_and_retries(engine, repo, users, clock, monkeypatch):
    svc = engine.donations
    donor, vol = users["donor"], users["volunteer"]
    donation = await svc.create(actor(donor), donation_in(clock))
    await svc.accept(actor(users["ngo"]), donation.id)
    assignment = await svc.assign_volunteer(donation.id, vol.id)

    failed = _fail_once_for(repo, monkeypatch, donor.id)
    with pytest.raises(DependencyError):
        await svc.complete(donation.id)
    assert failed == [donor.id]

    reverted = await svc.get(donation.id)
    assert reverted.status == DonationStatus.ASSIGNED
    assert reverted.completed_at is None
    assert await repo.find_points_entry(donor.id, PointsSource.DONATION, completion_key(donation.id)) is None

    done = await svc.complete(donation.id)
    assert done.status == DonationStatus.DELIVERED
    completion = await repo.find_points_entry(donor.id, PointsSource.DONATION, completion_key(donation.id))
    assert completion.points == 20
    assert [p.source_id for p in await _entries(repo, vol.id, PointsSource.PICKUP)] == [assignment.id]
    assert (await repo.get_user(donor.id)).total_points >= 30


async def test_failed_volunteer_award_keeps_donor_award_on_retry(engine, repo, users, clock, monkeypatch):
    svc = engine.donations
    donor, vol = users["donor"], users["volunteer"]
    donation = await svc.create(actor(donor), donation_in(clock))
    await svc.accept(actor(users["ngo"]), donation.id)
    await svc.assign_volunteer(donation.id, vol.id)

    _fail_once_for(repo, monkeypatch, vol.id)
    with pytest.raises(DependencyError):
        await svc.complete(donation.id)
    assert (await svc.get(donation.id)).status == DonationStatus.ASSIGNED

    await svc.complete(donation.id)
    completions = [p for p in await _entries(repo, donor.id, PointsSource.DONATION)
                   if p.source_id == completion_key(donation.id)]
    assert len(completions) == 1
    assert len(await _entries(repo, vol.id, PointsSource.PICKUP)) == 1


async def test_failed_acceptance_award_reverts_to_created(engine, repo, users, clock, monkeypatch):
    svc = engine.donations
    donor, ngo = users["donor"], users["ngo"]
    donation = await svc.create(actor(donor), donation_in(clock))

    _fail_once_for(repo, monkeypatch, ngo.id)
    with pytest.raises(DependencyError):
        await svc.accept(actor(ngo), donation.id)

    reverted = await svc.get(donation.id)
    assert reverted.status == DonationStatus.CREATED
    assert reverted.accepted_by is None and reverted.accepted_at is None
    assert await _entries(repo, ngo.id, PointsSource.DONATION) == []

    accepted = await svc.accept(actor(ngo), donation.id)
    assert accepted.accepted_by == ngo.id
    assert len(await _entries(repo, donor.id, PointsSource.DONATION)) == 1
    assert [p.points for p in await _entries(repo, ngo.id, PointsSource.DONATION)] == [5]


async def _deliver(svc, users, clock):
    donation = await svc.create(actor(users["donor"]), donation_in(clock))
    await svc.accept(actor(users["ngo"]), donation.id)
    await svc.assign_volunteer(donation.id, users["volunteer"].id)
    return await svc.complete(donation.id)


async def test_completion_entries_do_not_inflate_donor_counts(engine, repo, users, clock):
    donor = users["donor"]
    for _ in range(3):
        await _deliver(engine.donations, users, clock)

    assert len(await _entries(repo, donor.id, PointsSource.DONATION)) == 6
    assert (await repo.get_leaderboard_entry(donor.id)).donations_count == 3
    assert "First Steps" not in {a.title for a in await repo.list_achievements(donor.id)}

    for _ in range(2):
        await _deliver(engine.donations, users, clock)
    assert (await repo.get_leaderboard_entry(donor.id)).donations_count == 5
    assert "First Steps" in {a.title for a in await repo.list_achievements(donor.id)}
