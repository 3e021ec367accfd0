import asyncio
from datetime import timedelta

import pytest

from zerowaste.core.errors import InvalidTransitionError
from zerowaste.models.schemas import Actor, DonationIn, DonationStatus, Location, NotificationType

pytestmark = pytest.mark.anyio


async def _donation(engine, donor, clock, hours=1):
    return await engine.donations.create(
        Actor(user_id=donor.id, role=donor.role),
        DonationIn(food_type="Bread", quantity="20 loaves",
                   expiry_date=clock() + timedelta(hours=hours),
                   location=Location(lat=14.5995, lng=120.9842)),
    )


async def test_sweep_expires_once(engine, repo, users, clock, notifier):
    donor = users["donor"]
    donation = await _donation(engine, donor, clock)
    clock.advance(hours=2)

    first = await engine.sweeper.sweep_once()
    assert (first.scanned, first.expired, first.failed) == (1, 1, 0)
    expired = await repo.get_donation(donation.id)
    assert expired.status == DonationStatus.EXPIRED
    assert expired.expired_at == clock()

    clock.advance(minutes=15)
    second = await engine.sweeper.sweep_once()
    assert (second.scanned, second.expired) == (0, 0)
    assert len(notifier.to(donor.id, NotificationType.SYSTEM)) == 1


async def test_sweep_skips_fresh_and_terminal(engine, repo, users, clock):
    donor = users["donor"]
    fresh = await _donation(engine, donor, clock, hours=48)
    stale = await _donation(engine, donor, clock)
    cancelled = await _donation(engine, donor, clock)
    await engine.donations.cancel(cancelled.id, "no longer available")
    clock.advance(hours=2)

    report = await engine.sweeper.sweep_once()
    assert report.expired == 1
    assert (await repo.get_donation(fresh.id)).status == DonationStatus.CREATED
    assert (await repo.get_donation(stale.id)).status == DonationStatus.EXPIRED
    assert (await repo.get_donation(cancelled.id)).status == DonationStatus.CANCELLED


async def test_sweep_expires_accepted_donations(engine, repo, users, clock):
    donation = await _donation(engine, users["donor"], clock)
    await engine.donations.accept(Actor(user_id=users["ngo"].id, role=users["ngo"].role), donation.id)
    clock.advance(hours=2)

    await engine.sweeper.sweep_once()
    assert (await repo.get_donation(donation.id)).status == DonationStatus.EXPIRED


async def test_one_failure_does_not_stop_the_batch(engine, repo, users, clock, monkeypatch):
    a = await _donation(engine, users["donor"], clock)
    b = await _donation(engine, users["donor"], clock)
    clock.advance(hours=2)

    original = engine.donations.expire

    async def flaky(donation_id):
        if donation_id == a.id:
            raise RuntimeError("write failed")
        return await original(donation_id)

    monkeypatch.setattr(engine.donations, "expire", flaky)
    report = await engine.sweeper.sweep_once()
    assert (report.scanned, report.expired, report.failed) == (2, 1, 1)
    assert (await repo.get_donation(a.id)).status == DonationStatus.CREATED
    assert (await repo.get_donation(b.id)).status == DonationStatus.EXPIRED


async def test_expire_before_expiry_rejected(engine, users, clock):
    donation = await _donation(engine, users["donor"], clock)
    with pytest.raises(InvalidTransitionError):
        await engine.donations.expire(donation.id)


async def test_overlapping_tick_is_skipped(engine, users, clock):
    await _donation(engine, users["donor"], clock)
    clock.advance(hours=2)

    async with engine.sweeper._running:
        assert await engine.sweeper.tick() is None
    report = await engine.sweeper.tick()
    assert report.expired == 1


async def test_run_forever_cancels_cleanly(engine, users, clock):
    await _donation(engine, users["donor"], clock)
    clock.advance(hours=2)
    engine.sweeper.interval_seconds = 0.01

    task = asyncio.create_task(engine.sweeper.run_forever())
    await asyncio.sleep(0.05)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task
    donations = await engine.donations.list(status=DonationStatus.EXPIRED)
    assert len(donations) == 1


async def test_run_forever_cancels_every_running_sweep(engine, monkeypatch):
    engine.sweeper.interval_seconds = 0.01
    started = 0
    cancelled = 0
    never = asyncio.Event()

    async def stuck_sweep():
        nonlocal started, cancelled
        started += 1
        try:
            await never.wait()
        except asyncio.CancelledError:
            cancelled += 1
            raise

    monkeypatch.setattr(engine.sweeper, "_sweep", stuck_sweep)
    task = asyncio.create_task(engine.sweeper.run_forever())
    await asyncio.sleep(0.05)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    # later ticks were skipped while the first sweep held the lock
    assert started == 1
    assert cancelled == 1
    assert not engine.sweeper._tasks
