import asyncio

import pytest

from zerowaste.models.schemas import PointsSource, Role, User

pytestmark = pytest.mark.anyio


async def _donors(repo, n):
    out = []
    for i in range(n):
        u = User(name=f"Donor {i}", role=Role.DONOR)
        await repo.add_user(u)
        out.append(u)
    return out


async def test_ranks_are_dense_and_descending(engine, repo):
    donors = await _donors(repo, 5)
    amounts = [30, 10, 50, 20, 40]
    await asyncio.gather(*[
        engine.ledger.award(d.id, pts, PointsSource.DONATION, Role.DONOR, f"d{i}")
        for i, (d, pts) in enumerate(zip(donors, amounts))
    ])

    top = await engine.leaderboard.top(Role.DONOR)
    assert [e.rank for e in top] == [1, 2, 3, 4, 5]
    assert [e.total_points for e in top] == [50, 40, 30, 20, 10]


async def test_roles_ranked_separately(engine, users):
    await engine.ledger.award(users["donor"].id, 10, PointsSource.DONATION, Role.DONOR, "d1")
    await engine.ledger.award(users["ngo"].id, 5, PointsSource.DONATION, Role.NGO, "d1")

    assert [e.user_id for e in await engine.leaderboard.top(Role.DONOR)] == [users["donor"].id]
    ngo = (await engine.leaderboard.top(Role.NGO))[0]
    assert ngo.rank == 1 and ngo.collections_count == 1


async def test_rank_moves_after_more_points(engine, repo):
    a, b = await _donors(repo, 2)
    await engine.ledger.award(a.id, 20, PointsSource.DONATION, Role.DONOR, "x")
    await engine.ledger.award(b.id, 10, PointsSource.DONATION, Role.DONOR, "y")
    assert (await repo.get_leaderboard_entry(b.id)).rank == 2

    await engine.ledger.award(b.id, 25, PointsSource.DONATION, Role.DONOR, "z")
    assert (await repo.get_leaderboard_entry(b.id)).rank == 1
    assert (await repo.get_leaderboard_entry(a.id)).rank == 2


async def test_standing(engine, repo):
    donors = await _donors(repo, 4)
    for i, d in enumerate(donors):
        await engine.ledger.award(d.id, (i + 1) * 10, PointsSource.DONATION, Role.DONOR, "d")

    best = await engine.leaderboard.standing(donors[-1].id, Role.DONOR)
    assert best["rank"] == 1
    assert best["total_users"] == 4
    assert best["percentile"] == 100.0

    worst = await engine.leaderboard.standing(donors[0].id, Role.DONOR)
    assert worst["rank"] == 4 and worst["percentile"] == 25.0


async def test_standing_for_admin(engine, users):
    out = await engine.leaderboard.standing(users["admin"].id, Role.ADMIN)
    assert out["rank"] is None


async def test_update_ignores_admin_and_unknown(engine, users):
    assert await engine.leaderboard.update(users["admin"].id, Role.ADMIN) is None
    assert await engine.leaderboard.update("ghost", Role.DONOR) is None
