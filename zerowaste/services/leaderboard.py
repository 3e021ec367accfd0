# zerowaste/services/leaderboard.py
import logging
from typing import Optional

from zerowaste.core.clock import Clock, utcnow
from zerowaste.core.gamification import COMPLETION_SUFFIX
from zerowaste.core.locks import KeyedLock
from zerowaste.models.schemas import LeaderboardEntry, PointsSource, RANKED_ROLES, Role

logger = logging.getLogger(__name__)


class LeaderboardService:
    """Per-role materialized ranking.

    Every update re-ranks the whole role. Rank rewrites for a role are serialized
    so two concurrent updates cannot interleave partial rank writes. Users with
    equal totals keep whatever order the store returns them in.
    """

    def __init__(self, repo, clock: Clock = utcnow):
        self.repo = repo
        self.clock = clock
        self._role_locks = KeyedLock()

    async def update(self, user_id: str, role: Role) -> Optional[LeaderboardEntry]:
        role = Role(role)
        if role not in RANKED_ROLES:
            return None
        # read totals inside the lock so a slower update cannot overwrite a newer one
        async with self._role_locks.hold(role):
            user = await self.repo.get_user(user_id)
            if user is None:
                return None
            entry = await self._snapshot(user_id, role, user.total_points)
            await self.repo.upsert_leaderboard_entry(entry)
            await self._rerank(role)
        return await self.repo.get_leaderboard_entry(user_id)

    async def _snapshot(self, user_id: str, role: Role, total_points: int) -> LeaderboardEntry:
        donations = await self.repo.count_points(user_id, PointsSource.DONATION, COMPLETION_SUFFIX)
        pickups = await self.repo.count_points(user_id, PointsSource.PICKUP)
        entry = LeaderboardEntry(
            user_id=user_id,
            role=role,
            total_points=total_points,
            achievements_count=await self.repo.count_achievements(user_id),
            badges_count=await self.repo.count_badges(user_id),
            last_updated=self.clock(),
        )
        if role == Role.DONOR:
            entry.donations_count = donations
        elif role == Role.NGO:
            # NGOs earn DONATION points once per accepted donation
            entry.collections_count = donations
        else:
            entry.pickups_count = pickups
        return entry

    async def recalculate_ranks(self, role: Role) -> None:
        async with self._role_locks.hold(Role(role)):
            await self._rerank(Role(role))

    async def _rerank(self, role: Role) -> None:
        entries = await self.repo.list_leaderboard(role)
        ranks = [(e.user_id, i + 1) for i, e in enumerate(entries)]
        await self.repo.write_ranks(ranks)
        logger.debug("re-ranked %d %s entries", len(ranks), role.value)

    async def top(self, role: Role, limit: int = 100):
        return await self.repo.list_leaderboard(Role(role), limit=limit)

    async def standing(self, user_id: str, role: Role) -> dict:
        role = Role(role)
        if role not in RANKED_ROLES:
            return {"rank": None, "message": "Ranking not available for this role"}
        entry = await self.repo.get_leaderboard_entry(user_id)
        if entry is None:
            user = await self.repo.get_user(user_id)
            return {"rank": None, "total_points": user.total_points if user else 0}
        total = await self.repo.count_leaderboard(role)
        percentile = round((total - entry.rank + 1) / total * 100, 2) if total else 0
        return {
            "rank": entry.rank,
            "total_points": entry.total_points,
            "total_users": total,
            "percentile": percentile,
            "donations_count": entry.donations_count,
            "collections_count": entry.collections_count,
            "pickups_count": entry.pickups_count,
            "achievements_count": entry.achievements_count,
            "badges_count": entry.badges_count,
        }
