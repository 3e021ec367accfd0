# zerowaste/services/achievements.py
import logging
from typing import List, Optional

from zerowaste.core.clock import Clock, utcnow
from zerowaste.core.gamification import (
    ACHIEVEMENTS, BADGE_ORDER, BADGE_TIERS, COMPLETION_SUFFIX, MILESTONES,
)
from zerowaste.core.locks import KeyedLock
from zerowaste.models.schemas import (
    Achievement, AchievementType, Badge, NotificationType, PointsSource, Role,
)
from zerowaste.services.notifications import safe_notify

logger = logging.getLogger(__name__)


class AchievementService:
    def __init__(self, repo, ledger, leaderboard, notifier=None, clock: Clock = utcnow,
                 catalogs: Optional[dict] = None, badge_tiers: Optional[dict] = None,
                 milestones: Optional[list] = None):
        self.repo = repo
        self.ledger = ledger
        self.leaderboard = leaderboard
        self.notifier = notifier
        self.clock = clock
        self.catalogs = ACHIEVEMENTS if catalogs is None else catalogs
        self.badge_tiers = BADGE_TIERS if badge_tiers is None else badge_tiers
        self.milestones = MILESTONES if milestones is None else milestones
        self._locks = KeyedLock()

    def catalog_for(self, role) -> list:
        try:
            return self.catalogs.get(Role(role), [])
        except ValueError:
            return []

    # ---------- catalog achievements ----------
    async def check_trigger(self, user_id: str, role: Role, trigger: str,
                            current_value: int) -> List[Achievement]:
        awarded = []
        for cfg in self.catalog_for(role):
            if cfg["trigger"] != trigger or current_value < cfg["target_value"]:
                continue
            achievement = await self.award_achievement(user_id, cfg["id"], role)
            if achievement:
                awarded.append(achievement)
        return awarded

    async def award_achievement(self, user_id: str, achievement_id: str,
                                role: Role) -> Optional[Achievement]:
        cfg = next((a for a in self.catalog_for(role) if a["id"] == achievement_id), None)
        if cfg is None:
            logger.info("achievement %s not found for role %s", achievement_id, role)
            return None

        achievement = Achievement(
            user_id=user_id,
            type=cfg["type"],
            title=cfg["title"],
            description=cfg.get("description", ""),
            icon=cfg.get("icon", "🏅"),
            points_awarded=cfg.get("points_awarded", 0),
            metadata={"achievement_id": achievement_id, "role": Role(role).value},
            earned_at=self.clock(),
        )
        return await self._grant(achievement, Role(role))

    # ---------- milestones ----------
    async def check_milestones(self, user_id: str, role: Role) -> List[Achievement]:
        role = Role(role)
        if role == Role.DONOR:
            total_actions = await self.repo.count_points(user_id, PointsSource.DONATION, COMPLETION_SUFFIX)
        else:
            total_actions = await self.repo.count_points(user_id, PointsSource.PICKUP)
        label = "{} donations made" if role == Role.DONOR else "Completed {} pickups"

        awarded = []
        for count, title, points in self.milestones:
            if total_actions < count:
                continue
            async with self._locks.hold((user_id, "milestone", count)):
                existing = await self.repo.find_milestone_achievement(user_id, count)
                if existing:
                    await self._pay_bonus(existing, role)
                    continue
                achievement = Achievement(
                    user_id=user_id,
                    type=AchievementType.MILESTONE,
                    title=title,
                    description=label.format(count),
                    points_awarded=points,
                    metadata={"milestone_value": count},
                    earned_at=self.clock(),
                )
                granted = await self._grant(achievement, role)
            if granted:
                awarded.append(granted)
        return awarded

    async def _grant(self, achievement: Achievement, role: Role) -> Optional[Achievement]:
        async with self._locks.hold((achievement.user_id, "title", achievement.title)):
            stored, created = await self.repo.insert_achievement_if_absent(achievement)
        if not created:
            # replay the keyed bonus in case an earlier grant failed before paying it
            await self._pay_bonus(stored, role)
            return None

        logger.info("user %s unlocked %r", stored.user_id, stored.title)
        await self._pay_bonus(stored, role)
        await self.check_badges(stored.user_id)
        await safe_notify(
            self.notifier, stored.user_id,
            f"🎉 Achievement Unlocked: {stored.title}! You earned {stored.points_awarded} points.",
            NotificationType.BADGE_EARNED, stored.id,
        )
        return stored

    async def _pay_bonus(self, achievement: Achievement, role: Role) -> None:
        if achievement.points_awarded > 0:
            await self.ledger.award(
                achievement.user_id, achievement.points_awarded, PointsSource.ACHIEVEMENT, role,
                source_id=achievement.id, description=f"Achievement unlocked: {achievement.title}",
            )

    # ---------- badges ----------
    async def check_badges(self, user_id: str) -> List[Badge]:
        """Unlock every tier the user's total reaches. Tiers are never taken back."""
        user = await self.repo.get_user(user_id)
        if user is None:
            return []

        earned = []
        for badge_type in BADGE_ORDER:
            cfg = self.badge_tiers.get(badge_type)
            if cfg is None or user.total_points < cfg["points_required"]:
                continue
            badge = Badge(
                user_id=user_id,
                badge_type=badge_type,
                badge_name=cfg["name"],
                description=cfg.get("description", ""),
                icon=cfg.get("icon", ""),
                criteria=f"{cfg['points_required']} total points",
                earned_at=self.clock(),
            )
            async with self._locks.hold((user_id, "badge", badge_type)):
                stored, created = await self.repo.insert_badge_if_absent(badge)
            if not created:
                continue
            earned.append(stored)
            logger.info("user %s earned badge %s", user_id, badge_type.value)
            await safe_notify(
                self.notifier, user_id,
                f"🏅 Badge Unlocked: {cfg['name']}! {cfg.get('icon', '')}".strip(),
                NotificationType.BADGE_EARNED, stored.id,
            )
        if earned:
            await self.leaderboard.update(user_id, user.role)
        return earned

    # ---------- lifecycle hook ----------
    async def evaluate(self, user_id: str, role: Role, trigger: Optional[str] = None,
                       current_value: int = 0, milestones: bool = True) -> List[Achievement]:
        awarded = []
        if milestones:
            awarded += await self.check_milestones(user_id, role)
        if trigger:
            awarded += await self.check_trigger(user_id, role, trigger, current_value)
        await self.check_badges(user_id)
        return awarded

    # ---------- read side ----------
    async def user_achievements(self, user_id: str, role: Role) -> List[dict]:
        earned = {a.title: a for a in await self.repo.list_achievements(user_id)}
        out = []
        for cfg in self.catalog_for(role):
            a = earned.get(cfg["title"])
            out.append({
                **cfg,
                "earned_at": a.earned_at if a else None,
                "record_id": a.id if a else None,
            })
        return out

    async def user_badges(self, user_id: str) -> List[Badge]:
        return await self.repo.list_badges(user_id)

    def badge_levels(self) -> List[dict]:
        return [
            {"type": t.value, **self.badge_tiers[t]}
            for t in BADGE_ORDER if t in self.badge_tiers
        ]
