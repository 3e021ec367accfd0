# zerowaste/services/points.py
import asyncio
import logging
from typing import Optional, Union

from zerowaste.core.clock import Clock, utcnow
from zerowaste.core.errors import (
    DependencyError, DuplicateAwardResolved, NotFoundError, RescueError, ValidationError,
)
from zerowaste.core.gamification import POINT_VALUES
from zerowaste.models.schemas import NotificationType, PointsEntry, PointsSource, RANKED_ROLES, Role
from zerowaste.services.notifications import safe_notify

logger = logging.getLogger(__name__)


def calculate_points(action: str, role, table: Optional[dict] = None) -> int:
    """Points for an action/role pair; unknown pairs are worth 0."""
    table = POINT_VALUES if table is None else table
    values = table.get(action) or {}
    try:
        role = Role(role)
    except ValueError:
        return values.get("DEFAULT", 0)
    return values.get(role, values.get("DEFAULT", 0))


class PointsLedger:
    """Append-only, idempotent record of point awards.

    An award is (1) a ledger insert, (2) the user's running total, (3) the
    leaderboard refresh, and (4) a notification. Steps 1-3 either all land or
    are rolled back; step 4 is best effort.
    """

    def __init__(self, repo, leaderboard, notifier=None, clock: Clock = utcnow,
                 point_values: Optional[dict] = None):
        self.repo = repo
        self.leaderboard = leaderboard
        self.notifier = notifier
        self.clock = clock
        self.point_values = POINT_VALUES if point_values is None else point_values

    def calculate(self, action: str, role) -> int:
        return calculate_points(action, role, self.point_values)

    async def award(self, user_id: str, amount: int, source: PointsSource, role: Role,
                    source_id: Optional[str] = None, description: str = "") -> PointsEntry:
        result = await self.try_award(user_id, amount, source, role, source_id, description)
        if isinstance(result, DuplicateAwardResolved):
            return result.entry
        return result

    async def try_award(self, user_id: str, amount: int, source: PointsSource, role: Role,
                        source_id: Optional[str] = None,
                        description: str = "") -> Union[PointsEntry, DuplicateAwardResolved]:
        source = PointsSource(source)
        role = Role(role)
        if role not in RANKED_ROLES:
            raise ValidationError(f"Role {role.value} does not earn points")

        if source_id is not None:
            existing = await self.repo.find_points_entry(user_id, source, source_id)
            if existing:
                logger.debug("duplicate award %s/%s for user %s resolved", source.value, source_id, user_id)
                return DuplicateAwardResolved(existing)

        entry = PointsEntry(
            user_id=user_id,
            points=int(amount),
            source=source,
            source_id=source_id,
            role=role,
            description=description,
            earned_at=self.clock(),
        )
        # insert and apply run to completion even if the caller is cancelled
        stored, created = await asyncio.shield(self._record(entry))
        if not created:
            # lost the race to a concurrent award for the same source
            return DuplicateAwardResolved(stored)
        logger.info("awarded %d points to %s (%s %s)", stored.points, user_id, source.value, source_id or "-")

        await safe_notify(
            self.notifier, user_id,
            f"You earned {stored.points} points! {description}".strip(),
            NotificationType.POINTS_EARNED, source_id,
        )
        return stored

    async def _record(self, entry: PointsEntry):
        stored, created = await self.repo.insert_points_if_absent(entry)
        if created:
            await self._apply(stored)
        return stored, created

    async def _apply(self, entry: PointsEntry) -> None:
        incremented = False
        try:
            user = await self.repo.increment_total_points(entry.user_id, entry.points)
            if user is None:
                raise NotFoundError(f"User {entry.user_id} not found")
            incremented = True
            await self.leaderboard.update(entry.user_id, entry.role)
        except (Exception, asyncio.CancelledError) as ex:
            await asyncio.shield(self._rollback(entry, incremented))
            if isinstance(ex, RescueError) or isinstance(ex, asyncio.CancelledError):
                raise
            raise DependencyError(f"Points award failed: {ex}") from ex

    async def _rollback(self, entry: PointsEntry, incremented: bool) -> None:
        try:
            if incremented:
                await self.repo.increment_total_points(entry.user_id, -entry.points)
            await self.repo.delete_points_entry(entry.id)
            if incremented:
                await self.leaderboard.update(entry.user_id, entry.role)
        except Exception:
            # the entry is left for reconciliation; totals are recomputable from the ledger
            logger.exception("rollback of points entry %s failed", entry.id)
        else:
            logger.warning("rolled back points entry %s for user %s", entry.id, entry.user_id)

    async def adjust(self, user_id: str, amount: int, reason: str,
                     adjustment_id: Optional[str] = None) -> Union[PointsEntry, DuplicateAwardResolved]:
        """Administrative correction; may be negative."""
        user = await self.repo.get_user(user_id)
        if user is None:
            raise NotFoundError(f"User {user_id} not found")
        if not reason or not reason.strip():
            raise ValidationError("An adjustment needs a reason")
        return await self.try_award(user_id, amount, PointsSource.ADMIN_ADJUSTMENT, user.role,
                                    adjustment_id, reason.strip())

    async def history(self, user_id: str, limit: int = 50):
        return await self.repo.list_points(user_id, limit=limit)
