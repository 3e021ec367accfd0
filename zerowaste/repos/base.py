# zerowaste/repos/base.py
from datetime import datetime
from typing import Iterable, List, Optional, Protocol, Sequence, Tuple

from zerowaste.models.schemas import (
    Achievement, AssignmentStatus, Badge, Donation, DonationStatus, LeaderboardEntry,
    Notification, PickupAssignment, PointsEntry, PointsSource, Role, User, UserStatus,
)


class Repository(Protocol):
    """Persistence contract the engine depends on.

    ``update_donation`` is a compare-and-set: it applies ``changes`` only when the
    stored status is one of ``expected`` and returns ``None`` otherwise. The
    ``*_if_absent`` inserts are atomic and return ``(record, created)``; when the
    natural key already exists the stored record comes back with ``created=False``.
    """

    # Users
    async def add_user(self, user: User) -> User: ...
    async def get_user(self, user_id: str) -> Optional[User]: ...
    async def list_users(self, role: Optional[Role] = None,
                         status: Optional[UserStatus] = None) -> List[User]: ...
    async def increment_total_points(self, user_id: str, amount: int) -> Optional[User]: ...

    # Donations
    async def insert_donation(self, donation: Donation) -> Donation: ...
    async def get_donation(self, donation_id: str) -> Optional[Donation]: ...
    async def list_donations(self, status: Optional[DonationStatus] = None,
                             donor_id: Optional[str] = None,
                             limit: Optional[int] = None) -> List[Donation]: ...
    async def update_donation(self, donation_id: str, expected: Iterable[DonationStatus],
                              changes: dict) -> Optional[Donation]: ...
    async def delete_donation(self, donation_id: str, expected: Iterable[DonationStatus]) -> bool: ...
    async def find_expired_donations(self, now: datetime,
                                     exclude: Iterable[DonationStatus]) -> List[Donation]: ...
    async def count_donations(self, donor_id: Optional[str] = None,
                              accepted_by: Optional[str] = None,
                              assigned_volunteer: Optional[str] = None,
                              statuses: Optional[Iterable[DonationStatus]] = None) -> int: ...

    # Pickup assignments
    async def save_assignment(self, assignment: PickupAssignment) -> PickupAssignment: ...
    async def get_assignment(self, assignment_id: str) -> Optional[PickupAssignment]: ...
    async def get_assignment_for_donation(self, donation_id: str) -> Optional[PickupAssignment]: ...
    async def update_assignment(self, assignment_id: str, changes: dict) -> Optional[PickupAssignment]: ...
    async def find_active_assignment(self, volunteer_id: Optional[str] = None,
                                     donation_id: Optional[str] = None) -> Optional[PickupAssignment]: ...
    async def list_assignments(self, volunteer_id: str,
                               status: Optional[AssignmentStatus] = None) -> List[PickupAssignment]: ...

    # Points ledger
    async def find_points_entry(self, user_id: str, source: PointsSource,
                                source_id: str) -> Optional[PointsEntry]: ...
    async def insert_points_if_absent(self, entry: PointsEntry) -> Tuple[PointsEntry, bool]: ...
    async def delete_points_entry(self, entry_id: str) -> None: ...
    async def count_points(self, user_id: str, source: PointsSource,
                           exclude_suffix: Optional[str] = None) -> int: ...
    async def list_points(self, user_id: str, limit: int = 50) -> List[PointsEntry]: ...

    # Leaderboard
    async def upsert_leaderboard_entry(self, entry: LeaderboardEntry) -> LeaderboardEntry: ...
    async def get_leaderboard_entry(self, user_id: str) -> Optional[LeaderboardEntry]: ...
    async def list_leaderboard(self, role: Role, limit: Optional[int] = None) -> List[LeaderboardEntry]: ...
    async def write_ranks(self, ranks: Sequence[Tuple[str, int]]) -> None: ...
    async def count_leaderboard(self, role: Role) -> int: ...

    # Achievements & badges
    async def insert_achievement_if_absent(self, achievement: Achievement) -> Tuple[Achievement, bool]: ...
    async def find_milestone_achievement(self, user_id: str, milestone_value: int) -> Optional[Achievement]: ...
    async def list_achievements(self, user_id: str) -> List[Achievement]: ...
    async def count_achievements(self, user_id: str) -> int: ...
    async def insert_badge_if_absent(self, badge: Badge) -> Tuple[Badge, bool]: ...
    async def list_badges(self, user_id: str) -> List[Badge]: ...
    async def count_badges(self, user_id: str) -> int: ...

    # Notifications
    async def insert_notification(self, notification: Notification) -> Notification: ...
    async def list_notifications(self, user_id: str, unread_only: bool = False,
                                 limit: int = 50) -> List[Notification]: ...
    async def mark_notification_read(self, notification_id: str, user_id: str,
                                     at: datetime) -> Optional[Notification]: ...
