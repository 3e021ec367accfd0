# zerowaste/repos/inmemory.py
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from zerowaste.models.schemas import (
    ACTIVE_ASSIGNMENT_STATUSES, Achievement, AchievementType, AssignmentStatus, Badge,
    Donation, DonationStatus, LeaderboardEntry, Notification, PickupAssignment,
    PointsEntry, PointsSource, Role, User, UserStatus,
)

# None of these methods await, so each one runs without interleaving on the event
# loop; that is what makes the *_if_absent and compare-and-set helpers atomic.

class InMemoryRepo:
    def __init__(self):
        self.users: Dict[str, User] = {}
        self.donations: Dict[str, Donation] = {}
        self.assignments: Dict[str, PickupAssignment] = {}
        self.points: Dict[str, PointsEntry] = {}
        self.points_keys: Dict[tuple, str] = {}
        self.leaderboard: Dict[str, LeaderboardEntry] = {}
        self.achievements: Dict[str, Achievement] = {}
        self.badges: Dict[str, Badge] = {}
        self.notifications: Dict[str, Notification] = {}

    # Users
    async def add_user(self, user: User) -> User:
        self.users[user.id] = user.model_copy(deep=True)
        return user

    async def get_user(self, user_id: str) -> Optional[User]:
        u = self.users.get(user_id)
        return u.model_copy(deep=True) if u else None

    async def list_users(self, role: Optional[Role] = None,
                         status: Optional[UserStatus] = None) -> List[User]:
        return [u.model_copy(deep=True) for u in self.users.values()
                if (role is None or u.role == role) and (status is None or u.status == status)]

    async def increment_total_points(self, user_id: str, amount: int) -> Optional[User]:
        u = self.users.get(user_id)
        if u is None:
            return None
        u.total_points += amount
        return u.model_copy(deep=True)

    # Donations
    async def insert_donation(self, donation: Donation) -> Donation:
        self.donations[donation.id] = donation.model_copy(deep=True)
        return donation

    async def get_donation(self, donation_id: str) -> Optional[Donation]:
        d = self.donations.get(donation_id)
        return d.model_copy(deep=True) if d else None

    async def list_donations(self, status: Optional[DonationStatus] = None,
                             donor_id: Optional[str] = None,
                             limit: Optional[int] = None) -> List[Donation]:
        items = [d for d in self.donations.values()
                 if (status is None or d.status == status) and (donor_id is None or d.donor_id == donor_id)]
        items.sort(key=lambda d: d.created_at, reverse=True)
        if limit is not None:
            items = items[:limit]
        return [d.model_copy(deep=True) for d in items]

    async def update_donation(self, donation_id: str, expected: Iterable[DonationStatus],
                              changes: dict) -> Optional[Donation]:
        d = self.donations.get(donation_id)
        if d is None or d.status not in set(expected):
            return None
        updated = d.model_copy(update=changes, deep=True)
        self.donations[donation_id] = updated
        return updated.model_copy(deep=True)

    async def delete_donation(self, donation_id: str, expected: Iterable[DonationStatus]) -> bool:
        d = self.donations.get(donation_id)
        if d is None or d.status not in set(expected):
            return False
        del self.donations[donation_id]
        return True

    async def find_expired_donations(self, now: datetime,
                                     exclude: Iterable[DonationStatus]) -> List[Donation]:
        skip = set(exclude)
        return [d.model_copy(deep=True) for d in self.donations.values()
                if d.expiry_date < now and d.status not in skip]

    async def count_donations(self, donor_id: Optional[str] = None,
                              accepted_by: Optional[str] = None,
                              assigned_volunteer: Optional[str] = None,
                              statuses: Optional[Iterable[DonationStatus]] = None) -> int:
        allowed = set(statuses) if statuses is not None else None
        return sum(
            1 for d in self.donations.values()
            if (donor_id is None or d.donor_id == donor_id)
            and (accepted_by is None or d.accepted_by == accepted_by)
            and (assigned_volunteer is None or d.assigned_volunteer == assigned_volunteer)
            and (allowed is None or d.status in allowed)
        )

    # Pickup assignments
    async def save_assignment(self, assignment: PickupAssignment) -> PickupAssignment:
        # one assignment per donation: replace whatever was there
        for aid, a in list(self.assignments.items()):
            if a.donation_id == assignment.donation_id and aid != assignment.id:
                del self.assignments[aid]
        self.assignments[assignment.id] = assignment.model_copy(deep=True)
        return assignment

    async def get_assignment(self, assignment_id: str) -> Optional[PickupAssignment]:
        a = self.assignments.get(assignment_id)
        return a.model_copy(deep=True) if a else None

    async def get_assignment_for_donation(self, donation_id: str) -> Optional[PickupAssignment]:
        for a in self.assignments.values():
            if a.donation_id == donation_id:
                return a.model_copy(deep=True)
        return None

    async def update_assignment(self, assignment_id: str, changes: dict) -> Optional[PickupAssignment]:
        a = self.assignments.get(assignment_id)
        if a is None:
            return None
        updated = a.model_copy(update=changes, deep=True)
        self.assignments[assignment_id] = updated
        return updated.model_copy(deep=True)

    async def find_active_assignment(self, volunteer_id: Optional[str] = None,
                                     donation_id: Optional[str] = None) -> Optional[PickupAssignment]:
        for a in self.assignments.values():
            if a.status not in ACTIVE_ASSIGNMENT_STATUSES:
                continue
            if volunteer_id is not None and a.volunteer_id != volunteer_id:
                continue
            if donation_id is not None and a.donation_id != donation_id:
                continue
            return a.model_copy(deep=True)
        return None

    async def list_assignments(self, volunteer_id: str,
                               status: Optional[AssignmentStatus] = None) -> List[PickupAssignment]:
        items = [a for a in self.assignments.values()
                 if a.volunteer_id == volunteer_id and (status is None or a.status == status)]
        items.sort(key=lambda a: a.assigned_at, reverse=True)
        return [a.model_copy(deep=True) for a in items]

    # Points ledger
    async def find_points_entry(self, user_id: str, source: PointsSource,
                                source_id: str) -> Optional[PointsEntry]:
        eid = self.points_keys.get((user_id, source, source_id))
        return self.points[eid].model_copy(deep=True) if eid else None

    async def insert_points_if_absent(self, entry: PointsEntry) -> Tuple[PointsEntry, bool]:
        if entry.source_id is not None:
            key = (entry.user_id, entry.source, entry.source_id)
            if key in self.points_keys:
                return self.points[self.points_keys[key]].model_copy(deep=True), False
            self.points_keys[key] = entry.id
        self.points[entry.id] = entry.model_copy(deep=True)
        return entry, True

    async def delete_points_entry(self, entry_id: str) -> None:
        entry = self.points.pop(entry_id, None)
        if entry is not None and entry.source_id is not None:
            self.points_keys.pop((entry.user_id, entry.source, entry.source_id), None)

    async def count_points(self, user_id: str, source: PointsSource,
                           exclude_suffix: Optional[str] = None) -> int:
        return sum(
            1 for p in self.points.values()
            if p.user_id == user_id and p.source == source
            and not (exclude_suffix and (p.source_id or "").endswith(exclude_suffix))
        )

    async def list_points(self, user_id: str, limit: int = 50) -> List[PointsEntry]:
        items = [p for p in self.points.values() if p.user_id == user_id]
        items.sort(key=lambda p: p.earned_at, reverse=True)
        return [p.model_copy(deep=True) for p in items[:limit]]

    # Leaderboard
    async def upsert_leaderboard_entry(self, entry: LeaderboardEntry) -> LeaderboardEntry:
        existing = self.leaderboard.get(entry.user_id)
        rank = existing.rank if existing else 0
        self.leaderboard[entry.user_id] = entry.model_copy(update={"rank": rank}, deep=True)
        return self.leaderboard[entry.user_id].model_copy(deep=True)

    async def get_leaderboard_entry(self, user_id: str) -> Optional[LeaderboardEntry]:
        e = self.leaderboard.get(user_id)
        return e.model_copy(deep=True) if e else None

    async def list_leaderboard(self, role: Role, limit: Optional[int] = None) -> List[LeaderboardEntry]:
        items = [e for e in self.leaderboard.values() if e.role == role]
        items.sort(key=lambda e: e.total_points, reverse=True)
        if limit is not None:
            items = items[:limit]
        return [e.model_copy(deep=True) for e in items]

    async def write_ranks(self, ranks: Sequence[Tuple[str, int]]) -> None:
        for user_id, rank in ranks:
            if user_id in self.leaderboard:
                self.leaderboard[user_id].rank = rank

    async def count_leaderboard(self, role: Role) -> int:
        return sum(1 for e in self.leaderboard.values() if e.role == role)

    # Achievements & badges
    async def insert_achievement_if_absent(self, achievement: Achievement) -> Tuple[Achievement, bool]:
        for a in self.achievements.values():
            if a.user_id == achievement.user_id and a.title == achievement.title:
                return a.model_copy(deep=True), False
        self.achievements[achievement.id] = achievement.model_copy(deep=True)
        return achievement, True

    async def find_milestone_achievement(self, user_id: str, milestone_value: int) -> Optional[Achievement]:
        for a in self.achievements.values():
            if (a.user_id == user_id and a.type == AchievementType.MILESTONE
                    and a.metadata.get("milestone_value") == milestone_value):
                return a.model_copy(deep=True)
        return None

    async def list_achievements(self, user_id: str) -> List[Achievement]:
        items = [a for a in self.achievements.values() if a.user_id == user_id]
        items.sort(key=lambda a: a.earned_at, reverse=True)
        return [a.model_copy(deep=True) for a in items]

    async def count_achievements(self, user_id: str) -> int:
        return sum(1 for a in self.achievements.values() if a.user_id == user_id)

    async def insert_badge_if_absent(self, badge: Badge) -> Tuple[Badge, bool]:
        for b in self.badges.values():
            if b.user_id == badge.user_id and b.badge_type == badge.badge_type:
                return b.model_copy(deep=True), False
        self.badges[badge.id] = badge.model_copy(deep=True)
        return badge, True

    async def list_badges(self, user_id: str) -> List[Badge]:
        items = [b for b in self.badges.values() if b.user_id == user_id]
        items.sort(key=lambda b: b.earned_at, reverse=True)
        return [b.model_copy(deep=True) for b in items]

    async def count_badges(self, user_id: str) -> int:
        return sum(1 for b in self.badges.values() if b.user_id == user_id)

    # Notifications
    async def insert_notification(self, notification: Notification) -> Notification:
        self.notifications[notification.id] = notification.model_copy(deep=True)
        return notification

    async def list_notifications(self, user_id: str, unread_only: bool = False,
                                 limit: int = 50) -> List[Notification]:
        items = [n for n in self.notifications.values()
                 if n.user_id == user_id and not (unread_only and n.read)]
        items.sort(key=lambda n: n.created_at, reverse=True)
        return [n.model_copy(deep=True) for n in items[:limit]]

    async def mark_notification_read(self, notification_id: str, user_id: str,
                                     at: datetime) -> Optional[Notification]:
        n = self.notifications.get(notification_id)
        if n is None or n.user_id != user_id:
            return None
        n.read = True
        n.read_at = at
        return n.model_copy(deep=True)
