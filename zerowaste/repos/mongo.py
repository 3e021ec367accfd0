# zerowaste/repos/mongo.py
from __future__ import annotations

import asyncio
import functools
import logging
import re
from datetime import datetime
from typing import Iterable, List, Optional, Sequence, Tuple

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import DESCENDING, ReturnDocument, UpdateOne
from pymongo.errors import AutoReconnect, ConnectionFailure, DuplicateKeyError, NetworkTimeout

from zerowaste.core.config import settings
from zerowaste.core.errors import DependencyError
from zerowaste.models.schemas import (
    ACTIVE_ASSIGNMENT_STATUSES, Achievement, AchievementType, AssignmentStatus, Badge,
    Donation, DonationStatus, LeaderboardEntry, Notification, PickupAssignment,
    PointsEntry, PointsSource, Role, User, UserStatus,
)

logger = logging.getLogger(__name__)

TRANSIENT_ERRORS = (AutoReconnect, NetworkTimeout, ConnectionFailure)


def retrying(fn):
    """Retry transient Mongo faults with capped exponential backoff."""
    @functools.wraps(fn)
    async def wrapper(self, *args, **kwargs):
        attempts = max(1, self.retry_attempts)
        for attempt in range(1, attempts + 1):
            try:
                return await fn(self, *args, **kwargs)
            except TRANSIENT_ERRORS as ex:
                if attempt == attempts:
                    logger.error("mongo %s failed after %d attempts: %s", fn.__name__, attempt, ex)
                    raise DependencyError(f"Database unavailable ({fn.__name__})") from ex
                delay = min(self.retry_max_delay, self.retry_base_delay * 2 ** (attempt - 1))
                logger.warning("mongo %s transient error (attempt %d/%d), retrying in %.2fs: %s",
                               fn.__name__, attempt, attempts, delay, ex)
                await asyncio.sleep(delay)
    return wrapper


def _to_doc(model) -> dict:
    doc = model.model_dump()
    if "id" in doc:
        doc["_id"] = doc.pop("id")
    return doc


def _from_doc(cls, doc: Optional[dict]):
    if not doc:
        return None
    doc = dict(doc)
    if "_id" in doc:
        _id = doc.pop("_id")
        if "id" in cls.model_fields:
            doc["id"] = str(_id)
    doc.pop("geo", None)
    return cls.model_validate(doc)


def _geo(location: Optional[dict]) -> Optional[dict]:
    if not location:
        return None
    return {"type": "Point", "coordinates": [float(location["lng"]), float(location["lat"])]}


class MongoRepo:
    def __init__(self, db: AsyncIOMotorDatabase,
                 retry_attempts: int = settings.mongo_retry_attempts,
                 retry_base_delay: float = settings.mongo_retry_base_delay,
                 retry_max_delay: float = settings.mongo_retry_max_delay):
        self.db = db
        self.retry_attempts = retry_attempts
        self.retry_base_delay = retry_base_delay
        self.retry_max_delay = retry_max_delay

    # Users
    @retrying
    async def add_user(self, user: User) -> User:
        await self.db.users.insert_one(_to_doc(user))
        return user

    @retrying
    async def get_user(self, user_id: str) -> Optional[User]:
        return _from_doc(User, await self.db.users.find_one({"_id": user_id}))

    @retrying
    async def list_users(self, role: Optional[Role] = None,
                         status: Optional[UserStatus] = None) -> List[User]:
        query = {}
        if role is not None:
            query["role"] = role.value
        if status is not None:
            query["status"] = status.value
        return [_from_doc(User, d) async for d in self.db.users.find(query)]

    @retrying
    async def increment_total_points(self, user_id: str, amount: int) -> Optional[User]:
        doc = await self.db.users.find_one_and_update(
            {"_id": user_id},
            {"$inc": {"total_points": amount}},
            return_document=ReturnDocument.AFTER,
        )
        return _from_doc(User, doc)

    # Donations
    @retrying
    async def insert_donation(self, donation: Donation) -> Donation:
        doc = _to_doc(donation)
        geo = _geo(doc.get("location"))
        if geo:
            doc["geo"] = geo
        await self.db.donations.insert_one(doc)
        return donation

    @retrying
    async def get_donation(self, donation_id: str) -> Optional[Donation]:
        return _from_doc(Donation, await self.db.donations.find_one({"_id": donation_id}))

    @retrying
    async def list_donations(self, status: Optional[DonationStatus] = None,
                             donor_id: Optional[str] = None,
                             limit: Optional[int] = None) -> List[Donation]:
        query = {}
        if status is not None:
            query["status"] = status.value
        if donor_id is not None:
            query["donor_id"] = donor_id
        cur = self.db.donations.find(query).sort("created_at", DESCENDING)
        if limit is not None:
            cur = cur.limit(limit)
        return [_from_doc(Donation, d) async for d in cur]

    @retrying
    async def update_donation(self, donation_id: str, expected: Iterable[DonationStatus],
                              changes: dict) -> Optional[Donation]:
        update = {k: (v.model_dump() if hasattr(v, "model_dump") else v) for k, v in changes.items()}
        if "location" in update:
            update["geo"] = _geo(update["location"])
        doc = await self.db.donations.find_one_and_update(
            {"_id": donation_id, "status": {"$in": [s.value for s in expected]}},
            {"$set": update},
            return_document=ReturnDocument.AFTER,
        )
        return _from_doc(Donation, doc)

    @retrying
    async def delete_donation(self, donation_id: str, expected: Iterable[DonationStatus]) -> bool:
        res = await self.db.donations.delete_one(
            {"_id": donation_id, "status": {"$in": [s.value for s in expected]}}
        )
        return res.deleted_count == 1

    @retrying
    async def find_expired_donations(self, now: datetime,
                                     exclude: Iterable[DonationStatus]) -> List[Donation]:
        cur = self.db.donations.find({
            "expiry_date": {"$lt": now},
            "status": {"$nin": [s.value for s in exclude]},
        })
        return [_from_doc(Donation, d) async for d in cur]

    @retrying
    async def count_donations(self, donor_id: Optional[str] = None,
                              accepted_by: Optional[str] = None,
                              assigned_volunteer: Optional[str] = None,
                              statuses: Optional[Iterable[DonationStatus]] = None) -> int:
        query = {}
        if donor_id is not None:
            query["donor_id"] = donor_id
        if accepted_by is not None:
            query["accepted_by"] = accepted_by
        if assigned_volunteer is not None:
            query["assigned_volunteer"] = assigned_volunteer
        if statuses is not None:
            query["status"] = {"$in": [s.value for s in statuses]}
        return await self.db.donations.count_documents(query)

    # Pickup assignments
    @retrying
    async def save_assignment(self, assignment: PickupAssignment) -> PickupAssignment:
        doc = _to_doc(assignment)
        _id = doc.pop("_id")
        # unique donation_id index: replace the previous assignment in place
        saved = await self.db.assignments.find_one_and_update(
            {"donation_id": assignment.donation_id},
            {"$set": doc, "$setOnInsert": {"_id": _id}},
            upsert=True,
            return_document=ReturnDocument.AFTER,
        )
        return _from_doc(PickupAssignment, saved)

    @retrying
    async def get_assignment(self, assignment_id: str) -> Optional[PickupAssignment]:
        return _from_doc(PickupAssignment, await self.db.assignments.find_one({"_id": assignment_id}))

    @retrying
    async def get_assignment_for_donation(self, donation_id: str) -> Optional[PickupAssignment]:
        return _from_doc(PickupAssignment, await self.db.assignments.find_one({"donation_id": donation_id}))

    @retrying
    async def update_assignment(self, assignment_id: str, changes: dict) -> Optional[PickupAssignment]:
        doc = await self.db.assignments.find_one_and_update(
            {"_id": assignment_id}, {"$set": changes}, return_document=ReturnDocument.AFTER,
        )
        return _from_doc(PickupAssignment, doc)

    @retrying
    async def find_active_assignment(self, volunteer_id: Optional[str] = None,
                                     donation_id: Optional[str] = None) -> Optional[PickupAssignment]:
        query = {"status": {"$in": [s.value for s in ACTIVE_ASSIGNMENT_STATUSES]}}
        if volunteer_id is not None:
            query["volunteer_id"] = volunteer_id
        if donation_id is not None:
            query["donation_id"] = donation_id
        return _from_doc(PickupAssignment, await self.db.assignments.find_one(query))

    @retrying
    async def list_assignments(self, volunteer_id: str,
                               status: Optional[AssignmentStatus] = None) -> List[PickupAssignment]:
        query = {"volunteer_id": volunteer_id}
        if status is not None:
            query["status"] = status.value
        cur = self.db.assignments.find(query).sort("assigned_at", DESCENDING)
        return [_from_doc(PickupAssignment, d) async for d in cur]

    # Points ledger
    @retrying
    async def find_points_entry(self, user_id: str, source: PointsSource,
                                source_id: str) -> Optional[PointsEntry]:
        doc = await self.db.points.find_one(
            {"user_id": user_id, "source": source.value, "source_id": source_id}
        )
        return _from_doc(PointsEntry, doc)

    @retrying
    async def insert_points_if_absent(self, entry: PointsEntry) -> Tuple[PointsEntry, bool]:
        try:
            await self.db.points.insert_one(_to_doc(entry))
        except DuplicateKeyError:
            if entry.source_id is not None:
                existing = await self.db.points.find_one(
                    {"user_id": entry.user_id, "source": entry.source.value, "source_id": entry.source_id}
                )
                if existing is not None and str(existing["_id"]) != entry.id:
                    return _from_doc(PointsEntry, existing), False
            # our own insert, retried after a lost acknowledgement
            return entry, True
        return entry, True

    @retrying
    async def delete_points_entry(self, entry_id: str) -> None:
        await self.db.points.delete_one({"_id": entry_id})

    @retrying
    async def count_points(self, user_id: str, source: PointsSource,
                           exclude_suffix: Optional[str] = None) -> int:
        query = {"user_id": user_id, "source": source.value}
        if exclude_suffix:
            query["source_id"] = {"$not": re.compile(re.escape(exclude_suffix) + "$")}
        return await self.db.points.count_documents(query)

    @retrying
    async def list_points(self, user_id: str, limit: int = 50) -> List[PointsEntry]:
        cur = self.db.points.find({"user_id": user_id}).sort("earned_at", DESCENDING).limit(limit)
        return [_from_doc(PointsEntry, d) async for d in cur]

    # Leaderboard
    @retrying
    async def upsert_leaderboard_entry(self, entry: LeaderboardEntry) -> LeaderboardEntry:
        doc = entry.model_dump()
        rank = doc.pop("rank")
        saved = await self.db.leaderboard.find_one_and_update(
            {"user_id": entry.user_id},
            {"$set": doc, "$setOnInsert": {"rank": rank}},
            upsert=True,
            return_document=ReturnDocument.AFTER,
        )
        return _from_doc(LeaderboardEntry, saved)

    @retrying
    async def get_leaderboard_entry(self, user_id: str) -> Optional[LeaderboardEntry]:
        return _from_doc(LeaderboardEntry, await self.db.leaderboard.find_one({"user_id": user_id}))

    @retrying
    async def list_leaderboard(self, role: Role, limit: Optional[int] = None) -> List[LeaderboardEntry]:
        cur = self.db.leaderboard.find({"role": role.value}).sort("total_points", DESCENDING)
        if limit is not None:
            cur = cur.limit(limit)
        return [_from_doc(LeaderboardEntry, d) async for d in cur]

    @retrying
    async def write_ranks(self, ranks: Sequence[Tuple[str, int]]) -> None:
        if not ranks:
            return
        ops = [UpdateOne({"user_id": user_id}, {"$set": {"rank": rank}}) for user_id, rank in ranks]
        await self.db.leaderboard.bulk_write(ops, ordered=False)

    @retrying
    async def count_leaderboard(self, role: Role) -> int:
        return await self.db.leaderboard.count_documents({"role": role.value})

    # Achievements & badges
    @retrying
    async def insert_achievement_if_absent(self, achievement: Achievement) -> Tuple[Achievement, bool]:
        try:
            await self.db.achievements.insert_one(_to_doc(achievement))
        except DuplicateKeyError:
            existing = await self.db.achievements.find_one(
                {"user_id": achievement.user_id, "title": achievement.title}
            )
            return _from_doc(Achievement, existing), False
        return achievement, True

    @retrying
    async def find_milestone_achievement(self, user_id: str, milestone_value: int) -> Optional[Achievement]:
        doc = await self.db.achievements.find_one({
            "user_id": user_id,
            "type": AchievementType.MILESTONE.value,
            "metadata.milestone_value": milestone_value,
        })
        return _from_doc(Achievement, doc)

    @retrying
    async def list_achievements(self, user_id: str) -> List[Achievement]:
        cur = self.db.achievements.find({"user_id": user_id}).sort("earned_at", DESCENDING)
        return [_from_doc(Achievement, d) async for d in cur]

    @retrying
    async def count_achievements(self, user_id: str) -> int:
        return await self.db.achievements.count_documents({"user_id": user_id})

    @retrying
    async def insert_badge_if_absent(self, badge: Badge) -> Tuple[Badge, bool]:
        try:
            await self.db.badges.insert_one(_to_doc(badge))
        except DuplicateKeyError:
            existing = await self.db.badges.find_one(
                {"user_id": badge.user_id, "badge_type": badge.badge_type.value}
            )
            return _from_doc(Badge, existing), False
        return badge, True

    @retrying
    async def list_badges(self, user_id: str) -> List[Badge]:
        cur = self.db.badges.find({"user_id": user_id}).sort("earned_at", DESCENDING)
        return [_from_doc(Badge, d) async for d in cur]

    @retrying
    async def count_badges(self, user_id: str) -> int:
        return await self.db.badges.count_documents({"user_id": user_id})

    # Notifications
    @retrying
    async def insert_notification(self, notification: Notification) -> Notification:
        await self.db.notifications.insert_one(_to_doc(notification))
        return notification

    @retrying
    async def list_notifications(self, user_id: str, unread_only: bool = False,
                                 limit: int = 50) -> List[Notification]:
        query = {"user_id": user_id}
        if unread_only:
            query["read"] = False
        cur = self.db.notifications.find(query).sort("created_at", DESCENDING).limit(limit)
        return [_from_doc(Notification, d) async for d in cur]

    @retrying
    async def mark_notification_read(self, notification_id: str, user_id: str,
                                     at: datetime) -> Optional[Notification]:
        doc = await self.db.notifications.find_one_and_update(
            {"_id": notification_id, "user_id": user_id},
            {"$set": {"read": True, "read_at": at}},
            return_document=ReturnDocument.AFTER,
        )
        return _from_doc(Notification, doc)
