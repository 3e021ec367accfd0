from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from bson import ObjectId
from pydantic import BaseModel, Field


def new_id() -> str:
    return str(ObjectId())

# --------------------------
# Enums
# --------------------------
class Role(str, Enum):
    DONOR = "DONOR"
    NGO = "NGO"
    VOLUNTEER = "VOLUNTEER"
    ADMIN = "ADMIN"

# roles that earn points and appear on a leaderboard
RANKED_ROLES = (Role.DONOR, Role.NGO, Role.VOLUNTEER)

class UserStatus(str, Enum):
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"

class DonationStatus(str, Enum):
    CREATED = "CREATED"
    ACCEPTED = "ACCEPTED"
    ASSIGNED = "ASSIGNED"
    IN_TRANSIT = "IN_TRANSIT"
    DELIVERED = "DELIVERED"
    CANCELLED = "CANCELLED"
    EXPIRED = "EXPIRED"

class AssignmentStatus(str, Enum):
    PENDING = "PENDING"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"

ACTIVE_ASSIGNMENT_STATUSES = (AssignmentStatus.PENDING, AssignmentStatus.IN_PROGRESS)

class PointsSource(str, Enum):
    DONATION = "DONATION"
    PICKUP = "PICKUP"
    ACHIEVEMENT = "ACHIEVEMENT"
    BADGE = "BADGE"
    ADMIN_ADJUSTMENT = "ADMIN_ADJUSTMENT"

class AchievementType(str, Enum):
    DONATION = "DONATION"
    PICKUP = "PICKUP"
    STREAK = "STREAK"
    MILESTONE = "MILESTONE"
    SPECIAL = "SPECIAL"

class BadgeType(str, Enum):
    BRONZE = "BRONZE"
    SILVER = "SILVER"
    GOLD = "GOLD"
    PLATINUM = "PLATINUM"
    DIAMOND = "DIAMOND"
    SPECIAL = "SPECIAL"

class NotificationType(str, Enum):
    DONATION_ACCEPTED = "DONATION_ACCEPTED"
    VOLUNTEER_ASSIGNED = "VOLUNTEER_ASSIGNED"
    DONATION_IN_TRANSIT = "DONATION_IN_TRANSIT"
    DONATION_COMPLETED = "DONATION_COMPLETED"
    DONATION_DELIVERED = "DONATION_DELIVERED"
    DONATION_CANCELLED = "DONATION_CANCELLED"
    POINTS_EARNED = "POINTS_EARNED"
    BADGE_EARNED = "BADGE_EARNED"
    SYSTEM = "SYSTEM"

# --------------------------
# Shared Submodels
# --------------------------
class Location(BaseModel):
    lat: float
    lng: float
    address: Optional[str] = None

class Actor(BaseModel):
    """Already-authenticated caller identity."""
    user_id: str
    role: Role

# --------------------------
# Users (external aggregate)
# --------------------------
class User(BaseModel):
    id: str = Field(default_factory=new_id)
    name: str
    email: Optional[str] = None
    role: Role
    status: UserStatus = UserStatus.ACTIVE
    location: Optional[Location] = None
    total_points: int = 0

# --------------------------
# Donations
# --------------------------
class DonationIn(BaseModel):
    food_type: str
    quantity: str
    expiry_date: datetime
    location: Location
    description: Optional[str] = Field(None, max_length=500)
    images: List[str] = []

class DonationUpdate(BaseModel):
    food_type: Optional[str] = None
    quantity: Optional[str] = None
    expiry_date: Optional[datetime] = None
    location: Optional[Location] = None
    description: Optional[str] = Field(None, max_length=500)
    images: Optional[List[str]] = None

class Donation(BaseModel):
    id: str = Field(default_factory=new_id)
    donor_id: str
    food_type: str
    quantity: str
    expiry_date: datetime
    location: Location
    description: Optional[str] = None
    images: List[str] = []
    status: DonationStatus = DonationStatus.CREATED
    accepted_by: Optional[str] = None
    assigned_volunteer: Optional[str] = None
    created_at: datetime
    updated_at: Optional[datetime] = None
    accepted_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    expired_at: Optional[datetime] = None
    cancellation_reason: Optional[str] = None

class PickupAssignment(BaseModel):
    id: str = Field(default_factory=new_id)
    donation_id: str
    volunteer_id: str
    status: AssignmentStatus = AssignmentStatus.PENDING
    assigned_at: datetime
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    cancellation_reason: Optional[str] = None
    notes: Optional[str] = None
    rating: Optional[int] = Field(None, ge=1, le=5)
    feedback: Optional[str] = None

# --------------------------
# Gamification
# --------------------------
class PointsEntry(BaseModel):
    id: str = Field(default_factory=new_id)
    user_id: str
    points: int
    source: PointsSource
    source_id: Optional[str] = None
    role: Role
    description: str = ""
    earned_at: datetime

class LeaderboardEntry(BaseModel):
    user_id: str
    role: Role
    total_points: int = 0
    rank: int = 0
    donations_count: int = 0
    collections_count: int = 0
    pickups_count: int = 0
    achievements_count: int = 0
    badges_count: int = 0
    last_updated: Optional[datetime] = None

class Achievement(BaseModel):
    id: str = Field(default_factory=new_id)
    user_id: str
    type: AchievementType
    title: str
    description: str = ""
    icon: str = "🏅"
    points_awarded: int = 0
    metadata: Dict[str, Any] = {}
    earned_at: datetime

class Badge(BaseModel):
    id: str = Field(default_factory=new_id)
    user_id: str
    badge_type: BadgeType
    badge_name: str
    description: str = ""
    icon: str = ""
    criteria: str = ""
    earned_at: datetime

class Notification(BaseModel):
    id: str = Field(default_factory=new_id)
    user_id: str
    message: str
    type: NotificationType
    related_id: Optional[str] = None
    read: bool = False
    read_at: Optional[datetime] = None
    created_at: datetime

# --------------------------
# Request bodies
# --------------------------
class AssignIn(BaseModel):
    volunteer_id: str

class CancelIn(BaseModel):
    reason: Optional[str] = None

class RatingIn(BaseModel):
    rating: int = Field(..., ge=1, le=5)
    feedback: Optional[str] = None

class AdjustmentIn(BaseModel):
    user_id: str
    amount: int
    reason: str
    adjustment_id: Optional[str] = None
