# zerowaste/core/gamification.py
"""Static reward tables: point values, badge tiers, achievement catalogs."""

from zerowaste.models.schemas import AchievementType, BadgeType, Role

# action -> role -> points; "DEFAULT" covers any role not listed
POINT_VALUES = {
    "DONATION":   {Role.DONOR: 10, "DEFAULT": 5},
    "PICKUP":     {Role.VOLUNTEER: 15, "DEFAULT": 10},
    "COMPLETION": {Role.DONOR: 20, Role.VOLUNTEER: 25, Role.NGO: 15, "DEFAULT": 10},
    "STREAK":     {"DEFAULT": 5},   # per day
    "MILESTONE":  {"DEFAULT": 50},
}

# ascending order matters: tiers are evaluated lowest first
BADGE_TIERS = {
    BadgeType.BRONZE:   {"name": "Bronze Saver",   "icon": "🥉", "points_required": 100,
                         "description": "Earned your first 100 points"},
    BadgeType.SILVER:   {"name": "Silver Saver",   "icon": "🥈", "points_required": 250,
                         "description": "Reached 250 points"},
    BadgeType.GOLD:     {"name": "Gold Saver",     "icon": "🥇", "points_required": 500,
                         "description": "Reached 500 points"},
    BadgeType.PLATINUM: {"name": "Platinum Saver", "icon": "💠", "points_required": 1000,
                         "description": "Reached 1000 points"},
    BadgeType.DIAMOND:  {"name": "Diamond Saver",  "icon": "💎", "points_required": 2500,
                         "description": "Reached 2500 points"},
}

BADGE_ORDER = [BadgeType.BRONZE, BadgeType.SILVER, BadgeType.GOLD, BadgeType.PLATINUM, BadgeType.DIAMOND]

# (count, title, bonus points)
MILESTONES = [
    (5, "First Steps", 25),
    (10, "Getting Started", 50),
    (25, "Making a Difference", 100),
    (50, "Community Hero", 200),
    (100, "Food Waste Warrior", 500),
]

# ledger source_id suffix of the donor completion award; not counted as a donation
COMPLETION_SUFFIX = ":completion"

# trigger names fired by the donation lifecycle
DONATIONS_ACCEPTED = "DONATIONS_ACCEPTED"
DONATIONS_COMPLETED = "DONATIONS_COMPLETED"
DONATIONS_COLLECTED = "DONATIONS_COLLECTED"
PICKUPS_COMPLETED = "PICKUPS_COMPLETED"

DONOR_ACHIEVEMENTS = [
    {"id": "first_donation", "type": AchievementType.DONATION, "title": "First Donation",
     "description": "Your first donation was accepted", "icon": "🍎",
     "points_awarded": 20, "trigger": DONATIONS_ACCEPTED, "target_value": 1},
    {"id": "generous_giver", "type": AchievementType.DONATION, "title": "Generous Giver",
     "description": "10 donations delivered", "icon": "🎁",
     "points_awarded": 75, "trigger": DONATIONS_COMPLETED, "target_value": 10},
    {"id": "food_hero", "type": AchievementType.SPECIAL, "title": "Food Hero",
     "description": "50 donations delivered", "icon": "🦸",
     "points_awarded": 250, "trigger": DONATIONS_COMPLETED, "target_value": 50},
]

NGO_ACHIEVEMENTS = [
    {"id": "first_collection", "type": AchievementType.DONATION, "title": "First Collection",
     "description": "Accepted your first donation", "icon": "🤝",
     "points_awarded": 20, "trigger": DONATIONS_COLLECTED, "target_value": 1},
    {"id": "community_partner", "type": AchievementType.DONATION, "title": "Community Partner",
     "description": "Accepted 10 donations", "icon": "🏘️",
     "points_awarded": 75, "trigger": DONATIONS_COLLECTED, "target_value": 10},
    {"id": "hunger_fighter", "type": AchievementType.SPECIAL, "title": "Hunger Fighter",
     "description": "Accepted 50 donations", "icon": "🛡️",
     "points_awarded": 250, "trigger": DONATIONS_COLLECTED, "target_value": 50},
]

VOLUNTEER_ACHIEVEMENTS = [
    {"id": "first_delivery", "type": AchievementType.PICKUP, "title": "First Delivery",
     "description": "Completed your first pickup", "icon": "🚲",
     "points_awarded": 20, "trigger": PICKUPS_COMPLETED, "target_value": 1},
    {"id": "road_warrior", "type": AchievementType.PICKUP, "title": "Road Warrior",
     "description": "Completed 10 pickups", "icon": "🛣️",
     "points_awarded": 75, "trigger": PICKUPS_COMPLETED, "target_value": 10},
    {"id": "delivery_legend", "type": AchievementType.SPECIAL, "title": "Delivery Legend",
     "description": "Completed 50 pickups", "icon": "🏆",
     "points_awarded": 250, "trigger": PICKUPS_COMPLETED, "target_value": 50},
]

ACHIEVEMENTS = {
    Role.DONOR: DONOR_ACHIEVEMENTS,
    Role.NGO: NGO_ACHIEVEMENTS,
    Role.VOLUNTEER: VOLUNTEER_ACHIEVEMENTS,
}
