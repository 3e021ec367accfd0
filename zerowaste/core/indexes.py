# zerowaste/core/indexes.py
from pymongo import ASCENDING, DESCENDING, GEOSPHERE


async def ensure_indexes(db):
    # Donations
    await db.donations.create_index("status")
    await db.donations.create_index([("donor_id", ASCENDING), ("created_at", DESCENDING)])
    await db.donations.create_index([("status", ASCENDING), ("expiry_date", ASCENDING)])
    await db.donations.create_index([("geo", GEOSPHERE)], sparse=True)

    # one assignment per donation
    await db.assignments.create_index("donation_id", unique=True)
    await db.assignments.create_index([("volunteer_id", ASCENDING), ("status", ASCENDING)])

    # ledger idempotency key; entries without source_id are exempt
    await db.points.create_index(
        [("user_id", ASCENDING), ("source", ASCENDING), ("source_id", ASCENDING)],
        name="user_source_source_id_unique",
        unique=True,
        partialFilterExpression={"source_id": {"$type": "string"}},
    )
    await db.points.create_index([("user_id", ASCENDING), ("earned_at", DESCENDING)])

    await db.leaderboard.create_index("user_id", unique=True)
    await db.leaderboard.create_index([("role", ASCENDING), ("total_points", DESCENDING)])

    await db.achievements.create_index([("user_id", ASCENDING), ("title", ASCENDING)], unique=True)
    await db.badges.create_index([("user_id", ASCENDING), ("badge_type", ASCENDING)], unique=True)

    await db.notifications.create_index([("user_id", ASCENDING), ("created_at", DESCENDING)])
    await db.users.create_index([("role", ASCENDING), ("status", ASCENDING)])
