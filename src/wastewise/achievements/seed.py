"""Stock achievement catalog: 21 achievements across five tiers."""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy.ext.asyncio import AsyncSession

from wastewise.db.models import AchievementDefinition
from wastewise.db.upsert import insert_or_ignore

logger = logging.getLogger(__name__)

_ICON_BASE = "https://ivory-personal-goat-759.mypinata.cloud/ipfs/bafybeifg2phddntgvxwh3lxdm3dqk2jsv3ulxhe5k45kje2rtaroz5quyu"

ACHIEVEMENT_SEED_DATA: list[dict] = [
    # Bronze: onboarding
    {
        "code": "first_classification",
        "name": "First Try",
        "description": "Complete your first waste classification",
        "reward_amount": 20,
        "category": "milestone",
        "tier": 1,
        "requirement": {"min_classifications": 1},
        "sort_order": 1,
    },
    {
        "code": "daily_newcomer",
        "name": "Daily Newcomer",
        "description": "Classify waste on 3 consecutive days",
        "reward_amount": 30,
        "category": "streak",
        "tier": 1,
        "requirement": {"consecutive_days": 3},
        "sort_order": 2,
    },
    {
        "code": "score_beginner",
        "name": "Point Starter",
        "description": "Earn 100 points in total",
        "reward_amount": 50,
        "category": "milestone",
        "tier": 1,
        "requirement": {"min_score": 100},
        "sort_order": 3,
    },
    {
        "code": "accuracy_starter",
        "name": "Accurate Start",
        "description": "Reach 70% accuracy over at least 10 classifications",
        "reward_amount": 40,
        "category": "accuracy",
        "tier": 1,
        "requirement": {"min_accuracy": 70, "min_classifications": 10},
        "sort_order": 4,
    },
    # Silver: habits
    {
        "code": "classification_enthusiast",
        "name": "Sorting Enthusiast",
        "description": "Complete 50 waste classifications",
        "reward_amount": 100,
        "category": "milestone",
        "tier": 2,
        "requirement": {"min_classifications": 50},
        "sort_order": 5,
    },
    {
        "code": "accuracy_rookie",
        "name": "Rising Star",
        "description": "Reach 80% accuracy over at least 20 classifications",
        "reward_amount": 150,
        "category": "accuracy",
        "tier": 2,
        "requirement": {"min_accuracy": 80, "min_classifications": 20},
        "sort_order": 6,
    },
    {
        "code": "weekly_warrior",
        "name": "Weekly Warrior",
        "description": "Classify waste on 7 consecutive days",
        "reward_amount": 80,
        "category": "streak",
        "tier": 2,
        "requirement": {"consecutive_days": 7},
        "sort_order": 7,
    },
    {
        "code": "category_explorer",
        "name": "Category Explorer",
        "description": "Correctly classify all four waste categories",
        "reward_amount": 120,
        "category": "special",
        "tier": 2,
        "requirement": {
            "specific_categories": ["recyclable", "hazardous", "kitchen", "other"],
            "min_classifications": 20,
        },
        "sort_order": 8,
    },
    # Gold: skill
    {
        "code": "classification_master",
        "name": "Sorting Master",
        "description": "Complete 500 waste classifications",
        "reward_amount": 500,
        "category": "milestone",
        "tier": 3,
        "requirement": {"min_classifications": 500},
        "sort_order": 9,
    },
    {
        "code": "accuracy_expert",
        "name": "Precision Expert",
        "description": "Reach 95% accuracy over at least 100 classifications",
        "reward_amount": 800,
        "category": "accuracy",
        "tier": 3,
        "requirement": {"min_accuracy": 95, "min_classifications": 100},
        "sort_order": 10,
    },
    {
        "code": "score_collector",
        "name": "Point Collector",
        "description": "Earn 5000 points in total",
        "reward_amount": 300,
        "category": "milestone",
        "tier": 3,
        "requirement": {"min_score": 5000},
        "sort_order": 11,
    },
    {
        "code": "monthly_champion",
        "name": "Monthly Champion",
        "description": "Classify waste on 30 consecutive days",
        "reward_amount": 400,
        "category": "streak",
        "tier": 3,
        "requirement": {"consecutive_days": 30},
        "sort_order": 12,
    },
    # Platinum: mastery
    {
        "code": "classification_guru",
        "name": "Sorting Guru",
        "description": "Complete 1000 waste classifications",
        "reward_amount": 1000,
        "category": "milestone",
        "tier": 4,
        "requirement": {"min_classifications": 1000},
        "sort_order": 13,
    },
    {
        "code": "perfect_accuracy",
        "name": "Perfectionist",
        "description": "Reach 99% accuracy over at least 500 classifications",
        "reward_amount": 1500,
        "category": "accuracy",
        "tier": 4,
        "requirement": {"min_accuracy": 99, "min_classifications": 500},
        "sort_order": 14,
    },
    {
        "code": "score_millionaire",
        "name": "Point Tycoon",
        "description": "Earn 10000 points in total",
        "reward_amount": 800,
        "category": "milestone",
        "tier": 4,
        "requirement": {"min_score": 10000},
        "sort_order": 15,
    },
    {
        "code": "rapid_classifier",
        "name": "Lightning Sorter",
        "description": "Make 20 correct classifications within one hour",
        "reward_amount": 600,
        "category": "special",
        "tier": 4,
        "requirement": {"min_classifications": 20, "min_accuracy": 90, "time_window": 1},
        "sort_order": 16,
    },
    # Diamond: legends
    {
        "code": "eco_legend",
        "name": "Eco Legend",
        "description": "Complete 2000 classifications with 99%+ accuracy",
        "reward_amount": 2000,
        "category": "special",
        "tier": 5,
        "requirement": {"min_classifications": 2000, "min_accuracy": 99},
        "sort_order": 17,
    },
    {
        "code": "ultimate_master",
        "name": "Ultimate Master",
        "description": "Complete 5000 waste classifications",
        "reward_amount": 3000,
        "category": "milestone",
        "tier": 5,
        "requirement": {"min_classifications": 5000},
        "sort_order": 18,
    },
    {
        "code": "loyalty_titan",
        "name": "Loyalty Titan",
        "description": "Classify waste on 365 consecutive days",
        "reward_amount": 2500,
        "category": "streak",
        "tier": 5,
        "requirement": {"consecutive_days": 365},
        "sort_order": 19,
    },
    # Seasonal: limited time and limited supply
    {
        "code": "earth_day_hero",
        "name": "Earth Day Hero",
        "description": "Complete 50 classifications during Earth Day",
        "reward_amount": 300,
        "category": "seasonal",
        "tier": 3,
        "requirement": {"min_classifications": 50},
        "valid_from": datetime(2025, 4, 22, 0, 0, 0, tzinfo=timezone.utc),
        "valid_until": datetime(2025, 4, 22, 23, 59, 59, tzinfo=timezone.utc),
        "max_claims": 1000,
        "sort_order": 20,
    },
    {
        "code": "new_year_resolver",
        "name": "New Year Resolver",
        "description": "Classify waste every day in the first week of the year",
        "reward_amount": 200,
        "category": "seasonal",
        "tier": 2,
        "requirement": {"consecutive_days": 7},
        "valid_from": datetime(2025, 1, 1, 0, 0, 0, tzinfo=timezone.utc),
        "valid_until": datetime(2025, 1, 7, 23, 59, 59, tzinfo=timezone.utc),
        "max_claims": 500,
        "sort_order": 21,
    },
]


async def seed_achievements(db: AsyncSession) -> int:
    """Insert any missing stock achievements. Existing codes are left untouched.

    Returns the number of definitions created.
    """
    now = datetime.now(timezone.utc)
    created = 0
    for data in ACHIEVEMENT_SEED_DATA:
        values = {
            "icon_url": f"{_ICON_BASE}/{data['code']}.jpg",
            "is_active": True,
            "max_claims": None,
            "valid_from": None,
            "valid_until": None,
            **data,
            "created_at": now,
            "updated_at": now,
        }
        created += await insert_or_ignore(db, AchievementDefinition, values, conflict_columns=["code"])

    await db.commit()
    logger.info("Seeded %d achievement definitions (%d in catalog)", created, len(ACHIEVEMENT_SEED_DATA))
    return created
