"""Level-gated rewards for LevelCraft: catalog, unlocker, ownership queries.

Reward Catalog
--------------
**Avatars** (10) — one every five levels up to 40, then level 50.
**Themes** (5)   — every ten levels from 10 to 50.
**Badges** (5)   — milestones at levels 1, 10, 20, 30 and 50.
**Titles** (6)   — levels 1, 5, 10, 20, 30 and 50.

Ids follow ``<type>-<unlock level>`` (``avatar-5``, ``theme-10`` …).  The
catalog lives in the ``reward_definitions`` table; ``DEFAULT_REWARDS`` only
seeds it.  Seeding never rewrites an existing id, so the unlock level of a
reward that has already been granted cannot move.

Persistence
-----------
Ownership is stored in ``UserReward`` with a unique ``(user_id, reward_id)``
pair.  ``RewardUnlocker`` computes "eligible minus owned" and inserts with
``ON CONFLICT DO NOTHING``, so concurrent or repeated unlock passes for the
same user can never grant a reward twice.  ``RewardCatalog`` handles the
read side and equipping.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session as OrmSession

from ..database.models import RewardDefinition, UserProgress, UserReward, utcnow
from .errors import ProgressionError, RewardNotOwned
from .progress import insert_ignoring_duplicates, store_session

logger = logging.getLogger(__name__)

REWARD_TYPES = ("AVATAR", "THEME", "BADGE", "TITLE")


# ── default catalog ──────────────────────────────────────────────────────


@dataclass(frozen=True)
class RewardDef:
    type: str
    name: str
    unlock_level: int
    description: str
    data: dict[str, Any] = field(default_factory=dict)

    @property
    def reward_id(self) -> str:
        return f"{self.type.lower()}-{self.unlock_level}"


def _theme(primary: str, secondary: str, accent: str, background: str) -> dict[str, str]:
    return {
        "primary": primary, "secondary": secondary,
        "accent": accent, "background": background,
    }


def _title(suffix: str) -> dict[str, str]:
    return {"prefix": "", "suffix": suffix}


DEFAULT_REWARDS: list[RewardDef] = [
    # ── avatars ─────────────────────────────────────────────────────────
    RewardDef("AVATAR", "Beginner Badge", 1,
              "A simple badge representing new beginnings", {"color": "#4CAF50"}),
    RewardDef("AVATAR", "Growing Disciple", 5,
              "Showing consistent growth", {"color": "#66BB6A"}),
    RewardDef("AVATAR", "Faithful Servant", 10,
              "Faithful in little things", {"color": "#FFD700"}),
    RewardDef("AVATAR", "Devoted Follower", 15,
              "Demonstrating true devotion", {"color": "#9C27B0"}),
    RewardDef("AVATAR", "Spiritual Warrior", 20,
              "Strong in faith", {"color": "#2196F3"}),
    RewardDef("AVATAR", "Kingdom Builder", 25,
              "Building the kingdom", {"color": "#F44336"}),
    RewardDef("AVATAR", "Light Bearer", 30,
              "Shining light in darkness", {"color": "#FFA726"}),
    RewardDef("AVATAR", "Wise Teacher", 35,
              "Wisdom from experience", {"color": "#795548"}),
    RewardDef("AVATAR", "Heavenly Crown", 40,
              "Crowned with perseverance", {"color": "#FFC107"}),
    RewardDef("AVATAR", "Eternal Flame", 50,
              "Burning with passion", {"color": "#FF5722"}),

    # ── themes ──────────────────────────────────────────────────────────
    RewardDef("THEME", "Ocean Blue", 10, "Calm and peaceful ocean theme",
              _theme("#2196F3", "#03A9F4", "#00BCD4", "#E1F5FE")),
    RewardDef("THEME", "Forest Green", 20, "Natural and refreshing forest theme",
              _theme("#4CAF50", "#66BB6A", "#8BC34A", "#E8F5E9")),
    RewardDef("THEME", "Royal Purple", 30, "Regal and majestic purple theme",
              _theme("#9C27B0", "#AB47BC", "#BA68C8", "#F3E5F5")),
    RewardDef("THEME", "Sunset Orange", 40, "Warm and energetic sunset theme",
              _theme("#FF9800", "#FFB74D", "#FFA726", "#FFF3E0")),
    RewardDef("THEME", "Golden Glory", 50, "Radiant and triumphant golden theme",
              _theme("#FFD700", "#FFC107", "#FFEB3B", "#FFFDE7")),

    # ── milestone badges ────────────────────────────────────────────────
    RewardDef("BADGE", "First Steps", 1, "Awarded for reaching level 1",
              {"category": "milestone"}),
    RewardDef("BADGE", "Rising Star", 10, "Awarded for reaching level 10",
              {"category": "milestone"}),
    RewardDef("BADGE", "Dedicated Disciple", 20, "Awarded for reaching level 20",
              {"category": "milestone"}),
    RewardDef("BADGE", "Faithful Achiever", 30, "Awarded for reaching level 30",
              {"category": "milestone"}),
    RewardDef("BADGE", "Master of Faith", 50, "Awarded for reaching level 50",
              {"category": "milestone"}),

    # ── titles ──────────────────────────────────────────────────────────
    RewardDef("TITLE", "Newcomer", 1, "Starting your journey", _title("the Newcomer")),
    RewardDef("TITLE", "Apprentice", 5, "Learning the ways", _title("the Apprentice")),
    RewardDef("TITLE", "Disciple", 10, "Following faithfully", _title("the Disciple")),
    RewardDef("TITLE", "Warrior", 20, "Fighting the good fight", _title("the Warrior")),
    RewardDef("TITLE", "Champion", 30, "Champion of faith", _title("the Champion")),
    RewardDef("TITLE", "Legend", 50, "Legendary dedication", _title("the Legend")),
]


def seed_default_catalog(rewards: list[RewardDef] | None = None) -> int:
    """Insert catalog rows whose id does not exist yet.  Returns the count."""
    rewards = DEFAULT_REWARDS if rewards is None else rewards
    with store_session() as db:
        existing = set(db.execute(select(RewardDefinition.reward_id)).scalars())
        added = 0
        for reward in rewards:
            if reward.reward_id in existing:
                continue
            db.add(RewardDefinition(
                reward_id=reward.reward_id,
                type=reward.type,
                name=reward.name,
                description=reward.description,
                unlock_level=reward.unlock_level,
                data=dict(reward.data),
                is_active=True,
            ))
            existing.add(reward.reward_id)
            added += 1
    if added:
        logger.info("Seeded %d reward definitions", added)
    return added


# ── read side ───────────────────────────────────────────────────────────


@dataclass(frozen=True)
class OwnedReward:
    """A user's reward joined with its catalog metadata."""
    reward_id: str
    type: str
    name: str
    description: str
    unlock_level: int
    data: dict[str, Any]
    is_active: bool
    unlocked_at: datetime


class RewardCatalog:
    """Queries over the reward catalog and a user's collection."""

    # ── catalog ─────────────────────────────────────────────────────

    def all_rewards(self) -> list[RewardDefinition]:
        """Active catalog, lowest unlock level first."""
        with store_session() as db:
            return list(db.execute(
                select(RewardDefinition)
                .filter_by(is_active=True)
                .order_by(RewardDefinition.unlock_level, RewardDefinition.reward_id)
            ).scalars())

    def get(self, reward_id: str) -> RewardDefinition | None:
        with store_session() as db:
            return db.get(RewardDefinition, reward_id)

    def items_by_type(self, reward_type: str) -> list[RewardDefinition]:
        return [r for r in self.all_rewards() if r.type == reward_type]

    def next_upcoming(self, current_level: int) -> RewardDefinition | None:
        """Return the lowest-level reward the user hasn't reached yet."""
        teasers = self.teasers(current_level, count=1)
        return teasers[0] if teasers else None

    def teasers(self, current_level: int, count: int = 3) -> list[RewardDefinition]:
        """Return the next *count* rewards above *current_level*."""
        return [
            r for r in self.all_rewards() if r.unlock_level > current_level
        ][:count]

    # ── ownership ───────────────────────────────────────────────────

    def list_rewards_for_user(self, user_id: str) -> list[OwnedReward]:
        """Every reward the user owns, equipped or not."""
        with store_session() as db:
            rows = db.execute(
                select(UserReward, RewardDefinition)
                .join(RewardDefinition, UserReward.reward_id == RewardDefinition.reward_id)
                .where(UserReward.user_id == user_id)
                .order_by(RewardDefinition.unlock_level, RewardDefinition.reward_id)
            ).all()
            return [
                OwnedReward(
                    reward_id=reward.reward_id,
                    type=reward.type,
                    name=reward.name,
                    description=reward.description,
                    unlock_level=reward.unlock_level,
                    data=dict(reward.data or {}),
                    is_active=owned.is_active,
                    unlocked_at=owned.unlocked_at,
                )
                for owned, reward in rows
            ]

    def get_active(self, user_id: str, reward_type: str) -> str | None:
        """Return the id of the equipped reward of *reward_type*, if any."""
        with store_session() as db:
            return db.execute(
                select(UserReward.reward_id)
                .join(RewardDefinition, UserReward.reward_id == RewardDefinition.reward_id)
                .where(
                    UserReward.user_id == user_id,
                    UserReward.is_active.is_(True),
                    RewardDefinition.type == reward_type,
                )
            ).scalar_one_or_none()

    def activate_reward(self, user_id: str, reward_id: str) -> OwnedReward:
        """Equip a reward, un-equipping any equipped reward of the same type."""
        with store_session() as db:
            owned = db.execute(
                select(UserReward).filter_by(user_id=user_id, reward_id=reward_id)
            ).scalar_one_or_none()
            if owned is None:
                raise RewardNotOwned(user_id, reward_id)
            reward = owned.reward

            same_type = select(RewardDefinition.reward_id).where(
                RewardDefinition.type == reward.type,
            )
            db.execute(
                update(UserReward)
                .where(
                    UserReward.user_id == user_id,
                    UserReward.reward_id.in_(same_type),
                )
                .values(is_active=False)
                .execution_options(synchronize_session=False)
            )
            db.execute(
                update(UserReward)
                .where(UserReward.id == owned.id)
                .values(is_active=True)
                .execution_options(synchronize_session=False)
            )
            logger.info("User %s equipped %s %s", user_id, reward.type, reward_id)
            return OwnedReward(
                reward_id=reward.reward_id,
                type=reward.type,
                name=reward.name,
                description=reward.description,
                unlock_level=reward.unlock_level,
                data=dict(reward.data or {}),
                is_active=True,
                unlocked_at=owned.unlocked_at,
            )


# ── unlocker ────────────────────────────────────────────────────────────


class RewardUnlocker:
    """Grants every eligible catalog reward exactly once per user."""

    def __init__(self, clock: Callable[[], datetime] | None = None) -> None:
        self._clock = clock or utcnow

    def unlock_rewards_for_level(
        self, user_id: str, level: int, db: OrmSession | None = None,
    ) -> list[str]:
        """Own every active reward with ``unlock_level <= level``.

        Runs inside *db* when given (the award transaction), otherwise in a
        transaction of its own.  Returns the ids this call inserted; a
        repeat call, or a call at a lower level, returns ``[]``.
        """
        if db is None:
            with store_session() as own_db:
                return self.unlock_rewards_for_level(user_id, level, db=own_db)

        eligible = list(db.execute(
            select(RewardDefinition.reward_id)
            .where(
                RewardDefinition.is_active.is_(True),
                RewardDefinition.unlock_level <= level,
            )
            .order_by(RewardDefinition.unlock_level, RewardDefinition.reward_id)
        ).scalars())
        owned = set(db.execute(
            select(UserReward.reward_id).filter_by(user_id=user_id)
        ).scalars())

        now = self._clock()
        unlocked: list[str] = []
        for reward_id in eligible:
            if reward_id in owned:
                continue
            if insert_ignoring_duplicates(db, UserReward.__table__, {
                "user_id": user_id,
                "reward_id": reward_id,
                "unlocked_at": now,
                "is_active": False,
            }):
                unlocked.append(reward_id)

        if unlocked:
            logger.info(
                "Unlocked %d new rewards for user %s at level %d",
                len(unlocked), user_id, level,
            )
        return unlocked

    def reconcile(self) -> dict[str, list[str]]:
        """Catch-up pass: re-run the unlocker for users missing rewards.

        Safe to re-run at any time.  A failure for one user is logged and
        the pass moves on to the next.
        """
        with store_session() as db:
            levels = dict(db.execute(
                select(UserProgress.user_id, UserProgress.level)
            ).all())
            catalog = db.execute(
                select(RewardDefinition.reward_id, RewardDefinition.unlock_level)
                .filter_by(is_active=True)
            ).all()
            owned: dict[str, set[str]] = {}
            for uid, rid in db.execute(
                select(UserReward.user_id, UserReward.reward_id)
            ).all():
                owned.setdefault(uid, set()).add(rid)

        granted: dict[str, list[str]] = {}
        for user_id, level in levels.items():
            have = owned.get(user_id, set())
            if all(rid in have for rid, unlock in catalog if unlock <= level):
                continue
            try:
                new = self.unlock_rewards_for_level(user_id, level)
            except (ProgressionError, SQLAlchemyError):
                logger.exception("Reward reconciliation failed for user %s", user_id)
                continue
            if new:
                granted[user_id] = new

        logger.info("Reconciled rewards for %d users", len(granted))
        return granted
