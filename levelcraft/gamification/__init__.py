"""Gamification package."""

from .errors import (
    ProgressionError,
    UnknownActionType,
    InvalidAmount,
    PersistenceConflict,
    StoreUnavailable,
    RewardNotOwned,
)
from .progress import ProgressStore, UserLockRegistry
from .unlockables import (
    RewardCatalog,
    RewardUnlocker,
    OwnedReward,
    RewardDef,
    DEFAULT_REWARDS,
    REWARD_TYPES,
    seed_default_catalog,
)
from .xp import (
    AwardEngine,
    AwardResult,
    LevelProgress,
    DEFAULT_XP_AMOUNTS,
    xp_for_level,
    level_from_xp,
    level_progress,
    xp_to_next_level,
    streak_bonus,
)
from .stats import StatsReader, LeaderboardEntry, UserStats

__all__ = [
    "ProgressionError",
    "UnknownActionType",
    "InvalidAmount",
    "PersistenceConflict",
    "StoreUnavailable",
    "RewardNotOwned",
    "ProgressStore",
    "UserLockRegistry",
    "RewardCatalog",
    "RewardUnlocker",
    "OwnedReward",
    "RewardDef",
    "DEFAULT_REWARDS",
    "REWARD_TYPES",
    "seed_default_catalog",
    "AwardEngine",
    "AwardResult",
    "LevelProgress",
    "DEFAULT_XP_AMOUNTS",
    "xp_for_level",
    "level_from_xp",
    "level_progress",
    "xp_to_next_level",
    "streak_bonus",
    "StatsReader",
    "LeaderboardEntry",
    "UserStats",
]
