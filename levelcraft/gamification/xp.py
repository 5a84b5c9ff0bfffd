"""XP and leveling logic for LevelCraft — the core progression loop.

XP Awards
---------
Collaborators report a gamified action by type; the engine looks the amount
up in its XP table (``DEFAULT_XP_AMOUNTS`` unless another table is injected):

- CHAPTER_READ        10 XP
- READING_PLAN_DAY    15 XP
- LESSON_COMPLETED    20 XP
- QUIZ_CORRECT         5 XP
- PRAYER_LOGGED       10 XP
- VERSE_MEMORIZED     25 XP
- JOURNAL_ENTRY       10 XP
- DAILY_LOGIN          5 XP
- STREAK_BONUS         variable, see :func:`streak_bonus`

Pre-computed bonuses are passed as an explicit ``amount``.  A zero amount is
a no-op: nothing is logged and the current progress is returned unchanged.

Leveling Curve
--------------
Reaching *level* takes ``floor(100 * level ** 1.5)`` total XP (level 1 is
free), so level 2 sits at 282 XP, level 3 at 519, level 10 at 3162.

XP Event System
---------------
``AwardEngine`` is a :class:`QObject` that emits two signals after the award
has committed:

* **xp_awarded(data)** — amount, action type, totals
* **level_up(data)**   — old/new level and the rewards unlocked on the way
"""

from __future__ import annotations

import logging
import math
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any, Callable, Mapping

from PyQt6.QtCore import QObject, pyqtSignal

from ..database.models import utcnow
from .errors import InvalidAmount, UnknownActionType
from .progress import ProgressStore
from .unlockables import RewardUnlocker

if TYPE_CHECKING:
    from ..settings import EngineSettings

logger = logging.getLogger(__name__)


# ── award table (injected per engine; this is only the default) ──────────

DEFAULT_XP_AMOUNTS: dict[str, int] = {
    "CHAPTER_READ": 10,
    "READING_PLAN_DAY": 15,
    "LESSON_COMPLETED": 20,
    "QUIZ_CORRECT": 5,
    "PRAYER_LOGGED": 10,
    "VERSE_MEMORIZED": 25,
    "JOURNAL_ENTRY": 10,
    "DAILY_LOGIN": 5,
    "STREAK_BONUS": 0,
}

# ── leveling constants ───────────────────────────────────────────────────

LEVEL_BASE_XP = 100
LEVEL_EXPONENT = 1.5

STREAK_WEEK_DAYS = 7
STREAK_XP_PER_WEEK = 10


# ── level math ───────────────────────────────────────────────────────────


def xp_for_level(level: int) -> int:
    """Total cumulative XP required to *reach* the given level.

    ``xp_for_level(1)`` is 0 (you start at level 1 with zero XP).
    """
    if level <= 1:
        return 0
    return math.floor(LEVEL_BASE_XP * level ** LEVEL_EXPONENT)


def level_from_xp(total_xp: int) -> int:
    """Return the level a user is at given their total XP."""
    if total_xp < 0:
        raise ValueError(f"total_xp must be non-negative, got {total_xp}")
    level = 1
    while xp_for_level(level + 1) <= total_xp:
        level += 1
    return level


def xp_to_next_level(total_xp: int) -> int:
    """XP still needed to reach the next level."""
    return xp_for_level(level_from_xp(total_xp) + 1) - total_xp


@dataclass(frozen=True)
class LevelProgress:
    level: int
    total_xp: int
    current_xp_in_level: int
    xp_for_current_level: int
    xp_for_next_level: int
    xp_needed_for_level: int
    progress_percent: float

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def level_progress(total_xp: int) -> LevelProgress:
    """Where *total_xp* sits inside its level, as a clamped percentage."""
    level = level_from_xp(total_xp)
    floor = xp_for_level(level)
    ceiling = xp_for_level(level + 1)
    earned = total_xp - floor
    needed = ceiling - floor
    percent = (earned / needed) * 100 if needed > 0 else 100.0
    return LevelProgress(
        level=level,
        total_xp=total_xp,
        current_xp_in_level=earned,
        xp_for_current_level=floor,
        xp_for_next_level=ceiling,
        xp_needed_for_level=needed,
        progress_percent=min(100.0, max(0.0, percent)),
    )


def streak_bonus(streak_days: int) -> int:
    """10 XP for every full week of consecutive activity (0 below a week)."""
    if streak_days < STREAK_WEEK_DAYS:
        return 0
    return (streak_days // STREAK_WEEK_DAYS) * STREAK_XP_PER_WEEK


# ── award engine ─────────────────────────────────────────────────────────


@dataclass
class AwardResult:
    xp_awarded: int
    xp_total: int
    level: int
    leveled_up: bool
    old_level: int
    unlocked_rewards: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class AwardEngine(QObject):
    """Turns actions into XP, levels and reward unlocks.

    Signals
    -------
    xp_awarded(data: dict)
        Emitted after every committed award.  Keys: ``user_id``,
        ``action_type``, ``amount``, ``xp_total``, ``level``.
    level_up(data: dict)
        Emitted when the award raised the user's level.  Keys:
        ``user_id``, ``old_level``, ``new_level``, ``unlocked_rewards``.
    """

    xp_awarded = pyqtSignal(object)
    level_up = pyqtSignal(object)

    def __init__(
        self,
        store: ProgressStore | None = None,
        unlocker: RewardUnlocker | None = None,
        xp_table: Mapping[str, int] | None = None,
        clock: Callable[[], datetime] | None = None,
        parent: QObject | None = None,
    ) -> None:
        super().__init__(parent)
        self.store = store or ProgressStore()
        self.unlocker = unlocker or RewardUnlocker()
        self.xp_table: dict[str, int] = dict(
            DEFAULT_XP_AMOUNTS if xp_table is None else xp_table
        )
        self._clock = clock or utcnow

    @classmethod
    def from_settings(cls, settings: EngineSettings, **kwargs: Any) -> AwardEngine:
        """Engine whose XP table is the defaults overlaid with ``settings.xp_amounts``."""
        table = {**DEFAULT_XP_AMOUNTS, **settings.xp_amounts}
        return cls(xp_table=table, **kwargs)

    # ── helpers ──────────────────────────────────────────────────────────

    def resolve_amount(self, action_type: str, amount: int | None = None) -> int:
        """Explicit amounts win; otherwise look the action up in the table."""
        if not action_type:
            raise UnknownActionType(action_type)
        if amount is not None:
            if isinstance(amount, bool) or not isinstance(amount, int) or amount < 0:
                raise InvalidAmount(amount)
            return amount
        if action_type not in self.xp_table:
            raise UnknownActionType(action_type)
        return self.xp_table[action_type]

    # ── main entry point ─────────────────────────────────────────────────

    def award(
        self,
        user_id: str,
        action_type: str,
        amount: int | None = None,
        metadata: Mapping[str, Any] | None = None,
    ) -> AwardResult:
        """Award XP for an action and persist it atomically.

        **Not idempotent**: every call grants XP again.  The progress
        update, the event row and any reward unlocks commit in one
        transaction, or not at all.
        """
        xp = self.resolve_amount(action_type, amount)

        if xp == 0:
            logger.warning(
                "Zero XP for action type %s (user %s); nothing recorded",
                action_type, user_id,
            )
            progress = self.store.get_user_progress(user_id)
            return AwardResult(
                xp_awarded=0,
                xp_total=progress.xp_total,
                level=progress.level,
                leveled_up=False,
                old_level=progress.level,
            )

        with self.store.locked_progress(user_id) as (db, progress):
            old_level, new_total = self.store.add_xp(db, progress, xp)
            new_level = level_from_xp(new_total)
            progress.level = new_level
            self.store.append_event(
                db,
                user_id=user_id,
                action_type=action_type,
                amount=xp,
                metadata=dict(metadata or {}),
                created_at=self._clock(),
            )

            unlocked: list[str] = []
            if new_level > old_level:
                unlocked = self.unlocker.unlock_rewards_for_level(
                    user_id, new_level, db=db,
                )

            result = AwardResult(
                xp_awarded=xp,
                xp_total=new_total,
                level=new_level,
                leveled_up=new_level > old_level,
                old_level=old_level,
                unlocked_rewards=unlocked,
            )

        logger.info(
            "Awarded %d XP to user %s for %s. Total XP: %d, Level: %d",
            xp, user_id, action_type, result.xp_total, result.level,
        )

        # ── emit signals ─────────────────────────────────────────────
        self.xp_awarded.emit({
            "user_id": user_id,
            "action_type": action_type,
            "amount": xp,
            "xp_total": result.xp_total,
            "level": result.level,
        })
        if result.leveled_up:
            self.level_up.emit({
                "user_id": user_id,
                "old_level": old_level,
                "new_level": result.level,
                "unlocked_rewards": list(unlocked),
            })

        return result

    def award_streak_bonus(
        self,
        user_id: str,
        streak_days: int,
        metadata: Mapping[str, Any] | None = None,
    ) -> AwardResult:
        """Grant :func:`streak_bonus` for *streak_days* as an explicit amount."""
        payload = {"streak_days": streak_days, **(metadata or {})}
        return self.award(
            user_id, "STREAK_BONUS", amount=streak_bonus(streak_days),
            metadata=payload,
        )
