"""Read-only leaderboard and per-user XP statistics.

Nothing here takes a user lock or writes a row, so dashboards never hold up
an award; the numbers may trail a concurrent award by one commit.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Callable

from sqlalchemy import func, select

from ..database.models import ProgressEvent, UserProgress, UserReward, utcnow
from .progress import store_session
from .xp import LevelProgress, level_progress

logger = logging.getLogger(__name__)

HISTOGRAM_DAYS = 7


@dataclass(frozen=True)
class LeaderboardEntry:
    rank: int
    user_id: str
    xp_total: int
    level: int


@dataclass
class UserStats:
    """Snapshot of everything a progress dashboard needs for one user."""

    user_id: str
    window_days: int
    level_progress: LevelProgress
    xp_in_window: int = 0
    xp_last_7_days: int = 0
    total_events: int = 0
    active_rewards: int = 0
    xp_by_action: dict[str, int] = field(default_factory=dict)
    daily_xp: dict[date, int] = field(default_factory=dict)


class StatsReader:
    """Aggregations over ``UserProgress`` and the event log."""

    def __init__(self, clock: Callable[[], datetime] | None = None) -> None:
        self._clock = clock or utcnow

    def leaderboard(
        self, scope: str | None = None, limit: int = 10,
    ) -> list[LeaderboardEntry]:
        """Top users by total XP; ties ordered by user id."""
        if limit < 1:
            raise ValueError(f"limit must be positive, got {limit}")
        query = select(UserProgress.user_id, UserProgress.xp_total, UserProgress.level)
        if scope is not None:
            query = query.where(UserProgress.org_id == scope)
        query = query.order_by(
            UserProgress.xp_total.desc(), UserProgress.user_id.asc(),
        ).limit(limit)

        with store_session() as db:
            rows = db.execute(query).all()
        return [
            LeaderboardEntry(rank=i, user_id=uid, xp_total=xp, level=level)
            for i, (uid, xp, level) in enumerate(rows, start=1)
        ]

    def user_stats(self, user_id: str, window_days: int = 30) -> UserStats:
        """XP per action type and per day over the trailing window."""
        if window_days < 1:
            raise ValueError(f"window_days must be positive, got {window_days}")

        now = self._clock()
        today = now.date()
        window_start = now - timedelta(days=window_days)
        week_days = [today - timedelta(days=o) for o in range(HISTOGRAM_DAYS - 1, -1, -1)]
        week_start = datetime.combine(week_days[0], datetime.min.time())

        with store_session() as db:
            progress = db.execute(
                select(UserProgress).filter_by(user_id=user_id)
            ).scalar_one_or_none()
            total_xp = progress.xp_total if progress else 0

            # ── per-action totals over the window ────────────────────────
            by_action = db.execute(
                select(
                    ProgressEvent.action_type,
                    func.sum(ProgressEvent.amount),
                    func.count(ProgressEvent.id),
                )
                .where(
                    ProgressEvent.user_id == user_id,
                    ProgressEvent.created_at >= window_start,
                    ProgressEvent.created_at <= now,
                )
                .group_by(ProgressEvent.action_type)
            ).all()

            # ── daily histogram (last 7 calendar days) ───────────────────
            recent = db.execute(
                select(ProgressEvent.created_at, ProgressEvent.amount)
                .where(
                    ProgressEvent.user_id == user_id,
                    ProgressEvent.created_at >= week_start,
                    ProgressEvent.created_at <= now,
                )
            ).all()

            active_rewards = db.execute(
                select(func.count(UserReward.id)).where(
                    UserReward.user_id == user_id,
                    UserReward.is_active.is_(True),
                )
            ).scalar() or 0

        daily: dict[date, int] = {day: 0 for day in week_days}
        for created_at, amount in recent:
            daily[created_at.date()] += amount

        stats = UserStats(
            user_id=user_id,
            window_days=window_days,
            level_progress=level_progress(total_xp),
            xp_by_action={action: int(xp) for action, xp, _n in by_action},
            xp_in_window=sum(int(xp) for _a, xp, _n in by_action),
            total_events=sum(n for _a, _x, n in by_action),
            daily_xp=daily,
            xp_last_7_days=sum(daily.values()),
            active_rewards=active_rewards,
        )
        logger.debug(
            "Stats for %s: %d XP over %d days", user_id, stats.xp_in_window, window_days,
        )
        return stats
