"""Shared test helpers for LevelCraft."""

from datetime import datetime

from sqlalchemy import func, select

from levelcraft.database.db import get_session
from levelcraft.database.models import ProgressEvent, UserReward


class SignalCollector:
    """Utility to capture pyqtSignal emissions into a list."""

    def __init__(self):
        self.items: list = []

    def slot(self, *args):
        self.items.append(args if len(args) > 1 else args[0] if args else None)

    def __call__(self, *args):
        self.slot(*args)

    def __len__(self):
        return len(self.items)

    def __getitem__(self, idx):
        return self.items[idx]

    @property
    def last(self):
        return self.items[-1] if self.items else None

    def clear(self):
        self.items.clear()


class FakeClock:
    """Callable clock returning ``now`` (naive UTC)."""

    def __init__(self, now: datetime | None = None):
        self.now = now or datetime(2026, 3, 15, 12, 0, 0)

    def __call__(self) -> datetime:
        return self.now


def event_count(user_id: str) -> int:
    with get_session() as db:
        return db.execute(
            select(func.count(ProgressEvent.id)).filter_by(user_id=user_id)
        ).scalar()


def owned_reward_ids(user_id: str) -> list[str]:
    """Every ownership row for the user, duplicates included."""
    with get_session() as db:
        return sorted(db.execute(
            select(UserReward.reward_id).filter_by(user_id=user_id)
        ).scalars())
