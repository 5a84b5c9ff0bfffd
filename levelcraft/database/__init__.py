"""Database package."""

from .db import configure_engine, get_engine, get_session, init_db
from .models import (
    Base, ProgressEvent, RewardDefinition, UserProgress, UserReward, utcnow,
)

__all__ = [
    "configure_engine",
    "get_engine",
    "get_session",
    "init_db",
    "Base",
    "ProgressEvent",
    "RewardDefinition",
    "UserProgress",
    "UserReward",
    "utcnow",
]
