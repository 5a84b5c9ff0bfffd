"""SQLAlchemy ORM models for LevelCraft."""

from datetime import datetime, timezone

from sqlalchemy import (
    JSON, Boolean, Column, DateTime, ForeignKey, Integer, String,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, relationship


def utcnow() -> datetime:
    """Naive UTC timestamp (SQLite stores datetimes without a zone)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class Base(DeclarativeBase):
    pass


class UserProgress(Base):
    """One row per user: accumulated XP and the level derived from it."""

    __tablename__ = "user_progress"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(64), nullable=False, unique=True, index=True)
    org_id = Column(String(64), nullable=True, index=True)
    xp_total = Column(Integer, nullable=False, default=0)
    level = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    def __repr__(self) -> str:
        return (
            f"<UserProgress user={self.user_id} level={self.level} "
            f"xp={self.xp_total}>"
        )


class ProgressEvent(Base):
    """Append-only log of XP grants.  Never updated once written."""

    __tablename__ = "progress_events"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(64), nullable=False, index=True)
    action_type = Column(String(40), nullable=False)
    amount = Column(Integer, nullable=False)
    description = Column(String(255), nullable=True)
    # "metadata" is reserved on declarative classes
    event_metadata = Column("metadata", JSON, nullable=False, default=dict)
    created_at = Column(DateTime, nullable=False, default=utcnow, index=True)

    def __repr__(self) -> str:
        return (
            f"<ProgressEvent user={self.user_id} action={self.action_type} "
            f"amount={self.amount}>"
        )


class RewardDefinition(Base):
    """Catalog entry gated by a minimum level (avatar | theme | badge | title)."""

    __tablename__ = "reward_definitions"

    reward_id = Column(String(64), primary_key=True)
    type = Column(String(20), nullable=False)
    name = Column(String(120), nullable=False)
    description = Column(String(255), nullable=False, default="")
    unlock_level = Column(Integer, nullable=False)
    data = Column(JSON, nullable=False, default=dict)
    is_active = Column(Boolean, nullable=False, default=True)

    def __repr__(self) -> str:
        return (
            f"<RewardDefinition id={self.reward_id} type={self.type} "
            f"level={self.unlock_level}>"
        )


class UserReward(Base):
    """Ownership of a catalog reward.  ``is_active`` means equipped."""

    __tablename__ = "user_rewards"
    __table_args__ = (
        UniqueConstraint("user_id", "reward_id", name="uq_user_rewards_user_reward"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(64), nullable=False, index=True)
    reward_id = Column(
        String(64), ForeignKey("reward_definitions.reward_id"), nullable=False,
    )
    unlocked_at = Column(DateTime, nullable=False, default=utcnow)
    is_active = Column(Boolean, nullable=False, default=False)

    reward = relationship(RewardDefinition, lazy="joined")

    def __repr__(self) -> str:
        return (
            f"<UserReward user={self.user_id} reward={self.reward_id} "
            f"active={self.is_active}>"
        )
