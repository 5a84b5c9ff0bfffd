"""Database connection and session management."""

import logging
import os
from contextlib import contextmanager
from pathlib import Path

from sqlalchemy import create_engine, inspect, text
from sqlalchemy.orm import sessionmaker, Session as OrmSession

from .models import Base

logger = logging.getLogger(__name__)

# ── paths ────────────────────────────────────────────────────────────────────

DATA_DIR = Path(os.environ.get("LEVELCRAFT_DATA_DIR", Path.home() / ".levelcraft"))
DB_PATH = DATA_DIR / "levelcraft.db"

# ── engine & session factory (created lazily) ─────────────────────────────

_engine = None
_SessionFactory = None


def _connect_args(url: str) -> dict:
    # Worker threads share the engine; writers wait on the SQLite lock
    # instead of failing immediately.
    if url.startswith("sqlite"):
        return {"check_same_thread": False, "timeout": 30}
    return {}


def _default_url() -> str:
    url = os.environ.get("LEVELCRAFT_DATABASE_URL")
    if url:
        return url
    DATA_DIR.mkdir(parents=True, exist_ok=True)
    return f"sqlite:///{DB_PATH}"


def get_engine():
    global _engine
    if _engine is None:
        url = _default_url()
        _engine = create_engine(url, connect_args=_connect_args(url), echo=False)
    return _engine


def _get_session_factory():
    global _SessionFactory
    if _SessionFactory is None:
        _SessionFactory = sessionmaker(bind=get_engine(), expire_on_commit=False)
    return _SessionFactory


# ── public API ────────────────────────────────────────────────────────────


def configure_engine(url: str) -> None:
    """Override the database connection URL.  Used by tests to point at
    an in-memory SQLite database instead of the real one on disk."""
    global _engine, _SessionFactory
    if _engine is not None:
        _engine.dispose()
    _SessionFactory = None
    _engine = create_engine(url, connect_args=_connect_args(url), echo=False)
    logger.debug("Database engine configured for %s", _engine.url)


def _run_migrations(engine) -> None:
    """Schema migrations for existing databases.

    Runs after ``create_all`` so new columns exist in fresh installs.
    Each migration is idempotent — safe to run repeatedly.
    """
    insp = inspect(engine)
    table_names = set(insp.get_table_names())

    with engine.begin() as conn:
        # ── M1: leaderboard scope column on user_progress ──────────────
        if "user_progress" in table_names:
            columns = {c["name"] for c in insp.get_columns("user_progress")}
            if "org_id" not in columns:
                conn.execute(text(
                    "ALTER TABLE user_progress ADD COLUMN org_id VARCHAR(64)"
                ))
                logger.info("Migration M1: added user_progress.org_id")

        # ── M2: one ownership row per (user, reward) ───────────────────
        if "user_rewards" in table_names:
            conn.execute(text(
                "DELETE FROM user_rewards WHERE id NOT IN ("
                "SELECT MIN(id) FROM user_rewards GROUP BY user_id, reward_id)"
            ))
            conn.execute(text(
                "CREATE UNIQUE INDEX IF NOT EXISTS ix_user_rewards_user_reward "
                "ON user_rewards (user_id, reward_id)"
            ))


def init_db(seed: bool = True) -> None:
    """Create all tables, run migrations, and seed the reward catalog."""
    engine = get_engine()
    Base.metadata.create_all(engine)
    _run_migrations(engine)

    if seed:
        from ..gamification.unlockables import seed_default_catalog

        seed_default_catalog()


@contextmanager
def get_session():
    """Yield a SQLAlchemy session; commit on success, rollback on error."""
    factory = _get_session_factory()
    session: OrmSession = factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
