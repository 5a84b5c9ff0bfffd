"""Progress Store: the durable per-user record and the XP event log.

Atomicity
---------
``locked_progress(user_id)`` is the only way to mutate a ``UserProgress``
row.  It holds the user's entry in a :class:`UserLockRegistry` (one lock per
user id, never a global one; every store shares the module registry unless
given its own) and reads the row ``FOR UPDATE`` inside a single transaction.

The lock only covers one process, and SQLite ignores ``FOR UPDATE``, so XP is
never added by read-modify-write.  :meth:`ProgressStore.add_xp` issues
``UPDATE ... SET xp_total = xp_total + :amount``, which takes the database
write lock, and only then reads the new total back to derive the level.
Missing rows are created with ``INSERT ... ON CONFLICT DO NOTHING`` so two
first awards for the same user both succeed.

Errors raised by SQLAlchemy inside a store transaction are rolled back and
translated into :class:`PersistenceConflict` or :class:`StoreUnavailable`.
"""

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Iterator

from sqlalchemy import Table, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import (
    IntegrityError, InterfaceError, OperationalError, SQLAlchemyError,
)
from sqlalchemy.orm import Session as OrmSession
from sqlalchemy.orm.exc import StaleDataError

from ..database.db import get_session
from ..database.models import ProgressEvent, UserProgress, utcnow
from .errors import PersistenceConflict, StoreUnavailable

logger = logging.getLogger(__name__)

# Driver messages that mean "someone else holds the row / table".
_CONFLICT_MARKERS = (
    "database is locked",
    "deadlock",
    "could not serialize",
    "lock timeout",
)

# dialect name → insert construct supporting ON CONFLICT DO NOTHING
_CONFLICT_INSERTS = {
    "sqlite": sqlite.insert,
    "postgresql": postgresql.insert,
}


def _translate(exc: SQLAlchemyError) -> Exception:
    if isinstance(exc, StaleDataError):
        return PersistenceConflict(str(exc))
    if isinstance(exc, OperationalError):
        text = str(exc.orig).lower()
        if any(marker in text for marker in _CONFLICT_MARKERS):
            return PersistenceConflict(str(exc.orig), {"statement": exc.statement})
        return StoreUnavailable(str(exc.orig), {"statement": exc.statement})
    if isinstance(exc, IntegrityError):
        return PersistenceConflict(str(exc.orig), {"statement": exc.statement})
    if isinstance(exc, InterfaceError):
        return StoreUnavailable(str(exc))
    return exc


@contextmanager
def store_session() -> Iterator[OrmSession]:
    """``get_session`` with SQLAlchemy failures mapped onto the error taxonomy."""
    try:
        with get_session() as db:
            yield db
    except SQLAlchemyError as exc:
        translated = _translate(exc)
        if translated is exc:
            raise
        raise translated from exc


def insert_ignoring_duplicates(
    db: OrmSession, table: Table, values: dict[str, Any],
) -> bool:
    """Insert one row into *table*; ``False`` when a unique key already held it.

    Dialects without ``ON CONFLICT`` fall back to a SAVEPOINT around a plain
    insert, so the caller's transaction survives the duplicate.
    """
    insert = _CONFLICT_INSERTS.get(db.get_bind().dialect.name)
    if insert is not None:
        result = db.connection().execute(
            insert(table).values(**values).on_conflict_do_nothing()
        )
        return result.rowcount == 1

    try:
        with db.begin_nested():
            db.connection().execute(table.insert().values(**values))
    except IntegrityError:
        return False
    return True


# ── per-user locks ───────────────────────────────────────────────────────


class UserLockRegistry:
    """Hands out one re-entrant lock per user id.

    Locks are created on demand and reference counted so the table does not
    grow with every user ever seen.
    """

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[str, list] = {}   # user_id → [RLock, holders]

    @contextmanager
    def hold(self, user_id: str) -> Iterator[None]:
        with self._guard:
            entry = self._locks.setdefault(user_id, [threading.RLock(), 0])
            entry[1] += 1
        lock = entry[0]
        lock.acquire()
        try:
            yield
        finally:
            lock.release()
            with self._guard:
                entry[1] -= 1
                if entry[1] == 0:
                    del self._locks[user_id]

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)


_DEFAULT_LOCKS = UserLockRegistry()


# ── store ────────────────────────────────────────────────────────────────


class ProgressStore:
    """Owns ``UserProgress`` rows and appends ``ProgressEvent`` rows."""

    def __init__(self, locks: UserLockRegistry | None = None) -> None:
        self.locks = _DEFAULT_LOCKS if locks is None else locks

    # ── reads ───────────────────────────────────────────────────────

    def get_user_progress(self, user_id: str) -> UserProgress:
        """Return the user's progress row, creating it on first read."""
        with self.locked_progress(user_id) as (_db, progress):
            return progress

    def find(self, user_id: str) -> UserProgress | None:
        """Lock-free read; ``None`` when the user has never been seen."""
        with store_session() as db:
            return db.execute(
                select(UserProgress).filter_by(user_id=user_id)
            ).scalar_one_or_none()

    def recent_events(self, user_id: str, limit: int = 10) -> list[ProgressEvent]:
        with store_session() as db:
            return list(db.execute(
                select(ProgressEvent)
                .filter_by(user_id=user_id)
                .order_by(ProgressEvent.created_at.desc(), ProgressEvent.id.desc())
                .limit(limit)
            ).scalars())

    # ── writes ──────────────────────────────────────────────────────

    def set_org(self, user_id: str, org_id: str | None) -> None:
        """Attach the user to a leaderboard scope."""
        with self.locked_progress(user_id) as (_db, progress):
            progress.org_id = org_id

    @contextmanager
    def locked_progress(
        self, user_id: str,
    ) -> Iterator[tuple[OrmSession, UserProgress]]:
        """Yield ``(session, progress)`` under the user's lock in one transaction.

        Everything done with the yielded session commits together when the
        block exits, or rolls back if it raises.
        """
        with self.locks.hold(user_id), store_session() as db:
            progress = self._select_for_update(db, user_id)
            if progress is None:
                now = utcnow()
                if insert_ignoring_duplicates(db, UserProgress.__table__, {
                    "user_id": user_id,
                    "xp_total": 0,
                    "level": 1,
                    "created_at": now,
                    "updated_at": now,
                }):
                    logger.debug("Created progress row for user %s", user_id)
                progress = self._select_for_update(db, user_id)
            yield db, progress

    @staticmethod
    def _select_for_update(db: OrmSession, user_id: str) -> UserProgress | None:
        return db.execute(
            select(UserProgress)
            .filter_by(user_id=user_id)
            .with_for_update()
        ).scalar_one_or_none()

    def add_xp(
        self, db: OrmSession, progress: UserProgress, amount: int,
    ) -> tuple[int, int]:
        """Add *amount* to the row in the database and return ``(old_level, new_total)``.

        The increment happens in SQL, so it holds even when another process
        or another store wrote the row after *progress* was loaded.  The
        refreshed ``level`` is the one committed with the previous total.
        """
        db.execute(
            update(UserProgress)
            .where(UserProgress.id == progress.id)
            .values(
                xp_total=UserProgress.xp_total + amount,
                updated_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        db.refresh(progress)
        return progress.level, progress.xp_total

    def append_event(
        self,
        db: OrmSession,
        *,
        user_id: str,
        action_type: str,
        amount: int,
        metadata: dict[str, Any] | None = None,
        created_at: datetime | None = None,
    ) -> ProgressEvent:
        """Add an immutable event row to the caller's transaction."""
        metadata = dict(metadata or {})
        description = metadata.get("description") or (
            f"Earned {amount} XP for {action_type}"
        )
        event = ProgressEvent(
            user_id=user_id,
            action_type=action_type,
            amount=amount,
            description=str(description)[:255],
            event_metadata=metadata,
            created_at=created_at or utcnow(),
        )
        db.add(event)
        return event
