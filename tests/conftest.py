"""Shared pytest fixtures for LevelCraft tests."""

import sys
import pytest

from PyQt6.QtCore import QCoreApplication

from levelcraft.database.db import configure_engine, init_db
from levelcraft.gamification.xp import AwardEngine

from helpers import FakeClock


@pytest.fixture(scope="session")
def qapp():
    """A single Qt application instance shared across the entire test run."""
    app = QCoreApplication.instance() or QCoreApplication(sys.argv)
    yield app


@pytest.fixture(autouse=True)
def test_db():
    """Point every test at a fresh in-memory SQLite database."""
    configure_engine("sqlite:///:memory:")
    init_db()
    yield


@pytest.fixture
def file_db(tmp_path):
    """File-backed SQLite database, shared by every thread of a test."""
    configure_engine(f"sqlite:///{tmp_path / 'levelcraft.db'}")
    init_db()
    yield tmp_path / "levelcraft.db"


@pytest.fixture
def clock():
    """Controllable clock: set ``clock.now`` to move time."""
    return FakeClock()


@pytest.fixture
def award_engine(qapp, clock):
    """AwardEngine with the default XP table and a fake clock."""
    return AwardEngine(clock=clock)

