"""Engine settings with JSON persistence.

Settings are stored at:
    ~/.levelcraft/settings.json   (or $LEVELCRAFT_DATA_DIR/settings.json)

Usage::

    settings = load_settings()
    settings.xp_amounts["QUIZ_CORRECT"] = 8
    save_settings(settings)
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, asdict, field, fields
from pathlib import Path

from .database.db import DATA_DIR, configure_engine

logger = logging.getLogger(__name__)

SETTINGS_PATH = DATA_DIR / "settings.json"


@dataclass
class EngineSettings:
    """All deployment-tunable knobs of the progression engine."""

    # ── storage ───────────────────────────────────────────────────────
    database_url: str | None = None        # None → sqlite file in DATA_DIR

    # ── awards ────────────────────────────────────────────────────────
    # Merged over DEFAULT_XP_AMOUNTS; an entry of 0 disables an action.
    xp_amounts: dict[str, int] = field(default_factory=dict)

    # ── reads ─────────────────────────────────────────────────────────
    leaderboard_limit: int = 10
    stats_window_days: int = 30


def load_settings(path: Path | None = None) -> EngineSettings:
    """Load settings from disk, falling back to defaults."""
    path = path or SETTINGS_PATH
    if not path.exists():
        return EngineSettings()
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as exc:
        logger.warning("Ignoring unreadable settings file %s: %s", path, exc)
        return EngineSettings()
    # Only use keys that exist in the dataclass
    valid_keys = {f.name for f in fields(EngineSettings)}
    filtered = {k: v for k, v in data.items() if k in valid_keys}
    return EngineSettings(**filtered)


def save_settings(settings: EngineSettings, path: Path | None = None) -> None:
    """Write settings to disk as JSON."""
    path = path or SETTINGS_PATH
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(
        json.dumps(asdict(settings), indent=2) + "\n",
        encoding="utf-8",
    )


def apply_settings(settings: EngineSettings) -> None:
    """Point the database layer at ``settings.database_url`` when set."""
    if settings.database_url:
        configure_engine(settings.database_url)
