"""Maintenance entry point: python -m levelcraft <command>.

Commands
--------
init          create tables, run migrations, seed the reward catalog
reconcile     grant rewards missing for users' current levels
leaderboard   print the top users by XP
"""

from __future__ import annotations

import argparse
import logging
import sys

from .database.db import init_db
from .gamification.stats import StatsReader
from .gamification.unlockables import RewardUnlocker
from .settings import apply_settings, load_settings


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="levelcraft")
    parser.add_argument("-v", "--verbose", action="store_true")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("init", help="create tables and seed the reward catalog")
    sub.add_parser("reconcile", help="grant rewards missing for current levels")

    board = sub.add_parser("leaderboard", help="print the XP leaderboard")
    board.add_argument("--scope", default=None, help="organisation id")
    board.add_argument("--limit", type=int, default=None)
    return parser


def main(argv: list[str] | None = None) -> int:
    args = _build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    settings = load_settings()
    apply_settings(settings)
    init_db()

    if args.command == "init":
        print("LevelCraft database ready!")
    elif args.command == "reconcile":
        granted = RewardUnlocker().reconcile()
        for user_id, rewards in sorted(granted.items()):
            print(f"{user_id}: {', '.join(rewards)}")
        print(f"{len(granted)} user(s) reconciled")
    elif args.command == "leaderboard":
        limit = args.limit or settings.leaderboard_limit
        for entry in StatsReader().leaderboard(args.scope, limit):
            print(f"{entry.rank:>3}  {entry.user_id:<24} {entry.xp_total:>8} XP  Lv {entry.level}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
