"""Tests for the LevelCraft XP and leveling system.

Covers: leveling curve, level progress, streak bonus, award resolution
(XP table, explicit amounts, validation), level-up detection, zero-amount
awards, atomic rollback, signal emissions, and settings-driven tables.
"""

import pytest

from levelcraft.database.db import get_session
from levelcraft.database.models import UserProgress
from levelcraft.gamification.errors import (
    InvalidAmount, UnknownActionType, ProgressionError,
)
from levelcraft.gamification.xp import (
    AwardEngine,
    DEFAULT_XP_AMOUNTS,
    level_from_xp,
    level_progress,
    streak_bonus,
    xp_for_level,
    xp_to_next_level,
)
from levelcraft.settings import EngineSettings

from helpers import SignalCollector, event_count, owned_reward_ids


# ═══════════════════════════════════════════════════════════════════════════
#  LEVELING CURVE
# ═══════════════════════════════════════════════════════════════════════════


class TestLevelingCurve:

    def test_xp_for_level_1_is_zero(self):
        assert xp_for_level(1) == 0

    def test_xp_for_level_below_1_is_zero(self):
        assert xp_for_level(0) == 0
        assert xp_for_level(-3) == 0

    def test_xp_for_level_2(self):
        """floor(100 * 2 ** 1.5) = floor(282.84...)"""
        assert xp_for_level(2) == 282

    def test_known_thresholds(self):
        assert xp_for_level(3) == 519
        assert xp_for_level(4) == 800
        assert xp_for_level(5) == 1118
        assert xp_for_level(10) == 3162

    def test_thresholds_strictly_increase(self):
        for lvl in range(1, 200):
            assert xp_for_level(lvl + 1) > xp_for_level(lvl)

    def test_level_from_xp_zero(self):
        assert level_from_xp(0) == 1

    def test_level_from_xp_just_below_boundary(self):
        assert level_from_xp(281) == 1

    def test_level_from_xp_at_boundary(self):
        assert level_from_xp(282) == 2

    def test_level_of_threshold_is_that_level(self):
        for lvl in range(1, 150):
            assert level_from_xp(xp_for_level(lvl)) == lvl

    def test_roundtrip_level(self):
        """Computing level from XP and back should be consistent."""
        for total_xp in [0, 1, 281, 282, 500, 1000, 3161, 3162, 50_000, 1_000_000]:
            level = level_from_xp(total_xp)
            assert xp_for_level(level) <= total_xp
            assert xp_for_level(level + 1) > total_xp

    def test_negative_xp_rejected(self):
        with pytest.raises(ValueError):
            level_from_xp(-1)

    def test_xp_to_next_level(self):
        assert xp_to_next_level(0) == 282
        assert xp_to_next_level(200) == 82
        assert xp_to_next_level(282) == 519 - 282


class TestLevelProgress:

    def test_zero_xp(self):
        p = level_progress(0)
        assert p.level == 1
        assert p.current_xp_in_level == 0
        assert p.xp_needed_for_level == 282
        assert p.progress_percent == 0.0

    def test_mid_level(self):
        p = level_progress(400)
        assert p.level == 2
        assert p.xp_for_current_level == 282
        assert p.xp_for_next_level == 519
        assert p.current_xp_in_level == 118
        assert p.xp_needed_for_level == 237
        assert p.progress_percent == pytest.approx(118 / 237 * 100)

    def test_percent_is_clamped(self):
        for total_xp in range(0, 5000, 37):
            assert 0.0 <= level_progress(total_xp).progress_percent <= 100.0

    def test_to_dict_keys(self):
        d = level_progress(10).to_dict()
        assert set(d) == {
            "level", "total_xp", "current_xp_in_level", "xp_for_current_level",
            "xp_for_next_level", "xp_needed_for_level", "progress_percent",
        }


class TestStreakBonus:

    @pytest.mark.parametrize("days,bonus", [
        (0, 0), (1, 0), (6, 0), (7, 10), (13, 10), (14, 20), (30, 40), (70, 100),
    ])
    def test_streak_bonus(self, days, bonus):
        assert streak_bonus(days) == bonus


# ═══════════════════════════════════════════════════════════════════════════
#  AWARDS
# ═══════════════════════════════════════════════════════════════════════════


class TestAwardResolution:

    def test_lesson_completed_on_fresh_user(self, award_engine):
        result = award_engine.award("u1", "LESSON_COMPLETED")
        assert result.xp_awarded == 20
        assert result.xp_total == 20
        assert result.level == 1
        assert result.old_level == 1
        assert result.leveled_up is False
        assert result.unlocked_rewards == []

    def test_every_default_action_resolves(self, award_engine):
        for action, xp in DEFAULT_XP_AMOUNTS.items():
            assert award_engine.resolve_amount(action) == xp

    def test_explicit_amount_overrides_table(self, award_engine):
        result = award_engine.award("u1", "LESSON_COMPLETED", amount=7)
        assert result.xp_awarded == 7

    def test_explicit_amount_with_unlisted_action(self, award_engine):
        result = award_engine.award("u1", "CUSTOM_BONUS", amount=40)
        assert result.xp_total == 40

    def test_unknown_action_without_amount_raises(self, award_engine):
        with pytest.raises(UnknownActionType) as info:
            award_engine.award("u1", "NOT_A_THING")
        assert info.value.action_type == "NOT_A_THING"
        assert info.value.is_retryable is False
        assert award_engine.store.find("u1") is None

    def test_empty_action_type_raises(self, award_engine):
        with pytest.raises(UnknownActionType):
            award_engine.award("u1", "", amount=10)

    @pytest.mark.parametrize("amount", [-1, 2.5, "10", True])
    def test_invalid_amount_rejected_before_any_write(self, award_engine, amount):
        with pytest.raises(InvalidAmount):
            award_engine.award("u1", "LESSON_COMPLETED", amount=amount)
        assert award_engine.store.find("u1") is None
        assert event_count("u1") == 0

    def test_errors_share_base_class(self):
        assert issubclass(InvalidAmount, ProgressionError)
        assert issubclass(UnknownActionType, ProgressionError)
        assert InvalidAmount(-1).to_dict()["error"] == "INVALID_AMOUNT"

    def test_injected_table_is_isolated(self, qapp, clock):
        table = {"LESSON_COMPLETED": 50}
        engine = AwardEngine(xp_table=table, clock=clock)
        table["LESSON_COMPLETED"] = 999
        assert engine.award("u1", "LESSON_COMPLETED").xp_awarded == 50
        with pytest.raises(UnknownActionType):
            engine.award("u1", "QUIZ_CORRECT")
        assert DEFAULT_XP_AMOUNTS["LESSON_COMPLETED"] == 20

    def test_from_settings_overlays_defaults(self, qapp):
        settings = EngineSettings(xp_amounts={"QUIZ_CORRECT": 8, "SERMON_NOTES": 12})
        engine = AwardEngine.from_settings(settings)
        assert engine.resolve_amount("QUIZ_CORRECT") == 8
        assert engine.resolve_amount("SERMON_NOTES") == 12
        assert engine.resolve_amount("LESSON_COMPLETED") == 20


class TestZeroAmount:

    def test_streak_bonus_entry_is_a_noop(self, award_engine):
        award_engine.award("u1", "LESSON_COMPLETED")
        result = award_engine.award("u1", "STREAK_BONUS")
        assert result.xp_awarded == 0
        assert result.xp_total == 20
        assert result.leveled_up is False
        assert event_count("u1") == 1

    def test_explicit_zero_creates_progress_but_no_event(self, award_engine):
        result = award_engine.award("u1", "CUSTOM", amount=0)
        assert result.xp_total == 0
        assert result.level == 1
        assert award_engine.store.find("u1") is not None
        assert event_count("u1") == 0


class TestLevelUp:

    def test_fifteen_lessons_level_up_exactly_once(self, award_engine):
        flags = [award_engine.award("u1", "LESSON_COMPLETED").leveled_up for _ in range(15)]
        assert flags == [False] * 14 + [True]
        progress = award_engine.store.get_user_progress("u1")
        assert progress.xp_total == 300
        assert progress.level == 2

    def test_level_up_result_fields(self, award_engine):
        result = award_engine.award("u1", "BIG", amount=600)
        assert result.old_level == 1
        assert result.level == 3
        assert result.leveled_up is True

    def test_level_up_unlocks_rewards(self, award_engine):
        result = award_engine.award("u1", "BIG", amount=xp_for_level(5))
        assert sorted(result.unlocked_rewards) == [
            "avatar-1", "avatar-5", "badge-1", "title-1", "title-5",
        ]
        assert owned_reward_ids("u1") == sorted(result.unlocked_rewards)

    def test_no_unlock_without_level_up(self, award_engine):
        award_engine.award("u1", "LESSON_COMPLETED")
        assert owned_reward_ids("u1") == []

    def test_stored_level_always_matches_total(self, award_engine):
        for amount in [5, 100, 177, 1, 600, 2000, 13]:
            award_engine.award("u1", "CUSTOM", amount=amount)
            with get_session() as db:
                row = db.query(UserProgress).filter_by(user_id="u1").one()
                assert row.level == level_from_xp(row.xp_total)

    def test_event_records_metadata_and_description(self, award_engine, clock):
        award_engine.award("u1", "QUIZ_CORRECT", metadata={"quiz_id": "q-9"})
        award_engine.award(
            "u1", "QUIZ_CORRECT", metadata={"description": "Perfect score"},
        )
        events = award_engine.store.recent_events("u1")
        assert [e.description for e in events] == [
            "Perfect score", "Earned 5 XP for QUIZ_CORRECT",
        ]
        assert events[1].event_metadata == {"quiz_id": "q-9"}
        assert events[1].created_at == clock.now

    def test_streak_bonus_award(self, award_engine):
        result = award_engine.award_streak_bonus("u1", 15)
        assert result.xp_awarded == 20
        events = award_engine.store.recent_events("u1")
        assert events[0].action_type == "STREAK_BONUS"
        assert events[0].event_metadata["streak_days"] == 15


class _ExplodingUnlocker:
    def unlock_rewards_for_level(self, user_id, level, db=None):
        raise RuntimeError("catalog offline")


class TestAtomicity:

    def test_failed_unlock_rolls_back_the_award(self, qapp, clock):
        engine = AwardEngine(unlocker=_ExplodingUnlocker(), clock=clock)
        engine.award("u1", "LESSON_COMPLETED")

        with pytest.raises(RuntimeError):
            engine.award("u1", "BIG", amount=1000)

        progress = engine.store.find("u1")
        assert progress.xp_total == 20
        assert progress.level == 1
        assert event_count("u1") == 1


# ═══════════════════════════════════════════════════════════════════════════
#  SIGNALS
# ═══════════════════════════════════════════════════════════════════════════


class TestSignals:

    def test_xp_awarded_emitted(self, award_engine):
        collector = SignalCollector()
        award_engine.xp_awarded.connect(collector)
        award_engine.award("u1", "CHAPTER_READ")
        assert len(collector) == 1
        assert collector.last == {
            "user_id": "u1",
            "action_type": "CHAPTER_READ",
            "amount": 10,
            "xp_total": 10,
            "level": 1,
        }

    def test_level_up_emitted_only_on_level_up(self, award_engine):
        collector = SignalCollector()
        award_engine.level_up.connect(collector)
        award_engine.award("u1", "CHAPTER_READ")
        assert len(collector) == 0
        award_engine.award("u1", "BIG", amount=300)
        assert len(collector) == 1
        assert collector.last["old_level"] == 1
        assert collector.last["new_level"] == 2
        assert "badge-1" in collector.last["unlocked_rewards"]

    def test_no_signals_for_rejected_award(self, award_engine):
        collector = SignalCollector()
        award_engine.xp_awarded.connect(collector)
        with pytest.raises(UnknownActionType):
            award_engine.award("u1", "NOPE")
        assert len(collector) == 0

    def test_no_signals_for_zero_award(self, award_engine):
        collector = SignalCollector()
        award_engine.xp_awarded.connect(collector)
        award_engine.award("u1", "STREAK_BONUS")
        assert len(collector) == 0
