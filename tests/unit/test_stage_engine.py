import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path
import unittest

sys.path.insert(0, str(Path(__file__).resolve().parents[2] / "src"))

from blight.domain.models.character import BlightEffects, Character
from blight.domain.models.healer import HealerCategory
from blight.domain.services import stage_engine
from blight.domain.services.stage_engine import BandMode


EST = stage_engine.reference_zone(-5)


class RollWindowTests(unittest.TestCase):
    def test_window_opens_at_local_boundary_hour(self) -> None:
        now = datetime(2026, 3, 10, 18, 0, tzinfo=timezone.utc)  # 13:00 local
        window = stage_engine.roll_window(now, zone=EST, boundary_hour=20)

        self.assertEqual(datetime(2026, 3, 10, 1, 0, tzinfo=timezone.utc), window.start)
        self.assertEqual(datetime(2026, 3, 11, 1, 0, tzinfo=timezone.utc), window.end)

    def test_boundary_moment_starts_the_next_window(self) -> None:
        now = datetime(2026, 3, 11, 1, 0, tzinfo=timezone.utc)  # exactly 20:00 local
        window = stage_engine.roll_window(now, zone=EST)

        self.assertEqual(now, window.start)
        self.assertTrue(window.contains(now))

    def test_second_roll_same_window_is_detected(self) -> None:
        first = datetime(2026, 3, 10, 15, 0, tzinfo=timezone.utc)
        second = first + timedelta(hours=2)

        self.assertTrue(stage_engine.has_rolled_in_window(first, second, zone=EST))
        self.assertFalse(stage_engine.has_rolled_in_window(None, second, zone=EST))

    def test_roll_before_boundary_does_not_count_after_it(self) -> None:
        before = datetime(2026, 3, 11, 0, 30, tzinfo=timezone.utc)  # 19:30 local
        after = datetime(2026, 3, 11, 1, 30, tzinfo=timezone.utc)  # 20:30 local

        self.assertFalse(stage_engine.has_rolled_in_window(before, after, zone=EST))

    def test_naive_datetime_is_rejected(self) -> None:
        with self.assertRaises(ValueError):
            stage_engine.roll_window(datetime(2026, 3, 10, 12, 0), zone=EST)


class ResolveRollTests(unittest.TestCase):
    def test_step_mode_advances_one_stage_within_band(self) -> None:
        transition = stage_engine.resolve_roll(1, 25, mode=BandMode.STEP)

        self.assertEqual(2, transition.new_stage)
        self.assertTrue(transition.changed)
        self.assertFalse(transition.arm_death_deadline)
        self.assertEqual(1.5, transition.effects.roll_multiplier)

    def test_step_mode_holds_above_band(self) -> None:
        transition = stage_engine.resolve_roll(1, 26, mode=BandMode.STEP)

        self.assertEqual(1, transition.new_stage)
        self.assertFalse(transition.changed)
        self.assertEqual("stage_1_unchanged", transition.narrative_key)

    def test_step_mode_reaching_stage_five_arms_deadline(self) -> None:
        transition = stage_engine.resolve_roll(4, 100, mode=BandMode.STEP)

        self.assertEqual(5, transition.new_stage)
        self.assertTrue(transition.arm_death_deadline)

    def test_absolute_mode_can_jump_and_recede(self) -> None:
        self.assertEqual(4, stage_engine.resolve_roll(1, 60, mode=BandMode.ABSOLUTE).new_stage)
        receded = stage_engine.resolve_roll(4, 10, mode=BandMode.ABSOLUTE)
        self.assertEqual(2, receded.new_stage)
        self.assertEqual("stage_2_receded", receded.narrative_key)
        self.assertEqual(3, stage_engine.resolve_roll(3, 900, mode=BandMode.ABSOLUTE).new_stage)

    def test_draw_outside_die_is_rejected(self) -> None:
        with self.assertRaises(ValueError):
            stage_engine.resolve_roll(1, 0)
        with self.assertRaises(ValueError):
            stage_engine.resolve_roll(1, 1001)

    def test_missed_roll_advances_and_caps_at_five(self) -> None:
        self.assertEqual(2, stage_engine.resolve_missed_roll(1).new_stage)
        self.assertTrue(stage_engine.resolve_missed_roll(4).arm_death_deadline)
        self.assertEqual(5, stage_engine.resolve_missed_roll(5).new_stage)

    def test_band_mode_normalize_falls_back_to_step(self) -> None:
        self.assertEqual(BandMode.ABSOLUTE, BandMode.normalize(" Absolute "))
        self.assertEqual(BandMode.STEP, BandMode.normalize("unknown"))


class PermissionAndTierTests(unittest.TestCase):
    def test_permission_table(self) -> None:
        self.assertTrue(stage_engine.is_healer_permitted(HealerCategory.SAGE, 2))
        self.assertFalse(stage_engine.is_healer_permitted(HealerCategory.SAGE, 3))
        self.assertTrue(stage_engine.is_healer_permitted(HealerCategory.ORACLE, 3))
        self.assertFalse(stage_engine.is_healer_permitted(HealerCategory.ORACLE, 4))
        self.assertTrue(stage_engine.is_healer_permitted(HealerCategory.DRAGON, 4))
        self.assertTrue(stage_engine.is_healer_permitted(HealerCategory.DRAGON, 5))
        self.assertFalse(stage_engine.is_healer_permitted(HealerCategory.ORACLE, 5))
        self.assertEqual(frozenset(), stage_engine.permitted_categories(0))

    def test_effects_by_stage(self) -> None:
        self.assertEqual(BlightEffects(), stage_engine.effects_for_stage(1))
        self.assertTrue(stage_engine.effects_for_stage(3).no_monsters)
        self.assertFalse(stage_engine.effects_for_stage(3).no_gathering)
        self.assertTrue(stage_engine.effects_for_stage(4).no_gathering)

    def test_death_warning_tiers(self) -> None:
        deadline = datetime(2026, 3, 20, tzinfo=timezone.utc)

        self.assertIsNone(stage_engine.death_warning_tier(deadline, deadline - timedelta(days=6)))
        self.assertEqual("5_day", stage_engine.death_warning_tier(deadline, deadline - timedelta(days=4, hours=12)))
        self.assertEqual("3_day", stage_engine.death_warning_tier(deadline, deadline - timedelta(days=2)))
        self.assertEqual("24_hour", stage_engine.death_warning_tier(deadline, deadline - timedelta(hours=20)))
        self.assertEqual("final_6_hour", stage_engine.death_warning_tier(deadline, deadline - timedelta(hours=1)))
        self.assertIsNone(stage_engine.death_warning_tier(deadline, deadline + timedelta(minutes=1)))

    def test_request_warning_tiers(self) -> None:
        expires = datetime(2026, 4, 9, tzinfo=timezone.utc)

        self.assertIsNone(stage_engine.request_warning_tier(expires, expires - timedelta(days=2)))
        self.assertEqual("24_hour", stage_engine.request_warning_tier(expires, expires - timedelta(hours=13)))
        self.assertEqual("12_hour", stage_engine.request_warning_tier(expires, expires - timedelta(hours=8)))
        self.assertEqual("final_6_hour", stage_engine.request_warning_tier(expires, expires - timedelta(hours=2)))


class WithStageTests(unittest.TestCase):
    def setUp(self) -> None:
        self.now = datetime(2026, 3, 10, 18, 0, tzinfo=timezone.utc)
        self.character = Character(
            id=1,
            name="Rin",
            user_id="u1",
            home_village="Rudania",
            blighted=True,
            blight_stage=4,
            blighted_at=self.now - timedelta(days=3),
            blight_effects=stage_engine.effects_for_stage(4),
        )

    def test_entering_stage_five_sets_deadline(self) -> None:
        updated = stage_engine.with_stage(self.character, 5, now=self.now, deadline_delay=timedelta(days=7))

        self.assertEqual(self.now + timedelta(days=7), updated.death_deadline)
        self.assertEqual([], updated.invariant_problems())
        self.assertEqual(4, self.character.blight_stage)

    def test_stage_five_keeps_existing_deadline_unless_rearmed(self) -> None:
        at_five = stage_engine.with_stage(self.character, 5, now=self.now, deadline_delay=timedelta(days=7))
        later = self.now + timedelta(days=1)

        kept = stage_engine.with_stage(at_five, 5, now=later, deadline_delay=timedelta(days=7))
        rearmed = stage_engine.with_stage(at_five, 5, now=later, deadline_delay=timedelta(days=7), rearm_deadline=True)

        self.assertEqual(at_five.death_deadline, kept.death_deadline)
        self.assertEqual(later + timedelta(days=7), rearmed.death_deadline)

    def test_cure_clears_derived_fields(self) -> None:
        cured = stage_engine.with_stage(self.character, 0, now=self.now, deadline_delay=timedelta(days=7))

        self.assertFalse(cured.blighted)
        self.assertIsNone(cured.death_deadline)
        self.assertIsNone(cured.blighted_at)
        self.assertEqual(BlightEffects(), cured.blight_effects)
        self.assertEqual([], cured.invariant_problems())


if __name__ == "__main__":
    unittest.main()
