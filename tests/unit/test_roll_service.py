import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path
import unittest

sys.path.insert(0, str(Path(__file__).resolve().parents[2] / "src"))

from blight.application.dtos import FailureReason
from blight.application.settings import BlightSettings
from blight.bootstrap import build_inmemory_services
from blight.domain.events import BlightRolled
from blight.domain.models.character import Character
from blight.domain.models.history import BlightEventType
from blight.domain.services import stage_engine
from blight.domain.services.stage_engine import BandMode
from blight.infrastructure.inmemory.repos import InMemoryCharacterRepository


NOW = datetime(2026, 3, 10, 18, 0, tzinfo=timezone.utc)


class _FixedRng:
    def __init__(self, *draws: int) -> None:
        self.draws = list(draws)

    def randint(self, low: int, high: int) -> int:
        return self.draws.pop(0)

    def choice(self, options):
        return options[0]


def _character(stage: int, **overrides) -> Character:
    fields = dict(
        id=1,
        name="Rin",
        user_id="u1",
        home_village="Rudania",
        blighted=stage > 0,
        blight_stage=stage,
        blighted_at=NOW - timedelta(days=2) if stage else None,
        blight_effects=stage_engine.effects_for_stage(stage),
    )
    if stage == 5:
        fields["death_deadline"] = NOW + timedelta(days=3)
    fields.update(overrides)
    return Character(**fields)


class RollServiceTests(unittest.TestCase):
    def _services(self, character: Character, *draws: int, band_mode: BandMode = BandMode.STEP):
        return build_inmemory_services(
            settings=BlightSettings(band_mode=band_mode),
            character_repo=InMemoryCharacterRepository([character]),
            rng=_FixedRng(*draws),
            clock=lambda: NOW,
        )

    def test_low_draw_advances_stage_and_records_roll(self) -> None:
        services = self._services(_character(1), 10)
        published = []
        services.event_bus.subscribe(BlightRolled, published.append)

        outcome = services.rolls.roll(1, "u1")

        self.assertTrue(outcome.ok)
        self.assertEqual(10, outcome.roll_value)
        self.assertEqual(2, outcome.new_stage)
        stored = services.character_repo.get(1)
        self.assertEqual(2, stored.blight_stage)
        self.assertEqual(NOW, stored.last_roll_date)
        self.assertEqual(1.5, stored.blight_effects.roll_multiplier)
        self.assertIsNone(stored.death_deadline)
        self.assertEqual(1, stored.version)
        history = services.history_repo.list_for_character(1)
        self.assertEqual(BlightEventType.ROLL, history[0].event_type)
        self.assertEqual(10, history[0].roll_value)
        self.assertEqual(1, len(published))

    def test_high_draw_keeps_stage_but_consumes_window(self) -> None:
        services = self._services(_character(2), 700)

        outcome = services.rolls.roll(1, "u1")

        self.assertTrue(outcome.ok)
        self.assertFalse(outcome.stage_changed)
        self.assertEqual(NOW, services.character_repo.get(1).last_roll_date)

    def test_second_roll_in_same_window_is_rejected(self) -> None:
        services = self._services(_character(1), 900, 900)
        self.assertTrue(services.rolls.roll(1, "u1").ok)

        outcome = services.rolls.roll(1, "u1", now=NOW + timedelta(hours=2))

        self.assertFalse(outcome.ok)
        self.assertEqual(FailureReason.ALREADY_ROLLED, outcome.reason)
        self.assertEqual(datetime(2026, 3, 11, 1, 0, tzinfo=timezone.utc), outcome.next_window_start)

    def test_roll_after_boundary_is_allowed(self) -> None:
        services = self._services(_character(1), 900, 900)
        self.assertTrue(services.rolls.roll(1, "u1").ok)

        outcome = services.rolls.roll(1, "u1", now=datetime(2026, 3, 11, 1, 30, tzinfo=timezone.utc))

        self.assertTrue(outcome.ok)

    def test_reaching_stage_five_sets_death_deadline(self) -> None:
        services = self._services(_character(4), 50)

        outcome = services.rolls.roll(1, "u1")

        self.assertEqual(5, outcome.new_stage)
        self.assertEqual(NOW + timedelta(days=7), outcome.death_deadline)
        self.assertEqual(NOW + timedelta(days=7), services.character_repo.get(1).death_deadline)

    def test_absolute_mode_jumps_to_band(self) -> None:
        services = self._services(_character(1), 60, band_mode=BandMode.ABSOLUTE)

        self.assertEqual(4, services.rolls.roll(1, "u1").new_stage)

    def test_precondition_failures_do_not_mutate(self) -> None:
        cases = [
            (_character(1), "someone-else", FailureReason.NOT_OWNER),
            (_character(0), "u1", FailureReason.NOT_AFFLICTED),
            (_character(2, blight_paused=True), "u1", FailureReason.PAUSED),
            (_character(5), "u1", FailureReason.TERMINAL_STAGE),
        ]
        for character, user_id, reason in cases:
            with self.subTest(reason=reason):
                services = self._services(character, 1)
                outcome = services.rolls.roll(1, user_id)
                self.assertFalse(outcome.ok)
                self.assertEqual(reason, outcome.reason)
                self.assertEqual(0, services.character_repo.get(1).version)

    def test_unknown_character(self) -> None:
        services = self._services(_character(1), 1)

        self.assertEqual(FailureReason.CHARACTER_NOT_FOUND, services.rolls.roll(99, "u1").reason)

    def test_roll_while_character_lease_is_held_reports_busy(self) -> None:
        services = self._services(_character(2), 10, 10)

        with services.rolls.leases.character(1, timedelta(seconds=60)):
            busy = services.rolls.roll(1, "u1")

        self.assertEqual(FailureReason.BUSY, busy.reason)
        stored = services.character_repo.get(1)
        self.assertEqual(0, stored.version)
        self.assertIsNone(stored.last_roll_date)
        self.assertEqual(2, stored.blight_stage)
        self.assertTrue(services.rolls.roll(1, "u1").ok)

    def test_roll_itself_sends_no_direct_message(self) -> None:
        services = self._services(_character(1), 10)

        services.rolls.roll(1, "u1")

        self.assertEqual([], services.notifier.direct_messages)


if __name__ == "__main__":
    unittest.main()
