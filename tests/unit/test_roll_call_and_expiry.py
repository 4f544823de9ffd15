import random
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path
import unittest

sys.path.insert(0, str(Path(__file__).resolve().parents[2] / "src"))

from blight.application.dtos import FailureReason
from blight.application.services.roll_call import default_roll_call_text
from blight.application.settings import BlightSettings
from blight.bootstrap import build_inmemory_services
from blight.domain.events import RollCallPosted
from blight.domain.models.character import Character
from blight.domain.models.history import BlightEventType
from blight.domain.models.record import DEATH_WARNING_RECORD_TYPE, REQUEST_RECORD_TYPE
from blight.domain.services import stage_engine
from blight.infrastructure.inmemory.gateways import RecordingNotifier
from blight.infrastructure.inmemory.repos import InMemoryCharacterRepository


NOW = datetime(2026, 3, 10, 18, 0, tzinfo=timezone.utc)


class _SilentNotifier(RecordingNotifier):
    def broadcast(self, channel_id: str, message: str) -> bool:
        return False


class RollCallAnnouncerTests(unittest.TestCase):
    def test_missing_channel_is_reported(self) -> None:
        services = build_inmemory_services(settings=BlightSettings(), clock=lambda: NOW)

        outcome = services.roll_call.post_roll_call()

        self.assertFalse(outcome.ok)
        self.assertEqual(FailureReason.CHANNEL_NOT_CONFIGURED, outcome.reason)
        self.assertEqual([], services.notifier.broadcasts)

    def test_posts_reminder_with_role_mention(self) -> None:
        services = build_inmemory_services(
            settings=BlightSettings(notifications_channel_id="chan-1", reminder_role_id="role-9"),
            clock=lambda: NOW,
        )
        posted = []
        services.event_bus.subscribe(RollCallPosted, posted.append)

        outcome = services.roll_call.post_roll_call()

        self.assertTrue(outcome.ok)
        channel, message = services.notifier.broadcasts[0]
        self.assertEqual("chan-1", channel)
        self.assertTrue(message.startswith("<@&role-9> "))
        self.assertIn("20:00", message)
        self.assertEqual(NOW, posted[0].posted_at)

    def test_undelivered_broadcast_is_a_dependency_failure(self) -> None:
        services = build_inmemory_services(
            settings=BlightSettings(notifications_channel_id="chan-1"),
            notifier=_SilentNotifier(),
            clock=lambda: NOW,
        )

        outcome = services.roll_call.post_roll_call()

        self.assertEqual(FailureReason.DEPENDENCY_FAILED, outcome.reason)

    def test_default_text_without_role(self) -> None:
        text = default_roll_call_text("", datetime(2026, 3, 11, 1, 0, tzinfo=timezone.utc))

        self.assertFalse(text.startswith("<@&"))
        self.assertIn("01:00", text)


class RequestExpiryServiceTests(unittest.TestCase):
    def setUp(self) -> None:
        character = Character(
            id=1,
            name="Rin",
            user_id="u1",
            home_village="Rudania",
            blighted=True,
            blight_stage=2,
            blighted_at=NOW - timedelta(days=1),
            blight_effects=stage_engine.effects_for_stage(2),
        )
        self.services = build_inmemory_services(
            character_repo=InMemoryCharacterRepository([character]),
            rng=random.Random(11),
            clock=lambda: NOW,
        )
        self.request = self.services.healing.create_request(1, "Darune", "u1").request

    def test_nothing_to_warn_early_on(self) -> None:
        self.assertEqual([], self.services.expiry.warn_expiring().warned)

    def test_warns_once_per_tier(self) -> None:
        moment = self.request.expires_at - timedelta(hours=5)

        first = self.services.expiry.warn_expiring(now=moment)
        second = self.services.expiry.warn_expiring(now=moment + timedelta(minutes=10))

        self.assertEqual([f"{self.request.submission_id}:final_6_hour"], first.warned)
        self.assertEqual([], second.warned)
        self.assertEqual(1, sum(1 for _, text in self.services.notifier.direct_messages if "six hours" in text))

    def test_cleanup_removes_expired_requests_and_records_history(self) -> None:
        moment = self.request.expires_at + timedelta(minutes=1)

        report = self.services.expiry.cleanup_expired(now=moment)

        self.assertEqual([self.request.submission_id], report.expired)
        self.assertIsNone(self.services.record_store.get(REQUEST_RECORD_TYPE, self.request.submission_id))
        history = self.services.history_repo.list_for_character(1)
        self.assertEqual(BlightEventType.REQUEST_EXPIRED, history[0].event_type)
        self.assertIn("has expired", self.services.notifier.direct_messages[-1][1])
        self.assertTrue(self.services.healing.create_request(1, "Darune", "u1", now=moment).ok)

    def test_cleanup_purges_other_expired_records(self) -> None:
        self.services.record_store.put(DEATH_WARNING_RECORD_TYPE, "old", {}, timedelta(hours=1), now=NOW)

        report = self.services.expiry.cleanup_expired(now=NOW + timedelta(hours=2))

        self.assertEqual([], report.expired)
        self.assertEqual(1, report.purged_records)
        self.assertIsNotNone(self.services.record_store.get(REQUEST_RECORD_TYPE, self.request.submission_id))


if __name__ == "__main__":
    unittest.main()
