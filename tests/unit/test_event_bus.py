import sys
from pathlib import Path
import unittest

sys.path.insert(0, str(Path(__file__).resolve().parents[2] / "src"))

from blight.application.services.event_bus import EventBus
from blight.application.services.notification_handlers import register_notification_handlers
from blight.application.settings import BlightSettings
from blight.domain.events import CharacterDied, RollCallPosted
from blight.infrastructure.inmemory.gateways import RecordingNotifier


class _FailingNotifier(RecordingNotifier):
    def dm_user(self, user_id: str, message: str) -> bool:
        raise RuntimeError("dm transport down")


class EventBusTests(unittest.TestCase):
    def test_handlers_run_by_priority_then_subscription_order(self) -> None:
        bus = EventBus()
        calls = []
        bus.subscribe(CharacterDied, lambda event: calls.append("late"), priority=200)
        bus.subscribe(CharacterDied, lambda event: calls.append("first"), priority=10)
        bus.subscribe(CharacterDied, lambda event: calls.append("second"), priority=10)

        bus.publish(CharacterDied(character_id=1, character_name="Rin", user_id="u1", village="Rudania"))

        self.assertEqual(["first", "second", "late"], calls)
        self.assertEqual(3, bus.handler_count(CharacterDied))
        self.assertEqual(0, bus.handler_count(RollCallPosted))

    def test_failing_handler_is_isolated(self) -> None:
        bus = EventBus()
        calls = []

        def _boom(event) -> None:
            raise ValueError("boom")

        bus.subscribe(CharacterDied, _boom, priority=1)
        bus.subscribe(CharacterDied, lambda event: calls.append(event.character_name), priority=2)

        errors = bus.publish(CharacterDied(character_id=1, character_name="Rin", user_id="u1", village=""))

        self.assertEqual(["Rin"], calls)
        self.assertEqual(1, len(errors))
        self.assertIsInstance(bus.last_publish_errors()[0], ValueError)

    def test_notification_failure_does_not_stop_other_handlers(self) -> None:
        bus = EventBus()
        notifier = _FailingNotifier()
        register_notification_handlers(bus, notifier, BlightSettings(notifications_channel_id="chan-1"))
        calls = []
        bus.subscribe(CharacterDied, lambda event: calls.append(event), priority=100)

        errors = bus.publish(CharacterDied(character_id=1, character_name="Rin", user_id="u1", village="Rudania"))

        self.assertEqual(1, len(errors))
        self.assertEqual(1, len(calls))
        self.assertEqual([], notifier.broadcasts)

    def test_publish_all_collects_errors(self) -> None:
        bus = EventBus()

        def _boom(event) -> None:
            raise RuntimeError("nope")

        bus.subscribe(RollCallPosted, _boom)
        errors = bus.publish_all(
            [
                RollCallPosted(channel_id="c", role_id="", posted_at=None),
                RollCallPosted(channel_id="c", role_id="", posted_at=None),
            ]
        )

        self.assertEqual(2, len(errors))
        self.assertEqual(2, len(bus.last_publish_errors()))


if __name__ == "__main__":
    unittest.main()
