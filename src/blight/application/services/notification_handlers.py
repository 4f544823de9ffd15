from __future__ import annotations

import logging

from blight.application.services import blight_messages
from blight.application.services.event_bus import EventBus
from blight.application.settings import BlightSettings
from blight.domain import events
from blight.domain.gateways import Notifier


logger = logging.getLogger(__name__)


class BlightNotificationHandlers:
    """Turns blight events into direct messages and channel broadcasts.

    Delivery is best effort: an undelivered message is logged, never retried here.
    """

    def __init__(self, notifier: Notifier, event_bus: EventBus, settings: BlightSettings) -> None:
        self.notifier = notifier
        self.event_bus = event_bus
        self.settings = settings

    def register_handlers(self) -> None:
        self.event_bus.subscribe(events.StageAdvanced, self.on_stage_advanced, priority=50)
        self.event_bus.subscribe(events.DeathWarningIssued, self.on_death_warning, priority=50)
        self.event_bus.subscribe(events.CharacterDied, self.on_character_died, priority=50)
        self.event_bus.subscribe(events.HealingRequested, self.on_healing_requested, priority=50)
        self.event_bus.subscribe(events.HealingCompleted, self.on_healing_completed, priority=50)
        self.event_bus.subscribe(events.RequestExpiring, self.on_request_expiring, priority=50)
        self.event_bus.subscribe(events.RequestExpired, self.on_request_expired, priority=50)
        self.event_bus.subscribe(events.RequestCancelled, self.on_request_cancelled, priority=50)
        self.event_bus.subscribe(events.BlightPauseChanged, self.on_pause_changed, priority=50)
        self.event_bus.subscribe(events.CharacterInfected, self.on_character_infected, priority=50)

    def _dm(self, user_id: str, message: str, event_name: str) -> None:
        if not user_id:
            return
        if not self.notifier.dm_user(str(user_id), message):
            logger.warning("Blight DM not delivered", extra={"user_id": user_id, "event_type": event_name})

    def _broadcast(self, channel_id: str, message: str, event_name: str) -> None:
        if not channel_id:
            return
        if not self.notifier.broadcast(channel_id, message):
            logger.warning("Blight broadcast not delivered", extra={"channel_id": channel_id, "event_type": event_name})

    def on_stage_advanced(self, event: events.StageAdvanced) -> None:
        message = blight_messages.stage_advanced(event)
        self._dm(event.user_id, message, "StageAdvanced")
        if event.reason == "missed-roll":
            self._broadcast(self.settings.notifications_channel_id, message, "StageAdvanced")

    def on_death_warning(self, event: events.DeathWarningIssued) -> None:
        self._dm(event.user_id, blight_messages.death_warning(event), "DeathWarningIssued")

    def on_character_died(self, event: events.CharacterDied) -> None:
        message = blight_messages.character_died(event)
        self._dm(event.user_id, message, "CharacterDied")
        self._broadcast(self.settings.notifications_channel_id, message, "CharacterDied")

    def on_healing_requested(self, event: events.HealingRequested) -> None:
        message = blight_messages.healing_requested(event)
        self._dm(event.user_id, message, "HealingRequested")
        self._broadcast(self.settings.mod_queue_channel_id, message, "HealingRequested")

    def on_healing_completed(self, event: events.HealingCompleted) -> None:
        message = blight_messages.healing_completed(event)
        self._dm(event.user_id, message, "HealingCompleted")
        self._broadcast(self.settings.notifications_channel_id, message, "HealingCompleted")

    def on_request_expiring(self, event: events.RequestExpiring) -> None:
        self._dm(event.user_id, blight_messages.request_expiring(event), "RequestExpiring")

    def on_request_expired(self, event: events.RequestExpired) -> None:
        self._dm(event.user_id, blight_messages.request_expired(event), "RequestExpired")

    def on_request_cancelled(self, event: events.RequestCancelled) -> None:
        self._dm(event.user_id, blight_messages.request_cancelled(event), "RequestCancelled")

    def on_pause_changed(self, event: events.BlightPauseChanged) -> None:
        self._dm(event.user_id, blight_messages.pause_changed(event), "BlightPauseChanged")

    def on_character_infected(self, event: events.CharacterInfected) -> None:
        self._dm(event.user_id, blight_messages.character_infected(event), "CharacterInfected")


def register_notification_handlers(
    event_bus: EventBus,
    notifier: Notifier | None,
    settings: BlightSettings,
) -> BlightNotificationHandlers | None:
    if notifier is None:
        return None
    handlers = BlightNotificationHandlers(notifier=notifier, event_bus=event_bus, settings=settings)
    handlers.register_handlers()
    return handlers
