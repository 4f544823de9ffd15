from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable

from blight.application.dtos import FailureReason, RollCallOutcome
from blight.application.services.clock import Clock, resolve_now, utc_now
from blight.application.services.event_bus import EventBus
from blight.application.settings import BlightSettings
from blight.domain.events import RollCallPosted
from blight.domain.gateways import Notifier
from blight.domain.services import stage_engine


logger = logging.getLogger(__name__)


def default_roll_call_text(role_id: str, next_window_start: datetime) -> str:
    mention = f"<@&{role_id}> " if role_id else ""
    return (
        f"{mention}The blight stirs. Roll for your afflicted characters before "
        f"{next_window_start.strftime('%H:%M')} ({next_window_start.strftime('%Z') or 'local'}) "
        "or the sickness will advance on its own."
    )


class RollCallAnnouncer:
    def __init__(
        self,
        notifier: Notifier,
        event_bus: EventBus,
        settings: BlightSettings,
        *,
        clock: Clock = utc_now,
        render: Callable[[str, datetime], str] = default_roll_call_text,
    ) -> None:
        self.notifier = notifier
        self.event_bus = event_bus
        self.settings = settings
        self.clock = clock
        self.render = render

    def post_roll_call(self, now: datetime | None = None) -> RollCallOutcome:
        now = resolve_now(now, self.clock)
        channel_id = str(self.settings.notifications_channel_id or "").strip()
        if not channel_id:
            logger.warning("Roll call skipped; no notifications channel configured")
            return RollCallOutcome(ok=False, reason=FailureReason.CHANNEL_NOT_CONFIGURED)

        window = stage_engine.roll_window(now, zone=self.settings.zone, boundary_hour=self.settings.roll_hour)
        message = self.render(self.settings.reminder_role_id, window.end)
        if not self.notifier.broadcast(channel_id, message):
            logger.warning("Roll call broadcast was not delivered", extra={"channel_id": channel_id})
            return RollCallOutcome(ok=False, reason=FailureReason.DEPENDENCY_FAILED, channel_id=channel_id, message=message)

        self.event_bus.publish(RollCallPosted(channel_id=channel_id, role_id=self.settings.reminder_role_id, posted_at=now))
        logger.info("Roll call posted", extra={"channel_id": channel_id})
        return RollCallOutcome(ok=True, channel_id=channel_id, message=message)
