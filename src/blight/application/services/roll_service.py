from __future__ import annotations

import logging
import random
from dataclasses import replace
from datetime import datetime

from blight.application.dtos import FailureReason, RollOutcome
from blight.application.services.clock import Clock, resolve_now, utc_now
from blight.application.services.event_bus import EventBus
from blight.application.services.leases import LeaseManager
from blight.application.settings import BlightSettings
from blight.domain.errors import CharacterBusyError, StaleCharacterError, report_invariant_violation
from blight.domain.events import BlightRolled
from blight.domain.models.history import BlightEvent, BlightEventType
from blight.domain.repositories import AtomicPersistor, CharacterRepository
from blight.domain.services import stage_engine


logger = logging.getLogger(__name__)


class RollService:
    def __init__(
        self,
        character_repo: CharacterRepository,
        persist: AtomicPersistor,
        leases: LeaseManager,
        event_bus: EventBus,
        settings: BlightSettings,
        *,
        rng: random.Random | None = None,
        clock: Clock = utc_now,
    ) -> None:
        self.character_repo = character_repo
        self.persist = persist
        self.leases = leases
        self.event_bus = event_bus
        self.settings = settings
        self.rng = rng or random.Random()
        self.clock = clock

    def roll(self, character_id: int, acting_user_id: str, now: datetime | None = None) -> RollOutcome:
        """Roll for a character while holding its lease.

        A healing fulfilment or a death in progress owns the lease, so a roll
        arriving then reports ``busy`` and changes nothing.
        """
        now = resolve_now(now, self.clock)
        try:
            with self.leases.character(character_id, self.settings.character_lease_ttl):
                return self._roll_locked(character_id, acting_user_id, now)
        except CharacterBusyError:
            logger.info("Blight roll refused; character is busy", extra={"character_id": character_id})
            return RollOutcome(ok=False, reason=FailureReason.BUSY)

    def _roll_locked(self, character_id: int, acting_user_id: str, now: datetime) -> RollOutcome:
        window = stage_engine.roll_window(now, zone=self.settings.zone, boundary_hour=self.settings.roll_hour)

        character = self.character_repo.get(character_id)
        if character is None:
            return RollOutcome(ok=False, reason=FailureReason.CHARACTER_NOT_FOUND)
        if str(character.user_id) != str(acting_user_id):
            return RollOutcome(ok=False, reason=FailureReason.NOT_OWNER, character=character)
        if not character.blighted or character.blight_stage <= 0:
            return RollOutcome(ok=False, reason=FailureReason.NOT_AFFLICTED, character=character)
        if character.blight_paused:
            return RollOutcome(ok=False, reason=FailureReason.PAUSED, character=character)
        if character.is_terminal:
            return RollOutcome(ok=False, reason=FailureReason.TERMINAL_STAGE, character=character)
        if window.contains(character.last_roll_date):
            return RollOutcome(
                ok=False,
                reason=FailureReason.ALREADY_ROLLED,
                character=character,
                next_window_start=window.end,
            )

        draw = self.rng.randint(1, stage_engine.ROLL_SIDES)
        transition = stage_engine.resolve_roll(character.blight_stage, draw, mode=self.settings.band_mode)
        updated = stage_engine.with_stage(
            character,
            transition.new_stage,
            now=now,
            deadline_delay=self.settings.death_deadline_delay,
        )
        updated = replace(updated, last_roll_date=now)
        problems = updated.invariant_problems()
        if problems:
            raise report_invariant_violation(f"character {character.id}", problems)

        history = BlightEvent(
            character_id=int(character.id or 0),
            character_name=character.name,
            event_type=BlightEventType.ROLL,
            created_at=now,
            notes=transition.narrative_key,
            previous_stage=transition.previous_stage,
            new_stage=transition.new_stage,
            roll_value=draw,
            actor_user_id=str(acting_user_id),
        )
        try:
            saved = self.persist(updated, expected_version=character.version, history=[history])
        except StaleCharacterError:
            logger.info(
                "Blight roll lost a concurrent update",
                extra={"character_id": character.id, "expected_version": character.version},
            )
            return RollOutcome(
                ok=False,
                reason=FailureReason.ALREADY_ROLLED,
                character=character,
                next_window_start=window.end,
            )

        logger.info(
            "Blight roll resolved",
            extra={
                "character_id": saved.id,
                "roll_value": draw,
                "previous_stage": transition.previous_stage,
                "new_stage": transition.new_stage,
            },
        )
        self.event_bus.publish(
            BlightRolled(
                character_id=int(saved.id or 0),
                character_name=saved.name,
                user_id=saved.user_id,
                roll_value=draw,
                previous_stage=transition.previous_stage,
                new_stage=transition.new_stage,
                death_deadline=saved.death_deadline,
            )
        )
        return RollOutcome(
            ok=True,
            character=saved,
            roll_value=draw,
            previous_stage=transition.previous_stage,
            new_stage=transition.new_stage,
            death_deadline=saved.death_deadline,
            next_window_start=window.end,
        )
