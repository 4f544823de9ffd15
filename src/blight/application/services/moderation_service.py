from __future__ import annotations

import logging
from dataclasses import replace
from datetime import datetime
from enum import Enum

from blight.application.dtos import FailureReason, ModerationOutcome
from blight.application.services.clock import Clock, resolve_now, utc_now
from blight.application.services.event_bus import EventBus
from blight.application.services.healing_service import HealingService
from blight.application.services.leases import LeaseManager
from blight.application.settings import BlightSettings
from blight.domain.errors import CharacterBusyError, StaleCharacterError
from blight.domain.events import BlightPauseChanged, CharacterInfected, StageAdvanced
from blight.domain.models.character import Character
from blight.domain.models.history import BlightEvent, BlightEventType
from blight.domain.repositories import AtomicPersistor, CharacterRepository
from blight.domain.services import stage_engine


logger = logging.getLogger(__name__)


class OverrideScope(str, Enum):
    CHARACTER = "character"
    VILLAGE = "village"
    ALL = "all"


class ModerationService:
    def __init__(
        self,
        character_repo: CharacterRepository,
        healing: HealingService,
        persist: AtomicPersistor,
        leases: LeaseManager,
        event_bus: EventBus,
        settings: BlightSettings,
        *,
        clock: Clock = utc_now,
    ) -> None:
        self.character_repo = character_repo
        self.healing = healing
        self.persist = persist
        self.leases = leases
        self.event_bus = event_bus
        self.settings = settings
        self.clock = clock

    def infect(self, character_id: int, *, source: str, actor_user_id: str, now: datetime | None = None) -> ModerationOutcome:
        now = resolve_now(now, self.clock)
        try:
            with self.leases.character(character_id, self.settings.character_lease_ttl):
                return self._infect_locked(character_id, source=source, actor_user_id=actor_user_id, now=now)
        except CharacterBusyError:
            return ModerationOutcome(ok=False, reason=FailureReason.BUSY)

    def _infect_locked(self, character_id: int, *, source: str, actor_user_id: str, now: datetime) -> ModerationOutcome:
        character = self.character_repo.get(character_id)
        if character is None:
            return ModerationOutcome(ok=False, reason=FailureReason.CHARACTER_NOT_FOUND)
        if character.blighted:
            return ModerationOutcome(ok=False, reason=FailureReason.ALREADY_AFFLICTED, characters=[character])

        infected = stage_engine.with_stage(character, 1, now=now, deadline_delay=self.settings.death_deadline_delay)
        infected = replace(
            infected,
            blighted_at=now,
            blight_paused=False,
            pause_reason=None,
            paused_by=None,
            paused_at=None,
            died_at=None,
        )
        history = BlightEvent(
            character_id=int(character.id or 0),
            character_name=character.name,
            event_type=BlightEventType.INFECTED,
            created_at=now,
            notes=source,
            previous_stage=character.blight_stage,
            new_stage=1,
            actor_user_id=actor_user_id,
        )
        try:
            saved = self.persist(infected, expected_version=character.version, history=[history])
        except StaleCharacterError:
            return ModerationOutcome(ok=False, reason=FailureReason.CONFLICT)
        self.event_bus.publish(
            CharacterInfected(
                character_id=int(saved.id or 0),
                character_name=saved.name,
                user_id=saved.user_id,
                source=source,
            )
        )
        logger.info("Character infected with blight", extra={"character_id": saved.id, "source": source})
        return ModerationOutcome(ok=True, characters=[saved])

    def pause(self, character_id: int, *, reason: str, actor_user_id: str, now: datetime | None = None) -> ModerationOutcome:
        return self._set_paused(character_id, True, reason=reason, actor_user_id=actor_user_id, now=now)

    def unpause(self, character_id: int, *, actor_user_id: str, now: datetime | None = None) -> ModerationOutcome:
        return self._set_paused(character_id, False, reason="", actor_user_id=actor_user_id, now=now)

    def _set_paused(
        self,
        character_id: int,
        paused: bool,
        *,
        reason: str,
        actor_user_id: str,
        now: datetime | None,
    ) -> ModerationOutcome:
        now = resolve_now(now, self.clock)
        try:
            with self.leases.character(character_id, self.settings.character_lease_ttl):
                return self._set_paused_locked(character_id, paused, reason=reason, actor_user_id=actor_user_id, now=now)
        except CharacterBusyError:
            return ModerationOutcome(ok=False, reason=FailureReason.BUSY)

    def _set_paused_locked(
        self,
        character_id: int,
        paused: bool,
        *,
        reason: str,
        actor_user_id: str,
        now: datetime,
    ) -> ModerationOutcome:
        character = self.character_repo.get(character_id)
        if character is None:
            return ModerationOutcome(ok=False, reason=FailureReason.CHARACTER_NOT_FOUND)
        if paused and not character.blighted:
            return ModerationOutcome(ok=False, reason=FailureReason.NOT_AFFLICTED, characters=[character])
        if paused and character.blight_paused:
            return ModerationOutcome(ok=False, reason=FailureReason.PAUSED, characters=[character])
        if not paused and not character.blight_paused:
            return ModerationOutcome(ok=False, reason=FailureReason.NOT_PAUSED, characters=[character])

        if paused:
            updated = replace(
                character,
                blight_paused=True,
                pause_reason=reason or "No reason given",
                paused_by=actor_user_id,
                paused_at=now,
            )
        else:
            updated = replace(character, blight_paused=False, pause_reason=None, paused_by=None, paused_at=None)
        history = BlightEvent(
            character_id=int(character.id or 0),
            character_name=character.name,
            event_type=BlightEventType.PAUSED if paused else BlightEventType.UNPAUSED,
            created_at=now,
            notes=reason,
            previous_stage=character.blight_stage,
            new_stage=character.blight_stage,
            actor_user_id=actor_user_id,
        )
        try:
            saved = self.persist(updated, expected_version=character.version, history=[history])
        except StaleCharacterError:
            return ModerationOutcome(ok=False, reason=FailureReason.CONFLICT)
        self.event_bus.publish(
            BlightPauseChanged(
                character_id=int(saved.id or 0),
                character_name=saved.name,
                user_id=saved.user_id,
                paused=paused,
                reason=reason,
                actor_user_id=actor_user_id,
            )
        )
        return ModerationOutcome(ok=True, characters=[saved])

    def override_stage(
        self,
        scope: str | OverrideScope,
        target: str | int | None,
        level: int,
        *,
        reason: str,
        actor_user_id: str,
        now: datetime | None = None,
    ) -> ModerationOutcome:
        now = resolve_now(now, self.clock)
        try:
            chosen_scope = OverrideScope(str(getattr(scope, "value", scope) or "").strip().lower())
        except ValueError:
            return ModerationOutcome(ok=False, reason=FailureReason.INVALID_INPUT)
        try:
            new_stage = int(level)
        except (TypeError, ValueError):
            return ModerationOutcome(ok=False, reason=FailureReason.INVALID_STAGE)
        if not stage_engine.MIN_STAGE <= new_stage <= stage_engine.MAX_STAGE:
            return ModerationOutcome(ok=False, reason=FailureReason.INVALID_STAGE)

        targets = self._resolve_targets(chosen_scope, target)
        if targets is None:
            return ModerationOutcome(ok=False, reason=FailureReason.CHARACTER_NOT_FOUND)

        outcome = ModerationOutcome(ok=True)
        for character in targets:
            try:
                with self.leases.character(int(character.id or 0), self.settings.character_lease_ttl):
                    current = self.character_repo.get(int(character.id or 0))
                    if current is None:
                        outcome.failures.append(character.name)
                        continue
                    saved, cancelled = self._override_one(current, new_stage, reason=reason, actor_user_id=actor_user_id, now=now)
            except CharacterBusyError:
                outcome.failures.append(character.name)
                logger.warning("Override skipped a character that is busy", extra={"character_id": character.id})
                continue
            except StaleCharacterError:
                outcome.failures.append(character.name)
                logger.warning("Override skipped a character changed concurrently", extra={"character_id": character.id})
                continue
            outcome.characters.append(saved)
            outcome.cancelled_submissions.extend(cancelled)
        logger.info(
            "Blight stage override applied",
            extra={
                "scope": chosen_scope.value,
                "target": target,
                "level": new_stage,
                "affected": len(outcome.characters),
                "failures": len(outcome.failures),
            },
        )
        return outcome

    def _resolve_targets(self, scope: OverrideScope, target: str | int | None) -> list[Character] | None:
        if scope == OverrideScope.ALL:
            return self.character_repo.list_blighted()
        if scope == OverrideScope.VILLAGE:
            return [row for row in self.character_repo.list_by_village(str(target or "")) if row.blighted]
        character = None
        if isinstance(target, int) or str(target or "").strip().isdigit():
            character = self.character_repo.get(int(str(target).strip()))
        if character is None:
            character = self.character_repo.get_by_name(str(target or ""))
        return [character] if character is not None else None

    def _override_one(
        self,
        character: Character,
        new_stage: int,
        *,
        reason: str,
        actor_user_id: str,
        now: datetime,
    ) -> tuple[Character, list[str]]:
        cancelled: list[str] = []
        if new_stage == stage_engine.MIN_STAGE:
            cancelled = self.healing.cancel_pending_for_character(
                character,
                reason="moderator-override",
                actor_user_id=actor_user_id,
                now=now,
            )
        updated = stage_engine.with_stage(
            character,
            new_stage,
            now=now,
            deadline_delay=self.settings.death_deadline_delay,
            rearm_deadline=new_stage == stage_engine.MAX_STAGE,
        )
        updated = replace(updated, blight_paused=False, pause_reason=None, paused_by=None, paused_at=None)
        history = BlightEvent(
            character_id=int(character.id or 0),
            character_name=character.name,
            event_type=BlightEventType.OVERRIDE,
            created_at=now,
            notes=reason,
            previous_stage=character.blight_stage,
            new_stage=new_stage,
            actor_user_id=actor_user_id,
        )
        saved = self.persist(updated, expected_version=character.version, history=[history])
        if new_stage != character.blight_stage:
            self.event_bus.publish(
                StageAdvanced(
                    character_id=int(saved.id or 0),
                    character_name=saved.name,
                    user_id=saved.user_id,
                    previous_stage=character.blight_stage,
                    new_stage=new_stage,
                    death_deadline=saved.death_deadline,
                    reason="moderator-override",
                )
            )
        return saved, cancelled
