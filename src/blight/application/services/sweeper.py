from __future__ import annotations

import logging
import threading
from dataclasses import replace
from datetime import datetime, timedelta

from blight.application.dtos import SweepReport
from blight.application.services.clock import Clock, ensure_aware, resolve_now, utc_now
from blight.application.services.event_bus import EventBus
from blight.application.services.leases import LeaseManager
from blight.application.settings import BlightSettings
from blight.domain.errors import (
    CharacterBusyError,
    DuplicateRecordError,
    StaleCharacterError,
    report_invariant_violation,
)
from blight.domain.events import CharacterDied, DeathWarningIssued, StageAdvanced
from blight.domain.gateways import InventoryGateway
from blight.domain.models.character import Character
from blight.domain.models.healing import HealingRequest
from blight.domain.models.history import BlightEvent, BlightEventType
from blight.domain.models.record import DEATH_WARNING_RECORD_TYPE, REQUEST_RECORD_TYPE
from blight.domain.repositories import AtomicPersistor, CharacterRepository, RecordStore
from blight.domain.services import stage_engine


logger = logging.getLogger(__name__)

SWEEP_JOB_NAME = "missed-roll-sweep"


class MissedRollSweeper:
    """Periodic pass over blighted characters: deaths, death warnings and forced advances.

    Each character is handled independently; a failure is logged and counted
    without stopping the sweep. Overlapping sweeps are refused, first by an
    in-process lock and then by a job lease shared through the record store.
    """

    def __init__(
        self,
        character_repo: CharacterRepository,
        record_store: RecordStore,
        inventory: InventoryGateway,
        persist: AtomicPersistor,
        leases: LeaseManager,
        event_bus: EventBus,
        settings: BlightSettings,
        *,
        clock: Clock = utc_now,
    ) -> None:
        self.character_repo = character_repo
        self.record_store = record_store
        self.inventory = inventory
        self.persist = persist
        self.leases = leases
        self.event_bus = event_bus
        self.settings = settings
        self.clock = clock
        self._lock = threading.Lock()

    def run(self, now: datetime | None = None) -> SweepReport:
        now = resolve_now(now, self.clock)
        if not self._lock.acquire(blocking=False):
            logger.info("Missed-roll sweep already running in this process")
            return SweepReport(skipped=True)
        try:
            with self.leases.job(SWEEP_JOB_NAME, self.settings.sweep_lease_ttl):
                return self._sweep(now)
        except CharacterBusyError:
            logger.info("Missed-roll sweep lease held elsewhere; skipping tick")
            return SweepReport(skipped=True)
        finally:
            self._lock.release()

    def _sweep(self, now: datetime) -> SweepReport:
        report = SweepReport()
        for character in self.character_repo.list_blighted():
            if character.blight_paused:
                continue
            report.examined += 1
            try:
                self._process(character, now, report)
            except Exception:
                report.failures += 1
                logger.exception(
                    "Missed-roll sweep failed for character",
                    extra={"character_id": character.id, "character_name": character.name},
                )
        logger.info(
            "Missed-roll sweep finished",
            extra={
                "examined": report.examined,
                "advanced": len(report.advanced),
                "deaths": len(report.deaths),
                "warnings": len(report.warnings),
                "violations": report.violations,
                "failures": report.failures,
            },
        )
        return report

    def _process(self, character: Character, now: datetime, report: SweepReport) -> None:
        if character.blight_stage == stage_engine.MAX_STAGE:
            deadline = ensure_aware(character.death_deadline)
            if deadline is None:
                report.violations += 1
                report_invariant_violation(f"character {character.id}", character.invariant_problems())
                return
            if now > deadline:
                if self.kill(character.id, now=now):
                    report.deaths.append(character.name)
                return
            tier = stage_engine.death_warning_tier(deadline, now)
            if tier is not None and self._mark_warning(character, deadline, tier, now):
                report.warnings.append(f"{character.name}:{tier}")
                self.event_bus.publish(
                    DeathWarningIssued(
                        character_id=int(character.id or 0),
                        character_name=character.name,
                        user_id=character.user_id,
                        death_deadline=deadline,
                        tier=tier,
                    )
                )
            return

        if not self._missed_roll(character, now):
            return
        try:
            advanced = self._advance(character, now)
        except StaleCharacterError:
            logger.info("Character changed during sweep; advance deferred", extra={"character_id": character.id})
            return
        report.advanced.append(advanced.name)

    def _missed_roll(self, character: Character, now: datetime) -> bool:
        blighted_at = ensure_aware(character.blighted_at)
        if blighted_at is not None and now - blighted_at < self.settings.infection_grace:
            return False
        reference = ensure_aware(character.last_roll_date) or blighted_at
        if reference is None:
            return True
        return now - reference > self.settings.missed_roll_after

    def _advance(self, character: Character, now: datetime) -> Character:
        transition = stage_engine.resolve_missed_roll(character.blight_stage)
        updated = stage_engine.with_stage(
            character,
            transition.new_stage,
            now=now,
            deadline_delay=self.settings.death_deadline_delay,
        )
        updated = replace(updated, last_roll_date=now)
        history = BlightEvent(
            character_id=int(character.id or 0),
            character_name=character.name,
            event_type=BlightEventType.MISSED_ROLL,
            created_at=now,
            notes=transition.narrative_key,
            previous_stage=transition.previous_stage,
            new_stage=transition.new_stage,
        )
        saved = self.persist(updated, expected_version=character.version, history=[history])
        logger.info(
            "Blight advanced after a missed roll",
            extra={"character_id": saved.id, "previous_stage": transition.previous_stage, "new_stage": transition.new_stage},
        )
        self.event_bus.publish(
            StageAdvanced(
                character_id=int(saved.id or 0),
                character_name=saved.name,
                user_id=saved.user_id,
                previous_stage=transition.previous_stage,
                new_stage=transition.new_stage,
                death_deadline=saved.death_deadline,
                reason="missed-roll",
            )
        )
        return saved

    def _mark_warning(self, character: Character, deadline: datetime, tier: str, now: datetime) -> bool:
        marker = f"{int(character.id or 0)}:{deadline.isoformat()}:{tier}"
        try:
            self.record_store.put(
                DEATH_WARNING_RECORD_TYPE,
                marker,
                {"character_id": character.id, "tier": tier, "deadline": deadline.isoformat()},
                (deadline - now) + timedelta(days=1),
                now=now,
                unique_key=marker,
            )
        except DuplicateRecordError:
            return False
        return True

    def kill(self, character_id: int | None, *, now: datetime | None = None) -> bool:
        """Apply Death if the character is still at stage 5 past its deadline.

        Returns False when the character is busy or was changed in the meantime.
        """
        now = resolve_now(now, self.clock)
        try:
            with self.leases.character(int(character_id or 0), self.settings.character_lease_ttl):
                character = self.character_repo.get(int(character_id or 0))
                if character is None or character.blight_stage != stage_engine.MAX_STAGE:
                    return False
                deadline = ensure_aware(character.death_deadline)
                if deadline is None or now <= deadline:
                    return False

                pending = self._pending_request_keys(character)
                wiped = self.inventory.wipe_all(int(character.id or 0))
                dead = replace(
                    stage_engine.with_stage(
                        character,
                        0,
                        now=now,
                        deadline_delay=self.settings.death_deadline_delay,
                    ),
                    died_at=now,
                    blight_paused=False,
                )
                history = BlightEvent(
                    character_id=int(character.id or 0),
                    character_name=character.name,
                    event_type=BlightEventType.DEATH,
                    created_at=now,
                    notes=f"inventory entries wiped: {wiped}",
                    previous_stage=character.blight_stage,
                    new_stage=0,
                )
                saved = self.persist(
                    dead,
                    expected_version=character.version,
                    delete_records=[(REQUEST_RECORD_TYPE, key) for key in pending],
                    history=[history],
                )
        except CharacterBusyError:
            logger.info("Death deferred; character is busy", extra={"character_id": character_id})
            return False

        logger.warning("Character died of blight", extra={"character_id": saved.id, "character_name": saved.name})
        self.event_bus.publish(
            CharacterDied(
                character_id=int(saved.id or 0),
                character_name=saved.name,
                user_id=saved.user_id,
                village=saved.current_village,
            )
        )
        return True

    def _pending_request_keys(self, character: Character) -> list[str]:
        keys = []
        for record in self.record_store.list_by_type(REQUEST_RECORD_TYPE):
            request = HealingRequest.from_record_data(record.data)
            if request.character_id == character.id or request.character_name.lower() == character.name.lower():
                keys.append(record.key)
        return keys
