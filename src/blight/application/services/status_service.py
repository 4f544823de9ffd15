from __future__ import annotations

from datetime import datetime

from blight.application.dtos import HistoryView, RosterEntry, StatusView
from blight.application.services.clock import Clock, ensure_aware, resolve_now, utc_now
from blight.application.settings import BlightSettings
from blight.domain.models.healing import HealingRequest, RequestStatus, pending_request_unique_key
from blight.domain.models.record import REQUEST_RECORD_TYPE
from blight.domain.repositories import BlightHistoryRepository, CharacterRepository, RecordStore
from blight.domain.services import stage_engine


class StatusService:
    """Read-only views over characters, their blight history and the pending-request roster."""

    def __init__(
        self,
        character_repo: CharacterRepository,
        record_store: RecordStore,
        history_repo: BlightHistoryRepository,
        settings: BlightSettings,
        *,
        clock: Clock = utc_now,
    ) -> None:
        self.character_repo = character_repo
        self.record_store = record_store
        self.history_repo = history_repo
        self.settings = settings
        self.clock = clock

    def status(self, character_id: int, now: datetime | None = None) -> StatusView | None:
        now = resolve_now(now, self.clock)
        character = self.character_repo.get(character_id)
        if character is None:
            return None
        window = stage_engine.roll_window(now, zone=self.settings.zone, boundary_hour=self.settings.roll_hour)
        last_roll = ensure_aware(character.last_roll_date)
        can_roll = (
            character.blighted
            and not character.blight_paused
            and not character.is_terminal
            and not window.contains(last_roll)
        )
        pending = None
        record = self.record_store.find_by_unique_key(REQUEST_RECORD_TYPE, pending_request_unique_key(character.name))
        if record is not None and not record.is_expired(now):
            pending = HealingRequest.from_record_data(record.data)
        return StatusView(
            character_id=int(character.id or 0),
            name=character.name,
            blighted=character.blighted,
            stage=character.blight_stage,
            effects=character.blight_effects,
            paused=character.blight_paused,
            pause_reason=character.pause_reason,
            paused_by=character.paused_by,
            last_roll_date=last_roll,
            death_deadline=ensure_aware(character.death_deadline),
            next_window_start=window.end,
            can_roll=can_roll,
            pending_request=pending,
            died_at=ensure_aware(character.died_at),
        )

    def history(self, character_id: int, limit: int = 10) -> HistoryView | None:
        character = self.character_repo.get(character_id)
        if character is None:
            return None
        events = self.history_repo.list_for_character(int(character.id or 0), limit=max(1, int(limit)))
        return HistoryView(character_id=int(character.id or 0), name=character.name, events=events)

    def roster(self, now: datetime | None = None, *, show_expired: bool = False) -> list[RosterEntry]:
        now = resolve_now(now, self.clock)
        entries: list[RosterEntry] = []
        for record in self.record_store.list_by_type(REQUEST_RECORD_TYPE):
            request = HealingRequest.from_record_data(record.data)
            if request.status != RequestStatus.PENDING:
                continue
            expired = request.is_expired(now)
            if expired and not show_expired:
                continue
            remaining = (request.expires_at - now).total_seconds() / 3600.0
            entries.append(
                RosterEntry(
                    submission_id=request.submission_id,
                    character_name=request.character_name,
                    healer_name=request.healer_name,
                    task_type=request.task_type.value,
                    stage_at_creation=request.stage_at_creation,
                    expires_at=request.expires_at,
                    hours_remaining=round(max(remaining, 0.0), 1),
                    expired=expired,
                )
            )
        entries.sort(key=lambda row: row.expires_at)
        return entries
