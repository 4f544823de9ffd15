from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import List

from blight.domain.models.character import BlightEffects, Character
from blight.domain.models.healing import HealingRequest, HealingRequirement
from blight.domain.models.history import BlightEvent


class FailureReason(str, Enum):
    CHARACTER_NOT_FOUND = "character-not-found"
    NOT_OWNER = "not-owner"
    NOT_AFFLICTED = "not-afflicted"
    ALREADY_AFFLICTED = "already-afflicted"
    PAUSED = "paused"
    NOT_PAUSED = "not-paused"
    DUPLICATE_PENDING = "duplicate-pending"
    HEALER_NOT_FOUND = "healer-not-found"
    VILLAGE_MISMATCH = "village-mismatch"
    STAGE_FORBIDDEN = "stage-forbidden"
    REQUEST_NOT_FOUND = "request-not-found"
    REQUEST_NOT_PENDING = "request-not-pending"
    EXPIRED = "expired"
    METHOD_MISMATCH = "method-mismatch"
    INVALID_PAYLOAD = "invalid-payload"
    ITEM_NOT_ACCEPTED = "item-not-accepted"
    INSUFFICIENT_QUANTITY = "insufficient-quantity"
    NO_BALANCE = "no-balance"
    TRACKER_NOT_CONFIGURED = "tracker-not-configured"
    ALREADY_ROLLED = "already-rolled"
    TERMINAL_STAGE = "terminal-stage"
    BUSY = "busy"
    CONFLICT = "conflict"
    DEPENDENCY_FAILED = "dependency-failed"
    INVALID_STAGE = "invalid-stage"
    INVALID_INPUT = "invalid-input"
    CHANNEL_NOT_CONFIGURED = "channel-not-configured"


@dataclass
class RollOutcome:
    ok: bool
    reason: FailureReason | None = None
    character: Character | None = None
    roll_value: int | None = None
    previous_stage: int | None = None
    new_stage: int | None = None
    death_deadline: datetime | None = None
    next_window_start: datetime | None = None

    @property
    def stage_changed(self) -> bool:
        return self.ok and self.previous_stage != self.new_stage


@dataclass
class CreateRequestOutcome:
    ok: bool
    reason: FailureReason | None = None
    request: HealingRequest | None = None
    requirement: HealingRequirement | None = None
    narration: str = ""
    replaced_submission_id: str | None = None
    existing_submission_id: str | None = None


@dataclass
class FulfillOutcome:
    ok: bool
    reason: FailureReason | None = None
    character: Character | None = None
    request: HealingRequest | None = None
    method: str = ""
    previous_stage: int | None = None
    tokens_forfeited: int = 0
    narration: str = ""
    detail: str = ""


@dataclass
class CureOutcome:
    ok: bool
    reason: FailureReason | None = None
    character: Character | None = None
    previous_stage: int | None = None
    changed: bool = False


@dataclass
class CancelOutcome:
    ok: bool
    reason: FailureReason | None = None
    request: HealingRequest | None = None


@dataclass
class SweepReport:
    skipped: bool = False
    examined: int = 0
    advanced: List[str] = field(default_factory=list)
    deaths: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    violations: int = 0
    failures: int = 0


@dataclass
class RollCallOutcome:
    ok: bool
    reason: FailureReason | None = None
    channel_id: str = ""
    message: str = ""


@dataclass
class ExpiryReport:
    warned: List[str] = field(default_factory=list)
    expired: List[str] = field(default_factory=list)
    purged_records: int = 0
    failures: int = 0


@dataclass
class ModerationOutcome:
    ok: bool
    reason: FailureReason | None = None
    characters: List[Character] = field(default_factory=list)
    cancelled_submissions: List[str] = field(default_factory=list)
    failures: List[str] = field(default_factory=list)


@dataclass
class StatusView:
    character_id: int
    name: str
    blighted: bool
    stage: int
    effects: BlightEffects
    paused: bool
    pause_reason: str | None
    paused_by: str | None
    last_roll_date: datetime | None
    death_deadline: datetime | None
    next_window_start: datetime
    can_roll: bool
    pending_request: HealingRequest | None = None
    died_at: datetime | None = None


@dataclass
class HistoryView:
    character_id: int
    name: str
    events: List[BlightEvent] = field(default_factory=list)


@dataclass
class RosterEntry:
    submission_id: str
    character_name: str
    healer_name: str
    task_type: str
    stage_at_creation: int
    expires_at: datetime
    hours_remaining: float
    expired: bool
