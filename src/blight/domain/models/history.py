from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum


class BlightEventType(str, Enum):
    INFECTED = "Infected"
    ROLL = "Roll"
    MISSED_ROLL = "Missed Roll Progression"
    HEALING_REQUESTED = "Healing Request"
    HEALING_COMPLETED = "Healing Completed"
    REQUEST_CANCELLED = "Submission Cancelled"
    REQUEST_EXPIRED = "Submission Expired"
    DEATH = "Death"
    PAUSED = "Paused"
    UNPAUSED = "Unpaused"
    OVERRIDE = "Moderator Override"


@dataclass(frozen=True)
class BlightEvent:
    character_id: int
    character_name: str
    event_type: BlightEventType
    created_at: datetime
    notes: str = ""
    previous_stage: int | None = None
    new_stage: int | None = None
    roll_value: int | None = None
    submission_id: str | None = None
    actor_user_id: str | None = None
    id: int | None = None
