from dataclasses import dataclass
from datetime import datetime


@dataclass
class CharacterInfected:
    character_id: int
    character_name: str
    user_id: str
    source: str


@dataclass
class BlightRolled:
    character_id: int
    character_name: str
    user_id: str
    roll_value: int
    previous_stage: int
    new_stage: int
    death_deadline: datetime | None


@dataclass
class StageAdvanced:
    character_id: int
    character_name: str
    user_id: str
    previous_stage: int
    new_stage: int
    death_deadline: datetime | None
    reason: str


@dataclass
class DeathWarningIssued:
    character_id: int
    character_name: str
    user_id: str
    death_deadline: datetime
    tier: str


@dataclass
class CharacterDied:
    character_id: int
    character_name: str
    user_id: str
    village: str


@dataclass
class HealingRequested:
    submission_id: str
    character_id: int
    character_name: str
    user_id: str
    healer_name: str
    stage: int
    task_type: str
    task_description: str
    expires_at: datetime


@dataclass
class HealingCompleted:
    character_id: int
    character_name: str
    user_id: str
    healer_name: str
    method: str
    previous_stage: int
    submission_id: str | None


@dataclass
class RequestExpiring:
    submission_id: str
    character_name: str
    user_id: str
    healer_name: str
    expires_at: datetime
    tier: str


@dataclass
class RequestExpired:
    submission_id: str
    character_name: str
    user_id: str
    healer_name: str
    task_type: str


@dataclass
class RequestCancelled:
    submission_id: str
    character_name: str
    user_id: str
    healer_name: str
    reason: str


@dataclass
class BlightPauseChanged:
    character_id: int
    character_name: str
    user_id: str
    paused: bool
    reason: str
    actor_user_id: str


@dataclass
class RollCallPosted:
    channel_id: str
    role_id: str
    posted_at: datetime
