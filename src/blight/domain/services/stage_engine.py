"""Pure blight stage rules: roll windows, draw bands, effects and healer permissions.

Nothing in this module touches storage or the wall clock; every function
takes ``now`` (timezone-aware) and any random draw as arguments.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime, timedelta, timezone, tzinfo
from enum import Enum
from typing import Mapping

from blight.domain.models.character import BlightEffects, Character
from blight.domain.models.healer import HealerCategory


MIN_STAGE = 0
MAX_STAGE = 5
ROLL_SIDES = 1000

# Cumulative draw bands: a draw at or below the threshold reaches the stage.
STAGE_BAND_THRESHOLDS: Mapping[int, int] = {
    2: 25,
    3: 40,
    4: 67,
    5: 100,
}

STAGE_EFFECTS: Mapping[int, BlightEffects] = {
    0: BlightEffects(roll_multiplier=1.0, no_monsters=False, no_gathering=False),
    1: BlightEffects(roll_multiplier=1.0, no_monsters=False, no_gathering=False),
    2: BlightEffects(roll_multiplier=1.5, no_monsters=False, no_gathering=False),
    3: BlightEffects(roll_multiplier=1.0, no_monsters=True, no_gathering=False),
    4: BlightEffects(roll_multiplier=1.0, no_monsters=True, no_gathering=True),
    5: BlightEffects(roll_multiplier=1.0, no_monsters=True, no_gathering=True),
}

STAGE_PERMISSIONS: Mapping[int, frozenset[HealerCategory]] = {
    1: frozenset({HealerCategory.SAGE, HealerCategory.ORACLE, HealerCategory.DRAGON}),
    2: frozenset({HealerCategory.SAGE, HealerCategory.ORACLE, HealerCategory.DRAGON}),
    3: frozenset({HealerCategory.ORACLE, HealerCategory.DRAGON}),
    4: frozenset({HealerCategory.DRAGON}),
    5: frozenset({HealerCategory.DRAGON}),
}

# Ordered tightest first; the first tier whose window contains the remaining time wins.
DEATH_WARNING_TIERS: tuple[tuple[str, timedelta], ...] = (
    ("final_6_hour", timedelta(hours=6)),
    ("24_hour", timedelta(hours=24)),
    ("3_day", timedelta(days=3)),
    ("5_day", timedelta(days=5)),
)

REQUEST_WARNING_TIERS: tuple[tuple[str, timedelta], ...] = (
    ("final_6_hour", timedelta(hours=6)),
    ("12_hour", timedelta(hours=12)),
    ("24_hour", timedelta(hours=24)),
)


class BandMode(str, Enum):
    STEP = "step"
    ABSOLUTE = "absolute"

    @classmethod
    def normalize(cls, value: object) -> "BandMode":
        raw = str(getattr(value, "value", value) or "").strip().lower()
        for member in cls:
            if member.value == raw:
                return member
        return cls.STEP


@dataclass(frozen=True)
class RollWindow:
    start: datetime
    end: datetime

    def contains(self, moment: datetime | None) -> bool:
        if moment is None:
            return False
        return self.start <= moment < self.end


@dataclass(frozen=True)
class StageTransition:
    previous_stage: int
    new_stage: int
    arm_death_deadline: bool
    effects: BlightEffects
    narrative_key: str

    @property
    def changed(self) -> bool:
        return self.previous_stage != self.new_stage


def reference_zone(utc_offset_hours: float) -> tzinfo:
    return timezone(timedelta(hours=float(utc_offset_hours)))


def roll_window(now: datetime, *, zone: tzinfo, boundary_hour: int = 20) -> RollWindow:
    if now.tzinfo is None:
        raise ValueError("roll_window requires a timezone-aware datetime")
    local_now = now.astimezone(zone)
    start = local_now.replace(hour=int(boundary_hour), minute=0, second=0, microsecond=0)
    if start > local_now:
        start -= timedelta(days=1)
    return RollWindow(start=start, end=start + timedelta(days=1))


def has_rolled_in_window(last_roll_date: datetime | None, now: datetime, *, zone: tzinfo, boundary_hour: int = 20) -> bool:
    return roll_window(now, zone=zone, boundary_hour=boundary_hour).contains(last_roll_date)


def effects_for_stage(stage: int) -> BlightEffects:
    return STAGE_EFFECTS.get(int(stage), STAGE_EFFECTS[0])


def permitted_categories(stage: int) -> frozenset[HealerCategory]:
    return STAGE_PERMISSIONS.get(int(stage), frozenset())


def is_healer_permitted(category: HealerCategory, stage: int) -> bool:
    return category in permitted_categories(stage)


def absolute_target_stage(draw: int) -> int | None:
    for stage in sorted(STAGE_BAND_THRESHOLDS):
        if int(draw) <= STAGE_BAND_THRESHOLDS[stage]:
            return stage
    return None


def _narrative_key(previous_stage: int, new_stage: int) -> str:
    if new_stage == previous_stage:
        return f"stage_{new_stage}_unchanged"
    if new_stage < previous_stage:
        return f"stage_{new_stage}_receded"
    return f"stage_{new_stage}_advanced"


def _transition(previous_stage: int, new_stage: int) -> StageTransition:
    return StageTransition(
        previous_stage=previous_stage,
        new_stage=new_stage,
        arm_death_deadline=new_stage == MAX_STAGE and previous_stage != MAX_STAGE,
        effects=effects_for_stage(new_stage),
        narrative_key=_narrative_key(previous_stage, new_stage),
    )


def resolve_roll(current_stage: int, draw: int, *, mode: BandMode = BandMode.STEP) -> StageTransition:
    if not 1 <= int(draw) <= ROLL_SIDES:
        raise ValueError(f"Draw {draw} outside 1..{ROLL_SIDES}")
    current = int(current_stage)
    if mode == BandMode.ABSOLUTE:
        target = absolute_target_stage(draw)
        return _transition(current, current if target is None else target)

    next_stage = current + 1
    threshold = STAGE_BAND_THRESHOLDS.get(next_stage)
    if threshold is not None and int(draw) <= threshold:
        return _transition(current, next_stage)
    return _transition(current, current)


def resolve_missed_roll(current_stage: int) -> StageTransition:
    current = int(current_stage)
    return _transition(current, min(current + 1, MAX_STAGE))


def death_warning_tier(deadline: datetime, now: datetime) -> str | None:
    remaining = deadline - now
    if remaining <= timedelta(0):
        return None
    for tier, window in DEATH_WARNING_TIERS:
        if remaining <= window:
            return tier
    return None


def request_warning_tier(expires_at: datetime, now: datetime) -> str | None:
    remaining = expires_at - now
    if remaining <= timedelta(0):
        return None
    for tier, window in REQUEST_WARNING_TIERS:
        if remaining <= window:
            return tier
    return None


def with_stage(
    character: Character,
    new_stage: int,
    *,
    now: datetime,
    deadline_delay: timedelta,
    rearm_deadline: bool = False,
) -> Character:
    """Return a copy of ``character`` moved to ``new_stage`` with derived fields recomputed."""
    stage = min(max(int(new_stage), MIN_STAGE), MAX_STAGE)
    deadline = character.death_deadline
    if stage == MAX_STAGE:
        if rearm_deadline or character.blight_stage != MAX_STAGE or deadline is None:
            deadline = now + deadline_delay
    else:
        deadline = None

    if stage == MIN_STAGE:
        blighted_at = None
    elif character.blight_stage == MIN_STAGE or character.blighted_at is None:
        blighted_at = now
    else:
        blighted_at = character.blighted_at

    return replace(
        character,
        blight_stage=stage,
        blighted=stage > MIN_STAGE,
        death_deadline=deadline,
        blighted_at=blighted_at,
        blight_effects=effects_for_stage(stage),
    )
