from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional


@dataclass(frozen=True)
class BlightEffects:
    roll_multiplier: float = 1.0
    no_monsters: bool = False
    no_gathering: bool = False

    def as_dict(self) -> dict[str, object]:
        return {
            "roll_multiplier": float(self.roll_multiplier),
            "no_monsters": bool(self.no_monsters),
            "no_gathering": bool(self.no_gathering),
        }


@dataclass
class Character:
    id: Optional[int]
    name: str
    user_id: str = ""
    home_village: str = ""
    current_village: str = ""
    blighted: bool = False
    blight_stage: int = 0
    blighted_at: Optional[datetime] = None
    last_roll_date: Optional[datetime] = None
    death_deadline: Optional[datetime] = None
    blight_paused: bool = False
    pause_reason: Optional[str] = None
    paused_by: Optional[str] = None
    paused_at: Optional[datetime] = None
    blight_effects: BlightEffects = field(default_factory=BlightEffects)
    died_at: Optional[datetime] = None
    version: int = 0

    def __post_init__(self) -> None:
        try:
            stage = int(self.blight_stage or 0)
        except (TypeError, ValueError):
            stage = 0
        self.blight_stage = min(max(stage, 0), 5)
        if not self.current_village:
            self.current_village = self.home_village
        if isinstance(self.blight_effects, dict):
            self.blight_effects = BlightEffects(
                roll_multiplier=float(self.blight_effects.get("roll_multiplier", 1.0)),
                no_monsters=bool(self.blight_effects.get("no_monsters", False)),
                no_gathering=bool(self.blight_effects.get("no_gathering", False)),
            )

    @property
    def is_terminal(self) -> bool:
        return self.blight_stage == 5

    @property
    def is_alive(self) -> bool:
        return self.died_at is None

    def invariant_problems(self) -> list[str]:
        """Describe broken blight invariants; an empty list means the record is consistent."""
        problems: list[str] = []
        if self.blighted != (self.blight_stage > 0):
            problems.append(f"blighted={self.blighted} but blight_stage={self.blight_stage}")
        if (self.death_deadline is not None) != (self.blight_stage == 5):
            problems.append(
                f"death_deadline={'set' if self.death_deadline else 'unset'} at blight_stage={self.blight_stage}"
            )
        return problems
