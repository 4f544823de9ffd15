from __future__ import annotations

from dataclasses import dataclass, field
from datetime import timedelta, tzinfo

from blight.domain.services.stage_engine import BandMode, reference_zone


@dataclass(frozen=True)
class BlightSettings:
    roll_utc_offset_hours: float = -5.0
    roll_hour: int = 20
    band_mode: BandMode = BandMode.STEP
    request_ttl_days: int = 30
    death_deadline_days: int = 7
    missed_roll_hours: int = 24
    infection_grace_hours: int = 24
    notifications_channel_id: str = ""
    reminder_role_id: str = ""
    mod_queue_channel_id: str = ""
    sweep_lease_seconds: int = 300
    character_lease_seconds: int = 60
    extra: dict[str, str] = field(default_factory=dict)

    @property
    def zone(self) -> tzinfo:
        return reference_zone(self.roll_utc_offset_hours)

    @property
    def request_ttl(self) -> timedelta:
        return timedelta(days=int(self.request_ttl_days))

    @property
    def death_deadline_delay(self) -> timedelta:
        return timedelta(days=int(self.death_deadline_days))

    @property
    def missed_roll_after(self) -> timedelta:
        return timedelta(hours=int(self.missed_roll_hours))

    @property
    def infection_grace(self) -> timedelta:
        return timedelta(hours=int(self.infection_grace_hours))

    @property
    def sweep_lease_ttl(self) -> timedelta:
        return timedelta(seconds=max(1, int(self.sweep_lease_seconds)))

    @property
    def character_lease_ttl(self) -> timedelta:
        return timedelta(seconds=max(1, int(self.character_lease_seconds)))
