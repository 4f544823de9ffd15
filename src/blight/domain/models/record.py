from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any


REQUEST_RECORD_TYPE = "blight_request"
DEATH_WARNING_RECORD_TYPE = "death_warning"
EXPIRY_WARNING_RECORD_TYPE = "healing_warning"
JOB_LEASE_RECORD_TYPE = "job_lease"
CHARACTER_LEASE_RECORD_TYPE = "character_lease"


@dataclass(frozen=True)
class ExpiringRecord:
    record_type: str
    key: str
    data: dict[str, Any] = field(default_factory=dict)
    created_at: datetime | None = None
    expires_at: datetime | None = None
    unique_key: str | None = None

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at is not None and now >= self.expires_at
