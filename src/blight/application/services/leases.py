from __future__ import annotations

import logging
import uuid
from contextlib import contextmanager
from datetime import timedelta
from typing import Iterator

from blight.application.services.clock import Clock, utc_now
from blight.domain.errors import CharacterBusyError, DuplicateRecordError
from blight.domain.models.record import CHARACTER_LEASE_RECORD_TYPE, JOB_LEASE_RECORD_TYPE
from blight.domain.repositories import RecordStore


logger = logging.getLogger(__name__)


class LeaseManager:
    """Short-lived exclusive holds backed by conditional inserts in the record store.

    A lease whose holder crashed simply expires; the next conditional insert
    purges it and succeeds.
    """

    def __init__(self, record_store: RecordStore, *, clock: Clock = utc_now) -> None:
        self._records = record_store
        self._clock = clock
        self._owner = uuid.uuid4().hex

    @contextmanager
    def hold(self, record_type: str, key: str, ttl: timedelta) -> Iterator[str]:
        token = uuid.uuid4().hex
        now = self._clock()
        try:
            self._records.put(
                record_type,
                token,
                {"lease": key, "owner": self._owner},
                ttl,
                now=now,
                unique_key=key,
            )
        except DuplicateRecordError as exc:
            raise CharacterBusyError(f"Lease {key!r} is held") from exc
        try:
            yield token
        finally:
            if not self._records.delete(record_type, token):
                logger.warning("Lease vanished before release", extra={"lease": key, "record_type": record_type})

    def character(self, character_id: int, ttl: timedelta):
        return self.hold(CHARACTER_LEASE_RECORD_TYPE, f"character:{int(character_id)}", ttl)

    def job(self, job_name: str, ttl: timedelta):
        return self.hold(JOB_LEASE_RECORD_TYPE, f"job:{job_name}", ttl)
