from __future__ import annotations

import logging
from datetime import datetime, timedelta

from blight.application.dtos import ExpiryReport
from blight.application.services.clock import Clock, resolve_now, utc_now
from blight.application.services.event_bus import EventBus
from blight.domain.errors import DuplicateRecordError
from blight.domain.events import RequestExpired, RequestExpiring
from blight.domain.models.healing import HealingRequest, RequestStatus
from blight.domain.models.history import BlightEvent, BlightEventType
from blight.domain.models.record import EXPIRY_WARNING_RECORD_TYPE, REQUEST_RECORD_TYPE
from blight.domain.repositories import BlightHistoryRepository, RecordStore
from blight.domain.services import stage_engine


logger = logging.getLogger(__name__)


class RequestExpiryService:
    def __init__(
        self,
        record_store: RecordStore,
        history_repo: BlightHistoryRepository,
        event_bus: EventBus,
        *,
        clock: Clock = utc_now,
    ) -> None:
        self.record_store = record_store
        self.history_repo = history_repo
        self.event_bus = event_bus
        self.clock = clock

    def _pending(self) -> list[HealingRequest]:
        requests = []
        for record in self.record_store.list_by_type(REQUEST_RECORD_TYPE):
            request = HealingRequest.from_record_data(record.data)
            if request.status == RequestStatus.PENDING:
                requests.append(request)
        return requests

    def warn_expiring(self, now: datetime | None = None) -> ExpiryReport:
        now = resolve_now(now, self.clock)
        report = ExpiryReport()
        for request in self._pending():
            tier = stage_engine.request_warning_tier(request.expires_at, now)
            if tier is None:
                continue
            marker = f"{request.submission_id}:{tier}"
            try:
                self.record_store.put(
                    EXPIRY_WARNING_RECORD_TYPE,
                    marker,
                    {"submission_id": request.submission_id, "tier": tier},
                    (request.expires_at - now) + timedelta(days=1),
                    now=now,
                    unique_key=marker,
                )
            except DuplicateRecordError:
                continue
            report.warned.append(marker)
            self.event_bus.publish(
                RequestExpiring(
                    submission_id=request.submission_id,
                    character_name=request.character_name,
                    user_id=request.owner_user_id,
                    healer_name=request.healer_name,
                    expires_at=request.expires_at,
                    tier=tier,
                )
            )
        if report.warned:
            logger.info("Expiring healing requests warned", extra={"count": len(report.warned)})
        return report

    def cleanup_expired(self, now: datetime | None = None) -> ExpiryReport:
        now = resolve_now(now, self.clock)
        report = ExpiryReport()
        for request in self._pending():
            if not request.is_expired(now):
                continue
            try:
                if not self.record_store.delete(REQUEST_RECORD_TYPE, request.submission_id):
                    continue
                self.history_repo.append(
                    BlightEvent(
                        character_id=request.character_id,
                        character_name=request.character_name,
                        event_type=BlightEventType.REQUEST_EXPIRED,
                        created_at=now,
                        notes=f"{request.healer_name}: {request.task_type.value}",
                        submission_id=request.submission_id,
                    )
                )
            except Exception:
                report.failures += 1
                logger.exception("Expired request cleanup failed", extra={"submission_id": request.submission_id})
                continue
            report.expired.append(request.submission_id)
            self.event_bus.publish(
                RequestExpired(
                    submission_id=request.submission_id,
                    character_name=request.character_name,
                    user_id=request.owner_user_id,
                    healer_name=request.healer_name,
                    task_type=request.task_type.value,
                )
            )

        report.purged_records = len(self.record_store.purge_expired(now))
        logger.info(
            "Expired record cleanup finished",
            extra={"expired_requests": len(report.expired), "purged_records": report.purged_records},
        )
        return report
