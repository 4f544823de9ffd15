from __future__ import annotations

import logging
import os
import random
from dataclasses import dataclass

from blight.application.services.clock import Clock, utc_now
from blight.application.services.event_bus import EventBus
from blight.application.services.expiry_service import RequestExpiryService
from blight.application.services.healing_service import HealingService
from blight.application.services.leases import LeaseManager
from blight.application.services.moderation_service import ModerationService
from blight.application.services.notification_handlers import register_notification_handlers
from blight.application.services.roll_call import RollCallAnnouncer
from blight.application.services.roll_service import RollService
from blight.application.services.status_service import StatusService
from blight.application.services.sweeper import MissedRollSweeper
from blight.application.settings import BlightSettings
from blight.domain.gateways import InventoryGateway, LedgerGateway, Notifier
from blight.domain.repositories import (
    AtomicPersistor,
    BlightHistoryRepository,
    CharacterRepository,
    HealerDirectory,
    RecordStore,
)
from blight.domain.services.stage_engine import BandMode
from blight.infrastructure.healer_catalog import load_healer_directory
from blight.infrastructure.inmemory.atomic_persistence import create_inmemory_atomic_persistor
from blight.infrastructure.inmemory.gateways import InMemoryInventory, InMemoryLedger, RecordingNotifier
from blight.infrastructure.inmemory.repos import (
    InMemoryBlightHistoryRepository,
    InMemoryCharacterRepository,
    InMemoryRecordStore,
)


logger = logging.getLogger(__name__)


def _is_truthy(value: str | None, *, default: str) -> bool:
    normalized = str(value if value is not None else default).strip().lower()
    return normalized in {"1", "true", "yes"}


def load_settings() -> BlightSettings:
    return BlightSettings(
        roll_utc_offset_hours=float(os.getenv("BLIGHT_ROLL_UTC_OFFSET_HOURS", "-5")),
        roll_hour=int(os.getenv("BLIGHT_ROLL_HOUR", "20")),
        band_mode=BandMode.normalize(os.getenv("BLIGHT_ROLL_BAND_MODE", "step")),
        request_ttl_days=int(os.getenv("BLIGHT_REQUEST_TTL_DAYS", "30")),
        death_deadline_days=int(os.getenv("BLIGHT_DEATH_DEADLINE_DAYS", "7")),
        notifications_channel_id=os.getenv("BLIGHT_NOTIFICATIONS_CHANNEL_ID", "").strip(),
        reminder_role_id=os.getenv("BLIGHT_REMINDER_ROLE_ID", "").strip(),
        mod_queue_channel_id=os.getenv("BLIGHT_MOD_QUEUE_CHANNEL_ID", "").strip(),
        sweep_lease_seconds=int(os.getenv("BLIGHT_SWEEP_LEASE_SECONDS", "300")),
    )


def _build_notifier() -> Notifier:
    webhook_url = os.getenv("BLIGHT_WEBHOOK_URL", "").strip()
    if not webhook_url or not _is_truthy(os.getenv("BLIGHT_WEBHOOK_ENABLED"), default="1"):
        return RecordingNotifier()

    from blight.infrastructure.webhook_notifier import WebhookNotifier

    return WebhookNotifier(
        webhook_url,
        timeout=float(os.getenv("BLIGHT_HTTP_TIMEOUT_S", "5")),
        retries=int(os.getenv("BLIGHT_HTTP_RETRIES", "1")),
        backoff_seconds=float(os.getenv("BLIGHT_HTTP_BACKOFF_S", "0.2")),
    )


@dataclass
class BlightServices:
    settings: BlightSettings
    event_bus: EventBus
    character_repo: CharacterRepository
    record_store: RecordStore
    history_repo: BlightHistoryRepository
    healers: HealerDirectory
    inventory: InventoryGateway
    ledger: LedgerGateway
    notifier: Notifier
    rolls: RollService
    healing: HealingService
    sweeper: MissedRollSweeper
    roll_call: RollCallAnnouncer
    expiry: RequestExpiryService
    moderation: ModerationService
    status: StatusService


def assemble_services(
    *,
    settings: BlightSettings,
    character_repo: CharacterRepository,
    record_store: RecordStore,
    history_repo: BlightHistoryRepository,
    healers: HealerDirectory,
    inventory: InventoryGateway,
    ledger: LedgerGateway,
    notifier: Notifier,
    persist: AtomicPersistor,
    rng: random.Random | None = None,
    clock: Clock = utc_now,
) -> BlightServices:
    rng = rng or random.Random()
    event_bus = EventBus()
    register_notification_handlers(event_bus, notifier, settings)
    leases = LeaseManager(record_store, clock=clock)

    healing = HealingService(
        character_repo,
        record_store,
        history_repo,
        healers,
        inventory,
        ledger,
        persist,
        leases,
        event_bus,
        settings,
        rng=rng,
        clock=clock,
    )
    return BlightServices(
        settings=settings,
        event_bus=event_bus,
        character_repo=character_repo,
        record_store=record_store,
        history_repo=history_repo,
        healers=healers,
        inventory=inventory,
        ledger=ledger,
        notifier=notifier,
        rolls=RollService(character_repo, persist, leases, event_bus, settings, rng=rng, clock=clock),
        healing=healing,
        sweeper=MissedRollSweeper(
            character_repo,
            record_store,
            inventory,
            persist,
            leases,
            event_bus,
            settings,
            clock=clock,
        ),
        roll_call=RollCallAnnouncer(notifier, event_bus, settings, clock=clock),
        expiry=RequestExpiryService(record_store, history_repo, event_bus, clock=clock),
        moderation=ModerationService(character_repo, healing, persist, leases, event_bus, settings, clock=clock),
        status=StatusService(character_repo, record_store, history_repo, settings, clock=clock),
    )


def build_inmemory_services(
    *,
    settings: BlightSettings | None = None,
    character_repo: InMemoryCharacterRepository | None = None,
    inventory: InventoryGateway | None = None,
    ledger: LedgerGateway | None = None,
    notifier: Notifier | None = None,
    healers: HealerDirectory | None = None,
    rng: random.Random | None = None,
    clock: Clock = utc_now,
) -> BlightServices:
    character_repo = character_repo or InMemoryCharacterRepository()
    record_store = InMemoryRecordStore()
    history_repo = InMemoryBlightHistoryRepository()
    return assemble_services(
        settings=settings or BlightSettings(),
        character_repo=character_repo,
        record_store=record_store,
        history_repo=history_repo,
        healers=healers or load_healer_directory(os.getenv("BLIGHT_HEALERS_PATH") or None),
        inventory=inventory or InMemoryInventory(),
        ledger=ledger or InMemoryLedger(),
        notifier=notifier or RecordingNotifier(),
        persist=create_inmemory_atomic_persistor(character_repo, record_store, history_repo),
        rng=rng,
        clock=clock,
    )


def _build_sql_services(settings: BlightSettings) -> BlightServices:
    from blight.infrastructure.db.sql.atomic_persistence import save_character_and_records_atomic
    from blight.infrastructure.db.sql.repos import (
        SqlBlightHistoryRepository,
        SqlCharacterRepository,
        SqlInventoryGateway,
        SqlLedgerGateway,
        SqlRecordStore,
    )

    return assemble_services(
        settings=settings,
        character_repo=SqlCharacterRepository(),
        record_store=SqlRecordStore(),
        history_repo=SqlBlightHistoryRepository(),
        healers=load_healer_directory(os.getenv("BLIGHT_HEALERS_PATH") or None),
        inventory=SqlInventoryGateway(),
        ledger=SqlLedgerGateway(),
        notifier=_build_notifier(),
        persist=save_character_and_records_atomic,
    )


def create_blight_services() -> BlightServices:
    settings = load_settings()
    if os.getenv("BLIGHT_DATABASE_URL"):
        return _build_sql_services(settings)
    logger.info("BLIGHT_DATABASE_URL not set; using in-memory storage")
    return build_inmemory_services(settings=settings, notifier=_build_notifier())
