from __future__ import annotations

import logging
import random
import re
import uuid
from collections.abc import Mapping, Sequence
from datetime import datetime
from typing import Any, Callable

from blight.application.dtos import CancelOutcome, CreateRequestOutcome, CureOutcome, FailureReason, FulfillOutcome
from blight.application.services.clock import Clock, resolve_now, utc_now
from blight.application.services.event_bus import EventBus
from blight.application.services.leases import LeaseManager
from blight.application.settings import BlightSettings
from blight.domain.errors import (
    CharacterBusyError,
    DuplicateRecordError,
    ExternalDependencyError,
    StaleCharacterError,
)
from blight.domain.events import HealingCompleted, HealingRequested, RequestCancelled
from blight.domain.gateways import InventoryGateway, LedgerGateway
from blight.domain.models.character import Character
from blight.domain.models.healer import Healer
from blight.domain.models.healing import (
    FulfillmentMethod,
    HealingRequest,
    RequestStatus,
    TaskType,
    pending_request_unique_key,
)
from blight.domain.models.history import BlightEvent, BlightEventType
from blight.domain.models.record import REQUEST_RECORD_TYPE
from blight.domain.repositories import (
    AtomicPersistor,
    BlightHistoryRepository,
    CharacterRepository,
    HealerDirectory,
    RecordStore,
)
from blight.domain.services import stage_engine


logger = logging.getLogger(__name__)

_ITEM_PAYLOAD_PATTERN = re.compile(r"^\s*(?P<name>.+?)\s*[x×]\s*(?P<quantity>\d+)\s*$", re.IGNORECASE)
_PAID_CURE_ATTEMPTS = 3


def parse_item_payload(payload: Any) -> tuple[str, int] | None:
    """Accept ``"Name xN"``, a ``(name, quantity)`` pair or a mapping with ``item_name``/``quantity``."""
    name: Any = None
    quantity: Any = None
    if isinstance(payload, str):
        match = _ITEM_PAYLOAD_PATTERN.match(payload)
        if match is None:
            return None
        name, quantity = match.group("name"), match.group("quantity")
    elif isinstance(payload, Mapping):
        name = payload.get("item_name", payload.get("name"))
        quantity = payload.get("quantity")
    elif isinstance(payload, Sequence) and len(payload) == 2:
        name, quantity = payload[0], payload[1]
    else:
        return None

    name = str(name or "").strip()
    try:
        amount = int(quantity)
    except (TypeError, ValueError):
        return None
    if not name or amount <= 0:
        return None
    return name, amount


def new_submission_id() -> str:
    return f"B{uuid.uuid4().hex[:8].upper()}"


class HealingService:
    def __init__(
        self,
        character_repo: CharacterRepository,
        record_store: RecordStore,
        history_repo: BlightHistoryRepository,
        healers: HealerDirectory,
        inventory: InventoryGateway,
        ledger: LedgerGateway,
        persist: AtomicPersistor,
        leases: LeaseManager,
        event_bus: EventBus,
        settings: BlightSettings,
        *,
        rng: random.Random | None = None,
        clock: Clock = utc_now,
        id_factory: Callable[[], str] = new_submission_id,
    ) -> None:
        self.character_repo = character_repo
        self.record_store = record_store
        self.history_repo = history_repo
        self.healers = healers
        self.inventory = inventory
        self.ledger = ledger
        self.persist = persist
        self.leases = leases
        self.event_bus = event_bus
        self.settings = settings
        self.rng = rng or random.Random()
        self.clock = clock
        self.id_factory = id_factory

    # -- requests -------------------------------------------------------

    def create_request(
        self,
        character_id: int,
        healer_name: str,
        acting_user_id: str,
        now: datetime | None = None,
    ) -> CreateRequestOutcome:
        """Open a pending healing request for the character.

        A pending request whose healer no longer covers the current stage is
        cancelled before ``healer_name`` is checked, so an unknown or
        mismatched healer still clears that stale request.
        """
        now = resolve_now(now, self.clock)
        character = self.character_repo.get(character_id)
        if character is None:
            return CreateRequestOutcome(ok=False, reason=FailureReason.CHARACTER_NOT_FOUND)
        if str(character.user_id) != str(acting_user_id):
            return CreateRequestOutcome(ok=False, reason=FailureReason.NOT_OWNER)
        if not character.blighted or character.blight_stage <= 0:
            return CreateRequestOutcome(ok=False, reason=FailureReason.NOT_AFFLICTED)
        if character.blight_paused:
            return CreateRequestOutcome(ok=False, reason=FailureReason.PAUSED)

        unique_key = pending_request_unique_key(character.name)
        replaced_submission_id = None
        existing = self.record_store.find_by_unique_key(REQUEST_RECORD_TYPE, unique_key)
        if existing is not None and not existing.is_expired(now):
            pending = HealingRequest.from_record_data(existing.data)
            if self._healer_still_permitted(pending.healer_name, character.blight_stage):
                return CreateRequestOutcome(
                    ok=False,
                    reason=FailureReason.DUPLICATE_PENDING,
                    existing_submission_id=pending.submission_id,
                )
            cancelled = self._cancel(pending, now=now, reason="healer-no-longer-permitted", actor_user_id=None)
            if cancelled:
                replaced_submission_id = pending.submission_id

        healer = self.healers.get(healer_name)
        if healer is None:
            return CreateRequestOutcome(ok=False, reason=FailureReason.HEALER_NOT_FOUND)
        if healer.village.strip().lower() != character.current_village.strip().lower():
            return CreateRequestOutcome(ok=False, reason=FailureReason.VILLAGE_MISMATCH)
        if not stage_engine.is_healer_permitted(healer.category, character.blight_stage):
            return CreateRequestOutcome(ok=False, reason=FailureReason.STAGE_FORBIDDEN)

        requirement = healer.generate_requirement(character.name, rng=self.rng)
        request = HealingRequest(
            submission_id=self.id_factory(),
            owner_user_id=str(character.user_id),
            character_id=int(character.id or 0),
            character_name=character.name,
            healer_name=healer.name,
            task_type=requirement.type,
            task_description=requirement.description,
            stage_at_creation=character.blight_stage,
            created_at=now,
            expires_at=now + self.settings.request_ttl,
            items=requirement.items,
        )
        try:
            self.record_store.put(
                REQUEST_RECORD_TYPE,
                request.submission_id,
                request.to_record_data(),
                self.settings.request_ttl,
                now=now,
                unique_key=unique_key,
            )
        except DuplicateRecordError:
            logger.info(
                "Healing request lost a concurrent insert",
                extra={"character_id": character.id, "unique_key": unique_key},
            )
            return CreateRequestOutcome(ok=False, reason=FailureReason.DUPLICATE_PENDING)

        self.history_repo.append(
            BlightEvent(
                character_id=request.character_id,
                character_name=character.name,
                event_type=BlightEventType.HEALING_REQUESTED,
                created_at=now,
                notes=f"{healer.name}: {requirement.type.value}",
                previous_stage=character.blight_stage,
                new_stage=character.blight_stage,
                submission_id=request.submission_id,
                actor_user_id=str(acting_user_id),
            )
        )
        self.event_bus.publish(
            HealingRequested(
                submission_id=request.submission_id,
                character_id=request.character_id,
                character_name=character.name,
                user_id=request.owner_user_id,
                healer_name=healer.name,
                stage=character.blight_stage,
                task_type=requirement.type.value,
                task_description=requirement.description,
                expires_at=request.expires_at,
            )
        )
        logger.info(
            "Healing request created",
            extra={"submission_id": request.submission_id, "character_id": character.id, "healer": healer.name},
        )
        return CreateRequestOutcome(
            ok=True,
            request=request,
            requirement=requirement,
            narration=healer.narrate_before(character.name),
            replaced_submission_id=replaced_submission_id,
        )

    def fulfill_request(
        self,
        submission_id: str,
        method: str | FulfillmentMethod,
        payload: Any,
        acting_user_id: str,
        now: datetime | None = None,
    ) -> FulfillOutcome:
        now = resolve_now(now, self.clock)
        try:
            chosen = FulfillmentMethod(str(getattr(method, "value", method) or "").strip().lower())
        except ValueError:
            return FulfillOutcome(ok=False, reason=FailureReason.INVALID_INPUT, detail=f"unknown method {method!r}")

        record = self.record_store.get(REQUEST_RECORD_TYPE, str(submission_id).strip())
        if record is None:
            return FulfillOutcome(ok=False, reason=FailureReason.REQUEST_NOT_FOUND, method=chosen.value)
        request = HealingRequest.from_record_data(record.data)
        if request.status != RequestStatus.PENDING:
            return FulfillOutcome(ok=False, reason=FailureReason.REQUEST_NOT_PENDING, request=request, method=chosen.value)
        if request.is_expired(now) or record.is_expired(now):
            self.record_store.delete(REQUEST_RECORD_TYPE, request.submission_id)
            return FulfillOutcome(ok=False, reason=FailureReason.EXPIRED, request=request, method=chosen.value)
        if str(request.owner_user_id) != str(acting_user_id):
            return FulfillOutcome(ok=False, reason=FailureReason.NOT_OWNER, request=request, method=chosen.value)
        if self.character_repo.get(request.character_id) is None:
            return FulfillOutcome(ok=False, reason=FailureReason.CHARACTER_NOT_FOUND, request=request, method=chosen.value)

        try:
            with self.leases.character(request.character_id, self.settings.character_lease_ttl):
                return self._fulfill_locked(request, chosen, payload, acting_user_id, now)
        except CharacterBusyError:
            return FulfillOutcome(ok=False, reason=FailureReason.BUSY, request=request, method=chosen.value)

    def _fulfill_locked(
        self,
        request: HealingRequest,
        method: FulfillmentMethod,
        payload: Any,
        acting_user_id: str,
        now: datetime,
    ) -> FulfillOutcome:
        character = self.character_repo.get(request.character_id)
        if character is None:
            return FulfillOutcome(ok=False, reason=FailureReason.CHARACTER_NOT_FOUND, request=request, method=method.value)

        def _fail(reason: FailureReason, detail: str = "") -> FulfillOutcome:
            return FulfillOutcome(
                ok=False,
                reason=reason,
                character=character,
                request=request,
                method=method.value,
                detail=detail,
            )

        tokens_forfeited = 0
        healer = self.healers.get(request.healer_name)

        if method == FulfillmentMethod.TOKENS:
            balance = self.ledger.get_balance(request.owner_user_id)
            if balance <= 0:
                return _fail(FailureReason.NO_BALANCE)
            tracker = self.ledger.get_tracker(request.owner_user_id)
            if not tracker:
                return _fail(FailureReason.TRACKER_NOT_CONFIGURED)
            try:
                tokens_forfeited = self.ledger.zero_balance(request.owner_user_id)
            except ExternalDependencyError as exc:
                logger.warning("Token forfeiture failed", extra={"submission_id": request.submission_id, "error": str(exc)})
                return _fail(FailureReason.DEPENDENCY_FAILED, str(exc))
            try:
                self.ledger.record_audit(
                    {
                        "tracker": tracker,
                        "user_id": request.owner_user_id,
                        "character_name": request.character_name,
                        "submission_id": request.submission_id,
                        "healer_name": request.healer_name,
                        "tokens_forfeited": tokens_forfeited,
                        "recorded_at": now.isoformat(),
                    }
                )
            except ExternalDependencyError as exc:
                logger.error(
                    "Token audit entry could not be written after forfeiture",
                    extra={"submission_id": request.submission_id, "tokens_forfeited": tokens_forfeited, "error": str(exc)},
                )
        elif method == FulfillmentMethod.ITEM:
            if request.task_type != TaskType.ITEM:
                return _fail(FailureReason.METHOD_MISMATCH)
            parsed = parse_item_payload(payload)
            if parsed is None:
                return _fail(FailureReason.INVALID_PAYLOAD, "expected 'Item Name xQuantity'")
            item_name, quantity = parsed
            required = request.find_item(item_name, quantity)
            if required is None:
                return _fail(FailureReason.ITEM_NOT_ACCEPTED, f"{item_name} x{quantity}")
            held = self.inventory.sum_quantity(request.character_id, required.name)
            if held < required.quantity:
                return _fail(FailureReason.INSUFFICIENT_QUANTITY, f"holds {held} of {required.quantity}")
            permission_failure = self._permission_failure(healer, character.blight_stage)
            if permission_failure is not None:
                return _fail(permission_failure)
            try:
                self.inventory.deduct(request.character_id, required.name, required.quantity)
            except ExternalDependencyError as exc:
                logger.warning("Inventory deduction failed", extra={"submission_id": request.submission_id, "error": str(exc)})
                return _fail(FailureReason.DEPENDENCY_FAILED, str(exc))
        else:
            if not request.task_type.is_creative:
                return _fail(FailureReason.METHOD_MISMATCH)
            link = str(payload or "").strip()
            if not link:
                return _fail(FailureReason.INVALID_PAYLOAD, "a submission link is required")
            permission_failure = self._permission_failure(healer, character.blight_stage)
            if permission_failure is not None:
                return _fail(permission_failure)

        previous_stage = character.blight_stage
        try:
            cured = self._cure_paid(character, request, method, acting_user_id, now)
        except StaleCharacterError:
            logger.error(
                "Character changed while a fulfilled request was being applied",
                extra={"submission_id": request.submission_id, "character_id": character.id},
            )
            return _fail(FailureReason.CONFLICT)

        self.event_bus.publish(
            HealingCompleted(
                character_id=int(cured.id or 0),
                character_name=cured.name,
                user_id=cured.user_id,
                healer_name=request.healer_name,
                method=method.value,
                previous_stage=previous_stage,
                submission_id=request.submission_id,
            )
        )
        return FulfillOutcome(
            ok=True,
            character=cured,
            request=request,
            method=method.value,
            previous_stage=previous_stage,
            tokens_forfeited=tokens_forfeited,
            narration=healer.narrate_after(cured.name) if healer is not None else "",
        )

    def _cure_paid(
        self,
        character: Character,
        request: HealingRequest,
        method: FulfillmentMethod,
        acting_user_id: str,
        now: datetime,
    ) -> Character:
        """Save the Cure for a request whose tokens or items are already spent.

        Cure lands on the same end state from any starting point, so a write
        that slipped in after the character was read is absorbed by reading
        it again and saving once more.
        """
        attempt = 1
        while True:
            try:
                return self._cure(
                    character,
                    now=now,
                    submission_id=request.submission_id,
                    notes=f"{request.healer_name} via {method.value}",
                    actor_user_id=acting_user_id,
                )
            except StaleCharacterError:
                fresh = self.character_repo.get(request.character_id)
                if fresh is None or attempt >= _PAID_CURE_ATTEMPTS:
                    raise
                logger.warning(
                    "Character changed before a paid cure was saved; retrying",
                    extra={"submission_id": request.submission_id, "character_id": fresh.id, "attempt": attempt},
                )
                character = fresh
                attempt += 1

    def cure(
        self,
        character_id: int,
        submission_id: str | None = None,
        *,
        actor_user_id: str | None = None,
        now: datetime | None = None,
    ) -> CureOutcome:
        now = resolve_now(now, self.clock)
        try:
            with self.leases.character(character_id, self.settings.character_lease_ttl):
                character = self.character_repo.get(character_id)
                if character is None:
                    return CureOutcome(ok=False, reason=FailureReason.CHARACTER_NOT_FOUND)
                previous_stage = character.blight_stage
                cured = self._cure(
                    character,
                    now=now,
                    submission_id=submission_id,
                    notes="cured",
                    actor_user_id=actor_user_id,
                )
        except CharacterBusyError:
            return CureOutcome(ok=False, reason=FailureReason.BUSY)
        except StaleCharacterError:
            return CureOutcome(ok=False, reason=FailureReason.CONFLICT)
        return CureOutcome(ok=True, character=cured, previous_stage=previous_stage, changed=previous_stage != 0)

    def _cure(
        self,
        character: Character,
        *,
        now: datetime,
        submission_id: str | None,
        notes: str,
        actor_user_id: str | None,
    ) -> Character:
        deletes = [(REQUEST_RECORD_TYPE, submission_id)] if submission_id else []
        already_cured = (
            character.blight_stage == 0
            and not character.blighted
            and character.death_deadline is None
            and character.blight_effects == stage_engine.effects_for_stage(0)
        )
        if already_cured:
            for record_type, key in deletes:
                self.record_store.delete(record_type, key)
            return character

        cured = stage_engine.with_stage(
            character,
            0,
            now=now,
            deadline_delay=self.settings.death_deadline_delay,
        )
        history = BlightEvent(
            character_id=int(character.id or 0),
            character_name=character.name,
            event_type=BlightEventType.HEALING_COMPLETED,
            created_at=now,
            notes=notes,
            previous_stage=character.blight_stage,
            new_stage=0,
            submission_id=submission_id,
            actor_user_id=actor_user_id,
        )
        saved = self.persist(
            cured,
            expected_version=character.version,
            delete_records=deletes,
            history=[history],
        )
        logger.info(
            "Character cured of blight",
            extra={"character_id": saved.id, "previous_stage": character.blight_stage, "submission_id": submission_id},
        )
        return saved

    def cancel_request(
        self,
        submission_id: str,
        *,
        acting_user_id: str,
        reason: str = "cancelled",
        enforce_owner: bool = True,
        now: datetime | None = None,
    ) -> CancelOutcome:
        now = resolve_now(now, self.clock)
        record = self.record_store.get(REQUEST_RECORD_TYPE, str(submission_id).strip())
        if record is None:
            return CancelOutcome(ok=False, reason=FailureReason.REQUEST_NOT_FOUND)
        request = HealingRequest.from_record_data(record.data)
        if request.status != RequestStatus.PENDING:
            return CancelOutcome(ok=False, reason=FailureReason.REQUEST_NOT_PENDING, request=request)
        if enforce_owner and str(request.owner_user_id) != str(acting_user_id):
            return CancelOutcome(ok=False, reason=FailureReason.NOT_OWNER, request=request)
        if not self._cancel(request, now=now, reason=reason, actor_user_id=acting_user_id):
            return CancelOutcome(ok=False, reason=FailureReason.REQUEST_NOT_FOUND, request=request)
        return CancelOutcome(ok=True, request=request)

    def cancel_pending_for_character(self, character: Character, *, reason: str, actor_user_id: str | None, now: datetime) -> list[str]:
        record = self.record_store.find_by_unique_key(REQUEST_RECORD_TYPE, pending_request_unique_key(character.name))
        if record is None:
            return []
        request = HealingRequest.from_record_data(record.data)
        if self._cancel(request, now=now, reason=reason, actor_user_id=actor_user_id):
            return [request.submission_id]
        return []

    def _cancel(self, request: HealingRequest, *, now: datetime, reason: str, actor_user_id: str | None) -> bool:
        if not self.record_store.delete(REQUEST_RECORD_TYPE, request.submission_id):
            return False
        self.history_repo.append(
            BlightEvent(
                character_id=request.character_id,
                character_name=request.character_name,
                event_type=BlightEventType.REQUEST_CANCELLED,
                created_at=now,
                notes=reason,
                submission_id=request.submission_id,
                actor_user_id=actor_user_id,
            )
        )
        self.event_bus.publish(
            RequestCancelled(
                submission_id=request.submission_id,
                character_name=request.character_name,
                user_id=request.owner_user_id,
                healer_name=request.healer_name,
                reason=reason,
            )
        )
        logger.info("Healing request cancelled", extra={"submission_id": request.submission_id, "reason": reason})
        return True

    def _healer_still_permitted(self, healer_name: str, stage: int) -> bool:
        healer = self.healers.get(healer_name)
        return healer is not None and stage_engine.is_healer_permitted(healer.category, stage)

    @staticmethod
    def _permission_failure(healer: Healer | None, stage: int) -> FailureReason | None:
        if healer is None:
            return FailureReason.HEALER_NOT_FOUND
        if not stage_engine.is_healer_permitted(healer.category, stage):
            return FailureReason.STAGE_FORBIDDEN
        return None
