from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone
from typing import Any, List, Mapping, Optional

from sqlalchemy import text
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from blight.domain.errors import DuplicateRecordError, ExternalDependencyError, StaleCharacterError
from blight.domain.gateways import InventoryGateway, LedgerGateway
from blight.domain.models.character import BlightEffects, Character
from blight.domain.models.history import BlightEvent, BlightEventType
from blight.domain.models.record import ExpiringRecord
from blight.domain.repositories import BlightHistoryRepository, CharacterRepository, RecordStore
from .connection import SessionLocal


_CHARACTER_COLUMNS = """
    character_id, name, user_id, home_village, current_village, blighted, blight_stage,
    blighted_at, last_roll_date, death_deadline, blight_paused, pause_reason, paused_by,
    paused_at, blight_effects_json, died_at, version
"""


def to_db_time(moment: datetime | None) -> str | None:
    """UTC ISO text with a fixed width so string comparison matches time order."""
    if moment is None:
        return None
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc).isoformat(timespec="microseconds")


def from_db_time(raw_value) -> datetime | None:
    if raw_value is None or raw_value == "":
        return None
    if isinstance(raw_value, datetime):
        moment = raw_value
    else:
        moment = datetime.fromisoformat(str(raw_value))
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment


def _dialect(session) -> str:
    return session.bind.dialect.name if session.bind is not None else "mysql"


def _row_to_character(row) -> Character:
    try:
        effects_raw = json.loads(row.blight_effects_json) if row.blight_effects_json else {}
    except (TypeError, ValueError):
        effects_raw = {}
    return Character(
        id=int(row.character_id),
        name=str(row.name),
        user_id=str(row.user_id or ""),
        home_village=str(row.home_village or ""),
        current_village=str(row.current_village or ""),
        blighted=bool(row.blighted),
        blight_stage=int(row.blight_stage or 0),
        blighted_at=from_db_time(row.blighted_at),
        last_roll_date=from_db_time(row.last_roll_date),
        death_deadline=from_db_time(row.death_deadline),
        blight_paused=bool(row.blight_paused),
        pause_reason=row.pause_reason,
        paused_by=row.paused_by,
        paused_at=from_db_time(row.paused_at),
        blight_effects=BlightEffects(**effects_raw) if isinstance(effects_raw, dict) else BlightEffects(),
        died_at=from_db_time(row.died_at),
        version=int(row.version or 0),
    )


def _character_params(character: Character) -> dict[str, Any]:
    return {
        "cid": int(character.id or 0),
        "name": character.name,
        "user_id": str(character.user_id),
        "home_village": character.home_village,
        "current_village": character.current_village,
        "blighted": 1 if character.blighted else 0,
        "blight_stage": int(character.blight_stage),
        "blighted_at": to_db_time(character.blighted_at),
        "last_roll_date": to_db_time(character.last_roll_date),
        "death_deadline": to_db_time(character.death_deadline),
        "blight_paused": 1 if character.blight_paused else 0,
        "pause_reason": character.pause_reason,
        "paused_by": character.paused_by,
        "paused_at": to_db_time(character.paused_at),
        "effects": json.dumps(character.blight_effects.as_dict()),
        "died_at": to_db_time(character.died_at),
    }


def update_character_versioned(session, character: Character, expected_version: int) -> Character:
    params = _character_params(character)
    params["expected"] = int(expected_version)
    result = session.execute(
        text(
            """
            UPDATE blight_character
            SET blighted = :blighted,
                blight_stage = :blight_stage,
                blighted_at = :blighted_at,
                last_roll_date = :last_roll_date,
                death_deadline = :death_deadline,
                blight_paused = :blight_paused,
                pause_reason = :pause_reason,
                paused_by = :paused_by,
                paused_at = :paused_at,
                blight_effects_json = :effects,
                died_at = :died_at,
                version = version + 1
            WHERE character_id = :cid AND version = :expected
            """
        ),
        params,
    )
    if result.rowcount != 1:
        raise StaleCharacterError(int(character.id or 0), int(expected_version))
    row = session.execute(
        text(f"SELECT {_CHARACTER_COLUMNS} FROM blight_character WHERE character_id = :cid"),
        {"cid": int(character.id or 0)},
    ).first()
    return _row_to_character(row)


def delete_record(session, record_type: str, key: str) -> bool:
    result = session.execute(
        text("DELETE FROM expiring_record WHERE record_type = :record_type AND record_key = :record_key"),
        {"record_type": str(record_type), "record_key": str(key)},
    )
    return result.rowcount > 0


def insert_history(session, event: BlightEvent) -> None:
    session.execute(
        text(
            """
            INSERT INTO blight_history (
                character_id, character_name, event_type, notes, previous_stage, new_stage,
                roll_value, submission_id, actor_user_id, created_at
            )
            VALUES (
                :character_id, :character_name, :event_type, :notes, :previous_stage, :new_stage,
                :roll_value, :submission_id, :actor_user_id, :created_at
            )
            """
        ),
        {
            "character_id": int(event.character_id),
            "character_name": event.character_name,
            "event_type": event.event_type.value,
            "notes": event.notes,
            "previous_stage": event.previous_stage,
            "new_stage": event.new_stage,
            "roll_value": event.roll_value,
            "submission_id": event.submission_id,
            "actor_user_id": event.actor_user_id,
            "created_at": to_db_time(event.created_at),
        },
    )


class SqlCharacterRepository(CharacterRepository):
    def get(self, character_id: int) -> Optional[Character]:
        with SessionLocal() as session:
            row = session.execute(
                text(f"SELECT {_CHARACTER_COLUMNS} FROM blight_character WHERE character_id = :cid"),
                {"cid": int(character_id)},
            ).first()
            return _row_to_character(row) if row else None

    def get_by_name(self, name: str) -> Optional[Character]:
        with SessionLocal() as session:
            row = session.execute(
                text(f"SELECT {_CHARACTER_COLUMNS} FROM blight_character WHERE LOWER(name) = :name"),
                {"name": str(name or "").strip().lower()},
            ).first()
            return _row_to_character(row) if row else None

    def list_all(self) -> List[Character]:
        with SessionLocal() as session:
            rows = session.execute(
                text(f"SELECT {_CHARACTER_COLUMNS} FROM blight_character ORDER BY character_id")
            ).all()
            return [_row_to_character(row) for row in rows]

    def list_blighted(self) -> List[Character]:
        with SessionLocal() as session:
            rows = session.execute(
                text(f"SELECT {_CHARACTER_COLUMNS} FROM blight_character WHERE blighted = 1 ORDER BY character_id")
            ).all()
            return [_row_to_character(row) for row in rows]

    def list_by_village(self, village: str) -> List[Character]:
        with SessionLocal() as session:
            rows = session.execute(
                text(
                    f"SELECT {_CHARACTER_COLUMNS} FROM blight_character "
                    "WHERE LOWER(current_village) = :village ORDER BY character_id"
                ),
                {"village": str(village or "").strip().lower()},
            ).all()
            return [_row_to_character(row) for row in rows]

    def create(self, character: Character) -> Character:
        with SessionLocal.begin() as session:
            character_id = character.id
            if character_id is None:
                character_id = int(
                    session.execute(text("SELECT COALESCE(MAX(character_id), 0) + 1 FROM blight_character")).scalar_one()
                )
            params = _character_params(character)
            params["cid"] = int(character_id)
            params["version"] = int(character.version)
            session.execute(
                text(
                    f"""
                    INSERT INTO blight_character ({_CHARACTER_COLUMNS})
                    VALUES (
                        :cid, :name, :user_id, :home_village, :current_village, :blighted, :blight_stage,
                        :blighted_at, :last_roll_date, :death_deadline, :blight_paused, :pause_reason, :paused_by,
                        :paused_at, :effects, :died_at, :version
                    )
                    """
                ),
                params,
            )
        return self.get(int(character_id))

    def save(self, character: Character, *, expected_version: int) -> Character:
        with SessionLocal.begin() as session:
            return update_character_versioned(session, character, expected_version)


def _row_to_record(row) -> ExpiringRecord:
    try:
        data = json.loads(row.data_json) if row.data_json else {}
    except (TypeError, ValueError):
        data = {}
    return ExpiringRecord(
        record_type=str(row.record_type),
        key=str(row.record_key),
        data=data if isinstance(data, dict) else {},
        created_at=from_db_time(row.created_at),
        expires_at=from_db_time(row.expires_at),
        unique_key=row.unique_key,
    )


_RECORD_COLUMNS = "record_type, record_key, unique_key, data_json, created_at, expires_at"


class SqlRecordStore(RecordStore):
    def put(
        self,
        record_type: str,
        key: str,
        data: dict[str, Any],
        ttl: timedelta,
        *,
        now: datetime,
        unique_key: str | None = None,
    ) -> ExpiringRecord:
        record = ExpiringRecord(
            record_type=str(record_type),
            key=str(key),
            data=dict(data),
            created_at=now,
            expires_at=now + ttl,
            unique_key=unique_key,
        )
        params = {
            "record_type": record.record_type,
            "record_key": record.key,
            "unique_key": unique_key,
            "data_json": json.dumps(record.data, default=str),
            "created_at": to_db_time(record.created_at),
            "expires_at": to_db_time(record.expires_at),
            "now": to_db_time(now),
        }
        try:
            with SessionLocal.begin() as session:
                if unique_key is not None:
                    session.execute(
                        text(
                            """
                            DELETE FROM expiring_record
                            WHERE record_type = :record_type AND unique_key = :unique_key AND expires_at <= :now
                            """
                        ),
                        params,
                    )
                    session.execute(
                        text(
                            f"""
                            INSERT INTO expiring_record ({_RECORD_COLUMNS})
                            VALUES (:record_type, :record_key, :unique_key, :data_json, :created_at, :expires_at)
                            """
                        ),
                        params,
                    )
                    return record

                if _dialect(session) == "mysql":
                    session.execute(
                        text(
                            f"""
                            INSERT INTO expiring_record ({_RECORD_COLUMNS})
                            VALUES (:record_type, :record_key, :unique_key, :data_json, :created_at, :expires_at)
                            ON DUPLICATE KEY UPDATE
                                data_json = VALUES(data_json),
                                created_at = VALUES(created_at),
                                expires_at = VALUES(expires_at)
                            """
                        ),
                        params,
                    )
                else:
                    session.execute(
                        text(
                            f"""
                            INSERT INTO expiring_record ({_RECORD_COLUMNS})
                            VALUES (:record_type, :record_key, :unique_key, :data_json, :created_at, :expires_at)
                            ON CONFLICT(record_type, record_key) DO UPDATE SET
                                data_json = excluded.data_json,
                                created_at = excluded.created_at,
                                expires_at = excluded.expires_at
                            """
                        ),
                        params,
                    )
        except IntegrityError as exc:
            if unique_key is None:
                raise
            raise DuplicateRecordError(record.record_type, unique_key) from exc
        return record

    def get(self, record_type: str, key: str) -> Optional[ExpiringRecord]:
        with SessionLocal() as session:
            row = session.execute(
                text(
                    f"SELECT {_RECORD_COLUMNS} FROM expiring_record "
                    "WHERE record_type = :record_type AND record_key = :record_key"
                ),
                {"record_type": str(record_type), "record_key": str(key)},
            ).first()
            return _row_to_record(row) if row else None

    def find_by_unique_key(self, record_type: str, unique_key: str) -> Optional[ExpiringRecord]:
        with SessionLocal() as session:
            row = session.execute(
                text(
                    f"SELECT {_RECORD_COLUMNS} FROM expiring_record "
                    "WHERE record_type = :record_type AND unique_key = :unique_key"
                ),
                {"record_type": str(record_type), "unique_key": str(unique_key)},
            ).first()
            return _row_to_record(row) if row else None

    def list_by_type(self, record_type: str) -> List[ExpiringRecord]:
        with SessionLocal() as session:
            rows = session.execute(
                text(
                    f"SELECT {_RECORD_COLUMNS} FROM expiring_record "
                    "WHERE record_type = :record_type ORDER BY created_at, record_key"
                ),
                {"record_type": str(record_type)},
            ).all()
            return [_row_to_record(row) for row in rows]

    def delete(self, record_type: str, key: str) -> bool:
        with SessionLocal.begin() as session:
            return delete_record(session, record_type, key)

    def purge_expired(self, now: datetime, record_type: str | None = None) -> List[ExpiringRecord]:
        where = "expires_at <= :now"
        params: dict[str, Any] = {"now": to_db_time(now)}
        if record_type is not None:
            where += " AND record_type = :record_type"
            params["record_type"] = str(record_type)
        with SessionLocal.begin() as session:
            rows = session.execute(text(f"SELECT {_RECORD_COLUMNS} FROM expiring_record WHERE {where}"), params).all()
            session.execute(text(f"DELETE FROM expiring_record WHERE {where}"), params)
            return [_row_to_record(row) for row in rows]


class SqlBlightHistoryRepository(BlightHistoryRepository):
    def append(self, event: BlightEvent) -> None:
        with SessionLocal.begin() as session:
            insert_history(session, event)

    def list_for_character(self, character_id: int, limit: int = 10) -> List[BlightEvent]:
        with SessionLocal() as session:
            rows = session.execute(
                text(
                    """
                    SELECT blight_history_id, character_id, character_name, event_type, notes, previous_stage,
                           new_stage, roll_value, submission_id, actor_user_id, created_at
                    FROM blight_history
                    WHERE character_id = :character_id
                    ORDER BY created_at DESC, blight_history_id DESC
                    LIMIT :limit
                    """
                ),
                {"character_id": int(character_id), "limit": max(0, int(limit))},
            ).all()
        return [
            BlightEvent(
                id=int(row.blight_history_id),
                character_id=int(row.character_id),
                character_name=str(row.character_name or ""),
                event_type=BlightEventType(str(row.event_type)),
                created_at=from_db_time(row.created_at),
                notes=str(row.notes or ""),
                previous_stage=row.previous_stage,
                new_stage=row.new_stage,
                roll_value=row.roll_value,
                submission_id=row.submission_id,
                actor_user_id=row.actor_user_id,
            )
            for row in rows
        ]


class SqlInventoryGateway(InventoryGateway):
    def sum_quantity(self, character_id: int, item_name: str) -> int:
        with SessionLocal() as session:
            total = session.execute(
                text(
                    """
                    SELECT COALESCE(SUM(quantity), 0) FROM inventory_item
                    WHERE character_id = :character_id AND LOWER(item_name) = :item_name
                    """
                ),
                {"character_id": int(character_id), "item_name": str(item_name or "").strip().lower()},
            ).scalar_one()
        return int(total or 0)

    def deduct(self, character_id: int, item_name: str, quantity: int) -> None:
        remaining = int(quantity)
        try:
            with SessionLocal.begin() as session:
                rows = session.execute(
                    text(
                        """
                        SELECT inventory_item_id, quantity FROM inventory_item
                        WHERE character_id = :character_id AND LOWER(item_name) = :item_name
                        ORDER BY inventory_item_id
                        """
                    ),
                    {"character_id": int(character_id), "item_name": str(item_name or "").strip().lower()},
                ).all()
                held = sum(int(row.quantity) for row in rows)
                if held < remaining:
                    raise ExternalDependencyError("inventory", f"cannot remove {quantity} {item_name}; only {held} held")
                for row in rows:
                    if remaining <= 0:
                        break
                    taken = min(int(row.quantity), remaining)
                    remaining -= taken
                    if taken == int(row.quantity):
                        session.execute(
                            text("DELETE FROM inventory_item WHERE inventory_item_id = :row_id"),
                            {"row_id": int(row.inventory_item_id)},
                        )
                    else:
                        session.execute(
                            text("UPDATE inventory_item SET quantity = quantity - :taken WHERE inventory_item_id = :row_id"),
                            {"taken": taken, "row_id": int(row.inventory_item_id)},
                        )
        except SQLAlchemyError as exc:
            raise ExternalDependencyError("inventory", str(exc)) from exc

    def wipe_all(self, character_id: int) -> int:
        try:
            with SessionLocal.begin() as session:
                result = session.execute(
                    text("DELETE FROM inventory_item WHERE character_id = :character_id"),
                    {"character_id": int(character_id)},
                )
                return int(result.rowcount or 0)
        except SQLAlchemyError as exc:
            raise ExternalDependencyError("inventory", str(exc)) from exc


class SqlLedgerGateway(LedgerGateway):
    def get_balance(self, user_id: str) -> int:
        with SessionLocal() as session:
            balance = session.execute(
                text("SELECT balance FROM token_balance WHERE user_id = :user_id"),
                {"user_id": str(user_id)},
            ).scalar()
        return int(balance or 0)

    def get_tracker(self, user_id: str) -> str | None:
        with SessionLocal() as session:
            tracker = session.execute(
                text("SELECT tracker_url FROM token_balance WHERE user_id = :user_id"),
                {"user_id": str(user_id)},
            ).scalar()
        return str(tracker) if tracker else None

    def zero_balance(self, user_id: str) -> int:
        try:
            with SessionLocal.begin() as session:
                balance = session.execute(
                    text("SELECT balance FROM token_balance WHERE user_id = :user_id"),
                    {"user_id": str(user_id)},
                ).scalar()
                session.execute(
                    text("UPDATE token_balance SET balance = 0 WHERE user_id = :user_id"),
                    {"user_id": str(user_id)},
                )
                return int(balance or 0)
        except SQLAlchemyError as exc:
            raise ExternalDependencyError("ledger", str(exc)) from exc

    def record_audit(self, entry: Mapping[str, Any]) -> None:
        try:
            with SessionLocal.begin() as session:
                session.execute(
                    text(
                        """
                        INSERT INTO token_audit (user_id, submission_id, amount, entry_json, recorded_at)
                        VALUES (:user_id, :submission_id, :amount, :entry_json, :recorded_at)
                        """
                    ),
                    {
                        "user_id": str(entry.get("user_id", "")),
                        "submission_id": entry.get("submission_id"),
                        "amount": int(entry.get("tokens_forfeited", 0) or 0),
                        "entry_json": json.dumps(dict(entry), default=str),
                        "recorded_at": str(entry.get("recorded_at", "")),
                    },
                )
        except SQLAlchemyError as exc:
            raise ExternalDependencyError("ledger", str(exc)) from exc
