from __future__ import annotations

import copy
import threading
from dataclasses import replace
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from blight.domain.errors import DuplicateRecordError, StaleCharacterError
from blight.domain.models.character import Character
from blight.domain.models.history import BlightEvent
from blight.domain.models.record import ExpiringRecord
from blight.domain.repositories import BlightHistoryRepository, CharacterRepository, RecordStore


class InMemoryCharacterRepository(CharacterRepository):
    def __init__(self, characters: List[Character] | None = None) -> None:
        self._lock = threading.RLock()
        self._characters: Dict[int, Character] = {}
        self._next_id = 1
        for character in characters or []:
            self.create(character)

    def get(self, character_id: int) -> Optional[Character]:
        with self._lock:
            row = self._characters.get(int(character_id))
            return copy.deepcopy(row) if row is not None else None

    def get_by_name(self, name: str) -> Optional[Character]:
        wanted = str(name or "").strip().lower()
        with self._lock:
            for row in self._characters.values():
                if row.name.strip().lower() == wanted:
                    return copy.deepcopy(row)
        return None

    def list_all(self) -> List[Character]:
        with self._lock:
            return [copy.deepcopy(row) for _, row in sorted(self._characters.items())]

    def list_blighted(self) -> List[Character]:
        return [row for row in self.list_all() if row.blighted]

    def create(self, character: Character) -> Character:
        with self._lock:
            character_id = character.id if character.id is not None else self._next_id
            self._next_id = max(self._next_id, int(character_id) + 1)
            stored = replace(character, id=int(character_id))
            self._characters[int(character_id)] = stored
            return copy.deepcopy(stored)

    def save(self, character: Character, *, expected_version: int) -> Character:
        with self._lock:
            current = self._characters.get(int(character.id or 0))
            if current is None or current.version != int(expected_version):
                raise StaleCharacterError(int(character.id or 0), int(expected_version))
            stored = replace(character, version=int(expected_version) + 1)
            self._characters[int(stored.id or 0)] = stored
            return copy.deepcopy(stored)

    def restore(self, character: Character) -> None:
        with self._lock:
            self._characters[int(character.id or 0)] = copy.deepcopy(character)


class InMemoryRecordStore(RecordStore):
    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._records: Dict[tuple[str, str], ExpiringRecord] = {}

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
            data=copy.deepcopy(dict(data)),
            created_at=now,
            expires_at=now + ttl,
            unique_key=unique_key,
        )
        with self._lock:
            if unique_key is not None:
                for ref, existing in list(self._records.items()):
                    if existing.record_type != record.record_type or existing.unique_key != unique_key:
                        continue
                    if existing.is_expired(now):
                        del self._records[ref]
                        continue
                    raise DuplicateRecordError(record.record_type, unique_key)
            self._records[(record.record_type, record.key)] = record
        return copy.deepcopy(record)

    def get(self, record_type: str, key: str) -> Optional[ExpiringRecord]:
        with self._lock:
            return copy.deepcopy(self._records.get((str(record_type), str(key))))

    def find_by_unique_key(self, record_type: str, unique_key: str) -> Optional[ExpiringRecord]:
        with self._lock:
            for record in self._records.values():
                if record.record_type == record_type and record.unique_key == unique_key:
                    return copy.deepcopy(record)
        return None

    def list_by_type(self, record_type: str) -> List[ExpiringRecord]:
        with self._lock:
            rows = [copy.deepcopy(record) for record in self._records.values() if record.record_type == record_type]
        return sorted(rows, key=lambda row: (row.created_at is None, row.created_at, row.key))

    def delete(self, record_type: str, key: str) -> bool:
        with self._lock:
            return self._records.pop((str(record_type), str(key)), None) is not None

    def purge_expired(self, now: datetime, record_type: str | None = None) -> List[ExpiringRecord]:
        purged: List[ExpiringRecord] = []
        with self._lock:
            for ref, record in list(self._records.items()):
                if record_type is not None and record.record_type != record_type:
                    continue
                if record.is_expired(now):
                    purged.append(self._records.pop(ref))
        return purged

    def restore(self, record: ExpiringRecord) -> None:
        with self._lock:
            self._records[(record.record_type, record.key)] = record


class InMemoryBlightHistoryRepository(BlightHistoryRepository):
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._events: List[BlightEvent] = []

    def append(self, event: BlightEvent) -> None:
        with self._lock:
            self._events.append(replace(event, id=len(self._events) + 1))

    def list_for_character(self, character_id: int, limit: int = 10) -> List[BlightEvent]:
        with self._lock:
            rows = [event for event in self._events if event.character_id == int(character_id)]
        rows.sort(key=lambda row: (row.created_at, row.id or 0), reverse=True)
        return rows[: max(0, int(limit))]

    def remove(self, event_ids: List[int]) -> None:
        wanted = set(event_ids)
        with self._lock:
            self._events = [event for event in self._events if event.id not in wanted]
