from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime, timedelta
from typing import Any, Callable, List, Optional

from blight.domain.models.character import Character
from blight.domain.models.healer import Healer
from blight.domain.models.history import BlightEvent
from blight.domain.models.record import ExpiringRecord


class CharacterRepository(ABC):
    @abstractmethod
    def get(self, character_id: int) -> Optional[Character]:
        raise NotImplementedError

    @abstractmethod
    def get_by_name(self, name: str) -> Optional[Character]:
        raise NotImplementedError

    @abstractmethod
    def list_all(self) -> List[Character]:
        raise NotImplementedError

    @abstractmethod
    def list_blighted(self) -> List[Character]:
        raise NotImplementedError

    @abstractmethod
    def create(self, character: Character) -> Character:
        raise NotImplementedError

    @abstractmethod
    def save(self, character: Character, *, expected_version: int) -> Character:
        """Persist blight fields only if the stored version still equals ``expected_version``.

        Raises StaleCharacterError otherwise. On success the returned character
        carries the incremented version.
        """
        raise NotImplementedError

    def list_by_village(self, village: str) -> List[Character]:
        wanted = str(village or "").strip().lower()
        return [row for row in self.list_all() if row.current_village.strip().lower() == wanted]


class RecordStore(ABC):
    @abstractmethod
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
        """Insert a record; with ``unique_key`` the insert is conditional.

        Expired records holding the same unique key are purged first. If a
        live record still holds it, DuplicateRecordError is raised and nothing
        is written.
        """
        raise NotImplementedError

    # Lookups return stored rows even when past expires_at; callers check expiry.
    @abstractmethod
    def get(self, record_type: str, key: str) -> Optional[ExpiringRecord]:
        raise NotImplementedError

    @abstractmethod
    def find_by_unique_key(self, record_type: str, unique_key: str) -> Optional[ExpiringRecord]:
        raise NotImplementedError

    @abstractmethod
    def list_by_type(self, record_type: str) -> List[ExpiringRecord]:
        raise NotImplementedError

    @abstractmethod
    def delete(self, record_type: str, key: str) -> bool:
        raise NotImplementedError

    @abstractmethod
    def purge_expired(self, now: datetime, record_type: str | None = None) -> List[ExpiringRecord]:
        raise NotImplementedError


class BlightHistoryRepository(ABC):
    @abstractmethod
    def append(self, event: BlightEvent) -> None:
        raise NotImplementedError

    @abstractmethod
    def list_for_character(self, character_id: int, limit: int = 10) -> List[BlightEvent]:
        raise NotImplementedError


class HealerDirectory(ABC):
    @abstractmethod
    def get(self, name: str) -> Optional[Healer]:
        raise NotImplementedError

    @abstractmethod
    def list_all(self) -> List[Healer]:
        raise NotImplementedError

    def list_for_village(self, village: str) -> List[Healer]:
        wanted = str(village or "").strip().lower()
        return [healer for healer in self.list_all() if healer.village.strip().lower() == wanted]


# persist(character, *, expected_version, delete_records=(), history=()) -> Character
# Saves the character with a version check, deletes (record_type, key) pairs and
# appends history rows as one unit; nothing is kept when any step raises.
AtomicPersistor = Callable[..., Character]
