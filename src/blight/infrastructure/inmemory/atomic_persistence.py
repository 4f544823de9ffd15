from __future__ import annotations

from collections.abc import Callable, Sequence

from blight.domain.models.character import Character
from blight.domain.models.history import BlightEvent
from blight.infrastructure.inmemory.repos import (
    InMemoryBlightHistoryRepository,
    InMemoryCharacterRepository,
    InMemoryRecordStore,
)


def create_inmemory_atomic_persistor(
    character_repo: InMemoryCharacterRepository,
    record_store: InMemoryRecordStore,
    history_repo: InMemoryBlightHistoryRepository,
) -> Callable[..., Character]:
    def _persist(
        character: Character,
        *,
        expected_version: int,
        delete_records: Sequence[tuple[str, str]] = (),
        history: Sequence[BlightEvent] = (),
    ) -> Character:
        previous_character = character_repo.get(int(character.id or 0))
        removed = []
        appended_before = len(getattr(history_repo, "_events", []))
        saved = character_repo.save(character, expected_version=expected_version)
        try:
            for record_type, key in delete_records:
                record = record_store.get(record_type, key)
                if record is not None and record_store.delete(record_type, key):
                    removed.append(record)
            for event in history:
                history_repo.append(event)
        except Exception:
            if previous_character is not None:
                character_repo.restore(previous_character)
            for record in removed:
                record_store.restore(record)
            appended = [
                event.id
                for event in getattr(history_repo, "_events", [])[appended_before:]
                if event.id is not None
            ]
            history_repo.remove(appended)
            raise
        return saved

    return _persist
