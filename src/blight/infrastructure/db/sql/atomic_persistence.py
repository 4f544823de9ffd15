from __future__ import annotations

from collections.abc import Sequence

from blight.domain.models.character import Character
from blight.domain.models.history import BlightEvent
from .connection import SessionLocal
from .repos import delete_record, insert_history, update_character_versioned


def save_character_and_records_atomic(
    character: Character,
    *,
    expected_version: int,
    delete_records: Sequence[tuple[str, str]] = (),
    history: Sequence[BlightEvent] = (),
) -> Character:
    """Versioned character save, record deletions and history rows in one DB transaction."""
    with SessionLocal.begin() as session:
        saved = update_character_versioned(session, character, expected_version)
        for record_type, key in delete_records:
            delete_record(session, record_type, key)
        for event in history:
            insert_history(session, event)
    return saved
