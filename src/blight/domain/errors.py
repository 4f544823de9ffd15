from __future__ import annotations

import logging


_logger = logging.getLogger(__name__)


class BlightError(RuntimeError):
    pass


class DuplicateRecordError(BlightError):
    def __init__(self, record_type: str, unique_key: str) -> None:
        super().__init__(f"A live {record_type} record already holds {unique_key!r}")
        self.record_type = record_type
        self.unique_key = unique_key


class StaleCharacterError(BlightError):
    def __init__(self, character_id: int, expected_version: int) -> None:
        super().__init__(f"Character {character_id} changed since version {expected_version}")
        self.character_id = character_id
        self.expected_version = expected_version


class CharacterBusyError(BlightError):
    pass


class ExternalDependencyError(BlightError):
    """Raised by gateway adapters when an inventory, ledger or notifier call fails."""

    def __init__(self, dependency: str, message: str) -> None:
        super().__init__(f"{dependency}: {message}")
        self.dependency = dependency


class InvariantViolation(BlightError):
    pass


def report_invariant_violation(subject: str, problems: list[str]) -> InvariantViolation:
    error = InvariantViolation(f"{subject}: {'; '.join(problems)}")
    _logger.error(
        "Blight invariant violated",
        extra={"subject": subject, "problems": list(problems)},
    )
    return error
