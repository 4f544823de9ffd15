from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Mapping


class InventoryGateway(ABC):
    @abstractmethod
    def sum_quantity(self, character_id: int, item_name: str) -> int:
        raise NotImplementedError

    @abstractmethod
    def deduct(self, character_id: int, item_name: str, quantity: int) -> None:
        """Remove ``quantity`` of ``item_name`` or raise ExternalDependencyError without removing anything."""
        raise NotImplementedError

    @abstractmethod
    def wipe_all(self, character_id: int) -> int:
        raise NotImplementedError


class LedgerGateway(ABC):
    @abstractmethod
    def get_balance(self, user_id: str) -> int:
        raise NotImplementedError

    @abstractmethod
    def get_tracker(self, user_id: str) -> str | None:
        raise NotImplementedError

    @abstractmethod
    def zero_balance(self, user_id: str) -> int:
        """Set the balance to zero and return the amount forfeited."""
        raise NotImplementedError

    @abstractmethod
    def record_audit(self, entry: Mapping[str, Any]) -> None:
        raise NotImplementedError


class Notifier(ABC):
    @abstractmethod
    def dm_user(self, user_id: str, message: str) -> bool:
        raise NotImplementedError

    @abstractmethod
    def broadcast(self, channel_id: str, message: str) -> bool:
        raise NotImplementedError
