from __future__ import annotations

import logging
import threading
from typing import Any, Dict, List, Mapping

from blight.domain.errors import ExternalDependencyError
from blight.domain.gateways import InventoryGateway, LedgerGateway, Notifier


logger = logging.getLogger(__name__)


class InMemoryInventory(InventoryGateway):
    """Inventory kept as stacked rows per character; several rows may share an item name."""

    def __init__(self, stacks: Mapping[int, List[tuple[str, int]]] | None = None) -> None:
        self._lock = threading.Lock()
        self._stacks: Dict[int, List[List[Any]]] = {}
        for character_id, rows in (stacks or {}).items():
            for name, quantity in rows:
                self.add(int(character_id), name, quantity)

    def add(self, character_id: int, item_name: str, quantity: int) -> None:
        with self._lock:
            self._stacks.setdefault(int(character_id), []).append([str(item_name), int(quantity)])

    def sum_quantity(self, character_id: int, item_name: str) -> int:
        wanted = str(item_name or "").strip().lower()
        with self._lock:
            return sum(
                int(quantity)
                for name, quantity in self._stacks.get(int(character_id), [])
                if str(name).strip().lower() == wanted
            )

    def deduct(self, character_id: int, item_name: str, quantity: int) -> None:
        wanted = str(item_name or "").strip().lower()
        remaining = int(quantity)
        with self._lock:
            rows = self._stacks.get(int(character_id), [])
            held = sum(int(row[1]) for row in rows if str(row[0]).strip().lower() == wanted)
            if held < remaining:
                raise ExternalDependencyError("inventory", f"cannot remove {quantity} {item_name}; only {held} held")
            for row in rows:
                if remaining <= 0:
                    break
                if str(row[0]).strip().lower() != wanted:
                    continue
                taken = min(int(row[1]), remaining)
                row[1] = int(row[1]) - taken
                remaining -= taken
            self._stacks[int(character_id)] = [row for row in rows if int(row[1]) > 0]

    def wipe_all(self, character_id: int) -> int:
        with self._lock:
            return len(self._stacks.pop(int(character_id), []))


class InMemoryLedger(LedgerGateway):
    def __init__(self, balances: Mapping[str, int] | None = None, trackers: Mapping[str, str] | None = None) -> None:
        self._lock = threading.Lock()
        self._balances: Dict[str, int] = {str(k): int(v) for k, v in (balances or {}).items()}
        self._trackers: Dict[str, str] = {str(k): str(v) for k, v in (trackers or {}).items()}
        self.audit_entries: List[dict[str, Any]] = []

    def get_balance(self, user_id: str) -> int:
        with self._lock:
            return int(self._balances.get(str(user_id), 0))

    def get_tracker(self, user_id: str) -> str | None:
        with self._lock:
            return self._trackers.get(str(user_id)) or None

    def zero_balance(self, user_id: str) -> int:
        with self._lock:
            forfeited = int(self._balances.get(str(user_id), 0))
            self._balances[str(user_id)] = 0
            return forfeited

    def record_audit(self, entry: Mapping[str, Any]) -> None:
        with self._lock:
            self.audit_entries.append(dict(entry))


class RecordingNotifier(Notifier):
    """Keeps every delivered message; used when no webhook is configured."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.direct_messages: List[tuple[str, str]] = []
        self.broadcasts: List[tuple[str, str]] = []

    def dm_user(self, user_id: str, message: str) -> bool:
        with self._lock:
            self.direct_messages.append((str(user_id), message))
        logger.info("Blight DM", extra={"user_id": user_id, "blight_message": message})
        return True

    def broadcast(self, channel_id: str, message: str) -> bool:
        with self._lock:
            self.broadcasts.append((str(channel_id), message))
        logger.info("Blight broadcast", extra={"channel_id": channel_id, "blight_message": message})
        return True
