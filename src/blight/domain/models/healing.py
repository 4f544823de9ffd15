from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Mapping


class TaskType(str, Enum):
    ITEM = "item"
    ART = "art"
    WRITING = "writing"

    @classmethod
    def normalize(cls, value: object) -> "TaskType":
        raw = str(getattr(value, "value", value) or "").strip().lower()
        for member in cls:
            if member.value == raw:
                return member
        raise ValueError(f"Unknown healing task type: {value!r}")

    @property
    def is_creative(self) -> bool:
        return self in {TaskType.ART, TaskType.WRITING}


class RequestStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    EXPIRED = "expired"


class FulfillmentMethod(str, Enum):
    TOKENS = "tokens"
    ITEM = "item"
    LINK = "link"


@dataclass(frozen=True)
class RequiredItem:
    name: str
    quantity: int
    emoji: str = ""

    def matches(self, item_name: str, quantity: int) -> bool:
        return self.name.strip().lower() == str(item_name or "").strip().lower() and int(self.quantity) == int(quantity)

    def label(self) -> str:
        prefix = f"{self.emoji} " if self.emoji else ""
        return f"{prefix}{self.name} x{self.quantity}"


@dataclass(frozen=True)
class HealingRequirement:
    type: TaskType
    description: str
    items: tuple[RequiredItem, ...] = ()


@dataclass
class HealingRequest:
    submission_id: str
    owner_user_id: str
    character_id: int
    character_name: str
    healer_name: str
    task_type: TaskType
    task_description: str
    stage_at_creation: int
    created_at: datetime
    expires_at: datetime
    items: tuple[RequiredItem, ...] = ()
    status: RequestStatus = RequestStatus.PENDING
    metadata: dict[str, Any] = field(default_factory=dict)

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at

    def find_item(self, item_name: str, quantity: int) -> RequiredItem | None:
        for item in self.items:
            if item.matches(item_name, quantity):
                return item
        return None

    def to_record_data(self) -> dict[str, Any]:
        return {
            "submission_id": self.submission_id,
            "owner_user_id": self.owner_user_id,
            "character_id": int(self.character_id),
            "character_name": self.character_name,
            "healer_name": self.healer_name,
            "task_type": self.task_type.value,
            "task_description": self.task_description,
            "stage_at_creation": int(self.stage_at_creation),
            "status": self.status.value,
            "created_at": self.created_at.isoformat(),
            "expires_at": self.expires_at.isoformat(),
            "items": [
                {"name": item.name, "quantity": int(item.quantity), "emoji": item.emoji}
                for item in self.items
            ],
            "metadata": dict(self.metadata),
        }

    @classmethod
    def from_record_data(cls, data: Mapping[str, Any]) -> "HealingRequest":
        items = tuple(
            RequiredItem(
                name=str(row.get("name", "")),
                quantity=int(row.get("quantity", 0) or 0),
                emoji=str(row.get("emoji", "") or ""),
            )
            for row in data.get("items", []) or []
            if isinstance(row, Mapping)
        )
        return cls(
            submission_id=str(data["submission_id"]),
            owner_user_id=str(data.get("owner_user_id", "")),
            character_id=int(data.get("character_id", 0) or 0),
            character_name=str(data.get("character_name", "")),
            healer_name=str(data.get("healer_name", "")),
            task_type=TaskType.normalize(data.get("task_type")),
            task_description=str(data.get("task_description", "")),
            stage_at_creation=int(data.get("stage_at_creation", 0) or 0),
            created_at=datetime.fromisoformat(str(data["created_at"])),
            expires_at=datetime.fromisoformat(str(data["expires_at"])),
            items=items,
            status=RequestStatus(str(data.get("status", RequestStatus.PENDING.value))),
            metadata=dict(data.get("metadata", {}) or {}),
        )


def pending_request_unique_key(character_name: str) -> str:
    return f"pending:{str(character_name or '').strip().lower()}"
