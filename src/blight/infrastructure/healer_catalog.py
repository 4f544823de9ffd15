from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, List, Optional

from blight.domain.models.healer import ConfiguredHealer, Healer, HealerCategory
from blight.domain.models.healing import HealingRequirement, RequiredItem, TaskType
from blight.domain.repositories import HealerDirectory


logger = logging.getLogger(__name__)


def default_healers_path() -> Path:
    return Path(__file__).resolve().parent / "data" / "healers.json"


def _parse_option(raw: dict[str, Any]) -> HealingRequirement:
    task_type = TaskType.normalize(raw.get("type"))
    items = tuple(
        RequiredItem(
            name=str(row.get("name", "")).strip(),
            quantity=int(row.get("quantity", 0) or 0),
            emoji=str(row.get("emoji", "") or ""),
        )
        for row in raw.get("items", []) or []
        if isinstance(row, dict) and str(row.get("name", "")).strip()
    )
    if task_type == TaskType.ITEM and not items:
        raise ValueError("Item healing options need at least one accepted item")
    return HealingRequirement(type=task_type, description=str(raw.get("description", "")), items=items)


def _parse_healer(raw: dict[str, Any]) -> ConfiguredHealer:
    name = str(raw.get("name", "")).strip()
    if not name:
        raise ValueError("Healer entry without a name")
    known = {"name", "village", "category", "title", "before", "after", "options", "icon_url"}
    return ConfiguredHealer(
        name=name,
        village=str(raw.get("village", "")).strip(),
        category=HealerCategory.normalize(raw.get("category")),
        title=str(raw.get("title", "") or ""),
        options=tuple(_parse_option(option) for option in raw.get("options", []) or []),
        before_template=str(raw.get("before", "") or ""),
        after_template=str(raw.get("after", "") or ""),
        icon_url=str(raw.get("icon_url", "") or ""),
        extra={str(key): str(value) for key, value in raw.items() if key not in known},
    )


class StaticHealerDirectory(HealerDirectory):
    def __init__(self, healers: List[Healer]) -> None:
        self._healers = {healer.name.strip().lower(): healer for healer in healers}

    def get(self, name: str) -> Optional[Healer]:
        return self._healers.get(str(name or "").strip().lower())

    def list_all(self) -> List[Healer]:
        return sorted(self._healers.values(), key=lambda healer: healer.name)


def load_healer_directory(path: str | Path | None = None) -> StaticHealerDirectory:
    source = Path(path) if path else default_healers_path()
    payload = json.loads(source.read_text(encoding="utf-8"))
    rows = payload.get("healers", []) if isinstance(payload, dict) else payload
    healers = [_parse_healer(row) for row in rows if isinstance(row, dict)]
    logger.info("Loaded healer directory", extra={"path": str(source), "count": len(healers)})
    return StaticHealerDirectory(healers)
