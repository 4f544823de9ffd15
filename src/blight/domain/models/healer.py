from __future__ import annotations

import random
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Sequence

from blight.domain.models.healing import HealingRequirement


class HealerCategory(str, Enum):
    SAGE = "Sage"
    ORACLE = "Oracle"
    DRAGON = "Dragon"

    @classmethod
    def normalize(cls, value: object) -> "HealerCategory":
        raw = str(getattr(value, "value", value) or "").strip().lower()
        for member in cls:
            if member.value.lower() == raw:
                return member
        raise ValueError(f"Unknown healer category: {value!r}")


class Healer(ABC):
    name: str
    village: str
    category: HealerCategory

    @abstractmethod
    def healing_options(self, character_name: str) -> Sequence[HealingRequirement]:
        raise NotImplementedError

    @abstractmethod
    def narrate_before(self, character_name: str) -> str:
        raise NotImplementedError

    @abstractmethod
    def narrate_after(self, character_name: str) -> str:
        raise NotImplementedError

    def generate_requirement(self, character_name: str, rng: random.Random | None = None) -> HealingRequirement:
        options = list(self.healing_options(character_name))
        if not options:
            raise ValueError(f"Healer {self.name} has no healing options configured")
        chooser = rng if rng is not None else random
        return chooser.choice(options)


@dataclass
class ConfiguredHealer(Healer):
    """Healer whose requirements and narration come from static configuration.

    Text templates may reference ``{character}``, ``{healer}`` and
    ``{village}``.
    """

    name: str
    village: str
    category: HealerCategory
    title: str = ""
    options: tuple[HealingRequirement, ...] = ()
    before_template: str = ""
    after_template: str = ""
    icon_url: str = ""
    extra: dict[str, str] = field(default_factory=dict)

    def _render(self, template: str, character_name: str) -> str:
        return str(template or "").format(
            character=character_name,
            healer=self.name,
            village=self.village,
        )

    def healing_options(self, character_name: str) -> Sequence[HealingRequirement]:
        return tuple(
            HealingRequirement(
                type=option.type,
                description=self._render(option.description, character_name),
                items=option.items,
            )
            for option in self.options
        )

    def narrate_before(self, character_name: str) -> str:
        return self._render(self.before_template, character_name)

    def narrate_after(self, character_name: str) -> str:
        return self._render(self.after_template, character_name)
