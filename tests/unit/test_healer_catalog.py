import json
import random
import sys
import tempfile
from pathlib import Path
import unittest

sys.path.insert(0, str(Path(__file__).resolve().parents[2] / "src"))

from blight.domain.models.healer import HealerCategory
from blight.domain.models.healing import TaskType
from blight.infrastructure.healer_catalog import default_healers_path, load_healer_directory


class HealerCatalogTests(unittest.TestCase):
    def test_default_catalog_covers_each_village_and_category(self) -> None:
        directory = load_healer_directory()
        healers = directory.list_all()

        self.assertTrue(default_healers_path().exists())
        self.assertEqual(10, len(healers))
        self.assertEqual(3, sum(1 for healer in healers if healer.category == HealerCategory.DRAGON))
        for village in ("Rudania", "Inariko", "Vhintl"):
            categories = {healer.category for healer in directory.list_for_village(village)}
            self.assertIn(HealerCategory.DRAGON, categories, village)

    def test_lookup_is_case_insensitive(self) -> None:
        directory = load_healer_directory()

        self.assertEqual("Nihme", directory.get("  nihme ").name)
        self.assertIsNone(directory.get("Ganon"))

    def test_requirements_render_character_name(self) -> None:
        healer = load_healer_directory().get("Aemu")

        for option in healer.healing_options("Rin"):
            self.assertNotIn("{character}", option.description)
            if option.type == TaskType.ITEM:
                self.assertIn(("Amber", 5), [(item.name, item.quantity) for item in option.items])
        self.assertIn("Rin", healer.narrate_before("Rin"))
        requirement = healer.generate_requirement("Rin", rng=random.Random(4))
        self.assertIn(requirement.type, {TaskType.ART, TaskType.WRITING, TaskType.ITEM})

    def test_dragons_only_accept_creative_work(self) -> None:
        for healer in load_healer_directory().list_all():
            if healer.category != HealerCategory.DRAGON:
                continue
            self.assertTrue(all(option.type.is_creative for option in healer.healing_options("Rin")), healer.name)

    def test_custom_catalog_file(self) -> None:
        payload = {
            "healers": [
                {
                    "name": "Ilse",
                    "village": "Rudania",
                    "category": "sage",
                    "options": [{"type": "writing", "description": "Tell {character}'s story."}],
                    "portrait": "ilse.png",
                }
            ]
        }
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "healers.json"
            path.write_text(json.dumps(payload), encoding="utf-8")
            directory = load_healer_directory(path)

        healer = directory.get("ilse")
        self.assertEqual(HealerCategory.SAGE, healer.category)
        self.assertEqual("ilse.png", healer.extra["portrait"])

    def test_item_option_without_items_is_rejected(self) -> None:
        payload = [{"name": "Bad", "village": "X", "category": "Sage", "options": [{"type": "item", "description": ""}]}]
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "healers.json"
            path.write_text(json.dumps(payload), encoding="utf-8")
            with self.assertRaises(ValueError):
                load_healer_directory(path)


if __name__ == "__main__":
    unittest.main()
