from __future__ import annotations

import json
import tempfile
import unittest
from dataclasses import replace
from pathlib import Path

from src.layout_designer import LayoutDesigner
from src.print_settings import default_print_settings, save_preset
from src.settings_store import PrintSettingsStore, StoredPrintState


class PrintSettingsStoreTests(unittest.TestCase):
    def test_missing_file_gives_defaults(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            state = PrintSettingsStore(Path(temp_dir) / "print_settings.json").load()
        self.assertEqual(state.settings, default_print_settings())
        self.assertEqual(state.presets, [])
        self.assertIsNone(state.current_layout_id)

    def test_save_and_load(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            store = PrintSettingsStore(Path(temp_dir) / "nested" / "print_settings.json")
            settings = replace(default_print_settings(), print_font_size=12, combined_columns=("imaging_labs",))
            designer = LayoutDesigner()
            designer.select_layout("icu-rounds")
            saved = designer.save_layout("Unit 4 rounds")

            state = StoredPrintState(settings=settings, presets=[save_preset("Large", settings, now=3.0)])
            state.capture_designer(designer)
            store.save(state)
            loaded = store.load()

        self.assertEqual(loaded.settings, settings)
        self.assertEqual([preset.name for preset in loaded.presets], ["Large"])
        self.assertEqual(loaded.presets[0].settings.print_font_size, 12)
        self.assertEqual([layout.name for layout in loaded.saved_layouts], ["Unit 4 rounds"])
        self.assertEqual(loaded.current_layout_id, saved.id)
        self.assertEqual(loaded.recent_layout_ids[0], saved.id)

        restored = loaded.designer()
        self.assertEqual(restored.current.id, saved.id)
        self.assertEqual(restored.current.sections, saved.sections)

    def test_corrupt_file_gives_defaults(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            path = Path(temp_dir) / "print_settings.json"
            path.write_text("{broken", encoding="utf-8")
            with self.assertLogs("src.settings_store", level="WARNING"):
                state = PrintSettingsStore(path).load()
        self.assertEqual(state.settings, default_print_settings())

    def test_bad_entries_are_skipped(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            path = Path(temp_dir) / "print_settings.json"
            payload = {
                "print_settings": {"printFontSize": 11},
                "presets": [{"name": ""}],
                "saved_layouts": [{"name": "No sections"}],
            }
            path.write_text(json.dumps(payload), encoding="utf-8")
            with self.assertLogs("src.settings_store", level="WARNING"):
                state = PrintSettingsStore(path).load()
        self.assertEqual(state.settings.print_font_size, 11)
        self.assertEqual(state.presets, [])
        self.assertEqual(state.saved_layouts, [])


if __name__ == "__main__":
    unittest.main()
