from __future__ import annotations

import json
import unittest

from src.layout_designer import (
    MAX_HISTORY_SIZE,
    LayoutDesigner,
    apply_layout_to_settings,
    get_built_in_layout,
    layout_from_dict,
)
from src.print_columns import PATIENT_KEY, SYSTEM_COLUMN_KEYS
from src.print_settings import default_print_settings


class HistoryTests(unittest.TestCase):
    def test_undo_and_redo(self) -> None:
        designer = LayoutDesigner()
        original = designer.current.name
        designer.update_layout(name="Edited")
        self.assertTrue(designer.can_undo)

        self.assertTrue(designer.undo())
        self.assertEqual(designer.current.name, original)
        self.assertTrue(designer.can_redo)

        self.assertTrue(designer.redo())
        self.assertEqual(designer.current.name, "Edited")

    def test_explicit_updated_at_is_kept(self) -> None:
        designer = LayoutDesigner()
        original = designer.current.updated_at
        designer.update_layout(name="Imported", updated_at="2026-01-01T00:00:00+00:00")
        self.assertEqual(designer.current.name, "Imported")
        self.assertEqual(designer.current.updated_at, "2026-01-01T00:00:00+00:00")

        self.assertTrue(designer.undo())
        self.assertEqual(designer.current.updated_at, original)

    def test_new_edit_clears_redo(self) -> None:
        designer = LayoutDesigner()
        designer.update_layout(name="One")
        designer.undo()
        designer.update_layout(name="Two")
        self.assertFalse(designer.can_redo)
        self.assertFalse(designer.redo())

    def test_empty_history(self) -> None:
        designer = LayoutDesigner()
        before = designer.current
        self.assertFalse(designer.undo())
        self.assertIs(designer.current, before)

    def test_history_is_capped_and_drops_oldest(self) -> None:
        designer = LayoutDesigner()
        for index in range(60):
            designer.update_layout(name=f"v{index}")
        self.assertEqual(designer.undo_depth, MAX_HISTORY_SIZE)
        for _ in range(MAX_HISTORY_SIZE):
            self.assertTrue(designer.undo())
        self.assertFalse(designer.undo())
        self.assertEqual(designer.current.name, "v9")
        self.assertEqual(designer.redo_depth, MAX_HISTORY_SIZE)


class LayoutSelectionTests(unittest.TestCase):
    def test_unknown_layout_is_ignored(self) -> None:
        designer = LayoutDesigner()
        self.assertFalse(designer.select_layout("missing"))
        self.assertEqual(designer.undo_depth, 0)
        self.assertEqual(designer.current.id, "classic-table")

    def test_select_records_history_and_recents(self) -> None:
        designer = LayoutDesigner()
        self.assertTrue(designer.select_layout("icu-rounds"))
        self.assertEqual(designer.current.id, "icu-rounds")
        self.assertEqual(designer.undo_depth, 1)
        self.assertEqual(designer.recent_layout_ids[0], "icu-rounds")
        self.assertFalse(designer.has_unsaved_changes())

    def test_recents_are_capped(self) -> None:
        designer = LayoutDesigner()
        for layout_id in ("classic-table", "patient-cards", "compact-grid", "icu-rounds", "shift-handoff", "condensed-list"):
            designer.select_layout(layout_id)
        self.assertEqual(len(designer.recent_layouts()), 5)
        self.assertEqual(designer.recent_layout_ids[0], "condensed-list")
        self.assertNotIn("classic-table", designer.recent_layout_ids)


class SectionEditTests(unittest.TestCase):
    def test_toggle_and_update(self) -> None:
        designer = LayoutDesigner()
        self.assertTrue(designer.toggle_section("labs"))
        labs = next(section for section in designer.current.sections if section.id == "labs")
        self.assertFalse(labs.enabled)
        self.assertFalse(designer.toggle_section("missing"))
        self.assertTrue(designer.update_section("labs", label="Key Labs"))
        labs = next(section for section in designer.current.sections if section.id == "labs")
        self.assertEqual(labs.label, "Key Labs")

    def test_reorder_renumbers(self) -> None:
        designer = LayoutDesigner()
        self.assertTrue(designer.reorder_sections(0, 2))
        ordered = designer.current.ordered_sections()
        self.assertEqual([section.id for section in ordered[:3]], ["clinical_summary", "interval_events", PATIENT_KEY])
        self.assertEqual([section.order for section in ordered], list(range(len(ordered))))
        self.assertFalse(designer.reorder_sections(0, 99))

    def test_add_and_remove(self) -> None:
        designer = LayoutDesigner()
        count = len(designer.current.sections)
        added = designer.add_section("labs", "More labs")
        self.assertEqual(added.id, "labs-2")
        self.assertEqual(added.order, count)
        self.assertTrue(designer.remove_section("labs-2"))
        self.assertEqual(len(designer.current.sections), count)
        self.assertFalse(designer.remove_section("labs-2"))

    def test_style_and_view_validation(self) -> None:
        designer = LayoutDesigner()
        designer.update_global_styles(font_size=12)
        self.assertEqual(designer.current.global_styles.font_size, 12)
        with self.assertRaises(ValueError):
            designer.update_global_styles(glow=True)
        with self.assertRaises(ValueError):
            designer.set_view_type("carousel")
        designer.update_view_config("grid", columns=3)
        self.assertEqual(designer.current.view_configs["grid"]["columns"], 3)
        self.assertEqual(designer.current.view_configs["grid"]["rows"], 2)


class SavedLayoutTests(unittest.TestCase):
    def test_save_tracks_unsaved_changes(self) -> None:
        designer = LayoutDesigner()
        with self.assertRaises(ValueError):
            designer.save_layout("  ")
        saved = designer.save_layout("My rounds")
        self.assertTrue(saved.id.startswith("custom-"))
        self.assertFalse(saved.is_built_in)
        self.assertFalse(designer.has_unsaved_changes())
        designer.update_global_styles(font_size=11)
        self.assertTrue(designer.has_unsaved_changes())
        self.assertTrue(designer.update_saved_layout())
        self.assertFalse(designer.has_unsaved_changes())
        self.assertEqual(designer.saved_layouts[0].global_styles.font_size, 11)

    def test_deleting_current_layout_falls_back_to_default(self) -> None:
        designer = LayoutDesigner()
        designer.select_layout("icu-rounds")
        saved = designer.save_layout("Mine")
        self.assertTrue(designer.delete_saved_layout(saved.id))
        self.assertEqual(designer.current.id, "classic-table")
        self.assertFalse(designer.delete_saved_layout(saved.id))

    def test_duplicate_export_and_import(self) -> None:
        designer = LayoutDesigner()
        duplicate = designer.duplicate_layout("icu-rounds")
        self.assertEqual(duplicate.name, "ICU Rounds (Copy)")

        imported = designer.import_layout_json(designer.export_layout_json("icu-rounds"))
        self.assertEqual(imported.name, "ICU Rounds (Imported)")
        self.assertTrue(imported.id.startswith("imported-"))
        self.assertEqual(imported.sections, get_built_in_layout("icu-rounds").sections)
        self.assertEqual(len(designer.saved_layouts), 2)

    def test_import_rejects_invalid_files(self) -> None:
        designer = LayoutDesigner()
        with self.assertRaises(ValueError):
            designer.import_layout_json("not json")
        with self.assertRaises(ValueError):
            designer.import_layout_json(json.dumps({"name": "No sections"}))
        with self.assertRaises(ValueError):
            designer.import_layout_json(json.dumps({"sections": []}))
        self.assertEqual(designer.saved_layouts, [])

    def test_camel_case_layout_payload(self) -> None:
        layout = layout_from_dict(
            {
                "name": "Mine",
                "viewType": "cards",
                "sections": [
                    {"id": "clinicalSummary", "type": "clinicalSummary", "label": "Summary", "enabled": True, "order": 0}
                ],
                "globalStyles": {"fontSize": 12, "unknownKey": 1},
                "pageSettings": {"onePatientPerPage": True},
            }
        )
        self.assertEqual(layout.view_type, "cards")
        self.assertEqual(layout.sections[0].type, "clinical_summary")
        self.assertEqual(layout.global_styles.font_size, 12)
        self.assertTrue(layout.page_settings.one_patient_per_page)


class ApplyLayoutTests(unittest.TestCase):
    def test_icu_rounds_layout(self) -> None:
        settings = apply_layout_to_settings(get_built_in_layout("icu-rounds"), default_print_settings())
        self.assertFalse(settings.column_enabled("imaging"))
        self.assertFalse(settings.column_enabled("labs"))
        self.assertTrue(all(settings.column_enabled(key) for key in SYSTEM_COLUMN_KEYS))
        self.assertEqual(settings.column_widths["clinical_summary"], 160.0)
        self.assertEqual(settings.column_widths["systems.neuro"], 26.0)
        self.assertEqual(settings.print_orientation, "landscape")
        self.assertEqual(settings.header_style, "detailed")
        self.assertEqual(settings.active_tab, "table")

    def test_compact_grid_layout(self) -> None:
        settings = apply_layout_to_settings(get_built_in_layout("compact-grid"), default_print_settings())
        self.assertTrue(settings.compact_mode)
        self.assertEqual(settings.active_tab, "cards")
        self.assertEqual(settings.print_font_size, 8)
        self.assertEqual(settings.margins, "narrow")
        self.assertTrue(settings.column_enabled(PATIENT_KEY))


if __name__ == "__main__":
    unittest.main()
