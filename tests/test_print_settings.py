from __future__ import annotations

import json
import unittest
from dataclasses import replace

from src.print_columns import PATIENT_KEY, SYSTEM_COLUMN_KEYS
from src.print_settings import (
    add_custom_combination,
    apply_preset,
    apply_template,
    default_print_settings,
    delete_custom_combination,
    deselect_all_columns,
    export_preset_json,
    get_template,
    import_preset_json,
    load_settings_json,
    merge_saved_settings,
    merge_template_customizations,
    save_preset,
    settings_to_dict,
    toggle_column,
    toggle_combination,
    update_custom_combination,
)


def _enabled(settings) -> set[str]:
    return {column.key for column in settings.columns if column.enabled}


class MergeSavedSettingsTests(unittest.TestCase):
    def test_single_stored_value_changes_only_that_field(self) -> None:
        defaults = default_print_settings()
        self.assertEqual(merge_saved_settings({"printFontSize": 12}), replace(defaults, print_font_size=12))
        self.assertEqual(merge_saved_settings({"print_font_size": 12}), replace(defaults, print_font_size=12))

    def test_invalid_values_keep_defaults(self) -> None:
        with self.assertLogs("src.print_settings", level="WARNING"):
            settings = merge_saved_settings({"printOrientation": "sideways", "printFontSize": 99, "unknown": 1})
        self.assertEqual(settings, default_print_settings())

    def test_columns_contribute_enabled_flag_only(self) -> None:
        settings = merge_saved_settings(
            {
                "columns": [
                    {"key": "notes", "enabled": True},
                    {"key": "labs", "enabled": False, "label": "Whatever"},
                    {"key": "clinicalSummary", "enabled": False},
                    {"key": "patient", "enabled": False},
                ]
            }
        )
        enabled = _enabled(settings)
        self.assertIn("notes", enabled)
        self.assertNotIn("labs", enabled)
        self.assertNotIn("clinical_summary", enabled)
        self.assertIn(PATIENT_KEY, enabled)
        labs = next(column for column in settings.columns if column.key == "labs")
        self.assertEqual(labs.label, "Labs")

    def test_combined_columns_filtered_to_known_keys(self) -> None:
        settings = merge_saved_settings({"combinedColumns": ["summaryEvents", "nope", "summary_events"]})
        self.assertEqual(settings.combined_columns, ("summary_events",))

    def test_stored_custom_combinations_are_validated(self) -> None:
        settings = merge_saved_settings(
            {
                "customCombinations": [
                    {"key": "custom-1", "label": "Pair", "columns": ["imaging", "labs"]},
                    {"key": "custom-2", "label": "Bad", "columns": ["patient", "labs"]},
                ],
                "combinedColumns": ["custom-1", "custom-2"],
            }
        )
        self.assertEqual([c.key for c in settings.custom_combinations], ["custom-1"])
        self.assertEqual(settings.combined_columns, ("custom-1",))

    def test_widths_merge_over_defaults(self) -> None:
        settings = merge_saved_settings({"columnWidths": {"labs": 180, "imaging": -3, "todos": "wide"}})
        self.assertEqual(settings.column_widths, {"labs": 180.0})

    def test_invalid_json_falls_back_to_defaults(self) -> None:
        with self.assertLogs("src.print_settings", level="WARNING"):
            self.assertEqual(load_settings_json("{not json"), default_print_settings())
        with self.assertLogs("src.print_settings", level="WARNING"):
            self.assertEqual(load_settings_json("[1, 2]"), default_print_settings())
        self.assertEqual(load_settings_json(""), default_print_settings())

    def test_stored_dict_round_trips(self) -> None:
        settings = replace(default_print_settings(), print_orientation="landscape", combined_columns=("imaging_labs",))
        self.assertEqual(merge_saved_settings(settings_to_dict(settings)), settings)


class ColumnToggleTests(unittest.TestCase):
    def test_patient_column_cannot_be_toggled(self) -> None:
        settings = default_print_settings()
        self.assertIs(toggle_column(settings, PATIENT_KEY), settings)

    def test_toggle_flips_one_column(self) -> None:
        settings = toggle_column(default_print_settings(), "labs")
        self.assertFalse(settings.column_enabled("labs"))
        self.assertTrue(toggle_column(settings, "labs").column_enabled("labs"))

    def test_deselect_all_keeps_patient(self) -> None:
        self.assertEqual(_enabled(deselect_all_columns(default_print_settings())), {PATIENT_KEY})

    def test_toggle_combination(self) -> None:
        settings = default_print_settings()
        self.assertIs(toggle_combination(settings, "nope"), settings)
        active = toggle_combination(settings, "imaging_labs")
        self.assertEqual(active.combined_columns, ("imaging_labs",))
        self.assertEqual(toggle_combination(active, "imaging_labs").combined_columns, ())


class CustomCombinationTests(unittest.TestCase):
    def test_add_generates_timestamp_key(self) -> None:
        settings, combination = add_custom_combination(
            default_print_settings(), "Pair", ["imaging", "labs"], now=1700000000.0
        )
        self.assertEqual(combination.key, "custom-1700000000000")
        self.assertTrue(combination.is_custom)
        self.assertEqual(settings.custom_combinations, (combination,))

    def test_invalid_members_rejected(self) -> None:
        settings = default_print_settings()
        with self.assertRaises(ValueError):
            add_custom_combination(settings, "Solo", ["labs"])
        with self.assertRaises(ValueError):
            add_custom_combination(settings, "With patient", ["patient", "labs"])
        with self.assertRaises(ValueError):
            add_custom_combination(settings, "Unknown", ["labs", "vitals"])
        with self.assertRaises(ValueError):
            add_custom_combination(settings, "  ", ["imaging", "labs"])

    def test_update_and_delete(self) -> None:
        settings, combination = add_custom_combination(default_print_settings(), "Pair", ["imaging", "labs"], now=1.0)
        settings = update_custom_combination(settings, combination.key, label="Images and labs")
        self.assertEqual(settings.custom_combinations[0].label, "Images and labs")

        settings = toggle_combination(settings, combination.key)
        settings = replace(settings, combined_column_widths={combination.key: 300})
        settings = delete_custom_combination(settings, combination.key)
        self.assertEqual(settings.custom_combinations, ())
        self.assertEqual(settings.combined_columns, ())
        self.assertNotIn(combination.key, settings.combined_column_widths)


class PresetTests(unittest.TestCase):
    def test_blank_name_rejected(self) -> None:
        with self.assertRaises(ValueError):
            save_preset("   ", default_print_settings())

    def test_export_then_import(self) -> None:
        preset = save_preset("Night shift", replace(default_print_settings(), print_font_size=11), now=5.0)
        imported = import_preset_json(export_preset_json(preset))
        self.assertEqual(imported.name, "Night shift")
        self.assertEqual(imported.id, "preset-5000")
        self.assertEqual(imported.settings.print_font_size, 11)

    def test_import_rejects_bad_payloads(self) -> None:
        with self.assertRaises(ValueError):
            import_preset_json("{oops")
        with self.assertRaises(ValueError):
            import_preset_json(json.dumps({"settings": {"columns": [{"key": "labs", "enabled": True}]}}))
        with self.assertRaises(ValueError):
            import_preset_json(json.dumps({"name": "Empty", "settings": {}}))

    def test_apply_preset_keeps_unknown_custom_combinations(self) -> None:
        current, combination = add_custom_combination(default_print_settings(), "Pair", ["imaging", "labs"], now=2.0)
        preset = save_preset("Large", replace(default_print_settings(), print_font_size=14))
        applied = apply_preset(current, preset)
        self.assertEqual(applied.print_font_size, 14)
        self.assertIn(combination, applied.custom_combinations)


class TemplateTests(unittest.TestCase):
    def test_compact_template(self) -> None:
        settings = apply_template(default_print_settings(), "compact")
        self.assertEqual(_enabled(settings), {PATIENT_KEY, "clinical_summary", "labs", "todos"})
        self.assertEqual(settings.print_orientation, "landscape")
        self.assertEqual(settings.active_tab, "list")
        self.assertTrue(settings.compact_mode)
        self.assertEqual(settings.print_font_size, 8)

    def test_systems_section_enables_every_system(self) -> None:
        settings = apply_template(deselect_all_columns(default_print_settings()), "standard")
        enabled = _enabled(settings)
        self.assertTrue(set(SYSTEM_COLUMN_KEYS) <= enabled)
        self.assertNotIn("notes", enabled)
        self.assertEqual(settings.active_tab, "cards")

    def test_detailed_template_prints_one_patient_per_page(self) -> None:
        self.assertTrue(apply_template(default_print_settings(), "detailed").one_patient_per_page)

    def test_unknown_template_is_noop(self) -> None:
        settings = default_print_settings()
        self.assertIs(apply_template(settings, "missing"), settings)

    def test_customizations_merge_layout(self) -> None:
        template = merge_template_customizations(get_template("brief"), {"layout": {"orientation": "portrait"}})
        self.assertEqual(template.layout["orientation"], "portrait")
        self.assertEqual(template.layout["margins"], "narrow")
        self.assertEqual(template.name, "Quick Brief")


if __name__ == "__main__":
    unittest.main()
