from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass, field, fields, replace
from datetime import datetime, timezone
from typing import Any

from src.print_columns import (
    PATIENT_KEY,
    SYSTEM_COLUMN_KEYS,
    column_label,
    default_columns,
    find_combination,
    is_system_key,
    normalize_columns,
    validate_combination_members,
)
from src.print_models import ColumnConfig, CombinedColumn, PrintSettings, snake_key


LOGGER = logging.getLogger(__name__)

ALLOWED_VALUES = {
    "print_orientation": {"portrait", "landscape"},
    "margins": {"narrow", "normal", "wide"},
    "header_style": {"minimal", "standard", "detailed"},
    "border_style": {"none", "light", "medium", "heavy"},
    "active_tab": {"table", "cards", "list"},
}
INT_RANGES = {
    "print_font_size": (5, 24),
    "systems_review_column_count": (1, 4),
}
BOOL_FIELDS = {
    "show_page_numbers",
    "show_timestamp",
    "alternate_row_colors",
    "compact_mode",
    "one_patient_per_page",
    "auto_fit_font_size",
}


def default_print_settings() -> PrintSettings:
    return PrintSettings(columns=default_columns())


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


def _widths_from(raw: Any) -> dict[str, float]:
    widths: dict[str, float] = {}
    if not isinstance(raw, dict):
        return widths
    for key, value in raw.items():
        if isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0:
            continue
        widths[snake_key(key)] = float(value)
    return widths


def combination_from_dict(raw: Any) -> CombinedColumn | None:
    if not isinstance(raw, dict):
        return None
    data = {snake_key(key): value for key, value in raw.items()}
    key = str(data.get("key", "") or "").strip()
    label = str(data.get("label", "") or "").strip()
    members = data.get("columns")
    if not key or not label or not isinstance(members, (list, tuple)):
        return None
    try:
        validated = validate_combination_members([snake_key(member) for member in members])
    except ValueError as error:
        LOGGER.warning("Dropping stored combination %r: %s", key, error)
        return None
    return CombinedColumn(
        key=key,
        label=label,
        columns=validated,
        is_custom=True,
        created_at=str(data.get("created_at", "") or ""),
    )


def combination_to_dict(combination: CombinedColumn) -> dict[str, Any]:
    return {
        "key": combination.key,
        "label": combination.label,
        "columns": list(combination.columns),
        "is_custom": combination.is_custom,
        "created_at": combination.created_at,
    }


def merge_saved_settings(saved: Any) -> PrintSettings:
    """Defaults with every present, valid stored value laid over them.

    Stored keys may be snake_case or the browser app's camelCase. Saved columns contribute only
    their ``enabled`` flag, matched by key; invalid values keep the default.
    """
    settings = default_print_settings()
    if not isinstance(saved, dict):
        return settings

    data = {snake_key(key): value for key, value in saved.items()}
    changes: dict[str, Any] = {}

    for name, allowed in ALLOWED_VALUES.items():
        if name in data:
            if data[name] in allowed:
                changes[name] = data[name]
            else:
                LOGGER.warning("Ignoring invalid stored %s=%r", name, data[name])

    for name, (low, high) in INT_RANGES.items():
        value = data.get(name)
        if name not in data:
            continue
        if isinstance(value, (int, float)) and not isinstance(value, bool) and low <= value <= high:
            changes[name] = int(value)
        else:
            LOGGER.warning("Ignoring invalid stored %s=%r", name, value)

    for name in BOOL_FIELDS:
        if isinstance(data.get(name), bool):
            changes[name] = data[name]

    family = data.get("print_font_family")
    if isinstance(family, str) and family.strip():
        changes["print_font_family"] = family.strip()

    if isinstance(data.get("columns"), list):
        enabled_by_key = {
            snake_key(item.get("key")): bool(item.get("enabled"))
            for item in data["columns"]
            if isinstance(item, dict) and item.get("key")
        }
        changes["columns"] = normalize_columns(
            ColumnConfig(column.key, column.label, enabled_by_key.get(column.key, column.enabled))
            for column in settings.columns
        )

    custom: list[CombinedColumn] = []
    if isinstance(data.get("custom_combinations"), list):
        for raw in data["custom_combinations"]:
            combination = combination_from_dict(raw)
            if combination is not None:
                custom.append(combination)
        changes["custom_combinations"] = tuple(custom)

    if isinstance(data.get("combined_columns"), list):
        active: list[str] = []
        for raw_key in data["combined_columns"]:
            key = snake_key(raw_key)
            if key not in active and find_combination(key, custom) is not None:
                active.append(key)
        changes["combined_columns"] = tuple(active)

    if "column_widths" in data:
        changes["column_widths"] = {**settings.column_widths, **_widths_from(data["column_widths"])}
    if "combined_column_widths" in data:
        changes["combined_column_widths"] = {
            **settings.combined_column_widths,
            **_widths_from(data["combined_column_widths"]),
        }

    return replace(settings, **changes)


def load_settings_json(text: str | None) -> PrintSettings:
    if not text:
        return default_print_settings()
    try:
        payload = json.loads(text)
    except (TypeError, ValueError) as error:
        LOGGER.warning("Stored print settings are not valid JSON, using defaults: %s", error)
        return default_print_settings()
    if not isinstance(payload, dict):
        LOGGER.warning("Stored print settings are not an object, using defaults.")
        return default_print_settings()
    return merge_saved_settings(payload)


def settings_to_dict(settings: PrintSettings) -> dict[str, Any]:
    out: dict[str, Any] = {}
    for item in fields(PrintSettings):
        value = getattr(settings, item.name)
        if item.name == "columns":
            value = [{"key": column.key, "label": column.label, "enabled": column.enabled} for column in value]
        elif item.name == "custom_combinations":
            value = [combination_to_dict(combination) for combination in value]
        elif item.name == "combined_columns":
            value = list(value)
        elif isinstance(value, dict):
            value = dict(value)
        out[item.name] = value
    return out


def update_settings(settings: PrintSettings, **changes: Any) -> PrintSettings:
    return replace(settings, **changes)


def toggle_column(settings: PrintSettings, key: str) -> PrintSettings:
    if key == PATIENT_KEY:
        return settings
    columns = tuple(
        ColumnConfig(column.key, column.label, not column.enabled) if column.key == key else column
        for column in settings.columns
    )
    return replace(settings, columns=columns)


def select_all_columns(settings: PrintSettings) -> PrintSettings:
    return replace(settings, columns=tuple(ColumnConfig(c.key, c.label, True) for c in settings.columns))


def deselect_all_columns(settings: PrintSettings) -> PrintSettings:
    return replace(
        settings,
        columns=tuple(ColumnConfig(c.key, c.label, c.key == PATIENT_KEY) for c in settings.columns),
    )


def reset_columns(settings: PrintSettings) -> PrintSettings:
    return replace(settings, columns=default_columns(), combined_columns=())


def toggle_combination(settings: PrintSettings, key: str) -> PrintSettings:
    if key in settings.combined_columns:
        return replace(settings, combined_columns=tuple(k for k in settings.combined_columns if k != key))
    if find_combination(key, settings.custom_combinations) is None:
        LOGGER.debug("Ignoring toggle of unknown combination %r", key)
        return settings
    return replace(settings, combined_columns=(*settings.combined_columns, key))


def add_custom_combination(
    settings: PrintSettings,
    label: str,
    members: list[str] | tuple[str, ...],
    *,
    now: float | None = None,
) -> tuple[PrintSettings, CombinedColumn]:
    clean_label = str(label or "").strip()
    if not clean_label:
        raise ValueError("A combination needs a name.")
    validated = validate_combination_members(members)
    stamp = now if now is not None else time.time()
    key = f"custom-{int(stamp * 1000)}"
    existing = {combination.key for combination in settings.custom_combinations}
    while key in existing:
        stamp += 0.001
        key = f"custom-{int(stamp * 1000)}"
    combination = CombinedColumn(
        key=key,
        label=clean_label,
        columns=validated,
        is_custom=True,
        created_at=_now_iso(),
    )
    return replace(settings, custom_combinations=(*settings.custom_combinations, combination)), combination


def update_custom_combination(
    settings: PrintSettings,
    key: str,
    *,
    label: str | None = None,
    members: list[str] | tuple[str, ...] | None = None,
) -> PrintSettings:
    updated: list[CombinedColumn] = []
    for combination in settings.custom_combinations:
        if combination.key == key:
            new_label = combination.label if label is None else str(label).strip()
            if not new_label:
                raise ValueError("A combination needs a name.")
            new_members = combination.columns if members is None else validate_combination_members(members)
            combination = replace(combination, label=new_label, columns=new_members)
        updated.append(combination)
    return replace(settings, custom_combinations=tuple(updated))


def delete_custom_combination(settings: PrintSettings, key: str) -> PrintSettings:
    return replace(
        settings,
        custom_combinations=tuple(c for c in settings.custom_combinations if c.key != key),
        combined_columns=tuple(k for k in settings.combined_columns if k != key),
        combined_column_widths={k: v for k, v in settings.combined_column_widths.items() if k != key},
    )


@dataclass(frozen=True)
class PrintPreset:
    id: str
    name: str
    settings: PrintSettings
    created_at: str = ""


def save_preset(name: str, settings: PrintSettings, *, now: float | None = None) -> PrintPreset:
    clean_name = str(name or "").strip()
    if not clean_name:
        raise ValueError("Please enter a name for the preset.")
    stamp = now if now is not None else time.time()
    return PrintPreset(id=f"preset-{int(stamp * 1000)}", name=clean_name, settings=settings, created_at=_now_iso())


def apply_preset(settings: PrintSettings, preset: PrintPreset) -> PrintSettings:
    """Preset values win; custom combinations the preset does not know about are kept."""
    known = {combination.key for combination in preset.settings.custom_combinations}
    extra = tuple(c for c in settings.custom_combinations if c.key not in known)
    return replace(preset.settings, custom_combinations=(*preset.settings.custom_combinations, *extra))


def preset_to_dict(preset: PrintPreset) -> dict[str, Any]:
    return {
        "id": preset.id,
        "name": preset.name,
        "created_at": preset.created_at,
        "settings": settings_to_dict(preset.settings),
    }


def preset_from_dict(raw: Any) -> PrintPreset:
    if not isinstance(raw, dict):
        raise ValueError("Preset must be a JSON object.")
    name = str(raw.get("name", "") or "").strip()
    if not name:
        raise ValueError("Preset is missing a name.")
    body = raw.get("settings")
    if body is None:
        body = {key: value for key, value in raw.items() if key not in {"id", "name", "created_at", "createdAt"}}
    if not isinstance(body, dict) or not body.get("columns"):
        raise ValueError("Preset is missing column settings.")
    return PrintPreset(
        id=str(raw.get("id", "") or f"preset-{int(time.time() * 1000)}"),
        name=name,
        settings=merge_saved_settings(body),
        created_at=str(raw.get("created_at", raw.get("createdAt", "")) or ""),
    )


def export_preset_json(preset: PrintPreset) -> str:
    return json.dumps(preset_to_dict(preset), indent=2)


def import_preset_json(text: str) -> PrintPreset:
    try:
        payload = json.loads(text)
    except (TypeError, ValueError) as error:
        raise ValueError(f"Preset file is not valid JSON: {error}") from error
    return preset_from_dict(payload)


@dataclass(frozen=True)
class TemplateSection:
    key: str
    label: str
    enabled: bool = True


@dataclass(frozen=True)
class PrintTemplate:
    id: str
    name: str
    description: str
    sections: tuple[TemplateSection, ...]
    layout: dict[str, Any] = field(default_factory=dict)
    styling: dict[str, Any] = field(default_factory=dict)


def _sections(*entries: tuple[str, str] | tuple[str, str, bool]) -> tuple[TemplateSection, ...]:
    return tuple(TemplateSection(*entry) for entry in entries)


PRINT_TEMPLATES: tuple[PrintTemplate, ...] = (
    PrintTemplate(
        id="standard",
        name="Standard Rounding",
        description="Comprehensive patient overview for daily rounds",
        sections=_sections(
            ("patient", "Patient Info"),
            ("clinical_summary", "Clinical Summary"),
            ("interval_events", "Interval Events"),
            ("imaging", "Imaging"),
            ("labs", "Labs"),
            ("systems", "Systems Review"),
            ("todos", "Action Items"),
            ("notes", "Notes", False),
        ),
        layout={"patients_per_page": "auto", "orientation": "portrait", "margins": "normal",
                "header_style": "standard", "show_page_numbers": True, "show_timestamp": True,
                "view_type": "cards"},
        styling={"font_size": 10, "font_family": "system", "border_style": "light",
                 "alternate_row_colors": True, "compact_mode": False},
    ),
    PrintTemplate(
        id="compact",
        name="Compact List",
        description="Condensed view for quick reference",
        sections=_sections(
            ("patient", "Patient"),
            ("clinical_summary", "Summary"),
            ("labs", "Labs"),
            ("todos", "Tasks"),
        ),
        layout={"patients_per_page": 8, "orientation": "landscape", "margins": "narrow",
                "header_style": "minimal", "show_page_numbers": True, "show_timestamp": False,
                "view_type": "list"},
        styling={"font_size": 8, "font_family": "arial", "border_style": "light",
                 "alternate_row_colors": False, "compact_mode": True},
    ),
    PrintTemplate(
        id="detailed",
        name="Detailed Report",
        description="Full documentation with all systems",
        sections=_sections(
            ("patient", "Patient Info"),
            ("clinical_summary", "Clinical Summary"),
            ("interval_events", "Interval Events"),
            ("imaging", "Imaging"),
            ("labs", "Labs"),
            *((key, column_label(key)) for key in SYSTEM_COLUMN_KEYS),
            ("todos", "Action Items"),
            ("notes", "Notes"),
        ),
        layout={"patients_per_page": 1, "orientation": "portrait", "margins": "normal",
                "header_style": "detailed", "show_page_numbers": True, "show_timestamp": True,
                "view_type": "table"},
        styling={"font_size": 9, "font_family": "times", "border_style": "medium",
                 "alternate_row_colors": True, "compact_mode": False},
    ),
    PrintTemplate(
        id="handoff",
        name="Shift Handoff",
        description="Optimized for end-of-shift transitions",
        sections=_sections(
            ("patient", "Patient"),
            ("clinical_summary", "One-Liner"),
            ("interval_events", "Overnight/Recent Events"),
            ("labs", "Key Labs"),
            ("todos", "Pending Tasks"),
        ),
        layout={"patients_per_page": 3, "orientation": "portrait", "margins": "normal",
                "header_style": "standard", "show_page_numbers": True, "show_timestamp": True,
                "view_type": "cards"},
        styling={"font_size": 10, "font_family": "arial", "border_style": "medium",
                 "alternate_row_colors": True, "compact_mode": False},
    ),
    PrintTemplate(
        id="icu_rounds",
        name="ICU Rounds",
        description="Structured ICU presentation format",
        sections=_sections(
            ("patient", "Patient"),
            ("clinical_summary", "Summary"),
            ("interval_events", "24h Events"),
            ("systems", "Systems Review"),
            ("labs", "Labs"),
            ("imaging", "Imaging"),
            ("todos", "Plan"),
        ),
        layout={"patients_per_page": "auto", "orientation": "portrait", "margins": "normal",
                "header_style": "detailed", "show_page_numbers": True, "show_timestamp": True,
                "view_type": "table"},
        styling={"font_size": 9, "font_family": "arial", "border_style": "medium",
                 "alternate_row_colors": True, "compact_mode": False},
    ),
    PrintTemplate(
        id="brief",
        name="Quick Brief",
        description="Ultra-condensed patient list",
        sections=_sections(
            ("patient", "Patient"),
            ("clinical_summary", "Summary"),
            ("todos", "Tasks"),
        ),
        layout={"patients_per_page": "auto", "orientation": "landscape", "margins": "narrow",
                "header_style": "minimal", "show_page_numbers": False, "show_timestamp": True,
                "view_type": "table"},
        styling={"font_size": 7, "font_family": "arial", "border_style": "light",
                 "alternate_row_colors": True, "compact_mode": True},
    ),
)


def get_template(template_id: str) -> PrintTemplate | None:
    for template in PRINT_TEMPLATES:
        if template.id == template_id:
            return template
    return None


def merge_template_customizations(template: PrintTemplate, customizations: dict[str, Any]) -> PrintTemplate:
    sections = customizations.get("sections")
    return replace(
        template,
        name=customizations.get("name", template.name),
        description=customizations.get("description", template.description),
        sections=tuple(sections) if sections else template.sections,
        layout={**template.layout, **(customizations.get("layout") or {})},
        styling={**template.styling, **(customizations.get("styling") or {})},
    )


def _template_enables(template: PrintTemplate, key: str) -> bool:
    enabled_keys = {section.key for section in template.sections if section.enabled}
    if key in enabled_keys:
        return True
    return is_system_key(key) and "systems" in enabled_keys


def apply_template(settings: PrintSettings, template_id: str) -> PrintSettings:
    """Enable the template's sections, disable everything else, and take its page and style values."""
    template = get_template(template_id)
    if template is None:
        LOGGER.debug("Ignoring unknown print template %r", template_id)
        return settings
    return apply_template_definition(settings, template)


def apply_template_definition(settings: PrintSettings, template: PrintTemplate) -> PrintSettings:
    columns = tuple(
        ColumnConfig(column.key, column.label, column.key == PATIENT_KEY or _template_enables(template, column.key))
        for column in settings.columns
    )
    layout = template.layout
    styling = template.styling
    changes: dict[str, Any] = {"columns": columns}
    for source, target in (
        ("orientation", "print_orientation"),
        ("margins", "margins"),
        ("header_style", "header_style"),
        ("show_page_numbers", "show_page_numbers"),
        ("show_timestamp", "show_timestamp"),
        ("view_type", "active_tab"),
    ):
        if source in layout:
            changes[target] = layout[source]
    for source, target in (
        ("font_size", "print_font_size"),
        ("font_family", "print_font_family"),
        ("border_style", "border_style"),
        ("alternate_row_colors", "alternate_row_colors"),
        ("compact_mode", "compact_mode"),
    ):
        if source in styling:
            changes[target] = styling[source]
    if "patients_per_page" in layout:
        changes["one_patient_per_page"] = layout["patients_per_page"] == 1
    if changes.get("active_tab") not in ALLOWED_VALUES["active_tab"]:
        changes.pop("active_tab", None)
    return replace(settings, **changes)
