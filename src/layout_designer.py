from __future__ import annotations

import copy
import json
import logging
import time
from collections import deque
from dataclasses import asdict, dataclass, field, fields, replace
from datetime import datetime, timezone
from typing import Any

from src.print_columns import PATIENT_KEY, SYSTEM_COLUMN_KEYS, SYSTEM_LABELS, column_label, is_system_key
from src.print_models import ColumnConfig, PrintSettings, snake_key


LOGGER = logging.getLogger(__name__)

MAX_HISTORY_SIZE = 50
MAX_RECENT_LAYOUTS = 5

VIEW_TYPES = ("table", "cards", "list", "grid", "newspaper", "timeline", "magazine")
PRINT_VIEW_FOR_LAYOUT = {
    "table": "table",
    "cards": "cards",
    "grid": "cards",
    "magazine": "cards",
    "list": "list",
    "newspaper": "list",
    "timeline": "list",
}


@dataclass(frozen=True)
class LayoutSection:
    id: str
    type: str
    label: str
    enabled: bool = True
    order: int = 0
    width: Any = "auto"
    style: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class GlobalLayoutStyles:
    font_family: str = "system"
    font_size: int = 10
    line_height: float = 1.4
    primary_color: str = "#3b82f6"
    secondary_color: str = "#64748b"
    background_color: str = "#ffffff"
    text_color: str = "#1f2937"
    accent_color: str = "#60a5fa"
    border_style: str = "light"
    border_radius: str = "small"
    shadow_style: str = "none"
    spacing: str = "normal"
    header_style: str = "standard"


@dataclass(frozen=True)
class PageSettings:
    orientation: str = "portrait"
    margins: str = "normal"
    patients_per_page: Any = "auto"
    one_patient_per_page: bool = False
    show_page_numbers: bool = True
    show_timestamp: bool = True
    show_header: bool = True
    show_footer: bool = False
    page_break_between_patients: bool = False


DEFAULT_VIEW_CONFIGS: dict[str, dict[str, Any]] = {
    "cards": {"columns": 1, "gap": "medium", "card_style": "bordered", "header_position": "top",
              "content_flow": "vertical", "show_dividers": True, "compact_sections": False},
    "grid": {"rows": 2, "columns": 2, "cell_spacing": 16, "fill_order": "row", "equal_cells": True},
    "newspaper": {"columns": 2, "column_gap": 24, "flow_type": "balanced", "show_column_rules": True},
    "timeline": {"orientation": "vertical", "show_connectors": True, "connector_style": "solid",
                 "node_style": "circle", "alternating": False},
    "magazine": {"hero_patient": True, "hero_size": "large", "grid_style": "uniform", "show_summary_cards": True},
}


@dataclass(frozen=True)
class LayoutConfig:
    id: str
    name: str
    description: str = ""
    view_type: str = "table"
    sections: tuple[LayoutSection, ...] = ()
    global_styles: GlobalLayoutStyles = field(default_factory=GlobalLayoutStyles)
    page_settings: PageSettings = field(default_factory=PageSettings)
    view_configs: dict[str, dict[str, Any]] = field(default_factory=dict)
    is_built_in: bool = False
    created_at: str = ""
    updated_at: str = ""

    def ordered_sections(self) -> list[LayoutSection]:
        return sorted(self.sections, key=lambda section: section.order)


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


def _section_label(section_type: str) -> str:
    if section_type == "systems":
        return "Systems Review"
    if section_type == PATIENT_KEY:
        return "Patient Info"
    return column_label(section_type)


def default_sections() -> tuple[LayoutSection, ...]:
    keys = [PATIENT_KEY, "clinical_summary", "interval_events", "imaging", "labs", *SYSTEM_COLUMN_KEYS, "todos", "notes"]
    widths = {PATIENT_KEY: "auto", "clinical_summary": "full", "interval_events": "full", "todos": "full", "notes": "full"}
    return tuple(
        LayoutSection(
            id=key,
            type=key,
            label=_section_label(key),
            enabled=key != "notes",
            order=index,
            width=widths.get(key, "half"),
        )
        for index, key in enumerate(keys)
    )


def _layout_sections(*entries: tuple[str, str, Any]) -> tuple[LayoutSection, ...]:
    return tuple(
        LayoutSection(id=key, type=key, label=label, enabled=True, order=index, width=width)
        for index, (key, label, width) in enumerate(entries)
    )


BUILT_IN_LAYOUTS: tuple[LayoutConfig, ...] = (
    LayoutConfig(
        id="classic-table",
        name="Classic Table",
        description="Traditional row-based table layout with all sections as columns",
        view_type="table",
        sections=_layout_sections(
            (PATIENT_KEY, "Patient", 100),
            ("clinical_summary", "Summary", 150),
            ("interval_events", "Events", 150),
            ("imaging", "Imaging", 120),
            ("labs", "Labs", 120),
            ("todos", "Tasks", 140),
        ),
        is_built_in=True,
    ),
    LayoutConfig(
        id="patient-cards",
        name="Patient Cards",
        description="Individual patient cards with structured sections",
        view_type="cards",
        sections=default_sections(),
        global_styles=GlobalLayoutStyles(border_radius="medium", shadow_style="subtle"),
        view_configs={"cards": dict(DEFAULT_VIEW_CONFIGS["cards"])},
        is_built_in=True,
    ),
    LayoutConfig(
        id="compact-grid",
        name="Compact Grid",
        description="Fit multiple patients in a grid arrangement",
        view_type="grid",
        sections=_layout_sections(
            (PATIENT_KEY, "Patient", "full"),
            ("clinical_summary", "One-Liner", "full"),
            ("labs", "Labs", "half"),
            ("todos", "Tasks", "half"),
        ),
        global_styles=GlobalLayoutStyles(font_size=8, spacing="compact"),
        page_settings=PageSettings(orientation="landscape", margins="narrow", patients_per_page=4),
        view_configs={"grid": dict(DEFAULT_VIEW_CONFIGS["grid"])},
        is_built_in=True,
    ),
    LayoutConfig(
        id="icu-rounds",
        name="ICU Rounds",
        description="Systems-based presentation for ICU rounds",
        view_type="table",
        sections=_layout_sections(
            (PATIENT_KEY, "Patient", 90),
            ("clinical_summary", "Summary", 160),
            ("interval_events", "24h Events", 140),
            ("systems", "Systems Review", 260),
            ("todos", "Plan", 140),
        ),
        global_styles=GlobalLayoutStyles(font_size=9, header_style="detailed", border_style="medium"),
        page_settings=PageSettings(orientation="landscape"),
        is_built_in=True,
    ),
    LayoutConfig(
        id="shift-handoff",
        name="Shift Handoff",
        description="Optimized for end-of-shift transitions",
        view_type="cards",
        sections=_layout_sections(
            (PATIENT_KEY, "Patient", "auto"),
            ("clinical_summary", "One-Liner", "full"),
            ("interval_events", "Recent Events", "full"),
            ("labs", "Key Labs", "half"),
            ("todos", "Pending Tasks", "full"),
        ),
        global_styles=GlobalLayoutStyles(primary_color="#7c3aed", accent_color="#a78bfa", border_style="medium"),
        page_settings=PageSettings(patients_per_page=3),
        view_configs={"cards": dict(DEFAULT_VIEW_CONFIGS["cards"])},
        is_built_in=True,
    ),
    LayoutConfig(
        id="condensed-list",
        name="Condensed List",
        description="Ultra-compact single-line patient entries",
        view_type="list",
        sections=_layout_sections(
            (PATIENT_KEY, "Patient", "auto"),
            ("clinical_summary", "Summary", "full"),
            ("todos", "Tasks", "full"),
        ),
        global_styles=GlobalLayoutStyles(font_size=8, spacing="compact", header_style="minimal"),
        page_settings=PageSettings(margins="narrow", show_timestamp=False),
        is_built_in=True,
    ),
)

DEFAULT_LAYOUT_ID = "classic-table"


def get_built_in_layout(layout_id: str) -> LayoutConfig | None:
    for layout in BUILT_IN_LAYOUTS:
        if layout.id == layout_id:
            return layout
    return None


def default_layout() -> LayoutConfig:
    return copy.deepcopy(get_built_in_layout(DEFAULT_LAYOUT_ID))


def _new_id(prefix: str, taken: set[str]) -> str:
    stamp = int(time.time() * 1000)
    candidate = f"{prefix}-{stamp}"
    while candidate in taken:
        stamp += 1
        candidate = f"{prefix}-{stamp}"
    return candidate


def layout_to_dict(layout: LayoutConfig) -> dict[str, Any]:
    return asdict(layout)


def _dataclass_from(cls: type, raw: Any) -> Any:
    if not isinstance(raw, dict):
        return cls()
    names = {item.name for item in fields(cls)}
    return cls(**{snake_key(key): value for key, value in raw.items() if snake_key(key) in names})


def _section_from_dict(raw: Any, index: int) -> LayoutSection | None:
    if not isinstance(raw, dict):
        return None
    data = {snake_key(key): value for key, value in raw.items()}
    section_type = snake_key(data.get("type") or data.get("id") or "")
    if not section_type:
        return None
    return LayoutSection(
        id=snake_key(data.get("id") or section_type),
        type=section_type,
        label=str(data.get("label") or _section_label(section_type)),
        enabled=bool(data.get("enabled", True)),
        order=int(data.get("order", index)) if isinstance(data.get("order", index), (int, float)) else index,
        width=data.get("width", "auto"),
        style=dict(data.get("style") or {}),
    )


def layout_from_dict(raw: Any) -> LayoutConfig:
    """Rebuild a layout from stored or imported JSON; camelCase keys are accepted."""
    if not isinstance(raw, dict):
        raise ValueError("Layout must be a JSON object.")
    data = {snake_key(key): value for key, value in raw.items()}
    name = str(data.get("name", "") or "").strip()
    sections_raw = data.get("sections")
    if not name or not isinstance(sections_raw, list):
        raise ValueError("Invalid layout file: a name and a list of sections are required.")
    sections = tuple(
        section
        for section in (_section_from_dict(item, index) for index, item in enumerate(sections_raw))
        if section is not None
    )
    view_type = str(data.get("view_type") or "table")
    view_configs_raw = data.get("view_configs") or {}
    view_configs = {
        str(key): {snake_key(k): v for k, v in value.items()}
        for key, value in view_configs_raw.items()
        if isinstance(value, dict)
    } if isinstance(view_configs_raw, dict) else {}
    return LayoutConfig(
        id=str(data.get("id") or ""),
        name=name,
        description=str(data.get("description") or ""),
        view_type=view_type if view_type in VIEW_TYPES else "table",
        sections=sections,
        global_styles=_dataclass_from(GlobalLayoutStyles, data.get("global_styles")),
        page_settings=_dataclass_from(PageSettings, data.get("page_settings")),
        view_configs=view_configs,
        is_built_in=False,
        created_at=str(data.get("created_at") or ""),
        updated_at=str(data.get("updated_at") or ""),
    )


def _comparable(layout: LayoutConfig) -> dict[str, Any]:
    data = layout_to_dict(layout)
    data.pop("updated_at", None)
    return data


class LayoutDesigner:
    """Current layout plus bounded undo/redo history and the user's saved layouts.

    Every edit goes through ``update_layout``: the previous config is pushed to the undo stack
    and the redo stack is cleared. Both stacks hold at most ``MAX_HISTORY_SIZE`` entries and drop
    the oldest first.
    """

    def __init__(
        self,
        *,
        saved_layouts: list[LayoutConfig] | None = None,
        current_layout_id: str | None = None,
        recent_layout_ids: list[str] | None = None,
    ) -> None:
        self.saved_layouts: list[LayoutConfig] = list(saved_layouts or [])
        self.recent_layout_ids: list[str] = list(recent_layout_ids or [])[:MAX_RECENT_LAYOUTS]
        self._undo: deque[LayoutConfig] = deque(maxlen=MAX_HISTORY_SIZE)
        self._redo: deque[LayoutConfig] = deque(maxlen=MAX_HISTORY_SIZE)
        found = self.find_layout(current_layout_id) if current_layout_id else None
        self.current: LayoutConfig = copy.deepcopy(found) if found else default_layout()
        self._baseline = _comparable(self.current)

    @property
    def can_undo(self) -> bool:
        return bool(self._undo)

    @property
    def can_redo(self) -> bool:
        return bool(self._redo)

    @property
    def undo_depth(self) -> int:
        return len(self._undo)

    @property
    def redo_depth(self) -> int:
        return len(self._redo)

    def all_layouts(self) -> list[LayoutConfig]:
        return [*BUILT_IN_LAYOUTS, *self.saved_layouts]

    def find_layout(self, layout_id: str | None) -> LayoutConfig | None:
        for layout in self.all_layouts():
            if layout.id == layout_id:
                return layout
        return None

    def recent_layouts(self) -> list[LayoutConfig]:
        return [layout for layout in (self.find_layout(i) for i in self.recent_layout_ids) if layout is not None]

    def _touch_recent(self, layout_id: str) -> None:
        ids = [layout_id, *(i for i in self.recent_layout_ids if i != layout_id)]
        self.recent_layout_ids = ids[:MAX_RECENT_LAYOUTS]

    def _mark_clean(self) -> None:
        self._baseline = _comparable(self.current)

    def has_unsaved_changes(self) -> bool:
        return _comparable(self.current) != self._baseline

    # History

    def update_layout(self, **changes: Any) -> LayoutConfig:
        self._undo.append(copy.deepcopy(self.current))
        self._redo.clear()
        changes.setdefault("updated_at", _now_iso())
        self.current = replace(self.current, **changes)
        return self.current

    def undo(self) -> bool:
        if not self._undo:
            return False
        self._redo.append(self.current)
        self.current = self._undo.pop()
        return True

    def redo(self) -> bool:
        if not self._redo:
            return False
        self._undo.append(self.current)
        self.current = self._redo.pop()
        return True

    def select_layout(self, layout_id: str) -> bool:
        layout = self.find_layout(layout_id)
        if layout is None:
            LOGGER.debug("Ignoring selection of unknown layout %r", layout_id)
            return False
        self._undo.append(copy.deepcopy(self.current))
        self._redo.clear()
        self.current = copy.deepcopy(layout)
        self._touch_recent(layout.id)
        self._mark_clean()
        return True

    def reset_to_default(self) -> LayoutConfig:
        self._undo.append(copy.deepcopy(self.current))
        self._redo.clear()
        self.current = default_layout()
        return self.current

    # Sections

    def _section_index(self, section_id: str) -> int | None:
        for index, section in enumerate(self.current.sections):
            if section.id == section_id:
                return index
        return None

    def update_section(self, section_id: str, **changes: Any) -> bool:
        index = self._section_index(section_id)
        if index is None:
            return False
        sections = list(self.current.sections)
        sections[index] = replace(sections[index], **changes)
        self.update_layout(sections=tuple(sections))
        return True

    def toggle_section(self, section_id: str) -> bool:
        index = self._section_index(section_id)
        if index is None:
            return False
        return self.update_section(section_id, enabled=not self.current.sections[index].enabled)

    def reorder_sections(self, from_index: int, to_index: int) -> bool:
        ordered = self.current.ordered_sections()
        if not (0 <= from_index < len(ordered) and 0 <= to_index < len(ordered)) or from_index == to_index:
            return False
        moved = ordered.pop(from_index)
        ordered.insert(to_index, moved)
        self.update_layout(sections=tuple(replace(section, order=i) for i, section in enumerate(ordered)))
        return True

    def add_section(self, section_type: str, label: str | None = None, **extra: Any) -> LayoutSection:
        section_type = snake_key(section_type)
        taken = {section.id for section in self.current.sections}
        section_id = section_type
        counter = 2
        while section_id in taken:
            section_id = f"{section_type}-{counter}"
            counter += 1
        section = LayoutSection(
            id=section_id,
            type=section_type,
            label=label or _section_label(section_type),
            order=len(self.current.sections),
            **extra,
        )
        self.update_layout(sections=(*self.current.sections, section))
        return section

    def remove_section(self, section_id: str) -> bool:
        if self._section_index(section_id) is None:
            return False
        self.update_layout(sections=tuple(s for s in self.current.sections if s.id != section_id))
        return True

    # Styles and page

    def update_global_styles(self, **changes: Any) -> LayoutConfig:
        _check_fields(GlobalLayoutStyles, changes)
        return self.update_layout(global_styles=replace(self.current.global_styles, **changes))

    def update_page_settings(self, **changes: Any) -> LayoutConfig:
        _check_fields(PageSettings, changes)
        return self.update_layout(page_settings=replace(self.current.page_settings, **changes))

    def update_view_config(self, view_type: str, **changes: Any) -> LayoutConfig:
        if view_type not in DEFAULT_VIEW_CONFIGS:
            raise ValueError(f"No configurable options for view type {view_type!r}")
        configs = copy.deepcopy(self.current.view_configs)
        merged = {**DEFAULT_VIEW_CONFIGS[view_type], **configs.get(view_type, {}), **changes}
        configs[view_type] = merged
        return self.update_layout(view_configs=configs)

    def set_view_type(self, view_type: str) -> LayoutConfig:
        if view_type not in VIEW_TYPES:
            raise ValueError(f"Unknown view type {view_type!r}")
        return self.update_layout(view_type=view_type)

    # Saved layouts

    def save_layout(self, name: str, description: str = "") -> LayoutConfig:
        clean_name = str(name or "").strip()
        if not clean_name:
            raise ValueError("Please enter a name for the layout.")
        now = _now_iso()
        layout = replace(
            copy.deepcopy(self.current),
            id=_new_id("custom", {layout.id for layout in self.all_layouts()}),
            name=clean_name,
            description=description or self.current.description,
            is_built_in=False,
            created_at=now,
            updated_at=now,
        )
        self.saved_layouts.append(layout)
        self.current = layout
        self._touch_recent(layout.id)
        self._mark_clean()
        return layout

    def update_saved_layout(self) -> bool:
        for index, layout in enumerate(self.saved_layouts):
            if layout.id == self.current.id:
                self.current = replace(self.current, updated_at=_now_iso())
                self.saved_layouts[index] = copy.deepcopy(self.current)
                self._mark_clean()
                return True
        return False

    def delete_saved_layout(self, layout_id: str) -> bool:
        remaining = [layout for layout in self.saved_layouts if layout.id != layout_id]
        if len(remaining) == len(self.saved_layouts):
            return False
        self.saved_layouts = remaining
        self.recent_layout_ids = [i for i in self.recent_layout_ids if i != layout_id]
        if self.current.id == layout_id:
            self.current = default_layout()
            self._mark_clean()
        return True

    def duplicate_layout(self, layout_id: str | None = None) -> LayoutConfig | None:
        source = self.find_layout(layout_id) if layout_id else self.current
        if source is None:
            return None
        now = _now_iso()
        copy_layout = replace(
            copy.deepcopy(source),
            id=_new_id("custom", {layout.id for layout in self.all_layouts()}),
            name=f"{source.name} (Copy)",
            is_built_in=False,
            created_at=now,
            updated_at=now,
        )
        self.saved_layouts.append(copy_layout)
        return copy_layout

    def export_layout_json(self, layout_id: str | None = None) -> str:
        layout = self.find_layout(layout_id) if layout_id else self.current
        if layout is None:
            raise ValueError(f"Unknown layout {layout_id!r}")
        return json.dumps(layout_to_dict(layout), indent=2)

    def import_layout_json(self, text: str) -> LayoutConfig:
        try:
            payload = json.loads(text)
        except (TypeError, ValueError) as error:
            raise ValueError(f"Layout file is not valid JSON: {error}") from error
        imported = layout_from_dict(payload)
        now = _now_iso()
        layout = replace(
            imported,
            id=_new_id("imported", {layout.id for layout in self.all_layouts()}),
            name=f"{imported.name} (Imported)",
            created_at=now,
            updated_at=now,
        )
        self.saved_layouts.append(layout)
        return layout


def _check_fields(cls: type, changes: dict[str, Any]) -> None:
    names = {item.name for item in fields(cls)}
    unknown = sorted(set(changes) - names)
    if unknown:
        raise ValueError(f"Unknown {cls.__name__} field(s): {', '.join(unknown)}")


def _section_enables(enabled_types: set[str], key: str) -> bool:
    if key in enabled_types:
        return True
    return is_system_key(key) and "systems" in enabled_types


def apply_layout_to_settings(layout: LayoutConfig, settings: PrintSettings) -> PrintSettings:
    """Print settings that render ``layout``: its sections become the enabled columns."""
    enabled_types = {section.type for section in layout.sections if section.enabled}
    columns = tuple(
        ColumnConfig(column.key, column.label, column.key == PATIENT_KEY or _section_enables(enabled_types, column.key))
        for column in settings.columns
    )
    widths = dict(settings.column_widths)
    for section in layout.sections:
        if isinstance(section.width, (int, float)) and not isinstance(section.width, bool) and section.width > 0:
            if section.type == "systems":
                widths.update({key: float(section.width) / len(SYSTEM_LABELS) for key in SYSTEM_COLUMN_KEYS})
            else:
                widths[section.type] = float(section.width)

    styles = layout.global_styles
    page = layout.page_settings
    font_size = styles.font_size if isinstance(styles.font_size, int) and 5 <= styles.font_size <= 24 else settings.print_font_size
    return replace(
        settings,
        columns=columns,
        column_widths=widths,
        print_font_size=font_size,
        print_font_family=styles.font_family or settings.print_font_family,
        border_style=styles.border_style if styles.border_style in {"none", "light", "medium", "heavy"} else settings.border_style,
        header_style=styles.header_style if styles.header_style in {"minimal", "standard", "detailed"} else settings.header_style,
        compact_mode=styles.spacing == "compact",
        print_orientation=page.orientation if page.orientation in {"portrait", "landscape"} else settings.print_orientation,
        margins=page.margins if page.margins in {"narrow", "normal", "wide"} else settings.margins,
        show_page_numbers=page.show_page_numbers,
        show_timestamp=page.show_timestamp,
        one_patient_per_page=bool(
            page.one_patient_per_page or page.page_break_between_patients or page.patients_per_page == 1
        ),
        active_tab=PRINT_VIEW_FOR_LAYOUT.get(layout.view_type, settings.active_tab),
    )
