from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from src.layout_designer import LayoutConfig, LayoutDesigner, layout_from_dict, layout_to_dict
from src.print_models import PrintSettings
from src.print_settings import PrintPreset, default_print_settings, merge_saved_settings, preset_from_dict, preset_to_dict, settings_to_dict


LOGGER = logging.getLogger(__name__)


@dataclass
class StoredPrintState:
    settings: PrintSettings = field(default_factory=default_print_settings)
    presets: list[PrintPreset] = field(default_factory=list)
    saved_layouts: list[LayoutConfig] = field(default_factory=list)
    current_layout_id: str | None = None
    recent_layout_ids: list[str] = field(default_factory=list)

    def designer(self) -> LayoutDesigner:
        return LayoutDesigner(
            saved_layouts=self.saved_layouts,
            current_layout_id=self.current_layout_id,
            recent_layout_ids=self.recent_layout_ids,
        )

    def capture_designer(self, designer: LayoutDesigner) -> None:
        self.saved_layouts = list(designer.saved_layouts)
        self.current_layout_id = designer.current.id
        self.recent_layout_ids = list(designer.recent_layout_ids)


class PrintSettingsStore:
    """Print settings, presets and saved layouts kept in one JSON file."""

    def __init__(self, store_path: Path | str) -> None:
        self.store_path = Path(store_path)

    def load(self) -> StoredPrintState:
        if not self.store_path.exists():
            return StoredPrintState()
        try:
            with self.store_path.open("r", encoding="utf-8") as file_handle:
                payload = json.load(file_handle)
        except (OSError, ValueError) as error:
            LOGGER.warning("Print settings file %s unreadable, using defaults: %s", self.store_path, error)
            return StoredPrintState()
        if not isinstance(payload, dict):
            LOGGER.warning("Print settings file %s is not an object, using defaults.", self.store_path)
            return StoredPrintState()

        presets: list[PrintPreset] = []
        for raw in payload.get("presets") or []:
            try:
                presets.append(preset_from_dict(raw))
            except ValueError as error:
                LOGGER.warning("Skipping stored preset: %s", error)

        layouts: list[LayoutConfig] = []
        for raw in payload.get("saved_layouts") or []:
            try:
                layouts.append(layout_from_dict(raw))
            except ValueError as error:
                LOGGER.warning("Skipping stored layout: %s", error)

        recent = payload.get("recent_layout_ids")
        return StoredPrintState(
            settings=merge_saved_settings(payload.get("print_settings")),
            presets=presets,
            saved_layouts=layouts,
            current_layout_id=payload.get("current_layout_id") or None,
            recent_layout_ids=[str(item) for item in recent] if isinstance(recent, list) else [],
        )

    def save(self, state: StoredPrintState) -> None:
        payload: dict[str, Any] = {
            "print_settings": settings_to_dict(state.settings),
            "presets": [preset_to_dict(preset) for preset in state.presets],
            "saved_layouts": [layout_to_dict(layout) for layout in state.saved_layouts],
            "current_layout_id": state.current_layout_id,
            "recent_layout_ids": list(state.recent_layout_ids),
        }
        self.store_path.parent.mkdir(parents=True, exist_ok=True)
        with self.store_path.open("w", encoding="utf-8") as file_handle:
            json.dump(payload, file_handle, indent=2)
