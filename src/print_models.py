from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable


SYSTEM_KEYS = (
    "neuro",
    "cv",
    "resp",
    "renal_gu",
    "gi",
    "endo",
    "heme",
    "infectious",
    "skin_lines",
    "dispo",
)

_CAMEL_RE = re.compile(r"(?<=[a-z0-9])([A-Z]+)")


def snake_key(value: Any) -> str:
    """Map a camelCase key (``renalGU``, ``systems.skinLines``) to the snake_case form used here."""
    text = str(value or "").strip()
    return ".".join(_CAMEL_RE.sub(lambda match: "_" + match.group(1).lower(), part) for part in text.split("."))


@dataclass(frozen=True)
class Todo:
    patient_id: str
    content: str
    completed: bool = False


@dataclass(frozen=True)
class Patient:
    id: str
    name: str
    bed: str = ""
    clinical_summary: str = ""
    interval_events: str = ""
    imaging: str = ""
    labs: str = ""
    systems: dict[str, str] = field(default_factory=dict)
    created_at: str = ""
    last_modified: str = ""

    def system_text(self, system_key: str) -> str:
        return str(self.systems.get(system_key, "") or "")


def patient_from_dict(raw: dict[str, Any]) -> Patient:
    """Build a Patient from a stored record; camelCase keys from the browser app are accepted."""
    data = {snake_key(key): value for key, value in (raw or {}).items()}
    systems_raw = data.get("systems") or {}
    systems: dict[str, str] = {}
    if isinstance(systems_raw, dict):
        for key, value in systems_raw.items():
            normalized = snake_key(key)
            if normalized in SYSTEM_KEYS:
                systems[normalized] = str(value or "")
    return Patient(
        id=str(data.get("id", "") or ""),
        name=str(data.get("name", "") or ""),
        bed=str(data.get("bed", "") or ""),
        clinical_summary=str(data.get("clinical_summary", "") or ""),
        interval_events=str(data.get("interval_events", "") or ""),
        imaging=str(data.get("imaging", "") or ""),
        labs=str(data.get("labs", "") or ""),
        systems=systems,
        created_at=str(data.get("created_at", "") or ""),
        last_modified=str(data.get("last_modified", "") or ""),
    )


def todo_from_dict(raw: dict[str, Any]) -> Todo:
    data = {snake_key(key): value for key, value in (raw or {}).items()}
    return Todo(
        patient_id=str(data.get("patient_id", "") or ""),
        content=str(data.get("content", "") or ""),
        completed=bool(data.get("completed", False)),
    )


@dataclass(frozen=True)
class ColumnConfig:
    key: str
    label: str
    enabled: bool = True


@dataclass(frozen=True)
class CombinedColumn:
    key: str
    label: str
    columns: tuple[str, ...]
    is_custom: bool = False
    created_at: str = ""


@dataclass(frozen=True)
class RenderColumn:
    key: str
    label: str
    kind: str  # "single" | "combined"
    width: float
    members: tuple[str, ...] = ()

    @property
    def is_combined(self) -> bool:
        return self.kind == "combined"


@dataclass(frozen=True)
class PrintSettings:
    print_orientation: str = "portrait"
    print_font_size: int = 9
    print_font_family: str = "system"
    margins: str = "normal"
    header_style: str = "standard"
    border_style: str = "light"
    show_page_numbers: bool = True
    show_timestamp: bool = True
    alternate_row_colors: bool = True
    compact_mode: bool = False
    one_patient_per_page: bool = False
    auto_fit_font_size: bool = False
    active_tab: str = "table"
    systems_review_column_count: int = 2
    columns: tuple[ColumnConfig, ...] = ()
    combined_columns: tuple[str, ...] = ()
    custom_combinations: tuple[CombinedColumn, ...] = ()
    column_widths: dict[str, float] = field(default_factory=dict)
    combined_column_widths: dict[str, float] = field(default_factory=dict)

    def column_enabled(self, key: str) -> bool:
        return any(column.key == key and column.enabled for column in self.columns)


TodoAccessor = Callable[[str], "list[Todo]"]


def _no_todos(_patient_id: str) -> list[Todo]:
    return []


@dataclass
class ExportContext:
    patients: list[Patient]
    settings: PrintSettings
    get_patient_todos: TodoAccessor = _no_todos
    patient_notes: dict[str, str] = field(default_factory=dict)
    is_filtered: bool = False
    total_patient_count: int | None = None
    generated_at: datetime = field(default_factory=datetime.now)

    def todos_for(self, patient: Patient) -> list[Todo]:
        return list(self.get_patient_todos(patient.id) or [])

    def notes_for(self, patient: Patient) -> str:
        return str(self.patient_notes.get(patient.id, "") or "")

    def total_patients(self) -> int:
        if self.is_filtered and self.total_patient_count:
            return int(self.total_patient_count)
        return len(self.patients)

    def generated_label(self) -> str:
        return self.generated_at.strftime("%Y-%m-%d %H:%M")


@dataclass
class PatientBundle:
    patients: list[Patient] = field(default_factory=list)
    todos: dict[str, list[Todo]] = field(default_factory=dict)
    notes: dict[str, str] = field(default_factory=dict)

    def get_patient_todos(self, patient_id: str) -> list[Todo]:
        return list(self.todos.get(patient_id, []))


def load_patient_bundle(payload: Any) -> PatientBundle:
    """Patients, todos and notes from an exported app snapshot.

    Accepts either a bare list of patients or an object with ``patients`` and optional ``todos``
    and ``notes``; todos may also be nested under each patient.
    """
    if isinstance(payload, list):
        payload = {"patients": payload}
    if not isinstance(payload, dict):
        raise ValueError("Patient data must be a list or an object with a `patients` list.")
    raw_patients = payload.get("patients")
    if not isinstance(raw_patients, list):
        raise ValueError("Patient data is missing a `patients` list.")

    bundle = PatientBundle()
    for raw in raw_patients:
        if not isinstance(raw, dict):
            continue
        patient = patient_from_dict(raw)
        bundle.patients.append(patient)
        for raw_todo in raw.get("todos") or []:
            if isinstance(raw_todo, dict):
                todo = todo_from_dict({"patient_id": patient.id, **raw_todo})
                bundle.todos.setdefault(patient.id, []).append(todo)
        if raw.get("notes"):
            bundle.notes[patient.id] = str(raw["notes"])

    for raw_todo in payload.get("todos") or []:
        if isinstance(raw_todo, dict):
            todo = todo_from_dict(raw_todo)
            bundle.todos.setdefault(todo.patient_id, []).append(todo)
    notes = payload.get("notes")
    if isinstance(notes, dict):
        bundle.notes.update({str(key): str(value or "") for key, value in notes.items()})
    return bundle
