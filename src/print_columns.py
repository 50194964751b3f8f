from __future__ import annotations

from typing import Any, Callable

from src.print_models import SYSTEM_KEYS, ColumnConfig, CombinedColumn, Patient


PATIENT_KEY = "patient"
SYSTEMS_PREFIX = "systems."

SYSTEM_LABELS = {
    "neuro": "Neuro",
    "cv": "Cardiovascular",
    "resp": "Respiratory",
    "renal_gu": "Renal/GU",
    "gi": "GI/Nutrition",
    "endo": "Endocrine",
    "heme": "Hematology",
    "infectious": "Infectious Disease",
    "skin_lines": "Skin/Lines",
    "dispo": "Disposition",
}

SYSTEM_COLUMN_KEYS = tuple(f"{SYSTEMS_PREFIX}{key}" for key in SYSTEM_KEYS)

FIELD_LABELS = {
    PATIENT_KEY: "Patient",
    "clinical_summary": "Clinical Summary",
    "interval_events": "Interval Events",
    "imaging": "Imaging",
    "labs": "Labs",
    "todos": "Todos",
    "notes": "Notes",
}

# Registry order is display order. Notes are opt-in.
_REGISTRY: tuple[tuple[str, bool], ...] = (
    (PATIENT_KEY, True),
    ("clinical_summary", True),
    ("interval_events", True),
    ("imaging", True),
    ("labs", True),
    *((key, True) for key in SYSTEM_COLUMN_KEYS),
    ("todos", True),
    ("notes", False),
)

REGISTRY_KEYS = tuple(key for key, _enabled in _REGISTRY)

FALLBACK_COLUMN_WIDTH = 120

DEFAULT_COLUMN_WIDTHS: dict[str, float] = {
    PATIENT_KEY: 110,
    "clinical_summary": 200,
    "interval_events": 180,
    "imaging": 150,
    "labs": 150,
    **{key: 140 for key in SYSTEM_COLUMN_KEYS},
    "todos": 160,
    "notes": 160,
}

COLUMN_COMBINATIONS: tuple[CombinedColumn, ...] = (
    CombinedColumn(
        key="summary_events",
        label="Summary + Events",
        columns=("clinical_summary", "interval_events"),
    ),
    CombinedColumn(
        key="imaging_labs",
        label="Imaging + Labs",
        columns=("imaging", "labs"),
    ),
    CombinedColumn(
        key="all_content",
        label="All Clinical Data (Summary, Events, Imaging, Labs)",
        columns=("clinical_summary", "interval_events", "imaging", "labs"),
    ),
    CombinedColumn(
        key="systems_review",
        label="Systems Review (All Systems)",
        columns=SYSTEM_COLUMN_KEYS,
    ),
)

DEFAULT_COMBINED_COLUMN_WIDTHS: dict[str, float] = {
    "summary_events": 320,
    "imaging_labs": 260,
    "all_content": 420,
    "systems_review": 360,
}


def is_system_key(key: str) -> bool:
    return key.startswith(SYSTEMS_PREFIX)


def system_name(key: str) -> str:
    return key[len(SYSTEMS_PREFIX):] if is_system_key(key) else key


def column_label(key: str) -> str:
    if is_system_key(key):
        return SYSTEM_LABELS.get(system_name(key), system_name(key))
    return FIELD_LABELS.get(key, key)


def default_columns() -> tuple[ColumnConfig, ...]:
    return tuple(ColumnConfig(key=key, label=column_label(key), enabled=enabled) for key, enabled in _REGISTRY)


def normalize_columns(columns: Any) -> tuple[ColumnConfig, ...]:
    """Return columns in registry order with the identity column first and enabled.

    Unknown keys are dropped and registry columns missing from ``columns`` take their default state.
    """
    enabled_by_key: dict[str, bool] = {}
    for column in columns or ():
        if isinstance(column, ColumnConfig):
            enabled_by_key[column.key] = column.enabled
    normalized: list[ColumnConfig] = []
    for default in default_columns():
        enabled = enabled_by_key.get(default.key, default.enabled)
        if default.key == PATIENT_KEY:
            enabled = True
        normalized.append(ColumnConfig(key=default.key, label=default.label, enabled=enabled))
    return tuple(normalized)


def _system_accessor(system_key: str) -> Callable[[Patient], str]:
    def _read(patient: Patient) -> str:
        return patient.system_text(system_key)

    return _read


FIELD_ACCESSORS: dict[str, Callable[[Patient], str]] = {
    PATIENT_KEY: lambda patient: patient.name,
    "clinical_summary": lambda patient: patient.clinical_summary,
    "interval_events": lambda patient: patient.interval_events,
    "imaging": lambda patient: patient.imaging,
    "labs": lambda patient: patient.labs,
    **{f"{SYSTEMS_PREFIX}{key}": _system_accessor(key) for key in SYSTEM_KEYS},
}


def field_value(patient: Patient, key: str) -> str:
    """Raw HTML content of a patient field. Todos and notes are not patient fields and return ""."""
    accessor = FIELD_ACCESSORS.get(key)
    if accessor is None:
        return ""
    return str(accessor(patient) or "")


def all_combinations(custom: tuple[CombinedColumn, ...] | list[CombinedColumn] = ()) -> list[CombinedColumn]:
    return [*COLUMN_COMBINATIONS, *custom]


def find_combination(key: str, custom: tuple[CombinedColumn, ...] | list[CombinedColumn] = ()) -> CombinedColumn | None:
    for combination in all_combinations(custom):
        if combination.key == key:
            return combination
    return None


def validate_combination_members(members: list[str] | tuple[str, ...]) -> tuple[str, ...]:
    cleaned: list[str] = []
    for key in members:
        value = str(key or "").strip()
        if value and value not in cleaned:
            cleaned.append(value)
    if PATIENT_KEY in cleaned:
        raise ValueError("The patient column cannot be part of a combination.")
    unknown = [key for key in cleaned if key not in REGISTRY_KEYS]
    if unknown:
        raise ValueError(f"Unknown column(s) in combination: {', '.join(unknown)}")
    if len(cleaned) < 2:
        raise ValueError("A combination needs at least two columns.")
    return tuple(cleaned)
