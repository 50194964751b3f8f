from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any

import streamlit as st
import streamlit.components.v1 as components

from src.export_handlers import EXPORT_TARGETS, generate_export_safe
from src.html_sanitizer import strip_html
from src.layout_designer import VIEW_TYPES, LayoutDesigner, apply_layout_to_settings
from src.print_columns import COLUMN_COMBINATIONS, PATIENT_KEY, REGISTRY_KEYS, column_label
from src.print_document import render_print_document
from src.print_models import ExportContext, PatientBundle, load_patient_bundle
from src.print_settings import (
    PRINT_TEMPLATES,
    add_custom_combination,
    apply_preset,
    apply_template,
    delete_custom_combination,
    deselect_all_columns,
    export_preset_json,
    import_preset_json,
    reset_columns,
    save_preset,
    select_all_columns,
    toggle_column,
    toggle_combination,
    update_settings,
)
from src.settings_store import PrintSettingsStore, StoredPrintState


APP_DIR = Path(__file__).parent
ENV_FILE = APP_DIR / ".env"
SAMPLE_PATIENTS = APP_DIR / "data" / "sample_patients.json"

LOGGER = logging.getLogger(__name__)


def _truthy_env(name: str, default: bool = False) -> bool:
    fallback = "1" if default else "0"
    return os.getenv(name, fallback).strip().lower() in {"1", "true", "yes", "on"}


def _load_local_env_file(path: Path = ENV_FILE) -> None:
    if not path.exists():
        return
    for raw_line in path.read_text(encoding="utf-8").splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, value = line.split("=", 1)
        key = key.strip()
        value = value.strip().strip('"').strip("'")
        if key and (key not in os.environ or not os.environ.get(key, "").strip()):
            os.environ[key] = value


_load_local_env_file()
logging.basicConfig(level=os.getenv("LOG_LEVEL", "INFO").upper())

DATA_DIR = Path(os.getenv("ROUNDING_DATA_DIR", "").strip() or APP_DIR / "data")
SETTINGS_FILE = DATA_DIR / "print_settings.json"
AUTO_SAVE_SETTINGS = _truthy_env("AUTO_SAVE_PRINT_SETTINGS", default=True)
LOAD_SAMPLE_PATIENTS = _truthy_env("LOAD_SAMPLE_PATIENTS", default=True)

VIEW_LABELS = {"table": "Table View", "cards": "Cards (Grid)", "list": "List (Vertical)"}


def _store() -> PrintSettingsStore:
    return PrintSettingsStore(SETTINGS_FILE)


def _init_state() -> None:
    if "print_state" in st.session_state:
        return
    state = _store().load()
    st.session_state.print_state = state
    st.session_state.designer = state.designer()
    st.session_state.bundle = PatientBundle()
    if LOAD_SAMPLE_PATIENTS and SAMPLE_PATIENTS.exists():
        try:
            st.session_state.bundle = load_patient_bundle(json.loads(SAMPLE_PATIENTS.read_text(encoding="utf-8")))
        except ValueError as error:
            LOGGER.warning("Sample patients not loaded: %s", error)


def _state() -> StoredPrintState:
    return st.session_state.print_state


def _designer() -> LayoutDesigner:
    return st.session_state.designer


def _persist() -> None:
    state = _state()
    state.capture_designer(_designer())
    if AUTO_SAVE_SETTINGS:
        _store().save(state)


def _set_settings(settings: Any) -> None:
    _state().settings = settings
    _persist()


def _render_data_sidebar() -> tuple[list[Any], bool]:
    st.sidebar.subheader("Patients")
    uploaded = st.sidebar.file_uploader("Load patients (JSON)", type=["json"], key="patients_upload")
    if uploaded is not None:
        try:
            st.session_state.bundle = load_patient_bundle(json.loads(uploaded.getvalue().decode("utf-8")))
            st.sidebar.success(f"Loaded {len(st.session_state.bundle.patients)} patients.")
        except ValueError as error:
            st.sidebar.error(f"Could not read patient file: {error}")

    bundle: PatientBundle = st.session_state.bundle
    query = st.sidebar.text_input("Filter by name or bed", key="patient_filter").strip().lower()
    if not query:
        return list(bundle.patients), False
    filtered = [
        patient
        for patient in bundle.patients
        if query in patient.name.lower() or query in patient.bed.lower() or query in strip_html(patient.clinical_summary).lower()
    ]
    st.sidebar.caption(f"Showing {len(filtered)} of {len(bundle.patients)} patients")
    return filtered, True


def _render_columns_tab() -> None:
    settings = _state().settings
    st.markdown("**Columns**")
    left, middle, right = st.columns(3)
    if left.button("Select all", use_container_width=True):
        _set_settings(select_all_columns(settings))
        st.rerun()
    if middle.button("Deselect all", use_container_width=True):
        _set_settings(deselect_all_columns(settings))
        st.rerun()
    if right.button("Reset", use_container_width=True):
        _set_settings(reset_columns(settings))
        st.rerun()

    grid = st.columns(3)
    for index, column in enumerate(settings.columns):
        checked = grid[index % 3].checkbox(
            column.label,
            value=column.enabled,
            key=f"col_{column.key}",
            disabled=column.key == PATIENT_KEY,
        )
        if checked != column.enabled:
            _set_settings(toggle_column(settings, column.key))
            st.rerun()

    st.markdown("**Combined columns**")
    for combination in [*COLUMN_COMBINATIONS, *settings.custom_combinations]:
        active = combination.key in settings.combined_columns
        row_left, row_right = st.columns([5, 1])
        checked = row_left.checkbox(combination.label, value=active, key=f"combo_{combination.key}")
        if checked != active:
            _set_settings(toggle_combination(settings, combination.key))
            st.rerun()
        if combination.is_custom and row_right.button("Delete", key=f"del_{combination.key}"):
            _set_settings(delete_custom_combination(settings, combination.key))
            st.rerun()

    with st.expander("Create custom combination", expanded=False):
        label = st.text_input("Name", key="custom_combo_label")
        members = st.multiselect(
            "Columns",
            [key for key in REGISTRY_KEYS if key != PATIENT_KEY],
            format_func=column_label,
            key="custom_combo_members",
        )
        if st.button("Create combination", key="custom_combo_create"):
            try:
                updated, combination = add_custom_combination(settings, label, members)
            except ValueError as error:
                st.error(str(error))
            else:
                _set_settings(updated)
                st.success(f"Created '{combination.label}'.")


def _render_page_options() -> None:
    settings = _state().settings
    col_a, col_b, col_c = st.columns(3)
    view = col_a.selectbox(
        "View",
        list(VIEW_LABELS),
        index=list(VIEW_LABELS).index(settings.active_tab),
        format_func=VIEW_LABELS.get,
    )
    orientation = col_b.radio("Orientation", ["portrait", "landscape"], index=["portrait", "landscape"].index(settings.print_orientation), horizontal=True)
    font_size = col_c.slider("Font size", 5, 24, settings.print_font_size)
    col_d, col_e, col_f = st.columns(3)
    margins = col_d.selectbox("Margins", ["narrow", "normal", "wide"], index=["narrow", "normal", "wide"].index(settings.margins))
    header_style = col_e.selectbox(
        "Header", ["minimal", "standard", "detailed"], index=["minimal", "standard", "detailed"].index(settings.header_style)
    )
    border_style = col_f.selectbox(
        "Borders", ["none", "light", "medium", "heavy"], index=["none", "light", "medium", "heavy"].index(settings.border_style)
    )
    toggles = st.columns(4)
    changes = {
        "active_tab": view,
        "print_orientation": orientation,
        "print_font_size": font_size,
        "margins": margins,
        "header_style": header_style,
        "border_style": border_style,
        "alternate_row_colors": toggles[0].checkbox("Alternate rows", value=settings.alternate_row_colors),
        "compact_mode": toggles[1].checkbox("Compact", value=settings.compact_mode),
        "one_patient_per_page": toggles[2].checkbox("One patient per page", value=settings.one_patient_per_page),
        "auto_fit_font_size": toggles[3].checkbox("Auto-fit font", value=settings.auto_fit_font_size),
        "show_page_numbers": toggles[0].checkbox("Page numbers", value=settings.show_page_numbers),
        "show_timestamp": toggles[1].checkbox("Timestamp", value=settings.show_timestamp),
    }
    if any(getattr(settings, key) != value for key, value in changes.items()):
        _set_settings(update_settings(settings, **changes))

    template_id = st.selectbox(
        "Apply template",
        ["-", *(template.id for template in PRINT_TEMPLATES)],
        format_func=lambda value: next((t.name for t in PRINT_TEMPLATES if t.id == value), "Select..."),
        key="template_select",
    )
    if template_id != "-" and st.button("Apply template"):
        _set_settings(apply_template(_state().settings, template_id))
        st.rerun()


def _render_export_tab(patients: list[Any], is_filtered: bool) -> None:
    bundle: PatientBundle = st.session_state.bundle
    context = ExportContext(
        patients=patients,
        settings=_state().settings,
        get_patient_todos=bundle.get_patient_todos,
        patient_notes=bundle.notes,
        is_filtered=is_filtered,
        total_patient_count=len(bundle.patients),
    )
    _render_page_options()

    target = st.selectbox("Format", list(EXPORT_TARGETS), format_func=lambda key: EXPORT_TARGETS[key].label)
    if st.button("Generate export", type="primary", use_container_width=True):
        with st.spinner("Generating export..."):
            payload, filename, warning = generate_export_safe(target, context)
        if warning:
            st.error(warning)
        else:
            st.success(f"{filename} is ready.")
            st.download_button(
                f"Download {filename}",
                data=payload,
                file_name=filename,
                mime=EXPORT_TARGETS[target].mime_type,
                use_container_width=True,
            )

    st.subheader("Preview")
    components.html(render_print_document(context), height=640, scrolling=True)


def _render_layout_designer() -> None:
    designer = _designer()
    layout = designer.current
    layouts = designer.all_layouts()
    ids = [item.id for item in layouts]

    top = st.columns([3, 1, 1, 1])
    selected = top[0].selectbox(
        "Layout",
        ids,
        index=ids.index(layout.id) if layout.id in ids else 0,
        format_func=lambda value: next(item.name for item in layouts if item.id == value),
    )
    if selected != layout.id and designer.select_layout(selected):
        _persist()
        st.rerun()
    if top[1].button("Undo", disabled=not designer.can_undo, use_container_width=True):
        designer.undo()
        st.rerun()
    if top[2].button("Redo", disabled=not designer.can_redo, use_container_width=True):
        designer.redo()
        st.rerun()
    if top[3].button("Reset", use_container_width=True):
        designer.reset_to_default()
        st.rerun()

    if designer.has_unsaved_changes():
        st.caption("Unsaved changes")

    view_type = st.selectbox("View type", VIEW_TYPES, index=VIEW_TYPES.index(layout.view_type))
    if view_type != layout.view_type:
        designer.set_view_type(view_type)
        st.rerun()

    st.markdown("**Sections**")
    ordered = layout.ordered_sections()
    for index, section in enumerate(ordered):
        row = st.columns([4, 1, 1, 1])
        enabled = row[0].checkbox(section.label, value=section.enabled, key=f"sec_{layout.id}_{section.id}")
        if enabled != section.enabled:
            designer.toggle_section(section.id)
            st.rerun()
        if row[1].button("Up", key=f"up_{section.id}", disabled=index == 0):
            designer.reorder_sections(index, index - 1)
            st.rerun()
        if row[2].button("Down", key=f"down_{section.id}", disabled=index == len(ordered) - 1):
            designer.reorder_sections(index, index + 1)
            st.rerun()
        if row[3].button("Remove", key=f"rm_{section.id}"):
            designer.remove_section(section.id)
            st.rerun()

    styles = layout.global_styles
    font_size = st.slider("Base font size", 6, 16, styles.font_size, key=f"layout_font_{layout.id}")
    if font_size != styles.font_size:
        designer.update_global_styles(font_size=font_size)
        st.rerun()

    save_cols = st.columns([3, 1, 1])
    name = save_cols[0].text_input("Save as", key="layout_save_name")
    if save_cols[1].button("Save layout", use_container_width=True):
        try:
            designer.save_layout(name)
        except ValueError as error:
            st.error(str(error))
        else:
            _persist()
            st.success("Layout saved.")
    if save_cols[2].button("Apply to print", use_container_width=True):
        _set_settings(apply_layout_to_settings(designer.current, _state().settings))
        st.success("Layout applied to print settings.")

    st.download_button(
        "Export layout JSON",
        data=designer.export_layout_json(),
        file_name=f"{layout.name.replace(' ', '-').lower()}-layout.json",
        mime="application/json",
    )
    imported = st.file_uploader("Import layout JSON", type=["json"], key="layout_import")
    if imported is not None and st.button("Import layout"):
        try:
            designer.import_layout_json(imported.getvalue().decode("utf-8"))
        except ValueError as error:
            st.error(str(error))
        else:
            _persist()
            st.success("Layout imported.")


def _render_presets_tab() -> None:
    state = _state()
    name = st.text_input("Preset name", key="preset_name")
    if st.button("Save current settings as preset"):
        try:
            state.presets.append(save_preset(name, state.settings))
        except ValueError as error:
            st.error(str(error))
        else:
            _persist()
            st.success("Preset saved.")

    for preset in list(state.presets):
        row = st.columns([3, 1, 1, 1])
        row[0].markdown(f"**{preset.name}**")
        if row[1].button("Load", key=f"load_{preset.id}"):
            _set_settings(apply_preset(state.settings, preset))
            st.rerun()
        row[2].download_button("Export", export_preset_json(preset), file_name=f"{preset.name}.json", key=f"exp_{preset.id}")
        if row[3].button("Delete", key=f"delp_{preset.id}"):
            state.presets = [item for item in state.presets if item.id != preset.id]
            _persist()
            st.rerun()

    uploaded = st.file_uploader("Import preset", type=["json"], key="preset_import")
    if uploaded is not None and st.button("Import preset"):
        try:
            state.presets.append(import_preset_json(uploaded.getvalue().decode("utf-8")))
        except ValueError as error:
            st.error(str(error))
        else:
            _persist()
            st.success("Preset imported.")


st.set_page_config(page_title="Patient Rounding Print & Export", layout="wide")
_init_state()
st.title("Patient Rounding Print & Export")

visible_patients, filtered = _render_data_sidebar()
export_tab, columns_tab, designer_tab, presets_tab = st.tabs(["Print & Export", "Columns", "Layout Designer", "Presets"])
with export_tab:
    _render_export_tab(visible_patients, filtered)
with columns_tab:
    _render_columns_tab()
with designer_tab:
    _render_layout_designer()
with presets_tab:
    _render_presets_tab()
