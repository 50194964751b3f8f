from __future__ import annotations

import json
import logging
from typing import Any

from src.export_common import NOTES_KEY, TODOS_KEY, field_text, report_fields, report_sections
from src.html_sanitizer import strip_html
from src.print_columns import column_label, is_system_key, system_name
from src.print_models import ExportContext, Patient


LOGGER = logging.getLogger(__name__)

BANNER_WIDTH = 60
TXT_TITLE = "PATIENT ROUNDING REPORT"

JSON_KEYS = {
    "clinical_summary": "clinicalSummary",
    "interval_events": "intervalEvents",
    "renal_gu": "renalGU",
    "skin_lines": "skinLines",
}


def json_key(key: str) -> str:
    return ".".join(JSON_KEYS.get(part, part) for part in key.split("."))


def _indent(text: str, prefix: str = "  ") -> list[str]:
    return [f"{prefix}{line}" if line else "" for line in text.split("\n")]


def _patient_block(context: ExportContext, index: int, patient: Patient) -> list[str]:
    lines = [
        "-" * BANNER_WIDTH,
        f"PATIENT {index}: {patient.name}",
    ]
    if patient.bed:
        lines.append(f"Bed/Room: {patient.bed}")
    lines.append("-" * BANNER_WIDTH)

    for section in report_sections(context.settings):
        if section.is_systems:
            entries = [
                (column_label(key), field_text(context, patient, key))
                for key in section.fields
            ]
            entries = [(label, text) for label, text in entries if text]
            if not entries:
                continue
            lines.append("")
            lines.append(f"{section.label.upper()}:")
            for label, text in entries:
                first, *rest = text.split("\n")
                lines.append(f"  {label}: {first}")
                lines.extend(_indent("\n".join(rest), "    ") if rest else [])
            continue
        text = field_text(context, patient, section.key)
        if not text:
            continue
        lines.append("")
        lines.append(f"{section.label.upper()}:")
        lines.extend(_indent(text))
    return lines


def build_text_report(context: ExportContext) -> bytes:
    lines = [
        TXT_TITLE,
        "=" * BANNER_WIDTH,
    ]
    if context.settings.show_timestamp:
        lines.append(f"Generated: {context.generated_label()}")
    lines.append(f"Total Patients: {len(context.patients)}")
    lines.append("=" * BANNER_WIDTH)

    for index, patient in enumerate(context.patients, start=1):
        lines.append("")
        lines.extend(_patient_block(context, index, patient))

    lines.append("")
    LOGGER.info("Text export built: %d patients", len(context.patients))
    return "\n".join(lines).encode("utf-8")


def _json_row(context: ExportContext, patient: Patient, fields: list[str]) -> dict[str, Any]:
    row: dict[str, Any] = {"patientName": patient.name, "bed": patient.bed}
    systems: dict[str, str] = {}
    for key in fields:
        if key == TODOS_KEY:
            row["todos"] = [
                {"content": strip_html(todo.content), "completed": todo.completed}
                for todo in context.todos_for(patient)
            ]
        elif key == NOTES_KEY:
            row["notes"] = context.notes_for(patient)
        elif is_system_key(key):
            systems[json_key(system_name(key))] = field_text(context, patient, key, preserve_breaks=False)
        else:
            row[json_key(key)] = field_text(context, patient, key, preserve_breaks=False)
    if systems:
        row["systems"] = systems
    row["createdAt"] = patient.created_at
    row["lastModified"] = patient.last_modified
    return row


def build_json_payload(context: ExportContext) -> dict[str, Any]:
    settings = context.settings
    fields = report_fields(settings)
    return {
        "exportedAt": context.generated_at.isoformat(),
        "patientCount": len(context.patients),
        "columns": [json_key(column.key) for column in settings.columns if column.enabled],
        "combinedColumns": list(settings.combined_columns),
        "isFiltered": bool(context.is_filtered),
        "totalPatients": context.total_patients(),
        "data": [_json_row(context, patient, fields) for patient in context.patients],
    }


def build_json_document(context: ExportContext) -> bytes:
    payload = build_json_payload(context)
    LOGGER.info("JSON export built: %d patients", payload["patientCount"])
    return json.dumps(payload, indent=2, ensure_ascii=False).encode("utf-8")
