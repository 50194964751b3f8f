from __future__ import annotations

import logging

from src.export_common import NOTES_KEY, REPORT_TITLE, TODOS_KEY, field_text, report_sections, todo_mark
from src.html_sanitizer import RTFColorTable, escape_rtf, html_to_rtf, strip_html
from src.print_columns import column_label, field_value
from src.print_layout import get_page_metrics
from src.print_models import ExportContext, Patient


LOGGER = logging.getLogger(__name__)

TWIPS_PER_MM = 56.7
A4_TWIPS = (11906, 16838)

FONT_TABLE = "{\\fonttbl{\\f0\\fswiss Arial;}{\\f1\\fmodern Courier New;}}"


def _page_setup(context: ExportContext) -> str:
    metrics = get_page_metrics(context.settings)
    width, height = A4_TWIPS
    margin = int(round(metrics.margin_mm * TWIPS_PER_MM))
    margins = f"\\margl{margin}\\margr{margin}\\margt{margin}\\margb{margin}"
    if context.settings.print_orientation == "landscape":
        return f"\\landscape\\paperw{height}\\paperh{width}{margins}"
    return f"\\paperw{width}\\paperh{height}{margins}"


def _section_rtf(context: ExportContext, patient: Patient, key: str, table: RTFColorTable, body_size: int) -> str:
    if key == TODOS_KEY:
        todos = context.todos_for(patient)
        if not todos:
            return ""
        lines = [
            f"{{\\pntext\\bullet\\tab}}{todo_mark(todo)} {escape_rtf(strip_html(todo.content))}\\par\n"
            for todo in todos
        ]
        return f"\\pard\\fs{body_size} " + "".join(lines)
    if key == NOTES_KEY:
        notes = context.notes_for(patient).strip()
        return f"\\pard\\fs{body_size} {escape_rtf(notes)}\\par\n" if notes else ""
    content = html_to_rtf(field_value(patient, key), table)
    return f"\\pard\\fs{body_size} {content}\\par\n" if content else ""


def _patient_rtf(context: ExportContext, index: int, patient: Patient, table: RTFColorTable) -> str:
    body_size = context.settings.print_font_size * 2
    parts = [f"\\pard\\sb240\\fs28\\b\\cf2 Patient {index}: {escape_rtf(patient.name)}\\cf1\\b0\\par\n"]
    if patient.bed:
        parts.append(f"\\pard\\fs20\\cf3 Bed/Room: {escape_rtf(patient.bed)}\\cf1\\par\n")

    for section in report_sections(context.settings):
        if section.is_systems:
            lines: list[str] = []
            for key in section.fields:
                content = html_to_rtf(field_value(patient, key), table)
                if content:
                    lines.append(f"\\pard\\li360\\fs{body_size}\\b {escape_rtf(column_label(key))}:\\b0  {content}\\par\n")
            if lines:
                parts.append(f"\\pard\\sb120\\fs22\\b {escape_rtf(section.label)}:\\b0\\par\n")
                parts.extend(lines)
            continue
        if not field_text(context, patient, section.key):
            continue
        content = _section_rtf(context, patient, section.key, table, body_size)
        if content:
            parts.append(f"\\pard\\sb120\\fs22\\b {escape_rtf(section.label)}:\\b0\\par\n")
            parts.append(content)
    return "".join(parts)


def build_rtf_body(context: ExportContext, table: RTFColorTable) -> str:
    """Document body; every color it uses is registered in ``table``."""
    settings = context.settings
    metrics = get_page_metrics(settings)
    parts = [f"\\pard\\qc\\fs{metrics.title_font_size * 2}\\b {escape_rtf(REPORT_TITLE)}\\b0\\par\n"]
    if settings.show_timestamp:
        parts.append(f"\\pard\\qc\\fs18\\cf3 Generated: {escape_rtf(context.generated_label())}\\cf1\\par\n")
    parts.append(f"\\pard\\qc\\fs18\\cf3 Total Patients: {len(context.patients)}\\cf1\\par\n")

    for index, patient in enumerate(context.patients, start=1):
        if index > 1:
            parts.append("\\page\n" if settings.one_patient_per_page else "\\pard\\par\n")
        parts.append(_patient_rtf(context, index, patient, table))
    return "".join(parts)


def build_rtf_document(context: ExportContext) -> bytes:
    table = RTFColorTable()
    body = build_rtf_body(context, table)
    header = "{\\rtf1\\ansi\\deff0\n" + FONT_TABLE + "\n" + table.render() + "\n" + _page_setup(context) + "\n"
    LOGGER.info("RTF export built: %d patients, %d colors", len(context.patients), len(table))
    return (header + body + "}").encode("ascii")
