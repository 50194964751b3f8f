from __future__ import annotations

import io
import logging
from html import escape
from typing import Any

try:
    from docx import Document
    from docx.enum.section import WD_ORIENT
    from docx.shared import Mm, Pt, RGBColor
except Exception:  # pragma: no cover - optional at runtime
    Document = None
    WD_ORIENT = None
    Mm = None
    Pt = None
    RGBColor = None

from src.export_common import ACCENT_HEX, NOTES_KEY, REPORT_TITLE, TODOS_KEY, field_text, report_sections
from src.html_sanitizer import TextRun, html_to_text_runs, strip_html
from src.print_columns import column_label, field_value
from src.print_layout import get_page_metrics
from src.print_models import ExportContext, Patient


LOGGER = logging.getLogger(__name__)

WORD_FONTS = {
    "system": "Calibri",
    "arial": "Arial",
    "helvetica": "Arial",
    "times": "Times New Roman",
    "georgia": "Georgia",
    "courier": "Courier New",
    "mono": "Courier New",
}
CHECKED_BOX = "☑"
EMPTY_BOX = "☐"

_WORD_HTML_OPEN = (
    '<html xmlns:o="urn:schemas-microsoft-com:office:office" '
    'xmlns:w="urn:schemas-microsoft-com:office:word" '
    'xmlns="http://www.w3.org/TR/REC-html40">'
)
_WORD_XML = (
    "<!--[if gte mso 9]><xml><w:WordDocument><w:View>Print</w:View>"
    "<w:Zoom>100</w:Zoom><w:DoNotOptimizeForBrowser/></w:WordDocument></xml><![endif]-->"
)


def _require_docx() -> None:
    if Document is None:
        raise RuntimeError("DOCX export requires `python-docx`. Install with: pip install python-docx")


def _word_font(family: str) -> str:
    return WORD_FONTS.get(str(family or "").lower(), WORD_FONTS["system"])


def _word_css(context: ExportContext) -> str:
    settings = context.settings
    metrics = get_page_metrics(settings)
    font = _word_font(settings.print_font_family)
    size = settings.print_font_size
    border = f"{metrics.border_width:g}px solid #cbd5e1" if metrics.border_width else "none"
    return (
        f"@page {{ size: A4 {settings.print_orientation}; margin: {metrics.margin_mm:g}mm; }}\n"
        f"body {{ font-family: '{font}', sans-serif; font-size: {size}pt; color: #1f2937; }}\n"
        f"h1 {{ font-size: {metrics.title_font_size}pt; text-align: center; margin-bottom: 4pt; }}\n"
        ".meta { text-align: center; color: #646464; font-size: 8pt; }\n"
        f".patient-card {{ border: {border}; padding: 8pt; margin-bottom: 12pt; }}\n"
        f".patient-header {{ font-size: {size + 4}pt; font-weight: bold; color: {ACCENT_HEX}; }}\n"
        ".bed { color: #646464; }\n"
        ".section-title { font-weight: bold; margin-top: 6pt; }\n"
        ".systems-table { width: 100%; border-collapse: collapse; }\n"
        ".systems-table td { vertical-align: top; padding: 2pt 4pt; }\n"
        ".todo-item { margin-left: 12pt; }\n"
        ".todo-item.done { color: #646464; text-decoration: line-through; }\n"
        ".page-break { page-break-before: always; }\n"
    )


def _systems_table_html(context: ExportContext, patient: Patient, keys: tuple[str, ...]) -> str:
    cells = [
        f"<td><b>{escape(column_label(key))}:</b> {field_value(patient, key)}</td>"
        for key in keys
        if field_text(context, patient, key)
    ]
    if not cells:
        return ""
    per_row = max(1, context.settings.systems_review_column_count)
    rows = [
        "<tr>" + "".join(cells[index:index + per_row]) + "</tr>"
        for index in range(0, len(cells), per_row)
    ]
    return f"<table class=\"systems-table\">{''.join(rows)}</table>"


def _section_html(context: ExportContext, patient: Patient, key: str) -> str:
    if key == TODOS_KEY:
        return "".join(
            f"<div class=\"todo-item{' done' if todo.completed else ''}\">"
            f"{CHECKED_BOX if todo.completed else EMPTY_BOX} {escape(strip_html(todo.content))}</div>"
            for todo in context.todos_for(patient)
        )
    if key == NOTES_KEY:
        return escape(context.notes_for(patient).strip()).replace("\n", "<br/>")
    return field_value(patient, key)


def build_word_html_document(context: ExportContext) -> bytes:
    """Word-compatible HTML document; field markup is kept as entered."""
    settings = context.settings
    parts = [
        _WORD_HTML_OPEN,
        "<head><meta charset=\"utf-8\">",
        f"<title>{escape(REPORT_TITLE)}</title>",
        _WORD_XML,
        f"<style>\n{_word_css(context)}</style></head><body>",
        f"<h1>{escape(REPORT_TITLE)}</h1>",
    ]
    meta = [f"Total Patients: {len(context.patients)}"]
    if settings.show_timestamp:
        meta.insert(0, f"Generated: {context.generated_label()}")
    parts.append(f"<p class=\"meta\">{escape(' | '.join(meta))}</p>")

    sections = report_sections(settings)
    for index, patient in enumerate(context.patients, start=1):
        card_class = "patient-card page-break" if settings.one_patient_per_page and index > 1 else "patient-card"
        parts.append(f"<div class=\"{card_class}\">")
        bed = f" <span class=\"bed\">({escape(patient.bed)})</span>" if patient.bed else ""
        parts.append(f"<div class=\"patient-header\">Patient {index}: {escape(patient.name)}{bed}</div>")
        for section in sections:
            if section.is_systems:
                body = _systems_table_html(context, patient, section.fields)
            elif field_text(context, patient, section.key):
                body = _section_html(context, patient, section.key)
            else:
                body = ""
            if body:
                parts.append(f"<div class=\"section-title\">{escape(section.label)}</div>")
                parts.append(f"<div class=\"section-body\">{body}</div>")
        parts.append("</div>")

    parts.append("</body></html>")
    LOGGER.info("Word document built: %d patients", len(context.patients))
    return "\n".join(parts).encode("utf-8")


def _add_runs(paragraph: Any, runs: list[TextRun]) -> None:
    for run in runs:
        if run.text == "\n":
            paragraph.add_run().add_break()
            continue
        added = paragraph.add_run(run.text)
        added.bold = run.bold or None
        added.italic = run.italic or None
        added.underline = run.underline or None
        if run.color:
            added.font.color.rgb = RGBColor.from_string(run.color[1:].upper())


def _add_rich_paragraph(doc: Any, html: str) -> None:
    runs = html_to_text_runs(html)
    if runs:
        _add_runs(doc.add_paragraph(), runs)


def _configure_section(doc: Any, context: ExportContext) -> None:
    metrics = get_page_metrics(context.settings)
    section = doc.sections[0]
    section.page_width = Mm(metrics.width_mm)
    section.page_height = Mm(metrics.height_mm)
    if context.settings.print_orientation == "landscape":
        section.orientation = WD_ORIENT.LANDSCAPE
    for side in ("left_margin", "right_margin", "top_margin", "bottom_margin"):
        setattr(section, side, Mm(metrics.margin_mm))
    style = doc.styles["Normal"]
    style.font.name = _word_font(context.settings.print_font_family)
    style.font.size = Pt(context.settings.print_font_size)


def _add_systems_table(doc: Any, context: ExportContext, patient: Patient, present: list[str]) -> None:
    per_row = max(1, context.settings.systems_review_column_count)
    row_count = (len(present) + per_row - 1) // per_row
    table = doc.add_table(rows=row_count, cols=per_row)
    for index, key in enumerate(present):
        cell = table.cell(index // per_row, index % per_row)
        paragraph = cell.paragraphs[0]
        paragraph.add_run(f"{column_label(key)}: ").bold = True
        _add_runs(paragraph, html_to_text_runs(field_value(patient, key)))


def build_docx_document(context: ExportContext) -> bytes:
    _require_docx()

    settings = context.settings
    doc = Document()
    _configure_section(doc, context)
    doc.add_heading(REPORT_TITLE, level=1)
    if settings.show_timestamp:
        doc.add_paragraph(f"Generated: {context.generated_label()}")
    doc.add_paragraph(f"Total Patients: {len(context.patients)}")

    sections = report_sections(settings)
    for index, patient in enumerate(context.patients, start=1):
        if index > 1 and settings.one_patient_per_page:
            doc.add_page_break()
        heading = f"Patient {index}: {patient.name}"
        if patient.bed:
            heading += f" ({patient.bed})"
        doc.add_heading(heading, level=2)
        for section in sections:
            if section.is_systems:
                present = [key for key in section.fields if field_text(context, patient, key)]
                if present:
                    doc.add_heading(section.label, level=3)
                    _add_systems_table(doc, context, patient, present)
                continue
            if not field_text(context, patient, section.key):
                continue
            doc.add_heading(section.label, level=3)
            if section.key == TODOS_KEY:
                for todo in context.todos_for(patient):
                    mark = CHECKED_BOX if todo.completed else EMPTY_BOX
                    doc.add_paragraph(f"{mark} {strip_html(todo.content)}", style="List Bullet")
            elif section.key == NOTES_KEY:
                doc.add_paragraph(context.notes_for(patient).strip())
            else:
                _add_rich_paragraph(doc, field_value(patient, section.key))

    buffer = io.BytesIO()
    doc.save(buffer)
    LOGGER.info("DOCX export built: %d patients", len(context.patients))
    return buffer.getvalue()
