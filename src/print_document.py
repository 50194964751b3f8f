from __future__ import annotations

import logging
from html import escape

from src.export_common import ACCENT_HEX, ALT_ROW_HEX, REPORT_TITLE, field_html, field_text, report_sections
from src.print_columns import PATIENT_KEY, column_label
from src.print_layout import column_percentages, effective_font_size, get_page_metrics, resolve_render_columns
from src.print_models import ExportContext, Patient, RenderColumn


LOGGER = logging.getLogger(__name__)

CSS_FONTS = {
    "system": "-apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, sans-serif",
    "arial": "Arial, Helvetica, sans-serif",
    "helvetica": "Helvetica, Arial, sans-serif",
    "times": "'Times New Roman', Times, serif",
    "georgia": "Georgia, serif",
    "courier": "'Courier New', Courier, monospace",
    "mono": "ui-monospace, 'Courier New', monospace",
}


def _css(context: ExportContext, font_size: float) -> str:
    settings = context.settings
    metrics = get_page_metrics(settings)
    family = CSS_FONTS.get(settings.print_font_family, CSS_FONTS["system"])
    border = f"{metrics.border_width:g}px solid #cbd5e1" if metrics.border_width else "none"
    padding = "2px 4px" if settings.compact_mode else "4px 6px"
    css = [
        f"@page {{ size: A4 {settings.print_orientation}; margin: {metrics.margin_mm:g}mm; }}",
        f"body {{ font-family: {family}; font-size: {font_size:g}pt; color: #1f2937; }}",
        f"h1 {{ font-size: {metrics.title_font_size}pt; margin: 0 0 4px; }}",
        ".meta { color: #64748b; font-size: 8pt; margin-bottom: 8px; }",
        "table.print-table { width: 100%; border-collapse: collapse; table-layout: fixed; }",
        f"table.print-table th {{ background: {ACCENT_HEX}; color: #fff; text-align: left; padding: {padding}; border: {border}; }}",
        f"table.print-table td {{ vertical-align: top; padding: {padding}; border: {border}; word-wrap: break-word; }}",
        ".bed { color: #64748b; font-size: 0.9em; }",
        ".combined-label, .section-label { font-weight: bold; }",
        f".patient-card {{ border: {border}; padding: 8px; margin-bottom: 10px; break-inside: avoid; }}",
        ".patient-list-item { border-bottom: 1px solid #e2e8f0; padding: 6px 0; }",
        f".patient-heading {{ color: {ACCENT_HEX}; font-weight: bold; font-size: 1.2em; }}",
        f".systems-grid {{ display: grid; grid-template-columns: repeat({settings.systems_review_column_count}, 1fr); gap: 4px 12px; }}",
        "ul.todos { margin: 0; padding-left: 16px; }",
        "li.done { color: #64748b; text-decoration: line-through; }",
        ".page-break { page-break-before: always; }",
    ]
    if settings.alternate_row_colors:
        css.append(f"table.print-table tbody tr:nth-child(even) td {{ background: {ALT_ROW_HEX}; }}")
    return "\n".join(css)


def _patient_cell(patient: Patient) -> str:
    bed = f"<div class=\"bed\">{escape(patient.bed)}</div>" if patient.bed else ""
    return f"<strong>{escape(patient.name)}</strong>{bed}"


def _cell(context: ExportContext, patient: Patient, column: RenderColumn) -> str:
    if column.key == PATIENT_KEY:
        return _patient_cell(patient)
    if not column.is_combined:
        return field_html(context, patient, column.key)
    parts = [
        f"<div class=\"combined-part\"><span class=\"combined-label\">{escape(column_label(key))}:</span> "
        f"{field_html(context, patient, key)}</div>"
        for key in column.members
        if field_text(context, patient, key)
    ]
    return "".join(parts)


def _table_view(context: ExportContext, columns: list[RenderColumn]) -> str:
    shares = column_percentages(columns)
    colgroup = "".join(f"<col style=\"width: {shares[column.key]:g}%\">" for column in columns)
    header = "".join(f"<th>{escape(column.label)}</th>" for column in columns)
    rows: list[str] = []
    for index, patient in enumerate(context.patients):
        row_class = " class=\"page-break\"" if context.settings.one_patient_per_page and index else ""
        cells = "".join(f"<td>{_cell(context, patient, column)}</td>" for column in columns)
        rows.append(f"<tr{row_class}>{cells}</tr>")
    return (
        f"<table class=\"print-table\"><colgroup>{colgroup}</colgroup>"
        f"<thead><tr>{header}</tr></thead><tbody>{''.join(rows)}</tbody></table>"
    )


def _sections_view(context: ExportContext, boxed: bool) -> str:
    item_class = "patient-card" if boxed else "patient-list-item"
    sections = report_sections(context.settings)
    blocks: list[str] = []
    for index, patient in enumerate(context.patients, start=1):
        classes = item_class + (" page-break" if context.settings.one_patient_per_page and index > 1 else "")
        bed = f" <span class=\"bed\">({escape(patient.bed)})</span>" if patient.bed else ""
        parts = [f"<div class=\"{classes}\"><div class=\"patient-heading\">{escape(patient.name)}{bed}</div>"]
        for section in sections:
            if section.is_systems:
                cells = [
                    f"<div><span class=\"section-label\">{escape(column_label(key))}:</span> "
                    f"{field_html(context, patient, key)}</div>"
                    for key in section.fields
                    if field_text(context, patient, key)
                ]
                if cells:
                    parts.append(f"<div class=\"section-label\">{escape(section.label)}</div>")
                    parts.append(f"<div class=\"systems-grid\">{''.join(cells)}</div>")
                continue
            if field_text(context, patient, section.key):
                parts.append(
                    f"<div class=\"section\"><span class=\"section-label\">{escape(section.label)}:</span> "
                    f"{field_html(context, patient, section.key)}</div>"
                )
        parts.append("</div>")
        blocks.append("".join(parts))
    return "".join(blocks)


def render_print_document(context: ExportContext) -> str:
    """Standalone HTML for the active view, with only color styling kept from field content."""
    settings = context.settings
    columns = resolve_render_columns(settings)
    font_size = effective_font_size(settings, len(columns))

    meta: list[str] = []
    if settings.show_timestamp:
        meta.append(f"Generated: {context.generated_label()}")
    meta.append(f"Total Patients: {len(context.patients)}")

    if settings.active_tab == "table":
        body = _table_view(context, columns)
    else:
        body = _sections_view(context, boxed=settings.active_tab == "cards")

    header = f"<h1>{escape(REPORT_TITLE)}</h1>"
    if settings.header_style != "minimal":
        header += f"<div class=\"meta\">{escape(' | '.join(meta))}</div>"
    return (
        "<!DOCTYPE html><html><head><meta charset=\"utf-8\">"
        f"<title>{escape(REPORT_TITLE)}</title><style>{_css(context, font_size)}</style></head>"
        f"<body>{header}{body}</body></html>"
    )


def build_html_document(context: ExportContext) -> bytes:
    document = render_print_document(context)
    LOGGER.info("HTML export built: %d patients, view=%s", len(context.patients), context.settings.active_tab)
    return document.encode("utf-8")
