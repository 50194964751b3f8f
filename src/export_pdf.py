from __future__ import annotations

import io
import logging
from html import escape
from typing import Any

try:
    from reportlab.lib import colors
    from reportlab.lib.pagesizes import A4, landscape
    from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
    from reportlab.lib.units import mm
    from reportlab.platypus import KeepTogether, PageBreak, Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle
except Exception:
    colors = None
    A4 = None
    landscape = None
    ParagraphStyle = None
    getSampleStyleSheet = None
    mm = None
    KeepTogether = None
    PageBreak = None
    Paragraph = None
    SimpleDocTemplate = None
    Spacer = None
    Table = None
    TableStyle = None

from src.export_common import ACCENT_HEX, ALT_ROW_HEX, REPORT_TITLE, TODOS_KEY, field_text, report_sections
from src.html_sanitizer import first_inline_color
from src.print_columns import PATIENT_KEY, column_label, field_value
from src.print_layout import PageMetrics, column_percentages, effective_font_size, get_page_metrics, resolve_render_columns
from src.print_models import ExportContext, Patient, RenderColumn


LOGGER = logging.getLogger(__name__)

FONT_FAMILIES = {
    "system": ("Helvetica", "Helvetica-Bold"),
    "arial": ("Helvetica", "Helvetica-Bold"),
    "helvetica": ("Helvetica", "Helvetica-Bold"),
    "times": ("Times-Roman", "Times-Bold"),
    "georgia": ("Times-Roman", "Times-Bold"),
    "courier": ("Courier", "Courier-Bold"),
    "mono": ("Courier", "Courier-Bold"),
}

GRID_COLOR = "#cbd5e1"
MUTED_COLOR = "#64748b"


def _require_reportlab() -> None:
    if SimpleDocTemplate is None:
        raise RuntimeError("PDF export requires `reportlab`. Install with: pip install reportlab")


def _fonts(family: str) -> tuple[str, str]:
    return FONT_FAMILIES.get(str(family or "").lower(), FONT_FAMILIES["system"])


def _markup(text: str, color: str = "") -> str:
    body = escape(text).replace("\n", "<br/>")
    if color and body:
        return f"<font color='{color}'>{body}</font>"
    return body


def _field_markup(context: ExportContext, patient: Patient, key: str) -> str:
    text = field_text(context, patient, key)
    color = first_inline_color(field_value(patient, key)) if key != TODOS_KEY else ""
    return _markup(text, color)


def _build_styles(context: ExportContext, metrics: PageMetrics, font_size: float) -> dict[str, Any]:
    regular, bold = _fonts(context.settings.print_font_family)
    sheet = getSampleStyleSheet()
    leading = font_size * (1.15 if context.settings.compact_mode else 1.3)
    return {
        "title": ParagraphStyle(
            "title",
            parent=sheet["Heading1"],
            fontName=bold,
            fontSize=metrics.title_font_size,
            leading=metrics.title_font_size + 2,
            spaceAfter=2,
        ),
        "meta": ParagraphStyle(
            "meta",
            parent=sheet["Normal"],
            fontName=regular,
            fontSize=max(6.0, font_size - 1),
            leading=max(7.0, font_size),
            textColor=colors.HexColor(MUTED_COLOR),
            spaceAfter=5,
        ),
        "header": ParagraphStyle(
            "header",
            parent=sheet["Normal"],
            fontName=bold,
            fontSize=font_size,
            leading=leading,
            textColor=colors.white,
        ),
        "cell": ParagraphStyle(
            "cell",
            parent=sheet["Normal"],
            fontName=regular,
            fontSize=font_size,
            leading=leading,
        ),
        "card_header": ParagraphStyle(
            "card_header",
            parent=sheet["Normal"],
            fontName=bold,
            fontSize=font_size + 2,
            leading=(font_size + 2) * 1.25,
            textColor=colors.HexColor(ACCENT_HEX),
            spaceAfter=3,
        ),
        "section": ParagraphStyle(
            "section",
            parent=sheet["Normal"],
            fontName=bold,
            fontSize=font_size,
            leading=leading,
            spaceBefore=2,
        ),
    }


def _patient_cell(patient: Patient) -> str:
    bed = f"<br/><font color='{MUTED_COLOR}'>{escape(patient.bed)}</font>" if patient.bed else ""
    return f"<b>{escape(patient.name)}</b>{bed}"


def _combined_cell(context: ExportContext, patient: Patient, column: RenderColumn) -> str:
    blocks: list[str] = []
    for key in column.members:
        markup = _field_markup(context, patient, key)
        if markup:
            blocks.append(f"<b>{escape(column_label(key))}:</b> {markup}")
    return "<br/>".join(blocks)


def _table_row(context: ExportContext, patient: Patient, columns: list[RenderColumn], styles: dict[str, Any]) -> list[Any]:
    row: list[Any] = []
    for column in columns:
        if column.key == PATIENT_KEY:
            markup = _patient_cell(patient)
        elif column.is_combined:
            markup = _combined_cell(context, patient, column)
        else:
            markup = _field_markup(context, patient, column.key)
        row.append([Paragraph(markup, styles["cell"])])
    return row


def _grid_table(
    context: ExportContext,
    patients: list[Patient],
    columns: list[RenderColumn],
    width: float,
    metrics: PageMetrics,
    styles: dict[str, Any],
) -> Table:
    shares = column_percentages(columns)
    col_widths = [width * shares[column.key] / 100 for column in columns]
    data: list[list[Any]] = [[Paragraph(escape(column.label), styles["header"]) for column in columns]]
    data.extend(_table_row(context, patient, columns, styles) for patient in patients)

    padding = 2 if context.settings.compact_mode else 4
    commands: list[tuple[Any, ...]] = [
        ("BACKGROUND", (0, 0), (-1, 0), colors.HexColor(ACCENT_HEX)),
        ("VALIGN", (0, 0), (-1, -1), "TOP"),
        ("LEFTPADDING", (0, 0), (-1, -1), padding),
        ("RIGHTPADDING", (0, 0), (-1, -1), padding),
        ("TOPPADDING", (0, 0), (-1, -1), padding),
        ("BOTTOMPADDING", (0, 0), (-1, -1), padding),
    ]
    if metrics.border_width > 0:
        commands.append(("GRID", (0, 0), (-1, -1), metrics.border_width * 0.5, colors.HexColor(GRID_COLOR)))
    if context.settings.alternate_row_colors and len(data) > 2:
        commands.append(("ROWBACKGROUNDS", (0, 1), (-1, -1), [colors.white, colors.HexColor(ALT_ROW_HEX)]))

    # List-valued cells let a row taller than the frame continue on the next page.
    table = Table(data, colWidths=col_widths, repeatRows=1, splitInRow=1)
    table.setStyle(TableStyle(commands))
    return table


def _systems_grid(
    context: ExportContext,
    patient: Patient,
    keys: tuple[str, ...],
    width: float,
    styles: dict[str, Any],
) -> Table | None:
    cells = [
        [Paragraph(f"<b>{escape(column_label(key))}:</b> {_field_markup(context, patient, key)}", styles["cell"])]
        for key in keys
        if field_text(context, patient, key)
    ]
    if not cells:
        return None
    per_row = max(1, context.settings.systems_review_column_count)
    rows = [cells[index:index + per_row] for index in range(0, len(cells), per_row)]
    rows[-1] = rows[-1] + [""] * (per_row - len(rows[-1]))
    table = Table(rows, colWidths=[width / per_row] * per_row, splitInRow=1)
    table.setStyle(
        TableStyle(
            [
                ("VALIGN", (0, 0), (-1, -1), "TOP"),
                ("LEFTPADDING", (0, 0), (-1, -1), 2),
                ("RIGHTPADDING", (0, 0), (-1, -1), 4),
            ]
        )
    )
    return table


def _patient_card(
    context: ExportContext,
    index: int,
    patient: Patient,
    width: float,
    metrics: PageMetrics,
    styles: dict[str, Any],
    boxed: bool,
) -> Any:
    heading = f"Patient {index}: {escape(patient.name)}"
    if patient.bed:
        heading += f" <font color='{MUTED_COLOR}'>({escape(patient.bed)})</font>"
    flowables: list[Any] = [Paragraph(heading, styles["card_header"])]
    inner_width = width - 12

    for section in report_sections(context.settings):
        if section.is_systems:
            grid = _systems_grid(context, patient, section.fields, inner_width, styles)
            if grid is not None:
                flowables.append(Paragraph(escape(section.label), styles["section"]))
                flowables.append(grid)
            continue
        markup = _field_markup(context, patient, section.key)
        if not markup:
            continue
        flowables.append(Paragraph(escape(section.label), styles["section"]))
        flowables.append(Paragraph(markup, styles["cell"]))

    if not boxed:
        return KeepTogether(flowables)

    table = Table([[flowables]], colWidths=[width], splitInRow=1)
    commands: list[tuple[Any, ...]] = [
        ("VALIGN", (0, 0), (-1, -1), "TOP"),
        ("LEFTPADDING", (0, 0), (-1, -1), 6),
        ("RIGHTPADDING", (0, 0), (-1, -1), 6),
        ("TOPPADDING", (0, 0), (-1, -1), 5),
        ("BOTTOMPADDING", (0, 0), (-1, -1), 5),
    ]
    if metrics.border_width > 0:
        commands.append(("BOX", (0, 0), (-1, -1), metrics.border_width * 0.6, colors.HexColor(GRID_COLOR)))
    if context.settings.alternate_row_colors and index % 2 == 0:
        commands.append(("BACKGROUND", (0, 0), (-1, -1), colors.HexColor(ALT_ROW_HEX)))
    table.setStyle(TableStyle(commands))
    return table


def _page_decorator(context: ExportContext, regular_font: str):
    def _decorate(canvas: Any, doc: Any) -> None:
        canvas.saveState()
        canvas.setFont(regular_font, 7)
        canvas.setFillColor(colors.HexColor(MUTED_COLOR))
        y = doc.bottomMargin / 2
        if context.settings.show_timestamp:
            canvas.drawString(doc.leftMargin, y, f"Generated {context.generated_label()}")
        if context.settings.show_page_numbers:
            canvas.drawRightString(doc.pagesize[0] - doc.rightMargin, y, f"Page {canvas.getPageNumber()}")
        canvas.restoreState()

    return _decorate


def build_pdf_document(context: ExportContext) -> bytes:
    _require_reportlab()

    settings = context.settings
    metrics = get_page_metrics(settings)
    page_size = landscape(A4) if settings.print_orientation == "landscape" else A4
    margin = metrics.margin_mm * mm

    buffer = io.BytesIO()
    doc = SimpleDocTemplate(
        buffer,
        pagesize=page_size,
        leftMargin=margin,
        rightMargin=margin,
        topMargin=margin,
        bottomMargin=margin,
        title=REPORT_TITLE,
    )

    columns = resolve_render_columns(settings)
    font_size = effective_font_size(settings, len(columns))
    styles = _build_styles(context, metrics, font_size)

    meta_parts: list[str] = []
    if settings.show_timestamp:
        meta_parts.append(f"Generated: {context.generated_label()}")
    total = context.total_patients()
    meta_parts.append(f"Total Patients: {len(context.patients)}")
    if context.is_filtered and total != len(context.patients):
        meta_parts.append(f"Filtered from {total}")

    story: list[Any] = [Paragraph(REPORT_TITLE, styles["title"])]
    if settings.header_style != "minimal":
        story.append(Paragraph(escape(" | ".join(meta_parts)), styles["meta"]))

    if settings.active_tab == "table":
        if settings.one_patient_per_page and context.patients:
            for index, patient in enumerate(context.patients):
                if index:
                    story.append(PageBreak())
                story.append(_grid_table(context, [patient], columns, doc.width, metrics, styles))
        else:
            story.append(_grid_table(context, list(context.patients), columns, doc.width, metrics, styles))
    else:
        boxed = settings.active_tab == "cards"
        gap = 2 if settings.compact_mode else 4
        for index, patient in enumerate(context.patients, start=1):
            if index > 1:
                story.append(PageBreak() if settings.one_patient_per_page else Spacer(1, gap * mm))
            story.append(_patient_card(context, index, patient, doc.width, metrics, styles, boxed))
        if not context.patients:
            story.append(Paragraph("No patients to display.", styles["cell"]))

    decorate = _page_decorator(context, _fonts(settings.print_font_family)[0])
    doc.build(story, onFirstPage=decorate, onLaterPages=decorate)
    LOGGER.info("PDF export built: %d patients, view=%s", len(context.patients), settings.active_tab)
    return buffer.getvalue()
