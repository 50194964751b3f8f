from __future__ import annotations

import io
import logging
from typing import Any

try:
    from openpyxl import Workbook
    from openpyxl.cell.cell import ILLEGAL_CHARACTERS_RE
    from openpyxl.styles import Alignment, Font, PatternFill
    from openpyxl.utils import get_column_letter
except Exception:  # pragma: no cover - optional at runtime
    Workbook = None
    ILLEGAL_CHARACTERS_RE = None
    Alignment = None
    Font = None
    PatternFill = None
    get_column_letter = None

from src.export_common import ALT_ROW_HEX, ACCENT_HEX, field_text, report_fields
from src.print_columns import column_label
from src.print_models import ExportContext


LOGGER = logging.getLogger(__name__)

SHEET_TITLE = "Patient Rounding"
MIN_COLUMN_WIDTH = 15
MAX_COLUMN_WIDTH = 60


def _require_openpyxl() -> None:
    if Workbook is None:
        raise RuntimeError("Excel export requires `openpyxl`. Install with: pip install openpyxl")


def excel_headers(context: ExportContext) -> list[str]:
    fields = report_fields(context.settings)
    return ["Patient Name", "Bed/Room", *(column_label(key) for key in fields), "Created", "Last Modified"]


def _cell_value(value: Any) -> Any:
    # openpyxl rejects control characters other than tab, newline and carriage return.
    if isinstance(value, str) and ILLEGAL_CHARACTERS_RE is not None:
        return ILLEGAL_CHARACTERS_RE.sub("", value)
    return value


def excel_rows(context: ExportContext) -> list[list[Any]]:
    fields = report_fields(context.settings)
    rows: list[list[Any]] = []
    for patient in context.patients:
        row: list[Any] = [patient.name, patient.bed]
        row.extend(field_text(context, patient, key) for key in fields)
        row.extend([patient.created_at, patient.last_modified])
        rows.append([_cell_value(value) for value in row])
    return rows


def build_excel_workbook(context: ExportContext) -> bytes:
    _require_openpyxl()

    headers = excel_headers(context)
    rows = excel_rows(context)

    workbook = Workbook()
    sheet = workbook.active
    sheet.title = SHEET_TITLE

    header_font = Font(name="Calibri", size=11, bold=True, color="FFFFFF")
    header_fill = PatternFill(start_color=ACCENT_HEX[1:].upper(), end_color=ACCENT_HEX[1:].upper(), fill_type="solid")
    alt_fill = PatternFill(start_color=ALT_ROW_HEX[1:].upper(), end_color=ALT_ROW_HEX[1:].upper(), fill_type="solid")
    wrap = Alignment(wrap_text=True, vertical="top")

    sheet.append(headers)
    for cell in sheet[1]:
        cell.font = header_font
        cell.fill = header_fill
        cell.alignment = wrap

    for index, row in enumerate(rows):
        sheet.append(row)
        row_number = index + 2
        for cell in sheet[row_number]:
            cell.alignment = wrap
            if context.settings.alternate_row_colors and index % 2 == 1:
                cell.fill = alt_fill

    for column_index, header in enumerate(headers, start=1):
        width = max(len(header), MIN_COLUMN_WIDTH)
        sheet.column_dimensions[get_column_letter(column_index)].width = min(width, MAX_COLUMN_WIDTH)
    sheet.freeze_panes = "A2"

    buffer = io.BytesIO()
    workbook.save(buffer)
    LOGGER.info("Excel export built: %d patient rows, %d columns", len(rows), len(headers))
    return buffer.getvalue()
