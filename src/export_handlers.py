from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime
from typing import Callable

from src.export_excel import build_excel_workbook
from src.export_pdf import build_pdf_document
from src.export_rtf import build_rtf_document
from src.export_text import build_json_document, build_text_report
from src.export_word import build_docx_document, build_word_html_document
from src.print_document import build_html_document
from src.print_models import ExportContext


LOGGER = logging.getLogger(__name__)

FILENAME_PREFIX = "patient-rounding"
EXPORT_FAILED_MESSAGE = "Export failed. Please try again."


class ExportError(Exception):
    """Raised when an export target is not known."""


@dataclass(frozen=True)
class ExportTarget:
    key: str
    label: str
    extension: str
    mime_type: str
    build: Callable[[ExportContext], bytes]


EXPORT_TARGETS: dict[str, ExportTarget] = {
    target.key: target
    for target in (
        ExportTarget(
            "pdf", "PDF", "pdf", "application/pdf", build_pdf_document,
        ),
        ExportTarget(
            "xlsx", "Excel", "xlsx",
            "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet", build_excel_workbook,
        ),
        ExportTarget(
            "doc", "Word (.doc)", "doc", "application/msword", build_word_html_document,
        ),
        ExportTarget(
            "docx", "Word (.docx)", "docx",
            "application/vnd.openxmlformats-officedocument.wordprocessingml.document", build_docx_document,
        ),
        ExportTarget(
            "rtf", "Rich Text", "rtf", "application/rtf", build_rtf_document,
        ),
        ExportTarget(
            "txt", "Plain Text", "txt", "text/plain", build_text_report,
        ),
        ExportTarget(
            "json", "JSON", "json", "application/json", build_json_document,
        ),
        ExportTarget(
            "html", "HTML", "html", "text/html", build_html_document,
        ),
    )
}


def export_filename(extension: str, when: date | datetime | None = None) -> str:
    """``patient-rounding-<local ISO date>.<ext>``."""
    day = when or datetime.now()
    if isinstance(day, datetime):
        day = day.date()
    return f"{FILENAME_PREFIX}-{day.isoformat()}.{extension.lstrip('.')}"


def get_export_target(target: str) -> ExportTarget:
    key = str(target or "").strip().lower()
    if key == "excel":
        key = "xlsx"
    found = EXPORT_TARGETS.get(key)
    if found is None:
        raise ExportError(f"Unknown export target: {target!r}")
    return found


def generate_export(target: str, context: ExportContext) -> tuple[bytes, str]:
    export_target = get_export_target(target)
    payload = export_target.build(context)
    filename = export_filename(export_target.extension, context.generated_at)
    LOGGER.info("Export %s ready: %s (%d bytes)", export_target.key, filename, len(payload))
    return payload, filename


def generate_export_safe(target: str, context: ExportContext) -> tuple[bytes | None, str, str | None]:
    """Like ``generate_export`` but never raises; a failed export yields no bytes and a warning."""
    extension = EXPORT_TARGETS[target].extension if target in EXPORT_TARGETS else str(target or "bin")
    filename = export_filename(extension, context.generated_at)
    try:
        payload, filename = generate_export(target, context)
        return payload, filename, None
    except Exception:
        LOGGER.exception("Export to %s failed", target)
        return None, filename, EXPORT_FAILED_MESSAGE
