from __future__ import annotations

from html import escape

from src.html_sanitizer import clean_inline_styles, strip_html
from src.print_columns import PATIENT_KEY, field_value
from src.print_layout import ReportSection, expand_render_fields, group_sections, resolve_render_columns
from src.print_models import ExportContext, Patient, PrintSettings, Todo


REPORT_TITLE = "Patient Rounding Report"
TODOS_KEY = "todos"
NOTES_KEY = "notes"
ACCENT_HEX = "#3b82f6"
ALT_ROW_HEX = "#f5f7fa"


def todo_mark(todo: Todo) -> str:
    return "[x]" if todo.completed else "[ ]"


def todo_line(todo: Todo) -> str:
    return f"{todo_mark(todo)} {strip_html(todo.content)}"


def report_fields(settings: PrintSettings) -> list[str]:
    return expand_render_fields(resolve_render_columns(settings))


def report_sections(settings: PrintSettings) -> list[ReportSection]:
    return group_sections(report_fields(settings))


def field_text(context: ExportContext, patient: Patient, key: str, *, preserve_breaks: bool = True) -> str:
    """Plain text for one field of one patient, todos and notes included."""
    if key == TODOS_KEY:
        return "\n".join(todo_line(todo) for todo in context.todos_for(patient))
    if key == NOTES_KEY:
        return context.notes_for(patient).strip()
    if key == PATIENT_KEY:
        return patient.name
    return strip_html(field_value(patient, key), preserve_breaks=preserve_breaks)


def field_html(context: ExportContext, patient: Patient, key: str) -> str:
    """Markup for one field with only color styling kept."""
    if key == TODOS_KEY:
        items = [
            f"<li class=\"{'done' if todo.completed else 'open'}\">{escape(todo_line(todo))}</li>"
            for todo in context.todos_for(patient)
        ]
        return f"<ul class=\"todos\">{''.join(items)}</ul>" if items else ""
    if key == NOTES_KEY:
        notes = context.notes_for(patient).strip()
        return escape(notes).replace("\n", "<br/>") if notes else ""
    if key == PATIENT_KEY:
        return escape(patient.name)
    return clean_inline_styles(field_value(patient, key))
