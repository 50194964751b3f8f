from __future__ import annotations

import io
import json
import re
import unittest
from dataclasses import replace
from datetime import date, datetime
from unittest import mock

try:
    from openpyxl import load_workbook
except Exception:
    load_workbook = None

try:
    import reportlab
except Exception:
    reportlab = None

try:
    from docx import Document
except Exception:
    Document = None

from src.export_handlers import (
    EXPORT_FAILED_MESSAGE,
    EXPORT_TARGETS,
    ExportError,
    ExportTarget,
    export_filename,
    generate_export,
    generate_export_safe,
    get_export_target,
)
from src.export_text import build_json_payload, build_text_report
from src.print_models import ExportContext, Patient, Todo
from src.print_settings import default_print_settings


GENERATED_AT = datetime(2026, 10, 18, 7, 45)


def _patients() -> list[Patient]:
    return [
        Patient(
            id="p1",
            name="John Carter",
            bed="ICU-4",
            clinical_summary="<p>68M with <b>septic shock</b></p>",
            interval_events='<p>Pressor at <span style="color: rgb(220, 38, 38)">0.05</span></p>',
            labs="<p>Lactate 2.1</p>",
            systems={"neuro": "RASS -1", "renal_gu": "UOP ok"},
            created_at="2026-10-15T08:00:00Z",
            last_modified="2026-10-18T06:30:00Z",
        ),
        Patient(id="p2", name="Maria Lopez", bed="ICU-7", clinical_summary="<p>DKA</p>"),
    ]


TODOS = {
    "p1": [Todo("p1", "SBT done", True), Todo("p1", "Repeat lactate", False)],
}


def _context(settings=None, **kwargs) -> ExportContext:
    return ExportContext(
        patients=kwargs.pop("patients", _patients()),
        settings=settings or default_print_settings(),
        get_patient_todos=lambda patient_id: TODOS.get(patient_id, []),
        patient_notes={"p2": "Family meeting at 15:00"},
        generated_at=GENERATED_AT,
        **kwargs,
    )


class ExportDispatchTests(unittest.TestCase):
    def test_filename_pattern(self) -> None:
        self.assertEqual(export_filename("pdf", date(2026, 10, 18)), "patient-rounding-2026-10-18.pdf")
        self.assertEqual(export_filename(".xlsx", GENERATED_AT), "patient-rounding-2026-10-18.xlsx")

    def test_generate_export_uses_context_date(self) -> None:
        payload, filename = generate_export("json", _context())
        self.assertEqual(filename, "patient-rounding-2026-10-18.json")
        self.assertEqual(json.loads(payload)["patientCount"], 2)

    def test_unknown_target_raises(self) -> None:
        with self.assertRaises(ExportError):
            generate_export("pptx", _context())
        self.assertEqual(get_export_target("Excel").key, "xlsx")

    def test_safe_wrapper_reports_failure(self) -> None:
        def _explode(_context: ExportContext) -> bytes:
            raise RuntimeError("boom")

        broken = ExportTarget("txt", "Plain Text", "txt", "text/plain", _explode)
        with mock.patch.dict(EXPORT_TARGETS, {"txt": broken}):
            with self.assertLogs("src.export_handlers", level="ERROR"):
                payload, filename, warning = generate_export_safe("txt", _context())
        self.assertIsNone(payload)
        self.assertEqual(filename, "patient-rounding-2026-10-18.txt")
        self.assertEqual(warning, EXPORT_FAILED_MESSAGE)

    def test_safe_wrapper_success_has_no_warning(self) -> None:
        payload, filename, warning = generate_export_safe("txt", _context())
        self.assertTrue(payload)
        self.assertTrue(filename.endswith(".txt"))
        self.assertIsNone(warning)


class JsonExportTests(unittest.TestCase):
    def test_rows_are_plain_text_with_camel_case_keys(self) -> None:
        payload = build_json_payload(_context())
        row = payload["data"][0]
        self.assertEqual(row["patientName"], "John Carter")
        self.assertEqual(row["clinicalSummary"], "68M with septic shock")
        self.assertEqual(row["intervalEvents"], "Pressor at 0.05")
        self.assertEqual(row["systems"]["renalGU"], "UOP ok")
        self.assertEqual(row["todos"], [
            {"content": "SBT done", "completed": True},
            {"content": "Repeat lactate", "completed": False},
        ])
        self.assertNotIn("notes", row)
        self.assertIn("systems.renalGU", payload["columns"])
        self.assertNotIn("notes", payload["columns"])

    def test_total_patients_follows_filter(self) -> None:
        filtered = build_json_payload(_context(is_filtered=True, total_patient_count=10))
        self.assertTrue(filtered["isFiltered"])
        self.assertEqual(filtered["totalPatients"], 10)
        unfiltered = build_json_payload(_context(total_patient_count=10))
        self.assertEqual(unfiltered["totalPatients"], 2)

    def test_empty_patient_list(self) -> None:
        payload = build_json_payload(_context(patients=[]))
        self.assertEqual(payload["data"], [])
        self.assertEqual(payload["patientCount"], 0)


class TextExportTests(unittest.TestCase):
    def test_report_layout(self) -> None:
        text = build_text_report(_context()).decode("utf-8")
        self.assertTrue(text.startswith("PATIENT ROUNDING REPORT\n" + "=" * 60))
        self.assertIn("Generated: 2026-10-18 07:45", text)
        self.assertIn("Total Patients: 2", text)
        self.assertIn("PATIENT 1: John Carter", text)
        self.assertIn("Bed/Room: ICU-4", text)
        self.assertIn("SYSTEMS REVIEW:\n  Neuro: RASS -1\n  Renal/GU: UOP ok", text)
        self.assertIn("TODOS:\n  [x] SBT done\n  [ ] Repeat lactate", text)
        self.assertNotIn("<b>", text)
        self.assertNotIn("IMAGING:", text)
        self.assertNotIn("Family meeting", text)

    def test_notes_follow_column_state(self) -> None:
        settings = default_print_settings()
        settings = replace(
            settings,
            columns=tuple(replace(column, enabled=True) for column in settings.columns),
            show_timestamp=False,
        )
        text = build_text_report(_context(settings)).decode("utf-8")
        self.assertIn("NOTES:\n  Family meeting at 15:00", text)
        self.assertNotIn("Generated:", text)


class RtfExportTests(unittest.TestCase):
    def _document(self, settings=None) -> str:
        payload, _filename = generate_export("rtf", _context(settings))
        return payload.decode("ascii")

    def test_color_indices_resolve_in_table(self) -> None:
        text = self._document()
        self.assertTrue(text.startswith("{\\rtf1\\ansi"))
        self.assertTrue(text.endswith("}"))
        table = re.search(r"\{\\colortbl;(.*?)\}", text)
        self.assertIsNotNone(table)
        entries = table.group(1).count(";")
        self.assertIn("\\red220\\green38\\blue38;", table.group(1))
        indices = [int(value) for value in re.findall(r"\\cf(\d+)", text)]
        self.assertTrue(indices)
        self.assertTrue(all(1 <= index <= entries for index in indices))

    def test_patient_sections(self) -> None:
        text = self._document()
        self.assertIn("Patient 1: John Carter", text)
        self.assertIn("Bed/Room: ICU-4", text)
        self.assertIn("\\b septic shock\\b0", text)
        self.assertIn("Systems Review:", text)
        self.assertNotIn("\\page", text)

    def test_landscape_with_page_breaks(self) -> None:
        settings = replace(default_print_settings(), print_orientation="landscape", one_patient_per_page=True)
        text = self._document(settings)
        self.assertIn("\\landscape\\paperw16838\\paperh11906", text)
        self.assertIn("\\page", text)


class MarkupExportTests(unittest.TestCase):
    def test_word_html_document(self) -> None:
        payload, filename = generate_export("doc", _context())
        text = payload.decode("utf-8")
        self.assertTrue(filename.endswith(".doc"))
        self.assertIn('xmlns:o="urn:schemas-microsoft-com:office:office"', text)
        self.assertIn('xmlns:w="urn:schemas-microsoft-com:office:word"', text)
        self.assertIn("<w:WordDocument>", text)
        self.assertIn("Patient 1: John Carter", text)
        self.assertIn("<b>septic shock</b>", text)
        self.assertIn("\u2611 SBT done", text)
        self.assertIn("\u2610 Repeat lactate", text)

    def test_html_table_view(self) -> None:
        text = generate_export("html", _context())[0].decode("utf-8")
        self.assertIn('<col style="width: ', text)
        self.assertIn("<th>Clinical Summary</th>", text)
        self.assertIn('style="color: rgb(220, 38, 38)"', text)
        self.assertIn("Total Patients: 2", text)

    def test_html_combined_columns(self) -> None:
        settings = replace(default_print_settings(), combined_columns=("summary_events",))
        text = generate_export("html", _context(settings))[0].decode("utf-8")
        self.assertIn("<th>Summary + Events</th>", text)
        self.assertNotIn("<th>Clinical Summary</th>", text)
        self.assertIn('<span class="combined-label">Clinical Summary:</span>', text)

    def test_html_card_and_list_views(self) -> None:
        cards = generate_export("html", _context(replace(default_print_settings(), active_tab="cards")))[0]
        self.assertIn(b"patient-card", cards)
        self.assertIn(b"systems-grid", cards)
        listing = generate_export("html", _context(replace(default_print_settings(), active_tab="list")))[0]
        self.assertIn(b"patient-list-item", listing)


@unittest.skipIf(load_workbook is None, "openpyxl not installed")
class ExcelExportTests(unittest.TestCase):
    def test_workbook_rows(self) -> None:
        payload, filename = generate_export("xlsx", _context())
        self.assertTrue(filename.endswith(".xlsx"))
        sheet = load_workbook(io.BytesIO(payload)).active
        self.assertEqual(sheet.title, "Patient Rounding")
        headers = [cell.value for cell in sheet[1]]
        self.assertEqual(headers[:3], ["Patient Name", "Bed/Room", "Clinical Summary"])
        self.assertIn("Renal/GU", headers)
        self.assertEqual(headers[-2:], ["Created", "Last Modified"])
        self.assertEqual(sheet["A2"].value, "John Carter")
        self.assertEqual(sheet["C2"].value, "68M with septic shock")
        self.assertEqual(sheet.freeze_panes, "A2")
        self.assertEqual(sheet.max_row, 3)

    def test_control_characters_are_dropped(self) -> None:
        patient = Patient(id="p1", name="Pat\x0bient", bed="ICU\x01-4", clinical_summary="Line\x0bbreak\tok")
        payload, _filename = generate_export("xlsx", _context(patients=[patient]))
        sheet = load_workbook(io.BytesIO(payload)).active
        self.assertEqual(sheet["A2"].value, "Patient")
        self.assertEqual(sheet["B2"].value, "ICU-4")
        self.assertNotIn("\x0b", sheet["C2"].value)


@unittest.skipIf(reportlab is None, "reportlab not installed")
class PdfExportTests(unittest.TestCase):
    def test_every_view_renders(self) -> None:
        for tab in ("table", "cards", "list"):
            settings = replace(default_print_settings(), active_tab=tab, print_orientation="landscape")
            payload, _filename = generate_export("pdf", _context(settings))
            self.assertTrue(payload.startswith(b"%PDF"), tab)

    def test_combined_columns_and_page_breaks(self) -> None:
        settings = replace(
            default_print_settings(),
            combined_columns=("all_content", "systems_review"),
            one_patient_per_page=True,
            auto_fit_font_size=True,
        )
        payload, _filename = generate_export("pdf", _context(settings))
        self.assertTrue(payload.startswith(b"%PDF"))

    def test_row_taller_than_page_continues(self) -> None:
        summary = "".join(
            f"<p>Day {day}: vasopressor titrated, lactate trending, cultures pending.</p>" for day in range(40)
        )
        patients = [Patient(id="p1", name="John Carter", bed="ICU-4", clinical_summary=summary), _patients()[1]]
        payload, _filename = generate_export("pdf", _context(patients=patients))
        self.assertTrue(payload.startswith(b"%PDF"))

    def test_card_taller_than_page_continues(self) -> None:
        summary = "".join(f"<p>Note {index}: stable overnight, plan unchanged.</p>" for index in range(250))
        patient = Patient(
            id="p1",
            name="John Carter",
            bed="ICU-4",
            clinical_summary=summary,
            systems={"neuro": "RASS -1", "cv": "MAP 65-70 on norepinephrine"},
        )
        for tab in ("cards", "list"):
            settings = replace(default_print_settings(), active_tab=tab)
            payload, _filename = generate_export("pdf", _context(settings, patients=[patient]))
            self.assertTrue(payload.startswith(b"%PDF"), tab)

    def test_empty_card_view(self) -> None:
        settings = replace(default_print_settings(), active_tab="cards")
        payload, _filename = generate_export("pdf", _context(settings, patients=[]))
        self.assertTrue(payload.startswith(b"%PDF"))


@unittest.skipIf(Document is None, "python-docx not installed")
class DocxExportTests(unittest.TestCase):
    def test_document_headings(self) -> None:
        payload, _filename = generate_export("docx", _context())
        document = Document(io.BytesIO(payload))
        texts = [paragraph.text for paragraph in document.paragraphs]
        self.assertIn("Patient Rounding Report", texts)
        self.assertIn("Patient 1: John Carter (ICU-4)", texts)
        self.assertIn("\u2611 SBT done", texts)
        self.assertEqual(len(document.tables), 1)


if __name__ == "__main__":
    unittest.main()
