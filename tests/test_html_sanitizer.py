from __future__ import annotations

import re
import unittest

from src.html_sanitizer import (
    RTFColorTable,
    clean_inline_styles,
    escape_rtf,
    first_inline_color,
    html_to_rtf,
    html_to_text_runs,
    parse_color,
    strip_html,
)


class StripHtmlTests(unittest.TestCase):
    def test_concatenates_text_nodes_by_default(self) -> None:
        self.assertEqual(strip_html("<b>A</b><br/><i>B</i>"), "AB")

    def test_preserve_breaks_keeps_line_structure(self) -> None:
        self.assertEqual(strip_html("<b>A</b><br/><i>B</i>", preserve_breaks=True), "A\nB")
        self.assertEqual(strip_html("<p>one</p><p>two</p>", preserve_breaks=True), "one\ntwo")

    def test_empty_and_entities(self) -> None:
        self.assertEqual(strip_html(""), "")
        self.assertEqual(strip_html(None), "")
        self.assertEqual(strip_html("<p>Tom &amp; Jerry</p>"), "Tom & Jerry")

    def test_malformed_markup_still_yields_text(self) -> None:
        self.assertEqual(strip_html("<b>unclosed <i>text"), "unclosed text")

    def test_script_content_is_dropped(self) -> None:
        self.assertEqual(strip_html("<p>ok</p><script>alert(1)</script>"), "ok")


class InlineStyleTests(unittest.TestCase):
    def test_only_color_declarations_survive(self) -> None:
        cleaned = clean_inline_styles('<span style="font-size: 20px; color: red; font-weight: bold">x</span>')
        self.assertIn('style="color: red"', cleaned)
        self.assertNotIn("font-size", cleaned)
        self.assertNotIn("font-weight", cleaned)

    def test_background_color_kept(self) -> None:
        cleaned = clean_inline_styles('<span style="background-color: #ff0; margin: 2px">y</span>')
        self.assertIn('style="background-color: #ff0"', cleaned)
        self.assertNotIn("margin", cleaned)

    def test_style_attribute_removed_when_nothing_left(self) -> None:
        self.assertEqual(clean_inline_styles('<p style="margin: 0">z</p>'), "<p>z</p>")

    def test_event_handlers_and_scripts_removed(self) -> None:
        cleaned = clean_inline_styles('<p onclick="steal()">ok</p><script>alert(1)</script>')
        self.assertNotIn("onclick", cleaned)
        self.assertNotIn("script", cleaned)
        self.assertIn("ok", cleaned)


class ColorTests(unittest.TestCase):
    def test_parse_color_formats(self) -> None:
        self.assertEqual(parse_color("rgb(255, 0, 0)"), (255, 0, 0))
        self.assertEqual(parse_color("#3b82f6"), (59, 130, 246))
        self.assertEqual(parse_color("#fff"), (255, 255, 255))
        self.assertEqual(parse_color("Red"), (255, 0, 0))
        self.assertIsNone(parse_color("bogus"))
        self.assertIsNone(parse_color(""))

    def test_first_inline_color(self) -> None:
        value = '<p>plain <span style="color: rgb(220, 38, 38)">x</span></p>'
        self.assertEqual(first_inline_color(value), "#dc2626")
        self.assertEqual(first_inline_color("<p>plain</p>"), "")


class RtfTests(unittest.TestCase):
    def test_color_table_is_seeded_and_deduplicated(self) -> None:
        table = RTFColorTable()
        self.assertEqual(len(table), 3)
        self.assertEqual(table.add_color((0, 0, 0)), 1)
        self.assertEqual(table.add_color((59, 130, 246)), 2)
        self.assertEqual(table.add_color((10, 20, 30)), 4)
        self.assertEqual(table.add_color((10, 20, 30)), 4)
        self.assertTrue(table.render().startswith("{\\colortbl;\\red0\\green0\\blue0;"))
        self.assertIn("\\red10\\green20\\blue30;", table.render())

    def test_escape_rtf(self) -> None:
        self.assertEqual(escape_rtf("a{b}\\c\nd"), "a\\{b\\}\\\\c\\par\nd")
        self.assertEqual(escape_rtf("caf\u00e9"), "caf\\u233?")
        self.assertEqual(escape_rtf(None), "")

    def test_formatting_maps_to_control_words(self) -> None:
        rtf = html_to_rtf("<b>bold</b> and <i>it</i> <u>under</u>", RTFColorTable())
        self.assertIn("\\b bold\\b0", rtf)
        self.assertIn("\\i it\\i0", rtf)
        self.assertIn("\\ul under\\ul0", rtf)

    def test_color_indices_stay_within_table(self) -> None:
        table = RTFColorTable()
        rtf = html_to_rtf(
            '<p><span style="color: #ff0000">alert</span> <span style="background-color: yellow">hi</span></p>',
            table,
        )
        self.assertIn("\\cf4 alert\\cf1", rtf)
        self.assertIn("\\highlight5 hi\\highlight0", rtf)
        indices = [int(value) for value in re.findall(r"\\(?:cf|highlight)(\d+)", rtf)]
        self.assertTrue(all(index <= len(table) for index in indices))
        self.assertFalse(rtf.endswith("\\par"))

    def test_nested_spans_restore_enclosing_formatting(self) -> None:
        rtf = html_to_rtf(
            '<span style="color: #ff0000">a<span style="color: #0000ff">b</span>c</span>'
            '<b>x<strong>y</strong>z</b>',
            RTFColorTable(),
        )
        self.assertIn("\\cf4 a\\cf5 b\\cf4 c\\cf1 ", rtf)
        self.assertIn("\\b xyz\\b0", rtf)


class TextRunTests(unittest.TestCase):
    def test_runs_carry_formatting(self) -> None:
        runs = html_to_text_runs('<b>Hi</b> <span style="color:#00ff00">go</span>')
        self.assertEqual("".join(run.text for run in runs), "Hi go")
        self.assertTrue(any(run.text == "Hi" and run.bold for run in runs))
        self.assertTrue(any(run.text == "go" and run.color == "#00ff00" for run in runs))

    def test_plain_text_is_single_run(self) -> None:
        runs = html_to_text_runs("just text")
        self.assertEqual([run.text for run in runs], ["just text"])


if __name__ == "__main__":
    unittest.main()
