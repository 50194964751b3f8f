from __future__ import annotations

import html as html_lib
import logging
import re
from dataclasses import dataclass

from lxml import etree
from lxml import html as lxml_html


LOGGER = logging.getLogger(__name__)

_CONTROL_RE = re.compile(r"[\x00-\x08\x0B\x0C\x0E-\x1F]")
_TAG_RE = re.compile(r"<[^>]+>")
_WS_RE = re.compile(r"\s+")
_COLOR_DECL_RE = re.compile(r"(?:^|;)\s*color\s*:\s*([^;]+)", re.IGNORECASE)
_BACKGROUND_DECL_RE = re.compile(r"(?:^|;)\s*background(?:-color)?\s*:\s*([^;]+)", re.IGNORECASE)
_RGB_RE = re.compile(r"rgba?\(\s*(\d{1,3})\s*,\s*(\d{1,3})\s*,\s*(\d{1,3})", re.IGNORECASE)
_HEX6_RE = re.compile(r"^#([0-9a-f]{2})([0-9a-f]{2})([0-9a-f]{2})$", re.IGNORECASE)
_HEX3_RE = re.compile(r"^#([0-9a-f])([0-9a-f])([0-9a-f])$", re.IGNORECASE)

BLOCK_TAGS = {"p", "div", "li", "tr", "h1", "h2", "h3", "h4", "h5", "h6", "ul", "ol", "table", "blockquote", "pre"}
BOLD_TAGS = {"b", "strong"}
ITALIC_TAGS = {"i", "em"}
UNDERLINE_TAGS = {"u", "ins"}

NAMED_COLORS = {
    "black": (0, 0, 0),
    "white": (255, 255, 255),
    "red": (255, 0, 0),
    "green": (0, 128, 0),
    "blue": (0, 0, 255),
    "yellow": (255, 255, 0),
    "orange": (255, 165, 0),
    "purple": (128, 0, 128),
    "gray": (128, 128, 128),
    "grey": (128, 128, 128),
    "darkred": (139, 0, 0),
    "darkgreen": (0, 100, 0),
    "darkblue": (0, 0, 139),
    "navy": (0, 0, 128),
    "maroon": (128, 0, 0),
    "teal": (0, 128, 128),
    "brown": (165, 42, 42),
    "pink": (255, 192, 203),
}

# Seeded entries: 1 text black, 2 accent blue, 3 muted gray.
DEFAULT_RTF_COLORS = ((0, 0, 0), (59, 130, 246), (100, 100, 100))


def _fallback_text(value: str) -> str:
    return html_lib.unescape(_TAG_RE.sub("", value))


def _parse_fragment(value: str | None) -> lxml_html.HtmlElement | None:
    cleaned = _CONTROL_RE.sub(" ", str(value or ""))
    if not cleaned.strip():
        return None
    try:
        root = lxml_html.fragment_fromstring(cleaned, create_parent="div")
    except (etree.ParserError, ValueError) as error:
        LOGGER.debug("HTML fragment could not be parsed: %s", error)
        return None
    for node in list(root.iter(etree.Comment, "script", "style")):
        node.drop_tree()
    return root


def _tag(node: etree._Element) -> str:
    return node.tag.lower() if isinstance(node.tag, str) else ""


def _declaration(style: str, pattern: re.Pattern[str]) -> str:
    match = pattern.search(style or "")
    return match.group(1).strip() if match else ""


def strip_html(value: str | None, *, preserve_breaks: bool = False) -> str:
    """Plain text of an HTML fragment.

    By default text nodes are concatenated as-is (``<b>A</b><br/><i>B</i>`` gives ``AB``).
    With ``preserve_breaks`` line breaks and block ends become newlines.
    """
    if not value:
        return ""
    root = _parse_fragment(value)
    if root is None:
        return _fallback_text(_CONTROL_RE.sub(" ", str(value))).strip()
    if not preserve_breaks:
        return "".join(root.itertext()).strip()

    parts: list[str] = []
    _collect_lines(root, parts)
    lines = [_WS_RE.sub(" ", line).strip() for line in "".join(parts).split("\n")]
    text = "\n".join(lines)
    return re.sub(r"\n{3,}", "\n\n", text).strip()


def _collect_lines(node: etree._Element, parts: list[str]) -> None:
    tag = _tag(node)
    if tag == "br":
        parts.append("\n")
    if node.text:
        parts.append(node.text)
    for child in node:
        _collect_lines(child, parts)
        if child.tail:
            parts.append(child.tail)
    if tag in BLOCK_TAGS:
        parts.append("\n")


def _inner_html(root: lxml_html.HtmlElement) -> str:
    pieces = [html_lib.escape(root.text, quote=False)] if root.text else []
    pieces.extend(etree.tostring(child, encoding="unicode", method="html") for child in root)
    return "".join(pieces)


def clean_inline_styles(value: str | None) -> str:
    """Drop every inline style declaration except ``color`` and ``background-color``."""
    if not value:
        return ""
    root = _parse_fragment(value)
    if root is None:
        return html_lib.escape(_fallback_text(str(value)), quote=False)
    for element in root.iter():
        if not isinstance(element.tag, str):
            continue
        for attribute in list(element.attrib):
            if attribute.lower().startswith("on"):
                del element.attrib[attribute]
        style = element.get("style")
        if style is None:
            continue
        kept: list[str] = []
        color = _declaration(style, _COLOR_DECL_RE)
        background = _declaration(style, _BACKGROUND_DECL_RE)
        if color:
            kept.append(f"color: {color}")
        if background:
            kept.append(f"background-color: {background}")
        if kept:
            element.set("style", "; ".join(kept))
        else:
            del element.attrib["style"]
    return _inner_html(root)


def parse_color(value: str | None) -> tuple[int, int, int] | None:
    text = str(value or "").strip().lower()
    if not text:
        return None
    match = _RGB_RE.search(text)
    if match:
        return tuple(min(255, int(part)) for part in match.groups())  # type: ignore[return-value]
    match = _HEX6_RE.match(text)
    if match:
        return tuple(int(part, 16) for part in match.groups())  # type: ignore[return-value]
    match = _HEX3_RE.match(text)
    if match:
        return tuple(int(part * 2, 16) for part in match.groups())  # type: ignore[return-value]
    return NAMED_COLORS.get(text)


def color_to_hex(rgb: tuple[int, int, int]) -> str:
    return "#{:02x}{:02x}{:02x}".format(*rgb)


def _element_color(element: etree._Element) -> tuple[int, int, int] | None:
    rgb = parse_color(_declaration(element.get("style", ""), _COLOR_DECL_RE))
    if rgb is None and _tag(element) == "font":
        rgb = parse_color(element.get("color"))
    return rgb


def _element_background(element: etree._Element) -> tuple[int, int, int] | None:
    rgb = parse_color(_declaration(element.get("style", ""), _BACKGROUND_DECL_RE))
    if rgb is None and _tag(element) == "mark":
        rgb = NAMED_COLORS["yellow"]
    return rgb


def first_inline_color(value: str | None) -> str:
    """Hex color of the first element carrying an inline text color, or ""."""
    root = _parse_fragment(value)
    if root is None:
        return ""
    for element in root.iterdescendants():
        if not isinstance(element.tag, str):
            continue
        rgb = _element_color(element)
        if rgb is not None:
            return color_to_hex(rgb)
    return ""


class RTFColorTable:
    """Ordered, de-duplicated RTF color table. Indices are 1-based; 0 is the auto color."""

    def __init__(self) -> None:
        self._colors: list[tuple[int, int, int]] = []
        self._index: dict[str, int] = {}
        for rgb in DEFAULT_RTF_COLORS:
            self.add_color(rgb)

    def add_color(self, rgb: tuple[int, int, int]) -> int:
        key = "%d,%d,%d" % rgb
        existing = self._index.get(key)
        if existing is not None:
            return existing
        self._colors.append(rgb)
        self._index[key] = len(self._colors)
        return self._index[key]

    def __len__(self) -> int:
        return len(self._colors)

    def render(self) -> str:
        entries = "".join(f"\\red{r}\\green{g}\\blue{b};" for r, g, b in self._colors)
        return "{\\colortbl;" + entries + "}"


def _rtf_unicode(char: str) -> str:
    code = ord(char)
    if code > 0xFFFF:
        encoded = char.encode("utf-16-le")
        units = [int.from_bytes(encoded[index:index + 2], "little") for index in (0, 2)]
    else:
        units = [code]
    return "".join(f"\\u{unit - 65536 if unit > 32767 else unit}?" for unit in units)


def escape_rtf(text: str | None) -> str:
    value = str(text or "")
    value = value.replace("\\", "\\\\").replace("{", "\\{").replace("}", "\\}")
    value = value.replace("\r\n", "\n").replace("\n", "\\par\n").replace("\t", "\\tab ")
    return "".join(char if ord(char) < 128 else _rtf_unicode(char) for char in value)


def html_to_rtf(value: str | None, color_table: RTFColorTable) -> str:
    """RTF body fragment for an HTML fragment; colors are registered in ``color_table``."""
    if not value:
        return ""
    root = _parse_fragment(value)
    if root is None:
        return escape_rtf(_fallback_text(_CONTROL_RE.sub(" ", str(value))).strip())
    parts: list[str] = []
    if root.text:
        parts.append(escape_rtf(_WS_RE.sub(" ", root.text)))
    for child in root:
        _rtf_node(child, color_table, parts)
    rtf = "".join(parts).strip()
    while rtf.endswith("\\par"):
        rtf = rtf[: -len("\\par")].rstrip()
    return rtf


def _rtf_node(
    node: etree._Element,
    color_table: RTFColorTable,
    parts: list[str],
    color_index: int = 1,
    highlight_index: int = 0,
    bold: bool = False,
    italic: bool = False,
    underline: bool = False,
) -> None:
    # Closing a span restores the enclosing formatting, not the document default.
    tag = _tag(node)
    opening: list[str] = []
    closing: list[str] = []

    color = _element_color(node)
    if color is not None:
        inner_color = color_table.add_color(color)
        opening.append(f"\\cf{inner_color} ")
        closing.append(f"\\cf{color_index} ")
    else:
        inner_color = color_index
    background = _element_background(node)
    if background is not None:
        inner_highlight = color_table.add_color(background)
        opening.append(f"\\highlight{inner_highlight} ")
        closing.append(f"\\highlight{highlight_index} ")
    else:
        inner_highlight = highlight_index
    if tag in BOLD_TAGS and not bold:
        opening.append("\\b ")
        closing.append("\\b0 ")
    if tag in ITALIC_TAGS and not italic:
        opening.append("\\i ")
        closing.append("\\i0 ")
    if tag in UNDERLINE_TAGS and not underline:
        opening.append("\\ul ")
        closing.append("\\ul0 ")
    if tag == "li":
        opening.append("{\\pntext\\bullet\\tab}")

    if tag == "br":
        parts.append("\\par\n")
    parts.extend(opening)
    if node.text:
        parts.append(escape_rtf(_WS_RE.sub(" ", node.text)))
    for child in node:
        _rtf_node(
            child,
            color_table,
            parts,
            inner_color,
            inner_highlight,
            bold or tag in BOLD_TAGS,
            italic or tag in ITALIC_TAGS,
            underline or tag in UNDERLINE_TAGS,
        )
    parts.extend(reversed(closing))
    if tag in {"p", "div", "li", "h1", "h2", "h3", "h4", "h5", "h6"}:
        parts.append("\\par\n")
    if node.tail:
        parts.append(escape_rtf(_WS_RE.sub(" ", node.tail)))


@dataclass(frozen=True)
class TextRun:
    text: str
    bold: bool = False
    italic: bool = False
    underline: bool = False
    color: str = ""
    background: str = ""


def html_to_text_runs(value: str | None) -> list[TextRun]:
    """Formatted runs for word processors; newlines mark line breaks and block ends."""
    root = _parse_fragment(value)
    if root is None:
        text = _fallback_text(_CONTROL_RE.sub(" ", str(value or ""))).strip()
        return [TextRun(text)] if text else []
    runs: list[TextRun] = []
    _collect_runs(root, TextRun(""), runs)
    while runs and runs[-1].text == "\n":
        runs.pop()
    return runs


def _collect_runs(node: etree._Element, inherited: TextRun, runs: list[TextRun]) -> None:
    tag = _tag(node)
    color = _element_color(node)
    background = _element_background(node)
    state = TextRun(
        text="",
        bold=inherited.bold or tag in BOLD_TAGS,
        italic=inherited.italic or tag in ITALIC_TAGS,
        underline=inherited.underline or tag in UNDERLINE_TAGS,
        color=color_to_hex(color) if color else inherited.color,
        background=color_to_hex(background) if background else inherited.background,
    )

    def _emit(text: str | None, style: TextRun) -> None:
        collapsed = _WS_RE.sub(" ", text or "")
        if collapsed.strip() or (collapsed and runs and runs[-1].text != "\n"):
            runs.append(TextRun(collapsed, style.bold, style.italic, style.underline, style.color, style.background))

    if tag == "br":
        runs.append(TextRun("\n"))
    if tag == "li":
        runs.append(TextRun("\u2022 "))
    _emit(node.text, state)
    for child in node:
        _collect_runs(child, state, runs)
        _emit(child.tail, state)
    if tag in BLOCK_TAGS and runs and runs[-1].text != "\n":
        runs.append(TextRun("\n"))
