from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from src.print_columns import (
    DEFAULT_COLUMN_WIDTHS,
    DEFAULT_COMBINED_COLUMN_WIDTHS,
    FALLBACK_COLUMN_WIDTH,
    PATIENT_KEY,
    column_label,
    default_columns,
    find_combination,
    is_system_key,
    normalize_columns,
)
from src.print_models import PrintSettings, RenderColumn


LOGGER = logging.getLogger(__name__)

PAGE_SIZES_MM = {
    "portrait": (210.0, 297.0),
    "landscape": (297.0, 210.0),
}
MARGIN_MM = {"narrow": 10.0, "normal": 15.0, "wide": 20.0}
HEADER_FONT_OFFSETS = {"minimal": 4, "standard": 7, "detailed": 10}
BORDER_WIDTHS = {"none": 0.0, "light": 1.0, "medium": 2.0, "heavy": 3.0}

SYSTEMS_SECTION_KEY = "systems"
SYSTEMS_SECTION_LABEL = "Systems Review"

MIN_AUTO_FIT_FONT_SIZE = 6
AUTO_FIT_COMFORTABLE_COLUMNS = 6


@dataclass(frozen=True)
class PageMetrics:
    width_mm: float
    height_mm: float
    margin_mm: float
    title_font_size: int
    border_width: float

    @property
    def content_width_mm(self) -> float:
        return self.width_mm - 2 * self.margin_mm


@dataclass(frozen=True)
class ReportSection:
    key: str
    label: str
    fields: tuple[str, ...]

    @property
    def is_systems(self) -> bool:
        return self.key == SYSTEMS_SECTION_KEY


def _positive(value: Any) -> float | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return float(value) if value > 0 else None


def _single_width(key: str, settings: PrintSettings) -> float | None:
    widths = {**DEFAULT_COLUMN_WIDTHS, **(settings.column_widths or {})}
    width = _positive(widths.get(key))
    if width is None and is_system_key(key):
        width = _positive(widths.get("systems.neuro"))
    return width


def _combined_width(key: str, settings: PrintSettings) -> float | None:
    widths = {**DEFAULT_COMBINED_COLUMN_WIDTHS, **(settings.combined_column_widths or {})}
    return _positive(widths.get(key))


def resolve_render_columns(settings: PrintSettings) -> list[RenderColumn]:
    """Ordered render columns for the current column selection and active combinations.

    A combination is emitted when at least one member is enabled; it then claims all of its
    members, so they do not also appear as single columns. When two active combinations share
    a member, the one activated first keeps it.
    """
    columns = normalize_columns(settings.columns or default_columns())
    enabled = {column.key for column in columns if column.enabled}
    claimed: set[str] = set()
    render: list[RenderColumn] = []

    for combination_key in settings.combined_columns:
        combination = find_combination(combination_key, settings.custom_combinations)
        if combination is None:
            LOGGER.debug("Ignoring unknown column combination %r", combination_key)
            continue
        members = [key for key in combination.columns if key != PATIENT_KEY and key not in claimed]
        visible = tuple(key for key in members if key in enabled)
        if not visible:
            continue
        render.append(
            RenderColumn(
                key=combination.key,
                label=combination.label,
                kind="combined",
                width=_combined_width(combination.key, settings) or FALLBACK_COLUMN_WIDTH,
                members=visible,
            )
        )
        claimed.update(members)

    for column in columns:
        if not column.enabled or column.key in claimed:
            continue
        render.append(
            RenderColumn(
                key=column.key,
                label=column.label or column_label(column.key),
                kind="single",
                width=_single_width(column.key, settings) or FALLBACK_COLUMN_WIDTH,
                members=(column.key,),
            )
        )

    render.sort(key=lambda column: 0 if column.key == PATIENT_KEY else 1)
    return render


def allocate_column_percentages(widths: list[Any]) -> list[float]:
    """Percent share per width, two decimals; the last entry absorbs rounding so the total is 100."""
    if not widths:
        return []
    values = [_positive(width) or float(FALLBACK_COLUMN_WIDTH) for width in widths]
    total = sum(values)
    hundredths = [round(value * 10000 / total) for value in values]
    hundredths[-1] = 10000 - sum(hundredths[:-1])
    return [value / 100 for value in hundredths]


def column_percentages(render_columns: list[RenderColumn]) -> dict[str, float]:
    shares = allocate_column_percentages([column.width for column in render_columns])
    return {column.key: share for column, share in zip(render_columns, shares)}


def expand_render_fields(render_columns: list[RenderColumn]) -> list[str]:
    """Field keys in render order with combinations flattened; the identity column is left out."""
    fields: list[str] = []
    for column in render_columns:
        for key in column.members:
            if key != PATIENT_KEY and key not in fields:
                fields.append(key)
    return fields


def group_sections(fields: list[str]) -> list[ReportSection]:
    """Group system fields into one Systems Review section placed where the first system appears."""
    sections: list[ReportSection] = []
    systems = [key for key in fields if is_system_key(key)]
    for key in fields:
        if is_system_key(key):
            if systems:
                sections.append(ReportSection(SYSTEMS_SECTION_KEY, SYSTEMS_SECTION_LABEL, tuple(systems)))
                systems = []
            continue
        sections.append(ReportSection(key, column_label(key), (key,)))
    return sections


def get_page_metrics(settings: PrintSettings) -> PageMetrics:
    width, height = PAGE_SIZES_MM.get(settings.print_orientation, PAGE_SIZES_MM["portrait"])
    return PageMetrics(
        width_mm=width,
        height_mm=height,
        margin_mm=MARGIN_MM.get(settings.margins, MARGIN_MM["normal"]),
        title_font_size=settings.print_font_size + HEADER_FONT_OFFSETS.get(settings.header_style, 7),
        border_width=BORDER_WIDTHS.get(settings.border_style, 1.0),
    )


def effective_font_size(settings: PrintSettings, column_count: int) -> float:
    """Body font size; with auto-fit on, shrink half a point per column past six, never below 6pt."""
    base = float(settings.print_font_size)
    if not settings.auto_fit_font_size:
        return base
    excess = max(0, column_count - AUTO_FIT_COMFORTABLE_COLUMNS)
    return max(float(MIN_AUTO_FIT_FONT_SIZE), base - 0.5 * excess)
