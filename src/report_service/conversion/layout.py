"""Print layout heuristics for tabular reports of unknown shape.

``compute_directives`` looks at the parsed document and the user's
RenderConfig and returns plain data describing how each table should be
printed and which blocks must not be separated by a page boundary. It never
touches the document; ``compose`` turns the directives into markup and CSS.

Elements are addressed by position: tables by their index in
``find_all("table")``, other blocks by their index in ``find_all(True)``.
Both are stable for a given document and parser.
"""
import re
from dataclasses import dataclass

from bs4 import BeautifulSoup, Tag

from .models import RenderConfig

PARSER = "html.parser"


@dataclass(frozen=True)
class SizeBand:
    name: str
    max_columns: int | None
    font_scale: float
    width_strategy: str
    first_column_weight: float


# Ordered by column count. Font scales must not increase down the list.
SIZE_BANDS = (
    SizeBand("few", 5, 1.0, "auto", 1.0),
    SizeBand("moderate", 9, 0.85, "weighted", 1.25),
    SizeBand("many", 14, 0.72, "equal", 1.5),
    SizeBand("very_many", None, 0.62, "equal", 1.5),
)

FIRST_COLUMN_MIN_WIDTH = 20.0
AUTO_FIT_COLUMNS = 8
AUTO_FIT_FLOOR = 0.5
TITLE_MAX_CHARS = 120

HEADING_TAGS = ("h1", "h2", "h3", "h4", "h5", "h6")
TITLE_CLASSES = frozenset({
    "section-header", "section-title", "cohen-header", "cohen-subtitle",
    "title", "subtitle", "table-title",
})
GROUP_CLASSES = frozenset({
    "asset-group", "investment-group", "table-section", "lote-section", "group",
})
SUMMARY_CLASSES = frozenset({"total", "totals", "subtotal", "summary", "investment-total"})
_SUMMARY_TEXT = re.compile(r"^\s*(sub)?total(es)?\b", re.I)


@dataclass(frozen=True)
class TableDirective:
    index: int
    columns: int
    size_class: str
    font_scale: float
    width_strategy: str
    column_widths: tuple[float, ...]
    first_column_min_width: float | None
    repeat_header: bool
    promote_header: bool
    keep_row_groups: bool
    summary_rows: tuple[int, ...]


@dataclass(frozen=True)
class BlockBinding:
    """Keep ``element_index`` on the same page as the block that follows it."""

    element_index: int
    tag: str
    next_index: int | None


@dataclass(frozen=True)
class GroupMarker:
    element_index: int
    tag: str


@dataclass(frozen=True)
class LayoutDirective:
    page_size: str
    landscape: bool
    margin_top_mm: float
    margin_side_mm: float
    content_scale: float
    alternate_rows: bool
    keep_groups: bool
    tables: tuple[TableDirective, ...]
    bindings: tuple[BlockBinding, ...]
    groups: tuple[GroupMarker, ...]

    def table(self, index: int) -> TableDirective | None:
        for t in self.tables:
            if t.index == index:
                return t
        return None


def parse(document: str | BeautifulSoup) -> BeautifulSoup:
    if isinstance(document, BeautifulSoup):
        return document
    return BeautifulSoup(document, PARSER)


def classify(columns: int) -> SizeBand:
    for band in SIZE_BANDS:
        if band.max_columns is None or columns <= band.max_columns:
            return band
    return SIZE_BANDS[-1]


def font_scale(columns: int, auto_fit: bool = False) -> float:
    """Non-increasing in ``columns`` with or without auto-fit."""
    scale = classify(columns).font_scale
    if auto_fit and columns > AUTO_FIT_COLUMNS:
        scale = min(scale, max(AUTO_FIT_FLOOR, AUTO_FIT_COLUMNS / columns))
    return round(scale, 3)


def column_widths(columns: int, first_weight: float) -> tuple[float, ...]:
    """Percent widths, first column ``first_weight`` times the others.

    Values are floored to two decimals so the total never exceeds 100.
    """
    if columns <= 0:
        return ()
    share = 100.0 / (columns - 1 + first_weight)
    widths = [first_weight * share] + [share] * (columns - 1)
    return tuple(int(w * 100) / 100 for w in widths)


def table_rows(table: Tag) -> list[Tag]:
    """Rows that belong to ``table`` itself, not to tables nested in it."""
    return [tr for tr in table.find_all("tr") if tr.find_parent("table") is table]


def _row_span(row: Tag) -> int:
    total = 0
    for cell in row.find_all(["th", "td"], recursive=False):
        try:
            total += max(int(cell.get("colspan", 1)), 1)
        except (TypeError, ValueError):
            total += 1
    return total


def header_rows(table: Tag, rows: list[Tag] | None = None) -> list[Tag]:
    rows = table_rows(table) if rows is None else rows
    thead = table.find("thead")
    if thead is not None and thead.find_parent("table") is table:
        in_head = [r for r in rows if r.find_parent("thead") is thead]
        if in_head:
            return in_head
    return rows[:1]


def count_columns(table: Tag) -> int:
    rows = table_rows(table)
    heads = header_rows(table, rows)
    columns = max((_row_span(r) for r in heads), default=0)
    if columns == 0:
        columns = max((_row_span(r) for r in rows), default=0)
    return columns


def _classes(tag: Tag) -> set[str]:
    return {c.lower() for c in (tag.get("class") or [])}


def is_summary_row(row: Tag) -> bool:
    if row.find_parent("tfoot") is not None:
        return True
    if _classes(row) & SUMMARY_CLASSES:
        return True
    first = row.find(["th", "td"], recursive=False)
    return bool(first is not None and _SUMMARY_TEXT.match(first.get_text(" ", strip=True)))


def summary_rows(rows: list[Tag], keep_groups: bool) -> tuple[int, ...]:
    """Indexes of summary rows to bind to the row before them.

    Trailing summary rows are always bound. With ``keep_groups`` every
    subtotal inside the table is bound too.
    """
    bound: list[int] = []
    i = len(rows) - 1
    while i > 0 and is_summary_row(rows[i]):
        bound.append(i)
        i -= 1
    if keep_groups:
        bound.extend(j for j in range(1, i + 1) if is_summary_row(rows[j]))
    return tuple(sorted(set(bound)))


def _has_repeatable_header(table: Tag, rows: list[Tag]) -> tuple[bool, bool]:
    """Return (has header row, needs promotion into a thead)."""
    thead = table.find("thead")
    if thead is not None and thead.find_parent("table") is table:
        return True, False
    if not rows:
        return False, False
    first = rows[0]
    cells = first.find_all(["th", "td"], recursive=False)
    all_th = bool(cells) and all(c.name == "th" for c in cells)
    return all_th, all_th


def _next_block(tag: Tag) -> Tag | None:
    for sibling in tag.next_siblings:
        if isinstance(sibling, Tag):
            return sibling
    return None


def _is_title(tag: Tag) -> bool:
    if tag.name in HEADING_TAGS:
        return True
    if _classes(tag) & TITLE_CLASSES:
        return True
    # A short text block sitting right above a table reads as the table's title.
    if tag.name in ("p", "div", "span", "strong", "b") and tag.find(["table", "p", "div"]) is None:
        nxt = _next_block(tag)
        if nxt is not None and (nxt.name == "table" or nxt.find("table") is not None):
            text = tag.get_text(" ", strip=True)
            return 0 < len(text) <= TITLE_MAX_CHARS
    return False


def compute_directives(document: str | BeautifulSoup, config: RenderConfig) -> LayoutDirective:
    soup = parse(document)
    positions = {id(tag): i for i, tag in enumerate(soup.find_all(True))}

    tables: list[TableDirective] = []
    for index, table in enumerate(soup.find_all("table")):
        rows = table_rows(table)
        columns = count_columns(table)
        band = classify(columns)
        has_header, promote = _has_repeatable_header(table, rows)
        widths: tuple[float, ...] = ()
        if band.width_strategy != "auto":
            widths = column_widths(columns, band.first_column_weight)
        tables.append(TableDirective(
            index=index,
            columns=columns,
            size_class=band.name,
            font_scale=font_scale(columns, config.auto_fit_text),
            width_strategy=band.width_strategy,
            column_widths=widths,
            first_column_min_width=FIRST_COLUMN_MIN_WIDTH if band.width_strategy == "auto" and columns > 1 else None,
            repeat_header=config.repeat_headers and has_header,
            promote_header=config.repeat_headers and promote,
            keep_row_groups=config.keep_groups_together,
            summary_rows=summary_rows(rows, config.keep_groups_together),
        ))

    bindings: list[BlockBinding] = []
    groups: list[GroupMarker] = []
    for tag in soup.find_all(True):
        if tag.name in ("html", "head", "body", "table", "tr", "td", "th"):
            continue
        if _is_title(tag):
            nxt = _next_block(tag)
            bindings.append(BlockBinding(
                element_index=positions[id(tag)],
                tag=tag.name,
                next_index=positions[id(nxt)] if nxt is not None and config.keep_groups_together else None,
            ))
        elif config.keep_groups_together and (_classes(tag) & GROUP_CLASSES):
            groups.append(GroupMarker(element_index=positions[id(tag)], tag=tag.name))

    return LayoutDirective(
        page_size=config.page_size,
        landscape=config.landscape,
        margin_top_mm=config.margin_top,
        margin_side_mm=config.margin_side,
        content_scale=config.content_scale / 100,
        alternate_rows=config.alternate_row_colors,
        keep_groups=config.keep_groups_together,
        tables=tuple(tables),
        bindings=tuple(bindings),
        groups=tuple(groups),
    )
