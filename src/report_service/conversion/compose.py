"""Turn layout directives into a print-ready HTML document.

The output is plain HTML + CSS shared by every PDF strategy. Directives are
applied as classes and inline styles rather than attribute selectors so the
simpler renderers (xhtml2pdf) honour them as well as browsers do.
"""
from bs4 import BeautifulSoup, Doctype, Tag

from .layout import PARSER, LayoutDirective, TableDirective, header_rows, table_rows

BASE_FONT_PT = 9.0
BASE_TABLE_FONT_PT = 8.0


def _fmt(value: float) -> str:
    return f"{value:.2f}".rstrip("0").rstrip(".")


def stylesheet(directives: LayoutDirective) -> str:
    scale = directives.content_scale
    orientation = "landscape" if directives.landscape else "portrait"
    css = [
        f"@page {{ size: {directives.page_size} {orientation}; "
        f"margin: {_fmt(directives.margin_top_mm)}mm {_fmt(directives.margin_side_mm)}mm; }}",
        f"body {{ font-family: Arial, Helvetica, sans-serif; font-size: {_fmt(BASE_FONT_PT * scale)}pt; "
        "line-height: 1.25; color: #000; background: #fff; }",
        "table { width: 100%; border-collapse: collapse; margin-bottom: 8pt; }",
        "table.layout-fixed { table-layout: fixed; }",
        "th, td { padding: 2pt 3pt; border: 0.5pt solid #ccc; vertical-align: top; "
        "word-wrap: break-word; overflow-wrap: break-word; }",
        "th { background-color: #f0f0f0; font-weight: bold; text-align: center; }",
        "tr { page-break-inside: avoid; break-inside: avoid; }",
        # Totals print once, after the body rows.
        "tfoot { display: table-row-group; }",
        "table.layout-repeat-header thead { display: table-header-group; }",
        "table.layout-repeat-header thead tr { page-break-inside: avoid; break-inside: avoid; }",
        ".layout-keep-with-next { page-break-after: avoid; break-after: avoid; "
        "page-break-inside: avoid; break-inside: avoid; }",
        ".layout-keep-with-previous { page-break-before: avoid; break-before: avoid; }",
        "tr.layout-summary { page-break-before: avoid; break-before: avoid; font-weight: bold; }",
        "p { orphans: 3; widows: 3; }",
    ]
    if directives.keep_groups:
        css.append(".layout-group { page-break-inside: avoid; break-inside: avoid; }")
    if directives.alternate_rows:
        css.append("tbody tr:nth-child(even) { background-color: #f7f7f7; }")
    return "\n".join(css)


def _ensure_head(soup: BeautifulSoup) -> Tag:
    html = soup.find("html")
    if html is None:
        html = soup.new_tag("html")
        for node in list(soup.contents):
            if not isinstance(node, Doctype):
                html.append(node.extract())
        soup.append(html)
    head = soup.find("head")
    if head is None:
        head = soup.new_tag("head")
        html.insert(0, head)
    if head.find("meta", attrs={"charset": True}) is None:
        head.insert(0, soup.new_tag("meta", charset="utf-8"))
    return head


def _add_class(tag: Tag, *names: str) -> None:
    classes = list(tag.get("class") or [])
    for name in names:
        if name not in classes:
            classes.append(name)
    tag["class"] = classes


def _add_token(tag: Tag, attr: str, token: str) -> None:
    tokens = (tag.get(attr) or "").split()
    if token not in tokens:
        tokens.append(token)
    tag[attr] = " ".join(tokens)


def _add_style(tag: Tag, declarations: str) -> None:
    current = (tag.get("style") or "").strip()
    if current and not current.endswith(";"):
        current += ";"
    tag["style"] = f"{current} {declarations}".strip()


def _promote_header(soup: BeautifulSoup, table: Tag, row: Tag) -> None:
    thead = soup.new_tag("thead")
    row.extract()
    thead.append(row)
    caption = table.find("caption", recursive=False)
    if caption is not None:
        caption.insert_after(thead)
    else:
        table.insert(0, thead)


def _apply_widths(soup: BeautifulSoup, table: Tag, directive: TableDirective, heads: list[Tag]) -> None:
    if directive.column_widths:
        colgroup = soup.new_tag("colgroup")
        for width in directive.column_widths:
            colgroup.append(soup.new_tag("col", style=f"width: {_fmt(width)}%"))
        caption = table.find("caption", recursive=False)
        if caption is not None:
            caption.insert_after(colgroup)
        else:
            table.insert(0, colgroup)
        for row in heads:
            cells = row.find_all(["th", "td"], recursive=False)
            if len(cells) == len(directive.column_widths):
                for cell, width in zip(cells, directive.column_widths):
                    _add_style(cell, f"width: {_fmt(width)}%;")
                break
    elif directive.first_column_min_width and heads:
        first = heads[-1].find(["th", "td"], recursive=False)
        if first is not None:
            _add_style(first, f"min-width: {_fmt(directive.first_column_min_width)}%;")


def _apply_table(soup: BeautifulSoup, table: Tag, directive: TableDirective, content_scale: float) -> None:
    rows = table_rows(table)
    heads = header_rows(table, rows)
    table["data-layout-table"] = str(directive.index)
    _add_class(table, "layout-table", f"layout-{directive.size_class.replace('_', '-')}")
    if directive.width_strategy != "auto":
        _add_class(table, "layout-fixed")
    _add_style(table, f"font-size: {_fmt(BASE_TABLE_FONT_PT * content_scale * directive.font_scale)}pt;")

    for i in directive.summary_rows:
        if i < len(rows):
            _add_class(rows[i], "layout-summary")

    if directive.keep_row_groups:
        bodies = [b for b in table.find_all("tbody") if b.find_parent("table") is table]
        if len(bodies) > 1:
            for body in bodies:
                _add_class(body, "layout-group")

    _apply_widths(soup, table, directive, heads)

    if directive.repeat_header:
        _add_class(table, "layout-repeat-header")
        if directive.promote_header and rows:
            _promote_header(soup, table, rows[0])


def compose(document: str | BeautifulSoup, directives: LayoutDirective) -> str:
    # Work on a copy; callers may reuse their tree for other strategies.
    soup = BeautifulSoup(str(document), PARSER)
    # Index before any restructuring; directives address the original tree.
    tags = soup.find_all(True)
    tables = soup.find_all("table")

    for binding in directives.bindings:
        if binding.element_index < len(tags):
            _add_class(tags[binding.element_index], "layout-keep-with-next")
            _add_token(tags[binding.element_index], "data-layout-keep", "with-next")
        if binding.next_index is not None and binding.next_index < len(tags):
            _add_class(tags[binding.next_index], "layout-keep-with-previous")
            _add_token(tags[binding.next_index], "data-layout-keep", "with-previous")
    for i, group in enumerate(directives.groups):
        if group.element_index < len(tags):
            _add_class(tags[group.element_index], "layout-group")
            tags[group.element_index]["data-layout-group"] = str(i)
    for directive in directives.tables:
        if directive.index < len(tables):
            _apply_table(soup, tables[directive.index], directive, directives.content_scale)

    head = _ensure_head(soup)
    style = soup.new_tag("style")
    style["data-layout"] = "print"
    style.string = stylesheet(directives)
    head.append(style)
    return str(soup)
