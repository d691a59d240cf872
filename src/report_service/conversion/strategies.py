"""Rendering backends tried in order by the render chain.

Each strategy turns a RenderRequest into artifact bytes. ``attempt`` wraps
that in the strategy's own time slice, validates the bytes, moves them into
place and reports a RenderAttempt; exceptions never leave ``attempt`` except
cancellation.
"""
import asyncio
import io
import logging
import os
import re
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from xml.sax.saxutils import escape

from bs4 import BeautifulSoup, NavigableString, Tag

from .errors import FailureCategory, StrategyFailure, classify_exception
from .interfaces import BrowserDriver, BrowserLocator, LaunchProfile, PrintOptions
from .isolation import IsolatedError, run_isolated
from .layout import (
    PARSER,
    LayoutDirective,
    TableDirective,
    column_widths,
    is_summary_row,
    table_rows,
)
from .models import RenderAttempt, RenderConfig

logger = logging.getLogger(__name__)

PDF_SIGNATURE = b"%PDF-"
PDF_TRAILER = b"%%EOF"


@dataclass(frozen=True)
class RenderRequest:
    job_id: str
    filename: str
    document: str
    print_html: str
    directives: LayoutDirective
    config: RenderConfig
    output_dir: Path

    @property
    def size_bytes(self) -> int:
        return len(self.document.encode("utf-8"))


def temp_path(output_dir: Path, job_id: str, strategy: str, extension: str) -> Path:
    return output_dir / f"temp-job-{job_id}-{strategy}{extension}"


def artifact_glob(job_id: str) -> str:
    """Matches every file the pipeline writes for ``job_id``."""
    return f"*job-{job_id}*"


def final_path(output_dir: Path, job_id: str, extension: str) -> Path:
    stamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S%fZ")
    return output_dir / f"report-job-{job_id}-{stamp}{extension}"


def validate_pdf(strategy: str, data: bytes) -> None:
    if not data:
        raise StrategyFailure(strategy, FailureCategory.INVALID_OUTPUT, "renderer produced an empty file")
    if not data.startswith(PDF_SIGNATURE):
        raise StrategyFailure(strategy, FailureCategory.INVALID_OUTPUT, "output is missing the PDF signature")
    if PDF_TRAILER not in data[-1024:]:
        raise StrategyFailure(strategy, FailureCategory.INVALID_OUTPUT, "output is truncated (no %%EOF trailer)")


def _write_bytes(path: Path, data: bytes) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("wb") as f:
        f.write(data)


class RenderStrategy:
    name = "base"
    extension = ".pdf"

    async def render(self, request: RenderRequest, *, timeout: float) -> bytes:
        raise NotImplementedError

    def validate(self, data: bytes) -> None:
        validate_pdf(self.name, data)

    async def attempt(self, request: RenderRequest, *, timeout: float) -> RenderAttempt:
        started = time.monotonic()
        temp = temp_path(request.output_dir, request.job_id, self.name, self.extension)
        try:
            data = await asyncio.wait_for(self.render(request, timeout=timeout), timeout)
            self.validate(data)
            # No await until the rename: a cancellation here cannot strand the temp file.
            _write_bytes(temp, data)
            final = final_path(request.output_dir, request.job_id, self.extension)
            os.replace(temp, final)
            return RenderAttempt(self.name, True, str(final), elapsed=time.monotonic() - started)
        except asyncio.TimeoutError:
            failure = StrategyFailure(self.name, FailureCategory.TIMEOUT, f"no result within {timeout:.1f}s")
        except StrategyFailure as e:
            failure = e
        except Exception as e:
            failure = StrategyFailure(self.name, classify_exception(e), f"{type(e).__name__}: {e}")
        finally:
            if temp.exists():
                try:
                    temp.unlink()
                except OSError as e:
                    logger.warning("could not remove temp artifact %s: %s", temp, e)
        logger.warning("job %s: strategy %s failed: %s", request.job_id, self.name, failure)
        return RenderAttempt(self.name, False, error=failure, elapsed=time.monotonic() - started)


class BrowserStrategy(RenderStrategy):
    """Headless Chromium through the injected driver.

    Every browser the locator offers is tried with every launch profile
    (full, minimal, bare) until one yields a valid PDF.
    """

    name = "browser"

    def __init__(self, locator: BrowserLocator, driver: BrowserDriver, profiles: tuple[LaunchProfile, ...]) -> None:
        self._locator = locator
        self._driver = driver
        self._profiles = profiles

    async def render(self, request: RenderRequest, *, timeout: float) -> bytes:
        handles = self._locator.candidates()
        if not handles:
            raise StrategyFailure(self.name, FailureCategory.UNAVAILABLE, "no usable browser executable found")

        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        options = PrintOptions(
            page_size=request.config.page_size,
            landscape=request.config.landscape,
            margin_top_mm=request.config.margin_top,
            margin_side_mm=request.config.margin_side,
        )
        categories: list[str] = []
        details: list[str] = []
        for handle in handles:
            for profile in self._profiles:
                remaining = deadline - loop.time()
                if remaining <= 0:
                    break
                label = f"{handle.label}/{profile.name}"
                try:
                    data = await asyncio.wait_for(
                        self._driver.print_pdf(request.print_html, handle, profile, options, timeout=remaining),
                        remaining,
                    )
                    validate_pdf(self.name, data)
                    logger.info("job %s: browser %s produced %d bytes", request.job_id, label, len(data))
                    return data
                except asyncio.TimeoutError:
                    categories.append(FailureCategory.TIMEOUT)
                    details.append(f"{label}: timed out")
                except Exception as e:
                    categories.append(classify_exception(e))
                    details.append(f"{label}: {type(e).__name__}: {e}")
                    logger.info("job %s: browser %s failed: %s", request.job_id, label, e)

        if deadline - loop.time() <= 0 and FailureCategory.TIMEOUT not in categories:
            categories.append(FailureCategory.TIMEOUT)
            details.append("time slice used up before every browser was tried")

        if FailureCategory.TIMEOUT in categories:
            category = FailureCategory.TIMEOUT
        elif FailureCategory.INVALID_OUTPUT in categories:
            category = FailureCategory.INVALID_OUTPUT
        elif FailureCategory.RESOURCE in categories:
            category = FailureCategory.RESOURCE
        elif categories and all(c == FailureCategory.UNAVAILABLE for c in categories):
            category = FailureCategory.UNAVAILABLE
        else:
            category = FailureCategory.RENDER_ERROR
        raise StrategyFailure(self.name, category, "; ".join(details))


_LINK_TAG = re.compile(r"<link\b[^>]*>", re.I)
_REMOTE_IMG = re.compile(r"<img\b[^>]*\bsrc\s*=\s*[\"']?(?:https?:)?//[^>]*>", re.I)


class LibraryStrategy(RenderStrategy):
    """xhtml2pdf, run in a worker process so a stuck conversion can be killed."""

    name = "library"

    @staticmethod
    def _safe_html(html: str) -> str:
        # Remote stylesheets and images are fetched synchronously and can stall.
        return _REMOTE_IMG.sub("", _LINK_TAG.sub("", html))

    def _convert(self, html: str) -> bytes:
        from xhtml2pdf import pisa

        result = io.BytesIO()
        status = pisa.CreatePDF(self._safe_html(html), dest=result, encoding="utf-8")
        if status.err:
            raise StrategyFailure(self.name, FailureCategory.RENDER_ERROR, f"xhtml2pdf reported {status.err} error(s)")
        return result.getvalue()

    async def render(self, request: RenderRequest, *, timeout: float) -> bytes:
        try:
            return await run_isolated(_library_pdf, request.print_html)
        except IsolatedError as e:
            raise StrategyFailure(self.name, e.category, e.detail) from None


def _library_pdf(html: str) -> bytes:
    return LibraryStrategy()._convert(html)


BLOCK_TAGS = frozenset({"p", "div", "li", "section", "article", "blockquote", "pre", "caption", "header", "footer"})
SKIP_TAGS = frozenset({"script", "style", "head", "noscript", "template", "title", "meta", "link"})
HEADING_SIZES = {"h1": 16, "h2": 14, "h3": 12, "h4": 11, "h5": 10, "h6": 9}


def _cell_text(cell: Tag) -> str:
    return cell.get_text(" ", strip=True)


def table_matrix(table: Tag) -> list[list[str]]:
    """Rows of cell text with colspans expanded and short rows padded."""
    matrix: list[list[str]] = []
    for row in table_rows(table):
        values: list[str] = []
        for cell in row.find_all(["th", "td"], recursive=False):
            values.append(_cell_text(cell))
            try:
                span = max(int(cell.get("colspan", 1)), 1)
            except (TypeError, ValueError):
                span = 1
            values.extend([""] * (span - 1))
        if values:
            matrix.append(values)
    width = max((len(r) for r in matrix), default=0)
    return [r + [""] * (width - len(r)) for r in matrix]


def iter_blocks(node: Tag):
    """Yield ("heading", tag) / ("table", tag) / ("text", str) in document order."""
    for child in node.children:
        if isinstance(child, NavigableString):
            if type(child) is NavigableString and child.strip():
                yield "text", child.strip()
            continue
        if not isinstance(child, Tag) or child.name in SKIP_TAGS:
            continue
        if child.name in HEADING_SIZES:
            yield "heading", child
        elif child.name == "table":
            yield "table", child
        elif child.name in BLOCK_TAGS and child.find(["table", "p", "div", "h1", "h2", "h3", "h4", "h5", "h6", "ul", "ol"]) is None:
            text = child.get_text(" ", strip=True)
            if text:
                yield "text", text
        else:
            yield from iter_blocks(child)


class StructuralStrategy(RenderStrategy):
    """Rebuilds text and tables with reportlab. Readable, not faithful."""

    name = "structural"

    def _build(self, request: RenderRequest) -> bytes:
        from reportlab.lib.pagesizes import A4, landscape, legal, letter, portrait
        from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
        from reportlab.lib.units import mm
        from reportlab.platypus import Paragraph, SimpleDocTemplate, Spacer

        config = request.config
        size = {"A4": A4, "Letter": letter, "Legal": legal}[config.page_size]
        pagesize = landscape(size) if config.landscape else portrait(size)
        buf = io.BytesIO()
        doc = SimpleDocTemplate(
            buf,
            pagesize=pagesize,
            topMargin=config.margin_top * mm,
            bottomMargin=config.margin_top * mm,
            leftMargin=config.margin_side * mm,
            rightMargin=config.margin_side * mm,
            title=request.filename,
        )
        styles = getSampleStyleSheet()
        body = ParagraphStyle("body", parent=styles["Normal"], fontSize=9, leading=11)
        story: list = []

        soup = BeautifulSoup(request.document, PARSER)
        table_index = {id(t): i for i, t in enumerate(soup.find_all("table"))}

        for kind, value in iter_blocks(soup.body or soup):
            if kind == "heading":
                text = value.get_text(" ", strip=True)
                if text:
                    style = ParagraphStyle(
                        f"heading-{value.name}",
                        parent=styles["Heading2"],
                        fontSize=HEADING_SIZES[value.name],
                        leading=HEADING_SIZES[value.name] + 3,
                        keepWithNext=1,
                    )
                    story.append(Paragraph(escape(text), style))
            elif kind == "table":
                directive = request.directives.table(table_index.get(id(value), -1))
                flowable = self._table(value, directive, doc.width, config)
                if flowable is not None:
                    story.append(flowable)
                    story.append(Spacer(1, 6))
            else:
                story.append(Paragraph(escape(value), body))

        if not story:
            story.append(Paragraph(escape(f"{request.filename}: no readable content"), body))
        doc.build(story)
        return buf.getvalue()

    def _table(self, table: Tag, directive: TableDirective | None, avail_width: float, config: RenderConfig):
        from reportlab.lib import colors
        from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
        from reportlab.platypus import Paragraph, Table, TableStyle

        rows = [r for r in table_rows(table) if r.find(["th", "td"], recursive=False) is not None]
        matrix = table_matrix(table)
        if not matrix:
            return None
        columns = len(matrix[0])
        scale = directive.font_scale if directive else 1.0
        font_size = max(8 * scale * config.content_scale / 100, 4.5)
        cell_style = ParagraphStyle("cell", parent=getSampleStyleSheet()["Normal"], fontSize=font_size, leading=font_size + 1.5)
        data = [[Paragraph(escape(v), cell_style) for v in row] for row in matrix]

        if directive and len(directive.column_widths) == columns:
            pct = directive.column_widths
        else:
            pct = column_widths(columns, 1.25)
        widths = [avail_width * p / 100 for p in pct]

        thead = table.find("thead")
        if thead is not None and thead.find_parent("table") is table:
            n_head = len([r for r in rows if r.find_parent("thead") is thead])
        else:
            first = rows[0].find_all(["th", "td"], recursive=False)
            n_head = 1 if all(c.name == "th" for c in first) else 0
        repeat = n_head if (directive is None or directive.repeat_header) else 0
        repeat = min(repeat, len(matrix) - 1)

        commands = [
            ("GRID", (0, 0), (-1, -1), 0.25, colors.grey),
            ("VALIGN", (0, 0), (-1, -1), "TOP"),
            ("LEFTPADDING", (0, 0), (-1, -1), 2),
            ("RIGHTPADDING", (0, 0), (-1, -1), 2),
        ]
        if n_head:
            commands.append(("BACKGROUND", (0, 0), (-1, n_head - 1), colors.HexColor("#f0f0f0")))
        if config.alternate_row_colors and len(matrix) > n_head:
            commands.append(("ROWBACKGROUNDS", (0, n_head), (-1, -1), [colors.white, colors.HexColor("#f7f7f7")]))
        for i, row in enumerate(rows):
            if i >= n_head and is_summary_row(row):
                commands.append(("FONTNAME", (0, i), (-1, i), "Helvetica-Bold"))
        return Table(data, colWidths=widths, repeatRows=max(repeat, 0), style=TableStyle(commands))

    async def render(self, request: RenderRequest, *, timeout: float) -> bytes:
        try:
            return await run_isolated(_structural_pdf, request)
        except IsolatedError as e:
            raise StrategyFailure(self.name, e.category, e.detail) from None


def _structural_pdf(request: RenderRequest) -> bytes:
    return StructuralStrategy()._build(request)


class PlainTextStrategy(RenderStrategy):
    """Last resort: the report as plain text, tables as pipe-separated rows."""

    name = "plaintext"
    extension = ".txt"

    def validate(self, data: bytes) -> None:
        if not data.strip():
            raise StrategyFailure(self.name, FailureCategory.INVALID_OUTPUT, "no text could be extracted")

    @staticmethod
    def _format_table(matrix: list[list[str]]) -> list[str]:
        widths = [max(len(row[i]) for row in matrix) for i in range(len(matrix[0]))]
        return [" | ".join(v.ljust(w) for v, w in zip(row, widths)).rstrip() for row in matrix]

    def _extract(self, request: RenderRequest) -> bytes:
        soup = BeautifulSoup(request.document, PARSER)
        lines = [
            f"{request.filename}",
            "PDF rendering was not available; this is a plain-text copy of the report.",
            "",
        ]
        for kind, value in iter_blocks(soup.body or soup):
            if kind == "heading":
                text = value.get_text(" ", strip=True)
                if text:
                    lines.extend(["", text, "-" * min(len(text), 80)])
            elif kind == "table":
                matrix = table_matrix(value)
                if matrix:
                    lines.append("")
                    lines.extend(self._format_table(matrix))
                    lines.append("")
            else:
                lines.append(value)
        return ("\n".join(lines).strip() + "\n").encode("utf-8")

    async def render(self, request: RenderRequest, *, timeout: float) -> bytes:
        try:
            return await run_isolated(_plain_text, request)
        except IsolatedError as e:
            raise StrategyFailure(self.name, e.category, e.detail) from None


def _plain_text(request: RenderRequest) -> bytes:
    return PlainTextStrategy()._extract(request)
