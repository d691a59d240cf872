"""
Test Configuration and Fixtures
"""
import asyncio

import pytest

from report_service.conversion.adapters import MemoryStorage
from report_service.conversion.compose import compose
from report_service.conversion.errors import FailureCategory, StrategyFailure
from report_service.conversion.interfaces import BrowserHandle
from report_service.conversion.layout import compute_directives
from report_service.conversion.models import RenderConfig
from report_service.conversion.preprocess import prepare
from report_service.conversion.store import JobStore
from report_service.conversion.strategies import RenderRequest, RenderStrategy

MINIMAL_PDF = (
    b"%PDF-1.4\n1 0 obj << /Type /Catalog /Pages 2 0 R >> endobj\n"
    b"2 0 obj << /Type /Pages /Kids [] /Count 0 >> endobj\n"
    b"trailer << /Root 1 0 R >>\n%%EOF\n"
)


def report_html(tables: int = 5, columns: int = 4, rows: int = 6) -> str:
    """A small account statement with one titled table per section."""
    sections = []
    for t in range(tables):
        head = "".join(f"<th>Col {c}</th>" for c in range(columns))
        body = "".join(
            "<tr>" + "".join(f"<td>{r}.{c}</td>" for c in range(columns)) + "</tr>"
            for r in range(rows)
        )
        total = "<tr class='total'><td>Total</td>" + "<td>9</td>" * (columns - 1) + "</tr>"
        sections.append(
            f"<h2>Section {t}</h2>"
            f"<table><thead><tr>{head}</tr></thead><tbody>{body}{total}</tbody></table>"
        )
    return (
        "<!DOCTYPE html><html><head><title>Statement</title></head>"
        f"<body><h1>Account statement</h1>{''.join(sections)}</body></html>"
    )


def build_request(html: str, output_dir, config: RenderConfig | None = None, job_id: str = "abc123") -> RenderRequest:
    config = config or RenderConfig()
    clean, _ = prepare(html)
    directives = compute_directives(clean, config)
    return RenderRequest(
        job_id=job_id,
        filename="statement.html",
        document=clean,
        print_html=compose(clean, directives),
        directives=directives,
        config=config,
        output_dir=output_dir,
    )


class FakeLocator:
    def __init__(self, handles=None):
        self.handles = [BrowserHandle("bundled")] if handles is None else handles

    def candidates(self):
        return list(self.handles)


class FakeDriver:
    """Returns (or raises) queued results in call order; repeats the last one."""

    def __init__(self, *results):
        self.results = list(results) or [MINIMAL_PDF]
        self.calls = []

    async def print_pdf(self, html, handle, profile, options, *, timeout):
        self.calls.append((handle.label, profile.name, options))
        result = self.results[min(len(self.calls) - 1, len(self.results) - 1)]
        if isinstance(result, BaseException):
            raise result
        return result


class StaticStrategy(RenderStrategy):
    def __init__(self, name: str, data: bytes = MINIMAL_PDF):
        self.name = name
        self.data = data
        self.calls = 0

    async def render(self, request, *, timeout):
        self.calls += 1
        return self.data


class FailingStrategy(RenderStrategy):
    def __init__(self, name: str, category: str = FailureCategory.UNAVAILABLE):
        self.name = name
        self.category = category
        self.calls = 0

    async def render(self, request, *, timeout):
        self.calls += 1
        raise StrategyFailure(self.name, self.category, "simulated backend failure")


class HangingStrategy(RenderStrategy):
    """Leaves a temp file behind and never finishes on its own."""

    name = "hanging"

    async def attempt(self, request, *, timeout):
        request.output_dir.mkdir(parents=True, exist_ok=True)
        (request.output_dir / f"temp-job-{request.job_id}-{self.name}.pdf").write_bytes(b"%PDF-partial")
        await asyncio.sleep(60)
        raise AssertionError("should have been cancelled")


@pytest.fixture
def storage():
    return MemoryStorage()


@pytest.fixture
def store(storage):
    return JobStore(storage)


@pytest.fixture
def output_dir(tmp_path):
    path = tmp_path / "generated-pdfs"
    path.mkdir()
    return path
