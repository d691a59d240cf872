import math
from dataclasses import asdict, dataclass

from bs4 import BeautifulSoup

CHARS_PER_PAGE = 15000
COMPLEX_TABLE_ROWS = 10


@dataclass(frozen=True)
class DocumentAnalysis:
    table_count: int
    complex_table_count: int
    estimated_pages: str
    size_bytes: int
    file_size: str

    def to_dict(self) -> dict[str, object]:
        return asdict(self)


def _page_range(pages: int) -> str:
    if pages <= 1:
        return "1"
    if pages <= 3:
        return str(pages)
    return f"{pages - 1}-{pages + 1}"


def analyze(html: str) -> DocumentAnalysis:
    """Quick shape summary shown to the user before conversion."""
    soup = BeautifulSoup(html, "html.parser")
    tables = soup.find_all("table")
    complex_tables = [t for t in tables if len(t.find_all("tr")) > COMPLEX_TABLE_ROWS]

    pages = math.ceil(len(soup.get_text()) / CHARS_PER_PAGE)
    if complex_tables:
        pages += math.ceil(len(complex_tables) * 0.5)

    size_bytes = len(html.encode("utf-8"))
    return DocumentAnalysis(
        table_count=len(tables),
        complex_table_count=len(complex_tables),
        estimated_pages=_page_range(pages),
        size_bytes=size_bytes,
        file_size=f"{size_bytes / (1024 * 1024):.1f} MB",
    )
