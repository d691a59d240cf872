"""
Layout Heuristics Tests
"""
import pytest
from bs4 import BeautifulSoup

from report_service.conversion.layout import (
    PARSER,
    SIZE_BANDS,
    classify,
    column_widths,
    compute_directives,
    count_columns,
    font_scale,
)
from report_service.conversion.models import RenderConfig

from conftest import report_html


def table(rows_html: str) -> str:
    return f"<html><body><table>{rows_html}</table></body></html>"


class TestSizing:
    """Test column-count driven sizing"""

    @pytest.mark.parametrize("auto_fit", [False, True])
    def test_font_scale_never_grows_with_columns(self, auto_fit):
        """Should give wider tables an equal or smaller font"""
        scales = [font_scale(n, auto_fit) for n in range(1, 41)]
        assert all(a >= b for a, b in zip(scales, scales[1:]))

    def test_auto_fit_shrinks_very_wide_tables(self):
        """Should shrink further with auto-fit but not below the floor"""
        assert font_scale(20, auto_fit=True) < font_scale(20)
        assert font_scale(200, auto_fit=True) == 0.5

    def test_bands_ordered(self):
        """Should order size bands by column count with falling font scale"""
        assert [b.name for b in SIZE_BANDS] == ["few", "moderate", "many", "very_many"]
        assert classify(5).name == "few"
        assert classify(6).name == "moderate"
        assert classify(10).name == "many"
        assert classify(30).name == "very_many"

    @pytest.mark.parametrize("columns", [1, 2, 3, 7, 9, 12, 17, 23])
    def test_column_widths_fit_the_page(self, columns):
        """Should never hand out more than 100 percent"""
        widths = column_widths(columns, 1.5)
        assert len(widths) == columns
        assert sum(widths) <= 100
        assert sum(widths) > 99
        assert widths[0] >= max(widths[1:], default=0)

    def test_colspan_counts_towards_columns(self):
        """Should count spanned header cells by their span"""
        soup = BeautifulSoup(table("<tr><th colspan='3'>Asset</th><th>Value</th></tr><tr><td>a</td></tr>"), PARSER)
        assert count_columns(soup.find("table")) == 4


class TestDirectives:
    """Test directive computation for whole documents"""

    def test_report_tables(self):
        """Should describe every table of a typical statement"""
        directives = compute_directives(report_html(tables=5, columns=4), RenderConfig())
        assert len(directives.tables) == 5
        for d in directives.tables:
            assert d.columns == 4
            assert d.size_class == "few"
            assert d.width_strategy == "auto"
            assert d.column_widths == ()
            assert d.first_column_min_width == 20.0
            assert d.repeat_header is True
            assert d.promote_header is False
            # header, six body rows, then the total row
            assert d.summary_rows == (7,)

    def test_wide_table_gets_fixed_widths(self):
        """Should assign explicit widths to tables with many columns"""
        d = compute_directives(report_html(tables=1, columns=12), RenderConfig()).tables[0]
        assert d.size_class == "many"
        assert d.width_strategy == "equal"
        assert len(d.column_widths) == 12
        assert d.column_widths[0] > d.column_widths[1]
        assert d.first_column_min_width is None

    def test_page_settings_from_config(self):
        """Should carry page size, orientation and margins through"""
        config = RenderConfig(page_size="Legal", orientation="landscape", margin_top=10, margin_side=7, content_scale=90)
        d = compute_directives(report_html(tables=1), config)
        assert d.page_size == "Legal"
        assert d.landscape is True
        assert d.margin_top_mm == 10
        assert d.margin_side_mm == 7
        assert d.content_scale == pytest.approx(0.9)

    def test_headings_bind_to_their_table(self):
        """Should keep each section heading with the table after it"""
        html = report_html(tables=2)
        soup = BeautifulSoup(html, PARSER)
        tags = soup.find_all(True)
        directives = compute_directives(html, RenderConfig())
        h2 = [b for b in directives.bindings if b.tag == "h2"]
        assert len(h2) == 2
        for binding in h2:
            assert tags[binding.element_index].name == "h2"
            assert tags[binding.next_index].name == "table"

    def test_short_paragraph_before_table_is_a_title(self):
        """Should treat a short text block right above a table as its title"""
        html = "<html><body><p>Fixed income</p><table><tr><td>1</td></tr></table></body></html>"
        directives = compute_directives(html, RenderConfig())
        assert [b.tag for b in directives.bindings] == ["p"]

    def test_subtotals_follow_keep_groups(self):
        """Should bind inner subtotals only when groups are kept together"""
        html = table(
            "<tr><th>Asset</th><th>Value</th></tr>"
            "<tr><td>A</td><td>1</td></tr>"
            "<tr><td>Subtotal</td><td>1</td></tr>"
            "<tr><td>B</td><td>2</td></tr>"
            "<tr><td>Total</td><td>3</td></tr>"
        )
        kept = compute_directives(html, RenderConfig(keep_groups_together=True)).tables[0]
        loose = compute_directives(html, RenderConfig(keep_groups_together=False)).tables[0]
        assert kept.summary_rows == (2, 4)
        assert loose.summary_rows == (4,)

    def test_keep_groups_off_drops_group_markers(self):
        """Should not bind titles forward or mark groups when disabled"""
        html = (
            "<html><body><div class='asset-group'><h3>Equities</h3>"
            "<table><tr><th>A</th></tr><tr><td>1</td></tr></table></div></body></html>"
        )
        on = compute_directives(html, RenderConfig(keep_groups_together=True))
        off = compute_directives(html, RenderConfig(keep_groups_together=False))
        assert len(on.groups) == 1
        assert on.bindings[0].next_index is not None
        assert off.groups == ()
        assert all(b.next_index is None for b in off.bindings)

    def test_header_row_without_thead_is_promoted(self):
        """Should promote a leading row of th cells when headers repeat"""
        html = table("<tr><th>A</th><th>B</th></tr><tr><td>1</td><td>2</td></tr>")
        d = compute_directives(html, RenderConfig()).tables[0]
        assert d.repeat_header is True
        assert d.promote_header is True

    def test_repeat_headers_toggle(self):
        """Should not repeat headers when the user turns it off"""
        d = compute_directives(report_html(tables=1), RenderConfig(repeat_headers=False)).tables[0]
        assert d.repeat_header is False
        assert d.promote_header is False

    def test_nested_tables_are_separate(self):
        """Should count only a table's own rows"""
        html = table(
            "<tr><th>Outer</th><th>Detail</th></tr>"
            "<tr><td>x</td><td><table><tr><td>1</td><td>2</td><td>3</td></tr></table></td></tr>"
        )
        directives = compute_directives(html, RenderConfig())
        assert [t.columns for t in directives.tables] == [2, 3]
