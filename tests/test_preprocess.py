"""
Validation and Sanitization Tests
"""
from report_service.conversion.preprocess import optimize_large, prepare, sanitize, validate


def codes(warnings):
    return {w.code for w in warnings}


class TestValidate:
    """Test heuristic input checks"""

    def test_empty_document(self):
        """Should warn on an empty document and nothing else"""
        assert codes(validate("   \n")) == {"empty_document"}

    def test_well_formed_document(self):
        """Should accept a regular report without warnings"""
        html = "<html><body><table><tr><td>1</td></tr></table><br><img src='x.png'></body></html>"
        assert validate(html) == []

    def test_missing_structure(self):
        """Should flag fragments without html/body tags"""
        assert "missing_structure" in codes(validate("<table><tr><td>1</td></tr></table>"))

    def test_unclosed_tags_beyond_tolerance(self):
        """Should flag many more opened than closed tags"""
        html = "<html><body>" + "<div>" * 20 + "</body></html>"
        assert "unclosed_tags" in codes(validate(html))

    def test_few_unclosed_tags_tolerated(self):
        """Should tolerate a handful of unclosed tags"""
        html = "<html><body>" + "<p>text" * 5 + "</body></html>"
        assert "unclosed_tags" not in codes(validate(html))

    def test_hazardous_script(self):
        """Should flag scripts that rewrite or navigate the document"""
        html = "<html><body><script>document.write('x')</script></body></html>"
        assert "hazardous_script" in codes(validate(html))
        html = "<html><body><script>window.location = '/elsewhere'</script></body></html>"
        assert "hazardous_script" in codes(validate(html))

    def test_comparison_is_not_navigation(self):
        """Should not flag a script that only compares location"""
        html = "<html><body><script>if (location == 'x') { var a = 1; }</script></body></html>"
        assert "hazardous_script" not in codes(validate(html))

    def test_large_inline_styles(self):
        """Should flag style attributes of 1000 characters or more"""
        html = "<html><body><div style=\"" + "color:red;" * 120 + "\">x</div></body></html>"
        assert "large_inline_styles" in codes(validate(html))


class TestSanitize:
    """Test removal of renderer hazards"""

    def test_strips_hazardous_scripts_only(self):
        """Should drop navigating scripts but keep harmless ones"""
        html = (
            "<script>location.replace('/x')</script>"
            "<script>var total = 1 + 2;</script>"
        )
        out = sanitize(html)
        assert "location.replace" not in out
        assert "var total = 1 + 2;" in out

    def test_neutralises_fixed_positioning(self):
        """Should turn fixed and sticky elements into static ones"""
        out = sanitize("<div style='position: fixed; top: 0'>h</div><div style='position:sticky'>s</div>")
        assert "fixed" not in out
        assert "sticky" not in out
        assert out.count("position: static") == 2

    def test_removes_animations(self):
        """Should remove keyframes, animation declarations and marquees"""
        html = (
            "<style>@keyframes spin { from { transform: rotate(0deg); } to { transform: rotate(360deg); } }"
            ".x { animation: spin 2s infinite; color: red; }</style>"
            "<marquee>news</marquee>"
            "<svg><circle r='4'><animate attributeName='r' from='1' to='4' dur='1s'/></circle></svg>"
        )
        out = sanitize(html)
        assert "@keyframes" not in out
        assert "animation" not in out
        assert "marquee" not in out
        assert "<animate" not in out
        assert "color: red" in out
        assert "news" in out

    def test_report_text_is_untouched(self):
        """Should leave cell text that reads like CSS unchanged"""
        html = "<td>Position: Fixed Income</td><td>Animation: Studio 'A'</td><td>Position: sticky</td>"
        assert sanitize(html) == html
        clean, _ = prepare(html)
        assert clean == html

    def test_style_attributes_still_neutralised(self):
        """Should rewrite style attributes next to CSS-like text"""
        html = (
            "<div style=\"position: fixed; animation: spin 2s\">Position: Fixed Income</div>"
            "<p>Animation: Studio 'A'</p>"
        )
        out = sanitize(html)
        assert "Position: Fixed Income" in out
        assert "<p>Animation: Studio 'A'</p>" in out
        assert 'style="position: static; "' in out

    def test_event_handlers_lose_document_rewrites(self):
        """Should drop document.write from handlers but not from text"""
        html = "<body onload=\"document.write('x')\"><p>Call document.write(x) to print</p></body>"
        out = sanitize(html)
        assert 'onload=""' in out
        assert "<p>Call document.write(x) to print</p>" in out

    def test_removes_meta_refresh(self):
        """Should drop meta refresh redirects"""
        out = sanitize('<head><meta http-equiv="refresh" content="0;url=/x"><meta charset="utf-8"></head>')
        assert "refresh" not in out
        assert 'charset="utf-8"' in out


class TestPrepare:
    """Test the full preprocessing step"""

    def test_warnings_do_not_block(self):
        """Should return cleaned content even when warnings are raised"""
        clean, warnings = prepare("<table><tr><td>1</td></tr></table>")
        assert "missing_structure" in codes(warnings)
        assert "<td>1</td>" in clean

    def test_large_document_is_reduced(self):
        """Should shrink a 600KB document with comments, scripts and table styles"""
        row = (
            "<tr style='background: #fff; border: 1px solid #000'>"
            "<td style='padding: 4px'>  value  </td><td>  42  </td></tr>\n"
            "<!-- generated row -->\n"
        )
        body = "<table style='width: 100%'>" + row * 5000 + "</table><script>var x = 1;</script>"
        raw = f"<html><body>{body}</body></html>"
        assert len(raw.encode("utf-8")) > 600 * 1024

        clean, _ = prepare(raw)
        assert len(clean) < len(raw)
        assert len(prepare(clean)[0]) == len(clean)
        assert "<!--" not in clean
        assert "<script" not in clean
        assert "style=" not in clean
        assert clean.count("<tr>") == 5000

    def test_small_document_keeps_whitespace(self):
        """Should leave documents below the threshold unoptimized"""
        raw = "<html><body><!-- note -->\n<p>a   b</p></body></html>"
        clean, _ = prepare(raw)
        assert "<!-- note -->" in clean
        assert "a   b" in clean

    def test_optimize_is_idempotent(self):
        """Should give the same result when applied twice"""
        raw = (
            "<html><body>  <table style='x: 1'><tr><td style='y:2'>1</td></tr></table>"
            "<pre>  keep   this  </pre> <!-- c --> </body></html>"
        )
        once = optimize_large(raw)
        assert optimize_large(once) == once
        assert "<pre>  keep   this  </pre>" in once
