"""Validation and sanitization of uploaded HTML before it reaches a renderer.

Everything here is a pure string transform. Validation only ever produces
warnings: plenty of legitimate reports trip the heuristics, so rendering is
always attempted.
"""
import logging
import re

from .errors import ValidationWarning

logger = logging.getLogger(__name__)

DEFAULT_LARGE_DOCUMENT_BYTES = 500 * 1024
UNBALANCED_TAG_TOLERANCE = 10
LARGE_INLINE_STYLE_CHARS = 1000

VOID_TAGS = frozenset({
    "area", "base", "br", "col", "embed", "hr", "img", "input", "link",
    "meta", "param", "source", "track", "wbr", "!doctype",
})
TABLE_TAGS = ("table", "thead", "tbody", "tfoot", "tr", "th", "td", "col", "colgroup")

_COMMENT = re.compile(r"<!--.*?-->", re.S)
_OPEN_TAG = re.compile(r"<(!?[a-zA-Z][a-zA-Z0-9-]*)\b[^>]*?(/?)>")
_CLOSE_TAG = re.compile(r"</[a-zA-Z][a-zA-Z0-9-]*\s*>")
_SCRIPT_BLOCK = re.compile(r"<script\b[^>]*>(.*?)</script\s*>", re.S | re.I)
_HAZARDOUS_SCRIPT = re.compile(
    r"document\s*\.\s*(?:write(?:ln)?|open)\s*\("
    r"|(?:\bwindow\s*\.\s*|(?<![\w.$]))location(?:\s*\.\s*href)?\s*=(?!=)"
    r"|location\s*\.\s*(?:replace|assign|reload)\s*\(",
    re.I,
)
_DOCUMENT_REWRITE_CALL = re.compile(r"document\s*\.\s*(?:write(?:ln)?|open)\s*\([^)]*\)\s*;?", re.I)
_META_REFRESH = re.compile(r"<meta\b[^>]*http-equiv\s*=\s*[\"']?refresh[\"']?[^>]*>", re.I)
_FIXED_POSITION = re.compile(r"position\s*:\s*(?:-webkit-)?(?:fixed|sticky)", re.I)
_ANIMATION_DECL = re.compile(
    r"(?<![\w-])(?:-(?:webkit|moz|o|ms)-)?animation(?:-[a-z-]+)?\s*:\s*[^;}\"']*;?",
    re.I,
)
_KEYFRAMES = re.compile(
    r"@(?:-(?:webkit|moz|o)-)?keyframes\s+[^{]+\{(?:[^{}]*\{[^{}]*\})*[^{}]*\}",
    re.I,
)
_SVG_ANIMATION = re.compile(
    r"<(animate(?:Transform|Motion|Color)?|set)\b[^>]*?(?:/>|>.*?</\1\s*>)",
    re.S | re.I,
)
_MARQUEE = re.compile(r"</?marquee\b[^>]*>", re.I)
_STYLE_BLOCK = re.compile(r"(<style\b[^>]*>)(.*?)(</style\s*>)", re.S | re.I)
_TAG = re.compile(r"<[a-zA-Z][a-zA-Z0-9-]*(?:\"[^\"]*\"|'[^']*'|[^'\">])*>")
_ATTR_VALUE = re.compile(r"(\s([a-zA-Z-]+)\s*=\s*)(\"[^\"]*\"|'[^']*')")
_EVENT_ATTR = re.compile(r"on[a-z]+", re.I)
_TABLE_TAG = re.compile(r"<(%s)\b([^>]*)>" % "|".join(TABLE_TAGS), re.I)
_STYLE_ATTR = re.compile(r"\s+style\s*=\s*(?:\"[^\"]*\"|'[^']*')", re.I)
_LARGE_STYLE_ATTR = re.compile(
    r"\s+style\s*=\s*(?:\"[^\"]{%d,}\"|'[^']{%d,}')" % (LARGE_INLINE_STYLE_CHARS, LARGE_INLINE_STYLE_CHARS),
    re.I,
)
_PRESERVED_BLOCK = re.compile(r"(<(pre|textarea)\b.*?</\2\s*>)", re.S | re.I)
_WHITESPACE = re.compile(r"\s+")


def validate(html: str) -> list[ValidationWarning]:
    """Heuristic well-formedness checks. Never raises."""
    warnings: list[ValidationWarning] = []
    if not html.strip():
        warnings.append(ValidationWarning("empty_document", "Document is empty"))
        return warnings

    lowered = html.lower()
    if "<html" not in lowered and "<body" not in lowered:
        warnings.append(ValidationWarning(
            "missing_structure", "Missing basic HTML structure (html/body tags)",
        ))

    text = _COMMENT.sub("", html)
    opened = 0
    for match in _OPEN_TAG.finditer(text):
        name = match.group(1).lower()
        if name in VOID_TAGS or match.group(2):
            continue
        opened += 1
    closed = len(_CLOSE_TAG.findall(text))
    if opened > closed + UNBALANCED_TAG_TOLERANCE:
        warnings.append(ValidationWarning(
            "unclosed_tags",
            f"Potentially unclosed HTML tags detected ({opened} opened, {closed} closed)",
        ))

    if any(_HAZARDOUS_SCRIPT.search(body) for body in _SCRIPT_BLOCK.findall(html)):
        warnings.append(ValidationWarning(
            "hazardous_script", "Scripts that rewrite or navigate the document were detected",
        ))

    if _LARGE_STYLE_ATTR.search(html):
        warnings.append(ValidationWarning(
            "large_inline_styles",
            "Extremely large inline styles detected - may cause performance issues",
        ))
    return warnings


def _calm_css(css: str) -> str:
    css = _FIXED_POSITION.sub("position: static", css)
    css = _KEYFRAMES.sub("", css)
    return _ANIMATION_DECL.sub("", css)


def _calm_attribute(match: re.Match) -> str:
    name, value = match.group(2).lower(), match.group(3)
    if name == "style":
        value = _calm_css(value)
    elif _EVENT_ATTR.fullmatch(name):
        value = _DOCUMENT_REWRITE_CALL.sub("", value)
    return match.group(1) + value


def _calm_tag(match: re.Match) -> str:
    return _ATTR_VALUE.sub(_calm_attribute, match.group(0))


def _calm_style_block(match: re.Match) -> str:
    return match.group(1) + _calm_css(match.group(2)) + match.group(3)


def sanitize(html: str) -> str:
    """Strip constructs that hang renderers or break paginated layout.

    CSS rewrites only touch ``<style>`` blocks and attribute values, never
    the report's text.
    """

    def drop_hazardous(match: re.Match) -> str:
        return "" if _HAZARDOUS_SCRIPT.search(match.group(1)) else match.group(0)

    html = _SCRIPT_BLOCK.sub(drop_hazardous, html)
    html = _META_REFRESH.sub("", html)
    html = _STYLE_BLOCK.sub(_calm_style_block, html)
    html = _TAG.sub(_calm_tag, html)
    html = _SVG_ANIMATION.sub("", html)
    html = _MARQUEE.sub("", html)
    return html


def _strip_table_styles(match: re.Match) -> str:
    return f"<{match.group(1)}{_STYLE_ATTR.sub('', match.group(2))}>"


def collapse_whitespace(html: str) -> str:
    parts = _PRESERVED_BLOCK.split(html)
    out: list[str] = []
    # split() with two groups yields [text, block, tagname, text, block, tagname, ...]
    i = 0
    while i < len(parts):
        out.append(_WHITESPACE.sub(" ", parts[i]))
        if i + 1 < len(parts):
            out.append(parts[i + 1])
        i += 3
    return "".join(out).strip()


def optimize_large(html: str) -> str:
    """Size-reduction pass for large reports. Idempotent."""
    html = _SCRIPT_BLOCK.sub("", html)
    html = _COMMENT.sub("", html)
    html = _TABLE_TAG.sub(_strip_table_styles, html)
    html = _TAG.sub(lambda m: _LARGE_STYLE_ATTR.sub("", m.group(0)), html)
    return collapse_whitespace(html)


def prepare(
    raw: str,
    *,
    large_document_bytes: int = DEFAULT_LARGE_DOCUMENT_BYTES,
) -> tuple[str, list[ValidationWarning]]:
    warnings = validate(raw)
    for w in warnings:
        logger.info("validation warning [%s]: %s", w.code, w.message)

    clean = sanitize(raw)
    size = len(clean.encode("utf-8"))
    if size > large_document_bytes:
        clean = optimize_large(clean)
        logger.info(
            "large document optimized: %d -> %d bytes",
            size, len(clean.encode("utf-8")),
        )
    return clean, warnings
