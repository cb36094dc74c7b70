"""
Content preparation for the conversion core.

Turns client payloads (base64 HTML, Markdown, images, tables) into HTML
documents, and builds the render-time decorations (header/footer templates,
watermark and grayscale CSS) applied in the page before emission.
"""

import base64
import binascii
import html
import logging
import re
from typing import List, Optional, Sequence, Any

from bs4 import BeautifulSoup
from markdown_it import MarkdownIt

from pdf_forge.models.schemas import HeaderFooter, Watermark
from pdf_forge.utils.error_handler import InvalidRequestError

logger = logging.getLogger(__name__)

MAX_HTML_SIZE = 100 * 1024 * 1024  # 100MB of markup


def decode_base64(encoded: str) -> bytes:
    """
    Decode base64 data, tolerating a ``data:...;base64,`` prefix.

    Raises:
        InvalidRequestError: If the payload is not valid base64
    """
    encoded = (encoded or "").strip()
    if encoded.startswith("data:"):
        comma = encoded.find(",", 0, 200)
        if comma > 0:
            encoded = encoded[comma + 1:]
    try:
        return base64.b64decode(encoded, validate=True)
    except (binascii.Error, ValueError):
        raise InvalidRequestError("Invalid Base64 string", error_code="invalid_base64")


def decode_html(content: str, is_base64: bool = False) -> str:
    """Return HTML markup from a request field, decoding base64 if flagged."""
    if is_base64:
        try:
            content = decode_base64(content).decode("utf-8")
        except UnicodeDecodeError:
            raise InvalidRequestError("Base64 payload is not UTF-8 text", error_code="invalid_base64")
    return validate_html_content(content)


def validate_html_content(content: Optional[str]) -> str:
    """
    Check that HTML content is non-empty and within size limits.

    Markup is passed through unmodified; scripts and external stylesheets
    are kept because pages rely on them to render.
    """
    if content is None or not content.strip():
        raise InvalidRequestError("Empty HTML content", error_code="empty_content")
    if len(content) > MAX_HTML_SIZE:
        raise InvalidRequestError(
            f"HTML content too large ({len(content)} chars). Maximum allowed: {MAX_HTML_SIZE} chars",
            error_code="content_too_large"
        )
    return content


def extract_title(content: str) -> Optional[str]:
    """The document's <title>, if it has a non-empty one."""
    try:
        soup = BeautifulSoup(content, "html.parser")
    except Exception as e:
        logger.debug(f"Could not parse HTML for title: {str(e)}")
        return None
    if soup.title and soup.title.string:
        title = soup.title.string.strip()
        return title or None
    return None


# ---------------------------------------------------------------------------
# Markdown
# ---------------------------------------------------------------------------

MARKDOWN_CSS = """
body {
    font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, Oxygen, Ubuntu, sans-serif;
    line-height: 1.6;
    max-width: 800px;
    margin: 0 auto;
    padding: 20px;
    color: #333;
}
h1, h2, h3, h4, h5, h6 { margin-top: 1.5em; margin-bottom: 0.5em; }
h1 { font-size: 2em; border-bottom: 1px solid #eee; padding-bottom: 0.3em; }
h2 { font-size: 1.5em; border-bottom: 1px solid #eee; padding-bottom: 0.3em; }
code { background: #f4f4f4; padding: 2px 6px; border-radius: 3px; font-family: 'SF Mono', Monaco, monospace; }
pre { background: #f4f4f4; padding: 16px; border-radius: 6px; overflow-x: auto; }
pre code { background: none; padding: 0; }
blockquote { border-left: 4px solid #ddd; margin: 0; padding-left: 16px; color: #666; }
table { border-collapse: collapse; width: 100%; margin: 1em 0; }
th, td { border: 1px solid #ddd; padding: 8px 12px; text-align: left; }
th { background: #f4f4f4; }
img { max-width: 100%; }
a { color: #0066cc; }
"""

_markdown_parser: Optional[MarkdownIt] = None


def _get_markdown_parser() -> MarkdownIt:
    global _markdown_parser
    if _markdown_parser is None:
        _markdown_parser = MarkdownIt("commonmark", {"html": True}).enable(["table", "strikethrough"])
    return _markdown_parser


def markdown_to_html(markdown_text: str) -> str:
    """Render Markdown to a complete, styled HTML document."""
    if markdown_text is None or not markdown_text.strip():
        raise InvalidRequestError("Markdown content is required", error_code="empty_content")

    body = _get_markdown_parser().render(markdown_text)
    return f"""<!DOCTYPE html>
<html>
<head>
<meta charset="UTF-8">
<style>{MARKDOWN_CSS}</style>
</head>
<body>
<div class="markdown-body">{body}</div>
</body>
</html>"""


# ---------------------------------------------------------------------------
# Images
# ---------------------------------------------------------------------------

def sniff_image_mime(encoded: str) -> str:
    """Guess an image MIME type from the first character of its base64 text."""
    if encoded.startswith("i"):
        return "image/png"
    if encoded.startswith("R"):
        return "image/gif"
    if encoded.startswith("U"):
        return "image/webp"
    return "image/jpeg"


def images_to_html(images: Sequence[str]) -> str:
    """One image per page, centred and scaled to fit."""
    if not images:
        raise InvalidRequestError("Image or images array is required", error_code="empty_content")

    blocks = []
    for i, image in enumerate(images):
        image = (image or "").strip()
        if not image:
            raise InvalidRequestError(f"Image {i + 1} is empty", error_code="empty_content")

        if image.startswith("data:"):
            src = image
        else:
            src = f"data:{sniff_image_mime(image)};base64,{image}"

        page_break = "page-break-before: always;" if i > 0 else ""
        blocks.append(
            f'<div style="{page_break} display:flex; justify-content:center; align-items:center; height:100vh; width:100%;">'
            f'<img src="{html.escape(src, quote=True)}" style="max-width:100%; max-height:100%; object-fit:contain;" />'
            f'</div>'
        )

    return f"""<!DOCTYPE html>
<html>
<head>
<meta charset="UTF-8">
<style>
* {{ margin: 0; padding: 0; box-sizing: border-box; }}
body {{ font-family: Arial, sans-serif; }}
@page {{ margin: 0; }}
</style>
</head>
<body>{''.join(blocks)}</body>
</html>"""


# ---------------------------------------------------------------------------
# Tables
# ---------------------------------------------------------------------------

TABLE_CSS = """
body { font-family: Arial, sans-serif; padding: 40px; }
h1 { color: #333; margin-bottom: 20px; }
table { width: 100%; border-collapse: collapse; margin-bottom: 20px; }
th { background: #4a5568; color: white; padding: 12px; text-align: left; }
td { padding: 10px 12px; border-bottom: 1px solid #e2e8f0; }
tr:nth-child(even) { background: #f7fafc; }
.footer { color: #666; font-size: 12px; margin-top: 20px; }
"""


def table_to_html(
    headers: List[str],
    rows: List[List[Any]],
    title: Optional[str] = None,
    footer: Optional[str] = None,
) -> str:
    """Build an HTML table document. All cell text is escaped."""
    if not headers and not rows:
        raise InvalidRequestError("Table needs headers or rows", error_code="empty_content")

    parts = [f'<!DOCTYPE html>\n<html>\n<head>\n<meta charset="UTF-8">\n<style>{TABLE_CSS}</style>\n</head>\n<body>']
    if title:
        parts.append(f"<h1>{html.escape(title)}</h1>")

    parts.append("<table><thead><tr>")
    parts.extend(f"<th>{html.escape(str(header))}</th>" for header in headers)
    parts.append("</tr></thead><tbody>")
    for row in rows:
        parts.append("<tr>")
        parts.extend(f"<td>{html.escape('' if cell is None else str(cell))}</td>" for cell in row)
        parts.append("</tr>")
    parts.append("</tbody></table>")

    if footer:
        parts.append(f"<div class='footer'>{html.escape(footer)}</div>")
    parts.append("</body></html>")
    return "".join(parts)


# ---------------------------------------------------------------------------
# Render-time decorations
# ---------------------------------------------------------------------------

# Placeholders clients may use in header/footer text
_HEADER_FOOTER_TOKENS = {
    "{page}": '<span class="pageNumber"></span>',
    "{pages}": '<span class="totalPages"></span>',
    "{date}": '<span class="date"></span>',
    "{title}": '<span class="title"></span>',
    "{url}": '<span class="url"></span>',
}


def _header_footer_text(text: str) -> str:
    text = html.escape(text or "")
    for token, span in _HEADER_FOOTER_TOKENS.items():
        text = text.replace(token, span)
    return text


def _header_footer_row(left: str, center: str, right: str, font_size: float) -> Optional[str]:
    if not (left or center or right):
        return None
    return (
        f'<div style="font-size:{font_size}px; width:100%; padding:0 0.4in; '
        f'display:flex; justify-content:space-between; color:#555;">'
        f'<span style="flex:1; text-align:left;">{_header_footer_text(left)}</span>'
        f'<span style="flex:1; text-align:center;">{_header_footer_text(center)}</span>'
        f'<span style="flex:1; text-align:right;">{_header_footer_text(right)}</span>'
        f'</div>'
    )


def header_footer_templates(config: Optional[HeaderFooter]):
    """
    Build Chromium header and footer templates.

    Returns:
        Tuple (header_template, footer_template); both None when nothing is configured
    """
    if config is None:
        return None, None
    font_size = config.font_size if config.font_size > 0 else 9.0
    header = _header_footer_row(config.header_left, config.header_center, config.header_right, font_size)
    footer = _header_footer_row(config.footer_left, config.footer_center, config.footer_right, font_size)
    if header is None and footer is None:
        return None, None
    return header or "<span></span>", footer or "<span></span>"


_CSS_COLOR = re.compile(r"^[#a-zA-Z0-9(),.%\s]{1,40}$")


def _css_string(text: str) -> str:
    escaped = text.replace("\\", "\\\\").replace('"', '\\"').replace("\n", "\\A ")
    return f'"{escaped}"'


def decoration_css(watermark: Optional[Watermark] = None, grayscale: bool = False) -> Optional[str]:
    """CSS injected into the page before emission, or None when nothing applies."""
    rules = []
    if grayscale:
        rules.append("html { filter: grayscale(100%); -webkit-filter: grayscale(100%); }")
    if watermark is not None and watermark.text:
        # A fixed-position pseudo element is repeated on every printed page
        rules.append(
            "body::after {"
            f" content: {_css_string(watermark.text)};"
            " position: fixed; top: 50%; left: 50%;"
            f" transform: translate(-50%, -50%) rotate(-{watermark.rotation}deg);"
            f" font-size: {watermark.font_size}px;"
            f" color: {watermark.color if _CSS_COLOR.match(watermark.color or '') else 'gray'};"
            f" opacity: {watermark.opacity};"
            " white-space: nowrap; pointer-events: none; z-index: 2147483647;"
            " font-family: Arial, sans-serif; font-weight: bold;"
            " }"
        )
    return "\n".join(rules) if rules else None
