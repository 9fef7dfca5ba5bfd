"""
Plain-text rendering of HTML email bodies.

Many billers send HTML-only messages. The extraction patterns work on text,
so the HTML part is rendered with html2text before any strategy sees it.
"""

import logging
import re

import html2text

logger = logging.getLogger(__name__)

_HTML_HINT = re.compile(r'<\s*(?:html|body|div|table|p|br|span|td)\b', re.IGNORECASE)


def looks_like_html(content: str) -> bool:
    return bool(content) and _HTML_HINT.search(content) is not None


def convert_html_to_text(html_content: str) -> str:
    """
    Convert an HTML email body to clean text.

    Args:
        html_content: HTML string

    Returns:
        Plain text version (the input unchanged if conversion fails)
    """
    try:
        h = html2text.HTML2Text()
        h.ignore_links = True
        h.ignore_images = True
        h.ignore_emphasis = True  # "**Total:**" would break label patterns
        h.body_width = 0  # Don't wrap lines

        return h.handle(html_content).strip()
    except (ValueError, AssertionError) as e:
        logger.warning("Error converting HTML to text", extra={
            "error": str(e)
        })
        return html_content


def email_body_text(body: str = "", html_body: str = "") -> str:
    """Text body when present, otherwise the rendered HTML part."""
    if body and body.strip():
        return convert_html_to_text(body) if looks_like_html(body) else body
    if html_body and html_body.strip():
        return convert_html_to_text(html_body)
    return ""
