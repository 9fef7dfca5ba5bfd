"""
Test suite for HTML email body rendering.

Tests cover:
- HTML detection
- HTML-only bodies rendered to text
- Plain text bodies passed through unchanged
- Bills extracted from HTML-only emails
"""

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from billscan.services.email_text import convert_html_to_text, email_body_text, looks_like_html
from billscan.services.extractor import BillExtractor, DocumentInput
from decimal import Decimal
import asyncio

HTML_BILL = (
    "<html><body>"
    "<p><strong>Total Amount Due: $135.00</strong></p>"
    "<p>Payment Due Date: 06/15/2023</p>"
    "<img src='logo.png'>"
    "</body></html>"
)


class TestHtmlRendering:

    def test_detects_html(self):
        assert looks_like_html(HTML_BILL)
        assert looks_like_html("<div>Total</div>")
        assert not looks_like_html("Total: 5 < 6")
        assert not looks_like_html("")

    def test_convert(self):
        text = convert_html_to_text(HTML_BILL)
        assert "Total Amount Due: $135.00" in text
        assert "Payment Due Date: 06/15/2023" in text
        assert "<p>" not in text
        assert "**" not in text

    def test_plain_body_unchanged(self):
        assert email_body_text("Total: $5.00", HTML_BILL) == "Total: $5.00"

    def test_html_used_when_body_empty(self):
        assert "$135.00" in email_body_text("", HTML_BILL)
        assert email_body_text("", "") == ""


class TestHtmlEmailExtraction:

    def test_html_only_email(self):
        document = DocumentInput(
            kind="email",
            message_id="m-html",
            subject="Your electric bill is ready",
            html_body=HTML_BILL,
        )
        result = asyncio.run(BillExtractor().extract(document))

        assert result.success
        assert result.bills[0].amount == Decimal("135.00")
