"""
PDF text recovery.

Bills arrive from many PDF producers, and not every one of them produces a
file PyPDF2 can read. Text is recovered by an ordered chain of strategies,
each tried only when the previous ones produced too little text:

1. Structured extraction (PyPDF2 page/text-object model, time-bounded)
2. Stream marker scan (parenthesized and hex strings inside BT..ET blocks)
3. Byte heuristic scan (runs of printable ASCII and Hungarian letters)

A failed or empty chain returns empty text. It never raises.
"""

import asyncio
import io
import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

import PyPDF2

from billscan.config import settings
from billscan.utils.language import LANGUAGE_KEYWORDS
from billscan.utils.text import count_terms

logger = logging.getLogger(__name__)

PDF_SIGNATURE = b'%PDF-'

_PDF_ESCAPES = {
    'n': '\n', 'r': '\r', 't': '\t', 'b': '\b', 'f': '\f',
    '(': '(', ')': ')', '\\': '\\',
}


@dataclass
class TextItem:
    """A text run with its position on the page."""
    page: int
    text: str
    x: float
    y: float
    font_size: float


@dataclass
class RecoveredText:
    """Text recovered from a PDF by one or more strategies."""
    text: str
    confidence_hint: float
    strategy: str
    pages: List[str] = field(default_factory=list)
    items: List[TextItem] = field(default_factory=list)
    timed_out: bool = False

    @classmethod
    def empty(cls, timed_out: bool = False) -> "RecoveredText":
        return cls(text="", confidence_hint=0.0, strategy="none", timed_out=timed_out)

    @property
    def is_empty(self) -> bool:
        return not self.text.strip()


def decode_pdf_bytes(data: bytes) -> str:
    """UTF-8 when the bytes are valid UTF-8, otherwise ISO-8859-2 (maps every byte)."""
    try:
        return data.decode('utf-8')
    except UnicodeDecodeError:
        return data.decode('iso-8859-2')


def unescape_pdf_string(raw: str) -> str:
    """
    Resolve PDF literal-string escapes.

    Handles \\n, \\r, \\t, \\b, \\f, \\(, \\), \\\\, octal escapes (\\351)
    and backslash line continuations.
    """
    def replace(match: re.Match) -> str:
        escape = match.group(1)
        if escape[0] in '01234567':
            return bytes([int(escape, 8) & 0xFF]).decode('iso-8859-2')
        if escape in ('\n', '\r'):
            return ''
        return _PDF_ESCAPES.get(escape, escape)

    return re.sub(r'\\([0-7]{1,3}|.)', replace, raw, flags=re.DOTALL)


def decode_hex_string(hex_text: str) -> str:
    """Decode a PDF hex string, including <FEFF...> UTF-16BE strings."""
    digits = re.sub(r'\s+', '', hex_text)
    if len(digits) % 2:
        digits += '0'
    try:
        raw = bytes.fromhex(digits)
    except ValueError:
        return ''
    if raw.startswith(b'\xfe\xff'):
        return raw[2:].decode('utf-16-be', errors='ignore')
    return raw.decode('iso-8859-2')


def _normalize_whitespace(text: str) -> str:
    text = re.sub(r'[ \t\r\f\v]+', ' ', text)
    text = re.sub(r' ?\n[ \n]*', '\n', text)
    return text.strip()


class RecoveryStrategy(ABC):
    """One step of the recovery chain."""
    name: str = "base"
    confidence_hint: float = 0.0

    @abstractmethod
    async def recover(self, data: bytes) -> Optional[RecoveredText]:
        """
        Recover text from PDF bytes.

        Returns:
            RecoveredText, or None when this strategy found nothing

        Raises:
            asyncio.TimeoutError: Only for time-bounded strategies
        """


class StructuredTextStrategy(RecoveryStrategy):
    """PyPDF2 page-model extraction, raced against a timeout."""
    name = "structured"
    confidence_hint = 0.9

    def __init__(self, timeout: Optional[float] = None, include_positions: bool = False):
        self.timeout = timeout if timeout is not None else settings.PDF_EXTRACTION_TIMEOUT
        self.include_positions = include_positions

    async def recover(self, data: bytes) -> Optional[RecoveredText]:
        if not data:
            return None

        # PyPDF2 is blocking, so it runs in a worker thread
        pages, items = await asyncio.wait_for(
            asyncio.to_thread(self._extract, data),
            timeout=self.timeout
        )
        if pages is None:
            return None

        text = "\n".join(p for p in pages if p.strip())
        if not text.strip():
            return None

        return RecoveredText(
            text=text.strip(),
            confidence_hint=self.confidence_hint,
            strategy=self.name,
            pages=pages,
            items=items,
        )

    def _extract(self, data: bytes):
        try:
            reader = PyPDF2.PdfReader(io.BytesIO(data))
            pages: List[str] = []
            items: List[TextItem] = []

            for page_number, page in enumerate(reader.pages):
                if self.include_positions:
                    def visitor(text, cm, tm, font_dict, font_size, _page=page_number):
                        if text and text.strip():
                            items.append(TextItem(
                                page=_page,
                                text=text,
                                x=float(tm[4]),
                                y=float(tm[5]),
                                font_size=float(font_size or 0),
                            ))
                    page_text = page.extract_text(visitor_text=visitor)
                else:
                    page_text = page.extract_text()
                pages.append(page_text or "")

            return pages, items

        # PyPDF2 raises a wide range of errors on damaged files
        except Exception:
            logger.warning("Structured PDF extraction failed", exc_info=True)
            return None, []


class StreamMarkerStrategy(RecoveryStrategy):
    """Scan raw content streams for Tj/TJ text operators."""
    name = "stream_markers"
    confidence_hint = 0.6

    TEXT_BLOCK = re.compile(r'\bBT\b(.*?)\bET\b', re.DOTALL)
    SHOW_TEXT = re.compile(
        r'\(((?:\\.|[^\\)])*)\)\s*Tj'
        r'|<([0-9A-Fa-f\s]+)>\s*Tj'
        r'|\[((?:\\.|[^\]\\])*)\]\s*TJ',
        re.DOTALL
    )
    ARRAY_ITEM = re.compile(r'\(((?:\\.|[^\\)])*)\)|<([0-9A-Fa-f\s]*)>', re.DOTALL)
    GENERIC_STRING = re.compile(r'\(([^)]{2,})\)')

    def __init__(self, max_bytes: Optional[int] = None, max_chars: Optional[int] = None):
        self.max_bytes = max_bytes or settings.MAX_BINARY_SCAN_BYTES
        self.max_chars = max_chars or settings.MAX_RECOVERED_CHARS

    async def recover(self, data: bytes) -> Optional[RecoveredText]:
        text = self.scan(data)
        if not text:
            return None
        return RecoveredText(text=text, confidence_hint=self.confidence_hint, strategy=self.name)

    def scan(self, data: bytes) -> str:
        if not data:
            return ""
        if not data.startswith(PDF_SIGNATURE):
            logger.debug("Scanning bytes without a PDF signature", extra={'size': len(data)})

        content = decode_pdf_bytes(data[:self.max_bytes])

        lines = []
        for block in self.TEXT_BLOCK.finditer(content):
            fragments = []
            for match in self.SHOW_TEXT.finditer(block.group(1)):
                literal, hex_text, array = match.groups()
                if literal is not None:
                    fragments.append(unescape_pdf_string(literal))
                elif hex_text is not None:
                    fragments.append(decode_hex_string(hex_text))
                elif array is not None:
                    fragments.append(self._join_array(array))
            line = ' '.join(f for f in fragments if f.strip())
            if line.strip():
                lines.append(line)

        if not lines:
            for match in self.GENERIC_STRING.finditer(content):
                candidate = unescape_pdf_string(match.group(1))
                if self._looks_like_text(candidate):
                    lines.append(candidate)

        return _normalize_whitespace("\n".join(lines))[:self.max_chars]

    def _join_array(self, array: str) -> str:
        parts = []
        for item in self.ARRAY_ITEM.finditer(array):
            literal, hex_text = item.groups()
            if literal is not None:
                parts.append(unescape_pdf_string(literal))
            elif hex_text:
                parts.append(decode_hex_string(hex_text))
        return ''.join(parts)

    @staticmethod
    def _looks_like_text(candidate: str) -> bool:
        stripped = candidate.strip()
        if len(stripped) < 2:
            return False
        readable = sum(1 for ch in stripped if ch.isalnum() or ch in ' .,:-/$%')
        return readable / len(stripped) >= 0.7


class ByteHeuristicStrategy(RecoveryStrategy):
    """Keep runs of printable characters, keyword-bearing runs first."""
    name = "byte_heuristic"
    confidence_hint = 0.4

    PRINTABLE_RUN = re.compile(r'[A-Za-z0-9\s.,\-:;/$%€£áéíóöőúüűÁÉÍÓÖŐÚÜŰ]{4,}')

    def __init__(self, max_bytes: Optional[int] = None, max_chars: Optional[int] = None):
        self.max_bytes = max_bytes or settings.MAX_BINARY_SCAN_BYTES
        self.max_chars = max_chars or settings.MAX_RECOVERED_CHARS
        self.keywords = tuple(
            kw for keywords in LANGUAGE_KEYWORDS.values() for kw in keywords
        )

    async def recover(self, data: bytes) -> Optional[RecoveredText]:
        text = self.scan(data)
        if not text:
            return None
        return RecoveredText(text=text, confidence_hint=self.confidence_hint, strategy=self.name)

    def scan(self, data: bytes) -> str:
        if not data:
            return ""

        content = decode_pdf_bytes(data[:self.max_bytes])
        runs = []
        for position, match in enumerate(self.PRINTABLE_RUN.finditer(content)):
            run = _normalize_whitespace(match.group(0))
            # Runs without letters are usually offsets and object numbers
            if sum(1 for ch in run if ch.isalpha()) < 3:
                continue
            hits = count_terms(run, self.keywords)
            runs.append((hits, position, run))

        # Keyword runs first in document order, then the rest longest first
        keyword_runs = [r for r in runs if r[0] > 0]
        other_runs = sorted((r for r in runs if r[0] == 0), key=lambda r: -len(r[2]))

        output = []
        length = 0
        for _, _, run in keyword_runs + other_runs:
            if length + len(run) > self.max_chars:
                break
            output.append(run)
            length += len(run) + 1

        return "\n".join(output)


def default_strategies() -> List[RecoveryStrategy]:
    return [StructuredTextStrategy(), StreamMarkerStrategy(), ByteHeuristicStrategy()]


class TextRecoveryChain:
    """
    Ordered fallback over recovery strategies.

    The first result with at least short_text_threshold characters wins.
    Shorter results are kept and concatenated with whatever later
    strategies recover, so a PDF whose structured layer holds only a
    header still gets its body text from the byte scans.
    """

    def __init__(
        self,
        strategies: Optional[Sequence[RecoveryStrategy]] = None,
        short_text_threshold: Optional[int] = None
    ):
        self.strategies = list(strategies) if strategies is not None else default_strategies()
        self.short_text_threshold = (
            short_text_threshold if short_text_threshold is not None
            else settings.SHORT_TEXT_THRESHOLD
        )

    async def recover(self, data: bytes) -> RecoveredText:
        """
        Run the chain over PDF bytes.

        Args:
            data: Raw PDF bytes

        Returns:
            RecoveredText (empty text when every strategy failed)
        """
        collected: List[RecoveredText] = []
        timed_out = False

        for strategy in self.strategies:
            try:
                result = await strategy.recover(data)
            except asyncio.TimeoutError:
                timed_out = True
                logger.warning(
                    "PDF text recovery step timed out",
                    extra={'strategy': strategy.name}
                )
                continue

            if result is None or result.is_empty:
                continue

            if not collected and len(result.text.strip()) >= self.short_text_threshold:
                result.timed_out = timed_out
                return result

            collected.append(result)
            combined_length = sum(len(r.text.strip()) for r in collected)
            if combined_length >= self.short_text_threshold:
                break

        if not collected:
            logger.info(
                "No text recovered from PDF",
                extra={'size': len(data or b''), 'timed_out': timed_out}
            )
            return RecoveredText.empty(timed_out=timed_out)

        if len(collected) == 1:
            collected[0].timed_out = timed_out
            return collected[0]

        return RecoveredText(
            text="\n".join(r.text.strip() for r in collected),
            confidence_hint=max(r.confidence_hint for r in collected),
            strategy="+".join(r.strategy for r in collected),
            pages=[page for r in collected for page in r.pages],
            items=[item for r in collected for item in r.items],
            timed_out=timed_out,
        )
