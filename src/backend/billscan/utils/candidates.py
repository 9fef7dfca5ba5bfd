"""
Candidate dataclasses for extraction scoring.

Each candidate represents a potential extracted value with metadata
used for scoring and selection.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Iterable

from billscan.utils.text import fold_accents


@dataclass
class Candidate:
    """Base class for extraction candidates."""
    value: Any
    pattern_name: str
    match_span: tuple[int, int]  # (start, end) character positions
    priority: int = 100  # Lower is better
    raw_text: str = ""  # Original matched text


@dataclass
class AmountCandidate(Candidate):
    """
    Candidate for extracted amount.

    Scoring factors:
    - priority: Base pattern priority (lower = higher quality)
    - proximity_to_keywords: Distance to "total"/"due"/"fizetendő" etc.
    - on_keyword_line: A total/due keyword precedes it on the same line
    - has_currency: A currency symbol or word is attached to the number
    - highlight_weight: Weight of the vendor summary-box label it came from
    - in_blacklist_context: Same line starts with "subtotal", "tax", "áfa" (penalty)
    """
    value: Decimal
    proximity_to_keywords: int = 999
    on_keyword_line: bool = False
    has_currency: bool = False
    highlight_weight: float = 0.0
    in_blacklist_context: bool = False


@dataclass
class VendorCandidate(Candidate):
    """
    Candidate for extracted vendor.

    Scoring factors:
    - from_sender_name: Display name of the From: header (highest confidence)
    - from_domain: Derived from the sender's e-mail domain
    - from_subject: First words of the subject line
    - has_company_suffix: Ended with Inc, LLC, Ltd, Kft, Zrt, etc. before cleanup
    """
    value: str
    from_sender_name: bool = False
    from_domain: bool = False
    from_subject: bool = False
    has_company_suffix: bool = False


def keyword_proximity(text: str, start: int, end: int, keywords: Iterable[str], window: int = 50) -> int:
    """
    Distance in characters from a match to the nearest keyword.

    Only keywords inside the +/- window around the match are considered.

    Returns:
        Distance, or 999 when no keyword is inside the window
    """
    context_start = max(0, start - window)
    context_end = min(len(text), end + window)
    context = fold_accents(text[context_start:context_end]).lower()
    match_start = start - context_start
    match_end = end - context_start

    proximity = 999
    for keyword in keywords:
        keyword = fold_accents(keyword)
        pos = context.find(keyword)
        while pos != -1:
            keyword_end = pos + len(keyword)
            if keyword_end <= match_start:
                distance = match_start - keyword_end
            elif pos >= match_end:
                distance = pos - match_end
            else:
                distance = 0
            proximity = min(proximity, distance)
            pos = context.find(keyword, pos + 1)
    return proximity


def create_amount_candidate(
    value: Decimal,
    pattern_name: str,
    match_span: tuple[int, int],
    raw_text: str,
    priority: int,
    text: str,
    proximity_keywords: Iterable[str],
    blacklist_keywords: Iterable[str] = (),
    has_currency: bool = False,
    highlight_weight: float = 0.0
) -> AmountCandidate:
    """
    Create AmountCandidate with computed context flags.

    Args:
        value: Parsed amount
        pattern_name: Name of pattern that matched
        match_span: Character span of the number
        raw_text: Original matched text
        priority: Pattern priority
        text: Full text for context analysis
        proximity_keywords: Lowercase words that mark the payable amount
        blacklist_keywords: Lowercase words that mark a non-payable amount
        has_currency: Whether a currency marker was part of the match
        highlight_weight: Label weight when the match came from a summary box

    Returns:
        AmountCandidate with computed flags
    """
    start, end = match_span
    proximity_keywords = tuple(proximity_keywords)
    proximity = keyword_proximity(text, start, end, proximity_keywords)

    # Only the current line decides labels: "Tax $10.00" vs "Total: $135.00"
    line_start = text.rfind('\n', 0, start) + 1
    line_prefix = fold_accents(text[line_start:start]).lower()
    on_keyword_line = any(fold_accents(word) in line_prefix for word in proximity_keywords)
    in_blacklist = any(fold_accents(word) in line_prefix for word in blacklist_keywords)

    return AmountCandidate(
        value=value,
        pattern_name=pattern_name,
        match_span=match_span,
        priority=priority,
        raw_text=raw_text,
        proximity_to_keywords=proximity,
        on_keyword_line=on_keyword_line,
        has_currency=has_currency,
        highlight_weight=highlight_weight,
        in_blacklist_context=in_blacklist,
    )
