"""
Accent-insensitive text matching.

Text recovered by the stream and byte scans often loses its accents
("Fizetendo osszeg" for "Fizetendő összeg"), and some senders strip them
from plain-text mail. Keyword, identifier and phrase checks therefore
compare accent-folded, casefolded forms of both sides.
"""

import re
import unicodedata
from typing import Iterable


def fold_accents(text: str) -> str:
    """
    Strip combining marks: "Fizetési határidő" -> "Fizetesi hatarido".

    Precomposed Latin letters fold to exactly one base letter, so positions
    in Hungarian text are preserved.
    """
    if not text:
        return ''
    decomposed = unicodedata.normalize('NFD', text)
    stripped = ''.join(ch for ch in decomposed if not unicodedata.combining(ch))
    return unicodedata.normalize('NFC', stripped)


def match_key(text: str) -> str:
    """Accent-folded, casefolded, whitespace-collapsed form used for comparisons."""
    return re.sub(r'\s+', ' ', fold_accents(text).casefold())


def contains_term(text_key: str, term: str) -> bool:
    """True if term occurs in text_key (a string already passed through match_key)."""
    key = match_key(term)
    return bool(key) and key in text_key


def count_terms(text: str, terms: Iterable[str]) -> int:
    text_key = match_key(text)
    return sum(1 for term in terms if contains_term(text_key, term))


def contains_any(text: str, terms: Iterable[str]) -> bool:
    text_key = match_key(text)
    return any(contains_term(text_key, term) for term in terms)
