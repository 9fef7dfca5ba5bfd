"""
Keyword-ratio language detection for documents without a language hint.
"""

import logging
from typing import Dict, Tuple

from billscan.models.language import Language
from billscan.utils.text import count_terms

logger = logging.getLogger(__name__)

LANGUAGE_KEYWORDS: Dict[Language, Tuple[str, ...]] = {
    Language.HU: (
        'számla', 'fizetendő', 'összeg', 'forint', 'végösszeg',
        'áfa', 'határidő', 'teljesítés', 'kelte', 'dátum',
        'fizetési', 'szolgáltató', 'vevő', 'eladó', 'megrendelő',
        'köszönjük', 'bankszámla', 'adószám',
    ),
    Language.EN: (
        'invoice', 'bill', 'amount', 'total', 'due', 'payment',
        'date', 'account', 'subtotal', 'tax', 'customer',
        'thank you', 'balance', 'statement', 'receipt',
    ),
}


def keyword_ratio(text: str, language: Language) -> float:
    keywords = LANGUAGE_KEYWORDS[language]
    return count_terms(text, keywords) / len(keywords)


def detect_language(text: str, threshold_ratio: float = 0.15) -> Language:
    """
    Guess the document language from bill vocabulary.

    Hungarian wins when its keyword ratio reaches the threshold and beats
    the English ratio, or when a short text has at least two Hungarian
    keywords and no English ones. Everything else is English.

    Args:
        text: Document text
        threshold_ratio: Minimum share of Hungarian keywords present

    Returns:
        Detected Language
    """
    if not text:
        return Language.EN

    hu_ratio = keyword_ratio(text, Language.HU)
    en_ratio = keyword_ratio(text, Language.EN)

    logger.debug(
        "Language detection",
        extra={'hu_ratio': round(hu_ratio, 3), 'en_ratio': round(en_ratio, 3)}
    )

    if hu_ratio >= threshold_ratio and hu_ratio > en_ratio:
        return Language.HU
    if en_ratio == 0 and contains_language_patterns(text, Language.HU, min_matches=2):
        return Language.HU
    return Language.EN


def contains_language_patterns(text: str, language: Language, min_matches: int = 2) -> bool:
    """True if at least min_matches keywords of the language occur."""
    if not text:
        return False
    keywords = LANGUAGE_KEYWORDS.get(Language.resolve(language), ())
    return count_terms(text, keywords) >= min_matches
