"""
Locale-aware date parsing for bill dates.

English bills print month-first numeric dates (06/15/2023) or spelled-out
months (June 15, 2023). Hungarian bills print year-first dates
(2023.06.15. or 2023. 06. 15.) and occasionally day-first ones (15.06.2023).
"""

from datetime import date, datetime
from typing import Optional
import re

from billscan.models.language import Language
from billscan.utils.text import fold_accents

HUNGARIAN_MONTHS = {
    'január': 1, 'február': 2, 'március': 3, 'április': 4,
    'május': 5, 'június': 6, 'július': 7, 'augusztus': 8,
    'szeptember': 9, 'október': 10, 'november': 11, 'december': 12,
}
_FOLDED_MONTHS = {fold_accents(name): month for name, month in HUNGARIAN_MONTHS.items()}

_ENGLISH_FORMATS = [
    '%m/%d/%Y', '%m-%d-%Y', '%m.%d.%Y',
    '%d/%m/%Y', '%d-%m-%Y', '%d.%m.%Y',
    '%Y-%m-%d', '%Y/%m/%d',
    '%m/%d/%y', '%d/%m/%y',
    '%B %d, %Y', '%b %d, %Y',
    '%B %d %Y', '%b %d %Y',
    '%d %B %Y', '%d %b %Y',
]


def parse_date(raw: str, language=None) -> Optional[date]:
    """
    Parse a date string using the conventions of the document language.

    Args:
        raw: Date text captured by an extraction pattern
        language: Document language (unknown codes use the default)

    Returns:
        date, or None when the string is not a valid date
    """
    if not raw or not isinstance(raw, str):
        return None

    language = Language.resolve(language)
    if language == Language.HU:
        return _parse_hungarian_date(raw) or _parse_english_date(raw)
    return _parse_english_date(raw) or _parse_hungarian_date(raw)


def _parse_english_date(raw: str) -> Optional[date]:
    date_str = raw.strip().rstrip('.')
    date_str = re.sub(r'(\d+)(?:st|nd|rd|th)\b', r'\1', date_str)
    # "Sept." -> "Sep"
    date_str = re.sub(r'\b(Sept)\.?', 'Sep', date_str, flags=re.IGNORECASE)
    date_str = re.sub(r'([A-Za-z]{3,9})\.', r'\1', date_str)
    date_str = re.sub(r'\s+', ' ', date_str)

    for fmt in _ENGLISH_FORMATS:
        try:
            return datetime.strptime(date_str, fmt).date()
        except ValueError:
            continue
    return None


def _parse_hungarian_date(raw: str) -> Optional[date]:
    text = raw.strip().lower()

    year_first = re.search(r'(\d{4})\s*[./\-]\s*(\d{1,2})\s*[./\-]\s*(\d{1,2})', text)
    if year_first:
        return _safe_date(*year_first.groups())

    day_first = re.search(r'(\d{1,2})\s*[./\-]\s*(\d{1,2})\s*[./\-]\s*(\d{4})', text)
    if day_first:
        day, month, year = day_first.groups()
        return _safe_date(year, month, day)

    # 2023. június 15.
    spelled = re.search(r'(\d{4})\.?\s+([a-z]+)\s+(\d{1,2})', fold_accents(text))
    if spelled and spelled.group(2) in _FOLDED_MONTHS:
        return _safe_date(spelled.group(1), _FOLDED_MONTHS[spelled.group(2)], spelled.group(3))

    return None


def _safe_date(year, month, day) -> Optional[date]:
    try:
        return date(int(year), int(month), int(day))
    except (TypeError, ValueError):
        return None


def to_iso(value: Optional[date]) -> Optional[str]:
    """Format date as YYYY-MM-DD."""
    return value.isoformat() if value else None
