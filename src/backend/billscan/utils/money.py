"""
Locale-aware amount parsing.

Handles the separator conventions bills actually use:
- English: 1,234.56
- Hungarian: 1.234,56 or 1 234,56 or 121.975 (no decimals)
- Currency symbols and words ($, Ft, HUF, forint) are stripped

A dot or comma followed by exactly one or two digits at the end of the
string is the decimal separator. Every other dot, comma or space is a
thousands separator. The rule is positional, so it is the same for every
language.
"""

from decimal import Decimal, InvalidOperation
from typing import Optional, Union
import logging
import re

from billscan.models.language import Language

logger = logging.getLogger(__name__)

ZERO = Decimal("0")

_DECIMAL_TAIL = re.compile(r'[.,](\d{1,2})$')


def parse_amount(raw: str, language: Optional[Union[Language, str]] = None) -> Decimal:
    """
    Parse a raw amount string into a Decimal.

    Args:
        raw: String containing an amount (e.g., "175.945", "Ft. 123 456,78", "$1,234.56")
        language: Language of the document the string came from

    Returns:
        Decimal amount, or Decimal("0") when the string is not a number.
        Callers treat zero as "no amount found".

    Examples:
        >>> parse_amount("175.945", "hu")
        Decimal('175945')
        >>> parse_amount("175,945.50", "en")
        Decimal('175945.50')
        >>> parse_amount("1,5", "hu")
        Decimal('1.5')
    """
    if not raw or not isinstance(raw, str):
        return ZERO

    # Keep digits and separators only
    cleaned = re.sub(r'[^\d.,\s]', '', raw)
    cleaned = re.sub(r'\s+', '', cleaned).strip('.,')

    if not cleaned or not re.search(r'\d', cleaned):
        return ZERO

    tail = _DECIMAL_TAIL.search(cleaned)
    if tail:
        integer_part = re.sub(r'[.,]', '', cleaned[:tail.start()]) or '0'
        number = f"{integer_part}.{tail.group(1)}"
    else:
        number = re.sub(r'[.,]', '', cleaned)

    try:
        return Decimal(number)
    except (InvalidOperation, ValueError):
        logger.debug(
            "Unparseable amount",
            extra={'raw': raw, 'language': Language.resolve(language).value}
        )
        return ZERO


def format_amount(amount: Optional[Decimal], currency: str = 'USD', language=None) -> str:
    """
    Format Decimal amount the way bills in the given language print it.

    Examples:
        >>> format_amount(Decimal('121975'), 'HUF', 'hu')
        '121 975 Ft'
        >>> format_amount(Decimal('1234.5'), 'USD', 'en')
        '$1,234.50'
    """
    if amount is None:
        return 'N/A'

    language = Language.resolve(language)

    if currency.upper() == 'HUF':
        # Forint amounts are whole numbers on bills
        whole = f"{int(amount.quantize(Decimal('1'))):,}"
        return f"{whole.replace(',', ' ')} Ft"

    formatted = f"{amount.quantize(Decimal('0.01')):,}"
    if language == Language.HU:
        formatted = formatted.replace(',', ' ').replace('.', ',')

    symbol_map = {
        'USD': '$',
        'EUR': '€',
        'GBP': '£',
    }
    symbol = symbol_map.get(currency.upper())
    if symbol is None:
        return f"{formatted} {currency.upper()}"
    if language == Language.HU:
        return f"{formatted} {symbol}"
    return f"{symbol}{formatted}"
