"""
Supported document languages.
"""

from enum import Enum
from typing import Optional, Union


class Language(str, Enum):
    """Closed set of languages with a pattern pack."""
    EN = "en"
    HU = "hu"

    @classmethod
    def default(cls) -> "Language":
        from billscan.config import settings

        try:
            return cls(settings.DEFAULT_LANGUAGE.lower())
        except ValueError:
            return cls.EN

    @classmethod
    def resolve(cls, code: Union["Language", str, None]) -> "Language":
        """
        Resolve a language hint to a supported language.

        Unknown, empty or malformed codes fall back to the default language.
        Region suffixes are ignored ("hu-HU" -> HU).

        Args:
            code: Language, language code string or None

        Returns:
            Supported Language (never raises)
        """
        if isinstance(code, cls):
            return code
        if not code or not isinstance(code, str):
            return cls.default()

        primary = code.strip().lower().replace('_', '-').split('-')[0]
        try:
            return cls(primary)
        except ValueError:
            return cls.default()


def resolve_language(code: Optional[Union[Language, str]]) -> Language:
    return Language.resolve(code)
