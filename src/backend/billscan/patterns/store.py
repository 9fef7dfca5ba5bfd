"""
Language pattern store.

Each supported language ships one versioned JSON data file describing how
bills in that language look: document identifier phrases, field extraction
regexes, a service-type taxonomy, generic bill-indicator words, currency
symbols, vendor overrides and confidence weights.

Files are parsed once into immutable LanguagePatternPack values. Strategies
receive a PatternStore explicitly instead of reaching for global state, so
tests can hand them synthetic packs built with LanguagePatternPack.from_dict().
"""

import json
import logging
import re
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional, Tuple, Union

from billscan.models.language import Language
from billscan.utils.text import contains_any, count_terms, fold_accents

logger = logging.getLogger(__name__)

DATA_DIR = Path(__file__).parent / "data"

PATTERN_FLAGS = re.IGNORECASE | re.MULTILINE

# Field names every pack may define
FIELD_NAMES = ('amount', 'dueDate', 'billingDate', 'vendor', 'accountNumber', 'invoiceNumber')

POST_PROCESSORS = {
    'removeSpaces': lambda value: re.sub(r'\s+', '', value),
}


class PatternPackError(ValueError):
    """Raised when a pattern data file is missing or malformed."""


@dataclass(frozen=True)
class FieldPattern:
    """Ordered extraction patterns for one bill field, most specific first."""
    field_name: str
    label: str
    patterns: Tuple[str, ...]
    post_processing: Optional[str] = None
    compiled: Tuple[re.Pattern, ...] = field(init=False, repr=False, compare=False)
    folded: Tuple[re.Pattern, ...] = field(init=False, repr=False, compare=False)

    def __post_init__(self):
        if self.post_processing and self.post_processing not in POST_PROCESSORS:
            raise PatternPackError(
                f"Unknown post-processing '{self.post_processing}' for field {self.field_name}"
            )
        try:
            compiled = tuple(re.compile(p, PATTERN_FLAGS) for p in self.patterns)
        except re.error as e:
            raise PatternPackError(f"Invalid pattern for field {self.field_name}: {e}") from e
        for regex in compiled:
            if regex.groups < 1:
                raise PatternPackError(
                    f"Pattern for field {self.field_name} has no capturing group: {regex.pattern}"
                )
        object.__setattr__(self, 'compiled', compiled)
        # Same patterns without accents, for text that lost its diacritics
        object.__setattr__(
            self, 'folded', tuple(re.compile(fold_accents(p), PATTERN_FLAGS) for p in self.patterns)
        )

    def extract(self, text: str) -> Optional[str]:
        """
        Return the first capturing-group match, post-processed, or None.

        When no pattern matches, the accent-folded patterns are tried on the
        accent-folded text, so "Fizetendo osszeg" still finds the amount.
        """
        value = self._search(self.compiled, text, text)
        if value is None:
            value = self._search(self.folded, fold_accents(text), text)
        return value

    def _search(self, regexes, text: str, original: str) -> Optional[str]:
        for regex in regexes:
            match = regex.search(text)
            if not match or match.lastindex is None:
                continue
            if match.group(1) is None:
                continue
            if len(text) == len(original):
                value = original[match.start(1):match.end(1)]
            else:
                value = match.group(1)
            value = value.strip()
            if self.post_processing:
                value = POST_PROCESSORS[self.post_processing](value)
            if value:
                return value
        return None


@dataclass(frozen=True)
class ServiceType:
    """One entry of the service-type taxonomy."""
    type: str
    category: str
    identifiers: Tuple[str, ...]


@dataclass(frozen=True)
class ServiceMatch:
    type: str
    category: str


@dataclass(frozen=True)
class HighlightField:
    """A labelled value inside a vendor's highlighted summary box."""
    label: str
    field: str  # 'amount' or 'dueDate'
    weight: float


@dataclass(frozen=True)
class VendorHighlight:
    triggers: Tuple[str, ...]
    fields: Tuple[HighlightField, ...]

    def is_triggered(self, text: str) -> bool:
        return contains_any(text, self.triggers)


@dataclass(frozen=True)
class VendorOverride:
    """Forced category/currency for a recognized vendor."""
    name: str
    category: Optional[str] = None
    currency: Optional[str] = None
    aliases: Tuple[str, ...] = ()
    highlight: Optional[VendorHighlight] = None
    compiled: re.Pattern = field(init=False, repr=False, compare=False)

    def __post_init__(self):
        names = sorted({self.name, *self.aliases}, key=len, reverse=True)
        alternation = '|'.join(re.escape(fold_accents(n)) for n in names)
        object.__setattr__(
            self, 'compiled', re.compile(rf'(?<!\w)(?:{alternation})(?!\w)', re.IGNORECASE)
        )

    def matches(self, text: str) -> bool:
        return bool(self.compiled.search(fold_accents(text)))


@dataclass(frozen=True)
class ConfidenceWeights:
    minimum_required: float
    keyword_match: float
    pattern_match: float
    vendor_match: float
    full_extraction: float


@dataclass(frozen=True)
class LanguagePatternPack:
    """Immutable per-language pattern bundle."""
    language: Language
    version: int
    default_currency: str
    document_identifiers: Tuple[Tuple[str, Tuple[str, ...]], ...]
    field_extractors: Mapping[str, FieldPattern]
    service_types: Tuple[ServiceType, ...]
    common_words: Tuple[str, ...]
    bill_indicator_threshold: int
    currency_symbols: Tuple[Tuple[str, str], ...]
    vendor_overrides: Tuple[VendorOverride, ...]
    confidence: ConfidenceWeights

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LanguagePatternPack":
        """
        Build a pack from its JSON representation.

        Args:
            data: Parsed pattern data file

        Returns:
            LanguagePatternPack with all regexes compiled

        Raises:
            PatternPackError: If required keys are missing or a regex is invalid
        """
        required = (
            'version', 'language', 'defaultCurrency', 'documentIdentifiers',
            'fieldExtractors', 'serviceTypes', 'commonWords',
            'billIndicatorThreshold', 'confidence',
        )
        missing = [key for key in required if key not in data]
        if missing:
            raise PatternPackError(f"Pattern data missing keys: {', '.join(missing)}")

        try:
            language = Language(data['language'])
        except ValueError as e:
            raise PatternPackError(f"Unsupported pattern language: {data['language']!r}") from e

        extractors = {}
        for entry in data['fieldExtractors']:
            name = entry['fieldName']
            if name not in FIELD_NAMES:
                raise PatternPackError(f"Unknown field name in pattern data: {name}")
            extractors[name] = FieldPattern(
                field_name=name,
                label=entry.get('label', name),
                patterns=tuple(entry['patterns']),
                post_processing=entry.get('postProcessing'),
            )

        service_types = tuple(
            ServiceType(type=key, category=value['category'], identifiers=tuple(value['identifiers']))
            for key, value in data['serviceTypes'].items()
        )

        overrides = []
        for name, value in data.get('vendorOverrides', {}).items():
            highlight = None
            if value.get('highlight'):
                highlight = VendorHighlight(
                    triggers=tuple(value['highlight']['triggers']),
                    fields=tuple(
                        HighlightField(label=f['label'], field=f['field'], weight=float(f['weight']))
                        for f in value['highlight']['fields']
                    ),
                )
            overrides.append(VendorOverride(
                name=name,
                category=value.get('category'),
                currency=value.get('currency'),
                aliases=tuple(value.get('aliases', ())),
                highlight=highlight,
            ))

        weights = data['confidence']
        try:
            confidence = ConfidenceWeights(
                minimum_required=float(weights['minimumRequired']),
                keyword_match=float(weights['keywordMatch']),
                pattern_match=float(weights['patternMatch']),
                vendor_match=float(weights['vendorMatch']),
                full_extraction=float(weights['fullExtraction']),
            )
        except KeyError as e:
            raise PatternPackError(f"Confidence weight missing: {e}") from e

        return cls(
            language=language,
            version=int(data['version']),
            default_currency=data['defaultCurrency'],
            document_identifiers=tuple(
                (group['name'], tuple(group['patterns'])) for group in data['documentIdentifiers']
            ),
            field_extractors=MappingProxyType(extractors),
            service_types=service_types,
            common_words=tuple(data['commonWords']),
            bill_indicator_threshold=int(data['billIndicatorThreshold']),
            currency_symbols=tuple(data.get('currencySymbols', {}).items()),
            vendor_overrides=tuple(overrides),
            confidence=confidence,
        )

    def matches_document_identifier(self, text: str) -> bool:
        """Case- and accent-insensitive substring test against the identifier phrases."""
        if not text:
            return False
        return any(contains_any(text, phrases) for _, phrases in self.document_identifiers)

    def extract_field(self, text: str, field_name: str) -> Optional[str]:
        extractor = self.field_extractors.get(field_name)
        if extractor is None or not text:
            return None
        return extractor.extract(text)

    def detect_service_type(self, text: str) -> Optional[ServiceMatch]:
        """First taxonomy entry (declaration order) with an identifier in the text."""
        if not text:
            return None
        for service in self.service_types:
            if contains_any(text, service.identifiers):
                return ServiceMatch(type=service.type, category=service.category)
        return None

    def common_word_count(self, text: str) -> int:
        return count_terms(text, self.common_words)

    def calculate_confidence(self, text: str) -> float:
        """
        Additive heuristic bill-likelihood score.

        Scoring (weights come from the pack):
        - keyword_match if any document identifier occurs
        - keyword_match * min(1, n / 5) if n >= threshold common words occur
        - pattern_match if an amount is extracted
        - vendor_match if a vendor is extracted
        - pattern_match if at least two of amount/dueDate/vendor are extracted
        - pattern_match if a service type resolves

        Args:
            text: Document text

        Returns:
            Score clamped to [0.0, 1.0]
        """
        if not text:
            return 0.0

        weights = self.confidence
        score = 0.0
        extracted_fields = 0

        if self.matches_document_identifier(text):
            score += weights.keyword_match

        word_matches = self.common_word_count(text)
        if word_matches >= self.bill_indicator_threshold:
            score += weights.keyword_match * min(1.0, word_matches / 5)

        if self.extract_field(text, 'amount'):
            extracted_fields += 1
            score += weights.pattern_match

        if self.extract_field(text, 'dueDate'):
            extracted_fields += 1

        if self.extract_field(text, 'vendor'):
            extracted_fields += 1
            score += weights.vendor_match

        if extracted_fields >= 2:
            score += weights.pattern_match

        if self.detect_service_type(text):
            score += weights.pattern_match

        return max(0.0, min(1.0, score))

    def match_vendor_override(self, text: str) -> Optional[VendorOverride]:
        if not text:
            return None
        for override in self.vendor_overrides:
            if override.matches(text):
                return override
        return None

    def currency_for(self, text: str) -> Optional[str]:
        """First currency symbol or word of the pack found in the text."""
        if not text:
            return None
        for symbol, code in self.currency_symbols:
            if any(ch.isalpha() for ch in symbol):
                regex = rf'(?<![A-Za-z]){re.escape(symbol)}(?![A-Za-z])'
                if re.search(regex, text, re.IGNORECASE):
                    return code
            elif symbol in text:
                return code
        return None


def load_pattern_pack(path: Union[str, Path]) -> LanguagePatternPack:
    """
    Load one pattern data file.

    Raises:
        PatternPackError: If the file cannot be read or parsed
    """
    path = Path(path)
    try:
        with path.open(encoding='utf-8') as f:
            data = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        raise PatternPackError(f"Cannot load pattern data {path}: {e}") from e

    pack = LanguagePatternPack.from_dict(data)
    logger.debug(
        "Loaded pattern pack",
        extra={'language': pack.language.value, 'version': pack.version, 'path': str(path)}
    )
    return pack


class PatternStore:
    """
    Read-only lookup of pattern packs by language.

    Lookups never fail: an unknown language code resolves to the default
    language, and a language without a pack falls back to the default pack.
    """

    def __init__(
        self,
        packs: Mapping[Language, LanguagePatternPack],
        default_language: Optional[Language] = None
    ):
        if not packs:
            raise PatternPackError("PatternStore needs at least one pattern pack")
        self._packs = MappingProxyType(dict(packs))
        self.default_language = default_language or Language.default()
        if self.default_language not in self._packs:
            self.default_language = next(iter(self._packs))

    @classmethod
    def from_directory(cls, directory: Optional[Union[str, Path]] = None) -> "PatternStore":
        """Load <code>.json for every supported language from a directory."""
        directory = Path(directory) if directory else DATA_DIR
        packs = {}
        for language in Language:
            packs[language] = load_pattern_pack(directory / f"{language.value}.json")
        return cls(packs)

    @property
    def languages(self) -> Tuple[Language, ...]:
        return tuple(self._packs)

    def get_pattern_pack(self, language: Union[Language, str, None] = None) -> LanguagePatternPack:
        resolved = Language.resolve(language)
        pack = self._packs.get(resolved)
        if pack is None:
            return self._packs[self.default_language]
        return pack

    def matches_document_identifier(self, text: str, language=None) -> bool:
        return self.get_pattern_pack(language).matches_document_identifier(text)

    def extract_field(self, text: str, field_name: str, language=None) -> Optional[str]:
        return self.get_pattern_pack(language).extract_field(text, field_name)

    def detect_service_type(self, text: str, language=None) -> Optional[ServiceMatch]:
        return self.get_pattern_pack(language).detect_service_type(text)

    def calculate_confidence(self, text: str, language=None) -> float:
        return self.get_pattern_pack(language).calculate_confidence(text)


@lru_cache(maxsize=1)
def get_default_store() -> PatternStore:
    """Pattern store backed by the packaged (or configured) data files."""
    from billscan.config import settings

    return PatternStore.from_directory(settings.PATTERN_DATA_DIR)
