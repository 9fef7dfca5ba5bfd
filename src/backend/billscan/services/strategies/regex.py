"""
Regex-based extraction strategy.

Bilingual keyword-gated fallback after the pattern strategy. Besides the
language pack's labelled field patterns it collects every currency-tagged
number in the document, scores each by how close it sits to words like
"total", "due" or "fizetendő", and lets vendor summary boxes (for example
the highlighted payable box on MVM electricity bills) override the result.
"""

import logging
import re
from datetime import date
from typing import Dict, List, Optional, Tuple

from billscan.models.bill import EmailContext, ExtractionResult, PdfContext, RawBillFields
from billscan.patterns.store import LanguagePatternPack, VendorOverride
from billscan.services.normalizer import CORPORATE_SUFFIXES, normalize_bill
from billscan.services.strategies.base import ExtractionStrategy
from billscan.utils.candidates import AmountCandidate, VendorCandidate, create_amount_candidate
from billscan.utils.dates import parse_date
from billscan.utils.money import parse_amount
from billscan.utils.scoring import select_best_amount, select_best_vendor
from billscan.utils.text import contains_any, count_terms, fold_accents

logger = logging.getLogger(__name__)

BILL_KEYWORDS = (
    "bill", "invoice", "receipt", "payment", "due", "statement", "transaction",
    "charge", "fee", "subscription", "order", "purchase",
    # Hungarian
    "számla", "fizetés", "díj", "határidő", "fizetési", "értesítő",
    "fizetendő", "összeg",
)

# Words that mark the payable amount
PROXIMITY_KEYWORDS = (
    "total", "amount", "payment", "due", "pay",
    "fizetendő", "összeg", "összesen", "végösszeg", "befizetendő",
)

# Line labels of amounts that are not the payable total
BLACKLIST_KEYWORDS = (
    "subtotal", "sub-total", "tax", "previous balance", "credit", "discount",
    "részösszeg", "áfa", "előző", "kedvezmény", "nettó",
)

CATEGORY_PATTERNS: Dict[str, Tuple[str, ...]] = {
    "Utilities": (
        "electric", "gas", "water", "sewage", "utility", "utilities", "power",
        "energy", "hydro",
        "áram", "gáz", "víz", "közüzemi", "villamos",
    ),
    "Telecommunications": (
        "phone", "mobile", "cell", "wireless", "telecom", "internet",
        "broadband", "fiber", "wifi", "cable", "tv", "television",
        "telefon", "mobil", "vodafone", "telekom", "yettel", "digi",
    ),
    "Subscriptions": (
        "netflix", "spotify", "hulu", "disney", "prime", "youtube",
        "subscription", "membership",
        "előfizetés", "havi díj", "ismétlődő",
    ),
    "Shopping": (
        "amazon", "walmart", "best buy", "ebay", "etsy", "shop",
        "store", "purchase", "order",
        "vásárlás", "rendelés", "webáruház",
    ),
    "Travel": (
        "airline", "flight", "hotel", "motel", "booking", "reservation",
        "travel", "trip", "vacation", "airbnb", "expedia",
        "repülő", "szállás", "foglalás", "utazás",
    ),
    "Insurance": (
        "insurance", "policy", "coverage", "claim", "premium",
        "biztosítás", "biztosító", "életbiztosítás", "casco", "kötelező",
    ),
    "Entertainment": (
        "entertainment", "movie", "game", "concert", "ticket", "event",
        "szórakozás", "film", "játék", "koncert", "jegy", "esemény",
    ),
    "Food": (
        "restaurant", "food", "meal", "delivery", "doordash", "grubhub",
        "ubereats", "postmates",
        "étterem", "étel", "kiszállítás", "wolt", "foodpanda", "netpincér",
    ),
}

CURRENCY_SYMBOLS: Dict[str, str] = {
    "HK$": "HKD",
    "C$": "CAD",
    "A$": "AUD",
    "$": "USD",
    "€": "EUR",
    "£": "GBP",
    "¥": "JPY",
    "₹": "INR",
    "₽": "RUB",
    "₩": "KRW",
    "Ft.": "HUF",
    "Ft": "HUF",
    "HUF": "HUF",
    "forint": "HUF",
    "USD": "USD",
    "EUR": "EUR",
    "GBP": "GBP",
    "JPY": "JPY",
    "INR": "INR",
    "AUD": "AUD",
    "CAD": "CAD",
}

# Either a grouped number (1,234.56 / 121.975 / 121 975) or a plain one (135.00)
NUMBER = r'\d{1,3}(?:[ .,\u00a0]\d{3})+(?:[.,]\d{1,2})?|\d+(?:[.,]\d{1,2})?'

_PREFIX_SYMBOLS = r'HK\$|C\$|A\$|\$|€|£|¥|₹|₽|₩|USD|EUR|GBP|HUF'
_SUFFIX_SYMBOLS = r'Ft\.?|HUF|forint|USD|EUR|GBP|JPY|INR|AUD|CAD|€'

AMOUNT_PATTERNS = (
    ('symbol_prefix', 10, re.compile(rf'(?P<sym>{_PREFIX_SYMBOLS})\s?(?P<num>{NUMBER})(?!\d)')),
    ('symbol_suffix', 10, re.compile(
        rf'(?<![\d.,])(?P<num>{NUMBER})\s?(?P<sym>{_SUFFIX_SYMBOLS})(?![A-Za-z])', re.IGNORECASE
    )),
)

DATE_VALUE = (
    r'(\d{4}\s*[./\-]\s*\d{1,2}\s*[./\-]\s*\d{1,2}'
    r'|\d{1,2}[./\-]\d{1,2}[./\-]\d{2,4}'
    r'|[A-Za-z]{3,9}\.?\s+\d{1,2}(?:st|nd|rd|th)?,?\s+\d{4})'
)

DUE_DATE_PATTERNS = (
    re.compile(
        rf'(?:due\s+(?:date|by|on)|pay(?:ment)?\s+by|payment\s+date|'
        rf'fizetési\s+határid[őo]|befizetési\s+határid[őo]|esedékesség)\s*:?\s*{DATE_VALUE}',
        re.IGNORECASE
    ),
)

BILLING_DATE_PATTERNS = (
    re.compile(rf'(?:bill(?:ing)?\s+date|invoice\s+date|statement\s+date|date)\s*:?\s*{DATE_VALUE}', re.IGNORECASE),
    re.compile(rf'(?:kelte|dátum|kiállítás\s+dátuma)\s*:?\s*{DATE_VALUE}', re.IGNORECASE),
)

ACCOUNT_PATTERNS = (
    re.compile(r'account\s*(?:number|no\.?|#)\s*:?\s*([A-Z0-9][A-Z0-9\-]{3,})', re.IGNORECASE),
    re.compile(r'customer\s*(?:number|no\.?|id|#)\s*:?\s*([A-Z0-9][A-Z0-9\-]{3,})', re.IGNORECASE),
    re.compile(r'policy\s*(?:number|no\.?|#)\s*:?\s*([A-Z0-9][A-Z0-9\-]{3,})', re.IGNORECASE),
    re.compile(r'member(?:ship)?\s*(?:number|no\.?|id|#)\s*:?\s*([A-Z0-9][A-Z0-9\-]{3,})', re.IGNORECASE),
    re.compile(r'(?:ügyfél|fogyasztó|felhasználó)\s*(?:azonosító|szám)\s*:?\s*([A-Z0-9][A-Z0-9\-]{3,})', re.IGNORECASE),
    re.compile(r'szerződésszám\s*:?\s*([A-Z0-9][A-Z0-9\-]{3,})', re.IGNORECASE),
)

INVOICE_PATTERNS = (
    re.compile(r'invoice\s*(?:number|no\.?|#)\s*:?\s*([A-Z0-9][A-Z0-9\-/]{2,})', re.IGNORECASE),
    re.compile(r'számla\s*(?:sorszáma|száma)\s*:?\s*([A-Z0-9][A-Z0-9\-/]{2,})', re.IGNORECASE),
)

PDF_VENDOR_PATTERNS = (
    re.compile(r'^\s*(?:from|company|billed\s+by)\s*:\s*([^\n]+)', re.IGNORECASE | re.MULTILINE),
    re.compile(r'^\s*(?:szolgáltató|eladó|kibocsátó)\s*:\s*([^\n]+)', re.IGNORECASE | re.MULTILINE),
)

# Highlighted summary-box number: 121.975 / 121 975 / 121975,50
HIGHLIGHT_NUMBER = r'(?<![\d.,])(?:\d{1,3}(?:[., \u00a0]\d{3})+|\d+)(?:[.,]\d{1,2})?'


def _label_regex(label: str) -> str:
    return r'\s+'.join(re.escape(part) for part in label.split())


def _searchable(text: str) -> Tuple[str, bool]:
    """Accent-folded text when folding keeps every offset, so match spans still index text."""
    folded = fold_accents(text)
    if len(folded) == len(text):
        return folded, True
    return text, False


def _compile_category_patterns() -> Dict[str, re.Pattern]:
    return {
        category: re.compile(
            r'(?<!\w)(?:' + '|'.join(re.escape(w) for w in words) + r')',
            re.IGNORECASE
        )
        for category, words in CATEGORY_PATTERNS.items()
    }


class RegexStrategy(ExtractionStrategy):
    """Keyword-gated, candidate-scored extraction."""
    name = "regex-based"

    EMAIL_CONFIDENCE = 0.7
    PDF_CONFIDENCE = 0.6
    FAILED_AMOUNT_CONFIDENCE = 0.2
    MIN_PDF_KEYWORDS = 2

    CATEGORY_REGEXES = _compile_category_patterns()

    async def _extract_email(self, context: EmailContext) -> ExtractionResult:
        text = f"{context.subject}\n{context.body}"
        language = self.resolve_language(context.language, text)
        pack = self.store.get_pattern_pack(language)

        if not context.trusted_source and not self.is_bill_email(context.subject, context.body):
            return self.reject("Not a bill email", 0.0, language=language.value)

        override = pack.match_vendor_override(text)
        raw, debug = self._extract_fields(pack, text, override)
        if raw.amount is None or raw.amount <= 0:
            return self.missing_field(
                "Could not extract valid amount", self.FAILED_AMOUNT_CONFIDENCE, **debug
            )

        raw.vendor = self.extract_vendor(context.sender, context.subject) or (
            override.name if override else None
        )
        raw.category = self.categorize(pack, override, raw.vendor or "", context.subject, context.body)
        raw.billing_date = raw.billing_date or self.received_date(context.received_at)

        confidence = self.apply_confidence_policy(
            self.EMAIL_CONFIDENCE,
            trusted=context.trusted_source,
            vendor_override=override is not None,
        )
        bill = normalize_bill(
            raw, self.email_source(context),
            language=language, extraction_method=self.name,
            confidence=confidence, store=self.store,
        )
        return ExtractionResult.ok([bill], confidence, strategy=self.name, **debug)

    async def _extract_pdf(self, context: PdfContext, text: str) -> ExtractionResult:
        language = self.resolve_language(context.language, text)
        pack = self.store.get_pattern_pack(language)

        keyword_count = self.count_keywords(text)
        if not context.trusted_source and keyword_count < self.MIN_PDF_KEYWORDS:
            return self.reject(
                "Not enough bill-related keywords found", 0.1,
                keywords=keyword_count, language=language.value
            )

        override = pack.match_vendor_override(text)
        raw, debug = self._extract_fields(pack, text, override)
        if raw.amount is None or raw.amount <= 0:
            return self.missing_field(
                "Could not extract valid amount", self.FAILED_AMOUNT_CONFIDENCE, **debug
            )

        raw.vendor = (
            self._pdf_vendor(pack, text)
            or (override.name if override else None)
            or self.file_stem(context.file_name).title()
        )
        raw.category = self.categorize(pack, override, raw.vendor or "", context.file_name, text)
        raw.billing_date = raw.billing_date or self.received_date(context.received_at)

        confidence = self.apply_confidence_policy(
            self.PDF_CONFIDENCE,
            trusted=context.trusted_source,
            vendor_override=override is not None,
        )
        bill = normalize_bill(
            raw, self.pdf_source(context),
            language=language, extraction_method=self.name,
            confidence=confidence, store=self.store,
        )
        return ExtractionResult.ok([bill], confidence, strategy=self.name, **debug)

    # Gate

    @staticmethod
    def count_keywords(text: str) -> int:
        return count_terms(text, BILL_KEYWORDS)

    def is_bill_email(self, subject: str, body: str) -> bool:
        """A bill keyword in the subject, or at least two in the body."""
        if contains_any(subject or "", BILL_KEYWORDS):
            return True
        return self.count_keywords(body or "") >= 2

    # Fields

    def _extract_fields(
        self,
        pack: LanguagePatternPack,
        text: str,
        override: Optional[VendorOverride]
    ) -> Tuple[RawBillFields, dict]:
        debug: dict = {'language': pack.language.value}
        raw = RawBillFields()

        candidates = self.amount_candidates(pack, text)
        highlight_due = None
        if override and override.highlight and override.highlight.is_triggered(text):
            highlight_candidates, highlight_due = self.highlight_candidates(pack, text, override)
            candidates.extend(highlight_candidates)
            debug['highlight_vendor'] = override.name

        best = select_best_amount(candidates)
        if best:
            candidate, score = best
            raw.amount = candidate.value
            debug['amount_pattern'] = candidate.pattern_name
            debug['amount_score'] = round(score, 2)
            currency = self._currency_of(candidate)
        else:
            currency = None

        if override and override.currency:
            raw.currency = override.currency
        else:
            raw.currency = currency or self.resolve_currency(pack, text, override)

        raw.due_date = highlight_due or self._first_date(
            pack, text, pack.extract_field(text, 'dueDate'), DUE_DATE_PATTERNS
        )
        raw.billing_date = self._first_date(
            pack, text, pack.extract_field(text, 'billingDate'), BILLING_DATE_PATTERNS
        )
        raw.account_number = pack.extract_field(text, 'accountNumber') or self._first_group(ACCOUNT_PATTERNS, text)
        raw.invoice_number = pack.extract_field(text, 'invoiceNumber') or self._first_group(INVOICE_PATTERNS, text)

        return raw, debug

    def amount_candidates(self, pack: LanguagePatternPack, text: str) -> List[AmountCandidate]:
        """Labelled pack matches plus every currency-tagged number in the text."""
        candidates: List[AmountCandidate] = []

        extractor = pack.field_extractors.get('amount')
        if extractor:
            search_text, folded = _searchable(text)
            regexes = extractor.folded if folded else extractor.compiled
            for index, regex in enumerate(regexes):
                for match in regex.finditer(search_text):
                    if match.lastindex is None or match.group(1) is None:
                        continue
                    value = parse_amount(match.group(1), pack.language)
                    if value <= 0:
                        continue
                    candidates.append(create_amount_candidate(
                        value=value,
                        pattern_name=f"pack_amount_{index}",
                        match_span=match.span(1),
                        raw_text=match.group(0),
                        priority=index + 1,
                        text=text,
                        proximity_keywords=PROXIMITY_KEYWORDS,
                        blacklist_keywords=BLACKLIST_KEYWORDS,
                        has_currency=self._symbol_in(match.group(0)) is not None,
                    ))

        for pattern_name, priority, regex in AMOUNT_PATTERNS:
            for match in regex.finditer(text):
                value = parse_amount(match.group('num'), pack.language)
                if value <= 0:
                    continue
                candidates.append(create_amount_candidate(
                    value=value,
                    pattern_name=pattern_name,
                    match_span=match.span('num'),
                    raw_text=match.group(0),
                    priority=priority,
                    text=text,
                    proximity_keywords=PROXIMITY_KEYWORDS,
                    blacklist_keywords=BLACKLIST_KEYWORDS,
                    has_currency=True,
                ))

        return candidates

    def highlight_candidates(
        self,
        pack: LanguagePatternPack,
        text: str,
        override: VendorOverride
    ) -> Tuple[List[AmountCandidate], Optional[date]]:
        """
        Values from a vendor's highlighted summary box.

        Each label is tried inline ("Fizetendő összeg: 12 345 Ft"), with the
        value on the next line, and as a box header whose value sits on the
        following line after other text.
        """
        candidates: List[AmountCandidate] = []
        due_date = None
        search_text, folded = _searchable(text)

        for highlight in override.highlight.fields:
            label = _label_regex(fold_accents(highlight.label) if folded else highlight.label)

            if highlight.field == 'dueDate':
                regex = re.compile(rf'{label}:?\s*{DATE_VALUE}', re.IGNORECASE)
                match = regex.search(search_text)
                if match and due_date is None:
                    due_date = parse_date(match.group(1), pack.language)
                continue

            variants = (
                ('inline', rf'{label}:?[ \t]*({HIGHLIGHT_NUMBER})\s*Ft'),
                ('next_line', rf'{label}:?[ \t]*\n\s*({HIGHLIGHT_NUMBER})\s*Ft'),
                ('summary_box', rf'{label}[^\n]*\n[^\n]*?({HIGHLIGHT_NUMBER})\s*Ft'),
            )
            for variant, pattern in variants:
                match = re.search(pattern, search_text, re.IGNORECASE)
                if not match:
                    continue
                value = parse_amount(match.group(1), pack.language)
                if value <= 0:
                    continue
                candidates.append(create_amount_candidate(
                    value=value,
                    pattern_name=f"highlight_{variant}",
                    match_span=match.span(1),
                    raw_text=match.group(0),
                    priority=1,
                    text=text,
                    proximity_keywords=PROXIMITY_KEYWORDS,
                    has_currency=True,
                    highlight_weight=highlight.weight,
                ))
                break

        return candidates, due_date

    @staticmethod
    def _symbol_in(raw_text: str) -> Optional[str]:
        for symbol in CURRENCY_SYMBOLS:
            if symbol.isalpha() or symbol.endswith('.'):
                if re.search(rf'(?<![A-Za-z]){re.escape(symbol)}(?![A-Za-z])', raw_text, re.IGNORECASE):
                    return symbol
            elif symbol in raw_text:
                return symbol
        return None

    def _currency_of(self, candidate: AmountCandidate) -> Optional[str]:
        symbol = self._symbol_in(candidate.raw_text)
        if symbol is None:
            return None
        for key, code in CURRENCY_SYMBOLS.items():
            if key.lower() == symbol.lower():
                return code
        return None

    @staticmethod
    def _first_group(patterns, text: str) -> Optional[str]:
        for regex in patterns:
            match = regex.search(text)
            if match:
                return match.group(1).strip()
        return None

    def _first_date(self, pack, text: str, labelled: Optional[str], fallbacks) -> Optional[date]:
        if labelled:
            parsed = parse_date(labelled, pack.language)
            if parsed:
                return parsed
        for regex in fallbacks:
            for match in regex.finditer(text):
                parsed = parse_date(match.group(1), pack.language)
                if parsed:
                    return parsed
        return None

    # Vendor and category

    def extract_vendor(self, sender: str, subject: str) -> Optional[str]:
        """
        Vendor from the email envelope.

        Sender display name (corporate suffix removed), then the sender
        domain capitalized, then the first three words of the subject.
        """
        display_name, _, domain = self.sender_parts(sender)
        candidates: List[VendorCandidate] = []

        if display_name:
            cleaned = CORPORATE_SUFFIXES.sub('', display_name).strip(' ,.')
            candidates.append(VendorCandidate(
                value=cleaned or display_name,
                pattern_name="sender_name",
                match_span=(0, len(display_name)),
                from_sender_name=True,
                has_company_suffix=cleaned != display_name,
            ))

        if domain:
            labels = domain.split('.')
            # mail.vendor.com -> vendor
            name = labels[-2] if len(labels) >= 2 else labels[0]
            if name:
                candidates.append(VendorCandidate(
                    value=name[:1].upper() + name[1:],
                    pattern_name="sender_domain",
                    match_span=(0, len(domain)),
                    from_domain=True,
                ))

        words = (subject or "").split()[:3]
        if words:
            candidates.append(VendorCandidate(
                value=' '.join(words),
                pattern_name="subject",
                match_span=(0, len(subject)),
                from_subject=True,
            ))

        best = select_best_vendor(candidates)
        return best[0].value if best else None

    def _pdf_vendor(self, pack: LanguagePatternPack, text: str) -> Optional[str]:
        return pack.extract_field(text, 'vendor') or self._first_group(PDF_VENDOR_PATTERNS, text)

    def categorize(
        self,
        pack: LanguagePatternPack,
        override: Optional[VendorOverride],
        vendor: str,
        subject: str,
        body: str
    ) -> str:
        """Override category, then service taxonomy, then keyword table."""
        if override and override.category:
            return override.category

        combined = f"{vendor}\n{subject}\n{body}"
        service = pack.detect_service_type(combined)
        if service:
            return service.category

        for category, regex in self.CATEGORY_REGEXES.items():
            if regex.search(combined):
                return category
        return "Other"
