"""
Tests for language resolution and keyword-ratio detection.
"""

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from billscan.models.language import Language, resolve_language
from billscan.utils.language import detect_language, contains_language_patterns
from billscan.utils.text import count_terms, fold_accents, match_key


class TestLanguageResolve:

    def test_known_codes(self):
        assert Language.resolve("hu") == Language.HU
        assert Language.resolve("EN") == Language.EN
        assert Language.resolve(Language.HU) == Language.HU

    def test_region_suffix(self):
        assert Language.resolve("hu-HU") == Language.HU
        assert resolve_language("en_US") == Language.EN

    def test_unknown_falls_back_to_default(self):
        assert Language.resolve("de") == Language.EN
        assert Language.resolve(None) == Language.EN


class TestDetectLanguage:

    def test_hungarian_bill(self):
        text = (
            "Számla\nSzolgáltató: MVM Next\nFizetési határidő: 2023.07.10.\n"
            "Fizetendő összeg: 12 345 Ft\nKöszönjük, hogy minket választott."
        )
        assert detect_language(text) == Language.HU

    def test_short_hungarian_text(self):
        assert detect_language("Fizetendő összeg: 121.975 Ft") == Language.HU

    def test_english_bill(self):
        text = "Your electric bill is ready. Total Amount Due: $135.00. Payment due date: 06/15/2023"
        assert detect_language(text) == Language.EN

    def test_unaccented_hungarian_bill(self):
        text = "MVM Next Szamla\nFizetendo osszeg: 121.975 Ft\nFizetesi hatarido: 2023.06.15."
        assert detect_language(text) == Language.HU

    def test_short_unaccented_hungarian_text(self):
        assert detect_language("Fizetendo osszeg: 121.975 Ft") == Language.HU

    def test_empty_text_is_english(self):
        assert detect_language("") == Language.EN

    def test_contains_language_patterns(self):
        assert contains_language_patterns("számla és fizetendő összeg", "hu")
        assert not contains_language_patterns("számla", "hu")
        assert not contains_language_patterns("", "en")
        assert contains_language_patterns("SZAMLA es FIZETENDO osszeg", "hu")


class TestAccentFolding:

    def test_fold_hungarian_letters(self):
        assert fold_accents("Fizetési határidő") == "Fizetesi hatarido"
        assert fold_accents("ÁRVÍZTŰRŐ TÜKÖRFÚRÓGÉP") == "ARVIZTURO TUKORFUROGEP"
        assert fold_accents("") == ""

    def test_fold_keeps_length_of_precomposed_text(self):
        text = "Fizetendő összeg: 12 345 Ft"
        assert len(fold_accents(text)) == len(text)

    def test_match_key(self):
        assert match_key("Fizetendő\n  ÖSSZEG") == "fizetendo osszeg"

    def test_count_terms_either_way(self):
        assert count_terms("Szamla, fizetendo osszeg", ["számla", "összeg", "díj"]) == 2
        assert count_terms("Számla", ["szamla"]) == 1
        assert count_terms("anything", [""]) == 0
