"""
Tests for medical text normalization and lexical preprocessing.
"""

import pytest

from pedsquery.rag.normalizer import MEDICAL_ABBREVIATIONS, QueryPreprocessor, normalize


class TestNormalize:
    """Tests for normalize()."""

    @pytest.mark.unit
    def test_collapses_whitespace(self):
        assert normalize("  fever \n\n and\trash  ") == "fever and rash"

    @pytest.mark.unit
    def test_collapses_repeated_periods(self):
        assert normalize("Monitor closely... then reassess") == "Monitor closely. then reassess"

    @pytest.mark.unit
    def test_lowercases_shouted_words(self):
        assert normalize("SEVERE DEHYDRATION in infants") == "severe dehydration in infants"

    @pytest.mark.unit
    def test_keeps_whitelisted_abbreviations(self):
        assert normalize("Admit to NICU for IV fluids and CBC") == (
            "Admit to NICU for IV fluids and CBC"
        )

    @pytest.mark.unit
    def test_tightens_number_unit_spacing(self):
        assert normalize("Give 10 mg/kg then 5 ml") == "Give 10mg/kg then 5ml"

    @pytest.mark.unit
    def test_shouted_unit_is_lowercased_then_tightened(self):
        assert normalize("Dose 5 MG orally") == "Dose 5mg orally"

    @pytest.mark.unit
    def test_international_units_stay_uppercase(self):
        assert normalize("Vitamin D 400 IU daily") == "Vitamin D 400IU daily"

    @pytest.mark.unit
    def test_empty_text(self):
        assert normalize("") == ""
        assert normalize("   ") == ""

    @pytest.mark.unit
    @pytest.mark.parametrize(
        "text",
        [
            "RSV bronchiolitis  in   INFANTS.. give 5 MG",
            "Kawasaki disease: IVIG 2 g/kg and ASPIRIN 80 mg/kg",
            "ECG shows QT prolongation;  check 3 mEq potassium",
            "plain lowercase text",
        ],
    )
    def test_idempotent(self, text):
        once = normalize(text)
        assert normalize(once) == once

    @pytest.mark.unit
    def test_whitelist_contains_common_settings(self):
        for abbreviation in ("ICU", "NICU", "PICU", "ER", "ED"):
            assert abbreviation in MEDICAL_ABBREVIATIONS


class TestQueryPreprocessor:
    """Tests for BM25 token preparation."""

    @pytest.mark.unit
    def test_expands_abbreviations(self):
        preprocessor = QueryPreprocessor()
        assert preprocessor.expand_abbreviations("UTI and RSV") == (
            "urinary tract infection and respiratory syncytial virus"
        )

    @pytest.mark.unit
    def test_expansion_is_case_insensitive_and_word_bounded(self):
        preprocessor = QueryPreprocessor()
        assert preprocessor.expand_abbreviations("gerd") == "gastroesophageal reflux disease"
        assert preprocessor.expand_abbreviations("CHDX") == "CHDX"

    @pytest.mark.unit
    def test_tokenize_drops_stop_words(self):
        tokens = QueryPreprocessor().tokenize("What is the treatment of UTI in infants?")
        assert tokens == ["treatment", "urinary", "tract", "infection", "infants"]

    @pytest.mark.unit
    def test_tokenize_empty(self):
        assert QueryPreprocessor().tokenize("  ") == []
