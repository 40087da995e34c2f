"""
Tests for the query safety gate, complexity policy and specialty detection.
"""

import pytest

from pedsquery.rag.classifier import (
    COMPLEXITY_POLICY,
    EMERGENCY_MESSAGE,
    PERSONAL_ADVICE_MESSAGE,
    QueryClassifier,
)


@pytest.fixture
def classifier() -> QueryClassifier:
    return QueryClassifier()


class TestSafetyGate:
    """Tests for classify()."""

    @pytest.mark.unit
    @pytest.mark.parametrize(
        "query",
        [
            "This is an EMERGENCY, the infant is not breathing",
            "urgent: seizure lasting ten minutes",
            "Help me, possible overdose of iron tablets",
        ],
    )
    def test_emergency_queries_rejected(self, classifier, query):
        verdict = classifier.classify(query)
        assert verdict.safe is False
        assert verdict.reason == EMERGENCY_MESSAGE

    @pytest.mark.unit
    @pytest.mark.parametrize(
        "query",
        [
            "My child has a rash, is it measles?",
            "Should I give my son ibuprofen?",
            "What should I do about a fever of 39C",
        ],
    )
    def test_personal_advice_rejected(self, classifier, query):
        verdict = classifier.classify(query)
        assert verdict.safe is False
        assert verdict.reason == PERSONAL_ADVICE_MESSAGE

    @pytest.mark.unit
    def test_emergency_takes_precedence(self, classifier):
        verdict = classifier.classify("my child is dying")
        assert verdict.reason == EMERGENCY_MESSAGE

    @pytest.mark.unit
    @pytest.mark.parametrize(
        "query",
        [
            "What are the findings when studying neonatal EEG patterns?",
            "When is help mechanically ventilating a preterm infant indicated?",
            "Should infants with bronchiolitis receive albuterol?",
        ],
    )
    def test_keywords_inside_other_words_are_safe(self, classifier, query):
        assert classifier.classify(query).safe is True

    @pytest.mark.unit
    def test_multi_word_keyword_spans_whitespace(self, classifier):
        verdict = classifier.classify("Please help   me, the infant is blue")
        assert verdict.reason == EMERGENCY_MESSAGE

    @pytest.mark.unit
    def test_clinical_question_is_safe(self, classifier):
        verdict = classifier.classify("What is the treatment for Kawasaki disease?")
        assert verdict.safe is True
        assert verdict.reason is None


class TestComplexity:
    """Tests for complexity() and the retrieval policy table."""

    @pytest.mark.unit
    def test_policy_table(self):
        assert COMPLEXITY_POLICY == {
            "simple": (4, 0.75),
            "moderate": (6, 0.70),
            "complex": (8, 0.65),
        }

    @pytest.mark.unit
    def test_simple(self, classifier):
        result = classifier.complexity("What causes croup?")
        assert result.level == "simple"
        assert result.suggested_doc_count == 4
        assert result.suggested_threshold == 0.75

    @pytest.mark.unit
    def test_clinical_terms_are_moderate(self, classifier):
        result = classifier.complexity("Kawasaki disease management")
        assert result.level == "moderate"
        assert (result.suggested_doc_count, result.suggested_threshold) == (6, 0.70)

    @pytest.mark.unit
    def test_word_count_moderate(self, classifier):
        query = "What are the typical findings of measles in young school age children today"
        assert classifier.complexity(query).level == "moderate"

    @pytest.mark.unit
    def test_comparison_is_complex(self, classifier):
        result = classifier.complexity("Compare croup and epiglottitis")
        assert result.level == "complex"
        assert (result.suggested_doc_count, result.suggested_threshold) == (8, 0.65)

    @pytest.mark.unit
    def test_multiple_questions_are_complex(self, classifier):
        assert classifier.complexity("What is RSV? How is it spread?").level == "complex"

    @pytest.mark.unit
    def test_long_query_is_complex(self, classifier):
        query = " ".join(["word"] * 21)
        assert classifier.complexity(query).level == "complex"

    @pytest.mark.unit
    def test_deterministic(self, classifier):
        query = "difference between type 1 and type 2 diabetes in adolescents"
        assert classifier.complexity(query) == classifier.complexity(query)


class TestSpecialties:
    @pytest.mark.unit
    def test_detects_multiple(self, classifier):
        specialties = classifier.detect_specialties(
            "Fever and cough in a premature newborn"
        )
        assert specialties == ["neonatology", "infectious_disease", "pulmonology"]

    @pytest.mark.unit
    def test_none_detected(self, classifier):
        assert classifier.detect_specialties("Describe the skin findings") == []
