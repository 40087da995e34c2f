"""
Query Classification for PedsQuery

Runs before any retrieval:
- Safety gate: rejects emergency and personal-advice questions
- Complexity estimate: adapts how many chunks to retrieve and how loosely
- Specialty detection: tags the pediatric domains a question touches

All functions are pure; they only read the query text.
"""

import re
from dataclasses import dataclass
from typing import Literal

ComplexityLevel = Literal["simple", "moderate", "complex"]

EMERGENCY_KEYWORDS = ("emergency", "urgent", "dying", "crisis", "help me", "overdose")
PERSONAL_ADVICE_KEYWORDS = ("my child", "my baby", "should i", "what should i do")


def _keyword_pattern(keywords: tuple[str, ...]) -> re.Pattern:
    # Whole words only: "studying" must not match "dying"
    alternatives = "|".join(r"\s+".join(map(re.escape, k.split())) for k in keywords)
    return re.compile(rf"\b(?:{alternatives})\b", re.IGNORECASE)


_EMERGENCY_PATTERN = _keyword_pattern(EMERGENCY_KEYWORDS)
_PERSONAL_ADVICE_PATTERN = _keyword_pattern(PERSONAL_ADVICE_KEYWORDS)

EMERGENCY_MESSAGE = (
    "This appears to be an emergency situation. Please contact emergency "
    "services immediately (911) or seek immediate medical attention."
)
PERSONAL_ADVICE_MESSAGE = (
    "This system is designed for healthcare professional education only and "
    "cannot provide personal medical advice. Please consult with a qualified "
    "healthcare provider for personal medical concerns."
)

CLINICAL_REASONING_PATTERN = re.compile(
    r"\b(diagnosis|treatment|management|protocol|dosing|contraindication"
    r"|side effect|adverse|complication)\b",
    re.IGNORECASE,
)
COMPARISON_TERMS = ("compare", "difference")

# level -> (suggested document count, suggested similarity threshold)
COMPLEXITY_POLICY: dict[ComplexityLevel, tuple[int, float]] = {
    "simple": (4, 0.75),
    "moderate": (6, 0.70),
    "complex": (8, 0.65),
}

COMPLEX_WORD_COUNT = 20
MODERATE_WORD_COUNT = 10

SPECIALTY_KEYWORDS: dict[str, list[str]] = {
    "cardiology": ["heart", "cardiac", "cardiovascular", "arrhythmia", "murmur", "congenital heart"],
    "neonatology": ["newborn", "neonate", "premature", "nicu", "birth", "delivery"],
    "infectious_disease": ["infection", "fever", "virus", "bacteria", "antibiotic", "vaccine"],
    "pulmonology": ["respiratory", "lung", "asthma", "breathing", "pneumonia", "cough"],
    "gastroenterology": ["stomach", "intestinal", "diarrhea", "vomiting", "feeding", "nutrition"],
    "neurology": ["seizure", "brain", "developmental", "neurological", "epilepsy"],
    "endocrinology": ["diabetes", "growth", "hormone", "thyroid", "puberty"],
    "emergency": ["emergency", "urgent", "resuscitation", "shock", "trauma"],
}


@dataclass(frozen=True)
class SafetyVerdict:
    safe: bool
    reason: str | None = None


@dataclass(frozen=True)
class QueryComplexity:
    level: ComplexityLevel
    suggested_doc_count: int
    suggested_threshold: float


class QueryClassifier:
    """Safety gate and retrieval-breadth heuristics for incoming questions."""

    def classify(self, query: str) -> SafetyVerdict:
        """Reject emergency and personal-advice queries with a fixed message."""
        if _EMERGENCY_PATTERN.search(query):
            return SafetyVerdict(safe=False, reason=EMERGENCY_MESSAGE)
        if _PERSONAL_ADVICE_PATTERN.search(query):
            return SafetyVerdict(safe=False, reason=PERSONAL_ADVICE_MESSAGE)
        return SafetyVerdict(safe=True)

    def complexity(self, query: str) -> QueryComplexity:
        """Estimate complexity and look up the retrieval policy for it."""
        lowered = query.lower()
        word_count = len(query.split())
        has_multiple_questions = query.count("?") > 1
        has_comparison = any(term in lowered for term in COMPARISON_TERMS)
        has_clinical_terms = CLINICAL_REASONING_PATTERN.search(query) is not None

        level: ComplexityLevel
        if word_count > COMPLEX_WORD_COUNT or has_multiple_questions or has_comparison:
            level = "complex"
        elif word_count > MODERATE_WORD_COUNT or has_clinical_terms:
            level = "moderate"
        else:
            level = "simple"

        doc_count, threshold = COMPLEXITY_POLICY[level]
        return QueryComplexity(
            level=level,
            suggested_doc_count=doc_count,
            suggested_threshold=threshold,
        )

    def detect_specialties(self, query: str) -> list[str]:
        """Return the specialties whose keywords appear in the query."""
        lowered = query.lower()
        return [
            specialty
            for specialty, keywords in SPECIALTY_KEYWORDS.items()
            if any(keyword in lowered for keyword in keywords)
        ]
