"""
Medical Text Normalization for PedsQuery

normalize() cleans query and chunk text before embedding:
- Collapses whitespace and repeated periods
- Lowercases shouted tokens, keeping known medical abbreviations uppercase
- Tightens number/unit spacing ("5 mg" -> "5mg")

QueryPreprocessor prepares text for lexical (BM25) scoring: abbreviation
expansion, lowercasing, tokenization and stop-word removal.
"""

import re

# Abbreviations that must stay uppercase verbatim
MEDICAL_ABBREVIATIONS: frozenset[str] = frozenset(
    {
        "IV", "IM", "PO", "PR", "SQ", "ICU", "NICU", "PICU", "ER", "ED",
        "CBC", "CRP", "ESR", "LFT", "BUN", "ECG", "EEG", "MRI", "CT",
        "HIV", "AIDS", "RSV", "UTI", "URI", "ADHD", "GERD", "CHD",
        "CPR", "BLS", "PALS", "NRP", "AAP", "CDC", "WHO", "FDA", "IU",
    }
)

MEDICAL_UNITS = ("mg", "kg", "ml", "cm", "mm", "mcg", "IU", "mEq")

_WHITESPACE = re.compile(r"\s+")
_REPEATED_PERIODS = re.compile(r"\.{2,}")
_ALL_CAPS_TOKEN = re.compile(r"\b[A-Z]{2,}\b")
_NUMBER_UNIT = re.compile(r"(\d+)\s+(" + "|".join(MEDICAL_UNITS) + r")\b")


def _lower_unless_abbreviation(match: re.Match) -> str:
    token = match.group(0)
    return token if token in MEDICAL_ABBREVIATIONS else token.lower()


def normalize(text: str) -> str:
    """Normalize medical text. normalize(normalize(x)) == normalize(x)."""
    if not text:
        return ""
    result = _WHITESPACE.sub(" ", text)
    result = _REPEATED_PERIODS.sub(".", result)
    # Lowercasing runs before unit tightening so "5 MG" ends up as "5mg"
    result = _ALL_CAPS_TOKEN.sub(_lower_unless_abbreviation, result)
    result = _NUMBER_UNIT.sub(r"\1\2", result)
    return result.strip()


# ============================================
# Lexical preprocessing
# ============================================

ABBREVIATION_EXPANSIONS: dict[str, str] = {
    "UTI": "urinary tract infection",
    "URI": "upper respiratory infection",
    "RSV": "respiratory syncytial virus",
    "ADHD": "attention deficit hyperactivity disorder",
    "GERD": "gastroesophageal reflux disease",
    "CHD": "congenital heart disease",
}

STOP_WORDS: frozenset[str] = frozenset(
    {
        "a", "an", "and", "are", "as", "at", "be", "but", "by", "can", "do",
        "does", "for", "from", "has", "have", "how", "i", "if", "in", "into",
        "is", "it", "its", "of", "on", "or", "so", "than", "that", "the",
        "their", "them", "then", "there", "these", "they", "this", "to",
        "was", "we", "were", "what", "when", "where", "which", "while",
        "who", "why", "will", "with", "would", "you", "your",
    }
)

_COMPILED_EXPANSIONS: list[tuple[re.Pattern, str]] = [
    (re.compile(r"\b" + re.escape(abbr) + r"\b", re.IGNORECASE), expansion)
    for abbr, expansion in ABBREVIATION_EXPANSIONS.items()
]
_TOKEN = re.compile(r"[a-z0-9]+")


class QueryPreprocessor:
    """Turns free text into BM25 tokens."""

    def expand_abbreviations(self, text: str) -> str:
        for pattern, expansion in _COMPILED_EXPANSIONS:
            text = pattern.sub(expansion, text)
        return text

    def preprocess(self, text: str) -> str:
        return _WHITESPACE.sub(" ", self.expand_abbreviations(text)).strip().lower()

    def tokenize(self, text: str) -> list[str]:
        """Preprocess, split on non-alphanumerics, and drop stop words."""
        tokens = _TOKEN.findall(self.preprocess(text))
        return [t for t in tokens if t not in STOP_WORDS]
