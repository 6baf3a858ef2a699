"""Pattern-key extraction and error classification - swappable classifier"""

import re
from abc import ABC, abstractmethod
from typing import List, Optional, Tuple

from rulearena.core import ErrorCategory

GENERAL_ERROR_KEY = "general_error"
MAX_TOKENS_PER_TEXT = 20
MAX_KEY_TOKENS = 5
MAX_EXAMPLE_CHARS = 500

_TOKEN_RE = re.compile(r"\w+", re.UNICODE)


def tokenize(text: Optional[str]) -> List[str]:
    """Lowercase word tokens, punctuation dropped"""
    if not text:
        return []
    return _TOKEN_RE.findall(text.lower())


def truncate(text: Optional[str], limit: int = MAX_EXAMPLE_CHARS) -> str:
    return (text or "")[:limit]


def extract_pattern_key(original: Optional[str], corrected: Optional[str]) -> str:
    """Cheap lexical fingerprint of a correction.

    Takes the first 20 tokens of each text and joins, with '_', the first 5
    distinct tokens of the original that the corrected text dropped.
    Falls back to 'general_error' when either text is missing or nothing
    was dropped.
    """
    if not original or not corrected:
        return GENERAL_ERROR_KEY

    original_tokens = tokenize(original)[:MAX_TOKENS_PER_TEXT]
    corrected_tokens = set(tokenize(corrected)[:MAX_TOKENS_PER_TEXT])

    removed: List[str] = []
    for token in original_tokens:
        if token in corrected_tokens or token in removed:
            continue
        removed.append(token)
        if len(removed) == MAX_KEY_TOKENS:
            break

    return "_".join(removed) if removed else GENERAL_ERROR_KEY


# Checked in this order; first match wins. Do not reorder.
CATEGORY_KEYWORDS: List[Tuple[ErrorCategory, re.Pattern]] = [
    (
        ErrorCategory.FACTUAL,
        re.compile(
            r"\b(incorrect|wrong|false|falsch|untrue|not true|inaccurate|"
            r"fact\w*|hallucinat\w*|stimmt nicht|fehlerhaft)\b"
        ),
    ),
    (
        ErrorCategory.FORMATTING,
        re.compile(
            r"\b(format\w*|markdown|bullet\w*|table|heading\w*|indent\w*|"
            r"layout|formatierung|tabelle)\b"
        ),
    ),
    (
        ErrorCategory.CODE,
        re.compile(
            r"\b(code|syntax|compile\w*|function|exception|traceback|bug|"
            r"variable|import|programm\w*)\b"
        ),
    ),
    (
        ErrorCategory.MATH,
        re.compile(
            r"\b(math\w*|calculat\w*|equation|formula|arithmetic|"
            r"rechnung|berechnung|rechenfehler)\b"
        ),
    ),
    (
        ErrorCategory.TONE,
        re.compile(r"\b(tone|rude|polite|impolite|formal|informal|unfriendly|höflich|ton)\b"),
    ),
    (
        ErrorCategory.CONTEXT,
        re.compile(
            r"\b(context|previous\w*|earlier|forgot|ignored|off-topic|irrelevant|"
            r"kontext|vorher)\b"
        ),
    ),
    (
        ErrorCategory.LOGIC,
        re.compile(
            r"\b(logic\w*|contradict\w*|inconsistent|reasoning|illogical|"
            r"logik|widerspruch)\b"
        ),
    ),
    (
        ErrorCategory.LANGUAGE,
        re.compile(
            r"\b(language|grammar|spelling|typo|translat\w*|sprache|"
            r"grammatik|rechtschreibung)\b"
        ),
    ),
]


class PatternClassifier(ABC):
    """
    Abstract interface for mining a correction into (pattern_key, category).

    The default is purely lexical; an embedding-based implementation can be
    dropped in without touching the engine's state machine.
    """

    @abstractmethod
    def pattern_key(self, original: Optional[str], corrected: Optional[str]) -> str:
        pass

    @abstractmethod
    def classify(self, text: str) -> ErrorCategory:
        pass


class KeywordClassifier(PatternClassifier):
    """Ordered keyword buckets over the concatenated event text"""

    def __init__(self, buckets: Optional[List[Tuple[ErrorCategory, re.Pattern]]] = None):
        self.buckets = buckets if buckets is not None else CATEGORY_KEYWORDS

    def pattern_key(self, original: Optional[str], corrected: Optional[str]) -> str:
        return extract_pattern_key(original, corrected)

    def classify(self, text: str) -> ErrorCategory:
        lowered = (text or "").lower()
        for category, pattern in self.buckets:
            if pattern.search(lowered):
                return category
        return ErrorCategory.INSTRUCTION
