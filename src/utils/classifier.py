"""
Question classification for corrected exam text.

Provides:
- Question-likelihood scoring from five weighted signals
- Subject detection from weighted keyword/symbol/pattern tables
- Detailed question-type detection (单选题, 多选题, 填空题, ...)
- ClassificationResult with a three-valued question type

Every function is pure and accepts any string, including the empty one.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Dict, Optional

from .subjects import (
    COMPOSITE_DEFAULT,
    COMPOSITE_FALLBACK,
    CONTEXT_WEIGHT,
    ENGLISH_SINGLE_CHOICE,
    EXCLUSIVE_WEIGHT,
    KEYWORD_WEIGHT,
    MIN_SUBJECT_SCORE,
    MULTI_CHOICE_INDICATORS,
    MULTI_CHOICE_SUBJECTS,
    MULTIPLE_CHOICE,
    PATTERN_WEIGHT,
    QUESTION_WORDS,
    READING_TYPES,
    SCIENCE_SYMBOLS,
    SINGLE_CHOICE,
    SUBJECT_FEATURES,
    SUBJECTIVE_DEFAULT,
    SUBJECTIVE_FALLBACK,
    SYMBOL_WEIGHT,
    TYPE_INDICATORS,
    UNKNOWN_SUBJECT,
    UNKNOWN_TYPE,
    count_present,
    feature_present,
)

logger = logging.getLogger(__name__)

# Three-valued question type
MULTIPLE_CHOICE_KIND = "multiple_choice"
SUBJECTIVE_KIND = "subjective"
UNKNOWN_KIND = "unknown"

# Signal weights (percent) and decision threshold
NUMBER_WEIGHT = 25
OPTIONS_WEIGHT = 30
QUESTION_WORDS_WEIGHT = 20
SYMBOLS_WEIGHT = 15
LENGTH_WEIGHT = 10
QUESTION_THRESHOLD = 0.3

MIN_LENGTH = 10
MAX_LENGTH = 2000

QUESTION_NUMBER_PATTERNS = (
    re.compile(r'^\s*\d+\s*[.．、]'),
    re.compile(r'第\s*[一二三四五六七八九十\d]+\s*题'),
    re.compile(r'^\s*[(（]\s*\d+\s*[)）]'),
    re.compile(r'^\s*[\[【]\s*\d+\s*[\]】]'),
)

OPTION_MARKER_PATTERNS = (
    re.compile(r'(?<![A-Za-z])[A-D]\s*[.．](?!\d)'),
    re.compile(r'（\s*[A-D]\s*）'),
    re.compile(r'\(\s*[A-D]\s*\)'),
    re.compile(r'(?<![A-Za-z])[A-D]\s*[:：]'),
)

QUESTION_MARK = re.compile(r'[?？]')
BLANK_MARKER = re.compile(r'_{2,}|（\s*）|\(\s*\)')

LATIN_RUN = re.compile(r'(?:[A-Za-z]{2,}[\s,.;\'!?]+){3,}[A-Za-z]{2,}')
CLASSICAL_CHARS = "之乎者也矣焉哉兮曰"
ALGEBRA = re.compile(
    r'(?<![A-Za-z])[a-z](?![A-Za-z])\s*[+\-=<>≤≥×÷^²³]'
    r'|[+\-=<>≤≥×÷]\s*(?<![A-Za-z])[a-z](?![A-Za-z])'
)


# ============================================================================
# Data Classes
# ============================================================================

@dataclass(frozen=True)
class ClassificationFeatures:
    has_question_number: bool = False
    has_options: bool = False
    has_question_words: bool = False
    has_math_symbols: bool = False
    text_length: int = 0

    def to_dict(self) -> Dict:
        return {
            "has_question_number": self.has_question_number,
            "has_options": self.has_options,
            "has_question_words": self.has_question_words,
            "has_math_symbols": self.has_math_symbols,
            "text_length": self.text_length,
        }


@dataclass(frozen=True)
class ClassificationResult:
    """Result of classifying a piece of exam text."""
    is_question: bool
    confidence: float
    question_type: str
    subject: str
    features: ClassificationFeatures
    detailed_type: str = UNKNOWN_TYPE
    subject_scores: Dict[str, float] = field(default_factory=dict)

    def to_dict(self) -> Dict:
        return {
            "is_question": self.is_question,
            "confidence": round(self.confidence, 3),
            "question_type": self.question_type,
            "subject": self.subject,
            "detailed_type": self.detailed_type,
            "features": self.features.to_dict(),
            "subject_scores": dict(self.subject_scores),
        }


# ============================================================================
# Feature Extraction
# ============================================================================

def count_option_markers(text: str) -> int:
    """Total option-marker matches over all marker styles."""
    return sum(len(p.findall(text)) for p in OPTION_MARKER_PATTERNS)


def extract_features(text: str) -> ClassificationFeatures:
    has_number = any(p.search(text) for p in QUESTION_NUMBER_PATTERNS)
    has_options = count_option_markers(text) >= 2
    has_words = (
        any(feature_present(text, w) for w in QUESTION_WORDS)
        or QUESTION_MARK.search(text) is not None
        or BLANK_MARKER.search(text) is not None
    )
    has_symbols = any(feature_present(text, s) for s in SCIENCE_SYMBOLS)

    return ClassificationFeatures(
        has_question_number=has_number,
        has_options=has_options,
        has_question_words=has_words,
        has_math_symbols=has_symbols,
        text_length=len(text.strip()),
    )


def question_confidence(features: ClassificationFeatures) -> float:
    """Weighted question likelihood in [0, 1]."""
    score = 0
    if features.has_question_number:
        score += NUMBER_WEIGHT
    if features.has_options:
        score += OPTIONS_WEIGHT
    if features.has_question_words:
        score += QUESTION_WORDS_WEIGHT
    if features.has_math_symbols:
        score += SYMBOLS_WEIGHT
    if MIN_LENGTH <= features.text_length <= MAX_LENGTH:
        score += LENGTH_WEIGHT
    return score / 100.0


# ============================================================================
# Subject Detection
# ============================================================================

def score_subjects(text: str) -> Dict[str, float]:
    """
    Score every subject table against the text.

    Each table entry counts once when present, weighted by its kind:
    keyword 1, symbol 1, pattern 2, exclusive feature 3, context word 0.5.

    Returns:
        Mapping of subject name to score, in table order
    """
    scores = {}
    for subject, table in SUBJECT_FEATURES.items():
        scores[subject] = (
            count_present(text, table.keywords) * KEYWORD_WEIGHT
            + count_present(text, table.symbols) * SYMBOL_WEIGHT
            + count_present(text, table.patterns) * PATTERN_WEIGHT
            + count_present(text, table.exclusive_features) * EXCLUSIVE_WEIGHT
            + count_present(text, table.context_words) * CONTEXT_WEIGHT
        )
    return scores


def _fallback_subject(text: str) -> str:
    if LATIN_RUN.search(text):
        return "英语"
    if sum(text.count(ch) for ch in CLASSICAL_CHARS) >= 2:
        return "语文"
    if ALGEBRA.search(text):
        return "数学"
    return UNKNOWN_SUBJECT


def detect_subject(text: str, scores: Optional[Dict[str, float]] = None) -> str:
    """
    Pick the highest-scoring subject.

    A tie for the top score yields 未知. When no subject reaches the minimal
    score, coarse heuristics decide (Latin runs, classical particles,
    variable + operator).
    """
    if not text or not text.strip():
        return UNKNOWN_SUBJECT

    if scores is None:
        scores = score_subjects(text)

    best = max(scores.values())
    if best < MIN_SUBJECT_SCORE:
        return _fallback_subject(text)

    leaders = [s for s, v in scores.items() if v == best]
    if len(leaders) > 1:
        logger.debug(f"Subject tie between {leaders}")
        return UNKNOWN_SUBJECT
    return leaders[0]


# ============================================================================
# Question Type Detection
# ============================================================================

def match_type_indicator(text: str) -> Optional[str]:
    """First question type whose indicator words occur in the text."""
    lowered = text.lower()
    for question_type, indicators in TYPE_INDICATORS:
        if any(indicator.lower() in lowered for indicator in indicators):
            return question_type
    return None


def detect_question_type(text: str, has_options: bool, subject: str) -> str:
    """
    Detailed Chinese question-type label.

    Args:
        text: Question text (usually the stem)
        has_options: Whether an option list was found
        subject: Detected subject

    Returns:
        Label such as 单选题, 多选题, 填空题, 解答题 or 主观题
    """
    if has_options:
        lowered = text.lower()
        is_multi = any(i.lower() in lowered for i in MULTI_CHOICE_INDICATORS)
        if is_multi and subject in MULTI_CHOICE_SUBJECTS:
            return MULTIPLE_CHOICE
        if subject == "英语":
            return ENGLISH_SINGLE_CHOICE
        return SINGLE_CHOICE

    matched = match_type_indicator(text)
    if matched:
        return matched

    return SUBJECTIVE_FALLBACK.get(subject, SUBJECTIVE_DEFAULT)


def composite_type(text: str, subject: str) -> str:
    """Type label for a question with sub-questions."""
    matched = match_type_indicator(text)
    if matched in READING_TYPES:
        return matched
    return COMPOSITE_FALLBACK.get(subject, COMPOSITE_DEFAULT)


# ============================================================================
# Classifier
# ============================================================================

class Classifier:
    """Scores question likelihood, subject and question type of a text."""

    def classify(self, text: str) -> ClassificationResult:
        text = text or ""
        features = extract_features(text)
        confidence = question_confidence(features)
        is_question = confidence > QUESTION_THRESHOLD

        scores = score_subjects(text) if text.strip() else {s: 0.0 for s in SUBJECT_FEATURES}
        subject = detect_subject(text, scores)

        if not text.strip():
            detailed = UNKNOWN_TYPE
        else:
            detailed = detect_question_type(text, features.has_options, subject)

        if features.has_options:
            kind = MULTIPLE_CHOICE_KIND
        elif not text.strip():
            kind = UNKNOWN_KIND
        elif is_question or match_type_indicator(text):
            kind = SUBJECTIVE_KIND
        else:
            kind = UNKNOWN_KIND

        return ClassificationResult(
            is_question=is_question,
            confidence=confidence,
            question_type=kind,
            subject=subject,
            features=features,
            detailed_type=detailed,
            subject_scores=scores,
        )

    def score_subjects(self, text: str) -> Dict[str, float]:
        return score_subjects(text or "")

    def detect_subject(self, text: str) -> str:
        return detect_subject(text or "")

    def detect_question_type(self, text: str, has_options: bool, subject: str) -> str:
        return detect_question_type(text or "", has_options, subject)


def classify(text: str) -> ClassificationResult:
    """Classify text with a default Classifier."""
    return Classifier().classify(text)
