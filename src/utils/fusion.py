"""
Multi-candidate fusion for recognition results.

Each candidate is scored as a weighted sum of independent sub-scores
(0-100 each) and the best one is selected:

- option:      all four option markers A-D, ascending order
- format:      a single dominant marker style ("A. ")
- structure:   question number, option list, (n) markers, question marks
- consistency: agreement with the other candidates
- trig/angle/math: canonical domain symbols
- quality:     baseline minus garbage, repeated runs and stray punctuation
- confidence:  raw recognition confidence

Weights depend on the content class of the candidate set: option-heavy
content lets option completeness/format dominate, generic content leans on
recognition confidence and symbol density.
"""

import logging
import re
from dataclasses import dataclass, field
from difflib import SequenceMatcher
from typing import Dict, List, Optional, Sequence

from .errors import EmptyCandidateSet
from .ocr_text import RecognitionCandidate

logger = logging.getLogger(__name__)

SUB_SCORES = (
    "option", "format", "structure", "consistency",
    "trig", "angle", "math", "quality", "confidence",
)

OPTIONS_CLASS = "options"
GENERIC_CLASS = "generic"

DEFAULT_WEIGHTS: Dict[str, Dict[str, float]] = {
    OPTIONS_CLASS: {
        "option": 0.30, "format": 0.15, "structure": 0.10, "consistency": 0.10,
        "trig": 0.05, "angle": 0.05, "math": 0.05, "quality": 0.10,
        "confidence": 0.10,
    },
    GENERIC_CLASS: {
        "option": 0.05, "format": 0.05, "structure": 0.10, "consistency": 0.05,
        "trig": 0.10, "angle": 0.10, "math": 0.15, "quality": 0.15,
        "confidence": 0.25,
    },
}

MAX_REPORTED_CONFIDENCE = 99.0

# Patterns
OPTION_MARKER = re.compile(
    r'(?<![A-Za-z])(?P<dotted>[A-D])\s*(?P<sep>[.．:：、])(?!\d)'
    r'|[(（]\s*(?P<paren>[A-D])\s*[)）]'
)
QUESTION_NUMBER = re.compile(r'^\s*\d+\s*[.．、]|第\s*[一二三四五六七八九十\d]+\s*题')
PAREN_NUMBER = re.compile(r'[(（]\s*\d+\s*[)）]')
QUESTION_MARK = re.compile(r'[?？]|_{2,}|[(（]\s*[)）]')
TRIG = re.compile(r'(?<![A-Za-z])(?:sin|cos|tan|cot|sec|csc)(?![a-wyzA-Z])')
ANGLE_CHARS = "°′″∠"
NUMBER = re.compile(r'\d+(?:\.\d+)?')
OPERATORS = "+-×÷=<>≤≥≠"
MATH_CHARS = "√π∞∑∫∈∉∩∪⊂⊃αβγθ²³"
GARBAGE_CHARS = set("~`|@#¦§¤�□■◆◇▲△※")
REPEATED_RUN = re.compile(r'([^\s_.…\-])\1{2,}')
STRAY_PUNCTUATION = re.compile(
    r'[,，;；:：!！?？。]{2,}|(?<=\s)[,，.。;；:：!！\'"](?=\s)'
)

_SEPARATOR_STYLE = {
    ".": "dot", "．": "dot",
    ":": "colon", "：": "colon",
    "、": "comma",
}


# ============================================================================
# Data Classes
# ============================================================================

@dataclass
class ScoredCandidate:
    """A recognition candidate with its fusion scores."""
    candidate: RecognitionCandidate
    final_score: float
    sub_scores: Dict[str, float] = field(default_factory=dict)
    content_class: str = GENERIC_CLASS

    @property
    def text(self) -> str:
        return self.candidate.text

    @property
    def raw_confidence(self) -> float:
        return self.candidate.confidence

    @property
    def config_label(self) -> str:
        return self.candidate.config_label

    @property
    def confidence(self) -> float:
        """Score-dominant blend of final score and raw confidence, capped at 99."""
        return min(
            MAX_REPORTED_CONFIDENCE,
            0.7 * self.final_score + 0.3 * self.raw_confidence
        )

    def to_dict(self) -> Dict:
        return {
            "config_label": self.config_label,
            "final_score": round(self.final_score, 2),
            "raw_confidence": round(self.raw_confidence, 2),
            "confidence": round(self.confidence, 2),
            "content_class": self.content_class,
            "sub_scores": {k: round(v, 2) for k, v in self.sub_scores.items()},
        }


# ============================================================================
# Sub-scores
# ============================================================================

def _clamp(value: float) -> float:
    return max(0.0, min(100.0, float(value)))


def option_markers(text: str) -> List[tuple]:
    """Option markers in order of appearance as (letter, style)."""
    markers = []
    for m in OPTION_MARKER.finditer(text):
        if m.group("paren"):
            markers.append((m.group("paren"), "paren"))
        else:
            markers.append((m.group("dotted"), _SEPARATOR_STYLE[m.group("sep")]))
    return markers


def option_score(text: str) -> float:
    """
    Reward the full A-D set in ascending order.

    Four distinct markers score 70 (+30 when ascending); a partial set
    scores 15 per marker (+10 when ascending). Each repeated marker costs 5.
    """
    letters = [letter for letter, _ in option_markers(text)]
    if not letters:
        return 0.0

    first_seen = []
    for letter in letters:
        if letter not in first_seen:
            first_seen.append(letter)

    ascending = first_seen == sorted(first_seen)
    repeats = len(letters) - len(first_seen)

    if len(first_seen) == 4:
        score = 70 + (30 if ascending else 0)
    else:
        score = len(first_seen) * 15 + (10 if ascending and len(first_seen) > 1 else 0)

    return _clamp(score - 5 * repeats)


def format_score(text: str) -> float:
    """Share of markers using the dominant style; non-dot styles weigh 0.9."""
    styles = [style for _, style in option_markers(text)]
    if not styles:
        return 0.0

    counts: Dict[str, int] = {}
    for style in styles:
        counts[style] = counts.get(style, 0) + 1
    dominant = max(counts, key=lambda s: (counts[s], s == "dot"))

    score = counts[dominant] / len(styles) * 100
    if dominant != "dot":
        score *= 0.9
    return _clamp(score)


def structure_score(text: str) -> float:
    score = 0
    if QUESTION_NUMBER.search(text):
        score += 35
    if len({letter for letter, _ in option_markers(text)}) >= 2:
        score += 25
    if PAREN_NUMBER.search(text):
        score += 20
    if QUESTION_MARK.search(text):
        score += 20
    return _clamp(score)


def consistency_score(text: str, others: Sequence[str]) -> float:
    """Mean similarity to the other candidates; a lone candidate scores 100."""
    if not others:
        return 100.0
    ratios = [
        SequenceMatcher(None, text, other, autojunk=False).ratio()
        for other in others
    ]
    return _clamp(sum(ratios) / len(ratios) * 100)


def trig_score(text: str) -> float:
    return _clamp(len(TRIG.findall(text)) * 25)


def angle_score(text: str) -> float:
    return _clamp(sum(text.count(ch) for ch in ANGLE_CHARS) * 20)


def math_score(text: str) -> float:
    numbers = min(30, len(NUMBER.findall(text)) * 5)
    operators = sum(15 for op in OPERATORS if op in text)
    symbols = sum(text.count(ch) for ch in MATH_CHARS) * 5
    return _clamp(numbers + operators + symbols)


def quality_score(text: str) -> float:
    """
    Start at 100 and subtract noise penalties.

    -5 per garbage character, -20 for text under 5 characters,
    -10 per run of three or more identical characters (fill-in blanks and
    ellipses excluded), -3 per stray punctuation occurrence.
    """
    score = 100.0
    score -= 5 * sum(1 for ch in text if ch in GARBAGE_CHARS)
    if len(text.strip()) < 5:
        score -= 20
    score -= 10 * len(REPEATED_RUN.findall(text))
    score -= 3 * len(STRAY_PUNCTUATION.findall(text))
    return _clamp(score)


def content_class(candidates: Sequence[RecognitionCandidate]) -> str:
    """'options' if any candidate carries two or more distinct option markers."""
    for candidate in candidates:
        if len({letter for letter, _ in option_markers(candidate.text)}) >= 2:
            return OPTIONS_CLASS
    return GENERIC_CLASS


# ============================================================================
# FusionScorer
# ============================================================================

def validate_weights(weights: Dict[str, float]) -> Dict[str, float]:
    """Check a weight table covers every sub-score and sums to 1.0."""
    missing = set(SUB_SCORES) - set(weights)
    unknown = set(weights) - set(SUB_SCORES)
    if missing or unknown:
        raise ValueError(
            f"Invalid weight table (missing: {sorted(missing)}, unknown: {sorted(unknown)})"
        )
    if any(w < 0 for w in weights.values()):
        raise ValueError("Weights must be non-negative")
    total = sum(weights.values())
    if abs(total - 1.0) > 1e-6:
        raise ValueError(f"Weights must sum to 1.0, got {total:.4f}")
    return dict(weights)


class FusionScorer:
    """
    Scores recognition candidates and selects the best one.

    Args:
        weights: Optional mapping of content class ('options', 'generic')
            to a weight table; missing classes keep the defaults
    """

    def __init__(self, weights: Optional[Dict[str, Dict[str, float]]] = None):
        self.weights = {name: dict(table) for name, table in DEFAULT_WEIGHTS.items()}
        for name, table in (weights or {}).items():
            if name not in self.weights:
                raise ValueError(f"Unknown content class: {name}")
            self.weights[name] = validate_weights(table)

    def score(
        self,
        candidate: RecognitionCandidate,
        others: Sequence[RecognitionCandidate] = (),
        content: str = GENERIC_CLASS
    ) -> ScoredCandidate:
        text = candidate.text
        sub_scores = {
            "option": option_score(text),
            "format": format_score(text),
            "structure": structure_score(text),
            "consistency": consistency_score(text, [o.text for o in others]),
            "trig": trig_score(text),
            "angle": angle_score(text),
            "math": math_score(text),
            "quality": quality_score(text),
            "confidence": _clamp(candidate.confidence),
        }
        weights = self.weights[content]
        final = sum(weights[name] * sub_scores[name] for name in SUB_SCORES)

        return ScoredCandidate(
            candidate=candidate,
            final_score=final,
            sub_scores=sub_scores,
            content_class=content,
        )

    def rank(self, candidates: Sequence[RecognitionCandidate]) -> List[ScoredCandidate]:
        """
        Score every candidate, best first.

        Ordering is by final score, then raw recognition confidence.
        """
        candidates = list(candidates)
        if not candidates:
            raise EmptyCandidateSet("Cannot rank an empty candidate set")

        content = content_class(candidates)
        scored = [
            self.score(c, candidates[:i] + candidates[i + 1:], content)
            for i, c in enumerate(candidates)
        ]
        scored.sort(key=lambda s: (round(s.final_score, 6), s.raw_confidence), reverse=True)

        for s in scored:
            logger.debug(
                f"Candidate {s.config_label}: final {s.final_score:.1f}, "
                f"raw {s.raw_confidence:.1f}"
            )
        return scored

    def select(self, candidates: Sequence[RecognitionCandidate]) -> ScoredCandidate:
        """
        Pick the winning candidate.

        Raises:
            EmptyCandidateSet: If no candidates were supplied
        """
        winner = self.rank(candidates)[0]
        logger.info(
            f"Fusion selected '{winner.config_label}' "
            f"(score {winner.final_score:.1f}, confidence {winner.confidence:.1f})"
        )
        return winner
