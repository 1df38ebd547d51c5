"""
Structural parsing of exam question text.

Provides:
- Inline math detection (LaTeX and MathType-style notations) with
  placeholder protection during extraction
- Simple-question parsing: number, stem, lettered options
- Composite-question parsing: parent prompt plus numbered sub-questions,
  each with its own option list
- ParsedQuestion records with dict and text report renderings

parse() is total: empty or unstructured text yields an "unknown" record.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from .classifier import Classifier, composite_type
from .subjects import UNKNOWN_SUBJECT, UNKNOWN_TYPE

logger = logging.getLogger(__name__)


# ============================================================================
# Data Classes
# ============================================================================

@dataclass(frozen=True)
class QuestionOption:
    key: str
    value: str

    def to_dict(self) -> Dict:
        return {"key": self.key, "value": self.value}


@dataclass(frozen=True)
class ParentQuestion:
    number: Optional[str]
    body: str

    def to_dict(self) -> Dict:
        return {"number": self.number, "body": self.body}


@dataclass(frozen=True)
class SubQuestion:
    number: str
    body: str
    options: Optional[Tuple[QuestionOption, ...]] = None

    def to_dict(self) -> Dict:
        return {
            "number": self.number,
            "body": self.body,
            "options": [o.to_dict() for o in self.options] if self.options else None,
        }


@dataclass(frozen=True)
class FormulaSpan:
    """A math span found by the pre-pass."""
    family: str  # 'latex', 'mathtype' or 'literal'
    text: str

    def to_dict(self) -> Dict:
        return {"family": self.family, "text": self.text}


@dataclass(frozen=True)
class ParsedQuestion:
    """Structured record for one exam question."""
    subject: str = UNKNOWN_SUBJECT
    question_number: Optional[str] = None
    question_type: str = UNKNOWN_TYPE
    body: str = ""
    options: Optional[Tuple[QuestionOption, ...]] = None
    parent_question: Optional[ParentQuestion] = None
    sub_questions: Optional[Tuple[SubQuestion, ...]] = None
    has_formulas: bool = False
    formula_type: Optional[str] = None
    formulas: Tuple[FormulaSpan, ...] = field(default_factory=tuple)

    @property
    def is_composite(self) -> bool:
        return self.parent_question is not None

    def to_dict(self) -> Dict:
        return {
            "subject": self.subject,
            "question_number": self.question_number,
            "question_type": self.question_type,
            "body": self.body,
            "options": [o.to_dict() for o in self.options] if self.options else None,
            "parent_question": self.parent_question.to_dict() if self.parent_question else None,
            "sub_questions": (
                [s.to_dict() for s in self.sub_questions] if self.sub_questions else None
            ),
            "has_formulas": self.has_formulas,
            "formula_type": self.formula_type,
            "formulas": [f.to_dict() for f in self.formulas],
            "is_composite": self.is_composite,
        }

    def to_text(self) -> str:
        """Human-readable report of the parsed question."""
        lines = [
            f"学科: {self.subject}",
            f"题型: {self.question_type}",
        ]
        if self.has_formulas:
            lines.append(f"公式类型: {self.formula_type}")

        if self.is_composite:
            parent = self.parent_question
            lines.append(f"题号: {parent.number or '-'}")
            lines.append(f"材料: {parent.body}")
            for sub in self.sub_questions or ():
                lines.append(f"  ({sub.number}) {sub.body}")
                for option in sub.options or ():
                    lines.append(f"      {option.key}. {option.value}")
        else:
            lines.append(f"题号: {self.question_number or '-'}")
            lines.append(f"题干: {self.body}")
            for option in self.options or ():
                lines.append(f"  {option.key}. {option.value}")

        return "\n".join(lines)


# ============================================================================
# Math Pre-pass
# ============================================================================

LATEX_PATTERNS = (
    re.compile(r'\$\$.+?\$\$', re.S),
    re.compile(r'\$[^$\n]+?\$'),
    re.compile(r'\\\[.+?\\\]', re.S),
    re.compile(r'\\\(.+?\\\)', re.S),
    re.compile(r'\\begin\{([a-zA-Z]+\*?)\}.*?\\end\{\1\}', re.S),
    re.compile(r'\\frac\{[^{}]*\}\{[^{}]*\}'),
    re.compile(r'\\sqrt(?:\[[^\]]*\])?\{[^{}]*\}'),
    re.compile(r'\^\{[^{}]*\}'),
    re.compile(r'_\{[^{}]*\}'),
)

MATHTYPE_PATTERNS = (
    re.compile(r'[∫∑∏](?:[_^](?:\([^()]*\)|[^\s⟦⟧]))*'),
    re.compile(r'lim\s*_?\s*\(?\s*[a-zA-Z]\s*→\s*[^\s)]+\)?'),
    re.compile(r'\^\([^()]*\)'),
    re.compile(r'_\([^()]*\)'),
    re.compile(r'\^\[[^\[\]]*\]'),
)

PLACEHOLDER = re.compile(r'⟦MATH_(\d+)⟧')

# Placeholder-shaped text already present in the input
LITERAL = "literal"


def mask_formulas(text: str) -> Tuple[str, List[FormulaSpan]]:
    """
    Replace inline math with placeholder tokens.

    Text that already looks like a placeholder is masked first as a literal
    span, so every token in the masked text refers to a span of this call.
    A span that swallows earlier tokens stores its fully restored text.

    Returns:
        Tuple of (masked text, spans indexed by placeholder number)
    """
    spans: List[FormulaSpan] = []

    def replacer(family):
        def replace(m):
            matched = m.group(0)
            if family != LITERAL:
                matched = restore_formulas(matched, spans)
            spans.append(FormulaSpan(family, matched))
            return f"⟦MATH_{len(spans) - 1}⟧"
        return replace

    text = PLACEHOLDER.sub(replacer(LITERAL), text)
    for pattern in LATEX_PATTERNS:
        text = pattern.sub(replacer("latex"), text)
    for pattern in MATHTYPE_PATTERNS:
        text = pattern.sub(replacer("mathtype"), text)

    return text, spans


def restore_formulas(text: str, spans: List[FormulaSpan]) -> str:
    """Put span text back; tokens without a span are left as they are."""
    if not spans:
        return text

    def restore(m):
        index = int(m.group(1))
        return spans[index].text if index < len(spans) else m.group(0)

    return PLACEHOLDER.sub(restore, text)


def formulas_in(masked: str, spans: List[FormulaSpan]) -> List[FormulaSpan]:
    """Formula spans in order of their tokens in the masked text."""
    found = []
    for m in PLACEHOLDER.finditer(masked):
        index = int(m.group(1))
        if index < len(spans) and spans[index].family != LITERAL:
            found.append(spans[index])
    return found


def formula_type_of(spans) -> Optional[str]:
    families = {s.family for s in spans}
    if not families:
        return None
    if len(families) > 1:
        return "mixed"
    return families.pop()


# ============================================================================
# Option Extraction
# ============================================================================

QUESTION_NUMBER = re.compile(r'^\s*(\d+)\s*(?:[.．、]|\s)(?!\d)')
FIRST_OPTION = re.compile(r'(?:^|(?<=\s))([A-H])\s*[.．:：、]')
OPTION = re.compile(
    r'(?P<key>[A-H])\s*[.．:：、](?P<value>.*?)(?=\s[A-H]\s*[.．:：、]|$)',
    re.S
)


def split_options(text: str) -> Tuple[str, Optional[Tuple[QuestionOption, ...]]]:
    """
    Split masked text into stem and options.

    Everything before the first whitespace-preceded "letter + separator" is
    the stem; the rest is read as consecutive letter/value pairs.
    """
    first = FIRST_OPTION.search(text)
    if not first:
        return text.strip(), None

    stem = text[:first.start()].strip()
    options = tuple(
        QuestionOption(m.group("key"), m.group("value").strip())
        for m in OPTION.finditer(text[first.start():])
    )
    return stem, options or None


# ============================================================================
# Composite Detection
# ============================================================================

DISCOURSE_MARKERS = (
    re.compile(r'阅读.{0,40}?(?:完成|回答).{0,20}?题', re.S),
    re.compile(r'根据.{0,30}?材料.{0,30}?回答', re.S),
    re.compile(r'read\s+the\s+(?:following\s+)?(?:passage|text|material).{0,80}?answer',
               re.I | re.S),
    re.compile(r'完成\s*\d+\s*[~～\-－—至到]\s*\d+\s*(?:小)?题'),
)

LEADING_NUMERAL = re.compile(r'^\s*\d+\s*[.．、](?!\d)')
PAREN_NUMERAL = re.compile(r'[(（]\s*(\d+)\s*[)）]')
CIRCLED_NUMERAL = re.compile(r'[①-⑳]')
LINE_NUMERAL = re.compile(r'^\s*\d+\s*[.．、](?!\d)', re.M)
INLINE_NUMERAL = re.compile(r'(?:^|(?<=\s))(\d+)\s*[.．、](?!\d)')


def numbering_families(text: str) -> List[str]:
    """Independent numbering sequences present in the text."""
    families = []
    if LEADING_NUMERAL.search(text):
        families.append("leading")
    if len(PAREN_NUMERAL.findall(text)) >= 2:
        families.append("paren")
    if len(CIRCLED_NUMERAL.findall(text)) >= 2:
        families.append("circled")

    first_line_end = text.find("\n")
    if first_line_end >= 0:
        inner = [m for m in LINE_NUMERAL.finditer(text) if m.start() > first_line_end]
        if len(inner) >= 2:
            families.append("lines")
    return families


def detect_composite(text: str) -> bool:
    """
    Whether text reads as one prompt with several sub-questions.

    Triggered by a reading/material discourse marker or by two or more
    independent numbering sequences.
    """
    if any(p.search(text) for p in DISCOURSE_MARKERS):
        return True
    return len(numbering_families(text)) >= 2


def _circled_value(glyph: str) -> str:
    return str(ord(glyph) - ord("①") + 1)


def find_sub_markers(text: str) -> List[Tuple[int, int, str]]:
    """
    Sub-question markers of the preferred family.

    Families are tried in order: parenthesized numeral, circled numeral,
    numeral + separator. The first with two or more markers wins, else the
    first with any.

    Returns:
        List of (start, end, number)
    """
    found = []
    for pattern, number in (
        (PAREN_NUMERAL, lambda m: m.group(1)),
        (CIRCLED_NUMERAL, lambda m: _circled_value(m.group(0))),
        (INLINE_NUMERAL, lambda m: m.group(1)),
    ):
        markers = [(m.start(), m.end(), number(m)) for m in pattern.finditer(text)]
        if len(markers) >= 2:
            return markers
        if markers and not found:
            found = markers
    return found


# ============================================================================
# StructuralParser
# ============================================================================

class StructuralParser:
    """
    Turns corrected text into a ParsedQuestion.

    Example:
        >>> q = StructuralParser().parse("4. stem A. a B. b C. c D. d")
        >>> q.question_number, q.body, [o.key for o in q.options]
        ('4', 'stem', ['A', 'B', 'C', 'D'])
    """

    def __init__(self, classifier: Optional[Classifier] = None):
        self.classifier = classifier or Classifier()

    def parse(self, text: str, subject_hint: Optional[str] = None) -> ParsedQuestion:
        original = (text or "").strip()
        if not original:
            return ParsedQuestion()

        masked, spans = mask_formulas(original)
        ordered = formulas_in(masked, spans)
        formula_info = {
            "has_formulas": bool(ordered),
            "formula_type": formula_type_of(ordered),
            "formulas": tuple(ordered),
        }

        if detect_composite(masked):
            parsed = self._parse_composite(masked, spans, subject_hint, formula_info)
            if parsed is not None:
                return parsed
            logger.debug("Composite trigger without sub-question markers; parsing as simple")

        return self._parse_simple(masked, spans, subject_hint, formula_info)

    # ------------------------------------------------------------------
    # Modes
    # ------------------------------------------------------------------

    def _parse_simple(self, masked, spans, subject_hint, formula_info) -> ParsedQuestion:
        remaining = masked
        number = None
        number_match = QUESTION_NUMBER.match(remaining)
        if number_match:
            number = number_match.group(1)
            remaining = remaining[number_match.end():].strip()

        stem, options = split_options(remaining)
        body = restore_formulas(stem, spans)
        if options:
            options = tuple(
                QuestionOption(o.key, restore_formulas(o.value, spans)) for o in options
            )

        subject = self._subject(body, subject_hint)
        question_type = self.classifier.detect_question_type(body, bool(options), subject)

        return ParsedQuestion(
            subject=subject,
            question_number=number,
            question_type=question_type,
            body=body,
            options=options,
            **formula_info
        )

    def _parse_composite(self, masked, spans, subject_hint, formula_info) -> Optional[ParsedQuestion]:
        remaining = masked
        number = None
        number_match = LEADING_NUMERAL.match(remaining)
        if number_match:
            number = re.match(r'\s*(\d+)', remaining).group(1)
            remaining = remaining[number_match.end():]

        markers = find_sub_markers(remaining)
        if not markers:
            return None

        parent_body = restore_formulas(remaining[:markers[0][0]].strip(), spans)

        subs = []
        for i, (start, end, sub_number) in enumerate(markers):
            stop = markers[i + 1][0] if i + 1 < len(markers) else len(remaining)
            stem, options = split_options(remaining[end:stop])
            if options:
                options = tuple(
                    QuestionOption(o.key, restore_formulas(o.value, spans)) for o in options
                )
            subs.append(SubQuestion(sub_number, restore_formulas(stem, spans), options))

        combined = "\n".join([parent_body] + [s.body for s in subs])
        subject = self._subject(combined, subject_hint)
        question_type = composite_type(combined, subject)

        return ParsedQuestion(
            subject=subject,
            question_number=number,
            question_type=question_type,
            body=parent_body,
            options=None,
            parent_question=ParentQuestion(number, parent_body),
            sub_questions=tuple(subs),
            **formula_info
        )

    def _subject(self, text: str, subject_hint: Optional[str]) -> str:
        subject = self.classifier.detect_subject(text)
        if subject == UNKNOWN_SUBJECT and subject_hint:
            return subject_hint
        return subject


def parse(text: str, subject_hint: Optional[str] = None) -> ParsedQuestion:
    """Parse text with a default StructuralParser."""
    return StructuralParser().parse(text, subject_hint)
