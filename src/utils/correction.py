"""
Rule-based repair of recognized exam text.

Rules are applied in a fixed order:
1. Symbol normalization (full-width forms, multiplication/minus signs,
   chemical subscripts, recurring CJK misreads)
2. Option-letter disambiguation (confusable glyphs onto A-D)
3. Trig function, degree sign and bracket repair
4. Option format standardization ("A. ")
5. Missing-option recovery

Followed by whitespace normalization. correct() is total and idempotent.
Also provides latex_to_unicode() for remote recognizers returning LaTeX.
"""

import bisect
import logging
import re
from typing import Callable, List, Optional, Tuple

logger = logging.getLogger(__name__)

OPTION_LETTERS = "ABCD"

# Separators that may follow an option letter
SEPARATORS = ".．:：、"
_SEP = "[" + re.escape(SEPARATORS) + "]"


# ============================================================================
# Rule 1: Symbol Normalization
# ============================================================================

# Full-width punctuation kept as-is in Chinese text
_KEEP_FULLWIDTH = set("，；：？！")

_MULTIPLY = re.compile(r'[✕✖⨯╳]')
_STAR_PRODUCT = re.compile(r'(\d)[ \t]*\*[ \t]*(?=\d)')
_DIVIDE = re.compile(r'[➗∕]')

# Longest formulas first so H2SO4 is not consumed by a shorter entry
CHEMICAL_FORMULAS: List[Tuple[str, str]] = [
    ("C6H12O6", "C₆H₁₂O₆"),
    ("H2SO4", "H₂SO₄"),
    ("CaCO3", "CaCO₃"),
    ("HNO3", "HNO₃"),
    ("C2H6", "C₂H₆"),
    ("C2H4", "C₂H₄"),
    ("C6H6", "C₆H₆"),
    ("H2O2", "H₂O₂"),
    ("H2O", "H₂O"),
    ("CO2", "CO₂"),
    ("SO2", "SO₂"),
    ("NH3", "NH₃"),
    ("CH4", "CH₄"),
    ("NO2", "NO₂"),
]


def _formula_pattern(formula: str) -> re.Pattern:
    # Allow a single stray space between formula parts ("H 2 O")
    parts = re.findall(r'[A-Z][a-z]?|\d+', formula)
    body = r'[ ]?'.join(re.escape(p) for p in parts)
    return re.compile(r'(?<![A-Za-z0-9])' + body + r'(?![a-z0-9])')


_CHEMICAL_RULES = [(_formula_pattern(f), s) for f, s in CHEMICAL_FORMULAS]

CJK_MISREADS: List[Tuple[str, str]] = [
    ("已和", "已知"),
    ("定乂域", "定义域"),
    ("值或", "值域"),
    ("函敉", "函数"),
    ("方秤", "方程"),
]


def _to_halfwidth(ch: str) -> str:
    code = ord(ch)
    if code == 0x3000:
        return " "
    if 0xFF01 <= code <= 0xFF5E and ch not in _KEEP_FULLWIDTH:
        return chr(code - 0xFEE0)
    return ch


def normalize_symbols(text: str) -> str:
    """Full-width to half-width, sign unification, chemical subscripts."""
    text = text.replace("\r\n", "\n").replace("\r", "\n")
    text = "".join(_to_halfwidth(ch) for ch in text)
    text = _MULTIPLY.sub("×", text)
    text = _STAR_PRODUCT.sub(r'\1×', text)
    text = _DIVIDE.sub("÷", text)
    text = text.replace("−", "-")

    for pattern, replacement in _CHEMICAL_RULES:
        text = pattern.sub(replacement, text)

    for wrong, right in CJK_MISREADS:
        text = text.replace(wrong, right)

    return text


# ============================================================================
# Rule 2: Option-Letter Disambiguation
# ============================================================================

# Glyphs that only ever stand for an option letter
UNAMBIGUOUS_OPTION_GLYPHS = {
    "Α": "A", "А": "A",     # Greek / Cyrillic capital A
    "Β": "B", "В": "B",     # Greek / Cyrillic capital B
    "С": "C", "Ϲ": "C",     # Cyrillic Es / Greek lunate sigma
    "Ɗ": "D",
}

ENCLOSED_OPTION_GLYPHS = {
    "Ⓐ": "A", "Ⓑ": "B", "Ⓒ": "C", "Ⓓ": "D",
    "ⓐ": "A", "ⓑ": "B", "ⓒ": "C", "ⓓ": "D",
}

# Glyphs that are option letters only in the right position
AMBIGUOUS_OPTION_GLYPHS = {
    "1": "A", "2": "B", "3": "C", "4": "D",
    "一": "A", "二": "B", "三": "C", "四": "D",
    "①": "A", "②": "B", "③": "C", "④": "D",
    "史": "B", "吏": "B", "了": "C",
    "a": "A", "b": "B", "c": "C", "d": "D",
}

# Numbering glyphs at the start of a line are question/section numbers
_LINE_START_EXEMPT = set("1234一二三四")


def _slot(glyphs) -> re.Pattern:
    alternatives = "|".join(re.escape(g) for g in glyphs)
    return re.compile(
        r'(?<![^\s(/（])(' + alternatives + r')(?=[ \t]*' + _SEP + r'(?!\d))'
    )


_ENCLOSED = re.compile(
    "([" + "".join(ENCLOSED_OPTION_GLYPHS) + "])[ \t]*(" + _SEP + ")?"
)
_UNAMBIGUOUS_SLOT = _slot(UNAMBIGUOUS_OPTION_GLYPHS)
_AMBIGUOUS_SLOT = _slot(AMBIGUOUS_OPTION_GLYPHS)
_CANONICAL_MARKER = re.compile(
    r'(?<![A-Za-z])([A-D])(?=[ \t]*' + _SEP + r'(?!\d))'
    r'|[(（][ \t]*([A-D])[ \t]*[)）]'
)


def _at_line_start(text: str, pos: int) -> bool:
    line_start = text.rfind("\n", 0, pos) + 1
    return text[line_start:pos].strip() == ""


def disambiguate_options(text: str) -> str:
    """
    Map confusable glyphs in option slots onto A-D.

    Unambiguous look-alikes are always mapped. Ambiguous glyphs (digits,
    CJK numerals, circled numbers, a-d) are mapped only when the text already
    carries at least two canonical markers, the target letter is missing,
    and the target fits between its canonical neighbours.
    """
    def enclosed(m):
        return ENCLOSED_OPTION_GLYPHS[m.group(1)] + (m.group(2) or ". ")

    text = _ENCLOSED.sub(enclosed, text)
    text = _UNAMBIGUOUS_SLOT.sub(lambda m: UNAMBIGUOUS_OPTION_GLYPHS[m.group(1)], text)

    canonical = [
        (m.start(), m.group(1) or m.group(2))
        for m in _CANONICAL_MARKER.finditer(text)
    ]
    present = {letter for _, letter in canonical}
    if len(present) < 2:
        return text

    slots = [(m.start(1), m.group(1)) for m in _AMBIGUOUS_SLOT.finditer(text)]
    if not slots:
        return text

    positions = [pos for pos, _ in canonical]
    chars = list(text)
    events = sorted(
        [(pos, 0, letter) for pos, letter in canonical]
        + [(pos, 1, glyph) for pos, glyph in slots]
    )

    previous = None
    for pos, kind, value in events:
        if kind == 0:
            previous = value
            continue
        if value in _LINE_START_EXEMPT and _at_line_start(text, pos):
            continue

        letter = AMBIGUOUS_OPTION_GLYPHS[value]
        if letter in present:
            continue
        if previous is not None and not previous < letter:
            continue
        following = bisect.bisect_right(positions, pos)
        if following < len(canonical) and not letter < canonical[following][1]:
            continue

        chars[pos] = letter
        present.add(letter)
        previous = letter

    return "".join(chars)


# ============================================================================
# Rule 3: Trig / Angle / Bracket Repair
# ============================================================================

_TRIG_RULES = [
    (re.compile(r'(?<![A-Za-z])[sS][i1lI|][nN](?![a-wyzA-Z])'), "sin"),
    (re.compile(r'(?<![A-Za-z])[cC][o0O][sS](?![a-wyzA-Z])'), "cos"),
    (re.compile(r'(?<![A-Za-z])[tT][aA][nN](?![a-wyzA-Z])'), "tan"),
]

_DEGREE_GLYPH = re.compile(
    r'(?:(?<=sin)|(?<=cos)|(?<=tan)|(?<![A-Za-z\d.]))(\d+)[oOº˚](?![A-Za-z0-9])'
)
_DEGREE_SPACE = re.compile(r'(\d)[ \t]+°')
_EMPTY_BRACKET = re.compile(r'[(（][ \t]*[)）]')
_NUMBERED_BRACKET = re.compile(r'[(（][ \t]*(\d+)[ \t]*[)）]')


def repair_trig_angles_brackets(text: str) -> str:
    for pattern, name in _TRIG_RULES:
        text = pattern.sub(name, text)

    text = _DEGREE_GLYPH.sub(r'\1°', text)
    text = _DEGREE_SPACE.sub(r'\1°', text)

    text = text.replace("【", "[").replace("】", "]")
    text = text.replace("〔", "(").replace("〕", ")")
    text = _EMPTY_BRACKET.sub("( )", text)
    text = _NUMBERED_BRACKET.sub(r'(\1)', text)
    return text


# ============================================================================
# Rule 4: Option Format Standardization
# ============================================================================

_OPTION_FORMAT = re.compile(r'(?<![A-Za-z])([A-D])[ \t]*' + _SEP + r'[ \t]*')
_PAREN_OPTION = re.compile(r'[(（][ \t]*([A-D])[ \t]*[)）][ \t]*')
_GLUED_OPTION = re.compile(r'(?<=[^\s(A-Za-z])(?=[A-D]\. )')


def standardize_option_format(text: str) -> str:
    """Rewrite option markers as "X. " and space them apart."""
    if len(_PAREN_OPTION.findall(text)) >= 2:
        text = _PAREN_OPTION.sub(r'\1. ', text)
    text = _OPTION_FORMAT.sub(r'\1. ', text)
    text = _GLUED_OPTION.sub(" ", text)
    return text


# ============================================================================
# Rule 5: Missing-Option Recovery
# ============================================================================

_OPTION_MARKER = re.compile(r'(?<![^\s])([A-D])\.(?=\s|$)')
_SEPARATOR_RUN = re.compile(r'(?:[ \t]*' + _SEP + r')*')


def _demote(text: str, m: re.Match) -> Tuple[int, int, str]:
    """Edit turning a marker into a bare letter, separator run included."""
    end = _SEPARATOR_RUN.match(text, m.end()).end()
    letter = m.group(1)
    if end > m.end() and end < len(text) and not text[end].isspace():
        letter += " "
    return m.start(), end, letter


def recover_missing_options(text: str) -> str:
    """
    Make A, B, C, D each appear exactly once, in ascending order.

    Markers are walked left to right. A repeated or out-of-order marker is
    relabelled to the next expected letter when that letter appears nowhere
    later, otherwise its separators are dropped so it is no longer a marker.
    Letters still missing get an empty placeholder in front of the next
    higher marker, or after the last one.
    """
    markers = list(_OPTION_MARKER.finditer(text))
    if not markers:
        return text

    edits = []
    accepted = []  # (position, letter index)
    last = -1
    for i, m in enumerate(markers):
        index = OPTION_LETTERS.index(m.group(1))
        if index > last:
            accepted.append((m.start(), index))
            last = index
            continue

        later = {mm.group(1) for mm in markers[i + 1:]}
        expected = last + 1
        if expected < len(OPTION_LETTERS) and OPTION_LETTERS[expected] not in later:
            edits.append((m.start(), m.end(), OPTION_LETTERS[expected] + "."))
            accepted.append((m.start(), expected))
            last = expected
        else:
            edits.append(_demote(text, m))

    have = {index for _, index in accepted}
    insertions = {}
    trailing = []
    for index, letter in enumerate(OPTION_LETTERS):
        if index in have:
            continue
        higher = [pos for pos, i in accepted if i > index]
        if higher:
            insertions[higher[0]] = insertions.get(higher[0], "") + letter + ". "
        else:
            trailing.append(letter + ".")

    # Right to left so earlier offsets stay valid; an insertion goes in
    # front of a marker rewritten at the same offset
    operations = [(start, 1, end, replacement) for start, end, replacement in edits]
    operations += [(start, 0, start, inserted) for start, inserted in insertions.items()]

    result = text
    for start, _, end, replacement in sorted(operations, reverse=True):
        result = result[:start] + replacement + result[end:]

    if trailing:
        result = result.rstrip() + " " + " ".join(trailing)

    return result


# ============================================================================
# Whitespace
# ============================================================================

_SPACES = re.compile(r'[ \t]+')
_BLANK_LINES = re.compile(r'\n{3,}')


def normalize_whitespace(text: str) -> str:
    lines = [_SPACES.sub(" ", line).rstrip() for line in text.split("\n")]
    return _BLANK_LINES.sub("\n\n", "\n".join(lines)).strip()


# ============================================================================
# TextCorrector
# ============================================================================

RULES: List[Tuple[str, Callable[[str], str]]] = [
    ("symbol_normalization", normalize_symbols),
    ("option_disambiguation", disambiguate_options),
    ("trig_angle_bracket_repair", repair_trig_angles_brackets),
    ("option_format", standardize_option_format),
    ("missing_option_recovery", recover_missing_options),
    ("whitespace", normalize_whitespace),
]

MAX_PASSES = 4


class TextCorrector:
    """
    Deterministic repair of recognized text.

    Example:
        >>> TextCorrector().correct("1. 已和 x  A．1 B：2 C、3")
        '1. 已知 x A. 1 B. 2 C. 3 D.'
    """

    def __init__(self, rules: Optional[List[Tuple[str, Callable[[str], str]]]] = None):
        self.rules = rules if rules is not None else RULES

    def apply_rules(self, text: str) -> Tuple[str, List[str]]:
        """
        Run every rule in order, repeating the chain until the text is stable.

        Returns:
            Tuple of (corrected text, names of the rules that changed it)
        """
        if not text:
            return "", []

        changed = []
        for _ in range(MAX_PASSES):
            before = text
            for name, rule in self.rules:
                updated = rule(text)
                if updated != text:
                    if name not in changed:
                        changed.append(name)
                    text = updated
            if text == before:
                break
        else:
            logger.warning(f"Correction did not settle after {MAX_PASSES} passes")

        logger.debug(f"Correction rules applied: {changed}")
        return text, changed

    def correct(self, text: str) -> str:
        return self.apply_rules(text)[0]


def correct(text: str) -> str:
    """Correct text with the default rule set."""
    return TextCorrector().correct(text)


# ============================================================================
# LaTeX Conversion
# ============================================================================

LATEX_CONVERSIONS: List[Tuple[re.Pattern, str]] = [
    (re.compile(r'\\alpha'), 'α'),
    (re.compile(r'\\beta'), 'β'),
    (re.compile(r'\\gamma'), 'γ'),
    (re.compile(r'\\delta'), 'δ'),
    (re.compile(r'\\epsilon'), 'ε'),
    (re.compile(r'\\theta'), 'θ'),
    (re.compile(r'\\lambda'), 'λ'),
    (re.compile(r'\\mu'), 'μ'),
    (re.compile(r'\\pi'), 'π'),
    (re.compile(r'\\sigma'), 'σ'),
    (re.compile(r'\\phi'), 'φ'),
    (re.compile(r'\\omega'), 'ω'),
    (re.compile(r'\\infty'), '∞'),
    (re.compile(r'\\sum'), '∑'),
    (re.compile(r'\\int'), '∫'),
    (re.compile(r'\\sqrt\{([^}]+)\}'), r'√(\1)'),
    (re.compile(r'\\frac\{([^}]+)\}\{([^}]+)\}'), r'(\1)/(\2)'),
    (re.compile(r'\\leq?(?![a-z])'), '≤'),
    (re.compile(r'\\geq?(?![a-z])'), '≥'),
    (re.compile(r'\\neq?(?![a-z])'), '≠'),
    (re.compile(r'\\notin'), '∉'),
    (re.compile(r'\\in(?![a-z])'), '∈'),
    (re.compile(r'\\subset'), '⊂'),
    (re.compile(r'\\supset'), '⊃'),
    (re.compile(r'\\cap'), '∩'),
    (re.compile(r'\\cup'), '∪'),
    (re.compile(r'\\emptyset'), '∅'),
    (re.compile(r'\\times'), '×'),
    (re.compile(r'\\div'), '÷'),
    (re.compile(r'\\angle'), '∠'),
    (re.compile(r'\\circ'), '°'),
    (re.compile(r'\^\{?2\}?'), '²'),
    (re.compile(r'\^\{?3\}?'), '³'),
    (re.compile(r'\^\{?(\d+)\}?'), r'\1'),
    (re.compile(r'_\{?(\d+)\}?'), r'\1'),
    (re.compile(r'\\[a-zA-Z]+\{([^}]*)\}'), r'\1'),
    (re.compile(r'\\(?:left|right)'), ''),
    (re.compile(r'[{}]'), ''),
    (re.compile(r'\\\\'), ''),
]


def latex_to_unicode(latex: str) -> str:
    """Convert common LaTeX commands to their Unicode symbols."""
    result = latex
    for pattern, replacement in LATEX_CONVERSIONS:
        result = pattern.sub(replacement, result)
    return result.strip()
