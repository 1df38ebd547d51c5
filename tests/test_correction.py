"""
Tests for rule-based text correction.
"""

import re

import numpy as np
import pytest
import sys
from pathlib import Path

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from utils.correction import (
    TextCorrector,
    correct,
    disambiguate_options,
    latex_to_unicode,
    normalize_symbols,
    recover_missing_options,
    repair_trig_angles_brackets,
    standardize_option_format,
)

MARKER = re.compile(r'(?<![^\s])([A-D])\.(?=\s|$)')

SAMPLES = [
    "",
    "1. 已和 x  A．1 B：2 C、3",
    "s1n30o + c0s 60 °",
    "A. 1 C. 2 B. 3 D. 4",
    "1. 已知 A. x 2. y C. z D. w",
    "H2O 和 CO2 的质量",
    "阅读下面材料，完成下列各题。\n(1) 求值 （ ）\n(2) 证明",
    "（A）甲 （B）乙 （C）丙 （D）丁",
    "2. 选出 B．甲 D．丁",
]

# Fragments seen in recognized exam text
OCR_TOKENS = [
    "A.", "B．", "C、", "D:", "B .", "(A)", "（B）", "(C)", "Ｄ",
    "1.", "2", "6", "3.5", "．", "、", "：", "x", "甲", "已和", "求",
    "sin30o", "c0s", "( 1 )", "（ ）", "H2O", "①", "Α", "\n",
]


class TestSymbolNormalization:
    """Test rule 1."""

    def test_fullwidth_to_halfwidth(self):
        assert normalize_symbols("ＡＢ１２（）") == "AB12()"

    def test_chinese_punctuation_kept(self):
        assert normalize_symbols("已知，求？") == "已知，求？"

    def test_multiplication_and_minus(self):
        assert normalize_symbols("3 * 4 ✕ 2 − 1") == "3×4 × 2 - 1"

    def test_chemical_formulas(self):
        assert normalize_symbols("H2SO4 与 H2O2、CO2") == "H₂SO₄ 与 H₂O₂、CO₂"
        assert normalize_symbols("CaCO3") == "CaCO₃"

    def test_cjk_misreads(self):
        assert normalize_symbols("已和函数的定乂域") == "已知函数的定义域"


class TestOptionDisambiguation:
    """Test rule 2."""

    def test_digit_in_option_slot(self):
        assert disambiguate_options("A. 1 2. 2 C. 3 D. 4") == "A. 1 B. 2 C. 3 D. 4"

    def test_question_number_exempt(self):
        text = "1. 已知 A. x 2. y C. z D. w"

        assert disambiguate_options(text) == "1. 已知 A. x B. y C. z D. w"

    def test_needs_two_canonical_markers(self):
        text = "1. 计算 2. 结果"

        assert disambiguate_options(text) == text

    def test_enclosed_letters(self):
        assert disambiguate_options("Ⓐ 1 Ⓑ 2") == "A. 1 B. 2"

    def test_lookalike_letters(self):
        # Cyrillic A and Ve
        assert disambiguate_options("А. 1 В. 2") == "A. 1 B. 2"

    def test_decimals_untouched(self):
        text = "A. 1 B. 3.5 C. 2.5 D. 4"

        assert disambiguate_options(text) == text


class TestTrigAngleBracketRepair:
    """Test rule 3."""

    def test_trig_and_degrees(self):
        assert repair_trig_angles_brackets("s1n30o + c0s 60 °") == "sin30° + cos 60°"

    def test_degree_after_equals(self):
        assert repair_trig_angles_brackets("∠A=45o") == "∠A=45°"

    def test_chemical_formula_not_degree(self):
        assert repair_trig_angles_brackets("Na2O") == "Na2O"

    def test_brackets(self):
        assert repair_trig_angles_brackets("【1】 〔2〕") == "[1] (2)"
        assert repair_trig_angles_brackets("选（  ）") == "选( )"
        assert repair_trig_angles_brackets("（ 1 ）") == "(1)"


class TestOptionFormat:
    """Test rule 4."""

    def test_separators(self):
        assert standardize_option_format("A：1 B、2 C.3 D:4") == "A. 1 B. 2 C. 3 D. 4"

    def test_parenthesized_markers(self):
        assert standardize_option_format("(A)1 (B)2") == "A. 1 B. 2"

    def test_single_paren_letter_untouched(self):
        assert standardize_option_format("点(A)在圆上") == "点(A)在圆上"

    def test_glued_marker(self):
        assert standardize_option_format("计算A. 1") == "计算 A. 1"


class TestMissingOptionRecovery:
    """Test rule 5."""

    def test_inserted_before_next_marker(self):
        assert recover_missing_options("A. 1 B. 2 D. 4") == "A. 1 B. 2 C. D. 4"

    def test_appended_at_end(self):
        assert recover_missing_options("A. 1 B. 2") == "A. 1 B. 2 C. D."

    def test_duplicate_relabelled(self):
        assert recover_missing_options("A. 1 A. 2 C. 3 D. 4") == "A. 1 B. 2 C. 3 D. 4"

    def test_out_of_order_marker_demoted(self):
        assert recover_missing_options("A. 1 C. 2 B. 3 D. 4") == "A. 1 B. C. 2 B 3 D. 4"

    def test_no_markers(self):
        assert recover_missing_options("1. 计算 2+3") == "1. 计算 2+3"

    def test_demoted_marker_loses_separator_run(self):
        assert recover_missing_options("D. 6 B. .") == "A. B. C. D. 6 B"

    def test_demoted_marker_keeps_following_text_apart(self):
        assert recover_missing_options("D. 6 B. .x") == "A. B. C. D. 6 B x"


class TestTextCorrector:
    """Test the full rule chain."""

    def test_example(self):
        assert correct("1. 已和 x  A．1 B：2 C、3") == "1. 已知 x A. 1 B. 2 C. 3 D."

    def test_missing_first_option(self):
        assert correct("1. 计算 B. 2 C. 3 D. 4") == "1. 计算 A. B. 2 C. 3 D. 4"

    def test_plain_text_unchanged(self):
        assert correct("1. 计算 3.5 + 2.5") == "1. 计算 3.5 + 2.5"

    def test_empty(self):
        assert correct("") == ""

    def test_apply_rules_reports_changes(self):
        text, changed = TextCorrector().apply_rules("ＡＢ")

        assert text == "AB"
        assert changed == ["symbol_normalization"]

    def test_custom_rules(self):
        corrector = TextCorrector(rules=[("upper", str.upper)])

        assert corrector.correct("abc") == "ABC"

    def test_demoted_marker_stays_plain(self):
        once = correct("D、6 B. ．")

        assert once == "A. B. C. D. 6 B"
        assert correct(once) == once

    def test_rules_repeat_until_stable(self):
        calls = []

        def shorten(text):
            calls.append(text)
            return text[:-1] if text.endswith("!") else text

        text, changed = TextCorrector(rules=[("shorten", shorten)]).apply_rules("ok!!")

        assert text == "ok"
        assert changed == ["shorten"]
        assert calls == ["ok!!", "ok!", "ok"]

    @pytest.mark.parametrize("text", SAMPLES)
    def test_idempotent(self, text):
        once = correct(text)

        assert correct(once) == once

    @pytest.mark.parametrize("text", [
        "1. 下列正确的是 A. 1 B. 2",
        "A. 1 A. 2 C. 3 D. 4",
        "A. 1 C. 2 B. 3 D. 4",
        "2. 选出 B．甲 D．丁",
        "（A）甲 （B）乙 （C）丙 （D）丁",
    ])
    def test_option_completeness(self, text):
        assert MARKER.findall(correct(text)) == ["A", "B", "C", "D"]

    @pytest.mark.parametrize("seed", range(8))
    def test_idempotent_on_generated_text(self, seed):
        rng = np.random.default_rng(seed)

        for _ in range(40):
            count = rng.integers(1, 12)
            tokens = [OCR_TOKENS[i] for i in rng.integers(0, len(OCR_TOKENS), count)]
            gaps = rng.choice([" ", "", "  "], count)
            text = "".join(token + gap for token, gap in zip(tokens, gaps))
            once = correct(text)

            assert correct(once) == once, text


class TestLatexConversion:
    """Test LaTeX to Unicode conversion."""

    def test_symbols(self):
        assert latex_to_unicode("\\alpha + \\beta \\leq \\pi") == "α + β ≤ π"

    def test_fraction_and_power(self):
        assert latex_to_unicode("x^{2} = \\frac{1}{2}") == "x² = (1)/(2)"

    def test_sqrt(self):
        assert latex_to_unicode("\\sqrt{3}") == "√(3)"


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
