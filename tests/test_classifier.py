"""
Tests for question classification and subject detection.
"""

import pytest
import sys
from pathlib import Path

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from utils.classifier import Classifier, classify
from utils.subjects import SUBJECTS, UNKNOWN_SUBJECT


class TestQuestionLikelihood:
    """Test the weighted question signals."""

    def test_empty_text(self):
        result = classify("")

        assert result.is_question is False
        assert result.confidence == 0.0
        assert result.question_type == "unknown"
        assert result.subject == UNKNOWN_SUBJECT
        assert result.detailed_type == "未知"

    def test_none_is_treated_as_empty(self):
        result = Classifier().classify(None)

        assert result.question_type == "unknown"

    def test_all_signals(self):
        from utils.classifier import ClassificationFeatures, question_confidence

        features = ClassificationFeatures(True, True, True, True, 50)

        assert question_confidence(features) == 1.0

    def test_length_signal_bounds(self):
        from utils.classifier import ClassificationFeatures, question_confidence

        assert question_confidence(ClassificationFeatures(text_length=9)) == 0.0
        assert question_confidence(ClassificationFeatures(text_length=10)) == 0.1
        assert question_confidence(ClassificationFeatures(text_length=2001)) == 0.0

    def test_plain_sentence_is_not_a_question(self):
        result = classify("今天天气很好")

        assert result.is_question is False
        assert result.question_type == "unknown"

    def test_subjective_question(self):
        result = classify("1. 已知 x+1=3，求 x 的值。")

        assert result.features.has_question_number
        assert result.features.has_question_words
        assert result.features.has_math_symbols
        assert not result.features.has_options
        assert result.confidence == pytest.approx(0.7)
        assert result.is_question
        assert result.question_type == "subjective"

    def test_option_marker_styles(self):
        from utils.classifier import count_option_markers

        assert count_option_markers("A. 1 B. 2") == 2
        assert count_option_markers("(A) 1 (B) 2") == 2
        assert count_option_markers("（A）甲（B）乙") == 2
        assert count_option_markers("A：甲 B：乙") == 2
        # Decimals are not option markers
        assert count_option_markers("3.5 + 2.5") == 0


class TestSubjectDetection:
    """Test subject scoring and selection."""

    def test_math(self):
        assert classify("1. 已知 x+1=3，求 x 的值。").subject == "数学"

    def test_physics(self):
        result = classify("一个物体以 5 m/s 的速度运动，质量为 2 kg")

        assert result.subject == "物理"

    def test_chemistry(self):
        result = classify("配平化学方程式：H₂ + O₂ → H₂O")

        assert result.subject == "化学"

    def test_english(self):
        result = classify("Read the passage and choose the best answer to each question.")

        assert result.subject == "英语"

    def test_scores_cover_every_subject(self):
        scores = Classifier().score_subjects("任意文本")

        assert list(scores) == list(SUBJECTS)

    def test_units_need_a_number(self):
        from utils.classifier import score_subjects

        assert score_subjects("A. 1 B. 2")["物理"] == 0.0

    @pytest.mark.parametrize("base", [
        "配制 0.1 溶液",
        "NaOH 溶液的浓度为 0.1",
        "",
        "计算 x+1=3",
    ])
    def test_adding_concentration_unit_never_lowers_chemistry(self, base):
        from utils.classifier import score_subjects

        before = score_subjects(base)["化学"]
        after = score_subjects(base + " mol/L")["化学"]

        assert after >= before

    def test_concentration_unit_adds_pattern_and_exclusive_weight(self):
        from utils.classifier import score_subjects

        before = score_subjects("配制 0.1 溶液")["化学"]
        after = score_subjects("配制 0.1 mol/L 溶液")["化学"]

        # mol/L pattern (2) + exclusive "mol" (3)
        assert after - before == 5.0

    def test_tie_is_unknown(self):
        from utils.classifier import detect_subject

        scores = {s: 0.0 for s in SUBJECTS}
        scores["数学"] = 3.0
        scores["物理"] = 3.0

        assert detect_subject("x", scores) == UNKNOWN_SUBJECT

    def test_low_scores_use_fallback(self):
        from utils.classifier import detect_subject

        zero = {s: 0.0 for s in SUBJECTS}

        assert detect_subject("a + b", zero) == "数学"
        assert detect_subject("子曰学而时习之不亦说乎", zero) == "语文"
        assert detect_subject("天天", zero) == UNKNOWN_SUBJECT

    def test_blank_text(self):
        assert Classifier().detect_subject("   ") == UNKNOWN_SUBJECT


class TestQuestionType:
    """Test detailed question types."""

    def test_single_choice(self):
        result = classify("2. 下列函数中是奇函数的是 A. y=x B. y=x² C. y=|x| D. y=1")

        assert result.question_type == "multiple_choice"
        assert result.subject == "数学"
        assert result.detailed_type == "单选题"

    def test_multiple_answer_choice(self):
        result = classify(
            "3. 关于函数 f(x)=x²，下列说法正确的有 "
            "A. f(x) 是偶函数 B. f(0)=0 C. f(x)≥0 D. f(1)=2"
        )

        assert result.subject == "数学"
        assert result.detailed_type == "多选题"

    def test_english_choice(self):
        result = classify(
            "Choose the best answer. He ___ to school every day. "
            "A. go B. goes C. going D. went"
        )

        assert result.subject == "英语"
        assert result.detailed_type == "单项选择"

    def test_fill_in_blank(self):
        result = classify("5. 函数 y=2x 的定义域是______。")

        assert result.question_type == "subjective"
        assert result.detailed_type == "填空题"

    def test_subjective_fallback_by_subject(self):
        from utils.classifier import detect_question_type

        assert detect_question_type("已知 x 的值", False, "数学") == "解答题"
        assert detect_question_type("谈谈你的看法", False, "语文") == "现代文阅读"
        assert detect_question_type("谈谈你的看法", False, UNKNOWN_SUBJECT) == "主观题"

    def test_indicator_order(self):
        from utils.classifier import match_type_indicator

        # Blank indicators are checked before calculation indicators
        assert match_type_indicator("计算并填空") == "填空题"
        assert match_type_indicator("求证：AB=CD") == "证明题"
        assert match_type_indicator("Translate into Chinese") == "翻译"
        assert match_type_indicator("没有题型词") is None

    def test_composite_type(self):
        from utils.classifier import composite_type

        assert composite_type("阅读下列短文，回答问题", "英语") == "阅读理解"
        assert composite_type("计算下列各式", "数学") == "综合题"
        assert composite_type("根据材料回答", "语文") == "现代文阅读"

    def test_to_dict(self):
        data = classify("1. 已知 x+1=3，求 x 的值。").to_dict()

        assert data["question_type"] == "subjective"
        assert data["subject"] == "数学"
        assert data["features"]["has_question_number"] is True
        assert set(data["subject_scores"]) == set(SUBJECTS)
