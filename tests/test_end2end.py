"""
End-to-end integration tests for the Exam Question Recognition Pipeline.
"""

import asyncio

import pytest
import numpy as np
import sys
from pathlib import Path

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from utils.errors import NoRecognitionResult, RecognitionTimeout
from utils.fusion import FusionScorer
from utils.ocr_text import (
    CONFIG_PRESETS,
    RecognitionCandidate,
    RecognitionOrchestrator,
    RecognizerAdapter,
)
from utils.raster import RasterBuffer


class ScriptedAdapter(RecognizerAdapter):
    """Adapter returning fixed text per configuration label."""
    name = "scripted"

    def __init__(self, responses):
        self.responses = responses
        self.seen_sizes = []

    def recognize(self, image, config):
        self.seen_sizes.append((image.width, image.height))
        response = self.responses[config.label]
        if isinstance(response, Exception):
            raise response
        return RecognitionCandidate(response, 85.0, config.label, self.name)


class SpyScorer(FusionScorer):
    def __init__(self):
        super().__init__()
        self.calls = 0

    def rank(self, candidates):
        self.calls += 1
        return super().rank(candidates)


TWO_CONFIGS = [CONFIG_PRESETS["zh_math_precise"], CONFIG_PRESETS["math_formula"]]


@pytest.fixture
def question_image():
    """Create a small question-like image."""
    import cv2

    img = np.ones((80, 240, 3), dtype=np.uint8) * 255
    cv2.putText(img, "1. x + 1 = 3", (10, 30),
                cv2.FONT_HERSHEY_SIMPLEX, 0.7, (0, 0, 0), 2)
    cv2.putText(img, "A. 1  B. 2  C. 3  D. 4", (10, 65),
                cv2.FONT_HERSHEY_SIMPLEX, 0.5, (0, 0, 0), 1)
    return RasterBuffer.from_array(img)


def make_assembler(responses, scorer=None):
    from utils.assembler import QuestionAssembler

    adapter = ScriptedAdapter(responses)
    orchestrator = RecognitionOrchestrator([adapter], TWO_CONFIGS, timeout=5.0)
    assembler = QuestionAssembler(orchestrator=orchestrator, scorer=scorer)
    return assembler, adapter


class TestImagePipeline:
    """Image -> enhancement -> recognition -> fusion -> correction -> parse."""

    def test_complete_candidate_wins(self, question_image):
        assembler, adapter = make_assembler({
            "zh_math_precise": "1. 计算 B. 2 C. 3 D. 4",
            "math_formula": "1. 计算 A. 1 B. 2 C. 3 D. 4",
        })

        result = assembler.analyze_image_sync(question_image, subject_hint="数学")
        outcome = result.recognition

        assert outcome.winner == "math_formula"
        assert outcome.text == "1. 计算 A. 1 B. 2 C. 3 D. 4"
        assert [s.config_label for s in outcome.scored] == ["math_formula", "zh_math_precise"]
        assert outcome.classification.question_type == "multiple_choice"
        assert outcome.classification.subject == "数学"
        assert outcome.hints == {"subject": "数学"}
        assert outcome.metrics.option_markers == 4

        question = result.question
        assert question.question_number == "1"
        assert question.body == "计算"
        assert [o.key for o in question.options] == ["A", "B", "C", "D"]
        assert question.subject == "数学"
        assert question.question_type == "单选题"

        # Recognition ran on the enhanced image, not the original
        assert all(size != (240, 80) for size in adapter.seen_sizes)
        assert outcome.enhanced_image is not None

    def test_processing_steps(self, question_image):
        assembler, _ = make_assembler({
            "zh_math_precise": "1. 计算 A. 1 B. 2 C. 3 D. 4",
            "math_formula": "1. 计算 A. 1 B. 2 C. 3 D. 4",
        })

        result = assembler.analyze_image_sync(question_image)
        steps = result.recognition.processing_steps

        assert steps[0] == "decoded image 240x80"
        assert any(step.startswith("enhance: ") for step in steps)
        assert any(step.startswith("fusion selected ") for step in steps)
        assert steps[-1] == "parsed: 单选题"

    def test_correction_applied_to_winner(self, question_image):
        assembler, _ = make_assembler({
            "zh_math_precise": "1. 计算 B. 2 C. 3 D. 4",
            "math_formula": RecognitionTimeout("slow"),
        })

        outcome = assembler.recognize_sync(question_image)

        assert outcome.winner == "zh_math_precise"
        assert outcome.text == "1. 计算 A. B. 2 C. 3 D. 4"
        assert "corrected: missing_option_recovery" in outcome.processing_steps

    def test_accepts_encoded_bytes(self, question_image):
        from utils.io import encode_png

        assembler, _ = make_assembler({
            "zh_math_precise": "1. 计算 A. 1 B. 2",
            "math_formula": "1. 计算 A. 1 B. 2",
        })

        outcome = assembler.recognize_sync(encode_png(question_image))

        assert outcome.processing_steps[0] == "decoded image 240x80"
        assert outcome.text == "1. 计算 A. 1 B. 2 C. D."

    def test_structure_example_is_recorded(self, question_image):
        assembler, _ = make_assembler({
            "zh_math_precise": "1. 计算 A. 1 B. 2",
            "math_formula": "1. 计算 A. 1 B. 2",
        })

        outcome = assembler.recognize_sync(
            question_image, structure_example="题号. 题干 A. 选项"
        )

        assert outcome.hints == {"structure_example": "题号. 题干 A. 选项"}

    def test_no_result_raised_before_fusion(self, question_image):
        scorer = SpyScorer()
        assembler, _ = make_assembler({
            "zh_math_precise": "",
            "math_formula": RecognitionTimeout("slow"),
        }, scorer=scorer)

        with pytest.raises(NoRecognitionResult) as excinfo:
            assembler.recognize_sync(question_image)

        assert scorer.calls == 0
        assert set(excinfo.value.failures) == {
            "scripted:zh_math_precise", "scripted:math_formula"
        }

    def test_async_entry_point(self, question_image):
        assembler, _ = make_assembler({
            "zh_math_precise": "1. 计算 (1) 2+3 (2) 4+5",
            "math_formula": "1. 计算 (1) 2+3 (2) 4+5",
        })

        result = asyncio.run(assembler.analyze_image(question_image))

        assert result.question.is_composite
        assert [s.body for s in result.question.sub_questions] == ["2+3", "4+5"]

    def test_result_serializes(self, question_image, tmp_path):
        from utils.io import load_json, save_json

        assembler, _ = make_assembler({
            "zh_math_precise": "1. 计算 A. 1 B. 2 C. 3 D. 4",
            "math_formula": "1. 计算 A. 1 B. 2 C. 3 D. 4",
        })

        result = assembler.analyze_image_sync(question_image)
        path = save_json(result.to_dict(), tmp_path / "result.json")
        data = load_json(path)

        assert data["recognition"]["winner"] in ("zh_math_precise", "math_formula")
        assert len(data["recognition"]["candidates"]) == 2
        assert data["question"]["options"][0] == {"key": "A", "value": "1"}
        assert "enhanced_image" not in data["recognition"]


class TestTextPath:
    """Text handed straight to the structural parser."""

    def test_parse_text_skips_recognition(self):
        from utils.assembler import QuestionAssembler

        assembler = QuestionAssembler()
        question = assembler.parse_text("4. stem A. a B. b C. c D. d")

        assert question.question_number == "4"
        assert len(question.options) == 4
        assert assembler._orchestrator is None

    def test_parse_text_subject_hint(self):
        from utils.assembler import QuestionAssembler

        question = QuestionAssembler().parse_text("stem A. a B. b", subject_hint="英语")

        assert question.subject == "英语"


class TestCli:
    """Test the command-line entry point."""

    def test_text_to_json(self, tmp_path, monkeypatch):
        import cli
        from utils.io import load_json

        monkeypatch.setattr(sys, "argv", [
            "cli.py", "--text", "4. stem A. a B. b", "--output", str(tmp_path), "-q"
        ])

        with pytest.raises(SystemExit) as excinfo:
            cli.main()

        assert excinfo.value.code == 0
        data = load_json(tmp_path / "text.json")
        assert data["question_number"] == "4"
        assert [o["key"] for o in data["options"]] == ["A", "B"]

    def test_text_file_input(self, tmp_path, monkeypatch):
        import cli
        from utils.io import load_json

        source = tmp_path / "question.txt"
        source.write_text("1. 计算 (1) 2+3 (2) 4+5", encoding="utf-8")
        out_dir = tmp_path / "out"

        monkeypatch.setattr(sys, "argv", [
            "cli.py", "--input", str(source), "--output", str(out_dir), "-q"
        ])

        with pytest.raises(SystemExit) as excinfo:
            cli.main()

        assert excinfo.value.code == 0
        data = load_json(out_dir / "question.json")
        assert data["is_composite"] is True

    def test_tesseract_binary_needed_only_when_preferred(self, monkeypatch):
        import cli
        import pytesseract

        def no_binary():
            raise EnvironmentError("tesseract is not installed or it's not in your PATH")

        monkeypatch.setattr(pytesseract, "get_tesseract_version", no_binary)

        assert cli.check_dependencies("mathpix") is True
        assert cli.check_dependencies("mistral") is True
        assert cli.check_dependencies("tesseract") is False

    def test_missing_input_fails(self, tmp_path, monkeypatch):
        import cli

        monkeypatch.setattr(sys, "argv", [
            "cli.py", "--input", str(tmp_path / "missing.png"), "-q"
        ])

        with pytest.raises(SystemExit) as excinfo:
            cli.main()

        assert excinfo.value.code == 1
