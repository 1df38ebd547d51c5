"""
Tests for the text recognition module.
"""

import asyncio
import threading
import time

import pytest
import numpy as np
import sys
from pathlib import Path

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from utils.errors import EngineUnavailable, NoRecognitionResult, RecognitionTimeout
from utils.ocr_text import (
    CONFIG_PRESETS,
    DEFAULT_CONFIG_LABELS,
    RecognitionCandidate,
    RecognitionConfig,
    RecognitionOrchestrator,
    RecognitionSettings,
    RecognizerAdapter,
)
from utils.raster import RasterBuffer


class FakeAdapter(RecognizerAdapter):
    """In-process adapter answering from a table keyed by config label."""

    def __init__(self, name="fake", responses=None, default="1. text", delay=0.0,
                 confidence=80.0, supports_configs=True):
        self.name = name
        self.responses = responses or {}
        self.default = default
        self.delay = delay
        self.confidence = confidence
        self.supports_configs = supports_configs
        self.calls = []
        self._lock = threading.Lock()

    def recognize(self, image, config):
        with self._lock:
            self.calls.append(config.label)
        if self.delay:
            time.sleep(self.delay)
        response = self.responses.get(config.label, self.default)
        if isinstance(response, Exception):
            raise response
        return RecognitionCandidate(response, self.confidence, config.label, self.name)


@pytest.fixture
def image():
    return RasterBuffer.blank(20, 10)


@pytest.fixture
def configs():
    return [CONFIG_PRESETS[label] for label in DEFAULT_CONFIG_LABELS]


class TestRecognitionConfig:
    """Test configuration presets."""

    def test_default_set(self):
        assert DEFAULT_CONFIG_LABELS == (
            "zh_math_precise", "math_formula", "zh_text", "mixed_precise"
        )
        assert "small_glyph" in CONFIG_PRESETS

    def test_tesseract_args(self):
        args = CONFIG_PRESETS["zh_math_precise"].to_tesseract_args()

        assert "--oem 3" in args
        assert "--psm 3" in args
        assert "--dpi 2400" in args
        assert "preserve_interword_spaces=1" in args

    def test_whitelist(self):
        config = CONFIG_PRESETS["math_formula"]

        assert config.languages == "eng"
        assert config.psm == 6
        assert "tessedit_char_whitelist=" in config.to_tesseract_args()
        assert " " not in config.whitelist

    def test_config_is_frozen(self):
        from dataclasses import FrozenInstanceError

        with pytest.raises(FrozenInstanceError):
            CONFIG_PRESETS["zh_text"].psm = 6

    def test_unknown_config(self):
        from utils.ocr_text import get_recognition_config

        with pytest.raises(ValueError):
            get_recognition_config("nope")

    def test_candidate_to_dict(self):
        candidate = RecognitionCandidate("1. x", 87.456, "zh_text", "tesseract")

        assert candidate.to_dict() == {
            "text": "1. x", "confidence": 87.46,
            "config_label": "zh_text", "engine": "tesseract",
        }


class TestTokenJoin:
    """Test word-token assembly."""

    def test_cjk_tokens_joined_without_space(self):
        from utils.ocr_text import join_tokens

        assert join_tokens(["已知", "函数"]) == "已知函数"

    def test_latin_tokens_spaced(self):
        from utils.ocr_text import join_tokens

        assert join_tokens(["A.", "1", "B.", "2"]) == "A. 1 B. 2"

    def test_mixed_tokens(self):
        from utils.ocr_text import join_tokens

        assert join_tokens(["设", "x", "为实数"]) == "设 x 为实数"


class TestRecognitionSettings:
    """Test capability chain construction."""

    def test_engine_chain(self):
        settings = RecognitionSettings(engine="mathpix", fallback_engines=("easyocr", "mathpix"))

        assert settings.engine_chain() == ["mathpix", "easyocr", "tesseract"]

    def test_default_chain(self):
        assert RecognitionSettings().engine_chain() == ["tesseract"]


class TestOrchestrator:
    """Test multi-configuration orchestration with fake adapters."""

    def test_config_count_validated(self, configs):
        adapter = FakeAdapter()

        with pytest.raises(ValueError):
            RecognitionOrchestrator([adapter], [])
        with pytest.raises(ValueError):
            RecognitionOrchestrator([adapter], configs + [CONFIG_PRESETS["small_glyph"]])
        with pytest.raises(ValueError):
            RecognitionOrchestrator([], configs)

    def test_all_configs_succeed(self, image, configs):
        adapter = FakeAdapter()
        orchestrator = RecognitionOrchestrator([adapter], configs)

        candidates = orchestrator.run_sync(image)

        assert [c.config_label for c in candidates] == list(DEFAULT_CONFIG_LABELS)
        assert sorted(adapter.calls) == sorted(DEFAULT_CONFIG_LABELS)

    def test_failed_configs_excluded_not_retried(self, image, configs):
        adapter = FakeAdapter(responses={
            "math_formula": EngineUnavailable("boom"),
            "zh_text": "   ",
        })
        orchestrator = RecognitionOrchestrator([adapter], configs)

        candidates = orchestrator.run_sync(image)

        assert [c.config_label for c in candidates] == ["zh_math_precise", "mixed_precise"]
        assert len(adapter.calls) == 4

    def test_timeout_excluded(self, image, configs):
        class SlowForOne(FakeAdapter):
            def recognize(self, image, config):
                if config.label == "zh_text":
                    time.sleep(0.5)
                return super().recognize(image, config)

        adapter = SlowForOne()
        orchestrator = RecognitionOrchestrator([adapter], configs, timeout=0.1)

        candidates = orchestrator.run_sync(image)

        assert "zh_text" not in [c.config_label for c in candidates]
        assert len(candidates) == 3

    def test_adapter_timeout_error_excluded(self, image, configs):
        adapter = FakeAdapter(responses={"zh_text": RecognitionTimeout("slow")})
        orchestrator = RecognitionOrchestrator([adapter], configs)

        assert len(orchestrator.run_sync(image)) == 3

    def test_unexpected_engine_error_excluded(self, image):
        adapter = FakeAdapter(responses={
            "math_formula": TypeError("float() argument must be a string or a real number"),
            "zh_text": "1. 计算 A. 1 B. 2",
        })
        configs = [CONFIG_PRESETS["zh_text"], CONFIG_PRESETS["math_formula"]]
        orchestrator = RecognitionOrchestrator([adapter], configs)

        candidates = orchestrator.run_sync(image)

        assert [c.config_label for c in candidates] == ["zh_text"]
        assert candidates[0].text == "1. 计算 A. 1 B. 2"

    def test_unexpected_engine_errors_reported(self, image, configs):
        adapter = FakeAdapter(default=KeyError("bbox"))
        orchestrator = RecognitionOrchestrator([adapter], configs, concurrent=False)

        with pytest.raises(NoRecognitionResult) as exc_info:
            orchestrator.run_sync(image)

        assert exc_info.value.failures["fake:zh_text"].startswith("KeyError")

    def test_sequential_mode(self, image, configs):
        adapter = FakeAdapter(responses={"zh_text": EngineUnavailable("x")})
        orchestrator = RecognitionOrchestrator([adapter], configs, concurrent=False)

        candidates = orchestrator.run_sync(image)

        assert adapter.calls == list(DEFAULT_CONFIG_LABELS)
        assert len(candidates) == 3

    def test_fallback_to_next_capability(self, image, configs):
        broken = FakeAdapter(name="remote", responses={}, default="", supports_configs=False)
        baseline = FakeAdapter(name="tesseract")
        orchestrator = RecognitionOrchestrator([broken, baseline], configs)

        candidates = orchestrator.run_sync(image)

        # Remote capabilities ignore configurations and run once
        assert len(broken.calls) == 1
        assert len(candidates) == 4
        assert all(c.engine == "tesseract" for c in candidates)

    def test_first_successful_capability_wins(self, image, configs):
        preferred = FakeAdapter(name="mathpix", supports_configs=False)
        baseline = FakeAdapter(name="tesseract")
        orchestrator = RecognitionOrchestrator([preferred, baseline], configs)

        candidates = orchestrator.run_sync(image)

        assert len(candidates) == 1
        assert candidates[0].engine == "mathpix"
        assert baseline.calls == []

    def test_no_result(self, image, configs):
        adapter = FakeAdapter(default=EngineUnavailable("down"))
        orchestrator = RecognitionOrchestrator([adapter], configs)

        with pytest.raises(NoRecognitionResult) as exc_info:
            orchestrator.run_sync(image)

        assert set(exc_info.value.failures) == {f"fake:{label}" for label in DEFAULT_CONFIG_LABELS}

    def test_each_invocation_gets_its_own_image(self, image, configs):
        class Mutating(FakeAdapter):
            def recognize(self, img, config):
                img.pixels[:] = 0
                return super().recognize(img, config)

        orchestrator = RecognitionOrchestrator([Mutating()], configs)
        orchestrator.run_sync(image)

        assert (image.pixels == 255).all()

    def test_cancellation(self, image, configs):
        adapter = FakeAdapter(delay=0.3)
        orchestrator = RecognitionOrchestrator([adapter], configs, timeout=5)

        async def run_and_cancel():
            task = asyncio.ensure_future(orchestrator.run(image))
            await asyncio.sleep(0.05)
            task.cancel()
            await task

        with pytest.raises(asyncio.CancelledError):
            asyncio.run(run_and_cancel())


class TestBuildOrchestrator:
    """Test capability chain assembly."""

    def test_unavailable_capabilities_skipped(self, monkeypatch):
        import utils.ocr_text as ocr_text

        def fake_create(name, settings):
            if name == "mathpix":
                raise EngineUnavailable("no credentials")
            return FakeAdapter(name=name)

        monkeypatch.setattr(ocr_text, "create_adapter", fake_create)

        orchestrator = ocr_text.build_orchestrator(RecognitionSettings(engine="mathpix"))

        assert [a.name for a in orchestrator.adapters] == ["tesseract"]
        assert [c.label for c in orchestrator.configs] == list(DEFAULT_CONFIG_LABELS)

    def test_nothing_available(self, monkeypatch):
        import utils.ocr_text as ocr_text

        def fake_create(name, settings):
            raise EngineUnavailable(f"{name} missing")

        monkeypatch.setattr(ocr_text, "create_adapter", fake_create)

        with pytest.raises(EngineUnavailable):
            ocr_text.build_orchestrator(RecognitionSettings())

    def test_explicit_configs(self, monkeypatch):
        import utils.ocr_text as ocr_text

        monkeypatch.setattr(ocr_text, "create_adapter", lambda name, settings: FakeAdapter(name=name))

        orchestrator = ocr_text.build_orchestrator(
            RecognitionSettings(timeout=5, concurrent=False),
            configs=[CONFIG_PRESETS["small_glyph"]]
        )

        assert orchestrator.timeout == 5
        assert orchestrator.concurrent is False
        assert [c.label for c in orchestrator.configs] == ["small_glyph"]

    def test_create_adapter_remote_without_credentials(self):
        from utils.ocr_text import create_adapter

        with pytest.raises(EngineUnavailable):
            create_adapter("mathpix", RecognitionSettings())
        with pytest.raises(EngineUnavailable):
            create_adapter("mistral", RecognitionSettings())
        with pytest.raises(EngineUnavailable):
            create_adapter("alicloud", RecognitionSettings())

    def test_create_adapter_alicloud(self):
        from utils.ocr_text import create_adapter

        settings = RecognitionSettings(
            alicloud_access_key_id="id", alicloud_access_key_secret="secret", request_timeout=7
        )
        adapter = create_adapter("alicloud", settings)

        assert adapter.name == "alicloud"
        assert adapter.timeout == 7
        assert adapter.supports_configs is False

    def test_create_adapter_unknown(self):
        from utils.ocr_text import create_adapter

        with pytest.raises(ValueError):
            create_adapter("bogus", RecognitionSettings())


class TestTesseractEngine:
    """Test the Tesseract adapter against the real binary when present."""

    @pytest.fixture
    def text_image(self):
        """Create a simple image with text-like patterns."""
        import cv2

        img = np.ones((100, 400), dtype=np.uint8) * 255
        cv2.putText(
            img, "Hello World", (20, 60),
            cv2.FONT_HERSHEY_SIMPLEX, 1.5, 0, 2
        )
        return RasterBuffer.from_gray(img)

    def test_tesseract_recognize(self, text_image):
        from utils.ocr_text import TesseractEngine

        try:
            engine = TesseractEngine(timeout=30)
        except EngineUnavailable:
            pytest.skip("Tesseract not available")

        config = RecognitionConfig(label="eng_block", languages="eng", psm=6)
        candidate = engine.recognize(text_image, config)

        assert candidate.config_label == "eng_block"
        assert candidate.engine == "tesseract"
        assert isinstance(candidate.confidence, float)
        assert 0.0 <= candidate.confidence <= 100.0


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
