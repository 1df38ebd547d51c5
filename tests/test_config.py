"""
Tests for pipeline configuration.
"""

import pytest
import sys
from pathlib import Path

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from config import PipelineConfig, get_config


@pytest.fixture
def clean_env(monkeypatch):
    for name in (
        "EXAM_RECON_USE_GPU", "EXAM_RECON_DEBUG", "EXAM_RECON_PROFILE",
        "EXAM_RECON_ENGINE", "EXAM_RECON_TIMEOUT", "MATHPIX_APP_ID",
        "MATHPIX_APP_KEY", "MISTRAL_API_KEY", "MISTRAL_MODEL",
        "ALIBABA_CLOUD_ACCESS_KEY_ID", "ALIBABA_CLOUD_ACCESS_KEY_SECRET",
    ):
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


class TestGetConfig:
    """Test defaults and environment overrides."""

    def test_defaults(self, clean_env):
        config = get_config()

        assert config.image.profile == "general"
        assert config.ocr.engine == "tesseract"
        assert config.ocr.timeout == 30.0
        assert config.ocr.concurrent is True
        assert config.debug_mode is False
        assert config.remote.mathpix_app_id is None

    def test_environment_overrides(self, clean_env):
        clean_env.setenv("EXAM_RECON_DEBUG", "true")
        clean_env.setenv("EXAM_RECON_PROFILE", "math_dense")
        clean_env.setenv("EXAM_RECON_ENGINE", "mathpix")
        clean_env.setenv("EXAM_RECON_TIMEOUT", "12.5")
        clean_env.setenv("MATHPIX_APP_ID", "id")
        clean_env.setenv("MATHPIX_APP_KEY", "key")
        clean_env.setenv("MISTRAL_MODEL", "pixtral-large")
        clean_env.setenv("ALIBABA_CLOUD_ACCESS_KEY_ID", "ali-id")
        clean_env.setenv("ALIBABA_CLOUD_ACCESS_KEY_SECRET", "ali-secret")

        config = get_config()

        assert config.debug_mode and config.output_debug_images
        assert config.image.profile == "math_dense"
        assert config.ocr.engine == "mathpix"
        assert config.ocr.timeout == 12.5
        assert config.remote.mathpix_app_id == "id"
        assert config.remote.mathpix_app_key == "key"
        assert config.remote.mistral_model == "pixtral-large"
        assert config.remote.alicloud_access_key_id == "ali-id"
        assert config.remote.alicloud_access_key_secret == "ali-secret"

    def test_invalid_timeout_ignored(self, clean_env):
        clean_env.setenv("EXAM_RECON_TIMEOUT", "soon")

        assert get_config().ocr.timeout == 30.0


class TestConversions:
    """Test conversion into core settings values."""

    def test_recognition_settings(self):
        config = PipelineConfig()
        config.ocr.engine = "easyocr"
        config.ocr.fallback_engines = ["paddleocr"]
        config.ocr.config_labels = ["zh_text"]
        config.remote.mistral_api_key = "secret"

        settings = config.recognition_settings()

        assert settings.engine == "easyocr"
        assert settings.fallback_engines == ("paddleocr",)
        assert settings.config_labels == ("zh_text",)
        assert settings.mistral_api_key == "secret"
        assert settings.alicloud_access_key_id is None
        assert settings.engine_chain() == ["easyocr", "paddleocr", "tesseract"]

    def test_enhancement_profile(self):
        config = PipelineConfig()
        config.image.profile = "small_glyph"
        config.image.max_dimension = 1200

        profile = config.enhancement_profile()

        assert profile.name == "small_glyph"
        assert profile.max_dimension == 1200

    def test_unknown_profile(self):
        config = PipelineConfig()
        config.image.profile = "poster"

        with pytest.raises(ValueError):
            config.enhancement_profile()
