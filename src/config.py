"""
Configuration and constants for the exam question recognition pipeline.

This module provides:
- Logging setup for the application logger
- Dataclass configuration for enhancement, recognition and remote services
- Environment overrides (get_config)
- Conversion into the explicit RecognitionSettings used by the core
"""

import os
from dataclasses import dataclass, field
from typing import Optional, List
import logging

# ============================================================================
# Logging Configuration
# ============================================================================

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger("exam_recon")


# ============================================================================
# Processing Configuration
# ============================================================================

@dataclass
class ImageConfig:
    """Image enhancement configuration."""
    profile: str = "general"  # general, math_dense, small_glyph
    max_dimension: int = 6000


@dataclass
class OCRConfig:
    """Local recognition configuration."""
    # Preferred capability: tesseract, easyocr, paddleocr, mathpix, mistral, alicloud
    engine: str = "tesseract"
    fallback_engines: List[str] = field(default_factory=list)
    # 1-4 presets from utils.ocr_text.CONFIG_PRESETS
    config_labels: List[str] = field(default_factory=lambda: [
        "zh_math_precise", "math_formula", "zh_text", "mixed_precise"
    ])
    timeout: float = 30.0  # seconds per invocation
    concurrent: bool = True
    language: str = "chi_sim+eng"
    tesseract_cmd: Optional[str] = None


@dataclass
class RemoteOCRConfig:
    """Remote recognition services (optional)."""
    mathpix_app_id: Optional[str] = None
    mathpix_app_key: Optional[str] = None
    mistral_api_key: Optional[str] = None
    mistral_model: str = "pixtral-12b-2409"
    alicloud_access_key_id: Optional[str] = None
    alicloud_access_key_secret: Optional[str] = None
    request_timeout: float = 30.0


@dataclass
class PipelineConfig:
    """Main pipeline configuration."""
    image: ImageConfig = field(default_factory=ImageConfig)
    ocr: OCRConfig = field(default_factory=OCRConfig)
    remote: RemoteOCRConfig = field(default_factory=RemoteOCRConfig)

    # Global settings
    use_gpu: bool = False
    debug_mode: bool = False
    output_debug_images: bool = False

    def recognition_settings(self):
        """Explicit settings value handed to the recognition orchestrator."""
        from utils.ocr_text import RecognitionSettings

        return RecognitionSettings(
            engine=self.ocr.engine,
            fallback_engines=tuple(self.ocr.fallback_engines),
            config_labels=tuple(self.ocr.config_labels),
            timeout=self.ocr.timeout,
            concurrent=self.ocr.concurrent,
            language=self.ocr.language,
            use_gpu=self.use_gpu,
            tesseract_cmd=self.ocr.tesseract_cmd,
            mathpix_app_id=self.remote.mathpix_app_id,
            mathpix_app_key=self.remote.mathpix_app_key,
            mistral_api_key=self.remote.mistral_api_key,
            mistral_model=self.remote.mistral_model,
            alicloud_access_key_id=self.remote.alicloud_access_key_id,
            alicloud_access_key_secret=self.remote.alicloud_access_key_secret,
            request_timeout=self.remote.request_timeout,
        )

    def enhancement_profile(self):
        """Named enhancement preset with the configured size bound."""
        from utils.images import get_profile, with_overrides

        return with_overrides(
            get_profile(self.image.profile),
            max_dimension=self.image.max_dimension
        )


# ============================================================================
# Default Configuration Instance
# ============================================================================

def get_config() -> PipelineConfig:
    """Get the default pipeline configuration with environment overrides."""
    config = PipelineConfig()

    # Override from environment variables
    if os.environ.get("EXAM_RECON_USE_GPU", "").lower() == "true":
        config.use_gpu = True

    if os.environ.get("EXAM_RECON_DEBUG", "").lower() == "true":
        config.debug_mode = True
        config.output_debug_images = True

    if os.environ.get("EXAM_RECON_PROFILE"):
        config.image.profile = os.environ["EXAM_RECON_PROFILE"]

    if os.environ.get("EXAM_RECON_ENGINE"):
        config.ocr.engine = os.environ["EXAM_RECON_ENGINE"]

    timeout = os.environ.get("EXAM_RECON_TIMEOUT")
    if timeout:
        try:
            config.ocr.timeout = float(timeout)
        except ValueError:
            logger.warning(f"Ignoring invalid EXAM_RECON_TIMEOUT: {timeout}")

    # Remote API credentials from environment
    config.remote.mathpix_app_id = os.environ.get("MATHPIX_APP_ID")
    config.remote.mathpix_app_key = os.environ.get("MATHPIX_APP_KEY")
    config.remote.mistral_api_key = os.environ.get("MISTRAL_API_KEY")
    if os.environ.get("MISTRAL_MODEL"):
        config.remote.mistral_model = os.environ["MISTRAL_MODEL"]
    config.remote.alicloud_access_key_id = os.environ.get("ALIBABA_CLOUD_ACCESS_KEY_ID")
    config.remote.alicloud_access_key_secret = os.environ.get("ALIBABA_CLOUD_ACCESS_KEY_SECRET")

    return config


# ============================================================================
# JSON Schema Version
# ============================================================================

JSON_SCHEMA_VERSION = "1.0"


# ============================================================================
# Utility Functions
# ============================================================================

def check_gpu_available() -> bool:
    """Check if GPU is available for inference."""
    try:
        import torch
        return torch.cuda.is_available()
    except ImportError:
        return False
