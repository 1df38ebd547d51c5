"""
Text recognition for exam question images.

Provides:
- RecognitionConfig presets (script mix, page segmentation, whitelist)
- RecognizerAdapter interface with local engines (Tesseract, EasyOCR, PaddleOCR)
- RecognitionOrchestrator: runs 1-4 configurations per capability with
  independent timeouts and falls back across capabilities
- build_orchestrator(): capability chain from an explicit RecognitionSettings
"""

import asyncio
import logging
import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np

from .errors import (
    EngineUnavailable,
    NoRecognitionResult,
    RecognitionError,
    RecognitionTimeout,
)
from .raster import RasterBuffer

logger = logging.getLogger(__name__)

ENGINES = ("tesseract", "easyocr", "paddleocr", "mathpix", "mistral", "alicloud")
BASELINE_ENGINE = "tesseract"
MAX_CONFIGS = 4


# ============================================================================
# Data Classes
# ============================================================================

@dataclass(frozen=True)
class RecognitionConfig:
    """One parameter set for a recognition invocation."""
    label: str
    languages: str = "chi_sim+eng"
    psm: int = 3
    oem: int = 3
    dpi: Optional[int] = None
    whitelist: str = ""
    params: Tuple[Tuple[str, str], ...] = ()

    def to_tesseract_args(self) -> str:
        """Tesseract command-line config string."""
        args = [f"--oem {self.oem}", f"--psm {self.psm}"]
        if self.dpi:
            args.append(f"--dpi {self.dpi}")
        if self.whitelist:
            args.append(f"-c tessedit_char_whitelist={self.whitelist}")
        for key, value in self.params:
            args.append(f"-c {key}={value}")
        return " ".join(args)


@dataclass(frozen=True)
class RecognitionCandidate:
    """Text produced by one engine/configuration for an image."""
    text: str
    confidence: float  # 0..100
    config_label: str
    engine: str = ""

    def to_dict(self) -> Dict:
        return {
            "text": self.text,
            "confidence": round(self.confidence, 2),
            "config_label": self.config_label,
            "engine": self.engine,
        }


# ============================================================================
# Configuration Presets
# ============================================================================

MATH_WHITELIST = (
    "0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz"
    ".,()[]{}=+-×÷≤≥≠∞∑∫√²³±∩∪∈∉⊂⊃∅∠∴∵°′″παβγθλμσφω<>|/"
)
SMALL_GLYPH_WHITELIST = "ABCDEFGH0123456789.()₀₁₂₃₄₅₆₇₈₉⁰¹²³⁴⁵⁶⁷⁸⁹+-="

CONFIG_PRESETS: Dict[str, RecognitionConfig] = {
    "zh_math_precise": RecognitionConfig(
        label="zh_math_precise",
        languages="chi_sim+eng",
        psm=3,
        dpi=2400,
        params=(("preserve_interword_spaces", "1"),),
    ),
    "math_formula": RecognitionConfig(
        label="math_formula",
        languages="eng",
        psm=6,
        whitelist=MATH_WHITELIST,
    ),
    "zh_text": RecognitionConfig(
        label="zh_text",
        languages="chi_sim",
        psm=3,
        params=(("preserve_interword_spaces", "1"),),
    ),
    "mixed_precise": RecognitionConfig(
        label="mixed_precise",
        languages="chi_sim+eng",
        psm=3,
        params=(("textord_heavy_nr", "1"),),
    ),
    "small_glyph": RecognitionConfig(
        label="small_glyph",
        languages="eng",
        psm=10,
        whitelist=SMALL_GLYPH_WHITELIST,
    ),
}

DEFAULT_CONFIG_LABELS = ("zh_math_precise", "math_formula", "zh_text", "mixed_precise")


def get_recognition_config(label: str) -> RecognitionConfig:
    try:
        return CONFIG_PRESETS[label]
    except KeyError:
        raise ValueError(
            f"Unknown recognition config: {label} "
            f"(available: {', '.join(CONFIG_PRESETS)})"
        )


@dataclass
class RecognitionSettings:
    """
    Explicit recognition settings handed to build_orchestrator().

    Replaces any ambient/global state: which capability is preferred, the
    fallbacks, configuration set, timeouts and remote credentials.
    """
    engine: str = BASELINE_ENGINE
    fallback_engines: Tuple[str, ...] = ()
    config_labels: Tuple[str, ...] = DEFAULT_CONFIG_LABELS
    timeout: float = 30.0
    concurrent: bool = True
    language: str = "chi_sim+eng"
    use_gpu: bool = False
    tesseract_cmd: Optional[str] = None
    mathpix_app_id: Optional[str] = None
    mathpix_app_key: Optional[str] = None
    mistral_api_key: Optional[str] = None
    mistral_model: str = "pixtral-12b-2409"
    alicloud_access_key_id: Optional[str] = None
    alicloud_access_key_secret: Optional[str] = None
    request_timeout: float = 30.0

    def engine_chain(self) -> List[str]:
        """Preferred engine, then fallbacks, then the baseline; no repeats."""
        chain = []
        for name in (self.engine, *self.fallback_engines, BASELINE_ENGINE):
            if name and name not in chain:
                chain.append(name)
        return chain


# ============================================================================
# Adapter Interface
# ============================================================================

class RecognizerAdapter:
    """
    A text-recognition capability.

    Subclasses implement the blocking recognize(); recognize_async() runs
    it on a worker thread with a private copy of the image.
    """
    name = "recognizer"
    # Remote services ignore local configuration and are invoked once
    supports_configs = True

    def recognize(self, image: RasterBuffer, config: RecognitionConfig) -> RecognitionCandidate:
        raise NotImplementedError

    async def recognize_async(
        self,
        image: RasterBuffer,
        config: RecognitionConfig
    ) -> RecognitionCandidate:
        return await asyncio.to_thread(self.recognize, image.copy(), config)


_CJK = re.compile(r'[　-〿一-鿿＀-￯]')


def join_tokens(tokens: Sequence[str]) -> str:
    """Join word tokens, without spaces between adjacent CJK characters."""
    out = ""
    for token in tokens:
        if out and not (_CJK.match(out[-1]) and _CJK.match(token[0])):
            out += " "
        out += token
    return out


def _language_codes(languages: str, mapping: Dict[str, str]) -> List[str]:
    return [mapping.get(code, code) for code in languages.split("+") if code]


# ============================================================================
# Tesseract Engine
# ============================================================================

class TesseractEngine(RecognizerAdapter):
    """Recognition using Tesseract through pytesseract (baseline capability)."""
    name = "tesseract"

    def __init__(self, timeout: Optional[float] = None, tesseract_cmd: Optional[str] = None):
        try:
            import pytesseract
        except ImportError:
            raise EngineUnavailable(
                "pytesseract not available. Install with: pip install pytesseract"
            )

        if tesseract_cmd:
            pytesseract.pytesseract.tesseract_cmd = tesseract_cmd

        try:
            pytesseract.get_tesseract_version()
        except Exception as e:
            raise EngineUnavailable(
                f"Tesseract not available: {e}\n"
                "Install Tesseract: https://github.com/tesseract-ocr/tesseract"
            )

        self.pytesseract = pytesseract
        self.timeout = timeout

    def recognize(self, image: RasterBuffer, config: RecognitionConfig) -> RecognitionCandidate:
        gray = image.to_gray()

        try:
            data = self.pytesseract.image_to_data(
                gray,
                lang=config.languages,
                config=config.to_tesseract_args(),
                output_type=self.pytesseract.Output.DICT,
                timeout=self.timeout or 0
            )
        except RuntimeError as e:
            # pytesseract signals a killed subprocess with a plain RuntimeError
            if "timeout" in str(e).lower():
                raise RecognitionTimeout(f"Tesseract timed out ({config.label})")
            raise EngineUnavailable(f"Tesseract error ({config.label}): {e}")
        except (self.pytesseract.TesseractError, OSError) as e:
            raise EngineUnavailable(f"Tesseract error ({config.label}): {e}")

        lines: Dict[Tuple[int, int, int], List[str]] = {}
        confidences = []
        for i in range(len(data["text"])):
            text = str(data["text"][i]).strip()
            conf = float(data["conf"][i])
            if conf < 0 or not text:
                continue
            key = (data["block_num"][i], data["par_num"][i], data["line_num"][i])
            lines.setdefault(key, []).append(text)
            confidences.append(conf)

        full_text = "\n".join(join_tokens(words) for _, words in sorted(lines.items()))
        confidence = float(np.mean(confidences)) if confidences else 0.0

        return RecognitionCandidate(
            text=full_text,
            confidence=confidence,
            config_label=config.label,
            engine=self.name
        )


# ============================================================================
# EasyOCR Engine
# ============================================================================

class EasyOCREngine(RecognizerAdapter):
    """Recognition using EasyOCR; the configuration whitelist becomes its allowlist."""
    name = "easyocr"

    def __init__(self, language: str = "chi_sim+eng", use_gpu: bool = False):
        try:
            import easyocr
        except ImportError:
            raise EngineUnavailable(
                "EasyOCR not available. Install with: pip install easyocr"
            )

        lang_map = {"eng": "en", "chi_sim": "ch_sim", "chi_tra": "ch_tra"}
        try:
            self.reader = easyocr.Reader(
                _language_codes(language, lang_map),
                gpu=use_gpu,
                verbose=False
            )
        except Exception as e:
            raise EngineUnavailable(f"Failed to initialize EasyOCR: {e}")

        self.language = language

    def recognize(self, image: RasterBuffer, config: RecognitionConfig) -> RecognitionCandidate:
        try:
            result = self.reader.readtext(
                image.to_gray(),
                allowlist=config.whitelist or None
            )
        except Exception as e:
            raise EngineUnavailable(f"EasyOCR error ({config.label}): {e}")

        detections = sorted(result, key=lambda d: (min(p[1] for p in d[0]), min(p[0] for p in d[0])))
        texts = [text for _, text, _ in detections if text.strip()]
        confidences = [conf for _, text, conf in detections if text.strip()]

        return RecognitionCandidate(
            text="\n".join(texts),
            confidence=float(np.mean(confidences)) * 100 if confidences else 0.0,
            config_label=config.label,
            engine=self.name
        )


# ============================================================================
# PaddleOCR Engine
# ============================================================================

class PaddleOCREngine(RecognizerAdapter):
    """Recognition using PaddleOCR (language fixed at construction)."""
    name = "paddleocr"
    supports_configs = False

    def __init__(self, language: str = "chi_sim+eng", use_gpu: bool = False):
        try:
            from paddleocr import PaddleOCR
        except ImportError:
            raise EngineUnavailable(
                "PaddleOCR not available. Install with: pip install paddleocr"
            )

        logging.getLogger('ppocr').setLevel(logging.WARNING)

        # PaddleOCR's Chinese model also covers Latin text
        paddle_lang = "ch" if "chi_sim" in language else "en"
        try:
            try:
                self.ocr = PaddleOCR(use_angle_cls=True, lang=paddle_lang, use_gpu=use_gpu)
            except TypeError:
                self.ocr = PaddleOCR(
                    use_angle_cls=True, lang=paddle_lang, use_gpu=use_gpu, show_log=False
                )
        except Exception as e:
            raise EngineUnavailable(f"Failed to initialize PaddleOCR: {e}")

        self.language = language

    def recognize(self, image: RasterBuffer, config: RecognitionConfig) -> RecognitionCandidate:
        try:
            result = self.ocr.ocr(image.to_bgr(), cls=True)
        except Exception as e:
            raise EngineUnavailable(f"PaddleOCR error: {e}")

        lines = []
        for line_data in (result[0] if result and result[0] else []):
            if len(line_data) >= 2:
                points = line_data[0]
                text, conf = line_data[1]
                lines.append((min(p[1] for p in points), text, conf))
        lines.sort(key=lambda l: l[0])

        confidences = [conf for _, _, conf in lines]
        return RecognitionCandidate(
            text="\n".join(text for _, text, _ in lines),
            confidence=float(np.mean(confidences)) * 100 if confidences else 0.0,
            config_label=config.label,
            engine=self.name
        )


# ============================================================================
# Orchestration
# ============================================================================

class RecognitionOrchestrator:
    """
    Runs recognition configurations against one enhanced image.

    Capabilities are tried in order; each runs its configurations
    (sequentially or concurrently), every invocation with its own timeout.
    Failed, timed-out or empty configurations are logged and dropped, never
    retried. The first capability yielding at least one candidate wins.

    Args:
        adapters: Capability chain, preferred first
        configs: 1-4 recognition configurations
        timeout: Per-invocation timeout in seconds
        concurrent: Run a capability's configurations concurrently
    """

    def __init__(
        self,
        adapters: Sequence[RecognizerAdapter],
        configs: Sequence[RecognitionConfig],
        timeout: float = 30.0,
        concurrent: bool = True
    ):
        if not adapters:
            raise ValueError("At least one recognizer adapter is required")
        if not 1 <= len(configs) <= MAX_CONFIGS:
            raise ValueError(f"Between 1 and {MAX_CONFIGS} configurations required, got {len(configs)}")

        self.adapters = list(adapters)
        self.configs = list(configs)
        self.timeout = timeout
        self.concurrent = concurrent

    async def run(self, image: RasterBuffer) -> List[RecognitionCandidate]:
        """
        Collect candidates from the first capability that succeeds.

        Raises:
            NoRecognitionResult: If every configuration of every capability failed
        """
        failures: Dict[str, str] = {}

        for adapter in self.adapters:
            configs = self.configs if adapter.supports_configs else self.configs[:1]
            candidates = await self._run_capability(adapter, image, configs, failures)
            if candidates:
                logger.info(f"{adapter.name}: {len(candidates)}/{len(configs)} configurations succeeded")
                return candidates
            logger.warning(f"{adapter.name} produced no candidates, trying next capability")

        raise NoRecognitionResult(
            f"All recognition attempts failed ({len(failures)} attempts)", failures
        )

    def run_sync(self, image: RasterBuffer) -> List[RecognitionCandidate]:
        return asyncio.run(self.run(image))

    async def _run_capability(self, adapter, image, configs, failures) -> List[RecognitionCandidate]:
        if self.concurrent and len(configs) > 1:
            # gather cancels the remaining invocations if this task is cancelled
            results = await asyncio.gather(
                *(self._attempt(adapter, image, config, failures) for config in configs)
            )
        else:
            results = []
            for config in configs:
                results.append(await self._attempt(adapter, image, config, failures))

        return [r for r in results if r is not None]

    async def _attempt(self, adapter, image, config, failures) -> Optional[RecognitionCandidate]:
        key = f"{adapter.name}:{config.label}"
        try:
            candidate = await asyncio.wait_for(
                adapter.recognize_async(image, config),
                timeout=self.timeout
            )
        except asyncio.TimeoutError:
            failures[key] = f"timed out after {self.timeout}s"
            logger.warning(f"Recognition {key} timed out after {self.timeout}s")
            return None
        except RecognitionError as e:
            failures[key] = str(e)
            logger.warning(f"Recognition {key} failed: {e}")
            return None
        except Exception as e:
            # Third-party engines raise their own types
            failures[key] = f"{type(e).__name__}: {e}"
            logger.warning(f"Recognition {key} raised {type(e).__name__}: {e}", exc_info=True)
            return None

        if not candidate.text.strip():
            failures[key] = "empty text"
            logger.warning(f"Recognition {key} returned no text")
            return None

        return candidate


def create_adapter(name: str, settings: RecognitionSettings) -> RecognizerAdapter:
    """
    Instantiate one recognition capability.

    Raises:
        EngineUnavailable: If the capability cannot be initialized
        ValueError: For an unknown engine name
    """
    if name == "tesseract":
        return TesseractEngine(timeout=settings.timeout, tesseract_cmd=settings.tesseract_cmd)
    elif name == "easyocr":
        return EasyOCREngine(language=settings.language, use_gpu=settings.use_gpu)
    elif name == "paddleocr":
        return PaddleOCREngine(language=settings.language, use_gpu=settings.use_gpu)
    elif name == "mathpix":
        from .ocr_remote import MathpixRecognizer
        return MathpixRecognizer(
            app_id=settings.mathpix_app_id,
            app_key=settings.mathpix_app_key,
            timeout=settings.request_timeout
        )
    elif name == "mistral":
        from .ocr_remote import MistralRecognizer
        return MistralRecognizer(
            api_key=settings.mistral_api_key,
            model=settings.mistral_model,
            timeout=settings.request_timeout
        )
    elif name == "alicloud":
        from .ocr_remote import AliCloudRecognizer
        return AliCloudRecognizer(
            access_key_id=settings.alicloud_access_key_id,
            access_key_secret=settings.alicloud_access_key_secret,
            timeout=settings.request_timeout
        )
    raise ValueError(f"Unknown recognition engine: {name}")


def build_orchestrator(
    settings: RecognitionSettings,
    configs: Optional[Sequence[RecognitionConfig]] = None
) -> RecognitionOrchestrator:
    """
    Build the capability chain described by the settings.

    Capabilities that fail to initialize are logged and skipped.

    Raises:
        EngineUnavailable: If no capability could be initialized
    """
    adapters = []
    problems = []
    for name in settings.engine_chain():
        try:
            adapters.append(create_adapter(name, settings))
            logger.info(f"Initialized recognition engine: {name}")
        except EngineUnavailable as e:
            problems.append(f"{name}: {e}")
            logger.warning(f"Skipping recognition engine {name}: {e}")

    if not adapters:
        raise EngineUnavailable("No recognition engine available: " + "; ".join(problems))

    if configs is None:
        configs = [get_recognition_config(label) for label in settings.config_labels]

    return RecognitionOrchestrator(
        adapters,
        configs,
        timeout=settings.timeout,
        concurrent=settings.concurrent
    )


# ============================================================================
# Example Usage
# ============================================================================

if __name__ == "__main__":
    import sys

    from .io import load_image

    if len(sys.argv) > 1:
        orchestrator = build_orchestrator(RecognitionSettings(concurrent=False))
        for candidate in orchestrator.run_sync(load_image(sys.argv[1])):
            print(f"[{candidate.config_label}] {candidate.confidence:.1f}")
            print(candidate.text)
    else:
        print("Usage: python -m utils.ocr_text <image_path>")
