"""
Utility modules for the exam question recognition pipeline.
"""

from .errors import (
    ExamReconError, InputError, EmptyImage, ImageDecodeError,
    RecognitionError, EngineUnavailable, RecognitionTimeout,
    NoRecognitionResult, EmptyCandidateSet,
)
from .raster import RasterBuffer
from .io import load_image, decode_image_bytes, save_json, ensure_dir
from .images import EnhancementProfile, EnhancementResult, enhance, enhance_image, get_profile
from .ocr_text import (
    RecognitionConfig, RecognitionCandidate, RecognizerAdapter,
    RecognitionSettings, RecognitionOrchestrator, build_orchestrator,
)
from .fusion import FusionScorer, ScoredCandidate
from .correction import TextCorrector, correct
from .classifier import Classifier, ClassificationResult, classify
from .parser import StructuralParser, ParsedQuestion, parse
from .assembler import QuestionAssembler, RecognitionOutcome, AnalysisResult

__all__ = [
    # Errors
    "ExamReconError", "InputError", "EmptyImage", "ImageDecodeError",
    "RecognitionError", "EngineUnavailable", "RecognitionTimeout",
    "NoRecognitionResult", "EmptyCandidateSet",
    # IO
    "RasterBuffer", "load_image", "decode_image_bytes", "save_json", "ensure_dir",
    # Images
    "EnhancementProfile", "EnhancementResult", "enhance", "enhance_image", "get_profile",
    # Recognition
    "RecognitionConfig", "RecognitionCandidate", "RecognizerAdapter",
    "RecognitionSettings", "RecognitionOrchestrator", "build_orchestrator",
    # Fusion
    "FusionScorer", "ScoredCandidate",
    # Text
    "TextCorrector", "correct", "Classifier", "ClassificationResult", "classify",
    "StructuralParser", "ParsedQuestion", "parse",
    # Assembly
    "QuestionAssembler", "RecognitionOutcome", "AnalysisResult",
]
