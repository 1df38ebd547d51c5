"""
Question assembler: end-to-end recognition pipeline.

Provides:
- QuestionAssembler: image -> enhancement -> recognition -> fusion ->
  correction -> classification (-> structural parse)
- RecognitionOutcome / AnalysisResult data model
- RecognitionMetrics for diagnostics
- Text path that hands text straight to the structural parser
"""

import asyncio
import logging
import re
import time
from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Optional, Union

from .classifier import ClassificationResult, Classifier
from .correction import TextCorrector
from .fusion import FusionScorer, ScoredCandidate, option_markers
from .images import EnhancementProfile, EnhancementResult, enhance_image
from .io import decode_image_bytes
from .ocr_text import RecognitionOrchestrator, RecognitionSettings, build_orchestrator
from .parser import ParsedQuestion, StructuralParser
from .raster import RasterBuffer
from .subjects import UNKNOWN_SUBJECT

logger = logging.getLogger(__name__)

MATH_SYMBOLS = "+-×÷=<>≤≥≠√π∞∑∫±"
TRIG_FUNCTION = re.compile(r'(?<![A-Za-z])(?:sin|cos|tan|cot|sec|csc)(?![a-wyzA-Z])')
ANGLE_SYMBOLS = "°′″∠"
BRACKET_PAIR = re.compile(r'\([^()]*\)|（[^（）]*）|\[[^\[\]]*\]|\{[^{}]*\}')
FRACTION_LINE = re.compile(r'\d\s*/\s*\d|\\frac')


# ============================================================================
# Data Classes
# ============================================================================

@dataclass
class RecognitionMetrics:
    """Counts of domain symbols in the final text plus enhancement geometry."""
    math_symbols: int = 0
    trig_functions: int = 0
    angle_symbols: int = 0
    brackets: int = 0
    fraction_lines: int = 0
    option_markers: int = 0
    enhancement_scale: float = 1.0
    skew_angle: float = 0.0

    @classmethod
    def from_text(cls, text: str, enhancement: Optional[EnhancementResult] = None) -> "RecognitionMetrics":
        return cls(
            math_symbols=sum(text.count(ch) for ch in MATH_SYMBOLS),
            trig_functions=len(TRIG_FUNCTION.findall(text)),
            angle_symbols=sum(text.count(ch) for ch in ANGLE_SYMBOLS),
            brackets=len(BRACKET_PAIR.findall(text)),
            fraction_lines=len(FRACTION_LINE.findall(text)),
            option_markers=len({letter for letter, _ in option_markers(text)}),
            enhancement_scale=enhancement.scale if enhancement else 1.0,
            skew_angle=enhancement.skew_angle if enhancement else 0.0,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "math_symbols": self.math_symbols,
            "trig_functions": self.trig_functions,
            "angle_symbols": self.angle_symbols,
            "brackets": self.brackets,
            "fraction_lines": self.fraction_lines,
            "option_markers": self.option_markers,
            "enhancement_scale": round(self.enhancement_scale, 3),
            "skew_angle": round(self.skew_angle, 2),
        }


@dataclass
class RecognitionOutcome:
    """Result of the recognition path for one image."""
    text: str
    confidence: float
    classification: ClassificationResult
    processing_steps: List[str] = field(default_factory=list)
    processing_time_ms: int = 0
    winner: str = ""
    scored: List[ScoredCandidate] = field(default_factory=list)
    metrics: RecognitionMetrics = field(default_factory=RecognitionMetrics)
    hints: Dict[str, str] = field(default_factory=dict)
    enhanced_image: Optional[RasterBuffer] = field(default=None, repr=False)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "text": self.text,
            "confidence": round(self.confidence, 2),
            "classification": self.classification.to_dict(),
            "processing_steps": list(self.processing_steps),
            "processing_time_ms": self.processing_time_ms,
            "winner": self.winner,
            "candidates": [s.to_dict() for s in self.scored],
            "metrics": self.metrics.to_dict(),
            "hints": dict(self.hints),
        }


@dataclass
class AnalysisResult:
    """Recognition outcome together with the parsed question."""
    recognition: RecognitionOutcome
    question: ParsedQuestion

    def to_dict(self) -> Dict[str, Any]:
        return {
            "recognition": self.recognition.to_dict(),
            "question": self.question.to_dict(),
        }


# ============================================================================
# Question Assembler
# ============================================================================

class QuestionAssembler:
    """
    Orchestrates the question recognition pipeline.

    Coordinates:
    - Image enhancement
    - Multi-configuration recognition
    - Candidate fusion
    - Text correction and classification
    - Structural parsing

    Components are created lazily; any of them may be injected.

    Args:
        profile: EnhancementProfile or preset name
        settings: Recognition settings used to build the orchestrator
        orchestrator: Prebuilt RecognitionOrchestrator (skips settings)
    """

    def __init__(
        self,
        profile: Union[EnhancementProfile, str, None] = None,
        settings: Optional[RecognitionSettings] = None,
        orchestrator: Optional[RecognitionOrchestrator] = None,
        scorer: Optional[FusionScorer] = None,
        corrector: Optional[TextCorrector] = None,
        classifier: Optional[Classifier] = None,
        parser: Optional[StructuralParser] = None
    ):
        self.profile = profile or "general"
        self.settings = settings or RecognitionSettings()
        self._orchestrator = orchestrator
        self.scorer = scorer or FusionScorer()
        self.corrector = corrector or TextCorrector()
        self.classifier = classifier or Classifier()
        self.parser = parser or StructuralParser(self.classifier)

    @property
    def orchestrator(self) -> RecognitionOrchestrator:
        if self._orchestrator is None:
            self._orchestrator = build_orchestrator(self.settings)
        return self._orchestrator

    async def recognize(
        self,
        image: Union[RasterBuffer, bytes],
        subject_hint: Optional[str] = None,
        structure_example: Optional[str] = None
    ) -> RecognitionOutcome:
        """
        Run the recognition path on one image.

        Args:
            image: Decoded RasterBuffer or raw image bytes
            subject_hint: Subject used when detection yields 未知
            structure_example: Advisory template, recorded in the outcome

        Returns:
            RecognitionOutcome with corrected text and classification

        Raises:
            EmptyImage / ImageDecodeError: Unusable input
            NoRecognitionResult: Every recognition configuration failed
        """
        start_time = time.perf_counter()
        steps = []

        if isinstance(image, (bytes, bytearray)):
            image = decode_image_bytes(bytes(image))
        steps.append(f"decoded image {image.width}x{image.height}")

        # 1. Enhance
        enhancement = enhance_image(image, self.profile)
        steps.extend(f"enhance: {step}" for step in enhancement.report)
        logger.info(
            f"Enhanced image ({enhancement.profile}): "
            f"{enhancement.image.width}x{enhancement.image.height}, "
            f"scale {enhancement.scale:.2f}, skew {enhancement.skew_angle:.2f}"
        )

        # 2. Recognize (raises NoRecognitionResult before fusion)
        candidates = await self.orchestrator.run(enhancement.image)
        steps.append(
            "recognized with " + ", ".join(c.config_label for c in candidates)
        )

        # 3. Fuse
        scored = self.scorer.rank(candidates)
        winner = scored[0]
        steps.append(
            f"fusion selected {winner.config_label} (score {winner.final_score:.1f})"
        )

        # 4. Correct
        text, changed = self.corrector.apply_rules(winner.text)
        if changed:
            steps.append("corrected: " + ", ".join(changed))

        # 5. Classify
        classification = self.classifier.classify(text)
        hints = {}
        if subject_hint:
            hints["subject"] = subject_hint
            if classification.subject == UNKNOWN_SUBJECT:
                classification = replace(classification, subject=subject_hint)
                steps.append(f"subject from hint: {subject_hint}")
        if structure_example:
            hints["structure_example"] = structure_example
        steps.append(
            f"classified: {classification.question_type} / {classification.subject}"
        )

        elapsed_ms = int((time.perf_counter() - start_time) * 1000)
        logger.info(f"Recognition finished in {elapsed_ms} ms")

        return RecognitionOutcome(
            text=text,
            confidence=winner.confidence,
            classification=classification,
            processing_steps=steps,
            processing_time_ms=elapsed_ms,
            winner=winner.config_label,
            scored=scored,
            metrics=RecognitionMetrics.from_text(text, enhancement),
            hints=hints,
            enhanced_image=enhancement.image,
        )

    def recognize_sync(
        self,
        image: Union[RasterBuffer, bytes],
        subject_hint: Optional[str] = None,
        structure_example: Optional[str] = None
    ) -> RecognitionOutcome:
        return asyncio.run(self.recognize(image, subject_hint, structure_example))

    def parse_text(self, text: str, subject_hint: Optional[str] = None) -> ParsedQuestion:
        """Text path: parse already-available text without image stages."""
        return self.parser.parse(text, subject_hint)

    async def analyze_image(
        self,
        image: Union[RasterBuffer, bytes],
        subject_hint: Optional[str] = None,
        structure_example: Optional[str] = None
    ) -> AnalysisResult:
        """Recognize an image and parse the corrected text."""
        outcome = await self.recognize(image, subject_hint, structure_example)
        question = self.parser.parse(outcome.text, subject_hint)
        outcome.processing_steps.append(f"parsed: {question.question_type}")
        return AnalysisResult(recognition=outcome, question=question)

    def analyze_image_sync(
        self,
        image: Union[RasterBuffer, bytes],
        subject_hint: Optional[str] = None,
        structure_example: Optional[str] = None
    ) -> AnalysisResult:
        return asyncio.run(self.analyze_image(image, subject_hint, structure_example))
