"""
Exception types for the exam question recognition pipeline.

Input errors and pipeline-fatal recognition errors reach the caller;
a single failing recognition configuration is absorbed by the orchestrator.
"""

from typing import Dict, Optional


class ExamReconError(Exception):
    """Base class for all pipeline errors."""
    pass


# ============================================================================
# Input Errors
# ============================================================================

class InputError(ExamReconError):
    """The supplied image or text cannot be processed."""
    pass


class EmptyImage(InputError):
    """The image buffer (or byte payload) holds no pixels."""
    pass


class ImageDecodeError(InputError):
    """The image bytes are not a decodable image format."""
    pass


# ============================================================================
# Recognition Errors
# ============================================================================

class RecognitionError(ExamReconError):
    """Base class for failures of a recognition capability."""
    pass


class EngineUnavailable(RecognitionError):
    """The recognition engine is missing, misconfigured or failed."""
    pass


class RecognitionTimeout(RecognitionError):
    """A recognition invocation exceeded its timeout."""
    pass


class NoRecognitionResult(RecognitionError):
    """Every configured recognition attempt failed."""

    def __init__(self, message: str, failures: Optional[Dict[str, str]] = None):
        super().__init__(message)
        self.failures = failures or {}


# ============================================================================
# Fusion Errors
# ============================================================================

class EmptyCandidateSet(ExamReconError):
    """Fusion was asked to select from zero candidates."""
    pass
