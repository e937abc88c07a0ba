"""
MathSnap Pipeline Package

Three model-backed stages, each with one job:
- Stage 1: Extraction (vision model reads the photo)
- Stage 2: Correction (fixes OCR / handwriting misreads, best-effort)
- Stage 3: Solve (step-by-step Markdown solution, on request)

The controller sequences them and owns all per-image state.
Model services live in ``math_pipeline.services`` and are imported
lazily so the stages can be used with any service implementation.
"""

from .status import StatusMarker, FailurePolicy, is_marker, describe
from .imaging import ImageReference, ImagePreprocessor
from .extractor import Extractor, ExtractionResult
from .corrector import Corrector, CorrectionResult, CorrectionOutcome
from .solver import Solver, SolutionResult, SolutionKind, ERROR_PREFIX, CONCLUSION_PREFIX
from .controller import PipelineController, PipelineStage

__all__ = [
    "StatusMarker",
    "FailurePolicy",
    "is_marker",
    "describe",
    "ImageReference",
    "ImagePreprocessor",
    "Extractor",
    "ExtractionResult",
    "Corrector",
    "CorrectionResult",
    "CorrectionOutcome",
    "Solver",
    "SolutionResult",
    "SolutionKind",
    "ERROR_PREFIX",
    "CONCLUSION_PREFIX",
    "PipelineController",
    "PipelineStage",
]
