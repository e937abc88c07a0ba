"""
Pipeline Controller

Sequences extraction, correction and solving for one image at a time:

    IDLE -> EXTRACTING -> CORRECTING -> READY_TO_SOLVE -> SOLVING -> DONE

Extraction flows into correction automatically. Solving only happens
when solve() is called. A manual edit of the corrected text discards
any solution and returns to READY_TO_SOLVE without re-correcting.
"""

import logging
from enum import Enum
from pathlib import Path
from typing import Optional, Union

from .corrector import Corrector, CorrectionResult
from .errors import InvalidTransitionError
from .extractor import Extractor, ExtractionResult, normalize_expression
from .imaging import ImageReference, ImagePreprocessor
from .solver import Solver, SolutionResult
from .status import StatusMarker, describe


logger = logging.getLogger(__name__)


class PipelineStage(str, Enum):
    IDLE = "idle"
    EXTRACTING = "extracting"
    CORRECTING = "correcting"
    READY_TO_SOLVE = "ready_to_solve"
    SOLVING = "solving"
    DONE = "done"


EDITABLE_STAGES = (PipelineStage.IDLE, PipelineStage.READY_TO_SOLVE, PipelineStage.DONE)
SOLVABLE_STAGES = (PipelineStage.READY_TO_SOLVE, PipelineStage.DONE)

CORRECTION_FALLBACK_MESSAGE = "Could not automatically correct the text. Please edit it manually if needed."


class PipelineController:
    """
    Owns all state for the active image.

    Results that arrive for an image that is no longer current (a newer
    upload, or clear() in between) are discarded by comparing image
    references; in-flight calls are never cancelled.
    """

    def __init__(self, extractor: Extractor, corrector: Corrector, solver: Solver):
        self.extractor = extractor
        self.corrector = corrector
        self.solver = solver

        self.stage = PipelineStage.IDLE
        self.transitions: list[tuple[PipelineStage, PipelineStage]] = []
        self._reset()

    @classmethod
    def from_config(cls) -> "PipelineController":
        """Build a controller wired to the configured model services."""
        from config import ENABLE_PREPROCESSING, PREPROCESS_MAX_DIMENSION
        from .services import create_services

        vision, correction, solver = create_services()
        preprocessor = ImagePreprocessor(max_dimension=PREPROCESS_MAX_DIMENSION) if ENABLE_PREPROCESSING else None
        return cls(
            extractor=Extractor(vision, preprocessor),
            corrector=Corrector(correction),
            solver=Solver(solver),
        )

    def _reset(self):
        self.image: Optional[ImageReference] = None
        self.extraction: Optional[ExtractionResult] = None
        self.correction: Optional[CorrectionResult] = None
        self.solution: Optional[SolutionResult] = None
        # Editable problem text handed to the solver
        self.text: str = ""
        self.expression: Optional[str] = None

    def _transition(self, stage: PipelineStage):
        if stage != self.stage:
            logger.debug("Pipeline %s -> %s", self.stage.value, stage.value)
            self.transitions.append((self.stage, stage))
        self.stage = stage

    def _is_stale(self, image: Optional[ImageReference]) -> bool:
        return image is not self.image

    # ------------------------------------------------------------------
    # Derived state
    # ------------------------------------------------------------------

    @property
    def marker(self) -> Optional[StatusMarker]:
        """Marker that ended the last extraction, if any."""
        return self.extraction.marker if self.extraction else None

    @property
    def message(self) -> Optional[str]:
        """One-line status for the user, or None when there is nothing to report."""
        if self.stage == PipelineStage.IDLE and self.marker is not None:
            return describe(self.marker)
        if self.stage == PipelineStage.READY_TO_SOLVE and self.correction and self.correction.fell_back:
            return CORRECTION_FALLBACK_MESSAGE
        return None

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def process_image(
        self,
        source: Union[ImageReference, bytes, str, Path],
    ) -> Optional[PipelineStage]:
        """
        Run extraction and, if it produced content, correction.

        ``source`` may be an ImageReference, raw bytes, a data URI or a
        file path. Returns the stage reached, or None if a newer image
        replaced this one before its results arrived.
        """
        image = _to_image_reference(source)

        self._reset()
        self.image = image
        self._transition(PipelineStage.EXTRACTING)

        extraction = await self.extractor.extract(image)
        if self._is_stale(image):
            logger.info("Discarding stale extraction for %s", image.ref_id)
            return None

        self.extraction = extraction
        if not extraction.has_content:
            logger.info("Extraction ended with %s; skipping correction and solve", extraction.marker.value)
            self._transition(PipelineStage.IDLE)
            return self.stage

        self._transition(PipelineStage.CORRECTING)
        await self._run_correction(image)
        return None if self._is_stale(image) else self.stage

    async def recorrect(self) -> Optional[PipelineStage]:
        """Re-run correction on the extracted text, replacing any edits."""
        if self.stage not in SOLVABLE_STAGES or self.extraction is None or not self.extraction.has_content:
            raise InvalidTransitionError("re-run correction", self.stage)

        image = self.image
        self.solution = None
        self._transition(PipelineStage.CORRECTING)
        await self._run_correction(image)
        return None if self._is_stale(image) else self.stage

    async def _run_correction(self, image: ImageReference):
        correction = await self.corrector.correct(
            self.extraction.full_text, self.extraction.expression
        )
        if self._is_stale(image):
            logger.info("Discarding stale correction for %s", image.ref_id)
            return

        self.correction = correction
        self.text = correction.corrected_text
        self.expression = correction.corrected_expression
        self._transition(PipelineStage.READY_TO_SOLVE)

    def edit_text(self, text: str, expression: Optional[str] = None):
        """
        Replace the problem text by hand.

        The isolated expression is replaced too (dropped unless given),
        since it may no longer match the edited text.
        """
        if self.stage not in EDITABLE_STAGES:
            raise InvalidTransitionError("edit text", self.stage)

        self.text = text
        self.expression = normalize_expression(expression)
        self.solution = None
        self._transition(PipelineStage.READY_TO_SOLVE)

    async def solve(self) -> Optional[SolutionResult]:
        """Solve the current text. Returns None if the result went stale."""
        if self.stage not in SOLVABLE_STAGES:
            raise InvalidTransitionError("solve", self.stage)

        image = self.image
        text, expression = self.text, self.expression
        self.solution = None
        self._transition(PipelineStage.SOLVING)

        solution = await self.solver.solve(text, expression)
        if self._is_stale(image) or self.stage != PipelineStage.SOLVING or self.text != text:
            logger.info("Discarding stale solution")
            return None

        self.solution = solution
        self._transition(PipelineStage.DONE)
        return solution

    def clear(self):
        """Forget everything and return to IDLE."""
        self._reset()
        self._transition(PipelineStage.IDLE)

    def snapshot(self) -> dict:
        """JSON-serializable view of the current session."""
        return {
            "stage": self.stage.value,
            "image": {
                "name": self.image.name,
                "ref_id": self.image.ref_id,
                "mime_type": self.image.mime_type,
            } if self.image else None,
            "extraction": {
                "full_text": str(self.extraction.full_text),
                "expression": self.extraction.expression,
            } if self.extraction else None,
            "correction": {
                "corrected_text": str(self.correction.corrected_text),
                "corrected_expression": self.correction.corrected_expression,
                "outcome": self.correction.outcome.value,
            } if self.correction else None,
            "text": self.text,
            "expression": self.expression,
            "solution": {
                "solution": self.solution.solution,
                "kind": self.solution.kind.value,
            } if self.solution else None,
            "marker": self.marker.value if self.marker else None,
            "message": self.message,
        }


def _to_image_reference(source) -> ImageReference:
    if isinstance(source, ImageReference):
        return source
    if isinstance(source, (bytes, bytearray)):
        return ImageReference(data=bytes(source))
    if isinstance(source, str) and source.startswith("data:"):
        return ImageReference.from_data_uri(source)
    try:
        return ImageReference.from_path(source)
    except OSError as e:
        # Empty data fails the decode check and surfaces as a marker
        logger.warning("Could not read image %s: %s", source, e)
        return ImageReference(data=b"", name=Path(source).name)
