"""
Corrector Module (Stage 2)

Fixes OCR and handwriting misreads in extracted text. Best-effort:
any failure hands back the text it was given, so correction can never
destroy content that was already valid.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from .extractor import normalize_expression
from .status import FailurePolicy, is_marker


logger = logging.getLogger(__name__)


class CorrectionOutcome(str, Enum):
    CORRECTED = "corrected"  # Service answered with a usable correction
    BYPASSED = "bypassed"    # Input was absent or a marker; no service call
    FALLBACK = "fallback"    # Service failed; input returned unchanged


@dataclass
class CorrectionResult:
    """Result from the correction stage."""
    corrected_text: str
    corrected_expression: Optional[str] = None
    original_text: Optional[str] = None
    outcome: CorrectionOutcome = CorrectionOutcome.CORRECTED

    @property
    def changed(self) -> bool:
        """False when correction left the text as it was (a fixed point)."""
        return self.corrected_text != self.original_text

    @property
    def fell_back(self) -> bool:
        return self.outcome == CorrectionOutcome.FALLBACK


class Corrector:
    """
    Stage 2: correct recognition errors.

    Bypasses the service entirely when the upstream text is absent or a
    status marker.
    """

    failure_policy = FailurePolicy.FALLBACK_TO_INPUT

    def __init__(self, correction_service):
        """
        Args:
            correction_service: object with
                ``async correct(text, expression) -> dict``
        """
        self.correction_service = correction_service

    async def correct(
        self,
        full_text: Optional[str],
        expression: Optional[str] = None,
    ) -> CorrectionResult:
        """Correct ``full_text`` / ``expression``. Never raises."""
        if full_text is None or not full_text.strip() or is_marker(full_text.strip()):
            logger.info("Skipping correction for upstream status %s", full_text)
            return CorrectionResult(
                corrected_text=full_text if full_text is not None else "",
                corrected_expression=None,
                original_text=full_text,
                outcome=CorrectionOutcome.BYPASSED,
            )

        expression = normalize_expression(expression)
        fallback = CorrectionResult(
            corrected_text=full_text,
            corrected_expression=expression,
            original_text=full_text,
            outcome=CorrectionOutcome.FALLBACK,
        )

        try:
            response = await self.correction_service.correct(full_text, expression)
        except Exception as e:
            logger.warning("Correction failed, keeping original text: %s", e)
            return fallback

        if not isinstance(response, dict) or "_error" in response:
            logger.warning("Malformed correction response, keeping original text: %r", response)
            return fallback

        corrected_text = response.get("correctedText")
        if not isinstance(corrected_text, str) or not corrected_text.strip():
            logger.warning("Correction returned no text, keeping original text")
            return fallback

        corrected_text = corrected_text.strip()
        if is_marker(corrected_text):
            logger.warning("Correction returned status %s, keeping original text", corrected_text)
            return fallback

        if "correctedExpression" in response:
            corrected_expression = normalize_expression(response.get("correctedExpression"))
        else:
            corrected_expression = expression

        result = CorrectionResult(
            corrected_text=corrected_text,
            corrected_expression=corrected_expression,
            original_text=full_text,
            outcome=CorrectionOutcome.CORRECTED,
        )
        if result.changed:
            logger.info("Correction changed the text")
        return result
