"""
Solver Module (Stage 3)

Produces a step-by-step Markdown solution. The stage never raises:
unusable input and service failures both come back as a solution
starting with the reserved **Error:** prefix.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from .extractor import normalize_expression
from .status import FailurePolicy, StatusMarker, as_marker


logger = logging.getLogger(__name__)

ERROR_PREFIX = "**Error:**"
CONCLUSION_PREFIX = "**Conclusion:**"


class SolutionKind(str, Enum):
    SUCCESS = "success"
    ERROR = "error"
    CONCLUSION = "conclusion"  # No solution, or infinitely many


def classify_solution(solution: str) -> SolutionKind:
    """Classify a solution string by its reserved prefix."""
    text = (solution or "").lstrip()
    if text.startswith(ERROR_PREFIX):
        return SolutionKind.ERROR
    if text.startswith(CONCLUSION_PREFIX):
        return SolutionKind.CONCLUSION
    return SolutionKind.SUCCESS


@dataclass
class SolutionResult:
    """Result from the solve stage."""
    solution: str

    @property
    def kind(self) -> SolutionKind:
        # Recomputed on every access; the solution text is the only source of truth
        return classify_solution(self.solution)

    @property
    def is_error(self) -> bool:
        return self.kind == SolutionKind.ERROR


def precondition_error(text_context: Optional[str]) -> Optional[str]:
    """Return the reason ``text_context`` cannot be solved, or None if it can."""
    if text_context is None or not text_context.strip():
        return "is empty"
    marker = as_marker(text_context.strip())
    if marker == StatusMarker.NO_TEXT_FOUND:
        return "indicates no text was found"
    if marker is not None:
        return f"indicates an error occurred earlier ({marker.value})"
    return None


class Solver:
    """Stage 3: solve the (corrected) problem text."""

    failure_policy = FailurePolicy.SURFACE_AS_ERROR

    def __init__(self, solver_service):
        """
        Args:
            solver_service: object with
                ``async solve(context, expression) -> dict``
        """
        self.solver_service = solver_service

    async def solve(
        self,
        text_context: Optional[str],
        expression: Optional[str] = None,
    ) -> SolutionResult:
        reason = precondition_error(text_context)
        if reason is not None:
            logger.warning("Not solving: input text %s", reason)
            return SolutionResult(
                solution=(
                    f"{ERROR_PREFIX} Cannot solve. The input text {reason}. "
                    "Please provide a valid math problem, for example by editing the recognized text."
                )
            )

        context = text_context.strip()
        expression = normalize_expression(expression)

        try:
            response = await self.solver_service.solve(context, expression)
        except Exception as e:
            logger.error("Solver call failed for %r: %s", context, e)
            return SolutionResult(
                solution=f"{ERROR_PREFIX} An unexpected error occurred while trying to solve the problem: {e}"
            )

        solution = response.get("solution") if isinstance(response, dict) else None
        if not isinstance(solution, str) or not solution.strip():
            logger.error("Solver returned no usable solution: %r", response)
            return SolutionResult(
                solution=f"{ERROR_PREFIX} The AI solver failed to generate a response. Please try again."
            )

        result = SolutionResult(solution=solution.strip())
        logger.info("Solved (%s)", result.kind.value)
        return result
