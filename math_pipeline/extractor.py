"""
Extractor Module (Stage 1)

Turns an uploaded image into the problem's full text plus an optional
isolated expression. Fail-fast: a bad image, a failed preprocessing
step or a failed vision call turns the whole result into a status
marker.
"""

import asyncio
import logging
import re
from dataclasses import dataclass
from typing import Optional

from .errors import ImageDecodeError
from .imaging import ImageReference, ImagePreprocessor, detect_format
from .status import (
    FailurePolicy,
    StatusMarker,
    as_marker,
    classify_service_error,
    is_marker,
)


logger = logging.getLogger(__name__)

_NO_TEXT_RE = re.compile(r"^no[\s_-]*text([\s_-]*found)?[.!]?$", re.IGNORECASE)


@dataclass
class ExtractionResult:
    """Result from the extraction stage."""
    full_text: str  # Content, or a StatusMarker
    image: ImageReference
    expression: Optional[str] = None
    working_image: Optional[ImageReference] = None

    @property
    def marker(self) -> Optional[StatusMarker]:
        return as_marker(self.full_text)

    @property
    def has_content(self) -> bool:
        return self.marker is None


def normalize_text(text) -> str:
    """Trim a recognized text, mapping empty or 'no text' answers to NO_TEXT_FOUND."""
    if not isinstance(text, str):
        return StatusMarker.NO_TEXT_FOUND
    text = text.strip()
    if not text or _NO_TEXT_RE.match(text):
        return StatusMarker.NO_TEXT_FOUND
    marker = as_marker(text.upper())
    if marker is not None:
        return marker
    return text


def normalize_expression(expression) -> Optional[str]:
    """Absent, blank and non-string expressions all become None."""
    if not isinstance(expression, str):
        return None
    expression = expression.strip()
    if not expression or is_marker(expression.upper()) or _NO_TEXT_RE.match(expression):
        return None
    return expression


class Extractor:
    """
    Stage 1: read the math problem off an image.

    Steps, each of which ends the stage with a marker on failure:
    1. Decode check (PROCESSING_ERROR, no service call)
    2. Preprocessing (PREPROCESSING_ERROR, no service call)
    3. One vision call (classified transport error, or PROCESSING_ERROR
       for a malformed answer)
    """

    failure_policy = FailurePolicy.FAIL_FAST

    def __init__(self, vision_service, preprocessor: Optional[ImagePreprocessor] = None):
        """
        Args:
            vision_service: object with ``async recognize(image) -> dict``
            preprocessor: object with ``preprocess(image) -> ImageReference``,
                or None to send the original image as-is
        """
        self.vision_service = vision_service
        self.preprocessor = preprocessor

    async def extract(self, image: ImageReference) -> ExtractionResult:
        """
        Extract problem text from one image.

        Never raises for bad input or service failures; those come back
        as a marker in ``full_text``.
        """
        try:
            mime_type = detect_format(image.data)
        except ImageDecodeError as e:
            logger.warning("Rejecting image %s: %s", image.name or image.ref_id, e)
            return ExtractionResult(full_text=StatusMarker.PROCESSING_ERROR, image=image)

        working_image = image
        if image.mime_type != mime_type:
            working_image = ImageReference(data=image.data, mime_type=mime_type, name=image.name)

        if self.preprocessor is not None:
            loop = asyncio.get_running_loop()
            try:
                working_image = await loop.run_in_executor(
                    None, self.preprocessor.preprocess, working_image
                )
            except Exception as e:
                logger.warning("Preprocessing failed for %s: %s", image.name or image.ref_id, e)
                return ExtractionResult(full_text=StatusMarker.PREPROCESSING_ERROR, image=image)

        try:
            response = await self.vision_service.recognize(working_image)
        except Exception as e:
            marker = classify_service_error(e)
            logger.warning("Vision call failed (%s): %s", marker.value, e)
            return ExtractionResult(
                full_text=marker, image=image, working_image=working_image
            )

        if (
            not isinstance(response, dict)
            or "_error" in response
            or "fullText" not in response
            or not isinstance(response["fullText"], (str, type(None)))
        ):
            logger.warning("Malformed vision response: %r", response)
            return ExtractionResult(
                full_text=StatusMarker.PROCESSING_ERROR, image=image, working_image=working_image
            )

        full_text = normalize_text(response.get("fullText"))
        expression = None if is_marker(full_text) else normalize_expression(response.get("expression"))

        if is_marker(full_text):
            logger.info("Extraction produced %s", full_text)
        else:
            logger.info("Extracted %d characters (expression: %s)", len(full_text), expression)

        return ExtractionResult(
            full_text=full_text,
            image=image,
            expression=expression,
            working_image=working_image,
        )
