"""
Status Taxonomy

Sentinel markers that stand in for real content when a stage cannot
produce any, the failure policy each stage follows, and the translation
from markers to user-facing messages.
"""

import re
from enum import Enum
from typing import Optional


class StatusMarker(str, Enum):
    """Terminal condition carried in place of extracted text.

    The enum is a ``str`` so a marker compares equal to the plain string
    the UI layer receives (``StatusMarker.NO_TEXT_FOUND == "NO_TEXT_FOUND"``).
    """
    NO_TEXT_FOUND = "NO_TEXT_FOUND"
    PROCESSING_ERROR = "OCR_PROCESSING_ERROR"
    PREPROCESSING_ERROR = "PREPROCESSING_ERROR"
    INVALID_CREDENTIAL = "API_ERROR_INVALID_KEY"
    QUOTA_EXCEEDED = "API_ERROR_QUOTA"
    GENERAL_SERVICE_ERROR = "API_GENERAL_ERROR"
    BLOCKED_BY_SAFETY_FILTER = "OCR_BLOCKED_BY_SAFETY"

    def __str__(self) -> str:
        return self.value


class FailurePolicy(str, Enum):
    """How a stage treats a failure of its one external call."""
    FAIL_FAST = "fail_fast"                  # Whole stage result becomes a marker
    FALLBACK_TO_INPUT = "fallback_to_input"  # Input is returned unchanged
    SURFACE_AS_ERROR = "surface_as_error"    # Failure becomes an **Error:** solution


MARKER_VALUES = frozenset(marker.value for marker in StatusMarker)


MARKER_MESSAGES = {
    StatusMarker.NO_TEXT_FOUND: "No math problem could be found in the image. Try a clearer photo.",
    StatusMarker.PROCESSING_ERROR: "The image could not be processed. Make sure it is a valid PNG, JPEG or WEBP file.",
    StatusMarker.PREPROCESSING_ERROR: "The image could not be prepared for text recognition.",
    StatusMarker.INVALID_CREDENTIAL: "The AI service rejected the API key. Check GOOGLE_API_KEY in your .env file.",
    StatusMarker.QUOTA_EXCEEDED: "The AI service quota has been exceeded. Please wait and try again.",
    StatusMarker.GENERAL_SERVICE_ERROR: "The AI service could not be reached. Please try again.",
    StatusMarker.BLOCKED_BY_SAFETY_FILTER: "The image was blocked by the AI service's safety filter.",
}


# Patterns searched in a lowercased transport error message, in order.
# Status codes only match as whole numbers.
_ERROR_SIGNATURES = [
    (StatusMarker.BLOCKED_BY_SAFETY_FILTER, re.compile(r"safety|block_reason|prohibited_content")),
    (StatusMarker.INVALID_CREDENTIAL, re.compile(
        r"api key not valid|api_key_invalid|invalid api key|incorrect api key"
        r"|permission[ _]?denied|unauthenticated|\b40[13]\b"
    )),
    (StatusMarker.QUOTA_EXCEEDED, re.compile(r"quota|resource[ _]?exhausted|rate limit|\b429\b")),
]


def is_marker(value) -> bool:
    """Return True if ``value`` is one of the status markers."""
    if isinstance(value, StatusMarker):
        return True
    return isinstance(value, str) and value in MARKER_VALUES


def as_marker(value) -> Optional[StatusMarker]:
    """Return the marker ``value`` stands for, or None for real content."""
    if is_marker(value):
        return StatusMarker(value)
    return None


def describe(marker) -> str:
    """Translate a marker to the message shown to the user."""
    return MARKER_MESSAGES[StatusMarker(marker)]


def classify_service_error(error: BaseException) -> StatusMarker:
    """
    Map a transport error onto a marker by inspecting its message.

    Anything that matches no known signature collapses to
    GENERAL_SERVICE_ERROR.
    """
    message = f"{type(error).__name__}: {error}".lower()
    for marker, pattern in _ERROR_SIGNATURES:
        if pattern.search(message):
            return marker
    return StatusMarker.GENERAL_SERVICE_ERROR
