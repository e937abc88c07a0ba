"""Shared fixtures and fake model services for the pipeline test suite.

The fakes record every call so tests can assert that a stage was
bypassed (zero calls) as well as what it sent.
"""

from __future__ import annotations

import io

import pytest
from PIL import Image

from math_pipeline import (
    Corrector,
    Extractor,
    ImageReference,
    PipelineController,
    Solver,
)
from math_pipeline.cost_tracker import reset_tracker


def make_image_bytes(fmt: str = "PNG", size=(64, 32), color=(240, 240, 240)) -> bytes:
    img = Image.new("RGB", size, color)
    buffer = io.BytesIO()
    img.save(buffer, format=fmt)
    return buffer.getvalue()


class FakeVisionService:
    def __init__(self, response=None, error: Exception | None = None):
        self.response = response if response is not None else {
            "fullText": "Solve for x: 2x + 3 = 11",
            "expression": "2x + 3 = 11",
        }
        self.error = error
        self.calls: list[ImageReference] = []

    async def recognize(self, image):
        self.calls.append(image)
        if self.error is not None:
            raise self.error
        return self.response


class FakeCorrectionService:
    """Echoes its input unless given a fixed response or an error."""

    def __init__(self, response=None, error: Exception | None = None):
        self.response = response
        self.error = error
        self.calls: list[tuple[str, str | None]] = []

    async def correct(self, text, expression=None):
        self.calls.append((text, expression))
        if self.error is not None:
            raise self.error
        if self.response is not None:
            return self.response
        return {"correctedText": text, "correctedExpression": expression}


class FakeSolverService:
    def __init__(self, response=None, error: Exception | None = None):
        self.response = response if response is not None else {
            "solution": "1. Subtract 3: `2x = 8`\n2. Divide by 2\n\n**Final Answer:** x = 4",
        }
        self.error = error
        self.calls: list[tuple[str, str | None]] = []

    async def solve(self, context, expression=None):
        self.calls.append((context, expression))
        if self.error is not None:
            raise self.error
        return self.response


class FailingPreprocessor:
    def __init__(self):
        self.calls = 0

    def preprocess(self, image):
        self.calls += 1
        raise RuntimeError("preprocessor crashed")


@pytest.fixture(autouse=True)
def fresh_tracker():
    return reset_tracker()


@pytest.fixture
def png_image() -> ImageReference:
    return ImageReference(data=make_image_bytes("PNG"), mime_type="image/png", name="problem.png")


@pytest.fixture
def vision() -> FakeVisionService:
    return FakeVisionService()


@pytest.fixture
def correction() -> FakeCorrectionService:
    return FakeCorrectionService()


@pytest.fixture
def solver_service() -> FakeSolverService:
    return FakeSolverService()


@pytest.fixture
def controller(vision, correction, solver_service) -> PipelineController:
    return PipelineController(
        extractor=Extractor(vision),
        corrector=Corrector(correction),
        solver=Solver(solver_service),
    )
