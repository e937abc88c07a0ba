from __future__ import annotations

import asyncio

import pytest

from conftest import FakeCorrectionService, FakeSolverService, FakeVisionService, make_image_bytes
from math_pipeline import (
    Corrector,
    Extractor,
    ImageReference,
    PipelineController,
    PipelineStage,
    Solver,
    StatusMarker,
)
from math_pipeline.controller import CORRECTION_FALLBACK_MESSAGE
from math_pipeline.errors import InvalidTransitionError


S = PipelineStage


def build(vision=None, correction=None, solver=None) -> PipelineController:
    return PipelineController(
        extractor=Extractor(vision or FakeVisionService()),
        corrector=Corrector(correction or FakeCorrectionService()),
        solver=Solver(solver or FakeSolverService()),
    )


def test_happy_path_stops_before_solving(controller, png_image, solver_service):
    stage = asyncio.run(controller.process_image(png_image))

    assert stage == S.READY_TO_SOLVE
    assert controller.transitions == [
        (S.IDLE, S.EXTRACTING),
        (S.EXTRACTING, S.CORRECTING),
        (S.CORRECTING, S.READY_TO_SOLVE),
    ]
    assert controller.text == "Solve for x: 2x + 3 = 11"
    assert controller.expression == "2x + 3 = 11"
    assert controller.solution is None
    assert solver_service.calls == []


def test_solve_is_manual(controller, png_image, solver_service):
    async def scenario():
        await controller.process_image(png_image)
        return await controller.solve()

    solution = asyncio.run(scenario())

    assert controller.stage == S.DONE
    assert controller.solution is solution
    assert solver_service.calls == [("Solve for x: 2x + 3 = 11", "2x + 3 = 11")]
    assert controller.transitions[-2:] == [(S.READY_TO_SOLVE, S.SOLVING), (S.SOLVING, S.DONE)]


@pytest.mark.parametrize("marker", list(StatusMarker))
def test_marker_from_extraction_ends_in_idle(png_image, marker):
    correction = FakeCorrectionService()
    solver = FakeSolverService()
    vision = FakeVisionService(response={"fullText": marker.value})
    controller = build(vision, correction, solver)

    stage = asyncio.run(controller.process_image(png_image))

    assert stage == S.IDLE
    assert controller.marker is marker
    assert controller.message
    assert correction.calls == []
    assert solver.calls == []
    with pytest.raises(InvalidTransitionError):
        asyncio.run(controller.solve())


def test_no_text_found_scenario_message(png_image):
    controller = build(FakeVisionService(response={"fullText": "NO_TEXT_FOUND"}))
    asyncio.run(controller.process_image(png_image))

    assert controller.stage == S.IDLE
    assert "no math problem" in controller.message.lower()
    assert controller.snapshot()["marker"] == "NO_TEXT_FOUND"


def test_undecodable_upload_ends_in_idle_without_calls():
    vision = FakeVisionService()
    controller = build(vision)

    asyncio.run(controller.process_image(b"\x00\x01garbage"))

    assert controller.stage == S.IDLE
    assert controller.marker is StatusMarker.PROCESSING_ERROR
    assert vision.calls == []


def test_unreadable_path_ends_in_idle_with_processing_error(tmp_path):
    vision = FakeVisionService()
    controller = build(vision)

    stage = asyncio.run(controller.process_image(str(tmp_path / "missing.png")))

    assert stage == S.IDLE
    assert controller.marker is StatusMarker.PROCESSING_ERROR
    assert controller.image.name == "missing.png"
    assert vision.calls == []


def test_correction_failure_keeps_text_and_reaches_ready(png_image):
    vision = FakeVisionService(response={"fullText": "2x + 3 = 11", "expression": "2x + 3 = 11"})
    controller = build(vision, FakeCorrectionService(error=RuntimeError("boom")))

    stage = asyncio.run(controller.process_image(png_image))

    assert stage == S.READY_TO_SOLVE
    assert controller.correction.corrected_text == "2x + 3 = 11"
    assert controller.text == "2x + 3 = 11"
    assert controller.message == CORRECTION_FALLBACK_MESSAGE


def test_edit_after_solve_discards_solution(controller, png_image):
    async def scenario():
        await controller.process_image(png_image)
        await controller.solve()
        controller.edit_text("3x = 12")

    asyncio.run(scenario())

    assert controller.stage == S.READY_TO_SOLVE
    assert controller.solution is None
    assert controller.text == "3x = 12"
    assert controller.expression is None


def test_edit_skips_recorrection(png_image, correction):
    controller = build(correction=correction)

    async def scenario():
        await controller.process_image(png_image)
        controller.edit_text("x + 1 = 2", expression="x + 1 = 2")
        return await controller.solve()

    asyncio.run(scenario())

    assert len(correction.calls) == 1
    assert controller.solver.solver_service.calls == [("x + 1 = 2", "x + 1 = 2")]


def test_cleared_text_solves_to_empty_error_without_call(controller, png_image, solver_service):
    async def scenario():
        await controller.process_image(png_image)
        controller.edit_text("")
        return await controller.solve()

    solution = asyncio.run(scenario())

    assert solution.solution.startswith("**Error:**")
    assert "is empty" in solution.solution
    assert solver_service.calls == []
    assert controller.stage == S.DONE


def test_manual_text_from_idle_can_be_solved(controller, solver_service):
    async def scenario():
        controller.edit_text("5 + 7")
        return await controller.solve()

    asyncio.run(scenario())

    assert solver_service.calls == [("5 + 7", None)]
    assert controller.stage == S.DONE


def test_resolve_from_done_regenerates(controller, png_image, solver_service):
    async def scenario():
        await controller.process_image(png_image)
        await controller.solve()
        await controller.solve()

    asyncio.run(scenario())

    assert len(solver_service.calls) == 2
    assert controller.stage == S.DONE


def test_recorrect_reruns_on_extracted_text(png_image, correction):
    controller = build(correction=correction)

    async def scenario():
        await controller.process_image(png_image)
        controller.edit_text("something else")
        await controller.recorrect()

    asyncio.run(scenario())

    assert correction.calls[-1] == ("Solve for x: 2x + 3 = 11", "2x + 3 = 11")
    assert controller.text == "Solve for x: 2x + 3 = 11"
    assert controller.stage == S.READY_TO_SOLVE


def test_recorrect_requires_extracted_content(controller):
    controller.edit_text("typed by hand")
    with pytest.raises(InvalidTransitionError):
        asyncio.run(controller.recorrect())


def test_new_image_discards_previous_results(controller, png_image):
    next_image = ImageReference(data=make_image_bytes("PNG"), name="next.png")

    async def scenario():
        await controller.process_image(png_image)
        await controller.solve()
        await controller.process_image(next_image)

    asyncio.run(scenario())

    assert controller.solution is None
    assert controller.stage == S.READY_TO_SOLVE
    assert controller.extraction.image is next_image
    assert controller.transitions[-3] == (S.DONE, S.EXTRACTING)


def test_stale_extraction_is_discarded():
    first = ImageReference(data=make_image_bytes("PNG"), name="first.png")
    second = ImageReference(data=make_image_bytes("PNG"), name="second.png")

    class SlowFirstVision(FakeVisionService):
        def __init__(self):
            super().__init__()
            self.release = None

        async def recognize(self, image):
            self.calls.append(image)
            if image.name == "first.png":
                await self.release.wait()
                return {"fullText": "from the first image"}
            return {"fullText": "from the second image"}

    vision = SlowFirstVision()
    correction = FakeCorrectionService()
    controller = build(vision, correction)

    async def scenario():
        vision.release = asyncio.Event()
        slow = asyncio.create_task(controller.process_image(first))
        while not vision.calls:
            await asyncio.sleep(0)
        await controller.process_image(second)
        vision.release.set()
        return await slow

    stale_result = asyncio.run(scenario())

    assert stale_result is None
    assert controller.image is second
    assert controller.text == "from the second image"
    assert correction.calls == [("from the second image", None)]


def test_stale_solution_is_discarded(png_image):
    class SlowSolver(FakeSolverService):
        async def solve(self, context, expression=None):
            self.calls.append((context, expression))
            await self.release.wait()
            return {"solution": "x = 4"}

    solver = SlowSolver()
    controller = build(solver=solver)

    async def scenario():
        solver.release = asyncio.Event()
        await controller.process_image(png_image)
        pending = asyncio.create_task(controller.solve())
        while not solver.calls:
            await asyncio.sleep(0)
        controller.clear()
        solver.release.set()
        return await pending

    assert asyncio.run(scenario()) is None
    assert controller.stage == S.IDLE
    assert controller.solution is None


def test_edit_not_allowed_while_busy(png_image):
    class SlowSolver(FakeSolverService):
        async def solve(self, context, expression=None):
            self.calls.append((context, expression))
            await asyncio.sleep(0)
            return {"solution": "ok"}

    controller = build(solver=SlowSolver())

    async def scenario():
        await controller.process_image(png_image)
        pending = asyncio.create_task(controller.solve())
        await asyncio.sleep(0)
        with pytest.raises(InvalidTransitionError):
            controller.edit_text("changed mid-solve")
        await pending

    asyncio.run(scenario())
    assert controller.text == "Solve for x: 2x + 3 = 11"


def test_clear_resets_everything(controller, png_image):
    asyncio.run(controller.process_image(png_image))
    controller.clear()

    assert controller.stage == S.IDLE
    assert controller.image is None
    assert controller.extraction is None
    assert controller.text == ""
    assert controller.message is None


def test_snapshot_is_serializable(controller, png_image):
    import json

    async def scenario():
        await controller.process_image(png_image)
        await controller.solve()

    asyncio.run(scenario())
    snapshot = json.loads(json.dumps(controller.snapshot()))

    assert snapshot["stage"] == "done"
    assert snapshot["correction"]["outcome"] == "corrected"
    assert snapshot["solution"]["kind"] == "success"
    assert snapshot["image"]["name"] == "problem.png"
