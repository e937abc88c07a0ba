"""
Model Services Module

Thin async clients for the three models the pipeline talks to:
vision (reads the photo), correction (fixes misreads) and solver.
Each service makes exactly one request per call and returns the parsed
JSON object; transport errors propagate to the calling stage, which
decides how to absorb them.
"""

import json
import logging
import re
import time
from pathlib import Path
from typing import Optional

import google.generativeai as genai

from config import (
    GOOGLE_API_KEY,
    OPENAI_API_KEY,
    SOLVER_BACKEND,
    VISION_MODEL,
    CORRECTION_MODEL,
    SOLVER_MODEL,
    OPENAI_SOLVER_MODEL,
    SERVICE_TIMEOUT,
)
from .cost_tracker import get_tracker, extract_usage_from_response
from .errors import EmptyResponseError
from .imaging import ImageReference


logger = logging.getLogger(__name__)

# Configure Gemini API
genai.configure(api_key=GOOGLE_API_KEY)

PROMPTS_DIR = Path(__file__).parent / "prompts"


def load_prompt(name: str) -> str:
    """Load a prompt template from the prompts directory."""
    prompt_path = PROMPTS_DIR / f"{name}_prompt.md"
    if prompt_path.exists():
        return prompt_path.read_text(encoding="utf-8")
    raise FileNotFoundError(f"Prompt not found: {prompt_path}")


def fill_prompt(template: str, **values: Optional[str]) -> str:
    """Substitute {placeholders} in one pass; absent values render as '(none)'."""
    if not values:
        return template
    pattern = re.compile(r"\{(" + "|".join(re.escape(key) for key in values) + r")\}")
    return pattern.sub(lambda match: values[match.group(1)] or "(none)", template)


def parse_json_response(response_text: str) -> dict:
    """
    Parse a model's JSON answer.

    Strips markdown fences and any chatter around the object. Never
    raises: an unparseable answer comes back as {"_error", "_raw"} so
    the stage can treat it as a malformed response.
    """
    text = (response_text or "").strip()

    if text.startswith("```json"):
        text = text[7:]
    elif text.startswith("```"):
        text = text[3:]
    if text.endswith("```"):
        text = text[:-3]
    text = text.strip()

    start = text.find("{")
    end = text.rfind("}") + 1
    if start == -1 or end <= start:
        return {"_error": "No JSON object in response", "_raw": response_text}

    json_str = text[start:end]
    try:
        data = json.loads(json_str)
    except json.JSONDecodeError:
        # LaTeX backslashes are the usual culprit
        repaired = re.sub(r'\\(?!["\\/bfnrtu])', r"\\\\", json_str)
        try:
            data = json.loads(repaired)
        except json.JSONDecodeError as e:
            return {"_error": f"JSON parse error: {e}", "_raw": response_text}

    if not isinstance(data, dict):
        return {"_error": "Response is not a JSON object", "_raw": response_text}
    return data


def _reason_name(reason) -> str:
    return getattr(reason, "name", None) or str(reason)


class GeminiService:
    """Shared plumbing for Gemini-backed services."""

    stage = "model"
    prompt_name = ""

    def __init__(self, model_name: str, timeout: int = SERVICE_TIMEOUT):
        self.model_name = model_name
        self.model = genai.GenerativeModel(self.model_name)
        self.timeout = timeout
        self.prompt_template = load_prompt(self.prompt_name)

    async def _generate(self, contents: list) -> dict:
        start_time = time.time()
        response = await self.model.generate_content_async(
            contents,
            generation_config={
                "temperature": 0.0,
                "response_mime_type": "application/json",
            },
            request_options={"timeout": self.timeout},
        )
        duration_ms = (time.time() - start_time) * 1000

        if not response.candidates or not response.candidates[0].content.parts:
            feedback = getattr(response, "prompt_feedback", None)
            block_reason = getattr(feedback, "block_reason", None)
            if block_reason:
                raise EmptyResponseError(
                    f"Request blocked by safety filter (block_reason: {_reason_name(block_reason)})",
                    finish_reason="SAFETY",
                )
            finish_reason = (
                _reason_name(response.candidates[0].finish_reason)
                if response.candidates else "UNKNOWN"
            )
            raise EmptyResponseError(
                f"Empty response from API (finish_reason: {finish_reason})",
                finish_reason=finish_reason,
            )

        input_tokens, output_tokens = extract_usage_from_response(response)
        get_tracker().add_call(
            stage=self.stage,
            model=self.model_name,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            duration_ms=duration_ms,
        )
        logger.debug("%s call took %.0fms", self.stage, duration_ms)

        return parse_json_response(response.text)


class GeminiVisionService(GeminiService):
    """Reads the problem text and isolated expression off an image."""

    stage = "extraction"
    prompt_name = "extract"

    def __init__(self, model_name: str = None, timeout: int = SERVICE_TIMEOUT):
        super().__init__(model_name or VISION_MODEL, timeout)

    async def recognize(self, image: ImageReference) -> dict:
        return await self._generate([self.prompt_template, image.to_part()])


class GeminiCorrectionService(GeminiService):
    """Fixes OCR and handwriting misreads."""

    stage = "correction"
    prompt_name = "correct"

    def __init__(self, model_name: str = None, timeout: int = SERVICE_TIMEOUT):
        super().__init__(model_name or CORRECTION_MODEL, timeout)

    async def correct(self, text: str, expression: Optional[str] = None) -> dict:
        prompt = fill_prompt(self.prompt_template, text=text, expression=expression)
        return await self._generate([prompt])


class GeminiSolverService(GeminiService):
    """Produces a step-by-step Markdown solution."""

    stage = "solve"
    prompt_name = "solve"

    def __init__(self, model_name: str = None, timeout: int = SERVICE_TIMEOUT):
        super().__init__(model_name or SOLVER_MODEL, timeout)

    async def solve(self, context: str, expression: Optional[str] = None) -> dict:
        prompt = fill_prompt(self.prompt_template, context=context, expression=expression)
        return await self._generate([prompt])


class OpenAISolverService:
    """Solver backed by an OpenAI chat model (SOLVER_BACKEND=openai)."""

    stage = "solve"

    def __init__(self, model_name: str = None, timeout: int = SERVICE_TIMEOUT):
        import openai

        self.model_name = model_name or OPENAI_SOLVER_MODEL
        self.client = openai.AsyncOpenAI(api_key=OPENAI_API_KEY, timeout=timeout)
        self.prompt_template = load_prompt("solve")

    async def solve(self, context: str, expression: Optional[str] = None) -> dict:
        prompt = fill_prompt(self.prompt_template, context=context, expression=expression)

        start_time = time.time()
        response = await self.client.chat.completions.create(
            model=self.model_name,
            messages=[{"role": "user", "content": prompt}],
            temperature=0.0,
            response_format={"type": "json_object"},
        )
        duration_ms = (time.time() - start_time) * 1000

        if not response.choices or not response.choices[0].message.content:
            finish_reason = response.choices[0].finish_reason if response.choices else "UNKNOWN"
            raise EmptyResponseError(
                f"Empty response from API (finish_reason: {finish_reason})",
                finish_reason=str(finish_reason),
            )

        input_tokens, output_tokens = extract_usage_from_response(response)
        get_tracker().add_call(
            stage=self.stage,
            model=self.model_name,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            duration_ms=duration_ms,
        )

        return parse_json_response(response.choices[0].message.content)


def create_services(solver_backend: str = SOLVER_BACKEND) -> tuple:
    """Build the (vision, correction, solver) services from configuration."""
    if solver_backend == "openai":
        solver = OpenAISolverService()
    else:
        solver = GeminiSolverService()
    return GeminiVisionService(), GeminiCorrectionService(), solver
