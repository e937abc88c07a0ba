"""
Cost Tracker Module

Tracks model usage and costs across the extraction, correction and
solve stages. Thread-safe, so services running in executors can share
the global tracker.
"""

from dataclasses import dataclass, field
from typing import Optional
import threading


# Pricing per 1M tokens (update as needed)
PRICING = {
    "gemini-2.5-pro": {
        "input": 1.25,
        "output": 10.00,
    },
    "gemini-2.5-flash": {
        "input": 0.30,
        "output": 2.50,
    },
    "gemini-2.0-flash": {
        "input": 0.10,
        "output": 0.40,
    },
    "gemini-1.5-pro": {
        "input": 1.25,
        "output": 5.00,
    },
    "gpt-4o": {
        "input": 2.50,
        "output": 10.00,
    },
    "default": {
        "input": 0.15,
        "output": 0.60,
    }
}


@dataclass
class ModelCall:
    """Record of a single model call."""
    stage: str
    model: str
    input_tokens: int
    output_tokens: int
    duration_ms: float
    cost: float


@dataclass
class CostTracker:
    """Track model usage and costs per pipeline stage."""

    calls: list[ModelCall] = field(default_factory=list)

    total_input_tokens: int = 0
    total_output_tokens: int = 0
    total_cost: float = 0.0
    total_duration_ms: float = 0.0

    _lock: threading.RLock = field(default_factory=threading.RLock)

    @property
    def total_tokens(self) -> int:
        return self.total_input_tokens + self.total_output_tokens

    def add_call(
        self,
        stage: str,
        model: str,
        input_tokens: int,
        output_tokens: int,
        duration_ms: float
    ) -> ModelCall:
        """Record a model call (thread-safe)."""
        pricing = PRICING.get(model, PRICING["default"])
        cost = (
            (input_tokens / 1_000_000) * pricing["input"]
            + (output_tokens / 1_000_000) * pricing["output"]
        )

        call = ModelCall(
            stage=stage,
            model=model,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            duration_ms=duration_ms,
            cost=cost
        )

        with self._lock:
            self.calls.append(call)
            self.total_input_tokens += input_tokens
            self.total_output_tokens += output_tokens
            self.total_cost += cost
            self.total_duration_ms += duration_ms

        return call

    def get_stage_summary(self) -> dict[str, dict]:
        """Cost breakdown by stage (thread-safe)."""
        with self._lock:
            summary = {}
            for call in self.calls:
                stage = summary.setdefault(call.stage, {
                    "calls": 0,
                    "input_tokens": 0,
                    "output_tokens": 0,
                    "cost": 0.0,
                    "duration_ms": 0.0
                })
                stage["calls"] += 1
                stage["input_tokens"] += call.input_tokens
                stage["output_tokens"] += call.output_tokens
                stage["cost"] += call.cost
                stage["duration_ms"] += call.duration_ms
            return summary

    def format_summary(self) -> str:
        """Format a human-readable summary."""
        lines = ["Model usage:"]
        for stage, data in self.get_stage_summary().items():
            lines.append(
                f"  {stage:<12} ${data['cost']:.4f} "
                f"({data['input_tokens']:,}+{data['output_tokens']:,} tokens, {data['calls']} call(s))"
            )
        lines.append(f"  TOTAL        ${self.total_cost:.4f} ({self.total_tokens:,} tokens)")
        lines.append(f"  Time         {self.total_duration_ms / 1000:.1f}s")
        return "\n".join(lines)

    def to_dict(self) -> dict:
        """Export as dictionary for JSON serialization (thread-safe)."""
        with self._lock:
            return {
                "total_input_tokens": self.total_input_tokens,
                "total_output_tokens": self.total_output_tokens,
                "total_tokens": self.total_tokens,
                "total_cost_usd": round(self.total_cost, 6),
                "total_duration_ms": round(self.total_duration_ms, 2),
                "stages": self.get_stage_summary(),
            }


_global_tracker: Optional[CostTracker] = None


def get_tracker() -> CostTracker:
    """Get or create the global cost tracker."""
    global _global_tracker
    if _global_tracker is None:
        _global_tracker = CostTracker()
    return _global_tracker


def reset_tracker() -> CostTracker:
    """Reset the global cost tracker."""
    global _global_tracker
    _global_tracker = CostTracker()
    return _global_tracker


def extract_usage_from_response(response) -> tuple[int, int]:
    """Read token usage from a Gemini or OpenAI response (0, 0 if absent)."""
    usage = getattr(response, "usage_metadata", None)
    if usage is not None:
        return (
            getattr(usage, "prompt_token_count", 0) or 0,
            getattr(usage, "candidates_token_count", 0) or 0,
        )

    usage = getattr(response, "usage", None)
    if usage is not None:
        return (
            getattr(usage, "prompt_tokens", 0) or 0,
            getattr(usage, "completion_tokens", 0) or 0,
        )

    return (0, 0)
