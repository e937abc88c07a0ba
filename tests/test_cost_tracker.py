from __future__ import annotations

from types import SimpleNamespace

from math_pipeline.cost_tracker import (
    PRICING,
    CostTracker,
    extract_usage_from_response,
    get_tracker,
    reset_tracker,
)


def test_add_call_prices_known_and_unknown_models():
    tracker = CostTracker()
    known = tracker.add_call("solve", "gemini-2.5-pro", 1_000_000, 0, 10.0)
    unknown = tracker.add_call("solve", "mystery-model", 0, 1_000_000, 5.0)

    assert known.cost == PRICING["gemini-2.5-pro"]["input"]
    assert unknown.cost == PRICING["default"]["output"]
    assert tracker.total_tokens == 2_000_000
    assert tracker.get_stage_summary()["solve"]["calls"] == 2


def test_summary_lists_each_stage():
    tracker = CostTracker()
    tracker.add_call("extraction", "gemini-2.0-flash", 100, 10, 50.0)
    tracker.add_call("correction", "gemini-2.0-flash", 50, 5, 20.0)

    summary = tracker.format_summary()
    assert "extraction" in summary
    assert "correction" in summary
    assert tracker.to_dict()["total_tokens"] == 165


def test_reset_replaces_global_tracker():
    get_tracker().add_call("solve", "gpt-4o", 1, 1, 1.0)
    fresh = reset_tracker()

    assert get_tracker() is fresh
    assert fresh.calls == []


def test_usage_extraction_handles_both_vendors():
    gemini = SimpleNamespace(usage_metadata=SimpleNamespace(prompt_token_count=7, candidates_token_count=3))
    openai = SimpleNamespace(usage=SimpleNamespace(prompt_tokens=11, completion_tokens=2))

    assert extract_usage_from_response(gemini) == (7, 3)
    assert extract_usage_from_response(openai) == (11, 2)
    assert extract_usage_from_response(object()) == (0, 0)
