"""Tests for pricing tiers, cost calculation and output estimation."""

from __future__ import annotations

import pytest

from factories import make_tool_call, make_turn
from rewind.models.messages import SubAgentMessage, ThinkingBlock, TokenUsage
from rewind.models.sessions import Turn
from rewind.services.cost import (
    TIER_EXTENDED,
    TIER_HAIKU_35,
    TIER_HAIKU_45,
    TIER_LATEST,
    TIER_OPUS_LEGACY,
    TIER_SONNET_LEGACY,
    TIER_SONNET_LEGACY_EXTENDED,
    CostInput,
    calculate_cost,
    calculate_sub_agent_cost_estimated,
    calculate_turn_cost,
    calculate_turn_cost_estimated,
    chars_to_tokens,
    compute_agent_breakdown,
    compute_cache_breakdown,
    compute_model_breakdown,
    estimate_sub_agent_output,
    estimate_thinking_tokens,
    estimate_total_output_tokens,
    estimate_visible_output_tokens,
    format_cost,
    resolve_tier,
    shorten_model,
)


class TestResolveTier:
    @pytest.mark.parametrize(
        ("model", "tier"),
        [
            ("claude-opus-4-6-20260119", TIER_LATEST),
            ("claude-opus-4-5-20251101", TIER_LATEST),
            ("claude-opus-4-1-20250805", TIER_OPUS_LEGACY),
            ("claude-opus-4-0", TIER_OPUS_LEGACY),
            ("claude-sonnet-4-5-20250929", TIER_LATEST),
            ("claude-sonnet-4-0", TIER_SONNET_LEGACY),
            ("claude-3-7-sonnet-20250219", TIER_SONNET_LEGACY),
            ("claude-haiku-4-5-20251001", TIER_HAIKU_45),
            ("claude-3-5-haiku-20241022", TIER_HAIKU_35),
            ("claude-haiku-next", TIER_HAIKU_45),
            ("claude-opus-next", TIER_LATEST),
            ("some-other-model", TIER_LATEST),
            ("", TIER_LATEST),
        ],
    )
    def test_standard_tiers(self, model: str, tier: object) -> None:
        assert resolve_tier(model) == tier

    def test_extended_tiers(self) -> None:
        assert resolve_tier("claude-opus-4-6", 200_001) == TIER_EXTENDED
        assert resolve_tier("claude-sonnet-4-0", 250_000) == TIER_SONNET_LEGACY_EXTENDED
        assert resolve_tier("unknown", 300_000) == TIER_EXTENDED

    def test_threshold_is_exclusive(self) -> None:
        assert resolve_tier("claude-opus-4-6", 200_000) == TIER_LATEST

    def test_legacy_opus_has_no_extended_tier(self) -> None:
        assert resolve_tier("claude-opus-4-1", 500_000) == TIER_OPUS_LEGACY


class TestCalculateCost:
    def test_opus_latest_example(self) -> None:
        cost = calculate_cost(
            model="claude-opus-4-6",
            input_tokens=100_000,
            output_tokens=100_000,
            cache_write_tokens=0,
            cache_read_tokens=0,
        )
        assert cost == pytest.approx(3.0)

    def test_accepts_cost_input(self) -> None:
        params = CostInput(model="claude-opus-4-6", input_tokens=100_000)
        assert calculate_cost(params) == pytest.approx(0.5)

    def test_large_input_uses_extended_rates(self) -> None:
        params = CostInput(model="claude-opus-4-6", input_tokens=1_000_000)
        assert calculate_cost(params) == pytest.approx(10.0)

    def test_all_categories(self) -> None:
        cost = calculate_cost(
            model="claude-sonnet-4-0",
            input_tokens=1_000_000,
            output_tokens=1_000_000,
            cache_write_tokens=1_000_000,
            cache_read_tokens=100_000,
        )
        # Input plus cache read exceeds the threshold: extended legacy sonnet rates.
        assert cost == pytest.approx(6.0 + 22.5 + 7.5 + 0.06)

    def test_cache_read_counts_toward_threshold(self) -> None:
        cost = calculate_cost(
            model="claude-opus-4-6", input_tokens=150_000, cache_read_tokens=60_000
        )
        assert cost == pytest.approx(1.5 + 0.06)

    def test_cache_write_does_not_count_toward_threshold(self) -> None:
        cost = calculate_cost(
            model="claude-opus-4-6", input_tokens=150_000, cache_write_tokens=100_000
        )
        assert cost == pytest.approx(0.75 + 0.625)

    def test_web_search_requests(self) -> None:
        cost = calculate_cost(model="claude-opus-4-6", web_search_requests=3)
        assert cost == pytest.approx(0.03)

    def test_unknown_model_uses_latest(self) -> None:
        assert calculate_cost(model=None, output_tokens=1_000_000) == pytest.approx(25.0)

    def test_turn_cost_wrapper(self) -> None:
        cost = calculate_turn_cost("claude-haiku-4-5", 1_000_000, 0, 1_000_000, 0)
        assert cost == pytest.approx(1.0 + 1.25)


class TestEstimation:
    def test_chars_to_tokens_rounds_up(self) -> None:
        assert chars_to_tokens(0) == 0
        assert chars_to_tokens(1) == 1
        assert chars_to_tokens(8) == 2
        assert chars_to_tokens(9) == 3

    def test_turn_estimates(self) -> None:
        turn = make_turn(
            "go",
            [make_tool_call("Bash", {"a": 1})],
            thinking=[ThinkingBlock(thinking="x" * 8)],
            assistant_text=["abcd" * 3],
        )
        assert estimate_thinking_tokens(turn) == 2
        # 12 text chars plus '{"a":1}' (7 chars).
        assert estimate_visible_output_tokens(turn) == 5
        assert estimate_total_output_tokens(turn) == 7

    def test_reported_output_wins_when_larger(self) -> None:
        turn = make_turn(
            "go",
            assistant_text=["tiny"],
            token_usage=TokenUsage(output_tokens=100),
        )
        assert estimate_total_output_tokens(turn) == 100

    def test_estimated_turn_cost_uses_estimate(self) -> None:
        turn = make_turn(
            "go",
            assistant_text=["x" * 4000],
            token_usage=TokenUsage(input_tokens=0, output_tokens=1),
            model="claude-opus-4-6",
        )
        assert calculate_turn_cost_estimated(turn) == pytest.approx(1000 * 25 / 1_000_000)

    def test_estimated_turn_cost_without_usage(self) -> None:
        assert calculate_turn_cost_estimated(make_turn("go", assistant_text=["x" * 400])) == 0.0

    def test_sub_agent_estimates(self) -> None:
        message = SubAgentMessage(
            agent_id="a1",
            thinking=["t" * 4],
            text=["y" * 8],
            tool_calls=[make_tool_call("Grep", {})],
            token_usage=TokenUsage(input_tokens=1_000_000, output_tokens=1),
            model="claude-haiku-4-5",
        )
        # 4 + 8 + len("{}") = 14 chars -> 4 tokens.
        assert estimate_sub_agent_output(message) == 4
        expected = 1.0 + 4 * 5 / 1_000_000
        assert calculate_sub_agent_cost_estimated(message) == pytest.approx(expected)


class TestFormatCost:
    @pytest.mark.parametrize(
        ("usd", "expected"),
        [
            (0.0, "$0.0000"),
            (0.005, "$0.0050"),
            (0.5, "$0.500"),
            (1.0, "$1.00"),
            (12.5, "$12.50"),
        ],
    )
    def test_format(self, usd: float, expected: str) -> None:
        assert format_cost(usd) == expected


class TestBreakdowns:
    def _turns(self) -> list[Turn]:
        sub = SubAgentMessage(
            agent_id="a1",
            model="claude-haiku-4-5-20251001",
            token_usage=TokenUsage(input_tokens=1_000_000, cache_read_tokens=10),
        )
        return [
            make_turn(
                "one",
                model="claude-opus-4-6-20260119",
                token_usage=TokenUsage(input_tokens=1_000_000, cache_creation_tokens=5),
                sub_agent_activity=[sub],
            ),
            make_turn(
                "two", model="claude-opus-4-6-20260119", token_usage=TokenUsage(input_tokens=10)
            ),
            make_turn("three"),
        ]

    def test_agent_breakdown(self) -> None:
        breakdown = compute_agent_breakdown(self._turns())
        assert breakdown.main_agent.input == 1_000_010
        assert breakdown.sub_agents.input == 1_000_000
        assert breakdown.sub_agents.cost == pytest.approx(1.0 + 10 * 0.10 / 1_000_000)

    def test_model_breakdown_sorted_by_cost(self) -> None:
        entries = compute_model_breakdown(self._turns())
        assert [e.short_name for e in entries] == ["opus-4-6", "haiku-4-5"]
        assert entries[0].input == 1_000_010

    def test_cache_breakdown(self) -> None:
        cache = compute_cache_breakdown(self._turns())
        assert cache.cache_read == 10
        assert cache.cache_write == 5
        assert cache.new_input == 2_000_010
        assert cache.total == 2_000_025

    @pytest.mark.parametrize(
        ("model", "short"),
        [
            ("claude-opus-4-6-20260119", "opus-4-6"),
            ("claude-3-5-haiku-20241022", "3-5-haiku"),
            ("claude-sonnet-4-5", "sonnet-4-5"),
            ("gpt-4o", "gpt-4o"),
        ],
    )
    def test_shorten_model(self, model: str, short: str) -> None:
        assert shorten_model(model) == short
