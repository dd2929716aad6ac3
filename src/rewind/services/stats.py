"""Session statistics: token aggregation and tool-call tallies."""

from __future__ import annotations

from collections.abc import Iterable, Sequence

from rewind.models.messages import TokenUsage, ToolCall
from rewind.models.sessions import SessionStats, Turn
from rewind.services.cost import (
    calculate_sub_agent_cost_estimated,
    calculate_turn_cost_estimated,
    estimate_sub_agent_output,
    estimate_total_output_tokens,
)


def count_tool_calls(tool_calls: Iterable[ToolCall], counts: dict[str, int]) -> int:
    """Tally calls by name into ``counts``; returns how many errored."""
    errors = 0
    for tc in tool_calls:
        counts[tc.name] = counts.get(tc.name, 0) + 1
        if tc.is_error:
            errors += 1
    return errors


def _add_usage(stats: SessionStats, usage: TokenUsage, estimated_output: int, cost: float) -> None:
    stats.total_input_tokens += usage.input_tokens
    stats.total_output_tokens += estimated_output
    stats.total_cache_creation_tokens += usage.cache_creation_tokens
    stats.total_cache_read_tokens += usage.cache_read_tokens
    stats.total_cost_usd += cost


def compute_stats(turns: Sequence[Turn]) -> SessionStats:
    stats = SessionStats(turn_count=len(turns))

    for turn in turns:
        if turn.token_usage is not None:
            _add_usage(
                stats,
                turn.token_usage,
                estimate_total_output_tokens(turn),
                calculate_turn_cost_estimated(turn),
            )
        if turn.duration_ms:
            stats.total_duration_ms += turn.duration_ms
        stats.error_count += count_tool_calls(turn.tool_calls, stats.tool_call_counts)

        for message in turn.sub_agent_activity:
            stats.error_count += count_tool_calls(message.tool_calls, stats.tool_call_counts)
            if message.token_usage is not None:
                _add_usage(
                    stats,
                    message.token_usage,
                    estimate_sub_agent_output(message),
                    calculate_sub_agent_cost_estimated(message),
                )

    return stats
