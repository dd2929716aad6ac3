"""Model pricing tiers, cost calculation and output-token estimation.

The session log records ``output_tokens`` from the first streamed event of
each API call, which undercounts the final figure and omits thinking tokens.
Cost helpers suffixed ``_estimated`` substitute an estimate derived from the
visible content (about four characters per token) whenever it is larger.
"""

from __future__ import annotations

import json
import math
from collections.abc import Iterable, Sequence
from dataclasses import dataclass

from rewind.models.analytics import AgentBreakdown, CacheBreakdown, ModelBreakdown, UsageBucket
from rewind.models.messages import SubAgentMessage, TokenUsage, ToolCall
from rewind.models.sessions import Turn

CHARS_PER_TOKEN = 4

# Input plus cache-read tokens above this switch to extended-context pricing.
EXTENDED_CONTEXT_THRESHOLD = 200_000

WEB_SEARCH_COST_PER_REQUEST = 0.01


@dataclass(frozen=True)
class PricingTier:
    """Prices per million tokens (USD); web search is per request."""

    input: float
    output: float
    cache_write: float
    cache_read: float
    web_search: float = WEB_SEARCH_COST_PER_REQUEST


# Standard tiers
TIER_HAIKU_35 = PricingTier(input=0.80, output=4.0, cache_write=1.0, cache_read=0.08)
TIER_HAIKU_45 = PricingTier(input=1.0, output=5.0, cache_write=1.25, cache_read=0.10)
TIER_SONNET_LEGACY = PricingTier(input=3.0, output=15.0, cache_write=3.75, cache_read=0.30)
TIER_LATEST = PricingTier(input=5.0, output=25.0, cache_write=6.25, cache_read=0.50)
TIER_OPUS_LEGACY = PricingTier(input=15.0, output=75.0, cache_write=18.75, cache_read=1.50)

# Extended context tiers
TIER_SONNET_LEGACY_EXTENDED = PricingTier(input=6.0, output=22.5, cache_write=7.50, cache_read=0.60)
TIER_EXTENDED = PricingTier(input=10.0, output=37.5, cache_write=12.50, cache_read=1.00)


@dataclass(frozen=True)
class _TierMatch:
    match: str
    tier: PricingTier
    extended_tier: PricingTier | None = None


# Full model ids carry a date suffix ("claude-opus-4-6-20260119"); match by substring.
MODEL_TIERS: tuple[_TierMatch, ...] = (
    _TierMatch("haiku-4-5", TIER_HAIKU_45),
    _TierMatch("haiku-4-0", TIER_HAIKU_35),
    _TierMatch("3-5-haiku", TIER_HAIKU_35),
    _TierMatch("sonnet-4-6", TIER_LATEST, TIER_EXTENDED),
    _TierMatch("sonnet-4-5", TIER_LATEST, TIER_EXTENDED),
    _TierMatch("sonnet-4-0", TIER_SONNET_LEGACY, TIER_SONNET_LEGACY_EXTENDED),
    _TierMatch("3-7-sonnet", TIER_SONNET_LEGACY, TIER_SONNET_LEGACY_EXTENDED),
    _TierMatch("3-5-sonnet", TIER_SONNET_LEGACY, TIER_SONNET_LEGACY_EXTENDED),
    _TierMatch("opus-4-6", TIER_LATEST, TIER_EXTENDED),
    _TierMatch("opus-4-5", TIER_LATEST, TIER_EXTENDED),
    _TierMatch("opus-4-1", TIER_OPUS_LEGACY),
    _TierMatch("opus-4-0", TIER_OPUS_LEGACY),
)

FAMILY_FALLBACKS: tuple[_TierMatch, ...] = (
    _TierMatch("haiku", TIER_HAIKU_45),
    _TierMatch("sonnet", TIER_LATEST),
    _TierMatch("opus", TIER_LATEST),
)

DEFAULT_TIER = TIER_LATEST
DEFAULT_EXTENDED_TIER = TIER_EXTENDED


def resolve_tier(model: str, total_input_tokens: int = 0) -> PricingTier:
    """Pick the pricing tier for a model id, falling back to the latest tier."""
    is_extended = total_input_tokens > EXTENDED_CONTEXT_THRESHOLD

    for entry in MODEL_TIERS:
        if entry.match in model:
            if is_extended and entry.extended_tier is not None:
                return entry.extended_tier
            return entry.tier

    for entry in FAMILY_FALLBACKS:
        if entry.match in model:
            return entry.tier

    return DEFAULT_EXTENDED_TIER if is_extended else DEFAULT_TIER


@dataclass(frozen=True)
class CostInput:
    model: str | None
    input_tokens: int = 0
    output_tokens: int = 0
    cache_write_tokens: int = 0
    cache_read_tokens: int = 0
    web_search_requests: int = 0


def calculate_cost(params: CostInput | None = None, **kwargs: object) -> float:
    """Cost in USD of one API call or one turn.

    Accepts either a ``CostInput`` or its fields as keyword arguments.
    """
    c = params if params is not None else CostInput(**kwargs)  # type: ignore[arg-type]
    tier = resolve_tier(c.model or "", c.input_tokens + c.cache_read_tokens)
    return (
        (c.input_tokens / 1_000_000) * tier.input
        + (c.output_tokens / 1_000_000) * tier.output
        + (c.cache_write_tokens / 1_000_000) * tier.cache_write
        + (c.cache_read_tokens / 1_000_000) * tier.cache_read
        + c.web_search_requests * tier.web_search
    )


def calculate_turn_cost(
    model: str | None,
    input_tokens: int,
    output_tokens: int,
    cache_creation_tokens: int,
    cache_read_tokens: int,
) -> float:
    """Positional wrapper around ``calculate_cost`` using reported figures."""
    return calculate_cost(
        CostInput(
            model=model,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            cache_write_tokens=cache_creation_tokens,
            cache_read_tokens=cache_read_tokens,
        )
    )


def chars_to_tokens(chars: int) -> int:
    return math.ceil(chars / CHARS_PER_TOKEN)


def _total_length(strings: Iterable[str]) -> int:
    return sum(len(s) for s in strings)


def _tool_input_length(tool_calls: Sequence[ToolCall]) -> int:
    # Compact separators to match how the input appears on the wire.
    return sum(
        len(json.dumps(tc.input, separators=(",", ":"), ensure_ascii=False)) for tc in tool_calls
    )


def estimate_thinking_tokens(turn: Turn) -> int:
    return chars_to_tokens(_total_length(b.thinking for b in turn.thinking))


def estimate_visible_output_tokens(turn: Turn) -> int:
    """Text plus tool-call input, excluding thinking."""
    return chars_to_tokens(_total_length(turn.assistant_text) + _tool_input_length(turn.tool_calls))


def estimate_total_output_tokens(turn: Turn) -> int:
    """The larger of the reported output tokens and the content-based estimate."""
    estimated = estimate_thinking_tokens(turn) + estimate_visible_output_tokens(turn)
    reported = turn.token_usage.output_tokens if turn.token_usage else 0
    return max(estimated, reported)


def estimate_sub_agent_output(message: SubAgentMessage) -> int:
    chars = (
        _total_length(message.thinking)
        + _total_length(message.text)
        + _tool_input_length(message.tool_calls)
    )
    reported = message.token_usage.output_tokens if message.token_usage else 0
    return max(chars_to_tokens(chars), reported)


def _usage_cost(model: str | None, usage: TokenUsage, output_tokens: int) -> float:
    return calculate_cost(
        CostInput(
            model=model,
            input_tokens=usage.input_tokens,
            output_tokens=output_tokens,
            cache_write_tokens=usage.cache_creation_tokens,
            cache_read_tokens=usage.cache_read_tokens,
        )
    )


def calculate_turn_cost_estimated(turn: Turn) -> float:
    if turn.token_usage is None:
        return 0.0
    return _usage_cost(turn.model, turn.token_usage, estimate_total_output_tokens(turn))


def calculate_sub_agent_cost_estimated(message: SubAgentMessage) -> float:
    if message.token_usage is None:
        return 0.0
    return _usage_cost(message.model, message.token_usage, estimate_sub_agent_output(message))


def format_cost(usd: float) -> str:
    if usd < 0.01:
        return f"${usd:.4f}"
    if usd < 1:
        return f"${usd:.3f}"
    return f"${usd:.2f}"


# ── Breakdowns ──


def _add_to_bucket(
    bucket: UsageBucket, usage: TokenUsage, model: str | None, estimated_output: int
) -> None:
    bucket.input += usage.input_tokens
    bucket.output += estimated_output
    bucket.cache_read += usage.cache_read_tokens
    bucket.cache_write += usage.cache_creation_tokens
    bucket.cost += _usage_cost(model, usage, estimated_output)


def compute_agent_breakdown(turns: Sequence[Turn]) -> AgentBreakdown:
    """Split usage between the main agent and all sub-agents."""
    main = UsageBucket()
    sub = UsageBucket()
    for turn in turns:
        if turn.token_usage is not None:
            _add_to_bucket(main, turn.token_usage, turn.model, estimate_total_output_tokens(turn))
        for message in turn.sub_agent_activity:
            if message.token_usage is not None:
                _add_to_bucket(
                    sub, message.token_usage, message.model, estimate_sub_agent_output(message)
                )
    return AgentBreakdown(main_agent=main, sub_agents=sub)


def shorten_model(model: str) -> str:
    """``claude-opus-4-6-20260119`` -> ``opus-4-6``."""
    name = model.removeprefix("claude-")
    parts = name.split("-")
    if parts and parts[-1].isdigit() and len(parts[-1]) == 8:
        parts = parts[:-1]
    return "-".join(parts) or model


def compute_model_breakdown(turns: Sequence[Turn]) -> list[ModelBreakdown]:
    """Usage per model id, most expensive first."""
    entries: dict[str, ModelBreakdown] = {}

    def entry_for(model: str | None) -> ModelBreakdown:
        key = model or "unknown"
        if key not in entries:
            entries[key] = ModelBreakdown(model=key, short_name=shorten_model(key))
        return entries[key]

    for turn in turns:
        if turn.token_usage is not None:
            _add_to_bucket(
                entry_for(turn.model),
                turn.token_usage,
                turn.model,
                estimate_total_output_tokens(turn),
            )
        for message in turn.sub_agent_activity:
            if message.token_usage is not None:
                _add_to_bucket(
                    entry_for(message.model),
                    message.token_usage,
                    message.model,
                    estimate_sub_agent_output(message),
                )

    return sorted(entries.values(), key=lambda e: e.cost, reverse=True)


def compute_cache_breakdown(turns: Sequence[Turn]) -> CacheBreakdown:
    cache_read = cache_write = new_input = 0
    for turn in turns:
        usages = [turn.token_usage] + [m.token_usage for m in turn.sub_agent_activity]
        for usage in usages:
            if usage is None:
                continue
            cache_read += usage.cache_read_tokens
            cache_write += usage.cache_creation_tokens
            new_input += usage.input_tokens
    return CacheBreakdown(
        cache_read=cache_read,
        cache_write=cache_write,
        new_input=new_input,
        total=cache_read + cache_write + new_input,
    )
