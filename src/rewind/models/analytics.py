"""Analytics models."""

from __future__ import annotations

from pydantic import BaseModel


class UsageBucket(BaseModel):
    """Token totals with estimated output and the matching cost."""

    input: int = 0
    output: int = 0
    cache_read: int = 0
    cache_write: int = 0
    cost: float = 0.0


class AgentBreakdown(BaseModel):
    main_agent: UsageBucket
    sub_agents: UsageBucket


class ModelBreakdown(UsageBucket):
    """Usage attributed to one model id."""

    model: str
    short_name: str = ""


class CacheBreakdown(BaseModel):
    cache_read: int = 0
    cache_write: int = 0
    new_input: int = 0
    total: int = 0
