"""Message-level models shared by raw events and parsed turns."""

from __future__ import annotations

from pydantic import BaseModel, Field

from rewind.models._fields import as_dict, as_int


class TokenUsage(BaseModel):
    """Token usage from a single API call."""

    input_tokens: int = 0
    output_tokens: int = 0
    cache_creation_tokens: int = 0
    cache_read_tokens: int = 0

    @classmethod
    def from_raw(cls, value: object) -> TokenUsage | None:
        """Read a ``usage`` object as logged; ``None`` when absent or malformed."""
        if not isinstance(value, dict):
            return None
        usage = as_dict(value)
        return cls(
            input_tokens=as_int(usage.get("input_tokens", 0)),
            output_tokens=as_int(usage.get("output_tokens", 0)),
            cache_creation_tokens=as_int(usage.get("cache_creation_input_tokens", 0)),
            cache_read_tokens=as_int(usage.get("cache_read_input_tokens", 0)),
        )

    def merged(self, other: TokenUsage) -> TokenUsage:
        return TokenUsage(
            input_tokens=self.input_tokens + other.input_tokens,
            output_tokens=self.output_tokens + other.output_tokens,
            cache_creation_tokens=self.cache_creation_tokens + other.cache_creation_tokens,
            cache_read_tokens=self.cache_read_tokens + other.cache_read_tokens,
        )


class ThinkingBlock(BaseModel):
    """A reasoning block, either logged natively or lifted from inline tags."""

    thinking: str
    signature: str = ""


class ToolCall(BaseModel):
    """A tool invocation and, once it arrives, its result."""

    id: str
    name: str
    input: dict[str, object] = Field(default_factory=dict)
    result: str | None = None
    is_error: bool = False
    timestamp: str = ""


class SubAgentMessage(BaseModel):
    """One batch of progress from a nested agent invocation."""

    agent_id: str
    agent_name: str | None = None
    subagent_type: str | None = None
    role: str = "assistant"  # user | assistant
    parent_tool_use_id: str = ""
    thinking: list[str] = Field(default_factory=list)
    text: list[str] = Field(default_factory=list)
    tool_calls: list[ToolCall] = Field(default_factory=list)
    timestamp: str = ""
    token_usage: TokenUsage | None = None
    model: str | None = None
    is_background: bool = False
