"""Session-level models: turns, ordered content blocks, stats."""

from __future__ import annotations

from typing import Annotated, Literal

from pydantic import BaseModel, Field

from rewind.models.events import BranchOrigin, RawMessage
from rewind.models.messages import SubAgentMessage, ThinkingBlock, TokenUsage, ToolCall

UserContent = str | list[dict[str, object]]


class ThinkingContent(BaseModel):
    kind: Literal["thinking"] = "thinking"
    blocks: list[ThinkingBlock] = Field(default_factory=list)
    timestamp: str = ""


class TextContent(BaseModel):
    kind: Literal["text"] = "text"
    text: list[str] = Field(default_factory=list)
    timestamp: str = ""


class ToolCallsContent(BaseModel):
    kind: Literal["tool_calls"] = "tool_calls"
    tool_calls: list[ToolCall] = Field(default_factory=list)
    timestamp: str = ""


class SubAgentContent(BaseModel):
    kind: Literal["sub_agent"] = "sub_agent"
    messages: list[SubAgentMessage] = Field(default_factory=list)
    timestamp: str = ""


ContentBlock = Annotated[
    ThinkingContent | TextContent | ToolCallsContent | SubAgentContent,
    Field(discriminator="kind"),
]


class Turn(BaseModel):
    """One user prompt and everything the assistant did in response."""

    id: str
    user_message: UserContent | None = None
    # Chronological order for rendering; the flat lists below serve search and stats.
    content_blocks: list[ContentBlock] = Field(default_factory=list)
    thinking: list[ThinkingBlock] = Field(default_factory=list)
    assistant_text: list[str] = Field(default_factory=list)
    tool_calls: list[ToolCall] = Field(default_factory=list)
    sub_agent_activity: list[SubAgentMessage] = Field(default_factory=list)
    timestamp: str = ""
    duration_ms: int | None = None
    token_usage: TokenUsage | None = None
    model: str | None = None
    compaction_summary: str | None = None

    @property
    def is_synthetic(self) -> bool:
        """True when the turn began with an assistant message."""
        return self.user_message is None


class SessionStats(BaseModel):
    """Aggregate usage over all turns and nested sub-agent activity."""

    total_input_tokens: int = 0
    total_output_tokens: int = 0
    total_cache_creation_tokens: int = 0
    total_cache_read_tokens: int = 0
    total_cost_usd: float = 0.0
    tool_call_counts: dict[str, int] = Field(default_factory=dict)
    error_count: int = 0
    total_duration_ms: int = 0
    turn_count: int = 0


class ParsedSession(BaseModel):
    """Full parse result for one session log."""

    session_id: str = ""
    version: str = ""
    git_branch: str = ""
    cwd: str = ""
    slug: str = ""
    model: str = ""
    turns: list[Turn] = Field(default_factory=list)
    stats: SessionStats = Field(default_factory=SessionStats)
    raw_messages: list[RawMessage] = Field(default_factory=list, repr=False)
    branched_from: BranchOrigin | None = None
    # Index into raw_messages where each turn's first event sits.
    turn_start_indices: list[int] = Field(default_factory=list, repr=False)


def user_message_text(content: UserContent | None) -> str:
    """Plain text of a user prompt; text blocks are joined by newlines."""
    if content is None:
        return ""
    if isinstance(content, str):
        return content
    return "\n".join(
        str(block.get("text", ""))
        for block in content
        if block.get("type") == "text" and isinstance(block.get("text"), str)
    )


def user_message_images(content: UserContent | None) -> list[dict[str, object]]:
    if content is None or isinstance(content, str):
        return []
    return [block for block in content if block.get("type") == "image"]
