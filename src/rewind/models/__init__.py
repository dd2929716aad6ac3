"""Pydantic models for rewind."""

from rewind.models.analytics import AgentBreakdown, CacheBreakdown, ModelBreakdown, UsageBucket
from rewind.models.events import (
    AssistantEvent,
    BranchOrigin,
    OtherEvent,
    RawMessage,
    SubAgentProgressEvent,
    SummaryEvent,
    TurnDurationEvent,
    UserEvent,
)
from rewind.models.interaction import PendingInteraction, PlanApproval, UserQuestion
from rewind.models.messages import SubAgentMessage, ThinkingBlock, TokenUsage, ToolCall
from rewind.models.sessions import (
    ContentBlock,
    ParsedSession,
    SessionStats,
    SubAgentContent,
    TextContent,
    ThinkingContent,
    ToolCallsContent,
    Turn,
)
from rewind.models.undo import (
    ArchivedToolCall,
    ArchivedTurn,
    Branch,
    FileOperation,
    OperationSummary,
    UndoState,
)

__all__ = [
    "AgentBreakdown",
    "ArchivedToolCall",
    "ArchivedTurn",
    "AssistantEvent",
    "Branch",
    "BranchOrigin",
    "CacheBreakdown",
    "ContentBlock",
    "FileOperation",
    "ModelBreakdown",
    "OperationSummary",
    "OtherEvent",
    "ParsedSession",
    "PendingInteraction",
    "PlanApproval",
    "RawMessage",
    "SessionStats",
    "SubAgentContent",
    "SubAgentMessage",
    "SubAgentProgressEvent",
    "SummaryEvent",
    "TextContent",
    "ThinkingBlock",
    "ThinkingContent",
    "TokenUsage",
    "ToolCall",
    "ToolCallsContent",
    "Turn",
    "TurnDurationEvent",
    "UndoState",
    "UsageBucket",
    "UserEvent",
    "UserQuestion",
]
