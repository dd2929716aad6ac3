"""Raw event models: one decoded line of the session log."""

from __future__ import annotations

import json
from typing import Annotated, Literal

from pydantic import BaseModel, Field

from rewind.models._fields import (
    as_block_list,
    as_dict,
    as_optional_int,
    as_optional_str,
    as_str,
)
from rewind.models.messages import TokenUsage


class BranchOrigin(BaseModel):
    """Where a forked session came from, as written on its first line."""

    session_id: str = ""
    turn_index: int | None = None


class _EventBase(BaseModel):
    """Envelope fields shared by every log line."""

    uuid: str = ""
    timestamp: str = ""
    session_id: str = ""
    version: str = ""
    git_branch: str = ""
    cwd: str = ""
    slug: str = ""
    branched_from: BranchOrigin | None = None
    data: dict[str, object] = Field(default_factory=dict, repr=False)

    def to_json_line(self) -> str:
        """Serialize the original object back to one log line."""
        return json.dumps(self.data, ensure_ascii=False)


class UserEvent(_EventBase):
    kind: Literal["user"] = "user"
    content: str | list[dict[str, object]] = ""
    is_meta: bool = False

    @property
    def tool_results(self) -> list[dict[str, object]]:
        if isinstance(self.content, str):
            return []
        return [b for b in self.content if b.get("type") == "tool_result"]

    @property
    def is_turn_start(self) -> bool:
        """A prompt that opens a new turn: not meta and not a tool result."""
        return not self.is_meta and not self.tool_results


class AssistantEvent(_EventBase):
    kind: Literal["assistant"] = "assistant"
    message_id: str = ""
    model: str = ""
    content: list[dict[str, object]] = Field(default_factory=list)
    usage: TokenUsage | None = None
    stop_reason: str | None = None


class SummaryEvent(_EventBase):
    kind: Literal["summary"] = "summary"
    summary: str = ""
    leaf_uuid: str = ""


class TurnDurationEvent(_EventBase):
    kind: Literal["turn_duration"] = "turn_duration"
    duration_ms: int | None = None


class SubAgentProgressEvent(_EventBase):
    kind: Literal["sub_agent_progress"] = "sub_agent_progress"
    agent_id: str = ""
    parent_tool_use_id: str = ""
    role: str = ""
    content: str | list[dict[str, object]] = Field(default_factory=list)
    message_id: str = ""
    model: str | None = None
    usage: TokenUsage | None = None
    inner_timestamp: str = ""


class OtherEvent(_EventBase):
    """Any line the parser does not interpret (snapshots, hooks, other system events)."""

    kind: Literal["other"] = "other"
    type: str = ""


RawMessage = Annotated[
    UserEvent
    | AssistantEvent
    | SummaryEvent
    | TurnDurationEvent
    | SubAgentProgressEvent
    | OtherEvent,
    Field(discriminator="kind"),
]


def decode_event(raw: dict[str, object]) -> RawMessage:
    """Classify a decoded JSON object into its event variant.

    Never raises: unexpected shapes degrade to empty fields or ``OtherEvent``.
    """
    envelope = _envelope(raw)
    msg_type = as_str(raw.get("type"))

    match msg_type:
        case "user":
            message = as_dict(raw.get("message"))
            content = message.get("content", "")
            return UserEvent(
                **envelope,
                content=content if isinstance(content, str) else as_block_list(content),
                is_meta=bool(raw.get("isMeta", False)),
            )
        case "assistant":
            message = as_dict(raw.get("message"))
            return AssistantEvent(
                **envelope,
                message_id=as_str(message.get("id")),
                model=as_str(message.get("model")),
                content=as_block_list(message.get("content")),
                usage=TokenUsage.from_raw(message.get("usage")),
                stop_reason=as_optional_str(message.get("stop_reason")),
            )
        case "summary":
            return SummaryEvent(
                **envelope,
                summary=as_str(raw.get("summary")),
                leaf_uuid=as_str(raw.get("leafUuid")),
            )
        case "system" if raw.get("subtype") == "turn_duration":
            return TurnDurationEvent(**envelope, duration_ms=as_optional_int(raw.get("durationMs")))
        case "progress":
            data = as_dict(raw.get("data"))
            if data.get("type") == "agent_progress":
                return _decode_progress(raw, data, envelope)

    return OtherEvent(**envelope, type=msg_type)


def _decode_progress(
    raw: dict[str, object],
    data: dict[str, object],
    envelope: dict[str, object],
) -> SubAgentProgressEvent:
    outer = as_dict(data.get("message"))
    inner = as_dict(outer.get("message"))
    role = as_str(outer.get("type")) or as_str(inner.get("role"))
    content = inner.get("content", [])
    is_assistant = role == "assistant"
    return SubAgentProgressEvent(
        **envelope,
        agent_id=as_str(data.get("agentId")),
        parent_tool_use_id=as_str(raw.get("parentToolUseID")),
        role=role,
        content=content if isinstance(content, str) else as_block_list(content),
        message_id=as_str(inner.get("id")) if is_assistant else "",
        model=as_optional_str(inner.get("model")) if is_assistant else None,
        usage=TokenUsage.from_raw(inner.get("usage")) if is_assistant else None,
        inner_timestamp=as_str(outer.get("timestamp")),
    )


def _envelope(raw: dict[str, object]) -> dict[str, object]:
    return {
        "uuid": as_str(raw.get("uuid")),
        "timestamp": as_str(raw.get("timestamp")),
        "session_id": as_str(raw.get("sessionId")),
        "version": as_str(raw.get("version")),
        "git_branch": as_str(raw.get("gitBranch")),
        "cwd": as_str(raw.get("cwd")),
        "slug": as_str(raw.get("slug")),
        "branched_from": _branch_origin(raw.get("branchedFrom")),
        "data": raw,
    }


def _branch_origin(value: object) -> BranchOrigin | None:
    if not isinstance(value, dict):
        return None
    return BranchOrigin(
        session_id=as_str(value.get("sessionId")),
        turn_index=as_optional_int(value.get("turnIndex")),
    )
