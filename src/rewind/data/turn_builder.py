"""Turn builder: a state machine folding raw events into ``Turn`` objects.

The builder owns one open turn plus the in-flight sub-agent batches keyed by
agent id. Feeding it events left to right and calling ``finish`` yields the
turns and, for each, the index of the raw event that opened it. Incremental
parsing replays a suffix of the log through a builder seeded with the turns
that precede it.
"""

from __future__ import annotations

import logging
import re
import uuid
from collections import Counter
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field

from rewind.models._fields import as_dict, as_str
from rewind.models.events import (
    AssistantEvent,
    RawMessage,
    SubAgentProgressEvent,
    SummaryEvent,
    TurnDurationEvent,
    UserEvent,
)
from rewind.models.messages import SubAgentMessage, ThinkingBlock, TokenUsage, ToolCall
from rewind.models.sessions import (
    SubAgentContent,
    TextContent,
    ThinkingContent,
    ToolCallsContent,
    Turn,
    user_message_text,
)

logger = logging.getLogger(__name__)

DEFAULT_COMPACTION_TITLE = "Conversation compacted"
SUB_AGENT_TOOLS = frozenset({"Task", "Agent"})

_INLINE_THINKING = re.compile(r"<thinking>(.*?)</thinking>", re.DOTALL)
_MAX_PROMPT_CHARS = 120
_MAX_PROMPTS = 6
_MAX_TOOLS = 5


@dataclass(frozen=True)
class _TaskMeta:
    name: str | None
    subagent_type: str | None
    background: bool


@dataclass
class BuildResult:
    turns: list[Turn] = field(default_factory=list)
    turn_start_indices: list[int] = field(default_factory=list)


def build_compaction_summary(turns: Sequence[Turn], title: str) -> str:
    """Digest of the turns a compaction event replaced."""
    if not turns:
        return title

    tool_counts: Counter[str] = Counter()
    prompts: list[str] = []
    for turn in turns:
        tool_counts.update(tc.name for tc in turn.tool_calls)
        first_line = user_message_text(turn.user_message).split("\n")[0].strip()
        if first_line:
            if len(first_line) > _MAX_PROMPT_CHARS:
                first_line = first_line[: _MAX_PROMPT_CHARS - 3] + "..."
            prompts.append(first_line)

    parts = [f"**{title}**", f"{len(turns)} turns compacted"]
    if tool_counts:
        top = ", ".join(f"{name} x{count}" for name, count in tool_counts.most_common(_MAX_TOOLS))
        parts.append(f"Tools: {top}")
    if prompts:
        parts.append("Prompts:")
        parts.extend(f"- {p}" for p in prompts[:_MAX_PROMPTS])
        if len(prompts) > _MAX_PROMPTS:
            parts.append(f"- ...and {len(prompts) - _MAX_PROMPTS} more")
    return "\n".join(parts)


def extract_tool_result_text(content: object) -> str:
    if isinstance(content, str):
        return content
    if not isinstance(content, list):
        return ""
    parts = [
        as_str(block.get("text"))
        for block in content
        if isinstance(block, dict) and block.get("type") == "text"
    ]
    return "\n".join(p for p in parts if p)


class TurnBuilder:
    """Accumulates turns from a left-to-right scan of raw events."""

    def __init__(
        self,
        *,
        seed_turns: Sequence[Turn] = (),
        pending_compaction: str | None = None,
    ) -> None:
        self._turns: list[Turn] = []
        self._starts: list[int] = []
        self._current: Turn | None = None
        self._current_start = 0
        self._pending_compaction = pending_compaction
        self._since_compaction: list[Turn] = (
            [] if pending_compaction else _since_last_compaction(seed_turns)
        )
        self._seen_message_ids: set[str] = set()
        self._in_flight: dict[str, SubAgentMessage] = {}
        self._named_agents: set[str] = set()
        self._task_meta: dict[str, _TaskMeta] = {}
        # Read-only: the turn before the first one this builder opens.
        self._seed_tail = seed_turns[-1] if seed_turns else None
        for turn in seed_turns:
            for call in turn.tool_calls:
                self._record_task(call)
            self._named_agents.update(m.agent_id for m in turn.sub_agent_activity)

    # ── Public API ──

    def feed(self, event: RawMessage, index: int) -> None:
        match event:
            case SummaryEvent():
                self._finalize_turn()
                self._pending_compaction = build_compaction_summary(
                    self._since_compaction, event.summary or DEFAULT_COMPACTION_TITLE
                )
                self._since_compaction = []
            case UserEvent(is_meta=True):
                pass
            case UserEvent() if event.tool_results:
                self._resolve_tool_results(event.tool_results)
            case UserEvent():
                self._finalize_turn()
                self._open_turn(event.uuid, event.content, event.timestamp, index)
            case AssistantEvent():
                turn = self._current or self._open_turn(event.uuid, None, event.timestamp, index)
                self._add_assistant(turn, event)
            case SubAgentProgressEvent():
                self._add_progress(event)
            case TurnDurationEvent():
                if self._current is not None:
                    self._current.duration_ms = event.duration_ms
            case _:
                pass

    def feed_all(self, events: Iterable[RawMessage], start_index: int = 0) -> BuildResult:
        for offset, event in enumerate(events):
            self.feed(event, start_index + offset)
        return self.finish()

    def finish(self) -> BuildResult:
        self._finalize_turn()
        if self._in_flight:
            logger.debug(
                "Dropping %d sub-agent batches with no turn to attach to", len(self._in_flight)
            )
            self._in_flight.clear()
        return BuildResult(turns=list(self._turns), turn_start_indices=list(self._starts))

    # ── Turn lifecycle ──

    def _open_turn(
        self,
        turn_id: str,
        user_message: str | list[dict[str, object]] | None,
        timestamp: str,
        index: int,
    ) -> Turn:
        turn = self._current = Turn(
            id=turn_id or str(uuid.uuid4()),
            user_message=user_message,
            timestamp=timestamp,
        )
        self._current_start = index
        if self._pending_compaction is not None:
            turn.compaction_summary = self._pending_compaction
            self._pending_compaction = None
        return turn

    def _finalize_turn(self) -> None:
        if self._current is None:
            return
        # Includes orphans whose parent tool call is not in this turn.
        for agent_id in list(self._in_flight):
            self._flush_agent(agent_id)
        self._turns.append(self._current)
        self._starts.append(self._current_start)
        self._since_compaction.append(self._current)
        self._current = None

    # ── Assistant content ──

    def _add_assistant(self, turn: Turn, event: AssistantEvent) -> None:
        if event.model:
            turn.model = event.model
        if event.usage is not None and self._first_sighting(event.message_id):
            turn.token_usage = _merge_usage(turn.token_usage, event.usage)

        ts = event.timestamp
        for block in event.content:
            match block.get("type"):
                case "thinking":
                    thinking = ThinkingBlock(
                        thinking=as_str(block.get("thinking")),
                        signature=as_str(block.get("signature")),
                    )
                    turn.thinking.append(thinking)
                    _append_thinking(turn, thinking, ts)
                case "text":
                    self._add_text(turn, as_str(block.get("text")), ts)
                case "tool_use":
                    self._add_tool_use(turn, block, ts)

    def _add_text(self, turn: Turn, text: str, ts: str) -> None:
        # Print mode writes reasoning as inline <thinking> tags inside text.
        for match in _INLINE_THINKING.finditer(text):
            inner = match.group(1).strip()
            if inner:
                thinking = ThinkingBlock(thinking=inner)
                turn.thinking.append(thinking)
                _append_thinking(turn, thinking, ts)
        remaining = _INLINE_THINKING.sub("", text).strip()
        if not remaining:
            return
        turn.assistant_text.append(remaining)
        last = turn.content_blocks[-1] if turn.content_blocks else None
        if isinstance(last, TextContent):
            last.text.append(remaining)
        else:
            turn.content_blocks.append(TextContent(text=[remaining], timestamp=ts))

    def _add_tool_use(self, turn: Turn, block: dict[str, object], ts: str) -> None:
        tool_input = as_dict(block.get("input"))
        call = ToolCall(
            id=as_str(block.get("id")),
            name=as_str(block.get("name")),
            input=tool_input,
            timestamp=ts,
        )
        turn.tool_calls.append(call)
        last = turn.content_blocks[-1] if turn.content_blocks else None
        if isinstance(last, ToolCallsContent):
            last.tool_calls.append(call)
        else:
            turn.content_blocks.append(ToolCallsContent(tool_calls=[call], timestamp=ts))

        self._record_task(call)

    def _record_task(self, call: ToolCall) -> None:
        if call.name not in SUB_AGENT_TOOLS:
            return
        name = call.input.get("name")
        subagent_type = call.input.get("subagent_type")
        self._task_meta[call.id] = _TaskMeta(
            name=name if isinstance(name, str) else None,
            subagent_type=subagent_type if isinstance(subagent_type, str) else None,
            background=call.input.get("run_in_background") is True,
        )

    def _first_sighting(self, message_id: str) -> bool:
        """Record a message id; False when its usage was already counted."""
        if not message_id:
            return True
        if message_id in self._seen_message_ids:
            return False
        self._seen_message_ids.add(message_id)
        return True

    # ── Tool results ──

    def _resolve_tool_results(self, results: Sequence[dict[str, object]]) -> None:
        candidates = [t for t in (self._current, self._turns[-1] if self._turns else None) if t]
        for block in results:
            tool_use_id = as_str(block.get("tool_use_id"))
            call = _find_pending_call(candidates, tool_use_id)
            if call is None:
                if self._resolved_in_seed(tool_use_id):
                    self._flush_agents_of(tool_use_id)
                else:
                    logger.debug("No pending tool call for result %s", tool_use_id)
                continue
            call.result = extract_tool_result_text(block.get("content"))
            call.is_error = bool(block.get("is_error", False))
            if call.name in SUB_AGENT_TOOLS:
                self._flush_agents_of(tool_use_id)

    def _resolved_in_seed(self, tool_use_id: str) -> bool:
        """Whether a replayed result belongs to a sub-agent call in the kept turn before.

        That turn already holds the result from the earlier parse; only the
        flush it triggered has to be repeated.
        """
        if self._turns or self._seed_tail is None or not tool_use_id:
            return False
        return any(
            tc.id == tool_use_id and tc.name in SUB_AGENT_TOOLS and tc.result is not None
            for tc in self._seed_tail.tool_calls
        )

    def _flush_agents_of(self, tool_use_id: str) -> None:
        for agent_id, message in list(self._in_flight.items()):
            if message.parent_tool_use_id == tool_use_id:
                self._flush_agent(agent_id)

    # ── Sub-agents ──

    def _add_progress(self, event: SubAgentProgressEvent) -> None:
        agent_id = event.agent_id or event.parent_tool_use_id
        content = event.content if isinstance(event.content, list) else []

        if event.role != "assistant":
            self._resolve_sub_agent_results(agent_id, content)
            self._flush_agent(agent_id)
            return

        message = self._in_flight.get(agent_id)
        if message is None:
            meta = self._task_meta.get(event.parent_tool_use_id)
            message = SubAgentMessage(
                agent_id=agent_id,
                parent_tool_use_id=event.parent_tool_use_id,
                timestamp=event.inner_timestamp or event.timestamp,
                is_background=meta.background if meta else False,
            )
            self._in_flight[agent_id] = message

        if event.model:
            message.model = event.model
        if event.usage is not None and self._first_sighting(event.message_id):
            message.token_usage = _merge_usage(message.token_usage, event.usage)

        ts = event.inner_timestamp or event.timestamp
        for block in content:
            match block.get("type"):
                case "thinking":
                    message.thinking.append(as_str(block.get("thinking")))
                case "text":
                    message.text.append(as_str(block.get("text")))
                case "tool_use":
                    message.tool_calls.append(
                        ToolCall(
                            id=as_str(block.get("id")),
                            name=as_str(block.get("name")),
                            input=as_dict(block.get("input")),
                            timestamp=ts,
                        )
                    )

    def _resolve_sub_agent_results(self, agent_id: str, content: list[dict[str, object]]) -> None:
        messages: list[SubAgentMessage] = []
        if agent_id in self._in_flight:
            messages.append(self._in_flight[agent_id])
        if self._current is not None:
            messages.extend(
                m for m in reversed(self._current.sub_agent_activity) if m.agent_id == agent_id
            )
        for block in content:
            if block.get("type") != "tool_result":
                continue
            call = _find_pending_call_in(
                (tc for m in messages for tc in m.tool_calls), as_str(block.get("tool_use_id"))
            )
            if call is not None:
                call.result = extract_tool_result_text(block.get("content"))
                call.is_error = bool(block.get("is_error", False))

    def _flush_agent(self, agent_id: str) -> None:
        turn = self._current
        if turn is None or agent_id not in self._in_flight:
            return
        message = self._in_flight.pop(agent_id)
        if not (message.text or message.thinking or message.tool_calls or message.token_usage):
            return
        if agent_id not in self._named_agents:
            self._named_agents.add(agent_id)
            meta = self._task_meta.get(message.parent_tool_use_id)
            if meta is not None:
                message.agent_name = meta.name
                message.subagent_type = meta.subagent_type

        turn.sub_agent_activity.append(message)
        last = turn.content_blocks[-1] if turn.content_blocks else None
        if isinstance(last, SubAgentContent):
            last.messages.append(message)
        else:
            turn.content_blocks.append(
                SubAgentContent(messages=[message], timestamp=message.timestamp)
            )


def build_turns(
    messages: Sequence[RawMessage],
    *,
    start_index: int = 0,
    seed_turns: Sequence[Turn] = (),
    pending_compaction: str | None = None,
) -> BuildResult:
    """Fold ``messages`` into turns; indices are offset by ``start_index``."""
    builder = TurnBuilder(seed_turns=seed_turns, pending_compaction=pending_compaction)
    return builder.feed_all(messages, start_index)


def _since_last_compaction(turns: Sequence[Turn]) -> list[Turn]:
    for i in range(len(turns) - 1, -1, -1):
        if turns[i].compaction_summary is not None:
            return list(turns[i:])
    return list(turns)


def _append_thinking(turn: Turn, block: ThinkingBlock, ts: str) -> None:
    last = turn.content_blocks[-1] if turn.content_blocks else None
    if isinstance(last, ThinkingContent):
        last.blocks.append(block)
    else:
        turn.content_blocks.append(ThinkingContent(blocks=[block], timestamp=ts))


def _merge_usage(existing: TokenUsage | None, incoming: TokenUsage) -> TokenUsage:
    return incoming.model_copy() if existing is None else existing.merged(incoming)


def _find_pending_call(turns: Iterable[Turn], tool_use_id: str) -> ToolCall | None:
    for turn in turns:
        call = _find_pending_call_in(turn.tool_calls, tool_use_id)
        if call is not None:
            return call
    return None


def _find_pending_call_in(calls: Iterable[ToolCall], tool_use_id: str) -> ToolCall | None:
    if not tool_use_id:
        return None
    for call in calls:
        if call.id == tool_use_id and call.result is None:
            return call
    return None
