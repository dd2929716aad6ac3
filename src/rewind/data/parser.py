"""Session log parser: JSONL text to ``ParsedSession``, batch or incremental."""

from __future__ import annotations

import json
import logging
from collections.abc import Sequence
from dataclasses import dataclass, fields, replace
from pathlib import Path

from rewind.data.turn_builder import build_turns
from rewind.models._fields import as_str
from rewind.models.events import (
    AssistantEvent,
    BranchOrigin,
    RawMessage,
    SubAgentProgressEvent,
    UserEvent,
    decode_event,
)
from rewind.models.sessions import ParsedSession, Turn
from rewind.services.stats import compute_stats

logger = logging.getLogger(__name__)

_ENVELOPE_FIELDS = ("session_id", "version", "git_branch", "cwd", "slug")


@dataclass(frozen=True)
class SessionMetadata:
    session_id: str = ""
    version: str = ""
    git_branch: str = ""
    cwd: str = ""
    slug: str = ""
    model: str = ""
    branched_from: BranchOrigin | None = None


def parse_lines(text: str) -> list[RawMessage]:
    """Decode every non-blank line; malformed lines are skipped."""
    messages: list[RawMessage] = []
    for line_num, line in enumerate(text.splitlines(), 1):
        line = line.strip()
        if not line:
            continue
        try:
            raw = json.loads(line)
        except json.JSONDecodeError:
            logger.debug("Skipping invalid JSON at line %d", line_num)
            continue
        if not isinstance(raw, dict):
            logger.debug("Skipping non-object JSON at line %d", line_num)
            continue
        messages.append(decode_event(raw))
    return messages


def extract_session_metadata(raw_messages: Sequence[RawMessage]) -> SessionMetadata:
    """First non-empty value wins for every field.

    The branch origin is only ever written on the first line of a forked
    session, so it is not searched for further down.
    """
    values: dict[str, str] = dict.fromkeys(_ENVELOPE_FIELDS, "")
    model = ""
    for message in raw_messages:
        for key, current in values.items():
            if not current:
                values[key] = getattr(message, key)
        if not model and isinstance(message, AssistantEvent):
            model = message.model
        if model and all(values.values()):
            break

    branched_from = raw_messages[0].branched_from if raw_messages else None
    return SessionMetadata(**values, model=model, branched_from=branched_from)


def parse_session(text: str) -> ParsedSession:
    raw_messages = parse_lines(text)
    built = build_turns(raw_messages)
    return _assemble(
        extract_session_metadata(raw_messages), raw_messages, built.turns, built.turn_start_indices
    )


def parse_session_file(path: Path | str) -> ParsedSession:
    return parse_session(Path(path).read_text(encoding="utf-8"))


def parse_session_append(existing: ParsedSession, new_text: str) -> ParsedSession:
    """Fold newly appended log text into ``existing``.

    Returns ``existing`` itself when no new event was decoded. Otherwise only
    the turns from the rebuild point onward are replayed; earlier turns are
    shared with ``existing`` and never mutated.
    """
    new_messages = parse_lines(new_text)
    if not new_messages:
        return existing

    raw_messages = [*existing.raw_messages, *new_messages]
    if existing.raw_messages:
        metadata = _merge_metadata(_metadata_of(existing), extract_session_metadata(new_messages))
    else:
        metadata = extract_session_metadata(raw_messages)

    if len(existing.turn_start_indices) != len(existing.turns):
        logger.debug("Turn start indices missing; reparsing %d events", len(raw_messages))
        built = build_turns(raw_messages)
        return _assemble(metadata, raw_messages, built.turns, built.turn_start_indices)

    rebuild_from = find_rebuild_index(existing.turns, new_messages)
    if rebuild_from == 0:
        start, pending = 0, None
    else:
        start = existing.turn_start_indices[rebuild_from]
        pending = existing.turns[rebuild_from].compaction_summary

    kept = existing.turns[:rebuild_from]
    built = build_turns(
        raw_messages[start:],
        start_index=start,
        seed_turns=kept,
        pending_compaction=pending,
    )
    return _assemble(
        metadata,
        raw_messages,
        [*kept, *built.turns],
        [*existing.turn_start_indices[:rebuild_from], *built.turn_start_indices],
    )


def find_rebuild_index(turns: Sequence[Turn], new_messages: Sequence[RawMessage]) -> int:
    """Earliest existing turn the new events could change.

    Normally the last turn, which may still be streaming or awaiting a tool
    result. Progress for a sub-agent launched in an earlier turn rolls back
    to that turn, as does a result for a pending call in the turn before last.
    """
    if not turns:
        return 0
    last = len(turns) - 1
    owners = {tc.id: i for i, turn in enumerate(turns) for tc in turn.tool_calls}
    pending_before_last = (
        {tc.id for tc in turns[last - 1].tool_calls if tc.result is None} if last > 0 else set()
    )
    rebuild_from = last

    for message in new_messages:
        if isinstance(message, SubAgentProgressEvent):
            owner = owners.get(message.parent_tool_use_id)
            if owner is not None:
                rebuild_from = min(rebuild_from, owner)
        elif isinstance(message, UserEvent):
            ids = {as_str(b.get("tool_use_id")) for b in message.tool_results}
            if ids & pending_before_last:
                rebuild_from = min(rebuild_from, last - 1)
    return rebuild_from


def _assemble(
    metadata: SessionMetadata,
    raw_messages: list[RawMessage],
    turns: list[Turn],
    turn_start_indices: list[int],
) -> ParsedSession:
    return ParsedSession(
        session_id=metadata.session_id,
        version=metadata.version,
        git_branch=metadata.git_branch,
        cwd=metadata.cwd,
        slug=metadata.slug,
        model=metadata.model,
        branched_from=metadata.branched_from,
        turns=turns,
        stats=compute_stats(turns),
        raw_messages=raw_messages,
        turn_start_indices=turn_start_indices,
    )


def _metadata_of(session: ParsedSession) -> SessionMetadata:
    return SessionMetadata(
        session_id=session.session_id,
        version=session.version,
        git_branch=session.git_branch,
        cwd=session.cwd,
        slug=session.slug,
        model=session.model,
        branched_from=session.branched_from,
    )


def _merge_metadata(existing: SessionMetadata, incoming: SessionMetadata) -> SessionMetadata:
    updates = {
        f.name: getattr(incoming, f.name)
        for f in fields(SessionMetadata)
        if f.name != "branched_from" and not getattr(existing, f.name)
    }
    return replace(existing, **updates)
