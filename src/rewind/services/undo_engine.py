"""Reversible file operations and the branch tree behind undo/redo.

Everything here is pure: functions take parsed turns or archived branches and
return operation lists or new branch records. Executing the operations and
persisting ``UndoState`` belong to the caller.
"""

from __future__ import annotations

import uuid
from collections.abc import Iterable, Sequence
from datetime import UTC, datetime
from typing import NamedTuple

from rewind.models.sessions import Turn, user_message_text
from rewind.models.undo import (
    ArchivedToolCall,
    ArchivedTurn,
    Branch,
    FileOperation,
    OperationSummary,
    UndoState,
)

UNTITLED_BRANCH = "Untitled branch"
MAX_LABEL_CHARS = 60


class BranchPartition(NamedTuple):
    retained: list[Branch]
    scooped: list[Branch]


class ChildSplit(NamedTuple):
    restored: list[Branch]
    remaining: list[Branch]


def extract_reversible_calls(turn: Turn) -> list[ArchivedToolCall]:
    """Successful Edit and Write calls with a usable file path, in call order."""
    calls: list[ArchivedToolCall] = []
    for tc in turn.tool_calls:
        if tc.is_error or tc.name not in ("Edit", "Write"):
            continue
        file_path = tc.input.get("file_path")
        if file_path is None:
            file_path = tc.input.get("path")
        if not isinstance(file_path, str) or not file_path:
            continue

        if tc.name == "Edit":
            old_string = tc.input.get("old_string")
            new_string = tc.input.get("new_string")
            if isinstance(old_string, str) and isinstance(new_string, str):
                calls.append(
                    ArchivedToolCall(
                        type="Edit",
                        file_path=file_path,
                        old_string=old_string,
                        new_string=new_string,
                        replace_all=tc.input.get("replace_all") is True,
                    )
                )
        else:
            content = tc.input.get("content")
            if isinstance(content, str):
                calls.append(ArchivedToolCall(type="Write", file_path=file_path, content=content))
    return calls


def archive_turn(turn: Turn, index: int) -> ArchivedTurn:
    return ArchivedTurn(
        index=index,
        user_message=user_message_text(turn.user_message),
        tool_calls=extract_reversible_calls(turn),
        thinking_blocks=[b.thinking for b in turn.thinking],
        assistant_text=list(turn.assistant_text),
        timestamp=turn.timestamp,
        model=turn.model,
    )


def _undo_op(call: ArchivedToolCall, turn_index: int) -> FileOperation:
    if call.type == "Edit":
        # Find what the edit wrote and put back what it replaced.
        return FileOperation(
            type="reverse-edit",
            file_path=call.file_path,
            old_string=call.new_string,
            new_string=call.old_string,
            replace_all=call.replace_all,
            turn_index=turn_index,
        )
    return FileOperation(
        type="delete-write",
        file_path=call.file_path,
        content=call.content,
        turn_index=turn_index,
    )


def _redo_op(call: ArchivedToolCall, turn_index: int) -> FileOperation:
    if call.type == "Edit":
        return FileOperation(
            type="apply-edit",
            file_path=call.file_path,
            old_string=call.old_string,
            new_string=call.new_string,
            replace_all=call.replace_all,
            turn_index=turn_index,
        )
    return FileOperation(
        type="create-write",
        file_path=call.file_path,
        content=call.content,
        turn_index=turn_index,
    )


def build_undo_operations(
    turns: Sequence[Turn], from_turn_index: int, to_turn_index: int
) -> list[FileOperation]:
    """Operations undoing turns ``from_turn_index`` down to ``to_turn_index + 1``.

    Turns are walked newest first and calls within a turn last first, since a
    later edit may depend on an earlier one.
    """
    ops: list[FileOperation] = []
    for i in range(from_turn_index, to_turn_index, -1):
        if not 0 <= i < len(turns):
            continue
        for call in reversed(extract_reversible_calls(turns[i])):
            ops.append(_undo_op(call, i))
    return ops


def build_redo_operations(
    turns: Sequence[Turn], from_turn_index: int, to_turn_index: int
) -> list[FileOperation]:
    """Operations replaying turns ``from_turn_index + 1`` through ``to_turn_index``."""
    ops: list[FileOperation] = []
    for i in range(from_turn_index + 1, to_turn_index + 1):
        if not 0 <= i < len(turns):
            continue
        ops.extend(_redo_op(call, i) for call in extract_reversible_calls(turns[i]))
    return ops


def build_redo_from_archived(
    archived_turns: Sequence[ArchivedTurn], up_to_index: int | None = None
) -> list[FileOperation]:
    """Replay archived turns in order, through position ``up_to_index`` when given."""
    limit = len(archived_turns) if up_to_index is None else up_to_index + 1
    ops: list[FileOperation] = []
    for archived in archived_turns[:limit]:
        ops.extend(_redo_op(call, archived.index) for call in archived.tool_calls)
    return ops


def make_branch_label(user_message: str | None) -> str:
    label = user_message or UNTITLED_BRANCH
    if len(label) > MAX_LABEL_CHARS:
        return label[: MAX_LABEL_CHARS - 3] + "..."
    return label


def create_branch(
    turns: Sequence[Turn],
    branch_point_turn_index: int,
    jsonl_lines: Sequence[str],
    child_branches: Sequence[Branch] | None = None,
) -> Branch:
    """Archive every turn after ``branch_point_turn_index`` into a new branch."""
    archived = [
        archive_turn(turn, i)
        for i, turn in enumerate(turns)
        if i > branch_point_turn_index
    ]
    return Branch(
        id=str(uuid.uuid4()),
        created_at=datetime.now(UTC).isoformat(),
        branch_point_turn_index=branch_point_turn_index,
        label=make_branch_label(archived[0].user_message if archived else None),
        turns=archived,
        jsonl_lines=list(jsonl_lines),
        child_branches=list(child_branches) if child_branches else None,
    )


def collect_child_branches(branches: Iterable[Branch], cutoff_turn_index: int) -> BranchPartition:
    """Split branches into those still anchored at or before the cutoff and the rest."""
    retained: list[Branch] = []
    scooped: list[Branch] = []
    for branch in branches:
        if branch.branch_point_turn_index > cutoff_turn_index:
            scooped.append(branch)
        else:
            retained.append(branch)
    return BranchPartition(retained, scooped)


def split_child_branches(
    child_branches: Iterable[Branch], parent_branch_point: int, redo_turn_count: int
) -> ChildSplit:
    """Children a partial redo reaches go back to the top level; the rest stay nested."""
    max_valid_index = parent_branch_point + redo_turn_count
    restored: list[Branch] = []
    remaining: list[Branch] = []
    for branch in child_branches:
        if branch.branch_point_turn_index <= max_valid_index:
            restored.append(branch)
        else:
            remaining.append(branch)
    return ChildSplit(restored, remaining)


def summarize_operations(ops: Sequence[FileOperation]) -> OperationSummary:
    file_paths = list(dict.fromkeys(op.file_path for op in ops))
    return OperationSummary(
        turn_count=len({op.turn_index for op in ops}),
        file_count=len(file_paths),
        file_paths=file_paths,
        operation_count=len(ops),
    )


def create_empty_undo_state(session_id: str, total_turns: int) -> UndoState:
    return UndoState(
        session_id=session_id,
        current_turn_index=total_turns - 1,
        total_turns=total_turns,
    )
