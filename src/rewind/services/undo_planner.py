"""Undo planner: turns undo, redo and branch-switch requests into plans.

A ``TransitionPlan`` describes everything a transition does: the file
operations to run, how many log lines to keep, which lines to append, and the
undo state to persist afterwards. The caller executes it all-or-nothing; if
any file operation fails, neither the log nor the state may be touched.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Literal

from result import Err, Ok, Result

from rewind.models.sessions import ParsedSession
from rewind.models.undo import Branch, FileOperation, OperationSummary, UndoState
from rewind.services.protocols import FileOperationExecutor, SessionLogStore, UndoStateStore
from rewind.services.undo_engine import (
    build_redo_from_archived,
    build_undo_operations,
    collect_child_branches,
    create_branch,
    create_empty_undo_state,
    make_branch_label,
    split_child_branches,
    summarize_operations,
)

logger = logging.getLogger(__name__)

TransitionKind = Literal["undo", "redo", "branch-switch"]


@dataclass(frozen=True)
class TransitionPlan:
    kind: TransitionKind
    operations: list[FileOperation]
    summary: OperationSummary
    target_turn_index: int
    new_state: UndoState
    # Truncate the log to this many lines before appending; None leaves it whole.
    keep_lines: int | None = None
    append_lines: list[str] = field(default_factory=list)
    branch_id: str | None = None


def is_turn_starting_line(obj: object) -> bool:
    """Whether a decoded log line opens a turn: a non-meta prompt, not a tool result."""
    if not isinstance(obj, dict) or obj.get("type") != "user" or obj.get("isMeta"):
        return False
    message = obj.get("message")
    content = message.get("content") if isinstance(message, dict) else None
    if isinstance(content, list):
        return not any(isinstance(b, dict) and b.get("type") == "tool_result" for b in content)
    return True


def find_cutoff_line(lines: Sequence[str], keep_turn_count: int) -> int:
    """Index of the line that opens turn ``keep_turn_count``, or ``len(lines)``.

    Works on the log lines themselves so that malformed lines, which the
    parser skips, are still counted.
    """
    seen = 0
    for i, line in enumerate(lines):
        try:
            obj = json.loads(line)
        except json.JSONDecodeError:
            continue
        if is_turn_starting_line(obj):
            seen += 1
            if seen > keep_turn_count:
                return i
    return len(lines)


def build_summary(ops: Sequence[FileOperation], fallback_turn_count: int) -> OperationSummary:
    """Summarize ``ops``, or report only the turn count when there are none."""
    if ops:
        return summarize_operations(ops)
    return OperationSummary(turn_count=fallback_turn_count)


def find_redo_branch(state: UndoState, turn_count: int) -> Branch | None:
    """Most recent branch anchored at the current last turn, if any."""
    for branch in reversed(state.branches):
        if branch.branch_point_turn_index + 1 == turn_count:
            return branch
    return None


def branches_at_turn(state: UndoState, turn_index: int) -> list[Branch]:
    return [b for b in state.branches if b.branch_point_turn_index == turn_index]


@dataclass(frozen=True)
class _Restore:
    operations: list[FileOperation]
    append_lines: list[str]
    branches: list[Branch]
    turn_count: int


class UndoPlanner:
    """Plans state transitions for one parsed session.

    ``log_lines`` should be the non-blank lines of the session log as
    currently on disk; when omitted they are re-serialized from the parsed
    events, which loses any malformed lines the parser skipped.
    """

    def __init__(
        self,
        session: ParsedSession,
        state: UndoState | None = None,
        log_lines: Sequence[str] | None = None,
    ) -> None:
        self._session = session
        self._state = state or create_empty_undo_state(session.session_id, len(session.turns))
        if log_lines is None:
            log_lines = [m.to_json_line() for m in session.raw_messages]
        self._lines = [line for line in log_lines if line.strip()]

    @property
    def state(self) -> UndoState:
        return self._state

    @property
    def redo_branch(self) -> Branch | None:
        return find_redo_branch(self._state, len(self._session.turns))

    def plan_undo(self, target_turn_index: int) -> Result[TransitionPlan, str]:
        """Plan undoing every turn after ``target_turn_index``.

        Returns:
            Ok with the plan, or Err when the target is not an earlier turn.
        """
        turns = self._session.turns
        last = len(turns) - 1
        if not -1 <= target_turn_index < last:
            return Err(f"Cannot undo to turn {target_turn_index}: session has {len(turns)} turns")

        ops = build_undo_operations(turns, last, target_turn_index)
        summary = build_summary(ops, last - target_turn_index)

        cutoff = find_cutoff_line(self._lines, target_turn_index + 1)
        removed = self._lines[cutoff:]
        if not removed:
            logger.info("Undo to turn %d removes no log lines", target_turn_index)
            return Ok(
                TransitionPlan(
                    kind="undo",
                    operations=ops,
                    summary=summary,
                    target_turn_index=target_turn_index,
                    new_state=self._state,
                )
            )

        retained, scooped = collect_child_branches(self._state.branches, target_turn_index)
        branch = create_branch(turns, target_turn_index, removed, scooped)
        new_state = self._state.model_copy(
            update={
                "current_turn_index": target_turn_index,
                "total_turns": target_turn_index + 1,
                "branches": [*retained, branch],
                "active_branch_id": None,
            }
        )
        logger.info(
            "Planned undo to turn %d: %d operations, %d lines archived in branch %s",
            target_turn_index,
            len(ops),
            len(removed),
            branch.id,
        )
        return Ok(
            TransitionPlan(
                kind="undo",
                operations=ops,
                summary=summary,
                target_turn_index=target_turn_index,
                new_state=new_state,
                keep_lines=cutoff,
                branch_id=branch.id,
            )
        )

    def plan_redo(
        self,
        branch_id: str | None = None,
        up_to_archive_index: int | None = None,
    ) -> Result[TransitionPlan, str]:
        """Plan restoring the redo branch, fully or through ``up_to_archive_index``.

        Returns:
            Ok with the plan, or Err when there is nothing to redo or the index
            is out of range.
        """
        branch = self.redo_branch
        if branch is None:
            return Err("Nothing to redo")
        if branch_id is not None and branch.id != branch_id:
            return Err(f"Branch {branch_id} is not anchored at the last turn")

        outcome = self._restore(branch, up_to_archive_index, self._state.branches)
        if isinstance(outcome, Err):
            return Err(outcome.err_value)
        restore = outcome.ok_value

        new_state = self._state.model_copy(
            update={
                "current_turn_index": self._state.current_turn_index + restore.turn_count,
                "total_turns": self._state.total_turns + restore.turn_count,
                "branches": restore.branches,
                "active_branch_id": None,
            }
        )
        logger.info(
            "Planned redo of %d turns from branch %s: %d operations",
            restore.turn_count,
            branch.id,
            len(restore.operations),
        )
        return Ok(
            TransitionPlan(
                kind="redo",
                operations=restore.operations,
                summary=build_summary(restore.operations, restore.turn_count),
                target_turn_index=branch.branch_point_turn_index + restore.turn_count,
                new_state=new_state,
                append_lines=restore.append_lines,
                branch_id=branch.id,
            )
        )

    def plan_branch_switch(
        self,
        branch_id: str,
        archive_turn_index: int | None = None,
    ) -> Result[TransitionPlan, str]:
        """Plan archiving the live suffix and restoring branch ``branch_id`` in its place.

        Returns:
            Ok with the plan, or Err for an unknown branch or one anchored past
            the end of the conversation.
        """
        branch = next((b for b in self._state.branches if b.id == branch_id), None)
        if branch is None:
            return Err(f"Branch {branch_id} not found")

        turns = self._session.turns
        point = branch.branch_point_turn_index
        if point >= len(turns):
            return Err(f"Branch {branch_id} is anchored at turn {point}, past the last turn")

        undo_ops: list[FileOperation] = []
        branches = list(self._state.branches)
        keep_lines: int | None = None
        if len(turns) > point + 1:
            undo_ops = build_undo_operations(turns, len(turns) - 1, point)
            cutoff = find_cutoff_line(self._lines, point + 1)
            removed = self._lines[cutoff:]
            if removed:
                retained, scooped = collect_child_branches(branches, point)
                branches = [*retained, create_branch(turns, point, removed, scooped)]
                keep_lines = cutoff

        outcome = self._restore(branch, archive_turn_index, branches)
        if isinstance(outcome, Err):
            return Err(outcome.err_value)
        restore = outcome.ok_value

        ops = [*undo_ops, *restore.operations]
        new_state = self._state.model_copy(
            update={
                "current_turn_index": point + restore.turn_count,
                "total_turns": point + 1 + restore.turn_count,
                "branches": restore.branches,
                "active_branch_id": None,
            }
        )
        logger.info(
            "Planned switch to branch %s at turn %d: %d undo and %d redo operations",
            branch.id,
            point,
            len(undo_ops),
            len(restore.operations),
        )
        return Ok(
            TransitionPlan(
                kind="branch-switch",
                operations=ops,
                summary=build_summary(ops, restore.turn_count),
                target_turn_index=point,
                new_state=new_state,
                keep_lines=keep_lines,
                append_lines=restore.append_lines,
                branch_id=branch.id,
            )
        )

    def _restore(
        self, branch: Branch, up_to_archive_index: int | None, branches: Sequence[Branch]
    ) -> Result[_Restore, str]:
        last_index = len(branch.turns) - 1
        up_to = last_index if up_to_archive_index is None else up_to_archive_index
        if up_to_archive_index is not None and not 0 <= up_to <= last_index:
            return Err(f"Archived turn {up_to} out of range for branch {branch.id}")

        count = up_to + 1
        ops = build_redo_from_archived(branch.turns, up_to)
        children = branch.child_branches or []

        if up_to < last_index:
            cutoff = find_cutoff_line(branch.jsonl_lines, count)
            append_lines = branch.jsonl_lines[:cutoff]
            remaining_lines = branch.jsonl_lines[cutoff:]
        else:
            append_lines = list(branch.jsonl_lines)
            remaining_lines = []

        if remaining_lines:
            restored, remaining = split_child_branches(
                children, branch.branch_point_turn_index, count
            )
            trimmed = branch.model_copy(
                update={
                    "branch_point_turn_index": branch.branch_point_turn_index + count,
                    "turns": branch.turns[count:],
                    "jsonl_lines": remaining_lines,
                    "label": (
                        make_branch_label(branch.turns[count].user_message)
                        if branch.turns[count].user_message
                        else branch.label
                    ),
                    "child_branches": remaining or None,
                }
            )
            new_branches = [trimmed if b.id == branch.id else b for b in branches]
            return Ok(_Restore(ops, append_lines, [*new_branches, *restored], count))

        new_branches = [b for b in branches if b.id != branch.id]
        return Ok(_Restore(ops, append_lines, [*new_branches, *children], count))


def apply_plan(
    plan: TransitionPlan,
    executor: FileOperationExecutor,
    log_store: SessionLogStore,
    state_store: UndoStateStore,
) -> Result[UndoState, str]:
    """Carry out ``plan`` through the given collaborators.

    File operations run first; the log and the state are only touched once
    they all succeeded.

    Returns:
        Ok with the saved state, or Err from the first step that failed.
    """
    if plan.operations:
        applied = executor.apply(plan.operations)
        if isinstance(applied, Err):
            logger.warning("File operations failed for %s plan: %s", plan.kind, applied.err_value)
            return Err(applied.err_value)

    if plan.keep_lines is not None:
        truncated = log_store.truncate(plan.keep_lines)
        if isinstance(truncated, Err):
            return Err(truncated.err_value)
    if plan.append_lines:
        appended = log_store.append(plan.append_lines)
        if isinstance(appended, Err):
            return Err(appended.err_value)

    saved = state_store.save(plan.new_state)
    if isinstance(saved, Err):
        return Err(saved.err_value)
    return Ok(plan.new_state)
