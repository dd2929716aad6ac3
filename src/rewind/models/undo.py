"""Undo/redo models: file operations, archived turns and the branch tree.

Field aliases are the camelCase names used by persisted undo-state files, so
``UndoState.model_validate(json)`` and ``state.model_dump(by_alias=True)``
round-trip with what callers already store.
"""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class _WireModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ArchivedToolCall(_WireModel):
    """A reversible Edit or Write, reduced to what is needed to replay it."""

    type: Literal["Edit", "Write"]
    file_path: str
    old_string: str | None = None  # Edit only
    new_string: str | None = None  # Edit only
    replace_all: bool | None = None  # Edit only
    content: str | None = None  # Write only


class ArchivedTurn(_WireModel):
    index: int
    user_message: str | None = None
    tool_calls: list[ArchivedToolCall] = Field(default_factory=list)
    thinking_blocks: list[str] = Field(default_factory=list)
    assistant_text: list[str] = Field(default_factory=list)
    timestamp: str = ""
    model: str | None = None


FileOperationType = Literal["reverse-edit", "delete-write", "apply-edit", "create-write"]


class FileOperation(_WireModel):
    """One filesystem change for an external executor to carry out."""

    type: FileOperationType
    file_path: str
    old_string: str | None = None
    new_string: str | None = None
    replace_all: bool | None = None
    content: str | None = None
    turn_index: int


class OperationSummary(_WireModel):
    """Impact of a batch of operations, shown before the caller confirms."""

    turn_count: int = 0
    file_count: int = 0
    file_paths: list[str] = Field(default_factory=list)
    operation_count: int = 0


class Branch(_WireModel):
    """An archived alternate future of the conversation."""

    id: str
    created_at: str
    branch_point_turn_index: int
    label: str
    turns: list[ArchivedTurn] = Field(default_factory=list)
    jsonl_lines: list[str] = Field(default_factory=list)
    # Branches that hung off the archived range, kept for restore.
    child_branches: list[Branch] | None = None


class UndoState(_WireModel):
    """Per-session checkpoint persisted by the caller."""

    session_id: str
    current_turn_index: int
    total_turns: int
    branches: list[Branch] = Field(default_factory=list)
    active_branch_id: str | None = None
