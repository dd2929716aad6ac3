"""Protocol definitions for the collaborators that carry out undo plans."""

from __future__ import annotations

from collections.abc import Sequence
from typing import Protocol

from result import Result

from rewind.models.undo import FileOperation, UndoState


class FileOperationExecutor(Protocol):
    """Applies file operations to the working tree, all or none."""

    def apply(self, operations: Sequence[FileOperation]) -> Result[None, str]: ...


class SessionLogStore(Protocol):
    """The session's JSONL log on disk."""

    def read_lines(self) -> list[str]: ...

    def truncate(self, keep_lines: int) -> Result[None, str]: ...

    def append(self, lines: Sequence[str]) -> Result[None, str]: ...


class UndoStateStore(Protocol):
    """Per-session undo state persistence."""

    def load(self, session_id: str) -> UndoState | None: ...

    def save(self, state: UndoState) -> Result[None, str]: ...
