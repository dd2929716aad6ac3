"""Configuration for rewind."""

from dataclasses import dataclass, field
from pathlib import Path


@dataclass(frozen=True)
class Config:
    """Application configuration."""

    claude_dir: Path = field(default_factory=lambda: Path.home() / ".claude")
    state_dir: Path = field(default_factory=lambda: Path.home() / ".cache" / "rewind")

    @property
    def projects_dir(self) -> Path:
        return self.claude_dir / "projects"

    def undo_state_path(self, session_id: str) -> Path:
        return self.state_dir / "undo" / f"{session_id}.json"
