"""Shared fixtures for rewind tests."""

from __future__ import annotations

from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest

from factories import reset_ids, to_jsonl
from rewind.config import Config

SAMPLE_SESSION_PATH = Path(__file__).parent / "data" / "sample_session.jsonl"


@pytest.fixture(autouse=True)
def _reset_fixture_ids() -> None:
    reset_ids()


@pytest.fixture
def sample_session_path() -> Path:
    """Path to the sample two-turn session JSONL file."""
    return SAMPLE_SESSION_PATH


@pytest.fixture
def sample_session_text(sample_session_path: Path) -> str:
    return sample_session_path.read_text(encoding="utf-8")


@pytest.fixture
def write_session(tmp_path: Path) -> Callable[[list[dict[str, Any]]], Path]:
    """Write log objects to a JSONL file under ``tmp_path`` and return its path."""

    def _write(messages: list[dict[str, Any]], name: str = "session.jsonl") -> Path:
        path = tmp_path / name
        path.write_text(to_jsonl(messages) + "\n", encoding="utf-8")
        return path

    return _write


@pytest.fixture
def test_config(tmp_path: Path) -> Config:
    """Config pointing at temporary directories."""
    return Config(claude_dir=tmp_path / ".claude", state_dir=tmp_path / "state")
