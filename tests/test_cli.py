"""CLI and entrypoint tests."""

from __future__ import annotations

import runpy
from collections.abc import Callable
from pathlib import Path

import pytest
from typer.testing import CliRunner

from factories import text_assistant, to_jsonl, tool_use_assistant, user_msg
from rewind.cli import app
from rewind.config import Config
from rewind.models.undo import Branch, UndoState

runner = CliRunner()

WriteSession = Callable[..., Path]


def test_no_args_shows_help() -> None:
    result = runner.invoke(app, [])
    assert "stats" in result.output
    assert "plan-undo" in result.output


def test_stats(sample_session_path: Path) -> None:
    result = runner.invoke(app, ["stats", str(sample_session_path)])
    assert result.exit_code == 0
    lines = result.output.splitlines()
    assert "Session:  sample-session-001" in lines
    assert "Model:    claude-opus-4-6-20250115" in lines
    assert "Turns:    2" in lines
    assert "Duration: 6.3s" in lines
    assert "Tools:    Read x1, Edit x1, Write x1" in lines
    assert any(line.startswith("Cost:     $") for line in lines)
    assert not any(line.startswith("Waiting:") for line in lines)


def test_stats_reports_pending_question(write_session: WriteSession) -> None:
    path = write_session(
        [
            user_msg("pick one"),
            tool_use_assistant("AskUserQuestion", {"questions": [{"question": "A or B?"}]}),
        ]
    )
    result = runner.invoke(app, ["stats", str(path)])
    assert result.exit_code == 0
    assert "Waiting:  user question" in result.output


def test_stats_missing_file(tmp_path: Path) -> None:
    result = runner.invoke(app, ["stats", str(tmp_path / "nope.jsonl")])
    assert result.exit_code != 0


def test_stats_resolves_session_id(test_config: Config) -> None:
    project = test_config.projects_dir / "-home-me-repo"
    project.mkdir(parents=True)
    (project / "abc-123.jsonl").write_text(
        to_jsonl([user_msg("hello"), text_assistant("hi")]) + "\n", encoding="utf-8"
    )

    result = runner.invoke(app, ["stats", "abc-123", "--claude-dir", str(test_config.claude_dir)])
    assert result.exit_code == 0
    assert "Turns:    1" in result.output


def test_unknown_session_id(test_config: Config) -> None:
    test_config.projects_dir.mkdir(parents=True)
    result = runner.invoke(app, ["turns", "missing", "--claude-dir", str(test_config.claude_dir)])
    assert result.exit_code == 1
    assert "no session log found for missing" in result.output


def test_plan_undo_resolves_session_id(test_config: Config) -> None:
    project = test_config.projects_dir / "proj"
    project.mkdir(parents=True)
    (project / "s1.jsonl").write_text(
        to_jsonl([user_msg("one"), user_msg("two")]) + "\n", encoding="utf-8"
    )

    result = runner.invoke(
        app,
        [
            "plan-undo",
            "s1",
            "--to",
            "0",
            "--claude-dir",
            str(test_config.claude_dir),
            "--state-dir",
            str(test_config.state_dir),
        ],
    )
    assert result.exit_code == 0
    assert "Log would be truncated to 1 lines" in result.output


def test_turns(sample_session_path: Path) -> None:
    result = runner.invoke(app, ["turns", str(sample_session_path)])
    assert result.exit_code == 0
    lines = result.output.splitlines()
    assert len(lines) == 2
    assert lines[0].startswith("   0  ")
    assert "Now add a README" in lines[1]
    assert "  1 tools" in lines[1]


def test_turns_marks_synthetic_and_compacted(write_session: WriteSession) -> None:
    path = write_session(
        [
            {"type": "summary", "summary": "Earlier work", "uuid": "s1"},
            tool_use_assistant("Read", {"file_path": "a.py"}),
        ]
    )
    result = runner.invoke(app, ["turns", str(path)])
    assert result.exit_code == 0
    assert "-- compacted --" in result.output
    assert "(continued)" in result.output


def test_plan_undo(sample_session_path: Path, tmp_path: Path) -> None:
    result = runner.invoke(
        app,
        ["plan-undo", str(sample_session_path), "--to=0", "--state-dir", str(tmp_path)],
    )
    assert result.exit_code == 0
    lines = result.output.splitlines()
    assert lines[0] == "Undo to turn 0: 1 turns, 1 files, 1 operations"
    assert "delete-write" in lines[1]
    assert lines[1].endswith("/tmp/project/README.md")
    assert lines[-1] == "Log would be truncated to 8 lines"


def test_plan_undo_everything(sample_session_path: Path, tmp_path: Path) -> None:
    result = runner.invoke(
        app,
        ["plan-undo", str(sample_session_path), "--to=-1", "--state-dir", str(tmp_path)],
    )
    assert result.exit_code == 0
    assert result.output.startswith("Undo to turn -1: 2 turns, 2 files, 2 operations")
    assert "reverse-edit" in result.output
    assert "Log would be truncated to 1 lines" in result.output


@pytest.mark.parametrize("target", ["1", "5", "-2"])
def test_plan_undo_rejects_bad_target(
    sample_session_path: Path, tmp_path: Path, target: str
) -> None:
    result = runner.invoke(
        app,
        ["plan-undo", str(sample_session_path), f"--to={target}", "--state-dir", str(tmp_path)],
    )
    assert result.exit_code == 1
    assert "Error: Cannot undo" in result.output


def test_plan_undo_reads_state_file(write_session: WriteSession, tmp_path: Path) -> None:
    path = write_session(
        [
            user_msg("one"),
            tool_use_assistant(
                "Edit", {"file_path": "a.py", "old_string": "x", "new_string": "y"}, "t1"
            ),
            user_msg("two"),
        ]
    )
    state = UndoState(
        session_id="test-session-1",
        current_turn_index=1,
        total_turns=2,
        branches=[Branch(id="old", created_at="", branch_point_turn_index=1, label="later")],
    )
    state_file = tmp_path / "state.json"
    state_file.write_text(state.model_dump_json(by_alias=True), encoding="utf-8")

    result = runner.invoke(
        app, ["plan-undo", str(path), "--to=-1", "--state", str(state_file)]
    )
    assert result.exit_code == 0
    assert "reverse-edit" in result.output


def test_plan_undo_ignores_unreadable_state(write_session: WriteSession, tmp_path: Path) -> None:
    path = write_session([user_msg("one"), user_msg("two")])
    state_file = tmp_path / "state.json"
    state_file.write_text('{"sessionId": 3}', encoding="utf-8")

    result = runner.invoke(
        app, ["plan-undo", str(path), "--to", "0", "--state", str(state_file)]
    )
    assert result.exit_code == 0
    assert "Undo to turn 0" in result.output


def test_main_module_runs_cli(monkeypatch) -> None:  # type: ignore[no-untyped-def]
    called = {"count": 0}

    def fake_app() -> None:
        called["count"] += 1

    monkeypatch.setattr("rewind.cli.app", fake_app)
    runpy.run_module("rewind.__main__", run_name="__main__")
    assert called["count"] == 1


def test_config_paths(test_config: Config, tmp_path: Path) -> None:
    assert test_config.projects_dir == tmp_path / ".claude" / "projects"
    assert test_config.undo_state_path("abc") == tmp_path / "state" / "undo" / "abc.json"


def test_plan_undo_uses_state_dir(write_session: WriteSession, tmp_path: Path) -> None:
    path = write_session([user_msg("one"), user_msg("two")])
    config = Config(state_dir=tmp_path / "state")
    state_path = config.undo_state_path("test-session-1")
    state_path.parent.mkdir(parents=True)
    state_path.write_text("not json", encoding="utf-8")

    result = runner.invoke(
        app, ["plan-undo", str(path), "--to", "0", "--state-dir", str(tmp_path / "state")]
    )
    assert result.exit_code == 0
    assert "Log would be truncated to 1 lines" in result.output
