"""Typer CLI for rewind: inspect session logs and preview undo plans."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Annotated

import typer
from pydantic import ValidationError
from result import Err

from rewind.config import Config
from rewind.data.parser import parse_session, parse_session_file
from rewind.models.interaction import PlanApproval
from rewind.models.sessions import user_message_text
from rewind.models.undo import UndoState
from rewind.services.cost import calculate_turn_cost_estimated, format_cost
from rewind.services.interaction import detect_pending_interaction
from rewind.services.undo_planner import UndoPlanner

logger = logging.getLogger(__name__)

app = typer.Typer(
    name="rewind",
    help="Inspect agent session logs and plan undo/redo of their file changes.",
    no_args_is_help=True,
)

SessionArg = Annotated[
    str,
    typer.Argument(
        metavar="SESSION",
        help="Session JSONL file, or a session id to look up under --claude-dir",
    ),
]
ClaudeDirOption = Annotated[
    Path | None,
    typer.Option("--claude-dir", help="Path to Claude data directory"),
]


@app.callback()
def main(
    log_level: Annotated[
        str,
        typer.Option("--log-level", help="Logging level (DEBUG, INFO, WARNING, ...)"),
    ] = "WARNING",
) -> None:
    """Configure logging for every command."""
    logging.basicConfig(
        level=log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@app.command()
def stats(session_ref: SessionArg, claude_dir: ClaudeDirOption = None) -> None:
    """Print turn count, token totals and estimated cost for a session."""
    path = _resolve_session(session_ref, _make_config(claude_dir))
    session = parse_session_file(path)
    s = session.stats

    typer.echo(f"Session:  {session.session_id or path.stem}")
    if session.model:
        typer.echo(f"Model:    {session.model}")
    typer.echo(f"Turns:    {s.turn_count}")
    typer.echo(
        f"Tokens:   {s.total_input_tokens:,} in / {s.total_output_tokens:,} out / "
        f"{s.total_cache_read_tokens:,} cache read / "
        f"{s.total_cache_creation_tokens:,} cache write"
    )
    typer.echo(f"Cost:     {format_cost(s.total_cost_usd)}")
    if s.total_duration_ms:
        typer.echo(f"Duration: {s.total_duration_ms / 1000:.1f}s")
    if s.tool_call_counts:
        top = sorted(s.tool_call_counts.items(), key=lambda kv: kv[1], reverse=True)
        typer.echo("Tools:    " + ", ".join(f"{name} x{count}" for name, count in top))
    if s.error_count:
        typer.echo(f"Errors:   {s.error_count}")

    pending = detect_pending_interaction(session)
    if pending is not None:
        waiting = "plan approval" if isinstance(pending, PlanApproval) else "user question"
        typer.echo(f"Waiting:  {waiting}")


@app.command()
def turns(session_ref: SessionArg, claude_dir: ClaudeDirOption = None) -> None:
    """List turns with their prompt, tool-call count and estimated cost."""
    path = _resolve_session(session_ref, _make_config(claude_dir))
    session = parse_session_file(path)
    for i, turn in enumerate(session.turns):
        if turn.compaction_summary:
            typer.echo("     -- compacted --")
        prompt = user_message_text(turn.user_message).split("\n")[0].strip()
        if turn.is_synthetic:
            prompt = "(continued)"
        if len(prompt) > 60:
            prompt = prompt[:57] + "..."
        typer.echo(
            f"{i:>4}  {prompt:<60}  {len(turn.tool_calls):>3} tools  "
            f"{format_cost(calculate_turn_cost_estimated(turn))}"
        )


@app.command("plan-undo")
def plan_undo(
    session_ref: SessionArg,
    to: Annotated[int, typer.Option("--to", help="Last turn index to keep (-1 keeps none)")],
    state_file: Annotated[
        Path | None,
        typer.Option("--state", help="Undo state JSON (defaults to the per-session state file)"),
    ] = None,
    state_dir: Annotated[
        Path | None,
        typer.Option("--state-dir", help="Directory holding undo state files"),
    ] = None,
    claude_dir: ClaudeDirOption = None,
) -> None:
    """Show the file operations that undoing back to turn N would run."""
    config = _make_config(claude_dir, state_dir)
    path = _resolve_session(session_ref, config)
    text = path.read_text(encoding="utf-8")
    session = parse_session(text)

    state = _load_state(state_file or config.undo_state_path(session.session_id or path.stem))

    result = UndoPlanner(session, state, log_lines=text.splitlines()).plan_undo(to)
    if isinstance(result, Err):
        typer.echo(f"Error: {result.err_value}", err=True)
        raise typer.Exit(code=1)

    plan = result.ok_value
    summary = plan.summary
    typer.echo(
        f"Undo to turn {plan.target_turn_index}: {summary.turn_count} turns, "
        f"{summary.file_count} files, {summary.operation_count} operations"
    )
    for op in plan.operations:
        typer.echo(f"  [{op.turn_index}] {op.type:<13} {op.file_path}")
    if plan.keep_lines is not None:
        typer.echo(f"Log would be truncated to {plan.keep_lines} lines")


def _make_config(claude_dir: Path | None, state_dir: Path | None = None) -> Config:
    defaults = Config()
    return Config(
        claude_dir=claude_dir or defaults.claude_dir,
        state_dir=state_dir or defaults.state_dir,
    )


def _resolve_session(session_ref: str, config: Config) -> Path:
    """A path to an existing file, or the log named by a session id under the projects dir."""
    path = Path(session_ref)
    if path.is_file():
        return path
    matches = sorted(config.projects_dir.glob(f"*/{path.name}.jsonl"))
    if not matches:
        typer.echo(f"Error: no session log found for {session_ref}", err=True)
        raise typer.Exit(code=1)
    if len(matches) > 1:
        logger.info(
            "Session %s found in %d projects; using %s", session_ref, len(matches), matches[0]
        )
    return matches[0]


def _load_state(path: Path) -> UndoState | None:
    if not path.is_file():
        return None
    try:
        return UndoState.model_validate_json(path.read_text(encoding="utf-8"))
    except ValidationError:
        logger.warning("Ignoring unreadable undo state at %s", path)
        return None
