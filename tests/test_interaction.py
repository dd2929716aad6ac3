"""Tests for detecting plan approvals and questions the agent is waiting on."""

from __future__ import annotations

from factories import make_tool_call, make_turn, to_jsonl, tool_use_assistant, user_msg
from rewind.data.parser import parse_session
from rewind.models.interaction import PlanApproval, UserQuestion
from rewind.models.sessions import ParsedSession, Turn
from rewind.services.interaction import detect_pending_interaction, is_stuck_interactive_loop

QUESTIONS = [
    {
        "question": "Which database?",
        "header": "DB",
        "options": [{"label": "SQLite", "description": "Embedded"}, {"label": "Postgres"}],
        "multiSelect": False,
    }
]


def _session(*turns: Turn) -> ParsedSession:
    return ParsedSession(turns=list(turns))


class TestDetectPendingInteraction:
    def test_plan_approval(self) -> None:
        session = parse_session(
            to_jsonl(
                [
                    user_msg("plan it"),
                    tool_use_assistant(
                        "ExitPlanMode",
                        {
                            "plan": "...",
                            "allowedPrompts": [{"tool": "Bash", "prompt": "run tests"}],
                        },
                    ),
                ]
            )
        )
        pending = detect_pending_interaction(session)
        assert isinstance(pending, PlanApproval)
        assert pending.allowed_prompts is not None
        assert pending.allowed_prompts[0].prompt == "run tests"

    def test_plan_without_allowed_prompts(self) -> None:
        session = _session(make_turn("go", [make_tool_call("ExitPlanMode", {"plan": "x"})]))
        pending = detect_pending_interaction(session)
        assert isinstance(pending, PlanApproval)
        assert pending.allowed_prompts is None

    def test_user_question(self) -> None:
        session = _session(
            make_turn("go", [make_tool_call("AskUserQuestion", {"questions": QUESTIONS})])
        )
        pending = detect_pending_interaction(session)
        assert isinstance(pending, UserQuestion)
        (question,) = pending.questions
        assert question.question == "Which database?"
        assert [o.label for o in question.options] == ["SQLite", "Postgres"]
        assert question.multi_select is False

    def test_empty_questions(self) -> None:
        session = _session(make_turn("go", [make_tool_call("AskUserQuestion", {"questions": []})]))
        assert detect_pending_interaction(session) is None

    def test_answered_call(self) -> None:
        call = make_tool_call("AskUserQuestion", {"questions": QUESTIONS}, result="SQLite")
        assert detect_pending_interaction(_session(make_turn("go", [call]))) is None

    def test_errored_result_is_still_pending(self) -> None:
        call = make_tool_call("ExitPlanMode", {}, result="rejected", is_error=True)
        pending = detect_pending_interaction(_session(make_turn("go", [call])))
        assert isinstance(pending, PlanApproval)

    def test_only_last_call_counts(self) -> None:
        calls = [make_tool_call("ExitPlanMode", {}), make_tool_call("Read", {"file_path": "a"})]
        assert detect_pending_interaction(_session(make_turn("go", calls))) is None

    def test_no_turns_or_calls(self) -> None:
        assert detect_pending_interaction(ParsedSession()) is None
        assert detect_pending_interaction(_session(make_turn("go"))) is None

    def test_malformed_question_input(self) -> None:
        call = make_tool_call("AskUserQuestion", {"questions": ["not an object"]})
        assert detect_pending_interaction(_session(make_turn("go", [call]))) is None

    def test_stuck_loop_is_ignored(self) -> None:
        session = _session(
            make_turn("a", [make_tool_call("ExitPlanMode", {})]),
            make_turn("b", [make_tool_call("ExitPlanMode", {})]),
        )
        assert detect_pending_interaction(session) is None


class TestIsStuckInteractiveLoop:
    def test_single_turn(self) -> None:
        assert not is_stuck_interactive_loop([make_turn("a")], "ExitPlanMode")

    def test_previous_answered(self) -> None:
        turns = [
            make_turn("a", [make_tool_call("ExitPlanMode", {}, result="ok")]),
            make_turn("b", [make_tool_call("ExitPlanMode", {})]),
        ]
        assert not is_stuck_interactive_loop(turns, "ExitPlanMode")

    def test_previous_unanswered(self) -> None:
        turns = [
            make_turn("a", [make_tool_call("AskUserQuestion", {})]),
            make_turn("b", [make_tool_call("AskUserQuestion", {})]),
        ]
        assert is_stuck_interactive_loop(turns, "AskUserQuestion")
        assert not is_stuck_interactive_loop(turns, "ExitPlanMode")
