"""Detect whether a session is blocked on a plan approval or a question."""

from __future__ import annotations

import logging
from collections.abc import Sequence

from pydantic import ValidationError

from rewind.models.interaction import (
    AllowedPrompt,
    PendingInteraction,
    PlanApproval,
    Question,
    UserQuestion,
)
from rewind.models.sessions import ParsedSession, Turn

logger = logging.getLogger(__name__)

PLAN_TOOL = "ExitPlanMode"
QUESTION_TOOL = "AskUserQuestion"


def is_stuck_interactive_loop(turns: Sequence[Turn], tool_name: str) -> bool:
    """True when the previous turn also ended on an unanswered ``tool_name`` call."""
    if len(turns) < 2:
        return False
    previous = turns[-2].tool_calls
    if not previous:
        return False
    last = previous[-1]
    return last.name == tool_name and (last.result is None or last.is_error)


def detect_pending_interaction(session: ParsedSession) -> PendingInteraction | None:
    if not session.turns:
        return None
    calls = session.turns[-1].tool_calls
    if not calls:
        return None

    call = calls[-1]
    if call.name not in (PLAN_TOOL, QUESTION_TOOL):
        return None
    # A successful result means the user already responded.
    if call.result is not None and not call.is_error:
        return None
    if is_stuck_interactive_loop(session.turns, call.name):
        return None

    try:
        if call.name == PLAN_TOOL:
            prompts = call.input.get("allowedPrompts")
            return PlanApproval(
                allowed_prompts=(
                    [AllowedPrompt.model_validate(p) for p in prompts]
                    if isinstance(prompts, list)
                    else None
                )
            )

        questions = call.input.get("questions")
        if isinstance(questions, list) and questions:
            return UserQuestion(questions=[Question.model_validate(q) for q in questions])
    except ValidationError:
        logger.debug("Malformed %s input on tool call %s", call.name, call.id)
    return None
