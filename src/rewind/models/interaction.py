"""Interactive prompts the agent is waiting on."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field


class AllowedPrompt(BaseModel):
    tool: str = ""
    prompt: str = ""


class PlanApproval(BaseModel):
    """The agent left plan mode and awaits approval."""

    type: Literal["plan"] = "plan"
    allowed_prompts: list[AllowedPrompt] | None = None


class QuestionOption(BaseModel):
    model_config = ConfigDict(extra="allow")

    label: str = ""
    description: str | None = None


class Question(BaseModel):
    model_config = ConfigDict(extra="allow")

    question: str = ""
    header: str | None = None
    options: list[QuestionOption] = Field(default_factory=list)
    multi_select: bool | None = Field(default=None, alias="multiSelect")


class UserQuestion(BaseModel):
    """The agent asked the user one or more multiple-choice questions."""

    type: Literal["question"] = "question"
    questions: list[Question]


PendingInteraction = PlanApproval | UserQuestion
