"""AI task-plan generation.

Builds a prompt from goal metadata, makes exactly one completion request,
and turns the answer into a validated TaskPlan:

1. strip code fences and surrounding prose
2. decode against the response schema (ParsingError on failure)
3. validate content rules (PlanValidationError on failure)
4. normalize unknown time scopes to daily
5. convert to TaskPlan, tasks sorted by orderIndex (stable)
"""

from __future__ import annotations

import json
import logging
import uuid
from datetime import UTC, datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as SchemaError

from lifegit.core.config import LLMConfig, PromptLoader
from lifegit.core.exceptions import ParsingError, PlanValidationError
from lifegit.core.models import TaskItem, TaskPlan, TaskTimeScope
from lifegit.llm.client import CompletionClient, LLMMessage
from lifegit.llm.response_parser import strip_json_envelope

logger = logging.getLogger("lifegit.planning.generator")


DEFAULT_SYSTEM_PROMPT = """\
You are a goal-planning assistant. Break the user's goal into concrete,
measurable, actionable tasks, ordered from easier to harder, with realistic
time estimates and practical execution tips.

Reply with a single valid JSON object and nothing else, shaped like:
{
  "totalDuration": "overall time estimate",
  "tasks": [
    {
      "title": "task title",
      "description": "what to do",
      "timeScope": "daily|weekly|monthly",
      "estimatedDuration": 60,
      "orderIndex": 1,
      "executionTips": "optional advice"
    }
  ]
}
estimatedDuration is in minutes and must be a positive integer."""

DEFAULT_USER_PROMPT = """\
Create a detailed task plan for this goal.

Goal title: {goal_title}
Goal description: {goal_description}
{timeframe_line}
Split the goal into concrete tasks, give each a time scope (daily, weekly or
monthly), a duration in minutes, a description and execution tips, in a
logical order. Return strict JSON only."""


# ---------------------------------------------------------------------------
# Response schema
# ---------------------------------------------------------------------------

class GeneratedTask(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    title: str
    description: str
    time_scope: str = Field(default="daily", alias="timeScope")
    estimated_duration: int = Field(alias="estimatedDuration")
    order_index: Optional[int] = Field(default=None, alias="orderIndex")
    execution_tips: Optional[str] = Field(default=None, alias="executionTips")


class GeneratedTaskPlan(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    total_duration: str = Field(alias="totalDuration")
    tasks: list[GeneratedTask]


# ---------------------------------------------------------------------------
# Generator
# ---------------------------------------------------------------------------

class TaskPlanGenerator:
    """Turns a goal into an AI-generated TaskPlan.

    Injected dependencies:
        client: Completion capability (DeepSeekClient or a test double).
        config: Model, temperature and token limits for the request.
        prompts: Loader for config/prompts/task_plan_*.txt overrides.
    """

    def __init__(
        self,
        client: CompletionClient,
        config: Optional[LLMConfig] = None,
        prompts: Optional[PromptLoader] = None,
    ):
        self.client = client
        self.config = config or LLMConfig()
        self.prompts = prompts or PromptLoader()

    def build_messages(
        self,
        goal_title: str,
        goal_description: str,
        timeframe: Optional[str] = None,
    ) -> list[LLMMessage]:
        system = self.prompts.load("task_plan_system.txt", DEFAULT_SYSTEM_PROMPT)
        template = self.prompts.load("task_plan_user.txt", DEFAULT_USER_PROMPT)
        timeframe_line = f"Target timeframe: {timeframe}\n" if timeframe and timeframe.strip() else ""
        user = template.format(
            goal_title=goal_title,
            goal_description=goal_description,
            timeframe_line=timeframe_line,
        )
        return [
            LLMMessage(role="system", content=system),
            LLMMessage(role="user", content=user),
        ]

    async def generate(
        self,
        goal_title: str,
        goal_description: str,
        timeframe: Optional[str] = None,
    ) -> GeneratedTaskPlan:
        """Request, parse and validate a plan. One network call, no retries."""
        messages = self.build_messages(goal_title, goal_description, timeframe)
        response = await self.client.complete(
            messages,
            model=self.config.model,
            temperature=self.config.temperature,
            max_tokens=self.config.max_tokens,
        )
        plan = self.parse_response(response.content)
        logger.info(
            "Generated %d tasks for goal '%s' (%s)",
            len(plan.tasks), goal_title, plan.total_duration,
        )
        return plan

    async def generate_plan(
        self,
        branch_id: uuid.UUID,
        goal_title: str,
        goal_description: str,
        timeframe: Optional[str] = None,
    ) -> TaskPlan:
        generated = await self.generate(goal_title, goal_description, timeframe)
        return self.to_task_plan(generated, branch_id)

    def parse_response(self, text: str) -> GeneratedTaskPlan:
        cleaned = strip_json_envelope(text)
        try:
            data = json.loads(cleaned)
        except json.JSONDecodeError as e:
            raise ParsingError(f"JSON parsing failed: {e}") from e

        try:
            plan = GeneratedTaskPlan.model_validate(data)
        except SchemaError as e:
            raise ParsingError(f"Response does not match task plan schema: {e}") from e

        validate_generated_plan(plan)
        return plan

    def to_task_plan(self, generated: GeneratedTaskPlan, branch_id: uuid.UUID) -> TaskPlan:
        now = datetime.now(UTC)
        items = [
            TaskItem(
                title=task.title.strip(),
                description=task.description.strip(),
                estimated_duration=task.estimated_duration,
                time_scope=TaskTimeScope.parse(task.time_scope),
                order_index=task.order_index if task.order_index is not None else position,
                is_ai_generated=True,
                execution_tips=task.execution_tips,
                created_at=now,
            )
            for position, task in enumerate(generated.tasks)
        ]
        items.sort(key=lambda item: item.order_index)
        return TaskPlan(
            branch_id=branch_id,
            total_duration=generated.total_duration.strip(),
            is_ai_generated=True,
            tasks=items,
            created_at=now,
        )


def validate_generated_plan(plan: GeneratedTaskPlan) -> None:
    """Raise PlanValidationError on the first content rule the plan breaks."""
    if not plan.tasks:
        raise PlanValidationError("Task plan invalid: at least one task is required")
    if not plan.total_duration.strip():
        raise PlanValidationError("Task plan invalid: totalDuration must not be empty")

    for index, task in enumerate(plan.tasks):
        if not task.title.strip():
            raise PlanValidationError(f"Task {index} title must not be empty")
        if not task.description.strip():
            raise PlanValidationError(f"Task {index} description must not be empty")
        if task.estimated_duration <= 0:
            raise PlanValidationError(f"Task {index} estimated duration must be positive")
