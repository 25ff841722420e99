"""Failure classification, retry and manual fallback for plan generation.

Retryable failures (network, rate limit, server) are retried with
exponential backoff: delay = base * factor ** (attempt - 1), so the default
base of 1s gives 1s, 2s, 4s. When retries run out, or the failure is not
retryable, a deterministic manual plan is produced instead.
"""

from __future__ import annotations

import asyncio
import enum
import logging
import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Awaitable, Callable, Optional, TypeVar

from lifegit.core.config import RetryConfig
from lifegit.core.exceptions import (
    AuthenticationError,
    BadRequestError,
    NetworkError,
    ParsingError,
    PlanValidationError,
    RateLimitError,
    ServerError,
)
from lifegit.core.models import TaskItem, TaskPlan, TaskTimeScope

logger = logging.getLogger("lifegit.planning.failure_policy")

T = TypeVar("T")

MANUAL_PLAN_MARKER = "manual"
MANUAL_TASK_DURATION = 60

Sleeper = Callable[[float], Awaitable[None]]


class FailureKind(str, enum.Enum):
    NETWORK = "network"
    RATE_LIMITED = "rate_limited"
    SERVER_ERROR = "server_error"
    UNAUTHORIZED = "unauthorized"
    BAD_REQUEST = "bad_request"
    PARSING = "parsing"
    VALIDATION = "validation"
    UNKNOWN = "unknown"

    @property
    def retryable(self) -> bool:
        return self in _RETRYABLE


_RETRYABLE = frozenset({FailureKind.NETWORK, FailureKind.RATE_LIMITED, FailureKind.SERVER_ERROR})

# Order matters: subclasses before their bases.
_CLASSIFICATION: tuple[tuple[type[BaseException], FailureKind], ...] = (
    (NetworkError, FailureKind.NETWORK),
    (RateLimitError, FailureKind.RATE_LIMITED),
    (ServerError, FailureKind.SERVER_ERROR),
    (AuthenticationError, FailureKind.UNAUTHORIZED),
    (BadRequestError, FailureKind.BAD_REQUEST),
    (ParsingError, FailureKind.PARSING),
    (PlanValidationError, FailureKind.VALIDATION),
)


@dataclass
class PlanOutcome:
    """Result of generate_or_fallback."""

    plan: TaskPlan
    used_fallback: bool
    attempts: int
    failure_kind: Optional[FailureKind] = None
    error: Optional[str] = None
    delays: list[float] = field(default_factory=list)


class AIFailurePolicy:
    """Classifies generation errors and decides between retry and fallback."""

    def __init__(
        self,
        config: Optional[RetryConfig] = None,
        sleep: Optional[Sleeper] = None,
    ):
        self.config = config or RetryConfig()
        self._sleep: Sleeper = sleep or asyncio.sleep

    @staticmethod
    def classify(error: BaseException) -> FailureKind:
        for exc_type, kind in _CLASSIFICATION:
            if isinstance(error, exc_type):
                return kind
        return FailureKind.UNKNOWN

    def delay_for(self, attempt: int) -> float:
        """Backoff before retry number ``attempt`` (1-based)."""
        delay = self.config.base_delay_seconds * (self.config.backoff_factor ** (attempt - 1))
        return min(delay, self.config.max_delay_seconds)

    async def retry(self, operation: Callable[[], Awaitable[T]]) -> T:
        """Run ``operation`` with the retry policy, re-raising the final error."""
        attempt = 0
        while True:
            try:
                return await operation()
            except Exception as e:
                kind = self.classify(e)
                if not kind.retryable or attempt >= self.config.max_retries:
                    raise
                attempt += 1
                delay = self.delay_for(attempt)
                logger.warning(
                    "Plan generation failed (%s): %s. Retry %d/%d in %.1fs",
                    kind.value, e, attempt, self.config.max_retries, delay,
                )
                await self._sleep(delay)

    async def generate_or_fallback(
        self,
        operation: Callable[[], Awaitable[TaskPlan]],
        *,
        branch_id: uuid.UUID,
        goal_title: str,
        goal_description: str,
    ) -> PlanOutcome:
        """Return an AI plan, or the manual fallback plan. Never raises on AI failure.

        Cancellation (asyncio.CancelledError) still propagates.
        """
        delays: list[float] = []
        attempts = 0
        while True:
            attempts += 1
            try:
                plan = await operation()
                return PlanOutcome(plan=plan, used_fallback=False, attempts=attempts, delays=delays)
            except Exception as e:
                kind = self.classify(e)
                retries_used = attempts - 1
                if kind.retryable and retries_used < self.config.max_retries:
                    delay = self.delay_for(attempts)
                    delays.append(delay)
                    logger.warning(
                        "Plan generation failed (%s): %s. Retry %d/%d in %.1fs",
                        kind.value, e, attempts, self.config.max_retries, delay,
                    )
                    await self._sleep(delay)
                    continue

                if kind.retryable:
                    logger.error(
                        "Plan generation for '%s' failed after %d attempts (%s); using manual plan",
                        goal_title, attempts, kind.value,
                    )
                else:
                    logger.error(
                        "Plan generation for '%s' failed with non-retryable %s: %s; using manual plan",
                        goal_title, kind.value, e,
                    )
                return PlanOutcome(
                    plan=self.manual_fallback_plan(goal_title, goal_description, branch_id),
                    used_fallback=True,
                    attempts=attempts,
                    failure_kind=kind,
                    error=str(e),
                    delays=delays,
                )

    @staticmethod
    def manual_fallback_plan(
        goal_title: str,
        goal_description: str,
        branch_id: uuid.UUID,
    ) -> TaskPlan:
        """Deterministic single-task plan for the user to extend by hand."""
        now = datetime.now(UTC)
        title = goal_title.strip() or "your goal"
        description = goal_description.strip()
        task = TaskItem(
            title=f"Get started: {title}",
            description=(
                f"Break this goal into concrete steps: {description}"
                if description
                else "Break this goal into concrete steps."
            ),
            estimated_duration=MANUAL_TASK_DURATION,
            time_scope=TaskTimeScope.DAILY,
            order_index=0,
            is_ai_generated=False,
            execution_tips="Created manually; edit the tasks and timing to fit your plan.",
            created_at=now,
        )
        return TaskPlan(
            branch_id=branch_id,
            total_duration=MANUAL_PLAN_MARKER,
            is_ai_generated=False,
            tasks=[task],
            created_at=now,
        )
