"""Polling of long-running provider tasks (mockup generation).

Polling is modelled as an explicit state machine so the attempt bound and
the backoff ceiling can be tested without a network:

    PENDING --poll--> RETRYING --poll--> ... --> COMPLETED | FAILED | TIMED_OUT | ABORTED

``advance`` is the pure transition function; ``TaskPoller`` only performs
the sleeps and the HTTP polls around it. Polling is bounded by attempt
count, not by a wall-clock deadline.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any

from src.fulfillment.config import PollerSettings
from src.fulfillment.errors import ApiError, NetworkError, NotConfiguredError, RateLimitedError
from src.fulfillment.models import MockupTask, MockupTaskStatus

logger = logging.getLogger(__name__)


class PollPhase(str, Enum):
    """Lifecycle of one polling loop."""

    PENDING = "pending"
    RETRYING = "retrying"
    COMPLETED = "completed"
    FAILED = "failed"
    TIMED_OUT = "timed_out"
    ABORTED = "aborted"

    @property
    def is_terminal(self) -> bool:
        return self not in (PollPhase.PENDING, PollPhase.RETRYING)


class PollOutcomeKind(str, Enum):
    """What a single poll observed."""

    COMPLETED = "completed"
    FAILED = "failed"
    IN_PROGRESS = "in_progress"
    TRANSIENT_ERROR = "transient_error"
    FATAL_ERROR = "fatal_error"


@dataclass(frozen=True)
class PollOutcome:
    kind: PollOutcomeKind
    task: MockupTask | None = None
    detail: str | None = None


@dataclass(frozen=True)
class PollState:
    """Immutable snapshot of a polling loop.

    Attributes:
        task_id: Provider task id.
        phase: Current lifecycle phase.
        attempts: Polls performed so far.
        next_delay: Seconds to sleep before the next poll.
        result: Completed task, set only in COMPLETED.
        reason: Why the loop ended without a result.
    """

    task_id: int
    phase: PollPhase
    attempts: int
    next_delay: float
    result: MockupTask | None = None
    reason: str | None = None


def initial_state(task_id: int, settings: PollerSettings) -> PollState:
    return PollState(
        task_id=task_id,
        phase=PollPhase.PENDING,
        attempts=0,
        next_delay=min(settings.initial_delay, settings.max_delay),
    )


def advance(state: PollState, outcome: PollOutcome, settings: PollerSettings) -> PollState:
    """Apply one poll outcome to a non-terminal state.

    Args:
        state: Current state; must not be terminal.
        outcome: What the poll observed.
        settings: Backoff and attempt bounds.

    Returns:
        The next state. Delays grow by ``backoff_multiplier`` and never
        exceed ``max_delay``; after ``max_attempts`` polls without a
        terminal outcome the loop is TIMED_OUT.
    """
    if state.phase.is_terminal:
        raise ValueError(f"Poll for task {state.task_id} already {state.phase.value}")

    attempts = state.attempts + 1
    if outcome.kind is PollOutcomeKind.COMPLETED:
        return replace(state, phase=PollPhase.COMPLETED, attempts=attempts, result=outcome.task)
    if outcome.kind is PollOutcomeKind.FAILED:
        return replace(state, phase=PollPhase.FAILED, attempts=attempts, reason=outcome.detail)
    if outcome.kind is PollOutcomeKind.FATAL_ERROR:
        return replace(state, phase=PollPhase.ABORTED, attempts=attempts, reason=outcome.detail)

    if attempts >= settings.max_attempts:
        return replace(
            state,
            phase=PollPhase.TIMED_OUT,
            attempts=attempts,
            reason=f"gave up after {attempts} polls",
        )
    return replace(
        state,
        phase=PollPhase.RETRYING,
        attempts=attempts,
        next_delay=min(state.next_delay * settings.backoff_multiplier, settings.max_delay),
        reason=outcome.detail,
    )


def _failure_reason(task: MockupTask) -> str:
    if not task.failure_reasons:
        return "no reason given"
    return "; ".join(
        str(r.get("detail") or r.get("message") or r) if isinstance(r, dict) else str(r)
        for r in task.failure_reasons
    )


class TaskPoller:
    """Drives mockup tasks to completion.

    Example:
        poller = TaskPoller(client.get_mockup_task)
        results = await poller.wait_for_tasks([101, 102])
    """

    def __init__(
        self,
        fetch_task: Callable[[int], Awaitable[MockupTask]],
        settings: PollerSettings | None = None,
        *,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        """Initialize the poller.

        Args:
            fetch_task: Coroutine function returning the task's current state,
                usually ``FulfillmentClient.get_mockup_task``.
            settings: Backoff schedule and attempt bound.
            sleep: Async sleep (injectable for tests).
        """
        self._fetch_task = fetch_task
        self._settings = settings or PollerSettings()
        self._sleep = sleep

    async def _poll_once(self, task_id: int) -> PollOutcome:
        try:
            task = await self._fetch_task(task_id)
        except NotConfiguredError:
            raise
        except RateLimitedError as e:
            return PollOutcome(PollOutcomeKind.TRANSIENT_ERROR, detail=str(e))
        except ApiError as e:
            if e.is_client_error:
                return PollOutcome(PollOutcomeKind.FATAL_ERROR, detail=str(e))
            return PollOutcome(PollOutcomeKind.TRANSIENT_ERROR, detail=str(e))
        except NetworkError as e:
            return PollOutcome(PollOutcomeKind.TRANSIENT_ERROR, detail=str(e))

        if task.status is MockupTaskStatus.completed:
            return PollOutcome(PollOutcomeKind.COMPLETED, task=task)
        if task.status is MockupTaskStatus.failed:
            return PollOutcome(PollOutcomeKind.FAILED, task=task, detail=_failure_reason(task))
        return PollOutcome(PollOutcomeKind.IN_PROGRESS, task=task)

    async def run(self, task_id: int) -> PollState:
        """Poll until a terminal phase and return the final state."""
        state = initial_state(task_id, self._settings)
        while not state.phase.is_terminal:
            await self._sleep(state.next_delay)
            outcome = await self._poll_once(task_id)
            state = advance(state, outcome, self._settings)
            if state.phase is PollPhase.RETRYING and outcome.kind is PollOutcomeKind.TRANSIENT_ERROR:
                logger.info(
                    "mockup_poll task=%s attempt=%d transient error, next in %.1fs: %s",
                    task_id, state.attempts, state.next_delay, outcome.detail,
                )
        return state

    async def wait_for_task(self, task_id: int) -> MockupTask | None:
        """Poll one task.

        Returns:
            The completed task, or None if it failed, was aborted by a 4xx,
            or ran out of attempts. None means "no mockups", not an error.
        """
        state = await self.run(task_id)
        if state.phase is PollPhase.COMPLETED:
            logger.info("mockup_poll task=%s completed after %d polls", task_id, state.attempts)
            return state.result
        if state.phase is PollPhase.FAILED:
            logger.warning("mockup_poll task=%s failed: %s", task_id, state.reason)
        else:
            logger.warning(
                "mockup_poll task=%s %s after %d polls: %s",
                task_id, state.phase.value, state.attempts, state.reason,
            )
        return None

    async def wait_for_tasks(self, task_ids: list[int]) -> list[MockupTask | None]:
        """Poll several tasks concurrently and wait for all of them.

        One loop raising does not cancel the others; its slot is None.

        Returns:
            Results aligned with ``task_ids``.
        """
        outcomes = await asyncio.gather(
            *(self.wait_for_task(task_id) for task_id in task_ids),
            return_exceptions=True,
        )
        results: list[MockupTask | None] = []
        for task_id, outcome in zip(task_ids, outcomes):
            if isinstance(outcome, BaseException):
                logger.error("mockup_poll task=%s crashed: %s", task_id, outcome)
                results.append(None)
            else:
                results.append(outcome)
        return results
