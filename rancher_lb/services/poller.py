"""Bounded polling of eventually-consistent remote state.

A poll runs as its own asyncio task and checks a condition at a fixed
interval for a fixed number of attempts. The task resolves to a
``PollResult``: either the value that satisfied the condition, a timeout, or
the error raised by the check. Callers treat anything but a satisfied result
as a failure of the whole operation and never re-run the poll themselves.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, Generic, Optional, TypeVar

from prometheus_client import Counter

from rancher_lb.core.errors import PollError, PollTimeoutError
from rancher_lb.models.cattle import Resource

log = logging.getLogger("rancher_lb.poller")

POLLS = Counter("rancher_lb_polls_total", "Finished condition polls", ["outcome"])

T = TypeVar("T")
R = TypeVar("R", bound=Resource)

# Returns the satisfying value, or None while the condition does not hold yet.
Check = Callable[[], Awaitable[Optional[T]]]


class PollOutcome(str, Enum):
    SATISFIED = "satisfied"
    TIMED_OUT = "timed_out"
    FAILED = "failed"


@dataclass(frozen=True)
class PollResult(Generic[T]):
    """Single-shot result of a poll."""

    condition: str
    outcome: PollOutcome
    attempts: int
    value: Optional[T] = None
    error: Optional[Exception] = None

    @property
    def ok(self) -> bool:
        return self.outcome is PollOutcome.SATISFIED

    def unwrap(self) -> T:
        """Return the satisfying value or raise the matching PollError."""
        if self.outcome is PollOutcome.SATISFIED:
            return self.value  # type: ignore[return-value]
        if self.outcome is PollOutcome.TIMED_OUT:
            raise PollTimeoutError(self.condition, self.attempts)
        raise PollError(self.condition, f"Error while waiting for {self.condition}", self.error)


class ConditionPoller:
    """Fixed-interval, fixed-budget poller.

    The interval and attempt budget are set once for the process (2s x 30 by
    default, about one minute) and are the same for every poll.
    """

    def __init__(self, interval_s: float = 2.0, max_attempts: int = 30):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.interval_s = interval_s
        self.max_attempts = max_attempts
        # running polls; the event loop only keeps weak references to tasks
        self._tasks: set[asyncio.Task] = set()

    @property
    def running(self) -> int:
        """Number of polls still in flight."""
        return len(self._tasks)

    async def _run(self, condition: str, check: Check[T]) -> PollResult[T]:
        for attempt in range(1, self.max_attempts + 1):
            try:
                value = await check()
            except Exception as e:
                log.error("Error waiting for %s: %s", condition, e)
                POLLS.labels(outcome=PollOutcome.FAILED.value).inc()
                return PollResult(condition, PollOutcome.FAILED, attempt, error=e)
            if value is not None:
                POLLS.labels(outcome=PollOutcome.SATISFIED.value).inc()
                return PollResult(condition, PollOutcome.SATISFIED, attempt, value=value)
            await asyncio.sleep(self.interval_s)

        log.error("Timed out waiting for %s.", condition)
        POLLS.labels(outcome=PollOutcome.TIMED_OUT.value).inc()
        return PollResult(condition, PollOutcome.TIMED_OUT, self.max_attempts)

    def start(self, condition: str, check: Check[T]) -> asyncio.Task[PollResult[T]]:
        """Schedule a poll on its own task and return it.

        The poller holds the task until it finishes, so a poll whose caller
        went away still runs to completion.
        """
        task = asyncio.create_task(self._run(condition, check), name=f"poll:{condition}")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def wait_for(self, condition: str, check: Check[T]) -> T:
        """Poll until ``check`` yields a value; raise PollError otherwise.

        The poll is shielded: cancelling the caller does not stop a poll that
        is already running.
        """
        result = await asyncio.shield(self.start(condition, check))
        return result.unwrap()

    async def wait_for_action(self, action: str, reload: Callable[[], Awaitable[R]]) -> R:
        """Wait until a freshly loaded resource offers ``action``; return that copy."""
        async def check() -> Optional[R]:
            resource = await reload()
            return resource if resource.supports(action) else None

        return await self.wait_for(f"action {action}", check)
