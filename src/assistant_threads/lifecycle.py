"""Run status classification and the bookkeeping shared by the polling loops."""

from __future__ import annotations

import logging
from enum import Enum
from typing import FrozenSet, Optional, Union

from .exceptions import AssistantThreadsError, IllegalStateTransition, PollingTimeout
from .models import SUBMIT_TOOL_OUTPUTS, Run, RunStatus

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL = 1.0
DEFAULT_MAX_POLLS = 120


class RunPhase(str, Enum):
    POLL_AGAIN = "poll_again"
    SUSPENDED = "suspended"
    TERMINAL = "terminal"


POLL_AGAIN_STATUSES: FrozenSet[RunStatus] = frozenset(
    {RunStatus.QUEUED, RunStatus.IN_PROGRESS, RunStatus.CANCELLING}
)
SUSPENDED_STATUSES: FrozenSet[RunStatus] = frozenset({RunStatus.REQUIRES_ACTION})
TERMINAL_STATUSES: FrozenSet[RunStatus] = frozenset(
    {
        RunStatus.CANCELLED,
        RunStatus.FAILED,
        RunStatus.COMPLETED,
        RunStatus.EXPIRED,
        RunStatus.INCOMPLETE,
    }
)

CANCELLABLE_STATUSES: FrozenSet[RunStatus] = frozenset({RunStatus.QUEUED, RunStatus.IN_PROGRESS})
SUBMITTABLE_STATUSES: FrozenSet[RunStatus] = SUSPENDED_STATUSES


def classify(status: Union[RunStatus, str]) -> RunPhase:
    status = RunStatus(status)
    if status in POLL_AGAIN_STATUSES:
        return RunPhase.POLL_AGAIN
    if status in SUSPENDED_STATUSES:
        return RunPhase.SUSPENDED
    return RunPhase.TERMINAL


def is_terminal(status: Union[RunStatus, str]) -> bool:
    return classify(status) is RunPhase.TERMINAL


def _ensure_status(run: Run, operation: str, allowed: FrozenSet[RunStatus]) -> None:
    if run.status not in allowed:
        raise IllegalStateTransition(
            operation, run.status.value, (status.value for status in allowed)
        )


def ensure_can_cancel(run: Run) -> None:
    _ensure_status(run, "cancel", CANCELLABLE_STATUSES)


def ensure_can_submit(run: Run) -> None:
    _ensure_status(run, "submit tool outputs for", SUBMITTABLE_STATUSES)
    action_type = run.required_action.type
    if action_type != SUBMIT_TOOL_OUTPUTS:
        raise AssistantThreadsError(
            f"Run {run.id} is waiting on a '{action_type}' action, not on tool outputs"
        )


def ensure_same_run(observed: Run, thread_id: str, run_id: str) -> None:
    if observed.id != run_id or observed.thread_id != thread_id:
        raise AssistantThreadsError(
            f"Observed run {observed.thread_id}/{observed.id} "
            f"does not match {thread_id}/{run_id}"
        )


class PollTracker:
    """Counts poll-again observations for one wait loop.

    Each wait owns its own tracker; nothing here is shared between loops.
    """

    def __init__(self, max_polls: int) -> None:
        if max_polls < 1:
            raise AssistantThreadsError("max_polls must be at least 1")
        self.max_polls = max_polls
        self.polls = 0
        self.last: Optional[Run] = None

    def observe(self, run: Run) -> bool:
        """Record a fetched snapshot; return ``True`` once the run stops needing polls."""
        previous = self.last
        if (
            previous is not None
            and previous.status is RunStatus.CANCELLING
            and run.status in (RunStatus.QUEUED, RunStatus.IN_PROGRESS)
        ):
            logger.warning(
                "Run %s went from cancelling back to %s; continuing to poll",
                run.id,
                run.status.value,
            )
        self.polls += 1
        self.last = run
        phase = classify(run.status)
        logger.debug("Poll %d/%d of run %s: %s", self.polls, self.max_polls, run.id, run.status.value)
        return phase is not RunPhase.POLL_AGAIN

    @property
    def exhausted(self) -> bool:
        return self.polls >= self.max_polls

    def timeout(self) -> PollingTimeout:
        assert self.last is not None
        logger.info("Gave up on run %s after %d polls (%s)", self.last.id, self.polls, self.last.status.value)
        return PollingTimeout(self.last, self.polls)
