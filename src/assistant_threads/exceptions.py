"""Exception types for the assistant-threads client."""

from __future__ import annotations

from typing import TYPE_CHECKING, FrozenSet, Iterable, Optional

if TYPE_CHECKING:
    from .models import Run


class AssistantThreadsError(Exception):
    """Base error raised by the client."""

    def __init__(self, message: str, *, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code

    def __str__(self) -> str:
        if self.status_code is not None:
            return f"{self.message} (status {self.status_code})"
        return self.message


class TransportFailure(AssistantThreadsError):
    """Network failure, timeout or server-side (5xx) error."""


class InvalidRequest(AssistantThreadsError):
    """The service rejected the request (4xx)."""


class PollingTimeout(AssistantThreadsError):
    """A run was still queued or in progress after the last allowed poll.

    The last fetched snapshot is kept on ``run`` so callers can inspect it
    or resume polling.
    """

    def __init__(self, run: "Run", polls: int) -> None:
        super().__init__(
            f"Run {run.id} still {run.status.value} after {polls} polls"
        )
        self.run = run
        self.polls = polls


class WaitCancelled(AssistantThreadsError):
    """Waiting on a run was stopped locally; the run itself is untouched."""

    def __init__(self, run: Optional["Run"] = None) -> None:
        super().__init__("Stopped waiting for run")
        self.run = run


class IllegalStateTransition(AssistantThreadsError):
    def __init__(self, operation: str, status: str, allowed: Iterable[str]) -> None:
        self.operation = operation
        self.status = status
        self.allowed: FrozenSet[str] = frozenset(allowed)
        super().__init__(
            f"Cannot {operation} a run in status '{status}' "
            f"(allowed: {', '.join(sorted(self.allowed))})"
        )


class IncompleteToolOutputs(AssistantThreadsError):
    """Submitted outputs do not match the outstanding tool calls one to one."""

    def __init__(
        self,
        *,
        missing: Iterable[str] = (),
        unexpected: Iterable[str] = (),
        duplicated: Iterable[str] = (),
    ) -> None:
        self.missing: FrozenSet[str] = frozenset(missing)
        self.unexpected: FrozenSet[str] = frozenset(unexpected)
        self.duplicated: FrozenSet[str] = frozenset(duplicated)
        parts = []
        if self.missing:
            parts.append(f"missing {sorted(self.missing)}")
        if self.unexpected:
            parts.append(f"unexpected {sorted(self.unexpected)}")
        if self.duplicated:
            parts.append(f"duplicated {sorted(self.duplicated)}")
        super().__init__("Tool outputs do not match required calls: " + "; ".join(parts))


class NoActionRequired(AssistantThreadsError):
    def __init__(self, run: "Run") -> None:
        super().__init__(f"Run {run.id} does not require action (status {run.status.value})")
        self.run = run
