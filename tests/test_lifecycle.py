import logging

import pytest

from assistant_threads import (
    AssistantThreadsError,
    IllegalStateTransition,
    PollingTimeout,
    Run,
    RunPhase,
    RunStatus,
    classify,
    is_terminal,
)
from assistant_threads.lifecycle import PollTracker, ensure_can_cancel, ensure_can_submit

from conftest import make_run, make_tool_call


def _run(status):
    tool_calls = [make_tool_call()] if status == "requires_action" else None
    return Run.model_validate(make_run(status, tool_calls=tool_calls))


@pytest.mark.parametrize(
    "status, phase",
    [
        ("queued", RunPhase.POLL_AGAIN),
        ("in_progress", RunPhase.POLL_AGAIN),
        ("cancelling", RunPhase.POLL_AGAIN),
        ("requires_action", RunPhase.SUSPENDED),
        ("cancelled", RunPhase.TERMINAL),
        ("failed", RunPhase.TERMINAL),
        ("completed", RunPhase.TERMINAL),
        ("expired", RunPhase.TERMINAL),
        ("incomplete", RunPhase.TERMINAL),
    ],
)
def test_every_status_has_a_phase(status, phase):
    assert classify(status) is phase
    assert classify(RunStatus(status)) is phase


def test_failed_is_terminal_but_requires_action_is_not():
    assert is_terminal(RunStatus.FAILED)
    assert not is_terminal(RunStatus.REQUIRES_ACTION)


@pytest.mark.parametrize("status", ["queued", "in_progress"])
def test_cancel_allowed_while_running(status):
    ensure_can_cancel(_run(status))


@pytest.mark.parametrize(
    "status", ["requires_action", "cancelling", "cancelled", "failed", "completed", "expired"]
)
def test_cancel_rejected_otherwise(status):
    with pytest.raises(IllegalStateTransition) as exc_info:
        ensure_can_cancel(_run(status))
    assert exc_info.value.status == status
    assert exc_info.value.allowed == {"queued", "in_progress"}


@pytest.mark.parametrize("status", ["queued", "in_progress", "completed", "failed"])
def test_submit_requires_action(status):
    with pytest.raises(IllegalStateTransition):
        ensure_can_submit(_run(status))


def test_tracker_stops_on_suspend_and_terminal_states():
    tracker = PollTracker(max_polls=5)
    assert not tracker.observe(_run("queued"))
    assert not tracker.observe(_run("in_progress"))
    assert tracker.observe(_run("requires_action"))
    assert tracker.polls == 3
    assert tracker.last.status is RunStatus.REQUIRES_ACTION


def test_tracker_timeout_keeps_last_snapshot():
    tracker = PollTracker(max_polls=2)
    tracker.observe(_run("queued"))
    tracker.observe(_run("in_progress"))

    assert tracker.exhausted
    error = tracker.timeout()
    assert isinstance(error, PollingTimeout)
    assert error.run.status is RunStatus.IN_PROGRESS
    assert error.polls == 2


def test_tracker_requires_a_positive_budget():
    with pytest.raises(AssistantThreadsError):
        PollTracker(max_polls=0)


def test_tracker_flags_cancelling_reversal(caplog):
    tracker = PollTracker(max_polls=5)
    tracker.observe(_run("cancelling"))
    with caplog.at_level(logging.WARNING, logger="assistant_threads.lifecycle"):
        assert not tracker.observe(_run("in_progress"))
    assert "cancelling back to in_progress" in caplog.text


def test_submit_requires_tool_output_action():
    payload = make_run("requires_action")
    payload["required_action"] = {"type": "confirm_handoff"}
    with pytest.raises(AssistantThreadsError, match="confirm_handoff"):
        ensure_can_submit(Run.model_validate(payload))
