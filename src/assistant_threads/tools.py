"""Tool-call round trip: surfacing required calls and packaging their results."""

from __future__ import annotations

import inspect
import json
import logging
from collections import Counter
from typing import Any, Iterable, List, Mapping, Union

from pydantic import BaseModel, field_validator

from .exceptions import AssistantThreadsError, IncompleteToolOutputs, NoActionRequired
from .models import Run, RunStatus, ToolCall
from .types import AsyncToolHandler, ToolHandler

logger = logging.getLogger(__name__)


class ToolOutput(BaseModel):
    """Result of executing one tool call."""

    tool_call_id: str
    output: str

    @field_validator("tool_call_id")
    @classmethod
    def _id_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("tool_call_id must be a non-empty string")
        return value


class SubmitToolOutputsRequest(BaseModel):
    tool_outputs: List[ToolOutput]


ToolOutputsInput = Union[SubmitToolOutputsRequest, Mapping[str, Any], Iterable[ToolOutput]]


def describe_required_calls(run: Run) -> List[ToolCall]:
    """Return the tool calls ``run`` is waiting on, in the service's order."""
    if run.status is not RunStatus.REQUIRES_ACTION or run.required_action is None:
        raise NoActionRequired(run)
    return run.required_action.tool_calls


def _encode_result(result: Any) -> str:
    if isinstance(result, str):
        return result
    return json.dumps(result)


def build_submission(results: Mapping[str, Any]) -> SubmitToolOutputsRequest:
    """Package ``tool_call_id -> result`` pairs; non-string results are JSON-encoded."""
    return SubmitToolOutputsRequest(
        tool_outputs=[
            ToolOutput(tool_call_id=call_id, output=_encode_result(result))
            for call_id, result in results.items()
        ]
    )


def coerce_submission(outputs: ToolOutputsInput) -> SubmitToolOutputsRequest:
    if isinstance(outputs, SubmitToolOutputsRequest):
        return outputs
    if isinstance(outputs, Mapping):
        return build_submission(outputs)
    return SubmitToolOutputsRequest(tool_outputs=list(outputs))


def ensure_complete_outputs(run: Run, request: SubmitToolOutputsRequest) -> None:
    """Check that ``request`` answers every outstanding call exactly once."""
    required = {call.id for call in describe_required_calls(run)}
    counts = Counter(output.tool_call_id for output in request.tool_outputs)
    submitted = set(counts)
    missing = required - submitted
    unexpected = submitted - required
    duplicated = {call_id for call_id, count in counts.items() if count > 1}
    if missing or unexpected or duplicated:
        raise IncompleteToolOutputs(
            missing=missing, unexpected=unexpected, duplicated=duplicated
        )


def _handler_for(call: ToolCall, handlers: Mapping[str, Any]) -> Any:
    try:
        return handlers[call.function.name]
    except KeyError:
        raise AssistantThreadsError(
            f"No handler registered for tool '{call.function.name}' (call {call.id})"
        ) from None


def _arguments_for(call: ToolCall) -> dict:
    try:
        return call.parse_arguments()
    except ValueError as exc:
        raise AssistantThreadsError(
            f"Could not parse arguments for tool call {call.id}: {exc}"
        ) from exc


def dispatch_tool_calls(
    run: Run, handlers: Mapping[str, ToolHandler]
) -> SubmitToolOutputsRequest:
    """Run each required call through the handler registered under its function name.

    Handlers are called with the decoded arguments as keyword arguments.
    """
    results = {}
    for call in describe_required_calls(run):
        handler = _handler_for(call, handlers)
        logger.debug("Dispatching tool call %s to %s", call.id, call.function.name)
        results[call.id] = handler(**_arguments_for(call))
    return build_submission(results)


async def dispatch_tool_calls_async(
    run: Run, handlers: Mapping[str, Union[ToolHandler, AsyncToolHandler]]
) -> SubmitToolOutputsRequest:
    """Like :func:`dispatch_tool_calls`, awaiting handlers that return awaitables."""
    results = {}
    for call in describe_required_calls(run):
        handler = _handler_for(call, handlers)
        logger.debug("Dispatching tool call %s to %s", call.id, call.function.name)
        result = handler(**_arguments_for(call))
        if inspect.isawaitable(result):
            result = await result
        results[call.id] = result
    return build_submission(results)
