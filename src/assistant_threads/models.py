"""Run, run step and tool call types for the assistant-threads client."""

from __future__ import annotations

import json
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from .threads import CreateThreadRequest, ListResponse
from .types import FrozenModel, RequestMetadata, ResponseMetadata

SUBMIT_TOOL_OUTPUTS = "submit_tool_outputs"


class RunStatus(str, Enum):
    QUEUED = "queued"
    IN_PROGRESS = "in_progress"
    REQUIRES_ACTION = "requires_action"
    CANCELLING = "cancelling"
    CANCELLED = "cancelled"
    FAILED = "failed"
    COMPLETED = "completed"
    EXPIRED = "expired"
    INCOMPLETE = "incomplete"


class FunctionCall(FrozenModel):
    name: str
    # Raw JSON text produced by the model; may not parse.
    arguments: str


class ToolCall(FrozenModel):
    """A function invocation the service asks the caller to perform."""

    id: str
    type: str = "function"
    function: FunctionCall

    def parse_arguments(self) -> Dict[str, Any]:
        """Decode ``function.arguments``; an empty payload decodes to ``{}``."""
        if not self.function.arguments.strip():
            return {}
        arguments = json.loads(self.function.arguments)
        if not isinstance(arguments, dict):
            raise ValueError(
                f"Arguments for tool call {self.id} must be a JSON object, "
                f"got {type(arguments).__name__}"
            )
        return arguments


class SubmitToolOutputs(FrozenModel):
    tool_calls: List[ToolCall]


class RequiredAction(FrozenModel):
    """What the run is waiting on, keyed by ``type``.

    ``submit_tool_outputs`` is the only variant the service currently
    emits. Other types still decode, with an empty ``tool_calls``, so
    callers should keep a default branch when switching on ``type``.
    """

    type: str
    submit_tool_outputs: Optional[SubmitToolOutputs] = None

    @model_validator(mode="after")
    def _variant_has_payload(self) -> "RequiredAction":
        if self.type == SUBMIT_TOOL_OUTPUTS:
            if self.submit_tool_outputs is None or not self.submit_tool_outputs.tool_calls:
                raise ValueError("submit_tool_outputs action must carry at least one tool call")
        return self

    @property
    def tool_calls(self) -> List[ToolCall]:
        if self.submit_tool_outputs is None:
            return []
        return list(self.submit_tool_outputs.tool_calls)


class FunctionDefinition(BaseModel):
    name: str
    description: Optional[str] = None
    # JSON schema describing the arguments the model should produce.
    parameters: Dict[str, Any] = Field(default_factory=dict)


class Tool(BaseModel):
    """A tool enabled for a run."""

    type: str = "function"
    function: Optional[FunctionDefinition] = None

    @model_validator(mode="after")
    def _function_tools_have_definition(self) -> "Tool":
        if self.type == "function" and self.function is None:
            raise ValueError("function tools require a function definition")
        return self

    @classmethod
    def from_function(
        cls,
        name: str,
        description: Optional[str] = None,
        parameters: Optional[Dict[str, Any]] = None,
    ) -> "Tool":
        return cls(
            type="function",
            function=FunctionDefinition(
                name=name, description=description, parameters=parameters or {}
            ),
        )


class LastError(FrozenModel):
    code: str
    message: str


class Run(FrozenModel):
    """Snapshot of one execution of an assistant against a thread."""

    id: str
    object: str = "thread.run"
    created_at: datetime
    thread_id: str
    assistant_id: str
    status: RunStatus
    required_action: Optional[RequiredAction] = None
    last_error: Optional[LastError] = None
    model: Optional[str] = None
    instructions: Optional[str] = None
    tools: List[Tool] = Field(default_factory=list)
    metadata: ResponseMetadata = Field(default_factory=dict)
    started_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    failed_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @model_validator(mode="after")
    def _required_action_matches_status(self) -> "Run":
        waiting = self.status is RunStatus.REQUIRES_ACTION
        if waiting and self.required_action is None:
            raise ValueError("run in requires_action must carry a required_action")
        if not waiting and self.required_action is not None:
            raise ValueError(
                f"run in {self.status.value} must not carry a required_action"
            )
        return self


class ThreadRunsList(ListResponse[Run]):
    """Response containing runs of a thread."""


class StepFunctionCall(FrozenModel):
    name: str
    arguments: str
    output: Optional[str] = None


class StepToolCall(FrozenModel):
    id: str
    type: str
    function: Optional[StepFunctionCall] = None


class MessageCreationDetails(FrozenModel):
    message_id: str


class StepDetails(FrozenModel):
    type: str  # "message_creation" or "tool_calls"
    message_creation: Optional[MessageCreationDetails] = None
    tool_calls: Optional[List[StepToolCall]] = None


class RunStep(FrozenModel):
    """Trace record of one action taken during a run."""

    id: str
    object: str = "thread.run.step"
    created_at: datetime
    assistant_id: str
    thread_id: str
    run_id: str
    type: str
    status: str
    step_details: StepDetails
    last_error: Optional[LastError] = None
    expired_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    failed_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    metadata: ResponseMetadata = Field(default_factory=dict)


class RunStepsList(ListResponse[RunStep]):
    """Response containing the steps of a run."""


class CreateRunRequest(BaseModel):
    """Options for starting a run on an existing thread.

    ``model``, ``instructions`` and ``tools`` override the assistant's own
    settings for this run only.
    """

    assistant_id: str
    model: Optional[str] = None
    instructions: Optional[str] = None
    additional_instructions: Optional[str] = None
    tools: Optional[List[Tool]] = None
    metadata: Optional[RequestMetadata] = None

    @field_validator("assistant_id")
    @classmethod
    def _assistant_id_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("assistant_id must be a non-empty string")
        return value


class CreateThreadAndRunRequest(BaseModel):
    """Options for creating a thread and starting its first run in one call."""

    assistant_id: str
    thread: Optional[CreateThreadRequest] = None
    model: Optional[str] = None
    instructions: Optional[str] = None
    tools: Optional[List[Tool]] = None
    metadata: Optional[RequestMetadata] = None

    @field_validator("assistant_id")
    @classmethod
    def _assistant_id_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("assistant_id must be a non-empty string")
        return value
