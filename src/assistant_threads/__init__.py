"""Client for the assistant threads and runs API."""

from importlib.metadata import version

from .client import AsyncThreadsClient, ThreadsClient
from .exceptions import (
    AssistantThreadsError,
    IllegalStateTransition,
    IncompleteToolOutputs,
    InvalidRequest,
    NoActionRequired,
    PollingTimeout,
    TransportFailure,
    WaitCancelled,
)
from .lifecycle import RunPhase, classify, is_terminal
from .models import (
    CreateRunRequest,
    CreateThreadAndRunRequest,
    FunctionCall,
    FunctionDefinition,
    RequiredAction,
    Run,
    RunStatus,
    RunStep,
    RunStepsList,
    ThreadRunsList,
    Tool,
    ToolCall,
)
from .streams import (
    AsyncRunStatusStream,
    RunStatusStream,
)
from .threads import (
    CreateMessageRequest,
    CreateThreadRequest,
    Thread,
    ThreadMessage,
    ThreadMessageFile,
    ThreadMessageFilesList,
    ThreadMessagesList,
)
from .tools import (
    SubmitToolOutputsRequest,
    ToolOutput,
    build_submission,
    describe_required_calls,
    dispatch_tool_calls,
    dispatch_tool_calls_async,
)

__version__ = version("assistant-threads")

__all__ = [
    "ThreadsClient",
    "AsyncThreadsClient",
    # Errors
    "AssistantThreadsError",
    "TransportFailure",
    "InvalidRequest",
    "PollingTimeout",
    "WaitCancelled",
    "IllegalStateTransition",
    "IncompleteToolOutputs",
    "NoActionRequired",
    # Run lifecycle
    "RunPhase",
    "classify",
    "is_terminal",
    "RunStatusStream",
    "AsyncRunStatusStream",
    # Run types
    "Run",
    "RunStatus",
    "RequiredAction",
    "ToolCall",
    "FunctionCall",
    "Tool",
    "FunctionDefinition",
    "RunStep",
    "RunStepsList",
    "ThreadRunsList",
    "CreateRunRequest",
    "CreateThreadAndRunRequest",
    # Thread types
    "Thread",
    "ThreadMessage",
    "ThreadMessagesList",
    "ThreadMessageFile",
    "ThreadMessageFilesList",
    "CreateThreadRequest",
    "CreateMessageRequest",
    # Tool outputs
    "ToolOutput",
    "SubmitToolOutputsRequest",
    "describe_required_calls",
    "build_submission",
    "dispatch_tool_calls",
    "dispatch_tool_calls_async",
    "__version__",
]
