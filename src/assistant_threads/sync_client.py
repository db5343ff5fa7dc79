from __future__ import annotations

import logging
import os
import threading
import time
from types import TracebackType
from typing import Any, Dict, Iterator, Mapping, Optional, Union

import httpx

from .exceptions import AssistantThreadsError, InvalidRequest, TransportFailure, WaitCancelled
from .lifecycle import (
    DEFAULT_MAX_POLLS,
    DEFAULT_POLL_INTERVAL,
    ensure_can_cancel,
    ensure_can_submit,
    ensure_same_run,
)
from .models import (
    SUBMIT_TOOL_OUTPUTS,
    CreateRunRequest,
    CreateThreadAndRunRequest,
    Run,
    RunStatus,
    RunStep,
    RunStepsList,
    ThreadRunsList,
)
from .streams import RunStatusStream
from .threads import (
    CreateMessageRequest,
    CreateThreadRequest,
    DeletedResponse,
    Thread,
    ThreadMessage,
    ThreadMessageFile,
    ThreadMessageFilesList,
    ThreadMessagesList,
)
from .tools import ToolOutputsInput, coerce_submission, dispatch_tool_calls, ensure_complete_outputs
from .types import ResponseHook, RunStatusCallback, SleepFunc, ToolHandler
from .utils import (
    extract_error_message,
    list_params,
    metadata_payload,
    require_id,
    to_payload,
    validate_response,
)

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.openai.com/v1"
DEFAULT_BETA_HEADER = "assistants=v2"
API_KEY_ENV = "OPENAI_API_KEY"


def _resolve_api_key(api_key: str) -> str:
    api_key = api_key or os.environ.get(API_KEY_ENV, "")
    if not api_key.strip():
        raise AssistantThreadsError(
            f"API key must be a non-empty string (pass api_key or set {API_KEY_ENV})"
        )
    return api_key


def _headers(api_key: str, beta_header: str, organization: Optional[str]) -> Dict[str, str]:
    headers = {
        "Content-Type": "application/json",
        "Authorization": f"Bearer {api_key}",
        "OpenAI-Beta": beta_header,
    }
    if organization:
        headers["OpenAI-Organization"] = organization
    return headers


def _decode(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError as exc:
        raise AssistantThreadsError(
            f"Response body is not valid JSON: {response.text[:200]!r}",
            status_code=response.status_code,
        ) from exc


def _raise_for_status(exc: httpx.HTTPStatusError) -> None:
    message = extract_error_message(exc.response)
    status_code = exc.response.status_code
    if status_code >= 500:
        raise TransportFailure(message, status_code=status_code) from exc
    raise InvalidRequest(message, status_code=status_code) from exc


class ThreadsClient:
    """Synchronous threads and runs client."""

    def __init__(
        self,
        api_key: str = "",
        *,
        base_url: str = DEFAULT_BASE_URL,
        timeout: float = 30.0,
        transport: Optional[httpx.BaseTransport] = None,
        response_hook: Optional[ResponseHook] = None,
        organization: Optional[str] = None,
        beta_header: str = DEFAULT_BETA_HEADER,
        sleep: Optional[SleepFunc] = None,
    ) -> None:
        self._api_key = _resolve_api_key(api_key)
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._headers = _headers(self._api_key, beta_header, organization)
        self._client = httpx.Client(timeout=timeout, transport=transport)
        self._response_hook = response_hook
        self._sleep = sleep

    def __enter__(self) -> "ThreadsClient":
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()

    def close(self) -> None:
        self._client.close()

    def _request(
        self,
        method: str,
        endpoint: str,
        json: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, str]] = None,
    ) -> Any:
        url = f"{self._base_url}{endpoint}"
        logger.debug("%s %s", method, endpoint)
        try:
            response = self._client.request(
                method=method,
                url=url,
                json=json,
                params=params,
                headers=self._headers,
                timeout=self._timeout,
            )
            if self._response_hook:
                self._response_hook(response)
            response.raise_for_status()
            return _decode(response)
        except httpx.TimeoutException as exc:
            raise TransportFailure("Request timeout") from exc
        except httpx.HTTPStatusError as exc:
            _raise_for_status(exc)
        except httpx.HTTPError as exc:
            raise TransportFailure(f"Network error: {exc}") from exc

    def _pause(self, delay: float, stop: Optional[threading.Event], run: Run) -> None:
        if stop is not None and self._sleep is None:
            stopped = stop.wait(delay)
        else:
            (self._sleep or time.sleep)(delay)
            stopped = stop is not None and stop.is_set()
        if stopped:
            raise WaitCancelled(run)

    # Thread methods
    def create_thread(self, request: Optional[CreateThreadRequest] = None) -> Thread:
        """Create a new conversation thread."""
        payload = to_payload(request) if request else {}
        data = self._request("POST", "/threads", json=payload)
        return validate_response(Thread, data)

    def retrieve_thread(self, thread_id: str) -> Thread:
        require_id(thread_id, "Thread ID")
        data = self._request("GET", f"/threads/{thread_id}")
        return validate_response(Thread, data)

    def modify_thread(self, thread_id: str, metadata: Mapping[str, str]) -> Thread:
        """Replace a thread's metadata; nothing else about a thread can change."""
        require_id(thread_id, "Thread ID")
        data = self._request("POST", f"/threads/{thread_id}", json=metadata_payload(metadata))
        return validate_response(Thread, data)

    def delete_thread(self, thread_id: str) -> bool:
        require_id(thread_id, "Thread ID")
        data = self._request("DELETE", f"/threads/{thread_id}")
        return validate_response(DeletedResponse, data).deleted

    # Message methods
    def create_message(self, thread_id: str, request: CreateMessageRequest) -> ThreadMessage:
        require_id(thread_id, "Thread ID")
        data = self._request("POST", f"/threads/{thread_id}/messages", json=to_payload(request))
        return validate_response(ThreadMessage, data)

    def retrieve_message(self, thread_id: str, message_id: str) -> ThreadMessage:
        require_id(thread_id, "Thread ID")
        require_id(message_id, "Message ID")
        data = self._request("GET", f"/threads/{thread_id}/messages/{message_id}")
        return validate_response(ThreadMessage, data)

    def modify_message(
        self, thread_id: str, message_id: str, metadata: Mapping[str, str]
    ) -> ThreadMessage:
        require_id(thread_id, "Thread ID")
        require_id(message_id, "Message ID")
        data = self._request(
            "POST",
            f"/threads/{thread_id}/messages/{message_id}",
            json=metadata_payload(metadata),
        )
        return validate_response(ThreadMessage, data)

    def list_messages(
        self,
        thread_id: str,
        *,
        limit: Optional[int] = None,
        order: str = "desc",
        after: Optional[str] = None,
        before: Optional[str] = None,
    ) -> ThreadMessagesList:
        """List messages of a thread, newest first by default."""
        require_id(thread_id, "Thread ID")
        data = self._request(
            "GET",
            f"/threads/{thread_id}/messages",
            params=list_params(limit, order, after, before),
        )
        return validate_response(ThreadMessagesList, data)

    def retrieve_message_file(
        self, thread_id: str, message_id: str, file_id: str
    ) -> ThreadMessageFile:
        require_id(thread_id, "Thread ID")
        require_id(message_id, "Message ID")
        require_id(file_id, "File ID")
        data = self._request("GET", f"/threads/{thread_id}/messages/{message_id}/files/{file_id}")
        return validate_response(ThreadMessageFile, data)

    def list_message_files(
        self,
        thread_id: str,
        message_id: str,
        *,
        limit: Optional[int] = None,
        order: str = "desc",
        after: Optional[str] = None,
        before: Optional[str] = None,
    ) -> ThreadMessageFilesList:
        """List the files attached to a message."""
        require_id(thread_id, "Thread ID")
        require_id(message_id, "Message ID")
        data = self._request(
            "GET",
            f"/threads/{thread_id}/messages/{message_id}/files",
            params=list_params(limit, order, after, before),
        )
        return validate_response(ThreadMessageFilesList, data)

    # Run methods
    def create_run(self, thread_id: str, request: CreateRunRequest) -> Run:
        require_id(thread_id, "Thread ID")
        data = self._request("POST", f"/threads/{thread_id}/runs", json=to_payload(request))
        return validate_response(Run, data)

    def create_thread_and_run(self, request: CreateThreadAndRunRequest) -> Run:
        data = self._request("POST", "/threads/runs", json=to_payload(request))
        return validate_response(Run, data)

    def retrieve_run(self, thread_id: str, run_id: str) -> Run:
        require_id(thread_id, "Thread ID")
        require_id(run_id, "Run ID")
        data = self._request("GET", f"/threads/{thread_id}/runs/{run_id}")
        return validate_response(Run, data)

    def modify_run(self, thread_id: str, run_id: str, metadata: Mapping[str, str]) -> Run:
        require_id(thread_id, "Thread ID")
        require_id(run_id, "Run ID")
        data = self._request(
            "POST", f"/threads/{thread_id}/runs/{run_id}", json=metadata_payload(metadata)
        )
        return validate_response(Run, data)

    def list_runs(
        self,
        thread_id: str,
        *,
        limit: Optional[int] = None,
        order: str = "desc",
        after: Optional[str] = None,
        before: Optional[str] = None,
    ) -> ThreadRunsList:
        require_id(thread_id, "Thread ID")
        data = self._request(
            "GET",
            f"/threads/{thread_id}/runs",
            params=list_params(limit, order, after, before),
        )
        return validate_response(ThreadRunsList, data)

    def cancel_run(self, thread_id: str, run_id: str, *, observed: Optional[Run] = None) -> Run:
        """Ask the service to stop a queued or in-progress run.

        The precondition is checked against ``observed`` when given, without
        any request; otherwise the run is fetched first. The returned
        snapshot is usually still ``cancelling``; call
        :meth:`await_run_progress` for the final status.
        """
        require_id(thread_id, "Thread ID")
        require_id(run_id, "Run ID")
        if observed is None:
            observed = self.retrieve_run(thread_id, run_id)
        else:
            ensure_same_run(observed, thread_id, run_id)
        ensure_can_cancel(observed)
        data = self._request("POST", f"/threads/{thread_id}/runs/{run_id}/cancel")
        return validate_response(Run, data)

    def submit_tool_outputs(
        self,
        thread_id: str,
        run_id: str,
        outputs: ToolOutputsInput,
        *,
        observed: Optional[Run] = None,
    ) -> Run:
        """Submit the results of every outstanding tool call in one request.

        ``outputs`` may be a :class:`SubmitToolOutputsRequest`, an iterable of
        :class:`ToolOutput` or a mapping of tool call id to result. It must
        answer each call in the run's required action exactly once.
        """
        require_id(thread_id, "Thread ID")
        require_id(run_id, "Run ID")
        submission = coerce_submission(outputs)
        if observed is None:
            observed = self.retrieve_run(thread_id, run_id)
        else:
            ensure_same_run(observed, thread_id, run_id)
        ensure_can_submit(observed)
        ensure_complete_outputs(observed, submission)
        data = self._request(
            "POST",
            f"/threads/{thread_id}/runs/{run_id}/submit_tool_outputs",
            json=to_payload(submission),
        )
        return validate_response(Run, data)

    def stream_run_status(
        self,
        thread_id: str,
        run_id: str,
        *,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        max_polls: int = DEFAULT_MAX_POLLS,
        on_status: Optional[RunStatusCallback] = None,
        stop: Optional[threading.Event] = None,
    ) -> RunStatusStream:
        require_id(thread_id, "Thread ID")
        require_id(run_id, "Run ID")
        return RunStatusStream(
            self,
            thread_id,
            run_id,
            poll_interval=poll_interval,
            max_polls=max_polls,
            on_status=on_status,
            stop=stop,
        )

    def await_run_progress(
        self,
        thread_id: str,
        run_id: str,
        *,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        max_polls: int = DEFAULT_MAX_POLLS,
        on_status: Optional[RunStatusCallback] = None,
        stop: Optional[threading.Event] = None,
    ) -> Run:
        """Poll a run until it is no longer queued, in progress or cancelling.

        Returns the last snapshot, which is either terminal or waiting on
        tool outputs. Raises :class:`PollingTimeout` after ``max_polls``
        polls that all still needed polling, and :class:`WaitCancelled` when
        ``stop`` is set while waiting.
        """
        last = None
        for last in self.stream_run_status(
            thread_id,
            run_id,
            poll_interval=poll_interval,
            max_polls=max_polls,
            on_status=on_status,
            stop=stop,
        ):
            pass
        return last

    def run_and_wait(
        self,
        thread_id: Optional[str],
        request: Union[CreateRunRequest, CreateThreadAndRunRequest],
        *,
        tool_handlers: Optional[Mapping[str, ToolHandler]] = None,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        max_polls: int = DEFAULT_MAX_POLLS,
        on_status: Optional[RunStatusCallback] = None,
        stop: Optional[threading.Event] = None,
    ) -> Run:
        """Start a run and drive it to completion.

        With ``thread_id=None`` a new thread is created together with the
        run. When ``tool_handlers`` is given, every tool-output request is
        answered by calling the handler registered under the function name;
        otherwise the run is returned as soon as it requires action.
        """
        if thread_id is None:
            if not isinstance(request, CreateThreadAndRunRequest):
                raise AssistantThreadsError(
                    "A CreateThreadAndRunRequest is required when thread_id is None"
                )
            run = self.create_thread_and_run(request)
        else:
            if not isinstance(request, CreateRunRequest):
                raise AssistantThreadsError("A CreateRunRequest is required for an existing thread")
            run = self.create_run(thread_id, request)

        while True:
            run = self.await_run_progress(
                run.thread_id,
                run.id,
                poll_interval=poll_interval,
                max_polls=max_polls,
                on_status=on_status,
                stop=stop,
            )
            if (
                run.status is not RunStatus.REQUIRES_ACTION
                or not tool_handlers
                or run.required_action.type != SUBMIT_TOOL_OUTPUTS
            ):
                return run
            submission = dispatch_tool_calls(run, tool_handlers)
            run = self.submit_tool_outputs(run.thread_id, run.id, submission, observed=run)

    # Run step methods
    def retrieve_run_step(self, thread_id: str, run_id: str, step_id: str) -> RunStep:
        require_id(thread_id, "Thread ID")
        require_id(run_id, "Run ID")
        require_id(step_id, "Step ID")
        data = self._request("GET", f"/threads/{thread_id}/runs/{run_id}/steps/{step_id}")
        return validate_response(RunStep, data)

    def list_run_steps(
        self,
        thread_id: str,
        run_id: str,
        *,
        limit: Optional[int] = None,
        order: str = "desc",
        after: Optional[str] = None,
        before: Optional[str] = None,
    ) -> RunStepsList:
        require_id(thread_id, "Thread ID")
        require_id(run_id, "Run ID")
        data = self._request(
            "GET",
            f"/threads/{thread_id}/runs/{run_id}/steps",
            params=list_params(limit, order, after, before),
        )
        return validate_response(RunStepsList, data)

    def iter_run_steps(
        self,
        thread_id: str,
        run_id: str,
        *,
        limit: Optional[int] = None,
        order: str = "desc",
    ) -> Iterator[RunStep]:
        """Yield every step of a run, following ``after`` cursors page by page."""
        after = None
        while True:
            page = self.list_run_steps(thread_id, run_id, limit=limit, order=order, after=after)
            yield from page.data
            if not page.has_more or not page.last_id:
                return
            after = page.last_id
