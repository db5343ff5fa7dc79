from __future__ import annotations

import asyncio
import logging
from types import TracebackType
from typing import Any, AsyncIterator, Dict, Mapping, Optional, Union

import httpx

from .exceptions import AssistantThreadsError, TransportFailure, WaitCancelled
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
from .streams import AsyncRunStatusStream
from .sync_client import (
    DEFAULT_BASE_URL,
    DEFAULT_BETA_HEADER,
    _decode,
    _headers,
    _raise_for_status,
    _resolve_api_key,
)
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
from .tools import (
    ToolOutputsInput,
    coerce_submission,
    dispatch_tool_calls_async,
    ensure_complete_outputs,
)
from .types import AsyncSleepFunc, AsyncToolHandler, ResponseHook, RunStatusCallback, ToolHandler
from .utils import list_params, metadata_payload, require_id, to_payload, validate_response

logger = logging.getLogger(__name__)


class AsyncThreadsClient:
    """Asynchronous threads and runs client."""

    def __init__(
        self,
        api_key: str = "",
        *,
        base_url: str = DEFAULT_BASE_URL,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        response_hook: Optional[ResponseHook] = None,
        organization: Optional[str] = None,
        beta_header: str = DEFAULT_BETA_HEADER,
        sleep: Optional[AsyncSleepFunc] = None,
    ) -> None:
        self._api_key = _resolve_api_key(api_key)
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._headers = _headers(self._api_key, beta_header, organization)
        self._client = httpx.AsyncClient(timeout=timeout, transport=transport)
        self._response_hook = response_hook
        self._sleep = sleep or asyncio.sleep

    async def __aenter__(self) -> "AsyncThreadsClient":
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.close()

    async def close(self) -> None:
        await self._client.aclose()

    async def _request(
        self,
        method: str,
        endpoint: str,
        json: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, str]] = None,
    ) -> Any:
        url = f"{self._base_url}{endpoint}"
        logger.debug("%s %s", method, endpoint)
        try:
            response = await self._client.request(
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

    async def _pause(self, delay: float, stop: Optional[asyncio.Event], run: Run) -> None:
        if stop is None:
            await self._sleep(delay)
            return
        sleeper = asyncio.ensure_future(self._sleep(delay))
        stopper = asyncio.ensure_future(stop.wait())
        try:
            await asyncio.wait({sleeper, stopper}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            sleeper.cancel()
            stopper.cancel()
        if sleeper.done() and not sleeper.cancelled():
            sleeper.result()
        if stop.is_set():
            raise WaitCancelled(run)

    # Thread methods
    async def create_thread(self, request: Optional[CreateThreadRequest] = None) -> Thread:
        """Create a new conversation thread."""
        payload = to_payload(request) if request else {}
        data = await self._request("POST", "/threads", json=payload)
        return validate_response(Thread, data)

    async def retrieve_thread(self, thread_id: str) -> Thread:
        require_id(thread_id, "Thread ID")
        data = await self._request("GET", f"/threads/{thread_id}")
        return validate_response(Thread, data)

    async def modify_thread(self, thread_id: str, metadata: Mapping[str, str]) -> Thread:
        """Replace a thread's metadata; nothing else about a thread can change."""
        require_id(thread_id, "Thread ID")
        data = await self._request(
            "POST", f"/threads/{thread_id}", json=metadata_payload(metadata)
        )
        return validate_response(Thread, data)

    async def delete_thread(self, thread_id: str) -> bool:
        require_id(thread_id, "Thread ID")
        data = await self._request("DELETE", f"/threads/{thread_id}")
        return validate_response(DeletedResponse, data).deleted

    # Message methods
    async def create_message(
        self, thread_id: str, request: CreateMessageRequest
    ) -> ThreadMessage:
        require_id(thread_id, "Thread ID")
        data = await self._request(
            "POST", f"/threads/{thread_id}/messages", json=to_payload(request)
        )
        return validate_response(ThreadMessage, data)

    async def retrieve_message(self, thread_id: str, message_id: str) -> ThreadMessage:
        require_id(thread_id, "Thread ID")
        require_id(message_id, "Message ID")
        data = await self._request("GET", f"/threads/{thread_id}/messages/{message_id}")
        return validate_response(ThreadMessage, data)

    async def modify_message(
        self, thread_id: str, message_id: str, metadata: Mapping[str, str]
    ) -> ThreadMessage:
        require_id(thread_id, "Thread ID")
        require_id(message_id, "Message ID")
        data = await self._request(
            "POST",
            f"/threads/{thread_id}/messages/{message_id}",
            json=metadata_payload(metadata),
        )
        return validate_response(ThreadMessage, data)

    async def list_messages(
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
        data = await self._request(
            "GET",
            f"/threads/{thread_id}/messages",
            params=list_params(limit, order, after, before),
        )
        return validate_response(ThreadMessagesList, data)

    async def retrieve_message_file(
        self, thread_id: str, message_id: str, file_id: str
    ) -> ThreadMessageFile:
        require_id(thread_id, "Thread ID")
        require_id(message_id, "Message ID")
        require_id(file_id, "File ID")
        data = await self._request(
            "GET", f"/threads/{thread_id}/messages/{message_id}/files/{file_id}"
        )
        return validate_response(ThreadMessageFile, data)

    async def list_message_files(
        self,
        thread_id: str,
        message_id: str,
        *,
        limit: Optional[int] = None,
        order: str = "desc",
        after: Optional[str] = None,
        before: Optional[str] = None,
    ) -> ThreadMessageFilesList:
        require_id(thread_id, "Thread ID")
        require_id(message_id, "Message ID")
        data = await self._request(
            "GET",
            f"/threads/{thread_id}/messages/{message_id}/files",
            params=list_params(limit, order, after, before),
        )
        return validate_response(ThreadMessageFilesList, data)

    # Run methods
    async def create_run(self, thread_id: str, request: CreateRunRequest) -> Run:
        require_id(thread_id, "Thread ID")
        data = await self._request(
            "POST", f"/threads/{thread_id}/runs", json=to_payload(request)
        )
        return validate_response(Run, data)

    async def create_thread_and_run(self, request: CreateThreadAndRunRequest) -> Run:
        data = await self._request("POST", "/threads/runs", json=to_payload(request))
        return validate_response(Run, data)

    async def retrieve_run(self, thread_id: str, run_id: str) -> Run:
        require_id(thread_id, "Thread ID")
        require_id(run_id, "Run ID")
        data = await self._request("GET", f"/threads/{thread_id}/runs/{run_id}")
        return validate_response(Run, data)

    async def modify_run(
        self, thread_id: str, run_id: str, metadata: Mapping[str, str]
    ) -> Run:
        require_id(thread_id, "Thread ID")
        require_id(run_id, "Run ID")
        data = await self._request(
            "POST", f"/threads/{thread_id}/runs/{run_id}", json=metadata_payload(metadata)
        )
        return validate_response(Run, data)

    async def list_runs(
        self,
        thread_id: str,
        *,
        limit: Optional[int] = None,
        order: str = "desc",
        after: Optional[str] = None,
        before: Optional[str] = None,
    ) -> ThreadRunsList:
        require_id(thread_id, "Thread ID")
        data = await self._request(
            "GET",
            f"/threads/{thread_id}/runs",
            params=list_params(limit, order, after, before),
        )
        return validate_response(ThreadRunsList, data)

    async def cancel_run(
        self, thread_id: str, run_id: str, *, observed: Optional[Run] = None
    ) -> Run:
        """Ask the service to stop a queued or in-progress run.

        See :meth:`ThreadsClient.cancel_run`.
        """
        require_id(thread_id, "Thread ID")
        require_id(run_id, "Run ID")
        if observed is None:
            observed = await self.retrieve_run(thread_id, run_id)
        else:
            ensure_same_run(observed, thread_id, run_id)
        ensure_can_cancel(observed)
        data = await self._request("POST", f"/threads/{thread_id}/runs/{run_id}/cancel")
        return validate_response(Run, data)

    async def submit_tool_outputs(
        self,
        thread_id: str,
        run_id: str,
        outputs: ToolOutputsInput,
        *,
        observed: Optional[Run] = None,
    ) -> Run:
        """Submit the results of every outstanding tool call in one request.

        See :meth:`ThreadsClient.submit_tool_outputs`.
        """
        require_id(thread_id, "Thread ID")
        require_id(run_id, "Run ID")
        submission = coerce_submission(outputs)
        if observed is None:
            observed = await self.retrieve_run(thread_id, run_id)
        else:
            ensure_same_run(observed, thread_id, run_id)
        ensure_can_submit(observed)
        ensure_complete_outputs(observed, submission)
        data = await self._request(
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
        stop: Optional[asyncio.Event] = None,
    ) -> AsyncRunStatusStream:
        require_id(thread_id, "Thread ID")
        require_id(run_id, "Run ID")
        return AsyncRunStatusStream(
            self,
            thread_id,
            run_id,
            poll_interval=poll_interval,
            max_polls=max_polls,
            on_status=on_status,
            stop=stop,
        )

    async def await_run_progress(
        self,
        thread_id: str,
        run_id: str,
        *,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        max_polls: int = DEFAULT_MAX_POLLS,
        on_status: Optional[RunStatusCallback] = None,
        stop: Optional[asyncio.Event] = None,
    ) -> Run:
        """Poll a run until it is no longer queued, in progress or cancelling.

        Cancelling the awaiting task also stops the loop; the remote run is
        not cancelled by either.
        """
        last = None
        async for last in self.stream_run_status(
            thread_id,
            run_id,
            poll_interval=poll_interval,
            max_polls=max_polls,
            on_status=on_status,
            stop=stop,
        ):
            pass
        return last

    async def run_and_wait(
        self,
        thread_id: Optional[str],
        request: Union[CreateRunRequest, CreateThreadAndRunRequest],
        *,
        tool_handlers: Optional[Mapping[str, Union[ToolHandler, AsyncToolHandler]]] = None,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        max_polls: int = DEFAULT_MAX_POLLS,
        on_status: Optional[RunStatusCallback] = None,
        stop: Optional[asyncio.Event] = None,
    ) -> Run:
        """Start a run and drive it to completion.

        Handlers may be plain functions or coroutine functions. See
        :meth:`ThreadsClient.run_and_wait`.
        """
        if thread_id is None:
            if not isinstance(request, CreateThreadAndRunRequest):
                raise AssistantThreadsError(
                    "A CreateThreadAndRunRequest is required when thread_id is None"
                )
            run = await self.create_thread_and_run(request)
        else:
            if not isinstance(request, CreateRunRequest):
                raise AssistantThreadsError("A CreateRunRequest is required for an existing thread")
            run = await self.create_run(thread_id, request)

        while True:
            run = await self.await_run_progress(
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
            submission = await dispatch_tool_calls_async(run, tool_handlers)
            run = await self.submit_tool_outputs(
                run.thread_id, run.id, submission, observed=run
            )

    # Run step methods
    async def retrieve_run_step(self, thread_id: str, run_id: str, step_id: str) -> RunStep:
        require_id(thread_id, "Thread ID")
        require_id(run_id, "Run ID")
        require_id(step_id, "Step ID")
        data = await self._request(
            "GET", f"/threads/{thread_id}/runs/{run_id}/steps/{step_id}"
        )
        return validate_response(RunStep, data)

    async def list_run_steps(
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
        data = await self._request(
            "GET",
            f"/threads/{thread_id}/runs/{run_id}/steps",
            params=list_params(limit, order, after, before),
        )
        return validate_response(RunStepsList, data)

    async def iter_run_steps(
        self,
        thread_id: str,
        run_id: str,
        *,
        limit: Optional[int] = None,
        order: str = "desc",
    ) -> AsyncIterator[RunStep]:
        """Yield every step of a run, following ``after`` cursors page by page."""
        after = None
        while True:
            page = await self.list_run_steps(
                thread_id, run_id, limit=limit, order=order, after=after
            )
            for step in page.data:
                yield step
            if not page.has_more or not page.last_id:
                return
            after = page.last_id
