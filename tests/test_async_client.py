import asyncio

import httpx
import pytest
import pytest_asyncio

from assistant_threads import (
    AssistantThreadsError,
    AsyncThreadsClient,
    CreateRunRequest,
    CreateThreadAndRunRequest,
    IllegalStateTransition,
    IncompleteToolOutputs,
    InvalidRequest,
    PollingTimeout,
    Run,
    RunStatus,
    WaitCancelled,
    build_submission,
    describe_required_calls,
)

from conftest import BASE_URL, make_run, make_step, make_tool_call

RUN_PATH = "/threads/thread_1/runs/run_1"


@pytest_asyncio.fixture
async def client(service, fake_async_sleep):
    async with AsyncThreadsClient(
        "test-key",
        base_url=BASE_URL,
        transport=httpx.MockTransport(service),
        sleep=fake_async_sleep,
    ) as client:
        yield client


@pytest.mark.asyncio
async def test_await_run_progress_returns_completed_after_three_polls(
    client, service, fake_async_sleep
):
    service.add("POST", "/threads/thread_1/runs", make_run("queued"))
    service.add("GET", RUN_PATH, make_run("queued"), make_run("in_progress"), make_run("completed"))

    run = await client.create_run("thread_1", CreateRunRequest(assistant_id="asst_1"))
    result = await client.await_run_progress("thread_1", run.id, poll_interval=2.0)

    assert result.status is RunStatus.COMPLETED
    assert len(service.calls("GET", RUN_PATH)) == 3
    assert fake_async_sleep.delays == [2.0, 2.0]


@pytest.mark.asyncio
async def test_await_run_progress_times_out(client, service):
    service.add("GET", RUN_PATH, make_run("in_progress"))

    with pytest.raises(PollingTimeout) as exc_info:
        await client.await_run_progress("thread_1", "run_1", max_polls=10)

    assert len(service.calls("GET", RUN_PATH)) == 10
    assert exc_info.value.run.status is RunStatus.IN_PROGRESS


@pytest.mark.asyncio
async def test_requires_action_suspends_the_loop(client, service):
    service.add(
        "GET", RUN_PATH, make_run("queued"), make_run("requires_action", tool_calls=[make_tool_call()])
    )

    run = await client.await_run_progress("thread_1", "run_1")

    assert run.status is RunStatus.REQUIRES_ACTION
    assert len(service.calls("GET", RUN_PATH)) == 2


@pytest.mark.asyncio
async def test_tool_output_round_trip(client, service):
    service.add(
        "GET",
        RUN_PATH,
        make_run("requires_action", tool_calls=[make_tool_call()]),
        make_run("completed"),
    )
    service.add("POST", RUN_PATH + "/submit_tool_outputs", make_run("queued"))

    run = await client.await_run_progress("thread_1", "run_1")
    results = {call.id: "28C" for call in describe_required_calls(run)}
    run = await client.submit_tool_outputs(
        "thread_1", "run_1", build_submission(results), observed=run
    )
    assert run.status is RunStatus.QUEUED

    run = await client.await_run_progress("thread_1", "run_1")
    assert run.status is RunStatus.COMPLETED
    (submit,) = service.calls("POST", RUN_PATH + "/submit_tool_outputs")
    assert service.body(submit) == {"tool_outputs": [{"tool_call_id": "call_1", "output": "28C"}]}


@pytest.mark.asyncio
async def test_incomplete_outputs_make_no_request(client, service):
    observed = Run.model_validate(make_run("requires_action", tool_calls=[make_tool_call()]))

    with pytest.raises(IncompleteToolOutputs):
        await client.submit_tool_outputs("thread_1", "run_1", [], observed=observed)

    assert service.requests == []


@pytest.mark.asyncio
async def test_cancel_precondition_is_local(client, service):
    observed = Run.model_validate(make_run("completed"))

    with pytest.raises(IllegalStateTransition):
        await client.cancel_run("thread_1", "run_1", observed=observed)

    assert service.requests == []


@pytest.mark.asyncio
async def test_cancel_and_wait(client, service):
    service.add("GET", RUN_PATH, make_run("in_progress"), make_run("cancelling"), make_run("cancelled"))
    service.add("POST", RUN_PATH + "/cancel", make_run("cancelling"))

    run = await client.cancel_run("thread_1", "run_1")
    assert run.status is RunStatus.CANCELLING

    run = await client.await_run_progress("thread_1", "run_1")
    assert run.status is RunStatus.CANCELLED


@pytest.mark.asyncio
async def test_stop_event_interrupts_sleep(service):
    service.add("GET", RUN_PATH, make_run("in_progress"))
    stop = asyncio.Event()

    async with AsyncThreadsClient(
        "test-key", base_url=BASE_URL, transport=httpx.MockTransport(service)
    ) as client:
        waiter = asyncio.ensure_future(
            client.await_run_progress("thread_1", "run_1", poll_interval=30.0, stop=stop)
        )
        await asyncio.sleep(0.05)
        stop.set()
        with pytest.raises(WaitCancelled) as exc_info:
            await asyncio.wait_for(waiter, timeout=5)

    assert exc_info.value.run.status is RunStatus.IN_PROGRESS
    assert len(service.calls("GET", RUN_PATH)) == 1
    assert service.calls("POST", RUN_PATH + "/cancel") == []


@pytest.mark.asyncio
async def test_task_cancellation_stops_polling(service):
    service.add("GET", RUN_PATH, make_run("in_progress"))

    async with AsyncThreadsClient(
        "test-key", base_url=BASE_URL, transport=httpx.MockTransport(service)
    ) as client:
        waiter = asyncio.ensure_future(
            client.await_run_progress("thread_1", "run_1", poll_interval=30.0)
        )
        await asyncio.sleep(0.05)
        waiter.cancel()
        with pytest.raises(asyncio.CancelledError):
            await waiter

    assert len(service.calls("GET", RUN_PATH)) == 1


@pytest.mark.asyncio
async def test_independent_runs_poll_concurrently(client, service):
    other_path = "/threads/thread_1/runs/run_2"
    service.add("GET", RUN_PATH, make_run("in_progress"), make_run("completed"))
    service.add("GET", other_path, make_run("queued", run_id="run_2"), make_run("failed", run_id="run_2"))

    first, second = await asyncio.gather(
        client.await_run_progress("thread_1", "run_1"),
        client.await_run_progress("thread_1", "run_2"),
    )

    assert first.status is RunStatus.COMPLETED
    assert second.status is RunStatus.FAILED


@pytest.mark.asyncio
async def test_stream_yields_each_snapshot(client, service):
    service.add("GET", RUN_PATH, make_run("queued"), make_run("in_progress"), make_run("expired"))

    statuses = [run.status async for run in client.stream_run_status("thread_1", "run_1")]

    assert statuses == [RunStatus.QUEUED, RunStatus.IN_PROGRESS, RunStatus.EXPIRED]


@pytest.mark.asyncio
async def test_run_and_wait_with_async_handler(client, service):
    service.add("POST", "/threads/runs", make_run("queued"))
    service.add(
        "GET",
        RUN_PATH,
        make_run("requires_action", tool_calls=[make_tool_call()]),
        make_run("completed"),
    )
    service.add("POST", RUN_PATH + "/submit_tool_outputs", make_run("in_progress"))

    async def get_weather(location):
        return {"location": location, "temperature": "28C"}

    run = await client.run_and_wait(
        None,
        CreateThreadAndRunRequest(assistant_id="asst_1"),
        tool_handlers={"GetWeather": get_weather},
    )

    assert run.status is RunStatus.COMPLETED
    (submit,) = service.calls("POST", RUN_PATH + "/submit_tool_outputs")
    assert service.body(submit) == {
        "tool_outputs": [
            {
                "tool_call_id": "call_1",
                "output": '{"location": "Kuala Lumpur", "temperature": "28C"}',
            }
        ]
    }


@pytest.mark.asyncio
async def test_unknown_assistant_is_invalid_request(client, service):
    service.add(
        "POST",
        "/threads/thread_1/runs",
        httpx.Response(404, json={"error": {"message": "No assistant found with id 'asst_x'."}}),
    )

    with pytest.raises(InvalidRequest) as exc_info:
        await client.create_run("thread_1", CreateRunRequest(assistant_id="asst_x"))

    assert exc_info.value.status_code == 404


@pytest.mark.asyncio
async def test_iter_run_steps_follows_cursors(client, service):
    service.add(
        "GET",
        RUN_PATH + "/steps",
        {"data": [make_step("step_1")], "last_id": "step_1", "has_more": True},
        {"data": [make_step("step_2")], "last_id": "step_2", "has_more": False},
    )

    steps = [step.id async for step in client.iter_run_steps("thread_1", "run_1")]

    assert steps == ["step_1", "step_2"]


@pytest.mark.asyncio
async def test_failing_sleep_propagates_with_stop_event(service):
    service.add("GET", RUN_PATH, make_run("in_progress"))

    async def broken_sleep(delay):
        raise RuntimeError("clock unavailable")

    async with AsyncThreadsClient(
        "test-key", base_url=BASE_URL, transport=httpx.MockTransport(service), sleep=broken_sleep
    ) as client:
        with pytest.raises(RuntimeError, match="clock unavailable"):
            await client.await_run_progress("thread_1", "run_1", stop=asyncio.Event())

    assert len(service.calls("GET", RUN_PATH)) == 1


@pytest.mark.asyncio
async def test_message_files(client, service):
    message_file = {"id": "file_1", "created_at": 1_700_000_000, "message_id": "msg_1"}
    files_path = "/threads/thread_1/messages/msg_1/files"
    service.add("GET", files_path + "/file_1", message_file)
    service.add("GET", files_path, {"data": [message_file], "has_more": False})

    fetched = await client.retrieve_message_file("thread_1", "msg_1", "file_1")
    page = await client.list_message_files("thread_1", "msg_1", order="asc")

    assert fetched.object == "thread.message.file"
    assert [f.message_id for f in page.data] == ["msg_1"]
    (listing,) = service.calls("GET", files_path)
    assert listing.url.params["order"] == "asc"


@pytest.mark.asyncio
async def test_non_json_success_body_is_reported(client, service):
    service.add("GET", RUN_PATH, httpx.Response(200, text="not json"))

    with pytest.raises(AssistantThreadsError, match="not valid JSON"):
        await client.retrieve_run("thread_1", "run_1")
