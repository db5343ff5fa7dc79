import json
from typing import Any, Dict, List, Optional

import httpx
import pytest

BASE_URL = "https://api.test"
CREATED_AT = 1_700_000_000


def make_run(
    status: str = "queued",
    *,
    run_id: str = "run_1",
    thread_id: str = "thread_1",
    tool_calls: Optional[List[Dict[str, Any]]] = None,
    **extra: Any,
) -> Dict[str, Any]:
    payload = {
        "id": run_id,
        "object": "thread.run",
        "created_at": CREATED_AT,
        "thread_id": thread_id,
        "assistant_id": "asst_1",
        "status": status,
        "required_action": None,
        "model": "gpt-4o",
        "instructions": "Be brief",
        "tools": [],
        "metadata": {},
    }
    if tool_calls is not None:
        payload["required_action"] = {
            "type": "submit_tool_outputs",
            "submit_tool_outputs": {"tool_calls": tool_calls},
        }
    payload.update(extra)
    return payload


def make_tool_call(
    call_id: str = "call_1",
    name: str = "GetWeather",
    arguments: str = '{"location":"Kuala Lumpur"}',
) -> Dict[str, Any]:
    return {"id": call_id, "type": "function", "function": {"name": name, "arguments": arguments}}


def make_step(step_id: str, *, run_id: str = "run_1", thread_id: str = "thread_1") -> Dict[str, Any]:
    return {
        "id": step_id,
        "object": "thread.run.step",
        "created_at": CREATED_AT,
        "assistant_id": "asst_1",
        "thread_id": thread_id,
        "run_id": run_id,
        "type": "message_creation",
        "status": "completed",
        "step_details": {"type": "message_creation", "message_creation": {"message_id": "msg_1"}},
    }


class FakeService:
    """Routes requests to canned responses; the last response for a route repeats."""

    def __init__(self) -> None:
        self.requests: List[httpx.Request] = []
        self._routes: Dict[tuple, list] = {}

    def add(self, method: str, path: str, *responses: Any) -> None:
        self._routes.setdefault((method, path), []).extend(responses)

    def calls(self, method: str, path: str) -> List[httpx.Request]:
        return [r for r in self.requests if r.method == method and r.url.path == path]

    def body(self, request: httpx.Request) -> Any:
        return json.loads(request.content) if request.content else None

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        queue = self._routes.get((request.method, request.url.path))
        if not queue:
            return httpx.Response(
                404, json={"error": {"message": f"No route for {request.method} {request.url.path}"}}
            )
        item = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(item, Exception):
            raise item
        if isinstance(item, httpx.Response):
            return item
        return httpx.Response(200, json=item)


class FakeSleep:
    def __init__(self) -> None:
        self.delays: List[float] = []

    def __call__(self, delay: float) -> None:
        self.delays.append(delay)


class FakeAsyncSleep:
    def __init__(self) -> None:
        self.delays: List[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


@pytest.fixture
def service() -> FakeService:
    return FakeService()


@pytest.fixture
def fake_sleep() -> FakeSleep:
    return FakeSleep()


@pytest.fixture
def fake_async_sleep() -> FakeAsyncSleep:
    return FakeAsyncSleep()
