from __future__ import annotations

import itertools
import json
from dataclasses import dataclass, field
from typing import Callable

import httpx
import pytest
import pytest_asyncio

from commbalance.client import Credential, SchedulerClient

BASE_URL = "http://scheduler.test/api/v1"
TOKEN = "test-token"


@dataclass
class FakeScheduler:
    """In-memory stand-in for the scheduler's HTTP API."""

    comm_ids: tuple[int, ...] = (1, 2, 3, 4)
    login_ok: bool = True
    token_key: str = "token"
    failing_submissions: set[int] = field(default_factory=set)
    unplaced_tasks: set[str] = field(default_factory=set)
    missing_tasks: set[str] = field(default_factory=set)
    active_sequence: list[int] = field(default_factory=lambda: [0])
    info_failures: int = 0
    control_ok: bool = True
    placement: Callable[[int], int] | None = None

    submitted: list[dict] = field(default_factory=list)
    requests: list[httpx.Request] = field(default_factory=list)
    assignments: dict[str, int] = field(default_factory=dict)
    info_calls: int = 0
    _submission_index: itertools.count = field(default_factory=itertools.count)

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handle)

    def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path.removeprefix("/api/v1")

        if path == "/auth/login":
            if not self.login_ok:
                return _reply(401, {"code": 40100, "data": None, "message": "bad credentials"})
            return _reply(200, {"code": 0, "data": {self.token_key: TOKEN}, "message": "ok"})

        if request.headers.get("Authorization") != f"Bearer {TOKEN}":
            return _reply(401, {"code": 40100, "data": None, "message": "unauthorized"})

        if path in ("/algorithm/stop", "/algorithm/clear"):
            if not self.control_ok:
                return _reply(500, {"code": -1, "data": None, "message": "control failed"})
            verb = "stopped" if path.endswith("stop") else "cleared"
            return _reply(200, {"code": 0, "data": None, "message": f"algorithm {verb}"})

        if path == "/algorithm/tasks" and request.method == "POST":
            index = next(self._submission_index)
            payload = json.loads(request.content)
            self.submitted.append(payload)
            if index in self.failing_submissions:
                return _reply(200, {"code": -1, "data": None, "message": f"user {payload['user_id']} busy"})
            task_id = f"task-{index}"
            if task_id not in self.unplaced_tasks:
                if self.placement is not None:
                    self.assignments[task_id] = self.placement(index)
                else:
                    self.assignments[task_id] = self.comm_ids[index % len(self.comm_ids)]
            return _reply(200, {"code": 0, "data": {"id": task_id, "status": 0}, "message": "submitted"})

        if path.startswith("/algorithm/tasks/") or path.startswith("/algorithm/task/"):
            task_id = path.rsplit("/", 1)[-1]
            if task_id in self.missing_tasks:
                return _reply(404, {"code": 40400, "data": None, "message": "task not found"})
            comm_id = self.assignments.get(task_id, 0)
            status = 2 if comm_id else 0
            return _reply(
                200,
                {"code": 0, "data": {"id": task_id, "assigned_comm_id": comm_id, "status": status}},
            )

        if path == "/algorithm/info":
            self.info_calls += 1
            if self.info_calls <= self.info_failures:
                return _reply(503, {"code": -1, "data": None, "message": "busy"})
            position = min(self.info_calls - self.info_failures - 1, len(self.active_sequence) - 1)
            active = self.active_sequence[position]
            return _reply(
                200,
                {
                    "code": 0,
                    "data": {
                        "time_slot": self.info_calls,
                        "active_tasks": active,
                        "completed_tasks": len(self.assignments) - active,
                        "task_count": len(self.assignments),
                    },
                },
            )

        return _reply(404, {"code": 40400, "data": None, "message": f"no route {path}"})


def _reply(status: int, body: dict) -> httpx.Response:
    return httpx.Response(status, json=body)


class FakeClock:
    """Simulated monotonic clock advanced only by the matching ``sleep``."""

    def __init__(self) -> None:
        self.now = 0.0
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.fixture
def fake_service() -> FakeScheduler:
    return FakeScheduler()


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def credential() -> Credential:
    return Credential(token=TOKEN)


@pytest_asyncio.fixture
async def client(fake_service: FakeScheduler):
    async with SchedulerClient(base_url=BASE_URL, transport=fake_service.transport()) as client:
        yield client
