"""
Async client for the scheduler's HTTP surface.

Every method performs exactly one request/response exchange and never retries;
callers decide whether a failure is fatal for the run or only for one item.
Failures surface as ``SchedulerServiceError`` subclasses so that transport
problems can be told apart from a well-formed rejection by the service.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from typing import Any, Optional

import httpx

from .config import DEFAULT_BASE_URL, REQUEST_TIMEOUT_SECONDS_DEFAULT, TASK_ENDPOINTS

LOGGER = logging.getLogger("commbalance.client")

SUCCESS_CODE = 0


class SchedulerServiceError(Exception):
    """Base class for failures talking to the scheduler service."""


class ServiceTransportError(SchedulerServiceError):
    """Raised when no usable response was obtained (network, timeout, bad JSON)."""


class ServiceRejectedError(SchedulerServiceError):
    """Raised when the service answered but refused or could not fulfil the call."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class TaskNotFoundError(ServiceRejectedError):
    """Raised when a per-task lookup names a task the service does not know."""


class TaskStatus(str, enum.Enum):
    PENDING = "pending"
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"

    @classmethod
    def from_wire(cls, value: Any) -> Optional["TaskStatus"]:
        # The service encodes pending/queued/computing/completed/failed as 0..4.
        if value is None or isinstance(value, bool):
            return None
        if isinstance(value, int):
            return _NUMERIC_STATUS.get(value)
        text = str(value).strip().lower()
        if text.isdigit():
            return _NUMERIC_STATUS.get(int(text))
        if text in {"queued", "computing", "running"}:
            return cls.ACTIVE
        try:
            return cls(text)
        except ValueError:
            return None


_NUMERIC_STATUS = {
    0: TaskStatus.PENDING,
    1: TaskStatus.ACTIVE,
    2: TaskStatus.ACTIVE,
    3: TaskStatus.COMPLETED,
    4: TaskStatus.FAILED,
}


@dataclass(frozen=True)
class Credential:
    token: str

    def headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.token}"}

    def __repr__(self) -> str:
        return "Credential(token=<redacted>)"


@dataclass(frozen=True)
class TaskSubmissionRequest:
    user_id: int
    data_size: float
    task_type: str
    priority: int | None = None

    def to_payload(self) -> dict[str, object]:
        payload: dict[str, object] = {
            "user_id": self.user_id,
            "data_size": self.data_size,
            "type": self.task_type,
        }
        if self.priority is not None:
            payload["priority"] = self.priority
        return payload


@dataclass(frozen=True)
class TaskRecord:
    task_id: str
    assigned_resource_id: int | None
    status: TaskStatus | None = None

    @property
    def placed(self) -> bool:
        return self.assigned_resource_id is not None


@dataclass(frozen=True)
class ServiceSnapshot:
    time_slot: int
    active_tasks: int
    completed_tasks: int
    task_count: int | None = None


def parse_resource_id(value: Any) -> int | None:
    """Normalise ``assigned_comm_id``; the service uses 0 for "not placed yet"."""

    if value is None or isinstance(value, bool):
        return None
    try:
        resource_id = int(value)
    except (TypeError, ValueError):
        return None
    if resource_id == 0:
        return None
    return resource_id


class SchedulerClient:
    """Thin async wrapper around ``httpx.AsyncClient`` for the scheduler API."""

    def __init__(
        self,
        base_url: str = DEFAULT_BASE_URL,
        timeout: float = REQUEST_TIMEOUT_SECONDS_DEFAULT,
        transport: httpx.AsyncBaseTransport | None = None,
        task_endpoint: str = TASK_ENDPOINTS[0],
    ) -> None:
        if task_endpoint not in TASK_ENDPOINTS:
            raise ValueError(f"unknown task endpoint {task_endpoint!r}")
        self._task_endpoint = task_endpoint
        self._http = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            timeout=timeout,
            transport=transport,
        )

    async def __aenter__(self) -> "SchedulerClient":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._http.aclose()

    async def login(self, username: str, password: str) -> Credential:
        envelope = await self._call(
            "POST", "/auth/login", json={"username": username, "password": password}
        )
        data = envelope.get("data")
        if not isinstance(data, dict):
            raise ServiceRejectedError("login response did not contain a token")
        token = data.get("token") or data.get("access_token")
        if not token:
            raise ServiceRejectedError("login response did not contain a token")
        LOGGER.debug("Authenticated as %s", username)
        return Credential(token=str(token))

    async def stop_algorithm(self, credential: Credential) -> str:
        envelope = await self._call("POST", "/algorithm/stop", credential=credential)
        return str(envelope.get("message", ""))

    async def clear_history(self, credential: Credential) -> str:
        envelope = await self._call("POST", "/algorithm/clear", credential=credential)
        return str(envelope.get("message", ""))

    async def submit_task(self, credential: Credential, request: TaskSubmissionRequest) -> str:
        envelope = await self._call(
            "POST", "/algorithm/tasks", credential=credential, json=request.to_payload()
        )
        data = envelope.get("data") or {}
        task_id = data.get("id") if isinstance(data, dict) else None
        if not task_id:
            raise ServiceRejectedError(
                envelope.get("message") or "submission response did not contain a task id"
            )
        return str(task_id)

    async def get_task(self, credential: Credential, task_id: str) -> TaskRecord:
        try:
            envelope = await self._call(
                "GET", f"/algorithm/{self._task_endpoint}/{task_id}", credential=credential
            )
        except ServiceRejectedError as exc:
            if exc.status_code == 404:
                raise TaskNotFoundError(exc.message, status_code=404) from exc
            raise
        data = envelope.get("data")
        if not isinstance(data, dict):
            raise TaskNotFoundError(envelope.get("message") or f"task {task_id} not found")
        return TaskRecord(
            task_id=task_id,
            assigned_resource_id=parse_resource_id(data.get("assigned_comm_id")),
            status=TaskStatus.from_wire(data.get("status")),
        )

    async def get_snapshot(self, credential: Credential) -> ServiceSnapshot:
        envelope = await self._call("GET", "/algorithm/info", credential=credential)
        data = envelope.get("data")
        if not isinstance(data, dict):
            raise ServiceRejectedError("info response did not contain data")
        try:
            task_count = data.get("task_count")
            return ServiceSnapshot(
                time_slot=int(data.get("time_slot", 0)),
                active_tasks=int(data["active_tasks"]),
                completed_tasks=int(data.get("completed_tasks", 0)),
                task_count=int(task_count) if task_count is not None else None,
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise ServiceRejectedError(f"malformed info response: {data!r}") from exc

    async def _call(
        self,
        method: str,
        path: str,
        credential: Credential | None = None,
        json: dict[str, object] | None = None,
    ) -> dict[str, Any]:
        headers = credential.headers() if credential is not None else None
        try:
            response = await self._http.request(method, path, json=json, headers=headers)
        except httpx.HTTPError as exc:
            raise ServiceTransportError(f"{method} {path} failed: {exc!r}") from exc

        try:
            envelope = response.json()
        except ValueError:
            envelope = None

        if response.is_error:
            message = _message_of(envelope) or response.reason_phrase or "request failed"
            raise ServiceRejectedError(message, status_code=response.status_code)
        if not isinstance(envelope, dict):
            raise ServiceTransportError(
                f"{method} {path} returned a non-JSON body (status {response.status_code})"
            )

        code = envelope.get("code", SUCCESS_CODE)
        if code not in (SUCCESS_CODE, None):
            raise ServiceRejectedError(
                _message_of(envelope) or f"service returned code {code}",
                status_code=response.status_code,
            )
        return envelope


def _message_of(envelope: Any) -> str | None:
    if isinstance(envelope, dict):
        message = envelope.get("message")
        if message:
            return str(message)
    return None


__all__ = [
    "Credential",
    "SchedulerClient",
    "SchedulerServiceError",
    "ServiceRejectedError",
    "ServiceSnapshot",
    "ServiceTransportError",
    "TaskNotFoundError",
    "TaskRecord",
    "TaskStatus",
    "TaskSubmissionRequest",
    "parse_resource_id",
]
