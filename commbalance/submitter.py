from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Sequence

from .client import Credential, SchedulerClient, SchedulerServiceError, TaskSubmissionRequest

LOGGER = logging.getLogger("commbalance.submitter")


@dataclass(frozen=True)
class SubmissionFailure:
    index: int
    request: TaskSubmissionRequest
    message: str


@dataclass
class BatchResult:
    requested: int
    task_ids: list[str] = field(default_factory=list)
    failures: list[SubmissionFailure] = field(default_factory=list)
    started_at: float = 0.0
    finished_at: float = 0.0

    @property
    def submitted(self) -> int:
        return len(self.task_ids)

    @property
    def duration_s(self) -> float:
        return max(self.finished_at - self.started_at, 0.0)

    @property
    def throughput_per_second(self) -> float:
        if self.duration_s == 0:
            return 0.0
        return self.submitted / self.duration_s


def requester_for_index(requester_pool: Sequence[int], index: int) -> int:
    if not requester_pool:
        raise ValueError("requester pool must not be empty")
    return requester_pool[index % len(requester_pool)]


def build_requests(
    count: int,
    requester_pool: Sequence[int],
    data_size: float,
    task_type: str,
    priority: int | None = None,
) -> list[TaskSubmissionRequest]:
    """Return the deterministic list of requests a batch of ``count`` tasks is made of."""

    if count <= 0:
        raise ValueError("count must be > 0")
    if not requester_pool:
        raise ValueError("requester pool must not be empty")
    return [
        TaskSubmissionRequest(
            user_id=requester_for_index(requester_pool, index),
            data_size=data_size,
            task_type=task_type,
            priority=priority,
        )
        for index in range(count)
    ]


class BatchSubmitter:
    """Submits a batch of tasks one at a time, tolerating individual failures."""

    def __init__(self, client: SchedulerClient, credential: Credential) -> None:
        self._client = client
        self._credential = credential

    async def submit_batch(
        self,
        count: int,
        requester_pool: Sequence[int],
        data_size: float,
        task_type: str,
        priority: int | None = None,
    ) -> BatchResult:
        requests = build_requests(count, requester_pool, data_size, task_type, priority)
        result = BatchResult(requested=count, started_at=time.monotonic())

        for index, request in enumerate(requests):
            try:
                task_id = await self._client.submit_task(self._credential, request)
            except SchedulerServiceError as exc:
                result.failures.append(SubmissionFailure(index=index, request=request, message=str(exc)))
                LOGGER.warning(
                    "Task %d/%d submission failed (payload=%s): %s",
                    index + 1,
                    count,
                    request.to_payload(),
                    exc,
                )
                continue
            result.task_ids.append(task_id)
            LOGGER.info(
                "Task %d/%d submitted: %s (user_id=%d)",
                index + 1,
                count,
                task_id,
                request.user_id,
            )

        result.finished_at = time.monotonic()
        LOGGER.info(
            "Submitted %d/%d tasks in %.2fs (%d failed)",
            result.submitted,
            count,
            result.duration_s,
            len(result.failures),
        )
        return result
