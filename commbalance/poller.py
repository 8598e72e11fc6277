from __future__ import annotations

import asyncio
import enum
import logging
import time
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Iterable

from .client import (
    Credential,
    SchedulerClient,
    SchedulerServiceError,
    ServiceSnapshot,
    TaskRecord,
)
from .config import (
    COMPLETION_TIMEOUT_SECONDS_DEFAULT,
    POLL_INTERVAL_SECONDS_DEFAULT,
    SETTLE_SECONDS_DEFAULT,
)

LOGGER = logging.getLogger("commbalance.poller")

Clock = Callable[[], float]
Sleep = Callable[[float], Awaitable[None]]


class PollState(str, enum.Enum):
    WARMING_UP = "warming-up"
    COLLECTING_ASSIGNMENTS = "collecting-assignments"
    AWAITING_COMPLETION = "awaiting-completion"
    DONE = "done"
    TIMED_OUT = "timed-out"

    @property
    def terminal(self) -> bool:
        return self in (PollState.DONE, PollState.TIMED_OUT)


@dataclass
class AssignmentSnapshot:
    """Per-task placements observed during one pass over the batch."""

    records: list[TaskRecord] = field(default_factory=list)
    failed_lookups: list[str] = field(default_factory=list)

    @property
    def placed(self) -> int:
        return sum(1 for record in self.records if record.placed)


@dataclass
class PollResult:
    final_state: PollState
    assignments: AssignmentSnapshot
    last_snapshot: ServiceSnapshot | None = None
    polls: int = 0
    elapsed_s: float = 0.0
    transitions: list[PollState] = field(default_factory=list)

    @property
    def timed_out(self) -> bool:
        return self.final_state is PollState.TIMED_OUT


class CompletionPoller:
    """Drives a submitted batch through warm-up, placement collection and completion wait.

    The clock and sleep are injectable so that the completion loop can be run
    against simulated time.
    """

    def __init__(
        self,
        client: SchedulerClient,
        credential: Credential,
        settle_seconds: float = SETTLE_SECONDS_DEFAULT,
        poll_interval: float = POLL_INTERVAL_SECONDS_DEFAULT,
        timeout: float = COMPLETION_TIMEOUT_SECONDS_DEFAULT,
        clock: Clock = time.monotonic,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        if poll_interval <= 0:
            raise ValueError("poll_interval must be > 0")
        self._client = client
        self._credential = credential
        self._settle_seconds = settle_seconds
        self._poll_interval = poll_interval
        self._timeout = timeout
        self._clock = clock
        self._sleep = sleep
        self.state = PollState.WARMING_UP
        self._transitions: list[PollState] = [self.state]

    async def run(self, task_ids: Iterable[str]) -> PollResult:
        task_ids = list(task_ids)
        self.state = PollState.WARMING_UP
        self._transitions = [self.state]

        LOGGER.info("Waiting %.1fs for the scheduler to start placing tasks", self._settle_seconds)
        await self._sleep(self._settle_seconds)

        self._enter(PollState.COLLECTING_ASSIGNMENTS)
        assignments = await self.collect_assignments(task_ids)

        self._enter(PollState.AWAITING_COMPLETION)
        final_state, last_snapshot, polls, elapsed = await self._await_completion()
        self._enter(final_state)

        return PollResult(
            final_state=final_state,
            assignments=assignments,
            last_snapshot=last_snapshot,
            polls=polls,
            elapsed_s=elapsed,
            transitions=list(self._transitions),
        )

    async def collect_assignments(self, task_ids: Iterable[str]) -> AssignmentSnapshot:
        """Query every task once; failed lookups are recorded and skipped."""

        snapshot = AssignmentSnapshot()
        seen: set[str] = set()
        for task_id in task_ids:
            if task_id in seen:
                continue
            seen.add(task_id)
            try:
                record = await self._client.get_task(self._credential, task_id)
            except SchedulerServiceError as exc:
                snapshot.failed_lookups.append(task_id)
                LOGGER.warning("Status lookup for task %s failed: %s", task_id, exc)
                continue
            snapshot.records.append(record)
            LOGGER.debug(
                "Task %s -> comm %s (%s)",
                task_id,
                record.assigned_resource_id,
                record.status.value if record.status else "unknown",
            )

        LOGGER.info(
            "Collected assignments for %d/%d tasks (%d placed, %d lookups failed)",
            len(snapshot.records),
            len(seen),
            snapshot.placed,
            len(snapshot.failed_lookups),
        )
        return snapshot

    async def _await_completion(self) -> tuple[PollState, ServiceSnapshot | None, int, float]:
        LOGGER.info("Waiting for tasks to complete (at most %.0fs)", self._timeout)
        started = self._clock()
        deadline = started + self._timeout
        last_snapshot: ServiceSnapshot | None = None
        polls = 0

        while True:
            if self._clock() >= deadline:
                LOGGER.warning(
                    "Tasks still active after %.0fs; reporting partial completion",
                    self._timeout,
                )
                return PollState.TIMED_OUT, last_snapshot, polls, self._clock() - started

            polls += 1
            try:
                snapshot = await self._client.get_snapshot(self._credential)
            except SchedulerServiceError as exc:
                LOGGER.warning("Service info poll %d failed: %s", polls, exc)
            else:
                last_snapshot = snapshot
                LOGGER.info(
                    "Time slot %d: %d active, %d completed",
                    snapshot.time_slot,
                    snapshot.active_tasks,
                    snapshot.completed_tasks,
                )
                if snapshot.active_tasks == 0:
                    LOGGER.info("All tasks completed")
                    return PollState.DONE, last_snapshot, polls, self._clock() - started

            now = self._clock()
            if now >= deadline:
                continue
            await self._sleep(min(self._poll_interval, deadline - now))

    def _enter(self, state: PollState) -> None:
        LOGGER.debug("Poller state %s -> %s", self.state.value, state.value)
        self.state = state
        self._transitions.append(state)
