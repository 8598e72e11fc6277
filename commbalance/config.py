from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

DEFAULT_BASE_URL = "http://localhost:8080/api/v1"
DEFAULT_REQUESTERS: tuple[int, ...] = (5, 6, 7, 8)
DEFAULT_TASK_COUNT = 12
DEFAULT_DATA_SIZE_MB = 1000.0
DEFAULT_TASK_TYPE = "compute"

SETTLE_SECONDS_DEFAULT = 3.0
POLL_INTERVAL_SECONDS_DEFAULT = 2.0
COMPLETION_TIMEOUT_SECONDS_DEFAULT = 120.0
CONTROL_SETTLE_SECONDS_DEFAULT = 1.0
REQUEST_TIMEOUT_SECONDS_DEFAULT = 10.0

TASK_ENDPOINTS: tuple[str, ...] = ("tasks", "task")


@dataclass(frozen=True)
class ServiceConfig:
    """Where the scheduler lives and how to authenticate against it."""

    base_url: str = DEFAULT_BASE_URL
    username: str = "admin"
    password: str = "admin123"
    request_timeout: float = REQUEST_TIMEOUT_SECONDS_DEFAULT
    task_endpoint: str = TASK_ENDPOINTS[0]

    def __post_init__(self) -> None:
        if self.task_endpoint not in TASK_ENDPOINTS:
            raise ValueError(
                f"task_endpoint must be one of {', '.join(TASK_ENDPOINTS)}, got {self.task_endpoint!r}"
            )
        if self.request_timeout <= 0:
            raise ValueError("request_timeout must be > 0")


@dataclass(frozen=True)
class WorkloadProfile:
    """Batch of identical tasks spread cyclically over a pool of requesters."""

    task_count: int = DEFAULT_TASK_COUNT
    requesters: tuple[int, ...] = DEFAULT_REQUESTERS
    data_size: float = DEFAULT_DATA_SIZE_MB
    task_type: str = DEFAULT_TASK_TYPE
    priority: int | None = None

    def __post_init__(self) -> None:
        if self.task_count <= 0:
            raise ValueError("task_count must be > 0")
        if not self.requesters:
            raise ValueError("requesters must not be empty")
        if self.data_size <= 0:
            raise ValueError("data_size must be > 0")


@dataclass(frozen=True)
class PollSettings:
    """Cadence of the assignment/completion poller."""

    settle_seconds: float = SETTLE_SECONDS_DEFAULT
    poll_interval: float = POLL_INTERVAL_SECONDS_DEFAULT
    timeout: float = COMPLETION_TIMEOUT_SECONDS_DEFAULT
    control_settle_seconds: float = CONTROL_SETTLE_SECONDS_DEFAULT

    def __post_init__(self) -> None:
        for name in ("settle_seconds", "poll_interval", "timeout", "control_settle_seconds"):
            if getattr(self, name) < 0:
                raise ValueError(f"{name} must be >= 0")
        if self.poll_interval <= 0:
            raise ValueError("poll_interval must be > 0")


@dataclass(frozen=True)
class HarnessConfig:
    """Complete description of one harness invocation."""

    service: ServiceConfig = field(default_factory=ServiceConfig)
    workload: WorkloadProfile = field(default_factory=WorkloadProfile)
    polling: PollSettings = field(default_factory=PollSettings)
    runs: int = 1
    recollect: bool = False
    title: str = "Scheduler task distribution"
    output_dir: Path | None = None

    def __post_init__(self) -> None:
        if self.runs <= 0:
            raise ValueError("runs must be > 0")


def parse_requesters(value: str) -> tuple[int, ...]:
    """Parse a comma separated list of requester ids, keeping the given order."""

    requesters = tuple(int(item.strip()) for item in value.split(",") if item.strip())
    if not requesters:
        raise ValueError("requester pool must contain at least one id")
    return requesters
