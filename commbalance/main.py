from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
import sys
import time
from dataclasses import dataclass
from pathlib import Path

import httpx

from .aggregate import aggregate
from .client import Credential, SchedulerClient, SchedulerServiceError
from .config import (
    COMPLETION_TIMEOUT_SECONDS_DEFAULT,
    DEFAULT_BASE_URL,
    DEFAULT_DATA_SIZE_MB,
    DEFAULT_REQUESTERS,
    DEFAULT_TASK_COUNT,
    DEFAULT_TASK_TYPE,
    POLL_INTERVAL_SECONDS_DEFAULT,
    REQUEST_TIMEOUT_SECONDS_DEFAULT,
    SETTLE_SECONDS_DEFAULT,
    TASK_ENDPOINTS,
    HarnessConfig,
    PollSettings,
    ServiceConfig,
    WorkloadProfile,
    parse_requesters,
)
from .poller import Clock, CompletionPoller, PollResult, Sleep
from .report import BalanceStatistic, report
from .submitter import BatchResult, BatchSubmitter, build_requests

LOGGER = logging.getLogger("commbalance")


class HarnessError(Exception):
    """Raised when the run cannot continue (login, control commands, empty batch)."""


@dataclass
class RunOutcome:
    run_number: int
    batch: BatchResult
    poll: PollResult
    statistic: BalanceStatistic
    after_completion: BalanceStatistic | None = None


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    env = os.environ
    parser = argparse.ArgumentParser(description="Scheduler load-balance harness")
    parser.add_argument(
        "--base-url", default=env.get("SCHEDULER_BASE_URL", DEFAULT_BASE_URL)
    )
    parser.add_argument("--username", default=env.get("SCHEDULER_USERNAME", "admin"))
    parser.add_argument("--password", default=env.get("SCHEDULER_PASSWORD", "admin123"))
    parser.add_argument(
        "--tasks",
        type=int,
        default=env.get("BALANCE_TASK_COUNT", str(DEFAULT_TASK_COUNT)),
        help="Number of tasks to submit per run",
    )
    parser.add_argument(
        "--requesters",
        type=parse_requesters,
        default=env.get("BALANCE_REQUESTERS", ",".join(str(r) for r in DEFAULT_REQUESTERS)),
        help="Comma-separated requester (user) ids, used cyclically",
    )
    parser.add_argument(
        "--data-size",
        type=float,
        default=env.get("BALANCE_DATA_SIZE", str(DEFAULT_DATA_SIZE_MB)),
        help="Workload size of every task in MB",
    )
    parser.add_argument(
        "--task-type", default=env.get("BALANCE_TASK_TYPE", DEFAULT_TASK_TYPE)
    )
    parser.add_argument(
        "--priority",
        type=int,
        default=env.get("BALANCE_TASK_PRIORITY"),
        help="Optional priority sent with every task",
    )
    parser.add_argument(
        "--settle-seconds",
        type=float,
        default=env.get("BALANCE_SETTLE_SECONDS", str(SETTLE_SECONDS_DEFAULT)),
        help="Delay before the first placement lookup",
    )
    parser.add_argument(
        "--poll-interval",
        type=float,
        default=env.get("BALANCE_POLL_INTERVAL", str(POLL_INTERVAL_SECONDS_DEFAULT)),
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=env.get("BALANCE_TIMEOUT_SECONDS", str(COMPLETION_TIMEOUT_SECONDS_DEFAULT)),
        help="Seconds to wait for all tasks to complete",
    )
    parser.add_argument(
        "--request-timeout",
        type=float,
        default=env.get("SCHEDULER_REQUEST_TIMEOUT", str(REQUEST_TIMEOUT_SECONDS_DEFAULT)),
    )
    parser.add_argument(
        "--task-endpoint",
        choices=TASK_ENDPOINTS,
        default=env.get("SCHEDULER_TASK_ENDPOINT", TASK_ENDPOINTS[0]),
        help="Path segment used for per-task lookups",
    )
    parser.add_argument(
        "--runs",
        type=int,
        default=env.get("BALANCE_RUNS", "1"),
        help="Number of reset/submit/observe cycles",
    )
    parser.add_argument(
        "--recollect",
        action="store_true",
        help="Take a second placement snapshot once polling has finished",
    )
    parser.add_argument(
        "--title", default=env.get("BALANCE_TITLE", "Scheduler task distribution")
    )
    parser.add_argument(
        "--output-dir",
        default=env.get("BALANCE_OUTPUT_DIR"),
        help="Directory for CSV, chart and manifest artefacts",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Only print the planned submissions without contacting the service",
    )
    parser.add_argument(
        "--log-level",
        default=env.get("BALANCE_LOG_LEVEL", "INFO"),
        help="Logging level",
    )
    return parser.parse_args(argv)


def setup_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    logging.getLogger("httpx").setLevel(logging.WARNING)


def build_config(args: argparse.Namespace) -> HarnessConfig:
    return HarnessConfig(
        service=ServiceConfig(
            base_url=args.base_url,
            username=args.username,
            password=args.password,
            request_timeout=args.request_timeout,
            task_endpoint=args.task_endpoint,
        ),
        workload=WorkloadProfile(
            task_count=args.tasks,
            requesters=args.requesters,
            data_size=args.data_size,
            task_type=args.task_type,
            priority=args.priority,
        ),
        polling=PollSettings(
            settle_seconds=args.settle_seconds,
            poll_interval=args.poll_interval,
            timeout=args.timeout,
        ),
        runs=args.runs,
        recollect=args.recollect,
        title=args.title,
        output_dir=Path(args.output_dir) if args.output_dir else None,
    )


async def reset_service(
    client: SchedulerClient,
    credential: Credential,
    settle_seconds: float,
    sleep: Sleep = asyncio.sleep,
) -> None:
    try:
        message = await client.stop_algorithm(credential)
        LOGGER.info("Stop algorithm: %s", message)
        await sleep(settle_seconds)
        message = await client.clear_history(credential)
        LOGGER.info("Clear history: %s", message)
    except SchedulerServiceError as exc:
        raise HarnessError(f"failed to reset scheduler state: {exc}") from exc


async def run_once(
    client: SchedulerClient,
    credential: Credential,
    config: HarnessConfig,
    run_number: int,
    sleep: Sleep = asyncio.sleep,
    clock: Clock = time.monotonic,
) -> RunOutcome:
    workload = config.workload
    polling = config.polling

    await reset_service(client, credential, polling.control_settle_seconds, sleep)

    LOGGER.info("Run %d: submitting %d tasks", run_number, workload.task_count)
    batch = await BatchSubmitter(client, credential).submit_batch(
        workload.task_count,
        workload.requesters,
        workload.data_size,
        workload.task_type,
        workload.priority,
    )
    if not batch.task_ids:
        raise HarnessError(f"all {workload.task_count} task submissions failed")

    poller = CompletionPoller(
        client,
        credential,
        settle_seconds=polling.settle_seconds,
        poll_interval=polling.poll_interval,
        timeout=polling.timeout,
        clock=clock,
        sleep=sleep,
    )
    poll = await poller.run(batch.task_ids)
    statistic = report(aggregate(poll.assignments.records), _run_title(config, run_number))

    after_completion = None
    if config.recollect:
        LOGGER.info("Run %d: re-collecting placements after completion", run_number)
        snapshot = await poller.collect_assignments(batch.task_ids)
        after_completion = report(
            aggregate(snapshot.records),
            f"{_run_title(config, run_number)} (after completion)",
        )

    return RunOutcome(
        run_number=run_number,
        batch=batch,
        poll=poll,
        statistic=statistic,
        after_completion=after_completion,
    )


async def run_harness(
    config: HarnessConfig,
    transport: httpx.AsyncBaseTransport | None = None,
    sleep: Sleep = asyncio.sleep,
    clock: Clock = time.monotonic,
) -> list[RunOutcome]:
    service = config.service
    async with SchedulerClient(
        base_url=service.base_url,
        timeout=service.request_timeout,
        transport=transport,
        task_endpoint=service.task_endpoint,
    ) as client:
        try:
            credential = await client.login(service.username, service.password)
        except SchedulerServiceError as exc:
            raise HarnessError(f"login failed: {exc}") from exc
        LOGGER.info("Logged in to %s as %s", service.base_url, service.username)

        outcomes = []
        for run_number in range(1, config.runs + 1):
            outcomes.append(
                await run_once(client, credential, config, run_number, sleep=sleep, clock=clock)
            )
        return outcomes


def write_artefacts(outcomes: list[RunOutcome], output_dir: Path) -> Path:
    from .charts import render_distribution_chart

    output_dir.mkdir(parents=True, exist_ok=True)
    manifest: dict[str, object] = {"runs": []}
    for outcome in outcomes:
        entry: dict[str, object] = {
            "run": outcome.run_number,
            "requested": outcome.batch.requested,
            "submitted": outcome.batch.submitted,
            "failed_submissions": [failure.index for failure in outcome.batch.failures],
            "final_state": outcome.poll.final_state.value,
            "failed_lookups": list(outcome.poll.assignments.failed_lookups),
            "statistic": outcome.statistic.to_dict(),
        }
        stages = [("distribution", outcome.statistic)]
        if outcome.after_completion is not None:
            stages.append(("after-completion", outcome.after_completion))
            entry["after_completion"] = outcome.after_completion.to_dict()

        for stage, statistic in stages:
            csv_path = output_dir / f"run-{outcome.run_number}__{stage}.csv"
            statistic.to_frame().to_csv(csv_path, index=False)
            LOGGER.info("Saved %s to %s (%d rows)", stage, csv_path, statistic.resource_count)
            chart = render_distribution_chart(
                statistic, output_dir / f"run-{outcome.run_number}__{stage}.png"
            )
            if chart is not None:
                entry[f"{stage}_chart"] = str(chart)
        manifest["runs"].append(entry)

    manifest_path = output_dir / "balance_manifest.json"
    with open(manifest_path, "w", encoding="utf-8") as f:
        json.dump(manifest, f, indent=2)
    LOGGER.info("Balance manifest written to %s", manifest_path)
    return manifest_path


def format_comparison(outcomes: list[RunOutcome]) -> str:
    lines = ["Run comparison:"]
    for outcome in outcomes:
        std_dev = outcome.statistic.population_std_dev
        std_text = f"{std_dev:.2f}" if std_dev is not None else "n/a"
        lines.append(
            f"  run {outcome.run_number}: placed={outcome.statistic.total}/{outcome.batch.submitted} "
            f"devices={outcome.statistic.resource_count} std_dev={std_text} "
            f"state={outcome.poll.final_state.value}"
        )
    return "\n".join(lines)


def _run_title(config: HarnessConfig, run_number: int) -> str:
    if config.runs == 1:
        return config.title
    return f"{config.title} (run {run_number})"


def _print_plan(config: HarnessConfig) -> None:
    workload = config.workload
    print(
        f"Plan: {config.runs} run(s) against {config.service.base_url}, "
        f"{workload.task_count} tasks of {workload.data_size} MB ({workload.task_type})"
    )
    requests = build_requests(
        workload.task_count,
        workload.requesters,
        workload.data_size,
        workload.task_type,
        workload.priority,
    )
    for index, request in enumerate(requests):
        print(f"  - task {index + 1}: user_id={request.user_id}")


def run(
    argv: list[str] | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
    sleep: Sleep = asyncio.sleep,
    clock: Clock = time.monotonic,
) -> int:
    args = parse_args(argv)
    setup_logging(args.log_level)

    try:
        config = build_config(args)
    except ValueError as exc:
        print(f"invalid configuration: {exc}", file=sys.stderr)
        return 2

    if args.dry_run:
        _print_plan(config)
        return 0

    if config.output_dir is not None:
        import matplotlib

        matplotlib.use("Agg")

    try:
        outcomes = asyncio.run(run_harness(config, transport=transport, sleep=sleep, clock=clock))
    except HarnessError as exc:
        print(f"Harness failed: {exc}", file=sys.stderr)
        return 1

    for outcome in outcomes:
        print(outcome.statistic.render())
        if outcome.after_completion is not None:
            print(outcome.after_completion.render())
    if len(outcomes) > 1:
        print()
        print(format_comparison(outcomes))

    if config.output_dir is not None:
        write_artefacts(outcomes, config.output_dir)

    timed_out = [outcome.run_number for outcome in outcomes if outcome.poll.timed_out]
    if timed_out:
        print(
            f"\nHarness status: PARTIAL (completion timed out in run(s) "
            f"{', '.join(str(n) for n in timed_out)})",
            file=sys.stderr,
        )
    else:
        print("\nHarness status: OK", file=sys.stderr)
    return 0


def main() -> None:
    sys.exit(run())


if __name__ == "__main__":
    main()
