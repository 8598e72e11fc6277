from __future__ import annotations

import json

import pytest

from commbalance.main import build_config, parse_args, run
from commbalance.config import HarnessConfig, parse_requesters

from conftest import BASE_URL, FakeClock, FakeScheduler


def _run(service: FakeScheduler, clock: FakeClock, *extra: str) -> int:
    argv = ["--base-url", BASE_URL, "--log-level", "WARNING", *extra]
    return run(argv, transport=service.transport(), sleep=clock.sleep, clock=clock)


def test_full_run_reports_balanced_distribution(
    fake_service: FakeScheduler, fake_clock: FakeClock, capsys: pytest.CaptureFixture[str]
) -> None:
    exit_code = _run(fake_service, fake_clock, "--tasks", "12", "--title", "Lyapunov")

    out, err = capsys.readouterr()
    assert exit_code == 0
    assert "Lyapunov" in out
    for comm_id in (1, 2, 3, 4):
        assert f"Comm {comm_id}:  3 tasks ( 25.0%)" in out
    assert "Load balance (std dev): 0.00" in out
    assert "Harness status: OK" in err

    paths = [request.url.path for request in fake_service.requests]
    assert paths[:3] == ["/api/v1/auth/login", "/api/v1/algorithm/stop", "/api/v1/algorithm/clear"]
    assert [p["user_id"] for p in fake_service.submitted] == [5, 6, 7, 8] * 3
    # stop/clear pause, then the placement settle delay
    assert fake_clock.sleeps[:2] == [1.0, 3.0]


def test_timeout_still_reports_distribution(
    fake_service: FakeScheduler, fake_clock: FakeClock, capsys: pytest.CaptureFixture[str]
) -> None:
    fake_service.active_sequence = [5]

    exit_code = _run(fake_service, fake_clock, "--tasks", "8", "--timeout", "6")

    out, err = capsys.readouterr()
    assert exit_code == 0
    assert "Comm 1:  2 tasks" in out
    assert "PARTIAL" in err


def test_partial_submission_failures_are_tolerated(
    fake_service: FakeScheduler, fake_clock: FakeClock, capsys: pytest.CaptureFixture[str]
) -> None:
    fake_service.failing_submissions.update({0, 4, 8})

    exit_code = _run(fake_service, fake_clock, "--tasks", "12")

    out, _ = capsys.readouterr()
    assert exit_code == 0
    assert "Comm 1:" not in out
    assert "Comm 2:  3 tasks" in out


def test_login_failure_is_fatal(
    fake_clock: FakeClock, capsys: pytest.CaptureFixture[str]
) -> None:
    service = FakeScheduler(login_ok=False)

    assert _run(service, fake_clock) == 1
    _, err = capsys.readouterr()
    assert "login failed: bad credentials" in err
    assert service.submitted == []


def test_control_failure_is_fatal(
    fake_clock: FakeClock, capsys: pytest.CaptureFixture[str]
) -> None:
    service = FakeScheduler(control_ok=False)

    assert _run(service, fake_clock) == 1
    _, err = capsys.readouterr()
    assert "control failed" in err
    assert service.submitted == []


def test_empty_batch_is_fatal(
    fake_service: FakeScheduler, fake_clock: FakeClock, capsys: pytest.CaptureFixture[str]
) -> None:
    fake_service.failing_submissions.update(range(4))

    assert _run(fake_service, fake_clock, "--tasks", "4") == 1
    _, err = capsys.readouterr()
    assert "all 4 task submissions failed" in err


def test_multiple_runs_print_comparison(
    fake_service: FakeScheduler, fake_clock: FakeClock, capsys: pytest.CaptureFixture[str]
) -> None:
    exit_code = _run(fake_service, fake_clock, "--tasks", "4", "--runs", "2")

    out, _ = capsys.readouterr()
    assert exit_code == 0
    assert "(run 1)" in out
    assert "(run 2)" in out
    assert "Run comparison:" in out
    assert "run 2: placed=4/4 devices=4 std_dev=0.00 state=done" in out
    assert len(fake_service.submitted) == 8


def test_recollect_reports_after_completion(
    fake_service: FakeScheduler, fake_clock: FakeClock, capsys: pytest.CaptureFixture[str]
) -> None:
    exit_code = _run(fake_service, fake_clock, "--tasks", "4", "--recollect")

    out, _ = capsys.readouterr()
    assert exit_code == 0
    assert "(after completion)" in out
    lookups = [r for r in fake_service.requests if r.url.path.startswith("/api/v1/algorithm/tasks/")]
    assert len(lookups) == 8


def test_output_dir_receives_artefacts(
    fake_service: FakeScheduler, fake_clock: FakeClock, tmp_path, capsys: pytest.CaptureFixture[str]
) -> None:
    fake_service.failing_submissions.add(2)

    exit_code = _run(fake_service, fake_clock, "--tasks", "6", "--output-dir", str(tmp_path))

    capsys.readouterr()
    assert exit_code == 0
    assert (tmp_path / "run-1__distribution.csv").exists()
    assert (tmp_path / "run-1__distribution.png").exists()
    manifest = json.loads((tmp_path / "balance_manifest.json").read_text(encoding="utf-8"))
    entry = manifest["runs"][0]
    assert entry["requested"] == 6
    assert entry["submitted"] == 5
    assert entry["failed_submissions"] == [2]
    assert entry["final_state"] == "done"
    assert entry["statistic"]["total"] == 5


def test_dry_run_makes_no_requests(
    fake_service: FakeScheduler, fake_clock: FakeClock, capsys: pytest.CaptureFixture[str]
) -> None:
    exit_code = _run(fake_service, fake_clock, "--dry-run", "--tasks", "5", "--requesters", "3,9")

    out, _ = capsys.readouterr()
    assert exit_code == 0
    assert fake_service.requests == []
    assert "task 5: user_id=3" in out
    assert "task 2: user_id=9" in out


def test_invalid_configuration_exits_non_zero(
    fake_service: FakeScheduler, fake_clock: FakeClock, capsys: pytest.CaptureFixture[str]
) -> None:
    assert _run(fake_service, fake_clock, "--tasks", "0") == 2
    _, err = capsys.readouterr()
    assert "task_count must be > 0" in err


def test_zero_poll_interval_rejected_before_any_submission(
    fake_service: FakeScheduler, fake_clock: FakeClock, capsys: pytest.CaptureFixture[str]
) -> None:
    assert _run(fake_service, fake_clock, "--poll-interval", "0") == 2
    _, err = capsys.readouterr()
    assert "poll_interval must be > 0" in err
    assert fake_service.submitted == []
    assert fake_service.requests == []


def test_environment_supplies_defaults(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("BALANCE_REQUESTERS", "1, 2")
    monkeypatch.setenv("BALANCE_TIMEOUT_SECONDS", "30")
    monkeypatch.setenv("SCHEDULER_TASK_ENDPOINT", "task")

    config = build_config(parse_args([]))

    assert isinstance(config, HarnessConfig)
    assert config.workload.requesters == (1, 2)
    assert config.polling.timeout == 30.0
    assert config.service.task_endpoint == "task"
    assert config.output_dir is None


def test_parse_requesters_rejects_empty() -> None:
    with pytest.raises(ValueError):
        parse_requesters(" , ")
