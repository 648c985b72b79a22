from __future__ import annotations

import json
from pathlib import Path

import pytest

from loadgen import orchestrator
from loadgen.capture import CaptureRecord, write_capture
from loadgen.domain.errors import ConfigurationError
from loadgen.domain.models import (
    AddDeleteOptions,
    AsyncRateOptions,
    JobConfig,
    OperationKind,
    RateOptions,
    ReplayOptions,
)
from loadgen.operations.memory import InMemoryDirectory
from loadgen.orchestrator import available_jobs, render_records, resolve_job, run_job

RECORDS = 25
TEMPLATE = ["objectClass: person", "uid: <entryNumber>", "cn: {uid}-x"]
EXPECTED_JOBS = ["add_delete", "async_rate", "modify_rate", "replay", "search_rate"]


def _config(**overrides) -> JobConfig:
    values = dict(threads=2, last_record_number=RECORDS - 1, template_lines=TEMPLATE, seed=11)
    values.update(overrides)
    return JobConfig(**values)


def test_registry_lists_every_job() -> None:
    assert available_jobs() == EXPECTED_JOBS
    assert set(orchestrator.describe_jobs()) == set(EXPECTED_JOBS)


def test_run_job_persists_latest_and_archive(tmp_path: Path, test_settings) -> None:
    result = run_job("add_delete", _config(), settings=test_settings, results_dir=tmp_path)

    assert result["operations"] == 2 * RECORDS
    assert result["job"] == "add_delete"
    assert result["config"]["template_lines"] == TEMPLATE
    assert "profile" in result

    latest = json.loads((tmp_path / "latest.json").read_text(encoding="utf-8"))
    archives = list(tmp_path.glob("run-*.json"))
    assert latest["job"] == "add_delete"
    assert latest["result"]["operations"] == 2 * RECORDS
    assert len(archives) == 1


def test_run_job_without_persistence_writes_nothing(tmp_path: Path, test_settings) -> None:
    run_job(
        "add_delete",
        _config(),
        AddDeleteOptions(alternate=True),
        settings=test_settings,
        results_dir=tmp_path,
        persist=False,
    )

    assert list(tmp_path.iterdir()) == []


def test_search_rate_preloads_the_memory_directory(test_settings) -> None:
    directory = InMemoryDirectory()
    directory.preload(render_records(_config()))

    result = run_job(
        "search_rate",
        _config(duration_seconds=1, max_rate=30, rate_interval_seconds=1, threads=1),
        settings=test_settings,
        directory=directory,
        persist=False,
    )

    assert result["stats"]["search"]["result_codes"] == {"success": result["operations"]}
    assert len(directory) == RECORDS


def test_rate_job_options_follow_the_job_name(test_settings) -> None:
    job = resolve_job(
        "search_rate",
        _config(),
        RateOptions(operation=OperationKind.MODIFY, categorize_response_times=False),
        settings=test_settings,
    )

    assert job.name == "search_rate"
    assert job.categorize_response_times is False


def test_async_rate_runs_through_the_orchestrator(test_settings) -> None:
    result = run_job(
        "async_rate",
        _config(duration_seconds=1, max_rate=20, rate_interval_seconds=1, threads=1),
        AsyncRateOptions(operation="search", connections=2),
        settings=test_settings,
        persist=False,
    )

    assert 0 < result["operations"] <= 20
    assert "error" not in result


def test_replay_requires_options(test_settings) -> None:
    with pytest.raises(ConfigurationError):
        resolve_job("replay", _config(), settings=test_settings)


def test_replay_job_is_built_from_options(tmp_path: Path, test_settings) -> None:
    capture = tmp_path / "one.capture"
    write_capture(capture, [CaptureRecord(0, b"x")])

    job = resolve_job(
        "replay", _config(), ReplayOptions(capture_file=capture), settings=test_settings
    )

    assert job.name == "replay"


def test_unknown_job_and_mismatched_options_are_rejected(test_settings) -> None:
    with pytest.raises(ConfigurationError, match="Unknown job"):
        resolve_job("bogus", _config(), settings=test_settings)
    with pytest.raises(ConfigurationError, match="expects AddDeleteOptions"):
        resolve_job("add_delete", _config(), RateOptions(), settings=test_settings)


def test_unknown_failure_policy_is_rejected(test_settings) -> None:
    with pytest.raises(ConfigurationError):
        run_job("add_delete", _config(), settings=test_settings, persist=False, failure_policy="lax")


class _ExplodingJob:
    name = "exploding"
    description = "raises on execute"

    def execute(self, stop=None):
        raise RuntimeError("intentional failure")


def test_tolerant_policy_records_the_failure(monkeypatch, test_settings) -> None:
    monkeypatch.setattr(orchestrator, "resolve_job", lambda *args, **kwargs: _ExplodingJob())

    result = run_job("add_delete", _config(), settings=test_settings, persist=False)

    assert result["error"] == "intentional failure"
    assert result["operations"] == 0


def test_strict_policy_reraises(monkeypatch, test_settings) -> None:
    monkeypatch.setattr(orchestrator, "resolve_job", lambda *args, **kwargs: _ExplodingJob())

    with pytest.raises(RuntimeError, match="intentional failure"):
        run_job(
            "add_delete",
            _config(),
            settings=test_settings,
            persist=False,
            failure_policy="strict",
        )


def test_render_records_is_seeded_and_limited() -> None:
    first = list(render_records(_config(template_lines=TEMPLATE + ["sn: <random:alpha:8>"]), limit=3))
    second = list(render_records(_config(template_lines=TEMPLATE + ["sn: <random:alpha:8>"]), limit=3))

    assert first == second
    assert [record.key for record in first] == ["uid=0", "uid=1", "uid=2"]


def test_render_records_requires_a_template() -> None:
    with pytest.raises(ConfigurationError):
        list(render_records(_config(template_lines=[])))
