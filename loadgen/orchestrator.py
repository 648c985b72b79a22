"""
Orchestrator for running load jobs, profiling execution, and persisting results.

Usage (example from CLI):
    from loadgen.orchestrator import run_job

    config = JobConfig(threads=4, duration_seconds="1m", last_record_number=9_999,
                       template_lines=["uid: <entryNumber>", "cn: {uid}-x"])
    result = run_job("add_delete", config)

Outputs are saved to `results/` by default:
- `results/latest.json` (last run)
- `results/run-<timestamp>.json` (timestamped archive)
"""

from __future__ import annotations

import json
import random
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, List, Optional, Union

from loadgen.config import Settings, get_settings
from loadgen.control.signals import StopSignal
from loadgen.domain.errors import ConfigurationError
from loadgen.domain.models import (
    AddDeleteOptions,
    AsyncRateOptions,
    JobConfig,
    OperationKind,
    RateOptions,
    ReplayOptions,
    TargetKind,
)
from loadgen.drivers.abstract import JobResult, LoadJob
from loadgen.drivers.add_delete import AddDeleteJob
from loadgen.drivers.async_rate import AsyncChannelFactory, AsyncRateJob
from loadgen.drivers.base import ChannelFactory
from loadgen.drivers.rate import RateJob
from loadgen.drivers.replay import ReplayJob
from loadgen.infrastructure.db_factory import create_async_pool, get_sync_connection, get_sync_pool
from loadgen.operations.memory import AsyncMemoryChannel, InMemoryDirectory, MemoryChannel
from loadgen.operations.postgres import AsyncPostgresChannel, PostgresChannel, ensure_schema
from loadgen.templating.expander import RecordGenerator
from loadgen.templating.record import Record
from loadgen.templating.template import compile_template
from loadgen.utils.logging import get_logger
from loadgen.utils.profiler import ProfileStats, profile_block

log = get_logger(__name__)

JobOptions = Union[AddDeleteOptions, RateOptions, AsyncRateOptions, ReplayOptions]

FAILURE_POLICIES = ("tolerant", "strict")


def _round_float(value: float, decimals: int = 2) -> float:
    """Round a float to specified decimal places for human-readable output."""
    return round(value, decimals)


def render_records(config: JobConfig, limit: Optional[int] = None) -> Iterator[Record]:
    """
    Generate the records of ``[first, last]`` (or the first `limit` of them).

    Uses a single random source seeded from `config.seed`, so a fixed seed
    renders the same records every time.
    """
    if not config.template_lines:
        raise ConfigurationError("Rendering records requires a template")
    generator = RecordGenerator(compile_template(config.template_lines), config.first_record_number)
    rng = random.Random(config.seed)
    last = config.last_record_number
    if limit is not None:
        last = min(last, config.first_record_number + limit - 1)
    for number in range(config.first_record_number, last + 1):
        yield generator.generate(rng, number, config.record_key(number))


def _placeholder_records(config: JobConfig) -> Iterator[Record]:
    for number in range(config.first_record_number, config.last_record_number + 1):
        record = Record(config.record_key(number))
        record.add(config.key_attribute, str(number))
        yield record


def build_memory_directory(config: JobConfig, preload: bool) -> InMemoryDirectory:
    directory = InMemoryDirectory()
    if preload:
        records = render_records(config) if config.template_lines else _placeholder_records(config)
        count = directory.preload(records)
        log.info("Memory directory preloaded", extra={"records": count})
    return directory


def _sync_channels(
    config: JobConfig, settings: Settings, directory: Optional[InMemoryDirectory]
) -> ChannelFactory:
    if config.target is TargetKind.MEMORY:
        return lambda index: MemoryChannel(directory, name=f"memory-{index}")
    with get_sync_connection(settings.dsn) as conn:
        ensure_schema(conn, settings.db_table)
    pool = get_sync_pool(min_size=1, max_size=max(config.threads, 1), dsn=settings.dsn)
    return lambda index: PostgresChannel(pool, settings.db_table, name=f"postgres-{index}")


def _async_channels(
    config: JobConfig, settings: Settings, directory: Optional[InMemoryDirectory]
) -> AsyncChannelFactory:
    if config.target is TargetKind.MEMORY:

        async def _memory(index: int) -> AsyncMemoryChannel:
            return AsyncMemoryChannel(directory, name=f"memory-{index}")

        return _memory

    with get_sync_connection(settings.dsn) as conn:
        ensure_schema(conn, settings.db_table)

    async def _postgres(index: int) -> AsyncPostgresChannel:
        pool = await create_async_pool(settings.dsn, min_size=1, max_size=10)
        return AsyncPostgresChannel(pool, settings.db_table, name=f"postgres-{index}")

    return _postgres


def _coerce_options(name: str, options: Optional[JobOptions]) -> Optional[JobOptions]:
    """Check that `options` suit job `name`, filling in defaults."""
    if name == "add_delete":
        return _expect(name, options, AddDeleteOptions) or AddDeleteOptions()
    if name in ("modify_rate", "search_rate"):
        operation = OperationKind.MODIFY if name == "modify_rate" else OperationKind.SEARCH
        opts = _expect(name, options, RateOptions) or RateOptions()
        return RateOptions(
            operation=operation, categorize_response_times=opts.categorize_response_times
        )
    if name == "async_rate":
        return _expect(name, options, AsyncRateOptions) or AsyncRateOptions()
    if name == "replay":
        opts = _expect(name, options, ReplayOptions)
        if opts is None:
            raise ConfigurationError("The replay job requires ReplayOptions with a capture file")
        return opts
    return options


def _expect(name: str, options: Optional[JobOptions], kind: type) -> Optional[Any]:
    if options is not None and not isinstance(options, kind):
        raise ConfigurationError(
            f"Job '{name}' expects {kind.__name__}, got {type(options).__name__}"
        )
    return options


JobFactory = Callable[[JobConfig, Optional[JobOptions], Settings, Optional[InMemoryDirectory]], LoadJob]


def _job_factories() -> Dict[str, JobFactory]:
    """Registry of available jobs."""
    return {
        "add_delete": lambda cfg, opts, settings, directory: AddDeleteJob(
            cfg, _sync_channels(cfg, settings, directory), opts, settings
        ),
        "modify_rate": lambda cfg, opts, settings, directory: RateJob(
            cfg, _sync_channels(cfg, settings, directory), opts, settings
        ),
        "search_rate": lambda cfg, opts, settings, directory: RateJob(
            cfg, _sync_channels(cfg, settings, directory), opts, settings
        ),
        "async_rate": lambda cfg, opts, settings, directory: AsyncRateJob(
            cfg, _async_channels(cfg, settings, directory), opts, settings
        ),
        "replay": lambda cfg, opts, settings, directory: ReplayJob(cfg, opts, settings=settings),
    }


_DESCRIPTIONS = {
    "add_delete": AddDeleteJob.description,
    "modify_rate": "Rate-limited modifies of random records in a range.",
    "search_rate": "Rate-limited searches of random records in a range.",
    "async_rate": AsyncRateJob.description,
    "replay": ReplayJob.description,
}


def available_jobs() -> List[str]:
    """List available job names."""
    return sorted(_job_factories().keys())


def describe_jobs() -> Dict[str, str]:
    return {name: _DESCRIPTIONS[name] for name in available_jobs()}


def _needs_preload(name: str) -> bool:
    return name in ("modify_rate", "search_rate", "async_rate")


def resolve_job(
    name: str,
    config: JobConfig,
    options: Optional[JobOptions] = None,
    settings: Optional[Settings] = None,
    directory: Optional[InMemoryDirectory] = None,
) -> LoadJob:
    """
    Build the job registered under `name`.

    Configuration problems (unknown job, mismatched options, template errors,
    unreadable capture files) raise `ConfigurationError` here, before any
    operation is issued.
    """
    factories = _job_factories()
    if name not in factories:
        raise ConfigurationError(f"Unknown job '{name}'. Available: {', '.join(sorted(factories))}")
    settings = settings or get_settings()
    options = _coerce_options(name, options)
    if config.target is TargetKind.MEMORY and directory is None and name != "replay":
        directory = build_memory_directory(config, preload=_needs_preload(name))
    return factories[name](config, options, settings, directory)


def _persist_results(payload: dict, results_dir: Path) -> None:
    results_dir.mkdir(parents=True, exist_ok=True)
    latest_path = results_dir / "latest.json"
    timestamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%SZ")
    archive_path = results_dir / f"run-{timestamp}.json"

    with latest_path.open("w", encoding="utf-8") as f:
        json.dump(payload, f, indent=2, sort_keys=True, default=str)
    with archive_path.open("w", encoding="utf-8") as f:
        json.dump(payload, f, indent=2, sort_keys=True, default=str)

    log.info("Results persisted", extra={"latest": str(latest_path), "archive": str(archive_path)})


def _profiled_execute(job: LoadJob, stop: Optional[StopSignal], failure_policy: str) -> dict:
    log.info(f"[JOB] {job.name}", extra={"job": job.name})
    with profile_block(job.name) as stats:
        try:
            result = job.execute(stop)
        except Exception as exc:  # noqa: BLE001 - intentional broad catch to record failures
            if failure_policy == "strict":
                raise
            log.exception(f"[JOB FAILED] {job.name}", extra={"job": job.name})
            result = JobResult(job=job.name, error=str(exc), operations=0)

    return _merge_result(result, stats)


def _merge_result(result: JobResult, stats: ProfileStats) -> dict:
    """Merge job result with profiler stats, rounding floats for readability."""
    merged = dict(result)
    merged.setdefault("operations", 0)
    merged.setdefault("duration_seconds", stats.duration_seconds)
    merged["duration_seconds"] = _round_float(merged["duration_seconds"])
    merged.setdefault(
        "throughput_ops_per_sec",
        merged["operations"] / merged["duration_seconds"] if merged["duration_seconds"] else 0.0,
    )
    merged["throughput_ops_per_sec"] = _round_float(merged["throughput_ops_per_sec"])
    if merged.get("peak_rss_bytes") is None:
        merged["peak_rss_bytes"] = stats.peak_rss_bytes
    if merged.get("cpu_percent") is None:
        merged["cpu_percent"] = _round_float(stats.cpu_percent, 1) if stats.cpu_percent else None
    else:
        merged["cpu_percent"] = _round_float(merged["cpu_percent"], 1)
    merged["profile"] = {
        "label": stats.label,
        "start_ts": _round_float(stats.start_ts, 3),
        "end_ts": _round_float(stats.end_ts, 3),
        "duration_seconds": _round_float(stats.duration_seconds),
        "peak_rss_bytes": stats.peak_rss_bytes,
        "peak_threads": stats.peak_threads,
        "cpu_percent": _round_float(stats.cpu_percent, 1) if stats.cpu_percent else None,
        "samples": stats.samples,
    }
    return merged


def run_job(
    name: str,
    config: JobConfig,
    options: Optional[JobOptions] = None,
    settings: Optional[Settings] = None,
    stop: Optional[StopSignal] = None,
    directory: Optional[InMemoryDirectory] = None,
    results_dir: Union[Path, str, None] = None,
    persist: bool = True,
    failure_policy: str = "tolerant",
) -> dict:
    """
    Run one job and optionally persist its result.

    Parameters
    ----------
    name : str
        Registered job name (see `available_jobs`).
    config : JobConfig
        Shared job configuration.
    options : JobOptions | None
        Variant-specific options; defaults are used when omitted.
    stop : StopSignal | None
        Cooperative stop signal (set by the CLI on Ctrl-C).
    directory : InMemoryDirectory | None
        Store used by memory-target channels; built (and preloaded for rate
        jobs) when omitted.
    failure_policy : str
        "tolerant" records a failing job with `error` set; "strict" re-raises.

    Returns
    -------
    dict
        The job result merged with profiler measurements.
    """
    if failure_policy not in FAILURE_POLICIES:
        raise ConfigurationError(
            f"Unknown failure policy '{failure_policy}'. Use one of {', '.join(FAILURE_POLICIES)}"
        )
    settings = settings or get_settings()
    job = resolve_job(name, config, options, settings, directory)
    result = _profiled_execute(job, stop, failure_policy)
    result["job"] = name
    result["config"] = config.model_dump(mode="json")

    if persist:
        payload = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "job": name,
            "result": result,
        }
        _persist_results(payload, Path(results_dir or settings.results_dir))

    log.info(
        f"[ORCHESTRATOR COMPLETE] {name}",
        extra={"job": name, "operations": result.get("operations"), "error": result.get("error")},
    )
    return result


__all__ = [
    "available_jobs",
    "build_memory_directory",
    "describe_jobs",
    "render_records",
    "resolve_job",
    "run_job",
]
