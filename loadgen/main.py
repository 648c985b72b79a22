from __future__ import annotations

import json
import signal
import sys
from pathlib import Path
from typing import List, NoReturn, Optional

import typer
from pydantic import ValidationError

from loadgen.config import get_settings
from loadgen.control.signals import StopSignal
from loadgen.domain.errors import ConfigurationError, LoadJobError
from loadgen.domain.models import (
    AddDeleteOptions,
    AsyncRateOptions,
    JobConfig,
    OperationKind,
    RateOptions,
    ReplayOptions,
    SelectionMode,
    TargetKind,
)
from loadgen.orchestrator import available_jobs, describe_jobs, render_records, run_job
from loadgen.reporter import print_results
from loadgen.utils.logging import configure_logging

app = typer.Typer(help="Rate-controlled load job runner.")


def _template_lines(template: Optional[Path], lines: Optional[List[str]]) -> List[str]:
    collected: List[str] = []
    if template is not None:
        collected.extend(template.read_text(encoding="utf-8").splitlines())
    collected.extend(lines or [])
    return collected


def _fail(exc: Exception) -> NoReturn:
    typer.echo(f"Invalid configuration: {exc}", err=True)
    raise typer.Exit(code=2)


@app.command()
def info() -> None:
    """
    Show effective configuration values.
    """
    settings = get_settings()
    typer.echo(
        f"DB={settings.db_user}@{settings.db_host}:{settings.db_port}/{settings.db_name} "
        f"table={settings.db_table} | collection_interval={settings.collection_interval_seconds}s "
        f"threads={settings.default_threads} results={settings.results_dir} env={settings.app_env}"
    )


@app.command()
def jobs() -> None:
    """
    List available jobs.
    """
    for name, description in describe_jobs().items():
        typer.echo(f"{name:<12} {description}")


@app.command()
def render(
    template: Optional[Path] = typer.Option(None, "--template", "-T", exists=True, dir_okay=False),
    line: Optional[List[str]] = typer.Option(None, "--line", "-l", help="Template line (repeatable)."),
    first: int = typer.Option(0, "--first", help="First record number."),
    count: int = typer.Option(5, "--count", "-n", min=1, help="Number of records to render."),
    seed: Optional[int] = typer.Option(None, "--seed", help="Random seed for reproducible output."),
    key_attribute: str = typer.Option("uid", "--key-attribute"),
    key_suffix: str = typer.Option("", "--key-suffix"),
) -> None:
    """
    Print records generated from a template in LDIF form.
    """
    try:
        config = JobConfig(
            first_record_number=first,
            last_record_number=first + count - 1,
            template_lines=_template_lines(template, line),
            key_attribute=key_attribute,
            key_suffix=key_suffix,
            seed=seed,
        )
        records = list(render_records(config))
    except (ValidationError, ConfigurationError) as exc:
        _fail(exc)
    typer.echo("\n".join(record.to_ldif() for record in records), nl=False)


@app.command()
def run(
    job: str = typer.Argument(..., help="Job to run (see `jobs`)."),
    template: Optional[Path] = typer.Option(None, "--template", "-T", exists=True, dir_okay=False),
    line: Optional[List[str]] = typer.Option(None, "--line", "-l", help="Template line (repeatable)."),
    threads: Optional[int] = typer.Option(None, "--threads", "-t", help="Worker threads."),
    duration: Optional[str] = typer.Option(None, "--duration", "-d", help="e.g. 90s, 5m, 1h30m."),
    first: int = typer.Option(0, "--first", help="First record number."),
    last: int = typer.Option(0, "--last", help="Last record number (inclusive)."),
    max_rate: int = typer.Option(0, "--max-rate", help="Operations per second (0 = unlimited)."),
    rate_interval: int = typer.Option(0, "--rate-interval", help="Rate interval in seconds."),
    request_delay: int = typer.Option(0, "--time-between-requests", help="Minimum ms per request."),
    warm_up: str = typer.Option("0", "--warm-up"),
    cool_down: str = typer.Option("0", "--cool-down"),
    threshold: int = typer.Option(-1, "--threshold", help="Response-time threshold in ms."),
    target: TargetKind = typer.Option(TargetKind.MEMORY, "--target"),
    seed: Optional[int] = typer.Option(None, "--seed"),
    key_attribute: str = typer.Option("uid", "--key-attribute"),
    key_suffix: str = typer.Option("", "--key-suffix"),
    operation: OperationKind = typer.Option(OperationKind.SEARCH, "--operation", help="async_rate only."),
    connections: int = typer.Option(1, "--connections"),
    selection_mode: SelectionMode = typer.Option(SelectionMode.FEWEST_OUTSTANDING, "--selection-mode"),
    max_outstanding: int = typer.Option(0, "--max-outstanding"),
    categorize: bool = typer.Option(True, "--categorize/--no-categorize"),
    adds: bool = typer.Option(True, "--adds/--no-adds"),
    deletes: bool = typer.Option(True, "--deletes/--no-deletes"),
    alternate: bool = typer.Option(False, "--alternate"),
    phase_delay: int = typer.Option(0, "--phase-delay", help="Settle delay between phases (ms)."),
    capture_file: Optional[Path] = typer.Option(None, "--capture-file", exists=True, dir_okay=False),
    host: str = typer.Option("localhost", "--host"),
    port: int = typer.Option(389, "--port"),
    preserve_timing: bool = typer.Option(True, "--preserve-timing/--fixed-timing"),
    multiplier: float = typer.Option(1.0, "--timing-multiplier"),
    packet_delay: int = typer.Option(0, "--packet-delay"),
    iterations: int = typer.Option(1, "--iterations", help="<= 0 replays until stopped."),
    iteration_delay: int = typer.Option(0, "--iteration-delay"),
    strict: bool = typer.Option(False, "--strict", help="Fail instead of recording job errors."),
    persist: bool = typer.Option(True, "--persist/--no-persist"),
    as_json: bool = typer.Option(False, "--json", help="Print the raw result as JSON."),
) -> None:
    """
    Run a job via the orchestrator and persist its result.
    """
    settings = get_settings()
    configure_logging(level=settings.log_level, json_logs=settings.log_json)

    if job not in available_jobs():
        typer.echo(f"Unknown job '{job}'. Available: {', '.join(available_jobs())}", err=True)
        raise typer.Exit(code=2)

    try:
        config = JobConfig(
            threads=threads or settings.default_threads,
            duration_seconds=duration,
            first_record_number=first,
            last_record_number=last,
            max_rate=max_rate,
            rate_interval_seconds=rate_interval,
            collection_interval_seconds=settings.collection_interval_seconds,
            time_between_requests_ms=request_delay,
            warm_up_seconds=warm_up,
            cool_down_seconds=cool_down,
            response_time_threshold_ms=threshold,
            template_lines=_template_lines(template, line),
            key_attribute=key_attribute,
            key_suffix=key_suffix,
            target=target,
            seed=seed,
        )
        options = None
        if job == "add_delete":
            options = AddDeleteOptions(
                perform_adds=adds,
                perform_deletes=deletes,
                alternate=alternate,
                time_between_phases_ms=phase_delay,
            )
        elif job in ("modify_rate", "search_rate"):
            options = RateOptions(categorize_response_times=categorize)
        elif job == "async_rate":
            options = AsyncRateOptions(
                operation=operation,
                categorize_response_times=categorize,
                connections=connections,
                selection_mode=selection_mode,
                max_outstanding=max_outstanding,
            )
        elif job == "replay":
            if capture_file is None:
                raise ConfigurationError("--capture-file is required for the replay job")
            options = ReplayOptions(
                capture_file=capture_file,
                host=host,
                port=port,
                preserve_timing=preserve_timing,
                timing_multiplier=multiplier,
                packet_delay_ms=packet_delay,
                max_iterations=iterations,
                iteration_delay_ms=iteration_delay,
            )
    except (ValidationError, ConfigurationError) as exc:
        _fail(exc)

    stop = StopSignal(poll_interval=settings.stop_poll_seconds)

    def _interrupt(signum, frame) -> None:
        if stop.cancelled:
            raise KeyboardInterrupt
        typer.echo("Stopping... press Ctrl-C again to abort.", err=True)
        stop.set()

    previous = signal.signal(signal.SIGINT, _interrupt)
    try:
        result = run_job(
            job,
            config,
            options,
            settings=settings,
            stop=stop,
            persist=persist,
            failure_policy="strict" if strict else "tolerant",
        )
    except ConfigurationError as exc:
        _fail(exc)
    except LoadJobError as exc:
        typer.echo(f"Job failed: {exc}", err=True)
        raise typer.Exit(code=1)
    except KeyboardInterrupt:
        typer.echo("Cancelled by user.", err=True)
        raise typer.Exit(code=130)
    finally:
        signal.signal(signal.SIGINT, previous)

    if as_json:
        typer.echo(json.dumps(result, indent=2, default=str))
    else:
        print_results([result])
    if result.get("error"):
        raise typer.Exit(code=1)


def main() -> None:
    try:
        app()
    except KeyboardInterrupt:
        typer.echo("Cancelled by user.", err=True)
        sys.exit(130)


if __name__ == "__main__":
    main()
