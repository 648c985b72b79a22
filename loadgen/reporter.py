from __future__ import annotations

import os
from typing import Any, Dict, List, Optional

from rich import box
from rich.console import Console
from rich.table import Table


def get_container_resources() -> Dict[str, Optional[str]]:
    """
    Get container resource constraints.

    Reads from environment variables or the cgroup v2 files when running in a
    container. Returns dict with 'cpus' and 'memory' keys.
    """
    resources: Dict[str, Optional[str]] = {
        "cpus": os.environ.get("LOADGEN_CPU_LIMIT"),
        "memory": os.environ.get("LOADGEN_MEMORY_LIMIT"),
    }

    if resources["cpus"] is None:
        try:
            with open("/sys/fs/cgroup/cpu.max", "r") as f:
                parts = f.read().strip().split()
            if len(parts) == 2 and parts[0] != "max":
                resources["cpus"] = f"{int(parts[0]) / int(parts[1]):.1f}"
        except (FileNotFoundError, PermissionError, ValueError):
            pass

    if resources["memory"] is None:
        try:
            with open("/sys/fs/cgroup/memory.max", "r") as f:
                content = f.read().strip()
            if content != "max":
                mem_bytes = int(content)
                if mem_bytes >= 1024**3:
                    resources["memory"] = f"{mem_bytes / 1024**3:.1f}GB"
                else:
                    resources["memory"] = f"{mem_bytes / 1024**2:.0f}MB"
        except (FileNotFoundError, PermissionError, ValueError):
            pass

    return resources


def _fmt_ms(value: Optional[float]) -> str:
    return "N/A" if value is None else f"{value:,.2f}"


def _summary_table(results: List[Dict[str, Any]]) -> Table:
    resources = get_container_resources()
    resource_parts = []
    if resources["cpus"]:
        resource_parts.append(f"CPU: {resources['cpus']} cores")
    if resources["memory"]:
        resource_parts.append(f"Memory: {resources['memory']}")

    title = "Load Job Results"
    if resource_parts:
        title = f"{title}\n[dim]Container Resources: {' │ '.join(resource_parts)}[/dim]"

    table = Table(title=title, box=box.ROUNDED)
    table.add_column("Job", style="cyan", no_wrap=True)
    table.add_column("Operations", justify="right", style="magenta")
    table.add_column("Duration (s)", justify="right", style="green")
    table.add_column("Throughput (ops/s)", justify="right", style="bold green")
    table.add_column("Peak Memory (MB)", justify="right", style="yellow")
    table.add_column("CPU %", justify="right", style="red")
    table.add_column("Status", justify="left")

    for res in results:
        mem_bytes = res.get("peak_rss_bytes") or 0
        if res.get("error"):
            status = f"[red]failed: {res['error']}[/red]"
        elif res.get("stopped_early"):
            status = "[yellow]stopped[/yellow]"
        else:
            status = "[green]ok[/green]"
        table.add_row(
            res.get("job", "Unknown"),
            f"{res.get('operations', 0):,}",
            f"{res.get('duration_seconds', 0.0):.1f}",
            f"{res.get('throughput_ops_per_sec', 0.0):,.2f}",
            f"{mem_bytes / (1024 * 1024):.2f}",
            f"{res.get('cpu_percent') or 0.0:.1f}",
            status,
        )
    return table


def _operations_table(job: str, stats: Dict[str, Dict[str, Any]]) -> Table:
    table = Table(title=f"{job}: operations", box=box.SIMPLE_HEAVY)
    table.add_column("Operation", style="cyan", no_wrap=True)
    table.add_column("Completed", justify="right", style="magenta")
    table.add_column("Rate (ops/s)", justify="right", style="bold green")
    table.add_column("Avg (ms)", justify="right", style="green")
    table.add_column("Min (ms)", justify="right")
    table.add_column("Max (ms)", justify="right")
    table.add_column("Over Threshold", justify="right", style="red")
    table.add_column("Result Codes", justify="left")

    for name, summary in stats.items():
        duration = summary.get("duration_ms", {})
        codes = ", ".join(
            f"{code}={count:,}"
            for code, count in sorted(summary.get("result_codes", {}).items(), key=lambda kv: -kv[1])
        )
        table.add_row(
            name,
            f"{summary.get('completed', 0):,}",
            f"{summary.get('rate_per_second', 0.0):,.2f}",
            _fmt_ms(duration.get("avg")),
            _fmt_ms(duration.get("min")),
            _fmt_ms(duration.get("max")),
            f"{summary.get('threshold_breaches', 0):,}",
            codes or "-",
        )
    return table


def _categories_table(job: str, name: str, categories: Dict[str, int]) -> Table:
    total = sum(categories.values()) or 1
    table = Table(title=f"{job}: {name} response times", box=box.SIMPLE)
    table.add_column("Category", style="cyan")
    table.add_column("Count", justify="right", style="magenta")
    table.add_column("Share", justify="right", style="green")
    for label, count in categories.items():
        table.add_row(label, f"{count:,}", f"{100.0 * count / total:.1f}%")
    return table


def print_results(results: List[Dict[str, Any]], console: Optional[Console] = None) -> None:
    """
    Render job results as rich tables.

    One summary row per job, then per-operation statistics, response-time
    categories when collected and variant-specific counters.
    """
    console = console or Console()

    if not results:
        console.print("[yellow]No results to display.[/yellow]")
        return

    console.print(_summary_table(results))

    for res in results:
        job = res.get("job", "Unknown")
        stats = res.get("stats") or {}
        if stats:
            console.print(_operations_table(job, stats))
            for name, summary in stats.items():
                categories = summary.get("response_time_categories")
                if categories:
                    console.print(_categories_table(job, name, categories))
        counters = {
            key: value
            for key, value in (res.get("extra") or {}).items()
            if isinstance(value, int) and not isinstance(value, bool)
        }
        if counters:
            table = Table(title=f"{job}: counters", box=box.SIMPLE)
            table.add_column("Counter", style="cyan")
            table.add_column("Value", justify="right", style="magenta")
            for key, value in counters.items():
                table.add_row(key.replace("_", " "), f"{value:,}")
            console.print(table)


__all__ = ["get_container_resources", "print_results"]
