"""
Record generation and loading script for the load job runtime.

Renders templated records for a number range, writes them as LDIF and/or
loads them into the PostgreSQL record store with COPY for maximum throughput.
Preloading the store is what the modify and search rate jobs expect.
"""

from __future__ import annotations

import json
import sys
import time
from pathlib import Path
from typing import Iterable, List, Optional

import psycopg
import typer

from loadgen.domain.models import JobConfig
from loadgen.infrastructure.db_factory import build_dsn
from loadgen.operations.postgres import ensure_schema, validate_table_name
from loadgen.orchestrator import render_records
from loadgen.templating.record import Record

app = typer.Typer(help="Render templated records and load them into Postgres (COPY).")


def _write_ldif(path: Path, records: Iterable[Record]) -> int:
    count = 0
    with path.open("w", encoding="utf-8") as f:
        for record in records:
            if count:
                f.write("\n")
            f.write(record.to_ldif())
            count += 1
    return count


def _copy_into_db(dsn: str, table: str, records: Iterable[Record], batch_size: int) -> int:
    validate_table_name(table)
    loaded = 0
    with psycopg.connect(dsn) as conn:
        ensure_schema(conn, table)
        with conn.cursor() as cur:
            with cur.copy(
                f'COPY "{table}" (record_key, attributes) FROM STDIN'
            ) as copy:
                for record in records:
                    copy.write_row((record.key, json.dumps(record.to_dict())))
                    loaded += 1
                    if loaded % batch_size == 0:
                        typer.echo(f"  {loaded:,} records copied")
        conn.commit()
    return loaded


@app.command()
def main(
    template: Path = typer.Option(
        ...,
        "--template",
        "-T",
        exists=True,
        dir_okay=False,
        help="Template file (one `name: expression` per line).",
    ),
    first: int = typer.Option(0, "--first", help="First record number."),
    last: int = typer.Option(9_999, "--last", help="Last record number (inclusive)."),
    seed: int = typer.Option(
        42,
        "--seed",
        help="Deterministic RNG seed.",
    ),
    key_attribute: str = typer.Option("uid", "--key-attribute"),
    key_suffix: str = typer.Option("", "--key-suffix"),
    output: Optional[Path] = typer.Option(
        None,
        "--output",
        "-o",
        help="Optional LDIF output path.",
    ),
    dsn: Optional[str] = typer.Option(
        None,
        "--dsn",
        help="Optional DSN override for Postgres.",
    ),
    table: str = typer.Option("records", "--table", help="Record store table."),
    batch_size: int = typer.Option(10_000, "--batch-size", "-b", help="Progress report interval."),
    no_load: bool = typer.Option(
        False,
        "--no-load",
        help="Only render records; skip loading into Postgres.",
    ),
) -> None:
    """
    Render records from a template and optionally load them into Postgres using COPY.
    """
    lines: List[str] = template.read_text(encoding="utf-8").splitlines()
    config = JobConfig(
        first_record_number=first,
        last_record_number=last,
        template_lines=lines,
        key_attribute=key_attribute,
        key_suffix=key_suffix,
        seed=seed,
    )

    start = time.perf_counter()
    if output:
        output.parent.mkdir(parents=True, exist_ok=True)
        count = _write_ldif(output, render_records(config))
        duration = time.perf_counter() - start
        typer.echo(f"Wrote {count:,} records -> {output} in {duration:.2f}s")

    if no_load:
        typer.echo("Skipping load (no-load flag set).")
        return

    load_start = time.perf_counter()
    typer.echo(f"Loading {config.record_count:,} records into {table} via COPY...")
    loaded = _copy_into_db(dsn or build_dsn(), table, render_records(config), batch_size)
    load_duration = time.perf_counter() - load_start
    typer.echo(
        f"Load completed in {load_duration:.2f}s "
        f"({loaded / load_duration if load_duration else 0:,.0f} records/s)."
    )


if __name__ == "__main__":
    try:
        app()
    except KeyboardInterrupt:
        typer.echo("Cancelled by user.", err=True)
        sys.exit(130)
