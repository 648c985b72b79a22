"""
Build a capture file for the replay job from payload files.

Each payload file becomes one capture record. Timestamps start at zero and
advance by ``--interval`` milliseconds per record unless ``--timestamps``
supplies them explicitly.
"""

from __future__ import annotations

import sys
from pathlib import Path
from typing import List, Optional

import typer

from loadgen.capture import CaptureRecord, write_capture

app = typer.Typer(help="Write a replay capture file from payload files.")


@app.command()
def main(
    payloads: List[Path] = typer.Argument(..., exists=True, dir_okay=False),
    output: Path = typer.Option(..., "--output", "-o", help="Capture file to write."),
    interval: int = typer.Option(0, "--interval", help="Milliseconds between records."),
    timestamps: Optional[str] = typer.Option(
        None, "--timestamps", help="Comma-separated capture timestamps (ms), one per payload."
    ),
) -> None:
    if timestamps:
        stamps = [int(part) for part in timestamps.split(",")]
        if len(stamps) != len(payloads):
            typer.echo("--timestamps must list one value per payload", err=True)
            raise typer.Exit(code=2)
    else:
        stamps = [index * interval for index in range(len(payloads))]

    records = [
        CaptureRecord(timestamp_ms=stamp, payload=path.read_bytes())
        for stamp, path in zip(stamps, payloads)
    ]
    count = write_capture(output, records)
    typer.echo(f"Wrote {count} records -> {output}")


if __name__ == "__main__":
    try:
        app()
    except KeyboardInterrupt:
        typer.echo("Cancelled by user.", err=True)
        sys.exit(130)
