from __future__ import annotations

import asyncio
import os
import shutil
from pathlib import Path

import typer
from rich.console import Console
from rich.table import Table

from ...constraint import ENV_PREFIX
from ..broadcast import ProgressSink
from ..config import AppConfig, load_config
from ..core import ConversionError, ConversionService
from ..engine import SubprocessEngine
from ..logging import configure_logging
from ..models import ErrorEvent, FittedRange, LogEvent, ProgressEvent, ResultEvent, SourceFile
from ..partition import SizeFittingPartitioner
from ..sweeper import RetentionSweeper
from ..utils import format_mb, generate_session_id, scoped_workdir
from ..verify import verify_conformance

console = Console()

app = typer.Typer(help="PDF/A conversion with size-limited splitting")


def _load_config(path: Path | None) -> AppConfig:
    return load_config(path)


class ConsoleSink:
    def publish(self, event: ProgressEvent) -> None:
        if isinstance(event, LogEvent):
            console.print(f"[dim]>[/dim] {event.message}")
        elif isinstance(event, ErrorEvent):
            console.print(f"[red]Error[/red]: {event.message}")
        elif isinstance(event, ResultEvent):
            console.print(f"[green]Done[/green]: {len(event.result.files)} file(s)")


def _stage(files: list[Path], upload_dir: Path) -> list[SourceFile]:
    # the pipeline deletes its inputs, so work on copies
    upload_dir.mkdir(parents=True, exist_ok=True)
    staged: list[SourceFile] = []
    for file in files:
        target = upload_dir / f"{generate_session_id()}.pdf"
        shutil.copyfile(file, target)
        staged.append(SourceFile(original_name=file.name, path=target, size_bytes=target.stat().st_size))
    return staged


@app.command()
def convert(
    files: list[Path] = typer.Argument(..., exists=True, dir_okay=False, help="PDF files to convert"),
    output_name: str | None = typer.Option(None, "--output-name", help="Base name for the outputs"),
    out: Path | None = typer.Option(None, "--out", help="Directory for session outputs"),
    sequential: bool = typer.Option(False, "--sequential", help="Disable chunked parallel conversion"),
    config: Path | None = typer.Option(None, "--config", help="Path to config.toml"),
    log_level: str = typer.Option("WARNING", "--log-level", help="Log level for service loggers"),
) -> None:
    cfg = _load_config(config)
    if out is not None:
        cfg.runtime.output_dir = out
    configure_logging(log_level)
    service = ConversionService(cfg)
    session_id = generate_session_id()
    sources = _stage(files, cfg.runtime.upload_dir)
    sink: ProgressSink = ConsoleSink()
    try:
        batch = asyncio.run(
            service.run_batch(
                session_id,
                sources,
                sink,
                output_name=output_name,
                force_sequential=sequential,
            )
        )
    except ConversionError as exc:
        console.print(f"[red]Conversion failed[/red]: {exc.code} - {exc}")
        raise typer.Exit(1) from exc

    table = Table(title="Conversion summary")
    table.add_column("Source")
    table.add_column("Output")
    table.add_column("Size", justify="right")
    table.add_column("Parts", justify="right")
    table.add_column("PDF/A")
    for item in batch.files:
        table.add_row(
            item.original_name,
            item.output_name,
            format_mb(item.output_size),
            str(item.parts),
            item.conformance or "[red]no[/red]",
        )
    console.print(table)
    console.print(f"Outputs: {cfg.runtime.output_dir / session_id}")


@app.command()
def verify(files: list[Path] = typer.Argument(..., exists=True, dir_okay=False)) -> None:
    table = Table(title="PDF/A metadata")
    table.add_column("File")
    table.add_column("Declared")
    table.add_column("Conformance")
    failed = False
    for file in files:
        result = verify_conformance(file)
        failed = failed or not result.compliant
        table.add_row(str(file), "yes" if result.compliant else "[red]no[/red]", result.label or "-")
    console.print(table)
    if failed:
        raise typer.Exit(1)


@app.command()
def partition(
    file: Path = typer.Argument(..., exists=True, dir_okay=False),
    ceiling_mb: float = typer.Option(9.0, "--ceiling-mb", min=0.01, help="Maximum part size in MB"),
    config: Path | None = typer.Option(None, "--config", help="Path to config.toml"),
) -> None:
    cfg = _load_config(config)
    ceiling = int(ceiling_mb * 1024 * 1024)

    async def _run() -> tuple[list[FittedRange], int]:
        # leading underscore keeps the sweeper away from the scratch area
        with scoped_workdir(cfg.runtime.output_dir, prefix="_partition-") as scratch:
            partitioner = SizeFittingPartitioner(SubprocessEngine(cfg.engine), scratch)
            ranges = await partitioner.partition(file, ceiling)
            return ranges, partitioner.probe_count

    ranges, probes = asyncio.run(_run())
    table = Table(title=f"{file.name} at {format_mb(ceiling)}")
    table.add_column("Pages")
    table.add_column("Size", justify="right")
    table.add_column("Fits")
    for item in ranges:
        table.add_row(item.range.spec(), format_mb(item.size_bytes), "[red]no[/red]" if item.over_ceiling else "yes")
    console.print(table)
    console.print(f"{len(ranges)} part(s), {probes} probes")


@app.command()
def clean(
    older_than: int | None = typer.Option(
        None,
        "--older-than",
        min=0,
        help="Delete session outputs and uploads untouched for this many seconds",
    ),
    config: Path | None = typer.Option(None, "--config", help="Path to config.toml"),
) -> None:
    cfg = _load_config(config)
    runtime = cfg.runtime
    sweeper = RetentionSweeper(
        (runtime.output_dir, runtime.upload_dir),
        retention_seconds=runtime.retention.retention_s if older_than is None else older_than,
        interval_seconds=runtime.retention.sweep_interval_s,
        exclude=(runtime.log_file, runtime.summary_csv),
    )
    removed = sweeper.sweep_once()
    console.print(f"Removed {len(removed)} expired entries.")


@app.command()
def serve(
    host: str | None = typer.Option(None, "--host"),
    port: int | None = typer.Option(None, "--port"),
    config: Path | None = typer.Option(None, "--config", help="Path to config.toml"),
) -> None:
    import uvicorn

    cfg = _load_config(config)
    if config is not None:
        os.environ[f"{ENV_PREFIX}CONFIG_PATH"] = str(config)
    uvicorn.run(
        "api.app:create_app",
        factory=True,
        host=host or cfg.api.host,
        port=port or cfg.api.port,
    )


if __name__ == "__main__":
    app()
